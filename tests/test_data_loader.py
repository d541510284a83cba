from __future__ import annotations

import io

import pandas as pd
import pytest

from canstats.data_loader import (
    filter_table,
    generate_rolling_windows,
    load_timeseries,
    melt_wide,
    parse_ref_date,
    pivot_tidy,
    read_table,
    slice_period,
    tidy_statcan,
    to_series,
)


def test_parse_ref_date_formats():
    parsed = parse_ref_date(["2021", "2021-07", "2021-07-15", "2020/2021"])
    assert list(parsed) == [
        pd.Timestamp("2021-01-01"),
        pd.Timestamp("2021-07-01"),
        pd.Timestamp("2021-07-15"),
        pd.Timestamp("2020-01-01"),
    ]


def test_tidy_statcan_drops_suppressed_and_meta(statcan_csv):
    raw = pd.read_csv(io.StringIO(statcan_csv))
    tidy = tidy_statcan(raw)
    assert list(tidy.columns) == ["date", "geo", "Products and product groups", "value"]
    assert len(tidy) == 5
    assert tidy["date"].iloc[0] == pd.Timestamp("2023-01-01")
    assert not tidy["value"].isna().any()


def test_tidy_statcan_keep_and_missing_columns(statcan_csv):
    raw = pd.read_csv(io.StringIO(statcan_csv))
    assert list(tidy_statcan(raw, keep=[]).columns) == ["date", "geo", "value"]
    with pytest.raises(KeyError):
        tidy_statcan(raw.drop(columns=["VALUE"]))


def test_filter_table(statcan_csv):
    tidy = tidy_statcan(pd.read_csv(io.StringIO(statcan_csv)))
    canada = filter_table(tidy, {"geo": "Canada", "Products and product groups": ["All-items"]})
    assert len(canada) == 3
    assert filter_table(tidy, {"geo": "Mars"}).empty
    with pytest.raises(KeyError):
        filter_table(tidy, {"province": "ON"})


def test_melt_and_pivot_round_trip():
    wide = pd.DataFrame({"date": ["2020-01-01", "2020-02-01"], "ON": [1.0, 2.0], "QC": [3.0, 4.0]})
    tidy = melt_wide(wide, ["date"], var_name="geo")
    assert len(tidy) == 4
    back = pivot_tidy(tidy, index="date", columns="geo")
    assert back.loc["2020-02-01", "QC"] == 4.0


def test_to_series_aggregates_duplicates_and_resamples():
    df = pd.DataFrame(
        {
            "when": ["2020-01-15", "2020-01-15", "2020-02-03", "2020-03-20"],
            "amount": [1.0, 2.0, 5.0, "bad"],
        }
    )
    series = to_series(df, date_col="when", value_col="amount")
    assert series.loc["2020-01-15"] == 3.0
    assert len(series) == 2
    monthly = to_series(df, date_col="when", value_col="amount", freq="MS")
    assert list(monthly.index) == [pd.Timestamp("2020-01-01"), pd.Timestamp("2020-02-01")]
    with pytest.raises(KeyError):
        to_series(df, date_col="date")


def test_read_table_errors(tmp_path):
    with pytest.raises(FileNotFoundError):
        read_table(tmp_path / "nothing.csv")
    other = tmp_path / "table.parquet"
    other.write_bytes(b"")
    with pytest.raises(ValueError):
        read_table(other)


def test_read_table_excel(tmp_path):
    path = tmp_path / "lico.xlsx"
    pd.DataFrame({"fsa": ["M5V"], "rate": [12.5]}).to_excel(path, index=False)
    assert read_table(path)["rate"].iloc[0] == 12.5


def test_load_timeseries_from_local_statcan_csv(tmp_path, statcan_csv):
    (tmp_path / "cpi.csv").write_text(statcan_csv, encoding="utf-8")
    series = load_timeseries(
        {"source": "cpi.csv", "filters": {"geo": "Canada", "Products and product groups": "All-items"}, "start": "2023-02"},
        tmp_path,
    )
    assert list(series.to_numpy()) == [154.5, 155.3]


def test_load_timeseries_empty_raises(tmp_path, statcan_csv):
    (tmp_path / "cpi.csv").write_text(statcan_csv, encoding="utf-8")
    with pytest.raises(ValueError):
        load_timeseries({"source": "cpi.csv", "end": "2000-01-01"}, tmp_path)


def test_slice_period(monthly_series):
    sliced = slice_period(monthly_series, "2016-01-01", "2016-12-01")
    assert len(sliced) == 12


def test_generate_rolling_windows(monthly_series):
    windows = list(generate_rolling_windows(monthly_series.iloc[:20], min_train=10, step_size=4, horizon=3))
    assert [len(train) for train, _, _ in windows] == [10, 14]
    train, test, as_of = windows[0]
    assert len(test) == 3
    assert as_of == train.index[-1]
    assert test.index[0] > as_of
    with pytest.raises(ValueError):
        list(generate_rolling_windows(monthly_series, min_train=0, step_size=1, horizon=1))
