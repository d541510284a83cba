from __future__ import annotations

from streamlit.testing.v1 import AppTest


def _upload_prompt_app():
    from canstats.dashboard import main

    main()


def _monthly_app():
    import numpy as np
    import pandas as pd

    from canstats.dashboard import render_app

    frame = pd.DataFrame(
        {
            "month": pd.date_range("2022-01-01", periods=24, freq="MS").strftime("%Y-%m-%d"),
            "sales": np.arange(1.0, 25.0),
        }
    )
    render_app(frame)


def _text_only_app():
    import pandas as pd

    from canstats.dashboard import render_app

    render_app(pd.DataFrame({"month": ["2024-01-01", "2024-02-01"], "region": ["ON", "QC"]}))


def test_main_asks_for_upload():
    at = AppTest.from_function(_upload_prompt_app).run(timeout=30)
    assert not at.exception
    assert "Upload a CSV" in at.info[0].value
    assert at.get("download_button") == []


def test_frame_without_numeric_column_shows_error():
    at = AppTest.from_function(_text_only_app).run(timeout=30)
    assert not at.exception
    assert "no numeric column" in at.error[0].value
    assert len(at.number_input) == 0


def test_form_is_prefilled_and_nothing_plotted_before_submit():
    at = AppTest.from_function(_monthly_app).run(timeout=30)
    assert not at.exception
    assert len(at.number_input) == 6
    assert [box.value for box in at.number_input] == [24.0] * 6
    assert at.number_input[0].label == "2024-01-01"
    assert len(at.success) == 0
    assert at.get("download_button") == []
    assert at.get("imgs") == []


def test_submit_plots_and_offers_download():
    at = AppTest.from_function(_monthly_app).run(timeout=30)
    at.number_input[0].set_value(99.0)
    at.button[0].click().run(timeout=30)
    assert not at.exception
    assert at.number_input[0].value == 99.0
    assert "Plotted 6 future values" in at.success[0].value
    assert len(at.get("download_button")) == 1


def test_changing_prefill_method_resets_inputs():
    at = AppTest.from_function(_monthly_app).run(timeout=30)
    at.number_input[0].set_value(99.0)
    at.button[0].click().run(timeout=30)

    at.radio[0].set_value("Historical mean").run(timeout=30)
    assert not at.exception
    assert [box.value for box in at.number_input] == [12.5] * 6
    # the plot belongs to the previous inputs until the new ones are submitted
    assert at.get("download_button") == []
