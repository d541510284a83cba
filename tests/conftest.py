from __future__ import annotations

import io
import zipfile
from pathlib import Path

import numpy as np
import pandas as pd
import pytest


class FakeResponse:
    def __init__(self, content: bytes = b"", status_code: int = 200) -> None:
        self.content = content
        self.status_code = status_code
        self.headers = {"content-length": str(len(content))}
        self.closed = False

    def iter_content(self, chunk_size: int = 1024):
        for start in range(0, len(self.content), chunk_size):
            yield self.content[start : start + chunk_size]

    def close(self) -> None:
        self.closed = True


def make_zip(files: dict[str, str]) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as zf:
        for name, text in files.items():
            zf.writestr(name, text)
    return buffer.getvalue()


@pytest.fixture
def fake_response():
    return FakeResponse


@pytest.fixture
def statcan_csv() -> str:
    return (
        "REF_DATE,GEO,DGUID,Products and product groups,UOM,UOM_ID,SCALAR_FACTOR,SCALAR_ID,VECTOR,COORDINATE,VALUE,STATUS,SYMBOL,TERMINATED,DECIMALS\n"
        "2023-01,Canada,2016A000011124,All-items,2002=100,17,units,0,v41690973,2.2,153.9,,,,1\n"
        "2023-02,Canada,2016A000011124,All-items,2002=100,17,units,0,v41690973,2.2,154.5,,,,1\n"
        "2023-03,Canada,2016A000011124,All-items,2002=100,17,units,0,v41690973,2.2,155.3,,,,1\n"
        "2023-01,Ontario,2016A000235,All-items,2002=100,17,units,0,v41691783,7.2,152.0,,,,1\n"
        "2023-02,Ontario,2016A000235,All-items,2002=100,17,units,0,v41691783,7.2,,..,,,1\n"
        "2023-01,Canada,2016A000011124,Food,2002=100,17,units,0,v41690974,2.3,186.0,,,,1\n"
    )


@pytest.fixture
def monthly_series() -> pd.Series:
    rng = np.random.default_rng(0)
    n = 72
    index = pd.date_range("2015-01-01", periods=n, freq="MS")
    t = np.arange(n)
    values = 100 + 0.5 * t + 8 * np.sin(2 * np.pi * t / 12) + rng.normal(0, 1.0, n)
    return pd.Series(values, index=index, name="value")


@pytest.fixture
def project_root() -> Path:
    return Path(__file__).resolve().parents[1]
