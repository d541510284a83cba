"""Dataset download helpers.

Statistics Canada publishes every table as a zipped CSV keyed by its product id
(``14-10-0287-01`` -> ``14100287-eng.zip``). The zip carries two files: the data
(``14100287.csv``) and its metadata (``14100287_MetaData.csv``).
"""

from __future__ import annotations

import logging
import re
import zipfile
from pathlib import Path
from typing import Iterable, List, Optional
from urllib.parse import urlparse

import pandas as pd
import requests
from tqdm.auto import tqdm


LOGGER = logging.getLogger("canstats.download")

STATCAN_CSV_BASE = "https://www150.statcan.gc.ca/n1/tbl/csv"
DEFAULT_HEADERS = {"User-Agent": "canstats/0.3 (+https://www150.statcan.gc.ca)"}


class DownloadError(RuntimeError):
    """Raised when a remote file cannot be fetched."""


def download_file(
    url: str,
    dest: Path,
    *,
    overwrite: bool = False,
    timeout: float = 60,
    chunk_size: int = 1 << 20,
    progress: bool = True,
) -> Path:
    dest = Path(dest)
    if dest.exists() and not overwrite:
        LOGGER.info("Using cached %s", dest)
        return dest
    dest.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = dest.with_name(dest.name + ".part")

    LOGGER.info("Downloading %s", url)
    try:
        response = requests.get(url, headers=DEFAULT_HEADERS, stream=True, timeout=timeout)
    except requests.RequestException as exc:
        raise DownloadError(f"Request for {url} failed: {exc}") from exc

    try:
        if not 200 <= response.status_code < 300:
            raise DownloadError(f"Failed to fetch {url}: HTTP {response.status_code}")
        total = int(response.headers.get("content-length") or 0)
        bar = tqdm(total=total, unit="B", unit_scale=True, desc=dest.name, disable=not progress or total == 0)
        try:
            with tmp_path.open("wb") as fh:
                for chunk in response.iter_content(chunk_size=chunk_size):
                    if chunk:
                        fh.write(chunk)
                        bar.update(len(chunk))
        except requests.RequestException as exc:
            tmp_path.unlink(missing_ok=True)
            raise DownloadError(f"Download of {url} interrupted: {exc}") from exc
        finally:
            bar.close()
    finally:
        response.close()

    tmp_path.replace(dest)
    LOGGER.info("Saved %s (%d bytes)", dest, dest.stat().st_size)
    return dest


def extract_zip(zip_path: Path, dest_dir: Path, members: Optional[Iterable[str]] = None) -> List[Path]:
    """Extract ``zip_path`` into ``dest_dir`` and return the extracted file paths."""
    zip_path = Path(zip_path)
    dest_dir = Path(dest_dir)
    dest_dir.mkdir(parents=True, exist_ok=True)
    root = dest_dir.resolve()

    extracted: List[Path] = []
    with zipfile.ZipFile(zip_path) as zf:
        names = zf.namelist()
        wanted = list(members) if members is not None else names
        missing = [m for m in wanted if m not in names]
        if missing:
            raise KeyError(f"members not found in {zip_path.name}: {missing}")
        for name in wanted:
            target = (dest_dir / name).resolve()
            if root != target and root not in target.parents:
                raise ValueError(f"Refusing to extract {name!r} outside {dest_dir}")
            zf.extract(name, dest_dir)
            if not name.endswith("/"):
                extracted.append(target)
    LOGGER.debug("Extracted %d files from %s", len(extracted), zip_path)
    return extracted


def download_and_extract(url: str, dest_dir: Path, *, overwrite: bool = False) -> List[Path]:
    dest_dir = Path(dest_dir)
    filename = Path(urlparse(url).path).name or "download.zip"
    archive = download_file(url, dest_dir / filename, overwrite=overwrite)
    return extract_zip(archive, dest_dir)


def normalize_product_id(product_id: str | int) -> str:
    """``"14-10-0287-01"``, ``1410028701`` and ``"14100287"`` all map to ``"14100287"``."""
    digits = re.sub(r"\D", "", str(product_id))
    if len(digits) < 8:
        raise ValueError(f"StatCan product id needs at least 8 digits: {product_id!r}")
    return digits[:8]


def _language_suffix(language: str) -> str:
    if language not in {"en", "fr"}:
        raise ValueError("language must be 'en' or 'fr'")
    return "eng" if language == "en" else "fra"


def statcan_table_url(product_id: str | int, language: str = "en") -> str:
    return f"{STATCAN_CSV_BASE}/{normalize_product_id(product_id)}-{_language_suffix(language)}.zip"


def statcan_cache_dir(product_id: str | int, cache_dir: Path, language: str = "en") -> Path:
    """English and French archives share file names, so each gets its own folder."""
    return Path(cache_dir) / f"{normalize_product_id(product_id)}-{_language_suffix(language)}"


def fetch_statcan_table(
    product_id: str | int,
    cache_dir: Path,
    *,
    language: str = "en",
    overwrite: bool = False,
) -> pd.DataFrame:
    table_id = normalize_product_id(product_id)
    table_dir = statcan_cache_dir(table_id, cache_dir, language)
    csv_path = table_dir / f"{table_id}.csv"
    if overwrite or not csv_path.exists():
        download_and_extract(statcan_table_url(table_id, language), table_dir, overwrite=overwrite)
        if not csv_path.exists():
            raise DownloadError(f"{table_id}.csv not present in StatCan archive for {product_id}")
    LOGGER.info("Reading StatCan table %s", table_id)
    return pd.read_csv(csv_path, low_memory=False)


__all__ = [
    "DownloadError",
    "download_file",
    "extract_zip",
    "download_and_extract",
    "normalize_product_id",
    "statcan_table_url",
    "statcan_cache_dir",
    "fetch_statcan_table",
]
