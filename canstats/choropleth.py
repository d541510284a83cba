"""Choropleth maps of LICO (Low-Income Cut-Off) measures by Forward Sortation Area.

An FSA is the first three characters of a Canadian postal code. Boundaries come
from the Statistics Canada census cartographic FSA file, whose identifier column
is ``CFSAUID``.
"""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import Dict, Iterable, Optional

os.environ.setdefault("MPLBACKEND", "Agg")

import geopandas as gpd
import matplotlib

matplotlib.use("Agg", force=True)
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd

from .data_loader import read_table
from .download import download_and_extract


LOGGER = logging.getLogger("canstats.choropleth")

FSA_BOUNDARY_URL = (
    "https://www12.statcan.gc.ca/census-recensement/2021/geo/sip-pis/boundary-limites/files-fichiers/lfsa000b21a_e.zip"
)
FSA_ID_COLUMN = "CFSAUID"

_FSA_RE = re.compile(r"^[ABCEGHJKLMNPRSTVXY]\d[A-Z]$")

PROVINCE_BY_LETTER: Dict[str, str] = {
    "A": "NL",
    "B": "NS",
    "C": "PE",
    "E": "NB",
    "G": "QC",
    "H": "QC",
    "J": "QC",
    "K": "ON",
    "L": "ON",
    "M": "ON",
    "N": "ON",
    "P": "ON",
    "R": "MB",
    "S": "SK",
    "T": "AB",
    "V": "BC",
    "X": "NT",  # shared with NU
    "Y": "YT",
}


def normalize_fsa(value: object) -> Optional[str]:
    """``"m5v 2t6"`` -> ``"M5V"``; anything that is not a valid FSA -> None."""
    if value is None or (isinstance(value, float) and np.isnan(value)):
        return None
    text = re.sub(r"\s+", "", str(value)).upper()[:3]
    return text if _FSA_RE.match(text) else None


def province_for_fsa(fsa: str) -> Optional[str]:
    normalized = normalize_fsa(fsa)
    return PROVINCE_BY_LETTER.get(normalized[0]) if normalized else None


def _find_shapefile(paths: Iterable[Path]) -> Path:
    shapefiles = [p for p in paths if p.suffix.lower() == ".shp"]
    if not shapefiles:
        raise FileNotFoundError("no .shp file in boundary archive")
    return shapefiles[0]


def load_boundaries(
    path: Path,
    *,
    id_col: str = FSA_ID_COLUMN,
    to_crs: Optional[str] = "EPSG:4326",
    provinces: Optional[Iterable[str]] = None,
) -> gpd.GeoDataFrame:
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Boundary file not found: {path}")
    target = f"zip://{path}" if path.suffix.lower() == ".zip" else str(path)
    gdf = gpd.read_file(target)
    if id_col not in gdf.columns:
        raise KeyError(f"boundary file has no '{id_col}' column (columns: {list(gdf.columns)})")
    gdf = gdf.rename(columns={id_col: "fsa"})
    gdf["fsa"] = gdf["fsa"].map(normalize_fsa)
    if provinces:
        wanted = {p.upper() for p in provinces}
        gdf = gdf[gdf["fsa"].map(province_for_fsa).isin(wanted)]
    if to_crs and gdf.crs is not None:
        gdf = gdf.to_crs(to_crs)
    LOGGER.info("Loaded %d boundaries from %s", len(gdf), path.name)
    return gdf.reset_index(drop=True)


def fetch_boundaries(cache_dir: Path, *, url: str = FSA_BOUNDARY_URL, **kwargs) -> gpd.GeoDataFrame:
    files = download_and_extract(url, Path(cache_dir))
    return load_boundaries(_find_shapefile(files), **kwargs)


def simplify_boundaries(gdf: gpd.GeoDataFrame, tolerance: float, *, preserve_topology: bool = True) -> gpd.GeoDataFrame:
    """Douglas-Peucker simplification; ``tolerance`` is in the units of the layer's CRS."""
    if tolerance < 0:
        raise ValueError("tolerance must be non-negative")
    out = gdf.copy()
    if tolerance > 0:
        out["geometry"] = out.geometry.simplify(tolerance, preserve_topology=preserve_topology)
    return out


def prepare_fill_table(df: pd.DataFrame, *, fsa_col: str, value_col: str, agg: str = "mean") -> pd.DataFrame:
    for column in (fsa_col, value_col):
        if column not in df.columns:
            raise KeyError(f"column '{column}' not in table")
    table = pd.DataFrame({"fsa": df[fsa_col].map(normalize_fsa), value_col: pd.to_numeric(df[value_col], errors="coerce")})
    invalid = int(table["fsa"].isna().sum())
    if invalid:
        LOGGER.warning("Dropping %d rows with invalid FSA codes", invalid)
    table = table.dropna(subset=["fsa"])
    return table.groupby("fsa", as_index=False)[value_col].agg(agg)


def join_values(gdf: gpd.GeoDataFrame, table: pd.DataFrame, *, value_col: str, id_col: str = "fsa") -> gpd.GeoDataFrame:
    joined = gdf.merge(table[[id_col, value_col]], on=id_col, how="left")
    unmatched = int(joined[value_col].isna().sum())
    if unmatched:
        LOGGER.info("%d of %d areas have no %s value", unmatched, len(joined), value_col)
    return joined


def classify(values: pd.Series, *, scheme: str = "quantiles", k: int = 5) -> pd.Series:
    """Bin values into at most ``k`` classes. NaN stays NaN."""
    if k < 2:
        raise ValueError("k must be at least 2")
    values = pd.to_numeric(pd.Series(values), errors="coerce")
    if values.dropna().nunique() < 2:
        return pd.Series(pd.Categorical([None if pd.isna(v) else f"{v:g}" for v in values]), index=values.index)
    if scheme == "quantiles":
        return pd.qcut(values, q=k, duplicates="drop", precision=2)
    if scheme == "equal_interval":
        return pd.cut(values, bins=k, include_lowest=True, precision=2)
    raise ValueError(f"unknown classification scheme '{scheme}'")


def plot_choropleth(
    gdf: gpd.GeoDataFrame,
    column: str,
    *,
    title: str = "",
    cmap: str = "OrRd",
    scheme: Optional[str] = None,
    k: int = 5,
    save_path: Optional[Path] = None,
) -> plt.Figure:
    fig, ax = plt.subplots(figsize=(10, 10))
    data = gdf
    plot_column = column
    categorical = False
    categories = None
    if scheme:
        classes = classify(gdf[column], scheme=scheme, k=k)
        # bin order, not string order, drives the colour ramp and the legend
        categories = [str(c) for c in classes.cat.categories]
        data = gdf.copy()
        data["_class"] = classes.astype(str).where(classes.notna(), np.nan)
        plot_column = "_class"
        categorical = True
    data.plot(
        column=plot_column,
        ax=ax,
        cmap=cmap,
        categorical=categorical,
        categories=categories,
        legend=True,
        linewidth=0.1,
        edgecolor="white",
        missing_kwds={"color": "lightgrey", "label": "No data"},
    )
    ax.set_axis_off()
    if title:
        ax.set_title(title, fontsize=14, fontweight="bold")
    fig.tight_layout()
    if save_path:
        fig.savefig(save_path, dpi=200, bbox_inches="tight")
        plt.close(fig)
    return fig


def build_lico_map(map_cfg: Dict[str, object], base_dir: Path, *, save_path: Optional[Path] = None):
    """Read the LICO table, attach it to FSA boundaries and draw the map."""
    source = Path(str(map_cfg["source"]))
    table = read_table(source if source.is_absolute() else base_dir / source, sheet_name=map_cfg.get("sheet"))
    value_col = str(map_cfg["value_column"])
    fill = prepare_fill_table(table, fsa_col=str(map_cfg["fsa_column"]), value_col=value_col, agg=str(map_cfg.get("aggregate", "mean")))

    provinces = map_cfg.get("provinces")
    boundaries_path = map_cfg.get("boundaries")
    if boundaries_path:
        path = Path(str(boundaries_path))
        gdf = load_boundaries(path if path.is_absolute() else base_dir / path, id_col=str(map_cfg.get("id_column", FSA_ID_COLUMN)), provinces=provinces)
    else:
        cache = Path(str(map_cfg.get("cache_dir", base_dir / "data" / "boundaries")))
        gdf = fetch_boundaries(cache, url=str(map_cfg.get("boundary_url", FSA_BOUNDARY_URL)), provinces=provinces)

    gdf = simplify_boundaries(gdf, float(map_cfg.get("tolerance", 0.0)))
    joined = join_values(gdf, fill, value_col=value_col)
    fig = plot_choropleth(
        joined,
        value_col,
        title=str(map_cfg.get("title", f"{value_col} by FSA")),
        cmap=str(map_cfg.get("cmap", "OrRd")),
        scheme=map_cfg.get("scheme", "quantiles"),
        k=int(map_cfg.get("k", 5)),
        save_path=save_path,
    )
    return joined, fig


__all__ = [
    "FSA_BOUNDARY_URL",
    "normalize_fsa",
    "province_for_fsa",
    "load_boundaries",
    "fetch_boundaries",
    "simplify_boundaries",
    "prepare_fill_table",
    "join_values",
    "classify",
    "plot_choropleth",
    "build_lico_map",
]
