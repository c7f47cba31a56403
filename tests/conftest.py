"""Shared fixtures: synthetic GeoTIFF predictors, occurrence tables and NDVI series."""

from __future__ import annotations

import numpy as np
import pandas as pd
import pytest
import rasterio
from rasterio.transform import from_origin


def _write_raster(path, data, transform, crs="EPSG:4326", nodata=None):
    profile = {
        "driver": "GTiff",
        "height": data.shape[0],
        "width": data.shape[1],
        "count": 1,
        "dtype": "float32",
        "crs": crs,
        "transform": transform,
    }
    if nodata is not None:
        profile["nodata"] = nodata
    with rasterio.open(path, "w", **profile) as dst:
        dst.write(data.astype("float32"), 1)
    return str(path)


@pytest.fixture
def make_raster():
    """Factory writing a single-band float32 GeoTIFF."""
    return _write_raster


@pytest.fixture
def grid_raster(tmp_path, make_raster):
    """10x10 raster, origin (0, 10), 1 degree pixels, value = row * 10 + col."""
    data = np.arange(100, dtype="float32").reshape(10, 10)
    path = make_raster(tmp_path / "grid.tif", data, from_origin(0, 10, 1, 1))
    return path, data


@pytest.fixture
def predictor_dir(tmp_path, make_raster):
    """
    Two bioclim-like layers on a 40x40 grid covering lon 10..30, lat 40..60 (0.5 degree).
    bio_1 grows with longitude, bio_12 with latitude; the top-left 3x3 block is nodata.
    """
    raw = tmp_path / "raw"
    raw.mkdir()
    rng = np.random.default_rng(0)
    transform = from_origin(10, 60, 0.5, 0.5)
    rows, cols = np.mgrid[0:40, 0:40]
    bio_1 = cols * 0.5 + rng.normal(0, 1.0, (40, 40))
    bio_12 = 400 + (40 - rows) * 10 + rng.normal(0, 20.0, (40, 40))
    bio_1[:3, :3] = -9999
    bio_12[:3, :3] = -9999
    make_raster(raw / "wc2.1_10m_bio_1.tif", bio_1, transform, nodata=-9999)
    make_raster(raw / "wc2.1_10m_bio_12.tif", bio_12, transform, nodata=-9999)
    return str(raw)


@pytest.fixture
def occurrence_csv(tmp_path):
    """GBIF-like tab separated export: 40 records in the warm eastern half, plus junk rows."""
    rng = np.random.default_rng(1)
    n = 40
    df = pd.DataFrame({
        "gbifID": np.arange(n),
        "species": "Parnassius apollo",
        "decimalLongitude": rng.uniform(20.0, 29.9, n).round(4),
        "decimalLatitude": rng.uniform(41.0, 59.0, n).round(4),
        "coordinateUncertaintyInMeters": 30,
        "collectionCode": "OBS",
    })
    junk = pd.DataFrame({
        "gbifID": [100, 101, 102],
        "species": "Parnassius apollo",
        "decimalLongitude": [25.0, np.nan, 26.0],
        "decimalLatitude": [50.0, 50.0, 51.0],
        "coordinateUncertaintyInMeters": [5000, 10, 10],
        "collectionCode": ["OBS", "OBS", "EOA"],
    })
    path = tmp_path / "occurrences.csv"
    pd.concat([df, junk], ignore_index=True).to_csv(path, sep="\t", index=False)
    return str(path)


def simulate_ar2(n=240, const=0.5, phi=(0.6, -0.3), sigma=0.05, seed=7):
    rng = np.random.default_rng(seed)
    y = np.full(n + 100, const)
    e = rng.normal(0, sigma, n + 100)
    for t in range(2, n + 100):
        y[t] = const + phi[0] * (y[t - 1] - const) + phi[1] * (y[t - 2] - const) + e[t]
    return y[100:]


@pytest.fixture
def ndvi_series():
    values = simulate_ar2()
    index = pd.date_range("2000-01-01", periods=len(values), freq="MS", name="month")
    return pd.Series(values, index=index, name="ndvi")


@pytest.fixture
def ndvi_csv(tmp_path, ndvi_series):
    """Monthly NDVI with a rain column; dates are mid-month."""
    rng = np.random.default_rng(3)
    df = pd.DataFrame({
        "date": (ndvi_series.index + pd.Timedelta(days=14)).strftime("%Y-%m-%d"),
        "ndvi": ndvi_series.values,
        "rain": rng.gamma(2.0, 30.0, len(ndvi_series)),
    })
    path = tmp_path / "ndvi.csv"
    df.to_csv(path, index=False)
    return str(path)
