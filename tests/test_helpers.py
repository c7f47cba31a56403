"""Tests for small helpers, config loading and plotting utilities."""

from __future__ import annotations

import json
import math

import matplotlib.pyplot as plt
import numpy as np
import pytest
import rasterio
from rasterio.transform import from_origin

from ecomodels.config import DEFAULT_SDM_CONFIG, DEFAULT_TS_CONFIG, load_config
from ecomodels.core.ts_modeling import fit_ar_model
from ecomodels.core.utils.gis_utils import read_and_to_3857
from ecomodels.core.utils.helpers import (
    format_float,
    get_predictor_stats,
    natural_sort_key,
    round_to_significant_figures,
    save_geotiff,
    write_json_report,
)
from ecomodels.core.utils.plot_utils import (
    create_beautiful_histogram,
    describe_band,
    draw_binary_map,
    draw_map,
    plot_model_fit,
    plot_residual_diagnostics,
    plot_timeseries,
)


class TestNumbers:
    """Rounding and formatting."""

    def test_significant_figures(self) -> None:
        assert round_to_significant_figures(1029.6, 3) == pytest.approx(1030.0)
        assert round_to_significant_figures(340.12, 2) == pytest.approx(340.0)
        assert round_to_significant_figures(0.0012345, 2) == pytest.approx(0.0012)

    def test_zero_and_nan_unchanged(self) -> None:
        assert round_to_significant_figures(0) == 0
        assert math.isnan(round_to_significant_figures(float("nan")))

    def test_bad_digits(self) -> None:
        with pytest.raises(ValueError):
            round_to_significant_figures(1.0, 0)

    def test_format_float(self) -> None:
        assert format_float(1.5) == "1.5"
        assert format_float(2.0) == "2"
        assert format_float(None) == "NA"
        assert format_float(float("nan")) == "NA"

    def test_predictor_stats_ignore_nan(self) -> None:
        stats = get_predictor_stats(np.array([1.0, 2.0, 3.0, np.nan]))
        assert stats["mean"] == pytest.approx(2.0)
        assert stats["min"] == 1.0
        assert stats["max"] == 3.0

    def test_predictor_stats_empty(self) -> None:
        stats = get_predictor_stats(np.array([np.nan]))
        assert all(np.isnan(v) for v in stats.values())

    def test_natural_sort(self) -> None:
        names = ["bio_10.tif", "bio_2.tif", "bio_1.tif"]
        assert sorted(names, key=natural_sort_key) == ["bio_1.tif", "bio_2.tif", "bio_10.tif"]


class TestFiles:
    """GeoTIFF and JSON outputs."""

    def test_save_geotiff(self, tmp_path) -> None:
        profile = {"driver": "GTiff", "height": 2, "width": 3, "count": 4, "dtype": "uint8",
                   "crs": "EPSG:4326", "transform": from_origin(0, 2, 1, 1)}
        data = np.array([[0.1, np.nan, 0.3], [0.4, 0.5, 0.6]])
        path = str(tmp_path / "sub" / "out.tif")
        save_geotiff(path, data, profile)
        with rasterio.open(path) as ds:
            assert ds.count == 1
            assert ds.dtypes[0] == "float32"
            band = ds.read(1)
        assert np.isnan(band[0, 1])
        assert band[1, 2] == pytest.approx(0.6)

    def test_write_json_report_with_numpy(self, tmp_path) -> None:
        path = write_json_report(str(tmp_path / "r" / "report.json"),
                                 {"n": np.int64(3), "auc": np.float32(0.5), "v": np.arange(2)})
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
        assert data == {"n": 3, "auc": 0.5, "v": [0, 1]}


class TestConfig:
    """Configuration layering."""

    def test_defaults(self) -> None:
        config = load_config()
        assert config == DEFAULT_SDM_CONFIG
        assert config is not DEFAULT_SDM_CONFIG

    def test_file_and_overrides(self, tmp_path) -> None:
        path = tmp_path / "params.json"
        path.write_text(json.dumps({"AR_ORDER": 3, "FORECAST_STEPS": 6}))
        config = load_config(str(path), defaults=DEFAULT_TS_CONFIG,
                             overrides={"AR_ORDER": 1, "VALUE_COL": None})
        assert config["AR_ORDER"] == 1
        assert config["FORECAST_STEPS"] == 6
        assert config["VALUE_COL"] == "ndvi"

    def test_missing_file(self, tmp_path) -> None:
        with pytest.raises(FileNotFoundError):
            load_config(str(tmp_path / "nope.json"))


class TestPlots:
    """Maps, histograms and time-series plots are written to disk."""

    @staticmethod
    def _suitability_tif(tmp_path):
        data = np.linspace(0, 1, 400, dtype="float32").reshape(20, 20)
        data[0, 0] = np.nan
        profile = {"driver": "GTiff", "height": 20, "width": 20, "count": 1, "dtype": "float32",
                   "crs": "EPSG:4326", "transform": from_origin(20, 55, 0.5, 0.5), "nodata": np.nan}
        path = str(tmp_path / "suitability.tif")
        save_geotiff(path, data, profile)
        return path

    def test_read_and_to_3857(self, tmp_path) -> None:
        data, transform, width, height = read_and_to_3857(self._suitability_tif(tmp_path))
        assert data.shape == (height, width)
        assert transform.c > 2_000_000  # 20 degrees east in metres

    def test_draw_maps(self, tmp_path) -> None:
        tif = self._suitability_tif(tmp_path)
        out = draw_map(tif, str(tmp_path / "map.jpg"), "test", [22.0], [50.0])
        assert (tmp_path / "map.jpg").stat().st_size > 0
        assert out.endswith("map.jpg")
        draw_binary_map(tif, str(tmp_path / "binary.jpg"), lons=[22.0], lats=[50.0], threshold=0.5)
        assert (tmp_path / "binary.jpg").exists()

    def test_histogram(self) -> None:
        fig, ax = plt.subplots()
        stats = create_beautiful_histogram(ax, np.array([1.0, 2.0, 2.5, np.nan]), "wc2.1_10m_bio_1",
                                           10, np.linspace(0, 5, 100))
        plt.close(fig)
        assert stats["mean"] == pytest.approx(1.833, abs=1e-3)

    def test_describe_band(self) -> None:
        assert describe_band("wc2.1_10m_bio_12").startswith("BIO12")
        assert describe_band("elevation") == "Значения elevation"

    def test_timeseries_plots(self, tmp_path, ndvi_series) -> None:
        fit = fit_ar_model(ndvi_series, order=1)
        plot_timeseries(ndvi_series.to_frame(), str(tmp_path / "series.png"))
        plot_model_fit(ndvi_series, fit, str(tmp_path / "fit.png"), forecast=fit.forecast(3))
        plot_residual_diagnostics(fit, str(tmp_path / "resid.png"), nlags=12)
        for name in ("series.png", "fit.png", "resid.png"):
            assert (tmp_path / name).exists()
