"""End-to-end tests for the SDM and NDVI time-series workflows on synthetic data."""

from __future__ import annotations

import json
import os
import shutil
import zipfile

import numpy as np
import pandas as pd
import pytest
from rasterio.transform import from_origin

from ecomodels import NDVITimeSeries, SDMError, SpeciesDistributionModel


@pytest.fixture
def sdm_config(tmp_path, occurrence_csv, predictor_dir):
    return {
        "IN_ID": "t1",
        "IN_CSV": occurrence_csv,
        "RAW_RASTER_DIR": predictor_dir,
        "OUTPUT_DIR": str(tmp_path / "out"),
        "EXTENT": (10, 40, 30, 60),
        "BG_MULT": 10,
        "BG_PC": 50,
        "BG_DISTANCE_MIN": 2,
        "BG_DISTANCE_MAX": 6,
    }


class TestSpeciesDistributionModel:
    """The full GLM workflow."""

    def test_full_run(self, sdm_config) -> None:
        jobs = {}
        sdm_config.update({"DO_GISTO": 1, "JOBS": jobs})
        model = SpeciesDistributionModel(sdm_config)
        report = model.run()

        run_dir = os.path.join(sdm_config["OUTPUT_DIR"], "t1")
        for name in ("suitability_t1.tif", "binary_t1.tif", "suitability_t1.jpg", "binary_t1.jpg",
                     "points_t1.csv", "coefficients_t1.csv", "report_t1.json"):
            assert os.path.isfile(os.path.join(run_dir, name)), name
        with zipfile.ZipFile(os.path.join(run_dir, "gistos", "histos.zip")) as zf:
            assert len(zf.namelist()) == 2

        assert jobs["t1"]["status"] == "done"
        assert jobs["t1"]["file"] == model.REPORT_JSON
        assert report["species"] == "Parnassius apollo"
        assert report["n_occurrences"] == 40
        assert 5 <= report["n_presence"] <= 40
        assert report["n_background"] == min(10000, 10 * report["n_presence"])
        assert report["evaluation"]["auc"] > 0.5
        assert report["confusion"]["threshold"] == report["evaluation"]["thresholds"]["spec_sens"]
        assert report["suitability"]["n_valid"] == 40 * 40 - 9

        with open(model.REPORT_JSON, encoding="utf-8") as f:
            assert json.load(f)["predictors"] == ["wc2.1_10m_bio_1", "wc2.1_10m_bio_12"]

    def test_point_table(self, sdm_config) -> None:
        model = SpeciesDistributionModel(sdm_config)
        model.run(draw=False)
        points = pd.read_csv(model.POINTS_CSV)
        assert list(points.columns) == ["lon", "lat", "pa", "wc2.1_10m_bio_1", "wc2.1_10m_bio_12"]
        assert points["pa"].sum() == model.n_presence
        assert points.notna().all().all()
        # presences and background never share a pixel
        keys = points.round(6).groupby(["lon", "lat"])["pa"].nunique()
        assert (keys == 1).all()

    def test_extent_from_points(self, sdm_config) -> None:
        sdm_config["EXTENT"] = None
        model = SpeciesDistributionModel(sdm_config)
        model.run(draw=False)
        min_lon, min_lat, max_lon, max_lat = model.extent
        assert min_lon <= model.occ["lon"].min() and max_lon >= model.occ["lon"].max()
        assert min_lat <= model.occ["lat"].min() and max_lat >= model.occ["lat"].max()
        assert model.W < 40

    def test_random_forest(self, sdm_config) -> None:
        sdm_config["IN_MODEL"] = "RandomForest"
        report = SpeciesDistributionModel(sdm_config).run(draw=False)
        assert report["model"] == "RandomForest"
        assert 0.0 <= report["suitability"]["suitable_fraction"] <= 1.0

    def test_too_few_presences(self, sdm_config, tmp_path) -> None:
        csv = tmp_path / "few.csv"
        csv.write_text("lon,lat\n20.1,50.1\n25.3,45.2\n")
        jobs = {}
        sdm_config.update({"IN_CSV": str(csv), "JOBS": jobs})
        with pytest.raises(SDMError):
            SpeciesDistributionModel(sdm_config).run()
        assert jobs["t1"]["status"] == "error"
        assert jobs["t1"]["error"]

    def test_unknown_threshold_method(self, sdm_config) -> None:
        sdm_config["THRESHOLD_METHOD"] = "median"
        with pytest.raises(ValueError):
            SpeciesDistributionModel(sdm_config).run(draw=False)

    def test_two_resolutions_in_raster_folder(self, sdm_config, predictor_dir, make_raster) -> None:
        transform = from_origin(10, 60, 0.25, 0.25)
        rows, cols = np.mgrid[0:80, 0:80]
        make_raster(os.path.join(predictor_dir, "wc2.1_5m_bio_1.tif"), cols * 0.25, transform)
        make_raster(os.path.join(predictor_dir, "wc2.1_5m_bio_12.tif"), 400 + (80 - rows) * 5.0, transform)

        sdm_config.update({"IN_ID": "fine", "WORLDCLIM_RES": "5m"})
        fine = SpeciesDistributionModel(sdm_config)
        fine.run(draw=False)
        assert fine.band_names == ["wc2.1_5m_bio_1", "wc2.1_5m_bio_12"]
        assert fine.W == 80

        # same output folder, other resolution: cropped layers are not mixed up
        sdm_config.update({"IN_ID": "coarse", "WORLDCLIM_RES": "10m"})
        coarse = SpeciesDistributionModel(sdm_config)
        coarse.run(draw=False)
        assert coarse.band_names == ["wc2.1_10m_bio_1", "wc2.1_10m_bio_12"]
        assert coarse.W == 40
        assert coarse.RASTER_DIR != fine.RASTER_DIR

    def test_other_raster_folder_is_cropped_again(self, sdm_config, tmp_path, predictor_dir) -> None:
        first = SpeciesDistributionModel(sdm_config)
        first.run(draw=False)

        other = tmp_path / "other"
        shutil.copytree(predictor_dir, other)
        sdm_config.update({"IN_ID": "t2", "RAW_RASTER_DIR": str(other)})
        second = SpeciesDistributionModel(sdm_config)
        second.run(draw=False)
        assert second.RASTER_DIR != first.RASTER_DIR

    def test_download_goes_to_resolution_folder(self, sdm_config, predictor_dir, tmp_path, monkeypatch) -> None:
        calls = []

        def fake_download(dest_dir, var, res):
            calls.append((dest_dir, var, res))
            shutil.copytree(predictor_dir, dest_dir)

        monkeypatch.setattr("ecomodels.sdm.download_worldclim", fake_download)
        rasters = str(tmp_path / "worldclim")
        sdm_config.update({"DOWNLOAD": True, "RAW_RASTER_DIR": rasters})
        model = SpeciesDistributionModel(sdm_config)
        model.run(draw=False)

        assert calls == [(os.path.join(rasters, "10m"), "bio", "10m")]
        assert model.band_names == ["wc2.1_10m_bio_1", "wc2.1_10m_bio_12"]

    def test_queued_status(self, sdm_config) -> None:
        jobs = {}
        sdm_config["JOBS"] = jobs
        SpeciesDistributionModel(sdm_config)
        assert jobs["t1"] == {"status": "queued", "file": None, "error": None}


class TestNDVITimeSeries:
    """MEAN vs AR(p) workflow."""

    def test_full_run(self, tmp_path, ndvi_csv) -> None:
        config = {"IN_ID": "ndvi", "IN_CSV": ndvi_csv, "FORECAST_STEPS": 6,
                  "OUTPUT_DIR": str(tmp_path / "out")}
        ts = NDVITimeSeries(config)
        report = ts.run()

        assert report["best_model"] == "AR(2)"
        assert report["n_months"] == 240
        assert report["missing"] == {"ndvi": 0}
        assert set(report["models"]) == {"MEAN", "AR(2)"}
        assert list(report["forecast"]) == ["2020-01", "2020-02", "2020-03", "2020-04", "2020-05", "2020-06"]
        for path in (ts.SERIES_JPG, ts.FIT_JPG, ts.RESIDUALS_JPG, ts.COMPARISON_CSV,
                     ts.FORECAST_CSV, ts.REPORT_JSON):
            assert os.path.isfile(path), path

    def test_exogenous_regressor(self, tmp_path, ndvi_csv) -> None:
        config = {"IN_CSV": ndvi_csv, "EXOG_COL": "rain", "AR_ORDER": 1, "FORECAST_STEPS": 3,
                  "OUTPUT_DIR": str(tmp_path / "out")}
        ts = NDVITimeSeries(config)
        report = ts.run(draw=False)
        assert ts.ar_fit.name == "AR(1)+rain"
        assert "forecast" not in report
        assert list(ts.df.columns) == ["ndvi", "rain"]
