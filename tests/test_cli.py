"""Tests for the command-line interface."""

from __future__ import annotations

import argparse
import json
import os

import pytest

from ecomodels.cli.ecomodels_cli import create_parser, main


class TestCreateParser:
    """Argument parsing."""

    def test_creates_parser(self) -> None:
        parser = create_parser()
        assert isinstance(parser, argparse.ArgumentParser)
        assert parser.prog == "ecomodels"

    def test_version(self) -> None:
        with pytest.raises(SystemExit):
            create_parser().parse_args(["--version"])

    def test_sdm_options(self) -> None:
        args = create_parser().parse_args([
            "sdm", "--csv", "occ.csv", "--download", "--res", "5m",
            "--extent", "10", "40", "30", "60", "--histograms", "--no-maps",
        ])
        assert args.command == "sdm"
        assert args.IN_CSV == "occ.csv"
        assert args.DOWNLOAD is True
        assert args.WORLDCLIM_RES == "5m"
        assert args.EXTENT == [10.0, 40.0, 30.0, 60.0]
        assert args.DO_GISTO == 1
        assert args.draw is False

    def test_sdm_defaults_are_none(self) -> None:
        args = create_parser().parse_args(["sdm", "--csv", "occ.csv"])
        assert args.DOWNLOAD is None
        assert args.IN_MODEL is None
        assert args.draw is True

    def test_bad_resolution(self) -> None:
        with pytest.raises(SystemExit):
            create_parser().parse_args(["sdm", "--res", "1m"])

    def test_timeseries_options(self) -> None:
        args = create_parser().parse_args(["timeseries", "--csv", "n.csv", "--column", "evi", "--order", "3"])
        assert args.VALUE_COL == "evi"
        assert args.AR_ORDER == 3


class TestMain:
    """Exit codes."""

    def test_no_command(self, capsys) -> None:
        assert main([]) == 0
        assert "ecomodels" in capsys.readouterr().out

    def test_sdm_without_csv(self, capsys) -> None:
        assert main(["sdm"]) == 1
        assert "CSV" in capsys.readouterr().err

    def test_sdm_missing_csv_file(self, tmp_path, capsys) -> None:
        assert main(["sdm", "--csv", "missing.csv", "--output", str(tmp_path)]) == 1
        assert "missing.csv" in capsys.readouterr().err

    def test_sdm_run(self, tmp_path, capsys, occurrence_csv, predictor_dir) -> None:
        out = tmp_path / "out"
        code = main(["sdm", "--csv", occurrence_csv, "--rasters", predictor_dir, "--output", str(out),
                     "--extent", "10", "40", "30", "60", "--no-maps"])
        assert code == 0
        assert "AUC:" in capsys.readouterr().out
        with open(os.path.join(out, "1", "report_1.json"), encoding="utf-8") as f:
            report = json.load(f)
        assert report["predictors"] == ["wc2.1_10m_bio_1", "wc2.1_10m_bio_12"]
        assert os.path.isfile(os.path.join(out, "1", "suitability_1.tif"))
        assert not os.path.exists(os.path.join(out, "1", "suitability_1.jpg"))

    def test_timeseries_run(self, tmp_path, ndvi_csv) -> None:
        out = tmp_path / "out"
        code = main(["timeseries", "--csv", ndvi_csv, "--id", "cli", "--output", str(out), "--no-plots"])
        assert code == 0
        with open(os.path.join(out, "cli", "report_cli.json"), encoding="utf-8") as f:
            assert json.load(f)["best_model"] == "AR(2)"

    def test_timeseries_config_file(self, tmp_path, ndvi_csv) -> None:
        config = tmp_path / "params.json"
        config.write_text(json.dumps({"IN_CSV": ndvi_csv, "OUTPUT_DIR": str(tmp_path / "out"), "AR_ORDER": 1}))
        assert main(["timeseries", "--config", str(config), "--no-plots"]) == 0
        assert os.path.isfile(tmp_path / "out" / "1" / "models_1.csv")

    def test_timeseries_missing_file(self, tmp_path) -> None:
        assert main(["timeseries", "--csv", str(tmp_path / "none.csv"), "--output", str(tmp_path)]) == 1
