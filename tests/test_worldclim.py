"""Tests for the WorldClim downloader. The network is always mocked."""

from __future__ import annotations

import io
import os
import zipfile
from unittest.mock import MagicMock

import pytest
import requests

from ecomodels.core.worldclim import (
    DEFAULT_RETRY,
    create_session,
    download_worldclim,
    worldclim_url,
)


def _zip_bytes(names):
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as zf:
        for name in names:
            zf.writestr(name, b"fake tif content")
    return buffer.getvalue()


def _mock_session(payload):
    response = MagicMock()
    response.iter_content.return_value = [payload[:10], payload[10:]]
    response.raise_for_status.return_value = None
    session = MagicMock()
    session.get.return_value = response
    return session


class TestWorldclimUrl:
    """URL construction and validation."""

    def test_bio_10m(self) -> None:
        assert worldclim_url() == (
            "https://geodata.ucdavis.edu/climate/worldclim/2_1/base/wc2.1_10m_bio.zip"
        )

    def test_other_resolution(self) -> None:
        assert worldclim_url("tavg", "30s").endswith("wc2.1_30s_tavg.zip")

    def test_bad_resolution(self) -> None:
        with pytest.raises(ValueError):
            worldclim_url("bio", "1m")

    def test_bad_variable(self) -> None:
        with pytest.raises(ValueError):
            worldclim_url("ndvi", "10m")


class TestCreateSession:
    """Session with retry adapter."""

    def test_returns_session(self) -> None:
        assert isinstance(create_session(), requests.Session)

    def test_adapter_has_retry(self) -> None:
        adapter = create_session().get_adapter("https://geodata.ucdavis.edu")
        assert adapter.max_retries.total == DEFAULT_RETRY.total

    def test_user_agent(self) -> None:
        assert "ecomodels" in create_session().headers["User-Agent"]


class TestDownloadWorldclim:
    """Download, unzip and cache behaviour."""

    def test_downloads_and_extracts_tifs(self, tmp_path) -> None:
        payload = _zip_bytes([
            "wc2.1_10m_bio/wc2.1_10m_bio_10.tif",
            "wc2.1_10m_bio/wc2.1_10m_bio_2.tif",
            "wc2.1_10m_bio/wc2.1_10m_bio_1.tif",
            "readme.txt",
        ])
        session = _mock_session(payload)

        layers = download_worldclim(str(tmp_path), session=session)

        session.get.assert_called_once()
        assert session.get.call_args[0][0] == worldclim_url("bio", "10m")
        assert [os.path.basename(p) for p in layers] == [
            "wc2.1_10m_bio_1.tif",
            "wc2.1_10m_bio_2.tif",
            "wc2.1_10m_bio_10.tif",
        ]
        assert not (tmp_path / "readme.txt").exists()
        assert not (tmp_path / "wc2.1_10m_bio.zip.part").exists()

    def test_existing_layers_skip_network(self, tmp_path) -> None:
        (tmp_path / "wc2.1_10m_bio_1.tif").write_bytes(b"x")
        session = _mock_session(b"")

        layers = download_worldclim(str(tmp_path), session=session)

        session.get.assert_not_called()
        assert len(layers) == 1

    def test_http_error_propagates(self, tmp_path) -> None:
        session = _mock_session(b"")
        session.get.return_value.raise_for_status.side_effect = requests.HTTPError("404")
        with pytest.raises(requests.HTTPError):
            download_worldclim(str(tmp_path), session=session)

    def test_archive_without_tifs_raises(self, tmp_path) -> None:
        session = _mock_session(_zip_bytes(["readme.txt"]))
        with pytest.raises(ValueError):
            download_worldclim(str(tmp_path), session=session)
