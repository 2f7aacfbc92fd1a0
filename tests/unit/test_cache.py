"""Tests for the on-disk asset cache."""

import os

import requests

from conftest import FakeResponse
from xbox_cache import AssetCache

URL = "https://images.example/icon.png"


class TestAssetCache:

    def test_path_scheme(self, http, tmp_path):
        """Files are named obs_achievement_tracker_<type>_<id>.png."""
        cache = AssetCache(http, str(tmp_path))
        assert cache.path_for("achievement_icon", "scid_1") == \
            os.path.join(str(tmp_path), "obs_achievement_tracker_achievement_icon_scid_1.png")

    def test_second_download_is_a_cache_hit(self, http, fake_session, tmp_path):
        """Two sequential downloads cause exactly one network fetch."""
        fake_session.route("GET", URL, FakeResponse(200, content=b"\x89PNG"))
        cache = AssetCache(http, str(tmp_path))

        first = cache.download(URL, "gamerpic", "1")
        second = cache.download(URL, "gamerpic", "1")

        assert first == second
        assert len(fake_session.calls_to(URL)) == 1
        with open(first, "rb") as f:
            assert f.read() == b"\x89PNG"

    def test_http_error_returns_none(self, http, fake_session, tmp_path):
        """A failed fetch leaves no file behind."""
        fake_session.route("GET", URL, FakeResponse(404, {"error": "gone"}))
        cache = AssetCache(http, str(tmp_path))
        assert cache.download(URL, "gamerpic", "1") is None
        assert not cache.contains("gamerpic", "1")

    def test_network_error_returns_none(self, http, fake_session, tmp_path):
        """Transport failures are reported as a miss."""
        fake_session.route("GET", URL, requests.ConnectionError("down"))
        assert AssetCache(http, str(tmp_path)).download(URL, "gamerpic", "1") is None

    def test_empty_url_returns_none(self, http, tmp_path):
        """Nothing to fetch without a URL."""
        assert AssetCache(http, str(tmp_path)).download("", "gamerpic", "1") is None
