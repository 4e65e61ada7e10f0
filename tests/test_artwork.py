import asyncio

import pytest

from sonos_relay.services import artwork
from sonos_relay.utils.http_client import HttpError, ResourceFetchError

FALLBACK = "icons/icon128.png"


class TestToDataUrl:
    def test_encodes_image(self):
        assert artwork.to_data_url(b"\xff\xd8", "image/png") == "data:image/png;base64,/9g="

    @pytest.mark.parametrize("content_type", ["application/octet-stream", "text/html", ""])
    def test_non_image_type_defaults_to_jpeg(self, content_type):
        assert artwork.to_data_url(b"x", content_type).startswith("data:image/jpeg;base64,")


class TestResolveArtwork:
    def _resolve(self, monkeypatch, image_url, result):
        requested = []

        async def fake_fetch(session, url, *, timeout):
            requested.append((url, timeout))
            if isinstance(result, Exception):
                raise result
            return result

        monkeypatch.setattr(artwork, "fetch_bytes", fake_fetch)
        url = asyncio.run(artwork.resolve_artwork(None, image_url, FALLBACK, timeout=1.5))
        return url, requested

    def test_inlines_fetched_image(self, monkeypatch):
        url, requested = self._resolve(monkeypatch, "http://192.168.1.20/a.jpg", (b"abc", "image/jpeg"))
        assert url == "data:image/jpeg;base64,YWJj"
        assert requested == [("http://192.168.1.20/a.jpg", 1.5)]

    @pytest.mark.parametrize("error", [
        ResourceFetchError("timeout"),
        HttpError(404, "not found"),
    ])
    def test_fetch_failure_falls_back(self, monkeypatch, error):
        url, _ = self._resolve(monkeypatch, "http://192.168.1.20/a.jpg", error)
        assert url == FALLBACK

    def test_empty_body_falls_back(self, monkeypatch):
        url, _ = self._resolve(monkeypatch, "http://192.168.1.20/a.jpg", (b"", "image/jpeg"))
        assert url == FALLBACK

    @pytest.mark.parametrize("image_url", [None, ""])
    def test_missing_url_skips_fetch(self, monkeypatch, image_url):
        url, requested = self._resolve(monkeypatch, image_url, (b"abc", "image/jpeg"))
        assert url == FALLBACK
        assert requested == []
