"""Test configuration and fixtures"""

import asyncio
import base64
import json
import logging
import time
from typing import Any, Callable

import pytest

from music_catalog.core.http import HttpResponse


class FakeTransport:
    """
    In-memory Transport.

    Routes map an exact URL (no query string) to a list of responses served
    in order; the last one repeats. A response is a JSON body, an
    HttpResponse, or a callable taking the recorded call and returning one
    of those. Unknown URLs answer 404 with an empty body.
    """

    def __init__(self) -> None:
        self.routes: dict[str, list[Any]] = {}
        self.redirects: dict[str, str] = {}
        self.calls: list[dict[str, Any]] = []

    def add(self, url: str, *responses: Any) -> None:
        self.routes[url] = list(responses)

    def count(self, url: str) -> int:
        return sum(1 for call in self.calls if call["url"] == url)

    async def request(
        self,
        url: str,
        method: str = "GET",
        headers: dict | None = None,
        query: dict | None = None,
        json_body: Any = None,
        provider: str = "http",
    ) -> HttpResponse:
        call = {
            "url": url,
            "method": method,
            "headers": dict(headers or {}),
            "query": dict(query or {}),
            "json": json_body,
        }
        self.calls.append(call)
        await asyncio.sleep(0)

        responses = self.routes.get(url)
        if not responses:
            return HttpResponse(status_code=404, body=None, url=url)
        response = responses.pop(0) if len(responses) > 1 else responses[0]
        if callable(response):
            response = response(call)
        if isinstance(response, HttpResponse):
            return response
        return HttpResponse(status_code=200, body=response, url=url)

    async def resolve_redirect(self, url: str) -> str | None:
        self.calls.append({"url": url, "method": "REDIRECT"})
        return self.redirects.get(url)

    async def close(self) -> None:
        pass


class FakeClock:
    """Manual clock whose sleep() advances time instead of waiting."""

    def __init__(self, now: float = 1000.0) -> None:
        self.now = now
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, delay: float) -> None:
        self.sleeps.append(delay)
        self.now += delay
        await asyncio.sleep(0)


def make_jwt(expires_in: float = 3600) -> str:
    """Unsigned developer-token lookalike with an 'exp' claim."""
    def encode(part: dict) -> str:
        return base64.urlsafe_b64encode(json.dumps(part, separators=(",", ":")).encode()).decode().rstrip("=")

    header = encode({"alg": "ES256", "typ": "JWT", "kid": "WebPlayKid"})
    payload = encode({"iss": "AMPWebPlay", "exp": int(time.time() + expires_in)})
    return f"{header}.{payload}.signature"


@pytest.fixture
def transport():
    """Fresh in-memory transport"""
    return FakeTransport()


@pytest.fixture
def clock():
    """Fake monotonic clock with instant sleep"""
    return FakeClock()


@pytest.fixture
def deezer_track_data() -> Callable[..., dict]:
    """Factory for legacy API track payloads"""
    def build(track_id: int = 3135556, album_id: int = 302127, **overrides: Any) -> dict:
        data = {
            "id": track_id,
            "title": "Harder, Better, Faster, Stronger",
            "link": f"https://www.deezer.com/track/{track_id}",
            "duration": 224,
            "track_position": 4,
            "disk_number": 1,
            "rank": 956167,
            "release_date": "2001-03-07",
            "explicit_lyrics": False,
            "isrc": "GBDUW0000059",
            "bpm": 123.4,
            "gain": -12.4,
            "preview": "https://cdns-preview-d.dzcdn.net/stream/c-deda7fa9316d9e9e880d2c6207e92260-8.mp3",
            "contributors": [
                {"id": 27, "name": "Daft Punk", "role": "Main"},
            ],
            "artist": {"id": 27, "name": "Daft Punk"},
            "album": {"id": album_id, "title": "Discovery"},
        }
        data.update(overrides)
        return data
    return build


@pytest.fixture
def deezer_album_data() -> Callable[..., dict]:
    """Factory for legacy API album payloads"""
    def build(album_id: int = 302127, track_ids: tuple = (3135553, 3135556), **overrides: Any) -> dict:
        data = {
            "id": album_id,
            "title": "Discovery",
            "link": f"https://www.deezer.com/album/{album_id}",
            "cover_small": "https://e-cdns-images.dzcdn.net/images/cover/2e018122cb56986277102d2041a592c8/56x56-000000-80-0-0.jpg",
            "cover_xl": "https://e-cdns-images.dzcdn.net/images/cover/2e018122cb56986277102d2041a592c8/1000x1000-000000-80-0-0.jpg",
            "genres": {"data": [{"id": 113, "name": "Dance"}]},
            "label": "Parlophone (France)",
            "nb_tracks": len(track_ids),
            "release_date": "2001-03-07",
            "record_type": "album",
            "upc": "724384960650",
            "artist": {"id": 27, "name": "Daft Punk"},
            "tracks": {"data": [{"id": track_id} for track_id in track_ids]},
        }
        data.update(overrides)
        return data
    return build


@pytest.fixture
def developer_token() -> str:
    """Apple Music developer token valid for one hour"""
    return make_jwt()


@pytest.fixture
def isolated_logging():
    """Restore the root logger handlers replaced by setup_logging()"""
    root_logger = logging.getLogger()
    handlers = list(root_logger.handlers)
    level = root_logger.level
    yield root_logger
    root_logger.handlers[:] = handlers
    root_logger.setLevel(level)
