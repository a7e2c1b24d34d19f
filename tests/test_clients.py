import types

import aiohttp
import msgspec
import pytest

from conftest import FakeAudioSession
from downonspot.clients import loader
from downonspot.clients.base import AudioSession
from downonspot.clients.spotify_web import (
    SpotifyWebClient,
    _Paging,
    _PlaylistItem,
    _playlist_entry,
    _to_meta,
    _Track,
)
from downonspot.utils.exceptions import MetadataAPIError, SessionProviderNotFound
from downonspot.utils.models import AlbumRef, SearchCandidate

TRACK_JSON = b"""{
    "id": "4uLU6hMCjMI75M1A2tKUQC",
    "name": "Never Gonna Give You Up",
    "type": "track",
    "artists": [{"name": "Rick Astley"}],
    "album": {
        "id": "6XhjNHCyCDyyGJRM5mg40G",
        "name": "Whenever You Need Somebody",
        "artists": [{"name": "Rick Astley"}],
        "release_date": "1987-11-12"
    },
    "track_number": 1,
    "disc_number": 1,
    "duration_ms": 213573,
    "external_ids": {"isrc": "GBARL9300135"},
    "popularity": 80
}"""


def test_track_object_is_converted():
    meta = _to_meta(msgspec.json.decode(TRACK_JSON, type=_Track))

    assert meta.track_id == "4uLU6hMCjMI75M1A2tKUQC"
    assert meta.author() == "Rick Astley"
    assert meta.album == "Whenever You Need Somebody"
    assert meta.release_year == "1987"
    assert meta.isrc == "GBARL9300135"
    assert meta.is_playable


def test_playlist_entries_without_a_playable_track_are_dropped():
    body = b"""{
        "total": 4,
        "items": [
            {"track": {"id": "a", "name": "A", "type": "track"}},
            {"track": null},
            {"track": {"id": null, "name": "Local", "is_local": true}},
            {"track": {"id": "e", "name": "Episode", "type": "episode"}}
        ]
    }"""
    page = msgspec.json.decode(body, type=_Paging[_PlaylistItem])

    entries = [_playlist_entry(item) for item in page.items]

    assert page.total == 4
    assert [e.track_id if e else None for e in entries] == ["a", None, None, None]


class FakeEntryPoint:
    def __init__(self, name: str, obj: object = None, error: Exception = None):
        self.name = name
        self.value = f"fake:{name}"
        self._obj = obj
        self._error = error

    def load(self) -> object:
        if self._error is not None:
            raise self._error
        return self._obj


@pytest.fixture
def installed(monkeypatch):
    def install(*entry_points):
        monkeypatch.setattr(
            loader, "entry_points", lambda group: list(entry_points)
        )

    return install


def test_discovers_classes_and_modules(installed):
    module = types.ModuleType("fake_module")
    module.FakeAudioSession = FakeAudioSession
    installed(
        FakeEntryPoint("direct", FakeAudioSession),
        FakeEntryPoint("module", module),
        FakeEntryPoint("broken", error=ImportError("missing dependency")),
        FakeEntryPoint("wrong", object),
        FakeEntryPoint("abstract", AudioSession),
    )

    providers = loader.discover_session_providers()

    assert providers == {"direct": FakeAudioSession, "module": FakeAudioSession}


def test_missing_provider_lists_installed_ones(installed):
    installed(FakeEntryPoint("fake", FakeAudioSession))

    assert loader.load_session_provider("fake") is FakeAudioSession
    with pytest.raises(SessionProviderNotFound) as exc_info:
        loader.load_session_provider("librespot")

    assert exc_info.value.available == ["fake"]
    assert "installed: fake" in exc_info.value.message


class FakeResponse:
    def __init__(self, body: bytes, status: int = 200) -> None:
        self.status = status
        self.reason = "OK" if status < 400 else "Error"
        self.headers: dict[str, str] = {}
        self._body = body

    async def __aenter__(self) -> "FakeResponse":
        return self

    async def __aexit__(self, *exc_info) -> None:
        return None

    async def read(self) -> bytes:
        return self._body


class FakeHttpSession:
    """Answers GET requests from a list of bodies and records the requests."""

    def __init__(self, *bodies: bytes, error: Exception | None = None) -> None:
        self.bodies = list(bodies)
        self.error = error
        self.requests: list[tuple[str, dict]] = []

    def get(self, url: str, params: dict, headers: dict) -> FakeResponse:
        self.requests.append((url, dict(params)))
        if self.error is not None:
            raise self.error
        return FakeResponse(self.bodies.pop(0))


def make_client(http: FakeHttpSession, **kwargs) -> SpotifyWebClient:
    client = SpotifyWebClient("id", "secret", session=http, **kwargs)
    # Skip the token request
    client._token = "token"
    client._token_expires_at = float("inf")
    return client


@pytest.mark.anyio
async def test_transport_failure_becomes_metadata_error():
    http = FakeHttpSession(
        error=aiohttp.ClientConnectionError("Cannot connect to host api.spotify.com")
    )
    client = make_client(http)

    with pytest.raises(MetadataAPIError) as exc_info:
        await client.search("daft punk", 5)

    assert exc_info.value.status == 0
    assert "Cannot connect" in exc_info.value.message
    assert isinstance(exc_info.value.__cause__, aiohttp.ClientConnectionError)


@pytest.mark.anyio
async def test_unexpected_body_becomes_metadata_error():
    client = make_client(FakeHttpSession(b"<html>maintenance</html>"))

    with pytest.raises(MetadataAPIError) as exc_info:
        await client.get_track("abc")

    assert exc_info.value.status == 200
    assert exc_info.value.endpoint == "/tracks/abc"


@pytest.mark.anyio
async def test_artist_albums_are_not_filtered_by_group():
    http = FakeHttpSession(b'{"items": [{"id": "al1", "name": "Live"}], "total": 1}')
    client = make_client(http)

    page = await client.get_artist_albums_page("ar1", 0, 50)

    assert page.items == [AlbumRef("al1", "Live")]
    url, params = http.requests[0]
    assert url.endswith("/artists/ar1/albums")
    assert params == {"offset": 0, "limit": 50}


@pytest.mark.anyio
async def test_search_joins_artists_with_separator():
    body = b"""{"tracks": {"total": 1, "items": [
        {"id": "t1", "name": "Get Lucky",
         "artists": [{"name": "Daft Punk"}, {"name": "Pharrell Williams"}]}
    ]}}"""
    client = make_client(FakeHttpSession(body), separator=" & ")

    candidates = await client.search("get lucky", 10)

    assert candidates == [
        SearchCandidate("t1", "Get Lucky", "Daft Punk & Pharrell Williams")
    ]


@pytest.mark.anyio
async def test_track_lookups_are_cached():
    http = FakeHttpSession(TRACK_JSON)
    client = make_client(http)

    first = await client.get_track("4uLU6hMCjMI75M1A2tKUQC")
    second = await client.get_track("4uLU6hMCjMI75M1A2tKUQC")

    assert first == second
    assert len(http.requests) == 1
