"""Shared fixtures and in-memory collaborators for the test suite."""

from pathlib import Path

import anyio
import pytest

from downonspot.clients.base import AudioSession, AudioStream, Converter, MetadataClient
from downonspot.job_store import Claimed, JobHandle, JobState, JobStore, JobView
from downonspot.utils.exceptions import MetadataAPIError
from downonspot.utils.models import (
    AlbumRef,
    Page,
    Quality,
    SearchCandidate,
    TrackMeta,
)
from downonspot.utils.settings import AppSettings


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


def make_track(track_id: str, title: str | None = None, **kwargs) -> TrackMeta:
    """Builds track metadata with sensible defaults."""
    kwargs.setdefault("artists", ["Artist"])
    kwargs.setdefault("album", "Album")
    return TrackMeta(track_id=track_id, title=title or f"Song {track_id}", **kwargs)


class FakeMetadataClient(MetadataClient):
    """Catalog backed by dictionaries. Every call is recorded in ``calls``."""

    def __init__(self) -> None:
        self.tracks: dict[str, TrackMeta] = {}
        self.playlists: dict[str, list[TrackMeta | None]] = {}
        self.albums: dict[str, list[TrackMeta]] = {}
        self.artists: dict[str, list[AlbumRef]] = {}
        self.search_results: list[SearchCandidate] = []
        self.calls: list[tuple] = []
        self.closed = False

    def add_tracks(self, *tracks: TrackMeta) -> None:
        for track in tracks:
            self.tracks[track.track_id] = track

    async def close(self) -> None:
        self.closed = True

    async def get_track(self, track_id: str) -> TrackMeta:
        self.calls.append(("track", track_id))
        try:
            return self.tracks[track_id]
        except KeyError:
            raise MetadataAPIError(404, "non existing id", f"tracks/{track_id}")

    @staticmethod
    def _page(items: list, offset: int, limit: int) -> Page:
        return Page(items[offset : offset + limit], len(items))

    async def get_playlist_page(self, playlist_id, offset, limit):
        self.calls.append(("playlist", playlist_id, offset, limit))
        return self._page(self.playlists[playlist_id], offset, limit)

    async def get_album_page(self, album_id, offset, limit):
        self.calls.append(("album", album_id, offset, limit))
        return self._page(self.albums[album_id], offset, limit)

    async def get_artist_albums_page(self, artist_id, offset, limit):
        self.calls.append(("artist", artist_id, offset, limit))
        return self._page(self.artists[artist_id], offset, limit)

    async def search(self, query, limit):
        self.calls.append(("search", query, limit))
        return self.search_results[:limit]


class FakeStream(AudioStream):
    """Stream serving pre-made chunks, optionally slowly."""

    def __init__(
        self,
        session: "FakeAudioSession",
        chunks: list[bytes],
        total: int | None,
        delay: float = 0.0,
    ) -> None:
        self._session = session
        self._chunks = list(chunks)
        self.total = total
        self._delay = delay

    async def read(self, size: int) -> bytes:
        if self._delay:
            await anyio.sleep(self._delay)
        if not self._chunks:
            return b""
        return self._chunks.pop(0)

    async def aclose(self) -> None:
        self._session.active -= 1


class FakeAudioSession(AudioSession):
    """Audio session that tracks how many streams are open at once.

    Args:
        chunks: Chunks served for every track.
        total: Announced stream length. Defaults to the sum of the chunks.
        delay: Seconds each read takes.
        failures: Track ids whose open_stream raises the mapped exception.
    """

    def __init__(
        self,
        chunks: list[bytes] | None = None,
        total: int | None = -1,
        delay: float = 0.0,
        failures: dict[str, Exception] | None = None,
        open_delay: float = 0.0,
    ) -> None:
        self.chunks = chunks if chunks is not None else [b"x" * 1000]
        self.total = sum(map(len, self.chunks)) if total == -1 else total
        self.delay = delay
        self.open_delay = open_delay
        self.failures = failures or {}
        self.opened: list[str] = []
        self.active = 0
        self.max_active = 0
        self.authenticated = False
        self.closed = False

    async def authenticate(self, credentials) -> None:
        self.authenticated = True

    async def open_stream(self, track_id: str, quality: Quality) -> FakeStream:
        self.opened.append(track_id)
        if self.open_delay:
            await anyio.sleep(self.open_delay)
        if track_id in self.failures:
            raise self.failures[track_id]
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        return FakeStream(self, self.chunks, self.total, self.delay)

    async def close(self) -> None:
        self.closed = True


class FakeConverter(Converter):
    """Copies the raw stream to the target, or raises the configured error."""

    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.processed: list[tuple[str, str]] = []

    def process(self, source: Path, meta: TrackMeta, target: Path) -> Path:
        if self.error is not None:
            raise self.error
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(source.read_bytes())
        self.processed.append((meta.track_id, str(target)))
        return target


class RecordingStore(JobStore):
    """Job store that records every state it hands out, per track."""

    def __init__(self) -> None:
        super().__init__()
        self.history: dict[str, list[JobState]] = {}

    async def claim_next(self) -> JobHandle | None:
        handle = await super().claim_next()
        if handle is not None:
            self.history.setdefault(handle.track_id, []).append(Claimed())
        return handle

    async def update(self, handle: JobHandle, new_state: JobState) -> JobView:
        view = await super().update(handle, new_state)
        self.history.setdefault(handle.track_id, []).append(new_state)
        return view


@pytest.fixture
def metadata() -> FakeMetadataClient:
    return FakeMetadataClient()


@pytest.fixture
def output_dir(tmp_path: Path) -> Path:
    return tmp_path / "out"


@pytest.fixture
def app_settings(output_dir: Path) -> AppSettings:
    app_settings = AppSettings()
    app_settings.downloader.path = str(output_dir)
    app_settings.downloader.format = "ogg"
    app_settings.downloader.concurrent_downloads = 1
    app_settings.general.refresh_ui_seconds = 0.01
    return app_settings
