"""Base classes for DownOnSpot collaborators.

The orchestration engine only talks to the remote catalog, the audio
session and the converter through the interfaces defined here. Audio
session implementations are plugins registered under the
``downonspot.sessions`` entry point group.
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import TYPE_CHECKING

import msgspec

if TYPE_CHECKING:
    from downonspot.utils.models import (
        AlbumRef,
        Page,
        Quality,
        SearchCandidate,
        TrackMeta,
    )


class Credentials(msgspec.Struct, frozen=True):
    """Login details handed to an audio session."""

    username: str
    password: str


class MetadataClient(ABC):
    """Abstract base class for catalog metadata lookups.

    Paginated listings return a Page whose ``total`` is re-read on every
    call; callers must not assume it stays constant.
    """

    async def close(self) -> None:
        """Close the client and release resources."""
        return None

    @abstractmethod
    async def get_track(self, track_id: str) -> "TrackMeta":
        """Get metadata for a single track.

        Args:
            track_id: Catalog track id.

        Returns:
            The track metadata.
        """
        ...

    @abstractmethod
    async def get_playlist_page(
        self, playlist_id: str, offset: int, limit: int
    ) -> "Page[TrackMeta | None]":
        """Get one page of playlist items.

        Args:
            playlist_id: Catalog playlist id.
            offset: Index of the first item.
            limit: Maximum number of items.

        Returns:
            A page of tracks. Removed and local entries are None.
        """
        ...

    @abstractmethod
    async def get_album_page(
        self, album_id: str, offset: int, limit: int
    ) -> "Page[TrackMeta]":
        """Get one page of album tracks.

        Args:
            album_id: Catalog album id.
            offset: Index of the first track.
            limit: Maximum number of tracks.

        Returns:
            A page of tracks.
        """
        ...

    @abstractmethod
    async def get_artist_albums_page(
        self, artist_id: str, offset: int, limit: int
    ) -> "Page[AlbumRef]":
        """Get one page of an artist's albums.

        Args:
            artist_id: Catalog artist id.
            offset: Index of the first album.
            limit: Maximum number of albums.

        Returns:
            A page of album references.
        """
        ...

    @abstractmethod
    async def search(self, query: str, limit: int) -> "list[SearchCandidate]":
        """Search the catalog for tracks.

        Args:
            query: Free text query.
            limit: Maximum number of results.

        Returns:
            Ranked candidates, possibly empty.
        """
        ...


class AudioStream(ABC):
    """Encoded audio byte stream for one track.

    Attributes:
        total: Stream length in bytes, or None while unknown. May be refined
            after the first read.
    """

    total: int | None = None

    @abstractmethod
    async def read(self, size: int) -> bytes:
        """Read up to ``size`` bytes.

        Args:
            size: Maximum number of bytes to return.

        Returns:
            The next chunk, or ``b""`` at the end of the stream.
        """
        ...

    async def aclose(self) -> None:
        """Release the stream."""
        return None

    async def __aenter__(self) -> "AudioStream":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()


class AudioSession(ABC):
    """Abstract base class for audio session plugins.

    A session is authenticated once at startup and then shared by every
    running pipeline, so implementations must be safe for concurrent use.
    """

    @abstractmethod
    async def authenticate(self, credentials: Credentials) -> None:
        """Log in to the remote service.

        Args:
            credentials: Account login details.

        Raises:
            AuthenticationError: If the login is rejected.
        """
        ...

    @abstractmethod
    async def open_stream(self, track_id: str, quality: "Quality") -> AudioStream:
        """Open an encoded audio stream for a track.

        Args:
            track_id: Catalog track id.
            quality: Requested bitrate tier.

        Returns:
            An open audio stream.

        Raises:
            SessionExpiredError: If the session dropped.
            TrackUnavailableError: If the track cannot be streamed.
        """
        ...

    async def close(self) -> None:
        """Close the session and release resources."""
        return None


class Converter(ABC):
    """Converts a downloaded stream into a finished, tagged file."""

    @abstractmethod
    def process(self, source: Path, meta: "TrackMeta", target: Path) -> Path:
        """Convert and tag a raw stream.

        Runs in a worker thread. Must not leave a file at ``target`` unless it
        succeeds.

        Args:
            source: Raw encoded audio.
            meta: Track metadata used for tags.
            target: Final output location.

        Returns:
            The path of the finished file.

        Raises:
            ConversionError: If transcoding fails.
            TagSavingFailure: If tags cannot be written.
        """
        ...
