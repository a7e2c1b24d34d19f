"""Shared data models for DownOnSpot.

Catalog metadata, resolver results and option enums. All structs handed
across task boundaries are frozen so that readers never observe a
half-updated value.
"""

from enum import Enum
from typing import Generic, TypeVar

import msgspec

T = TypeVar("T")


class ItemKind(Enum):
    """Kind segment of a catalog URI."""

    TRACK = "track"
    ALBUM = "album"
    PLAYLIST = "playlist"
    ARTIST = "artist"
    SHOW = "show"
    EPISODE = "episode"
    USER = "user"


class Quality(Enum):
    """Requested stream bitrate tier.

    The value is the nominal Ogg Vorbis bitrate in kbit/s.
    """

    NORMAL = 96
    HIGH = 160
    VERY_HIGH = 320


class AudioFormat(Enum):
    """Output file format."""

    OGG = "ogg"
    MP3 = "mp3"

    @property
    def extension(self) -> str:
        """File extension without the leading dot."""
        return self.value


class SpotifyUri(msgspec.Struct, frozen=True):
    """Canonical ``<namespace>:<kind>:<id>`` identifier.

    Attributes:
        namespace: URI scheme namespace (always ``spotify``).
        kind: Raw kind segment (track, album, ...).
        item_id: Opaque catalog id.
    """

    namespace: str
    kind: str
    item_id: str

    def __str__(self) -> str:
        return f"{self.namespace}:{self.kind}:{self.item_id}"

    @property
    def item_kind(self) -> ItemKind | None:
        """Known kind for this URI, or None when unsupported."""
        try:
            return ItemKind(self.kind)
        except ValueError:
            return None


class TrackMeta(msgspec.Struct, frozen=True, kw_only=True):
    """Track metadata as returned by the catalog.

    Attributes:
        track_id: Catalog track id.
        title: Track title.
        artists: Track artist names in credit order.
        album: Album name.
        album_artists: Album artist names.
        track_number: Position on the disc.
        disc_number: Disc number.
        release_date: Release date as reported (YYYY, YYYY-MM or YYYY-MM-DD).
        isrc: International Standard Recording Code.
        duration_ms: Duration in milliseconds.
        is_playable: False when the catalog reports the track unplayable.
    """

    track_id: str
    title: str
    artists: list[str] = msgspec.field(default_factory=list)
    album: str = ""
    album_artists: list[str] = msgspec.field(default_factory=list)
    track_number: int = 0
    disc_number: int = 0
    release_date: str = ""
    isrc: str = ""
    duration_ms: int = 0
    is_playable: bool = True

    def author(self, separator: str = ", ") -> str:
        """Joins the artist names for display.

        Args:
            separator: String placed between artist names.

        Returns:
            Joined artist names, or "Unknown Artist".
        """
        return separator.join(self.artists) if self.artists else "Unknown Artist"

    @property
    def release_year(self) -> str:
        """Four-digit release year, or an empty string."""
        return self.release_date[:4]


class AlbumRef(msgspec.Struct, frozen=True):
    """Album entry in an artist discography listing."""

    album_id: str
    name: str = ""


class Page(msgspec.Struct, Generic[T], frozen=True):
    """One page of a paginated catalog listing.

    Attributes:
        items: Items on this page. Playlist pages may contain None for
            removed or local entries.
        total: Total number of items in the listing, as reported with this page.
    """

    items: list[T]
    total: int


class TrackRef(msgspec.Struct, frozen=True):
    """A track ready to be enqueued as a job."""

    track_id: str
    title: str = ""
    author: str = ""


class SearchCandidate(msgspec.Struct, frozen=True):
    """A search hit that needs user disambiguation."""

    track_id: str
    title: str
    author: str


# =============================================================================
# Resolver Results
# =============================================================================


class Expanded(msgspec.Struct, frozen=True, tag=True):
    """Input resolved to tracks ready for enqueueing."""

    tracks: list[TrackRef]


class Candidates(msgspec.Struct, frozen=True, tag=True):
    """Input treated as free text; candidates need disambiguation."""

    candidates: list[SearchCandidate]


class Other(msgspec.Struct, frozen=True, tag=True):
    """Input is a recognised but unsupported kind (show, episode, user)."""

    uri: str


Resolution = Expanded | Candidates | Other
