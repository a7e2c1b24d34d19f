"""Input resolution and fan-out.

Turns whatever the user typed (a ``spotify:`` URI, an ``open.spotify.com``
link or free text) into tracks ready for the job store, or into search
candidates that still need a human to pick one.
"""

import logging
from collections.abc import Awaitable, Callable, Iterable
from typing import TypeVar
from urllib.parse import urlparse

from .clients.base import MetadataClient
from .utils.exceptions import InvalidUri
from .utils.models import (
    Candidates,
    Expanded,
    ItemKind,
    Other,
    Page,
    Resolution,
    SpotifyUri,
    TrackMeta,
    TrackRef,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

URI_NAMESPACE = "spotify"
WEB_PLAYER_HOSTS = frozenset({"open.spotify.com"})

PLAYLIST_PAGE_SIZE = 100
ALBUM_PAGE_SIZE = 50
ARTIST_ALBUMS_PAGE_SIZE = 50
SEARCH_LIMIT = 50


def parse_uri(raw: str) -> SpotifyUri | None:
    """Parses a canonical URI or web player link.

    Args:
        raw: User input.

    Returns:
        The parsed URI, or None when the input is free text.

    Raises:
        InvalidUri: If the input looks like a URI or link but is malformed or
            points at a foreign host.

    Example:
        >>> parse_uri("https://open.spotify.com/intl-de/track/abc?si=x")
        SpotifyUri(namespace='spotify', kind='track', item_id='abc')
    """
    text = raw.strip()

    if text.startswith(f"{URI_NAMESPACE}:"):
        segments = text.split(":")
        if len(segments) != 3 or not all(segments):
            raise InvalidUri(raw, "Expected <namespace>:<kind>:<id>")
        return SpotifyUri(*segments)

    url = urlparse(text)
    if not (url.scheme and url.netloc):
        return None

    if url.scheme not in ("http", "https") or url.hostname not in WEB_PLAYER_HOSTS:
        raise InvalidUri(raw, f'Unsupported link "{url.scheme}://{url.netloc}"')

    components = [c for c in url.path.split("/") if c]
    # Localized links carry an extra /intl-xx/ segment
    if components and components[0].startswith("intl-"):
        components = components[1:]
    if len(components) < 2:
        raise InvalidUri(raw, "Expected /<kind>/<id> in the link path")
    return SpotifyUri(URI_NAMESPACE, components[0], components[1])


async def collect_pages(
    fetch: Callable[[int, int], Awaitable[Page[T]]], page_size: int
) -> list[T]:
    """Pages through a listing until the reported total is reached.

    The total is re-read from every page. An empty page also ends the loop,
    so a listing whose total shrinks mid-way cannot spin forever.

    Args:
        fetch: Coroutine function taking ``(offset, limit)``.
        page_size: Items requested per page.

    Returns:
        All items in listing order.
    """
    items: list[T] = []
    offset = 0
    while True:
        page = await fetch(offset, page_size)
        items.extend(page.items)
        offset += len(page.items)
        if offset >= page.total or not page.items:
            return items


class InputResolver:
    """Resolves user input against the catalog."""

    def __init__(
        self,
        metadata: MetadataClient,
        separator: str = ", ",
        search_limit: int = SEARCH_LIMIT,
    ) -> None:
        """Initialize the resolver.

        Args:
            metadata: Catalog metadata client.
            separator: String used to join artist names for display.
            search_limit: Maximum search candidates, capped at 50.
        """
        self._metadata = metadata
        self._separator = separator
        self._search_limit = max(1, min(search_limit, SEARCH_LIMIT))

    def _track_ref(self, track: TrackMeta) -> TrackRef:
        return TrackRef(track.track_id, track.title, track.author(self._separator))

    async def resolve(self, raw: str) -> Resolution:
        """Resolves a raw input string.

        Args:
            raw: URI, web player link or free text.

        Returns:
            Expanded tracks, search candidates (possibly none) or an
            unsupported item passed through as Other.

        Raises:
            InvalidUri: If the input is a malformed URI or link.
        """
        uri = parse_uri(raw)
        if uri is None:
            return await self.search(raw.strip())

        match uri.item_kind:
            case ItemKind.TRACK:
                return Expanded([TrackRef(uri.item_id)])
            case ItemKind.PLAYLIST:
                return Expanded(await self.expand_playlist(uri.item_id))
            case ItemKind.ALBUM:
                return Expanded(await self.expand_album(uri.item_id))
            case ItemKind.ARTIST:
                return Expanded(await self.expand_artist(uri.item_id))
            case _:
                logger.info(f"Not expanding unsupported item {uri}")
                return Other(str(uri))

    async def search(self, query: str) -> Candidates:
        """Searches the catalog for tracks matching free text.

        Args:
            query: Search phrase.

        Returns:
            Ranked candidates; an empty list means nothing matched.
        """
        if not query:
            return Candidates([])
        candidates = await self._metadata.search(query, self._search_limit)
        logger.info(f'Search "{query}" returned {len(candidates)} candidates')
        return Candidates(candidates[: self._search_limit])

    async def expand_playlist(self, playlist_id: str) -> list[TrackRef]:
        """Lists every track of a playlist, dropping removed and local items."""
        entries = await collect_pages(
            lambda offset, limit: self._metadata.get_playlist_page(
                playlist_id, offset, limit
            ),
            PLAYLIST_PAGE_SIZE,
        )
        tracks = _unique(self._track_ref(t) for t in entries if t is not None)
        logger.info(f"Playlist {playlist_id}: {len(tracks)} tracks")
        return tracks

    async def expand_album(self, album_id: str) -> list[TrackRef]:
        """Lists every track of an album."""
        entries = await collect_pages(
            lambda offset, limit: self._metadata.get_album_page(
                album_id, offset, limit
            ),
            ALBUM_PAGE_SIZE,
        )
        tracks = _unique(self._track_ref(t) for t in entries)
        logger.info(f"Album {album_id}: {len(tracks)} tracks")
        return tracks

    async def expand_artist(self, artist_id: str) -> list[TrackRef]:
        """Lists every track on every album of an artist."""
        albums = await collect_pages(
            lambda offset, limit: self._metadata.get_artist_albums_page(
                artist_id, offset, limit
            ),
            ARTIST_ALBUMS_PAGE_SIZE,
        )
        logger.info(f"Artist {artist_id}: {len(albums)} albums")

        tracks: list[TrackRef] = []
        for album in albums:
            tracks.extend(await self.expand_album(album.album_id))
        return _unique(tracks)


def _unique(tracks: Iterable[TrackRef]) -> list[TrackRef]:
    """Drops repeated track ids, keeping the first occurrence."""
    seen: dict[str, TrackRef] = {}
    for track in tracks:
        seen.setdefault(track.track_id, track)
    return list(seen.values())
