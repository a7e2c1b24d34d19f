"""Spotify Web API metadata client.

A thin aiohttp wrapper over the public Web API, authenticated with the
client credentials flow. Responses are decoded straight into msgspec
structs and converted to the application's catalog models.
"""

import logging
import time
from typing import Any, Generic, TypeVar

import aiohttp
import anyio
import msgspec
from tenacity import (
    RetryCallState,
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from downonspot.clients.base import MetadataClient
from downonspot.utils.exceptions import (
    AuthenticationError,
    MetadataAPIError,
    RateLimitError,
    describe_error,
)
from downonspot.utils.models import AlbumRef, Page, SearchCandidate, TrackMeta
from downonspot.utils.utils import create_aiohttp_session

logger = logging.getLogger(__name__)

API_BASE = "https://api.spotify.com/v1"
TOKEN_URL = "https://accounts.spotify.com/api/token"
MAX_SEARCH_LIMIT = 50

T = TypeVar("T")


# =============================================================================
# Web API Response Types
# =============================================================================


class _Token(msgspec.Struct):
    access_token: str
    expires_in: int = 3600


class _Artist(msgspec.Struct):
    name: str = ""


class _ExternalIds(msgspec.Struct):
    isrc: str = ""


class _Album(msgspec.Struct):
    id: str | None = None
    name: str = ""
    artists: list[_Artist] = msgspec.field(default_factory=list)
    release_date: str = ""


class _Track(msgspec.Struct):
    id: str | None = None
    name: str = ""
    type: str = "track"
    artists: list[_Artist] = msgspec.field(default_factory=list)
    album: _Album | None = None
    track_number: int = 0
    disc_number: int = 0
    duration_ms: int = 0
    external_ids: _ExternalIds | None = None
    is_playable: bool = True
    is_local: bool = False


class _PlaylistItem(msgspec.Struct):
    track: _Track | None = None


class _Paging(msgspec.Struct, Generic[T]):
    items: list[T]
    total: int


class _SearchResponse(msgspec.Struct):
    tracks: _Paging[_Track]


class _ErrorBody(msgspec.Struct):
    status: int = 0
    message: str = ""


class _ErrorResponse(msgspec.Struct):
    error: _ErrorBody | str = ""
    error_description: str = ""


def _to_meta(track: _Track, album: _Album | None = None) -> TrackMeta:
    """Converts a Web API track object to TrackMeta.

    Args:
        track: Track object, full or simplified.
        album: Album context for simplified album track objects.

    Returns:
        The track metadata.
    """
    album = track.album or album or _Album()
    return TrackMeta(
        track_id=track.id or "",
        title=track.name,
        artists=[a.name for a in track.artists],
        album=album.name,
        album_artists=[a.name for a in album.artists],
        track_number=track.track_number,
        disc_number=track.disc_number,
        release_date=album.release_date,
        isrc=track.external_ids.isrc if track.external_ids else "",
        duration_ms=track.duration_ms,
        is_playable=track.is_playable,
    )


def _playlist_entry(item: _PlaylistItem) -> TrackMeta | None:
    """Converts a playlist entry, returning None for non-track entries."""
    track = item.track
    if track is None or track.is_local or track.id is None or track.type != "track":
        return None
    return _to_meta(track)


_backoff = wait_exponential(multiplier=1, min=1, max=30)


def _wait_for_rate_limit(retry_state: RetryCallState) -> float:
    """Waits for Retry-After when the API sent one, else backs off."""
    error = retry_state.outcome.exception() if retry_state.outcome else None
    if isinstance(error, RateLimitError) and error.retry_after:
        return error.retry_after
    return _backoff(retry_state)


class SpotifyWebClient(MetadataClient):
    """Metadata client for the Spotify Web API.

    Example:
        ```python
        client = SpotifyWebClient(client_id, client_secret)
        try:
            meta = await client.get_track("4uLU6hMCjMI75M1A2tKUQC")
        finally:
            await client.close()
        ```
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        market: str = "",
        session: aiohttp.ClientSession | None = None,
        separator: str = ", ",
    ) -> None:
        """Initialize the client.

        Args:
            client_id: Web API application client id.
            client_secret: Web API application client secret.
            market: Optional two-letter market code.
            session: aiohttp session to reuse. One is created on first use
                if not given, and closed by ``close``.
            separator: String used to join artist names of search results.
        """
        self._client_id = client_id
        self._client_secret = client_secret
        self._market = market
        self._session = session
        self._owns_session = session is None
        self._token: str | None = None
        self._token_expires_at = 0.0
        self._token_lock = anyio.Lock()
        self._separator = separator
        self._albums: dict[str, _Album] = {}
        self._tracks: dict[str, TrackMeta] = {}

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = create_aiohttp_session()
        return self._session

    async def close(self) -> None:
        """Close the underlying HTTP session if this client created it."""
        if self._session is not None and self._owns_session:
            await self._session.close()
            self._session = None

    async def _get_token(self) -> str:
        """Returns a valid access token, requesting a new one when expired.

        Raises:
            AuthenticationError: If the token request is rejected.
        """
        async with self._token_lock:
            if self._token and time.monotonic() < self._token_expires_at:
                return self._token

            auth = aiohttp.BasicAuth(self._client_id, self._client_secret)
            async with self._get_session().post(
                TOKEN_URL, data={"grant_type": "client_credentials"}, auth=auth
            ) as response:
                body = await response.read()
                if response.status != 200:
                    raise AuthenticationError(self._describe_error(body, response))

            token = msgspec.json.decode(body, type=_Token)
            self._token = token.access_token
            # Renew a minute before the reported expiry
            self._token_expires_at = time.monotonic() + max(token.expires_in - 60, 0)
            logger.debug("Obtained Web API access token")
            return self._token

    @staticmethod
    def _describe_error(body: bytes, response: aiohttp.ClientResponse) -> str:
        """Extracts the error message from an API error body."""
        try:
            decoded = msgspec.json.decode(body, type=_ErrorResponse)
        except msgspec.DecodeError:
            return response.reason or f"HTTP {response.status}"
        if isinstance(decoded.error, _ErrorBody):
            return decoded.error.message or response.reason or ""
        return decoded.error_description or decoded.error or response.reason or ""

    @retry(
        retry=retry_if_exception_type(RateLimitError),
        stop=stop_after_attempt(5),
        wait=_wait_for_rate_limit,
        reraise=True,
        before_sleep=before_sleep_log(logger, logging.WARNING),
    )
    async def _get(
        self, endpoint: str, response_type: type[T], **params: Any
    ) -> T:
        """Performs a GET request against the Web API.

        Args:
            endpoint: Path below the API base, e.g. ``/tracks/<id>``.
            response_type: Struct type to decode the response into.
            **params: Query parameters.

        Returns:
            The decoded response.

        Raises:
            RateLimitError: On HTTP 429 after all retries.
            MetadataAPIError: On any other non-2xx response, a transport
                failure or an unexpected response body. Transport failures
                carry status 0.
        """
        if self._market:
            params.setdefault("market", self._market)

        status = 0
        try:
            token = await self._get_token()
            headers = {"Authorization": f"Bearer {token}"}
            async with self._get_session().get(
                f"{API_BASE}{endpoint}", params=params, headers=headers
            ) as response:
                status = response.status
                body = await response.read()
                if status == 429:
                    retry_after = response.headers.get("Retry-After")
                    raise RateLimitError(
                        float(retry_after) if retry_after else None
                    )
                if status == 401:
                    self._token = None
                if status >= 400:
                    message = self._describe_error(body, response)
                    raise MetadataAPIError(status, message, endpoint)
            return msgspec.json.decode(body, type=response_type)
        except (aiohttp.ClientError, TimeoutError) as e:
            raise MetadataAPIError(0, describe_error(e), endpoint) from e
        except msgspec.DecodeError as e:
            raise MetadataAPIError(
                status, f"Unexpected response body: {e}", endpoint
            ) from e

    async def get_track(self, track_id: str) -> TrackMeta:
        """Get metadata for a single track, cached per client."""
        meta = self._tracks.get(track_id)
        if meta is None:
            meta = _to_meta(await self._get(f"/tracks/{track_id}", _Track))
            self._tracks[track_id] = meta
        return meta

    async def get_playlist_page(
        self, playlist_id: str, offset: int, limit: int
    ) -> Page[TrackMeta | None]:
        """Get one page of playlist items; episodes and local files are None."""
        page = await self._get(
            f"/playlists/{playlist_id}/tracks",
            _Paging[_PlaylistItem],
            offset=offset,
            limit=limit,
        )
        return Page(items=[_playlist_entry(i) for i in page.items], total=page.total)

    async def _get_album(self, album_id: str) -> _Album:
        """Gets album context, cached for the lifetime of the client."""
        album = self._albums.get(album_id)
        if album is None:
            album = await self._get(f"/albums/{album_id}", _Album)
            self._albums[album_id] = album
        return album

    async def get_album_page(
        self, album_id: str, offset: int, limit: int
    ) -> Page[TrackMeta]:
        """Get one page of album tracks, enriched with the album fields."""
        album = await self._get_album(album_id)
        page = await self._get(
            f"/albums/{album_id}/tracks",
            _Paging[_Track],
            offset=offset,
            limit=limit,
        )
        return Page(items=[_to_meta(t, album) for t in page.items], total=page.total)

    async def get_artist_albums_page(
        self, artist_id: str, offset: int, limit: int
    ) -> Page[AlbumRef]:
        """Get one page of every release the artist appears on."""
        page = await self._get(
            f"/artists/{artist_id}/albums",
            _Paging[_Album],
            offset=offset,
            limit=limit,
        )
        return Page(
            items=[AlbumRef(a.id, a.name) for a in page.items if a.id],
            total=page.total,
        )

    async def search(self, query: str, limit: int) -> list[SearchCandidate]:
        """Search for tracks."""
        result = await self._get(
            "/search",
            _SearchResponse,
            q=query,
            type="track",
            limit=max(1, min(limit, MAX_SEARCH_LIMIT)),
        )
        return [
            SearchCandidate(
                track_id=t.id,
                title=t.name,
                author=self._separator.join(a.name for a in t.artists),
            )
            for t in result.tracks.items
            if t.id
        ]
