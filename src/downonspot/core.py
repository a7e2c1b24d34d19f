"""Core module for DownOnSpot.

This module provides the orchestration layer: it wires the settings, the
catalog and audio session clients, the job store, the resolver, the worker
pool and the monitor together, and exposes the job submission entry points
used by the CLI.
"""

import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager

import aiohttp
import anyio
from rich.logging import RichHandler

from .clients.base import AudioSession, Converter, Credentials, MetadataClient
from .clients.loader import load_session_provider
from .clients.spotify_web import SpotifyWebClient
from .converter import AudioConverter
from .job_store import JobStore, JobView
from .monitor import Monitor, RunSummary
from .pipeline import PipelineExecutor
from .resolver import InputResolver
from .utils.exceptions import DuplicateJob, ServiceError
from .utils.models import Expanded, Resolution, TrackRef
from .utils.path_builder import PathBuilder
from .utils.settings import AppSettings
from .utils.tempfile_manager import TempFileManager
from .worker_pool import WorkerPool

logger = logging.getLogger(__name__)

RenderCallback = Callable[[RunSummary], Awaitable[None] | None]


def configure_logging(debug_mode: bool) -> None:
    """Configures logging using the Rich handler.

    Args:
        debug_mode: Log at DEBUG level instead of WARNING.
    """
    logging.basicConfig(
        level=logging.DEBUG if debug_mode else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )


class DownOnSpot:
    """Main orchestrator for one download run.

    Example:
        ```python
        async with create_downonspot(app_settings) as dos:
            resolution = await dos.resolve_input("spotify:album:...")
            await dos.submit(resolution)
            summary = await dos.run()
        ```
    """

    def __init__(
        self,
        app_settings: AppSettings,
        metadata: MetadataClient,
        session: AudioSession,
        converter: Converter | None = None,
        store: JobStore | None = None,
    ) -> None:
        """Initializes the orchestrator.

        Args:
            app_settings: Application settings.
            metadata: Catalog metadata client.
            session: Authenticated audio session.
            converter: Conversion step. Defaults to an AudioConverter built
                from the downloader settings.
            store: Job store. A fresh one is created if not given.
        """
        downloader = app_settings.downloader
        self._settings = app_settings
        self.metadata = metadata
        self.session = session
        self.store = store if store is not None else JobStore()
        self.resolver = InputResolver(
            metadata,
            separator=downloader.separator,
            search_limit=app_settings.general.search_limit,
        )
        self.paths = PathBuilder(
            downloader.path,
            downloader.filename_template,
            downloader.audio_format,
            downloader.separator,
        )
        self.converter = converter or AudioConverter(
            downloader.audio_format,
            quality=downloader.quality_tier,
            id3v24=downloader.id3v24,
            separator=downloader.separator,
        )
        self._pool: WorkerPool | None = None
        self._shutdown_requested = False

    async def resolve_input(self, raw: str) -> Resolution:
        """Resolves user input into tracks, candidates or an unsupported item.

        Args:
            raw: URI, web player link or free text.

        Returns:
            The resolution.

        Raises:
            InvalidUri: If the input is a malformed URI or link.
        """
        return await self.resolver.resolve(raw)

    async def enqueue_track(
        self, track_id: str, title: str = "", author: str = ""
    ) -> JobView:
        """Adds a single track to the run.

        When no display name is given it is looked up in the catalog. A
        failed lookup still enqueues the track; the pipeline reports the
        failure when it runs.

        Args:
            track_id: Catalog track id.
            title: Track title for display.
            author: Track artist(s) for display.

        Returns:
            The queued job.

        Raises:
            DuplicateJob: If the track is already part of the run.
        """
        if track_id in self.store:
            raise DuplicateJob(track_id)

        if not title:
            try:
                meta = await self.metadata.get_track(track_id)
            except (ServiceError, aiohttp.ClientError) as e:
                logger.warning(f"Could not look up track {track_id}: {e}")
            else:
                title = meta.title
                author = meta.author(self._settings.downloader.separator)

        return await self.store.enqueue(TrackRef(track_id, title, author))

    async def submit(self, resolution: Resolution) -> list[JobView]:
        """Enqueues every track of an expanded resolution.

        Tracks that are already part of the run are skipped with a warning.

        Args:
            resolution: Result of resolve_input.

        Returns:
            The newly queued jobs. Empty for candidates and unsupported items.
        """
        if not isinstance(resolution, Expanded):
            return []

        queued: list[JobView] = []
        for track in resolution.tracks:
            try:
                queued.append(
                    await self.enqueue_track(track.track_id, track.title, track.author)
                )
            except DuplicateJob as e:
                logger.warning(e.message)
        logger.info(f"Queued {len(queued)} of {len(resolution.tracks)} tracks")
        return queued

    @property
    def shutdown_requested(self) -> bool:
        """Whether a clean shutdown has been requested."""
        return self._shutdown_requested

    def request_shutdown(self) -> None:
        """Stops claiming new jobs; in-flight pipelines finish normally."""
        self._shutdown_requested = True
        if self._pool is not None:
            self._pool.request_shutdown()

    async def run(self, render: RenderCallback | None = None) -> RunSummary:
        """Processes every queued job and returns the final summary.

        Args:
            render: Called with a fresh summary every ``refresh_ui_seconds``
                while the run is active, and once more at the end.

        Returns:
            The summary after the pool finished.
        """
        downloader = self._settings.downloader
        monitor = Monitor(self.store)

        async with TempFileManager() as temp_files:
            executor = PipelineExecutor(
                self.store,
                self.metadata,
                self.session,
                self.converter,
                self.paths,
                temp_files,
                quality=downloader.quality_tier,
                skip_existing=downloader.skip_existing,
                stream_timeout=downloader.stream_timeout,
                conversion_timeout=downloader.conversion_timeout,
                chunk_size=downloader.chunk_size,
            )
            self._pool = WorkerPool(
                self.store, executor, downloader.concurrent_downloads
            )
            if self._shutdown_requested:
                self._pool.request_shutdown()

            async with anyio.create_task_group() as tg:
                if render is not None:
                    tg.start_soon(
                        monitor.run, self._settings.general.refresh_ui_seconds, render
                    )
                await self._pool.run()
                tg.cancel_scope.cancel()

        summary = monitor.poll()
        if render is not None:
            result = render(summary)
            if result is not None:
                await result
        return summary

    async def close(self) -> None:
        """Closes the catalog client and the audio session."""
        for client in (self.metadata, self.session):
            try:
                await client.close()
            except (ServiceError, aiohttp.ClientError, OSError):
                logger.debug(f"Error closing {type(client).__name__}", exc_info=True)


async def open_session(app_settings: AppSettings) -> AudioSession:
    """Loads and authenticates the configured audio session plugin.

    Args:
        app_settings: Application settings.

    Returns:
        An authenticated session.

    Raises:
        SessionProviderNotFound: If the configured plugin is not installed.
        AuthenticationError: If the login is rejected.
    """
    session_cls = load_session_provider(app_settings.advanced.session_provider)
    session = session_cls()
    account = app_settings.account
    await session.authenticate(Credentials(account.username, account.password))
    return session


@asynccontextmanager
async def create_downonspot(app_settings: AppSettings) -> AsyncIterator[DownOnSpot]:
    """Creates a DownOnSpot orchestrator with automatic cleanup.

    Args:
        app_settings: Application settings.

    Yields:
        Configured orchestrator with an authenticated session.
    """
    account = app_settings.account
    metadata = SpotifyWebClient(
        account.client_id,
        account.client_secret,
        market=account.market_country_code,
        separator=app_settings.downloader.separator,
    )
    try:
        session = await open_session(app_settings)
    except BaseException:
        await metadata.close()
        raise

    dos = DownOnSpot(app_settings, metadata, session)
    try:
        yield dos
    finally:
        await dos.close()
