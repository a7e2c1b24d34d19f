"""Per-track download pipeline.

A PipelineExecutor drives one claimed job from ``Claimed`` to a terminal
state: look up metadata, skip if the output already exists, stream the
encoded audio into a temporary file, then convert and tag it into place.
Every state change is written through the job store, and every failure
ends the job instead of propagating to the worker pool.
"""

import logging
from pathlib import Path

import aiohttp
import anyio
from asyncer import asyncify

from .clients.base import AudioSession, AudioStream, Converter, MetadataClient
from .job_store import (
    Converting,
    Done,
    Downloading,
    ErrorKind,
    JobError,
    JobHandle,
    JobState,
    JobStore,
)
from .utils.exceptions import (
    ConversionError,
    InvalidTransition,
    ServiceError,
    StreamError,
    TagSavingFailure,
    TrackUnavailableError,
    describe_error,
    error_context,
)
from .utils.models import Quality, TrackMeta
from .utils.path_builder import PathBuilder
from .utils.tempfile_manager import TempFileManager

logger = logging.getLogger(__name__)


def classify_error(error: BaseException) -> ErrorKind:
    """Maps a pipeline failure to an error kind.

    Args:
        error: The exception that ended the pipeline.

    Returns:
        The matching ErrorKind.
    """
    match error:
        case ConversionError() | TagSavingFailure():
            return ErrorKind.CONVERSION
        # TimeoutError is an OSError subclass, so it has to be matched first
        case TimeoutError():
            return ErrorKind.TIMEOUT
        case ServiceError() | aiohttp.ClientError() | OSError():
            return ErrorKind.PROTOCOL
        case _:
            return ErrorKind.UNKNOWN


class PipelineExecutor:
    """Runs the download, convert and tag sequence for claimed jobs.

    One executor is shared by every worker slot; all per-job state lives in
    local variables and in the job store.
    """

    def __init__(
        self,
        store: JobStore,
        metadata: MetadataClient,
        session: AudioSession,
        converter: Converter,
        paths: PathBuilder,
        temp_files: TempFileManager,
        *,
        quality: Quality = Quality.VERY_HIGH,
        skip_existing: bool = True,
        stream_timeout: float = 30.0,
        conversion_timeout: float = 300.0,
        chunk_size: int = 65536,
    ) -> None:
        """Initialize the executor.

        Args:
            store: Job store receiving state updates.
            metadata: Catalog metadata client.
            session: Authenticated audio session.
            converter: Conversion and tagging step.
            paths: Builds the canonical output path of a track.
            temp_files: Manager for raw stream spool files.
            quality: Requested stream quality.
            skip_existing: Finish with AlreadyDownloaded when the output exists.
            stream_timeout: Seconds allowed for opening a stream or reading
                one chunk.
            conversion_timeout: Seconds allowed for conversion and tagging.
            chunk_size: Bytes requested per read.
        """
        self._store = store
        self._metadata = metadata
        self._session = session
        self._converter = converter
        self._paths = paths
        self._temp_files = temp_files
        self._quality = quality
        self._skip_existing = skip_existing
        self._stream_timeout = stream_timeout
        self._conversion_timeout = conversion_timeout
        self._chunk_size = chunk_size

    async def run(self, handle: JobHandle) -> JobState:
        """Drives a claimed job to a terminal state.

        Args:
            handle: Handle of the claimed job.

        Returns:
            The terminal state that was recorded.

        Raises:
            InvalidTransition: If the executor itself broke the state machine.
        """
        try:
            return await self._execute(handle)
        except InvalidTransition:
            raise
        except Exception as e:
            state = self._failure_state(handle, e)
            await self._store.update(handle, state)
            return state

    def _failure_state(self, handle: JobHandle, error: Exception) -> JobError:
        """Classifies and logs a failure.

        Args:
            handle: Handle of the failed job.
            error: The exception that ended the pipeline.

        Returns:
            The error state to record.
        """
        kind = classify_error(error)
        message = describe_error(error)

        if kind is ErrorKind.UNKNOWN:
            logger.exception(f"Track {handle.track_id} failed unexpectedly")
        else:
            logger.warning(f"Track {handle.track_id}: {kind.label}: {message}")
            logger.debug(f"Track {handle.track_id} error context: {error_context(error)}")
        return JobError(kind, message)

    async def _execute(self, handle: JobHandle) -> JobState:
        track_id = handle.track_id
        meta = await self._metadata.get_track(track_id)
        target = self._paths.build_track_path(meta)

        if self._skip_existing and await anyio.Path(target).exists():
            logger.debug(f"Track {track_id} already exists at {target}")
            state = JobError(ErrorKind.ALREADY_DOWNLOADED, f"{target.name} exists")
            await self._store.update(handle, state)
            return state

        if not meta.is_playable:
            raise TrackUnavailableError(track_id, "Track is not playable")

        with anyio.fail_after(self._stream_timeout):
            stream = await self._session.open_stream(track_id, self._quality)

        async with self._temp_files.spool(track_id) as raw:
            async with stream:
                await self._download(handle, stream, raw)

            await self._store.update(handle, Converting())
            path = await self._convert(raw, meta, target)

        state = Done(str(path))
        await self._store.update(handle, state)
        return state

    async def _download(
        self, handle: JobHandle, stream: AudioStream, destination: Path
    ) -> None:
        """Copies the stream into a spool file, reporting progress per chunk.

        Args:
            handle: Handle of the job.
            stream: Open audio stream.
            destination: Spool file path.

        Raises:
            TimeoutError: If a single read exceeds the stream timeout.
            StreamError: If the stream delivers more or fewer bytes than
                announced.
        """
        received = 0
        await self._store.update(handle, Downloading(0, stream.total))

        async with await anyio.open_file(destination, "wb") as f:
            while True:
                with anyio.fail_after(self._stream_timeout):
                    chunk = await stream.read(self._chunk_size)
                if not chunk:
                    break

                await f.write(chunk)
                received += len(chunk)
                total = stream.total
                if total is not None and received > total:
                    raise StreamError(
                        handle.track_id,
                        f"Received {received} bytes, expected {total}",
                    )
                await self._store.update(handle, Downloading(received, total))

        if stream.total is not None and received < stream.total:
            raise StreamError(
                handle.track_id,
                f"Stream ended after {received} of {stream.total} bytes",
            )
        logger.debug(f"Track {handle.track_id}: received {received} bytes")

    async def _convert(self, raw: Path, meta: TrackMeta, target: Path) -> Path:
        """Runs the converter in a worker thread under the conversion timeout.

        A timed out conversion thread is abandoned. It only ever writes the
        target through an atomic replace, so it cannot leave a partial file.
        """
        process = asyncify(self._converter.process, abandon_on_cancel=True)
        with anyio.fail_after(self._conversion_timeout):
            return await process(raw, meta, target)
