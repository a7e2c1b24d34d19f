"""Job store and per-track state machine.

Every track requested during a run becomes exactly one job. Jobs live in an
arena addressed by a stable index; the store is the single access point for
creating, claiming and advancing them. Readers receive frozen JobView
records, so a snapshot can never expose a half-written state.
"""

import logging
import time
import uuid
from collections import deque
from enum import Enum

import anyio
import msgspec

from .utils.exceptions import DuplicateJob, InvalidTransition
from .utils.models import TrackRef

logger = logging.getLogger(__name__)


class ErrorKind(Enum):
    """Classification of a terminal error state."""

    ALREADY_DOWNLOADED = "already_downloaded"
    PROTOCOL = "protocol"
    CONVERSION = "conversion"
    TIMEOUT = "timeout"
    UNKNOWN = "unknown"

    @property
    def is_skip(self) -> bool:
        """Whether this outcome is reported as a skip rather than a failure."""
        return self is ErrorKind.ALREADY_DOWNLOADED

    @property
    def label(self) -> str:
        """Short human readable label."""
        return _ERROR_LABELS[self]


_ERROR_LABELS = {
    ErrorKind.ALREADY_DOWNLOADED: "Already downloaded",
    ErrorKind.PROTOCOL: "Protocol error",
    ErrorKind.CONVERSION: "Conversion error",
    ErrorKind.TIMEOUT: "Timed out",
    ErrorKind.UNKNOWN: "Error",
}


# =============================================================================
# Job States
# =============================================================================


class Queued(msgspec.Struct, frozen=True, tag=True):
    """Waiting for a free worker slot."""


class Claimed(msgspec.Struct, frozen=True, tag=True):
    """Owned by a worker, about to start streaming."""


class Downloading(msgspec.Struct, frozen=True, tag=True):
    """Streaming encoded audio.

    Attributes:
        received: Bytes received so far.
        total: Total stream length, or None while unknown.
    """

    received: int = 0
    total: int | None = None

    @property
    def progress(self) -> float:
        """Fraction downloaded (0.0 to 1.0), 0.0 while the total is unknown."""
        if not self.total:
            return 0.0
        return min(self.received / self.total, 1.0)


class Converting(msgspec.Struct, frozen=True, tag=True):
    """Format conversion and tag writing underway."""


class Done(msgspec.Struct, frozen=True, tag=True):
    """Finished; the output file exists on disk.

    Attributes:
        path: Location of the finished file.
    """

    path: str = ""


class JobError(msgspec.Struct, frozen=True, tag=True):
    """Terminal error or classified skip.

    Attributes:
        kind: Error classification. ``kind.is_skip`` separates skips from
            failures.
        message: Original error message for display.
    """

    kind: ErrorKind
    message: str = ""

    @property
    def is_skip(self) -> bool:
        """Whether this state counts as a skip."""
        return self.kind.is_skip


JobState = Queued | Claimed | Downloading | Converting | Done | JobError

TERMINAL_STATES = (Done, JobError)

_ALLOWED_TRANSITIONS: dict[type, tuple[type, ...]] = {
    Queued: (Claimed, JobError),
    Claimed: (Downloading, JobError),
    Downloading: (Downloading, Converting, JobError),
    Converting: (Done, JobError),
}


def is_terminal(state: JobState) -> bool:
    """Whether a state is terminal (Done or any JobError)."""
    return isinstance(state, TERMINAL_STATES)


def state_name(state: JobState) -> str:
    """Display name of a state type."""
    return type(state).__name__


# =============================================================================
# Job Records
# =============================================================================


class JobView(msgspec.Struct, frozen=True, kw_only=True):
    """Immutable, display-relevant copy of a job.

    Attributes:
        index: Stable arena index of the job.
        track_id: Catalog track id.
        title: Track title for display.
        author: Track artist(s) for display.
        state: Current state.
        updated_at: Monotonic timestamp of the last state change.
    """

    index: int
    track_id: str
    title: str = ""
    author: str = ""
    state: JobState = msgspec.field(default_factory=Queued)
    updated_at: float = 0.0

    @property
    def display_name(self) -> str:
        """``author - title`` or the bare track id."""
        if self.title:
            return f"{self.author} - {self.title}" if self.author else self.title
        return self.track_id


class JobHandle(msgspec.Struct, frozen=True):
    """Exclusive ownership token for a claimed job.

    Attributes:
        index: Arena index of the job.
        track_id: Catalog track id.
        token: Ownership token checked on every update.
    """

    index: int
    track_id: str
    token: str


class JobStore:
    """Authoritative collection of the jobs of one run.

    ``enqueue`` and ``claim_next`` are serialized against each other by a
    lock, which guarantees that one track id maps to one job and that each
    queued job is claimed by exactly one worker. ``update`` is only valid for
    the current handle holder. ``snapshot`` never blocks.
    """

    def __init__(self) -> None:
        """Initializes an empty job store."""
        self._jobs: list[JobView] = []
        self._index: dict[str, int] = {}
        self._queued: deque[int] = deque()
        self._owners: dict[int, str] = {}
        self._lock = anyio.Lock()
        self._changed = anyio.Event()

    def __len__(self) -> int:
        return len(self._jobs)

    def __contains__(self, track_id: object) -> bool:
        return track_id in self._index

    @property
    def queued_count(self) -> int:
        """Number of jobs waiting to be claimed."""
        return len(self._queued)

    @property
    def in_flight_count(self) -> int:
        """Number of claimed, downloading or converting jobs."""
        return len(self._owners)

    def has_pending(self) -> bool:
        """Whether any job is queued or in flight."""
        return bool(self._queued) or bool(self._owners)

    def get(self, track_id: str) -> JobView | None:
        """Gets the current view of a job.

        Args:
            track_id: The track id.

        Returns:
            The job view, or None if the track is unknown.
        """
        index = self._index.get(track_id)
        return None if index is None else self._jobs[index]

    def snapshot(self) -> list[JobView]:
        """Returns an immutable copy of all jobs in enqueue order."""
        return list(self._jobs)

    async def enqueue(self, track: TrackRef) -> JobView:
        """Adds a track as a new queued job.

        Args:
            track: The track to add.

        Returns:
            The created job.

        Raises:
            DuplicateJob: If the track id is already tracked, in any state.
        """
        async with self._lock:
            if track.track_id in self._index:
                raise DuplicateJob(track.track_id)

            index = len(self._jobs)
            job = JobView(
                index=index,
                track_id=track.track_id,
                title=track.title,
                author=track.author,
                state=Queued(),
                updated_at=time.monotonic(),
            )
            self._jobs.append(job)
            self._index[track.track_id] = index
            self._queued.append(index)

        logger.debug("Queued job %d for track %s", index, track.track_id)
        self._notify()
        return job

    async def claim_next(self) -> JobHandle | None:
        """Claims the oldest queued job.

        Returns:
            An exclusive handle for the claimed job, or None when nothing is
            queued. Never waits for work to appear.
        """
        async with self._lock:
            if not self._queued:
                return None

            index = self._queued.popleft()
            token = uuid.uuid4().hex
            self._owners[index] = token
            job = self._jobs[index]
            self._jobs[index] = msgspec.structs.replace(
                job, state=Claimed(), updated_at=time.monotonic()
            )

        logger.debug("Claimed job %d (%s)", index, job.track_id)
        return JobHandle(index=index, track_id=job.track_id, token=token)

    async def update(self, handle: JobHandle, new_state: JobState) -> JobView:
        """Advances a job to a new state.

        Args:
            handle: Handle returned by claim_next for this job.
            new_state: The requested state.

        Returns:
            The updated job view.

        Raises:
            InvalidTransition: If the handle is stale or foreign, the job is
                already terminal, or the state machine forbids the change.
        """
        job = self._jobs[handle.index]
        current = job.state
        self._check_transition(handle, job, new_state)

        updated = msgspec.structs.replace(
            job, state=new_state, updated_at=time.monotonic()
        )
        self._jobs[handle.index] = updated

        if is_terminal(new_state):
            del self._owners[handle.index]
            self._notify()

        if not isinstance(new_state, Downloading) or not isinstance(
            current, Downloading
        ):
            logger.debug(
                "Job %s: %s -> %s",
                job.track_id,
                state_name(current),
                state_name(new_state),
            )
        return updated

    def _check_transition(
        self, handle: JobHandle, job: JobView, new_state: JobState
    ) -> None:
        """Validates an update request against ownership and the state machine.

        Args:
            handle: Handle of the caller.
            job: Current job view.
            new_state: The requested state.

        Raises:
            InvalidTransition: If the update is not permitted.
        """
        current = job.state
        requested = state_name(new_state)

        if is_terminal(current):
            raise InvalidTransition(job.track_id, state_name(current), requested)

        if job.track_id != handle.track_id or self._owners.get(handle.index) != (
            handle.token
        ):
            raise InvalidTransition(job.track_id, "unowned", requested)

        allowed = _ALLOWED_TRANSITIONS.get(type(current), ())
        if not isinstance(new_state, allowed):
            raise InvalidTransition(job.track_id, state_name(current), requested)

        if isinstance(new_state, Downloading):
            self._check_progress(job.track_id, current, new_state)

    @staticmethod
    def _check_progress(
        track_id: str, current: JobState, new_state: Downloading
    ) -> None:
        """Rejects byte counters that go backwards or exceed the total."""
        if new_state.received < 0 or (
            new_state.total is not None and new_state.received > new_state.total
        ):
            raise InvalidTransition(
                track_id,
                state_name(current),
                f"Downloading({new_state.received}, {new_state.total})",
            )
        if isinstance(current, Downloading) and new_state.received < current.received:
            raise InvalidTransition(
                track_id,
                f"Downloading({current.received}, {current.total})",
                f"Downloading({new_state.received}, {new_state.total})",
            )

    async def wait_for_change(self, timeout: float) -> None:
        """Waits until a job is enqueued or finishes, or the timeout expires.

        Args:
            timeout: Maximum seconds to wait.
        """
        with anyio.move_on_after(timeout):
            await self._changed.wait()

    def _notify(self) -> None:
        """Wakes every task blocked in wait_for_change."""
        self._changed.set()
        self._changed = anyio.Event()
