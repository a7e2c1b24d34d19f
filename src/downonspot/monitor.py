"""Run monitoring and aggregation.

The Monitor polls job store snapshots on a fixed interval and turns them
into RunSummary values: per-bucket counts, recent transitions, failures
and an elapsed/remaining time estimate. It never touches the store's
lock and never blocks the pipelines.
"""

import logging
import time
from collections import deque
from collections.abc import Awaitable, Callable

import anyio
import msgspec

from .job_store import (
    Claimed,
    Converting,
    Done,
    Downloading,
    ErrorKind,
    JobError,
    JobState,
    JobStore,
    JobView,
    Queued,
)

logger = logging.getLogger(__name__)

# 99:59:59, the largest value an HH:MM:SS field can show
MAX_REMAINING = 99 * 3600 + 59 * 60 + 59.0
MAX_EVENTS = 10


class RunEvent(msgspec.Struct, frozen=True):
    """A state change observed by the monitor.

    Attributes:
        track_id: Catalog track id.
        name: Display name of the job.
        state: State the job entered.
        elapsed: Seconds since the run started when the change was observed.
    """

    track_id: str
    name: str
    state: JobState
    elapsed: float

    @property
    def description(self) -> str:
        """One-line text for the event log."""
        match self.state:
            case Downloading():
                return f"Downloading: {self.name}"
            case Converting():
                return f"Postprocessing: {self.name}"
            case Done():
                return f"Downloaded: {self.name}"
            case JobError(kind=ErrorKind.ALREADY_DOWNLOADED):
                return f"Skipped (already downloaded): {self.name}"
            case JobError(kind=kind, message=message):
                return f"{kind.label}: {self.name}: {message}"
            case _:
                return f"Queued: {self.name}"


class RunFailure(msgspec.Struct, frozen=True):
    """A job that ended in a failure (not a skip)."""

    track_id: str
    name: str
    kind: ErrorKind
    message: str

    def __str__(self) -> str:
        return f"{self.name}: {self.message}"


class RunSummary(msgspec.Struct, frozen=True, kw_only=True):
    """Aggregated view of a run at one poll.

    Attributes:
        waiting: Queued and claimed jobs.
        downloading: Jobs streaming audio.
        postprocessing: Jobs being converted and tagged.
        done: Finished jobs.
        skipped: Jobs skipped because the output already existed.
        failed: Jobs that ended in any other error.
        total: All jobs in the run.
        elapsed: Seconds since the run started.
        remaining: Estimated seconds left, capped at MAX_REMAINING.
        events: Most recent state changes, newest first.
        errors: All failures observed so far, oldest first.
        active: Jobs currently downloading or postprocessing.
    """

    waiting: int = 0
    downloading: int = 0
    postprocessing: int = 0
    done: int = 0
    skipped: int = 0
    failed: int = 0
    total: int = 0
    elapsed: float = 0.0
    remaining: float = 0.0
    events: list[RunEvent] = msgspec.field(default_factory=list)
    errors: list[RunFailure] = msgspec.field(default_factory=list)
    active: list[JobView] = msgspec.field(default_factory=list)

    @property
    def in_flight(self) -> int:
        """Jobs that are neither waiting nor terminal."""
        return self.downloading + self.postprocessing

    @property
    def is_finished(self) -> bool:
        """Whether every job has reached a terminal state."""
        return self.waiting + self.in_flight == 0


def _work_units(state: JobState) -> float:
    """Completed work of one non-skipped job, from 0.0 to 1.0."""
    match state:
        case Queued() | Claimed():
            return 0.0
        case Downloading():
            return state.progress
        case _:
            return 1.0


def estimate_remaining(
    elapsed: float, completed_units: float, remaining_units: float
) -> float:
    """Estimates the time left from the work done so far.

    Args:
        elapsed: Seconds since the run started.
        completed_units: Finished work, in jobs.
        remaining_units: Outstanding work, in jobs.

    Returns:
        Estimated seconds remaining, saturated at MAX_REMAINING.
    """
    if remaining_units <= 0:
        return 0.0
    if completed_units <= 1e-9:
        return MAX_REMAINING
    return min(elapsed * remaining_units / completed_units, MAX_REMAINING)


class Monitor:
    """Polling aggregator over a job store.

    Transitions are detected by comparing each snapshot with the previous
    one. Terminal states never change, so a job that finishes between two
    polls is still reported by the next one.
    """

    def __init__(
        self,
        store: JobStore,
        clock: Callable[[], float] = time.monotonic,
        max_events: int = MAX_EVENTS,
    ) -> None:
        """Initialize the monitor and start the run clock.

        Args:
            store: Job store to observe.
            clock: Monotonic time source in seconds.
            max_events: Number of recent events kept.
        """
        self._store = store
        self._clock = clock
        self._started_at = clock()
        self._last_seen: dict[str, type] = {}
        self._events: deque[RunEvent] = deque(maxlen=max_events)
        self._errors: list[RunFailure] = []

    @property
    def elapsed(self) -> float:
        """Seconds since the monitor was created."""
        return max(self._clock() - self._started_at, 0.0)

    def poll(self) -> RunSummary:
        """Takes a snapshot and aggregates it.

        Returns:
            The current run summary.
        """
        jobs = self._store.snapshot()
        elapsed = self.elapsed
        counts = dict.fromkeys(
            ("waiting", "downloading", "postprocessing", "done", "skipped", "failed"),
            0,
        )
        active: list[JobView] = []
        completed_units = 0.0

        for job in jobs:
            self._observe(job, elapsed)
            state = job.state
            match state:
                case Queued() | Claimed():
                    counts["waiting"] += 1
                case Downloading():
                    counts["downloading"] += 1
                    active.append(job)
                case Converting():
                    counts["postprocessing"] += 1
                    active.append(job)
                case Done():
                    counts["done"] += 1
                case JobError() if state.is_skip:
                    counts["skipped"] += 1
                case JobError():
                    counts["failed"] += 1
            if not (isinstance(state, JobError) and state.is_skip):
                completed_units += _work_units(state)

        total = len(jobs)
        remaining_units = (total - counts["skipped"]) - completed_units
        return RunSummary(
            **counts,
            total=total,
            elapsed=elapsed,
            remaining=estimate_remaining(elapsed, completed_units, remaining_units),
            events=list(reversed(self._events)),
            errors=list(self._errors),
            active=active,
        )

    def _observe(self, job: JobView, elapsed: float) -> None:
        """Records an event when a job's state type changed since the last poll."""
        state_type = type(job.state)
        previous = self._last_seen.get(job.track_id)
        if previous is state_type:
            return
        self._last_seen[job.track_id] = state_type

        if isinstance(job.state, (Queued, Claimed)):
            return
        self._events.append(
            RunEvent(job.track_id, job.display_name, job.state, elapsed)
        )
        if isinstance(job.state, JobError) and not job.state.is_skip:
            self._errors.append(
                RunFailure(
                    job.track_id, job.display_name, job.state.kind, job.state.message
                )
            )

    async def run(
        self,
        interval: float,
        render: Callable[[RunSummary], Awaitable[None] | None],
    ) -> None:
        """Polls and renders forever at a fixed interval.

        Cancel the surrounding scope to stop it.

        Args:
            interval: Seconds between polls.
            render: Callback receiving each summary; may be a coroutine
                function.
        """
        while True:
            result = render(self.poll())
            if result is not None:
                await result
            await anyio.sleep(interval)
