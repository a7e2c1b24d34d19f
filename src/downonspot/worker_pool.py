"""Bounded-concurrency worker pool.

The pool runs a fixed number of worker slots in one anyio task group. Each
slot repeatedly claims the oldest queued job and runs it through the
pipeline, so no more than ``concurrency_limit`` pipelines, and therefore no
more than that many concurrent calls to the remote collaborators, are ever
active at once.
"""

import logging

import anyio

from .job_store import JobStore
from .pipeline import PipelineExecutor

logger = logging.getLogger(__name__)


class WorkerPool:
    """Schedules queued jobs onto a bounded number of worker slots.

    Example:
        ```python
        pool = WorkerPool(store, executor, concurrency_limit=4)
        await pool.run()  # returns once nothing is queued or in flight
        ```
    """

    def __init__(
        self,
        store: JobStore,
        executor: PipelineExecutor,
        concurrency_limit: int,
        idle_poll: float = 0.5,
    ) -> None:
        """Initialize the pool.

        Args:
            store: Job store to claim from.
            executor: Pipeline executor run for each claimed job.
            concurrency_limit: Maximum simultaneous pipelines (at least 1).
            idle_poll: Longest time an idle slot sleeps before re-checking
                the store.
        """
        if concurrency_limit < 1:
            raise ValueError("concurrency_limit must be at least 1")
        self._store = store
        self._executor = executor
        self._concurrency_limit = concurrency_limit
        self._idle_poll = idle_poll
        self._shutdown_requested = False

    @property
    def concurrency_limit(self) -> int:
        """Maximum number of simultaneous pipelines."""
        return self._concurrency_limit

    @property
    def shutdown_requested(self) -> bool:
        """Whether the pool has been asked to stop claiming jobs."""
        return self._shutdown_requested

    def request_shutdown(self) -> None:
        """Stops claiming new jobs. Pipelines already running finish normally."""
        if not self._shutdown_requested:
            logger.info("Shutdown requested, finishing in-flight downloads")
        self._shutdown_requested = True

    async def run(self) -> None:
        """Runs until no job is queued or in flight, or shutdown is requested."""
        logger.debug(f"Starting worker pool with {self._concurrency_limit} slots")
        async with anyio.create_task_group() as tg:
            for slot in range(self._concurrency_limit):
                tg.start_soon(self._run_slot, slot)
        logger.debug("Worker pool finished")

    async def _run_slot(self, slot: int) -> None:
        """Claim-and-run loop of a single worker slot.

        Args:
            slot: Slot number, for logging.
        """
        while not self._shutdown_requested:
            handle = await self._store.claim_next()
            if handle is None:
                if not self._store.has_pending():
                    return
                # Other slots still own in-flight jobs
                await self._store.wait_for_change(self._idle_poll)
                continue

            logger.debug(f"Slot {slot} running {handle.track_id}")
            await self._executor.run(handle)
