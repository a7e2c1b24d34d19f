"""Spool file management for DownOnSpot.

Raw stream bytes are spooled to temporary files while a track downloads,
so nothing is written to the output directory before conversion succeeds.
"""

import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from tempfile import gettempdir
from typing import Any

import anyio

from .utils import delete_path, sanitise_name


class TempFileManager:
    """Hands out per-track spool files and removes them again.

    Every spool path is tracked until it is released, and whatever is still
    tracked when the manager closes is deleted then, so an aborted run does
    not leave raw streams in the temp directory.

    Example:
        ```python
        async with TempFileManager() as spools:
            async with spools.spool(track_id) as raw:
                ...  # write the stream to raw
            # raw is deleted here
        ```
    """

    def __init__(
        self,
        base_dir: Path | str | None = None,
        prefix: str = "downonspot_",
    ) -> None:
        """Initialize the manager.

        Args:
            base_dir: Directory for spool files. Defaults to the system temp
                directory.
            prefix: Prefix of every spool file name.
        """
        self._base_dir = Path(base_dir) if base_dir else Path(gettempdir())
        self._base_dir.mkdir(parents=True, exist_ok=True)
        self._prefix = prefix
        self._pending: set[Path] = set()

    async def __aenter__(self) -> "TempFileManager":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        # Runs during cancellation too
        with anyio.CancelScope(shield=True):
            await self.cleanup()

    @property
    def pending(self) -> frozenset[Path]:
        """Spool paths that have not been released yet."""
        return frozenset(self._pending)

    def reserve(self, track_id: str, suffix: str = ".ogg") -> Path:
        """Reserves a unique spool path for a track without creating it.

        Args:
            track_id: Track the spool belongs to, used in the file name.
            suffix: File suffix of the raw stream.

        Returns:
            A path inside the spool directory that does not exist yet.
        """
        name = f"{self._prefix}{sanitise_name(track_id)}_{uuid.uuid4().hex[:12]}"
        path = self._base_dir / f"{name}{suffix}"
        self._pending.add(path)
        return path

    @asynccontextmanager
    async def spool(self, track_id: str, suffix: str = ".ogg") -> AsyncIterator[Path]:
        """Reserves a spool path that is deleted when the block exits.

        Args:
            track_id: Track the spool belongs to.
            suffix: File suffix of the raw stream.

        Yields:
            The spool path.
        """
        path = self.reserve(track_id, suffix)
        try:
            yield path
        finally:
            with anyio.CancelScope(shield=True):
                await delete_path(path)
            self._pending.discard(path)

    async def cleanup(self) -> None:
        """Deletes every spool file that is still pending."""
        while self._pending:
            await delete_path(self._pending.pop())
