"""Utility functions for DownOnSpot.

HTTP session setup, file name sanitation, duration formatting and async
file helpers used throughout the application.
"""

import logging
import os
import re
import shutil
from pathlib import Path

import aiohttp
import anyio
from asyncer import asyncify

logger = logging.getLogger(__name__)


def create_aiohttp_session(
    timeout: int = 30,
    connector_limit: int = 100,
) -> aiohttp.ClientSession:
    """Creates an aiohttp ClientSession with connection pool settings.

    Args:
        timeout: Socket read timeout in seconds.
        connector_limit: Maximum number of concurrent connections.

    Returns:
        A configured aiohttp ClientSession.
    """
    timeout_config = aiohttp.ClientTimeout(total=None, sock_read=timeout)
    connector = aiohttp.TCPConnector(
        limit=connector_limit,
        enable_cleanup_closed=True,
    )
    return aiohttp.ClientSession(timeout=timeout_config, connector=connector)


def sanitise_name(name: str | None) -> str:
    """Sanitizes a filename by removing or replacing invalid characters.

    Args:
        name: The filename to sanitize.

    Returns:
        The sanitized filename.
    """
    return (
        re.sub(
            r"[:]",
            "_",
            re.sub(r'[\\/*?",<>|$]', "_", re.sub(r"[ \t]+$", "", str(name).rstrip())),
        )
        if name
        else ""
    )


def fix_byte_limit(path: str, byte_limit: int = 250) -> str:
    """Truncates the file name part of a path to fit within a byte limit.

    Args:
        path: The file path to truncate.
        byte_limit: Maximum byte size for the filename.

    Returns:
        The absolute, truncated file path.
    """
    rel_path = os.path.abspath(path).replace("\\", "/")
    directory, filename = os.path.split(rel_path)
    fixed_bytes = filename.encode("utf-8")[:byte_limit]
    fixed_filename = fixed_bytes.decode("utf-8", "ignore")
    return directory + "/" + fixed_filename


def format_hms(seconds: float) -> str:
    """Formats seconds as HH:MM:SS.

    Hours are not wrapped at 24, so long runs read e.g. ``31:05:09``.

    Args:
        seconds: Duration in seconds. Negative values are clamped to zero.

    Returns:
        The formatted duration.
    """
    total = max(0, int(round(seconds)))
    hours, rest = divmod(total, 3600)
    minutes, secs = divmod(rest, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


async def delete_path(path: Path) -> None:
    """Delete a file or directory asynchronously.

    Args:
        path: Path to delete (file or directory).
    """
    try:
        if path.is_dir():
            await asyncify(shutil.rmtree)(str(path))
            logger.debug("Deleted directory: %s", path)
        else:
            await anyio.Path(path).unlink(missing_ok=True)
            logger.debug("Deleted file: %s", path)
    except OSError:
        logger.exception("Failed to delete %s", path)
