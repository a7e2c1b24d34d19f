"""DownOnSpot - A concurrent Spotify downloader with a live progress view."""

__version__ = "0.1.0"
__author__ = "DownOnSpot contributors"
__description__ = "A concurrent Spotify downloader with a live progress view"

from .cli import main
from .core import DownOnSpot, create_downonspot

__all__ = [
    "main",
    "DownOnSpot",
    "create_downonspot",
    "__version__",
    "__author__",
    "__description__",
]
