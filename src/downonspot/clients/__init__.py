"""Collaborator interfaces and implementations for DownOnSpot.

Entry point groups:
    - downonspot.sessions: Audio session plugins (AudioSession subclasses)

Example pyproject.toml for a session plugin:
    [project.entry-points."downonspot.sessions"]
    librespot = "downonspot_librespot:LibrespotSession"
"""

from .base import AudioSession, AudioStream, Converter, Credentials, MetadataClient
from .loader import discover_session_providers, load_session_provider
from .spotify_web import SpotifyWebClient

__all__ = [
    "AudioSession",
    "AudioStream",
    "Converter",
    "Credentials",
    "MetadataClient",
    "SpotifyWebClient",
    "discover_session_providers",
    "load_session_provider",
]
