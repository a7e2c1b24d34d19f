"""Audio session plugin discovery and loading using entry points.

Session plugins register under the ``downonspot.sessions`` group, pointing
either at an AudioSession subclass or at a module that defines one:

    [project.entry-points."downonspot.sessions"]
    librespot = "downonspot_librespot:LibrespotSession"
"""

import inspect
import logging
from importlib.metadata import entry_points
from types import ModuleType

from downonspot.clients.base import AudioSession
from downonspot.utils.exceptions import SessionProviderNotFound

logger = logging.getLogger(__name__)

SESSIONS_GROUP = "downonspot.sessions"


def _find_session_class(obj: object) -> type[AudioSession] | None:
    """Return the AudioSession subclass an entry point resolved to.

    Args:
        obj: The loaded entry point object.

    Returns:
        The session class, or None if the object does not provide one.
    """
    if isinstance(obj, type):
        if issubclass(obj, AudioSession) and obj is not AudioSession:
            return obj
        return None

    if isinstance(obj, ModuleType):
        for _, member in inspect.getmembers(obj, inspect.isclass):
            if (
                issubclass(member, AudioSession)
                and member is not AudioSession
                and not inspect.isabstract(member)
            ):
                return member
    return None


def discover_session_providers() -> dict[str, type[AudioSession]]:
    """Discover all installed audio session plugins.

    Plugins that fail to import are logged and left out.

    Returns:
        Dictionary mapping provider names to their session classes.
    """
    providers: dict[str, type[AudioSession]] = {}

    for ep in entry_points(group=SESSIONS_GROUP):
        try:
            session_cls = _find_session_class(ep.load())
        except Exception:
            logger.exception(f"Failed to load session provider '{ep.name}'")
            continue

        if session_cls is None:
            logger.warning(
                f"Entry point '{ep.name}' ({ep.value}) does not provide an "
                "AudioSession"
            )
            continue
        providers[ep.name] = session_cls
        logger.debug(f"Discovered session provider: {ep.name}")

    return providers


def load_session_provider(name: str) -> type[AudioSession]:
    """Load an audio session class by provider name.

    Args:
        name: Entry point name of the provider.

    Returns:
        The AudioSession subclass.

    Raises:
        SessionProviderNotFound: If no usable provider has that name.
    """
    providers = discover_session_providers()
    try:
        return providers[name]
    except KeyError:
        raise SessionProviderNotFound(name, sorted(providers)) from None
