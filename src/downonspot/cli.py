"""Async CLI for the DownOnSpot downloader.

Built with asyncclick. The ``download`` command resolves one input, asks
the user to pick a search result when the input was free text, and then
runs every queued track with a live progress view.
"""

import signal
import sys
from pathlib import Path

import aiohttp
import anyio
import asyncclick as click
import msgspec

from . import __version__
from .clients.loader import discover_session_providers
from .core import DownOnSpot, configure_logging, create_downonspot
from .display import RunView, print_report
from .monitor import RunSummary
from .utils.exceptions import (
    ConfigurationError,
    ServiceError,
    ValidationError,
    describe_error,
)
from .utils.models import Candidates, Expanded, Other, SearchCandidate
from .utils.settings import (
    AppSettings,
    get_settings_path,
    save_settings,
    set_settings_path,
    settings,
)

# =============================================================================
# Helper Functions
# =============================================================================


def format_candidate(index: int, candidate: SearchCandidate) -> str:
    """Formats a search candidate for display.

    Args:
        index: The 1-based index of the candidate.
        candidate: The search candidate.

    Returns:
        Formatted string for display.
    """
    return f"{index}. {candidate.author} - {candidate.title}"


async def choose_candidate(candidates: list[SearchCandidate]) -> SearchCandidate:
    """Asks the user to pick one search candidate.

    Invalid selections are rejected and prompted again.

    Args:
        candidates: Non-empty list of candidates.

    Returns:
        The chosen candidate.
    """
    for index, candidate in enumerate(candidates, start=1):
        click.echo(format_candidate(index, candidate))

    selection: int = await click.prompt(
        "Select a track",
        default=1,
        type=click.IntRange(1, len(candidates)),
    )
    return candidates[selection - 1]


def load_app_settings() -> AppSettings:
    """Loads settings, writing a default file on first run.

    Returns:
        The loaded settings.

    Raises:
        SystemExit: If no settings file existed yet.
        click.ClickException: If the settings file is invalid.
    """
    path = get_settings_path()
    if not path.exists():
        save_settings(path, AppSettings())
        click.echo(f"Settings file created at {path}")
        click.echo("Please edit it with your account details and run again.")
        raise SystemExit(1)

    try:
        return settings.current
    except (msgspec.ValidationError, msgspec.DecodeError) as e:
        raise click.ClickException(f"Invalid settings file {path}: {e}") from e


async def watch_interrupts(dos: DownOnSpot, scope: anyio.CancelScope) -> None:
    """Turns the first Ctrl+C into a clean shutdown and the second into abort.

    Args:
        dos: The running orchestrator.
        scope: Scope cancelled on the second interrupt.
    """
    with anyio.open_signal_receiver(signal.SIGINT) as signals:
        async for _ in signals:
            if dos.shutdown_requested:
                scope.cancel()
                return
            click.echo(
                "\n^C pressed - finishing current downloads, press again to abort"
            )
            dos.request_shutdown()


async def run_with_progress(dos: DownOnSpot) -> RunSummary | None:
    """Runs the queued jobs with the live view.

    Args:
        dos: The orchestrator with jobs queued.

    Returns:
        The final summary, or None if the run was aborted.
    """
    summary: RunSummary | None = None
    with RunView() as view:
        async with anyio.create_task_group() as tg:
            if sys.platform != "win32":
                tg.start_soon(watch_interrupts, dos, tg.cancel_scope)
            summary = await dos.run(render=view)
            tg.cancel_scope.cancel()
    return summary


# =============================================================================
# Main CLI Group
# =============================================================================


@click.group()
@click.option(
    "-c",
    "--config",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Settings file to use instead of the default location.",
)
async def cli(config: Path | None) -> None:
    """DownOnSpot - Spotify track, album, playlist and artist downloader.

    \b
    Examples:
        downonspot download spotify:album:4aawyAB9vmqN3uQ7FjRGTy
        downonspot download https://open.spotify.com/playlist/...
        downonspot download "daft punk one more time"
    """
    if config is not None:
        set_settings_path(config)


@cli.command("version")
def version_command() -> None:
    """Show DownOnSpot version information."""
    click.echo(f"DownOnSpot v{__version__}")


@cli.command("providers")
def providers_command() -> None:
    """List installed audio session providers."""
    providers = discover_session_providers()
    if not providers:
        click.echo("No audio session providers installed.")
        return
    for name, session_cls in sorted(providers.items()):
        click.echo(f"  {name}: {session_cls.__module__}.{session_cls.__qualname__}")


@cli.command("download")
@click.argument("query", nargs=-1, required=True)
async def download_command(query: tuple[str, ...]) -> None:
    """Download a track, album, playlist or artist.

    \b
    Arguments:
        QUERY  spotify: URI, open.spotify.com link or search terms
    """
    app_settings = load_app_settings()
    configure_logging(app_settings.advanced.debug_mode)
    raw = " ".join(query)

    try:
        async with create_downonspot(app_settings) as dos:
            resolution = await dos.resolve_input(raw)

            match resolution:
                case Expanded(tracks=[]):
                    click.echo("Nothing to download.")
                    return
                case Expanded():
                    await dos.submit(resolution)
                case Candidates(candidates=[]):
                    click.echo(f'No results for "{raw}".')
                    return
                case Candidates(candidates=candidates):
                    chosen = await choose_candidate(candidates)
                    await dos.enqueue_track(
                        chosen.track_id, chosen.title, chosen.author
                    )
                case Other(uri=uri):
                    click.echo(
                        f"{uri} is not supported, only tracks, albums, "
                        "playlists and artists can be downloaded."
                    )
                    return

            summary = await run_with_progress(dos)
    except (ValidationError, ConfigurationError, ServiceError) as e:
        raise click.ClickException(e.message) from e
    except (aiohttp.ClientError, TimeoutError) as e:
        raise click.ClickException(f"Network failure: {describe_error(e)}") from e

    if summary is None:
        click.echo("Aborted.")
        raise SystemExit(1)
    print_report(summary)


# =============================================================================
# Entry Point
# =============================================================================


def main() -> None:
    """Main entry point for the DownOnSpot CLI."""
    try:
        cli()
    except KeyboardInterrupt:
        click.echo("\n\t^C pressed - abort")
        raise SystemExit(1) from None


if __name__ == "__main__":
    main()
