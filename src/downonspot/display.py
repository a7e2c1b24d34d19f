"""Rich terminal rendering of run summaries.

RunView is a render callback for Monitor.run that keeps a rich Live
display up to date; print_report writes the final report once the run
has finished.
"""

from typing import Any

import humanfriendly
from rich import get_console
from rich.console import Console, Group, RenderableType
from rich.live import Live
from rich.table import Table
from rich.text import Text

from .job_store import Downloading, JobView
from .monitor import RunSummary
from .utils.utils import format_hms

MAX_ERRORS_SHOWN = 5


def format_job_progress(job: JobView) -> str:
    """Formats the progress column of an active job.

    Args:
        job: A downloading or postprocessing job.

    Returns:
        Percentage and sizes while downloading, otherwise "Postprocessing...".
    """
    state = job.state
    if not isinstance(state, Downloading):
        return "Postprocessing..."
    received = humanfriendly.format_size(state.received, binary=True)
    if not state.total:
        return received
    total = humanfriendly.format_size(state.total, binary=True)
    return f"{state.progress * 100:.0f}% ({received} / {total})"


def render_summary(summary: RunSummary) -> RenderableType:
    """Builds the live view for a summary.

    Args:
        summary: Current run summary.

    Returns:
        A renderable group of tables.
    """
    header = Text.assemble(
        ("Time elapsed: ", "bold"),
        format_hms(summary.elapsed),
        ("   Estimated remaining: ", "bold"),
        format_hms(summary.remaining),
    )

    downloads = Table(title="Current downloads", expand=True, title_justify="left")
    downloads.add_column("Track", ratio=3, no_wrap=True, overflow="ellipsis")
    downloads.add_column("Progress", ratio=1, justify="right")
    for job in summary.active:
        downloads.add_row(Text(job.display_name), format_job_progress(job))

    events = Table.grid(padding=(0, 1))
    events.add_column(style="dim")
    events.add_column()
    for event in summary.events:
        events.add_row(format_hms(event.elapsed), Text(event.description))

    renderables: list[RenderableType] = [header, downloads]
    renderables += [Text("Recent", style="bold"), events]

    if summary.errors:
        errors = Table.grid()
        errors.add_column(style="red")
        for failure in summary.errors[-MAX_ERRORS_SHOWN:]:
            errors.add_row(Text(str(failure)))
        renderables += [Text("Errors", style="bold red"), errors]

    renderables.append(render_counts(summary))
    return Group(*renderables)


def render_counts(summary: RunSummary) -> Table:
    """Builds the per-bucket counts table."""
    counts = Table(expand=False)
    for name in ("Waiting", "Downloading", "Failed", "Skipped", "Done", "Total"):
        counts.add_column(name, justify="right")
    counts.add_row(
        str(summary.waiting),
        str(summary.in_flight),
        str(summary.failed),
        str(summary.skipped),
        str(summary.done),
        str(summary.total),
    )
    return counts


class RunView:
    """Rich Live renderer usable as a Monitor render callback.

    Usage:
        with RunView() as view:
            await dos.run(render=view)
    """

    def __init__(self, console: Console | None = None) -> None:
        """Initialize the view.

        Args:
            console: Console to draw on. Defaults to the global rich console.
        """
        self._console = console or get_console()
        self._live: Live | None = None

    def __enter__(self) -> "RunView":
        """Start the live display."""
        self._live = Live(
            console=self._console,
            auto_refresh=False,
            transient=True,
        )
        self._live.start()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        """Stop the live display."""
        if self._live:
            self._live.stop()
        self._live = None

    def __call__(self, summary: RunSummary) -> None:
        """Redraw with a new summary.

        Args:
            summary: Current run summary.
        """
        if self._live is None:
            return
        self._live.update(render_summary(summary), refresh=True)


def print_report(summary: RunSummary, console: Console | None = None) -> None:
    """Prints the final report of a run.

    Args:
        summary: Summary after the run finished.
        console: Console to print on. Defaults to the global rich console.
    """
    console = console or get_console()
    console.print(render_counts(summary))
    console.print(f"[bold]Finished in[/bold] {format_hms(summary.elapsed)}")

    if summary.errors:
        console.print(f"[bold red]{len(summary.errors)} failed:[/bold red]")
        for failure in summary.errors:
            console.print(Text.assemble(("  - ", "red"), str(failure)))
