"""Rich live display — the event log of one workflow, updating in real time.

The display layer is fully decoupled from the pipeline. The executor calls
update() with the latest WorkflowRun after every event; the display never
reads the stream or touches the run's state itself.

Usage:
    display = LiveDisplay(prompt)

    with display.make_live() as live:
        executor = WorkflowExecutor(on_event=lambda event, run: display.update(run, live))
        run = await executor.execute(prompt)
        display.update(run, live)
"""

import json

from pydantic import ValidationError
from rich.console import Group
from rich.live import Live
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from core.reducer import RunStatus, WorkflowRun
from schemas.events import CompletedEvent, ErrorEvent, WorkflowEvent
from schemas.result import CalculationResult

_PROTOCOL_STYLES = {
    "MCP": "cyan",
    "A2A": "magenta",
    "SYSTEM": "bright_black",
}

_STATUS_LABELS = {
    RunStatus.RUNNING:   ("●", "bold yellow", "Running"),
    RunStatus.COMPLETED: ("✓", "bold green",  "Completed"),
    RunStatus.ERROR:     ("✗", "bold red",    "Error"),
}

_BORDER_STYLES = {
    RunStatus.RUNNING:   "yellow",
    RunStatus.COMPLETED: "green",
    RunStatus.ERROR:     "red",
}


class LiveDisplay:
    """Renders one WorkflowRun as a panel: status line, then the event log.

    Attributes:
        _prompt: The submitted prompt, shown in the panel title.
        _run: Last run state passed to update().
        _max_lines: Only the newest events are shown once the log grows.
    """

    def __init__(self, prompt: str, max_lines: int = 20) -> None:
        self._prompt = prompt
        self._run = WorkflowRun()
        self._max_lines = max_lines

    def make_live(self) -> Live:
        """Return a Rich Live context manager ready to use with `with`."""
        return Live(self._render(), refresh_per_second=12, transient=False)

    def update(self, run: WorkflowRun, live: Live) -> None:
        """Replace the displayed run and redraw."""
        self._run = run
        live.update(self._render())

    # ── Private ───────────────────────────────────────────────────────────────

    def _render_event(self, event: WorkflowEvent) -> Text:
        line = Text()
        line.append(event.timestamp.strftime("%H:%M:%S"), style="dim")
        line.append("  ")

        protocol = event.protocol.value if event.protocol else "-"
        line.append(f"{protocol:<6}", style=_PROTOCOL_STYLES.get(protocol, "dim"))
        line.append("  ")

        if isinstance(event, CompletedEvent):
            line.append("Workflow completed", style="green")
        elif isinstance(event, ErrorEvent):
            line.append(event.error, style="red")
        else:
            line.append(event.message)
        return line

    def _render(self) -> Panel:
        icon, style, label = _STATUS_LABELS[self._run.status]
        header = Text()
        header.append(f"{icon} {label}", style=style)
        if self._run.workflow_id:
            header.append(f"   workflow {self._run.workflow_id}", style="dim")

        lines: list = [header, Text()]
        hidden = len(self._run.events) - self._max_lines
        if hidden > 0:
            lines.append(Text(f"… {hidden} earlier events", style="dim"))
        lines.extend(self._render_event(e) for e in self._run.events[-self._max_lines:])

        if not self._run.events:
            lines.append(Text("waiting for events...", style="dim"))

        return Panel(
            Group(*lines),
            title=Text(self._prompt[:60], style="bold"),
            border_style=_BORDER_STYLES[self._run.status],
        )


def render_result(result) -> Table | Text:
    """Build the final result view: a table for a calculation, JSON otherwise."""
    try:
        calc = CalculationResult.model_validate(result)
    except ValidationError:
        return Text(json.dumps(result, indent=2, default=str))

    table = Table(title="Result", show_header=False, border_style="bright_black")
    table.add_column("Field", style="dim", width=14)
    table.add_column("Value", style="bold")
    table.add_row("calculation", calc.calculation)
    table.add_row("numeric", f"{calc.numeric_result:g}")
    table.add_row("in words", calc.text_result)
    if calc.explanation:
        table.add_row("explanation", calc.explanation)
    return table
