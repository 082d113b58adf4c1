"""Terminal display tests. Renders to an in-memory console."""

from rich.console import Console
from rich.table import Table
from rich.text import Text

from core.reducer import WorkflowRun, apply
from display.live import LiveDisplay, render_result
from llm.mock import MOCK_RESULT
from schemas.events import ErrorData, ErrorEvent, LogData, LogEvent, ProtocolTag


def render(renderable) -> str:
    console = Console(record=True, width=120)
    console.print(renderable)
    return console.export_text()


class TestLiveDisplay:
    def test_waiting_before_first_event(self):
        display = LiveDisplay("Calculate 5+3")
        assert "waiting for events" in render(display._render())

    def test_renders_tags_and_brackets_literally(self):
        display = LiveDisplay("Calculate 5+3")
        run = apply(WorkflowRun(), LogEvent(
            workflow_id="wf-1",
            protocol=ProtocolTag.MCP,
            data=LogData(message="Tools registered: [calculate, parse, format]"),
        ))
        display._run = run

        out = render(display._render())
        assert "MCP" in out
        assert "[calculate, parse, format]" in out
        assert "wf-1" in out

    def test_error_status(self):
        display = LiveDisplay("x")
        display._run = apply(WorkflowRun(), ErrorEvent(workflow_id="wf-1", data=ErrorData(error="Connection to server lost")))

        out = render(display._render())
        assert "Error" in out
        assert "Connection to server lost" in out

    def test_long_logs_are_truncated(self):
        display = LiveDisplay("x", max_lines=3)
        run = WorkflowRun()
        for i in range(10):
            run = apply(run, LogEvent(workflow_id="wf-1", data=LogData(message=f"step {i}")))
        display._run = run

        out = render(display._render())
        assert "7 earlier events" in out
        assert "step 9" in out
        assert "step 6" not in out


class TestRenderResult:
    def test_calculation_becomes_table(self):
        table = render_result(MOCK_RESULT)
        assert isinstance(table, Table)
        assert "eight" in render(table)

    def test_other_payloads_render_as_json(self):
        out = render_result({"raw_response": "The answer is eight."})
        assert isinstance(out, Text)
        assert "raw_response" in out.plain
