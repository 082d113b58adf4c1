"""MetaOrcha — CLI workflow runner.

Submits a prompt, renders the workflow's event log live in the terminal
using Rich, and prints the result table when the run finishes.

Usage:
    uv run python cli.py "Calculate 5+3 and convert to words"
    uv run python cli.py --combined "..."     # single submit-and-stream request
    uv run python cli.py --local "..."        # no server; canned gateway unless GATEWAY_API_KEY is set

Exit status is 0 when the workflow completed, 1 when it failed, 2 when it
could not be submitted.
"""

import argparse
import asyncio
import os

from dotenv import load_dotenv
from rich.console import Console

from core.executor import DEFAULT_BACKEND_URL, WorkflowExecutor
from core.orchestrator import WorkflowOrchestrator
from core.reducer import RunStatus, WorkflowRun
from core.submission import SubmissionError
from display.live import LiveDisplay, render_result
from llm import GatewayClient, LLMClient, MockGatewayClient

load_dotenv()

console = Console()


def _local_gateway() -> LLMClient:
    """Real gateway when a key is configured and mocking is not forced."""
    if os.environ.get("USE_MOCK_GATEWAY", "").lower() in {"1", "true", "yes"}:
        return MockGatewayClient()
    if not os.environ.get("GATEWAY_API_KEY"):
        return MockGatewayClient()
    return GatewayClient()


def _print_outcome(run: WorkflowRun) -> None:
    """Render the final result, or the failure message."""
    if run.status is RunStatus.COMPLETED:
        if run.result is not None:
            console.print()
            console.print(render_result(run.result))
        console.print("\n[bold green]✓  Workflow completed[/bold green]")
    elif run.status is RunStatus.ERROR:
        console.print(f"\n[bold red]✗  {run.error}[/bold red]")
    else:
        console.print("\n[yellow]Workflow did not finish.[/yellow]")
    if run.workflow_id:
        console.print(f"[dim]workflow: {run.workflow_id}[/dim]\n")


async def _run(args: argparse.Namespace) -> int:
    display = LiveDisplay(args.prompt)

    with display.make_live() as live:
        executor = WorkflowExecutor(
            base_url=args.url,
            on_event=lambda event, run: display.update(run, live),
        )
        try:
            if args.local:
                orchestrator = WorkflowOrchestrator(_local_gateway(), pace=args.pace)
                run = await executor.execute_local(orchestrator, args.prompt)
            elif args.combined:
                run = await executor.orchestrate(args.prompt)
            else:
                run = await executor.execute(args.prompt)
        except SubmissionError as exc:
            live.stop()
            console.print(f"[bold red]Submission failed:[/bold red] {exc}")
            return 2
        display.update(run, live)

    _print_outcome(run)
    return 0 if run.status is RunStatus.COMPLETED else 1


def main() -> None:
    parser = argparse.ArgumentParser(description="Run a MetaOrcha workflow and watch its events.")
    parser.add_argument("prompt", help="the task for the agent swarm")
    parser.add_argument(
        "--url",
        default=os.environ.get("METAORCHA_BACKEND_URL", DEFAULT_BACKEND_URL),
        help="backend root URL (default: $METAORCHA_BACKEND_URL or %(default)s)",
    )
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--combined", action="store_true", help="submit and stream in one request")
    mode.add_argument("--local", action="store_true", help="run the orchestrator in this process (no backend needed)")
    parser.add_argument("--pace", type=float, default=1.0, help="phase delay multiplier for --local")
    args = parser.parse_args()

    if not args.prompt.strip():
        parser.error("prompt must not be empty")

    raise SystemExit(asyncio.run(_run(args)))


if __name__ == "__main__":
    main()
