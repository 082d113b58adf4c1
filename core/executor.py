"""Client-side workflow executor.

WorkflowExecutor drives one workflow from prompt to final state:

    submit prompt ──▶ workflow id ──▶ open stream ──▶ decode ──▶ reduce

It is the only place where the submission controller, a transport, the
codec and the reducer meet. Three entry points cover the three ways a run
can be fed:

    execute(prompt)                 POST /workflows, then GET .../stream
    orchestrate(prompt)             combined POST /orchestrate stream
    execute_local(orch, prompt)     orchestrator in this process, via a queue

Every path ends the same way: a WorkflowRun whose status is completed or
error, with "finished" reported exactly once. Cancelling the task that
awaits any of them closes the stream without recording an error.
"""

import asyncio
import contextlib
import inspect
import logging
import uuid

import httpx

from core.codec import EventDecodeError, decode_event
from core.orchestrator import WorkflowOrchestrator
from core.reducer import EventCallback, EventReducer, FinishedCallback, WorkflowRun
from core.submission import SubmissionController, SubmissionError
from core.transport import (
    ChunkedStreamTransport,
    QueueStreamTransport,
    SSEStreamTransport,
    StreamTransport,
    TransportError,
)
from schemas.events import WorkflowEvent

logger = logging.getLogger(__name__)

DEFAULT_BACKEND_URL = "http://localhost:8000"


class WorkflowExecutor:
    """Submits workflows and folds their event streams into WorkflowRuns.

    Runs are independent and kept by workflow id, so nothing prevents
    several from streaming at once, although a single viewer normally
    watches one at a time.

    Attributes:
        base_url: Backend root URL.
        submission: The controller that mints workflow ids.
        runs: Latest known state of every run, keyed by workflow id.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BACKEND_URL,
        client: httpx.AsyncClient | None = None,
        on_event: EventCallback | None = None,
        on_finished: FinishedCallback | None = None,
    ) -> None:
        """Initialise the executor.

        Args:
            base_url: Backend root URL.
            client: Optional shared httpx client for submission and streams.
            on_event: Called with (event, run) after every applied event.
            on_finished: Called once per run with its final state.
        """
        self.base_url = base_url.rstrip("/")
        self.submission = SubmissionController(self.base_url, client=client)
        self.runs: dict[str, WorkflowRun] = {}
        self._client = client
        self._on_event = on_event
        self._on_finished = on_finished
        self._active: dict[int, tuple[EventReducer, StreamTransport]] = {}

    async def execute(self, prompt: str) -> WorkflowRun:
        """Submit a prompt, then watch the workflow's event stream to the end.

        Raises:
            ValueError: If prompt is blank.
            SubmissionError: If the workflow could not be created. No stream
                is opened in that case.
        """
        workflow_id = await self.submission.submit(prompt)
        transport = SSEStreamTransport(self.base_url, workflow_id, client=self._client)
        return await self.watch(transport, workflow_id)

    async def orchestrate(self, prompt: str) -> WorkflowRun:
        """Submit and stream in one request via the combined endpoint.

        The workflow id is learned from the first event. A rejected request
        (non-2xx before any event) is reported as a SubmissionError, the same
        as on the two-step path.

        Raises:
            ValueError: If prompt is blank.
            SubmissionError: If the backend rejected the request.
        """
        if not prompt or not prompt.strip():
            raise ValueError("prompt must contain non-whitespace text")

        self.submission.reset()
        transport = ChunkedStreamTransport(self.base_url, prompt, client=self._client)
        return await self.watch(transport, reject_as_submission_error=True)

    async def execute_local(self, orchestrator: WorkflowOrchestrator, prompt: str) -> WorkflowRun:
        """Run the orchestrator in this process and watch it over a queue."""
        if not prompt or not prompt.strip():
            raise ValueError("prompt must contain non-whitespace text")

        workflow_id = str(uuid.uuid4())
        transport = QueueStreamTransport()
        producer = asyncio.create_task(
            publish(orchestrator, transport, workflow_id, prompt),
            name=f"publish-{workflow_id}",
        )
        try:
            return await self.watch(transport, workflow_id)
        finally:
            if not producer.done():
                producer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await producer

    async def watch(
        self,
        transport: StreamTransport,
        workflow_id: str | None = None,
        *,
        reject_as_submission_error: bool = False,
    ) -> WorkflowRun:
        """Consume one transport until the run finishes.

        Malformed messages are logged and skipped. A TransportError becomes
        one synthesized ERROR event. A clean end without a terminal event
        completes the run implicitly. The transport is always closed on exit.

        Args:
            transport: A fresh, unconsumed transport for this run.
            workflow_id: The run's id when already known.
            reject_as_submission_error: Raise SubmissionError instead of
                recording a lost connection when the stream request itself
                is rejected before any event arrives.

        Returns:
            The final WorkflowRun.
        """
        reducer = EventReducer(
            workflow_id=workflow_id,
            on_event=self._handle_event,
            on_finished=self._on_finished,
            close=transport.aclose,
        )
        key = id(reducer)
        self._active[key] = (reducer, transport)

        try:
            async for payload in transport:
                try:
                    event = decode_event(payload)
                except EventDecodeError as exc:
                    logger.warning("Skipping malformed event: %s (raw: %r)", exc, exc.raw)
                    continue
                await reducer.feed(event)
            await reducer.end_of_stream()

        except TransportError as exc:
            if reject_as_submission_error and exc.status_code is not None and not reducer.run.events:
                reducer.cancel()
                raise SubmissionError(str(exc), status_code=exc.status_code) from exc
            logger.warning("Stream for workflow %s failed: %s", reducer.run.workflow_id, exc)
            await reducer.disconnect()

        except asyncio.CancelledError:
            reducer.cancel()
            raise

        finally:
            self._active.pop(key, None)
            await transport.aclose()

        self._remember(reducer.run)
        return reducer.run

    async def cancel(self) -> None:
        """Tear down every active stream without reporting an error."""
        for reducer, transport in list(self._active.values()):
            reducer.cancel()
            await transport.aclose()

    def discard(self, workflow_id: str) -> None:
        """Forget a run (the user started a new workflow or left the view)."""
        self.runs.pop(workflow_id, None)

    async def _handle_event(self, event: WorkflowEvent, run: WorkflowRun) -> None:
        self._remember(run)
        if self._on_event is not None:
            result = self._on_event(event, run)
            if inspect.isawaitable(result):
                await result

    def _remember(self, run: WorkflowRun) -> None:
        if run.workflow_id:
            self.runs[run.workflow_id] = run


async def publish(
    orchestrator: WorkflowOrchestrator,
    transport: QueueStreamTransport,
    workflow_id: str,
    prompt: str,
) -> None:
    """Feed one orchestrator run into an in-process transport.

    Events are passed as their JSON payloads so the consumer goes through
    the same decode path as over HTTP.
    """
    try:
        async for event in orchestrator.run(workflow_id, prompt):
            await transport.put_message(event.model_dump_json())
    except Exception:
        await transport.put_disconnect()
        raise
    await transport.put_done()
