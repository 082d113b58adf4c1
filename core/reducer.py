"""Client-side workflow state machine.

A WorkflowRun is the client's view of one workflow: the ordered event log
and a status. It only ever moves forward:

    running ──COMPLETED──▶ completed
    running ──ERROR──────▶ error

There are no transitions out of a terminal state; events that arrive after
one are ignored.

apply() is the pure transition function. EventReducer wraps one run for the
lifetime of a stream and adds the side effects around it: closing the
transport on a terminal event, synthesizing a single error when the
connection is lost, and making sure the caller hears "finished" exactly once
no matter how many triggers fire.
"""

import inspect
import logging
from collections.abc import Awaitable, Callable
from enum import Enum

from pydantic import BaseModel

from schemas.events import (
    CompletedEvent,
    ErrorData,
    ErrorEvent,
    EventType,
    ProtocolTag,
    WorkflowEvent,
)

logger = logging.getLogger(__name__)

CONNECTION_LOST_MESSAGE = "Connection to server lost"


class RunStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"


class WorkflowRun(BaseModel):
    """Client-held state for one workflow.

    Attributes:
        workflow_id: The run being watched. None until known — the combined
            submit-and-stream path learns it from the first event.
        events: Every applied event in arrival order. Append-only.
        status: running until a terminal event (or a synthesized one) lands.
    """

    workflow_id: str | None = None
    events: list[WorkflowEvent] = []
    status: RunStatus = RunStatus.RUNNING

    @property
    def finished(self) -> bool:
        return self.status is not RunStatus.RUNNING

    @property
    def result(self):
        """The COMPLETED payload, or None if the run did not complete with one."""
        for event in reversed(self.events):
            if isinstance(event, CompletedEvent):
                return event.result
        return None

    @property
    def error(self) -> str | None:
        """The ERROR message, or None if the run did not fail."""
        for event in reversed(self.events):
            if isinstance(event, ErrorEvent):
                return event.error
        return None


def apply(run: WorkflowRun, event: WorkflowEvent) -> WorkflowRun:
    """Return the run that results from applying one event.

    Never mutates the input run. An event arriving after a terminal state is
    ignored and the same run is returned.
    """
    if run.finished:
        logger.warning(
            "Ignoring %s event for workflow %s: run already %s.",
            event.event_type,
            run.workflow_id,
            run.status.value,
        )
        return run

    update: dict = {"events": [*run.events, event]}
    if run.workflow_id is None and event.workflow_id:
        update["workflow_id"] = event.workflow_id

    if event.event_type == EventType.COMPLETED:
        update["status"] = RunStatus.COMPLETED
    elif event.event_type == EventType.ERROR:
        update["status"] = RunStatus.ERROR

    return run.model_copy(update=update)


EventCallback = Callable[[WorkflowEvent, WorkflowRun], Awaitable[None] | None]
FinishedCallback = Callable[[WorkflowRun], Awaitable[None] | None]
CloseCallback = Callable[[], Awaitable[None]]


class EventReducer:
    """Owns one WorkflowRun for the lifetime of its stream.

    The reducer is the only writer of the run's events and status. Callers
    feed it decoded events and lifecycle signals; it reports back through
    three optional callbacks, each of which may be sync or async:

        on_event(event, run)  after every applied event
        on_finished(run)      exactly once, after the terminal event is logged
        close()               the transport's aclose, invoked on termination

    Attributes:
        run: The current state. Replaced (never mutated) on every change.
    """

    def __init__(
        self,
        workflow_id: str | None = None,
        on_event: EventCallback | None = None,
        on_finished: FinishedCallback | None = None,
        close: CloseCallback | None = None,
    ) -> None:
        self.run = WorkflowRun(workflow_id=workflow_id)
        self._on_event = on_event
        self._on_finished = on_finished
        self._close = close
        self._finished_notified = False
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    async def feed(self, event: WorkflowEvent) -> WorkflowRun:
        """Apply one event; on a terminal event close the stream and finish."""
        if self._cancelled or self.run.finished:
            return self.run

        if self.run.workflow_id and event.workflow_id and event.workflow_id != self.run.workflow_id:
            logger.warning(
                "Dropping event for workflow %s on stream for %s.",
                event.workflow_id,
                self.run.workflow_id,
            )
            return self.run

        self.run = apply(self.run, event)
        await _maybe_await(self._on_event, event, self.run)

        if self.run.finished:
            await self._finish()
        return self.run

    async def disconnect(self) -> WorkflowRun:
        """Record a lost connection. Synthesizes one ERROR event, at most once."""
        if self._cancelled or self.run.finished:
            return self.run

        logger.warning("Connection lost for workflow %s; marking run as failed.", self.run.workflow_id)
        return await self.feed(ErrorEvent(
            workflow_id=self.run.workflow_id or "",
            protocol=ProtocolTag.SYSTEM,
            data=ErrorData(error=CONNECTION_LOST_MESSAGE),
        ))

    async def end_of_stream(self) -> WorkflowRun:
        """Record a graceful end without a terminal event: implicit completion."""
        if self._cancelled or self.run.finished:
            return self.run

        logger.info(
            "Stream for workflow %s ended without a terminal event; treating as completed.",
            self.run.workflow_id,
        )
        self.run = self.run.model_copy(update={"status": RunStatus.COMPLETED})
        await self._finish()
        return self.run

    def cancel(self) -> None:
        """Stop all further mutation and notification for this run.

        Used when the caller tears the stream down on purpose, so the close
        that follows is not mistaken for a lost connection.
        """
        self._cancelled = True

    async def _finish(self) -> None:
        if self._finished_notified:
            return
        self._finished_notified = True
        if self._close is not None:
            await self._close()
        await _maybe_await(self._on_finished, self.run)


async def _maybe_await(callback, *args) -> None:
    if callback is None:
        return
    result = callback(*args)
    if inspect.isawaitable(result):
        await result
