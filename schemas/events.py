"""Workflow event schema.

Events are emitted by the orchestrator during a workflow run and streamed to
the client one per line. The client folds them into a WorkflowRun; the
orchestrator never waits on anyone reading them.

The payload is a tagged union keyed on event_type. Each variant carries
exactly one data shape, so "which fields are valid together" is decided by
the type, not by optional fields:

    LOG        → data.message
    COMPLETED  → data.result
    ERROR      → data.error
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field


class EventType(str, Enum):
    """The lifecycle notifications a workflow stream can carry.

    Extends str so values compare equal to the raw wire strings ("LOG",
    "COMPLETED", "ERROR") and serialize without the enum prefix.

    Values:
        LOG: Progress message. Never ends the stream.
        COMPLETED: The run finished and produced a result. Terminal.
        ERROR: The run failed. Terminal.
    """

    LOG = "LOG"
    COMPLETED = "COMPLETED"
    ERROR = "ERROR"


TERMINAL_EVENT_TYPES = frozenset({EventType.COMPLETED, EventType.ERROR})


class ProtocolTag(str, Enum):
    """Which collaborator produced an event. Display only."""

    MCP = "MCP"
    A2A = "A2A"
    SYSTEM = "SYSTEM"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LogData(BaseModel):
    message: str = ""


class CompletedData(BaseModel):
    result: Any = None


class ErrorData(BaseModel):
    error: str


class _BaseEvent(BaseModel):
    """Fields shared by every event variant.

    Attributes:
        id: Receiver-assigned identifier. Used for display de-duplication
            only and never written to the wire, so a producer that reuses
            ids cannot collide two events on the client.
        workflow_id: The run this event belongs to. Constant across a stream.
        protocol: Optional collaborator tag (MCP, A2A, SYSTEM).
        timestamp: Emission instant. Stream order, not this value, is the
            ordering that matters for correctness.
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), exclude=True)
    workflow_id: str
    protocol: ProtocolTag | None = None
    timestamp: datetime = Field(default_factory=_utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.event_type in TERMINAL_EVENT_TYPES


class LogEvent(_BaseEvent):
    event_type: Literal["LOG"] = "LOG"
    data: LogData

    @property
    def message(self) -> str:
        return self.data.message


class CompletedEvent(_BaseEvent):
    event_type: Literal["COMPLETED"] = "COMPLETED"
    data: CompletedData

    @property
    def result(self) -> Any:
        return self.data.result


class ErrorEvent(_BaseEvent):
    event_type: Literal["ERROR"] = "ERROR"
    data: ErrorData

    @property
    def error(self) -> str:
        return self.data.error


WorkflowEvent = Annotated[
    Union[LogEvent, CompletedEvent, ErrorEvent],
    Field(discriminator="event_type"),
]
