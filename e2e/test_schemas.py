"""Schema tests.

Covers the workflow event tagged union and the submission request model.
Pure pydantic, no I/O.
"""

from datetime import datetime

import pytest
from pydantic import TypeAdapter, ValidationError

from schemas.events import (
    CompletedData,
    CompletedEvent,
    ErrorData,
    ErrorEvent,
    EventType,
    LogData,
    LogEvent,
    ProtocolTag,
    WorkflowEvent,
)
from schemas.result import CalculationResult
from schemas.workflow import WorkflowCreated, WorkflowRequest

adapter = TypeAdapter(WorkflowEvent)


class TestWorkflowEvent:
    def test_event_type_selects_variant(self):
        event = adapter.validate_python({
            "workflow_id": "wf-1",
            "event_type": "COMPLETED",
            "data": {"result": {"answer": 8}},
        })
        assert isinstance(event, CompletedEvent)
        assert event.result == {"answer": 8}

    def test_error_variant_requires_error_field(self):
        with pytest.raises(ValidationError):
            adapter.validate_python({"workflow_id": "wf-1", "event_type": "ERROR", "data": {}})

    def test_unknown_event_type_is_rejected(self):
        with pytest.raises(ValidationError):
            adapter.validate_python({"workflow_id": "wf-1", "event_type": "PROGRESS", "data": {}})

    def test_defaults_fill_id_and_timestamp(self):
        event = LogEvent(workflow_id="wf-1", data=LogData(message="hi"))
        assert event.id
        assert isinstance(event.timestamp, datetime)
        assert event.timestamp.tzinfo is not None
        assert event.protocol is None

    def test_each_event_gets_its_own_id(self):
        a = LogEvent(workflow_id="wf-1", data=LogData(message="a"))
        b = LogEvent(workflow_id="wf-1", data=LogData(message="a"))
        assert a.id != b.id

    def test_id_is_not_serialized(self):
        event = LogEvent(workflow_id="wf-1", protocol=ProtocolTag.MCP, data=LogData(message="x"))
        dumped = event.model_dump(mode="json")
        assert "id" not in dumped
        assert dumped["event_type"] == "LOG"
        assert dumped["protocol"] == "MCP"

    def test_is_terminal(self):
        log = LogEvent(workflow_id="wf-1", data=LogData(message="x"))
        done = CompletedEvent(workflow_id="wf-1", data=CompletedData(result=None))
        failed = ErrorEvent(workflow_id="wf-1", data=ErrorData(error="boom"))
        assert not log.is_terminal
        assert done.is_terminal
        assert failed.is_terminal

    def test_event_type_compares_to_wire_string(self):
        assert EventType.ERROR == "ERROR"
        assert ErrorEvent(workflow_id="wf-1", data=ErrorData(error="x")).event_type == EventType.ERROR


class TestWorkflowRequest:
    def test_prompt_is_stripped(self):
        assert WorkflowRequest(prompt="  add 2 and 2 ").prompt == "add 2 and 2"

    @pytest.mark.parametrize("prompt", ["", "   ", "\n\t"])
    def test_blank_prompt_is_rejected(self, prompt):
        with pytest.raises(ValidationError, match="prompt is required"):
            WorkflowRequest(prompt=prompt)

    def test_missing_prompt_is_rejected(self):
        with pytest.raises(ValidationError):
            WorkflowRequest.model_validate({})

    def test_created_defaults_to_pending(self):
        assert WorkflowCreated(workflow_id="wf-1").status == "pending"


class TestCalculationResult:
    def test_accepts_gateway_shape(self):
        calc = CalculationResult.model_validate({
            "calculation": "5+3",
            "numeric_result": 8,
            "text_result": "eight",
        })
        assert calc.numeric_result == 8.0
        assert calc.explanation == ""

    def test_rejects_other_shapes(self):
        with pytest.raises(ValidationError):
            CalculationResult.model_validate({"raw_response": "nope"})
