"""Workflow orchestrator tests.

The gateway is replaced by stub LLMClients; pace=0 removes the phase
delays so every run completes immediately.
"""

import json

from core.orchestrator import (
    CREDITS_EXHAUSTED_MESSAGE,
    PROCESSING_FAILED_MESSAGE,
    RATE_LIMIT_MESSAGE,
    WorkflowOrchestrator,
    gateway_failure_message,
)
from llm.base import GatewayError, LLMClient
from llm.mock import MOCK_RESULT, MockGatewayClient
from schemas.events import CompletedEvent, ErrorEvent, LogEvent, ProtocolTag


class StubLLM(LLMClient):
    def __init__(self, response: str = "", error: Exception | None = None):
        self.response = response
        self.error = error
        self.calls = []

    async def complete(self, system: str, user: str) -> str:
        self.calls.append((system, user))
        if self.error is not None:
            raise self.error
        return self.response


async def run_all(llm: LLMClient, prompt: str = "Calculate 5+3 and convert to words") -> list:
    orchestrator = WorkflowOrchestrator(llm, pace=0)
    return [event async for event in orchestrator.run("wf-1", prompt)]


class TestWorkflowOrchestrator:
    async def test_success_yields_seven_logs_then_completed(self):
        llm = StubLLM(json.dumps(MOCK_RESULT))
        events = await run_all(llm)

        assert len(events) == 8
        assert all(isinstance(e, LogEvent) for e in events[:7])
        assert isinstance(events[-1], CompletedEvent)
        assert events[-1].result == MOCK_RESULT
        assert all(e.workflow_id == "wf-1" for e in events)

    async def test_phase_protocol_tags(self):
        events = await run_all(StubLLM("{}"))
        assert [e.protocol for e in events] == [
            ProtocolTag.SYSTEM,
            ProtocolTag.MCP,
            ProtocolTag.A2A,
            ProtocolTag.SYSTEM,
            ProtocolTag.MCP,
            ProtocolTag.A2A,
            ProtocolTag.SYSTEM,
            ProtocolTag.SYSTEM,
        ]

    async def test_prompt_is_quoted_in_decomposition_log(self):
        events = await run_all(StubLLM("{}"), prompt="add 2 and 2")
        assert events[3].message == 'Decomposing task: "add 2 and 2" into 2 subtasks'

    async def test_gateway_called_once_with_system_prompt(self):
        llm = StubLLM("{}")
        await run_all(llm, prompt="add 2 and 2")
        assert len(llm.calls) == 1
        system, user = llm.calls[0]
        assert "numeric_result" in system
        assert user == "add 2 and 2"

    async def test_code_fences_are_stripped(self):
        events = await run_all(StubLLM(f"```json\n{json.dumps(MOCK_RESULT)}\n```"))
        assert events[-1].result == MOCK_RESULT

    async def test_unparseable_response_is_kept_raw(self):
        events = await run_all(StubLLM("The answer is eight."))
        assert isinstance(events[-1], CompletedEvent)
        assert events[-1].result == {"raw_response": "The answer is eight."}

    async def test_rate_limit_stops_after_five_logs(self):
        events = await run_all(StubLLM(error=GatewayError("too many", status_code=429)))
        assert len(events) == 6
        assert all(isinstance(e, LogEvent) for e in events[:5])
        assert isinstance(events[-1], ErrorEvent)
        assert events[-1].error == RATE_LIMIT_MESSAGE
        assert events[-1].protocol == ProtocolTag.SYSTEM

    async def test_credits_exhausted(self):
        events = await run_all(StubLLM(error=GatewayError("pay up", status_code=402)))
        assert events[-1].error == CREDITS_EXHAUSTED_MESSAGE

    async def test_other_gateway_failure(self):
        events = await run_all(StubLLM(error=GatewayError("bad", status_code=500)))
        assert events[-1].error == PROCESSING_FAILED_MESSAGE

    async def test_unreachable_gateway(self):
        events = await run_all(StubLLM(error=GatewayError("unreachable")))
        assert events[-1].error == PROCESSING_FAILED_MESSAGE

    async def test_unexpected_exception_becomes_error_event(self):
        events = await run_all(StubLLM(error=RuntimeError("socket exploded")))
        assert isinstance(events[-1], ErrorEvent)
        assert events[-1].error == "socket exploded"
        assert sum(1 for e in events if e.is_terminal) == 1

    async def test_exception_without_message(self):
        events = await run_all(StubLLM(error=RuntimeError()))
        assert events[-1].error == "Unknown error"

    async def test_exactly_one_terminal_event(self):
        for llm in (StubLLM("{}"), StubLLM(error=GatewayError("x", status_code=429))):
            events = await run_all(llm)
            assert sum(1 for e in events if e.is_terminal) == 1
            assert events[-1].is_terminal

    async def test_mock_gateway_end_to_end(self):
        events = await run_all(MockGatewayClient(delay=0))
        assert events[-1].result == MOCK_RESULT


class TestGatewayFailureMessage:
    def test_mapping(self):
        assert gateway_failure_message(429) == RATE_LIMIT_MESSAGE
        assert gateway_failure_message(402) == CREDITS_EXHAUSTED_MESSAGE
        assert gateway_failure_message(500) == PROCESSING_FAILED_MESSAGE
        assert gateway_failure_message(None) == PROCESSING_FAILED_MESSAGE
