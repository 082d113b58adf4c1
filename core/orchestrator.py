"""Workflow orchestrator — the producer side of the event stream.

WorkflowOrchestrator runs one workflow as a fixed sequence of phases and
yields a strictly ordered stream of events for it:

    1. SYSTEM  initialize the orchestration engine
    2. MCP     handshake with the tool agent
    3. A2A     discover and connect the text agent
    4. SYSTEM  decompose the task
    5. MCP     execute the computation — the single gateway call
    6. A2A     convert the result to text
    7. SYSTEM  aggregate results
    8.         COMPLETED with the parsed result

The gateway call is the only step that can genuinely fail. A failure there
ends the stream with one ERROR event and no later phase runs. Any other
exception is caught and also ends the stream with an ERROR event, so a
consumer always sees exactly one terminal event.

The pauses between phases are pacing for people watching the log, not a
correctness requirement. Pass pace=0 to run without them.
"""

import asyncio
import logging
import pathlib
from collections.abc import AsyncIterator

from llm.base import GatewayError, LLMClient
from schemas.events import (
    CompletedData,
    CompletedEvent,
    ErrorData,
    ErrorEvent,
    LogData,
    LogEvent,
    ProtocolTag,
    WorkflowEvent,
)
from utils.parse import parse_workflow_result

logger = logging.getLogger(__name__)

_PROMPT_FILE = pathlib.Path(__file__).parent.parent / "prompts" / "orchestrator.txt"

RATE_LIMIT_MESSAGE = "Rate limit exceeded. Please try again later."
CREDITS_EXHAUSTED_MESSAGE = "AI credits exhausted. Please add funds."
PROCESSING_FAILED_MESSAGE = "AI processing failed"
UNKNOWN_ERROR_MESSAGE = "Unknown error"

TEXT_AGENT = "TextConverter-01"


class WorkflowOrchestrator:
    """Produces the event sequence for one workflow run at a time.

    Stateless between runs: the same instance can serve any number of
    concurrent run() generators.

    Attributes:
        llm: The completion gateway, called once per run.
        pace: Multiplier for the fixed phase delays. 1.0 is the normal
            human-watchable speed; 0 disables pausing.
    """

    def __init__(self, llm: LLMClient, pace: float = 1.0) -> None:
        self.llm = llm
        self.pace = pace
        self._system_prompt = _PROMPT_FILE.read_text()

    async def run(self, workflow_id: str, prompt: str) -> AsyncIterator[WorkflowEvent]:
        """Yield the events of one workflow, ending with exactly one terminal event.

        Args:
            workflow_id: Id stamped on every event of this run.
            prompt: The user's task, forwarded to the gateway.

        Yields:
            LogEvents for each phase, then a single CompletedEvent or
            ErrorEvent. Five phases are logged before the gateway call, so a
            gateway failure (a 429 included) arrives as the sixth event.
        """
        logger.info("Workflow %s started.", workflow_id)

        try:
            yield _log(workflow_id, ProtocolTag.SYSTEM, "Initializing MetaOrcha orchestration engine...")
            await self._pause(0.4)

            yield _log(
                workflow_id, ProtocolTag.MCP,
                "MCP handshake complete. Tools registered: [calculate, parse, format]",
            )
            await self._pause(0.5)

            yield _log(
                workflow_id, ProtocolTag.A2A,
                f"A2A agent '{TEXT_AGENT}' connected. Capabilities: [text-transform, number-to-words]",
            )
            await self._pause(0.4)

            yield _log(workflow_id, ProtocolTag.SYSTEM, f'Decomposing task: "{prompt}" into 2 subtasks')
            await self._pause(0.4)

            yield _log(workflow_id, ProtocolTag.MCP, "MCP Agent executing computation subtask...")
            await self._pause(0.3)

            try:
                raw = await self.llm.complete(system=self._system_prompt, user=prompt)
            except GatewayError as exc:
                logger.error("Gateway call failed for workflow %s (HTTP %s): %s", workflow_id, exc.status_code, exc)
                yield _error(workflow_id, gateway_failure_message(exc.status_code))
                return

            yield _log(workflow_id, ProtocolTag.A2A, f"A2A Agent '{TEXT_AGENT}' converting result to text...")
            await self._pause(0.5)

            yield _log(workflow_id, ProtocolTag.SYSTEM, "Aggregating results from all agents...")
            await self._pause(0.4)

            result = parse_workflow_result(raw)
            logger.info("Workflow %s completed.", workflow_id)
            yield CompletedEvent(
                workflow_id=workflow_id,
                protocol=ProtocolTag.SYSTEM,
                data=CompletedData(result=result),
            )

        except Exception as exc:
            logger.exception("Workflow %s failed with an unhandled error.", workflow_id)
            yield _error(workflow_id, str(exc) or UNKNOWN_ERROR_MESSAGE)

    async def _pause(self, seconds: float) -> None:
        if self.pace > 0:
            await asyncio.sleep(seconds * self.pace)


def gateway_failure_message(status_code: int | None) -> str:
    """Map a failed gateway call to the message shown to the user."""
    if status_code == 429:
        return RATE_LIMIT_MESSAGE
    if status_code == 402:
        return CREDITS_EXHAUSTED_MESSAGE
    return PROCESSING_FAILED_MESSAGE


def _log(workflow_id: str, protocol: ProtocolTag, message: str) -> LogEvent:
    return LogEvent(workflow_id=workflow_id, protocol=protocol, data=LogData(message=message))


def _error(workflow_id: str, message: str) -> ErrorEvent:
    return ErrorEvent(workflow_id=workflow_id, protocol=ProtocolTag.SYSTEM, data=ErrorData(error=message))
