"""MetaOrcha — workflow orchestration service.

This file handles two concerns:

1. Intake — accepts a workflow prompt, validates it, and mints a workflow id.

2. Streaming — runs the orchestrator for a workflow and streams its events
   to the client as server-sent events, one "data: <json>" frame per event,
   closed by "data: [DONE]".

Flow, two-step:
    POST /api/v1/workflows                 {prompt}
        → validate prompt
        → create pending WorkflowRecord in store
        → return 201 + workflow_id

    GET /api/v1/workflows/{id}/stream
        → run WorkflowOrchestrator.run()
        → stream events as they are produced
        → update record to status="completed" (or "error")

Flow, combined:
    POST /api/v1/orchestrate               {prompt}
        → validate, mint id, and stream in the same response

Run locally:
    uv run uvicorn main:app --reload
    uv run python main.py
"""

import json
import logging
import logging.handlers
import os
import pathlib
import uuid
from collections.abc import AsyncIterator
from datetime import datetime, timezone
from typing import Any, Literal

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, ValidationError

load_dotenv()

from core.codec import DONE_FRAME, encode_event
from core.orchestrator import WorkflowOrchestrator
from llm import GatewayClient, LLMClient, MockGatewayClient
from schemas.events import EventType
from schemas.workflow import WorkflowCreated, WorkflowRequest

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

LOG_FILE = pathlib.Path(__file__).parent / "metaorcha.log"
LOG_FORMAT = "%(asctime)s  %(levelname)-8s  %(name)s  %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_file_handler = logging.handlers.RotatingFileHandler(
    LOG_FILE, maxBytes=1_000_000, backupCount=3, encoding="utf-8",
)
_file_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))

_root_logger = logging.getLogger()
_root_logger.setLevel(logging.INFO)
_root_logger.addHandler(_file_handler)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# App + CORS
# ---------------------------------------------------------------------------

app = FastAPI(title="MetaOrcha")

# ALLOWED_ORIGINS env var overrides the default for production deployments.
_origins = os.environ.get("ALLOWED_ORIGINS", "http://localhost:3000").split(",")

app.add_middleware(
    CORSMiddleware,
    allow_origins=_origins,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)

# ---------------------------------------------------------------------------
# Orchestrator setup — the gateway is chosen once, here
# ---------------------------------------------------------------------------

GATEWAY_NOT_CONFIGURED = "AI gateway not configured"
PROMPT_REQUIRED = "prompt is required"


def build_gateway() -> LLMClient | None:
    """Pick the completion gateway for this process.

    USE_MOCK_GATEWAY=true selects the canned client. Otherwise the real
    gateway is used when GATEWAY_API_KEY is set, and None is returned when
    it is not, which makes the workflow endpoints answer 500.
    """
    if os.environ.get("USE_MOCK_GATEWAY", "").lower() in {"1", "true", "yes"}:
        logger.info("USE_MOCK_GATEWAY set — using canned gateway responses.")
        return MockGatewayClient()
    if not os.environ.get("GATEWAY_API_KEY"):
        logger.warning("GATEWAY_API_KEY not set — workflow endpoints are disabled.")
        return None
    return GatewayClient()


_gateway = build_gateway()
orchestrator: WorkflowOrchestrator | None = (
    WorkflowOrchestrator(_gateway, pace=float(os.environ.get("ORCHESTRATION_PACE", "1.0")))
    if _gateway is not None
    else None
)

# ---------------------------------------------------------------------------
# Workflow store
# ---------------------------------------------------------------------------

class WorkflowRecord(BaseModel):
    """Server-side record of one workflow.

    status lifecycle:
        "pending"   → created by POST /workflows, stream not opened yet
        "running"   → stream opened, orchestrator producing events
        "completed" → COMPLETED event sent, result populated
        "error"     → ERROR event sent, error populated
    """
    workflow_id: str
    prompt: str
    status: Literal["pending", "running", "completed", "error"]
    result: Any = None
    error: str | None = None
    created_at: str = ""


# In-memory store: workflow_id → WorkflowRecord.
# Lost on server restart.
_store: dict[str, WorkflowRecord] = {}


def _save(record: WorkflowRecord) -> None:
    _store[record.workflow_id] = record


def _new_record(prompt: str) -> WorkflowRecord:
    record = WorkflowRecord(
        workflow_id=str(uuid.uuid4()),
        prompt=prompt,
        status="pending",
        created_at=datetime.now(timezone.utc).isoformat(),
    )
    _save(record)
    return record


# ---------------------------------------------------------------------------
# Request errors
# ---------------------------------------------------------------------------

class RequestRejected(Exception):
    """Raised by handlers to answer with {"error": message} and a status."""

    def __init__(self, message: str, status_code: int):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


@app.exception_handler(RequestRejected)
async def _request_rejected(request: Request, exc: RequestRejected) -> JSONResponse:
    return JSONResponse({"error": exc.message}, status_code=exc.status_code)


async def _parse_request(request: Request) -> WorkflowRequest:
    try:
        return WorkflowRequest.model_validate(await request.json())
    except (json.JSONDecodeError, ValidationError) as exc:
        logger.info("Rejected workflow request: %s", exc)
        raise RequestRejected(PROMPT_REQUIRED, status_code=400)


def _require_orchestrator() -> WorkflowOrchestrator:
    if orchestrator is None:
        raise RequestRejected(GATEWAY_NOT_CONFIGURED, status_code=500)
    return orchestrator


# ---------------------------------------------------------------------------
# Event streaming
# ---------------------------------------------------------------------------

_SSE_HEADERS = {"Cache-Control": "no-cache", "X-Accel-Buffering": "no"}


async def _event_stream(runner: WorkflowOrchestrator, record: WorkflowRecord) -> AsyncIterator[str]:
    """Run the orchestrator for one record and frame its events as SSE."""
    async for event in runner.run(record.workflow_id, record.prompt):
        if event.event_type == EventType.COMPLETED:
            _save(_store[record.workflow_id].model_copy(update={
                "status": "completed",
                "result": event.result,
            }))
        elif event.event_type == EventType.ERROR:
            _save(_store[record.workflow_id].model_copy(update={
                "status": "error",
                "error": event.error,
            }))
        yield encode_event(event)

    yield DONE_FRAME


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

@app.get("/health")
def health():
    return {"status": "ok"}


@app.post("/api/v1/workflows", status_code=201, response_model=WorkflowCreated)
async def create_workflow(request: Request):
    """Create a pending workflow and return its id.

    The client opens GET /api/v1/workflows/{id}/stream next to run it.
    """
    body = await _parse_request(request)
    _require_orchestrator()

    record = _new_record(body.prompt)
    logger.info("Accepted workflow %s (pending).", record.workflow_id)
    return WorkflowCreated(workflow_id=record.workflow_id, status=record.status)


@app.get("/api/v1/workflows/{workflow_id}", response_model=WorkflowRecord)
def get_workflow(workflow_id: str):
    """Return a workflow record by id. 404 if unknown."""
    if workflow_id not in _store:
        raise RequestRejected(f"Workflow '{workflow_id}' not found.", status_code=404)
    return _store[workflow_id]


@app.get("/api/v1/workflows/{workflow_id}/stream")
async def stream_workflow(workflow_id: str):
    """Run a pending workflow and stream its events.

    A workflow runs once: a second stream request answers 409 rather than
    calling the gateway again.
    """
    if workflow_id not in _store:
        raise RequestRejected(f"Workflow '{workflow_id}' not found.", status_code=404)

    record = _store[workflow_id]
    if record.status != "pending":
        raise RequestRejected(f"Workflow '{workflow_id}' has already been started.", status_code=409)

    runner = _require_orchestrator()
    _save(record.model_copy(update={"status": "running"}))
    return StreamingResponse(
        _event_stream(runner, record),
        media_type="text/event-stream",
        headers=_SSE_HEADERS,
    )


@app.post("/api/v1/orchestrate")
async def orchestrate(request: Request):
    """Create a workflow and stream its events in the same response."""
    body = await _parse_request(request)
    runner = _require_orchestrator()

    record = _new_record(body.prompt)
    logger.info("Accepted workflow %s (combined stream).", record.workflow_id)
    _save(record.model_copy(update={"status": "running"}))
    return StreamingResponse(
        _event_stream(runner, record),
        media_type="text/event-stream",
        headers=_SSE_HEADERS,
    )


if __name__ == "__main__":
    uvicorn.run("main:app", host="127.0.0.1", port=8000, reload=True)
