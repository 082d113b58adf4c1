"""Workflow submission schemas.

The request/response pair exchanged when a client creates a workflow. The
event stream that follows is described in schemas.events.
"""

from pydantic import BaseModel, field_validator


class WorkflowRequest(BaseModel):
    """Body of POST /api/v1/workflows and POST /api/v1/orchestrate.

    Attributes:
        prompt: Natural-language task for the agent swarm. Surrounding
            whitespace is stripped; an empty result is rejected.
    """

    prompt: str

    @field_validator("prompt")
    @classmethod
    def _prompt_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("prompt is required")
        return value


class WorkflowCreated(BaseModel):
    """Success response of POST /api/v1/workflows."""

    workflow_id: str
    status: str = "pending"
