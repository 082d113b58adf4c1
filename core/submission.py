"""Workflow submission.

SubmissionController issues the one request that creates a workflow and
returns its id. It owns the workflow id: set on success, cleared on reset or
at the start of the next submission. It never retries; the caller decides
whether to submit again.

Cancelling the task that awaits submit() abandons the request. No event is
produced for a cancelled submission and the controller stays usable.
"""

import json
import logging

import httpx

logger = logging.getLogger(__name__)

SUBMISSION_FAILED_MESSAGE = "Workflow submission failed"
CONNECTION_FAILED_MESSAGE = "Connection failed"
MISSING_ID_MESSAGE = "No workflow ID returned"

SUBMIT_TIMEOUT = httpx.Timeout(30.0)


class SubmissionError(Exception):
    """Raised when a workflow could not be created.

    Surfaced to the user before any stream is opened. Recoverable by
    submitting again.

    Attributes:
        status_code: HTTP status of the rejected request, None when the
            request never got a response.
    """

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class SubmissionController:
    """Creates workflows on the backend.

    Attributes:
        base_url: Backend root URL (e.g. "http://localhost:8000").
        workflow_id: Id minted by the last successful submit(), or None.
    """

    def __init__(self, base_url: str, client: httpx.AsyncClient | None = None) -> None:
        """Initialise the controller.

        Args:
            base_url: Backend root URL.
            client: Optional shared httpx client. When omitted, each submit()
                uses a short-lived client of its own.
        """
        self.base_url = base_url.rstrip("/")
        self.workflow_id: str | None = None
        self._client = client

    async def submit(self, prompt: str) -> str:
        """Create a workflow for a prompt and return its id.

        Args:
            prompt: The user's task. Must contain non-whitespace text.

        Returns:
            The new, non-empty workflow id.

        Raises:
            ValueError: If prompt is empty or whitespace-only. Callers are
                expected to reject these before submitting.
            SubmissionError: If the request fails, is rejected, or the
                response carries no workflow id.
        """
        if not prompt or not prompt.strip():
            raise ValueError("prompt must contain non-whitespace text")

        self.workflow_id = None
        url = f"{self.base_url}/api/v1/workflows"

        try:
            if self._client is not None:
                response = await self._client.post(url, json={"prompt": prompt})
            else:
                async with httpx.AsyncClient(timeout=SUBMIT_TIMEOUT) as client:
                    response = await client.post(url, json={"prompt": prompt})
        except httpx.HTTPError as exc:
            logger.error("Workflow submission to %s failed: %s", url, exc)
            raise SubmissionError(str(exc) or CONNECTION_FAILED_MESSAGE) from exc

        if response.is_error:
            message = _extract_error(response) or SUBMISSION_FAILED_MESSAGE
            logger.error("Workflow submission rejected (HTTP %d): %s", response.status_code, message)
            raise SubmissionError(message, status_code=response.status_code)

        try:
            body = response.json()
        except json.JSONDecodeError as exc:
            raise SubmissionError(MISSING_ID_MESSAGE, status_code=response.status_code) from exc

        workflow_id = body.get("workflow_id") if isinstance(body, dict) else None
        if not isinstance(workflow_id, str) or not workflow_id:
            raise SubmissionError(MISSING_ID_MESSAGE, status_code=response.status_code)

        self.workflow_id = workflow_id
        logger.info("Workflow %s created.", workflow_id)
        return workflow_id

    def reset(self) -> None:
        """Forget the current workflow id (user started over)."""
        self.workflow_id = None


def _extract_error(response: httpx.Response) -> str | None:
    try:
        body = response.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None
    if isinstance(body, dict) and body.get("error"):
        return str(body["error"])
    return None
