"""Gateway response parser utility.

The completion gateway is asked for bare JSON but routinely returns it
wrapped in markdown code blocks (```json ... ```). The orchestrator treats
the response as untrusted text: strip fences, try to parse, and if that
fails keep the raw text instead of failing the workflow.
"""

import json
import re
from typing import Any


class LLMParseError(Exception):
    """Raised when a gateway response cannot be parsed as JSON.

    Includes the raw response so callers can log it for debugging without
    having to catch and re-wrap the original exception themselves.
    """

    def __init__(self, message: str, raw: str):
        super().__init__(message)
        self.raw = raw


def parse_llm_json(response: str) -> Any:
    """Parse a gateway response string into a JSON value.

    Markdown code fences are removed before parsing. Any JSON value is
    accepted (object, array, number...), since the workflow result is opaque
    to the pipeline.

    Args:
        response: Raw string returned by LLMClient.complete().

    Returns:
        The decoded JSON value.

    Raises:
        LLMParseError: If the cleaned text is not valid JSON. The .raw
            attribute contains the original response.
    """
    cleaned = _strip_code_fences(response)
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError as exc:
        raise LLMParseError(f"No valid JSON found in LLM response: {exc}", raw=response) from exc


def parse_workflow_result(response: str) -> Any:
    """Parse gateway output into a COMPLETED payload, never raising.

    Returns:
        The parsed JSON value, or {"raw_response": response} when the text
        is not JSON.
    """
    try:
        return parse_llm_json(response)
    except LLMParseError:
        return {"raw_response": response}


# ── Private helpers ────────────────────────────────────────────────────────────

def _strip_code_fences(text: str) -> str:
    """Remove ```json ... ``` or ``` ... ``` wrappers."""
    text = re.sub(r"```(?:json)?\s*", "", text)
    text = re.sub(r"```", "", text)
    return text.strip()
