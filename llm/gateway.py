"""OpenAI-compatible completion gateway client.

The orchestrator talks to an AI gateway that exposes the OpenAI chat
completions API. Any gateway that speaks that API works — point
GATEWAY_BASE_URL at it and pick a model string.

Required environment variable:
    GATEWAY_API_KEY: Your gateway API key. Add to .env and never commit.

Optional environment variables:
    GATEWAY_BASE_URL: Gateway root URL (default: the Lovable AI gateway).
    GATEWAY_MODEL: Model identifier (default: google/gemini-3-flash-preview).
"""

import os

import openai
from dotenv import load_dotenv

from llm.base import GatewayError, LLMClient

load_dotenv()

DEFAULT_BASE_URL = "https://ai.gateway.lovable.dev/v1"
DEFAULT_MODEL = "google/gemini-3-flash-preview"


class GatewayClient(LLMClient):
    """LLMClient implementation backed by an OpenAI-compatible gateway.

    Uses the openai SDK pointed at the gateway base URL. SDK retries are
    disabled: a workflow makes exactly one gateway call, and a 429 must
    reach the orchestrator as a rate-limit failure rather than be retried.

    Attributes:
        model: The model identifier string passed to the API.
        client: The underlying async OpenAI client configured for the gateway.
    """

    def __init__(self, model: str | None = None, base_url: str | None = None):
        """Initialize the client.

        Args:
            model: Model ID string. Falls back to GATEWAY_MODEL, then to
                DEFAULT_MODEL.
            base_url: Gateway root URL. Falls back to GATEWAY_BASE_URL, then
                to DEFAULT_BASE_URL.

        Raises:
            KeyError: If GATEWAY_API_KEY is not set in the environment
                or .env file. Fails immediately at construction rather than
                at the first API call.
        """
        self.model = model or os.environ.get("GATEWAY_MODEL", DEFAULT_MODEL)
        self.client = openai.AsyncOpenAI(
            base_url=base_url or os.environ.get("GATEWAY_BASE_URL", DEFAULT_BASE_URL),
            api_key=os.environ["GATEWAY_API_KEY"],
            max_retries=0,
        )

    async def complete(self, system: str, user: str) -> str:
        """Send a prompt to the configured model through the gateway.

        Args:
            system: System prompt constraining the response shape.
            user: The workflow prompt.

        Returns:
            The first choice's message content, or "" if the gateway
            returned no content.

        Raises:
            GatewayError: With status_code set for HTTP error responses, or
                None when the gateway could not be reached.
        """
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": user},
                ],
            )
        except openai.APIStatusError as exc:
            raise GatewayError(
                f"Gateway returned HTTP {exc.status_code}: {exc.message}",
                status_code=exc.status_code,
            ) from exc
        except openai.APIConnectionError as exc:
            raise GatewayError(f"Gateway unreachable: {exc}") from exc

        if not response.choices:
            return ""
        return response.choices[0].message.content or ""
