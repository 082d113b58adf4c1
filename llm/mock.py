"""Canned gateway client for demos and offline development.

Selected once at start-up (USE_MOCK_GATEWAY=true) instead of the real
gateway. The rest of the service cannot tell the difference.
"""

import asyncio
import json

from llm.base import LLMClient

MOCK_RESULT = {
    "calculation": "5+3",
    "numeric_result": 8,
    "text_result": "eight",
    "explanation": "Added 5 and 3 to get 8, then converted 8 to English words.",
}


class MockGatewayClient(LLMClient):
    """LLMClient that always answers with MOCK_RESULT in a ```json fence.

    The fence is deliberate: it exercises the same stripping path a real
    gateway response goes through.
    """

    def __init__(self, delay: float = 0.8) -> None:
        self.delay = delay

    async def complete(self, system: str, user: str) -> str:
        await asyncio.sleep(self.delay)
        return f"```json\n{json.dumps(MOCK_RESULT)}\n```"
