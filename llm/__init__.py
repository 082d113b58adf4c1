"""Completion gateway clients."""

from llm.base import GatewayError, LLMClient
from llm.gateway import GatewayClient
from llm.mock import MockGatewayClient

__all__ = ["LLMClient", "GatewayError", "GatewayClient", "MockGatewayClient"]
