"""LLMClient abstract base class.

Defines the interface every completion gateway must implement. The
orchestrator depends only on this interface — never on a concrete provider.
The real gateway and the canned mock are both LLMClient subclasses, and the
choice between them is made once when the service starts.
"""

from abc import ABC, abstractmethod


class GatewayError(Exception):
    """Raised when the completion gateway call fails.

    Carries the HTTP status of the failed call so the orchestrator can map
    it to a user-facing message (rate limit, exhausted credits, generic
    failure). status_code is None when no HTTP response was received at all
    (DNS failure, refused connection, timeout).
    """

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class LLMClient(ABC):
    """Abstract base class for all completion gateway clients.

    The orchestrator receives an LLMClient instance at construction time and
    calls complete() exactly once per workflow. It never imports or
    instantiates a concrete provider directly — that decision belongs to the
    caller that wires the service together.

    To add a new provider, subclass LLMClient and implement complete().
    """

    @abstractmethod
    async def complete(self, system: str, user: str) -> str:
        """Send a prompt to the gateway and return the response as plain text.

        Args:
            system: The fixed system instruction constraining the response
                shape.
            user: The user's workflow prompt.

        Returns:
            The model's response as a plain string. Callers never see
            the raw SDK response object.

        Raises:
            GatewayError: If the gateway rejects the call or cannot be
                reached. Implementations must not retry internally.
        """
        ...
