"""
Transport Contract
==================
The collaborator that performs the actual network call.
"""

from abc import ABC, abstractmethod
from typing import Any

from ..requests.models import Request


class Transport(ABC):
    """
    Executes one request attempt.

    Implementations must honor the caller's time budget and fail with one of
    RequestTimeoutError, TransientNetworkError or HTTPError.
    """

    @abstractmethod
    async def execute(self, request: Request, timeout: float) -> Any:
        """
        Perform the call.

        Args:
            request: Request carrying method, endpoint, payload and headers
            timeout: Time budget in seconds

        Returns:
            The decoded response value
        """

    async def aclose(self) -> None:
        """Release underlying resources."""
