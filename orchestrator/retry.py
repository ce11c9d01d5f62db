"""
Collaborator retry policy

Retries individual collaborator calls (not whole steps) on transient
errors: rate limits (429) and server overload (5xx). Anything else
propagates on the first attempt.
"""

import asyncio
import logging
import sys
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from agents.shared.errors import PipelineError, classify_error

logger = logging.getLogger(__name__)


class RetryPolicy:
    """
    Bounded retry with exponential backoff.

    max_retries=2 means at most 3 attempts. The same call is repeated
    with the same input on every attempt.
    """

    def __init__(self, max_retries: int = 2, base_delay: float = 1.0, max_delay: float = 30.0):
        """
        Initialize retry policy.

        Args:
            max_retries: Retries after the first attempt
            base_delay: Delay before the first retry in seconds (doubles each retry)
            max_delay: Upper bound on a single delay
        """
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay

    def delay_for(self, retry: int) -> float:
        return min(self.base_delay * (2 ** retry), self.max_delay)

    async def run(
        self,
        call: Callable[[], Awaitable[Any]],
        on_attempt: Optional[Callable[[int], None]] = None,
        label: str = "collaborator"
    ) -> Any:
        """
        Run call, retrying transient failures.

        Args:
            call: Zero-argument coroutine factory
            on_attempt: Invoked with the attempt number before each attempt
            label: Name used in log messages

        Returns:
            Whatever call returns

        Raises:
            PipelineError: The first non-transient error, or the last
                transient error once retries are exhausted
        """
        attempt = 0
        while True:
            attempt += 1
            if on_attempt:
                on_attempt(attempt)

            try:
                return await call()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                error = classify_error(e)
                if error.transient and attempt <= self.max_retries:
                    delay = self.delay_for(attempt - 1)
                    logger.warning(
                        f"{label} transient error (status={error.status}), "
                        f"retry {attempt}/{self.max_retries} in {delay:.1f}s: {error.message}"
                    )
                    await asyncio.sleep(delay)
                    continue

                if error.transient:
                    logger.error(f"{label} failed after {attempt} attempts: {error.message}")
                if error is e:
                    raise
                raise error from e
