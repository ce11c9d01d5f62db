"""
Retry policy tests

Transient collaborator errors are retried a bounded number of times
with the same call; everything else fails on the first attempt.
"""

import pytest
import asyncio
import sys
from pathlib import Path
from unittest.mock import AsyncMock

# Add project root to path
project_root = Path(__file__).parent.parent.parent
sys.path.insert(0, str(project_root))

from agents.shared.errors import ErrorKind, PipelineError
from orchestrator.retry import RetryPolicy


def transient(status: int = 429) -> PipelineError:
    return PipelineError("busy", kind=ErrorKind.TRANSIENT_COLLABORATOR, status=status)


@pytest.mark.asyncio
class TestRetryPolicy:

    async def test_success_first_try(self):
        call = AsyncMock(return_value="ok")
        attempts = []

        result = await RetryPolicy(base_delay=0).run(call, on_attempt=attempts.append)

        assert result == "ok"
        assert attempts == [1]

    async def test_retries_transient_then_succeeds(self):
        call = AsyncMock(side_effect=[transient(429), transient(503), "ok"])
        attempts = []

        result = await RetryPolicy(max_retries=2, base_delay=0).run(call, on_attempt=attempts.append)

        assert result == "ok"
        assert attempts == [1, 2, 3]
        assert call.await_count == 3

    async def test_gives_up_after_max_retries(self):
        call = AsyncMock(side_effect=[transient(), transient(), transient(), "never"])

        with pytest.raises(PipelineError) as exc_info:
            await RetryPolicy(max_retries=2, base_delay=0).run(call)

        assert exc_info.value.transient
        assert call.await_count == 3

    async def test_fatal_error_not_retried(self):
        fatal = PipelineError("bad request", kind=ErrorKind.FATAL_COLLABORATOR, status=400)
        call = AsyncMock(side_effect=fatal)

        with pytest.raises(PipelineError) as exc_info:
            await RetryPolicy(base_delay=0).run(call)

        assert exc_info.value is fatal
        assert call.await_count == 1

    async def test_plain_exception_classified(self):
        call = AsyncMock(side_effect=ValueError("boom"))

        with pytest.raises(PipelineError) as exc_info:
            await RetryPolicy(base_delay=0).run(call)

        assert exc_info.value.kind == ErrorKind.INTERNAL
        assert isinstance(exc_info.value.__cause__, ValueError)

    async def test_cancellation_propagates(self):
        call = AsyncMock(side_effect=asyncio.CancelledError())

        with pytest.raises(asyncio.CancelledError):
            await RetryPolicy(base_delay=0).run(call)

        assert call.await_count == 1


class TestBackoff:

    def test_exponential_delays(self):
        policy = RetryPolicy(base_delay=1.0, max_delay=30.0)
        assert [policy.delay_for(i) for i in range(3)] == [1.0, 2.0, 4.0]

    def test_delay_capped(self):
        assert RetryPolicy(base_delay=10.0, max_delay=15.0).delay_for(3) == 15.0
