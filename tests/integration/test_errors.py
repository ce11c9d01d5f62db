"""
Error taxonomy tests

Classification of arbitrary exceptions and the user-facing ErrorInfo
built from them.
"""

import asyncio
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent.parent
sys.path.insert(0, str(project_root))

from agents.shared.errors import (
    CapacityExceededError,
    ErrorKind,
    PipelineError,
    classify_error,
    is_transient_status,
    to_error_info
)


class StatusError(Exception):
    """Provider-style exception carrying an HTTP status"""

    def __init__(self, message: str, status_code: int):
        super().__init__(message)
        self.status_code = status_code


class TestClassifyError:

    def test_transient_statuses(self):
        assert is_transient_status(429)
        assert is_transient_status(503)
        assert not is_transient_status(400)
        assert not is_transient_status(None)

    def test_rate_limit_is_transient(self):
        error = classify_error(StatusError("slow down", 429), stage="research")
        assert error.kind == ErrorKind.TRANSIENT_COLLABORATOR
        assert error.transient
        assert error.status == 429
        assert error.stage == "research"

    def test_bad_request_is_fatal(self):
        error = classify_error(StatusError("bad input", 400))
        assert error.kind == ErrorKind.FATAL_COLLABORATOR
        assert not error.transient

    def test_timeout(self):
        error = classify_error(asyncio.TimeoutError())
        assert error.kind == ErrorKind.STEP_TIMEOUT

    def test_plain_exception_is_internal(self):
        error = classify_error(ValueError("boom"))
        assert error.kind == ErrorKind.INTERNAL
        assert error.message == "boom"

    def test_pipeline_error_passes_through(self):
        original = PipelineError("x", kind=ErrorKind.PRECONDITION)
        assert classify_error(original, stage="verify") is original
        assert original.stage == "verify"

    def test_existing_stage_kept(self):
        original = PipelineError("x", stage="synthesize")
        classify_error(original, stage="verify")
        assert original.stage == "synthesize"


class TestErrorInfo:

    def test_missing_key(self):
        info = to_error_info(PipelineError("no key", kind=ErrorKind.FATAL_COLLABORATOR, status=401, key_missing=True))
        assert "not configured" in info.message
        assert info.status == 401

    def test_rejected_key(self):
        info = to_error_info(StatusError("unauthorized", 401))
        assert "rejected" in info.message
        assert info.kind == "fatal_collaborator"

    def test_rate_limit(self):
        info = to_error_info(StatusError("too many", 429))
        assert "Rate limit" in info.message

    def test_upstream_error(self):
        info = to_error_info(StatusError("overloaded", 529))
        assert "529" in info.message

    def test_timeout_flags(self):
        info = to_error_info(PipelineError("Skill took too long", kind=ErrorKind.STEP_TIMEOUT, stage="research"))
        assert info.timed_out
        assert not info.cancelled
        assert info.message.startswith("Pipeline timed out")
        assert info.stage == "research"

    def test_cancelled(self):
        info = to_error_info(PipelineError("Job cancelled by user", kind=ErrorKind.CANCELLED))
        assert info.cancelled
        assert info.message == "Job cancelled by user"

    def test_capacity_message_is_kept(self):
        info = to_error_info(CapacityExceededError(10))
        assert info.message == "Too many concurrent jobs (max 10). Please wait for a job to finish."
        assert info.status == 429
        assert info.kind == "capacity_exceeded"

    def test_detail_carries_raw_output(self):
        error = PipelineError(
            "bad output",
            kind=ErrorKind.EXTRACTION_FAILURE,
            raw_output="x" * 5000,
            agent_trace={"request": {}}
        )
        info = to_error_info(error)
        assert info.message == "Pipeline failed: bad output"
        assert len(info.detail["raw_output"]) == 2000
        assert info.detail["agent_trace"] == {"request": {}}
