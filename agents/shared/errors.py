"""
Project Meridian - Pipeline Errors

Error taxonomy shared by agents, the orchestrator and the job manager.
Propagation logic switches on ErrorKind instead of probing optional fields.
"""

import asyncio
from enum import Enum
from typing import Any, Dict, Optional

from .schemas import ErrorInfo


class ErrorKind(str, Enum):
    """Fixed set of failure categories"""
    EXTRACTION_FAILURE = "extraction_failure"
    TRANSIENT_COLLABORATOR = "transient_collaborator"
    FATAL_COLLABORATOR = "fatal_collaborator"
    STEP_TIMEOUT = "step_timeout"
    NO_REPORT = "no_report"
    CAPACITY_EXCEEDED = "capacity_exceeded"
    PRECONDITION = "precondition"
    CANCELLED = "cancelled"
    INTERNAL = "internal"


class PipelineError(Exception):
    """
    Error raised anywhere in the report pipeline.

    Carries a kind plus a structured payload: the stage that failed,
    the HTTP-style status of a collaborator failure, and the raw output
    and trace of the agent call that produced it.
    """

    def __init__(
        self,
        message: str,
        kind: ErrorKind = ErrorKind.INTERNAL,
        stage: Optional[str] = None,
        status: Optional[int] = None,
        raw_output: Optional[str] = None,
        agent_trace: Optional[Dict[str, Any]] = None,
        key_missing: bool = False
    ):
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.stage = stage
        self.status = status
        self.raw_output = raw_output
        self.agent_trace = agent_trace
        self.key_missing = key_missing

    @property
    def transient(self) -> bool:
        return self.kind == ErrorKind.TRANSIENT_COLLABORATOR

    def __repr__(self) -> str:
        return f"PipelineError(kind={self.kind.value!r}, stage={self.stage!r}, status={self.status!r}, message={self.message!r})"


class CapacityExceededError(PipelineError):
    """Raised synchronously by JobManager.create_job when the concurrency cap is reached"""

    def __init__(self, max_jobs: int):
        super().__init__(
            f"Too many concurrent jobs (max {max_jobs}). Please wait for a job to finish.",
            kind=ErrorKind.CAPACITY_EXCEEDED,
            status=429
        )
        self.max_jobs = max_jobs


def is_transient_status(status: Optional[int]) -> bool:
    """Rate-limit (429) and server-overload (5xx) statuses are worth retrying"""
    return status is not None and (status == 429 or status >= 500)


def classify_error(error: BaseException, stage: Optional[str] = None) -> PipelineError:
    """
    Convert an arbitrary exception into a PipelineError.

    Anything carrying a numeric `status` or `status_code` attribute is
    treated as a collaborator error and classified by that status.

    Args:
        error: Exception to classify
        stage: Stage to tag the error with (kept if already set)

    Returns:
        PipelineError (the same instance if error already is one)
    """
    if isinstance(error, PipelineError):
        if stage and not error.stage:
            error.stage = stage
        return error

    if isinstance(error, asyncio.TimeoutError):
        return PipelineError(str(error) or "Operation timed out", kind=ErrorKind.STEP_TIMEOUT, stage=stage)

    status = getattr(error, "status", None)
    if status is None:
        status = getattr(error, "status_code", None)

    if isinstance(status, int):
        kind = ErrorKind.TRANSIENT_COLLABORATOR if is_transient_status(status) else ErrorKind.FATAL_COLLABORATOR
        return PipelineError(str(error), kind=kind, stage=stage, status=status)

    return PipelineError(str(error) or error.__class__.__name__, kind=ErrorKind.INTERNAL, stage=stage)


def to_error_info(error: BaseException) -> ErrorInfo:
    """
    Build the structured, user-visible failure for an error.

    The message is chosen by kind and status; the original message is
    kept in `detail` so nothing internal leaks into `message`.

    Args:
        error: Exception that ended the job

    Returns:
        ErrorInfo for the job record and the `error` event
    """
    err = classify_error(error)
    status = err.status

    if err.key_missing:
        message = "API key is not configured. Set LLM_API_KEY and restart the service."
    elif status in (401, 403):
        message = "API key was rejected. Check that LLM_API_KEY is valid."
    elif status == 429 and err.kind != ErrorKind.CAPACITY_EXCEEDED:
        message = "Rate limit reached on the model provider. Please wait a moment and try again."
    elif status is not None and status >= 500:
        message = f"Upstream model provider error ({status}). Please try again."
    elif err.kind == ErrorKind.STEP_TIMEOUT:
        message = f"Pipeline timed out: {err.message}"
    elif err.kind in (ErrorKind.CANCELLED, ErrorKind.CAPACITY_EXCEEDED):
        message = err.message
    else:
        message = f"Pipeline failed: {err.message}"

    detail: Dict[str, Any] = {"message": err.message}
    if err.raw_output:
        detail["raw_output"] = err.raw_output[:2000]
    if err.agent_trace:
        detail["agent_trace"] = err.agent_trace

    return ErrorInfo(
        message=message,
        kind=err.kind.value,
        stage=err.stage,
        status=status,
        cancelled=err.kind == ErrorKind.CANCELLED,
        timed_out=err.kind == ErrorKind.STEP_TIMEOUT,
        detail=detail
    )
