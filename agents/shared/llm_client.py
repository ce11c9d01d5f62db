"""
Project Meridian - LLM Client Wrapper

Async OpenAI-compatible client for DeepSeek (and other providers).
Every call returns the response text together with a trace of the request.
Retries are not done here: errors are translated into PipelineErrors and the
orchestrator's retry policy decides what to retry.
"""

import os
import time
import logging
from dataclasses import dataclass, field
from datetime import datetime, UTC
from typing import List, Dict, Any, Optional
from openai import AsyncOpenAI, APIConnectionError, APIStatusError, APITimeoutError

from .errors import ErrorKind, PipelineError, is_transient_status

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "deepseek-chat"
DEFAULT_BASE_URL = "https://api.deepseek.com"
DEFAULT_MAX_TOKENS = 8192


@dataclass
class LLMResponse:
    """Text completion plus the trace recorded for it"""
    text: str
    stop_reason: Optional[str]
    usage: Dict[str, int] = field(default_factory=dict)
    trace: Dict[str, Any] = field(default_factory=dict)

    @property
    def truncated(self) -> bool:
        """True when generation stopped at the output-length limit"""
        return self.stop_reason in ("length", "max_tokens")


class LLMClient:
    """
    Wrapper for LLM API calls with tracing and error translation.
    Compatible with OpenAI and DeepSeek APIs.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None
    ):
        """
        Initialize LLM client.

        A missing API key is not fatal here: the service still starts and
        every call fails with a non-retryable 401 instead.

        Args:
            api_key: API key (defaults to LLM_API_KEY, DEEPSEEK_API_KEY or OPENAI_API_KEY)
            base_url: Base URL (defaults to LLM_BASE_URL env var)
            model: Default model name (defaults to LLM_MODEL env var or "deepseek-chat")
            timeout: Timeout in seconds for API calls
        """
        self.api_key = (
            api_key
            or os.getenv("LLM_API_KEY")
            or os.getenv("DEEPSEEK_API_KEY")
            or os.getenv("OPENAI_API_KEY")
        )
        self.base_url = base_url or os.getenv("LLM_BASE_URL", DEFAULT_BASE_URL)
        self.model = model or os.getenv("LLM_MODEL", DEFAULT_MODEL)
        self.timeout = timeout or float(os.getenv("LLM_TIMEOUT_SECONDS", "120"))

        self.client: Optional[AsyncOpenAI] = None
        if self.api_key:
            self.client = AsyncOpenAI(
                api_key=self.api_key,
                base_url=self.base_url,
                timeout=self.timeout,
                max_retries=0
            )
            logger.info(f"LLM Client initialized: model={self.model}, base_url={self.base_url}")
        else:
            logger.warning("LLM_API_KEY is not set. The service will start but LLM calls will fail.")

    @property
    def configured(self) -> bool:
        return self.client is not None

    def build_request(
        self,
        system: str,
        messages: List[Dict[str, str]],
        model: Optional[str] = None,
        max_tokens: Optional[int] = None
    ) -> Dict[str, Any]:
        """Request section of a trace, also used for pending trace events"""
        return {
            "model": model or self.model,
            "max_tokens": max_tokens or DEFAULT_MAX_TOKENS,
            "system": system,
            "messages": messages
        }

    async def traced_create(
        self,
        system: str,
        messages: List[Dict[str, str]],
        model: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: float = 0.7
    ) -> LLMResponse:
        """
        Make a single chat completion request and record its trace.

        Args:
            system: System prompt
            messages: List of message dicts with 'role' and 'content'
            model: Model override (defaults to the client's model)
            max_tokens: Maximum tokens to generate
            temperature: Sampling temperature (0-2)

        Returns:
            LLMResponse with text, stop reason, usage and trace

        Raises:
            PipelineError: status-tagged; 429/5xx and connection errors are transient
        """
        if self.client is None:
            raise PipelineError(
                "LLM_API_KEY is not configured.",
                kind=ErrorKind.FATAL_COLLABORATOR,
                status=401,
                key_missing=True
            )

        request = self.build_request(system, messages, model, max_tokens)
        started = datetime.now(UTC)
        start_time = time.monotonic()

        try:
            response = await self.client.chat.completions.create(
                model=request["model"],
                max_tokens=request["max_tokens"],
                temperature=temperature,
                messages=[{"role": "system", "content": system}, *messages]
            )
        except APIStatusError as e:
            status = e.status_code
            kind = ErrorKind.TRANSIENT_COLLABORATOR if is_transient_status(status) else ErrorKind.FATAL_COLLABORATOR
            logger.warning(f"LLM API error (status={status}): {e}")
            raise PipelineError(str(e), kind=kind, status=status) from e
        except (APITimeoutError, APIConnectionError) as e:
            logger.warning(f"LLM API connection problem: {e}")
            raise PipelineError(str(e) or "LLM connection failed", kind=ErrorKind.TRANSIENT_COLLABORATOR) from e

        duration_ms = round((time.monotonic() - start_time) * 1000)
        choice = response.choices[0] if response.choices else None
        text = (choice.message.content or "") if choice else ""
        stop_reason = choice.finish_reason if choice else None

        usage = {}
        if response.usage:
            usage = {
                "input_tokens": response.usage.prompt_tokens,
                "output_tokens": response.usage.completion_tokens,
                "total_tokens": response.usage.total_tokens
            }

        logger.debug(f"LLM call completed in {duration_ms}ms (model={request['model']}, stop={stop_reason})")

        trace = {
            "request": request,
            "response": {
                "raw": text,
                "stop_reason": stop_reason,
                "usage": usage
            },
            "timing": {
                "start_time": started.isoformat(),
                "end_time": datetime.now(UTC).isoformat(),
                "duration_ms": duration_ms
            }
        }

        return LLMResponse(text=text, stop_reason=stop_reason, usage=usage, trace=trace)

