"""
Project Meridian - Base Agent Class

Abstract base class for the LLM-backed collaborators that skills call.
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional, Dict, Any, Callable, List

from .llm_client import LLMClient, LLMResponse
from .json_extract import ExtractionResult, parse_json_response
from .reasoning_levels import ReasoningConfig
from .schemas import AgentResult, TraceEvent

# Event emission handle: send(event_name, payload)
SendFn = Callable[[str, Any], None]


class BaseAgent(ABC):
    """
    Abstract base class for all Meridian agents.

    Provides:
    - LLM access with pending/completed trace events
    - JSON extraction with the shared fallback chain
    - Per-agent model override from the reasoning level
    """

    agent_name: str = "agent"
    display_name: str = "Agent"
    model_setting: Optional[str] = None

    def __init__(self, llm: LLMClient):
        """
        Initialize base agent.

        Args:
            llm: LLM client used for every call this agent makes
        """
        self.llm = llm
        self.logger = logging.getLogger(f"agents.{self.agent_name}")

    @abstractmethod
    async def run(self, *args, **kwargs) -> AgentResult:
        """
        Execute the agent's task.
        Must be implemented by subclasses.

        Returns:
            AgentResult with result and trace
        """
        pass

    def model_for(self, config: Optional[ReasoningConfig]) -> Optional[str]:
        """Model override for this agent at the given reasoning level"""
        if config is None or self.model_setting is None:
            return None
        return getattr(config, self.model_setting, None)

    def emit_trace(
        self,
        send: Optional[SendFn],
        trace: Dict[str, Any],
        status: str = "completed",
        intermediate_output: Any = None,
        raw_output: Optional[str] = None
    ) -> None:
        if send is None:
            return
        event = TraceEvent(
            stage=self.agent_name,
            agent=self.display_name,
            status=status,
            trace=trace,
            intermediate_output=intermediate_output,
            raw_output=raw_output
        )
        send("trace", event.model_dump(mode="json", exclude_none=True))

    async def call_llm(
        self,
        send: Optional[SendFn],
        system: str,
        user_content: str,
        config: Optional[ReasoningConfig] = None,
        max_tokens: Optional[int] = None
    ) -> LLMResponse:
        """
        Call the LLM, emitting a pending trace first so observers can
        see the request while the model is working.

        Args:
            send: Event emission handle (may be None)
            system: System prompt
            user_content: User message
            config: Reasoning config used to pick the model
            max_tokens: Maximum tokens to generate

        Returns:
            LLMResponse from the client
        """
        messages: List[Dict[str, str]] = [{"role": "user", "content": user_content}]
        model = self.model_for(config)

        self.emit_trace(send, {"request": self.llm.build_request(system, messages, model, max_tokens)}, status="pending")
        self.logger.info(f"{self.display_name} calling LLM (model={model or self.llm.model})")

        return await self.llm.traced_create(system=system, messages=messages, model=model, max_tokens=max_tokens)

    def parse_json(self, response: LLMResponse, default: Any = None) -> ExtractionResult:
        """Extract JSON from a response; failures fall back to default with a warning"""
        extraction = parse_json_response(response.text, truncated=response.truncated, default=default)
        if extraction.warning:
            self.logger.warning(f"{self.display_name}: {extraction.warning[:120]}")
        elif extraction.method != "direct":
            self.logger.info(f"{self.display_name}: JSON recovered via {extraction.method}")
        return extraction

    @staticmethod
    def annotate_trace(trace: Dict[str, Any], extraction: ExtractionResult) -> Dict[str, Any]:
        """Copy of trace with the parsed output (or parse warning) attached"""
        annotated = dict(trace)
        if extraction.warning:
            annotated["parse_warning"] = extraction.warning
        else:
            annotated["parsed_output"] = extraction.value
            annotated["parse_method"] = extraction.method
        return annotated
