"""
Project Meridian - Test Fixtures

Shared fixtures for the pipeline tests. Collaborators are replaced by
in-process fakes so the orchestration logic runs without an LLM; tests
that need the real API use the llm_client fixture, which skips when no
key is configured.
"""

import pytest
import asyncio
import copy
import os
import sys
from pathlib import Path
from typing import Any, Dict, List, Tuple
from dotenv import load_dotenv

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

# Load .env file for tests
load_dotenv(project_root / ".env")

from agents.shared.llm_client import LLMClient
from agents.shared.schemas import AgentResult, DomainProfile
from orchestrator.plan_executor import PlanExecutor
from orchestrator.planner import PlanGenerator
from orchestrator.registry import Collaborators
from orchestrator.retry import RetryPolicy
from orchestrator.settings import JobSettings
from orchestrator.skills import build_default_registry


class FakeAgent:
    """
    Stand-in for an LLM-backed agent.

    result may be a value (deep-copied per call) or a callable receiving
    the call's positional arguments. errors are raised, in order, by the
    first calls.
    """

    def __init__(self, result: Any = None, errors: List[BaseException] = None, delay: float = 0.0):
        self.result = result
        self.errors = list(errors or [])
        self.delay = delay
        self.calls: List[Tuple[tuple, dict]] = []

    async def run(self, *args, **kwargs) -> AgentResult:
        self.calls.append((args, kwargs))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.errors:
            raise self.errors.pop(0)
        if callable(self.result):
            value = self.result(*args)
        else:
            value = copy.deepcopy(self.result)
        return AgentResult(result=value, trace={"agent": "fake", "call": len(self.calls)})


class EventRecorder:
    """Send function that records every (event, data) pair"""

    def __init__(self):
        self.events: List[Tuple[str, Any]] = []

    def __call__(self, event: str, data: Any) -> None:
        self.events.append((event, data))

    def of(self, event: str) -> List[Any]:
        return [data for name, data in self.events if name == event]

    def names(self) -> List[str]:
        return [name for name, _ in self.events]


def build_report() -> Dict[str, Any]:
    return {
        "title": "Apple Inc. outlook",
        "findings": [
            {
                "id": "f1",
                "section": "investment_thesis",
                "statement": "Services revenue keeps growing",
                "certainty": 92,
                "explanation": {"title": "Services growth", "text": "Services grew 14% year over year."},
                "evidence_ids": ["E1"]
            },
            {
                "id": "f2",
                "section": "risk_factors",
                "statement": "China demand is softening",
                "certainty": 65,
                "explanation": {"title": "China demand", "text": "Greater China sales fell 8%."},
                "evidence_ids": ["E2"]
            }
        ],
        "sections": [
            {"id": "title_slide", "title": "Apple Inc.", "content": []},
            {
                "id": "investment_thesis",
                "title": "Investment Thesis",
                "content": [{"type": "text", "value": "Growth: "}, {"type": "finding", "id": "f1"}]
            },
            {
                "id": "risk_factors",
                "title": "Risk Factors",
                "content": [{"type": "finding", "id": "f2"}]
            }
        ],
        "meta": {}
    }


@pytest.fixture
def sample_report() -> Dict[str, Any]:
    """Report with two explained findings"""
    return build_report()


@pytest.fixture
def domain_profile() -> DomainProfile:
    return DomainProfile(
        domain="equity_research",
        domain_label="Equity Research",
        ticker="AAPL",
        company_name="Apple Inc.",
        focus_areas=["services", "china"],
        output_format="written_report",
        sections=["investment_thesis", "risk_factors"]
    )


@pytest.fixture
def sample_evidence() -> List[Dict[str, Any]]:
    return [
        {"id": "E1", "source": "10-K", "quote": "Services revenue grew 14%", "category": "financial"},
        {"id": "E2", "source": "Earnings call", "quote": "Greater China sales declined 8%", "category": "financial"}
    ]


@pytest.fixture
def fake_collaborators(domain_profile, sample_evidence) -> Collaborators:
    """Collaborators that answer instantly with canned results"""
    return Collaborators(
        classifier=FakeAgent(domain_profile),
        researcher=FakeAgent(sample_evidence),
        drafter=FakeAgent("Apple looks solid, with China as the main risk."),
        attachment_analyst=FakeAgent([{"source": "upload", "quote": "Q3 margin 46%", "category": "financial"}]),
        synthesizer=FakeAgent(build_report()),
        verifier=FakeAgent(lambda query, profile, draft, *rest: {**copy.deepcopy(draft), "meta": {"overall_certainty": 78}}),
        editor=FakeAgent(build_report())
    )


@pytest.fixture
def fast_settings() -> JobSettings:
    """Settings with no retry delay and a reaper that never fires during a test"""
    return JobSettings(
        retry_base_delay_seconds=0,
        reaper_interval_seconds=3600,
        shutdown_drain_seconds=1
    )


@pytest.fixture
def make_executor(fast_settings):
    """Factory: PlanExecutor over the default registry and the default plan"""
    def factory(collaborators: Collaborators, settings: JobSettings = None) -> PlanExecutor:
        registry = build_default_registry()
        return PlanExecutor(
            planner=PlanGenerator(None, registry),
            registry=registry,
            collaborators=collaborators,
            settings=settings or fast_settings,
            retry_policy=RetryPolicy(max_retries=2, base_delay=0)
        )
    return factory


@pytest.fixture
def recorder() -> EventRecorder:
    return EventRecorder()


@pytest.fixture
def fake_agent():
    """The FakeAgent class, for tests that build their own collaborators"""
    return FakeAgent


@pytest.fixture
def llm_client():
    """
    Create an LLM client for testing.
    Uses real API if LLM_API_KEY (or DEEPSEEK_API_KEY) is set.
    """
    api_key = os.getenv("LLM_API_KEY") or os.getenv("DEEPSEEK_API_KEY")

    if not api_key:
        pytest.skip("LLM_API_KEY not set - skipping LLM test")

    return LLMClient(api_key=api_key)
