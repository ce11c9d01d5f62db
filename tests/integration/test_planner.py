"""
Plan generator tests

The planner asks the LLM for a plan and falls back to the default
pipeline whenever the answer is missing or unusable.
"""

import pytest
import json
import sys
from pathlib import Path
from unittest.mock import AsyncMock, Mock

# Add project root to path
project_root = Path(__file__).parent.parent.parent
sys.path.insert(0, str(project_root))

from agents.shared.errors import ErrorKind, PipelineError
from agents.shared.llm_client import LLMResponse
from agents.shared.schemas import Attachment, ConversationContext
from orchestrator.planner import PlanGenerator, generate_default_plan
from orchestrator.skills import build_default_registry


def skills_of(plan):
    return [step.skill for step in plan.steps]


def mock_llm(text: str = "", error: Exception = None) -> Mock:
    llm = Mock()
    if error is not None:
        llm.traced_create = AsyncMock(side_effect=error)
    else:
        llm.traced_create = AsyncMock(return_value=LLMResponse(text=text, stop_reason="stop"))
    return llm


class TestDefaultPlan:

    def test_new_query(self):
        plan = generate_default_plan([], is_follow_up=False, is_pre_classified=False)
        assert skills_of(plan) == ["classify", "draft_answer", "research", "synthesize", "verify"]
        assert all(step.status == "pending" for step in plan.steps)

    def test_attachments_before_research(self):
        attachments = [Attachment(filename="a.txt"), Attachment(filename="b.csv")]
        plan = generate_default_plan(attachments, is_follow_up=False, is_pre_classified=False)

        assert skills_of(plan) == [
            "classify", "analyze_attachment", "analyze_attachment",
            "draft_answer", "research", "synthesize", "verify"
        ]
        assert plan.steps[1].input == {"attachment_id": attachments[0].id}
        assert plan.steps[2].input == {"attachment_id": attachments[1].id}

    def test_follow_up_skips_draft(self):
        plan = generate_default_plan([], is_follow_up=True, is_pre_classified=False)
        assert "draft_answer" not in skills_of(plan)

    def test_pre_classified_skips_classify(self):
        plan = generate_default_plan([], is_follow_up=False, is_pre_classified=True)
        assert skills_of(plan)[0] == "draft_answer"


@pytest.mark.asyncio
class TestPlanGenerator:

    async def test_without_llm_uses_default(self):
        planner = PlanGenerator(None, build_default_registry())
        plan = await planner.generate_plan("Analyze Apple")
        assert skills_of(plan) == ["classify", "draft_answer", "research", "synthesize", "verify"]

    async def test_llm_plan_used(self):
        answer = {
            "reasoning": "Follow-up edit",
            "steps": [{"skill": "refine_section", "description": "Tighten risks", "input": {"section_id": "risk_factors"}}]
        }
        planner = PlanGenerator(mock_llm("```json\n" + json.dumps(answer) + "\n```"), build_default_registry())

        plan = await planner.generate_plan("Make the risks section shorter")

        assert skills_of(plan) == ["refine_section"]
        assert plan.steps[0].input == {"section_id": "risk_factors"}
        assert plan.reasoning == "Follow-up edit"

    async def test_unknown_skills_dropped(self):
        answer = {"steps": [{"skill": "telepathy"}, {"skill": "research"}]}
        planner = PlanGenerator(mock_llm(json.dumps(answer)), build_default_registry())

        plan = await planner.generate_plan("q")

        assert skills_of(plan) == ["research"]

    async def test_no_usable_steps_falls_back(self):
        answer = {"steps": [{"skill": "telepathy"}]}
        planner = PlanGenerator(mock_llm(json.dumps(answer)), build_default_registry())

        plan = await planner.generate_plan("q")

        assert skills_of(plan)[0] == "classify"

    async def test_unparseable_answer_falls_back(self):
        planner = PlanGenerator(mock_llm("I would start by researching."), build_default_registry())
        plan = await planner.generate_plan("q")
        assert len(plan.steps) == 5

    async def test_llm_error_falls_back(self):
        error = PipelineError("rate limited", kind=ErrorKind.TRANSIENT_COLLABORATOR, status=429)
        planner = PlanGenerator(mock_llm(error=error), build_default_registry())

        context = ConversationContext(conversation_id="c1", previous_report={"findings": []})
        plan = await planner.generate_plan("q", conversation_context=context)

        assert "draft_answer" not in skills_of(plan)

    async def test_prompt_mentions_attachments(self):
        llm = mock_llm("{}")
        planner = PlanGenerator(llm, build_default_registry())
        attachment = Attachment(filename="q3.txt")

        await planner.generate_plan("q", attachments=[attachment])

        system = llm.traced_create.await_args.kwargs["system"]
        assert '"q3.txt"' in system
        assert attachment.id in system
