"""
Plan Generator - decides which skills to run, in what order

Asks the planning LLM for a step list. If the call fails or its output
cannot be extracted, falls back to a deterministic default plan built
from the same context flags. The fallback never fails.
"""

import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from agents.shared.json_extract import parse_json_response
from agents.shared.llm_client import LLMClient
from agents.shared.schemas import AgentPlan, Attachment, ConversationContext, DomainProfile, PlanStep
from orchestrator.registry import SkillName, SkillRegistry

logger = logging.getLogger(__name__)

PLANNER_MAX_TOKENS = 2048


def generate_default_plan(
    attachments: List[Attachment],
    is_follow_up: bool,
    is_pre_classified: bool
) -> AgentPlan:
    """
    Deterministic plan: classify -> attachments -> draft -> research -> synthesize -> verify.

    Args:
        attachments: Uploaded files (one analyze_attachment step each)
        is_follow_up: Skip draft_answer for follow-ups
        is_pre_classified: Skip classify when a domain profile is supplied

    Returns:
        AgentPlan
    """
    steps: List[PlanStep] = []

    if not is_pre_classified:
        steps.append(PlanStep(
            skill=SkillName.CLASSIFY.value,
            description="Identify domain, company, and output format"
        ))

    for attachment in attachments:
        steps.append(PlanStep(
            skill=SkillName.ANALYZE_ATTACHMENT.value,
            description=f"Extract insights from {attachment.filename}",
            input={"attachment_id": attachment.id}
        ))

    if not is_follow_up:
        steps.append(PlanStep(
            skill=SkillName.DRAFT_ANSWER.value,
            description="Generate quick preview answer"
        ))

    steps.append(PlanStep(skill=SkillName.RESEARCH.value, description="Gather evidence from sources"))
    steps.append(PlanStep(skill=SkillName.SYNTHESIZE.value, description="Draft findings and report structure"))
    steps.append(PlanStep(skill=SkillName.VERIFY.value, description="Adversarial verification and certainty scoring"))

    return AgentPlan(
        reasoning="Standard pipeline: classify -> attachments -> draft -> research -> synthesize -> verify",
        steps=steps
    )


class PlanGenerator:
    """
    LLM-driven planner with a deterministic fallback.
    """

    def __init__(self, llm_client: Optional[LLMClient], registry: SkillRegistry):
        """
        Initialize plan generator.

        Args:
            llm_client: LLM client for planning (None: always use the default plan)
            registry: Skill registry, for skill descriptions and validation
        """
        self.llm = llm_client
        self.registry = registry

    def build_system_prompt(
        self,
        query: str,
        attachments: List[Attachment],
        is_follow_up: bool,
        is_pre_classified: bool,
        conversation_context: Optional[ConversationContext]
    ) -> str:
        """
        Build the planning prompt.

        Args:
            query: User query
            attachments: Uploaded files
            is_follow_up: Whether a previous report exists
            is_pre_classified: Whether classification is already done
            conversation_context: Prior conversation

        Returns:
            System prompt string
        """
        attachment_list = ", ".join(f'"{a.filename}" ({a.mime_type})' for a in attachments) or "none"
        follow_up_line = ""
        if is_follow_up and conversation_context and conversation_context.previous_report:
            count = len(conversation_context.previous_report.get("findings") or [])
            follow_up_line = f"\n- Previous report had {count} findings"

        return f"""You are an AI research agent planner. Given a user query and context, you decide which skills to invoke to produce the best research report.

Available skills:
{self.registry.describe()}

Rules:
1. Always start with "classify" unless pre-classified data is provided{" (PRE-CLASSIFIED - skip classify)" if is_pre_classified else ""}
2. If attachments are present, run "analyze_attachment" for each BEFORE "research", with input {{"attachment_id": "<id>"}}
3. Always run "research" to gather external evidence
4. Run "draft_answer" right before research if this is a new query (not a follow-up)
5. Always run "synthesize" after research completes
6. Always run "verify" after synthesis
7. For follow-up queries on existing reports, you may use "refine_section" (input {{"section_id": "...", "feedback": "..."}}) instead of a full pipeline

Current context:
- Query: "{query}"
- Attachments: {attachment_list}
- Attachment IDs: {[a.id for a in attachments]}
- Is follow-up: {is_follow_up}
- Pre-classified: {is_pre_classified}{follow_up_line}

Return ONLY a JSON object:
{{
  "reasoning": "Brief explanation of your plan",
  "steps": [
    {{"skill": "skill_name", "description": "what this step does", "input": {{}}, "status": "pending"}}
  ]
}}"""

    def parse_plan(self, value: Any) -> Optional[AgentPlan]:
        """
        Validate a planner answer, dropping steps for unknown skills.

        Args:
            value: Parsed JSON from the planner

        Returns:
            AgentPlan, or None if no usable step remains
        """
        if not isinstance(value, dict) or not isinstance(value.get("steps"), list):
            return None

        steps: List[PlanStep] = []
        for raw_step in value["steps"]:
            if not isinstance(raw_step, dict):
                continue
            skill = raw_step.get("skill")
            if not self.registry.is_known(skill):
                logger.warning(f"Planner proposed unknown skill '{skill}', dropping step")
                continue
            steps.append(PlanStep(
                skill=skill,
                description=str(raw_step.get("description") or skill),
                input=raw_step.get("input") if isinstance(raw_step.get("input"), dict) else {},
            ))

        if not steps:
            return None

        return AgentPlan(reasoning=str(value.get("reasoning") or ""), steps=steps)

    async def generate_plan(
        self,
        query: str,
        attachments: Optional[List[Attachment]] = None,
        conversation_context: Optional[ConversationContext] = None,
        pre_classified: Optional[DomainProfile] = None
    ) -> AgentPlan:
        """
        Produce an execution plan. Never raises.

        Args:
            query: User query
            attachments: Uploaded files
            conversation_context: Prior conversation (follow-up when it has a report)
            pre_classified: Domain profile supplied by the caller

        Returns:
            AgentPlan from the LLM, or the default plan
        """
        attachments = attachments or []
        is_follow_up = bool(conversation_context and conversation_context.previous_report)
        is_pre_classified = pre_classified is not None

        if self.llm is not None:
            try:
                response = await self.llm.traced_create(
                    system=self.build_system_prompt(
                        query, attachments, is_follow_up, is_pre_classified, conversation_context
                    ),
                    messages=[{"role": "user", "content": f"Plan the execution for: {query}"}],
                    max_tokens=PLANNER_MAX_TOKENS
                )
                extraction = parse_json_response(response.text, truncated=response.truncated)
                plan = self.parse_plan(extraction.value)
                if plan is not None:
                    logger.info(f"Planner produced {len(plan.steps)} steps")
                    return plan
                logger.warning("Planner output had no usable steps, using default plan")
            except Exception as e:
                logger.warning(f"Plan generation failed, using default plan: {e}")

        return generate_default_plan(attachments, is_follow_up, is_pre_classified)
