"""
Research Agent

Gathers sourced evidence items for the classified domain.
Evidence from analyzed attachments is passed in so the model can
build on it instead of repeating it.
"""

import sys
from pathlib import Path
from typing import Dict, Any, List, Optional

# Add project root to path
project_root = Path(__file__).parent.parent.parent
sys.path.insert(0, str(project_root))

from agents.shared.base_agent import BaseAgent, SendFn
from agents.shared.reasoning_levels import ReasoningConfig
from agents.shared.schemas import AgentResult, ConversationContext, DomainProfile, EvidenceItem


class Researcher(BaseAgent):
    """Research Agent - collects evidence items with sources"""

    agent_name = "researcher"
    display_name = "Researcher"
    model_setting = "researcher_model"

    def build_system_prompt(self, profile: DomainProfile, config: ReasoningConfig) -> str:
        sources = ", ".join(getattr(profile, "source_hierarchy", None) or []) or "primary sources first"
        return f"""You are a research analyst producing evidence for a {profile.domain_label} report on {profile.company_name} ({profile.ticker}).

Gather at least {config.evidence_min_items} evidence items. Prefer sources in this order: {sources}.
Cover these areas: {", ".join(profile.sections) or "all relevant areas"}.

Return ONLY a JSON object:
{{
  "evidence": [
    {{
      "id": "E1",
      "source": "Source name",
      "quote": "Specific data point or verbatim statement",
      "url": "https://...",
      "category": "financial_data|market_data|company_info|competitive_intel|other",
      "authority": "primary_source|secondary|analyst"
    }}
  ]
}}"""

    @staticmethod
    def normalize_evidence(value: Any) -> List[Dict[str, Any]]:
        """Accept either {"evidence": [...]} or a bare list; drop non-object items"""
        items = value.get("evidence") if isinstance(value, dict) else value
        if not isinstance(items, list):
            return []

        evidence = []
        for index, item in enumerate(items):
            if not isinstance(item, dict):
                continue
            record = EvidenceItem.model_validate(item)
            if not record.id:
                record.id = f"E{index + 1}"
            evidence.append(record.model_dump(mode="json"))
        return evidence

    async def run(
        self,
        query: str,
        domain_profile: DomainProfile,
        send: Optional[SendFn],
        config: ReasoningConfig,
        conversation_context: Optional[ConversationContext] = None,
        prior_evidence: Optional[List[Dict[str, Any]]] = None
    ) -> AgentResult:
        """
        Research the query.

        Args:
            query: User query
            domain_profile: Classification result
            send: Event emission handle
            config: Reasoning config
            conversation_context: Prior conversation, for follow-ups
            prior_evidence: Evidence already gathered (e.g. from attachments)

        Returns:
            AgentResult whose result is a list of evidence dicts
        """
        user_content = f"<user_query>\n{query}\n</user_query>"
        if prior_evidence:
            user_content += f"\n\nEvidence already collected from uploaded files ({len(prior_evidence)} items):\n"
            user_content += "\n".join(f"- {item.get('source', '')}: {item.get('quote', '')[:200]}" for item in prior_evidence[:20])
        if conversation_context and conversation_context.previous_report:
            user_content += "\n\nThis is a follow-up; focus on what the previous report did not cover."

        response = await self.call_llm(send, self.build_system_prompt(domain_profile, config), user_content, config)
        extraction = self.parse_json(response, default={"evidence": []})
        evidence = self.normalize_evidence(extraction.value)

        trace = self.annotate_trace(response.trace, extraction)
        trace["parsed_output"] = {"evidence_count": len(evidence)}

        self.emit_trace(send, trace, intermediate_output={"evidence_count": len(evidence)})
        self.logger.info(f"Collected {len(evidence)} evidence items")

        return AgentResult(result=evidence, trace=trace)
