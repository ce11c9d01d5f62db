"""
Synthesis Agent

Turns the evidence pool into a structured draft report:
findings (each with an explanation and supporting evidence) organised
into sections. Long outputs are the most likely to hit the output cap,
so truncated responses go through JSON repair before brace extraction.
"""

import json
import sys
from pathlib import Path
from typing import Dict, Any, List, Optional

# Add project root to path
project_root = Path(__file__).parent.parent.parent
sys.path.insert(0, str(project_root))

from agents.shared.base_agent import BaseAgent, SendFn
from agents.shared.reasoning_levels import ReasoningConfig
from agents.shared.schemas import AgentResult, ConversationContext, DomainProfile

SYNTHESIS_MAX_TOKENS = 8192
MAX_EVIDENCE_IN_PROMPT = 80


class Synthesizer(BaseAgent):
    """Synthesis Agent - drafts findings and report structure from evidence"""

    agent_name = "synthesizer"
    display_name = "Synthesizer"
    model_setting = "synthesizer_model"

    def build_system_prompt(self, profile: DomainProfile, config: ReasoningConfig) -> str:
        return f"""You are a senior analyst writing a {profile.domain_label} report on {profile.company_name} ({profile.ticker}).

Write {config.total_findings} findings in total, {config.findings_per_section} per section.
Each finding needs at least {config.supporting_evidence_min} supporting evidence items and an
explanation of {config.explanation_length}. Include {config.key_stats_count} key statistics.
Sections: {", ".join(profile.sections)}.

Return ONLY a JSON object:
{{
  "meta": {{"title": "...", "summary": "...", "key_stats": [{{"label": "...", "value": "..."}}]}},
  "sections": [
    {{"id": "section_id", "title": "Section Title",
      "content": [{{"type": "text", "value": "..."}}, {{"type": "finding", "id": "f1"}}]}}
  ],
  "findings": [
    {{"id": "f1", "section": "section_id", "text": "...", "certainty": 75,
      "explanation": {{"title": "...", "text": "...", "supporting_evidence": ["E1"], "contrary_evidence": []}}}}
  ]
}}"""

    @staticmethod
    def format_evidence(evidence: List[Dict[str, Any]]) -> str:
        return json.dumps(evidence[:MAX_EVIDENCE_IN_PROMPT], indent=2)

    async def run(
        self,
        query: str,
        domain_profile: DomainProfile,
        evidence: List[Dict[str, Any]],
        send: Optional[SendFn],
        config: ReasoningConfig,
        conversation_context: Optional[ConversationContext] = None
    ) -> AgentResult:
        """
        Draft the report.

        Args:
            query: User query
            domain_profile: Classification result
            evidence: Evidence pool
            send: Event emission handle
            config: Reasoning config
            conversation_context: Prior conversation, for follow-ups

        Returns:
            AgentResult whose result is the draft report dict, or None when
            no report could be extracted from the response
        """
        user_content = f"<user_query>\n{query}\n</user_query>\n\nEvidence:\n{self.format_evidence(evidence)}"
        if conversation_context and conversation_context.previous_report:
            previous = conversation_context.previous_report
            user_content += f"\n\nPrevious report had {len(previous.get('findings') or [])} findings; update rather than repeat them."

        response = await self.call_llm(
            send,
            self.build_system_prompt(domain_profile, config),
            user_content,
            config,
            max_tokens=SYNTHESIS_MAX_TOKENS
        )
        if response.truncated:
            self.logger.warning("Synthesis response was truncated at the output limit, attempting repair")

        extraction = self.parse_json(response, default=None)
        report = extraction.value if isinstance(extraction.value, dict) else None

        trace = self.annotate_trace(response.trace, extraction)
        if report is not None:
            trace["parsed_output"] = {
                "findings_count": len(report.get("findings") or []),
                "sections_count": len(report.get("sections") or []),
            }

        self.emit_trace(
            send,
            trace,
            status="completed" if report is not None else "failed",
            intermediate_output=trace.get("parsed_output"),
            raw_output=None if report is not None else response.text
        )

        return AgentResult(result=report, trace=trace)
