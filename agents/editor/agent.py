"""
Section Editor Agent

Refines one section of an existing report based on user feedback.
"""

import copy
import json
import sys
from pathlib import Path
from typing import Dict, Any, Optional

# Add project root to path
project_root = Path(__file__).parent.parent.parent
sys.path.insert(0, str(project_root))

from agents.shared.base_agent import BaseAgent, SendFn
from agents.shared.errors import ErrorKind, PipelineError
from agents.shared.reasoning_levels import ReasoningConfig
from agents.shared.schemas import AgentResult, DomainProfile


class SectionEditor(BaseAgent):
    """Section Editor Agent - rewrites one section and its findings"""

    agent_name = "editor"
    display_name = "Section Editor"
    model_setting = "synthesizer_model"

    async def run(
        self,
        report: Dict[str, Any],
        section_id: str,
        feedback: str,
        domain_profile: DomainProfile,
        send: Optional[SendFn],
        config: Optional[ReasoningConfig] = None
    ) -> AgentResult:
        """
        Refine a section.

        Args:
            report: Report containing the section
            section_id: ID of the section to refine
            feedback: What the user wants changed
            domain_profile: Classification result
            send: Event emission handle
            config: Reasoning config (model override)

        Returns:
            AgentResult whose result is a new report dict with the section updated

        Raises:
            PipelineError: If the section does not exist
        """
        updated = copy.deepcopy(report)
        section = next((s for s in updated.get("sections") or [] if s.get("id") == section_id), None)
        if section is None:
            raise PipelineError(f"Section not found: {section_id}", kind=ErrorKind.PRECONDITION)

        section_findings = [f for f in updated.get("findings") or [] if f.get("section") == section_id]

        system = f"""You are a research report editor. Improve one section of a {domain_profile.domain_label} report based on user feedback.

Current section: "{section.get('title', section_id)}" (id: {section_id})
Current findings in this section: {json.dumps(section_findings, indent=2)}
Current content structure: {json.dumps(section.get('content') or [], indent=2)}

User feedback: {feedback}

Return ONLY a JSON object:
{{
  "updated_findings": [...],
  "updated_content": [...]
}}

Keep the same finding IDs. You may adjust text, certainty, evidence, or add/remove findings."""

        response = await self.call_llm(
            send,
            system,
            f'Refine the "{section.get("title", section_id)}" section. Feedback: {feedback}',
            config
        )
        extraction = self.parse_json(response, default={})
        changes = extraction.value if isinstance(extraction.value, dict) else {}

        new_findings = changes.get("updated_findings")
        if isinstance(new_findings, list):
            others = [f for f in updated.get("findings") or [] if f.get("section") != section_id]
            updated["findings"] = others + [f for f in new_findings if isinstance(f, dict)]

        new_content = changes.get("updated_content")
        if isinstance(new_content, list):
            section["content"] = new_content

        trace = self.annotate_trace(response.trace, extraction)
        self.emit_trace(send, trace, intermediate_output={"section": section_id})

        return AgentResult(result=updated, trace=trace)
