"""
Attachment Analyst Agent

Extracts evidence items from the text of an uploaded file so it can
feed into research and synthesis.
"""

import sys
from pathlib import Path
from typing import Dict, Any, List, Optional

# Add project root to path
project_root = Path(__file__).parent.parent.parent
sys.path.insert(0, str(project_root))

from agents.shared.base_agent import BaseAgent, SendFn
from agents.shared.reasoning_levels import ReasoningConfig
from agents.shared.schemas import AgentResult, Attachment

MAX_ATTACHMENT_CHARS = 50_000


class AttachmentAnalyst(BaseAgent):
    """Attachment Analyst Agent - turns file contents into evidence items"""

    agent_name = "attachment_analyst"
    display_name = "Attachment Analyst"
    model_setting = "researcher_model"

    def build_system_prompt(self, attachment: Attachment) -> str:
        return f"""You are an expert analyst. You have been given the contents of a file uploaded by the user as part of a research task. Extract all relevant data points, key metrics, claims, and insights that could be used in a research report.

Be specific and quantitative where possible. Return ONLY a JSON object:
{{
  "evidence": [
    {{
      "source": "Uploaded: {attachment.filename}",
      "quote": "specific data point or insight",
      "url": "uploaded",
      "category": "financial_data|market_data|company_info|competitive_intel|other",
      "authority": "primary_source"
    }}
  ]
}}"""

    def fallback_evidence(self, attachment: Attachment, text: str) -> List[Dict[str, Any]]:
        """Single evidence item holding the raw answer, used when extraction fails"""
        return [{
            "source": f"Uploaded: {attachment.filename}",
            "quote": text[:500],
            "url": "uploaded",
            "category": "other",
            "authority": "primary_source",
        }]

    async def run(
        self,
        attachment: Attachment,
        send: Optional[SendFn],
        config: Optional[ReasoningConfig] = None
    ) -> AgentResult:
        """
        Analyze one attachment.

        Args:
            attachment: Uploaded file with its extracted text
            send: Event emission handle
            config: Reasoning config (model override)

        Returns:
            AgentResult whose result is a list of evidence dicts
        """
        extracted_text = attachment.extracted_text or "[No text extracted]"
        user_content = (
            f"Analyze this file and extract evidence items:\n\n"
            f"Filename: {attachment.filename}\n"
            f"Type: {attachment.mime_type}\n"
            f"Content:\n{extracted_text[:MAX_ATTACHMENT_CHARS]}"
        )

        response = await self.call_llm(send, self.build_system_prompt(attachment), user_content, config)
        extraction = self.parse_json(response, default=None)

        value = extraction.value
        items = value.get("evidence") if isinstance(value, dict) else value
        if isinstance(items, list):
            evidence = [item for item in items if isinstance(item, dict)]
        else:
            evidence = self.fallback_evidence(attachment, response.text)

        trace = self.annotate_trace(response.trace, extraction)
        self.emit_trace(send, trace, intermediate_output={"filename": attachment.filename, "evidence_count": len(evidence)})
        self.logger.info(f"Extracted {len(evidence)} data points from {attachment.filename}")

        return AgentResult(result=evidence, trace=trace)
