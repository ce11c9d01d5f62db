"""
Verification Agent

Adversarially fact-checks the draft report: assigns certainty scores,
attaches contrary evidence and removes findings below the reasoning
level's removal threshold. If the model's answer cannot be used, the
draft is returned with default certainty scores instead of failing.
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
from agents.shared.reasoning_levels import ReasoningConfig
from agents.shared.report_utils import clean_orphaned_refs
from agents.shared.schemas import AgentResult, ConversationContext, DomainProfile

DEFAULT_CERTAINTY = 60
MISSING_CERTAINTY = 50
VERIFICATION_MAX_TOKENS = 8192


def overall_certainty(report: Dict[str, Any], missing: int = MISSING_CERTAINTY) -> int:
    """Mean certainty across findings, rounded; 0 when there are none"""
    findings = report.get("findings") or []
    if not findings:
        return 0
    return round(sum(f.get("certainty") or missing for f in findings) / len(findings))


class Verifier(BaseAgent):
    """Verification Agent - certainty scoring and removal of weak claims"""

    agent_name = "verifier"
    display_name = "Verifier"
    model_setting = "verifier_model"

    def build_system_prompt(self, profile: DomainProfile, config: ReasoningConfig) -> str:
        return f"""You are an adversarial fact-checker reviewing a {profile.domain_label} report on {profile.company_name} ({profile.ticker}).

For every finding:
- assign "certainty" (0-100) based on how well the supporting evidence holds up
- add any contradicting sources to explanation.contrary_evidence
- any contradiction lowers the score

Add a methodology note of {config.methodology_length} to meta.methodology.
Return the full corrected report as ONLY a JSON object with the same schema as the input."""

    def apply_threshold(self, report: Dict[str, Any], threshold: int) -> list:
        """Remove findings scored below threshold; returns their IDs"""
        if threshold <= 0:
            return []
        findings = report.get("findings") or []
        removed = [f.get("id") for f in findings if (f.get("certainty") or 0) < threshold]
        report["findings"] = [f for f in findings if (f.get("certainty") or 0) >= threshold]
        return removed

    def fallback_report(self, draft: Dict[str, Any]) -> Dict[str, Any]:
        """Draft with default certainty scores, used when verification output is unusable"""
        report = copy.deepcopy(draft)
        findings = []
        for finding in report.get("findings") or []:
            explanation = dict(finding.get("explanation") or {})
            explanation.setdefault("contrary_evidence", [])
            findings.append({**finding, "certainty": finding.get("certainty") or DEFAULT_CERTAINTY, "explanation": explanation})
        report["findings"] = findings
        report.setdefault("meta", {})["overall_certainty"] = overall_certainty(report, missing=0)
        clean_orphaned_refs(report)
        return report

    async def run(
        self,
        query: str,
        domain_profile: DomainProfile,
        draft: Dict[str, Any],
        send: Optional[SendFn],
        config: ReasoningConfig,
        conversation_context: Optional[ConversationContext] = None
    ) -> AgentResult:
        """
        Verify the draft report.

        Args:
            query: User query
            domain_profile: Classification result
            draft: Draft report from the synthesizer
            send: Event emission handle
            config: Reasoning config
            conversation_context: Prior conversation, for follow-ups

        Returns:
            AgentResult whose result is the verified report dict
        """
        user_content = f"<user_query>\n{query}\n</user_query>\n\nDraft report:\n{json.dumps(draft)}"

        response = await self.call_llm(
            send,
            self.build_system_prompt(domain_profile, config),
            user_content,
            config,
            max_tokens=VERIFICATION_MAX_TOKENS
        )
        extraction = self.parse_json(response, default=None)
        trace = self.annotate_trace(response.trace, extraction)

        if not isinstance(extraction.value, dict) or "findings" not in extraction.value:
            self.logger.warning("Verification failed, returning draft with default scores")
            report = self.fallback_report(draft)
            trace["parse_warning"] = "Verification failed, used draft with default scores"
            self.emit_trace(send, trace, raw_output=response.text)
            return AgentResult(result=report, trace=trace)

        report = extraction.value
        meta = report.setdefault("meta", {})
        if not meta.get("overall_certainty") and report.get("findings"):
            meta["overall_certainty"] = overall_certainty(report)

        pre_ids = {f.get("id") for f in draft.get("findings") or []}
        below_threshold = self.apply_threshold(report, config.removal_threshold)
        clean_orphaned_refs(report)
        post_ids = {f.get("id") for f in report.get("findings") or []}

        trace["parsed_output"] = {
            "findings_count": len(report.get("findings") or []),
            "overall_certainty": meta.get("overall_certainty"),
            "removed_findings": sorted(str(i) for i in pre_ids - post_ids),
            "below_threshold": below_threshold,
        }
        self.emit_trace(send, trace, intermediate_output=trace["parsed_output"])

        return AgentResult(result=report, trace=trace)
