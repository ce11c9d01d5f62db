"""
Domain Classifier Agent

Classifies a query into a research domain and builds the domain profile
every later skill depends on (company, ticker, focus areas, sections).
Falls back to a profile built from the query itself when the model's
answer cannot be parsed.
"""

import sys
from pathlib import Path
from typing import Dict, Any, Optional

# Add project root to path
project_root = Path(__file__).parent.parent.parent
sys.path.insert(0, str(project_root))

from agents.shared.base_agent import BaseAgent, SendFn
from agents.shared.reasoning_levels import ReasoningConfig
from agents.shared.schemas import AgentResult, ConversationContext, DomainProfile


DOMAIN_PROFILES: Dict[str, Dict[str, Any]] = {
    "equity_research": {
        "domain": "equity_research",
        "domain_label": "Equity Research",
        "output_format": "written_report",
        "sections": [
            "investment_thesis",
            "recent_price_action",
            "financial_performance",
            "product_and_technology",
            "competitive_landscape",
            "industry_and_macro",
            "key_risks",
            "analyst_consensus",
        ],
        "source_hierarchy": [
            "sec_filings",
            "earnings_calls",
            "official_press_releases",
            "analyst_consensus",
            "market_data_providers",
            "industry_press",
        ],
    },
}

DEFAULT_DOMAIN = "equity_research"

SYSTEM_PROMPT = """You are a query classifier for an explainable research platform.
Given a user query, determine which research domain it belongs to.

Currently supported domains:
- equity_research: Stock analysis, company financials, earnings, market data, analyst ratings, price targets, competitive positioning of public companies.

Respond with JSON only:
{
  "domain": "equity_research",
  "ticker": "NVDA",
  "company_name": "NVIDIA Corporation",
  "focus_areas": ["financials", "competition", "product_roadmap"],
  "timeframe": "current",
  "output_format": "written_report"
}

If the query doesn't match any supported domain, use "equity_research" as the closest match.
Extract the stock ticker if mentioned or inferable. Extract the company name.
output_format is "written_report" or "slide_deck"."""


class DomainClassifier(BaseAgent):
    """Classifier Agent - identifies domain, company, ticker and output format"""

    agent_name = "classifier"
    display_name = "Classifier"
    model_setting = "classifier_model"

    def build_profile(self, query: str, parsed: Optional[Dict[str, Any]]) -> DomainProfile:
        """
        Merge the model's answer into the base profile for its domain.

        Args:
            query: Original user query (company name fallback)
            parsed: Parsed classifier JSON, or None

        Returns:
            DomainProfile
        """
        parsed = parsed if isinstance(parsed, dict) else {}
        domain = parsed.get("domain") if parsed.get("domain") in DOMAIN_PROFILES else DEFAULT_DOMAIN
        profile = dict(DOMAIN_PROFILES[domain])
        if parsed.get("output_format") in ("written_report", "slide_deck"):
            profile["output_format"] = parsed["output_format"]

        return DomainProfile(
            **profile,
            ticker=parsed.get("ticker") or "N/A",
            company_name=parsed.get("company_name") or parsed.get("companyName") or query,
            focus_areas=parsed.get("focus_areas") or parsed.get("focusAreas") or [],
            timeframe=parsed.get("timeframe") or "current",
        )

    async def run(
        self,
        query: str,
        send: Optional[SendFn],
        config: Optional[ReasoningConfig] = None,
        conversation_context: Optional[ConversationContext] = None
    ) -> AgentResult:
        """
        Classify the query.

        Args:
            query: User query
            send: Event emission handle
            config: Reasoning config (model override)
            conversation_context: Prior conversation, for follow-ups

        Returns:
            AgentResult whose result is a DomainProfile
        """
        user_content = f"<user_query>\n{query}\n</user_query>"
        if conversation_context and conversation_context.previous_report:
            title = (conversation_context.previous_report.get("meta") or {}).get("title", "")
            user_content += f"\n\nThis is a follow-up to a previous report: {title}"

        response = await self.call_llm(send, SYSTEM_PROMPT, user_content, config)
        extraction = self.parse_json(response, default=None)
        profile = self.build_profile(query, extraction.value)

        trace = self.annotate_trace(response.trace, extraction)
        if extraction.warning:
            trace["parse_warning"] = "Fallback profile used"

        self.emit_trace(send, trace, intermediate_output=profile.model_dump(mode="json"))
        self.logger.info(f"Classified query as {profile.domain}: {profile.company_name} ({profile.ticker})")

        return AgentResult(result=profile, trace=trace)
