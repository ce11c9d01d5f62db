"""
Draft Answer Agent

Produces a quick prose answer so the user has something to read
while research, synthesis and verification run.
"""

import sys
from pathlib import Path
from typing import Optional

# Add project root to path
project_root = Path(__file__).parent.parent.parent
sys.path.insert(0, str(project_root))

from agents.shared.base_agent import BaseAgent, SendFn
from agents.shared.schemas import AgentResult, DomainProfile

DRAFT_MAX_TOKENS = 1024


class DraftWriter(BaseAgent):
    """Draft Answer Agent - short preliminary answer in plain prose"""

    agent_name = "drafter"
    display_name = "Draft Writer"

    async def run(self, query: str, domain_profile: DomainProfile, send: Optional[SendFn]) -> AgentResult:
        system = (
            f"You are a research assistant. Provide a concise, helpful draft answer to the user's query "
            f"about {domain_profile.company_name} ({domain_profile.ticker}). This is a quick preliminary "
            f"answer: keep it to 2-4 paragraphs covering the key points. Write flowing prose without "
            f"markdown headers or bullet points."
        )

        response = await self.call_llm(send, system, f"<user_query>{query}</user_query>", max_tokens=DRAFT_MAX_TOKENS)
        self.emit_trace(send, response.trace)

        return AgentResult(result=response.text.strip(), trace=response.trace)
