"""
Skills - the concrete capabilities behind each SkillName

Each skill checks its prerequisites in the pipeline state, calls its
collaborator through ctx.call_collaborator (retry policy applied) and
writes its result back into the shared state.

- classify: Identify domain, company, ticker, output format
- research: Gather evidence from sources
- analyze_attachment: Extract insights from uploaded files
- synthesize: Draft findings and report structure
- verify: Adversarial fact-checking and certainty scoring
- refine_section: Improve a specific section based on feedback
- draft_answer: Quick preview answer
"""

import sys
from pathlib import Path
from typing import Any, Dict, List

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from agents.shared.schemas import Attachment, DomainProfile
from orchestrator.registry import Skill, SkillContext, SkillName, SkillRegistry, SkillResult


class ClassifySkill(Skill):
    name = SkillName.CLASSIFY
    description = "Identify domain, company, ticker and output format from the query"

    async def run(self, ctx: SkillContext, input: Dict[str, Any]) -> SkillResult:
        classifier = ctx.collaborators.classifier
        result = await ctx.call_collaborator(
            classifier.run,
            ctx.state.query,
            ctx.send,
            ctx.config,
            ctx.conversation_context,
            label="classifier"
        )
        profile = result.result
        if isinstance(profile, dict):
            profile = DomainProfile.model_validate(profile)
        ctx.state.domain_profile = profile
        return SkillResult(output=profile, trace=result.trace)

    def summarize(self, output: Any) -> str:
        if output is None:
            return "no output"
        return f"{output.company_name} ({output.ticker}) - {output.domain} / {output.output_format}"


class DraftAnswerSkill(Skill):
    name = SkillName.DRAFT_ANSWER
    description = "Generate a quick preview answer while the full pipeline runs"
    critical = False

    async def run(self, ctx: SkillContext, input: Dict[str, Any]) -> SkillResult:
        self.require(ctx.state.domain_profile, "Cannot draft answer without domain profile - run classify first")
        result = await ctx.call_collaborator(
            ctx.collaborators.drafter.run,
            ctx.state.query,
            ctx.state.domain_profile,
            ctx.send,
            label="drafter"
        )
        return SkillResult(output=result.result, trace=result.trace)

    def summarize(self, output: Any) -> str:
        if not isinstance(output, str):
            return "draft ready"
        return output[:80] + "..."


class ResearchSkill(Skill):
    name = SkillName.RESEARCH
    description = "Gather evidence items with sources for the identified domain"
    long_running = True

    async def run(self, ctx: SkillContext, input: Dict[str, Any]) -> SkillResult:
        self.require(ctx.state.domain_profile, "Cannot research without domain profile - run classify first")
        prior_evidence = list(ctx.state.evidence)

        result = await ctx.call_collaborator(
            ctx.collaborators.researcher.run,
            ctx.state.query,
            ctx.state.domain_profile,
            ctx.send,
            ctx.config,
            ctx.conversation_context,
            prior_evidence,
            label="researcher"
        )
        # Attachment evidence gathered earlier stays in the pool
        ctx.state.evidence = prior_evidence + list(result.result or [])
        return SkillResult(output=result.result, trace=result.trace)

    def summarize(self, output: Any) -> str:
        return f"{len(output or [])} evidence items"


class AnalyzeAttachmentSkill(Skill):
    name = SkillName.ANALYZE_ATTACHMENT
    description = "Extract insights and data from an uploaded file attachment"

    def resolve_attachment(self, ctx: SkillContext, input: Dict[str, Any]) -> Attachment:
        attachment = input.get("attachment")
        if isinstance(attachment, Attachment):
            return attachment
        if isinstance(attachment, dict):
            return Attachment.model_validate(attachment)

        attachment_id = input.get("attachment_id") or input.get("attachmentId")
        for candidate in ctx.state.attachments:
            if candidate.id == attachment_id:
                return candidate

        self.require(False, f"No attachment provided (attachment_id={attachment_id})")

    async def run(self, ctx: SkillContext, input: Dict[str, Any]) -> SkillResult:
        attachment = self.resolve_attachment(ctx, input)

        result = await ctx.call_collaborator(
            ctx.collaborators.attachment_analyst.run,
            attachment,
            ctx.send,
            ctx.config,
            label="attachment_analyst"
        )
        insights: List[Dict[str, Any]] = list(result.result or [])

        ctx.state.evidence.extend(insights)
        ctx.state.attachment_insights.append(
            f'File "{attachment.filename}": {len(insights)} data points extracted'
        )
        return SkillResult(output=insights, trace=result.trace)

    def summarize(self, output: Any) -> str:
        return f"{len(output or [])} data points extracted"


class SynthesizeSkill(Skill):
    name = SkillName.SYNTHESIZE
    description = "Draft findings and structured report from evidence"
    long_running = True
    produces_report = True

    async def run(self, ctx: SkillContext, input: Dict[str, Any]) -> SkillResult:
        self.require(ctx.state.domain_profile, "Cannot synthesize without domain profile")
        self.require(ctx.state.evidence, "Cannot synthesize without evidence - run research first")

        result = await ctx.call_collaborator(
            ctx.collaborators.synthesizer.run,
            ctx.state.query,
            ctx.state.domain_profile,
            ctx.state.evidence,
            ctx.send,
            ctx.config,
            ctx.conversation_context,
            label="synthesizer"
        )
        ctx.state.draft = result.result
        return SkillResult(output=result.result, trace=result.trace)

    def summarize(self, output: Any) -> str:
        if not isinstance(output, dict):
            return "no report extracted"
        return f"{len(output.get('findings') or [])} findings, {len(output.get('sections') or [])} sections"


class VerifySkill(Skill):
    name = SkillName.VERIFY
    description = "Adversarially fact-check findings, assign certainty scores, remove weak claims"
    long_running = True
    produces_report = True

    async def run(self, ctx: SkillContext, input: Dict[str, Any]) -> SkillResult:
        self.require(ctx.state.domain_profile, "Cannot verify without domain profile")
        self.require(ctx.state.draft, "Cannot verify without draft report - run synthesize first")

        result = await ctx.call_collaborator(
            ctx.collaborators.verifier.run,
            ctx.state.query,
            ctx.state.domain_profile,
            ctx.state.draft,
            ctx.send,
            ctx.config,
            ctx.conversation_context,
            label="verifier"
        )
        ctx.state.report = result.result
        return SkillResult(output=result.result, trace=result.trace)

    def summarize(self, output: Any) -> str:
        if not isinstance(output, dict):
            return "no output"
        certainty = (output.get("meta") or {}).get("overall_certainty", "?")
        return f"{len(output.get('findings') or [])} findings verified, avg certainty {certainty}%"


class RefineSectionSkill(Skill):
    name = SkillName.REFINE_SECTION
    description = "Improve a specific report section based on feedback or new evidence"
    produces_report = True

    async def run(self, ctx: SkillContext, input: Dict[str, Any]) -> SkillResult:
        report = ctx.state.report or ctx.state.draft
        if report is None and ctx.conversation_context:
            report = ctx.conversation_context.previous_report
        self.require(report, "No report to refine - run synthesize or verify first")
        self.require(ctx.state.domain_profile, "Cannot refine without domain profile")

        section_id = input.get("section_id") or input.get("sectionId")
        self.require(section_id, "refine_section needs a section_id")

        result = await ctx.call_collaborator(
            ctx.collaborators.editor.run,
            report,
            section_id,
            input.get("feedback") or ctx.state.query,
            ctx.state.domain_profile,
            ctx.send,
            ctx.config,
            label="editor"
        )
        ctx.state.report = result.result
        return SkillResult(output=result.result, trace=result.trace)

    def summarize(self, output: Any) -> str:
        return "section refined"


DEFAULT_SKILLS = (
    ClassifySkill,
    ResearchSkill,
    AnalyzeAttachmentSkill,
    SynthesizeSkill,
    VerifySkill,
    RefineSectionSkill,
    DraftAnswerSkill,
)


def build_default_registry() -> SkillRegistry:
    """Registry holding one instance of every default skill"""
    return SkillRegistry(skill_cls() for skill_cls in DEFAULT_SKILLS)
