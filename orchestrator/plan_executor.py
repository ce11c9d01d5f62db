"""
Plan Executor - runs a plan step by step for one job

State machine per job:
    planning -> executing(step i) -> ... -> finalizing -> succeeded | aborted | failed

1. Generate the plan and publish it as the initial work log
2. Before each step, check the abort predicate (never mid-step); a step that
   finishes after an abort has its result discarded
3. Run the step's skill under a timeout (long-running skills get a longer one)
4. On success, record the invocation and publish report candidates immediately
5. On failure, skip non-critical steps; tag critical failures with the step name and re-raise
6. Require a report candidate once the plan is done
7. Publish final statistics, the final work log and the final report
"""

import asyncio
import logging
import sys
import time
from dataclasses import dataclass
from datetime import datetime, UTC
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from agents.shared.base_agent import SendFn
from agents.shared.errors import ErrorKind, PipelineError, classify_error
from agents.shared.reasoning_levels import get_reasoning_config
from agents.shared.report_utils import strip_findings_without_explanations
from agents.shared.schemas import (
    Attachment,
    ConversationContext,
    DomainProfile,
    PlanStep,
    SkillInvocation,
    WorkLog
)
from orchestrator.planner import PlanGenerator
from orchestrator.progress_publisher import ProgressPublisher
from orchestrator.registry import Collaborators, PipelineState, SkillContext, SkillName, SkillRegistry
from orchestrator.retry import RetryPolicy
from orchestrator.settings import JobSettings

logger = logging.getLogger(__name__)

NO_REPORT_MESSAGE = "Orchestrator completed without producing a report"


def compute_report_stats(report: Dict[str, Any]) -> Dict[str, Any]:
    """
    Aggregate statistics for a finished report.

    Buckets: high >= 90, moderate >= 70, mixed >= 50, weak otherwise.

    Args:
        report: Report dict

    Returns:
        Dict with findings_count, avg_certainty and certainty_buckets
    """
    findings = report.get("findings") or []
    count = len(findings)
    avg = round(sum(f.get("certainty") or 0 for f in findings) / count) if count else 0

    buckets = {"high": 0, "moderate": 0, "mixed": 0, "weak": 0}
    for finding in findings:
        certainty = finding.get("certainty") or 0
        if certainty >= 90:
            buckets["high"] += 1
        elif certainty >= 70:
            buckets["moderate"] += 1
        elif certainty >= 50:
            buckets["mixed"] += 1
        else:
            buckets["weak"] += 1

    return {"findings_count": count, "avg_certainty": avg, "certainty_buckets": buckets}


@dataclass
class ExecutionRun:
    """Per-job execution state; the executor itself is shared across jobs"""
    ctx: SkillContext
    publisher: ProgressPublisher
    work_log: WorkLog
    steps: List[PlanStep]
    attachments: List[Attachment]
    on_progress: Optional[Callable[[WorkLog], None]] = None
    is_aborted: Callable[[], bool] = lambda: False
    report: Optional[Dict[str, Any]] = None

    def checkpoint(self) -> None:
        """Publish the work log and hand it to the progress callback"""
        self.work_log.plan = list(self.steps)
        self.publisher.publish_work_log(self.work_log)
        if self.on_progress:
            self.on_progress(self.work_log)


class PlanExecutor:
    """
    Plans and executes skills to produce a report.

    Coordinates the planner, the skill registry and the collaborators.
    """

    def __init__(
        self,
        planner: PlanGenerator,
        registry: SkillRegistry,
        collaborators: Collaborators,
        settings: Optional[JobSettings] = None,
        retry_policy: Optional[RetryPolicy] = None
    ):
        """
        Initialize plan executor.

        Args:
            planner: Plan generator
            registry: Skill registry
            collaborators: Agents the skills delegate to
            settings: Step timeouts and retry settings
            retry_policy: Retry policy for collaborator calls (built from settings if omitted)
        """
        self.planner = planner
        self.registry = registry
        self.collaborators = collaborators
        self.settings = settings or JobSettings()
        self.retry_policy = retry_policy or RetryPolicy(
            max_retries=self.settings.collaborator_max_retries,
            base_delay=self.settings.retry_base_delay_seconds
        )

    async def execute(
        self,
        query: str,
        send: SendFn,
        is_aborted: Optional[Callable[[], bool]] = None,
        reasoning_level: Optional[str] = None,
        conversation_context: Optional[ConversationContext] = None,
        pre_classified: Optional[DomainProfile] = None,
        pre_classified_trace: Optional[Dict[str, Any]] = None,
        attachments: Optional[List[Attachment]] = None,
        on_progress: Optional[Callable[[WorkLog], None]] = None
    ) -> Optional[Dict[str, Any]]:
        """
        Execute the pipeline for one query.

        Args:
            query: User query
            send: Event emission function bound to the job
            is_aborted: Checked before every step and when a step returns
            reasoning_level: Reasoning level preset name
            conversation_context: Prior conversation, for follow-ups
            pre_classified: Domain profile supplied by the caller (classify is skipped)
            pre_classified_trace: Trace of the call that produced pre_classified
            attachments: Uploaded files
            on_progress: Called with the work log after every step

        Returns:
            Final report dict, or None if the run was aborted

        Raises:
            PipelineError: Critical step failure (tagged with the step name),
                step timeout, or no report produced
        """
        is_aborted = is_aborted or (lambda: False)
        attachments = attachments or []
        config = get_reasoning_config(reasoning_level)
        publisher = ProgressPublisher(send)

        logger.info(f"[EXECUTOR] Starting pipeline: {query[:80]}")

        publisher.publish_progress(
            "planning",
            "Agent is planning the research approach...",
            0,
            detail=f"Reasoning level: {config.label} | {config.description}"
        )

        plan = await self.planner.generate_plan(query, attachments, conversation_context, pre_classified)

        state = PipelineState(query=query, domain_profile=pre_classified, attachments=list(attachments))
        ctx = SkillContext(
            send=send,
            config=config,
            state=state,
            collaborators=self.collaborators,
            retry_policy=self.retry_policy,
            conversation_context=conversation_context
        )
        run = ExecutionRun(
            ctx=ctx,
            publisher=publisher,
            work_log=WorkLog(plan=plan.steps, reasoning=[plan.reasoning]),
            steps=plan.steps,
            attachments=list(attachments),
            on_progress=on_progress,
            is_aborted=is_aborted
        )
        run.checkpoint()

        total = len(plan.steps)
        publisher.publish_progress("planned", f"Plan: {total} steps", 2, detail=plan.reasoning)

        if pre_classified is not None:
            publisher.publish_progress(
                "classified",
                f"Identified {pre_classified.company_name} ({pre_classified.ticker})",
                10,
                detail=f"Domain: {pre_classified.domain_label} | Format: {pre_classified.output_format} (pre-classified)",
                domain_profile=pre_classified.model_dump(mode="json")
            )
            if pre_classified_trace:
                publisher.publish_trace({
                    "stage": "classifier",
                    "agent": "Classifier",
                    "trace": pre_classified_trace,
                    "intermediate_output": pre_classified.model_dump(mode="json")
                })

        index = 0
        while index < total:
            if is_aborted():
                return self._abort(run, index, total)

            step = plan.steps[index]
            following = plan.steps[index + 1] if index + 1 < total else None

            if (
                step.skill == SkillName.DRAFT_ANSWER.value
                and following is not None
                and following.skill == SkillName.RESEARCH.value
            ):
                await self._run_concurrent_pair(run, index, total)
                index += 2
                continue

            await self._run_step(run, index, total)
            index += 1

        if is_aborted():
            return self._abort(run, index, total)

        return self._finalize(run)

    def _abort(self, run: ExecutionRun, index: int, total: int) -> None:
        logger.info(f"[EXECUTOR] Aborted before step {index + 1}/{total}")
        run.publisher.publish_progress(
            "aborted",
            "Agent stopped by user",
            min(round((index + 1) / total * 100), 100)
        )
        return None

    def _build_input(self, run: ExecutionRun, step: PlanStep, index: int) -> Dict[str, Any]:
        """Step input plus the resolved attachment for analyze_attachment steps"""
        input_data = dict(step.input)
        if step.skill == SkillName.ANALYZE_ATTACHMENT.value and "attachment" not in input_data:
            attachment_id = input_data.get("attachment_id") or input_data.get("attachmentId")
            attachment = next((a for a in run.attachments if a.id == attachment_id), None)
            if attachment is None and run.attachments:
                attachment = run.attachments[min(index, len(run.attachments) - 1)]
            if attachment is not None:
                input_data["attachment"] = attachment
        return input_data

    async def _run_step(self, run: ExecutionRun, index: int, total: int) -> None:
        """
        Execute one plan step with timeout, recording and error policy.

        Args:
            run: Execution state
            index: Step index in the plan
            total: Number of steps in the plan

        Raises:
            PipelineError: If a critical step fails or times out
        """
        step = run.steps[index]
        skill = self.registry.get(step.skill)
        name = skill.name.value
        percent = round(index / total * 90) + 5

        step.status = "running"
        run.checkpoint()
        run.publisher.publish_progress(
            f"skill_{name}",
            step.description or name,
            percent,
            detail=f"Step {index + 1}/{total}: {name}"
        )

        step_ctx = run.ctx.bind()
        input_data = self._build_input(run, step, index)
        invocation = SkillInvocation(skill=name, input=dict(step.input))
        run.publisher.publish_skill_start(name, input_data)
        logger.info(f"[EXECUTOR] Step {index + 1}/{total}: {name}")

        timeout = self.settings.step_timeout(skill.long_running)
        start_time = time.monotonic()

        try:
            result = await asyncio.wait_for(
                skill.run(step_ctx, input_data),
                timeout=timeout
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if run.is_aborted():
                logger.info(f"[EXECUTOR] Discarding failure of {name}, job was stopped: {e}")
                return
            if isinstance(e, asyncio.TimeoutError):
                error = PipelineError(
                    f'Skill "{name}" timed out after {timeout:g}s',
                    kind=ErrorKind.STEP_TIMEOUT,
                    stage=name
                )
            else:
                error = classify_error(e)
            self._record_failure(run, step, invocation, error, step_ctx.attempts, start_time)
            self._handle_failure(run, skill, error)
            return

        if run.is_aborted():
            logger.info(f"[EXECUTOR] Discarding result of {name}, job was stopped")
            return

        duration_ms = round((time.monotonic() - start_time) * 1000)
        invocation.completed_at = datetime.now(UTC)
        invocation.duration_ms = duration_ms
        invocation.status = "completed"
        invocation.output = result.output
        invocation.trace = result.trace
        invocation.attempts = step_ctx.attempts
        run.work_log.invocations.append(invocation)
        step.status = "completed"

        run.publisher.publish_skill_complete(name, duration_ms, skill.summarize(result.output), step_ctx.attempts)

        if skill.produces_report and isinstance(result.output, dict):
            run.report = result.output
            run.publisher.publish_report(result.output)

        if skill.name == SkillName.DRAFT_ANSWER:
            run.publisher.publish_progress(
                "answer_drafted",
                "Draft answer ready",
                percent + 2,
                draft_answer=result.output
            )

        run.checkpoint()

    def _record_failure(
        self,
        run: ExecutionRun,
        step: PlanStep,
        invocation: SkillInvocation,
        error: PipelineError,
        attempts: int,
        start_time: float
    ) -> None:
        invocation.completed_at = datetime.now(UTC)
        invocation.duration_ms = round((time.monotonic() - start_time) * 1000)
        invocation.status = "failed"
        invocation.error = error.message
        invocation.attempts = attempts
        run.work_log.invocations.append(invocation)
        step.status = "failed"
        run.work_log.reasoning.append(f'Step "{step.skill}" failed: {error.message}')
        run.publisher.publish_skill_error(step.skill, error.message, attempts)

    def _handle_failure(self, run: ExecutionRun, skill, error: PipelineError) -> None:
        """Skip non-critical failures; tag and re-raise critical ones"""
        if not skill.critical:
            logger.warning(f"Non-critical skill {skill.name.value} failed: {error.message}")
            run.checkpoint()
            return

        error.stage = skill.name.value
        logger.error(f"Critical skill {skill.name.value} failed ({error.kind.value}): {error.message}")
        run.checkpoint()
        raise error

    async def _run_concurrent_pair(self, run: ExecutionRun, index: int, total: int) -> None:
        """
        Run draft_answer and research together.

        The draft is non-critical, so only the research failure propagates.
        """
        logger.info(f"[EXECUTOR] Running steps {index + 1} and {index + 2} concurrently")

        results = await asyncio.gather(
            self._run_step(run, index, total),
            self._run_step(run, index + 1, total),
            return_exceptions=True
        )

        draft_outcome, research_outcome = results
        if isinstance(draft_outcome, BaseException):
            logger.warning(f"Draft answer failed alongside research: {draft_outcome}")
        if isinstance(research_outcome, BaseException):
            raise research_outcome

    def _finalize(self, run: ExecutionRun) -> Dict[str, Any]:
        """
        Pick the final report, compute statistics and publish them.

        Raises:
            PipelineError: If no step produced a report
        """
        state = run.ctx.state
        report = run.report or state.report or state.draft
        if not report:
            raise PipelineError(NO_REPORT_MESSAGE, kind=ErrorKind.NO_REPORT)

        meta = report.setdefault("meta", {})
        if state.domain_profile is not None:
            meta["output_format"] = state.domain_profile.output_format

        removed = strip_findings_without_explanations(report)
        if removed:
            logger.warning(f"Removed {len(removed)} findings without explanations: {removed}")
            run.work_log.reasoning.append(f"Removed {len(removed)} findings without explanations")

        stats = compute_report_stats(report)
        buckets = stats["certainty_buckets"]

        run.publisher.publish_progress(
            "complete",
            f"Report complete - {stats['findings_count']} findings, avg certainty {stats['avg_certainty']}%",
            100,
            detail=(
                f"High: {buckets['high']} | Moderate: {buckets['moderate']} | "
                f"Mixed: {buckets['mixed']} | Weak: {buckets['weak']}"
            ),
            stats=stats
        )

        run.work_log.reasoning.append(
            f"Completed: {stats['findings_count']} findings, avg certainty {stats['avg_certainty']}%, "
            f"{len(run.work_log.invocations)} skills executed"
        )
        run.checkpoint()
        run.publisher.publish_report(report)

        logger.info(f"[EXECUTOR] Pipeline complete: {stats['findings_count']} findings")
        return report
