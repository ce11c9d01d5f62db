"""
Job Manager - background report generation jobs

Each report runs as one asyncio task, independent of whoever started it.
Observers can subscribe to a job's live events and replay its bounded
history to catch up after reconnecting.

Responsibilities:
- Admission control (concurrency cap)
- Lifecycle transitions: queued -> running -> completed | failed
- Bounded progress/trace history (first events kept, then a sliding window)
- Multi-subscriber broadcast
- Best-effort persistence and rehydration
- Reaping: stale running jobs are failed, old finished jobs are evicted

Lifecycle: create one JobManager per process, call init() at startup and
shutdown() on exit. Single event loop only: every mutation happens
synchronously inside one scheduling turn, so no locks are taken.
"""

import asyncio
import logging
import re
import sys
import uuid
from datetime import datetime, timedelta, UTC
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Set, Union

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from agents.shared.errors import CapacityExceededError, ErrorKind, PipelineError, to_error_info
from agents.shared.schemas import (
    Attachment,
    ConversationContext,
    DomainProfile,
    ErrorInfo,
    Job,
    JobSummary,
    WorkLog,
    utc_now
)
from orchestrator.broadcaster import EventBroadcaster, Listener
from orchestrator.plan_executor import PlanExecutor
from orchestrator.settings import JobSettings
from orchestrator.storage import JobStateStore

logger = logging.getLogger(__name__)

CANCELLED_MESSAGE = "Job cancelled by user"
SHUTDOWN_MESSAGE = "Job interrupted by service shutdown"


def generate_job_id() -> str:
    """Unique job ID: job-<epoch ms>-<6 hex chars>"""
    return f"job-{int(utc_now().timestamp() * 1000)}-{uuid.uuid4().hex[:6]}"


def make_slug(query: str, max_length: int = 60) -> str:
    """URL-friendly slug derived from the query"""
    slug = re.sub(r"[^a-z0-9]+", "-", query.lower()).strip("-")
    return slug[:max_length].rstrip("-") or "report"


def append_bounded(buffer: List[Dict[str, Any]], item: Dict[str, Any], cap: int, head: int) -> None:
    """
    Append item, trimming buffer to cap entries.

    The first `head` entries are kept verbatim; the rest is a sliding
    window of the most recent entries.
    """
    buffer.append(item)
    if len(buffer) > cap:
        head = min(head, cap - 1)
        del buffer[head:len(buffer) - (cap - head)]


class JobManager:
    """
    Owns job state, admission, history, subscribers, persistence and reaping.
    """

    def __init__(
        self,
        executor: Optional[PlanExecutor] = None,
        store: Optional[JobStateStore] = None,
        settings: Optional[JobSettings] = None,
        broadcaster: Optional[EventBroadcaster] = None
    ):
        """
        Initialize job manager.

        Args:
            executor: Plan executor used by run_job/submit
            store: Persistence collaborator (None: memory only)
            settings: Caps, timeouts and reaper settings
            broadcaster: Event broadcaster (a new one if omitted)
        """
        self.executor = executor
        self.store = store
        self.settings = settings or JobSettings()
        self.broadcaster = broadcaster or EventBroadcaster()

        self._jobs: Dict[str, Job] = {}
        self._tasks: Dict[str, asyncio.Task] = {}
        self._persist_tasks: Set[asyncio.Task] = set()
        self._reaper_task: Optional[asyncio.Task] = None
        self._closing = False

    # ============================================
    # Lifecycle
    # ============================================

    async def init(self) -> None:
        """Start the periodic reaper"""
        self._closing = False
        if self._reaper_task is None or self._reaper_task.done():
            self._reaper_task = asyncio.create_task(self._reaper_loop())
        logger.info(
            f"Job manager started (max_concurrent_jobs={self.settings.max_concurrent_jobs}, "
            f"reaper_interval={self.settings.reaper_interval_seconds}s)"
        )

    async def shutdown(self) -> None:
        """
        Stop the reaper, drain in-flight jobs, then persist everything.

        Jobs still running after the drain period are cancelled and
        failed with a shutdown error.
        """
        self._closing = True

        if self._reaper_task is not None:
            self._reaper_task.cancel()
            await asyncio.gather(self._reaper_task, return_exceptions=True)
            self._reaper_task = None

        running = [task for task in self._tasks.values() if not task.done()]
        if running:
            logger.info(f"Draining {len(running)} running jobs (up to {self.settings.shutdown_drain_seconds}s)")
            _, pending = await asyncio.wait(running, timeout=self.settings.shutdown_drain_seconds)
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

        for job in list(self._jobs.values()):
            await self._persist(job)
        if self._persist_tasks:
            await asyncio.gather(*list(self._persist_tasks), return_exceptions=True)

        logger.info("Job manager stopped")

    async def _reaper_loop(self) -> None:
        while True:
            await asyncio.sleep(self.settings.reaper_interval_seconds)
            try:
                stale = await self.cancel_stale_jobs()
                evicted = self.cleanup_old_jobs()
                if stale or evicted:
                    logger.info(f"Reaper: {stale} stale jobs failed, {evicted} old jobs evicted")
            except Exception as e:
                logger.error(f"Reaper pass failed: {e}")

    # ============================================
    # Creation and lookup
    # ============================================

    def count_active_jobs(self) -> int:
        """Jobs currently queued or running"""
        return sum(1 for job in self._jobs.values() if job.is_active)

    def create_job(
        self,
        query: str,
        slug: Optional[str] = None,
        reasoning_level: str = "x-light",
        attachments: Optional[List[Attachment]] = None,
        conversation_context: Optional[ConversationContext] = None,
        domain_profile: Optional[DomainProfile] = None
    ) -> Job:
        """
        Admit a new job in the queued state.

        Args:
            query: User query
            slug: Report slug (derived from the query if omitted)
            reasoning_level: Reasoning level preset name
            attachments: Uploaded files
            conversation_context: Prior conversation, for follow-ups
            domain_profile: Pre-classified domain profile (classify is skipped)

        Returns:
            The new Job

        Raises:
            CapacityExceededError: If the concurrency cap is reached
        """
        if self._closing:
            raise PipelineError("Service is shutting down", kind=ErrorKind.CAPACITY_EXCEEDED, status=503)

        if self.count_active_jobs() >= self.settings.max_concurrent_jobs:
            raise CapacityExceededError(self.settings.max_concurrent_jobs)

        job = Job(
            job_id=generate_job_id(),
            slug=slug or make_slug(query),
            query=query,
            reasoning_level=reasoning_level,
            attachments=list(attachments or []),
            conversation_context=conversation_context,
            domain_profile=domain_profile
        )
        self._jobs[job.job_id] = job
        self._schedule_persist(job)

        logger.info(f"Job {job.job_id} created (slug={job.slug}, level={reasoning_level})")
        return job

    async def get_job(self, job_id: str) -> Optional[Job]:
        """
        Get a job from memory, or rehydrate it from the store.

        Args:
            job_id: Job ID

        Returns:
            Job or None if unknown
        """
        job = self._jobs.get(job_id)
        if job is not None:
            return job

        if self.store is None:
            return None

        try:
            persisted = await self.store.get(job_id)
        except Exception as e:
            logger.warning(f"Failed to load job {job_id} from store: {e}")
            return None

        if persisted is not None:
            self._jobs[job_id] = persisted
        return persisted

    def get_job_by_slug(self, slug: str) -> Optional[Job]:
        """First in-memory job with this slug"""
        return next((job for job in self._jobs.values() if job.slug == slug), None)

    def get_latest_job_for_slug(self, slug: str) -> Optional[Job]:
        """Most recently created in-memory job with this slug"""
        matches = [job for job in self._jobs.values() if job.slug == slug]
        return max(matches, key=lambda job: job.created_at) if matches else None

    # ============================================
    # Status transitions
    # ============================================

    def _touch(self, job: Job) -> None:
        job.updated_at = utc_now()

    async def start_job(self, job_id: str) -> bool:
        """
        Move a queued job to running.

        Returns:
            True if the transition happened
        """
        job = self._jobs.get(job_id)
        if job is None or job.status != "queued":
            return False

        job.status = "running"
        self._touch(job)
        self.broadcast(job_id, "job_status", {"status": "running"})
        await self._persist(job)
        return True

    async def complete_job(self, job_id: str, report: Dict[str, Any]) -> bool:
        """
        Mark a running job completed with its final report.

        Returns:
            True if the transition happened (False for unknown or finished jobs)
        """
        job = self._jobs.get(job_id)
        if job is None or job.status != "running":
            return False

        job.status = "completed"
        job.current_report = report
        job.completed_at = utc_now()
        self._touch(job)

        self.broadcast(job_id, "job_status", {"status": "completed"})
        self.broadcast(job_id, "done", {"success": True})
        await self._persist(job)

        logger.info(f"Job {job_id} completed")
        return True

    async def fail_job(self, job_id: str, error: Union[BaseException, ErrorInfo, Dict[str, Any]]) -> bool:
        """
        Mark an active job failed.

        Args:
            job_id: Job ID
            error: Exception (converted to a user-facing ErrorInfo) or ErrorInfo

        Returns:
            True if the transition happened (False for unknown or finished jobs)
        """
        job = self._jobs.get(job_id)
        if job is None or not job.is_active:
            return False

        if isinstance(error, BaseException):
            info = to_error_info(error)
        elif isinstance(error, ErrorInfo):
            info = error
        else:
            info = ErrorInfo.model_validate(error)

        job.status = "failed"
        job.error = info
        job.completed_at = utc_now()
        self._touch(job)

        self.broadcast(job_id, "job_status", {"status": "failed"})
        self.broadcast(job_id, "error", info.model_dump(mode="json"))
        await self._persist(job)

        logger.warning(f"Job {job_id} failed at stage={info.stage}: {info.message}")
        return True

    async def cancel_job(self, job_id: str) -> bool:
        """
        Cancel a queued or running job.

        The running pipeline stops at its next step boundary.

        Returns:
            True if cancelled; False for unknown or already finished jobs
        """
        job = self._jobs.get(job_id)
        if job is None or not job.is_active:
            return False

        cancelled = await self.fail_job(
            job_id,
            ErrorInfo(message=CANCELLED_MESSAGE, kind=ErrorKind.CANCELLED.value, cancelled=True)
        )
        if cancelled:
            logger.info(f"Job {job_id} cancelled")
        return cancelled

    def is_job_cancelled(self, job_id: str) -> bool:
        """True if the job was cancelled by the user, or is unknown"""
        job = self._jobs.get(job_id)
        if job is None:
            return True
        return job.status == "failed" and job.error is not None and job.error.cancelled

    # ============================================
    # Events
    # ============================================

    def broadcast(self, job_id: str, event: str, data: Any) -> None:
        """Deliver an event to the job's current subscribers"""
        self.broadcaster.publish(job_id, event, data)

    def subscribe_to_job(self, job_id: str, listener: Listener) -> Callable[[], None]:
        """
        Register a listener for a job's live events.

        History is not replayed automatically; call replay() for that.

        Returns:
            Unsubscribe function
        """
        return self.broadcaster.subscribe(job_id, listener)

    def create_send_fn(self, job_id: str) -> Callable[[str, Any], None]:
        """
        Event emission function bound to one job.

        Each call records the event (bounded progress/trace buffers,
        current report, error, work log) and fans it out to subscribers.
        Emitting to an unknown, evicted or already finished job is a
        silent no-op, so nothing follows the terminal done/error event.
        """
        def send(event: str, data: Any) -> None:
            job = self._jobs.get(job_id)
            if job is None:
                return
            if job.is_terminal:
                logger.debug(f"Dropping {event} event for finished job {job_id}")
                return

            if event == "progress":
                append_bounded(job.progress, data, self.settings.max_progress_events, self.settings.retained_head_events)
            elif event == "trace":
                append_bounded(job.trace_events, data, self.settings.max_trace_events, self.settings.retained_head_events)
            elif event == "report":
                job.current_report = data
                self._schedule_persist(job)
            elif event == "error":
                job.error = data if isinstance(data, ErrorInfo) else ErrorInfo.model_validate(data)
            elif event == "work_log":
                job.work_log = data if isinstance(data, WorkLog) else WorkLog.model_validate(data)

            self._touch(job)
            self.broadcast(job_id, event, data)

        return send

    def update_work_log(
        self,
        job_id: str,
        plan: Optional[List[Any]] = None,
        invocations: Optional[List[Any]] = None,
        reasoning: Optional[List[str]] = None
    ) -> None:
        """Replace parts of a job's work log and broadcast it"""
        job = self._jobs.get(job_id)
        if job is None:
            return

        updates = {}
        if plan is not None:
            updates["plan"] = plan
        if invocations is not None:
            updates["invocations"] = invocations
        if reasoning is not None:
            updates["reasoning"] = reasoning

        job.work_log = WorkLog.model_validate({**job.work_log.model_dump(), **updates})
        self._touch(job)
        self.broadcast(job_id, "work_log", job.work_log.model_dump(mode="json"))

    def replay(self, job_id: str) -> List[Dict[str, Any]]:
        """
        Current bounded history of a job as an ordered event list.

        Progress and trace are kept in separate buffers, so they are
        replayed as two blocks (all progress, then all trace). Order within
        each block is emission order; their relative interleaving is not kept.

        Returns:
            List of {"event", "data"} dicts (empty for unknown jobs)
        """
        job = self._jobs.get(job_id)
        if job is None:
            return []

        events = [{"event": "job_status", "data": {"status": job.status}}]
        events.extend({"event": "progress", "data": item} for item in job.progress)
        events.extend({"event": "trace", "data": item} for item in job.trace_events)
        events.append({"event": "work_log", "data": job.work_log.model_dump(mode="json")})
        if job.current_report is not None:
            events.append({"event": "report", "data": job.current_report})
        if job.status == "completed":
            events.append({"event": "done", "data": {"success": True}})
        elif job.status == "failed" and job.error is not None:
            events.append({"event": "error", "data": job.error.model_dump(mode="json")})
        return events

    # ============================================
    # Attachments
    # ============================================

    async def add_attachment_to_job(self, job_id: str, attachment: Attachment) -> bool:
        job = self._jobs.get(job_id)
        if job is None:
            return False

        job.attachments.append(attachment)
        self._touch(job)
        self.broadcast(job_id, "attachment_added", attachment.model_dump(mode="json"))
        await self._persist(job)
        return True

    async def remove_attachment_from_job(self, job_id: str, attachment_id: str) -> bool:
        job = self._jobs.get(job_id)
        if job is None:
            return False

        job.attachments = [a for a in job.attachments if a.id != attachment_id]
        self._touch(job)
        self.broadcast(job_id, "attachment_removed", {"id": attachment_id})
        await self._persist(job)
        return True

    # ============================================
    # Read-only views
    # ============================================

    def summarize_job(self, job: Job) -> JobSummary:
        """Lightweight projection of a job for listings"""
        last_progress = job.progress[-1] if job.progress else {}
        return JobSummary(
            job_id=job.job_id,
            slug=job.slug,
            status=job.status,
            query=job.query,
            created_at=job.created_at,
            updated_at=job.updated_at,
            completed_at=job.completed_at,
            progress=last_progress.get("percent", 0),
            attachment_count=len(job.attachments),
            has_report=job.current_report is not None
        )

    def list_jobs(self) -> List[JobSummary]:
        """Summaries of all in-memory jobs, newest first"""
        jobs = sorted(self._jobs.values(), key=lambda job: job.created_at, reverse=True)
        return [self.summarize_job(job) for job in jobs]

    # ============================================
    # Reaping
    # ============================================

    async def cancel_stale_jobs(self) -> int:
        """
        Fail running jobs older than the maximum runtime.

        Returns:
            Number of jobs failed
        """
        cutoff = utc_now() - timedelta(seconds=self.settings.max_job_runtime_seconds)
        minutes = round(self.settings.max_job_runtime_seconds / 60)
        stale = [job for job in self._jobs.values() if job.status == "running" and job.created_at < cutoff]

        count = 0
        for job in stale:
            info = ErrorInfo(
                message=f"Job timed out after {minutes} minutes",
                kind=ErrorKind.STEP_TIMEOUT.value,
                timed_out=True
            )
            if await self.fail_job(job.job_id, info):
                count += 1

        if count:
            logger.warning(f"Cancelled {count} stale jobs")
        return count

    def cleanup_old_jobs(self, max_age_seconds: Optional[float] = None) -> int:
        """
        Evict finished jobs from memory (they stay in the store).

        A job is evicted only if it is completed or failed, was last
        updated more than max_age_seconds ago, and has no subscribers.

        Returns:
            Number of jobs evicted
        """
        max_age = self.settings.job_ttl_seconds if max_age_seconds is None else max_age_seconds
        cutoff = utc_now() - timedelta(seconds=max_age)

        evicted = 0
        for job_id, job in list(self._jobs.items()):
            if (
                job.is_terminal
                and job.updated_at < cutoff
                and self.broadcaster.subscriber_count(job_id) == 0
            ):
                del self._jobs[job_id]
                self.broadcaster.close(job_id)
                self._tasks.pop(job_id, None)
                evicted += 1
        return evicted

    # ============================================
    # Running jobs
    # ============================================

    def _on_work_log(self, job_id: str, work_log: WorkLog) -> None:
        """Progress callback: capture the domain profile and persist"""
        job = self._jobs.get(job_id)
        if job is None:
            return

        if job.domain_profile is None:
            for invocation in work_log.invocations:
                if invocation.skill == "classify" and invocation.status == "completed" and invocation.output is not None:
                    output = invocation.output
                    job.domain_profile = output if isinstance(output, DomainProfile) else DomainProfile.model_validate(output)
                    break

        self._schedule_persist(job)

    def _should_abort(self, job_id: str) -> bool:
        job = self._jobs.get(job_id)
        return job is None or not job.is_active

    async def run_job(self, job_id: str, pre_classified_trace: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
        """
        Start a queued job and run the pipeline to a terminal state.

        Args:
            job_id: Job ID
            pre_classified_trace: Trace of the classification supplied at creation

        Returns:
            Final report, or None if the job failed or was cancelled
        """
        if self.executor is None:
            raise RuntimeError("JobManager has no executor configured")

        job = self._jobs.get(job_id)
        if job is None or not await self.start_job(job_id):
            return None

        try:
            report = await self.executor.execute(
                query=job.query,
                send=self.create_send_fn(job_id),
                is_aborted=lambda: self._should_abort(job_id),
                reasoning_level=job.reasoning_level,
                conversation_context=job.conversation_context,
                pre_classified=job.domain_profile,
                pre_classified_trace=pre_classified_trace,
                attachments=list(job.attachments),
                on_progress=lambda work_log: self._on_work_log(job_id, work_log)
            )
        except asyncio.CancelledError:
            await self.fail_job(job_id, PipelineError(SHUTDOWN_MESSAGE, kind=ErrorKind.CANCELLED))
            raise
        except Exception as e:
            logger.error(f"Job {job_id} failed: {e}")
            await self.fail_job(job_id, e)
            return None

        if report is None:
            # Aborted at a step boundary; normally already failed by cancel_job
            await self.fail_job(
                job_id,
                ErrorInfo(message=CANCELLED_MESSAGE, kind=ErrorKind.CANCELLED.value, cancelled=True)
            )
            return None

        if not await self.complete_job(job_id, report):
            return None
        return report

    def submit(
        self,
        query: str,
        slug: Optional[str] = None,
        reasoning_level: str = "x-light",
        attachments: Optional[List[Attachment]] = None,
        conversation_context: Optional[ConversationContext] = None,
        domain_profile: Optional[DomainProfile] = None
    ) -> Job:
        """
        Create a job and run it in the background.

        Raises:
            CapacityExceededError: If the concurrency cap is reached
        """
        job = self.create_job(
            query,
            slug=slug,
            reasoning_level=reasoning_level,
            attachments=attachments,
            conversation_context=conversation_context,
            domain_profile=domain_profile
        )
        task = asyncio.create_task(self.run_job(job.job_id), name=f"job:{job.job_id}")
        self._tasks[job.job_id] = task
        task.add_done_callback(lambda _: self._tasks.pop(job.job_id, None))
        return job

    async def wait_for_job(self, job_id: str) -> Optional[Job]:
        """Wait until a submitted job's task finishes; returns the job"""
        task = self._tasks.get(job_id)
        if task is not None:
            await asyncio.wait({task})
        return self._jobs.get(job_id)

    # ============================================
    # Persistence
    # ============================================

    async def _persist(self, job: Job) -> None:
        """Save a job snapshot; failures are logged, never raised"""
        if self.store is None:
            return
        try:
            await self.store.put(job.job_id, job)
        except Exception as e:
            logger.warning(f"Failed to persist job {job.job_id}: {e}")

    def _schedule_persist(self, job: Job) -> None:
        if self.store is None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        task = loop.create_task(self._persist(job))
        self._persist_tasks.add(task)
        task.add_done_callback(self._persist_tasks.discard)
