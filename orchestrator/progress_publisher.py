"""
Progress Update Publisher

Shapes progress, trace, work-log and report events for one job and
hands them to the job's send function, which records and broadcasts them.
"""

from typing import Dict, Any, Optional
import logging
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from agents.shared.base_agent import SendFn
from agents.shared.schemas import ProgressEvent, WorkLog

logger = logging.getLogger(__name__)


class ProgressPublisher:
    """
    Publishes pipeline events through a job's send function.

    Event types: progress, trace, work_log, report,
    skill_start, skill_complete, skill_error
    """

    def __init__(self, send: SendFn):
        """
        Initialize progress publisher.

        Args:
            send: Event emission function bound to one job
        """
        self.send = send

    def publish_progress(
        self,
        stage: str,
        message: str,
        percent: int,
        detail: Optional[str] = None,
        **extra: Any
    ) -> None:
        """
        Publish a progress event.

        Args:
            stage: Pipeline stage (planning, skill_research, complete, ...)
            message: Human-readable message
            percent: Completion percentage
            detail: Optional detail line
            **extra: Additional payload fields (stats, draft_answer, domain_profile)
        """
        event = ProgressEvent(stage=stage, message=message, percent=percent, detail=detail, **extra)
        self.send("progress", event.model_dump(mode="json", exclude_none=True))
        logger.debug(f"[PROGRESS] {stage} {percent}%: {message}")

    def publish_trace(self, payload: Dict[str, Any]) -> None:
        self.send("trace", payload)

    def publish_work_log(self, work_log: WorkLog) -> None:
        """Publish a snapshot of the work log"""
        self.send("work_log", work_log.model_dump(mode="json"))

    def publish_report(self, report: Dict[str, Any]) -> None:
        """Publish a report candidate (interim or final)"""
        self.send("report", report)

    def publish_skill_start(self, skill: str, input_data: Dict[str, Any]) -> None:
        self.send("skill_start", {"skill": skill, "input": sorted(input_data.keys())})

    def publish_skill_complete(self, skill: str, duration_ms: float, summary: str, attempts: int) -> None:
        self.send("skill_complete", {
            "skill": skill,
            "duration_ms": duration_ms,
            "output_summary": summary,
            "attempts": attempts
        })

    def publish_skill_error(self, skill: str, error: str, attempts: int) -> None:
        self.send("skill_error", {"skill": skill, "error": error, "attempts": attempts})
