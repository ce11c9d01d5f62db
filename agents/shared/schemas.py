"""
Project Meridian - Pipeline Schemas

Pydantic models for jobs, plans, skill invocations and the events
streamed to observers. Reports themselves stay plain JSON dicts.
"""

from pydantic import BaseModel, Field, ConfigDict
from datetime import datetime, UTC
from typing import Optional, Dict, Any, List, Literal
import uuid


class MeridianModel(BaseModel):
    """Base class for all Meridian models"""
    model_config = ConfigDict(
        populate_by_name=True,
        use_enum_values=True
    )

    def to_json(self) -> str:
        """Serialize to JSON string"""
        return self.model_dump_json()

    @classmethod
    def from_json(cls, json_str: str):
        """Deserialize from JSON string"""
        return cls.model_validate_json(json_str)


def utc_now() -> datetime:
    return datetime.now(UTC)


# ============================================
# Domain Payloads
# ============================================

class Attachment(MeridianModel):
    """File uploaded alongside a query"""
    id: str = Field(default_factory=lambda: f"att-{uuid.uuid4().hex[:12]}")
    filename: str
    mime_type: str = "text/plain"
    size_bytes: int = 0
    extracted_text: Optional[str] = None
    uploaded_at: datetime = Field(default_factory=utc_now)


class DomainProfile(MeridianModel):
    """Classification result that later skills build on"""
    model_config = ConfigDict(extra="allow")

    domain: str = "equity_research"
    domain_label: str = "Equity Research"
    ticker: str = "N/A"
    company_name: str = ""
    focus_areas: List[str] = []
    timeframe: str = "current"
    output_format: str = "written_report"
    sections: List[str] = []


class EvidenceItem(MeridianModel):
    """One sourced data point gathered by research or attachment analysis"""
    model_config = ConfigDict(extra="allow")

    id: Optional[str] = None
    source: str = ""
    quote: str = ""
    url: str = ""
    category: str = "other"
    authority: str = "secondary"


class ConversationContext(MeridianModel):
    """Prior conversation state for follow-up queries"""
    conversation_id: str
    previous_report: Optional[Dict[str, Any]] = None
    message_history: List[Dict[str, str]] = []


# ============================================
# Plans and Work Log
# ============================================

StepStatus = Literal["pending", "running", "completed", "failed"]


class PlanStep(MeridianModel):
    """Single step of an execution plan"""
    skill: str
    description: str = ""
    input: Dict[str, Any] = {}
    status: StepStatus = "pending"


class AgentPlan(MeridianModel):
    """Ordered list of skill invocations chosen for a request"""
    reasoning: str = ""
    steps: List[PlanStep] = []


class SkillInvocation(MeridianModel):
    """Record of one executed plan step"""
    skill: str
    input: Dict[str, Any] = {}
    started_at: datetime = Field(default_factory=utc_now)
    completed_at: Optional[datetime] = None
    duration_ms: Optional[float] = None
    status: Literal["running", "completed", "failed"] = "running"
    output: Any = None
    error: Optional[str] = None
    trace: Optional[Dict[str, Any]] = None
    attempts: int = 0


class WorkLog(MeridianModel):
    """Running record of a job's plan, invocations and reasoning notes"""
    plan: List[PlanStep] = []
    invocations: List[SkillInvocation] = []
    reasoning: List[str] = []


class AgentResult(MeridianModel):
    """What every collaborator returns: a result plus the trace of its LLM call"""
    result: Any = None
    trace: Dict[str, Any] = {}


# ============================================
# Events
# ============================================

class ProgressEvent(MeridianModel):
    """Progress notification (stage + completion percentage)"""
    model_config = ConfigDict(extra="allow")

    stage: str
    message: str
    percent: int = 0
    detail: Optional[str] = None
    stats: Optional[Dict[str, Any]] = None


class TraceEvent(MeridianModel):
    """Raw LLM call record for one agent"""
    model_config = ConfigDict(extra="allow")

    stage: str
    agent: str
    status: Optional[Literal["pending", "completed", "failed"]] = None
    trace: Dict[str, Any] = {}
    intermediate_output: Any = None
    raw_output: Optional[str] = None


class ErrorInfo(MeridianModel):
    """User-visible failure; never a raw internal exception"""
    message: str
    kind: Optional[str] = None
    stage: Optional[str] = None
    status: Optional[int] = None
    cancelled: bool = False
    timed_out: bool = False
    detail: Optional[Dict[str, Any]] = None


# ============================================
# Jobs
# ============================================

JobStatus = Literal["queued", "running", "completed", "failed"]


class Job(MeridianModel):
    """One end-to-end run of a plan, with its bounded event history"""
    job_id: str
    slug: str
    status: JobStatus = "queued"
    query: str
    reasoning_level: str = "x-light"
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    completed_at: Optional[datetime] = None
    progress: List[Dict[str, Any]] = []
    trace_events: List[Dict[str, Any]] = []
    work_log: WorkLog = Field(default_factory=WorkLog)
    current_report: Optional[Dict[str, Any]] = None
    domain_profile: Optional[DomainProfile] = None
    conversation_context: Optional[ConversationContext] = None
    attachments: List[Attachment] = []
    error: Optional[ErrorInfo] = None

    @property
    def is_active(self) -> bool:
        return self.status in ("queued", "running")

    @property
    def is_terminal(self) -> bool:
        return self.status in ("completed", "failed")


class JobSummary(MeridianModel):
    """Lightweight projection of a job for listings"""
    job_id: str
    slug: str
    status: JobStatus
    query: str
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime] = None
    progress: int = 0
    attachment_count: int = 0
    has_report: bool = False
