"""
Schema tests

Pydantic models for jobs, work logs and events.
"""

import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent.parent
sys.path.insert(0, str(project_root))

from agents.shared.reasoning_levels import get_reasoning_config
from agents.shared.schemas import (
    Attachment,
    DomainProfile,
    Job,
    ProgressEvent,
    SkillInvocation,
    WorkLog
)
from orchestrator.settings import JobSettings


def test_job_defaults():
    """New jobs start queued with empty history"""
    job = Job(job_id="job-1", slug="s", query="q")

    assert job.status == "queued"
    assert job.is_active
    assert not job.is_terminal
    assert job.progress == []
    assert job.work_log.invocations == []
    assert job.created_at.tzinfo is not None


def test_job_lists_not_shared():
    first = Job(job_id="job-1", slug="s", query="q")
    second = Job(job_id="job-2", slug="s", query="q")

    first.progress.append({"percent": 1})

    assert second.progress == []


def test_job_json_roundtrip_keeps_profile_output():
    job = Job(job_id="job-1", slug="s", query="q")
    job.work_log.invocations.append(SkillInvocation(
        skill="classify",
        status="completed",
        output=DomainProfile(ticker="AAPL", company_name="Apple Inc.")
    ))

    loaded = Job.from_json(job.to_json())

    assert loaded.work_log.invocations[0].output["ticker"] == "AAPL"


def test_domain_profile_allows_extra_fields():
    profile = DomainProfile(company_name="Apple Inc.", source_hierarchy=["sec_filings"])
    assert profile.model_dump()["source_hierarchy"] == ["sec_filings"]


def test_progress_event_extra_fields():
    event = ProgressEvent(stage="complete", message="done", percent=100, stats={"findings_count": 2})
    dumped = event.model_dump(mode="json", exclude_none=True)

    assert dumped["stats"] == {"findings_count": 2}
    assert "detail" not in dumped


def test_attachment_ids_unique():
    assert Attachment(filename="a").id != Attachment(filename="a").id


def test_work_log_from_dict():
    log = WorkLog.model_validate({"plan": [{"skill": "research"}], "reasoning": ["r"]})
    assert log.plan[0].status == "pending"


def test_reasoning_level_fallback():
    assert get_reasoning_config("ultra").label == "X-Light"
    assert get_reasoning_config(None).removal_threshold == 0
    assert get_reasoning_config("heavy").verifier_model == "deepseek-reasoner"


def test_settings_from_env(monkeypatch):
    monkeypatch.setenv("MAX_CONCURRENT_JOBS", "3")
    monkeypatch.setenv("LONG_STEP_TIMEOUT_SECONDS", "90")

    settings = JobSettings.from_env()

    assert settings.max_concurrent_jobs == 3
    assert settings.step_timeout(long_running=True) == 90
    assert settings.step_timeout(long_running=False) == 120
