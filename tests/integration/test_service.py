"""
Service wiring and CLI helper tests
"""

import pytest
import json
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent.parent
sys.path.insert(0, str(project_root))

from agents.shared.file_logger import setup_file_logger
from agents.shared.llm_client import LLMClient
from agents.shared.schemas import ErrorInfo, Job
from orchestrator.main import ReportService, format_event, load_attachment, print_outcome
from orchestrator.settings import JobSettings
from orchestrator.storage import FileJobStateStore, InMemoryJobStateStore


def test_load_attachment(tmp_path):
    path = tmp_path / "notes.txt"
    path.write_text("Gross margin 46%", encoding="utf-8")

    attachment = load_attachment(str(path))

    assert attachment.filename == "notes.txt"
    assert attachment.mime_type == "text/plain"
    assert attachment.size_bytes == 16
    assert attachment.extracted_text == "Gross margin 46%"


def test_file_logger_writes_log_file(tmp_path):
    logger = setup_file_logger(
        "meridian-test",
        output_dir=str(tmp_path),
        console_output=False,
        package_loggers=()
    )
    logger.info("service started")
    for handler in logger.handlers:
        handler.flush()

    log_files = list(tmp_path.glob("meridian-test_*.log"))
    assert len(log_files) == 1
    assert "service started" in log_files[0].read_text(encoding="utf-8")

    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)


def test_format_progress_event():
    line = format_event({"event": "progress", "data": {"stage": "planned", "message": "Plan: 5 steps", "percent": 2}}, as_json=False)
    assert line == "[  2%] planned: Plan: 5 steps"


def test_format_json_event():
    message = {"event": "done", "data": {"success": True}}
    assert json.loads(format_event(message, as_json=True)) == message


def test_trace_events_hidden_in_text_mode():
    assert format_event({"event": "trace", "data": {}}, as_json=False) is None


def test_print_outcome_failure(capsys):
    job = Job(job_id="job-1", slug="s", query="q", status="failed", error=ErrorInfo(message="Pipeline failed: boom"))

    assert print_outcome(job, as_json=True) == 1

    output = json.loads(capsys.readouterr().out.strip())
    assert output["error"]["message"] == "Pipeline failed: boom"


def test_print_outcome_success(capsys):
    job = Job(job_id="job-1", slug="s", query="q", status="completed", current_report={"findings": []})

    assert print_outcome(job, as_json=True) == 0
    assert json.loads(capsys.readouterr().out.strip())["data"] == {"findings": []}


@pytest.mark.asyncio
class TestReportService:

    async def test_wiring_without_api_key(self, monkeypatch):
        for name in ("LLM_API_KEY", "DEEPSEEK_API_KEY", "OPENAI_API_KEY"):
            monkeypatch.delenv(name, raising=False)

        service = ReportService(settings=JobSettings(), llm=LLMClient())

        assert isinstance(service.store, InMemoryJobStateStore)
        assert service.planner.llm is None
        assert service.jobs.executor is service.executor

    async def test_file_store_when_state_dir_set(self, tmp_path):
        settings = JobSettings(state_dir=str(tmp_path / "jobs"))
        service = ReportService(settings=settings, llm=LLMClient(api_key="test-key"))

        assert isinstance(service.store, FileJobStateStore)
        await service.start()
        await service.shutdown()

    async def test_job_fails_cleanly_without_api_key(self, monkeypatch, fast_settings):
        for name in ("LLM_API_KEY", "DEEPSEEK_API_KEY", "OPENAI_API_KEY"):
            monkeypatch.delenv(name, raising=False)
        service = ReportService(settings=fast_settings, llm=LLMClient())

        job = service.jobs.submit("Analyze Apple")
        finished = await service.jobs.wait_for_job(job.job_id)

        assert finished.status == "failed"
        assert finished.error.stage == "classify"
        assert "not configured" in finished.error.message
