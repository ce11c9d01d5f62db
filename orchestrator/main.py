"""
Report Service Main Entry Point

Wires the report pipeline together:
1. Loads configuration (.env + environment variables)
2. Initializes the LLM client and the agents
3. Builds the skill registry, planner and plan executor
4. Starts the job manager (reaper, persistence)

The command-line entry point submits one job, streams its events to
stdout and prints the final report or a structured error.
"""

import argparse
import asyncio
import json
import logging
import mimetypes
import os
import signal
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from dotenv import load_dotenv

from agents.shared.errors import PipelineError, to_error_info
from agents.shared.file_logger import setup_file_logger
from agents.shared.llm_client import LLMClient
from agents.shared.reasoning_levels import DEFAULT_REASONING_LEVEL, REASONING_LEVELS
from agents.shared.schemas import Attachment, Job
from orchestrator.job_manager import JobManager
from orchestrator.plan_executor import PlanExecutor
from orchestrator.planner import PlanGenerator
from orchestrator.registry import Collaborators
from orchestrator.settings import JobSettings
from orchestrator.skills import build_default_registry
from orchestrator.storage import FileJobStateStore, InMemoryJobStateStore, JobStateStore

logger = logging.getLogger(__name__)


class ReportService:
    """Main report service"""

    def __init__(
        self,
        settings: Optional[JobSettings] = None,
        llm: Optional[LLMClient] = None,
        store: Optional[JobStateStore] = None
    ):
        """
        Initialize service components.

        Args:
            settings: Job settings (from the environment if omitted)
            llm: LLM client (from the environment if omitted)
            store: Job state store (file store when JOB_STATE_DIR is set, else in-memory)
        """
        self.settings = settings or JobSettings.from_env()
        self.llm = llm or LLMClient()

        if store is None:
            if self.settings.state_dir:
                store = FileJobStateStore(self.settings.state_dir)
            else:
                store = InMemoryJobStateStore()
        self.store = store

        self.registry = build_default_registry()
        self.collaborators = Collaborators.from_llm(self.llm)
        self.planner = PlanGenerator(self.llm if self.llm.configured else None, self.registry)
        self.executor = PlanExecutor(
            planner=self.planner,
            registry=self.registry,
            collaborators=self.collaborators,
            settings=self.settings
        )
        self.jobs = JobManager(executor=self.executor, store=self.store, settings=self.settings)
        self.shutdown_event = asyncio.Event()

    async def start(self) -> None:
        """Start the service"""
        logger.info("Starting...")
        print("[SERVICE] Starting...", file=sys.stderr)

        await self.jobs.init()

        logger.info(f"Skills available: {', '.join(s['name'] for s in self.registry.list_skills())}")
        logger.info("Report service is READY")
        print("[SERVICE] Report service is READY", file=sys.stderr)

    async def shutdown(self) -> None:
        """Gracefully shutdown the service"""
        logger.info("Shutting down...")
        print("\n[SERVICE] Shutting down...", file=sys.stderr)

        await self.jobs.shutdown()

        logger.info("Shutdown complete")
        print("[SERVICE] Shutdown complete", file=sys.stderr)

    def signal_handler(self, sig, frame=None) -> None:
        """Handle shutdown signals"""
        logger.info(f"Received signal {sig}")
        self.shutdown_event.set()

    def install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.signal_handler, sig)
            except NotImplementedError:
                # Windows event loops
                signal.signal(sig, self.signal_handler)


def load_attachment(path: str) -> Attachment:
    """
    Read a local text file as an attachment.

    Args:
        path: File path

    Returns:
        Attachment with extracted text
    """
    file_path = Path(path)
    data = file_path.read_bytes()
    mime_type, _ = mimetypes.guess_type(file_path.name)
    return Attachment(
        filename=file_path.name,
        mime_type=mime_type or "text/plain",
        size_bytes=len(data),
        extracted_text=data.decode("utf-8", errors="replace")
    )


def format_event(message: Dict[str, Any], as_json: bool) -> Optional[str]:
    """Render one streamed event for the terminal (None to skip it)"""
    if as_json:
        return json.dumps(message, default=str)

    event = message["event"]
    data = message["data"]

    if event == "progress":
        line = f"[{data.get('percent', 0):>3}%] {data.get('stage')}: {data.get('message')}"
        if data.get("detail"):
            line += f" ({data['detail']})"
        return line
    if event == "skill_start":
        return f"  -> {data['skill']}"
    if event == "skill_complete":
        return f"  <- {data['skill']} ({data['duration_ms']:.0f}ms, attempts={data['attempts']}): {data['output_summary']}"
    if event == "skill_error":
        return f"  !! {data['skill']} failed after {data['attempts']} attempts: {data['error']}"
    if event == "job_status":
        return f"[JOB] status={data['status']}"
    if event == "error":
        return f"[ERROR] {data.get('message')}"
    return None


async def run_query(
    query: str,
    reasoning_level: str = DEFAULT_REASONING_LEVEL,
    attachment_paths: Optional[List[str]] = None,
    as_json: bool = False
) -> int:
    """
    Run one report job to completion, streaming events to stdout.

    Returns:
        Process exit code (0 on success)
    """
    service = ReportService()
    await service.start()
    service.install_signal_handlers()

    exit_code = 1
    try:
        attachments = [load_attachment(path) for path in attachment_paths or []]

        try:
            job = service.jobs.submit(query, reasoning_level=reasoning_level, attachments=attachments)
        except PipelineError as e:
            print(json.dumps(to_error_info(e).model_dump(mode="json"), indent=2))
            return 1

        def listener(message: Dict[str, Any]) -> None:
            line = format_event(message, as_json)
            if line is not None:
                print(line, flush=True)

        unsubscribe = service.jobs.subscribe_to_job(job.job_id, listener)

        waiter = asyncio.create_task(service.jobs.wait_for_job(job.job_id))
        stopper = asyncio.create_task(service.shutdown_event.wait())
        done, _ = await asyncio.wait({waiter, stopper}, return_when=asyncio.FIRST_COMPLETED)

        if stopper in done:
            await service.jobs.cancel_job(job.job_id)
            await waiter
        else:
            stopper.cancel()

        unsubscribe()
        finished: Job = waiter.result()
        exit_code = print_outcome(finished, as_json)
    finally:
        await service.shutdown()

    return exit_code


def print_outcome(job: Optional[Job], as_json: bool) -> int:
    """Print the final report or error; returns the exit code"""
    if job is None:
        print("Job was evicted before completion")
        return 1

    if job.status == "completed" and job.current_report is not None:
        if as_json:
            print(json.dumps({"event": "result", "data": job.current_report}, default=str))
        else:
            print("\n" + "=" * 60)
            print(json.dumps(job.current_report, indent=2, default=str))
        return 0

    error = job.error.model_dump(mode="json") if job.error else {"message": "Job did not complete"}
    if as_json:
        print(json.dumps({"event": "result", "error": error}, default=str))
    else:
        print("\n" + "=" * 60)
        print(json.dumps(error, indent=2, default=str))
    return 1


def main() -> None:
    """Command-line entry point"""
    load_dotenv()

    parser = argparse.ArgumentParser(
        description="Generate a sourced research report with a multi-stage AI pipeline"
    )
    parser.add_argument(
        "query",
        help="Research question"
    )
    parser.add_argument(
        "--reasoning-level",
        default=DEFAULT_REASONING_LEVEL,
        choices=sorted(REASONING_LEVELS),
        help="Depth preset (default: %(default)s)"
    )
    parser.add_argument(
        "--attachment",
        action="append",
        default=[],
        metavar="PATH",
        help="Text file to analyze alongside the query (repeatable)"
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Stream events and the result as JSON lines"
    )
    parser.add_argument(
        "--log-level",
        default=os.getenv("LOG_LEVEL", "INFO"),
        help="Logging level (default: LOG_LEVEL or INFO)"
    )

    args = parser.parse_args()

    setup_file_logger("meridian", log_level=args.log_level)

    try:
        exit_code = asyncio.run(run_query(
            args.query,
            reasoning_level=args.reasoning_level,
            attachment_paths=args.attachment,
            as_json=args.json
        ))
    except KeyboardInterrupt:
        print("\n[SERVICE] Interrupted", file=sys.stderr)
        exit_code = 130
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
