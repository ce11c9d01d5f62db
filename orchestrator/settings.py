"""
Job and pipeline settings

Policy constants for admission control, bounded history, reaping,
step timeouts and collaborator retries. All are configurable through
environment variables (see JobSettings.from_env).
"""

import os
from typing import Optional

from pydantic import BaseModel, Field


class JobSettings(BaseModel):
    """Settings shared by JobManager, PlanExecutor and the retry policy"""

    max_concurrent_jobs: int = Field(10, ge=1)
    max_progress_events: int = Field(200, ge=1)
    max_trace_events: int = Field(50, ge=1)
    retained_head_events: int = Field(10, ge=0)  # oldest events kept verbatim when a buffer is trimmed

    max_job_runtime_seconds: float = 30 * 60
    job_ttl_seconds: float = 24 * 60 * 60
    reaper_interval_seconds: float = 60.0

    short_step_timeout_seconds: float = 2 * 60
    long_step_timeout_seconds: float = 5 * 60

    collaborator_max_retries: int = Field(2, ge=0)
    retry_base_delay_seconds: float = 1.0

    shutdown_drain_seconds: float = 10.0
    state_dir: Optional[str] = None

    def step_timeout(self, long_running: bool) -> float:
        """Timeout for one plan step"""
        if long_running:
            return self.long_step_timeout_seconds
        return self.short_step_timeout_seconds

    @classmethod
    def from_env(cls) -> "JobSettings":
        """
        Build settings from environment variables, falling back to defaults.

        Returns:
            JobSettings instance
        """
        env_map = {
            "max_concurrent_jobs": "MAX_CONCURRENT_JOBS",
            "max_progress_events": "MAX_PROGRESS_EVENTS",
            "max_trace_events": "MAX_TRACE_EVENTS",
            "retained_head_events": "RETAINED_HEAD_EVENTS",
            "max_job_runtime_seconds": "MAX_JOB_RUNTIME_SECONDS",
            "job_ttl_seconds": "JOB_TTL_SECONDS",
            "reaper_interval_seconds": "REAPER_INTERVAL_SECONDS",
            "short_step_timeout_seconds": "SHORT_STEP_TIMEOUT_SECONDS",
            "long_step_timeout_seconds": "LONG_STEP_TIMEOUT_SECONDS",
            "collaborator_max_retries": "COLLABORATOR_MAX_RETRIES",
            "retry_base_delay_seconds": "RETRY_BASE_DELAY_SECONDS",
            "shutdown_drain_seconds": "SHUTDOWN_DRAIN_SECONDS",
            "state_dir": "JOB_STATE_DIR",
        }
        values = {
            field_name: os.getenv(env_name)
            for field_name, env_name in env_map.items()
            if os.getenv(env_name)
        }
        return cls(**values)
