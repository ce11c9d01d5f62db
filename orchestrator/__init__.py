"""
Orchestrator - job coordination for Project Meridian

The orchestrator plans each report, runs the plan's skills against the
agents, and manages the background jobs that carry the runs.
"""

from .registry import SkillRegistry, SkillName
from .planner import PlanGenerator
from .plan_executor import PlanExecutor
from .job_manager import JobManager
from .broadcaster import EventBroadcaster

__all__ = [
    "SkillRegistry",
    "SkillName",
    "PlanGenerator",
    "PlanExecutor",
    "JobManager",
    "EventBroadcaster",
]
