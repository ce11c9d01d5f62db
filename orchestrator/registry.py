"""
Skill Registry - closed set of skills the planner and executor can use

Every SkillName has exactly one registered Skill; the registry refuses
to build otherwise. Skills share one uniform contract:
    await skill.run(ctx, input) -> SkillResult
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Awaitable, Dict, Iterable, List, Optional, Union
import logging
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from agents.shared.base_agent import SendFn
from agents.shared.errors import ErrorKind, PipelineError
from agents.shared.reasoning_levels import ReasoningConfig
from agents.shared.schemas import AgentResult, Attachment, ConversationContext, DomainProfile
from orchestrator.retry import RetryPolicy

logger = logging.getLogger(__name__)


class SkillName(str, Enum):
    """Every skill the pipeline knows about"""
    CLASSIFY = "classify"
    RESEARCH = "research"
    ANALYZE_ATTACHMENT = "analyze_attachment"
    SYNTHESIZE = "synthesize"
    VERIFY = "verify"
    REFINE_SECTION = "refine_section"
    DRAFT_ANSWER = "draft_answer"


@dataclass
class SkillResult:
    """Output of one skill run"""
    output: Any
    trace: Optional[Dict[str, Any]] = None


@dataclass
class PipelineState:
    """Mutable state accumulated across the skills of one job"""
    query: str
    domain_profile: Optional[DomainProfile] = None
    evidence: List[Dict[str, Any]] = field(default_factory=list)
    draft: Optional[Dict[str, Any]] = None
    report: Optional[Dict[str, Any]] = None
    attachments: List[Attachment] = field(default_factory=list)
    attachment_insights: List[str] = field(default_factory=list)


@dataclass
class Collaborators:
    """The LLM-backed agents skills delegate to"""
    classifier: Any
    researcher: Any
    drafter: Any
    attachment_analyst: Any
    synthesizer: Any
    verifier: Any
    editor: Any

    @classmethod
    def from_llm(cls, llm) -> "Collaborators":
        """Build the standard agent set on one LLM client"""
        from agents.attachment.agent import AttachmentAnalyst
        from agents.classifier.agent import DomainClassifier
        from agents.drafter.agent import DraftWriter
        from agents.editor.agent import SectionEditor
        from agents.researcher.agent import Researcher
        from agents.synthesizer.agent import Synthesizer
        from agents.verifier.agent import Verifier

        return cls(
            classifier=DomainClassifier(llm),
            researcher=Researcher(llm),
            drafter=DraftWriter(llm),
            attachment_analyst=AttachmentAnalyst(llm),
            synthesizer=Synthesizer(llm),
            verifier=Verifier(llm),
            editor=SectionEditor(llm),
        )


class SkillContext:
    """
    What a skill sees while running: the event handle, reasoning config,
    shared pipeline state, collaborators and the retry policy.

    Each plan step gets its own bound context (see bind) so attempts are
    counted per step while the state stays shared.
    """

    def __init__(
        self,
        send: SendFn,
        config: ReasoningConfig,
        state: PipelineState,
        collaborators: Collaborators,
        retry_policy: Optional[RetryPolicy] = None,
        conversation_context: Optional[ConversationContext] = None
    ):
        self.send = send
        self.config = config
        self.state = state
        self.collaborators = collaborators
        self.retry_policy = retry_policy or RetryPolicy()
        self.conversation_context = conversation_context
        self.attempts = 0

    def bind(self) -> "SkillContext":
        """Context for one step: same state, fresh attempt counter"""
        return SkillContext(
            send=self.send,
            config=self.config,
            state=self.state,
            collaborators=self.collaborators,
            retry_policy=self.retry_policy,
            conversation_context=self.conversation_context
        )

    def _count_attempt(self, attempt: int) -> None:
        self.attempts += 1

    async def call_collaborator(
        self,
        fn: Callable[..., Awaitable[AgentResult]],
        *args,
        label: str = "collaborator",
        **kwargs
    ) -> AgentResult:
        """
        Call a collaborator under the retry policy.

        Args:
            fn: Collaborator coroutine function
            *args: Positional arguments, identical on every attempt
            label: Name used in retry log messages
            **kwargs: Keyword arguments, identical on every attempt

        Returns:
            The collaborator's AgentResult
        """
        return await self.retry_policy.run(
            lambda: fn(*args, **kwargs),
            on_attempt=self._count_attempt,
            label=label
        )


class Skill(ABC):
    """
    Base class for skills.

    Attributes:
        name: Registry key
        description: Shown to the planning LLM
        critical: A failure aborts the job (False: logged and skipped)
        long_running: Gets the long step timeout
        produces_report: Output is a report candidate
    """

    name: SkillName
    description: str = ""
    critical: bool = True
    long_running: bool = False
    produces_report: bool = False

    @abstractmethod
    async def run(self, ctx: SkillContext, input: Dict[str, Any]) -> SkillResult:
        pass

    def summarize(self, output: Any) -> str:
        """One-line summary of output for skill_complete events"""
        return "done" if output is not None else "no output"

    @staticmethod
    def require(condition: Any, message: str) -> None:
        """Fail fast when a prerequisite is missing from the pipeline state"""
        if not condition:
            raise PipelineError(message, kind=ErrorKind.PRECONDITION)


class SkillRegistry:
    """
    Registry of the closed skill set.

    Stores one Skill per SkillName and exposes descriptions for planning.
    """

    def __init__(self, skills: Iterable[Skill]):
        """
        Build the registry.

        Args:
            skills: One Skill per SkillName

        Raises:
            ValueError: If a skill is registered twice or any SkillName is missing
        """
        self._skills: Dict[SkillName, Skill] = {}
        for skill in skills:
            name = SkillName(skill.name)
            if name in self._skills:
                raise ValueError(f"Skill registered twice: {name.value}")
            self._skills[name] = skill

        missing = [name.value for name in SkillName if name not in self._skills]
        if missing:
            raise ValueError(f"Skills missing from registry: {', '.join(missing)}")

    def get(self, name: Union[str, SkillName]) -> Skill:
        """
        Get a skill by name.

        Args:
            name: Skill name

        Returns:
            Registered Skill

        Raises:
            PipelineError: If name is not a known skill
        """
        try:
            return self._skills[SkillName(name)]
        except ValueError:
            raise PipelineError(f"Unknown skill: {name}", kind=ErrorKind.INTERNAL) from None

    def is_known(self, name: Any) -> bool:
        return name in SkillName._value2member_map_

    def list_skills(self) -> List[Dict[str, str]]:
        """
        List all skills with descriptions, in declaration order.

        Returns:
            List of {"name", "description"} dicts
        """
        return [
            {"name": name.value, "description": self._skills[name].description}
            for name in SkillName
        ]

    def non_critical(self) -> List[str]:
        """Names of skills whose failure does not abort a job"""
        return [name.value for name in SkillName if not self._skills[name].critical]

    def describe(self) -> str:
        """Skill list formatted for a planning prompt"""
        return "\n".join(f"- {s['name']}: {s['description']}" for s in self.list_skills())
