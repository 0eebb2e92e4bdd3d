"""
Workflow state: the data structures passed between pipeline stages.

WorkflowContext is the only thing a stage reads and writes. Stages must not
keep state of their own; everything flows through the context and the
orchestrator decides what happens next.
"""

from dataclasses import dataclass
from enum import Enum
import math
from typing import Any, Awaitable, Callable, Dict, List, Optional

from pydantic import BaseModel, Field
from typing_extensions import TypedDict

from config import Settings


class WorkflowStage(str, Enum):
    """Lifecycle stages of a workflow run, in their only legal order."""

    INITIALIZING = "Initializing"
    ANALYZING = "Analyzing"
    RESEARCH = "Research"
    GENERATING = "Generating"
    VALIDATING = "Validating"
    ENRICHING = "Enriching"
    COMPLETED = "Completed"
    FAILED = "Failed"


TERMINAL_STAGES = frozenset({WorkflowStage.COMPLETED, WorkflowStage.FAILED})

# Fixed progress floor recorded when a stage begins
STAGE_PERCENT = {
    WorkflowStage.INITIALIZING: 0,
    WorkflowStage.ANALYZING: 10,
    WorkflowStage.RESEARCH: 20,
    WorkflowStage.GENERATING: 50,
    WorkflowStage.VALIDATING: 75,
    WorkflowStage.ENRICHING: 90,
    WorkflowStage.COMPLETED: 100,
}


class ChannelContext(BaseModel):
    name: Optional[str] = Field(default=None, max_length=255)
    target_audience: Optional[str] = Field(default=None, max_length=2_000)
    tone: Optional[str] = Field(default=None, max_length=255)


class GenerationRequest(BaseModel):
    """A request to generate a new script."""

    topic: str = Field(
        ...,
        min_length=1,
        max_length=10_000,
        description="What the script should be about.",
        examples=["intro hook"],
    )
    title: Optional[str] = Field(default=None, max_length=500)
    channel_context: Optional[ChannelContext] = None
    target_duration_seconds: Optional[int] = Field(
        default=None,
        description="Desired spoken length; defaults to the configured duration.",
    )
    model: Optional[str] = Field(default=None, description="AI model alias.")
    hook: Optional[str] = Field(default=None, max_length=2_000)
    include_research: bool = Field(
        default=False,
        description="Run the Research stage before generation.",
    )
    include_enrichment: bool = Field(
        default=False,
        description="Run the Enrich stage (hook variants, tags, description).",
    )


class WorkflowContext(TypedDict, total=False):
    """
    Accumulated data of one workflow run.

    Fields:
        topic:              The requested topic.
        title:              Working title (request title or topic).
        channel_context:    Channel name / audience / tone, if supplied.
        model:              AI model alias used for every stage.
        target_words:       Length target derived from the requested duration.
        hook_hint:          Optional hook supplied by the user.
        research_findings:  Key facts produced by the Research stage.
        sources:            Web sources the findings were drawn from.
        draft:              The script text produced by Generate (and Validate).
        sections:           Raw [HOOK]/[DESCRIPTION]/[TAGS] sections from Generate.
        validation:         Annotations from the Validate stage.
        hook:               Final hook (Enrich).
        hook_variants:      Alternative hooks (Enrich).
        description:        Video description (Enrich).
        tags:               Tags (Enrich).
    """

    topic: str
    title: str
    channel_context: Dict[str, Any]
    model: str
    target_words: int
    hook_hint: Optional[str]
    research_findings: List[str]
    sources: List[Dict[str, str]]
    draft: str
    sections: Dict[str, str]
    validation: Dict[str, Any]
    hook: Optional[str]
    hook_variants: List[str]
    description: Optional[str]
    tags: List[str]


GenerateFn = Callable[..., Awaitable[str]]
SearchFn = Callable[..., Awaitable[List[Dict[str, str]]]]


@dataclass(frozen=True)
class StageConfig:
    """Collaborators and tuning shared by every stage of a run."""

    generate: GenerateFn
    search: SearchFn
    settings: Settings


StageRunner = Callable[[WorkflowContext, StageConfig], Awaitable[WorkflowContext]]


def target_word_count(duration_seconds: int, words_per_minute: int) -> int:
    """Words needed to fill the requested duration, rounded up to whole minutes."""
    minutes = max(1, math.ceil(duration_seconds / 60))
    return minutes * words_per_minute


def create_initial_context(request: GenerationRequest, settings: Settings) -> WorkflowContext:
    """
    Build the context the first stage receives.

    Args:
        request:  The validated generation request.
        settings: Active settings (model default, words per minute).

    Returns:
        A fresh WorkflowContext with every output field empty.
    """
    duration = request.target_duration_seconds or settings.DEFAULT_TARGET_DURATION_SECONDS
    topic = request.topic.strip()
    return WorkflowContext(
        topic=topic,
        title=(request.title or "").strip() or topic,
        channel_context=(
            request.channel_context.model_dump(exclude_none=True)
            if request.channel_context else {}
        ),
        model=request.model or settings.DEFAULT_MODEL,
        target_words=target_word_count(duration, settings.WORDS_PER_MINUTE),
        hook_hint=request.hook,
        research_findings=[],
        sources=[],
        draft="",
        sections={},
        validation={},
        hook=None,
        hook_variants=[],
        description=None,
        tags=[],
    )
