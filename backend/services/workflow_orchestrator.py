"""
Workflow Orchestrator — drives one generation run from request to script.

The pipeline is plain data: an ordered tuple of StageDescriptor entries. For
each enabled stage the orchestrator records progress, runs the stage with a
bounded retry budget for transient failures, and stores the returned context.
When every stage has run, the draft is persisted as version 1 of a new
script and the run is marked Completed.

Progress only ever moves forward. Failures at any point end the run in the
Failed stage with a readable reason; raw exception text never reaches the
progress record.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
import logging
import uuid
from typing import Any, Callable, Dict, Iterable, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from config import Settings
from errors import NotFound, ScriptForgeError, StageError, UpstreamUnavailable, ValidationError
from services import run_service, version_store
from services.authorization import is_owner
from services.progress_tracker import ProgressTracker
from services.text_generator import SUPPORTED_MODELS
from stages import enrich_stage, generate_stage, research_stage, validate_stage
from stages.enrich_stage import parse_tags
from state import (
    STAGE_PERCENT,
    GenerateFn,
    GenerationRequest,
    SearchFn,
    StageConfig,
    StageRunner,
    WorkflowContext,
    WorkflowStage,
    create_initial_context,
)

logger = logging.getLogger(__name__)

INTERRUPTED_MESSAGE = "The workflow was interrupted by a server restart."
INTERNAL_FAILURE_MESSAGE = "An internal error occurred while generating the script."
MAX_TITLE_LENGTH = 500

# Called as schedule(coroutine_function, session_id)
Scheduler = Callable[..., Any]


def _always(request: GenerationRequest) -> bool:
    return True


@dataclass(frozen=True)
class StageDescriptor:
    """One pipeline step: which stage it is, how far along it puts the run, what to run."""

    name: str
    stage: WorkflowStage
    percent: int
    message: str
    runner: StageRunner
    enabled: Callable[[GenerationRequest], bool] = _always


STAGE_PIPELINE: Tuple[StageDescriptor, ...] = (
    StageDescriptor(
        name="research",
        stage=WorkflowStage.RESEARCH,
        percent=STAGE_PERCENT[WorkflowStage.RESEARCH],
        message="Researching the topic...",
        runner=research_stage,
        enabled=lambda request: request.include_research,
    ),
    StageDescriptor(
        name="generate",
        stage=WorkflowStage.GENERATING,
        percent=STAGE_PERCENT[WorkflowStage.GENERATING],
        message="Writing the script...",
        runner=generate_stage,
    ),
    StageDescriptor(
        name="validate",
        stage=WorkflowStage.VALIDATING,
        percent=STAGE_PERCENT[WorkflowStage.VALIDATING],
        message="Checking length and structure...",
        runner=validate_stage,
    ),
    StageDescriptor(
        name="enrich",
        stage=WorkflowStage.ENRICHING,
        percent=STAGE_PERCENT[WorkflowStage.ENRICHING],
        message="Adding hooks, description and tags...",
        runner=enrich_stage,
        enabled=lambda request: request.include_enrichment,
    ),
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ActiveRun:
    """In-memory state of a run that is currently executing."""

    session_id: str
    owner_id: str
    request: GenerationRequest
    stage: WorkflowStage = WorkflowStage.INITIALIZING
    percent: int = 0
    message: str = "Workflow queued."
    context: Dict[str, Any] = field(default_factory=dict)
    script_id: Optional[str] = None
    error: Optional[str] = None
    started_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    def to_view(self) -> dict:
        return {
            "session_id": self.session_id,
            "owner_id": self.owner_id,
            "topic": self.request.topic,
            "stage": self.stage.value,
            "progress": self.percent,
            "message": self.message,
            "options": self.request.model_dump(mode="json", exclude={"topic"}, exclude_none=True),
            "script_id": self.script_id,
            "error": self.error,
            "context": dict(self.context),
            "created_at": self.started_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "completed_at": None,
        }


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, StageError) and exc.retryable


class WorkflowOrchestrator:
    """
    Runs generation workflows.

    Args:
        tracker:          Live progress store polled by clients.
        session_factory:  async_sessionmaker for the record store.
        generate:         AI text collaborator, generate(prompt, params) -> text.
        search:           Web research collaborator, search(query, ...) -> sources.
        settings:         Timeouts, retry budget and length targets.
        pipeline:         Ordered stage descriptors.
        supported_models: Model aliases accepted in requests.
    """

    def __init__(
        self,
        tracker: ProgressTracker,
        session_factory: Callable[[], Any],
        generate: GenerateFn,
        search: SearchFn,
        settings: Settings,
        pipeline: Iterable[StageDescriptor] = STAGE_PIPELINE,
        supported_models: Iterable[str] = SUPPORTED_MODELS,
    ) -> None:
        self._tracker = tracker
        self._session_factory = session_factory
        self._generate = generate
        self._search = search
        self._settings = settings
        self._pipeline = tuple(pipeline)
        self._supported_models = tuple(supported_models)
        self._active: Dict[str, ActiveRun] = {}
        self._tasks: Dict[str, asyncio.Task] = {}

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def validate_request(self, request: GenerationRequest) -> None:
        """Raise ValidationError for requests that can never succeed."""
        if not request.topic or not request.topic.strip():
            raise ValidationError("topic must not be blank.")
        if request.model is not None and request.model not in self._supported_models:
            raise ValidationError(
                f"Unsupported model '{request.model}'. "
                f"Supported models: {list(self._supported_models)}"
            )
        duration = request.target_duration_seconds
        if duration is not None and not 1 <= duration <= self._settings.MAX_TARGET_DURATION_SECONDS:
            raise ValidationError(
                "target_duration_seconds must be between 1 and "
                f"{self._settings.MAX_TARGET_DURATION_SECONDS}."
            )

    async def start(
        self,
        request: GenerationRequest,
        owner_id: str,
        schedule: Optional[Scheduler] = None,
    ) -> str:
        """
        Validate the request, register the run at 0% and schedule its execution.

        Returns the session id immediately; no stage has run yet.

        Raises:
            ValidationError:     The request is invalid.
            UpstreamUnavailable: The run could not be recorded.
        """
        self.validate_request(request)

        session_id = str(uuid.uuid4())
        run = ActiveRun(session_id=session_id, owner_id=owner_id, request=request)
        self._active[session_id] = run
        self._report_progress(run)

        try:
            async with self._session_factory() as session:
                await run_service.create_run(
                    session,
                    session_id=session_id,
                    owner_id=owner_id,
                    topic=request.topic.strip(),
                    options=request.model_dump(mode="json", exclude={"topic"}, exclude_none=True),
                )
        except SQLAlchemyError as exc:
            self._active.pop(session_id, None)
            self._tracker.delete(session_id)
            logger.error(f"Could not record workflow run {session_id}: {exc}")
            raise UpstreamUnavailable("Could not start the workflow. Please try again.") from exc

        (schedule or self._spawn)(self.execute, session_id)
        logger.info(f"Workflow {session_id} queued for {owner_id}")
        return session_id

    async def execute(self, session_id: str) -> None:
        """Run every enabled stage of a started workflow. Never raises for stage failures."""
        run = self._active.get(session_id)
        if run is None:
            logger.warning(f"Workflow {session_id} is not registered; nothing to execute")
            return

        timeout = self._settings.WORKFLOW_TIMEOUT_SECONDS
        try:
            # Only the stages are timed; once a draft exists it is always saved
            context = await asyncio.wait_for(self._run_stages(run), timeout=timeout)
            await self._complete(run, context)
        except asyncio.TimeoutError:
            await self._fail(run, f"The workflow exceeded its time limit of {timeout:g} seconds.")
        except StageError as exc:
            if exc.kind == "persistence":
                await self._fail(run, exc.message)
            else:
                await self._fail(run, f"{run.stage.value} failed: {exc.message}")
        except Exception:  # noqa: BLE001
            logger.exception(f"Workflow {session_id} crashed")
            await self._fail(run, INTERNAL_FAILURE_MESSAGE)
        finally:
            self._active.pop(session_id, None)

    async def wait(self, session_id: str) -> None:
        """Wait for a run scheduled by this orchestrator to finish."""
        task = self._tasks.get(session_id)
        if task is not None:
            await task

    async def resume(self, session_id: str, requester_id: str) -> dict:
        """
        Last recorded state of a run, live or finished. Never restarts stages.

        Raises:
            NotFound: Unknown session, or the requester does not own the run.
        """
        run = self._active.get(session_id)
        if run is not None:
            if not is_owner(run, requester_id):
                raise NotFound(f"Workflow '{session_id}' not found.")
            view = run.to_view()
            record = self._tracker.get_progress(session_id)
            if record is not None:
                view.update(
                    stage=record.stage,
                    message=record.message,
                    progress=max(record.percent, run.percent),
                    script_id=record.script_id or run.script_id,
                )
            return view

        async with self._session_factory() as session:
            async with version_store.store_errors(session, "load workflow run"):
                record = await run_service.get_run(session, session_id)
        if not is_owner(record, requester_id):
            raise NotFound(f"Workflow '{session_id}' not found.")
        return record.to_dict()

    async def mark_interrupted_runs(self) -> int:
        """Fail persisted runs left unfinished by a previous process. Returns the count."""
        count = 0
        async with self._session_factory() as session:
            for record in await run_service.list_unfinished_runs(session):
                if record.id in self._active:
                    continue
                await run_service.update_run(
                    session,
                    record.id,
                    {
                        "stage": WorkflowStage.FAILED.value,
                        "message": INTERRUPTED_MESSAGE,
                        "error": INTERRUPTED_MESSAGE,
                    },
                )
                count += 1
        if count:
            logger.warning(f"Marked {count} interrupted workflow run(s) as failed")
        return count

    @property
    def active_count(self) -> int:
        return len(self._active)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def _spawn(self, fn: Callable[[str], Any], session_id: str) -> None:
        task = asyncio.create_task(fn(session_id))
        self._tasks[session_id] = task
        task.add_done_callback(lambda _: self._tasks.pop(session_id, None))

    async def _run_stages(self, run: ActiveRun) -> WorkflowContext:
        await self._advance(
            run,
            WorkflowStage.ANALYZING,
            "Analyzing the request...",
            STAGE_PERCENT[WorkflowStage.ANALYZING],
        )
        context = create_initial_context(run.request, self._settings)
        run.context = dict(context)
        config = StageConfig(generate=self._generate, search=self._search, settings=self._settings)

        for descriptor in self._pipeline:
            if not descriptor.enabled(run.request):
                logger.debug(f"Workflow {run.session_id}: skipping {descriptor.name}")
                continue
            await self._advance(run, descriptor.stage, descriptor.message, descriptor.percent)
            context = await self._run_stage(run, descriptor, context, config)
            run.context = dict(context)
        return context

    async def _complete(self, run: ActiveRun, context: WorkflowContext) -> None:
        script_id = await self._persist(run, context)
        run.script_id = script_id
        await self._advance(
            run,
            WorkflowStage.COMPLETED,
            "Script generated successfully.",
            STAGE_PERCENT[WorkflowStage.COMPLETED],
            script_id=script_id,
        )
        logger.info(f"Workflow {run.session_id} completed with script {script_id}")

    async def _run_stage(
        self,
        run: ActiveRun,
        descriptor: StageDescriptor,
        context: WorkflowContext,
        config: StageConfig,
    ) -> WorkflowContext:
        """Run one stage, retrying retryable StageErrors with exponential backoff."""
        max_attempts = max(1, self._settings.STAGE_MAX_ATTEMPTS)

        async def attempt_once() -> WorkflowContext:
            try:
                return await descriptor.runner(context, config)
            except StageError:
                raise
            except Exception as exc:  # noqa: BLE001
                logger.exception(
                    f"Workflow {run.session_id}: unexpected error in {descriptor.name} stage"
                )
                raise StageError(
                    f"Unexpected error in the {descriptor.name} stage.",
                    kind="internal",
                ) from exc

        def before_sleep(retry_state: RetryCallState) -> None:
            exc = retry_state.outcome.exception()
            logger.warning(
                f"Workflow {run.session_id}: {descriptor.name} attempt "
                f"{retry_state.attempt_number}/{max_attempts} failed ({exc}); retrying"
            )
            run.message = (
                f"{descriptor.message} Retrying after a temporary error "
                f"(attempt {retry_state.attempt_number + 1} of {max_attempts})."
            )
            run.updated_at = _utcnow()
            self._report_progress(run)

        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(max_attempts),
            wait=wait_exponential(
                multiplier=self._settings.RETRY_BASE_DELAY_SECONDS,
                max=self._settings.RETRY_MAX_DELAY_SECONDS,
            ),
            retry=retry_if_exception(_is_retryable),
            before_sleep=before_sleep,
            reraise=True,
        ):
            with attempt:
                result = await attempt_once()
        return result

    async def _persist(self, run: ActiveRun, context: WorkflowContext) -> str:
        """Save the finished draft as a new script. Any failure fails the run."""
        title = (context.get("title") or context["topic"])[:MAX_TITLE_LENGTH]
        # Without the Enrich stage the metadata comes straight from the generated sections
        sections = context.get("sections") or {}
        hook = context.get("hook") or sections.get("hook") or context.get("hook_hint")
        description = context.get("description") or sections.get("description")
        tags = context.get("tags") or parse_tags(sections.get("tags"))
        try:
            async with self._session_factory() as session:
                script, _ = await version_store.create_script(
                    session,
                    owner_id=run.owner_id,
                    title=title,
                    content=context["draft"],
                    hook=hook,
                    description=description,
                    tags=tags,
                )
        except (ScriptForgeError, SQLAlchemyError) as exc:
            logger.error(f"Workflow {run.session_id}: could not save script: {exc}")
            raise StageError(
                "The generated script could not be saved.",
                kind="persistence",
            ) from exc
        return script.id

    # ------------------------------------------------------------------
    # Progress bookkeeping
    # ------------------------------------------------------------------

    async def _advance(
        self,
        run: ActiveRun,
        stage: WorkflowStage,
        message: str,
        percent: int,
        script_id: Optional[str] = None,
    ) -> None:
        run.stage = stage
        run.message = message
        run.percent = max(run.percent, percent)
        run.updated_at = _utcnow()
        logger.info(f"Workflow {run.session_id}: {stage.value} ({run.percent}%)")
        self._report_progress(run, script_id=script_id)
        updates: Dict[str, Any] = {}
        if script_id is not None:
            updates["script_id"] = script_id
        await self._record_run(run, updates)

    async def _fail(self, run: ActiveRun, reason: str) -> None:
        logger.error(f"Workflow {run.session_id} failed: {reason}")
        run.stage = WorkflowStage.FAILED
        run.message = reason
        run.error = reason
        run.updated_at = _utcnow()
        self._report_progress(run)
        await self._record_run(run, {"error": reason})

    def _report_progress(self, run: ActiveRun, script_id: Optional[str] = None) -> None:
        """Best-effort write to the progress tracker; failures are logged only."""
        try:
            self._tracker.set_progress(
                run.session_id,
                run.stage,
                run.message,
                run.percent,
                script_id=script_id,
            )
        except Exception:  # noqa: BLE001
            logger.exception(f"Progress write failed for workflow {run.session_id}")

    async def _record_run(self, run: ActiveRun, extra: Dict[str, Any]) -> None:
        """Best-effort update of the persisted run history."""
        updates = {
            "stage": run.stage.value,
            "progress_percent": run.percent,
            "message": run.message,
            **extra,
        }
        try:
            async with self._session_factory() as session:
                await run_service.update_run(session, run.session_id, updates)
        except SQLAlchemyError as exc:
            logger.warning(f"Could not update run history for {run.session_id}: {exc}")
