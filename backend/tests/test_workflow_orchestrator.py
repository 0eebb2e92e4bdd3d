"""
Tests for the workflow orchestrator.

The AI and search collaborators are fakes; the record store is an in-memory
SQLite database. Retry delays are zero so retries run instantly.
"""

import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import asyncio

import pytest
import pytest_asyncio
from unittest.mock import AsyncMock, patch
from sqlalchemy import func, select

from config import Settings
from database import build_engine, build_session_factory, create_tables
from errors import NotFound, StageError, UpstreamUnavailable, ValidationError
from models.script import Script
from models.script_version import ScriptVersion
from services import version_store
from services.progress_tracker import ProgressTracker
from services.workflow_orchestrator import (
    INTERRUPTED_MESSAGE,
    STAGE_PIPELINE,
    StageDescriptor,
    WorkflowOrchestrator,
)
from state import GenerationRequest, WorkflowStage


TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

SCRIPT_BODY = " ".join(["word"] * 150)
GENERATED = (
    "[HOOK]\nWhat if your intro could hook anyone?\n\n"
    f"[SCRIPT]\n{SCRIPT_BODY}\n\n"
    "[DESCRIPTION]\nHow to write a great intro.\n\n"
    "[TAGS]\n#intro #hooks #youtube"
)


class RecordingTracker(ProgressTracker):
    """ProgressTracker that remembers every write."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.history = []

    def set_progress(self, session_id, stage, message, percent, script_id=None):
        self.history.append((getattr(stage, "value", stage), percent, message))
        return super().set_progress(session_id, stage, message, percent, script_id=script_id)


class FakeAI:
    """Answers each kind of prompt by looking at its system prompt."""

    def __init__(self, script_failures=None):
        self.calls = []
        self.script_failures = list(script_failures or [])

    async def __call__(self, prompt, params=None):
        system = (params or {}).get("system", "")
        self.calls.append(system)
        if "[SCRIPT]" in system:
            if self.script_failures:
                raise self.script_failures.pop(0)
            return GENERATED
        if "research assistant" in system:
            return "- Hooks decide retention\n- Most viewers leave in 30 seconds"
        if "alternative hooks" in system:
            return "1. Hook one\n2. Hook two\n3. Hook three"
        return ""

    def count(self, marker):
        return sum(1 for system in self.calls if marker in system)


def make_settings(**overrides):
    values = {
        "RETRY_BASE_DELAY_SECONDS": 0,
        "RETRY_MAX_DELAY_SECONDS": 0,
        "STAGE_MAX_ATTEMPTS": 3,
        "WORKFLOW_TIMEOUT_SECONDS": 10,
    }
    values.update(overrides)
    return Settings(**values)


@pytest_asyncio.fixture
async def session_factory():
    engine = build_engine(TEST_DATABASE_URL)
    await create_tables(engine)
    yield build_session_factory(engine)
    await engine.dispose()


@pytest.fixture
def tracker():
    return RecordingTracker()


def make_orchestrator(session_factory, tracker, ai=None, search=None, **settings):
    return WorkflowOrchestrator(
        tracker=tracker,
        session_factory=session_factory,
        generate=ai or FakeAI(),
        search=search or AsyncMock(return_value=[]),
        settings=make_settings(**settings),
    )


async def run_to_end(orchestrator, request, owner="alice"):
    session_id = await orchestrator.start(request, owner)
    await orchestrator.wait(session_id)
    return session_id


async def count_rows(session_factory, model):
    async with session_factory() as session:
        result = await session.execute(select(func.count()).select_from(model))
        return result.scalar_one()


def short_request(**kwargs):
    values = {"topic": "intro hook", "target_duration_seconds": 60}
    values.update(kwargs)
    return GenerationRequest(**values)


class TestStartValidation:
    @pytest.mark.asyncio
    async def test_blank_topic_is_rejected(self, session_factory, tracker):
        orchestrator = make_orchestrator(session_factory, tracker)
        with pytest.raises(ValidationError):
            await orchestrator.start(GenerationRequest(topic="   "), "alice")

    @pytest.mark.asyncio
    async def test_unsupported_model_is_rejected(self, session_factory, tracker):
        orchestrator = make_orchestrator(session_factory, tracker)
        with pytest.raises(ValidationError):
            await orchestrator.start(short_request(model="gpt-99"), "alice")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("duration", [0, -5, 999_999])
    async def test_out_of_range_duration_is_rejected(self, session_factory, tracker, duration):
        orchestrator = make_orchestrator(session_factory, tracker)
        with pytest.raises(ValidationError):
            await orchestrator.start(short_request(target_duration_seconds=duration), "alice")

    @pytest.mark.asyncio
    async def test_rejected_request_registers_nothing(self, session_factory, tracker):
        orchestrator = make_orchestrator(session_factory, tracker)
        with pytest.raises(ValidationError):
            await orchestrator.start(GenerationRequest(topic="   "), "alice")
        assert len(tracker) == 0
        assert orchestrator.active_count == 0


class TestStart:
    @pytest.mark.asyncio
    async def test_returns_before_any_stage_runs(self, session_factory, tracker):
        ai = FakeAI()
        orchestrator = make_orchestrator(session_factory, tracker, ai=ai)
        scheduled = []

        session_id = await orchestrator.start(
            short_request(), "alice", schedule=lambda fn, sid: scheduled.append((fn, sid))
        )

        assert scheduled == [(orchestrator.execute, session_id)]
        assert ai.calls == []
        record = tracker.get_progress(session_id)
        assert record.stage == "Initializing"
        assert record.percent == 0

    @pytest.mark.asyncio
    async def test_session_ids_are_unique(self, session_factory, tracker):
        orchestrator = make_orchestrator(session_factory, tracker)
        noop = lambda fn, sid: None  # noqa: E731
        ids = {await orchestrator.start(short_request(), "alice", schedule=noop) for _ in range(5)}
        assert len(ids) == 5


class TestExecute:
    @pytest.mark.asyncio
    async def test_happy_path_creates_one_script_with_one_version(self, session_factory, tracker):
        orchestrator = make_orchestrator(session_factory, tracker)

        session_id = await run_to_end(orchestrator, short_request())

        record = tracker.get_progress(session_id)
        assert record.stage == "Completed"
        assert record.percent == 100
        assert record.script_id is not None
        assert await count_rows(session_factory, Script) == 1
        assert await count_rows(session_factory, ScriptVersion) == 1

        async with session_factory() as session:
            version = (await session.execute(select(ScriptVersion))).scalar_one()
        assert version.sequence_number == 1
        assert version.script_id == record.script_id
        assert version.content == SCRIPT_BODY

    @pytest.mark.asyncio
    async def test_progress_is_monotonic_and_skips_optional_stages(self, session_factory, tracker):
        orchestrator = make_orchestrator(session_factory, tracker)

        await run_to_end(orchestrator, short_request())

        stages = [stage for stage, _, _ in tracker.history]
        percents = [percent for _, percent, _ in tracker.history]
        assert stages == ["Initializing", "Analyzing", "Generating", "Validating", "Completed"]
        assert percents == [0, 10, 50, 75, 100]

    @pytest.mark.asyncio
    async def test_optional_stages_run_when_requested(self, session_factory, tracker):
        ai = FakeAI()
        search = AsyncMock(return_value=[
            {"title": "Hooks", "url": "https://example.com", "content": "Retention facts"},
        ])
        orchestrator = make_orchestrator(session_factory, tracker, ai=ai, search=search)

        session_id = await run_to_end(
            orchestrator,
            short_request(include_research=True, include_enrichment=True),
        )

        stages = [stage for stage, _, _ in tracker.history]
        assert stages == [
            "Initializing", "Analyzing", "Research", "Generating",
            "Validating", "Enriching", "Completed",
        ]
        search.assert_awaited_once()
        assert ai.count("research assistant") == 1
        assert ai.count("alternative hooks") == 1

        script_id = tracker.get_progress(session_id).script_id
        async with session_factory() as session:
            script = await session.get(Script, script_id)
        assert script.hook == "What if your intro could hook anyone?"
        assert script.description == "How to write a great intro."
        assert script.tags == ["intro", "hooks", "youtube"]

    @pytest.mark.asyncio
    async def test_research_is_skipped_by_default(self, session_factory, tracker):
        search = AsyncMock(return_value=[])
        orchestrator = make_orchestrator(session_factory, tracker, search=search)

        await run_to_end(orchestrator, short_request())

        search.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_transient_failures_are_retried(self, session_factory, tracker):
        ai = FakeAI(script_failures=[
            UpstreamUnavailable("provider down"),
            UpstreamUnavailable("provider down"),
        ])
        orchestrator = make_orchestrator(session_factory, tracker, ai=ai)

        session_id = await run_to_end(orchestrator, short_request())

        assert tracker.get_progress(session_id).stage == "Completed"
        assert ai.count("[SCRIPT]") == 3

        percents = [percent for _, percent, _ in tracker.history]
        assert percents == sorted(percents)
        retries = [h for h in tracker.history if "Retrying" in h[2]]
        assert len(retries) == 2
        assert all(stage == "Generating" and percent == 50 for stage, percent, _ in retries)

    @pytest.mark.asyncio
    async def test_retry_budget_is_bounded(self, session_factory, tracker):
        ai = FakeAI(script_failures=[UpstreamUnavailable("down")] * 5)
        orchestrator = make_orchestrator(session_factory, tracker, ai=ai)

        session_id = await run_to_end(orchestrator, short_request())

        record = tracker.get_progress(session_id)
        assert record.stage == "Failed"
        assert record.percent == 50
        assert ai.count("[SCRIPT]") == 3
        assert await count_rows(session_factory, Script) == 0

    @pytest.mark.asyncio
    async def test_non_retryable_failure_stops_immediately(self, session_factory, tracker):
        ai = FakeAI(script_failures=[StageError("Prompt rejected by provider.", kind="rejected")])
        orchestrator = make_orchestrator(session_factory, tracker, ai=ai)

        session_id = await run_to_end(orchestrator, short_request())

        record = tracker.get_progress(session_id)
        assert record.stage == "Failed"
        assert record.message == "Generating failed: Prompt rejected by provider."
        assert ai.count("[SCRIPT]") == 1
        assert ai.count("Expand") == 0

    @pytest.mark.asyncio
    async def test_unexpected_exception_is_reported_without_raw_text(self, session_factory, tracker):
        async def broken_stage(context, config):
            raise RuntimeError("secret connection string leaked")

        pipeline = (StageDescriptor(
            name="generate",
            stage=WorkflowStage.GENERATING,
            percent=50,
            message="Writing the script...",
            runner=broken_stage,
        ),)
        orchestrator = WorkflowOrchestrator(
            tracker=tracker,
            session_factory=session_factory,
            generate=FakeAI(),
            search=AsyncMock(return_value=[]),
            settings=make_settings(),
            pipeline=pipeline,
        )

        session_id = await run_to_end(orchestrator, short_request())

        record = tracker.get_progress(session_id)
        assert record.stage == "Failed"
        assert "secret" not in record.message
        assert "generate" in record.message

    @pytest.mark.asyncio
    async def test_timeout_fails_the_run(self, session_factory, tracker):
        async def slow_ai(prompt, params=None):
            await asyncio.sleep(5)
            return GENERATED

        orchestrator = make_orchestrator(
            session_factory, tracker, ai=slow_ai, WORKFLOW_TIMEOUT_SECONDS=0.05
        )

        session_id = await run_to_end(orchestrator, short_request())

        record = tracker.get_progress(session_id)
        assert record.stage == "Failed"
        assert "time limit" in record.message
        assert await count_rows(session_factory, Script) == 0

    @pytest.mark.asyncio
    async def test_slow_save_after_stages_is_not_timed_out(self, session_factory, tracker):
        real_create_script = version_store.create_script

        async def slow_create_script(*args, **kwargs):
            result = await real_create_script(*args, **kwargs)
            await asyncio.sleep(1.0)
            return result

        orchestrator = make_orchestrator(
            session_factory, tracker, WORKFLOW_TIMEOUT_SECONDS=0.5
        )

        with patch("services.version_store.create_script", new=slow_create_script):
            session_id = await run_to_end(orchestrator, short_request())

        record = tracker.get_progress(session_id)
        assert record.stage == "Completed"
        assert record.script_id is not None
        assert await count_rows(session_factory, Script) == 1

    @pytest.mark.asyncio
    async def test_generated_metadata_is_saved_without_enrichment(self, session_factory, tracker):
        orchestrator = make_orchestrator(session_factory, tracker)

        session_id = await run_to_end(orchestrator, short_request())

        script_id = tracker.get_progress(session_id).script_id
        async with session_factory() as session:
            script = await session.get(Script, script_id)
            version = (await session.execute(select(ScriptVersion))).scalar_one()
        assert script.hook == "What if your intro could hook anyone?"
        assert script.description == "How to write a great intro."
        assert script.tags == ["intro", "hooks", "youtube"]
        assert version.hook == script.hook
        assert version.tags == script.tags

    @pytest.mark.asyncio
    async def test_persist_failure_fails_the_run(self, session_factory, tracker):
        orchestrator = make_orchestrator(session_factory, tracker)

        with patch(
            "services.version_store.create_script",
            new=AsyncMock(side_effect=UpstreamUnavailable("store down")),
        ):
            session_id = await run_to_end(orchestrator, short_request())

        record = tracker.get_progress(session_id)
        assert record.stage == "Failed"
        assert record.message == "The generated script could not be saved."
        assert record.script_id is None

    @pytest.mark.asyncio
    async def test_tracker_failures_do_not_break_the_run(self, session_factory):
        class BrokenTracker(ProgressTracker):
            def set_progress(self, *args, **kwargs):
                raise RuntimeError("tracker offline")

        orchestrator = make_orchestrator(session_factory, BrokenTracker())

        session_id = await run_to_end(orchestrator, short_request())

        assert await count_rows(session_factory, Script) == 1
        view = await orchestrator.resume(session_id, "alice")
        assert view["stage"] == "Completed"

    @pytest.mark.asyncio
    async def test_execute_unknown_session_is_a_no_op(self, session_factory, tracker):
        orchestrator = make_orchestrator(session_factory, tracker)
        await orchestrator.execute("never-started")
        assert len(tracker) == 0


class TestResume:
    @pytest.mark.asyncio
    async def test_resume_finished_run_from_history(self, session_factory, tracker):
        orchestrator = make_orchestrator(session_factory, tracker)
        session_id = await run_to_end(orchestrator, short_request())

        view = await orchestrator.resume(session_id, "alice")

        assert view["session_id"] == session_id
        assert view["stage"] == "Completed"
        assert view["progress"] == 100
        assert view["script_id"] == tracker.get_progress(session_id).script_id
        assert view["completed_at"] is not None

    @pytest.mark.asyncio
    async def test_resume_live_run(self, session_factory, tracker):
        orchestrator = make_orchestrator(session_factory, tracker)
        session_id = await orchestrator.start(short_request(), "alice", schedule=lambda fn, sid: None)

        view = await orchestrator.resume(session_id, "alice")

        assert view["stage"] == "Initializing"
        assert view["progress"] == 0
        assert view["topic"] == "intro hook"

    @pytest.mark.asyncio
    async def test_resume_hidden_from_other_users(self, session_factory, tracker):
        orchestrator = make_orchestrator(session_factory, tracker)
        live = await orchestrator.start(short_request(), "alice", schedule=lambda fn, sid: None)
        finished = await run_to_end(orchestrator, short_request())

        with pytest.raises(NotFound):
            await orchestrator.resume(live, "mallory")
        with pytest.raises(NotFound):
            await orchestrator.resume(finished, "mallory")

    @pytest.mark.asyncio
    async def test_resume_unknown_session(self, session_factory, tracker):
        orchestrator = make_orchestrator(session_factory, tracker)
        with pytest.raises(NotFound):
            await orchestrator.resume("nope", "alice")


class TestInterruptedRuns:
    @pytest.mark.asyncio
    async def test_unfinished_runs_are_marked_failed(self, session_factory, tracker):
        before_restart = make_orchestrator(session_factory, tracker)
        session_id = await before_restart.start(short_request(), "alice", schedule=lambda fn, sid: None)
        finished = await run_to_end(before_restart, short_request())

        after_restart = make_orchestrator(session_factory, RecordingTracker())
        marked = await after_restart.mark_interrupted_runs()

        assert marked == 1
        view = await after_restart.resume(session_id, "alice")
        assert view["stage"] == "Failed"
        assert view["error"] == INTERRUPTED_MESSAGE
        assert (await after_restart.resume(finished, "alice"))["stage"] == "Completed"


class TestPipeline:
    def test_pipeline_order_and_percents(self):
        assert [d.stage for d in STAGE_PIPELINE] == [
            WorkflowStage.RESEARCH,
            WorkflowStage.GENERATING,
            WorkflowStage.VALIDATING,
            WorkflowStage.ENRICHING,
        ]
        assert [d.percent for d in STAGE_PIPELINE] == [20, 50, 75, 90]

    def test_optional_stage_flags(self):
        default = GenerationRequest(topic="x")
        full = GenerationRequest(topic="x", include_research=True, include_enrichment=True)
        assert [d.enabled(default) for d in STAGE_PIPELINE] == [False, True, True, False]
        assert all(d.enabled(full) for d in STAGE_PIPELINE)
