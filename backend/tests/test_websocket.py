"""
Tests for the workflow progress WebSocket.

The progress tracker is replaced with a local instance; no workflow runs.
"""

import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import pytest
from fastapi.testclient import TestClient

from api.dependencies import get_progress_tracker
from main import app
from services.progress_tracker import ProgressTracker
from state import WorkflowStage


@pytest.fixture
def tracker():
    tracker = ProgressTracker()
    app.dependency_overrides[get_progress_tracker] = lambda: tracker
    yield tracker
    app.dependency_overrides.clear()


client = TestClient(app)


class TestWorkflowWebSocket:
    def test_completed_run_sends_final_event(self, tracker):
        tracker.set_progress("s1", WorkflowStage.COMPLETED, "Done", 100, script_id="script-1")

        with client.websocket_connect("/ws/workflows/s1") as ws:
            event = ws.receive_json()

        assert event["event"] == "workflow_complete"
        assert event["script_id"] == "script-1"
        assert event["progress"] == 100

    def test_failed_run_sends_failure_event(self, tracker):
        tracker.set_progress("s1", WorkflowStage.FAILED, "Generating failed: boom", 50)

        with client.websocket_connect("/ws/workflows/s1") as ws:
            event = ws.receive_json()

        assert event["event"] == "workflow_failed"
        assert event["message"] == "Generating failed: boom"

    def test_streams_progress_until_terminal(self, tracker):
        tracker.set_progress("s1", WorkflowStage.GENERATING, "Writing the script...", 50)

        with client.websocket_connect("/ws/workflows/s1") as ws:
            first = ws.receive_json()
            tracker.set_progress("s1", WorkflowStage.COMPLETED, "Done", 100, script_id="script-1")
            final = ws.receive_json()

        assert first["event"] == "progress"
        assert first["stage"] == "Generating"
        assert first["progress"] == 50
        assert final["event"] == "workflow_complete"

    def test_unknown_session_starts_with_default_payload(self, tracker):
        with client.websocket_connect("/ws/workflows/unknown") as ws:
            first = ws.receive_json()
            tracker.set_progress("unknown", WorkflowStage.FAILED, "gone", 0)
            final = ws.receive_json()

        assert first["event"] == "progress"
        assert first["stage"] == "Initializing"
        assert final["event"] == "workflow_failed"
