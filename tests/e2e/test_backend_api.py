"""
End-to-End Tests for the FastAPI Backend

Exercises the REST endpoints with TestClient, an in-memory session store and
template replies:
POST /api/turn → GET /api/sessions/{id} → notes → DELETE
"""

import pytest
import sys
import os

# Add project root to path
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), "../.."))
sys.path.insert(0, os.path.join(project_root, "socratic_medical_tutor", "src"))
sys.path.insert(0, os.path.join(project_root, "backend"))

from fastapi.testclient import TestClient

import main as backend_main
from lib.supabase_client import reset_supabase_client

from socratic_medical_tutor.config import TutorSettings
from socratic_medical_tutor.dialogue_service import DialogueService
from socratic_medical_tutor.exceptions import SessionStoreError
from socratic_medical_tutor.session_repository import InMemorySessionRepository
from socratic_medical_tutor.turn_processor import TurnProcessor

STRONG_ANSWER = (
    "Preeclampsia occurs due to placental dysfunction causing endothelial dysfunction and vasospasm, "
    "leading to hypertension and proteinuria; managed with magnesium sulfate."
)


class FailingRepository(InMemorySessionRepository):
    """Repository whose store is down."""

    async def load(self, session_id):
        raise SessionStoreError("connection refused", session_id=session_id)


@pytest.fixture
def offline_env(monkeypatch):
    """No Supabase and no OpenAI key."""
    for name in ("SUPABASE_URL", "SUPABASE_SERVICE_KEY", "OPENAI_API_KEY"):
        monkeypatch.delenv(name, raising=False)
    reset_supabase_client()
    yield
    reset_supabase_client()


@pytest.fixture
def client(offline_env, monkeypatch):
    """TestClient backed by a fresh in-memory TurnProcessor."""
    processor = TurnProcessor(InMemorySessionRepository(), DialogueService(settings=TutorSettings()))
    monkeypatch.setattr(backend_main, "_turn_processor", processor)
    return TestClient(backend_main.app)


class TestBackendAPI:
    """REST endpoint behaviour."""

    def test_health(self, client):
        response = client.get("/")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert body["llm_enabled"] == False
        assert body["supabase_connected"] == False

    def test_conversation_over_http(self, client):
        """
        Test a short conversation.

        Expected:
        - First turn creates the session and returns its id
        - Assessed turn returns assessment metadata
        - Session summary reflects the progress
        """
        start = client.post("/api/turn", json={"message": "Teach me about preeclampsia"})
        assert start.status_code == 200
        session_id = start.json()["session_id"]
        assert start.json()["metadata"]["topic"] == "preeclampsia"
        assert start.json()["metadata"]["current_subtopic"] == "preeclampsia: definition and pathophysiology"

        answer = client.post("/api/turn", json={"message": STRONG_ANSWER, "session_id": session_id})
        assert answer.status_code == 200
        metadata = answer.json()["metadata"]
        assert metadata["intent"] == "assessment_response"
        assert metadata["assessment"]["quality"] == "excellent"
        assert metadata["transition"] == "stay"

        summary = client.get(f"/api/sessions/{session_id}")
        assert summary.status_code == 200
        body = summary.json()
        assert len(body["subtopics"]) == 3
        assert body["subtopics"][0]["questions_used"] == 1
        assert body["subtopics"][0]["status"] == "understood"
        assert body["message_count"] == 4

    def test_recent_sessions(self, client):
        client.post("/api/turn", json={"message": "Teach me about sepsis"})

        response = client.get("/api/sessions/recent")

        assert response.status_code == 200
        assert len(response.json()["sessions"]) == 1

    def test_notes(self, client):
        start = client.post("/api/turn", json={"message": "Teach me about asthma"})
        session_id = start.json()["session_id"]

        response = client.post(f"/api/sessions/{session_id}/notes")

        assert response.status_code == 200
        assert response.json()["notes"].startswith("# Study notes: asthma")

    def test_notes_missing_session(self, client):
        assert client.post("/api/sessions/missing/notes").status_code == 404

    def test_delete_session(self, client):
        start = client.post("/api/turn", json={"message": "Teach me about asthma"})
        session_id = start.json()["session_id"]

        assert client.delete(f"/api/sessions/{session_id}").status_code == 200
        assert client.get(f"/api/sessions/{session_id}").status_code == 404
        assert client.delete(f"/api/sessions/{session_id}").status_code == 404

    def test_empty_message_is_bad_request(self, client):
        response = client.post("/api/turn", json={"message": "   "})
        assert response.status_code == 400

    def test_store_failure_is_service_unavailable(self, offline_env, monkeypatch):
        processor = TurnProcessor(FailingRepository(), DialogueService(settings=TutorSettings()))
        monkeypatch.setattr(backend_main, "_turn_processor", processor)
        client = TestClient(backend_main.app)

        response = client.post("/api/turn", json={"message": "hello", "session_id": "s1"})
        assert response.status_code == 503
        assert client.get("/api/sessions/s1").status_code == 503
