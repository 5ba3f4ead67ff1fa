"""
FastAPI Backend for the Socratic Medical Tutor

Provides REST API endpoints for:
- Student turns (assessment, progression and tutor reply)
- Session inspection and deletion
- Study notes for a session
Sessions persist in Supabase when configured, otherwise in memory.
"""

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel
from typing import Optional, List, Dict, Any
import os
import sys
import time
import signal

# Setup enhanced logging with pretty formatting
from lib.logger import setup_logging, get_logger, level_from_name

setup_logging(level=level_from_name(os.getenv("TUTOR_LOG_LEVEL")), use_colors=True)

# Create main logger
logger = get_logger("backend.main")

# Add the socratic_medical_tutor package to Python path
backend_dir = os.path.dirname(os.path.abspath(__file__))
project_root = os.path.dirname(backend_dir)

package_src = os.path.join(project_root, 'socratic_medical_tutor', 'src')
if os.path.exists(package_src) and package_src not in sys.path:
    sys.path.insert(0, package_src)

from lib.supabase_client import get_supabase_client

from socratic_medical_tutor.config import TutorSettings
from socratic_medical_tutor.dialogue_service import DialogueService
from socratic_medical_tutor.exceptions import InvalidSessionError, SessionStoreError
from socratic_medical_tutor.session_repository import (
    InMemorySessionRepository,
    SupabaseSessionRepository,
)
from socratic_medical_tutor.session_state import SessionState
from socratic_medical_tutor.turn_processor import TurnProcessor, TurnReply

# Singleton so per-session locks and requirement caches survive between requests
_turn_processor: Optional[TurnProcessor] = None


def get_turn_processor() -> TurnProcessor:
    """Get or create the singleton TurnProcessor."""
    global _turn_processor
    if _turn_processor is None:
        settings = TutorSettings.from_env()
        supabase = get_supabase_client()
        if supabase is not None:
            repository = SupabaseSessionRepository(supabase, table=settings.sessions_table)
        else:
            logger.warning("Supabase not configured, sessions are kept in memory")
            repository = InMemorySessionRepository()
        _turn_processor = TurnProcessor(repository, DialogueService(settings=settings))
    return _turn_processor


# Initialize FastAPI app
app = FastAPI(
    title="Socratic Medical Tutor API",
    description="REST API for Socratic tutoring on medical topics",
    version="1.0.0"
)

# CORS middleware for the web frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://localhost:3001",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ==================== Pydantic Models ====================

class TurnRequest(BaseModel):
    message: str
    session_id: Optional[str] = None


class TurnResponse(BaseModel):
    content: str
    session_id: str
    metadata: Optional[Dict[str, Any]] = None


class SubtopicSummary(BaseModel):
    id: str
    title: str
    status: str
    questions_used: int
    correct_answers: int
    completed: bool


class SessionSummary(BaseModel):
    session_id: str
    topic: str
    completed: bool
    subtopic_state: str
    current_subtopic: Optional[str]
    subtopics: List[SubtopicSummary]
    message_count: int
    study_notes: Optional[str] = None


class NotesResponse(BaseModel):
    session_id: str
    notes: str


# ==================== Helpers ====================

def turn_metadata(turn: TurnReply) -> Dict[str, Any]:
    """Flatten a TurnReply into the response metadata."""
    metadata: Dict[str, Any] = {
        "transition": turn.transition.value,
        "new_conversation": turn.new_conversation,
    }
    if turn.session is not None:
        current = turn.session.current_subtopic
        metadata.update({
            "topic": turn.session.topic,
            "current_subtopic": current.title if current else None,
            "subtopic_state": turn.session.subtopic_state.value,
            "completed": turn.session.completed,
        })
    if turn.classification is not None:
        metadata["intent"] = turn.classification.type.value
        metadata["intent_confidence"] = turn.classification.confidence
        metadata["meta_kind"] = turn.classification.meta_kind.value
    if turn.result is not None:
        metadata["assessment"] = {
            "quality": turn.result.quality.value,
            "confidence": turn.result.confidence,
            "next_action": turn.result.next_action.value,
            "weighted_score": turn.result.weighted_score,
            "specific_gaps": list(turn.result.specific_gaps),
        }
    if turn.completion_choice is not None:
        metadata["completion_choice"] = turn.completion_choice.value
    return metadata


def summarise_session(session: SessionState) -> SessionSummary:
    current = session.current_subtopic
    return SessionSummary(
        session_id=session.session_id,
        topic=session.topic,
        completed=session.completed,
        subtopic_state=session.subtopic_state.value,
        current_subtopic=current.title if current else None,
        subtopics=[
            SubtopicSummary(
                id=subtopic.id,
                title=subtopic.title,
                status=subtopic.status.value,
                questions_used=subtopic.triaging.questions_used,
                correct_answers=subtopic.correct_answers,
                completed=subtopic.completed,
            )
            for subtopic in session.subtopics
        ],
        message_count=len(session.messages),
        study_notes=session.study_notes,
    )


# ==================== API Endpoints ====================

@app.get("/")
async def root():
    """Health check endpoint."""
    settings = TutorSettings.from_env()
    return {
        "status": "ok",
        "service": "Socratic Medical Tutor API",
        "version": "1.0.0",
        "llm_enabled": settings.llm_enabled,
        "supabase_connected": get_supabase_client() is not None,
    }


@app.post("/api/turn", response_model=TurnResponse)
async def process_turn(request: TurnRequest):
    """
    Run one student turn.
    Starts a new session when session_id is missing or unknown.
    """
    started = time.perf_counter()
    logger.request("POST", "/api/turn", {"session_id": request.session_id, "length": len(request.message)})
    processor = get_turn_processor()
    try:
        turn = await processor.process_turn(request.session_id, request.message)
    except (InvalidSessionError, ValueError) as e:
        raise HTTPException(status_code=400, detail=str(e))
    except SessionStoreError as e:
        logger.error("Session store failure", error=e, data={"session_id": e.session_id})
        raise HTTPException(status_code=503, detail="Session store unavailable")

    response = TurnResponse(content=turn.reply, session_id=turn.session_id, metadata=turn_metadata(turn))
    logger.response(200, "/api/turn", time.perf_counter() - started, {"transition": turn.transition.value})
    return response


@app.get("/api/sessions/recent")
async def get_recent_sessions(limit: int = 10):
    """Most recently updated sessions."""
    try:
        sessions = await get_turn_processor().repository.list_recent(limit)
    except SessionStoreError as e:
        logger.error("Error listing sessions", error=e)
        raise HTTPException(status_code=503, detail="Session store unavailable")
    return {"sessions": sessions}


@app.get("/api/sessions/{session_id}", response_model=SessionSummary)
async def get_session(session_id: str):
    """Progress summary for one session."""
    try:
        session = await get_turn_processor().repository.load(session_id)
    except SessionStoreError as e:
        logger.error("Error loading session", error=e, data={"session_id": session_id})
        raise HTTPException(status_code=503, detail="Session store unavailable")
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return summarise_session(session)


@app.delete("/api/sessions/{session_id}")
async def delete_session(session_id: str):
    """Delete a session."""
    try:
        deleted = await get_turn_processor().delete_session(session_id)
    except SessionStoreError as e:
        logger.error("Error deleting session", error=e, data={"session_id": session_id})
        raise HTTPException(status_code=503, detail="Session store unavailable")
    if not deleted:
        raise HTTPException(status_code=404, detail="Session not found")
    return {"status": "deleted", "session_id": session_id}


@app.post("/api/sessions/{session_id}/notes", response_model=NotesResponse)
async def generate_notes(session_id: str):
    """Study notes covering every subtopic of the session."""
    try:
        notes = await get_turn_processor().generate_notes(session_id)
    except InvalidSessionError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except SessionStoreError as e:
        logger.error("Error generating notes", error=e, data={"session_id": session_id})
        raise HTTPException(status_code=503, detail="Session store unavailable")
    if notes is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return NotesResponse(session_id=session_id, notes=notes)


@app.on_event("startup")
async def startup_event():
    """Log the effective configuration."""
    settings = TutorSettings.from_env()
    logger.section("SERVER STARTUP", {
        "model": settings.openai_model if settings.llm_enabled else "template replies (no OPENAI_API_KEY)",
        "session_store": "supabase" if settings.supabase_enabled else "in-memory",
        "log_level": settings.log_level,
    })


if __name__ == "__main__":
    import uvicorn

    def handle_exit(*args):
        """Handle graceful shutdown."""
        logger.section("SERVER SHUTDOWN", {"reason": "signal received"})
        sys.exit(0)

    signal.signal(signal.SIGINT, handle_exit)
    signal.signal(signal.SIGTERM, handle_exit)

    try:
        uvicorn.run(app, host="0.0.0.0", port=8000)
    except KeyboardInterrupt:
        logger.info("🛑 Server stopped.")
        sys.exit(0)
