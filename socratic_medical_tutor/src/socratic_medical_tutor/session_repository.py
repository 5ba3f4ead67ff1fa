"""
Session Repository for State Persistence

Loads and saves SessionState values by session id. The engine never talks to
storage; the turn processor loads a session, runs the turn and saves the new
value.

- SupabaseSessionRepository: upsert into the `sessions` table
- InMemorySessionRepository: dict-backed, for development and tests
"""

import asyncio
import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from .exceptions import SessionStoreError
from .session_state import (
    AnswerQuality,
    AssessmentPhase,
    AssessmentResult,
    Message,
    NextAction,
    QuestionType,
    Role,
    SessionState,
    StatusDelta,
    Subtopic,
    SubtopicState,
    SubtopicStatus,
    TriagingStatus,
)

logger = logging.getLogger(__name__)


# ============================================================================
# Serialisation
# ============================================================================

def _message_to_dict(message: Message) -> Dict[str, Any]:
    return {
        "role": message.role.value,
        "content": message.content,
        "timestamp": message.timestamp.isoformat(),
    }


def _dict_to_message(data: Dict[str, Any]) -> Message:
    timestamp = datetime.fromisoformat(data["timestamp"]) if data.get("timestamp") else datetime.now()
    return Message(role=Role(data["role"]), content=data.get("content", ""), timestamp=timestamp)


def _delta_to_dict(delta: Optional[StatusDelta]) -> Optional[Dict[str, Any]]:
    if delta is None:
        return None
    return {
        "initial_assessment_done": delta.initial_assessment_done,
        "add_acknowledged_gaps": list(delta.add_acknowledged_gaps),
        "add_addressed_gaps": list(delta.add_addressed_gaps),
        "questions_used_increment": delta.questions_used_increment,
        "has_tested_application": delta.has_tested_application,
    }


def _dict_to_delta(data: Optional[Dict[str, Any]]) -> Optional[StatusDelta]:
    if data is None:
        return None
    return StatusDelta(
        initial_assessment_done=data.get("initial_assessment_done"),
        add_acknowledged_gaps=tuple(data.get("add_acknowledged_gaps") or ()),
        add_addressed_gaps=tuple(data.get("add_addressed_gaps") or ()),
        questions_used_increment=data.get("questions_used_increment", 0),
        has_tested_application=data.get("has_tested_application"),
    )


def _result_to_dict(result: Optional[AssessmentResult]) -> Optional[Dict[str, Any]]:
    if result is None:
        return None
    return {
        "quality": result.quality.value,
        "confidence": result.confidence,
        "phase": result.phase.value,
        "next_action": result.next_action.value,
        "struggling": result.struggling,
        "reasoning": result.reasoning,
        "weighted_score": result.weighted_score,
        "status_update": _delta_to_dict(result.status_update),
        "specific_gaps": list(result.specific_gaps),
        "signal_scores": {name: value for name, value in result.signal_scores},
    }


def _dict_to_result(data: Optional[Dict[str, Any]]) -> Optional[AssessmentResult]:
    if data is None:
        return None
    return AssessmentResult(
        quality=AnswerQuality(data["quality"]),
        confidence=data["confidence"],
        phase=AssessmentPhase(data["phase"]),
        next_action=NextAction(data["next_action"]),
        struggling=data.get("struggling", False),
        reasoning=data.get("reasoning", ""),
        weighted_score=data.get("weighted_score", 0.5),
        status_update=_dict_to_delta(data.get("status_update")),
        specific_gaps=tuple(data.get("specific_gaps") or ()),
        signal_scores=tuple((data.get("signal_scores") or {}).items()),
    )


def _subtopic_to_dict(subtopic: Subtopic) -> Dict[str, Any]:
    triaging = subtopic.triaging
    return {
        "id": subtopic.id,
        "title": subtopic.title,
        "status": subtopic.status.value,
        "messages": [_message_to_dict(m) for m in subtopic.messages],
        "questions_asked": subtopic.questions_asked,
        "correct_answers": subtopic.correct_answers,
        "explanation_delivered": subtopic.explanation_delivered,
        "checks_since_explanation": subtopic.checks_since_explanation,
        "completed": subtopic.completed,
        "triaging": {
            "initial_assessment_done": triaging.initial_assessment_done,
            "addressed_gaps": list(triaging.addressed_gaps),
            "acknowledged_gaps": list(triaging.acknowledged_gaps),
            "questions_used": triaging.questions_used,
            "has_tested_application": triaging.has_tested_application,
        },
    }


def _dict_to_subtopic(data: Dict[str, Any]) -> Subtopic:
    triaging = data.get("triaging") or {}
    return Subtopic(
        id=data["id"],
        title=data["title"],
        status=SubtopicStatus(data.get("status", SubtopicStatus.UNASSESSED.value)),
        messages=tuple(_dict_to_message(m) for m in data.get("messages") or ()),
        questions_asked=data.get("questions_asked", 0),
        correct_answers=data.get("correct_answers", 0),
        explanation_delivered=data.get("explanation_delivered", False),
        checks_since_explanation=data.get("checks_since_explanation", 0),
        completed=data.get("completed", False),
        triaging=TriagingStatus(
            initial_assessment_done=triaging.get("initial_assessment_done", False),
            addressed_gaps=tuple(triaging.get("addressed_gaps") or ()),
            acknowledged_gaps=tuple(triaging.get("acknowledged_gaps") or ()),
            questions_used=triaging.get("questions_used", 0),
            has_tested_application=triaging.get("has_tested_application", False),
        ),
    )


def session_to_dict(session: SessionState) -> Dict[str, Any]:
    """
    Convert SessionState to a JSON-compatible dictionary.

    Args:
        session: SessionState object

    Returns:
        Dictionary representation
    """
    return {
        "session_id": session.session_id,
        "topic": session.topic,
        "subtopics": [_subtopic_to_dict(s) for s in session.subtopics],
        "current_subtopic_index": session.current_subtopic_index,
        "messages": [_message_to_dict(m) for m in session.messages],
        "question_type": session.question_type.value,
        "subtopic_state": session.subtopic_state.value,
        "should_transition": session.should_transition,
        "completed": session.completed,
        "last_assessment": _result_to_dict(session.last_assessment),
        "study_notes": session.study_notes,
        "created_at": session.created_at.isoformat(),
        "last_updated": session.last_updated.isoformat(),
    }


def dict_to_session(data: Dict[str, Any]) -> SessionState:
    """
    Convert a stored dictionary back into a SessionState.

    Raises:
        ValueError, KeyError: when the data does not describe a valid session
    """
    created_at = datetime.fromisoformat(data["created_at"]) if data.get("created_at") else datetime.now()
    last_updated = datetime.fromisoformat(data["last_updated"]) if data.get("last_updated") else datetime.now()
    return SessionState(
        session_id=data["session_id"],
        topic=data["topic"],
        subtopics=tuple(_dict_to_subtopic(s) for s in data.get("subtopics") or ()),
        current_subtopic_index=data.get("current_subtopic_index", 0),
        messages=tuple(_dict_to_message(m) for m in data.get("messages") or ()),
        question_type=QuestionType(data.get("question_type", QuestionType.PARENT.value)),
        subtopic_state=SubtopicState(data.get("subtopic_state", SubtopicState.ASSESSING.value)),
        should_transition=data.get("should_transition", False),
        completed=data.get("completed", False),
        last_assessment=_dict_to_result(data.get("last_assessment")),
        study_notes=data.get("study_notes"),
        created_at=created_at,
        last_updated=last_updated,
    )


# ============================================================================
# Repositories
# ============================================================================

class SessionRepository:
    """Async load/save interface used by the turn processor."""

    async def load(self, session_id: str) -> Optional[SessionState]:
        raise NotImplementedError

    async def save(self, session: SessionState) -> None:
        raise NotImplementedError

    async def delete(self, session_id: str) -> bool:
        raise NotImplementedError

    async def list_recent(self, limit: int = 10) -> List[Dict[str, Any]]:
        raise NotImplementedError


class InMemorySessionRepository(SessionRepository):
    """Stores serialised sessions in a dict, so loads return fresh values."""

    def __init__(self):
        self._sessions: Dict[str, Dict[str, Any]] = {}

    async def load(self, session_id: str) -> Optional[SessionState]:
        data = self._sessions.get(session_id)
        return dict_to_session(data) if data is not None else None

    async def save(self, session: SessionState) -> None:
        self._sessions[session.session_id] = session_to_dict(session)

    async def delete(self, session_id: str) -> bool:
        return self._sessions.pop(session_id, None) is not None

    async def list_recent(self, limit: int = 10) -> List[Dict[str, Any]]:
        rows = [
            {
                "session_id": data["session_id"],
                "topic": data["topic"],
                "completed": data.get("completed", False),
                "updated_at": data.get("last_updated"),
            }
            for data in self._sessions.values()
        ]
        rows.sort(key=lambda row: row["updated_at"] or "", reverse=True)
        return rows[:limit]

    def __len__(self) -> int:
        return len(self._sessions)


class SupabaseSessionRepository(SessionRepository):
    """
    Session persistence in Supabase.

    One row per session: session_id (unique), topic, session_data (jsonb),
    completed, updated_at. Saves are upserts on session_id.
    """

    def __init__(self, supabase_client, table: str = "sessions"):
        self.supabase = supabase_client
        self.table = table

    async def load(self, session_id: str) -> Optional[SessionState]:
        try:
            result = await asyncio.to_thread(
                self.supabase.table(self.table).select('*').eq('session_id', session_id).execute
            )
        except Exception as e:
            logger.error(f"⚠️ [SessionRepository] Error loading session {session_id}: {e}")
            raise SessionStoreError(f"failed to load session: {e}", session_id) from e

        if not result.data:
            return None
        row = result.data[0]
        try:
            data = row["session_data"]
            if isinstance(data, str):
                data = json.loads(data)
            return dict_to_session(data)
        except (KeyError, TypeError, ValueError) as e:
            logger.error(f"⚠️ [SessionRepository] Stored session {session_id} is corrupt: {e}")
            raise SessionStoreError(f"stored session is invalid: {e}", session_id) from e

    async def save(self, session: SessionState) -> None:
        row = {
            "session_id": session.session_id,
            "topic": session.topic,
            "session_data": session_to_dict(session),
            "completed": session.completed,
            "updated_at": datetime.now().isoformat(),
        }
        try:
            await asyncio.to_thread(
                self.supabase.table(self.table).upsert(row, on_conflict='session_id').execute
            )
        except Exception as e:
            logger.error(f"⚠️ [SessionRepository] Error saving session {session.session_id}: {e}")
            raise SessionStoreError(f"failed to save session: {e}", session.session_id) from e
        logger.debug(f"💾 [SessionRepository] Saved session {session.session_id}")

    async def delete(self, session_id: str) -> bool:
        try:
            result = await asyncio.to_thread(
                self.supabase.table(self.table).delete().eq('session_id', session_id).execute
            )
        except Exception as e:
            logger.error(f"⚠️ [SessionRepository] Error deleting session {session_id}: {e}")
            raise SessionStoreError(f"failed to delete session: {e}", session_id) from e
        return bool(result.data)

    async def list_recent(self, limit: int = 10) -> List[Dict[str, Any]]:
        try:
            query = self.supabase.table(self.table) \
                .select('session_id, topic, completed, updated_at') \
                .order('updated_at', desc=True) \
                .limit(limit)
            result = await asyncio.to_thread(query.execute)
        except Exception as e:
            logger.error(f"⚠️ [SessionRepository] Error listing sessions: {e}")
            raise SessionStoreError(f"failed to list sessions: {e}") from e
        return result.data if result.data else []
