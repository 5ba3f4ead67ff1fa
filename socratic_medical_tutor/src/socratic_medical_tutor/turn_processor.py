"""
Turn Processor

Conversation driver around the engine. For each student message:
load session -> (first message: decompose topic) -> completion-choice handling
-> engine -> advance -> dialogue reply -> append history -> save.

Turns of one session run strictly one after another under a per-session
asyncio.Lock, so the question budget is never read and written concurrently.
Different sessions are independent.
"""

import asyncio
import logging
import re
import uuid
from collections import OrderedDict
from contextlib import asynccontextmanager
from dataclasses import dataclass, replace
from typing import Dict, Optional

from .dialogue_service import DialogueContext, DialogueService
from .engine import TutorEngine
from .exceptions import InvalidSessionError
from .intent_classifier import IntentClassification
from .progression import CompletionChoice, ProgressionStateMachine, Transition
from .session_repository import SessionRepository
from .session_state import (
    AssessmentResult,
    Role,
    SessionState,
    SubtopicState,
    build_subtopics,
)

logger = logging.getLogger(__name__)

NEW_CONVERSATION = re.compile(r"^\s*(new conversation|start over|reset)\s*[.!]*\s*$", re.IGNORECASE)
TOPIC_PREFIX = re.compile(
    r"^\s*(?:(?:can you |please )?(?:teach|quiz|tutor) me (?:on |about )?|i (?:want|would like|'d like) to "
    r"(?:learn|study|review) (?:about )?|let'?s (?:learn|study|review|talk) (?:about )?|explain )",
    re.IGNORECASE,
)


@dataclass(frozen=True)
class TurnReply:
    session_id: str
    reply: str
    session: Optional[SessionState]
    classification: Optional[IntentClassification] = None
    result: Optional[AssessmentResult] = None
    transition: Transition = Transition.STAY
    completion_choice: Optional[CompletionChoice] = None
    new_conversation: bool = False


def extract_topic(message: str) -> str:
    topic = TOPIC_PREFIX.sub("", message.strip())
    return topic.strip().rstrip("?.!").strip() or message.strip()


def validate_session(session: SessionState, session_id: Optional[str] = None):
    """Reject sessions the engine must never see."""
    if not session.session_id:
        raise InvalidSessionError("session has no id")
    if session_id is not None and session.session_id != session_id:
        raise InvalidSessionError(f"loaded session {session.session_id} for id {session_id}")
    if not session.topic or not session.topic.strip():
        raise InvalidSessionError(f"session {session.session_id} has no topic")


class TurnProcessor:
    """Runs student turns against stored sessions."""

    MAX_CACHED_ENGINES = 256

    def __init__(
        self,
        repository: SessionRepository,
        dialogue: DialogueService,
        state_machine: Optional[ProgressionStateMachine] = None,
        max_cached_engines: Optional[int] = None,
    ):
        self.repository = repository
        self.dialogue = dialogue
        self.state_machine = state_machine or ProgressionStateMachine()
        self.max_cached_engines = max_cached_engines or self.MAX_CACHED_ENGINES
        # Least recently used first
        self._engines: "OrderedDict[str, TutorEngine]" = OrderedDict()
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}

    @asynccontextmanager
    async def _session_lock(self, session_id: str):
        """Hold the session's lock; the lock is dropped once nobody waits on it."""
        lock = self._locks.get(session_id)
        if lock is None:
            lock = self._locks[session_id] = asyncio.Lock()
        self._lock_users[session_id] = self._lock_users.get(session_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[session_id] -= 1
            if self._lock_users[session_id] == 0:
                del self._lock_users[session_id]
                del self._locks[session_id]

    def engine_for(self, session_id: str) -> TutorEngine:
        """
        Engine holding the session's requirement cache.

        At most max_cached_engines are kept; an evicted session gets a fresh
        engine, and its requirements are regenerated identically.
        """
        engine = self._engines.get(session_id)
        if engine is None:
            engine = self._engines[session_id] = TutorEngine(state_machine=self.state_machine)
            while len(self._engines) > self.max_cached_engines:
                self._engines.popitem(last=False)
        else:
            self._engines.move_to_end(session_id)
        return engine

    async def process_turn(self, session_id: Optional[str], message: str) -> TurnReply:
        """
        Process one student message.

        Args:
            session_id: Existing session id, or None to start a new session
            message: Student message (non-empty)

        Returns:
            TurnReply with the tutor's reply and the saved session

        Raises:
            ValueError: empty message
            InvalidSessionError: stored session is structurally invalid
            SessionStoreError: persistence failed
        """
        if not message or not message.strip():
            raise ValueError("message must not be empty")
        session_id = session_id or str(uuid.uuid4())

        async with self._session_lock(session_id):
            if NEW_CONVERSATION.match(message):
                await self._reset(session_id)
                return TurnReply(
                    session_id=session_id,
                    reply="Starting fresh. What topic would you like to explore?",
                    session=None,
                    new_conversation=True,
                )

            session = await self.repository.load(session_id)
            if session is None:
                return await self._start_session(session_id, message)
            validate_session(session, session_id)

            if session.completed:
                return TurnReply(
                    session_id=session_id,
                    reply="This session is complete. Start a new conversation to explore another topic.",
                    session=session,
                )
            if session.subtopic_state == SubtopicState.COMPLETION_CHOICE:
                return await self._handle_completion_choice(session, message)
            return await self._assess_turn(session, message)

    async def _start_session(self, session_id: str, message: str) -> TurnReply:
        topic = extract_topic(message)
        decomposition = await self.dialogue.decompose_topic(topic)
        session = SessionState(
            session_id=session_id,
            topic=topic,
            subtopics=build_subtopics(decomposition.subtopics),
        )
        session = session.with_message(Role.STUDENT, message.strip())
        session = session.with_message(Role.TUTOR, decomposition.content)
        await self.repository.save(session)
        logger.info(f"🆕 [TurnProcessor] Started session {session_id} on '{topic}' with {len(session.subtopics)} subtopics")
        return TurnReply(session_id=session_id, reply=decomposition.content, session=session)

    async def _assess_turn(self, session: SessionState, message: str) -> TurnReply:
        engine = self.engine_for(session.session_id)
        turn = engine.process(message, session)
        outcome = turn.outcome

        assessed = outcome.session.current_subtopic
        updated = outcome.session.with_message(Role.STUDENT, message.strip())
        updated = self.state_machine.advance(updated)

        result = outcome.session.last_assessment if turn.result is not None else None
        context = DialogueContext(
            session=updated,
            assessed_subtopic=assessed,
            classification=turn.classification,
            result=result,
            transition=outcome.transition,
            requirements=engine.requirements_for(updated) if updated.current_subtopic else None,
        )

        reply = await self.dialogue.respond(context, message.strip())
        updated = updated.with_message(Role.TUTOR, reply)
        await self.repository.save(updated)

        if turn.result is not None:
            logger.info(
                f"📝 [TurnProcessor] {session.session_id}: {turn.result.quality.value} "
                f"-> {outcome.transition.value}"
            )
        return TurnReply(
            session_id=session.session_id,
            reply=reply,
            session=updated,
            classification=turn.classification,
            result=result,
            transition=outcome.transition,
        )

    async def _handle_completion_choice(self, session: SessionState, message: str) -> TurnReply:
        choice = self.state_machine.resolve_completion_choice(session, message)
        if choice == CompletionChoice.GENERATE_NOTES:
            notes = await self.dialogue.generate_study_notes(session)
            updated = self.state_machine.complete(session.with_message(Role.STUDENT, message.strip()))
            updated = replace(updated.with_message(Role.TUTOR, notes), study_notes=notes)
            await self.repository.save(updated)
            logger.info(f"📚 [TurnProcessor] Generated study notes for {session.session_id}")
            return TurnReply(session_id=session.session_id, reply=notes, session=updated, completion_choice=choice)

        if choice == CompletionChoice.NEW_TOPIC:
            await self._reset(session.session_id)
            return TurnReply(
                session_id=session.session_id,
                reply="Sure. What topic would you like to explore next?",
                session=None,
                completion_choice=choice,
                new_conversation=True,
            )

        updated = session.with_message(Role.STUDENT, message.strip())
        reply = await self.dialogue.respond(DialogueContext(session=updated), message.strip())
        updated = updated.with_message(Role.TUTOR, reply)
        await self.repository.save(updated)
        return TurnReply(session_id=session.session_id, reply=reply, session=updated)

    async def generate_notes(self, session_id: str) -> Optional[str]:
        """
        Study notes for a stored session, or None when it does not exist.

        Notes are saved on the session. A completed session no longer changes,
        so its saved notes are returned as they are.
        """
        async with self._session_lock(session_id):
            session = await self.repository.load(session_id)
            if session is None:
                return None
            validate_session(session, session_id)
            if session.completed and session.study_notes:
                return session.study_notes

            notes = await self.dialogue.generate_study_notes(session)
            await self.repository.save(replace(session, study_notes=notes))
            logger.info(f"📚 [TurnProcessor] Saved study notes for {session_id}")
            return notes

    async def delete_session(self, session_id: str) -> bool:
        async with self._session_lock(session_id):
            return await self._reset(session_id)

    async def _reset(self, session_id: str) -> bool:
        self._engines.pop(session_id, None)
        deleted = await self.repository.delete(session_id)
        if deleted:
            logger.info(f"🗑️ [TurnProcessor] Cleared session {session_id}")
        return deleted
