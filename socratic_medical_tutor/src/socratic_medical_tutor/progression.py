"""
Progression State Machine

Consumes an AssessmentResult (or None for a conversational turn) and returns
the next SessionState plus the session-level transition. Never mutates its
input.

Subtopic states: unassessed -> assessing -> (explaining <-> checking) -> understood | gap
Session states:  assessing -> completion_choice -> complete
"""

import logging
import re
from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional

from .score_combiner import (
    CHECKS_AFTER_EXPLANATION_TO_ADVANCE,
    CORRECT_ANSWERS_TO_ADVANCE,
    TurnCounters,
    decide_next_action,
    decide_phase,
    project_turn,
)
from .session_state import (
    AnswerQuality,
    AssessmentPhase,
    AssessmentResult,
    NextAction,
    QuestionType,
    SessionState,
    StatusDelta,
    SubtopicState,
    SubtopicStatus,
)
from .subtopic_requirements import SubtopicRequirements

logger = logging.getLogger(__name__)


class Transition(str, Enum):
    STAY = "stay"
    ESCALATE_REMEDIATION = "escalate_remediation"
    ADVANCE_SUBTOPIC = "advance_subtopic"
    COMPLETE_SESSION = "complete_session"


class CompletionChoice(str, Enum):
    GENERATE_NOTES = "generate_notes"
    NEW_TOPIC = "new_topic"


@dataclass(frozen=True)
class TurnOutcome:
    session: SessionState
    transition: Transition
    forced_gap: bool = False
    next_action: Optional[NextAction] = None


STATUS_FOR_QUALITY = {
    AnswerQuality.EXCELLENT: SubtopicStatus.UNDERSTOOD,
    AnswerQuality.GOOD: SubtopicStatus.UNDERSTOOD,
    AnswerQuality.PARTIAL: SubtopicStatus.SHAKY,
    AnswerQuality.INCORRECT: SubtopicStatus.GAP,
    AnswerQuality.CONFUSED: SubtopicStatus.GAP,
}

NOTES_REQUEST = re.compile(r"\b(notes?|summary|summari[sz]e|study guide|review sheet|generate)\b")
NEW_TOPIC_REQUEST = re.compile(
    r"\b(new topic|another topic|different topic|something else|start over|next topic|new conversation)\b"
)


def neutral_result() -> AssessmentResult:
    """Partial outcome used whenever scoring is unavailable."""
    return AssessmentResult(
        quality=AnswerQuality.PARTIAL,
        confidence=0.5,
        phase=AssessmentPhase.INITIAL_ASSESSMENT,
        next_action=NextAction.CONTINUE_PROBING,
        struggling=False,
        reasoning="scoring unavailable: neutral partial outcome",
        weighted_score=0.5,
    )


def terminal_status(quality: AnswerQuality, counters: TurnCounters) -> SubtopicStatus:
    """
    Status a subtopic closes with.

    Understood needs two correct answers, or a correct closing answer once the
    post-explanation checks are done. Anything else closes as a gap, including
    a correct answer that merely used up the question budget.
    """
    if counters.correct_answers >= CORRECT_ANSWERS_TO_ADVANCE:
        return SubtopicStatus.UNDERSTOOD
    checks_done = (
        counters.explanation_delivered
        and counters.checks_since_explanation >= CHECKS_AFTER_EXPLANATION_TO_ADVANCE
    )
    if checks_done and quality.is_correct:
        return SubtopicStatus.UNDERSTOOD
    return SubtopicStatus.GAP


class ProgressionStateMachine:
    """Owns per-subtopic and per-session status transitions."""

    def apply(
        self,
        session: SessionState,
        result: Optional[AssessmentResult],
        requirements: SubtopicRequirements,
    ) -> TurnOutcome:
        """
        Fold one assessed turn into the session.

        Args:
            session: Current session (unchanged)
            result: Assessment of the student's answer, None for a skipped turn
            requirements: Requirements of the active subtopic

        Returns:
            TurnOutcome with the new session and the transition taken
        """
        subtopic = session.current_subtopic
        if result is None or subtopic is None or subtopic.completed:
            return TurnOutcome(session=session, transition=Transition.STAY)

        quality = result.quality
        counters = project_turn(subtopic, quality)
        next_action = decide_next_action(quality, counters, requirements.max_questions, subtopic.status)
        phase = decide_phase(next_action, counters)

        # Exactly one question is consumed per assessed turn
        delta = replace(
            result.status_update or StatusDelta(),
            initial_assessment_done=True,
            questions_used_increment=1,
        )
        triaging = subtopic.triaging.apply(delta)

        updated = replace(
            subtopic,
            triaging=triaging,
            questions_asked=subtopic.questions_asked + 1,
            correct_answers=counters.correct_answers,
            checks_since_explanation=counters.checks_since_explanation,
            status=STATUS_FOR_QUALITY[quality],
        )

        forced_gap = False
        should_transition = False
        subtopic_state = session.subtopic_state
        question_type = QuestionType.CHILD

        if next_action in (NextAction.ADVANCE, NextAction.COMPLETE_SUBTOPIC):
            terminal = terminal_status(quality, counters)
            forced_gap = next_action == NextAction.COMPLETE_SUBTOPIC and terminal == SubtopicStatus.GAP
            updated = replace(updated, status=terminal, completed=True)
            should_transition = True
            question_type = QuestionType.PARENT
            transition = Transition.ADVANCE_SUBTOPIC
        elif next_action == NextAction.EXPLAIN_GAP:
            updated = replace(updated, explanation_delivered=True)
            subtopic_state = SubtopicState.EXPLAINING
            question_type = QuestionType.CHECKIN
            transition = Transition.ESCALATE_REMEDIATION
        else:
            subtopic_state = SubtopicState.CHECKING if updated.explanation_delivered else SubtopicState.ASSESSING
            transition = Transition.STAY

        if result.next_action != next_action or result.phase != phase:
            result = replace(result, next_action=next_action, phase=phase)

        new_session = replace(
            session.with_current_subtopic(updated),
            subtopic_state=subtopic_state,
            question_type=question_type,
            should_transition=should_transition or session.should_transition,
            last_assessment=result,
        )
        if should_transition and new_session.all_subtopics_terminal:
            transition = Transition.COMPLETE_SESSION

        logger.info(
            "Subtopic %r: %s -> %s (%s), questions %d/%d",
            subtopic.title, quality.value, updated.status.value, transition.value,
            triaging.questions_used, requirements.max_questions,
        )
        if forced_gap:
            logger.info("Question budget exhausted for %r, marked as gap", subtopic.title)

        return TurnOutcome(
            session=new_session,
            transition=transition,
            forced_gap=forced_gap,
            next_action=next_action,
        )

    def advance(self, session: SessionState) -> SessionState:
        """
        Consume should_transition and move to the next open subtopic.

        When every subtopic is terminal the session moves to completion_choice.
        """
        if not session.should_transition:
            return session
        session = replace(session, should_transition=False)

        if session.all_subtopics_terminal:
            logger.info("All subtopics finished for session %s", session.session_id)
            return replace(session, subtopic_state=SubtopicState.COMPLETION_CHOICE)

        count = len(session.subtopics)
        for offset in range(1, count + 1):
            index = (session.current_subtopic_index + offset) % count
            if not session.subtopics[index].is_terminal:
                return replace(
                    session,
                    current_subtopic_index=index,
                    subtopic_state=SubtopicState.ASSESSING,
                    question_type=QuestionType.PARENT,
                    last_assessment=None,
                )
        return session

    def resolve_completion_choice(self, session: SessionState, message: str) -> Optional[CompletionChoice]:
        if session.subtopic_state != SubtopicState.COMPLETION_CHOICE:
            return None
        text = (message or "").lower()
        if NEW_TOPIC_REQUEST.search(text):
            return CompletionChoice.NEW_TOPIC
        if NOTES_REQUEST.search(text):
            return CompletionChoice.GENERATE_NOTES
        return None

    def complete(self, session: SessionState) -> SessionState:
        return replace(session, subtopic_state=SubtopicState.COMPLETE, completed=True, should_transition=False)
