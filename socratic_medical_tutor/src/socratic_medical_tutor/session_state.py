"""
Session State Data Model

Immutable records for a tutoring session: the session itself, its subtopics,
the per-subtopic triaging status and the assessment result produced each
assessed turn. Every record is a frozen dataclass; updates go through
dataclasses.replace or the explicit helpers below and return new values.
"""

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Optional, Tuple


class Role(str, Enum):
    STUDENT = "student"
    TUTOR = "tutor"


class SubtopicStatus(str, Enum):
    """Mastery colour of a subtopic."""
    UNASSESSED = "unassessed"
    GAP = "gap"                # red
    SHAKY = "shaky"            # yellow
    UNDERSTOOD = "understood"  # green


class SubtopicState(str, Enum):
    """Lifecycle of the active subtopic, with the session-level states on top."""
    ASSESSING = "assessing"
    EXPLAINING = "explaining"
    CHECKING = "checking"
    COMPLETION_CHOICE = "completion_choice"
    COMPLETE = "complete"


class QuestionType(str, Enum):
    PARENT = "parent"
    CHILD = "child"
    CHECKIN = "checkin"


class AnswerQuality(str, Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    PARTIAL = "partial"
    INCORRECT = "incorrect"
    CONFUSED = "confused"

    @property
    def is_correct(self) -> bool:
        return self in (AnswerQuality.EXCELLENT, AnswerQuality.GOOD)


class AssessmentPhase(str, Enum):
    INITIAL_ASSESSMENT = "initial_assessment"
    TARGETED_REMEDIATION = "targeted_remediation"
    COMPLETE = "complete"


class NextAction(str, Enum):
    CONTINUE_PROBING = "continue_probing"
    EXPLAIN_GAP = "explain_gap"
    ADVANCE = "advance"
    COMPLETE_SUBTOPIC = "complete_subtopic"


@dataclass(frozen=True)
class Message:
    role: Role
    content: str
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class StatusDelta:
    """Changes proposed by an assessment, merged with TriagingStatus.apply()."""
    initial_assessment_done: Optional[bool] = None
    add_acknowledged_gaps: Tuple[str, ...] = ()
    add_addressed_gaps: Tuple[str, ...] = ()
    questions_used_increment: int = 0
    has_tested_application: Optional[bool] = None

    @property
    def is_empty(self) -> bool:
        return self == StatusDelta()


@dataclass(frozen=True)
class TriagingStatus:
    """How much evidence has been gathered for one subtopic."""
    initial_assessment_done: bool = False
    addressed_gaps: Tuple[str, ...] = ()
    acknowledged_gaps: Tuple[str, ...] = ()
    questions_used: int = 0
    has_tested_application: bool = False

    def apply(self, delta: StatusDelta) -> "TriagingStatus":
        """
        Return a new status with the delta merged in.

        Gap sets keep insertion order. A gap moved to addressed_gaps is
        dropped from acknowledged_gaps.
        """
        addressed = _merge(self.addressed_gaps, delta.add_addressed_gaps)
        acknowledged = tuple(
            gap for gap in _merge(self.acknowledged_gaps, delta.add_acknowledged_gaps)
            if gap not in addressed
        )
        return TriagingStatus(
            initial_assessment_done=(
                self.initial_assessment_done if delta.initial_assessment_done is None
                else delta.initial_assessment_done
            ),
            addressed_gaps=addressed,
            acknowledged_gaps=acknowledged,
            questions_used=self.questions_used + delta.questions_used_increment,
            has_tested_application=(
                self.has_tested_application if delta.has_tested_application is None
                else self.has_tested_application or delta.has_tested_application
            ),
        )


def _merge(existing: Tuple[str, ...], extra: Tuple[str, ...]) -> Tuple[str, ...]:
    merged = list(existing)
    for item in extra:
        if item not in merged:
            merged.append(item)
    return tuple(merged)


@dataclass(frozen=True)
class Subtopic:
    title: str
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    status: SubtopicStatus = SubtopicStatus.UNASSESSED
    messages: Tuple[Message, ...] = ()
    questions_asked: int = 0
    correct_answers: int = 0
    explanation_delivered: bool = False
    checks_since_explanation: int = 0
    completed: bool = False
    triaging: TriagingStatus = field(default_factory=TriagingStatus)

    @property
    def is_terminal(self) -> bool:
        return self.completed and self.status in (SubtopicStatus.UNDERSTOOD, SubtopicStatus.GAP)


@dataclass(frozen=True)
class AssessmentResult:
    """Outcome of one assessed turn. Consumed by the state machine, then discarded."""
    quality: AnswerQuality
    confidence: float
    phase: AssessmentPhase
    next_action: NextAction
    struggling: bool = False
    reasoning: str = ""
    weighted_score: float = 0.5
    status_update: Optional[StatusDelta] = None
    specific_gaps: Tuple[str, ...] = ()
    signal_scores: Tuple[Tuple[str, float], ...] = ()


@dataclass(frozen=True)
class SessionState:
    """One learning conversation."""
    session_id: str
    topic: str
    subtopics: Tuple[Subtopic, ...] = ()
    current_subtopic_index: int = 0
    messages: Tuple[Message, ...] = ()
    question_type: QuestionType = QuestionType.PARENT
    subtopic_state: SubtopicState = SubtopicState.ASSESSING
    should_transition: bool = False
    completed: bool = False
    last_assessment: Optional[AssessmentResult] = None
    study_notes: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.now)
    last_updated: datetime = field(default_factory=datetime.now)

    def __post_init__(self):
        if self.subtopics:
            if not 0 <= self.current_subtopic_index < len(self.subtopics):
                raise ValueError(
                    f"current_subtopic_index {self.current_subtopic_index} out of range "
                    f"for {len(self.subtopics)} subtopics"
                )
        elif self.current_subtopic_index != 0:
            raise ValueError("current_subtopic_index must be 0 before subtopics exist")

    @property
    def current_subtopic(self) -> Optional[Subtopic]:
        if not self.subtopics:
            return None
        return self.subtopics[self.current_subtopic_index]

    # Counters of the active subtopic
    @property
    def questions_asked(self) -> int:
        subtopic = self.current_subtopic
        return subtopic.questions_asked if subtopic else 0

    @property
    def correct_answers(self) -> int:
        subtopic = self.current_subtopic
        return subtopic.correct_answers if subtopic else 0

    @property
    def all_subtopics_terminal(self) -> bool:
        return bool(self.subtopics) and all(s.is_terminal for s in self.subtopics)

    def with_current_subtopic(self, subtopic: Subtopic) -> "SessionState":
        subtopics = list(self.subtopics)
        subtopics[self.current_subtopic_index] = subtopic
        return replace(self, subtopics=tuple(subtopics))

    def with_message(self, role: Role, content: str) -> "SessionState":
        """Append a message to the session history and the active subtopic's history."""
        message = Message(role=role, content=content)
        updated = replace(self, messages=self.messages + (message,), last_updated=datetime.now())
        subtopic = updated.current_subtopic
        if subtopic is not None:
            updated = updated.with_current_subtopic(
                replace(subtopic, messages=subtopic.messages + (message,))
            )
        return updated

    def last_tutor_message(self) -> Optional[Message]:
        for message in reversed(self.messages):
            if message.role == Role.TUTOR:
                return message
        return None


def new_session(topic: str, session_id: Optional[str] = None) -> SessionState:
    return SessionState(session_id=session_id or str(uuid.uuid4()), topic=topic.strip())


def build_subtopics(titles) -> Tuple[Subtopic, ...]:
    return tuple(Subtopic(title=title.strip()) for title in titles if title and title.strip())
