"""
Intent Classifier

Separates answers to the last question from meta/conversational messages
("why are you asking me this?", "can I get a hint?"). Pure pattern matching,
no side effects.

Ties go to assessment_response: missing a conversational message costs
nothing, while wrongly skipping an answer stalls progression. Only a
conversational classification at or above SKIP_ASSESSMENT_THRESHOLD lets
the caller skip assessment.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Pattern, Tuple

from .medical_patterns import all_medical_terms, find_terms
from .quality_filter import is_give_up, normalise_answer
from .session_state import Role, SessionState

SKIP_ASSESSMENT_THRESHOLD = 0.85


class IntentType(str, Enum):
    ASSESSMENT_RESPONSE = "assessment_response"
    CONVERSATIONAL_QUESTION = "conversational_question"
    OTHER = "other"


class MetaKind(str, Enum):
    PROCESS_QUESTION = "process_question"
    HINT_REQUEST = "hint_request"
    CLARIFICATION = "clarification"
    DEFINITION = "definition"
    EXAMPLE_REQUEST = "example_request"
    COMPARISON = "comparison"
    INTERACTION_CONFUSION = "interaction_confusion"
    READINESS = "readiness"
    SMALL_TALK = "small_talk"
    TECHNICAL_ISSUE = "technical_issue"
    MEDICAL_ADVICE = "medical_advice"
    CHALLENGE = "challenge"
    NONE = "none"


@dataclass(frozen=True)
class IntentClassification:
    type: IntentType
    confidence: float
    should_return_to_flow: bool
    meta_kind: MetaKind = MetaKind.NONE
    extracted_query: Optional[str] = None
    interrupted_question: Optional[str] = None
    evidence: Tuple[str, ...] = ()

    @property
    def skips_assessment(self) -> bool:
        return (
            self.type != IntentType.ASSESSMENT_RESPONSE
            and self.confidence >= SKIP_ASSESSMENT_THRESHOLD
        )


def _compile(*patterns: str) -> List[Pattern]:
    return [re.compile(p) for p in patterns]


# Meta pattern groups with their base confidence
META_PATTERNS: Dict[MetaKind, Tuple[float, List[Pattern]]] = {
    MetaKind.PROCESS_QUESTION: (0.92, _compile(
        r"\bwhy (are|do|did|would) you (asking|ask)\b",
        r"\bwhy (this|that) question\b",
        r"\bwhat(?:'s| is) the point of (this|that|these)\b",
        r"\bwhy (does|do|is) (this|that|it) (matter|important|relevant)\b",
        r"\bwhere (is|are) (this|we) going\b",
        r"\bwhat are we (doing|covering)\b",
        r"\bhow (many|much) (more )?(questions|longer)\b",
        r"\bhow does this (session|work)\b",
    )),
    MetaKind.INTERACTION_CONFUSION: (0.9, _compile(
        r"\bwhat do you mean\b",
        r"\b(don'?t|do not) understand (the|your|this|that) question\b",
        r"\b(confused|lost) (about|by) (the|your|this) question\b",
        r"\bwhat (are|were) you asking\b",
        r"\b(can|could) you (rephrase|repeat|reword)\b",
    )),
    MetaKind.HINT_REQUEST: (0.9, _compile(
        r"\b(give|show) me a (hint|clue)\b",
        r"\b(can|could) i (have|get) a (hint|clue)\b",
        r"\bany (hints?|clues?)\b",
        r"\bhint,? please\b",
        r"\bpoint me in the right direction\b",
    )),
    MetaKind.CLARIFICATION: (0.88, _compile(
        r"\b(can|could) you (clarify|explain what you mean)\b",
        r"\bdo you mean\b",
        r"\bare you asking (about|whether|if)\b",
        r"\bwhich (one|part) (do you mean|are you asking)\b",
    )),
    MetaKind.DEFINITION: (0.88, _compile(
        r"^what (is|are) (a |an |the )?[\w\- ]{2,40}\?$",
        r"\bwhat does [\w\- ]{2,40} mean\b",
        r"\bwhat(?:'s| is) the definition of\b",
        r"^define [\w\- ]{2,40}\??$",
    )),
    MetaKind.EXAMPLE_REQUEST: (0.88, _compile(
        r"\b(can|could) you give (me )?an example\b",
        r"\bgive me an example\b",
        r"\bwhat(?:'s| is| would be) an example\b",
    )),
    MetaKind.COMPARISON: (0.88, _compile(
        r"\bwhat(?:'s| is) the difference between\b",
        r"\bhow (is|does) [\w\- ]{2,40} differ\b",
        r"\bhow (is|are) [\w\- ]{2,40} different\b",
    )),
    MetaKind.TECHNICAL_ISSUE: (0.9, _compile(
        r"\b(mic|microphone|audio|recording|page|app|button|screen)\b.*\b(not working|broken|doesn'?t work|isn'?t working|frozen)\b",
        r"\bcan you hear me\b",
        r"\b(it|the app|the page) (crashed|froze)\b",
    )),
    MetaKind.MEDICAL_ADVICE: (0.88, _compile(
        r"\bshould i (take|stop|start|see a doctor)\b",
        r"\bmy (doctor|mom|mother|dad|father|wife|husband|sister|brother|friend) (has|had|was diagnosed)\b",
        r"\bis it safe for me\b",
        r"\bi think i have\b",
    )),
    MetaKind.CHALLENGE: (0.85, _compile(
        r"\bare you sure\b",
        r"\bthat(?:'s| is) (not right|wrong|incorrect)\b",
        r"\byou(?:'re| are) wrong\b",
        r"\bi (don'?t|do not) agree\b",
    )),
    MetaKind.SMALL_TALK: (0.86, _compile(
        r"^(hi|hello|hey|good (morning|afternoon|evening))\b[\s!.]*$",
        r"^(thanks|thank you)\b",
        r"\bhow are you\b",
        r"\bwho (are|made) you\b",
        r"\bare you (an? )?(ai|bot|robot|human)\b",
        r"\bi'?m (so )?(tired|bored|hungry)\b",
    )),
}

READINESS_PROMPT = re.compile(
    r"\b(ready|shall we (begin|start|continue)|want to (start|begin|continue|move on)|let me know when)\b"
)
READINESS_REPLY = re.compile(
    r"^(yes|yeah|yep|sure|ok(ay)?|ready|i'?m ready|let'?s (go|start|begin|do (it|this))|go ahead)\b"
)

STOPWORDS = frozenset(
    "about above after again also because been before being between both could does doing during each "
    "from have having here into just more most other over same should some such than that their them "
    "then there these they this those through under until very what when where which while with would "
    "your you explain describe tell think know".split()
)

CONTENT_HIT_PENALTY = 0.08
DEFAULT_CONFIDENCE = 0.6
READINESS_CONFIDENCE = 0.9


def _content_words(text: str) -> List[str]:
    words = re.findall(r"[a-z][a-z\-]{3,}", text.lower())
    unique: List[str] = []
    for word in words:
        if word not in STOPWORDS and word not in unique:
            unique.append(word)
    return unique


_MARKDOWN = re.compile(r"[*_`#>]+")
_LIST_MARKER = re.compile(r"^\s*(?:[-*•]|\d+[.)])\s+", re.MULTILINE)
_SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+")
MIN_QUESTION_LENGTH = 15


def interrupted_question(session: SessionState) -> Optional[str]:
    """
    Last substantial question the tutor asked, for resuming after an aside.

    Looks at the most recent tutor message that contains a question mark.
    """
    for message in reversed(session.messages):
        if message.role != Role.TUTOR or "?" not in message.content:
            continue
        text = _LIST_MARKER.sub("", message.content)
        text = _MARKDOWN.sub("", text)
        sentences = [s.strip() for s in _SENTENCE_SPLIT.split(" ".join(text.split()))]
        questions = [s for s in sentences if s.endswith("?") and len(s) >= MIN_QUESTION_LENGTH]
        if questions:
            return questions[-1]
    return None


class IntentClassifier:
    """Classifies the latest student message against the session context."""

    def __init__(self):
        self._medical_terms = all_medical_terms()

    def classify(self, message: str, session: SessionState) -> IntentClassification:
        """
        Classify a student message.

        Args:
            message: Latest student message
            session: Session holding the tutor's last message

        Returns:
            IntentClassification
        """
        text = normalise_answer(message)
        last_tutor = session.last_tutor_message()
        if not text or last_tutor is None:
            return IntentClassification(
                type=IntentType.ASSESSMENT_RESPONSE,
                confidence=DEFAULT_CONFIDENCE,
                should_return_to_flow=False,
                evidence=("no question context",) if text else ("empty message",),
            )

        tutor_text = last_tutor.content.lower()
        if READINESS_PROMPT.search(tutor_text) and READINESS_REPLY.search(text) and len(text.split()) <= 6:
            return IntentClassification(
                type=IntentType.OTHER,
                confidence=READINESS_CONFIDENCE,
                should_return_to_flow=True,
                meta_kind=MetaKind.READINESS,
                extracted_query=message.strip(),
                evidence=("readiness confirmation",),
            )

        meta_kind, meta_confidence, meta_evidence = self._best_meta(text)

        vocabulary_hits = find_terms(text, self._medical_terms)
        question_words = set(_content_words(tutor_text))
        overlap = [w for w in _content_words(text) if w in question_words]
        content_hits = len(vocabulary_hits) + len(overlap)
        # A statement reads as an answer only when it carries some content
        if content_hits and "?" not in text:
            content_hits += 1
        content_confidence = min(0.95, 0.3 + 0.1 * content_hits)
        evidence = tuple(meta_evidence) + tuple(f"vocab:{t}" for t in vocabulary_hits) + tuple(
            f"overlap:{w}" for w in overlap
        )

        if meta_kind is None:
            return IntentClassification(
                type=IntentType.ASSESSMENT_RESPONSE,
                confidence=max(DEFAULT_CONFIDENCE, content_confidence),
                should_return_to_flow=False,
                evidence=evidence,
            )

        # "I don't know" is about the content, so the quality filter handles it
        if meta_kind != MetaKind.INTERACTION_CONFUSION and is_give_up(text):
            return IntentClassification(
                type=IntentType.ASSESSMENT_RESPONSE,
                confidence=max(DEFAULT_CONFIDENCE, content_confidence),
                should_return_to_flow=False,
                evidence=evidence + ("give-up statement",),
            )

        adjusted = max(0.0, meta_confidence - CONTENT_HIT_PENALTY * content_hits)
        if adjusted <= content_confidence:
            return IntentClassification(
                type=IntentType.ASSESSMENT_RESPONSE,
                confidence=content_confidence,
                should_return_to_flow=False,
                meta_kind=meta_kind,
                evidence=evidence,
            )

        return IntentClassification(
            type=IntentType.CONVERSATIONAL_QUESTION,
            confidence=round(adjusted, 4),
            should_return_to_flow=True,
            meta_kind=meta_kind,
            extracted_query=message.strip(),
            interrupted_question=interrupted_question(session),
            evidence=evidence,
        )

    @staticmethod
    def _best_meta(text: str) -> Tuple[Optional[MetaKind], float, List[str]]:
        best: Optional[MetaKind] = None
        best_confidence = 0.0
        evidence: List[str] = []
        for kind, (confidence, patterns) in META_PATTERNS.items():
            for pattern in patterns:
                if pattern.search(text):
                    evidence.append(f"{kind.value}:{pattern.pattern}")
                    if confidence > best_confidence:
                        best, best_confidence = kind, confidence
                    break
        return best, best_confidence, evidence
