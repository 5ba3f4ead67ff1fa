"""
Quick Quality Filter

Runs before the six assessment signals. Answers that are too short to carry
evidence, or that explicitly give up, are flagged as struggling right away.
"""

from dataclasses import dataclass
from typing import Optional

from .medical_patterns import GIVE_UP_PATTERNS
from .session_state import AnswerQuality


@dataclass(frozen=True)
class FilterVerdict:
    quality: AnswerQuality
    confidence: float
    struggling: bool
    reason: str


def normalise_answer(answer: str) -> str:
    return (answer or "").strip().lower().replace("’", "'").replace("‘", "'")


def is_give_up(answer: str) -> bool:
    text = normalise_answer(answer)
    return any(pattern.search(text) for pattern in GIVE_UP_PATTERNS)


class QuickQualityFilter:
    """Short-circuits assessment for answers with no substantive content."""

    MIN_ANSWER_WORDS = 3
    MIN_ANSWER_CHARS = 8
    SHORT_ANSWER_CONFIDENCE = 0.92
    GIVE_UP_CONFIDENCE = 0.95

    def check(self, answer: str) -> Optional[FilterVerdict]:
        """
        Return a struggling verdict, or None when the answer needs full scoring.

        Args:
            answer: Raw student answer

        Returns:
            FilterVerdict with quality "confused", or None
        """
        text = normalise_answer(answer)
        words = text.split()

        if len(words) < self.MIN_ANSWER_WORDS or len(text) < self.MIN_ANSWER_CHARS:
            return FilterVerdict(
                quality=AnswerQuality.CONFUSED,
                confidence=self.SHORT_ANSWER_CONFIDENCE,
                struggling=True,
                reason=f"answer too short ({len(words)} words, {len(text)} chars)",
            )

        for pattern in GIVE_UP_PATTERNS:
            if pattern.search(text):
                return FilterVerdict(
                    quality=AnswerQuality.CONFUSED,
                    confidence=self.GIVE_UP_CONFIDENCE,
                    struggling=True,
                    reason=f"give-up statement matched {pattern.pattern!r}",
                )
        return None
