"""
Multi-Signal Assessor

Six independent heuristic scorers over a free-text answer:
1. Vocabulary - weighted medical terminology, saturating
2. Reasoning - diversity of connective types
3. Concept-specific - category markers relevant to the subtopic's nature
4. Topic-specific - coverage of the subtopic's expected concepts
5. Clinical context - diagnostic / therapeutic / prognostic framing
6. Structure - length, clause count and coherence markers

Every scorer is a pure function (lower-cased text, requirements) -> SignalScore.
MultiSignalAssessor runs them all and turns any scorer exception into a
neutral, failed SignalScore so one broken signal never aborts an assessment.
"""

import logging
import math
import re
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, Dict, Iterable, Iterator, Tuple

from .medical_patterns import (
    CLINICAL_REASONING_PATTERNS,
    COHERENCE_MARKERS,
    CONCEPT_CATEGORY_PATTERNS,
    HEDGING_TERMS,
    REASONING_PATTERNS,
    VOCABULARY_TIER_WEIGHTS,
    find_terms,
    iter_vocabulary,
    term_pattern,
)
from .subtopic_requirements import SubtopicNature, SubtopicRequirements

logger = logging.getLogger(__name__)

NEUTRAL_SIGNAL_SCORE = 0.5
MIN_INFORMATIVE_WORDS = 6


class Signal(str, Enum):
    VOCABULARY = "vocabulary"
    REASONING = "reasoning"
    CONCEPT_SPECIFIC = "concept_specific"
    TOPIC_SPECIFIC = "topic_specific"
    CLINICAL_CONTEXT = "clinical_context"
    STRUCTURE = "structure"


SIGNAL_ORDER: Tuple[Signal, ...] = tuple(Signal)


@dataclass(frozen=True)
class SignalScore:
    signal: Signal
    score: float
    confidence: float
    evidence: Tuple[str, ...] = ()
    reasoning: str = ""
    failed: bool = False

    def __post_init__(self):
        if not 0.0 <= self.score <= 1.0:
            raise ValueError(f"{self.signal.value} score {self.score} outside [0, 1]")
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"{self.signal.value} confidence {self.confidence} outside [0, 1]")

    @classmethod
    def neutral(cls, signal: Signal, reason: str) -> "SignalScore":
        """Placeholder for a signal that could not be computed."""
        return cls(
            signal=signal,
            score=NEUTRAL_SIGNAL_SCORE,
            confidence=0.0,
            reasoning=f"signal unavailable: {reason}",
            failed=True,
        )


class SignalScores:
    """Immutable set of the six signal scores, indexed by Signal."""

    __slots__ = ("_scores",)

    def __init__(self, scores: Iterable[SignalScore]):
        by_signal: Dict[Signal, SignalScore] = {}
        for score in scores:
            if score.signal in by_signal:
                raise ValueError(f"duplicate score for {score.signal.value}")
            by_signal[score.signal] = score
        missing = [s.value for s in SIGNAL_ORDER if s not in by_signal]
        if missing:
            raise ValueError(f"missing scores for: {', '.join(missing)}")
        object.__setattr__(self, "_scores", tuple(by_signal[s] for s in SIGNAL_ORDER))

    def __setattr__(self, name, value):
        raise AttributeError("SignalScores is immutable")

    def __getitem__(self, signal: Signal) -> SignalScore:
        return self._scores[SIGNAL_ORDER.index(signal)]

    def __iter__(self) -> Iterator[SignalScore]:
        return iter(self._scores)

    def __len__(self) -> int:
        return len(self._scores)

    def __repr__(self) -> str:
        inner = ", ".join(f"{s.signal.value}={s.score:.2f}" for s in self._scores)
        return f"SignalScores({inner})"

    def vector(self) -> Tuple[float, ...]:
        return tuple(s.score for s in self._scores)

    def confidences(self) -> Tuple[float, ...]:
        return tuple(s.confidence for s in self._scores)

    def failed_signals(self) -> Tuple[Signal, ...]:
        return tuple(s.signal for s in self._scores if s.failed)

    def evidence(self) -> Dict[str, Tuple[str, ...]]:
        return {s.signal.value: s.evidence for s in self._scores}

    def with_score(self, score: SignalScore) -> "SignalScores":
        return SignalScores(score if s.signal == score.signal else s for s in self._scores)


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


# ============================================================================
# Scorers
# ============================================================================

VOCABULARY_SATURATION = 6.0


def score_vocabulary(text: str, requirements: SubtopicRequirements) -> SignalScore:
    """Distinct medical terms, weighted by tier, with diminishing returns."""
    matched: Dict[str, float] = {}
    for tier, _, term in iter_vocabulary():
        weight = VOCABULARY_TIER_WEIGHTS[tier]
        if weight > matched.get(term, 0.0) and term_pattern(term).search(text):
            matched[term] = weight

    points = sum(matched.values())
    score = 1.0 - math.exp(-points / VOCABULARY_SATURATION)
    return SignalScore(
        signal=Signal.VOCABULARY,
        score=_clamp(score),
        confidence=min(0.9, 0.5 + 0.1 * len(matched)),
        evidence=tuple(matched),
        reasoning=f"vocabulary: {len(matched)} terms, {points:.1f} weighted points",
    )


REASONING_DIVERSITY = (0.0, 0.5, 0.75, 0.9, 1.0)
REASONING_EXTRA_PHRASE_BONUS = 0.05
REASONING_MAX_BONUS = 0.15


def score_reasoning(text: str, requirements: SubtopicRequirements) -> SignalScore:
    """Rewards using several kinds of reasoning, not repeating one connective."""
    found = {kind: find_terms(text, phrases) for kind, phrases in REASONING_PATTERNS.items()}
    kinds = [kind for kind, phrases in found.items() if phrases]
    total = sum(len(phrases) for phrases in found.values())

    base = REASONING_DIVERSITY[min(len(kinds), len(REASONING_DIVERSITY) - 1)]
    bonus = min(REASONING_MAX_BONUS, REASONING_EXTRA_PHRASE_BONUS * max(0, total - len(kinds)))
    evidence = tuple(f"{kind}:{phrase}" for kind in kinds for phrase in found[kind])
    return SignalScore(
        signal=Signal.REASONING,
        score=_clamp(base + bonus),
        confidence=0.8 if kinds else 0.6,
        evidence=evidence,
        reasoning=f"reasoning: {len(kinds)} types ({', '.join(kinds) or 'none'}), {total} phrases",
    )


PRIMARY_CATEGORY = {
    SubtopicNature.MECHANISM: "pathophysiology",
    SubtopicNature.DIAGNOSIS: "diagnosis",
    SubtopicNature.MANAGEMENT: "treatment",
    SubtopicNature.RISK: "risk_factors",
}


def score_concept_specific(text: str, requirements: SubtopicRequirements) -> SignalScore:
    """
    Category markers weighted toward the subtopic's nature.

    Mechanism subtopics favour pathophysiology markers, management subtopics
    favour treatment markers, and so on. General subtopics count every category.
    """
    hits = {category: find_terms(text, terms) for category, terms in CONCEPT_CATEGORY_PATTERNS.items()}
    primary = PRIMARY_CATEGORY.get(requirements.subtopic_nature)

    if primary is None:
        total = sum(len(terms) for terms in hits.values())
        categories = sum(1 for terms in hits.values() if terms)
        score = 0.7 * (1.0 - math.exp(-total / 2.0)) + 0.3 * min(1.0, categories / 3.0)
        confidence = 0.6
        summary = f"concepts: {total} markers across {categories} categories"
    else:
        primary_hits = len(hits[primary])
        others = sum(1 for category, terms in hits.items() if category != primary and terms)
        score = 0.7 * (1.0 - math.exp(-primary_hits / 2.0)) + 0.3 * min(1.0, others / 2.0)
        confidence = 0.8
        summary = f"concepts: {primary_hits} {primary} markers, {others} other categories"

    evidence = tuple(f"{category}:{term}" for category, terms in hits.items() for term in terms)
    return SignalScore(
        signal=Signal.CONCEPT_SPECIFIC,
        score=_clamp(score),
        confidence=confidence,
        evidence=evidence,
        reasoning=summary,
    )


TOPIC_SPECIFIC_CONFIDENCE = 0.9


def score_topic_specific(text: str, requirements: SubtopicRequirements) -> SignalScore:
    """Coverage of the expected concepts. The only signal with subtopic ground truth."""
    if not requirements.expected_concepts:
        return SignalScore(
            signal=Signal.TOPIC_SPECIFIC,
            score=0.0,
            confidence=0.3,
            reasoning="topic: no expected concepts for this subtopic",
        )

    matched = find_terms(text, requirements.expected_concepts)
    m = len(matched)
    score = 0.6 * min(1.0, m / 4.0) + 0.4 * min(1.0, m / 8.0)
    return SignalScore(
        signal=Signal.TOPIC_SPECIFIC,
        score=_clamp(score),
        confidence=TOPIC_SPECIFIC_CONFIDENCE,
        evidence=tuple(matched),
        reasoning=f"topic: {m}/{len(requirements.expected_concepts)} expected concepts",
    )


def score_clinical_context(text: str, requirements: SubtopicRequirements) -> SignalScore:
    """Rewards framing a claim diagnostically, therapeutically or prognostically."""
    frames = []
    positives = []
    negatives = []
    for frame, patterns in CLINICAL_REASONING_PATTERNS.items():
        frame_hits = find_terms(text, patterns["positive"])
        if frame_hits:
            frames.append(frame)
            positives.extend(f"{frame}:{hit}" for hit in frame_hits)
        negatives.extend(f"{frame}:-{hit}" for hit in find_terms(text, patterns["negative"]))

    score = 0.0
    if positives:
        score = 0.5 + 0.2 * (len(positives) - 1) + 0.15 * (len(frames) - 1)
        if find_terms(text, HEDGING_TERMS):
            score += 0.05
    score -= 0.15 * len(negatives)

    return SignalScore(
        signal=Signal.CLINICAL_CONTEXT,
        score=_clamp(score),
        confidence=0.75 if positives else 0.5,
        evidence=tuple(positives + negatives),
        reasoning=(
            f"clinical: frames={','.join(frames) or 'none'}, "
            f"{len(positives)} positive, {len(negatives)} over-certain"
        ),
    )


CLAUSE_SPLIT = re.compile(r"[.!?;]+")


def score_structure(text: str, requirements: SubtopicRequirements) -> SignalScore:
    """Length sweet spot, multiple clauses and coherence markers."""
    stripped = text.strip()
    length = len(stripped)
    words = len(stripped.split())

    if 30 <= length <= 150:
        length_band = 1.0
    elif 15 <= length <= 200:
        length_band = 0.7
    else:
        length_band = 0.4

    clauses = [c for c in CLAUSE_SPLIT.split(stripped) if len(c.strip()) > 5]
    if len(clauses) >= 2:
        clause_band = 1.0
    elif len(clauses) == 1:
        clause_band = 0.7
    else:
        clause_band = 0.3

    markers = find_terms(stripped, COHERENCE_MARKERS)
    score = 0.4 * length_band + 0.3 * clause_band + 0.3 * min(1.0, len(markers) / 3.0)
    if words < MIN_INFORMATIVE_WORDS:
        score = min(score, 0.2)

    return SignalScore(
        signal=Signal.STRUCTURE,
        score=_clamp(score),
        confidence=0.7,
        evidence=tuple(markers),
        reasoning=f"structure: {length} chars, {words} words, {len(clauses)} clauses, {len(markers)} markers",
    )


SCORERS: Dict[Signal, Callable[[str, SubtopicRequirements], SignalScore]] = {
    Signal.VOCABULARY: score_vocabulary,
    Signal.REASONING: score_reasoning,
    Signal.CONCEPT_SPECIFIC: score_concept_specific,
    Signal.TOPIC_SPECIFIC: score_topic_specific,
    Signal.CLINICAL_CONTEXT: score_clinical_context,
    Signal.STRUCTURE: score_structure,
}


class MultiSignalAssessor:
    """Runs the six scorers over an answer."""

    def __init__(self, scorers: Dict[Signal, Callable[[str, SubtopicRequirements], SignalScore]] = None):
        self.scorers = dict(SCORERS)
        if scorers:
            self.scorers.update(scorers)

    def score(self, answer: str, requirements: SubtopicRequirements) -> SignalScores:
        """
        Score an answer on all six signals.

        Args:
            answer: Student answer (raw)
            requirements: Requirements of the active subtopic

        Returns:
            SignalScores; a scorer that raises yields a neutral failed score
        """
        text = (answer or "").lower().replace("’", "'")
        results = []
        for signal in SIGNAL_ORDER:
            try:
                result = self.scorers[signal](text, requirements)
                if result.signal != signal:
                    result = replace(result, signal=signal)
            except Exception as e:
                logger.warning("Signal %s failed, using neutral score: %s", signal.value, e)
                result = SignalScore.neutral(signal, str(e))
            results.append(result)
        return SignalScores(results)
