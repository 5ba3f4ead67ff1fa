"""
Score Combiner

Turns the six signal scores into one AssessmentResult:
- picks a weight vector (expected concepts known or not)
- scales each weight by its signal's confidence and renormalises
- maps the weighted score to a quality label
- derives a confidence from the agreement between signals
- recommends the next action and the phase from the subtopic's counters
"""

import logging
import math
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

from .quality_filter import FilterVerdict
from .session_state import (
    AnswerQuality,
    AssessmentPhase,
    AssessmentResult,
    NextAction,
    StatusDelta,
    Subtopic,
    SubtopicStatus,
)
from .signal_scorers import NEUTRAL_SIGNAL_SCORE, SIGNAL_ORDER, Signal, SignalScores
from .subtopic_requirements import SubtopicRequirements

logger = logging.getLogger(__name__)

WEIGHT_SUM_TOLERANCE = 1e-9


class SignalWeights:
    """Fixed-size weight vector indexed by Signal. Always sums to 1.0."""

    __slots__ = ("_weights",)

    def __init__(self, weights: Iterable[float]):
        values = tuple(float(w) for w in weights)
        if len(values) != len(SIGNAL_ORDER):
            raise ValueError(f"expected {len(SIGNAL_ORDER)} weights, got {len(values)}")
        if any(w < 0 for w in values):
            raise ValueError("weights must be non-negative")
        if abs(sum(values) - 1.0) > WEIGHT_SUM_TOLERANCE:
            raise ValueError(f"weights must sum to 1.0, got {sum(values)}")
        object.__setattr__(self, "_weights", values)

    def __setattr__(self, name, value):
        raise AttributeError("SignalWeights is immutable")

    @classmethod
    def of(cls, **by_name: float) -> "SignalWeights":
        return cls(by_name[signal.value] for signal in SIGNAL_ORDER)

    @classmethod
    def normalised(cls, raw: Iterable[float]) -> "SignalWeights":
        values = tuple(raw)
        total = sum(values)
        if total <= 0:
            raise ValueError("cannot normalise an all-zero weight vector")
        return cls(v / total for v in values)

    def __getitem__(self, signal: Signal) -> float:
        return self._weights[SIGNAL_ORDER.index(signal)]

    def __iter__(self):
        return iter(self._weights)

    def __eq__(self, other):
        return isinstance(other, SignalWeights) and self._weights == other._weights

    def __hash__(self):
        return hash(self._weights)

    def __repr__(self) -> str:
        inner = ", ".join(f"{s.value}={w:.3f}" for s, w in zip(SIGNAL_ORDER, self._weights))
        return f"SignalWeights({inner})"

    def as_tuple(self) -> Tuple[float, ...]:
        return self._weights


BASE_WEIGHTS = SignalWeights.of(
    vocabulary=0.20,
    reasoning=0.20,
    concept_specific=0.20,
    topic_specific=0.10,
    clinical_context=0.20,
    structure=0.10,
)

# Concept coverage is the stronger accuracy signal once it is available
EXPECTED_CONCEPT_WEIGHTS = SignalWeights.of(
    vocabulary=0.15,
    reasoning=0.15,
    concept_specific=0.15,
    topic_specific=0.25,
    clinical_context=0.20,
    structure=0.10,
)


# ============================================================================
# Progression rules shared with the state machine
# ============================================================================

CORRECT_ANSWERS_TO_ADVANCE = 2
CHECKS_AFTER_EXPLANATION_TO_ADVANCE = 2


@dataclass(frozen=True)
class TurnCounters:
    """Subtopic counters as they will be after the current answer is counted."""
    questions_used: int
    correct_answers: int
    explanation_delivered: bool
    checks_since_explanation: int


def project_turn(subtopic: Subtopic, quality: AnswerQuality) -> TurnCounters:
    return TurnCounters(
        questions_used=subtopic.triaging.questions_used + 1,
        correct_answers=subtopic.correct_answers + (1 if quality.is_correct else 0),
        explanation_delivered=subtopic.explanation_delivered,
        checks_since_explanation=(
            subtopic.checks_since_explanation + (1 if subtopic.explanation_delivered else 0)
        ),
    )


def decide_next_action(
    quality: AnswerQuality,
    counters: TurnCounters,
    max_questions: int,
    previous_status: SubtopicStatus,
) -> NextAction:
    """
    Recommend what the tutor does next.

    Budget exhaustion wins over everything so a subtopic can never loop
    past its question budget.
    """
    if counters.questions_used >= max_questions:
        return NextAction.COMPLETE_SUBTOPIC
    if counters.correct_answers >= CORRECT_ANSWERS_TO_ADVANCE:
        return NextAction.ADVANCE
    if counters.explanation_delivered and counters.checks_since_explanation >= CHECKS_AFTER_EXPLANATION_TO_ADVANCE:
        return NextAction.ADVANCE
    if quality in (AnswerQuality.INCORRECT, AnswerQuality.CONFUSED):
        return NextAction.EXPLAIN_GAP
    if quality == AnswerQuality.PARTIAL and previous_status == SubtopicStatus.SHAKY:
        return NextAction.EXPLAIN_GAP
    return NextAction.CONTINUE_PROBING


def decide_phase(next_action: NextAction, counters: TurnCounters) -> AssessmentPhase:
    if next_action in (NextAction.ADVANCE, NextAction.COMPLETE_SUBTOPIC):
        return AssessmentPhase.COMPLETE
    if counters.explanation_delivered:
        return AssessmentPhase.TARGETED_REMEDIATION
    return AssessmentPhase.INITIAL_ASSESSMENT


def build_status_delta(
    quality: AnswerQuality,
    next_action: NextAction,
    gaps: Tuple[str, ...],
    tested_application: bool,
) -> StatusDelta:
    addressed: Tuple[str, ...] = ()
    acknowledged: Tuple[str, ...] = ()
    if next_action == NextAction.EXPLAIN_GAP:
        addressed = gaps
    elif not quality.is_correct:
        acknowledged = gaps
    return StatusDelta(
        initial_assessment_done=True,
        add_acknowledged_gaps=acknowledged,
        add_addressed_gaps=addressed,
        questions_used_increment=1,
        has_tested_application=True if tested_application else None,
    )


class ScoreCombiner:
    """
    Combines signal scores into an AssessmentResult.

    Thresholds and weights are calibration constants and can be overridden
    per instance.
    """

    EXCELLENT_THRESHOLD = 0.65
    GOOD_THRESHOLD = 0.45
    PARTIAL_THRESHOLD = 0.15

    SPREAD_SCALE = 0.35
    FAILED_SIGNAL_PENALTY = 0.1
    MIN_CONFIDENCE = 0.05
    MAX_CONFIDENCE = 0.99

    APPLICATION_THRESHOLD = 0.5
    MAX_SPECIFIC_GAPS = 3

    def __init__(
        self,
        base_weights: SignalWeights = BASE_WEIGHTS,
        expected_concept_weights: SignalWeights = EXPECTED_CONCEPT_WEIGHTS,
    ):
        self.base_weights = base_weights
        self.expected_concept_weights = expected_concept_weights

    def weights_for(self, signals: SignalScores, requirements: SubtopicRequirements) -> SignalWeights:
        """
        Dynamic weights for one assessment.

        Each weight is scaled by 0.75 + 0.25 * confidence of its signal, except
        topic_specific which keeps its base weight, then the vector is renormalised.
        """
        base = self.expected_concept_weights if requirements.has_expected_concepts else self.base_weights
        raw: List[float] = []
        for signal in SIGNAL_ORDER:
            weight = base[signal]
            if signal != Signal.TOPIC_SPECIFIC:
                weight *= 0.75 + 0.25 * signals[signal].confidence
            raw.append(weight)
        return SignalWeights.normalised(raw)

    def weighted_score(self, signals: SignalScores, weights: SignalWeights) -> float:
        total = 0.0
        for signal_score, weight in zip(signals, weights):
            value = NEUTRAL_SIGNAL_SCORE if signal_score.failed else signal_score.score
            total += weight * value
        return max(0.0, min(1.0, total))

    def quality_for(self, score: float) -> AnswerQuality:
        if score >= self.EXCELLENT_THRESHOLD:
            return AnswerQuality.EXCELLENT
        if score >= self.GOOD_THRESHOLD:
            return AnswerQuality.GOOD
        if score >= self.PARTIAL_THRESHOLD:
            return AnswerQuality.PARTIAL
        return AnswerQuality.INCORRECT

    def confidence_for(self, signals: SignalScores) -> float:
        """High mean and low spread across signals give high confidence."""
        values = [NEUTRAL_SIGNAL_SCORE if s.failed else s.score for s in signals]
        mean = sum(values) / len(values)
        spread = math.sqrt(sum((v - mean) ** 2 for v in values) / len(values))
        confidence = 0.3 + 0.6 * mean + 0.2 * (1.0 - min(1.0, spread / self.SPREAD_SCALE))
        confidence -= self.FAILED_SIGNAL_PENALTY * len(signals.failed_signals())
        return max(self.MIN_CONFIDENCE, min(self.MAX_CONFIDENCE, confidence))

    def specific_gaps(self, answer_evidence: Tuple[str, ...], requirements: SubtopicRequirements) -> Tuple[str, ...]:
        covered = set(answer_evidence)
        missing = [c for c in requirements.expected_concepts if c not in covered]
        return tuple(missing[:self.MAX_SPECIFIC_GAPS])

    def combine(
        self,
        signals: SignalScores,
        requirements: SubtopicRequirements,
        subtopic: Optional[Subtopic] = None,
    ) -> AssessmentResult:
        """
        Combine signal scores into an assessment.

        Args:
            signals: The six signal scores
            requirements: Requirements of the active subtopic
            subtopic: Active subtopic, used for phase and next action; a fresh
                subtopic is assumed when omitted

        Returns:
            AssessmentResult
        """
        if subtopic is None:
            subtopic = Subtopic(title=requirements.subtopic_title)

        weights = self.weights_for(signals, requirements)
        score = self.weighted_score(signals, weights)
        quality = self.quality_for(score)
        confidence = self.confidence_for(signals)

        counters = project_turn(subtopic, quality)
        next_action = decide_next_action(quality, counters, requirements.max_questions, subtopic.status)
        phase = decide_phase(next_action, counters)

        gaps = self.specific_gaps(signals[Signal.TOPIC_SPECIFIC].evidence, requirements)
        tested_application = (
            quality.is_correct
            and not signals[Signal.CLINICAL_CONTEXT].failed
            and signals[Signal.CLINICAL_CONTEXT].score >= self.APPLICATION_THRESHOLD
        )

        trace = [f"{s.reasoning} -> {s.score:.2f} (w={w:.3f}, c={s.confidence:.2f})" for s, w in zip(signals, weights)]
        failed = signals.failed_signals()
        if failed:
            trace.append("failed signals: " + ", ".join(s.value for s in failed))
        trace.append(f"weighted={score:.3f} quality={quality.value} confidence={confidence:.2f}")
        trace.append(f"next_action={next_action.value} phase={phase.value}")
        reasoning = "; ".join(trace)
        logger.debug("Assessment for %r: %s", requirements.subtopic_title, reasoning)

        return AssessmentResult(
            quality=quality,
            confidence=confidence,
            phase=phase,
            next_action=next_action,
            struggling=False,
            reasoning=reasoning,
            weighted_score=score,
            status_update=build_status_delta(quality, next_action, gaps, tested_application),
            specific_gaps=gaps,
            signal_scores=tuple(zip((s.value for s in SIGNAL_ORDER), signals.vector())),
        )

    def from_filter(
        self,
        verdict: FilterVerdict,
        requirements: SubtopicRequirements,
        subtopic: Optional[Subtopic] = None,
    ) -> AssessmentResult:
        """Struggling result for an answer stopped by the quick quality filter."""
        if subtopic is None:
            subtopic = Subtopic(title=requirements.subtopic_title)

        quality = verdict.quality
        counters = project_turn(subtopic, quality)
        next_action = decide_next_action(quality, counters, requirements.max_questions, subtopic.status)
        phase = decide_phase(next_action, counters)
        gaps = tuple(requirements.expected_concepts[:self.MAX_SPECIFIC_GAPS])

        return AssessmentResult(
            quality=quality,
            confidence=verdict.confidence,
            phase=phase,
            next_action=next_action,
            struggling=verdict.struggling,
            reasoning=f"quick filter: {verdict.reason}; next_action={next_action.value}",
            weighted_score=0.0,
            status_update=build_status_delta(quality, next_action, gaps, False),
            specific_gaps=gaps,
        )
