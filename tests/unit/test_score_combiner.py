"""
Unit Tests for Score Combiner

Tests weight vectors, quality labels, confidence and next-action rules.
"""

import pytest
import sys
import os

# Add project root to path
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), "../.."))
sys.path.insert(0, os.path.join(project_root, "socratic_medical_tutor", "src"))

from socratic_medical_tutor.quality_filter import QuickQualityFilter
from socratic_medical_tutor.score_combiner import (
    BASE_WEIGHTS,
    EXPECTED_CONCEPT_WEIGHTS,
    ScoreCombiner,
    SignalWeights,
    TurnCounters,
    decide_next_action,
)
from socratic_medical_tutor.session_state import (
    AnswerQuality,
    AssessmentPhase,
    NextAction,
    Subtopic,
    SubtopicStatus,
)
from socratic_medical_tutor.signal_scorers import Signal, SignalScore, SignalScores
from socratic_medical_tutor.subtopic_requirements import generate_subtopic_requirements


def make_scores(confidence=0.8, **overrides):
    """SignalScores with every signal at 0.5 unless overridden."""
    return SignalScores(
        SignalScore(signal=s, score=overrides.get(s.value, 0.5), confidence=confidence)
        for s in Signal
    )


@pytest.fixture
def requirements():
    return generate_subtopic_requirements("Preeclampsia pathophysiology", "Preeclampsia")


class TestSignalWeights:
    """Test suite for SignalWeights."""

    def test_presets_sum_to_one(self):
        assert sum(BASE_WEIGHTS) == pytest.approx(1.0)
        assert sum(EXPECTED_CONCEPT_WEIGHTS) == pytest.approx(1.0)
        assert EXPECTED_CONCEPT_WEIGHTS[Signal.TOPIC_SPECIFIC] > BASE_WEIGHTS[Signal.TOPIC_SPECIFIC]

    def test_sum_checked_at_construction(self):
        with pytest.raises(ValueError):
            SignalWeights([0.2] * 6)

    def test_length_checked(self):
        with pytest.raises(ValueError):
            SignalWeights([0.5, 0.5])

    def test_negative_rejected(self):
        with pytest.raises(ValueError):
            SignalWeights([1.2, -0.2, 0.0, 0.0, 0.0, 0.0])

    def test_immutable(self):
        with pytest.raises(AttributeError):
            BASE_WEIGHTS._weights = (1.0, 0, 0, 0, 0, 0)

    def test_normalised(self):
        weights = SignalWeights.normalised([1, 1, 1, 1, 1, 1])
        assert weights[Signal.STRUCTURE] == pytest.approx(1 / 6)


class TestScoreCombiner:
    """Test suite for ScoreCombiner."""

    @pytest.fixture
    def combiner(self):
        """Create combiner instance."""
        return ScoreCombiner()

    @pytest.mark.parametrize("score,quality", [
        (0.9, AnswerQuality.EXCELLENT),
        (0.65, AnswerQuality.EXCELLENT),
        (0.64, AnswerQuality.GOOD),
        (0.45, AnswerQuality.GOOD),
        (0.3, AnswerQuality.PARTIAL),
        (0.15, AnswerQuality.PARTIAL),
        (0.1, AnswerQuality.INCORRECT),
    ])
    def test_quality_thresholds(self, combiner, score, quality):
        assert combiner.quality_for(score) == quality

    def test_dynamic_weights_sum_to_one(self, combiner, requirements):
        signals = make_scores(confidence=0.3, vocabulary=0.9)
        weights = combiner.weights_for(signals, requirements)
        assert sum(weights) == pytest.approx(1.0)

    def test_weight_preset_follows_expected_concepts(self, combiner, requirements):
        generic = generate_subtopic_requirements("Introduction to bioethics", "Bioethics")
        signals = make_scores()

        with_concepts = combiner.weights_for(signals, requirements)
        without_concepts = combiner.weights_for(signals, generic)
        assert with_concepts[Signal.TOPIC_SPECIFIC] > without_concepts[Signal.TOPIC_SPECIFIC]

    def test_topic_coverage_is_monotone(self, combiner, requirements):
        """More coverage never lowers the weighted score, other signals fixed."""
        scores = []
        for coverage in (0.0, 0.25, 0.5, 0.75, 1.0):
            signals = make_scores(topic_specific=coverage)
            scores.append(combiner.weighted_score(signals, combiner.weights_for(signals, requirements)))
        assert scores == sorted(scores)
        assert scores[0] < scores[-1]

    def test_failed_signal_lowers_confidence(self, combiner):
        healthy = make_scores()
        failed = healthy.with_score(SignalScore.neutral(Signal.REASONING, "boom"))

        assert combiner.confidence_for(healthy) == pytest.approx(0.8)
        assert combiner.confidence_for(failed) == pytest.approx(0.7)

    def test_agreement_raises_confidence(self, combiner):
        agreeing = make_scores()
        spread = make_scores(vocabulary=1.0, reasoning=0.0, clinical_context=1.0, structure=0.0)
        assert combiner.confidence_for(agreeing) > combiner.confidence_for(spread)

    def test_combine_result(self, combiner, requirements):
        signals = make_scores(
            vocabulary=0.9, reasoning=0.8, concept_specific=0.9,
            topic_specific=0.9, clinical_context=0.8, structure=0.8,
        )
        result = combiner.combine(signals, requirements)

        assert result.quality == AnswerQuality.EXCELLENT
        assert result.phase == AssessmentPhase.INITIAL_ASSESSMENT
        assert result.next_action == NextAction.CONTINUE_PROBING
        assert result.struggling == False
        assert result.status_update.questions_used_increment == 1
        assert dict(result.signal_scores)["topic_specific"] == pytest.approx(0.9)
        assert "weighted=" in result.reasoning

    def test_specific_gaps_are_missing_concepts(self, combiner, requirements):
        signals = make_scores(confidence=0.8).with_score(
            SignalScore(
                signal=Signal.TOPIC_SPECIFIC, score=0.15, confidence=0.9,
                evidence=("placental dysfunction",),
            )
        )
        result = combiner.combine(signals, requirements)

        assert len(result.specific_gaps) == 3
        assert "placental dysfunction" not in result.specific_gaps
        assert result.specific_gaps[0] == "endothelial dysfunction"

    def test_from_filter(self, combiner, requirements):
        verdict = QuickQualityFilter().check("no idea")
        result = combiner.from_filter(verdict, requirements)

        assert result.quality == AnswerQuality.CONFUSED
        assert result.struggling == True
        assert result.next_action == NextAction.EXPLAIN_GAP
        assert result.specific_gaps == requirements.expected_concepts[:3]
        assert result.status_update.add_addressed_gaps == requirements.expected_concepts[:3]


class TestDecideNextAction:
    """Test suite for decide_next_action."""

    def counters(self, used=1, correct=0, explained=False, checks=0):
        return TurnCounters(
            questions_used=used,
            correct_answers=correct,
            explanation_delivered=explained,
            checks_since_explanation=checks,
        )

    def test_budget_wins(self):
        action = decide_next_action(AnswerQuality.EXCELLENT, self.counters(used=8, correct=2), 8, SubtopicStatus.UNDERSTOOD)
        assert action == NextAction.COMPLETE_SUBTOPIC

    def test_two_correct_advance(self):
        action = decide_next_action(AnswerQuality.GOOD, self.counters(used=2, correct=2), 8, SubtopicStatus.UNDERSTOOD)
        assert action == NextAction.ADVANCE

    def test_checks_after_explanation_advance(self):
        action = decide_next_action(
            AnswerQuality.PARTIAL, self.counters(used=4, explained=True, checks=2), 8, SubtopicStatus.SHAKY
        )
        assert action == NextAction.ADVANCE

    def test_incorrect_explains(self):
        action = decide_next_action(AnswerQuality.INCORRECT, self.counters(), 8, SubtopicStatus.UNASSESSED)
        assert action == NextAction.EXPLAIN_GAP

    def test_partial_after_shaky_explains(self):
        action = decide_next_action(AnswerQuality.PARTIAL, self.counters(used=2), 8, SubtopicStatus.SHAKY)
        assert action == NextAction.EXPLAIN_GAP

    def test_first_partial_probes(self):
        action = decide_next_action(AnswerQuality.PARTIAL, self.counters(), 8, SubtopicStatus.UNASSESSED)
        assert action == NextAction.CONTINUE_PROBING

    def test_phase_after_explanation(self, requirements):
        """Answers after an explanation are targeted remediation."""
        subtopic = Subtopic(title="Preeclampsia pathophysiology", explanation_delivered=True)
        result = ScoreCombiner().combine(make_scores(), requirements, subtopic)
        assert result.phase == AssessmentPhase.TARGETED_REMEDIATION
