"""
Tutor Engine

Public entry points of the decision engine:
- assess(message, session) -> AssessmentResult | None
- generate_subtopic_requirements(title, topic) -> SubtopicRequirements
- TutorEngine.process(message, session) for the whole per-turn pipeline:
  Intent Classifier -> Requirement Generator (cached) -> Quick Quality Filter
  -> Multi-Signal Assessor -> Score Combiner -> Progression State Machine

The engine never performs I/O and never mutates the session it is given.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from .intent_classifier import IntentClassification, IntentClassifier
from .progression import ProgressionStateMachine, Transition, TurnOutcome, neutral_result
from .quality_filter import QuickQualityFilter
from .score_combiner import ScoreCombiner
from .session_state import AssessmentResult, SessionState
from .signal_scorers import MultiSignalAssessor
from .subtopic_requirements import (
    RequirementGenerator,
    SubtopicRequirements,
    generate_subtopic_requirements,
)

logger = logging.getLogger(__name__)

__all__ = [
    "EngineTurn",
    "TutorEngine",
    "assess",
    "generate_subtopic_requirements",
]


@dataclass(frozen=True)
class EngineTurn:
    classification: Optional[IntentClassification]
    requirements: Optional[SubtopicRequirements]
    result: Optional[AssessmentResult]
    outcome: TurnOutcome


class TutorEngine:
    """
    Per-session decision engine.

    Holds the session's requirement cache so a subtopic keeps the same
    requirements for the whole conversation.
    """

    def __init__(
        self,
        classifier: Optional[IntentClassifier] = None,
        quality_filter: Optional[QuickQualityFilter] = None,
        assessor: Optional[MultiSignalAssessor] = None,
        combiner: Optional[ScoreCombiner] = None,
        state_machine: Optional[ProgressionStateMachine] = None,
    ):
        self.classifier = classifier or IntentClassifier()
        self.quality_filter = quality_filter or QuickQualityFilter()
        self.assessor = assessor or MultiSignalAssessor()
        self.combiner = combiner or ScoreCombiner()
        self.state_machine = state_machine or ProgressionStateMachine()
        self.requirements = RequirementGenerator()

    def requirements_for(self, session: SessionState) -> SubtopicRequirements:
        subtopic = session.current_subtopic
        title = subtopic.title if subtopic else session.topic
        return self.requirements.generate(title, session.topic)

    def classify(self, message: str, session: SessionState) -> Optional[IntentClassification]:
        try:
            return self.classifier.classify(message, session)
        except Exception as e:
            logger.warning("Intent classification failed: %s", e)
            return None

    def assess(
        self,
        message: str,
        session: SessionState,
        requirements: Optional[SubtopicRequirements] = None,
        classification: Optional[IntentClassification] = None,
    ) -> Optional[AssessmentResult]:
        """
        Assess a student message.

        Returns None when the message is confidently conversational. Any
        failure inside scoring degrades to the neutral partial result.
        """
        if classification is None:
            classification = self.classify(message, session)
            if classification is None:
                return neutral_result()
        if classification.skips_assessment:
            logger.debug(
                "Skipping assessment: %s (%.2f)", classification.meta_kind.value, classification.confidence
            )
            return None

        try:
            if requirements is None:
                requirements = self.requirements_for(session)
            subtopic = session.current_subtopic
            verdict = self.quality_filter.check(message)
            if verdict is not None:
                return self.combiner.from_filter(verdict, requirements, subtopic)
            signals = self.assessor.score(message, requirements)
            return self.combiner.combine(signals, requirements, subtopic)
        except Exception:
            logger.exception("Assessment failed, using neutral result")
            return neutral_result()

    def process(self, message: str, session: SessionState) -> EngineTurn:
        """Run one student turn through the full pipeline."""
        classification = self.classify(message, session)
        requirements = self.requirements_for(session) if session.current_subtopic else None

        if classification is None:
            result = neutral_result()
        elif session.current_subtopic is None:
            result = None
        else:
            result = self.assess(message, session, requirements, classification)

        if requirements is None:
            outcome = TurnOutcome(session=session, transition=Transition.STAY)
        else:
            outcome = self.state_machine.apply(session, result, requirements)
        return EngineTurn(
            classification=classification,
            requirements=requirements,
            result=result,
            outcome=outcome,
        )


_default_engine = TutorEngine()


def assess(
    message: str,
    session: SessionState,
    requirements: Optional[SubtopicRequirements] = None,
    classifier: Optional[IntentClassifier] = None,
) -> Optional[AssessmentResult]:
    """
    Assess a student message against the session's active subtopic.

    Args:
        message: Student message
        session: Current session (not modified)
        requirements: Requirements to use; generated from the subtopic when omitted
        classifier: Intent classifier override

    Returns:
        AssessmentResult, or None when the message is conversational
    """
    if requirements is None:
        subtopic = session.current_subtopic
        requirements = generate_subtopic_requirements(
            subtopic.title if subtopic else session.topic, session.topic
        )
    if classifier is None:
        return _default_engine.assess(message, session, requirements)

    try:
        classification = classifier.classify(message, session)
    except Exception as e:
        logger.warning("Intent classification failed: %s", e)
        return neutral_result()
    return _default_engine.assess(message, session, requirements, classification)
