"""
Unit Tests for Intent Classifier

Tests separation of answers from meta/conversational messages.
"""

import pytest
import sys
import os

# Add project root to path
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), "../.."))
sys.path.insert(0, os.path.join(project_root, "socratic_medical_tutor", "src"))

from socratic_medical_tutor.intent_classifier import (
    IntentClassifier,
    IntentType,
    MetaKind,
    interrupted_question,
)
from socratic_medical_tutor.session_state import Role, SessionState, build_subtopics

CONTENT_QUESTION = "What causes the endothelial dysfunction seen in preeclampsia?"


def session_after(tutor_message: str) -> SessionState:
    session = SessionState(
        session_id="s1",
        topic="Preeclampsia",
        subtopics=build_subtopics(["Preeclampsia pathophysiology"]),
    )
    return session.with_message(Role.TUTOR, tutor_message)


class TestIntentClassifier:
    """Test suite for IntentClassifier."""

    @pytest.fixture
    def classifier(self):
        """Create classifier instance."""
        return IntentClassifier()

    @pytest.fixture
    def session(self):
        return session_after(CONTENT_QUESTION)

    def test_process_question_skips_assessment(self, classifier, session):
        """A question about the process is conversational and confident."""
        result = classifier.classify("why are you asking me this?", session)

        assert result.type == IntentType.CONVERSATIONAL_QUESTION
        assert result.meta_kind == MetaKind.PROCESS_QUESTION
        assert result.confidence >= 0.85
        assert result.skips_assessment == True
        assert result.should_return_to_flow == True
        assert result.interrupted_question == CONTENT_QUESTION

    def test_hint_request(self, classifier, session):
        result = classifier.classify("Can I get a hint?", session)

        assert result.type == IntentType.CONVERSATIONAL_QUESTION
        assert result.meta_kind == MetaKind.HINT_REQUEST
        assert result.skips_assessment == True

    def test_content_answer_is_assessment(self, classifier, session):
        result = classifier.classify(
            "Abnormal placental invasion leads to ischemia and endothelial dysfunction", session
        )

        assert result.type == IntentType.ASSESSMENT_RESPONSE
        assert result.skips_assessment == False

    def test_content_outweighs_meta_phrase(self, classifier, session):
        """A challenge phrase wrapped around a substantive answer is still an answer."""
        result = classifier.classify(
            "are you sure it is not endothelial dysfunction from placental ischemia and vasospasm", session
        )

        assert result.type == IntentType.ASSESSMENT_RESPONSE
        assert result.meta_kind == MetaKind.CHALLENGE

    def test_give_up_is_left_to_assessment(self, classifier, session):
        """'I don't know' is about the content, not the process."""
        result = classifier.classify("I don't know, can you give me a hint?", session)

        assert result.type == IntentType.ASSESSMENT_RESPONSE
        assert "give-up statement" in result.evidence

    def test_medical_advice_below_skip_threshold(self, classifier, session):
        """Medical content lowers the meta confidence below the skip threshold."""
        result = classifier.classify("should I take aspirin for my headache?", session)

        assert result.type == IntentType.CONVERSATIONAL_QUESTION
        assert result.meta_kind == MetaKind.MEDICAL_ADVICE
        assert result.confidence == pytest.approx(0.8)
        assert result.skips_assessment == False

    @pytest.mark.parametrize("message,kind", [
        ("thanks!", MetaKind.SMALL_TALK),
        ("hi", MetaKind.SMALL_TALK),
        ("I don't understand the question", MetaKind.INTERACTION_CONFUSION),
    ])
    def test_statement_meta_messages_skip_assessment(self, classifier, session, message, kind):
        """Meta statements without medical content stay conversational."""
        result = classifier.classify(message, session)

        assert result.type == IntentType.CONVERSATIONAL_QUESTION
        assert result.meta_kind == kind
        assert result.skips_assessment == True

    def test_readiness_confirmation(self, classifier):
        session = session_after("We'll start with the mechanism. Are you ready to begin?")
        result = classifier.classify("yes, let's go", session)

        assert result.type == IntentType.OTHER
        assert result.meta_kind == MetaKind.READINESS
        assert result.skips_assessment == True

    def test_readiness_needs_readiness_prompt(self, classifier, session):
        result = classifier.classify("yes, let's go", session)
        assert result.meta_kind != MetaKind.READINESS

    def test_no_tutor_message_defaults_to_assessment(self, classifier):
        session = SessionState(session_id="s1", topic="Preeclampsia")
        result = classifier.classify("why are you asking me this?", session)

        assert result.type == IntentType.ASSESSMENT_RESPONSE
        assert result.confidence == pytest.approx(0.6)

    def test_empty_message(self, classifier, session):
        result = classifier.classify("   ", session)
        assert result.type == IntentType.ASSESSMENT_RESPONSE


class TestInterruptedQuestion:
    """Test suite for interrupted_question."""

    def test_strips_markdown_and_list_markers(self):
        session = session_after(
            "**Great start.** Now think about this:\n\n1. Why does placental ischemia lead to maternal hypertension?"
        )
        question = interrupted_question(session)

        assert question.endswith("Why does placental ischemia lead to maternal hypertension?")
        assert "**" not in question
        assert "1." not in question

    def test_skips_statements(self):
        session = session_after("That's right.")
        assert interrupted_question(session) is None

    def test_uses_latest_question_bearing_message(self):
        session = session_after(CONTENT_QUESTION).with_message(Role.STUDENT, "hmm").with_message(
            Role.TUTOR, "Take your time."
        )
        assert interrupted_question(session) == CONTENT_QUESTION
