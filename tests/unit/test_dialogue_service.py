"""
Unit Tests for Dialogue Service

Tests topic decomposition parsing, template fallbacks and the model client path.
"""

import pytest
import sys
import os
from dataclasses import replace
from types import SimpleNamespace

# Add project root to path
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), "../.."))
sys.path.insert(0, os.path.join(project_root, "socratic_medical_tutor", "src"))

from socratic_medical_tutor.config import TutorSettings
from socratic_medical_tutor.dialogue_service import (
    DialogueContext,
    DialogueService,
    extract_topic_decomposition,
)
from socratic_medical_tutor.intent_classifier import IntentClassification, IntentType, MetaKind
from socratic_medical_tutor.session_state import (
    AnswerQuality,
    AssessmentPhase,
    AssessmentResult,
    NextAction,
    Role,
    SessionState,
    SubtopicStatus,
    TriagingStatus,
    build_subtopics,
)


class FakeCompletions:
    """Stands in for client.chat.completions."""

    def __init__(self, content=None, error=None):
        self.content = content
        self.error = error
        self.calls = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.error:
            raise self.error
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=self.content))])


def fake_client(content=None, error=None):
    return SimpleNamespace(chat=SimpleNamespace(completions=FakeCompletions(content, error)))


def make_session():
    session = SessionState(
        session_id="s1",
        topic="Preeclampsia",
        subtopics=build_subtopics(["Preeclampsia pathophysiology", "Preeclampsia management"]),
    )
    return session.with_message(Role.TUTOR, "What causes the endothelial dysfunction seen in preeclampsia?")


class TestExtractTopicDecomposition:
    """Test suite for extract_topic_decomposition."""

    def test_fenced_json(self):
        raw = (
            "Here you go:\n```json\n"
            '{"introduction": {"content": "Welcome!"}, "subtopics": [{"title": "Pathophysiology"}, '
            '{"title": "Management"}], "question": "What happens in the placenta?"}\n```'
        )
        result = extract_topic_decomposition(raw)

        assert result.parsed == True
        assert result.subtopics == ("Pathophysiology", "Management")
        assert result.introduction == "Welcome!"
        assert result.content == "Welcome!\n\nWhat happens in the placenta?"

    def test_json_in_prose_with_braces_in_strings(self):
        raw = 'Sure! {"content": "Hi", "subtopics": ["Signs {early}", "Workup"]} Anything else?'
        result = extract_topic_decomposition(raw)

        assert result.subtopics == ("Signs {early}", "Workup")
        assert result.content == "Hi"

    def test_introduction_as_text_field(self):
        raw = '{"introduction": {"text": "Let us begin."}, "subtopics": ["A"]}'
        result = extract_topic_decomposition(raw)

        assert result.introduction == "Let us begin."
        assert result.content == "Let us begin."

    def test_malformed_json_falls_back_to_raw_text(self):
        raw = "  Let's talk about {preeclampsia, shall we?  "
        result = extract_topic_decomposition(raw)

        assert result.parsed == False
        assert result.subtopics == ()
        assert result.content == raw.strip()

    def test_plain_text(self):
        result = extract_topic_decomposition("What do you know about sepsis?")
        assert result.content == "What do you know about sepsis?"
        assert result.subtopics == ()

    def test_empty(self):
        result = extract_topic_decomposition("")
        assert result.content == ""
        assert result.subtopics == ()


class TestTemplates:
    """Template replies used without a language model."""

    @pytest.fixture
    def service(self):
        """Create service without an API key."""
        return DialogueService(settings=TutorSettings())

    def test_no_client_without_key(self, service):
        assert service.llm_client is None

    def test_template_decomposition(self, service):
        decomposition = service.template_decomposition("Sepsis")

        assert len(decomposition.subtopics) == 3
        assert decomposition.subtopics[0] == "Sepsis: definition and pathophysiology"
        assert "Sepsis" in decomposition.content

    def test_conversational_reply_resumes_question(self, service):
        classification = IntentClassification(
            type=IntentType.CONVERSATIONAL_QUESTION,
            confidence=0.92,
            should_return_to_flow=True,
            meta_kind=MetaKind.PROCESS_QUESTION,
            interrupted_question="What causes the endothelial dysfunction seen in preeclampsia?",
        )
        reply = service.template_reply(DialogueContext(session=make_session(), classification=classification))
        assert reply.endswith("What causes the endothelial dysfunction seen in preeclampsia?")

    def test_explain_gap_reply_names_gaps(self, service):
        result = AssessmentResult(
            quality=AnswerQuality.INCORRECT,
            confidence=0.7,
            phase=AssessmentPhase.INITIAL_ASSESSMENT,
            next_action=NextAction.EXPLAIN_GAP,
            specific_gaps=("placental dysfunction", "vasospasm"),
        )
        reply = service.template_reply(DialogueContext(session=make_session(), result=result))
        assert "placental dysfunction, vasospasm" in reply

    def test_template_study_notes(self, service):
        session = make_session()
        first = replace(
            session.subtopics[0],
            status=SubtopicStatus.GAP,
            completed=True,
            triaging=TriagingStatus(acknowledged_gaps=("vasospasm",)),
        )
        session = session.with_current_subtopic(first)
        notes = service.template_study_notes(session)

        assert notes.startswith("# Study notes: Preeclampsia")
        assert "## Preeclampsia pathophysiology (gap)" in notes
        assert "- vasospasm" in notes
        assert "## Preeclampsia management (not assessed)" in notes
        assert "**Key terms:**" in notes


class TestModelClient:
    """The language model path, with a fake client."""

    @pytest.mark.asyncio
    async def test_decompose_with_model(self):
        client = fake_client('{"introduction": "Hello", "subtopics": ["A", "B"], "question": "Ready?"}')
        service = DialogueService(settings=TutorSettings(openai_api_key="test"), llm_client=client)

        decomposition = await service.decompose_topic("Asthma")

        assert decomposition.subtopics == ("A", "B")
        assert client.chat.completions.calls[0]["model"] == "gpt-4o-mini"

    @pytest.mark.asyncio
    async def test_decompose_without_subtopics_uses_template(self):
        client = fake_client("Sure, let's learn about asthma!")
        service = DialogueService(settings=TutorSettings(openai_api_key="test"), llm_client=client)

        decomposition = await service.decompose_topic("Asthma")
        assert decomposition.subtopics[0] == "Asthma: definition and pathophysiology"

    @pytest.mark.asyncio
    async def test_respond_falls_back_on_error(self):
        client = fake_client(error=RuntimeError("rate limited"))
        service = DialogueService(settings=TutorSettings(openai_api_key="test"), llm_client=client)
        context = DialogueContext(session=make_session())

        reply = await service.respond(context, "why are you asking me this?")
        assert reply == service.template_reply(context)

    @pytest.mark.asyncio
    async def test_respond_uses_model_text(self):
        client = fake_client("  Good thinking. What else?  ")
        service = DialogueService(settings=TutorSettings(openai_api_key="test"), llm_client=client)

        reply = await service.respond(DialogueContext(session=make_session()), "placental ischemia")
        assert reply == "Good thinking. What else?"

    def test_build_messages_drops_duplicate_student_message(self):
        service = DialogueService(settings=TutorSettings())
        session = make_session().with_message(Role.STUDENT, "placental ischemia")
        result = AssessmentResult(
            quality=AnswerQuality.PARTIAL,
            confidence=0.6,
            phase=AssessmentPhase.INITIAL_ASSESSMENT,
            next_action=NextAction.CONTINUE_PROBING,
            specific_gaps=("vasospasm",),
        )
        messages = service.build_messages(DialogueContext(session=session, result=result), "placental ischemia")

        assert messages[0]["role"] == "system"
        assert sum(1 for m in messages if m["content"].startswith("placental ischemia")) == 1
        assert "Missing concepts: vasospasm" in messages[-1]["content"]
