"""
Dialogue Service

Produces the tutor's prose around the engine's decisions:
- First turn: asks the model to decompose the topic into subtopics (JSON)
- Every turn: a Socratic reply built from the latest assessment and next action
- End of session: markdown study notes

Uses AsyncOpenAI when OPENAI_API_KEY is set. Without a key, or when the call
fails, deterministic template replies are used so a conversation never stalls.
"""

import asyncio
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from openai import AsyncOpenAI

from .config import TutorSettings
from .exceptions import DialogueServiceError
from .intent_classifier import IntentClassification, MetaKind
from .medical_patterns import TOPIC_SPECIFIC_PATTERNS
from .progression import Transition
from .session_state import (
    AssessmentResult,
    NextAction,
    Role,
    SessionState,
    Subtopic,
    SubtopicState,
    SubtopicStatus,
)
from .subtopic_requirements import SubtopicRequirements, match_topic_profile

logger = logging.getLogger(__name__)

HISTORY_WINDOW = 10


# ============================================================================
# Topic decomposition parsing
# ============================================================================

@dataclass(frozen=True)
class TopicDecomposition:
    content: str
    subtopics: Tuple[str, ...] = ()
    introduction: Optional[str] = None
    parsed: bool = False


_CODE_FENCE = re.compile(r"```[a-zA-Z]*\s*(.*?)```", re.DOTALL)


def _balanced_objects(text: str):
    """Yield each top-level {...} span, skipping braces inside JSON strings."""
    depth = 0
    start = -1
    in_string = False
    escaped = False
    for i, char in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"' and depth > 0:
            in_string = True
        elif char == "{":
            if depth == 0:
                start = i
            depth += 1
        elif char == "}" and depth > 0:
            depth -= 1
            if depth == 0:
                yield text[start:i + 1]


def _text_of(value: Any) -> Optional[str]:
    if isinstance(value, str):
        return value.strip() or None
    if isinstance(value, dict):
        for key in ("content", "text"):
            if isinstance(value.get(key), str) and value[key].strip():
                return value[key].strip()
    return None


def _subtopic_titles(value: Any) -> Tuple[str, ...]:
    titles: List[str] = []
    if not isinstance(value, list):
        return ()
    for item in value:
        title = item if isinstance(item, str) else None
        if isinstance(item, dict):
            title = item.get("title") or item.get("name")
        if isinstance(title, str) and title.strip() and title.strip() not in titles:
            titles.append(title.strip())
    return tuple(titles)


def extract_topic_decomposition(raw: str) -> TopicDecomposition:
    """
    Parse the model's first-turn response.

    Strips code fences, takes the outermost balanced JSON object, parses it
    and normalises the introduction (an object becomes its content/text).
    Any failure returns the raw text as content with no subtopics.

    Args:
        raw: Model output

    Returns:
        TopicDecomposition
    """
    raw = raw or ""
    fenced = _CODE_FENCE.search(raw)
    candidates = [fenced.group(1)] if fenced else []
    candidates.append(raw)

    for text in candidates:
        for blob in _balanced_objects(text):
            try:
                data = json.loads(blob)
            except ValueError:
                continue
            if not isinstance(data, dict):
                continue
            introduction = _text_of(data.get("introduction"))
            question = _text_of(data.get("question")) or _text_of(data.get("first_question"))
            content = _text_of(data.get("content")) or "\n\n".join(p for p in (introduction, question) if p)
            return TopicDecomposition(
                content=content or raw.strip(),
                subtopics=_subtopic_titles(data.get("subtopics")),
                introduction=introduction,
                parsed=True,
            )

    return TopicDecomposition(content=raw.strip())


# ============================================================================
# Prompts
# ============================================================================

SYSTEM_PROMPT = """You are a Socratic medical tutor for medical students.

Rules:
- Ask one focused question at a time and never lecture for more than a short paragraph.
- Build on what the student said; name what was right before probing what was missing.
- When asked to explain a gap, explain it clearly and then ask one check question.
- When the student asks about the process, answer briefly and return to the interrupted question.
- Never give personal medical advice; redirect to a clinician.
- Keep replies under 180 words. Use plain markdown."""

DECOMPOSITION_PROMPT = """The student wants to learn about: {topic}

Break the topic into 3 to 5 subtopics that build on each other (for example
pathophysiology, clinical presentation and diagnosis, management).

Return ONLY a JSON object with this exact format:
{{"introduction": "one or two welcoming sentences", "subtopics": [{{"title": "..."}}], "question": "an opening question about the first subtopic"}}

Do not include any other text."""

ACTION_INSTRUCTIONS = {
    NextAction.CONTINUE_PROBING: "Acknowledge what was correct, then ask a follow-up question that probes the missing concepts.",
    NextAction.EXPLAIN_GAP: "Explain the missing concepts concisely, then ask one check question on the same subtopic.",
    NextAction.ADVANCE: "Briefly praise the student's understanding and introduce the next subtopic with an opening question.",
    NextAction.COMPLETE_SUBTOPIC: "Summarise the key points of this subtopic in two sentences and move on to the next subtopic with an opening question.",
}


@dataclass(frozen=True)
class DialogueContext:
    """What the dialogue service needs to write one reply."""
    session: SessionState
    assessed_subtopic: Optional[Subtopic] = None
    classification: Optional[IntentClassification] = None
    result: Optional[AssessmentResult] = None
    transition: Transition = Transition.STAY
    requirements: Optional[SubtopicRequirements] = None


class DialogueService:
    """
    Writes tutor replies with the OpenAI chat completions API.

    Falls back to templates when no API key is configured or a call fails.
    """

    def __init__(self, settings: Optional[TutorSettings] = None, llm_client: Optional[AsyncOpenAI] = None):
        self.settings = settings or TutorSettings.from_env()
        self.model = self.settings.openai_model
        self.llm_client: Optional[AsyncOpenAI] = llm_client
        if self.llm_client is None and self.settings.llm_enabled:
            self.llm_client = AsyncOpenAI(api_key=self.settings.openai_api_key)

    async def _complete(self, messages: List[Dict[str, str]], max_tokens: Optional[int] = None,
                        temperature: Optional[float] = None) -> str:
        if not self.llm_client:
            raise DialogueServiceError("no language model configured")
        try:
            completion = await asyncio.wait_for(
                self.llm_client.chat.completions.create(
                    model=self.model,
                    messages=messages,
                    max_tokens=max_tokens or self.settings.openai_max_tokens,
                    temperature=self.settings.openai_temperature if temperature is None else temperature,
                ),
                timeout=self.settings.request_timeout,
            )
        except asyncio.TimeoutError as e:
            raise DialogueServiceError(f"model call timed out after {self.settings.request_timeout}s") from e
        except Exception as e:
            raise DialogueServiceError(f"model call failed: {e}") from e

        content = completion.choices[0].message.content if completion.choices else None
        if not content or not content.strip():
            raise DialogueServiceError("model returned an empty response")
        return content.strip()

    # ------------------------------------------------------------------ #
    # First turn
    # ------------------------------------------------------------------ #

    async def decompose_topic(self, topic: str) -> TopicDecomposition:
        """Split a topic into subtopics and write the opening message."""
        if self.llm_client:
            try:
                raw = await self._complete(
                    [
                        {"role": "system", "content": SYSTEM_PROMPT},
                        {"role": "user", "content": DECOMPOSITION_PROMPT.format(topic=topic)},
                    ],
                    temperature=0.4,
                )
                decomposition = extract_topic_decomposition(raw)
                if decomposition.subtopics:
                    logger.info(f"🧭 [DialogueService] Decomposed '{topic}' into {len(decomposition.subtopics)} subtopics")
                    return decomposition
                logger.warning(f"⚠️ [DialogueService] No subtopics in model output for '{topic}', using template")
            except DialogueServiceError as e:
                logger.warning(f"⚠️ [DialogueService] Decomposition failed, using template: {e}")
        return self.template_decomposition(topic)

    def template_decomposition(self, topic: str) -> TopicDecomposition:
        name = topic.strip() or "this topic"
        subtopics = (
            f"{name}: definition and pathophysiology",
            f"{name}: clinical presentation and diagnosis",
            f"{name}: management and treatment",
        )
        introduction = f"Let's work through {name} together, one piece at a time."
        question = f"To start, what do you already know about the underlying mechanism of {name}?"
        return TopicDecomposition(
            content=f"{introduction}\n\n{question}",
            subtopics=subtopics,
            introduction=introduction,
            parsed=False,
        )

    # ------------------------------------------------------------------ #
    # Turn replies
    # ------------------------------------------------------------------ #

    def build_messages(self, context: DialogueContext, student_message: str) -> List[Dict[str, str]]:
        """Prompt for one tutor reply, from the session and the engine's decision."""
        session = context.session
        recent = list(session.messages[-HISTORY_WINDOW:])
        # The student message is sent below together with the guidance
        if recent and recent[-1].role == Role.STUDENT and recent[-1].content == student_message.strip():
            recent = recent[:-1]
        history = [
            {"role": "user" if m.role == Role.STUDENT else "assistant", "content": m.content}
            for m in recent
        ]

        lines = [f"Topic: {session.topic}"]
        if context.assessed_subtopic is not None:
            lines.append(f"Subtopic just assessed: {context.assessed_subtopic.title}")
        if session.current_subtopic is not None:
            lines.append(f"Current subtopic: {session.current_subtopic.title}")

        classification = context.classification
        result = context.result
        if result is None and classification is not None and classification.skips_assessment:
            lines.append(f"The student asked a {classification.meta_kind.value.replace('_', ' ')} question.")
            if classification.meta_kind == MetaKind.MEDICAL_ADVICE:
                lines.append("Do not give personal medical advice; suggest seeing a clinician.")
            lines.append("Answer briefly, then return to the interrupted question.")
            if classification.interrupted_question:
                lines.append(f"Interrupted question: {classification.interrupted_question}")
        elif result is not None:
            lines.append(
                f"Assessment: quality={result.quality.value}, confidence={result.confidence:.2f}, "
                f"next_action={result.next_action.value}"
            )
            if result.specific_gaps:
                lines.append(f"Missing concepts: {', '.join(result.specific_gaps)}")
            lines.append(ACTION_INSTRUCTIONS[result.next_action])

        requirements = context.requirements
        subtopic = session.current_subtopic
        if (
            requirements is not None
            and subtopic is not None
            and requirements.must_test_application
            and not subtopic.triaging.has_tested_application
            and context.transition == Transition.STAY
        ):
            lines.append("Prefer a short clinical vignette so the student applies the concept.")

        if session.subtopic_state == SubtopicState.COMPLETION_CHOICE:
            lines.append(
                "All subtopics are finished. Congratulate the student and ask whether they want "
                "study notes or a new topic."
            )

        instructions = "\n".join(lines)
        return (
            [{"role": "system", "content": SYSTEM_PROMPT}]
            + history
            + [{"role": "user", "content": f"{student_message}\n\n[Tutor guidance]\n{instructions}"}]
        )

    async def respond(self, context: DialogueContext, student_message: str) -> str:
        """
        Write the tutor's reply for one turn.

        Args:
            context: Session and engine decision for this turn
            student_message: What the student just said

        Returns:
            Reply text (model output, or a template when the model is unavailable)
        """
        if self.llm_client:
            try:
                return await self._complete(self.build_messages(context, student_message))
            except DialogueServiceError as e:
                logger.warning(f"⚠️ [DialogueService] Reply generation failed, using template: {e}")
        return self.template_reply(context)

    def template_reply(self, context: DialogueContext) -> str:
        session = context.session
        subtopic = session.current_subtopic
        title = subtopic.title if subtopic else session.topic
        classification = context.classification
        result = context.result

        if session.subtopic_state == SubtopicState.COMPLETION_CHOICE:
            return (
                f"Great work, we've covered every part of {session.topic}. "
                "Would you like me to generate study notes, or start a new topic?"
            )

        if result is None:
            if classification is not None and classification.meta_kind == MetaKind.MEDICAL_ADVICE:
                reply = "I can't give personal medical advice; please talk to a clinician about that."
            else:
                reply = "Good question. I'm checking how well each part of the topic is understood so we can focus where it helps most."
            if classification is not None and classification.interrupted_question:
                reply += f"\n\nBack to where we were: {classification.interrupted_question}"
            return reply

        gaps = list(result.specific_gaps)
        if result.next_action in (NextAction.ADVANCE, NextAction.COMPLETE_SUBTOPIC):
            finished = context.assessed_subtopic.title if context.assessed_subtopic else title
            opener = "Nice work" if result.quality.is_correct else "Let's wrap this part up"
            reply = f"{opener} on {finished}."
            if gaps and not result.quality.is_correct:
                reply += f" Keep reviewing {', '.join(gaps)}."
            return reply + f"\n\nNext up: {title}. What do you already know about it?"

        if result.next_action == NextAction.EXPLAIN_GAP:
            focus = ", ".join(gaps) if gaps else "the core ideas"
            return (
                f"Let's slow down on {title}. The key pieces to focus on are {focus}.\n\n"
                f"In your own words, how does {gaps[0] if gaps else 'this'} fit into {title}?"
            )

        if gaps:
            return f"You're on the right track. Can you tell me more about {gaps[0]}?"
        return f"Good. Can you take that further and explain the reasoning behind it for {title}?"

    # ------------------------------------------------------------------ #
    # Study notes
    # ------------------------------------------------------------------ #

    async def generate_study_notes(self, session: SessionState) -> str:
        """Markdown study notes for the whole session."""
        if self.llm_client:
            outline = "\n".join(
                f"- {s.title}: status={s.status.value}; gaps={', '.join(s.triaging.acknowledged_gaps + s.triaging.addressed_gaps) or 'none'}"
                for s in session.subtopics
            )
            prompt = (
                f"Write concise markdown study notes on {session.topic} for a medical student.\n"
                f"Cover each subtopic below; spend more space on subtopics marked gap or shaky "
                f"and on the listed gaps.\n\n{outline}"
            )
            try:
                return await self._complete(
                    [{"role": "system", "content": SYSTEM_PROMPT}, {"role": "user", "content": prompt}],
                    max_tokens=1500,
                    temperature=0.3,
                )
            except DialogueServiceError as e:
                logger.warning(f"⚠️ [DialogueService] Study notes generation failed, using template: {e}")
        return self.template_study_notes(session)

    def template_study_notes(self, session: SessionState) -> str:
        labels = {
            SubtopicStatus.UNDERSTOOD: "understood",
            SubtopicStatus.SHAKY: "needs review",
            SubtopicStatus.GAP: "gap",
            SubtopicStatus.UNASSESSED: "not assessed",
        }
        lines = [f"# Study notes: {session.topic}", ""]
        profile = match_topic_profile(session.topic, session.topic)
        if profile:
            patterns = TOPIC_SPECIFIC_PATTERNS[profile]
            lines.append("**Key terms:** " + ", ".join(patterns["key_terms"]))
            lines.append("")
        for subtopic in session.subtopics:
            lines.append(f"## {subtopic.title} ({labels[subtopic.status]})")
            gaps = subtopic.triaging.acknowledged_gaps + subtopic.triaging.addressed_gaps
            if gaps:
                lines.append("Review:")
                lines.extend(f"- {gap}" for gap in gaps)
            else:
                lines.append("No specific gaps recorded.")
            lines.append("")
        return "\n".join(lines).rstrip() + "\n"
