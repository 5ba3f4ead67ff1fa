"""
Subtopic Requirements

Derives how much evidence a subtopic needs before it can be called mastered:
the question budget, whether clinical application must be tested, and the
expected concepts a good answer should touch. Generation is deterministic and
never fails; unknown subtopics get the generic profile.
"""

import difflib
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Tuple

from .medical_patterns import TOPIC_SPECIFIC_PATTERNS

logger = logging.getLogger(__name__)


class SubtopicNature(str, Enum):
    MECHANISM = "mechanism"
    DIAGNOSIS = "diagnosis"
    MANAGEMENT = "management"
    RISK = "risk"
    GENERAL = "general"


DEFAULT_MAX_QUESTIONS = 8
DEFAULT_MIN_QUESTIONS_FOR_MASTERY = 3
FUZZY_MATCH_RATIO = 0.8

NATURE_KEYWORDS: List[Tuple[SubtopicNature, Tuple[str, ...]]] = [
    (SubtopicNature.MECHANISM, ("pathophysio", "mechanism", "definition", "pathogenesis", "etiology")),
    (SubtopicNature.DIAGNOSIS, ("diagnos", "presentation", "assessment", "workup", "work-up", "signs", "symptom")),
    (SubtopicNature.MANAGEMENT, ("management", "treatment", "therapy", "pharmacolog")),
    (SubtopicNature.RISK, ("risk", "epidemiology", "factor", "prevention")),
]

# Profile sections in the order they matter for each nature
SECTION_PRIORITY: Dict[SubtopicNature, Tuple[str, ...]] = {
    SubtopicNature.MECHANISM: ("mechanisms", "key_terms", "complications", "management", "symptoms"),
    SubtopicNature.DIAGNOSIS: ("symptoms", "key_terms", "complications", "mechanisms", "management"),
    SubtopicNature.MANAGEMENT: ("management", "complications", "key_terms", "mechanisms"),
    SubtopicNature.RISK: ("risk_factors", "key_terms", "complications", "mechanisms"),
    SubtopicNature.GENERAL: ("key_terms", "mechanisms", "symptoms", "complications", "management", "risk_factors"),
}

DIFFICULTY_HINTS: Dict[SubtopicNature, str] = {
    SubtopicNature.MECHANISM: "foundational",
    SubtopicNature.DIAGNOSIS: "clinical",
    SubtopicNature.MANAGEMENT: "clinical",
    SubtopicNature.RISK: "foundational",
    SubtopicNature.GENERAL: "integrative",
}


@dataclass(frozen=True)
class SubtopicRequirements:
    subtopic_title: str
    topic: str
    expected_concepts: Tuple[str, ...] = ()
    max_questions: int = DEFAULT_MAX_QUESTIONS
    min_questions_for_mastery: int = DEFAULT_MIN_QUESTIONS_FOR_MASTERY
    must_test_application: bool = True
    subtopic_nature: SubtopicNature = SubtopicNature.GENERAL
    topic_profile: Optional[str] = None
    difficulty_hint: str = "integrative"

    @property
    def has_expected_concepts(self) -> bool:
        return bool(self.expected_concepts)


def classify_nature(title: str) -> SubtopicNature:
    title_lower = title.lower()
    for nature, keywords in NATURE_KEYWORDS:
        if any(keyword in title_lower for keyword in keywords):
            return nature
    return SubtopicNature.GENERAL


def match_topic_profile(title: str, topic: str) -> Optional[str]:
    """
    Find the topic profile for a subtopic.

    Exact alias containment in the title wins, then in the topic, then a fuzzy
    match of each alias against same-length word windows of title and topic.
    """
    for text in (title.lower(), topic.lower()):
        for profile, patterns in TOPIC_SPECIFIC_PATTERNS.items():
            if any(alias in text for alias in patterns["aliases"]):
                return profile

    words = f"{title} {topic}".lower().replace("-", " ").split()
    best: Optional[str] = None
    best_ratio = FUZZY_MATCH_RATIO
    for profile, patterns in TOPIC_SPECIFIC_PATTERNS.items():
        for alias in patterns["aliases"]:
            size = len(alias.split())
            for start in range(0, max(len(words) - size + 1, 0)):
                window = " ".join(words[start:start + size])
                ratio = difflib.SequenceMatcher(None, alias, window).ratio()
                if ratio >= best_ratio and (best is None or ratio > best_ratio):
                    best, best_ratio = profile, ratio
    return best


def expected_concepts_for(profile: Optional[str], nature: SubtopicNature) -> Tuple[str, ...]:
    if profile is None:
        return ()
    patterns = TOPIC_SPECIFIC_PATTERNS[profile]
    concepts: List[str] = []
    for section in SECTION_PRIORITY[nature]:
        for concept in patterns.get(section, []):
            if concept not in concepts:
                concepts.append(concept)
    return tuple(concepts)


def generate_subtopic_requirements(title: str, topic: str) -> SubtopicRequirements:
    """
    Build the requirement record for a subtopic.

    Args:
        title: Subtopic title, e.g. "Preeclampsia pathophysiology"
        topic: Parent topic of the session

    Returns:
        SubtopicRequirements, generic when no topic profile matches
    """
    title = (title or "").strip()
    topic = (topic or "").strip()
    nature = classify_nature(title)

    max_questions = DEFAULT_MAX_QUESTIONS
    min_mastery = DEFAULT_MIN_QUESTIONS_FOR_MASTERY
    must_test_application = True
    if nature == SubtopicNature.MECHANISM:
        # Definitions and mechanisms are pure knowledge
        max_questions = 6
        min_mastery = 2
        must_test_application = False

    profile = match_topic_profile(title, topic)
    return SubtopicRequirements(
        subtopic_title=title,
        topic=topic,
        expected_concepts=expected_concepts_for(profile, nature),
        max_questions=max_questions,
        min_questions_for_mastery=min_mastery,
        must_test_application=must_test_application,
        subtopic_nature=nature,
        topic_profile=profile,
        difficulty_hint=DIFFICULTY_HINTS[nature],
    )


class RequirementGenerator:
    """
    Per-session requirement cache.

    The same (title, topic) pair always yields the same object for the
    lifetime of the generator.
    """

    def __init__(self):
        self._cache: Dict[Tuple[str, str], SubtopicRequirements] = {}

    @staticmethod
    def _key(title: str, topic: str) -> Tuple[str, str]:
        return (" ".join((title or "").lower().split()), " ".join((topic or "").lower().split()))

    def generate(self, title: str, topic: str) -> SubtopicRequirements:
        key = self._key(title, topic)
        cached = self._cache.get(key)
        if cached is not None:
            return cached
        requirements = generate_subtopic_requirements(title, topic)
        self._cache[key] = requirements
        logger.debug(
            "Requirements for %r: nature=%s profile=%s max_questions=%d expected=%d",
            title, requirements.subtopic_nature.value, requirements.topic_profile,
            requirements.max_questions, len(requirements.expected_concepts),
        )
        return requirements

    def clear(self):
        self._cache.clear()

    def __len__(self) -> int:
        return len(self._cache)

    def __contains__(self, item) -> bool:
        title, topic = item
        return self._key(title, topic) in self._cache
