"""
Unit Tests for the Requirement Generator

Tests nature classification, topic profile matching and caching.
"""

import pytest
import sys
import os

# Add project root to path
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), "../.."))
sys.path.insert(0, os.path.join(project_root, "socratic_medical_tutor", "src"))

from socratic_medical_tutor.subtopic_requirements import (
    RequirementGenerator,
    SubtopicNature,
    classify_nature,
    generate_subtopic_requirements,
    match_topic_profile,
)


class TestGenerateSubtopicRequirements:
    """Test suite for generate_subtopic_requirements."""

    def test_mechanism_subtopic_with_profile(self):
        """Mechanism subtopics get the smaller knowledge-only budget."""
        requirements = generate_subtopic_requirements("Preeclampsia pathophysiology", "Preeclampsia")

        assert requirements.subtopic_nature == SubtopicNature.MECHANISM
        assert requirements.max_questions == 6
        assert requirements.min_questions_for_mastery == 2
        assert requirements.must_test_application == False
        assert requirements.topic_profile == "preeclampsia"
        assert requirements.difficulty_hint == "foundational"
        assert requirements.expected_concepts[0] == "placental dysfunction"
        assert "proteinuria" in requirements.expected_concepts
        assert "magnesium sulfate" in requirements.expected_concepts

    def test_expected_concepts_are_unique(self):
        requirements = generate_subtopic_requirements("Preeclampsia pathophysiology", "Preeclampsia")
        assert len(requirements.expected_concepts) == len(set(requirements.expected_concepts))

    def test_management_subtopic(self):
        requirements = generate_subtopic_requirements("Management of asthma exacerbations", "Respiratory medicine")

        assert requirements.subtopic_nature == SubtopicNature.MANAGEMENT
        assert requirements.max_questions == 8
        assert requirements.must_test_application == True
        assert requirements.topic_profile == "asthma"
        assert requirements.expected_concepts[0] == "inhaled corticosteroids"

    def test_profile_from_topic_when_title_is_generic(self):
        requirements = generate_subtopic_requirements("Clinical presentation", "Sepsis")

        assert requirements.subtopic_nature == SubtopicNature.DIAGNOSIS
        assert requirements.topic_profile == "sepsis"

    def test_generic_fallback(self):
        """Unknown subtopics get the generic profile with no expected concepts."""
        requirements = generate_subtopic_requirements("Introduction to bioethics", "Bioethics")

        assert requirements.subtopic_nature == SubtopicNature.GENERAL
        assert requirements.topic_profile is None
        assert requirements.expected_concepts == ()
        assert requirements.has_expected_concepts == False
        assert requirements.max_questions == 8
        assert requirements.min_questions_for_mastery == 3

    def test_never_raises_on_empty_input(self):
        requirements = generate_subtopic_requirements("", "")
        assert requirements.subtopic_nature == SubtopicNature.GENERAL
        assert requirements.topic_profile is None

    def test_deterministic(self):
        first = generate_subtopic_requirements("Diabetes management", "Endocrinology")
        second = generate_subtopic_requirements("Diabetes management", "Endocrinology")
        assert first == second


class TestProfileMatching:
    """Test suite for match_topic_profile and classify_nature."""

    def test_fuzzy_match_on_misspelling(self):
        assert match_topic_profile("Preeclampsa management", "Obstetrics") == "preeclampsia"

    def test_title_wins_over_topic(self):
        assert match_topic_profile("Diabetes in pregnancy", "Hypertension") == "diabetes"

    def test_no_match(self):
        assert match_topic_profile("Introduction to bioethics", "Bioethics") is None

    @pytest.mark.parametrize("title,nature", [
        ("Definition and pathophysiology", SubtopicNature.MECHANISM),
        ("Diagnostic workup", SubtopicNature.DIAGNOSIS),
        ("Pharmacological treatment", SubtopicNature.MANAGEMENT),
        ("Risk factors", SubtopicNature.RISK),
        ("Overview", SubtopicNature.GENERAL),
    ])
    def test_classify_nature(self, title, nature):
        assert classify_nature(title) == nature


class TestRequirementGenerator:
    """Test suite for the per-session cache."""

    @pytest.fixture
    def generator(self):
        """Create generator instance."""
        return RequirementGenerator()

    def test_idempotent(self, generator):
        """The same subtopic always yields the identical object."""
        first = generator.generate("Preeclampsia pathophysiology", "Preeclampsia")
        second = generator.generate("  preeclampsia   PATHOPHYSIOLOGY ", "preeclampsia")

        assert first is second
        assert len(generator) == 1
        assert ("Preeclampsia pathophysiology", "Preeclampsia") in generator

    def test_clear(self, generator):
        generator.generate("Sepsis management", "Sepsis")
        generator.clear()
        assert len(generator) == 0
