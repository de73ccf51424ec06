"""
Labeling Tests
==============

Label quality gate, stemming/dedupe, contrastive term ranking and
evidence selection.
"""

import numpy as np
import pytest

from conceptgraph.errors import LabelQualityFailure
from conceptgraph.labeling import (
    cluster_keyphrases,
    compose_label,
    concept_size,
    contrastive_term_scores,
    dedupe_candidates,
    evaluate_label_quality,
    head_stem,
    label_cluster,
    rank_evidence,
    require_label_quality,
    stem_token,
    template_label,
)
from conceptgraph.text import extract_keyphrases


class TestQualityGate:
    def test_single_verb_fails(self):
        quality = evaluate_label_quality("move")
        assert not quality.passed
        assert "single-word" in quality.violations
        assert "non-noun-start" in quality.violations

    def test_noun_phrase_passes(self):
        quality = evaluate_label_quality("Spatial Clarity and Light")
        assert quality.passed
        assert quality.score == 1.0
        assert quality.violations == []

    def test_stopword_start(self):
        quality = evaluate_label_quality("The Light")
        assert not quality.passed
        assert {"stopword-heavy", "non-noun-start"} <= set(quality.violations)

    def test_repetition_fails(self):
        quality = evaluate_label_quality("Light and Light")
        assert not quality.passed
        assert "repetition" in quality.violations

    def test_filler_words_only_cost_a_little(self):
        quality = evaluate_label_quality("Project Design Spaces")
        assert quality.passed
        assert "filler-words" in quality.violations

    def test_empty_label(self):
        assert evaluate_label_quality("  ").violations == ["empty"]

    def test_require_raises_with_violations(self):
        with pytest.raises(LabelQualityFailure) as excinfo:
            require_label_quality("move")
        assert excinfo.value.label == "move"
        assert "single-word" in excinfo.value.violations


class TestTemplates:
    def test_cycle_gets_numbered(self):
        assert template_label(0) == "Core Feedback Themes"
        assert template_label(10) == "Core Feedback Themes 2"

    def test_templates_pass_the_gate(self):
        assert all(evaluate_label_quality(template_label(i)).passed for i in range(10))


class TestCandidates:
    def test_stemming(self):
        assert stem_token("lighting") == "light"
        assert stem_token("rooms") == "room"
        assert stem_token("is") == "is"

    def test_dedupe_by_stem_and_containment(self):
        phrases = ["natural light", "natural lighting", "light", "facade materials"]
        assert dedupe_candidates(phrases) == ["natural light", "facade materials"]

    def test_shared_head_word_counts_as_duplicate(self):
        phrases = ["courtyard planting", "courtyard trees", "roof structure", "reading rooms"]
        assert dedupe_candidates(phrases) == ["courtyard planting", "roof structure", "reading rooms"]

    def test_head_stem_uses_first_word_only(self):
        assert head_stem("Reading rooms") == head_stem("reading lamps") == "read"

    def test_compose_joins_two_candidates(self):
        assert compose_label(["natural light", "facade materials"]) == "Natural Light and Facade Materials"

    def test_compose_refuses_repeated_words(self):
        assert compose_label(["natural light", "light wells"]) == "Natural Light"

    def test_inner_stopwords_stay_lowercase(self):
        assert compose_label(["quality of light"]) == "Quality of Light"


class TestContrastiveTerms:
    VOCAB = ["natural light", "facade materials"]
    VECTORS = np.array([[1.0, 0.0], [1.0, 0.0], [0.0, 1.0], [0.0, 1.0]])

    def test_group_terms_rank_first(self):
        scores = contrastive_term_scores(self.VECTORS, [0, 1], self.VOCAB)
        assert [(t.term, t.score, t.df) for t in scores] == [("natural light", 1.0, 2)]

    def test_max_df_excludes_ubiquitous_terms(self):
        assert contrastive_term_scores(self.VECTORS, [0, 1], self.VOCAB, max_df_percent=0.5) == []

    def test_label_cluster_uses_contrastive_terms(self):
        labeled = label_cluster(self.VECTORS, [0, 1], np.array([1.0, 0.0]), self.VOCAB, ordinal=0)
        assert labeled.label == "Natural Light"
        assert labeled.source == "contrastive"
        assert labeled.quality.passed

    def test_rejected_label_falls_back_to_template(self):
        labeled = label_cluster(self.VECTORS, [0, 1], np.array([1.0, 0.0]), ["move forward", "facade materials"], ordinal=3)
        assert labeled.label == template_label(3)
        assert labeled.source == "template"
        assert labeled.rejected_label == "Move Forward"


class TestKeyphrases:
    TEXTS = [
        "The courtyard planting frames the reading rooms.",
        "Courtyard planting softens the reading rooms at dusk.",
        "The roof structure feels heavy.",
        "A roof structure with steel trusses.",
    ]

    def test_runs_stop_at_stopwords(self):
        assert extract_keyphrases("the courtyard planting frames the reading rooms") == [
            "courtyard planting",
            "courtyard planting frames",
            "planting frames",
            "reading rooms",
        ]

    def test_recurring_group_phrases_rank_first(self):
        assert cluster_keyphrases(self.TEXTS, [0, 1]) == ["courtyard planting", "reading rooms"]

    def test_phrases_shared_with_other_groups_are_dropped(self):
        texts = self.TEXTS + ["Reading rooms need more courtyard planting nearby.", "Reading rooms and courtyard planting again."]
        assert cluster_keyphrases(texts, [0, 1, 4, 5]) == ["courtyard planting", "reading rooms"]
        assert cluster_keyphrases(texts, [2, 3]) == ["roof structure"]

    def test_label_is_built_from_contiguous_content_words(self):
        vectors = np.array([[1.0, 0.0], [1.0, 0.0], [0.0, 1.0], [0.0, 1.0]])
        labeled = label_cluster(
            vectors, [0, 1], np.array([1.0, 0.0]), ["frames the", "facade materials"], ordinal=0, texts=self.TEXTS
        )
        assert labeled.label == "Courtyard Planting and Reading Rooms"
        assert labeled.source == "keyphrase"
        assert labeled.quality.passed


class TestEvidence:
    def test_closest_members_first(self):
        vectors = np.array([[0.6, 0.8], [1.0, 0.0], [0.8, 0.6], [0.0, 1.0]])
        picks = rank_evidence(vectors, [0, 1, 2, 3], np.array([1.0, 0.0]), ["natural light", "roof"], ["natural light"])
        assert picks == [1, 2, 0]

    def test_concept_size_is_capped(self):
        assert concept_size(0) == 6.0
        assert concept_size(1) == pytest.approx(14.4)
        assert concept_size(10_000) == 48.0
