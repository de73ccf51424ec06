"""
Vectorizing Tests
=================

BM25 consensus/discriminative spaces and the seeded LCG.
"""

import math

import numpy as np
import pytest

from conceptgraph.bm25 import build_bm25, consensus_idf, discriminative_idf
from conceptgraph.prng import LCG


class TestLCG:
    def test_first_draws_follow_the_recurrence(self):
        assert LCG(0).next_uint() == 1013904223
        assert LCG(1).next_uint() == 1664525 + 1013904223

    def test_same_seed_same_sequence(self):
        assert LCG(13).sample_indices(10, 4) == LCG(13).sample_indices(10, 4)

    def test_sample_indices_are_distinct(self):
        picks = LCG(7).sample_indices(10, 10)
        assert sorted(picks) == list(range(10))

    def test_random_is_unit_interval(self):
        rng = LCG(99)
        assert all(0.0 <= rng.random() <= 1.0 for _ in range(100))

    def test_oversampling_raises(self):
        with pytest.raises(ValueError):
            LCG(1).sample_indices(3, 4)


class TestIDF:
    def test_consensus_idf_grows_with_juror_spread(self):
        idf = consensus_idf(np.array([0.0, 1.0, 2.0]), n_jurors=2)
        assert idf[0] == 0.0
        assert idf[1] == pytest.approx(math.log(1.5) + 1.0)
        assert idf[2] == pytest.approx(math.log(2.0) + 1.0)

    def test_discriminative_idf_is_clipped_at_zero(self):
        idf = discriminative_idf(np.array([0.0, 1.0, 3.0]), n_sentences=4)
        assert idf[0] == 0.0
        assert idf[1] == pytest.approx(math.log(3.5 / 1.5))
        assert idf[2] == 0.0


class TestBuildBM25:
    SENTENCES = [
        "natural light is strong",
        "natural light again here",
        "facade materials feel heavy",
    ]
    JURORS = ["Anna", "Anna", "Tomas"]

    def test_shared_vocabulary(self):
        consensus, discriminative = build_bm25(self.SENTENCES, self.JURORS)
        assert consensus.ngram_vocab == discriminative.ngram_vocab
        assert "natural light" in consensus.ngram_vocab

    def test_document_frequency_sources_differ(self):
        consensus, discriminative = build_bm25(self.SENTENCES, self.JURORS)
        assert consensus.doc_freq["natural light"] == 1
        assert discriminative.doc_freq["natural light"] == 2

    def test_rows_are_unit_length(self):
        consensus, _ = build_bm25(self.SENTENCES, self.JURORS)
        assert np.allclose(np.linalg.norm(consensus.vectors, axis=1), 1.0)

    def test_empty_corpus(self):
        consensus, discriminative = build_bm25([], [])
        assert consensus.vectors.shape == (0, 0)
        assert discriminative.ngram_vocab == []

    def test_no_ngrams_gives_zero_width_vectors(self):
        consensus, _ = build_bm25(["Light.", "Roof."], ["Anna", "Tomas"])
        assert consensus.vectors.shape == (2, 0)

    def test_misaligned_jurors_raise(self):
        with pytest.raises(ValueError):
            build_bm25(self.SENTENCES, self.JURORS[:2])
