from __future__ import annotations

from collections.abc import Sequence

import numpy as np
from sklearn.feature_extraction.text import CountVectorizer
from sklearn.preprocessing import normalize

from conceptgraph.models import BM25Model
from conceptgraph.text import extract_ngrams, ngram_vocabulary

K1 = 1.2
B = 0.75


def _empty_model(variant: str, n_sentences: int) -> BM25Model:
    return BM25Model(
        variant=variant,  # type: ignore[arg-type]
        ngram_vocab=[],
        scores={},
        doc_freq={},
        vectors=np.zeros((n_sentences, 0), dtype=np.float64),
    )


def _term_counts(sentences: Sequence[str], vocab: list[str], n_min: int, n_max: int) -> np.ndarray:
    vectorizer = CountVectorizer(
        analyzer=lambda doc: extract_ngrams(doc, n_min, n_max),
        vocabulary=vocab,
        dtype=np.float64,
    )
    return vectorizer.transform(list(sentences)).toarray()


def consensus_idf(juror_df: np.ndarray, n_jurors: int) -> np.ndarray:
    n = max(1, n_jurors)
    idf = np.log(1.0 + juror_df / n) + 1.0
    return np.where(juror_df > 0, idf, 0.0)


def discriminative_idf(sentence_df: np.ndarray, n_sentences: int) -> np.ndarray:
    n = max(1, n_sentences)
    raw = np.log((n - sentence_df + 0.5) / (sentence_df + 0.5))
    return np.where(sentence_df > 0, np.maximum(0.0, raw), 0.0)


def saturate(tf: np.ndarray, doc_lengths: np.ndarray, avg_length: float) -> np.ndarray:
    lengths = np.maximum(doc_lengths, 1.0)[:, None]
    denom = tf + K1 * (1.0 - B + B * (lengths / avg_length))
    return np.where(tf > 0, tf * (K1 + 1.0) / denom, 0.0)


def _model(variant: str, vocab: list[str], df: np.ndarray, idf: np.ndarray, tf_sat: np.ndarray) -> BM25Model:
    vectors = normalize(tf_sat * idf[None, :], norm="l2", axis=1)
    return BM25Model(
        variant=variant,  # type: ignore[arg-type]
        ngram_vocab=list(vocab),
        scores={term: float(idf[i] * df[i]) for i, term in enumerate(vocab)},
        doc_freq={term: int(df[i]) for i, term in enumerate(vocab)},
        vectors=vectors.astype(np.float64, copy=False),
    )


def build_bm25(
    sentences: Sequence[str],
    jurors: Sequence[str],
    ngram_min: int = 2,
    ngram_max: int = 3,
) -> tuple[BM25Model, BM25Model]:
    """Build the consensus and discriminative BM25 spaces over ``sentences``.

    Both share one n-gram vocabulary and one saturated term-frequency matrix;
    they differ in where document frequency comes from (distinct jurors vs
    sentences) and in the IDF formula. ``jurors[i]`` is the author of
    ``sentences[i]``. An empty corpus or empty vocabulary yields zero-width
    vectors rather than an error.
    """
    if len(jurors) != len(sentences):
        raise ValueError("jurors must be index-aligned with sentences")
    n = len(sentences)
    vocab = ngram_vocabulary(sentences, ngram_min, ngram_max) if n else []
    if not vocab:
        return _empty_model("consensus", n), _empty_model("discriminative", n)

    counts = _term_counts(sentences, vocab, ngram_min, ngram_max)
    doc_lengths = counts.sum(axis=1)
    avg_length = float(doc_lengths.mean()) or 1.0
    tf_sat = saturate(counts, doc_lengths, avg_length)

    present = counts > 0
    sentence_df = present.sum(axis=0).astype(np.float64)

    juror_index = {j: i for i, j in enumerate(dict.fromkeys(jurors))}
    juror_present = np.zeros((len(juror_index), len(vocab)), dtype=bool)
    for row, juror in zip(present, jurors):
        juror_present[juror_index[juror]] |= row
    juror_df = juror_present.sum(axis=0).astype(np.float64)

    consensus = _model("consensus", vocab, juror_df, consensus_idf(juror_df, len(juror_index)), tf_sat)
    discriminative = _model(
        "discriminative", vocab, sentence_df, discriminative_idf(sentence_df, n), tf_sat
    )
    return consensus, discriminative
