from __future__ import annotations

import re
from collections.abc import Iterable

STOPWORDS = frozenset(
    """
    a an the and or but if then than so to of in on for with as at by from into that this these those
    is are was were be being been it its they their them he she his her you your we our i me my
    not no yes very more most less least can could should would may might must also just really quite
    about over under between within without across through during before after while where when what
    which who whom because there here such some any each both either neither many much few one two three etc
    """.split()
)

PRAISE_MARKERS = (
    "strong",
    "beautiful",
    "compelling",
    "excellent",
    "elegant",
    "poetic",
    "successful",
    "impressive",
    "thoughtful",
    "refined",
    "coherent",
    "clear",
    "innovative",
    "evocative",
    "powerful",
    "serene",
    "confident",
    "wonderful",
    "works well",
    "stands out",
)

CRITIQUE_MARKERS = (
    "unclear",
    "confusing",
    "weak",
    "lacking",
    "absence",
    "missing",
    "difficult",
    "problem",
    "issue",
    "fails",
    "does not",
    "doesn't",
    "too",
    "crammed",
    "overly",
    "inconsistent",
    "unresolved",
    "needs",
    "could be improved",
    "not enough",
)

SUGGESTION_PATTERNS = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (
        r"\bcould\b",
        r"\bwould\b",
        r"\bshould\b",
        r"\bif\b",
        r"\bit would be\b",
        r"\bconsider\b",
        r"\bneeds to\b",
        r"\bneed to\b",
        r"\bwould have\b",
    )
)

NON_TOKEN_RE = re.compile(r"[^a-z0-9\s'-]")
WHITESPACE_RE = re.compile(r"\s+")


def raw_tokens(text: str) -> list[str]:
    """Lowercased tokens of length >= 2, stopwords kept."""
    cleaned = NON_TOKEN_RE.sub(" ", str(text or "").lower())
    return [t for t in cleaned.split() if len(t) >= 2]


def tokenize(text: str) -> list[str]:
    return [t for t in raw_tokens(text) if t not in STOPWORDS]


def _keep_ngram(gram: tuple[str, ...]) -> bool:
    if all(w in STOPWORDS for w in gram):
        return False
    return gram[0] not in STOPWORDS and gram[-1] not in STOPWORDS


def extract_ngrams(text: str, n_min: int = 2, n_max: int = 3) -> list[str]:
    tokens = raw_tokens(text)
    out: list[str] = []
    for n in range(n_min, n_max + 1):
        for i in range(len(tokens) - n + 1):
            gram = tuple(tokens[i : i + n])
            if _keep_ngram(gram):
                out.append(" ".join(gram))
    return out


def extract_keyphrases(text: str, n_min: int = 2, n_max: int = 3) -> list[str]:
    """Phrases of ``n_min..n_max`` adjacent content words; a stopword or a
    one-character token breaks the run."""
    tokens = NON_TOKEN_RE.sub(" ", str(text or "").lower()).split()
    out: list[str] = []
    for i, tok in enumerate(tokens):
        if tok in STOPWORDS or len(tok) < 2:
            continue
        for n in range(n_min, n_max + 1):
            gram = tokens[i : i + n]
            if len(gram) < n or any(t in STOPWORDS or len(t) < 2 for t in gram):
                break
            phrase = " ".join(gram)
            if phrase[0] in "-'" or phrase[-1] in "-'":
                continue
            out.append(phrase)
    return out


def ngram_vocabulary(texts: Iterable[str], n_min: int = 2, n_max: int = 3) -> list[str]:
    vocab: set[str] = set()
    for text in texts:
        vocab.update(extract_ngrams(text, n_min, n_max))
    return sorted(vocab)


def normalize_whitespace(text: str) -> str:
    return WHITESPACE_RE.sub(" ", str(text or "")).strip()
