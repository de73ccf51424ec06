from __future__ import annotations

import re
from collections.abc import Sequence

from conceptgraph.logging_utils import get_logger
from conceptgraph.models import UNATTRIBUTED, Comment, JurorBlock, SentenceRecord, Stance
from conceptgraph.text import CRITIQUE_MARKERS, PRAISE_MARKERS, SUGGESTION_PATTERNS, normalize_whitespace

logger = get_logger(__name__)

MIN_BLOCK_CHARS = 60
MIN_SENTENCE_CHARS = 18
MAX_HEADER_WORDS = 5

HEADER_BOILERPLATE_RE = re.compile(r"(selected jurors|jury|comments|competition|buildner)", re.IGNORECASE)
HEADER_TRAILING_PUNCT_RE = re.compile(r"[.!?:]$")
CAP_WORD_RE = re.compile(r"^[A-Z][A-Za-z'.-]+$")
INITIAL_RE = re.compile(r"^[A-Z]\.$")
SENTENCE_BOUNDARY_RE = re.compile(r"(?<=[.!?])\s+(?=[A-Z(\"'“‘])")
SEMICOLON_RE = re.compile(r"\s*;\s*")
PARAGRAPH_RE = re.compile(r"\n\s*\n")


def looks_like_juror_name(line: str) -> bool:
    s = line.strip()
    if len(s) < 6 or len(s) > 60:
        return False
    if HEADER_TRAILING_PUNCT_RE.search(s):
        return False
    if HEADER_BOILERPLATE_RE.search(s):
        return False
    words = s.split()
    if not words or len(words) > MAX_HEADER_WORDS:
        return False
    caps = sum(1 for w in words if CAP_WORD_RE.match(w))
    initials = sum(1 for w in words if INITIAL_RE.match(w))
    return caps + initials >= min(2, len(words))


def _paragraphs(lines: list[str]) -> list[str]:
    out: list[str] = []
    current: list[str] = []
    for line in lines:
        if not line:
            if current:
                out.append("\n".join(current))
                current = []
            continue
        current.append(line)
    if current:
        out.append("\n".join(current))
    return out


def segment_by_juror(raw: str) -> list[JurorBlock]:
    """Split raw feedback text into per-juror blocks.

    A line is a juror header when it looks like a person's name and the next
    non-empty line does not. Text before the first header, and blocks too
    short to be real commentary, end up in the ``Unattributed`` block. Blocks
    sharing a juror name are concatenated in first-seen order.
    """
    text = str(raw or "").replace("\r\n", "\n").replace("\r", "\n")
    lines = [line.strip() for line in text.split("\n")]

    raw_blocks: list[tuple[str, list[str]]] = []
    current_name: str | None = None
    buf: list[str] = []

    def flush() -> None:
        if current_name and any(buf):
            raw_blocks.append((current_name, list(buf)))

    for i, line in enumerate(lines):
        if not line:
            buf.append("")
            continue
        if looks_like_juror_name(line):
            j = i + 1
            while j < len(lines) and not lines[j]:
                j += 1
            next_line = lines[j] if j < len(lines) else ""
            if not (next_line and looks_like_juror_name(next_line)):
                flush()
                buf = []
                current_name = normalize_whitespace(line)
                continue
        if current_name is None:
            current_name = UNATTRIBUTED
        buf.append(line)
    flush()

    merged: dict[str, list[str]] = {}
    for name, block_lines in raw_blocks:
        paragraphs = _paragraphs(block_lines)
        size = len(" ".join(paragraphs).strip())
        if size < MIN_BLOCK_CHARS and name != UNATTRIBUTED:
            logger.debug("Folding short block under %r (%d chars) into %s", name, size, UNATTRIBUTED)
            name = UNATTRIBUTED
        merged.setdefault(name, []).extend(paragraphs)

    blocks: list[JurorBlock] = []
    for name, paragraphs in merged.items():
        comments = tuple(Comment(id=f"{name}#c{n}", text=p) for n, p in enumerate(paragraphs))
        blocks.append(JurorBlock(juror=name, comments=comments))
    return blocks


def split_sentences(text: str) -> list[str]:
    out: list[str] = []
    for paragraph in PARAGRAPH_RE.split(str(text or "")):
        cleaned = normalize_whitespace(paragraph)
        if not cleaned:
            continue
        for rough in SENTENCE_BOUNDARY_RE.split(cleaned):
            for part in SEMICOLON_RE.split(rough):
                part = part.strip()
                if len(part) >= MIN_SENTENCE_CHARS:
                    out.append(part)
    return out


def classify_stance(sentence: str) -> Stance:
    """Rule-based stance; a critique cue outranks praise, and a modal
    suggestion pattern turns a critique into a suggestion."""
    lowered = sentence.lower()
    has_praise = any(m in lowered for m in PRAISE_MARKERS)
    has_critique = any(m in lowered for m in CRITIQUE_MARKERS)
    has_suggestion = any(p.search(sentence) for p in SUGGESTION_PATTERNS)
    if has_critique:
        return "suggestion" if has_suggestion else "critique"
    if has_suggestion:
        return "suggestion"
    if has_praise:
        return "praise"
    return "neutral"


def extract_sentences(blocks: Sequence[JurorBlock]) -> list[SentenceRecord]:
    named = any(b.juror != UNATTRIBUTED for b in blocks)
    records: list[SentenceRecord] = []
    for block in blocks:
        if named and block.juror == UNATTRIBUTED:
            continue
        ordinal = 0
        for comment in block.comments:
            for sentence in split_sentences(comment.text):
                records.append(
                    SentenceRecord(
                        id=f"{block.juror}::{ordinal}",
                        juror=block.juror,
                        sentence=sentence,
                        stance=classify_stance(sentence),
                        source_tags=tuple(comment.tags),
                    )
                )
                ordinal += 1
    return records
