"""
Text Normalizer & Similarity Toolkit

Pure helpers for normalizing PDF/answer text and scoring word overlap.
"""

import re

_NON_WORD = re.compile(r"[^\w\s]")
_WHITESPACE = re.compile(r"\s+")
_SENTENCE_BOUNDARY = re.compile(r"(?<=[.!?])\s+")
_LINE_BREAK_HYPHEN = re.compile(r"(\w)-\s+([a-z])")

_LIGATURES = {
    "ﬀ": "ff",
    "ﬁ": "fi",
    "ﬂ": "fl",
    "ﬃ": "ffi",
    "ﬄ": "ffl",
}

_PUNCTUATION = {
    "“": '"',
    "”": '"',
    "‘": "'",
    "’": "'",
    "–": "-",
    "—": "-",
}


def normalize(s: str) -> str:
    """Lowercase, replace non-word characters with spaces, collapse whitespace."""
    if not s:
        return ""
    s = _NON_WORD.sub(" ", s.lower())
    return _WHITESPACE.sub(" ", s).strip()


def tokenize(s: str) -> list[str]:
    """Normalized words of at least 3 characters."""
    return [w for w in normalize(s).split(" ") if len(w) >= 3]


def split_sentences(s: str) -> list[str]:
    """Split on whitespace following '.', '!' or '?'."""
    if not s:
        return []
    s = re.sub(r"\n+", " ", s)
    return [t.strip() for t in _SENTENCE_BOUNDARY.split(s) if t.strip()]


def jaccard(a: set, b: set) -> float:
    """|A ∩ B| / |A ∪ B|, 0.0 when both sets are empty."""
    inter = len(a & b)
    union = len(a | b) or 1
    return inter / union


def repair_extraction_artifacts(text: str) -> str:
    """
    Undo common PDF extraction noise.

    - Expand typographic ligatures
    - Straighten curly quotes, turn en/em dashes into hyphens
    - Join words hyphenated across a line break ("regu- lates")
    """
    if not text:
        return ""
    for src, dst in _LIGATURES.items():
        text = text.replace(src, dst)
    for src, dst in _PUNCTUATION.items():
        text = text.replace(src, dst)
    return _LINE_BREAK_HYPHEN.sub(r"\1\2", text)
