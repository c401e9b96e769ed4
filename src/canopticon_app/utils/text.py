#!filepath: src/canopticon_app/utils/text.py
from __future__ import annotations

import hashlib
import html
import re
import time
from typing import FrozenSet, List

from unidecode import unidecode

STOPWORDS = frozenset(
    {
        "the",
        "and",
        "for",
        "with",
        "from",
        "that",
        "this",
        "into",
        "over",
        "after",
        "before",
        "about",
        "says",
        "said",
        "will",
        "has",
        "have",
        "are",
        "was",
        "were",
        "its",
        "their",
        "new",
        "les",
        "des",
        "une",
        "sur",
        "pour",
        "dans",
    }
)

_BILL_RE = re.compile(r"\b([A-Z]-\d{1,4})\b")
_CAP_RE = re.compile(r"\b([A-Z][a-zA-Z]{2,})\b")
_SPACE_RE = re.compile(r"\s+")


def normalize_text(text: str) -> str:
    """Fold to ASCII lower case, keep letters, digits and hyphens."""
    if not text:
        return ""
    text = unidecode(str(text).lower())
    text = re.sub(r"[^a-z0-9\s-]", " ", text)
    return _SPACE_RE.sub(" ", text).strip()


def headline_tokens(text: str) -> FrozenSet[str]:
    """Significant tokens of a headline, used for similarity."""
    out = set()
    for w in normalize_text(text).split():
        w = w.strip("-")
        if len(w) < 2 or w in STOPWORDS:
            continue
        out.add(w)
    return frozenset(out)


def extract_entities(text: str) -> FrozenSet[str]:
    """Cheap entity candidates: bill codes and capitalized words.

    Sentence-initial words are included, which is acceptable for overlap
    scoring since both sides get the same treatment.
    """
    raw = str(text or "")
    found = {m.group(1).lower() for m in _BILL_RE.finditer(raw)}
    for m in _CAP_RE.finditer(raw):
        w = normalize_text(m.group(1))
        if w and w not in STOPWORDS:
            found.add(w)
    return frozenset(found)


def jaccard(a: FrozenSet[str], b: FrozenSet[str]) -> float:
    if not a or not b:
        return 0.0
    return float(len(a & b)) / float(len(a | b))


def content_hash(title: str, body: str) -> str:
    """Stable sha256 over normalized title and body."""
    t = _SPACE_RE.sub(" ", str(title or "")).strip().lower()
    b = _SPACE_RE.sub(" ", str(body or "")).strip().lower()
    norm = f"{t}\n{b}"
    return hashlib.sha256(norm.encode("utf_8")).hexdigest()


def slugify(headline: str, *, max_len: int = 80, suffix: bool = True) -> str:
    base = re.sub(r"\s+", "-", normalize_text(headline)).strip("-")
    base = re.sub(r"-{2,}", "-", base)[:max_len].strip("-") or "article"
    if not suffix:
        return base
    return f"{base}-{_base36(int(time.time() * 1000))}"


def _base36(n: int) -> str:
    chars = "0123456789abcdefghijklmnopqrstuvwxyz"
    out: List[str] = []
    while n:
        n, r = divmod(n, 36)
        out.append(chars[r])
    return "".join(reversed(out)) or "0"


def reading_time_minutes(text: str, wpm: int = 200) -> int:
    words = len(str(text or "").split())
    return max(1, round(words / float(wpm)))


_TAG_RE = re.compile(r"<[^>]+>")


def strip_html(text: str) -> str:
    """Drop tags from feed summaries and collapse whitespace."""
    if not text:
        return ""
    return _SPACE_RE.sub(" ", html.unescape(_TAG_RE.sub(" ", str(text)))).strip()


def overlap(a: FrozenSet[str], b: FrozenSet[str]) -> float:
    """Overlap coefficient, shared items over the smaller set."""
    if not a or not b:
        return 0.0
    return float(len(a & b)) / float(min(len(a), len(b)))
