"""Lexical scoring of entry text against a query string.

All scores are in [0, 1]. Exact, substring and regex modes are binary; token
and fuzzy modes are graded and kept only when they reach the caller's
threshold.
"""

from __future__ import annotations

import re
from difflib import SequenceMatcher

from engram.domain.entities import TextMatchMode

DEFAULT_TEXT_THRESHOLD = 0.3

_PUNCTUATION = re.compile(r"[^\w\s]|_")


def tokenize(text: str) -> list[str]:
    """Lowercase words, with punctuation treated as whitespace."""
    return _PUNCTUATION.sub(" ", text.lower()).split()


def token_overlap_score(a: str, b: str) -> float:
    """Jaccard similarity of the two token sets."""
    left, right = set(tokenize(a)), set(tokenize(b))
    if not left and not right:
        return 1.0
    if not left or not right:
        return 0.0
    return len(left & right) / len(left | right)


def _bigrams(text: str) -> list[str]:
    if len(text) < 2:
        return [text]
    return [text[i : i + 2] for i in range(len(text) - 1)]


def ngram_similarity(a: str, b: str) -> float:
    """Dice coefficient over character bigrams, ignoring case."""
    a, b = a.lower(), b.lower()
    if not a and not b:
        return 1.0
    if not a or not b:
        return 0.0
    left, right = _bigrams(a), _bigrams(b)
    remaining = list(right)
    shared = 0
    for gram in left:
        if gram in remaining:
            remaining.remove(gram)
            shared += 1
    return 2 * shared / (len(left) + len(right))


def _edit_similarity(query: str, candidate: str) -> float:
    """Best match ratio of the query against candidate windows near its length."""
    qlen, clen = len(query), len(candidate)
    if qlen >= clen:
        return SequenceMatcher(None, query, candidate, autojunk=False).ratio()
    best = 0.0
    for size in {qlen, min(qlen + 1, clen), max(qlen - 1, 1)}:
        for start in range(clen - size + 1):
            window = candidate[start : start + size]
            best = max(best, SequenceMatcher(None, query, window, autojunk=False).ratio())
            if best == 1.0:
                return best
    return best


def fuzzy_score(query: str, candidate: str) -> float:
    """Blend of edit, bigram and token similarity.

    A query of three or more characters found verbatim (ignoring case)
    scores 1.
    """
    q, c = query.lower(), candidate.lower()
    if not q and not c:
        return 1.0
    if not q or not c:
        return 0.0
    if len(q) >= 3 and q in c:
        return 1.0
    return (
        0.4 * _edit_similarity(q, c)
        + 0.3 * ngram_similarity(q, c)
        + 0.3 * token_overlap_score(q, c)
    )


def score_text(
    query: str,
    text: str,
    mode: TextMatchMode,
    threshold: float = DEFAULT_TEXT_THRESHOLD,
    pattern: re.Pattern[str] | None = None,
) -> float | None:
    """Score ``text`` against ``query``, or None when it does not match.

    ``pattern`` must be the compiled query for REGEX mode.
    """
    if mode is TextMatchMode.EXACT:
        return 1.0 if text == query else None
    if mode is TextMatchMode.SUBSTRING:
        return 1.0 if query.lower() in text.lower() else None
    if mode is TextMatchMode.REGEX:
        if pattern is None:
            raise ValueError("regex mode needs a compiled pattern")
        return 1.0 if pattern.search(text) else None
    if mode is TextMatchMode.TOKEN:
        score = token_overlap_score(query, text)
    else:
        score = fuzzy_score(query, text)
    return score if score >= threshold else None
