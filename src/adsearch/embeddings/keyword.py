"""
Keyword fallback scoring.

Deterministic lexical ranking used when vector search is unavailable or
finds nothing. Each ad gets a weighted score from four field groups:

    industry   +3  if any query token is contained in an industry token
    brand      +2  same rule
    format     +2  same rule
    features   +1  per distinct query token contained in any feature token

Only the feature group scales with the number of matching query tokens;
the other groups contribute their weight at most once per ad.
"""

import re
from typing import Iterable, Sequence

from ..models import Ad

WEIGHTS = {
    "industry": 3,
    "brand": 2,
    "format": 2,
    "features": 1,
}

MIN_TOKEN_LENGTH = 3

_NON_WORD = re.compile(r"[^\w\s]")


def tokenize(text: str) -> list[str]:
    """Lowercase, strip punctuation, split on whitespace, drop tokens of <= 2 chars."""
    cleaned = _NON_WORD.sub("", text.lower())
    return [token for token in cleaned.split() if len(token) >= MIN_TOKEN_LENGTH]


def _any_contained(query_tokens: Iterable[str], field_tokens: Sequence[str]) -> bool:
    return any(q in f for q in query_tokens for f in field_tokens)


def score_ad(query_tokens: Sequence[str], ad: Ad) -> int:
    """
    Relevance score of one ad for already-tokenized query terms.

    Duplicate query tokens count once in the feature group.
    """
    score = 0

    for group in ("industry", "brand", "format"):
        value = getattr(ad, group)
        if value and _any_contained(query_tokens, tokenize(value)):
            score += WEIGHTS[group]

    if ad.feature_flags:
        feature_tokens = [t for flag in ad.feature_flags for t in tokenize(flag)]
        matches = sum(
            1 for q in dict.fromkeys(query_tokens)
            if any(q in f for f in feature_tokens)
        )
        score += matches * WEIGHTS["features"]

    return score


def keyword_search(query: str, ads: Sequence[Ad]) -> list[Ad]:
    """
    Rank ``ads`` by keyword relevance to ``query``.

    Ads scoring zero are dropped and ties keep their input order. If no ad
    scores above zero, the input list is returned unchanged, so a non-empty
    corpus never yields an empty result.
    """
    query_tokens = tokenize(query)
    scored = [(score_ad(query_tokens, ad), ad) for ad in ads]

    matched = [(score, ad) for score, ad in scored if score > 0]
    if not matched:
        return list(ads)

    matched.sort(key=lambda pair: pair[0], reverse=True)
    return [ad for _, ad in matched]
