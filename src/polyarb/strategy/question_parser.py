"""Market question parsing for cross-market consistency checks.

Pure functions: no I/O, no state.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

_DIRECTION = r"(hit|reach|above|below|>|<)"
_AMOUNT = r"\$?([\d][\d,]*(?:\.\d+)?)\s*(k)?"

# "Will BTC hit 100k", "Will Bitcoin be above $60,000", "BTC > 50k"
QUESTION_PATTERNS = [
    re.compile(
        r"will\s+(\w+)\s+(?:be\s+|go\s+|close\s+|trade\s+)?" + _DIRECTION + r"\s*" + _AMOUNT,
        re.IGNORECASE,
    ),
    re.compile(r"(\w+)\s+" + _DIRECTION + r"\s*" + _AMOUNT, re.IGNORECASE),
]

_DIRECTION_ALIASES = {
    ">": "above",
    "above": "above",
    "<": "below",
    "below": "below",
    "hit": "hit",
    "reach": "hit",
}


@dataclass(frozen=True)
class MarketCondition:
    """Threshold condition extracted from a question."""

    asset: str
    direction: str   # "above" | "below" | "hit"
    threshold: float


def parse_market_question(question: str) -> Optional[MarketCondition]:
    """Extract (asset, direction, threshold). None when unparseable.

    Examples:
        >>> parse_market_question("Will BTC hit 100k?")
        MarketCondition(asset='BTC', direction='hit', threshold=100000.0)
        >>> parse_market_question("Who wins the election?") is None
        True
    """
    if not question:
        return None

    for pattern in QUESTION_PATTERNS:
        match = pattern.search(question)
        if not match:
            continue
        asset, direction, amount, kilo = match.groups()
        try:
            threshold = float(amount.replace(",", ""))
        except ValueError:
            continue
        if kilo:
            threshold *= 1000
        return MarketCondition(
            asset=asset.upper(),
            direction=_DIRECTION_ALIASES[direction.lower()],
            threshold=threshold,
        )
    return None


def question_similarity(text1: str, text2: str) -> float:
    """Jaccard index over lowercase whitespace-split words."""
    words1 = set(text1.lower().split())
    words2 = set(text2.lower().split())
    union = words1 | words2
    if not union:
        return 0.0
    return len(words1 & words2) / len(union)
