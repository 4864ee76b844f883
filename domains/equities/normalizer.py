"""
Query Normalizer - Deterministic cleanup of free-text screening queries.

Responsibility:
- Lower-case, collapse whitespace, strip edge punctuation
- Correct common misspellings and phrase variants (whole-word)
- Expand standalone abbreviations (never the first word)
- Rewrite comparison punctuation to words
- Expand shorthand magnitudes (10k, 5m, 2b)
- Infer a result limit ("top 10", "five stocks")

normalize() is total and idempotent: normalizing its own output is a no-op.
"""

import logging
import re
from typing import Optional

logger = logging.getLogger(__name__)

# Mistake → correction, matched whole-word and case-insensitively.
# Multi-word phrases are applied before single words.
COMMON_MISTAKES = {
    # Spelling mistakes
    "stoks": "stocks",
    "stok": "stock",
    "companys": "companies",
    "compnay": "company",
    "companie": "company",
    "divident": "dividend",
    "dividand": "dividend",
    "proft": "profit",
    "proffit": "profit",
    "revanue": "revenue",
    "revenu": "revenue",
    "merket": "market",
    "markrt": "market",
    "capitel": "capital",
    "capitol": "capital",
    "debit": "debt",
    "equty": "equity",
    "eqity": "equity",
    "rateo": "ratio",
    "rasio": "ratio",
    "ratoi": "ratio",
    "groth": "growth",
    "growht": "growth",
    "hoding": "holding",
    "holdng": "holding",
    "promotr": "promoter",
    "promter": "promoter",
    "institional": "institutional",
    "instituional": "institutional",
    "margn": "margin",
    "margen": "margin",
    "ebita": "ebitda",
    "volumn": "volume",
    "gainer": "gainers",
    # Field phrase variants
    "p/e ratio": "pe ratio",
    "p e ratio": "pe ratio",
    "pe ratoi": "pe ratio",
    "p/b ratio": "pb ratio",
    "p b ratio": "pb ratio",
    "roe ratio": "roe",
    "roa ratio": "roa",
    "market capitalisation": "market cap",
    "market capitalization": "market cap",
    "marketcap": "market cap",
    "mkt cap": "market cap",
    "div yield": "dividend yield",
    "dividend yld": "dividend yield",
    "debt equity": "debt to equity",
    "d/e ratio": "debt to equity ratio",
    "promoter hold": "promoter holding",
    "institutional hold": "institutional holding",
    "52-week": "52 week",
    "52wk": "52 week",
    # Comparison phrase variants
    "less then": "less than",
    "lesser than": "less than",
    "more then": "more than",
    "greater then": "greater than",
    "greter than": "greater than",
    "above then": "above",
    "below then": "below",
    "under then": "under",
}

# Request verbs rewritten to a single phrasing; guarded so "show me" stays put.
REQUEST_VERB_PATTERNS = [
    (re.compile(r"\b(show|find|get)\b(?!\s+me\b)"), r"\1 me"),
    (re.compile(r"\b(?:list|display)\b(?!\s+me\b)"), "show me"),
    (re.compile(r"\b(?:list|display|give)\s+me\b"), "show me"),
]

# Standalone abbreviations expanded when not the first word
ABBREVIATIONS = {
    "pe": "pe ratio",
    "pb": "pb ratio",
    "roe": "return on equity",
    "roa": "return on assets",
    "eps": "earnings per share",
    "mcap": "market cap",
    "div": "dividend",
    "yoy": "year over year",
    "qoq": "quarter over quarter",
}

# Compound operators before single-character ones.
OPERATOR_WORDS = [
    (re.compile(r"\s*<\s*=\s*"), " less than or equal "),
    (re.compile(r"\s*>\s*=\s*"), " greater than or equal "),
    (re.compile(r"\s*!\s*=\s*"), " not equal "),
    (re.compile(r"\s*<\s*"), " less than "),
    (re.compile(r"\s*>\s*"), " greater than "),
    (re.compile(r"\s*=\s*"), " equals "),
]

MAGNITUDES = [
    (re.compile(r"(\d+(?:\.\d+)?)\s*(?:k|thousand)\b"), 1_000),
    (re.compile(r"(\d+(?:\.\d+)?)\s*(?:m|mn|million)\b"), 1_000_000),
    (re.compile(r"(\d+(?:\.\d+)?)\s*(?:b|bn|billion)\b"), 1_000_000_000),
    (re.compile(r"(\d+(?:\.\d+)?)\s*(?:crores?|cr)\b"), 10_000_000),
    (re.compile(r"(\d+(?:\.\d+)?)\s*(?:lakhs?|lacs?)\b"), 100_000),
]

WORD_NUMBERS = {
    "one": 1,
    "two": 2,
    "three": 3,
    "four": 4,
    "five": 5,
    "six": 6,
    "seven": 7,
    "eight": 8,
    "nine": 9,
    "ten": 10,
    "eleven": 11,
    "twelve": 12,
    "thirteen": 13,
    "fourteen": 14,
    "fifteen": 15,
    "sixteen": 16,
    "seventeen": 17,
    "eighteen": 18,
    "nineteen": 19,
    "twenty": 20,
    "thirty": 30,
    "forty": 40,
    "fifty": 50,
    "sixty": 60,
    "seventy": 70,
    "eighty": 80,
    "ninety": 90,
    "hundred": 100,
}

MAX_CORRECTION_PASSES = 5

_LIMIT_PATTERN = re.compile(r"\btop\s+(\d+|[a-z]+)\b|\b(\d+|[a-z]+)\s+stocks?\b")
_EDGE_PUNCTUATION = re.compile(r"^[.,!?;:]+|[.,!?;:]+$")
_WORD_PUNCTUATION = re.compile(r"[.,!?;:]")
_WHITESPACE = re.compile(r"\s+")


def infer_limit(text: str) -> Optional[int]:
    """Infer a result limit from "top N" / "N stocks" patterns (digits or words)."""
    for match in _LIMIT_PATTERN.finditer((text or "").lower()):
        raw_value = match.group(1) or match.group(2)
        if raw_value.isdigit():
            value = int(raw_value)
        else:
            value = WORD_NUMBERS.get(raw_value)
        if value:
            return value
    return None


def merge_limit(*limits: Optional[int]) -> Optional[int]:
    """Larger of the competing limit signals, ignoring missing ones."""
    present = [limit for limit in limits if isinstance(limit, int) and limit > 0]
    return max(present) if present else None


def _format_number(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else repr(value)


class QueryNormalizer:
    """Normalize raw query text using injectable correction tables."""

    def __init__(
        self,
        mistakes: Optional[dict[str, str]] = None,
        abbreviations: Optional[dict[str, str]] = None,
    ):
        self.mistakes = mistakes if mistakes is not None else COMMON_MISTAKES
        self.abbreviations = abbreviations if abbreviations is not None else ABBREVIATIONS
        # Phrases first, then longer words, so "pe ratoi" wins over any single-word rule.
        ordered = sorted(self.mistakes.items(), key=lambda item: (-item[0].count(" "), -len(item[0])))
        self._mistake_patterns = [
            (re.compile(rf"(?<![\w/]){re.escape(mistake)}(?![\w/])", re.IGNORECASE), correction)
            for mistake, correction in ordered
        ]

    def normalize(self, text: str) -> str:
        """Return the normalized form of a raw query. Never raises."""
        cleaned = _WHITESPACE.sub(" ", str(text or "").lower().strip())
        cleaned = _EDGE_PUNCTUATION.sub("", cleaned).strip()

        cleaned = self._correct_until_stable(cleaned)
        for pattern, replacement in REQUEST_VERB_PATTERNS:
            cleaned = pattern.sub(replacement, cleaned)

        for pattern, words in OPERATOR_WORDS:
            cleaned = pattern.sub(words, cleaned)

        for pattern, multiplier in MAGNITUDES:
            cleaned = pattern.sub(lambda m, k=multiplier: _format_number(round(float(m.group(1)) * k, 6)), cleaned)

        cleaned = _WHITESPACE.sub(" ", cleaned).strip()
        return _EDGE_PUNCTUATION.sub("", cleaned).strip()

    def was_corrected(self, raw: str, normalized: str) -> bool:
        """True when normalization changed more than case and outer whitespace."""
        return normalized != _WHITESPACE.sub(" ", str(raw or "").lower().strip())

    def _correct_until_stable(self, text: str) -> str:
        # A fix can create another table key ("debit equity" → "debt equity",
        # "div yld" → "dividend yld"), so repeat until nothing changes.
        for _ in range(MAX_CORRECTION_PASSES):
            corrected = self._expand_abbreviations(self._apply_corrections(text))
            if corrected == text:
                break
            text = corrected
        return text

    def _apply_corrections(self, text: str) -> str:
        for pattern, correction in self._mistake_patterns:
            text = pattern.sub(correction, text)
        return text

    def _expand_abbreviations(self, text: str) -> str:
        words = text.split(" ")
        expanded: list[str] = []
        for index, word in enumerate(words):
            clean_word = _WORD_PUNCTUATION.sub("", word)
            expansion = self.abbreviations.get(clean_word)
            if not expansion or index == 0:
                expanded.append(word)
                continue
            expansion_len = len(expansion.split(" "))
            following = " ".join(_WORD_PUNCTUATION.sub("", w) for w in words[index : index + expansion_len])
            if following == expansion:
                # Already expanded on an earlier pass.
                expanded.append(word)
                continue
            logger.debug("Abbreviation expanded: %s → %s", clean_word, expansion)
            expanded.append(expansion)
        return " ".join(expanded)
