from __future__ import annotations

import re
import unicodedata

from factoring_review.pipeline.core.config import CONTAINMENT_MIN_LENGTH, LEGAL_ENTITY_TOKENS

_WS_RE = re.compile(r"\s+")
_EDGE_PUNCT = " ,.、。・･-_/"
# Longest first so "co.,ltd." is removed before "ltd."
_LEGAL_TOKENS = tuple(sorted({t.casefold() for t in LEGAL_ENTITY_TOKENS}, key=len, reverse=True))


def collapse_whitespace(text: str) -> str:
    return _WS_RE.sub(" ", unicodedata.normalize("NFKC", text or "").strip())


def normalize_for_compare(text: str) -> str:
    """NFKC, casefold and drop all whitespace."""
    return _WS_RE.sub("", collapse_whitespace(text)).casefold()


def strip_legal_entity(text: str) -> str:
    """Remove legal-entity tokens from either end of an already normalized name."""
    changed = True
    while changed and text:
        changed = False
        for token in _LEGAL_TOKENS:
            if text.startswith(token):
                text = text[len(token):].strip(_EDGE_PUNCT)
                changed = True
            if text.endswith(token):
                text = text[: -len(token)].strip(_EDGE_PUNCT)
                changed = True
    return text


def normalize_name(text: str) -> str:
    """Comparable form of a person or company name.

    Falls back to the plain normalized form when only legal tokens remain.
    """
    base = normalize_for_compare(text).strip(_EDGE_PUNCT)
    stripped = strip_legal_entity(base)
    return stripped or base


def names_equal(a: str, b: str) -> bool:
    left, right = normalize_name(a), normalize_name(b)
    return bool(left) and left == right


def names_contain(a: str, b: str, min_length: int = CONTAINMENT_MIN_LENGTH) -> bool:
    """True when either normalized name is a substring of the other."""
    left, right = normalize_name(a), normalize_name(b)
    if len(left) < min_length or len(right) < min_length:
        return False
    return left in right or right in left


def names_match(a: str, b: str) -> bool:
    return names_equal(a, b) or names_contain(a, b)
