"""
String similarity used for duplicate detection.

Scores are Dice coefficients over de-duplicated character bigrams of the
lower-cased, trimmed inputs. The function is pure and symmetric.
"""

from __future__ import annotations


def _normalize(value: object | None) -> str:
    if value is None:
        return ""
    return str(value).strip().lower()


def bigrams(value: str) -> set[str]:
    """Return the set of adjacent character pairs in ``value``."""

    return {value[index : index + 2] for index in range(len(value) - 1)}


def similarity(left: object | None, right: object | None) -> float:
    """Return a 0..1 similarity between two strings."""

    a = _normalize(left)
    b = _normalize(right)
    if not a or not b:
        return 0.0
    if a == b:
        return 1.0
    if len(a) < 2 or len(b) < 2:
        return 0.0

    a_pairs = bigrams(a)
    b_pairs = bigrams(b)
    overlap = len(a_pairs & b_pairs)
    return (2.0 * overlap) / (len(a_pairs) + len(b_pairs))


def exact_match(left: object | None, right: object | None) -> bool:
    """Case-insensitive equality that treats blanks as non-matching."""

    a = _normalize(left)
    return bool(a) and a == _normalize(right)


__all__ = ["bigrams", "exact_match", "similarity"]
