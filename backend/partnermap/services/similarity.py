"""Name similarity scoring.

All functions here are pure and safe to call from concurrent tasks.
"""

import re


def levenshtein_distance(s1: str, s2: str) -> int:
    """Calculate Levenshtein distance between two strings."""
    if len(s1) < len(s2):
        return levenshtein_distance(s2, s1)

    if len(s2) == 0:
        return len(s1)

    previous_row = list(range(len(s2) + 1))
    for i, c1 in enumerate(s1):
        current_row = [i + 1]
        for j, c2 in enumerate(s2):
            # j+1 instead of j since previous_row and current_row are one char longer
            insertions = previous_row[j + 1] + 1
            deletions = current_row[j] + 1
            substitutions = previous_row[j] + (c1 != c2)
            current_row.append(min(insertions, deletions, substitutions))
        previous_row = current_row

    return previous_row[-1]


def similarity(a: str, b: str) -> float:
    """Normalized edit-distance similarity in [0, 1].

    Both strings are trimmed and lowercased first. Equal strings score
    exactly 1.0; otherwise the score is ``1 - distance / longer_length``.
    """
    s1 = a.strip().lower()
    s2 = b.strip().lower()

    if s1 == s2:
        return 1.0

    return 1 - levenshtein_distance(s1, s2) / max(len(s1), len(s2))


def normalize_name(name: str) -> str:
    """Lowercase, drop punctuation and collapse whitespace."""
    if not name:
        return ""
    cleaned = re.sub(r"[^\w\s]", "", name.lower().strip())
    return re.sub(r"\s+", " ", cleaned).strip()


def name_similarity(a: str, b: str) -> float:
    """Similarity of two names after punctuation-insensitive normalization.

    Blank names never match anything.
    """
    left, right = normalize_name(a), normalize_name(b)
    if not left or not right:
        return 0.0
    return similarity(left, right)


def extract_domain(url: str | None) -> str | None:
    """Reduce a URL or bare host to its lowercase domain.

    >>> extract_domain("https://www.Example-Hotel.com/contact")
    'example-hotel.com'
    """
    if not url or not url.strip():
        return None

    domain = url.strip().lower()
    domain = re.sub(r"^https?://", "", domain)
    domain = re.sub(r"^www\.", "", domain)
    domain = domain.split("/")[0]
    domain = domain.split(":")[0]
    return domain or None
