from __future__ import annotations

import re
from difflib import SequenceMatcher
from typing import List, Optional, Sequence, Tuple

from rapidfuzz.distance import Levenshtein

NEAR_TOKEN_THRESHOLD = 0.85
NEAR_TOKEN_WEIGHT = 0.8


def normalize_text(text: Optional[str]) -> str:
    if not text:
        return ""
    text = re.sub(r"([a-z0-9])([A-Z])", r"\1 \2", str(text))
    text = text.lower()
    text = re.sub(r"[^a-z0-9\s]", " ", text)
    text = re.sub(r"\s+", " ", text)
    return text.strip()


def tokenize(text: Optional[str]) -> List[str]:
    return [token for token in normalize_text(text).split(" ") if token]


def levenshtein_similarity(a: str, b: str) -> float:
    """1 - edit_distance / max(len) on lowercased, trimmed input."""
    s1 = (a or "").lower().strip()
    s2 = (b or "").lower().strip()
    if s1 == s2:
        return 1.0
    if not s1 or not s2:
        return 0.0
    return Levenshtein.normalized_similarity(s1, s2)


def token_similarity(a: str, b: str) -> float:
    tokens1 = set(tokenize(a))
    tokens2 = set(tokenize(b))
    if not tokens1 or not tokens2:
        return 0.0
    score = 0.0
    for token in tokens1:
        if token in tokens2:
            score += 1
            continue
        for other in tokens2:
            if levenshtein_similarity(token, other) >= NEAR_TOKEN_THRESHOLD:
                score += NEAR_TOKEN_WEIGHT
                break
    return score / len(tokens1 | tokens2)


def contains_similar(haystack: str, needle: str, threshold: float = 0.8) -> bool:
    h = normalize_text(haystack)
    n = normalize_text(needle)
    if not n:
        return False
    if n in h:
        return True
    for word in h.split(" "):
        if levenshtein_similarity(word, n) >= threshold:
            return True
    for start in range(0, len(h) - len(n) + 1):
        if levenshtein_similarity(h[start:start + len(n)], n) >= threshold:
            return True
    return False


def find_best_match(
    target: str,
    candidates: Sequence[str],
    threshold: float = 0.6,
) -> Optional[Tuple[str, float, int]]:
    best: Optional[Tuple[str, float, int]] = None
    for index, candidate in enumerate(candidates):
        score = levenshtein_similarity(target, candidate)
        if score < threshold:
            continue
        if best is None or score > best[1]:
            best = (candidate, score, index)
    return best


def similarity(a: str, b: str) -> float:
    return SequenceMatcher(None, normalize_text(a), normalize_text(b)).ratio()
