"""
Text fingerprinting and filename similarity utilities.
"""

import hashlib
import os
import re
from typing import Iterable, List, Optional


def content_hash(text: Optional[str]) -> str:
    """
    Fingerprint a task line so unrelated edits can be detected cheaply.

    Surrounding whitespace is ignored; everything else counts.
    """
    normalized = (text or "").strip()
    return hashlib.md5(normalized.encode("utf-8")).hexdigest()


def normalize_text(text: Optional[str]) -> List[str]:
    """
    Normalize text for similarity comparison.

    Converts to lowercase, removes punctuation, splits into tokens.

    Args:
        text: Text to normalize

    Returns:
        List of normalized tokens
    """
    if not text:
        return []

    text = text.lower()

    # Remove markdown formatting
    text = re.sub(r'[*_~`#]', '', text)

    # Remove punctuation but keep alphanumeric and spaces
    text = re.sub(r'[^\w\s]', ' ', text)

    return [t for t in text.split() if t]


def calculate_similarity(text1: str, text2: str) -> float:
    """
    Calculate Dice coefficient similarity between two texts.

    Args:
        text1: First text
        text2: Second text

    Returns:
        Similarity score between 0.0 and 1.0
    """
    tokens1 = set(normalize_text(text1))
    tokens2 = set(normalize_text(text2))

    if not tokens1 or not tokens2:
        return 0.0

    intersection = len(tokens1 & tokens2)
    total = len(tokens1) + len(tokens2)

    return (2.0 * intersection) / total


def _stem(path: str) -> str:
    return os.path.splitext(os.path.basename(path))[0]


def fuzzy_filename_matches(target_path: str, candidates: Iterable[str],
                           min_score: float = 0.6) -> List[str]:
    """
    Rank candidate paths by how closely their filename matches target_path.

    Exact basename matches come first, then case-insensitive stem matches,
    then token similarity of the stems at or above min_score.
    """
    target_base = os.path.basename(target_path)
    target_stem = _stem(target_path).lower()

    exact: List[str] = []
    folded: List[str] = []
    scored = []
    for candidate in candidates:
        if candidate == target_path:
            continue
        if os.path.basename(candidate) == target_base:
            exact.append(candidate)
            continue
        stem = _stem(candidate).lower()
        if stem == target_stem:
            folded.append(candidate)
            continue
        score = calculate_similarity(target_stem, stem)
        if score >= min_score:
            scored.append((score, candidate))

    scored.sort(key=lambda item: (-item[0], item[1]))
    return sorted(exact) + sorted(folded) + [candidate for _score, candidate in scored]
