from __future__ import annotations

import hashlib
from collections.abc import Iterable


def normalize_keyword(text: str) -> str:
    return " ".join(str(text).split()).lower()


def normalize_keywords(keywords: Iterable[str]) -> frozenset[str]:
    normalized = (normalize_keyword(item) for item in keywords)
    return frozenset(item for item in normalized if item)


def keyword_set_hash(keywords: Iterable[str]) -> str:
    """Stable digest of a keyword set, independent of order and spelling variants."""
    payload = "\n".join(sorted(normalize_keywords(keywords)))
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()
