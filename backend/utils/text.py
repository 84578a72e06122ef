"""Lexical normalization shared by every catalog and intent comparison."""

import re
import unicodedata

EXERCISE_FILLER_WORDS = ("fiz", "fazer", "pratiquei", "na", "no", "do", "da", "de")
MEASURE_STOPWORDS = frozenset({"de", "da", "do", "em"})


def normalize_text(value: str | None) -> str:
    """Strip diacritics, lowercase and collapse whitespace. Idempotent."""
    if not value:
        return ""
    decomposed = unicodedata.normalize("NFD", str(value))
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return " ".join(stripped.lower().split())


def sanitize_query(value: str | None) -> str:
    """Spaced search form: normalized, punctuation removed, single spaces."""
    text = re.sub(r"[^a-z0-9\s]", "", normalize_text(value))
    return " ".join(text.split())


def compact_query(value: str | None) -> str:
    """Aggressive form: only [a-z0-9], so "cross-fit" and "crossfit" collide."""
    return re.sub(r"[^a-z0-9]+", "", normalize_text(value))


def tokenize_words(value: str | None, min_length: int = 3) -> list[str]:
    seen: list[str] = []
    for token in sanitize_query(value).split():
        if len(token) >= min_length and token not in seen:
            seen.append(token)
    return seen


def contains_whole_word(haystack: str, word: str) -> bool:
    return re.search(rf"\b{re.escape(word)}\b", haystack) is not None


def strip_exercise_fillers(value: str | None) -> str:
    pattern = r"\b(" + "|".join(EXERCISE_FILLER_WORDS) + r")\b"
    return " ".join(re.sub(pattern, " ", sanitize_query(value)).split())


def normalize_unit_label(value: str | None) -> str:
    """Singularize a measure label the way catalog measure names are stored."""
    text = normalize_text(value).replace("_", " ")
    text = re.sub(r"oes\b", "ao", text)
    text = re.sub(r"(?<=[rz])es\b", "", text)
    text = re.sub(r"(?<=[a-z])s\b", "", text)
    return " ".join(text.split())


def significant_words(value: str | None) -> list[str]:
    return [w for w in normalize_unit_label(value).split() if len(w) > 2 and w not in MEASURE_STOPWORDS]
