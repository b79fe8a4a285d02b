from __future__ import annotations

import math
from typing import Any

from .models import AGE_GROUPS, BOOK_FORMATS, READING_LEVELS, PriceRange, UserBehavior, UserPreferences, utcnow

BEHAVIOR_LIST_FIELDS = (
    ("viewedBooks", "viewed_books"),
    ("viewedGenres", "viewed_genres"),
    ("searchHistory", "search_history"),
    ("purchaseHistory", "purchase_history"),
)

BEHAVIOR_MAP_FIELDS = (
    ("timeOnPage", "time_on_page"),
    ("clickPatterns", "click_patterns"),
)

# A stored record with an unusable counter has seen at least one session.
REPAIRED_SESSION_COUNT = 1

DEFAULT_READING_GOALS = 2


def is_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def to_number(value: Any) -> float:
    """Lenient numeric read used for request payloads: anything unusable is zero."""
    if is_number(value):
        return value
    if isinstance(value, str):
        try:
            parsed = float(value.strip())
        except ValueError:
            return 0
        return parsed if math.isfinite(parsed) else 0
    return 0


def normalize_behavior(raw: Any) -> tuple[UserBehavior, list[str]]:
    """Repair a decoded behavior payload field by field.

    Returns the valid record and a list of human-readable repairs. An empty
    repair list means the payload was already well-formed.
    """
    if not isinstance(raw, dict):
        return UserBehavior(), ["user-behavior is not an object, reset to defaults"]

    repairs: list[str] = []
    values: dict[str, Any] = {}

    for key, attr in BEHAVIOR_LIST_FIELDS:
        values[attr] = _string_list(raw.get(key), key, [], repairs)

    for key, attr in BEHAVIOR_MAP_FIELDS:
        values[attr] = _numeric_map(raw.get(key), key, repairs)

    session_count = raw.get("sessionCount")
    if isinstance(session_count, float) and session_count.is_integer() and session_count >= 0:
        session_count = int(session_count)
        repairs.append("sessionCount was a float, converted to integer")
    if isinstance(session_count, bool) or not isinstance(session_count, int) or session_count < 0:
        repairs.append(f"sessionCount is not a non-negative integer, reset to {REPAIRED_SESSION_COUNT}")
        session_count = REPAIRED_SESSION_COUNT
    values["session_count"] = session_count

    last_visit = raw.get("lastVisit")
    if not isinstance(last_visit, str) or not last_visit.strip():
        repairs.append("lastVisit is missing, set to now")
        last_visit = utcnow().isoformat()
    values["last_visit"] = last_visit

    return UserBehavior(**values), repairs


def normalize_preferences(raw: Any) -> tuple[UserPreferences, list[str]]:
    if not isinstance(raw, dict):
        return UserPreferences(), ["user-preferences is not an object, reset to defaults"]

    repairs: list[str] = []

    favorites = _string_list(raw.get("favoriteGenres"), "favoriteGenres", [], repairs)
    deduped = list(dict.fromkeys(favorites))
    if len(deduped) != len(favorites):
        repairs.append("favoriteGenres contained duplicates, deduplicated")

    reading_level = raw.get("readingLevel")
    if reading_level not in READING_LEVELS:
        repairs.append("readingLevel is invalid, reset to intermediate")
        reading_level = "intermediate"

    age_group = raw.get("ageGroup")
    if age_group not in AGE_GROUPS:
        repairs.append("ageGroup is invalid, reset to adult")
        age_group = "adult"

    reading_goals = raw.get("readingGoals")
    if isinstance(reading_goals, bool) or not isinstance(reading_goals, int) or reading_goals < 0:
        repairs.append(f"readingGoals is not a non-negative integer, reset to {DEFAULT_READING_GOALS}")
        reading_goals = DEFAULT_READING_GOALS

    formats = _string_list(raw.get("preferredFormats"), "preferredFormats", ["physical"], repairs)
    known_formats = [item for item in formats if item in BOOK_FORMATS]
    if len(known_formats) != len(formats):
        repairs.append("preferredFormats contained unknown formats, dropped")
    if formats and not known_formats:
        known_formats = ["physical"]

    preferences = UserPreferences(
        favorite_genres=deduped,
        reading_level=reading_level,
        price_range=_price_range(raw.get("priceRange"), repairs),
        preferred_authors=_string_list(raw.get("preferredAuthors"), "preferredAuthors", [], repairs),
        reading_goals=reading_goals,
        preferred_formats=known_formats,
        age_group=age_group,
        languages=_string_list(raw.get("languages"), "languages", ["English"], repairs),
    )
    return preferences, repairs


def _string_list(value: Any, key: str, default: list[str], repairs: list[str]) -> list[str]:
    if not isinstance(value, list):
        repairs.append(f"{key} is not an array, reset to {default!r}")
        return list(default)
    items = [item for item in value if isinstance(item, str)]
    if len(items) != len(value):
        repairs.append(f"{key} contained non-string items, dropped")
    return items


def _numeric_map(value: Any, key: str, repairs: list[str]) -> dict[str, Any]:
    if not isinstance(value, dict):
        repairs.append(f"{key} is not an object, reset")
        return {}
    cleaned = {str(k): v for k, v in value.items() if is_number(v)}
    if len(cleaned) != len(value):
        repairs.append(f"{key} contained non-numeric values, dropped")
    return cleaned


def _price_range(value: Any, repairs: list[str]) -> PriceRange:
    if isinstance(value, dict):
        low, high = value.get("min"), value.get("max")
        if is_number(low) and is_number(high) and low <= high:
            return PriceRange(min=low, max=high)
    repairs.append("priceRange is invalid, reset to 0-1000")
    return PriceRange()
