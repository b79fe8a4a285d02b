from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from .models import UserBehavior, UserPreferences

GENERAL = "General"

AttributeMap = dict[str, str | int | float | bool]


@dataclass(frozen=True, slots=True)
class GenreRule:
    genre: str
    title_keywords: tuple[str, ...]
    author_keywords: tuple[str, ...] = ()

    def matches(self, title: str, author: str) -> bool:
        return any(word in title for word in self.title_keywords) or any(
            word in author for word in self.author_keywords
        )


# Evaluated in order; the first match wins.
GENRE_RULES: tuple[GenreRule, ...] = (
    GenreRule("War", ("war", "battle", "military", "brothers"), ("ambrose",)),
    GenreRule("Fantasy", ("fantasy", "magic", "dragon", "wizard", "potter", "rings")),
    GenreRule("Mystery", ("mystery", "detective", "murder", "sherlock"), ("christie", "doyle")),
)

GENRE_ATTRIBUTES: dict[str, AttributeMap] = {
    "war": {
        "war_enthusiast": True,
        "military_history_interest": True,
        "historical_content_preference": "military",
    },
    "fantasy": {
        "fantasy_lover": True,
        "fictional_content_preference": "fantasy",
    },
    "mystery": {
        "mystery_fan": True,
        "suspense_preference": True,
    },
}

AUDIENCE_GENRES = {
    "war_enthusiasts": "War",
    "war_books": "War",
    "war_audience": "War",
    "biography_readers": "Biography",
    "biography_books": "Biography",
    "biography_audience": "Biography",
    "fantasy_fans": "Fantasy",
    "fantasy_books": "Fantasy",
    "mystery_readers": "Mystery",
    "mystery_books": "Mystery",
    "thriller_fans": "Thrillers",
    "romance_readers": "Romance",
}

AUDIENCE_NAME_KEYWORDS = (
    ("war", "War"),
    ("biograph", "Biography"),
    ("fantasy", "Fantasy"),
    ("mystery", "Mystery"),
    ("thriller", "Thrillers"),
)


def detect_genre(title: str | None, author: str | None) -> str:
    title_lower = (title or "").lower()
    author_lower = (author or "").lower()
    for rule in GENRE_RULES:
        if rule.matches(title_lower, author_lower):
            return rule.genre
    return GENERAL


def build_attribute_bundle(genre: str, book_id: str | None = None) -> AttributeMap:
    key = genre.lower()
    bundle: AttributeMap = {
        "book_genre_interest": key,
        "last_viewed_genre": key,
        "reading_preference": key,
    }
    if book_id:
        bundle["last_viewed_book"] = book_id
    bundle.update(GENRE_ATTRIBUTES.get(key, {}))
    return bundle


@dataclass(frozen=True, slots=True)
class SegmentRule:
    segment: str
    reason: str
    matches: Callable[[UserBehavior, UserPreferences], bool]


SEGMENT_RULES: tuple[SegmentRule, ...] = (
    SegmentRule(
        "war_enthusiast",
        "War interest with repeated views",
        lambda b, p: "War" in p.favorite_genres and len(b.viewed_books) >= 2,
    ),
    SegmentRule(
        "genre_enthusiast",
        "Fantasy interest with a book view",
        lambda b, p: "Fantasy" in p.favorite_genres and len(b.viewed_books) >= 1,
    ),
    SegmentRule(
        "genre_enthusiast",
        "War or thriller interest",
        lambda b, p: "War" in p.favorite_genres or "Thrillers" in p.favorite_genres,
    ),
    SegmentRule(
        "genre_enthusiast",
        "Favorite genre with a book view",
        lambda b, p: len(p.favorite_genres) >= 1 and len(b.viewed_books) >= 1,
    ),
    SegmentRule("new_user", "No sessions yet", lambda b, p: b.session_count == 0),
    SegmentRule("high_value_customer", "More than 10 purchases", lambda b, p: len(b.purchase_history) > 10),
    SegmentRule("frequent_reader", "More than 5 purchases", lambda b, p: len(b.purchase_history) > 5),
    SegmentRule("genre_enthusiast", "More than 3 favorite genres", lambda b, p: len(p.favorite_genres) > 3),
    SegmentRule("price_conscious", "Budget under 300", lambda b, p: p.price_range.max < 300),
    SegmentRule(
        "at_risk_customer",
        "Heavy browsing without purchases",
        lambda b, p: len(b.viewed_books) > 20 and not b.purchase_history,
    ),
    SegmentRule("casual_browser", "Heavy browsing", lambda b, p: len(b.viewed_books) > 20),
    SegmentRule("returning_customer", "Has purchased", lambda b, p: len(b.purchase_history) > 0),
    SegmentRule("casual_browser", "Has viewed a book", lambda b, p: len(b.viewed_books) >= 1),
    SegmentRule("new_user", "No activity yet", lambda b, p: True),
)


def match_segment(behavior: UserBehavior, preferences: UserPreferences) -> SegmentRule:
    for rule in SEGMENT_RULES:
        if rule.matches(behavior, preferences):
            return rule
    return SEGMENT_RULES[-1]


def classify_segment(behavior: UserBehavior, preferences: UserPreferences) -> str:
    return match_segment(behavior, preferences).segment


def segment_attributes(
    segment: str, behavior: UserBehavior, preferences: UserPreferences, personalized: bool = True
) -> AttributeMap:
    attributes: AttributeMap = {
        "user_segment": segment,
        "personalization_level": "active" if personalized else "basic",
        "session_count": behavior.session_count,
        "viewed_books_count": len(behavior.viewed_books),
        "purchase_count": len(behavior.purchase_history),
    }
    if preferences.favorite_genres:
        attributes["favorite_genres"] = ",".join(preferences.favorite_genres)
        attributes["primary_genre"] = preferences.favorite_genres[0]
        if "War" in preferences.favorite_genres:
            attributes["war_interest"] = True
            attributes["military_history_fan"] = True

    attributes["price_preference"] = "premium" if preferences.price_range.max > 500 else "budget"
    attributes["max_price_range"] = preferences.price_range.max

    if behavior.viewed_books:
        attributes["last_viewed_book"] = behavior.viewed_books[-1]
        attributes["browsing_behavior"] = "active_browser" if len(behavior.viewed_books) > 10 else "casual_browser"
    return attributes


def genre_from_audiences(audiences: Iterable[Mapping[str, Any]]) -> str | None:
    """Preferred genre implied by the visitor's remote audience memberships."""
    for audience in audiences:
        slug = str(audience.get("slug") or "").lower()
        if slug in AUDIENCE_GENRES:
            return AUDIENCE_GENRES[slug]
        name = str(audience.get("name") or "").lower()
        for keyword, genre in AUDIENCE_NAME_KEYWORDS:
            if keyword in name:
                return genre
    return None
