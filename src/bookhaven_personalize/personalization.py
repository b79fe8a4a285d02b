from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
import logging
from typing import Any

from .bridge import PersonalizeBridge
from .classification import GENERAL, build_attribute_bundle, classify_segment, detect_genre, segment_attributes
from .dedup import EventDeduplicator
from .models import DeliveryResult, PriceRange, UserBehavior, UserPreferences, utcnow
from .normalization import to_number
from .storage import PersonalizationStorage

logger = logging.getLogger(__name__)

REPEAT_ACTION_WINDOW_MS = 5_000
MAX_FAVORITE_GENRES = 5
MAX_SEARCH_HISTORY = 20
MAX_RECOMMENDATIONS = 6
BUDGET_PRICE_CEILING = 400
LOCAL_SESSION = "local"

RECOMMENDATION_GENRES = ("Fantasy", "War", "Romance", "Mystery", "Science Fiction")


@dataclass(slots=True)
class TrackOutcome:
    suppressed: bool
    segment: str
    deliveries: list[DeliveryResult] = field(default_factory=list)


class PersonalizationTracker:
    """Applies storefront actions to the visitor's stored behavior and preferences."""

    def __init__(self, storage: PersonalizationStorage, bridge: PersonalizeBridge | None = None) -> None:
        self.storage = storage
        self.bridge = bridge
        self.segment = "new_user"
        self.personalized = storage.backend.get(storage.preferences.key) is not None
        self._recent = EventDeduplicator(window_ms=REPEAT_ACTION_WINDOW_MS, retention_ms=REPEAT_ACTION_WINDOW_MS)

    def track(self, action: str, data: Mapping[str, Any] | None = None, now: float | None = None) -> TrackOutcome:
        data = data or {}
        self._recent.sweep(now)
        subject = data.get("bookId") or data.get("query")
        if subject and self._recent.should_suppress(action, str(subject), LOCAL_SESSION, now):
            logger.info("Blocked repeated %s for %s", action, subject)
            return TrackOutcome(suppressed=True, segment=self.segment)

        behavior = self.storage.behavior.load()
        preferences = self.storage.preferences.load()
        handle = self.bridge.get_instance() if self.bridge else None
        deliveries: list[DeliveryResult] = []

        if action == "view_book":
            book_id = str(data.get("bookId") or "")
            genre = data.get("genre") or detect_genre(data.get("title"), data.get("author"))
            if book_id and book_id not in behavior.viewed_books:
                behavior.viewed_books.append(book_id)
            behavior.viewed_genres.append(genre)
            if genre != GENERAL and genre not in preferences.favorite_genres:
                logger.info("Learned favorite genre %s", genre)
                preferences.favorite_genres = (preferences.favorite_genres + [genre])[:MAX_FAVORITE_GENRES]
            self.personalized = True
            if self.bridge:
                deliveries.append(self.bridge.push_attributes(handle, build_attribute_bundle(genre, book_id or None)))
                deliveries.append(self.bridge.trigger_event(handle, "book_viewed"))
        elif action == "search":
            query = str(data.get("query") or "")
            behavior.search_history = (behavior.search_history + [query])[-MAX_SEARCH_HISTORY:]
        elif action == "purchase":
            behavior.purchase_history.append(str(data.get("bookId") or ""))
            if self.bridge:
                deliveries.append(self.bridge.trigger_event(handle, "book_purchased"))
        elif action == "time_on_page":
            page = str(data.get("page") or "")
            behavior.time_on_page[page] = behavior.time_on_page.get(page, 0) + to_number(data.get("time"))
        elif action == "click":
            element = str(data.get("element") or "")
            behavior.click_patterns[element] = behavior.click_patterns.get(element, 0) + 1
        elif action == "session_start":
            behavior.session_count += 1
            behavior.last_visit = utcnow().isoformat()
        else:
            logger.debug("Ignoring untracked action %s", action)

        self.storage.behavior.save(behavior)
        self.storage.preferences.save(preferences)
        deliveries.extend(self._refresh_segment(behavior, preferences, handle))
        return TrackOutcome(suppressed=False, segment=self.segment, deliveries=deliveries)

    def update_preferences(self, **changes: Any) -> UserPreferences:
        preferences = self.storage.preferences.load()
        for name, value in changes.items():
            if name == "price_range" and isinstance(value, Mapping):
                value = PriceRange(min=value.get("min", 0), max=value.get("max", 1000))
            setattr(preferences, name, value)
        self.storage.preferences.save(preferences)
        # Round-trip through load so invalid values are repaired immediately.
        preferences = self.storage.preferences.load()
        self.personalized = True
        handle = self.bridge.get_instance() if self.bridge else None
        self._refresh_segment(self.storage.behavior.load(), preferences, handle)
        return preferences

    def _refresh_segment(self, behavior: UserBehavior, preferences: UserPreferences, handle) -> list[DeliveryResult]:
        new_segment = classify_segment(behavior, preferences)
        if new_segment == self.segment:
            return []
        logger.info("Segment changed %s -> %s", self.segment, new_segment)
        self.segment = new_segment
        if not self.bridge:
            return []
        attributes = segment_attributes(new_segment, behavior, preferences, self.personalized)
        return [
            self.bridge.push_attributes(handle, attributes),
            self.bridge.trigger_event(handle, "segment_changed"),
        ]


def book_genre(book: Mapping[str, Any]) -> str:
    return str(book.get("book_type") or book.get("genre") or "")


def relevance_score(book: Mapping[str, Any], preferences: UserPreferences, behavior: UserBehavior) -> float:
    score = 0.0
    if book_genre(book) in preferences.favorite_genres:
        score += 0.4
    if book.get("author") in preferences.preferred_authors:
        score += 0.3
    price = book.get("price")
    if price is not None and preferences.price_range.min <= to_number(price) <= preferences.price_range.max:
        score += 0.2
    if book.get("uid") in behavior.viewed_books:
        score += 0.05
    title = str(book.get("title") or "").lower()
    if any(query and query.lower() in title for query in behavior.search_history):
        score += 0.05
    return round(score, 4)


def recommend(books: Sequence[Mapping[str, Any]], attributes: Mapping[str, Any]) -> list[Mapping[str, Any]]:
    """Pick up to six books matching the genre flags set on the visitor's attributes."""
    recommendations = list(books)
    interests = [genre for genre in RECOMMENDATION_GENRES if attributes.get(genre) is True]

    if len(interests) == 1:
        focus = interests[0].lower()
        matching = [book for book in recommendations if book_genre(book).lower() == focus]
        if matching:
            recommendations = matching[:MAX_RECOMMENDATIONS]
        else:
            logger.info("No %s books found, keeping mixed recommendations", interests[0])
    elif interests:
        per_genre = max(2, MAX_RECOMMENDATIONS // len(interests))
        by_genre: dict[str, list[Mapping[str, Any]]] = {genre: [] for genre in interests}
        for book in recommendations:
            for genre in interests:
                if book_genre(book).lower() == genre.lower():
                    by_genre[genre].append(book)
                    break
        recommendations = [book for genre in interests for book in by_genre[genre][:per_genre]]

    if attributes.get("price_sensitivity") == "high" or attributes.get("budget_preference") == "budget":
        affordable = [
            book
            for book in recommendations
            if book.get("price") and to_number(book.get("price")) <= BUDGET_PRICE_CEILING
        ]
        recommendations = sorted(affordable, key=lambda book: to_number(book.get("price")))

    return recommendations[:MAX_RECOMMENDATIONS]
