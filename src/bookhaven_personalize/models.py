from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

READING_LEVELS = ("beginner", "intermediate", "advanced")
AGE_GROUPS = ("kids", "teen", "adult")
BOOK_FORMATS = ("physical", "ebook", "audiobook")


class EngagementLevel(str, Enum):
    FIRST_TIME = "first_time"
    REPEAT = "repeat"
    DEEPLY_ENGAGED = "deeply_engaged"


class DeliveryStatus(str, Enum):
    SENT = "sent"
    SUPPRESSED = "suppressed"
    DEGRADED = "degraded"
    FAILED_SOFT = "failed_soft"


@dataclass(slots=True)
class UserBehavior:
    viewed_books: list[str] = field(default_factory=list)
    viewed_genres: list[str] = field(default_factory=list)
    search_history: list[str] = field(default_factory=list)
    purchase_history: list[str] = field(default_factory=list)
    time_on_page: dict[str, float] = field(default_factory=dict)
    click_patterns: dict[str, int] = field(default_factory=dict)
    session_count: int = 0
    last_visit: str = field(default_factory=lambda: utcnow().isoformat())

    def to_record(self) -> dict[str, Any]:
        return {
            "viewedBooks": list(self.viewed_books),
            "viewedGenres": list(self.viewed_genres),
            "searchHistory": list(self.search_history),
            "purchaseHistory": list(self.purchase_history),
            "timeOnPage": dict(self.time_on_page),
            "clickPatterns": dict(self.click_patterns),
            "sessionCount": self.session_count,
            "lastVisit": self.last_visit,
        }


@dataclass(slots=True)
class PriceRange:
    min: float = 0
    max: float = 1000


@dataclass(slots=True)
class UserPreferences:
    favorite_genres: list[str] = field(default_factory=list)
    reading_level: str = "intermediate"
    price_range: PriceRange = field(default_factory=PriceRange)
    preferred_authors: list[str] = field(default_factory=list)
    reading_goals: int = 2
    preferred_formats: list[str] = field(default_factory=lambda: ["physical"])
    age_group: str = "adult"
    languages: list[str] = field(default_factory=lambda: ["English"])

    def to_record(self) -> dict[str, Any]:
        return {
            "favoriteGenres": list(self.favorite_genres),
            "readingLevel": self.reading_level,
            "priceRange": {"min": self.price_range.min, "max": self.price_range.max},
            "preferredAuthors": list(self.preferred_authors),
            "readingGoals": self.reading_goals,
            "preferredFormats": list(self.preferred_formats),
            "ageGroup": self.age_group,
            "languages": list(self.languages),
        }


@dataclass(slots=True)
class SessionSignals:
    """Per-evaluation inputs that are not part of the persisted behavior record."""

    session_duration_ms: float = 0.0
    pages_viewed: float | None = None


@dataclass(slots=True)
class AudienceResult:
    id: str
    slug: str
    name: str
    engagement_level: EngagementLevel
    confidence: float
    factors: list[str]
    engagement_score: float
    metrics: dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "slug": self.slug,
            "name": self.name,
            "engagement_level": self.engagement_level.value,
            "confidence": self.confidence,
            "factors": list(self.factors),
            "engagement_score": self.engagement_score,
            "metrics": dict(self.metrics),
        }


@dataclass(slots=True)
class DeliveryResult:
    status: DeliveryStatus
    message: str
    provider: str = "none"
    detail: dict[str, Any] = field(default_factory=dict)

    @property
    def delivered(self) -> bool:
        return self.status is DeliveryStatus.SENT


@dataclass(slots=True)
class BookRequest:
    customer_email: str
    book_title: str
    customer_name: str = ""
    author: str = ""
    isbn: str = ""
    quantity: str = "1"
    phone: str = ""
    additional_notes: str = ""

    @property
    def display_name(self) -> str:
        return self.customer_name or self.customer_email.split("@")[0]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
