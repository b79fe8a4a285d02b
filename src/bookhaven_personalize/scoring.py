from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
import math

from .models import AudienceResult, EngagementLevel, SessionSignals, UserBehavior
from .normalization import to_number

# Policy constants. Kept as-is for compatibility with audiences already
# configured on the personalization service.
VIEWED_BOOK_WEIGHT = 2.0
SESSION_WEIGHT = 5.0
CLICK_PATTERN_WEIGHT = 1.5
MINUTE_WEIGHT = 0.5
PAGE_WEIGHT = 1.0

DEEPLY_ENGAGED_MIN_SESSIONS = 3
DEEPLY_ENGAGED_MIN_BOOKS = 10
DEEPLY_ENGAGED_MIN_SCORE = 25.0
REPEAT_MIN_SESSIONS = 2
REPEAT_MIN_BOOKS = 5
REPEAT_MIN_SCORE = 10.0

MS_PER_MINUTE = 60_000


@dataclass(slots=True)
class EngagementInputs:
    viewed_books: float = 0
    session_count: float = 0
    click_patterns: float = 0
    session_duration_ms: float = 0
    pages_viewed: float = 0


@dataclass(frozen=True, slots=True)
class TierRule:
    level: EngagementLevel
    slug: str
    name: str
    confidence: float
    matches: Callable[[EngagementInputs, float], bool]
    factors: Callable[[EngagementInputs], list[str]]


def _deeply_engaged_factors(inputs: EngagementInputs) -> list[str]:
    return [
        "Multiple return visits (3+)",
        "High book exploration (10+ books)",
        "Strong engagement patterns",
    ]


def _repeat_factors(inputs: EngagementInputs) -> list[str]:
    return [
        "Return visitor" if inputs.session_count >= REPEAT_MIN_SESSIONS else "Single session explorer",
        f"Viewed {_count(inputs.viewed_books)} books",
        "Moderate engagement",
    ]


def _first_time_factors(inputs: EngagementInputs) -> list[str]:
    factors = ["New or low-engagement user", f"Limited exploration ({_count(inputs.viewed_books)} books)"]
    if inputs.session_count == 0:
        factors.append("First visit")
    return factors


TIER_RULES: tuple[TierRule, ...] = (
    TierRule(
        level=EngagementLevel.DEEPLY_ENGAGED,
        slug="deeply_engaged_users",
        name="Deeply Engaged Users",
        confidence=0.9,
        matches=lambda i, score: (
            i.session_count >= DEEPLY_ENGAGED_MIN_SESSIONS
            and i.viewed_books >= DEEPLY_ENGAGED_MIN_BOOKS
            and score >= DEEPLY_ENGAGED_MIN_SCORE
        ),
        factors=_deeply_engaged_factors,
    ),
    TierRule(
        level=EngagementLevel.REPEAT,
        slug="repeat_visitors",
        name="Repeat Visitors",
        confidence=0.8,
        matches=lambda i, score: (
            (i.session_count >= REPEAT_MIN_SESSIONS or i.viewed_books >= REPEAT_MIN_BOOKS)
            and score >= REPEAT_MIN_SCORE
        ),
        factors=_repeat_factors,
    ),
    TierRule(
        level=EngagementLevel.FIRST_TIME,
        slug="first_time_visitors",
        name="First-time Visitors",
        confidence=0.7,
        matches=lambda i, score: True,
        factors=_first_time_factors,
    ),
)


def calculate_engagement_score(inputs: EngagementInputs) -> float:
    return (
        inputs.viewed_books * VIEWED_BOOK_WEIGHT
        + inputs.session_count * SESSION_WEIGHT
        + inputs.click_patterns * CLICK_PATTERN_WEIGHT
        + (inputs.session_duration_ms / MS_PER_MINUTE) * MINUTE_WEIGHT
        + inputs.pages_viewed * PAGE_WEIGHT
    )


def match_tier(inputs: EngagementInputs, score: float) -> TierRule:
    for rule in TIER_RULES:
        if rule.matches(inputs, score):
            return rule
    return TIER_RULES[-1]


def evaluate(inputs: EngagementInputs) -> AudienceResult:
    score = calculate_engagement_score(inputs)
    rule = match_tier(inputs, score)
    return AudienceResult(
        id=rule.slug,
        slug=rule.slug,
        name=rule.name,
        engagement_level=rule.level,
        confidence=rule.confidence,
        factors=rule.factors(inputs),
        engagement_score=score,
        metrics={
            "viewed_books": inputs.viewed_books,
            "session_count": inputs.session_count,
            "click_patterns": inputs.click_patterns,
            "time_on_site_minutes": math.floor(inputs.session_duration_ms / MS_PER_MINUTE + 0.5),
            "pages_viewed": inputs.pages_viewed,
        },
    )


def score_behavior(behavior: UserBehavior, session: SessionSignals | None = None) -> AudienceResult:
    session = session or SessionSignals()
    viewed = len(behavior.viewed_books)
    pages = session.pages_viewed
    return evaluate(
        EngagementInputs(
            viewed_books=viewed,
            session_count=behavior.session_count,
            click_patterns=len(behavior.click_patterns),
            session_duration_ms=to_number(session.session_duration_ms),
            pages_viewed=viewed if pages is None else to_number(pages),
        )
    )


def inputs_from_payload(
    user_behavior: object, session_data: object = None, engagement_metrics: object = None
) -> EngagementInputs:
    """Build scorer inputs from loosely-shaped request payloads.

    Anything missing or of the wrong type counts as zero, and an absent or zero
    page count falls back to the viewed-book count.
    """
    behavior = user_behavior if isinstance(user_behavior, dict) else {}
    session = session_data if isinstance(session_data, dict) else {}
    metrics = engagement_metrics if isinstance(engagement_metrics, dict) else {}

    viewed_books = behavior.get("viewedBooks")
    clicks = behavior.get("clickPatterns")
    viewed = len(viewed_books) if isinstance(viewed_books, list) else 0
    pages = to_number(metrics.get("pages_viewed"))
    return EngagementInputs(
        viewed_books=viewed,
        session_count=to_number(behavior.get("sessionCount")),
        click_patterns=len(clicks) if isinstance(clicks, dict) else 0,
        session_duration_ms=to_number(session.get("session_duration")),
        pages_viewed=pages or viewed,
    )


def _count(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else str(value)
