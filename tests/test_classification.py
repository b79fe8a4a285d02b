from bookhaven_personalize.classification import (
    build_attribute_bundle,
    classify_segment,
    detect_genre,
    genre_from_audiences,
    segment_attributes,
)
from bookhaven_personalize.models import PriceRange, UserBehavior, UserPreferences


def test_detect_genre_by_title_and_author() -> None:
    assert detect_genre("Band of Brothers", "Stephen Ambrose") == "War"
    assert detect_genre("The Hobbit: Dragon Edition", "Tolkien") == "Fantasy"
    assert detect_genre("Evil Under the Sun", "Agatha Christie") == "Mystery"
    assert detect_genre("The Great Gatsby", "F. Scott Fitzgerald") == "General"


def test_detect_genre_prefers_war_over_fantasy() -> None:
    assert detect_genre("The Art of War and Magic", "") == "War"


def test_detect_genre_tolerates_missing_fields() -> None:
    assert detect_genre(None, None) == "General"


def test_war_bundle_contains_interest_flags() -> None:
    bundle = build_attribute_bundle("War", "blt123")

    assert bundle == {
        "book_genre_interest": "war",
        "last_viewed_genre": "war",
        "reading_preference": "war",
        "last_viewed_book": "blt123",
        "war_enthusiast": True,
        "military_history_interest": True,
        "historical_content_preference": "military",
    }


def test_general_bundle_has_only_base_keys() -> None:
    bundle = build_attribute_bundle("General")

    assert set(bundle) == {"book_genre_interest", "last_viewed_genre", "reading_preference"}


def test_segment_rules_follow_priority() -> None:
    fresh = UserBehavior()
    assert classify_segment(fresh, UserPreferences()) == "new_user"

    viewer = UserBehavior(viewed_books=["a", "b"], session_count=1)
    assert classify_segment(viewer, UserPreferences(favorite_genres=["War"])) == "war_enthusiast"
    assert classify_segment(viewer, UserPreferences()) == "casual_browser"

    buyer = UserBehavior(purchase_history=[str(i) for i in range(7)], session_count=4)
    assert classify_segment(buyer, UserPreferences()) == "frequent_reader"

    thrifty = UserBehavior(session_count=2)
    assert classify_segment(thrifty, UserPreferences(price_range=PriceRange(0, 200))) == "price_conscious"


def test_segment_attributes_describe_visitor() -> None:
    behavior = UserBehavior(viewed_books=[f"b{i}" for i in range(11)], session_count=3)
    prefs = UserPreferences(favorite_genres=["War", "History"])

    attributes = segment_attributes("war_enthusiast", behavior, prefs)

    assert attributes["user_segment"] == "war_enthusiast"
    assert attributes["personalization_level"] == "active"
    assert attributes["favorite_genres"] == "War,History"
    assert attributes["primary_genre"] == "War"
    assert attributes["war_interest"] is True
    assert attributes["price_preference"] == "premium"
    assert attributes["last_viewed_book"] == "b10"
    assert attributes["browsing_behavior"] == "active_browser"


def test_genre_from_audiences_uses_slug_then_name() -> None:
    assert genre_from_audiences([{"slug": "fantasy_fans"}]) == "Fantasy"
    assert genre_from_audiences([{"slug": "unknown", "name": "Thriller Lovers"}]) == "Thrillers"
    assert genre_from_audiences([{"slug": "unknown", "name": "Everyone"}]) is None
