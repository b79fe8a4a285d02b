from __future__ import annotations

import argparse
import json
from pathlib import Path

import uvicorn

from .api import create_app
from .classification import build_attribute_bundle, detect_genre
from .config import get_settings, load_dotenv
from .log import setup_logging
from .models import SessionSignals, utcnow
from .normalization import normalize_behavior
from .scoring import score_behavior
from .storage import JsonFileBackend, PersonalizationStorage


def _sample_behavior() -> dict:
    return {
        "viewedBooks": [f"book-{index}" for index in range(12)],
        "viewedGenres": ["War", "War", "Fantasy"],
        "searchHistory": ["band of brothers"],
        "purchaseHistory": [],
        "timeOnPage": {"/books": 90_000},
        "clickPatterns": {"hero-cta": 2, "genre-war": 1, "add-to-cart": 1, "search": 3},
        "sessionCount": 3,
        "lastVisit": "2026-02-01T12:00:00+00:00",
    }


def _storage(path: str | None) -> PersonalizationStorage:
    return PersonalizationStorage(JsonFileBackend(path or get_settings().storage_path))


def _cmd_score(args: argparse.Namespace) -> dict:
    storage = _storage(args.storage)
    if args.demo:
        storage.behavior.save(normalize_behavior(_sample_behavior())[0])
    behavior = storage.behavior.load()
    audience = score_behavior(
        behavior,
        SessionSignals(session_duration_ms=args.duration_ms, pages_viewed=args.pages_viewed),
    )
    return {"generated_at": utcnow().isoformat(), "audience": audience.to_dict()}


def _cmd_genre(args: argparse.Namespace) -> dict:
    genre = detect_genre(args.title, args.author)
    return {"genre": genre, "attributes": build_attribute_bundle(genre, args.book_id)}


def _cmd_migrate(args: argparse.Namespace) -> dict:
    storage = _storage(args.storage)
    if args.clear:
        storage.clear()
        return {"cleared": True}
    report = storage.migrate()
    return {
        "skipped": report.skipped,
        "behavior_migrated": report.behavior_migrated,
        "preferences_migrated": report.preferences_migrated,
        "repairs": report.repairs,
        "storage": storage.debug_info(),
    }


def _cmd_serve(args: argparse.Namespace) -> None:
    uvicorn.run(create_app(), host=args.host, port=args.port, log_config=None)


def main(argv: list[str] | None = None) -> None:
    load_dotenv()
    settings = get_settings()
    setup_logging(Path(settings.log_dir) if settings.log_dir else None, settings.log_level)

    parser = argparse.ArgumentParser(description="BookHaven personalization toolkit")
    sub = parser.add_subparsers(dest="command", required=True)

    score = sub.add_parser("score", help="Score the stored visitor behavior into an audience tier.")
    score.add_argument("--storage", help="Path to the JSON storage file.")
    score.add_argument("--duration-ms", type=float, default=0.0, help="Current session duration in milliseconds.")
    score.add_argument("--pages-viewed", type=float, default=None, help="Pages viewed this session.")
    score.add_argument("--demo", action="store_true", help="Seed the storage with sample behavior first.")

    genre = sub.add_parser("genre", help="Detect a book's genre and show its attribute bundle.")
    genre.add_argument("--title", required=True)
    genre.add_argument("--author", default="")
    genre.add_argument("--book-id", default=None)

    migrate = sub.add_parser("migrate", help="Validate and repair stored personalization data.")
    migrate.add_argument("--storage", help="Path to the JSON storage file.")
    migrate.add_argument("--clear", action="store_true", help="Remove all stored personalization data.")

    serve = sub.add_parser("serve", help="Run the personalization API.")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)

    args = parser.parse_args(argv)
    if args.command == "serve":
        _cmd_serve(args)
        return

    handlers = {"score": _cmd_score, "genre": _cmd_genre, "migrate": _cmd_migrate}
    print(json.dumps(handlers[args.command](args), indent=2))


if __name__ == "__main__":
    main()
