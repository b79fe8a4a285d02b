from __future__ import annotations

from contextlib import asynccontextmanager
import logging
from typing import Any, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .bridge import HttpJSON, PersonalizeBridge, send_project_event
from .classification import build_attribute_bundle, detect_genre
from .config import Settings, get_settings
from .dedup import EventDeduplicator
from .edge import PersonalizeEdgeMiddleware
from .models import BookRequest, DeliveryStatus, utcnow
from .notifications import BookRequestNotifier
from .personalization import recommend
from .scoring import TIER_RULES, evaluate, inputs_from_payload

logger = logging.getLogger(__name__)

TIER_CRITERIA = {
    "deeply_engaged_users": "Multiple visits (3+), high book exploration (10+), strong engagement",
    "repeat_visitors": "Return visits (2+) or moderate exploration (5+ books)",
    "first_time_visitors": "New users or limited engagement",
}


class AudienceRequest(BaseModel):
    user_behavior: Optional[dict[str, Any]] = None
    session_data: Optional[dict[str, Any]] = None
    engagement_metrics: Optional[dict[str, Any]] = None


class PersonalizeEventRequest(BaseModel):
    event_name: str
    event_data: dict[str, Any] = Field(default_factory=dict)
    user_session: Optional[str] = None
    user_agent: Optional[str] = None
    timestamp: Optional[str] = None
    page_url: Optional[str] = None
    user_preferences: Optional[dict[str, Any]] = None
    user_segment: Optional[str] = None


class BookGenreRequest(BaseModel):
    title: str = ""
    author: str = ""
    book_id: Optional[str] = None


class RecommendationRequest(BaseModel):
    books: list[dict[str, Any]] = Field(default_factory=list)
    attributes: dict[str, Any] = Field(default_factory=dict)


class BookRequestPayload(BaseModel):
    customerEmail: Optional[str] = None
    bookTitle: Optional[str] = None
    customerName: Optional[str] = None
    author: Optional[str] = None
    isbn: Optional[str] = None
    quantity: Optional[str] = None
    phone: Optional[str] = None
    additionalNotes: Optional[str] = None


def create_app(
    settings: Settings | None = None,
    bridge: PersonalizeBridge | None = None,
    deduplicator: EventDeduplicator | None = None,
    notifier: BookRequestNotifier | None = None,
    http_json: HttpJSON | None = None,
) -> FastAPI:
    settings = settings or get_settings()
    bridge = bridge or PersonalizeBridge(settings, http_json=http_json)
    deduplicator = deduplicator or EventDeduplicator()
    notifier = notifier or BookRequestNotifier(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        deduplicator.start()
        try:
            yield
        finally:
            deduplicator.stop()

    app = FastAPI(title="BookHaven Personalize", lifespan=lifespan)
    app.state.settings = settings
    app.state.bridge = bridge
    app.state.deduplicator = deduplicator
    app.state.notifier = notifier
    app.state.http_json = http_json
    app.add_middleware(PersonalizeEdgeMiddleware, bridge=bridge)

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/api/lytics-audience")
    def describe_audiences() -> dict[str, Any]:
        return {
            "success": True,
            "message": "Lytics Audience Detection API",
            "endpoints": {"POST": "Analyze user behavior and determine audience segment"},
            "audience_types": [
                {"id": rule.slug, "name": rule.name, "criteria": TIER_CRITERIA[rule.slug]} for rule in TIER_RULES
            ],
        }

    @app.post("/api/lytics-audience")
    def determine_audience(body: AudienceRequest) -> dict[str, Any]:
        inputs = inputs_from_payload(body.user_behavior, body.session_data, body.engagement_metrics)
        audience = evaluate(inputs)
        logger.info("Determined audience %s (score %.1f)", audience.slug, audience.engagement_score)
        return {
            "success": True,
            "audience": audience.to_dict(),
            "timestamp": utcnow().isoformat(),
            "analysis": {
                "engagement_level": audience.engagement_level.value,
                "confidence": audience.confidence,
                "factors": list(audience.factors),
            },
        }

    @app.post("/api/personalize-event")
    def personalize_event(body: PersonalizeEventRequest, request: Request):
        state = request.app.state
        book_id = body.event_data.get("book_id")
        response = {"event": body.event_name, "data": body.event_data}

        if state.deduplicator.should_suppress(body.event_name, book_id, body.user_session):
            return {
                "success": True,
                "status": DeliveryStatus.SUPPRESSED.value,
                "message": "Duplicate event ignored",
                **response,
            }

        payload = {
            "event": body.event_name,
            "properties": {
                **body.event_data,
                "user_session": body.user_session,
                "user_agent": body.user_agent,
                "timestamp": body.timestamp,
                "page_url": body.page_url,
                "user_segment": body.user_segment,
                "stack_api_key": state.settings.stack_api_key,
                "environment": state.settings.environment,
            },
            "user_id": body.user_session,
            "session_id": body.user_session,
        }

        if not state.settings.personalize_events_configured:
            logger.warning("Personalize events not configured, logging %s locally", body.event_name)
            logger.info("Unsent Personalize event", extra={"data": payload})
            return {
                "success": True,
                "status": DeliveryStatus.DEGRADED.value,
                "message": "Event logged locally (Personalize not configured)",
                **response,
            }

        try:
            result = send_project_event(state.settings, payload, state.http_json)
        except (OSError, ValueError) as exc:
            logger.error("Personalize event %s failed: %s", body.event_name, exc)
            return JSONResponse(
                status_code=502,
                content={
                    "success": False,
                    "status": DeliveryStatus.FAILED_SOFT.value,
                    "error": "Failed to send event to Contentstack Personalize",
                    "details": str(exc),
                },
            )

        return {
            "success": True,
            "status": DeliveryStatus.SENT.value,
            "message": f"{body.event_name} event sent to Contentstack Personalize",
            "personalize_response": result,
            **response,
        }

    @app.post("/api/book-genre")
    def book_genre(body: BookGenreRequest) -> dict[str, Any]:
        genre = detect_genre(body.title, body.author)
        return {"genre": genre, "attributes": build_attribute_bundle(genre, body.book_id)}

    @app.post("/api/recommendations")
    def recommendations(body: RecommendationRequest) -> dict[str, Any]:
        books = recommend(body.books, body.attributes)
        return {"count": len(books), "books": books}

    @app.post("/api/send-book-request-email")
    def send_book_request_email(body: BookRequestPayload, request: Request) -> dict[str, Any]:
        if not body.customerEmail or not body.bookTitle:
            raise HTTPException(status_code=400, detail="Customer email and book title are required!")

        book_request = BookRequest(
            customer_email=body.customerEmail,
            book_title=body.bookTitle,
            customer_name=body.customerName or "",
            author=body.author or "",
            isbn=body.isbn or "",
            quantity=body.quantity or "1",
            phone=body.phone or "",
            additional_notes=body.additionalNotes or "",
        )
        result = request.app.state.notifier.send(book_request)
        return {
            "success": True,
            "status": result.status.value,
            "message": result.message,
            "provider": result.provider,
            "data": result.detail,
        }

    return app
