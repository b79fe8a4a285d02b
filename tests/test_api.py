from typing import Any

from fastapi.testclient import TestClient

from bookhaven_personalize.api import create_app
from bookhaven_personalize.config import Settings
from bookhaven_personalize.models import DeliveryResult, DeliveryStatus


def _settings(**overrides: Any) -> Settings:
    values = {
        "personalize_project_uid": None,
        "personalize_events_url": None,
        "personalize_token": None,
        "personalize_events_project_id": None,
        "stack_api_key": "stack-key",
        "environment": "test",
        "email_automation_url": None,
        "smtp_user": None,
        "smtp_password": None,
    }
    values.update(overrides)
    return Settings(**values)


def _events_settings() -> Settings:
    return _settings(
        personalize_events_url="https://events.example.com",
        personalize_token="token",
        personalize_events_project_id="pid",
    )


class _StubHTTP:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.calls: list[tuple[str, str, Any]] = []

    def __call__(self, method: str, url: str, payload: Any, headers: dict[str, str], timeout: float) -> Any:
        self.calls.append((method, url, payload))
        if self.fail:
            raise OSError("connection refused")
        return {"accepted": True}


class _StubNotifier:
    def __init__(self) -> None:
        self.requests = []

    def send(self, request) -> DeliveryResult:
        self.requests.append(request)
        return DeliveryResult(DeliveryStatus.SENT, "Book request submitted", "smtp", {"messageId": "<m1>"})


def test_health() -> None:
    with TestClient(create_app(_settings())) as client:
        assert client.get("/health").json() == {"status": "ok"}


def test_audience_endpoint_scores_deeply_engaged_visitor() -> None:
    body = {
        "user_behavior": {
            "viewedBooks": [f"b{i}" for i in range(12)],
            "sessionCount": 3,
            "clickPatterns": {"a": 1, "b": 1, "c": 1, "d": 1},
        },
        "session_data": {"session_duration": 120_000},
        "engagement_metrics": {"pages_viewed": 12},
    }

    with TestClient(create_app(_settings())) as client:
        response = client.post("/api/lytics-audience", json=body)

    payload = response.json()
    assert response.status_code == 200
    assert payload["success"] is True
    assert payload["audience"]["slug"] == "deeply_engaged_users"
    assert payload["audience"]["engagement_score"] == 58
    assert payload["analysis"]["engagement_level"] == "deeply_engaged"
    assert payload["analysis"]["confidence"] == 0.9


def test_audience_endpoint_tolerates_empty_body() -> None:
    with TestClient(create_app(_settings())) as client:
        payload = client.post("/api/lytics-audience", json={}).json()

    assert payload["audience"]["slug"] == "first_time_visitors"
    assert "First visit" in payload["analysis"]["factors"]


def test_audience_description_lists_tiers() -> None:
    with TestClient(create_app(_settings())) as client:
        payload = client.get("/api/lytics-audience").json()

    assert [item["id"] for item in payload["audience_types"]] == [
        "deeply_engaged_users",
        "repeat_visitors",
        "first_time_visitors",
    ]


def test_personalize_event_is_sent_then_deduplicated() -> None:
    http = _StubHTTP()
    event = {"event_name": "book_viewed", "event_data": {"book_id": "blt1"}, "user_session": "s1"}

    with TestClient(create_app(_events_settings(), http_json=http)) as client:
        first = client.post("/api/personalize-event", json=event).json()
        second = client.post("/api/personalize-event", json=event).json()

    assert first["status"] == "sent"
    assert first["personalize_response"] == {"accepted": True}
    assert second["status"] == "suppressed"
    assert second["message"] == "Duplicate event ignored"
    assert len(http.calls) == 1
    method, url, payload = http.calls[0]
    assert url == "https://events.example.com/projects/pid/events"
    assert payload["properties"]["book_id"] == "blt1"
    assert payload["properties"]["environment"] == "test"


def test_personalize_event_without_configuration_is_logged_locally() -> None:
    http = _StubHTTP()

    with TestClient(create_app(_settings(), http_json=http)) as client:
        payload = client.post("/api/personalize-event", json={"event_name": "page_view"}).json()

    assert payload["success"] is True
    assert payload["status"] == "degraded"
    assert payload["message"] == "Event logged locally (Personalize not configured)"
    assert http.calls == []


def test_personalize_event_transport_failure_returns_502() -> None:
    with TestClient(create_app(_events_settings(), http_json=_StubHTTP(fail=True))) as client:
        response = client.post("/api/personalize-event", json={"event_name": "book_purchased"})

    assert response.status_code == 502
    assert response.json()["success"] is False
    assert response.json()["status"] == "failed_soft"


def test_book_genre_endpoint() -> None:
    with TestClient(create_app(_settings())) as client:
        payload = client.post(
            "/api/book-genre", json={"title": "Band of Brothers", "author": "Stephen Ambrose", "book_id": "blt1"}
        ).json()

    assert payload["genre"] == "War"
    assert payload["attributes"]["war_enthusiast"] is True
    assert payload["attributes"]["last_viewed_book"] == "blt1"


def test_recommendations_endpoint() -> None:
    books = [{"uid": "a", "book_type": "Fantasy"}, {"uid": "b", "book_type": "War"}]

    with TestClient(create_app(_settings())) as client:
        payload = client.post("/api/recommendations", json={"books": books, "attributes": {"War": True}}).json()

    assert payload == {"count": 1, "books": [{"uid": "b", "book_type": "War"}]}


def test_book_request_requires_email_and_title() -> None:
    with TestClient(create_app(_settings(), notifier=_StubNotifier())) as client:
        response = client.post("/api/send-book-request-email", json={"bookTitle": "Dune"})

    assert response.status_code == 400
    assert response.json()["detail"] == "Customer email and book title are required!"


def test_book_request_delegates_to_notifier() -> None:
    notifier = _StubNotifier()

    with TestClient(create_app(_settings(), notifier=notifier)) as client:
        payload = client.post(
            "/api/send-book-request-email",
            json={"customerEmail": "reader@example.com", "bookTitle": "Dune", "customerName": "Reader"},
        ).json()

    assert payload["success"] is True
    assert payload["status"] == "sent"
    assert payload["provider"] == "smtp"
    assert notifier.requests[0].customer_name == "Reader"
    assert notifier.requests[0].quantity == "1"


def test_page_requests_receive_personalize_cookie_when_configured() -> None:
    http = _StubHTTP()

    with TestClient(create_app(_settings(personalize_project_uid="proj-1"), http_json=http)) as client:
        response = client.get("/health")

    assert response.headers["cache-control"] == "no-store"
    assert "cs-personalize-user-uid" in response.cookies
    assert http.calls[0][0] == "GET"
