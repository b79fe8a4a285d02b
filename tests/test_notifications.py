import smtplib
from typing import Any

from bookhaven_personalize.config import Settings
from bookhaven_personalize.models import BookRequest, DeliveryStatus
from bookhaven_personalize.notifications import BookRequestNotifier, render_confirmation


def _settings(**overrides: Any) -> Settings:
    values = {
        "email_automation_url": None,
        "smtp_host": "smtp.example.com",
        "smtp_port": 587,
        "smtp_user": None,
        "smtp_password": None,
        "request_timeout_seconds": 2.0,
    }
    values.update(overrides)
    return Settings(**values)


def _request() -> BookRequest:
    return BookRequest(customer_email="reader@example.com", book_title="Band of Brothers", author="Ambrose")


class _StubSMTP:
    instances: list["_StubSMTP"] = []

    def __init__(self, host: str, port: int, timeout: float = 0) -> None:
        self.host = host
        self.port = port
        self.sent: list[tuple[str, list[str], str]] = []
        self.logged_in: tuple[str, str] | None = None
        _StubSMTP.instances.append(self)

    def __enter__(self) -> "_StubSMTP":
        return self

    def __exit__(self, *exc: object) -> None:
        return None

    def ehlo(self) -> None:
        return None

    def starttls(self) -> None:
        return None

    def login(self, user: str, password: str) -> None:
        self.logged_in = (user, password)

    def sendmail(self, sender: str, recipients: list[str], message: str) -> None:
        self.sent.append((sender, recipients, message))


class _FailingSMTP(_StubSMTP):
    def login(self, user: str, password: str) -> None:
        raise smtplib.SMTPAuthenticationError(535, b"bad credentials")


def test_render_confirmation_escapes_and_greets() -> None:
    request = BookRequest(customer_email="amy@example.com", book_title="<Dune>", additional_notes="soon please")

    body = render_confirmation(request)

    assert "Hi amy," in body
    assert "&lt;Dune&gt;" in body
    assert "soon please" in body
    assert "<strong>ISBN:</strong>" not in body


def test_automation_endpoint_is_used_first() -> None:
    posted: list[str] = []

    def http_post(url: str, timeout: float) -> tuple[int, str]:
        posted.append(url)
        return 200, "queued"

    notifier = BookRequestNotifier(
        _settings(email_automation_url="https://automate.example.com/hook", smtp_user="u", smtp_password="p"),
        http_post=http_post,
        smtp_factory=_StubSMTP,
    )

    result = notifier.send(_request())

    assert result.status is DeliveryStatus.SENT
    assert result.provider == "contentstack"
    assert result.detail["automationResponse"] == "queued"
    assert posted[0].startswith("https://automate.example.com/hook?to=reader%40example.com")


def test_automation_failure_falls_back_to_smtp() -> None:
    _StubSMTP.instances.clear()

    def http_post(url: str, timeout: float) -> tuple[int, str]:
        raise TimeoutError("slow")

    notifier = BookRequestNotifier(
        _settings(email_automation_url="https://automate.example.com/hook", smtp_user="u@x.com", smtp_password="p"),
        http_post=http_post,
        smtp_factory=_StubSMTP,
    )

    result = notifier.send(_request())

    assert result.status is DeliveryStatus.SENT
    assert result.provider == "smtp"
    assert result.detail["messageId"]
    smtp = _StubSMTP.instances[-1]
    assert smtp.logged_in == ("u@x.com", "p")
    assert smtp.sent[0][1] == ["reader@example.com"]


def test_non_success_status_falls_back_to_smtp() -> None:
    notifier = BookRequestNotifier(
        _settings(email_automation_url="https://automate.example.com/hook", smtp_user="u", smtp_password="p"),
        http_post=lambda url, timeout: (500, "boom"),
        smtp_factory=_StubSMTP,
    )

    assert notifier.send(_request()).provider == "smtp"


def test_missing_credentials_degrade() -> None:
    notifier = BookRequestNotifier(_settings(), smtp_factory=_StubSMTP)

    result = notifier.send(_request())

    assert result.status is DeliveryStatus.DEGRADED
    assert result.provider == "none"
    assert result.detail["status"] == "email_failed"
    assert not result.delivered


def test_smtp_errors_degrade() -> None:
    notifier = BookRequestNotifier(_settings(smtp_user="u", smtp_password="p"), smtp_factory=_FailingSMTP)

    result = notifier.send(_request())

    assert result.status is DeliveryStatus.DEGRADED
