from __future__ import annotations

from collections.abc import Callable
import email.mime.multipart
import email.mime.text
import email.utils
from html import escape
import logging
import smtplib
from urllib.parse import urlencode
from urllib.request import Request, urlopen

from .config import Settings
from .models import BookRequest, DeliveryResult, DeliveryStatus, utcnow

logger = logging.getLogger(__name__)

SENDER_NAME = "BookHaven"

PostText = Callable[[str, float], tuple[int, str]]
SMTPFactory = Callable[..., smtplib.SMTP]


def confirmation_subject(request: BookRequest) -> str:
    return f"Book Request Confirmation - {request.book_title}"


def render_confirmation(request: BookRequest) -> str:
    now = utcnow()
    rows = [
        ("Book Title", request.book_title),
        ("Author", request.author),
        ("ISBN", request.isbn),
        ("Quantity", request.quantity or "1"),
        ("Request Date", now.strftime("%Y-%m-%d")),
        ("Request Time", now.strftime("%H:%M UTC")),
        ("Phone", request.phone),
        ("Additional Notes", request.additional_notes),
    ]
    details = "\n".join(
        f"<p><strong>{label}:</strong> {escape(value)}</p>" for label, value in rows if value
    )
    return (
        '<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">'
        "<h2>Book Request Confirmation</h2>"
        f"<p>Hi {escape(request.display_name)},</p>"
        "<p>We've received your request and will review it shortly.</p>"
        f"{details}"
        "<ul>"
        "<li>We'll review your request within 2-3 business days</li>"
        "<li>If approved, we'll add the book to our collection</li>"
        "<li>You'll receive another email when the book becomes available</li>"
        "</ul>"
        "<p>Best regards,<br><strong>BookHaven Team</strong></p>"
        "</div>"
    )


class BookRequestNotifier:
    """Sends request confirmations: automation endpoint first, then SMTP, then gives up softly."""

    def __init__(
        self,
        settings: Settings,
        http_post: PostText | None = None,
        smtp_factory: SMTPFactory = smtplib.SMTP,
    ) -> None:
        self.settings = settings
        self.http_post = http_post or _default_post
        self.smtp_factory = smtp_factory

    def send(self, request: BookRequest) -> DeliveryResult:
        body = render_confirmation(request)
        detail = {
            "customerEmail": request.customer_email,
            "bookTitle": request.book_title,
            "timestamp": utcnow().isoformat(),
        }

        if self.settings.email_automation_url:
            response_text = self._send_automation(request, body)
            if response_text is not None:
                return DeliveryResult(
                    DeliveryStatus.SENT,
                    "Book request submitted and email sent via Contentstack automation",
                    "contentstack",
                    {**detail, "automationResponse": response_text},
                )
        else:
            logger.info("No automation URL configured, using SMTP")

        message_id = self._send_smtp(request, body)
        if message_id is not None:
            return DeliveryResult(
                DeliveryStatus.SENT,
                "Book request submitted and confirmation email sent successfully",
                "smtp",
                {**detail, "messageId": message_id},
            )

        return DeliveryResult(
            DeliveryStatus.DEGRADED,
            "Book request submitted successfully, but we encountered an issue sending the confirmation "
            "email. Your request has been saved.",
            "none",
            {**detail, "status": "email_failed"},
        )

    def _send_automation(self, request: BookRequest, body: str) -> str | None:
        params = urlencode({"to": request.customer_email, "subject": confirmation_subject(request), "body": body})
        url = f"{self.settings.email_automation_url}?{params}"
        try:
            status, text = self.http_post(url, self.settings.request_timeout_seconds)
        except TimeoutError:
            logger.warning("Automation request timed out after %.0f seconds", self.settings.request_timeout_seconds)
            return None
        except (OSError, ValueError) as exc:
            logger.warning("Automation request failed, trying SMTP: %s", exc)
            return None
        if not 200 <= status < 300:
            logger.warning("Automation endpoint returned %s: %s", status, text[:200])
            return None
        return text

    def _send_smtp(self, request: BookRequest, body: str) -> str | None:
        user = self.settings.smtp_user
        password = self.settings.smtp_password
        if not user or not password:
            logger.warning("SMTP not configured (missing EMAIL_USER or EMAIL_PASS)")
            return None

        sender = email.utils.formataddr((SENDER_NAME, user))
        message_id = email.utils.make_msgid(domain="bookhaven.com")
        msg = email.mime.multipart.MIMEMultipart("alternative")
        msg["Subject"] = confirmation_subject(request)
        msg["From"] = sender
        msg["To"] = request.customer_email
        msg["Message-ID"] = message_id
        msg.attach(email.mime.text.MIMEText(body, "html", "utf-8"))

        try:
            with self.smtp_factory(
                self.settings.smtp_host, self.settings.smtp_port, timeout=self.settings.request_timeout_seconds
            ) as server:
                server.ehlo()
                server.starttls()
                server.ehlo()
                server.login(user, password)
                server.sendmail(user, [request.customer_email], msg.as_string())
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("SMTP delivery failed: %s", exc)
            return None
        logger.info("Confirmation email sent to %s", request.customer_email)
        return message_id


def _default_post(url: str, timeout_seconds: float) -> tuple[int, str]:
    request = Request(url, data=b"", method="POST")
    with urlopen(request, timeout=timeout_seconds) as response:
        payload = response.read()
        encoding = response.headers.get_content_charset() or "utf-8"
        return response.status, payload.decode(encoding, errors="replace")
