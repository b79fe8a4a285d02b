from __future__ import annotations

from collections.abc import Callable, Mapping
import json
import logging
import threading
from typing import Any
from urllib.request import Request, urlopen
import uuid

from .config import Settings, get_settings
from .models import DeliveryResult, DeliveryStatus

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "bookhaven-personalize/0.1"
USER_UID_HEADER = "x-cs-personalize-user-uid"
PROJECT_UID_HEADER = "x-project-uid"

HttpJSON = Callable[[str, str, Any, dict[str, str], float], Any]


class PersonalizeError(RuntimeError):
    pass


def new_user_uid() -> str:
    return uuid.uuid4().hex


class PersonalizeHandle:
    """A visitor-scoped connection to the Personalize edge API."""

    def __init__(
        self,
        project_uid: str,
        edge_api_url: str,
        user_uid: str,
        http_json: HttpJSON,
        timeout_seconds: float,
    ) -> None:
        self.project_uid = project_uid
        self.edge_api_url = edge_api_url.rstrip("/")
        self.user_uid = user_uid
        self.http_json = http_json
        self.timeout_seconds = timeout_seconds
        self.attributes: dict[str, Any] = {}
        self.experiences: list[dict[str, Any]] = []

    def load_manifest(self) -> list[dict[str, Any]]:
        response = self._call("GET", "/manifest")
        experiences = response.get("experiences") if isinstance(response, dict) else None
        if not isinstance(experiences, list):
            experiences = []
        self.experiences = [item for item in experiences if isinstance(item, dict)]
        return self.experiences

    def set_attributes(self, attributes: Mapping[str, Any]) -> None:
        self._call("PATCH", "/user-attributes", dict(attributes))
        self.attributes.update(attributes)

    def trigger_impression(self, experience_id: str) -> None:
        payload = {"experienceShortUid": experience_id, "type": "IMPRESSION"}
        variant = self.active_variants().get(experience_id)
        if variant is not None:
            payload["variantShortUid"] = variant
        self._call("POST", "/events", [payload])

    def trigger_event(self, event_key: str) -> None:
        self._call("POST", "/events", [{"eventKey": event_key, "type": "EVENT"}])

    def active_variants(self) -> dict[str, str]:
        variants: dict[str, str] = {}
        for experience in self.experiences:
            short_uid = experience.get("shortUid")
            variant = experience.get("activeVariantShortUid")
            if short_uid and variant:
                variants[str(short_uid)] = str(variant)
        return variants

    def variant_param(self) -> str | None:
        variants = self.active_variants()
        if not variants:
            return None
        return ",".join(f"{experience}_{variant}" for experience, variant in variants.items())

    def _call(self, method: str, path: str, payload: Any = None) -> Any:
        headers = {
            PROJECT_UID_HEADER: self.project_uid,
            USER_UID_HEADER: self.user_uid,
        }
        return self.http_json(method, f"{self.edge_api_url}{path}", payload, headers, self.timeout_seconds)


class PersonalizeBridge:
    """Owns the process-wide Personalize handle and wraps every call as best effort."""

    def __init__(
        self,
        settings: Settings | None = None,
        http_json: HttpJSON | None = None,
        user_uid_factory: Callable[[], str] = new_user_uid,
    ) -> None:
        self.settings = settings or get_settings()
        self.http_json = http_json or _default_http_json
        self.user_uid_factory = user_uid_factory
        self._handle: PersonalizeHandle | None = None
        self._initialized = False
        self._lock = threading.Lock()

    def get_instance(self) -> PersonalizeHandle | None:
        if self._initialized:
            return self._handle
        with self._lock:
            if not self._initialized:
                self._handle = self._build_handle(self.user_uid_factory())
                self._initialized = True
                if self._handle is None:
                    logger.warning(
                        "CONTENTSTACK_PERSONALIZE_PROJECT_UID is not set; personalization is disabled"
                    )
        return self._handle

    def reset(self) -> None:
        with self._lock:
            self._handle = None
            self._initialized = False

    def init_for_request(self, user_uid: str | None) -> PersonalizeHandle:
        """Request-scoped handle with its manifest loaded. Raises on any failure."""
        handle = self._build_handle(user_uid or self.user_uid_factory())
        if handle is None:
            raise PersonalizeError("Personalize project uid is not configured")
        handle.load_manifest()
        return handle

    def push_attributes(self, handle: PersonalizeHandle | None, attributes: Mapping[str, Any]) -> DeliveryResult:
        return self._best_effort(handle, "set attributes", lambda h: h.set_attributes(attributes))

    def trigger_impression(self, handle: PersonalizeHandle | None, experience_id: str) -> DeliveryResult:
        return self._best_effort(handle, f"impression {experience_id}", lambda h: h.trigger_impression(experience_id))

    def trigger_event(self, handle: PersonalizeHandle | None, event_key: str) -> DeliveryResult:
        return self._best_effort(handle, f"event {event_key}", lambda h: h.trigger_event(event_key))

    def get_variant_selector(self, handle: PersonalizeHandle | None) -> str | None:
        if handle is None:
            return None
        try:
            if not handle.experiences:
                handle.load_manifest()
            return handle.variant_param()
        except (OSError, ValueError) as exc:
            logger.warning("Failed to read Personalize variants: %s", exc)
            return None

    def _build_handle(self, user_uid: str) -> PersonalizeHandle | None:
        project_uid = self.settings.personalize_project_uid
        if not project_uid:
            return None
        return PersonalizeHandle(
            project_uid=project_uid,
            edge_api_url=self.settings.personalize_edge_api_url,
            user_uid=user_uid,
            http_json=self.http_json,
            timeout_seconds=self.settings.request_timeout_seconds,
        )

    def _best_effort(
        self,
        handle: PersonalizeHandle | None,
        action: str,
        call: Callable[[PersonalizeHandle], None],
    ) -> DeliveryResult:
        if handle is None:
            logger.info("Personalize unavailable, skipped %s", action)
            return DeliveryResult(DeliveryStatus.DEGRADED, f"Personalize unavailable, skipped {action}")
        try:
            call(handle)
        except (OSError, ValueError) as exc:
            logger.error("Personalize %s failed: %s", action, exc)
            return DeliveryResult(
                DeliveryStatus.FAILED_SOFT,
                f"Personalize {action} failed",
                "personalize",
                {"error": str(exc)},
            )
        return DeliveryResult(DeliveryStatus.SENT, f"Personalize {action} sent", "personalize")


def send_project_event(
    settings: Settings,
    payload: dict[str, Any],
    http_json: HttpJSON | None = None,
) -> Any:
    """POST an analytics event to the project events endpoint. Raises on transport errors."""
    http_json = http_json or _default_http_json
    url = f"{settings.personalize_events_url.rstrip('/')}/projects/{settings.personalize_events_project_id}/events"
    headers = {
        "Authorization": f"Bearer {settings.personalize_token}",
        "X-CS-CLI": "true",
    }
    return http_json("POST", url, payload, headers, settings.request_timeout_seconds)


def _default_http_json(
    method: str, url: str, payload: Any, headers: dict[str, str], timeout_seconds: float
) -> Any:
    body = None if payload is None else json.dumps(payload).encode("utf-8")
    request = Request(
        url,
        data=body,
        method=method,
        headers={
            "Content-Type": "application/json",
            "Accept": "application/json",
            "User-Agent": DEFAULT_USER_AGENT,
            **headers,
        },
    )
    with urlopen(request, timeout=timeout_seconds) as response:
        raw = response.read()
        encoding = response.headers.get_content_charset() or "utf-8"
    if not raw:
        return {}
    return json.loads(raw.decode(encoding, errors="replace"))
