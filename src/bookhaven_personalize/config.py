from __future__ import annotations

from dataclasses import dataclass, field
import os

DEFAULT_EDGE_API_URL = "https://personalize-edge.contentstack.com"
DEFAULT_TIMEOUT_SECONDS = 10.0


def load_dotenv(path: str = ".env") -> None:
    if not os.path.exists(path):
        return

    with open(path, encoding="utf-8") as handle:
        for line in handle:
            entry = line.strip()
            if not entry or entry.startswith("#") or "=" not in entry:
                continue

            key, raw_value = entry.split("=", maxsplit=1)
            key = key.strip()
            value = raw_value.strip()
            if not key:
                continue

            if len(value) >= 2 and value[0] == value[-1] and value[0] in {"'", '"'}:
                value = value[1:-1]

            os.environ.setdefault(key, value)


def _get_env(*keys: str, default: str | None = None) -> str | None:
    """First non-empty value among keys; public (NEXT_PUBLIC_) names are accepted too."""
    for key in keys:
        for candidate in (key, f"NEXT_PUBLIC_{key}"):
            value = os.getenv(candidate)
            if value is not None and value.strip():
                return value.strip()
    return default


def _get_int(key: str, default: int) -> int:
    value = _get_env(key)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _get_float(key: str, default: float) -> float:
    value = _get_env(key)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


@dataclass
class Settings:
    personalize_project_uid: str | None = field(
        default_factory=lambda: _get_env("CONTENTSTACK_PERSONALIZE_PROJECT_UID")
    )
    personalize_edge_api_url: str = field(
        default_factory=lambda: _get_env("CONTENTSTACK_PERSONALIZE_EDGE_API_URL", default=DEFAULT_EDGE_API_URL)
    )
    personalize_events_url: str | None = field(default_factory=lambda: _get_env("CONTENTSTACK_PERSONALIZE_URL"))
    personalize_token: str | None = field(default_factory=lambda: _get_env("CONTENTSTACK_PERSONALIZE_TOKEN"))
    personalize_events_project_id: str | None = field(
        default_factory=lambda: _get_env("CONTENTSTACK_PERSONALIZE_PROJECT_ID")
    )
    stack_api_key: str | None = field(default_factory=lambda: _get_env("CONTENTSTACK_API_KEY"))
    environment: str = field(default_factory=lambda: _get_env("CONTENTSTACK_ENVIRONMENT", default="development"))
    request_timeout_seconds: float = field(
        default_factory=lambda: _get_float("BOOKHAVEN_REQUEST_TIMEOUT_SECONDS", DEFAULT_TIMEOUT_SECONDS)
    )

    email_automation_url: str | None = field(
        default_factory=lambda: _get_env("EMAIL_REQ_TRIGGER", "CONTENTSTACK_EMAIL_AUTOMATION_URL")
    )
    smtp_host: str = field(default_factory=lambda: _get_env("EMAIL_HOST", default="smtp.gmail.com"))
    smtp_port: int = field(default_factory=lambda: _get_int("EMAIL_PORT", 587))
    smtp_user: str | None = field(default_factory=lambda: _get_env("EMAIL_USER"))
    smtp_password: str | None = field(default_factory=lambda: _get_env("EMAIL_PASS"))

    storage_path: str = field(
        default_factory=lambda: _get_env("BOOKHAVEN_STORAGE_PATH", default=".bookhaven/storage.json")
    )
    log_level: str = field(default_factory=lambda: _get_env("BOOKHAVEN_LOG_LEVEL", default="INFO"))
    log_dir: str | None = field(default_factory=lambda: _get_env("BOOKHAVEN_LOG_DIR"))

    @property
    def personalize_events_configured(self) -> bool:
        return bool(self.personalize_events_url and self.personalize_token and self.personalize_events_project_id)


_settings: Settings | None = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def refresh_settings() -> Settings:
    global _settings
    _settings = Settings()
    return _settings
