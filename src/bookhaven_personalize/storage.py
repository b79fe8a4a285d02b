from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
import json
import logging
import os
from pathlib import Path
import tempfile
import threading
from typing import Any, Generic, Protocol, TypeVar

from .models import UserBehavior, UserPreferences
from .normalization import normalize_behavior, normalize_preferences

logger = logging.getLogger(__name__)

BEHAVIOR_KEY = "user-behavior"
PREFERENCES_KEY = "user-preferences"
VERSION_KEY = "storage-version"
CURRENT_VERSION = "2.0.0"

RecordT = TypeVar("RecordT", UserBehavior, UserPreferences)


class StorageBackend(Protocol):
    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> None: ...


class MemoryBackend:
    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)


class JsonFileBackend:
    """Every key lives in one JSON document, rewritten atomically on change."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def get(self, key: str) -> str | None:
        with self._lock:
            value = self._read().get(key)
        return value if isinstance(value, str) else None

    def set(self, key: str, value: str) -> None:
        with self._lock:
            data = self._read()
            data[key] = value
            self._write(data)

    def remove(self, key: str) -> None:
        with self._lock:
            data = self._read()
            if data.pop(key, None) is not None:
                self._write(data)

    def _read(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            logger.warning("Storage file %s is unreadable, starting empty", self.path)
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.")
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump(data, handle, indent=2, sort_keys=True)
        os.replace(tmp_name, self.path)


def encode_record(record: dict[str, Any]) -> str:
    return json.dumps(record, separators=(",", ":"))


class RecordStore(Generic[RecordT]):
    key: str
    normalizer: Callable[[Any], tuple[RecordT, list[str]]]
    default_factory: Callable[[], RecordT]

    def __init__(self, backend: StorageBackend) -> None:
        self.backend = backend
        self.last_repairs: list[str] = []

    def load(self) -> RecordT:
        raw = self.backend.get(self.key)
        if raw is None:
            self.last_repairs = []
            return self.default_factory()

        try:
            decoded = json.loads(raw)
        except ValueError:
            logger.warning("Stored %s is corrupt, resetting to defaults", self.key)
            record = self.default_factory()
            self.last_repairs = [f"{self.key} could not be decoded, reset to defaults"]
            self.save(record)
            return record

        record, repairs = type(self).normalizer(decoded)
        self.last_repairs = repairs
        if repairs:
            self._report(repairs)
            self.save(record)
        return record

    def save(self, value: RecordT) -> None:
        self.backend.set(self.key, encode_record(value.to_record()))

    def migrate(self) -> bool:
        """Repair the stored record in place. Returns True when it was rewritten."""
        if self.backend.get(self.key) is None:
            logger.debug("No %s data found", self.key)
            return False
        self.load()
        return bool(self.last_repairs)

    def _report(self, repairs: list[str]) -> None:
        for repair in repairs:
            logger.warning("Repaired %s: %s", self.key, repair)


class BehaviorStore(RecordStore[UserBehavior]):
    key = BEHAVIOR_KEY
    normalizer = staticmethod(normalize_behavior)
    default_factory = UserBehavior


class PreferenceStore(RecordStore[UserPreferences]):
    key = PREFERENCES_KEY
    normalizer = staticmethod(normalize_preferences)
    default_factory = UserPreferences


@dataclass(slots=True)
class MigrationReport:
    skipped: bool
    behavior_migrated: bool = False
    preferences_migrated: bool = False
    repairs: list[str] = field(default_factory=list)


class PersonalizationStorage:
    def __init__(self, backend: StorageBackend | None = None) -> None:
        self.backend = backend or MemoryBackend()
        self.behavior = BehaviorStore(self.backend)
        self.preferences = PreferenceStore(self.backend)

    def migrate(self) -> MigrationReport:
        stored_version = self.backend.get(VERSION_KEY)
        if stored_version == CURRENT_VERSION:
            logger.debug("Storage is at version %s, nothing to migrate", CURRENT_VERSION)
            return MigrationReport(skipped=True)

        logger.info("Migrating storage from %s to %s", stored_version or "none", CURRENT_VERSION)
        behavior_migrated = self.behavior.migrate()
        behavior_repairs = list(self.behavior.last_repairs) if behavior_migrated else []
        preferences_migrated = self.preferences.migrate()
        preference_repairs = list(self.preferences.last_repairs) if preferences_migrated else []
        self.backend.set(VERSION_KEY, CURRENT_VERSION)
        return MigrationReport(
            skipped=False,
            behavior_migrated=behavior_migrated,
            preferences_migrated=preferences_migrated,
            repairs=behavior_repairs + preference_repairs,
        )

    def clear(self) -> None:
        logger.info("Clearing all personalization data")
        for key in (BEHAVIOR_KEY, PREFERENCES_KEY, VERSION_KEY):
            self.backend.remove(key)

    def debug_info(self) -> dict[str, Any]:
        """Decoded records as stored, without repairing them."""
        info: dict[str, Any] = {"version": self.backend.get(VERSION_KEY), "errors": []}
        for name, key in (("behavior", BEHAVIOR_KEY), ("preferences", PREFERENCES_KEY)):
            raw = self.backend.get(key)
            info[name] = None
            if raw is None:
                continue
            try:
                info[name] = json.loads(raw)
            except ValueError as exc:
                info["errors"].append(f"Failed to parse {key}: {exc}")
        return info
