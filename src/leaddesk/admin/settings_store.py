"""Runtime settings backed by ``admin.settings``.

``restrictLeadEditing`` is read on every lead mutation, so values are
cached per process for ``admin_api.setting_cache_seconds`` and the cache
is dropped on every write made through this store.
"""

from __future__ import annotations

import threading
import time
from typing import TYPE_CHECKING, Any

from leaddesk.app.errors import NotFoundError, ValidationError
from leaddesk.core.types import SettingKey

if TYPE_CHECKING:
    from uuid import UUID

    from leaddesk.admin.models import Setting
    from leaddesk.admin.repository import SettingRepository

# Value used when a known key has never been written
SETTING_DEFAULTS: dict[SettingKey, Any] = {
    SettingKey.RESTRICT_LEAD_EDITING: False,
}


class SettingStore:
    def __init__(self, repo: SettingRepository, cache_seconds: int = 5) -> None:
        self._repo = repo
        self._ttl = cache_seconds
        self._lock = threading.Lock()
        self._cache: dict[str, tuple[float, Any]] = {}
        self._version = 0

    def get_value(self, key: SettingKey) -> Any:  # noqa: ANN401
        """Return the stored value for *key*, or its default when absent."""
        now = time.monotonic()
        with self._lock:
            hit = self._cache.get(key.value)
            if hit is not None and hit[0] > now:
                return hit[1]
            version = self._version

        setting = self._repo.find_by_key(key.value)
        value = SETTING_DEFAULTS[key] if setting is None else setting.value

        if self._ttl > 0:
            with self._lock:
                # Not cached when invalidated while the read was in flight
                if self._version == version:
                    self._cache[key.value] = (now + self._ttl, value)
        return value

    def restrict_lead_editing(self) -> bool:
        return self.get_value(SettingKey.RESTRICT_LEAD_EDITING) is True

    def get(self, key: str) -> Setting:
        setting = self._repo.find_by_key(_parse_key(key).value)
        if setting is None:
            raise NotFoundError(f"Setting '{key}' has not been set")
        return setting

    def list_all(self) -> list[Setting]:
        return self._repo.find_all_ordered()

    def update(
        self,
        key: str,
        value: Any,  # noqa: ANN401
        updated_by: UUID | None,
    ) -> tuple[Any, Setting]:
        """Validate and store *value*; returns ``(previous_value, setting)``."""
        setting_key = _parse_key(key)
        if not isinstance(value, bool):
            raise ValidationError(f"Setting '{key}' must be a boolean")

        previous = self._repo.find_by_key(setting_key.value)
        stored = self._repo.upsert(setting_key.value, value, updated_by)
        self.invalidate()
        return (None if previous is None else previous.value), stored

    def invalidate(self) -> None:
        with self._lock:
            self._version += 1
            self._cache.clear()


def _parse_key(key: str) -> SettingKey:
    try:
        return SettingKey(key)
    except ValueError:
        raise NotFoundError(f"Unknown setting '{key}'") from None
