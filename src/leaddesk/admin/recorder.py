"""Best-effort audit, activity and login-history recorder.

Writes are side effects of a primary operation and must never fail or
delay it.  With ``recorder.async_writes`` enabled each write is handed
to a :class:`~concurrent.futures.ThreadPoolExecutor`; otherwise it runs
inline.  Either way a failed write is logged, emitted as a security
event and counted in ``leaddesk_log_writes_dropped_total{kind}``; it
is never raised to the caller.

Lead audit entries carry a snapshot of the lead's identifying fields
taken *before* the mutation, and updates carry a per-field
``{"from": ..., "to": ...}`` delta.
"""

from __future__ import annotations

import logging
import os
import threading
import weakref
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import date, datetime
from enum import Enum
from functools import partial
from typing import TYPE_CHECKING, Any
from uuid import UUID, uuid4

from leaddesk.admin.models import ActivityLogEntry, AuditLogEntry, LoginHistoryEntry
from leaddesk.logging import security_events
from leaddesk.logging.sanitize import sanitize_for_logs
from leaddesk.metrics.collector import LOG_WRITES_DROPPED

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Mapping

    from leaddesk.admin.repository import (
        ActivityLogRepository,
        AuditLogRepository,
        LoginHistoryRepository,
    )
    from leaddesk.config.settings import RecorderSettings
    from leaddesk.metrics.collector import MetricsCollector
    from leaddesk.models.lead import Lead

log = logging.getLogger(__name__)
audit_log = logging.getLogger("leaddesk.audit")

KIND_AUDIT = "audit"
KIND_ACTIVITY = "activity"
KIND_LOGIN = "login"

SNAPSHOT_FIELDS = ("name", "email", "contact")


# ---------------------------------------------------------------------------
# Metadata helpers
# ---------------------------------------------------------------------------


def jsonable(value: Any) -> Any:  # noqa: ANN401
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def lead_snapshot(lead: Lead) -> dict[str, Any]:
    """Identifying fields of *lead*, kept so audit entries stay readable."""
    return {"id": str(lead.id), **{f: getattr(lead, f) for f in SNAPSHOT_FIELDS}}


def field_delta(
    before: Mapping[str, Any],
    after: Mapping[str, Any],
) -> dict[str, dict[str, Any]]:
    """``{field: {"from": old, "to": new}}`` for every field that changed."""
    delta: dict[str, dict[str, Any]] = {}
    for name, new_value in after.items():
        old_value = before.get(name)
        if jsonable(old_value) != jsonable(new_value):
            delta[name] = {"from": jsonable(old_value), "to": jsonable(new_value)}
    return delta


# ---------------------------------------------------------------------------
# Recorder
# ---------------------------------------------------------------------------


class Recorder:
    """Dispatch append-only log writes without affecting the caller."""

    def __init__(  # noqa: PLR0913
        self,
        audit_repo: AuditLogRepository,
        activity_repo: ActivityLogRepository,
        login_repo: LoginHistoryRepository,
        settings: RecorderSettings | None = None,
        metrics: MetricsCollector | None = None,
    ) -> None:
        self._audit = audit_repo
        self._activity = activity_repo
        self._logins = login_repo
        self._metrics = metrics
        self._lock = threading.Lock()
        self._dropped: dict[str, int] = {}
        self._shutdown = threading.Event()
        self._max_workers = 0
        if settings is not None and settings.async_writes:
            self._max_workers = settings.max_workers
        self._executor: ThreadPoolExecutor | None = None
        if self._max_workers and hasattr(os, "register_at_fork"):
            os.register_at_fork(after_in_child=partial(_after_fork, weakref.ref(self)))

    # -- counters ------------------------------------------------------------

    @property
    def dropped_count(self) -> int:
        with self._lock:
            return sum(self._dropped.values())

    def dropped_by_kind(self) -> dict[str, int]:
        with self._lock:
            return dict(self._dropped)

    # -- public API ----------------------------------------------------------

    def record_audit(  # noqa: PLR0913
        self,
        admin_id: UUID | None,
        action: str,
        target_type: str,
        metadata: dict[str, Any] | None = None,
        *,
        target_id: UUID | None = None,
        ip_address: str | None = None,
    ) -> None:
        entry = AuditLogEntry(
            id=uuid4(),
            admin_id=admin_id,
            action=action,
            target_type=target_type,
            target_id=target_id,
            metadata=sanitize_for_logs(metadata or {}),
            ip_address=ip_address,
        )
        audit_log.info(
            "%s %s",
            action,
            target_type,
            extra={
                "audit_action": action,
                "target_type": target_type,
                "target_id": str(target_id) if target_id else None,
                "actor_id": str(admin_id) if admin_id else None,
            },
        )
        self._dispatch(KIND_AUDIT, self._audit.create, entry)

    def record_activity(
        self,
        admin_id: UUID | None,
        action: str,
        page: str | None = None,
        details: str | None = None,
    ) -> None:
        entry = ActivityLogEntry(
            id=uuid4(),
            admin_id=admin_id,
            action=action,
            page=page,
            details=details,
        )
        self._dispatch(KIND_ACTIVITY, self._activity.create, entry)

    def record_login(
        self,
        admin_id: UUID | None,
        *,
        success: bool,
        identifier: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> None:
        entry = LoginHistoryEntry(
            id=uuid4(),
            admin_id=admin_id,
            identifier=identifier,
            ip_address=ip_address,
            user_agent=user_agent,
            success=success,
        )
        self._dispatch(KIND_LOGIN, self._logins.create, entry)

    def record_lead_bulk(  # noqa: PLR0913
        self,
        admin_id: UUID,
        action: str,
        leads: Iterable[Lead],
        *,
        extra: dict[str, Any] | None = None,
        changes: Mapping[UUID, dict[str, Any]] | None = None,
        ip_address: str | None = None,
    ) -> None:
        """Audit a bulk lead mutation; ``count`` equals the affected set.

        *changes* maps a lead id to its ``field_delta``; each snapshot then
        carries that lead's own ``changes`` so the prior values survive.
        """
        snapshots = []
        for lead in leads:
            snapshot = lead_snapshot(lead)
            if changes is not None:
                snapshot["changes"] = changes.get(lead.id, {})
            snapshots.append(snapshot)
        metadata: dict[str, Any] = {"count": len(snapshots), "affectedLeads": snapshots}
        if extra:
            metadata.update(extra)
        self.record_audit(admin_id, action, "Lead", metadata, ip_address=ip_address)

    # -- dispatch ------------------------------------------------------------

    def _dispatch(self, kind: str, write: Callable[[Any], Any], entry: Any) -> None:  # noqa: ANN401
        executor = self._pool()
        if executor is None:
            self._write(kind, write, entry)
            return
        try:
            future: Future = executor.submit(self._write, kind, write, entry)
        except RuntimeError:
            # Executor closed between the check and submit
            self._write(kind, write, entry)
            return
        future.add_done_callback(lambda f, _k=kind: self._on_done(f, _k))

    def _pool(self) -> ThreadPoolExecutor | None:
        """The worker pool of the current process, started on first use."""
        if not self._max_workers or self._shutdown.is_set():
            return None
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self._max_workers,
                    thread_name_prefix="leaddesk-recorder",
                )
            return self._executor

    def _reset_after_fork(self) -> None:
        # Pool threads do not survive fork; the child starts its own pool
        self._lock = threading.Lock()
        self._executor = None

    def _write(self, kind: str, write: Callable[[Any], Any], entry: Any) -> None:  # noqa: ANN401
        try:
            write(entry)
        except Exception as exc:  # noqa: BLE001
            self._drop(kind, exc)

    def _on_done(self, future: Future, kind: str) -> None:
        exc = future.exception()
        if exc is not None:
            self._drop(kind, exc)

    def _drop(self, kind: str, exc: BaseException) -> None:
        with self._lock:
            self._dropped[kind] = self._dropped.get(kind, 0) + 1
        if self._metrics is not None:
            self._metrics.increment(LOG_WRITES_DROPPED, labels={"kind": kind})
        log.error("Failed to write %s log entry", kind, exc_info=exc)
        security_events.log_write_dropped(kind, type(exc).__name__)

    # -- lifecycle -----------------------------------------------------------

    def shutdown(self, wait: bool = True) -> None:
        """Stop the worker pool; later writes run inline."""
        if self._shutdown.is_set():
            return
        self._shutdown.set()
        if self._executor is not None:
            self._executor.shutdown(wait=wait)
            log.info("Recorder executor shut down (dropped=%d)", self.dropped_count)


def _after_fork(ref: weakref.ref[Recorder]) -> None:
    recorder = ref()
    if recorder is not None:
        recorder._reset_after_fork()  # noqa: SLF001
