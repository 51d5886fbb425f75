"""Tests for the best-effort audit, activity and login-history recorder."""

from __future__ import annotations

import os
from types import SimpleNamespace
from uuid import uuid4

import pytest
from conftest import FailingLogRepo, InMemoryLogRepo

from leaddesk.admin.recorder import Recorder, field_delta, jsonable, lead_snapshot
from leaddesk.config.settings import RecorderSettings
from leaddesk.core.types import LeadStatus
from leaddesk.metrics.collector import LOG_WRITES_DROPPED, MetricsCollector


def _recorder(audit=None, activity=None, logins=None, settings=None, metrics=None):
    return Recorder(
        audit or InMemoryLogRepo(),
        activity or InMemoryLogRepo(),
        logins or InMemoryLogRepo(),
        settings,
        metrics,
    )


class TestHelpers:
    def test_jsonable(self):
        lead_id = uuid4()
        assert jsonable(LeadStatus.CONTACTED) == "Contacted"
        assert jsonable(lead_id) == str(lead_id)
        assert jsonable(3) == 3

    def test_lead_snapshot(self):
        lead = SimpleNamespace(id=uuid4(), name="Asha", email="a@example.com", contact="123")
        assert lead_snapshot(lead) == {
            "id": str(lead.id),
            "name": "Asha",
            "email": "a@example.com",
            "contact": "123",
        }

    def test_field_delta_only_changed(self):
        delta = field_delta(
            {"status": LeadStatus.NEW, "notes": "x"},
            {"status": LeadStatus.CONTACTED, "notes": "x"},
        )
        assert delta == {"status": {"from": "New", "to": "Contacted"}}


class TestInlineWrites:
    def test_audit_written(self):
        audit = InMemoryLogRepo()
        rec = _recorder(audit=audit)
        actor = uuid4()
        rec.record_audit(actor, "update", "Lead", {"k": "v"}, target_id=actor, ip_address="1.2.3.4")
        (entry,) = audit.entries
        assert entry.admin_id == actor
        assert entry.action == "update"
        assert entry.metadata == {"k": "v"}
        assert entry.ip_address == "1.2.3.4"

    def test_metadata_secrets_redacted(self):
        audit = InMemoryLogRepo()
        _recorder(audit=audit).record_audit(None, "create", "Admin", {"password": "hunter22"})
        assert audit.entries[0].metadata == {"password": "[REDACTED]"}

    def test_activity_and_login_written(self):
        activity, logins = InMemoryLogRepo(), InMemoryLogRepo()
        rec = _recorder(activity=activity, logins=logins)
        rec.record_activity(uuid4(), "page_view", "/leads")
        rec.record_login(None, success=False, identifier="ghost")
        assert activity.entries[0].page == "/leads"
        assert logins.entries[0].success is False
        assert logins.entries[0].identifier == "ghost"

    def test_bulk_entry_counts_affected(self):
        audit = InMemoryLogRepo()
        leads = [
            SimpleNamespace(id=uuid4(), name="A", email="a@x.io", contact="1"),
            SimpleNamespace(id=uuid4(), name="B", email="b@x.io", contact="2"),
        ]
        _recorder(audit=audit).record_lead_bulk(uuid4(), "bulk_delete", leads, extra={"requested": 5})
        meta = audit.entries[0].metadata
        assert meta["count"] == 2
        assert meta["requested"] == 5
        assert len(meta["affectedLeads"]) == 2


class TestFailedWrites:
    def test_failure_never_raises(self):
        failing = FailingLogRepo()
        metrics = MetricsCollector()
        rec = _recorder(audit=failing, metrics=metrics)
        rec.record_audit(uuid4(), "delete", "Lead")
        assert failing.attempts == 1
        assert rec.dropped_count == 1
        assert rec.dropped_by_kind() == {"audit": 1}
        assert metrics.get(LOG_WRITES_DROPPED, labels={"kind": "audit"}) == 1

    def test_failures_counted_per_kind(self):
        rec = _recorder(audit=FailingLogRepo(), logins=FailingLogRepo())
        rec.record_audit(None, "a", "Lead")
        rec.record_login(None, success=False)
        rec.record_login(None, success=True)
        rec.record_activity(None, "ok")
        assert rec.dropped_by_kind() == {"audit": 1, "login": 2}


class TestAsyncWrites:
    def test_writes_complete_after_shutdown(self):
        audit = InMemoryLogRepo()
        rec = _recorder(audit=audit, settings=RecorderSettings(async_writes=True, max_workers=2))
        for i in range(10):
            rec.record_audit(None, f"a{i}", "Lead")
        rec.shutdown(wait=True)
        assert len(audit.entries) == 10

    def test_async_failure_counted(self):
        rec = _recorder(
            activity=FailingLogRepo(),
            settings=RecorderSettings(async_writes=True, max_workers=1),
        )
        rec.record_activity(None, "view")
        rec.shutdown(wait=True)
        assert rec.dropped_by_kind() == {"activity": 1}

    def test_writes_after_shutdown_run_inline(self):
        audit = InMemoryLogRepo()
        rec = _recorder(audit=audit, settings=RecorderSettings(async_writes=True, max_workers=1))
        rec.shutdown()
        rec.record_audit(None, "late", "Lead")
        assert audit.entries[0].action == "late"

    def test_fork_reset_starts_a_new_pool(self):
        audit = InMemoryLogRepo()
        rec = _recorder(audit=audit, settings=RecorderSettings(async_writes=True, max_workers=1))
        first = rec._pool()
        first.shutdown(wait=True)
        rec._reset_after_fork()
        rec.record_audit(None, "after_reset", "Lead")
        assert rec._pool() is not first
        rec.shutdown(wait=True)
        assert audit.entries[-1].action == "after_reset"

    @pytest.mark.skipif(not hasattr(os, "fork"), reason="requires os.fork")
    @pytest.mark.filterwarnings("ignore::DeprecationWarning")
    def test_forked_child_writes_through_its_own_pool(self):
        audit = InMemoryLogRepo()
        rec = _recorder(audit=audit, settings=RecorderSettings(async_writes=True, max_workers=2))
        rec.record_audit(None, "parent", "Lead")
        pid = os.fork()
        if pid == 0:
            code = 1
            try:
                rec.record_audit(None, "child", "Lead")
                rec.shutdown(wait=True)
                actions = [entry.action for entry in audit.entries]
                if "child" in actions and rec.dropped_count == 0:
                    code = 0
            finally:
                os._exit(code)
        _, status = os.waitpid(pid, 0)
        rec.shutdown(wait=True)
        assert os.waitstatus_to_exitcode(status) == 0
        assert [entry.action for entry in audit.entries] == ["parent"]
