"""Tests for the new-lead alert mailer."""

from __future__ import annotations

from unittest.mock import MagicMock, patch
from uuid import uuid4

from leaddesk.config.settings import build_settings
from leaddesk.core.types import LeadStatus
from leaddesk.metrics.collector import NOTIFICATIONS, MetricsCollector
from leaddesk.models.lead import Lead
from leaddesk.notifications.mailer import LeadNotifier
from leaddesk.notifications.renderer import TemplateRenderer

SMTP_PATH = "leaddesk.notifications.mailer.smtplib.SMTP"


def _settings(*, smtp_enabled=True, recipients=("sales@example.com", "ops@example.com"), **smtp):
    smtp_data = {
        "enabled": smtp_enabled,
        "host": "mail.example.com",
        "port": 2525,
        "from_address": "noreply@example.com",
        **smtp,
    }
    return build_settings(
        {"smtp": smtp_data, "notifications": {"recipients": list(recipients)}},
    )


def _lead() -> Lead:
    return Lead(
        id=uuid4(),
        name="Asha Rao",
        email="asha@example.com",
        contact="9800000001",
        country_code="+91",
        status=LeadStatus.NEW,
        course_name="Data Science",
    )


def _notifier(settings, renderer=None):
    metrics = MetricsCollector()
    notifier = LeadNotifier(
        settings.smtp,
        settings.notifications,
        renderer or TemplateRenderer(),
        "https://leads.example.com",
        metrics,
    )
    return notifier, metrics


class TestLeadNotifier:
    def test_sends_to_each_recipient(self):
        notifier, metrics = _notifier(_settings())
        with patch(SMTP_PATH) as smtp_cls:
            server = smtp_cls.return_value.__enter__.return_value
            assert notifier.lead_submitted(_lead()) == 2

        smtp_cls.assert_called_with("mail.example.com", 2525, timeout=30)
        assert server.sendmail.call_count == 2
        assert server.sendmail.call_args_list[0].args[1] == ["sales@example.com"]
        assert "New Lead Submission: Data Science" in server.sendmail.call_args.args[2]
        assert metrics.get(NOTIFICATIONS, {"outcome": "sent"}) == 2

    def test_tls_and_login(self):
        notifier, _ = _notifier(_settings(use_tls=True, username="mailer", password="pw"))
        with patch(SMTP_PATH) as smtp_cls:
            server = smtp_cls.return_value.__enter__.return_value
            notifier.lead_submitted(_lead())
        server.starttls.assert_called()
        server.login.assert_called_with("mailer", "pw")

    def test_failure_is_counted_not_raised(self):
        notifier, metrics = _notifier(_settings())
        with patch(SMTP_PATH, side_effect=OSError("connection refused")):
            assert notifier.lead_submitted(_lead()) == 0
        assert metrics.get(NOTIFICATIONS, {"outcome": "failed"}) == 2

    def test_smtp_disabled_skips(self):
        notifier, metrics = _notifier(_settings(smtp_enabled=False))
        with patch(SMTP_PATH) as smtp_cls:
            assert notifier.lead_submitted(_lead()) == 0
        smtp_cls.assert_not_called()
        assert metrics.get(NOTIFICATIONS, {"outcome": "skipped"}) == 1

    def test_no_recipients_is_noop(self):
        notifier, metrics = _notifier(_settings(recipients=()))
        with patch(SMTP_PATH) as smtp_cls:
            assert notifier.lead_submitted(_lead()) == 0
        smtp_cls.assert_not_called()
        assert metrics.total(NOTIFICATIONS) == 0

    def test_render_failure(self):
        renderer = MagicMock()
        renderer.render.side_effect = RuntimeError("bad template")
        notifier, metrics = _notifier(_settings(), renderer)
        with patch(SMTP_PATH) as smtp_cls:
            assert notifier.lead_submitted(_lead()) == 0
        smtp_cls.assert_not_called()
        assert metrics.get(NOTIFICATIONS, {"outcome": "render_failed"}) == 1


def test_notifications_disabled():
    settings = build_settings(
        {
            "smtp": {"enabled": True, "host": "h", "from_address": "a@b.io"},
            "notifications": {"enabled": False, "recipients": ["x@y.io"]},
        },
    )
    notifier, _ = _notifier(settings)
    with patch(SMTP_PATH) as smtp_cls:
        assert notifier.lead_submitted(_lead()) == 0
    smtp_cls.assert_not_called()
