"""Lead alert mailer.

Sending is a best-effort side effect of a public submission:

- ``notifications.enabled=False`` or no recipients -> no-op
- ``smtp.enabled=False`` -> rendered and logged, not sent
- SMTP failure -> logged and counted, never raised
"""

from __future__ import annotations

import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import TYPE_CHECKING

from leaddesk.metrics.collector import NOTIFICATIONS

if TYPE_CHECKING:
    from leaddesk.config.settings import NotificationSettings, SmtpSettings
    from leaddesk.metrics.collector import MetricsCollector
    from leaddesk.models.lead import Lead
    from leaddesk.notifications.renderer import TemplateRenderer

log = logging.getLogger(__name__)

LEAD_SUBMITTED = "lead_submitted"


class LeadNotifier:
    def __init__(
        self,
        smtp_settings: SmtpSettings,
        notification_settings: NotificationSettings,
        renderer: TemplateRenderer,
        server_url: str,
        metrics: MetricsCollector | None = None,
    ) -> None:
        self._smtp = smtp_settings
        self._settings = notification_settings
        self._renderer = renderer
        self._server_url = server_url
        self._metrics = metrics

    def lead_submitted(self, lead: Lead) -> int:
        """Alert the configured recipients about a new lead.

        Returns the number of messages delivered.
        """
        if not self._settings.enabled or not self._settings.recipients:
            return 0

        try:
            subject, body = self._renderer.render(
                LEAD_SUBMITTED,
                {"lead": lead, "server_url": self._server_url},
            )
        except Exception:
            log.exception("Failed to render %s notification", LEAD_SUBMITTED)
            self._count("render_failed")
            return 0

        if not self._smtp.enabled:
            log.info("SMTP disabled; lead alert for %s not sent", lead.id)
            self._count("skipped")
            return 0

        sent = 0
        for recipient in self._settings.recipients:
            if self._send_email(recipient, subject, body):
                sent += 1
                self._count("sent")
            else:
                self._count("failed")
        return sent

    def _count(self, outcome: str) -> None:
        if self._metrics is not None:
            self._metrics.increment(NOTIFICATIONS, labels={"outcome": outcome})

    def _send_email(self, recipient: str, subject: str, body: str) -> bool:
        """Send a single email via SMTP on a fresh connection.

        Never raises; returns whether the message was accepted.
        """
        try:
            msg = MIMEMultipart("alternative")
            msg["From"] = self._smtp.from_address
            msg["To"] = recipient
            msg["Subject"] = subject
            msg.attach(MIMEText(body, "html", "utf-8"))

            with smtplib.SMTP(
                self._smtp.host, self._smtp.port, timeout=self._smtp.timeout_seconds
            ) as server:
                server.ehlo()
                if self._smtp.use_tls:
                    server.starttls()
                    server.ehlo()
                if self._smtp.username:
                    server.login(self._smtp.username, self._smtp.password)
                server.sendmail(self._smtp.from_address, [recipient], msg.as_string())
        except Exception:
            log.exception("Failed to send lead alert to %s", recipient)
            return False
        return True
