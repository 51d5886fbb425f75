"""In-process metrics collector.

Collects labelled counters and exports them in Prometheus text format.
"""

from __future__ import annotations

import threading
import time

# Metric names used across the code base
HTTP_REQUESTS = "leaddesk_http_requests_total"
LOGIN_ATTEMPTS = "leaddesk_login_attempts_total"
AUTHZ_DENIALS = "leaddesk_authz_denials_total"
LOG_WRITES_DROPPED = "leaddesk_log_writes_dropped_total"
LEADS_SUBMITTED = "leaddesk_leads_submitted_total"
NOTIFICATIONS = "leaddesk_notifications_total"

_HELP = {
    HTTP_REQUESTS: "HTTP requests by method and status class",
    LOGIN_ATTEMPTS: "Admin login attempts by outcome",
    AUTHZ_DENIALS: "Authorization denials by reason",
    LOG_WRITES_DROPPED: "Audit, activity and login-history writes that failed",
    LEADS_SUBMITTED: "Public lead submissions by outcome",
    NOTIFICATIONS: "New-lead alert emails by outcome",
}


class MetricsCollector:
    """Thread-safe in-process metrics collector."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counters: dict[str, int] = {}
        self._start_time = time.time()

    def increment(self, name: str, amount: int = 1, labels: dict | None = None) -> None:
        key = self._make_key(name, labels)
        with self._lock:
            self._counters[key] = self._counters.get(key, 0) + amount

    def get(self, name: str, labels: dict | None = None) -> int:
        """Get the current value of a single labelled counter."""
        key = self._make_key(name, labels)
        with self._lock:
            return self._counters.get(key, 0)

    def total(self, name: str) -> int:
        """Sum a counter across every label combination."""
        prefix = name + "{"
        with self._lock:
            return sum(
                value
                for key, value in self._counters.items()
                if key == name or key.startswith(prefix)
            )

    def export(self) -> str:
        """Export all metrics in Prometheus text format."""
        lines = [
            "# HELP leaddesk_uptime_seconds Time since process start",
            "# TYPE leaddesk_uptime_seconds gauge",
            f"leaddesk_uptime_seconds {time.time() - self._start_time:.1f}",
            "",
        ]

        with self._lock:
            grouped: dict[str, list[tuple[str, int]]] = {}
            for key, value in sorted(self._counters.items()):
                name = key.split("{")[0]
                grouped.setdefault(name, []).append((key, value))

            for name, entries in sorted(grouped.items()):
                if name in _HELP:
                    lines.append(f"# HELP {name} {_HELP[name]}")
                lines.append(f"# TYPE {name} counter")
                lines.extend(f"{key} {value}" for key, value in entries)
                lines.append("")

        return "\n".join(lines) + "\n"

    @staticmethod
    def _make_key(name: str, labels: dict | None) -> str:
        if not labels:
            return name
        label_str = ",".join(f'{k}="{v}"' for k, v in sorted(labels.items()))
        return f"{name}{{{label_str}}}"
