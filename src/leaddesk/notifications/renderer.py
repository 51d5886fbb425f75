"""Jinja2 template renderer for notification emails.

Resolves templates with a two-tier loader:
1. User-specified ``templates_path`` (overrides)
2. Built-in templates shipped with the package
"""

from __future__ import annotations

from typing import Any

from jinja2 import BaseLoader, ChoiceLoader, Environment, FileSystemLoader, PackageLoader


class TemplateRenderer:
    """Renders email subjects and bodies from ``<name>_subject.txt`` / ``<name>_body.html``."""

    def __init__(self, templates_path: str | None = None) -> None:
        loaders: list[BaseLoader] = []
        if templates_path:
            loaders.append(FileSystemLoader(templates_path))
        loaders.append(PackageLoader("leaddesk.notifications", "templates"))

        self._env = Environment(
            loader=ChoiceLoader(loaders),
            autoescape=True,
            keep_trailing_newline=False,
        )

    def render(self, template_name: str, context: dict[str, Any]) -> tuple[str, str]:
        """Return ``(subject, body_html)`` for *template_name*."""
        subject_tpl = self._env.get_template(f"{template_name}_subject.txt")
        body_tpl = self._env.get_template(f"{template_name}_body.html")
        return subject_tpl.render(**context).strip(), body_tpl.render(**context)
