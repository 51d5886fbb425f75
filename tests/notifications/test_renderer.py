"""Tests for the notification template renderer."""

from __future__ import annotations

from uuid import uuid4

import pytest
from jinja2 import TemplateNotFound

from leaddesk.core.types import LeadStatus
from leaddesk.models.lead import Lead
from leaddesk.notifications.renderer import TemplateRenderer


def _lead(**kw) -> Lead:
    fields = {
        "id": uuid4(),
        "name": "Asha Rao",
        "email": "asha@example.com",
        "contact": "9800000001",
        "country_code": "+91",
        "status": LeadStatus.NEW,
    }
    fields.update(kw)
    return Lead(**fields)


class TestBuiltInTemplates:
    def test_subject_with_course(self):
        subject, _ = TemplateRenderer().render(
            "lead_submitted",
            {"lead": _lead(course_name="Data Science"), "server_url": "https://x"},
        )
        assert subject == "New Lead Submission: Data Science"

    def test_subject_without_course(self):
        subject, _ = TemplateRenderer().render(
            "lead_submitted",
            {"lead": _lead(), "server_url": "https://x"},
        )
        assert subject == "New Lead Submission: General Inquiry"

    def test_body_fields(self):
        _, body = TemplateRenderer().render(
            "lead_submitted",
            {"lead": _lead(location="Pune"), "server_url": "https://leads.example.com"},
        )
        assert "Asha Rao" in body
        assert "+91 9800000001" in body
        assert "Pune" in body
        assert 'href="https://leads.example.com"' in body
        assert "Message" not in body

    def test_body_is_escaped(self):
        _, body = TemplateRenderer().render(
            "lead_submitted",
            {"lead": _lead(message="<script>alert(1)</script>"), "server_url": "https://x"},
        )
        assert "<script>" not in body
        assert "&lt;script&gt;" in body

    def test_unknown_template(self):
        with pytest.raises(TemplateNotFound):
            TemplateRenderer().render("nope", {})


class TestOverrides:
    def test_user_template_wins(self, tmp_path):
        (tmp_path / "lead_submitted_subject.txt").write_text("Lead: {{ lead.name }}\n")
        renderer = TemplateRenderer(str(tmp_path))
        subject, body = renderer.render(
            "lead_submitted",
            {"lead": _lead(), "server_url": "https://x"},
        )
        assert subject == "Lead: Asha Rao"
        # body falls back to the packaged template
        assert "New lead registered" in body
