"""Jinja2 email templates for ReleasePilot notifications."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from jinja2 import DictLoader, Environment, StrictUndefined, select_autoescape

STATUS_COLORS = {
    "not_started": "#6b7280",
    "started": "#3b82f6",
    "in_progress": "#f59e0b",
    "completed": "#10b981",
    "failed": "#ef4444",
}

_LAYOUT = """\
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
  <h2 style="color: {% block color %}#2563eb{% endblock %};">{% block heading %}{% endblock %}</h2>
  {% block body %}{% endblock %}
  <div style="margin-top: 30px; padding-top: 20px; border-top: 1px solid #e2e8f0; color: #64748b; font-size: 14px;">
    <p>This is an automated notification from the ReleasePilot release management system.</p>
  </div>
</div>
"""

_STEP_CARD = """\
<h3 style="margin-top: 0; color: #1e293b;">{{ step.name }}</h3>
<p><strong>Description:</strong> {{ step.description or "No description provided" }}</p>
<p><strong>Category:</strong> {{ step.category | humanize }}</p>
"""

_TEMPLATES = {
    "layout.html": _LAYOUT,
    "step_card.html": _STEP_CARD,
    "step_triggered.html": """\
{% extends "layout.html" %}
{% block heading %}Step Triggered{% endblock %}
{% block body %}
<p>The following step has been triggered and is ready for execution:</p>
<div style="background-color: #fef3c7; padding: 20px; border-radius: 8px; margin: 20px 0; border-left: 4px solid #f59e0b;">
  {% include "step_card.html" %}
  <p><strong>Status:</strong> Started</p>
  <p><strong>Triggered At:</strong> {{ step.started_at | when }}</p>
</div>
<p><strong>Action Required:</strong> Please proceed with the execution of this step and update
the status to "In Progress" and then "Completed" once finished.</p>
{% endblock %}
""",
    "status_change.html": """\
{% extends "layout.html" %}
{% block heading %}Step Status Update{% endblock %}
{% block body %}
<p>The status of the following step has been updated by {{ actor_name }}:</p>
<div style="background-color: #f8fafc; padding: 20px; border-radius: 8px; margin: 20px 0;">
  {% include "step_card.html" %}
  <div style="margin: 15px 0;">
    <span style="background-color: {{ previous_status | status_color }}; color: white; padding: 4px 8px; border-radius: 4px; font-size: 12px;">{{ previous_status | humanize }}</span>
    <span style="margin: 0 10px;">&rarr;</span>
    <span style="background-color: {{ new_status | status_color }}; color: white; padding: 4px 8px; border-radius: 4px; font-size: 12px;">{{ new_status | humanize }}</span>
  </div>
  <p><strong>Updated By:</strong> {{ actor_name }}</p>
</div>
{% endblock %}
""",
    "release_completed.html": """\
{% extends "layout.html" %}
{% block color %}#10b981{% endblock %}
{% block heading %}Release Completed Successfully!{% endblock %}
{% block body %}
<p>We're pleased to announce that the following release has been completed:</p>
<div style="background-color: #ecfdf5; padding: 20px; border-radius: 8px; margin: 20px 0; border-left: 4px solid #10b981;">
  <h3 style="margin-top: 0; color: #1e293b;">{{ plan.name }} {{ plan.version }}</h3>
  <p><strong>Description:</strong> {{ plan.description or "No description provided" }}</p>
  <p><strong>Completion Time:</strong> {{ plan.updated_at | when }}</p>
  {% if plan.scheduled_date %}<p><strong>Originally Scheduled:</strong> {{ plan.scheduled_date | when }}</p>{% endif %}
</div>
<p>All release steps have been successfully executed. Thank you to everyone involved in making this release a success!</p>
{% endblock %}
""",
    "step_assignment.html": """\
{% extends "layout.html" %}
{% block heading %}Step Assignment Notification{% endblock %}
{% block body %}
<p>You have been assigned as the {{ role_text }} for the following step:</p>
<div style="background-color: #f8fafc; padding: 20px; border-radius: 8px; margin: 20px 0;">
  {% include "step_card.html" %}
  <p><strong>Status:</strong> {{ step.status | humanize }}</p>
  {% if step.scheduled_time %}<p><strong>Scheduled Time:</strong> {{ step.scheduled_time | when }} {{ step.timezone }}</p>{% endif %}
</div>
<p>Please log into ReleasePilot to review the step details and {{ action_text }}.</p>
{% endblock %}
""",
}


def _humanize(value: Any) -> str:
    text = getattr(value, "value", value)
    return str(text).replace("_", " ").title()


def _status_color(value: Any) -> str:
    return STATUS_COLORS.get(str(getattr(value, "value", value)), "#6b7280")


def _when(value: datetime | None) -> str:
    if value is None:
        return "-"
    return value.strftime("%Y-%m-%d %H:%M")


class EmailTemplates:
    """Renders notification subjects and HTML bodies."""

    SUBJECT_PREFIX = "ReleasePilot"

    def __init__(self) -> None:
        self.env = Environment(
            loader=DictLoader(_TEMPLATES),
            undefined=StrictUndefined,
            autoescape=select_autoescape(["html"]),
        )
        self.env.filters["humanize"] = _humanize
        self.env.filters["status_color"] = _status_color
        self.env.filters["when"] = _when

    def render(self, name: str, **context: Any) -> str:
        """Render a named template.

        Args:
            name: Template name, e.g. ``step_triggered.html``.
            **context: Template variables.

        Returns:
            Rendered HTML.
        """
        return self.env.get_template(name).render(**context)

    def subject(self, kind: str, title: str) -> str:
        """Build a subject line such as ``ReleasePilot: Step Triggered - Deploy``."""
        return f"{self.SUBJECT_PREFIX}: {kind} - {title}"
