"""
OpsDesk
Email templates.

Each template is a subject line plus an HTML body fragment with
``{placeholder}`` fields.  ``render`` HTML-escapes every payload value
except keys ending in ``_html`` (pre-built fragments such as quotation line
items) and wraps the body in the shared layout.  Missing keys are left as
``{key}`` rather than raising.
"""

from __future__ import annotations

from typing import Any

from markupsafe import escape

_LAYOUT = """
<div style="font-family: 'Inter', Arial, sans-serif; max-width: 600px; margin: 0 auto;">
    <div style="background: #1e293b; color: white; padding: 16px 24px; border-radius: 8px 8px 0 0;">
        <h2 style="margin: 0; font-size: 18px;">{company_name}</h2>
    </div>
    <div style="background: #f8fafc; padding: 24px; border: 1px solid #e2e8f0; border-top: none;">
        {body}
    </div>
    <div style="background: #f1f5f9; padding: 12px 24px; border-radius: 0 0 8px 8px;
                border: 1px solid #e2e8f0; border-top: none; text-align: center;">
        <p style="color: #94a3b8; font-size: 12px; margin: 0;">
            {company_name}. This is an automated message.
        </p>
    </div>
</div>
"""

_TEMPLATES: dict[str, dict[str, str]] = {
    # ── Project requests ────────────────────────────────────────────────
    "request_received_admin": {
        "subject": "New project request: {project_type} from {client_name}",
        "html": """
        <h3 style="color: #1e293b;">New quote request #{request_id}</h3>
        <p><strong>Client:</strong> {client_name} ({client_email}, {client_phone})</p>
        <p><strong>Company:</strong> {client_company}</p>
        <p><strong>Project type:</strong> {project_type}</p>
        <p><strong>Budget:</strong> {budget_range}</p>
        <p style="white-space: pre-wrap; color: #475569;">{requirements}</p>
        <p><a href="{dashboard_url}">Open in dashboard</a></p>
        """,
    },
    "request_received_client": {
        "subject": "We received your project request",
        "html": """
        <p>Hi {client_name},</p>
        <p>Thank you for your interest. We have received your request for a
        <strong>{project_type}</strong> and will send you a detailed quotation shortly.</p>
        <p>Reference: #{request_id}</p>
        """,
    },
    "quotation_issued": {
        "subject": "Your project quotation {invoice_number}",
        "html": """
        <p>Hi {client_name},</p>
        <p>Here is our quotation for your <strong>{project_type}</strong> project.</p>
        <p><strong>Quotation:</strong> {invoice_number} &nbsp; <strong>Date:</strong> {issued_on}</p>
        <table style="width: 100%; border-collapse: collapse; margin: 12px 0;">
            <tr style="background: #e2e8f0;">
                <th style="padding: 8px; text-align: left;">Item</th>
                <th style="padding: 8px; text-align: right;">Amount</th>
            </tr>
            {line_items_html}
            <tr>
                <td style="padding: 8px;"><strong>Total</strong></td>
                <td style="padding: 8px; text-align: right;"><strong>{total_formatted}</strong></td>
            </tr>
        </table>
        {recurring_html}
        <p><strong>Estimated timeline:</strong> {timeline_weeks} weeks</p>
        <p style="white-space: pre-wrap; color: #475569;">{notes}</p>
        """,
    },
    # ── Support tickets ─────────────────────────────────────────────────
    "ticket_created_client": {
        "subject": "[{ticket_number}] We received your support request",
        "html": """
        <p>Hi {client_name},</p>
        <p>Your ticket <strong>{ticket_number}</strong> ({subject}) has been created.</p>
        <p>On your <strong>{plan}</strong> plan we respond within <strong>{sla_hours} hours</strong>.</p>
        <p><a href="{ticket_url}">Track your ticket</a></p>
        """,
    },
    "ticket_created_admin": {
        "subject": "[{ticket_number}] New {category} ticket ({plan}, {sla_hours}h SLA)",
        "html": """
        <h3 style="color: #1e293b;">{subject}</h3>
        <p><strong>From:</strong> {client_name} ({client_email})</p>
        <p><strong>Plan:</strong> {plan} &nbsp; <strong>SLA:</strong> {sla_hours}h</p>
        <p style="white-space: pre-wrap; color: #475569;">{description}</p>
        """,
    },
    "ticket_client_message_admin": {
        "subject": "[{ticket_number}] New reply from {sender_name}",
        "html": """
        <p><strong>{sender_name}</strong> replied on ticket {ticket_number} (status: {status}):</p>
        <p style="white-space: pre-wrap; color: #475569;">{message}</p>
        """,
    },
    "ticket_admin_response_client": {
        "subject": "[{ticket_number}] New response from our support team",
        "html": """
        <p>Hi {client_name},</p>
        <p>{sender_name} responded to your ticket <strong>{ticket_number}</strong>:</p>
        <p style="white-space: pre-wrap; color: #475569;">{message}</p>
        <p><a href="{ticket_url}">View the conversation</a></p>
        """,
    },
    "ticket_status_client": {
        "subject": "[{ticket_number}] Ticket status: {status_label}",
        "html": """
        <p>Hi {client_name},</p>
        <p>Your ticket <strong>{ticket_number}</strong> is now <strong>{status_label}</strong>.</p>
        <p style="white-space: pre-wrap; color: #475569;">{resolution_notes}</p>
        <p><a href="{ticket_url}">View your ticket</a></p>
        """,
    },
    # ── Talent ──────────────────────────────────────────────────────────
    "talent_application_received": {
        "subject": "We received your application",
        "html": """
        <p>Hi {full_name},</p>
        <p>Thank you for applying as a <strong>{role}</strong> ({specialization}).</p>
        <p>{next_steps}</p>
        """,
    },
    "talent_application_admin": {
        "subject": "New talent application: {full_name} ({role}, {experience_level})",
        "html": """
        <p><strong>{full_name}</strong> ({email}) applied as {role} / {specialization}.</p>
        <p>Experience: {experience_level}, {years_of_experience} years. Needs assessment: {needs_assessment}</p>
        """,
    },
    "talent_assessment_assigned": {
        "subject": "Your assessment task: {task_title}",
        "html": """
        <p>Hi {full_name},</p>
        <p>As the next step, please complete the following task by <strong>{deadline}</strong>.</p>
        <h3 style="color: #1e293b;">{task_title}</h3>
        <p style="white-space: pre-wrap; color: #475569;">{task_description}</p>
        <p style="white-space: pre-wrap; color: #475569;">{task_requirements}</p>
        """,
    },
    "talent_assessment_submitted_admin": {
        "subject": "Assessment submitted: {full_name}",
        "html": """
        <p><strong>{full_name}</strong> submitted "{task_title}".</p>
        <p><a href="{submission_url}">{submission_url}</a></p>
        <p style="white-space: pre-wrap; color: #475569;">{submission_notes}</p>
        """,
    },
    "talent_interview_scheduled": {
        "subject": "Interview scheduled for {scheduled_at}",
        "html": """
        <p>Hi {full_name},</p>
        <p>Your <strong>{interview_type}</strong> interview is scheduled for
        <strong>{scheduled_at}</strong> ({duration_minutes} minutes).</p>
        <p>Meeting link: {meeting_link}</p>
        <p>Location: {location}</p>
        <p style="white-space: pre-wrap; color: #475569;">{notes}</p>
        """,
    },
    "talent_accepted": {
        "subject": "Welcome aboard, {full_name}!",
        "html": """
        <p>Hi {full_name},</p>
        <p>We are delighted to let you know that your application has been
        <strong>accepted</strong>. We will be in touch with onboarding details.</p>
        <p style="white-space: pre-wrap; color: #475569;">{admin_notes}</p>
        """,
    },
    "talent_rejected": {
        "subject": "Update on your application",
        "html": """
        <p>Hi {full_name},</p>
        <p>Thank you for your interest. After careful review we will not be
        moving forward with your application at this time.</p>
        <p style="white-space: pre-wrap; color: #475569;">{admin_notes}</p>
        """,
    },
    "talent_status_update": {
        "subject": "Your application status: {status_label}",
        "html": """
        <p>Hi {full_name},</p>
        <p>Your application is now <strong>{status_label}</strong>.</p>
        <p style="white-space: pre-wrap; color: #475569;">{admin_notes}</p>
        """,
    },
    # ── Auth ────────────────────────────────────────────────────────────
    "password_reset": {
        "subject": "Reset your password",
        "html": """
        <p>Hi {full_name},</p>
        <p>Use the link below to choose a new password. It expires in {expires_minutes} minutes.</p>
        <p><a href="{reset_url}">Reset password</a></p>
        <p>If you did not request this, you can ignore this email.</p>
        """,
    },
}


def template_names() -> list[str]:
    return sorted(_TEMPLATES)


def render(template_name: str, payload: dict[str, Any]) -> tuple[str, str]:
    """Return ``(subject, html)`` for a template.

    Raises KeyError for an unknown template.
    """
    template = _TEMPLATES[template_name]
    context = _SafeDict(
        {k: (v if k.endswith("_html") else escape("" if v is None else v)) for k, v in payload.items()}
    )
    context.setdefault("company_name", "OpsDesk")
    subject = template["subject"].format_map(
        _SafeDict({k: ("" if v is None else v) for k, v in payload.items()})
    )
    body = template["html"].format_map(context)
    html = _LAYOUT.format_map(_SafeDict(company_name=context["company_name"], body=body))
    return subject, html


class _SafeDict(dict):
    """Dict that returns {key} for missing keys instead of raising."""

    def __missing__(self, key):
        return f"{{{key}}}"
