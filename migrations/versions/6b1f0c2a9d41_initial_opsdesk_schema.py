"""initial_opsdesk_schema

Admin users, project requests and quotations, support desk, talent
pipeline, activity log and notification log.

Revision ID: 6b1f0c2a9d41
Revises:
Create Date: 2026-10-17 09:30:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = "6b1f0c2a9d41"
down_revision = None
branch_labels = None
depends_on = None


def _created_at():
    return sa.Column("created_at", sa.DateTime(timezone=True), nullable=True)


def _updated_at():
    return sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True)


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing_tables = set(inspector.get_table_names())

    if "admin_users" not in existing_tables:
        op.create_table(
            "admin_users",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("email", sa.String(length=255), nullable=False),
            sa.Column("password_hash", sa.String(length=256), nullable=False),
            sa.Column("full_name", sa.String(length=255), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("last_login_at", sa.DateTime(timezone=True), nullable=True),
            _created_at(),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_admin_users_email", "admin_users", ["email"], unique=True)

    if "project_requests" not in existing_tables:
        op.create_table(
            "project_requests",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("client_name", sa.String(length=255), nullable=False),
            sa.Column("client_email", sa.String(length=255), nullable=False),
            sa.Column("client_phone", sa.String(length=20), nullable=False),
            sa.Column("company_name", sa.String(length=255), nullable=True),
            sa.Column("project_type", sa.String(length=50), nullable=False),
            sa.Column("requirements", sa.Text(), nullable=False),
            sa.Column("budget_range", sa.String(length=50), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="Pending"),
            _created_at(),
            _updated_at(),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_project_requests_client_email", "project_requests", ["client_email"])
        op.create_index("idx_project_requests_status", "project_requests", ["status"])
        op.create_index("idx_project_requests_created", "project_requests", ["created_at"])

    if "quotations" not in existing_tables:
        op.create_table(
            "quotations",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("request_id", sa.Integer(), nullable=False),
            sa.Column("total_cost", sa.Numeric(precision=12, scale=2), nullable=False),
            sa.Column("timeline_weeks", sa.Integer(), nullable=False),
            sa.Column("cost_breakdown_json", sa.Text(), nullable=True),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("recurring_cost", sa.Numeric(precision=12, scale=2), nullable=False, server_default="0"),
            sa.Column("recurring_period", sa.String(length=20), nullable=False, server_default="none"),
            sa.Column("recurring_description", sa.String(length=500), nullable=True),
            sa.Column("issued_by", sa.Integer(), nullable=True),
            sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("voided_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["request_id"], ["project_requests.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["issued_by"], ["admin_users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_quotations_request_id", "quotations", ["request_id"])

    if "support_clients" not in existing_tables:
        op.create_table(
            "support_clients",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("full_name", sa.String(length=255), nullable=False),
            sa.Column("email", sa.String(length=255), nullable=False),
            sa.Column("phone", sa.String(length=20), nullable=True),
            sa.Column("company_name", sa.String(length=255), nullable=True),
            sa.Column("plan_type", sa.String(length=20), nullable=False, server_default="basic"),
            _created_at(),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_support_clients_email", "support_clients", ["email"], unique=True)

    if "support_tickets" not in existing_tables:
        op.create_table(
            "support_tickets",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("ticket_seq", sa.Integer(), nullable=False),
            sa.Column("ticket_number", sa.String(length=20), nullable=False),
            sa.Column("client_id", sa.Integer(), nullable=True),
            sa.Column("client_name", sa.String(length=255), nullable=False),
            sa.Column("client_email", sa.String(length=255), nullable=False),
            sa.Column("client_phone", sa.String(length=20), nullable=True),
            sa.Column("project_id", sa.Integer(), nullable=True),
            sa.Column("subject", sa.String(length=255), nullable=False),
            sa.Column("description", sa.Text(), nullable=False),
            sa.Column("category", sa.String(length=30), nullable=False, server_default="general"),
            sa.Column("priority", sa.String(length=20), nullable=False, server_default="medium"),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="open"),
            sa.Column("client_plan", sa.String(length=20), nullable=False, server_default="basic"),
            sa.Column("response_sla_hours", sa.Integer(), nullable=False, server_default="48"),
            sa.Column("assigned_to", sa.Integer(), nullable=True),
            sa.Column("assigned_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("resolution_notes", sa.Text(), nullable=True),
            sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("resolved_by", sa.Integer(), nullable=True),
            sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
            _created_at(),
            _updated_at(),
            sa.ForeignKeyConstraint(["client_id"], ["support_clients.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["project_id"], ["project_requests.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["assigned_to"], ["admin_users.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["resolved_by"], ["admin_users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("ticket_seq"),
        )
        op.create_index("ix_support_tickets_ticket_number", "support_tickets", ["ticket_number"], unique=True)
        op.create_index("ix_support_tickets_client_id", "support_tickets", ["client_id"])
        op.create_index("idx_support_tickets_status", "support_tickets", ["status"])
        op.create_index("idx_support_tickets_priority", "support_tickets", ["priority"])
        op.create_index("idx_support_tickets_created", "support_tickets", ["created_at"])

    if "ticket_messages" not in existing_tables:
        op.create_table(
            "ticket_messages",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("ticket_id", sa.Integer(), nullable=False),
            sa.Column("sender_type", sa.String(length=20), nullable=False),
            sa.Column("sender_id", sa.Integer(), nullable=True),
            sa.Column("sender_name", sa.String(length=255), nullable=True),
            sa.Column("sender_email", sa.String(length=255), nullable=True),
            sa.Column("message", sa.Text(), nullable=False),
            sa.Column("is_internal_note", sa.Boolean(), nullable=False, server_default=sa.false()),
            _created_at(),
            sa.ForeignKeyConstraint(["ticket_id"], ["support_tickets.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_ticket_messages_ticket_id", "ticket_messages", ["ticket_id"])

    if "talent_applications" not in existing_tables:
        op.create_table(
            "talent_applications",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("full_name", sa.String(length=255), nullable=False),
            sa.Column("email", sa.String(length=255), nullable=False),
            sa.Column("phone", sa.String(length=20), nullable=True),
            sa.Column("location", sa.String(length=255), nullable=True),
            sa.Column("role", sa.String(length=20), nullable=False),
            sa.Column("specialization", sa.String(length=255), nullable=False),
            sa.Column("experience_level", sa.String(length=20), nullable=False),
            sa.Column("years_of_experience", sa.Integer(), nullable=True),
            sa.Column("portfolio_url", sa.String(length=500), nullable=True),
            sa.Column("github_url", sa.String(length=500), nullable=True),
            sa.Column("linkedin_url", sa.String(length=500), nullable=True),
            sa.Column("behance_url", sa.String(length=500), nullable=True),
            sa.Column("dribbble_url", sa.String(length=500), nullable=True),
            sa.Column("skills", sa.JSON(), nullable=False),
            sa.Column("technologies", sa.JSON(), nullable=False),
            sa.Column("notable_projects", sa.JSON(), nullable=False),
            sa.Column("previous_companies", sa.JSON(), nullable=False),
            sa.Column("why_join", sa.Text(), nullable=False),
            sa.Column("availability", sa.String(length=20), nullable=False),
            sa.Column("expected_salary_range", sa.String(length=100), nullable=True),
            sa.Column("status", sa.String(length=30), nullable=False, server_default="pending"),
            sa.Column("needs_assessment", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("assessment_task", sa.String(length=255), nullable=True),
            sa.Column("assessment_deadline", sa.DateTime(timezone=True), nullable=True),
            sa.Column("interview_scheduled_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("admin_notes", sa.Text(), nullable=True),
            sa.Column("reviewed_by", sa.Integer(), nullable=True),
            sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
            _created_at(),
            _updated_at(),
            sa.ForeignKeyConstraint(["reviewed_by"], ["admin_users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_talent_applications_email", "talent_applications", ["email"], unique=True)
        op.create_index("idx_talent_status", "talent_applications", ["status"])
        op.create_index("idx_talent_role", "talent_applications", ["role"])
        op.create_index("idx_talent_created", "talent_applications", ["created_at"])

    if "talent_assessments" not in existing_tables:
        op.create_table(
            "talent_assessments",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("application_id", sa.Integer(), nullable=False),
            sa.Column("task_title", sa.String(length=255), nullable=False),
            sa.Column("task_description", sa.Text(), nullable=False),
            sa.Column("task_requirements", sa.Text(), nullable=True),
            sa.Column("task_type", sa.String(length=50), nullable=True),
            sa.Column("deadline", sa.DateTime(timezone=True), nullable=False),
            sa.Column("submission_url", sa.String(length=500), nullable=True),
            sa.Column("submission_notes", sa.Text(), nullable=True),
            sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("assigned_by", sa.Integer(), nullable=True),
            _created_at(),
            sa.ForeignKeyConstraint(["application_id"], ["talent_applications.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["assigned_by"], ["admin_users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_talent_assessments_application_id", "talent_assessments", ["application_id"])

    if "talent_interviews" not in existing_tables:
        op.create_table(
            "talent_interviews",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("application_id", sa.Integer(), nullable=False),
            sa.Column("interview_type", sa.String(length=50), nullable=False, server_default="video"),
            sa.Column("scheduled_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("duration_minutes", sa.Integer(), nullable=False, server_default="60"),
            sa.Column("meeting_link", sa.String(length=500), nullable=True),
            sa.Column("location", sa.String(length=255), nullable=True),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("interviewer_ids", sa.JSON(), nullable=False),
            _created_at(),
            sa.ForeignKeyConstraint(["application_id"], ["talent_applications.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_talent_interviews_application_id", "talent_interviews", ["application_id"])

    if "activity_logs" not in existing_tables:
        op.create_table(
            "activity_logs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("entity_type", sa.String(length=30), nullable=False),
            sa.Column("entity_id", sa.Integer(), nullable=False),
            sa.Column("action", sa.String(length=40), nullable=False),
            sa.Column("actor_type", sa.String(length=20), nullable=False, server_default="system"),
            sa.Column("actor_id", sa.Integer(), nullable=True),
            sa.Column("actor_name", sa.String(length=255), nullable=True),
            sa.Column("details_json", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["actor_id"], ["admin_users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("idx_activity_entity", "activity_logs", ["entity_type", "entity_id"])
        op.create_index("idx_activity_action", "activity_logs", ["action"])
        op.create_index("idx_activity_ts", "activity_logs", ["created_at"])

    if "notification_logs" not in existing_tables:
        op.create_table(
            "notification_logs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("template", sa.String(length=60), nullable=False),
            sa.Column("recipient", sa.String(length=255), nullable=False),
            sa.Column("subject", sa.String(length=500), nullable=True),
            sa.Column("entity_type", sa.String(length=30), nullable=True),
            sa.Column("entity_id", sa.Integer(), nullable=True),
            sa.Column("policy", sa.String(length=30), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="queued"),
            sa.Column("error_message", sa.Text(), nullable=True),
            _created_at(),
            sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("idx_notification_entity", "notification_logs", ["entity_type", "entity_id"])
        op.create_index("idx_notification_status", "notification_logs", ["status"])


def downgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing_tables = set(inspector.get_table_names())

    for table in (
        "notification_logs",
        "activity_logs",
        "talent_interviews",
        "talent_assessments",
        "talent_applications",
        "ticket_messages",
        "support_tickets",
        "support_clients",
        "quotations",
        "project_requests",
        "admin_users",
    ):
        if table in existing_tables:
            op.drop_table(table)
