"""
Talent Service — job applications, assessments and interviews.

Operations:
    apply                    public; one application per email
    submit_assessment        public; applicant hands in the assigned task (email-verified)
    assign_assessment        admin; → assessment_assigned
    schedule_interview       admin; → interview_scheduled
    update_status            admin; review decisions (under_review, accepted, rejected, withdrawn)
    get_application_detail   admin; with assessments, interviews, activity and communications
    list_applications        admin; filter by status, role, experience level

States that carry their own data (assessment_assigned, assessment_submitted,
interview_scheduled) are only reachable through the dedicated operation.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta

from opsdesk.core.exceptions import ConflictError, NotFoundError, TransitionError
from opsdesk.core.lifecycle import Actor, apply_transition
from opsdesk.models import db
from opsdesk.models.activity import activity_for, write_activity
from opsdesk.models.notification import NotificationLog
from opsdesk.models.talent import (
    APPLICATION_MACHINE,
    APPLICATION_STATUSES,
    AVAILABILITY_OPTIONS,
    EXPERIENCE_LEVELS,
    TALENT_ROLES,
    TalentApplication,
    TalentAssessment,
    TalentInterview,
    derive_needs_assessment,
)
from opsdesk.services.notifications import Message, admin_recipient, get_dispatcher
from opsdesk.utils.helpers import as_utc, atomic, get_or_raise
from opsdesk.utils.validation import Validator

logger = logging.getLogger(__name__)

ENTITY = APPLICATION_MACHINE.entity_type

DEFAULT_DEADLINE_DAYS = 7
MAX_NOTABLE_PROJECTS = 20

# Statuses set by their own operation, never by a bare status update
_DEDICATED_STATUSES = {
    "assessment_assigned": "POST /api/talent/applications/<id>/assessment",
    "assessment_submitted": "POST /api/talent/applications/<id>/assessment/submit",
    "interview_scheduled": "POST /api/talent/applications/<id>/interview",
}

_STATUS_TEMPLATES = {
    "accepted": "talent_accepted",
    "rejected": "talent_rejected",
}


def _label(value: str) -> str:
    return value.replace("_", " ").title()


def _fmt(dt: datetime | None) -> str:
    dt = as_utc(dt)
    return dt.strftime("%A, %d %B %Y %H:%M UTC") if dt else ""


# ═══════════════════════════════════════════════════════════════════════════
#  Apply
# ═══════════════════════════════════════════════════════════════════════════


def _validate_notable_projects(v: Validator) -> list[dict]:
    raw = v.data.get("notable_projects")
    if raw is None:
        return []
    if not isinstance(raw, list) or len(raw) > MAX_NOTABLE_PROJECTS:
        v.add_error("notable_projects", f"notable_projects must be a list of at most {MAX_NOTABLE_PROJECTS} items")
        return []
    projects = []
    for index, item in enumerate(raw):
        if not isinstance(item, dict):
            v.add_error("notable_projects", f"Item {index + 1} must be an object")
            return []
        pv = Validator(item)
        project = {
            "title": pv.text("title", required=True, max_len=255),
            "description": pv.text("description", max_len=2000),
            "url": pv.url("url"),
            "technologies": pv.string_list("technologies", max_len=100),
            "role": pv.text("role", max_len=100),
        }
        if not pv.ok:
            message = next(iter(pv.errors.values()))
            v.add_error("notable_projects", f"Item {index + 1}: {message}")
            return []
        projects.append({k: val for k, val in project.items() if val not in (None, [])})
    return projects


def validate_application(data: dict) -> dict:
    v = Validator(data)
    fields = {
        "full_name": v.text("full_name", required=True, min_len=2, max_len=255),
        "email": v.email("email"),
        "phone": v.text("phone", max_len=20),
        "location": v.text("location", max_len=255),
        "role": v.choice("role", TALENT_ROLES, required=True),
        "specialization": v.text("specialization", required=True, max_len=255),
        "experience_level": v.choice("experience_level", EXPERIENCE_LEVELS, required=True),
        "years_of_experience": v.integer("years_of_experience", min_value=0, max_value=60),
        "portfolio_url": v.url("portfolio_url"),
        "github_url": v.url("github_url"),
        "linkedin_url": v.url("linkedin_url"),
        "behance_url": v.url("behance_url"),
        "dribbble_url": v.url("dribbble_url"),
        "skills": v.string_list("skills", min_items=1, max_len=100),
        "technologies": v.string_list("technologies", max_len=100),
        "notable_projects": _validate_notable_projects(v),
        "previous_companies": v.string_list("previous_companies", max_len=255),
        "why_join": v.text("why_join", required=True, max_len=5000),
        "availability": v.choice("availability", AVAILABILITY_OPTIONS, required=True),
        "expected_salary_range": v.text("expected_salary_range", max_len=100),
    }
    v.raise_if_invalid()
    return fields


def _find_by_email(email: str) -> TalentApplication | None:
    return db.session.execute(
        db.select(TalentApplication).where(TalentApplication.email == email)
    ).scalar_one_or_none()


def apply(data: dict, *, dispatcher=None) -> TalentApplication:
    """Record a new application.

    Raises:
        ValidationError: invalid payload.
        ConflictError: an application with this email already exists.
    """
    fields = validate_application(data)
    conflict = ConflictError("TalentApplication", "email", fields["email"])
    if _find_by_email(fields["email"]) is not None:
        raise conflict

    application = TalentApplication(
        status=APPLICATION_MACHINE.initial,
        needs_assessment=derive_needs_assessment(
            fields["experience_level"], fields["years_of_experience"], fields["portfolio_url"],
        ),
        **fields,
    )
    with atomic(conflict=conflict):
        db.session.add(application)
        db.session.flush()
        write_activity(
            entity_type=ENTITY,
            entity_id=application.id,
            action="created",
            actor=Actor.client(application.full_name, application.email),
            details={
                "role": application.role,
                "experience_level": application.experience_level,
                "needs_assessment": application.needs_assessment,
            },
        )

    logger.info(
        "Talent application %s received (role=%s needs_assessment=%s)",
        application.id, application.role, application.needs_assessment,
        extra={"entity_type": ENTITY, "entity_id": application.id},
    )

    next_steps = (
        "Our team will review your profile and may send you a short assessment task."
        if application.needs_assessment
        else "Our team will review your profile and portfolio and get back to you soon."
    )
    payload = {
        "full_name": application.full_name,
        "email": application.email,
        "role": application.role,
        "specialization": application.specialization,
        "experience_level": application.experience_level,
        "years_of_experience": application.years_of_experience if application.years_of_experience is not None else "n/a",
        "needs_assessment": "yes" if application.needs_assessment else "no",
        "next_steps": next_steps,
    }
    (dispatcher or get_dispatcher()).dispatch("talent.applied", [
        Message("talent_application_received", application.email, payload, ENTITY, application.id),
        Message("talent_application_admin", admin_recipient(), payload, ENTITY, application.id),
    ])
    return application


# ═══════════════════════════════════════════════════════════════════════════
#  Assessments
# ═══════════════════════════════════════════════════════════════════════════


def get_application(application_id: int) -> TalentApplication:
    return get_or_raise(TalentApplication, application_id)


def assign_assessment(application_id: int, data: dict, admin, *, dispatcher=None) -> TalentAssessment:
    v = Validator(data)
    title = v.text("task_title", required=True, max_len=255)
    description = v.text("task_description", required=True, max_len=10000)
    requirements = v.text("task_requirements", max_len=10000)
    task_type = v.text("task_type", max_len=50)
    deadline_days = v.integer("deadline_days", min_value=1, max_value=90, default=DEFAULT_DEADLINE_DAYS)
    v.raise_if_invalid()

    application = get_application(application_id)
    actor = Actor.admin(admin)
    APPLICATION_MACHINE.check(application.status, "assessment_assigned", actor.kind, entity_id=application.id)

    deadline = datetime.now(UTC) + timedelta(days=deadline_days)
    with atomic():
        assessment = TalentAssessment(
            application_id=application.id,
            task_title=title,
            task_description=description,
            task_requirements=requirements,
            task_type=task_type,
            deadline=deadline,
            assigned_by=admin.id,
        )
        db.session.add(assessment)
        db.session.flush()
        application.needs_assessment = True
        application.assessment_task = title
        application.assessment_deadline = deadline
        apply_transition(
            application, APPLICATION_MACHINE, "assessment_assigned", actor,
            action="assessment_assigned",
            details={"assessment_id": assessment.id, "deadline": deadline.isoformat()},
            log_unchanged=True,
        )

    (dispatcher or get_dispatcher()).dispatch("talent.assessment_assigned", Message(
        "talent_assessment_assigned", application.email,
        {
            "full_name": application.full_name,
            "task_title": title,
            "task_description": description,
            "task_requirements": requirements or "",
            "deadline": _fmt(deadline),
        },
        ENTITY, application.id,
    ))
    return assessment


def submit_assessment(application_id: int, data: dict, *, dispatcher=None) -> TalentAssessment:
    """Applicant hands in the open assessment.  The email must match the application."""
    v = Validator(data)
    email = v.email("email")
    submission_url = v.url("submission_url", required=True)
    notes = v.text("submission_notes", max_len=5000)
    v.raise_if_invalid()

    application = db.session.get(TalentApplication, application_id)
    if application is None or application.email != email:
        raise NotFoundError("TalentApplication", application_id)

    actor = Actor.client(application.full_name, application.email)
    APPLICATION_MACHINE.check(application.status, "assessment_submitted", actor.kind, entity_id=application.id)
    open_tasks = [a for a in application.assessments if a.submitted_at is None]
    if not open_tasks:
        raise TransitionError(
            ENTITY, application.status, "assessment_submitted",
            actor=actor.kind, entity_id=application.id, reason="no open assessment",
        )
    assessment = open_tasks[-1]

    now = datetime.now(UTC)
    late = as_utc(assessment.deadline) < now
    with atomic():
        assessment.submission_url = submission_url
        assessment.submission_notes = notes
        assessment.submitted_at = now
        apply_transition(
            application, APPLICATION_MACHINE, "assessment_submitted", actor,
            action="assessment_submitted",
            details={"assessment_id": assessment.id, "late": late},
        )

    (dispatcher or get_dispatcher()).dispatch("talent.assessment_submitted", Message(
        "talent_assessment_submitted_admin", admin_recipient(),
        {
            "full_name": application.full_name,
            "task_title": assessment.task_title,
            "submission_url": submission_url,
            "submission_notes": notes or "",
        },
        ENTITY, application.id,
    ))
    return assessment


# ═══════════════════════════════════════════════════════════════════════════
#  Interviews
# ═══════════════════════════════════════════════════════════════════════════


def schedule_interview(application_id: int, data: dict, admin, *, dispatcher=None) -> TalentInterview:
    v = Validator(data)
    scheduled_at = v.datetime("scheduled_at", required=True)
    interview_type = v.text("interview_type", max_len=50, default="video")
    duration = v.integer("duration_minutes", min_value=15, max_value=480, default=60)
    meeting_link = v.url("meeting_link")
    location = v.text("location", max_len=255)
    notes = v.text("notes", max_len=5000)
    v.raise_if_invalid()

    application = get_application(application_id)
    actor = Actor.admin(admin)
    APPLICATION_MACHINE.check(application.status, "interview_scheduled", actor.kind, entity_id=application.id)

    with atomic():
        interview = TalentInterview(
            application_id=application.id,
            interview_type=interview_type,
            scheduled_at=scheduled_at,
            duration_minutes=duration,
            meeting_link=meeting_link,
            location=location,
            notes=notes,
            interviewer_ids=[admin.id],
        )
        db.session.add(interview)
        db.session.flush()
        application.interview_scheduled_at = scheduled_at
        apply_transition(
            application, APPLICATION_MACHINE, "interview_scheduled", actor,
            action="interview_scheduled",
            details={"interview_id": interview.id, "scheduled_at": scheduled_at.isoformat()},
            log_unchanged=True,
        )

    (dispatcher or get_dispatcher()).dispatch("talent.interview_scheduled", Message(
        "talent_interview_scheduled", application.email,
        {
            "full_name": application.full_name,
            "interview_type": interview_type,
            "scheduled_at": _fmt(scheduled_at),
            "duration_minutes": duration,
            "meeting_link": meeting_link or "To be shared",
            "location": location or "Online",
            "notes": notes or "",
        },
        ENTITY, application.id,
    ))
    return interview


# ═══════════════════════════════════════════════════════════════════════════
#  Review decisions
# ═══════════════════════════════════════════════════════════════════════════


def update_status(application_id: int, data: dict, admin, *, dispatcher=None) -> TalentApplication:
    v = Validator(data)
    status = v.choice("status", APPLICATION_STATUSES, required=True)
    admin_notes = v.text("admin_notes", max_len=5000)
    if status in _DEDICATED_STATUSES:
        v.add_error("status", f"Use {_DEDICATED_STATUSES[status]}")
    v.raise_if_invalid()

    application = get_application(application_id)
    actor = Actor.admin(admin)

    if not APPLICATION_MACHINE.check(application.status, status, actor.kind, entity_id=application.id):
        # same status: a notes-only save, nobody is emailed
        if admin_notes is not None and admin_notes != application.admin_notes:
            with atomic():
                application.admin_notes = admin_notes
                write_activity(
                    entity_type=ENTITY,
                    entity_id=application.id,
                    action="updated",
                    actor=actor,
                    details={"admin_notes": admin_notes},
                )
        return application

    with atomic():
        previous = apply_transition(
            application, APPLICATION_MACHINE, status, actor,
            details={"admin_notes": admin_notes} if admin_notes else None,
        )
        application.reviewed_by = admin.id
        application.reviewed_at = datetime.now(UTC)
        if admin_notes is not None:
            application.admin_notes = admin_notes

    logger.info("Talent application %s status %s → %s by admin %s", application.id, previous, status, admin.id)

    (dispatcher or get_dispatcher()).dispatch("talent.status_updated", Message(
        _STATUS_TEMPLATES.get(status, "talent_status_update"), application.email,
        {
            "full_name": application.full_name,
            "status": status,
            "status_label": _label(status),
            "admin_notes": admin_notes or "",
        },
        ENTITY, application.id,
    ))
    return application


# ═══════════════════════════════════════════════════════════════════════════
#  Reads
# ═══════════════════════════════════════════════════════════════════════════


def get_application_detail(application_id: int) -> dict:
    application = get_application(application_id)
    d = application.to_dict(include_children=True)
    d["activity"] = [a.to_dict() for a in activity_for(ENTITY, application.id)]
    d["communications"] = [
        n.to_dict() for n in db.session.execute(
            db.select(NotificationLog)
            .where(NotificationLog.entity_type == ENTITY, NotificationLog.entity_id == application.id)
            .order_by(NotificationLog.created_at.asc(), NotificationLog.id.asc())
        ).scalars()
    ]
    return d


def list_applications(filters: dict, *, limit: int = 50, offset: int = 0) -> tuple[list, int]:
    v = Validator(filters)
    status = v.choice("status", APPLICATION_STATUSES)
    role = v.choice("role", TALENT_ROLES)
    level = v.choice("experience_level", EXPERIENCE_LEVELS)
    v.raise_if_invalid("Invalid filter")

    stmt = db.select(TalentApplication)
    if status:
        stmt = stmt.where(TalentApplication.status == status)
    if role:
        stmt = stmt.where(TalentApplication.role == role)
    if level:
        stmt = stmt.where(TalentApplication.experience_level == level)

    total = db.session.execute(
        db.select(db.func.count()).select_from(stmt.subquery())
    ).scalar_one()
    rows = db.session.execute(
        stmt.order_by(TalentApplication.created_at.desc(), TalentApplication.id.desc())
        .limit(limit).offset(offset)
    ).scalars().all()
    return list(rows), total
