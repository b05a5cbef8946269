"""
OpsDesk
Talent domain models.

Models:
    - TalentApplication: a job application (developer / designer / both).
    - TalentAssessment: a take-home task assigned to an applicant.
    - TalentInterview: a scheduled interview.

Lifecycle (admin unless noted):
    pending              → under_review, assessment_assigned, interview_scheduled,
                           accepted, rejected, withdrawn
    under_review         → assessment_assigned, interview_scheduled, accepted,
                           rejected, withdrawn
    assessment_assigned  → assessment_assigned, assessment_submitted (admin, client),
                           under_review, interview_scheduled, rejected, withdrawn
    assessment_submitted → under_review, assessment_assigned, interview_scheduled,
                           accepted, rejected, withdrawn
    interview_scheduled  → interview_scheduled, accepted, rejected, withdrawn
    accepted | rejected | withdrawn → terminal
"""

from datetime import UTC, datetime

from opsdesk.core.lifecycle import Actor, LifecycleMachine, edges, merge_edges
from opsdesk.models import db
from opsdesk.utils.helpers import iso

# ── Constants ────────────────────────────────────────────────────────────────

TALENT_ROLES = ("developer", "designer", "both")
EXPERIENCE_LEVELS = ("beginner", "intermediate", "advanced", "expert")
AVAILABILITY_OPTIONS = ("immediate", "two_weeks", "one_month", "flexible")

APPLICATION_STATUSES = (
    "pending",
    "under_review",
    "assessment_assigned",
    "assessment_submitted",
    "interview_scheduled",
    "accepted",
    "rejected",
    "withdrawn",
)

TERMINAL_STATUSES = frozenset({"accepted", "rejected", "withdrawn"})

# Below this many years an applicant is routed through an assessment
MIN_YEARS_WITHOUT_ASSESSMENT = 2

APPLICATION_MACHINE = LifecycleMachine(
    entity_type="talent_application",
    initial="pending",
    transitions={
        "pending": edges(
            "under_review", "assessment_assigned", "interview_scheduled",
            "accepted", "rejected", "withdrawn",
        ),
        "under_review": edges(
            "assessment_assigned", "interview_scheduled",
            "accepted", "rejected", "withdrawn",
        ),
        "assessment_assigned": merge_edges(
            edges("assessment_submitted", by=(Actor.ADMIN, Actor.CLIENT)),
            edges(
                "assessment_assigned", "under_review", "interview_scheduled",
                "rejected", "withdrawn",
            ),
        ),
        "assessment_submitted": edges(
            "under_review", "assessment_assigned", "interview_scheduled",
            "accepted", "rejected", "withdrawn",
        ),
        "interview_scheduled": edges(
            "interview_scheduled", "accepted", "rejected", "withdrawn",
        ),
    },
    terminal=TERMINAL_STATUSES,
    noop_actors=frozenset({Actor.ADMIN}),
)


def derive_needs_assessment(experience_level, years_of_experience, portfolio_url) -> bool:
    """Beginners, anyone under two years, and anyone without a portfolio."""
    if experience_level == "beginner":
        return True
    if years_of_experience is not None and years_of_experience < MIN_YEARS_WITHOUT_ASSESSMENT:
        return True
    return not portfolio_url


class TalentApplication(db.Model):
    __tablename__ = "talent_applications"
    __table_args__ = (
        db.Index("idx_talent_status", "status"),
        db.Index("idx_talent_role", "role"),
        db.Index("idx_talent_created", "created_at"),
    )

    id = db.Column(db.Integer, primary_key=True)

    # Personal
    full_name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=False, unique=True, index=True)
    phone = db.Column(db.String(20))
    location = db.Column(db.String(255))

    # Professional
    role = db.Column(db.String(20), nullable=False)
    specialization = db.Column(db.String(255), nullable=False)
    experience_level = db.Column(db.String(20), nullable=False)
    years_of_experience = db.Column(db.Integer)

    # Portfolio & links
    portfolio_url = db.Column(db.String(500))
    github_url = db.Column(db.String(500))
    linkedin_url = db.Column(db.String(500))
    behance_url = db.Column(db.String(500))
    dribbble_url = db.Column(db.String(500))

    # Structured lists, order preserved
    skills = db.Column(db.JSON, nullable=False, default=list)
    technologies = db.Column(db.JSON, nullable=False, default=list)
    notable_projects = db.Column(db.JSON, nullable=False, default=list)
    previous_companies = db.Column(db.JSON, nullable=False, default=list)

    why_join = db.Column(db.Text, nullable=False)
    availability = db.Column(db.String(20), nullable=False)
    expected_salary_range = db.Column(db.String(100))

    # Lifecycle
    status = db.Column(db.String(30), nullable=False, default=APPLICATION_MACHINE.initial)
    needs_assessment = db.Column(db.Boolean, nullable=False, default=False)
    assessment_task = db.Column(db.String(255))
    assessment_deadline = db.Column(db.DateTime(timezone=True))
    interview_scheduled_at = db.Column(db.DateTime(timezone=True))
    admin_notes = db.Column(db.Text)
    reviewed_by = db.Column(
        db.Integer,
        db.ForeignKey("admin_users.id", ondelete="SET NULL"),
        nullable=True,
    )
    reviewed_at = db.Column(db.DateTime(timezone=True))

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(UTC))
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    assessments = db.relationship(
        "TalentAssessment",
        back_populates="application",
        cascade="all, delete-orphan",
        order_by="TalentAssessment.id",
    )
    interviews = db.relationship(
        "TalentInterview",
        back_populates="application",
        cascade="all, delete-orphan",
        order_by="TalentInterview.scheduled_at",
    )

    def to_dict(self, include_children=False):
        d = {
            "id": self.id,
            "full_name": self.full_name,
            "email": self.email,
            "phone": self.phone,
            "location": self.location,
            "role": self.role,
            "specialization": self.specialization,
            "experience_level": self.experience_level,
            "years_of_experience": self.years_of_experience,
            "portfolio_url": self.portfolio_url,
            "github_url": self.github_url,
            "linkedin_url": self.linkedin_url,
            "behance_url": self.behance_url,
            "dribbble_url": self.dribbble_url,
            "skills": list(self.skills or []),
            "technologies": list(self.technologies or []),
            "notable_projects": list(self.notable_projects or []),
            "previous_companies": list(self.previous_companies or []),
            "why_join": self.why_join,
            "availability": self.availability,
            "expected_salary_range": self.expected_salary_range,
            "status": self.status,
            "needs_assessment": self.needs_assessment,
            "assessment_task": self.assessment_task,
            "assessment_deadline": iso(self.assessment_deadline),
            "interview_scheduled_at": iso(self.interview_scheduled_at),
            "admin_notes": self.admin_notes,
            "reviewed_by": self.reviewed_by,
            "reviewed_at": iso(self.reviewed_at),
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }
        if include_children:
            d["assessments"] = [a.to_dict() for a in self.assessments]
            d["interviews"] = [i.to_dict() for i in self.interviews]
        return d

    def __repr__(self):
        return f"<TalentApplication {self.id}: {self.email} {self.status}>"


class TalentAssessment(db.Model):
    __tablename__ = "talent_assessments"

    id = db.Column(db.Integer, primary_key=True)
    application_id = db.Column(
        db.Integer,
        db.ForeignKey("talent_applications.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    task_title = db.Column(db.String(255), nullable=False)
    task_description = db.Column(db.Text, nullable=False)
    task_requirements = db.Column(db.Text)
    task_type = db.Column(db.String(50))
    deadline = db.Column(db.DateTime(timezone=True), nullable=False)
    submission_url = db.Column(db.String(500))
    submission_notes = db.Column(db.Text)
    submitted_at = db.Column(db.DateTime(timezone=True))
    assigned_by = db.Column(
        db.Integer,
        db.ForeignKey("admin_users.id", ondelete="SET NULL"),
        nullable=True,
    )
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(UTC))

    application = db.relationship("TalentApplication", back_populates="assessments")

    def to_dict(self):
        return {
            "id": self.id,
            "application_id": self.application_id,
            "task_title": self.task_title,
            "task_description": self.task_description,
            "task_requirements": self.task_requirements,
            "task_type": self.task_type,
            "deadline": iso(self.deadline),
            "submission_url": self.submission_url,
            "submission_notes": self.submission_notes,
            "submitted_at": iso(self.submitted_at),
            "assigned_by": self.assigned_by,
            "created_at": iso(self.created_at),
        }


class TalentInterview(db.Model):
    __tablename__ = "talent_interviews"

    id = db.Column(db.Integer, primary_key=True)
    application_id = db.Column(
        db.Integer,
        db.ForeignKey("talent_applications.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    interview_type = db.Column(db.String(50), nullable=False, default="video")
    scheduled_at = db.Column(db.DateTime(timezone=True), nullable=False)
    duration_minutes = db.Column(db.Integer, nullable=False, default=60)
    meeting_link = db.Column(db.String(500))
    location = db.Column(db.String(255))
    notes = db.Column(db.Text)
    interviewer_ids = db.Column(db.JSON, nullable=False, default=list)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(UTC))

    application = db.relationship("TalentApplication", back_populates="interviews")

    def to_dict(self):
        return {
            "id": self.id,
            "application_id": self.application_id,
            "interview_type": self.interview_type,
            "scheduled_at": iso(self.scheduled_at),
            "duration_minutes": self.duration_minutes,
            "meeting_link": self.meeting_link,
            "location": self.location,
            "notes": self.notes,
            "interviewer_ids": list(self.interviewer_ids or []),
            "created_at": iso(self.created_at),
        }
