"""
Talent application tests.

Covers:
  - Applying: validation, needs_assessment derivation, duplicate email
  - Assessment assignment and applicant submission
  - Interview scheduling and rescheduling
  - Review decisions, terminal states, dedicated-status guard
  - Admin detail with children, activity and communications
"""

from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy.exc import SQLAlchemyError

from opsdesk.models import activity as activity_module
from opsdesk.models import db
from opsdesk.models.activity import activity_for
from opsdesk.models.talent import TalentApplication, TalentAssessment, derive_needs_assessment

from conftest import application_payload

BASE = "/api/talent"

TASK = {
    "task_title": "Build a REST endpoint",
    "task_description": "Expose a paginated list of products with filtering.",
    "deadline_days": 5,
}


def _apply(client, **overrides):
    res = client.post(f"{BASE}/apply", json=application_payload(**overrides))
    assert res.status_code == 201, res.get_json()
    return res.get_json()["application"]


def _assign(client, headers, app_id, **overrides):
    return client.post(f"{BASE}/applications/{app_id}/assessment", json={**TASK, **overrides}, headers=headers)


def _interview(client, headers, app_id, when=None, **overrides):
    when = when or (datetime.now(UTC) + timedelta(days=3)).replace(microsecond=0)
    body = {"scheduled_at": when.isoformat(), "meeting_link": "https://meet.example.com/abc"}
    body.update(overrides)
    return client.post(f"{BASE}/applications/{app_id}/interview", json=body, headers=headers)


def _status(client, headers, app_id, status, **extra):
    return client.patch(
        f"{BASE}/applications/{app_id}/status", json={"status": status, **extra}, headers=headers,
    )


# ═══════════════════════════════════════════════════════════════
# Apply
# ═══════════════════════════════════════════════════════════════


class TestApply:
    def test_apply_creates_pending_application(self, client, notifier):
        application = _apply(client)
        assert application["status"] == "pending"
        assert application["needs_assessment"] is False
        row = db.session.get(TalentApplication, application["id"])
        assert row.skills == ["Python", "SQL"]
        assert row.notable_projects[0]["title"] == "Payments gateway"

    def test_apply_notifies_applicant_and_admin(self, app, client, notifier):
        _apply(client)
        assert notifier.to("ada@example.com")[0].template == "talent_application_received"
        assert notifier.to(app.config["ADMIN_NOTIFICATION_EMAIL"])[0].template == "talent_application_admin"

    @pytest.mark.parametrize("overrides,expected", [
        ({"experience_level": "beginner"}, True),
        ({"years_of_experience": 1}, True),
        ({"portfolio_url": None}, True),
        ({"experience_level": "expert", "years_of_experience": 10}, False),
    ])
    def test_needs_assessment_derivation(self, client, notifier, overrides, expected):
        assert _apply(client, **overrides)["needs_assessment"] is expected

    def test_derive_without_years(self):
        assert derive_needs_assessment("advanced", None, "https://x.dev") is False

    def test_duplicate_email_is_409(self, client, notifier):
        _apply(client)
        res = client.post(f"{BASE}/apply", json=application_payload(email="ADA@example.com"))
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_CONFLICT_DUPLICATE"
        assert db.session.query(TalentApplication).count() == 1

    def test_validation(self, client):
        res = client.post(f"{BASE}/apply", json=application_payload(
            role="manager",
            skills=[],
            portfolio_url="ftp://ada.dev",
            notable_projects=[{"url": "https://x.dev"}],
            availability=None,
        ))
        assert res.status_code == 400
        details = res.get_json()["details"]
        assert set(details) == {"role", "skills", "portfolio_url", "notable_projects", "availability"}
        assert details["notable_projects"].startswith("Item 1:")


# ═══════════════════════════════════════════════════════════════
# Assessments
# ═══════════════════════════════════════════════════════════════


class TestAssessments:
    def test_assign_assessment(self, client, auth_headers, notifier, admin):
        application = _apply(client, experience_level="beginner")
        res = _assign(client, auth_headers, application["id"])
        assert res.status_code == 201
        assessment = res.get_json()["assessment"]
        assert assessment["assigned_by"] == admin.id

        row = db.session.get(TalentApplication, application["id"])
        assert row.status == "assessment_assigned"
        assert row.assessment_task == "Build a REST endpoint"
        log = activity_for("talent_application", row.id)[-1]
        assert log.action == "assessment_assigned"
        assert log.details["assessment_id"] == assessment["id"]
        assert notifier.to("ada@example.com")[-1].template == "talent_assessment_assigned"

    def test_reassign_logs_again(self, client, auth_headers, notifier):
        application = _apply(client)
        _assign(client, auth_headers, application["id"])
        res = _assign(client, auth_headers, application["id"], task_title="Second task")
        assert res.status_code == 201
        actions = [a.action for a in activity_for("talent_application", application["id"])]
        assert actions.count("assessment_assigned") == 2

    def test_failed_assignment_leaves_nothing_behind(self, client, auth_headers, notifier, monkeypatch):
        application = _apply(client)

        def broken_write(**kwargs):
            raise SQLAlchemyError("disk I/O error")

        monkeypatch.setattr(activity_module, "write_activity", broken_write)
        res = _assign(client, auth_headers, application["id"])
        assert res.status_code == 500
        assert res.get_json()["code"] == "ERR_DATABASE"

        db.session.expire_all()
        row = db.session.get(TalentApplication, application["id"])
        assert row.status == "pending"
        assert row.assessment_task is None
        assert db.session.query(TalentAssessment).count() == 0
        assert "talent_assessment_assigned" not in notifier.templates

    def test_assign_deadline_bounds(self, client, auth_headers, notifier):
        application = _apply(client)
        res = _assign(client, auth_headers, application["id"], deadline_days=120)
        assert res.status_code == 400
        assert "deadline_days" in res.get_json()["details"]

    def test_applicant_submits(self, client, auth_headers, notifier):
        application = _apply(client)
        _assign(client, auth_headers, application["id"])
        res = client.post(
            f"{BASE}/applications/{application['id']}/assessment/submit",
            json={"email": "Ada@Example.com", "submission_url": "https://github.com/ada/task"},
        )
        assert res.status_code == 200
        assert res.get_json()["assessment"]["submitted_at"] is not None

        row = db.session.get(TalentApplication, application["id"])
        assert row.status == "assessment_submitted"
        log = activity_for("talent_application", row.id)[-1]
        assert log.actor_type == "client"
        assert log.details["late"] is False
        assert "talent_assessment_submitted_admin" in notifier.templates

    def test_submit_with_wrong_email_is_404(self, client, auth_headers, notifier):
        application = _apply(client)
        _assign(client, auth_headers, application["id"])
        res = client.post(
            f"{BASE}/applications/{application['id']}/assessment/submit",
            json={"email": "mallory@example.com", "submission_url": "https://github.com/m/task"},
        )
        assert res.status_code == 404
        assert db.session.get(TalentAssessment, 1).submitted_at is None

    def test_submit_without_assignment_is_409(self, client, notifier):
        application = _apply(client)
        res = client.post(
            f"{BASE}/applications/{application['id']}/assessment/submit",
            json={"email": "ada@example.com", "submission_url": "https://github.com/ada/task"},
        )
        assert res.status_code == 409

    def test_late_submission_is_flagged(self, client, auth_headers, notifier):
        application = _apply(client)
        _assign(client, auth_headers, application["id"])
        assessment = db.session.get(TalentAssessment, 1)
        assessment.deadline = datetime.now(UTC) - timedelta(hours=1)
        db.session.commit()

        client.post(
            f"{BASE}/applications/{application['id']}/assessment/submit",
            json={"email": "ada@example.com", "submission_url": "https://github.com/ada/task"},
        )
        assert activity_for("talent_application", application["id"])[-1].details["late"] is True


# ═══════════════════════════════════════════════════════════════
# Interviews & decisions
# ═══════════════════════════════════════════════════════════════


class TestInterviewsAndDecisions:
    def test_schedule_interview(self, client, auth_headers, notifier, admin):
        application = _apply(client)
        res = _interview(client, auth_headers, application["id"])
        assert res.status_code == 201
        interview = res.get_json()["interview"]
        assert interview["interview_type"] == "video"
        assert interview["duration_minutes"] == 60
        assert interview["interviewer_ids"] == [admin.id]
        assert db.session.get(TalentApplication, application["id"]).status == "interview_scheduled"
        assert notifier.to("ada@example.com")[-1].template == "talent_interview_scheduled"

    def test_reschedule_updates_date(self, client, auth_headers, notifier):
        application = _apply(client)
        _interview(client, auth_headers, application["id"])
        later = (datetime.now(UTC) + timedelta(days=10)).replace(microsecond=0)
        res = _interview(client, auth_headers, application["id"], when=later)
        assert res.status_code == 201
        row = db.session.get(TalentApplication, application["id"])
        assert len(row.interviews) == 2
        assert row.interview_scheduled_at.replace(tzinfo=UTC) == later

    def test_interview_requires_datetime(self, client, auth_headers, notifier):
        application = _apply(client)
        res = client.post(
            f"{BASE}/applications/{application['id']}/interview",
            json={"scheduled_at": "next tuesday"}, headers=auth_headers,
        )
        assert res.status_code == 400

    def test_accept_sends_acceptance(self, client, auth_headers, notifier, admin):
        application = _apply(client)
        _status(client, auth_headers, application["id"], "under_review")
        res = _status(client, auth_headers, application["id"], "accepted", admin_notes="Strong portfolio")
        assert res.status_code == 200
        body = res.get_json()["application"]
        assert body["status"] == "accepted"
        assert body["reviewed_by"] == admin.id
        assert body["admin_notes"] == "Strong portfolio"
        assert notifier.to("ada@example.com")[-1].template == "talent_accepted"

    def test_review_uses_generic_template(self, client, auth_headers, notifier):
        application = _apply(client)
        _status(client, auth_headers, application["id"], "under_review")
        sent = notifier.to("ada@example.com")[-1]
        assert sent.template == "talent_status_update"
        assert sent.payload["status_label"] == "Under Review"

    def test_notes_only_save_keeps_status(self, client, auth_headers, notifier):
        application = _apply(client)
        _status(client, auth_headers, application["id"], "under_review")
        sent_before = len(notifier.sent)

        res = _status(client, auth_headers, application["id"], "under_review", admin_notes="Call references")
        assert res.status_code == 200
        body = res.get_json()["application"]
        assert body["status"] == "under_review"
        assert body["admin_notes"] == "Call references"
        assert len(notifier.sent) == sent_before
        log = activity_for("talent_application", application["id"])[-1]
        assert (log.action, log.details) == ("updated", {"admin_notes": "Call references"})

        _status(client, auth_headers, application["id"], "under_review", admin_notes="Call references")
        assert len(activity_for("talent_application", application["id"])) == 3

    @pytest.mark.parametrize("terminal", ["accepted", "rejected", "withdrawn"])
    def test_terminal_states_are_final(self, client, auth_headers, notifier, terminal):
        application = _apply(client)
        _status(client, auth_headers, application["id"], terminal)
        res = _status(client, auth_headers, application["id"], "under_review")
        assert res.status_code == 409
        assert "terminal" in res.get_json()["error"]
        assert _interview(client, auth_headers, application["id"]).status_code == 409

    @pytest.mark.parametrize("status", ["assessment_assigned", "assessment_submitted", "interview_scheduled"])
    def test_dedicated_statuses_rejected(self, client, auth_headers, notifier, status):
        application = _apply(client)
        res = _status(client, auth_headers, application["id"], status)
        assert res.status_code == 400
        assert res.get_json()["details"]["status"].startswith("Use ")


# ═══════════════════════════════════════════════════════════════
# Admin reads
# ═══════════════════════════════════════════════════════════════


class TestTalentAdminReads:
    def test_detail_includes_history(self, client, auth_headers, notifier):
        application = _apply(client)
        _assign(client, auth_headers, application["id"])
        _interview(client, auth_headers, application["id"])

        res = client.get(f"{BASE}/applications/{application['id']}", headers=auth_headers)
        detail = res.get_json()["application"]
        assert len(detail["assessments"]) == 1
        assert len(detail["interviews"]) == 1
        assert [a["action"] for a in detail["activity"]] == [
            "created", "assessment_assigned", "interview_scheduled",
        ]
        templates = [c["template"] for c in detail["communications"]]
        assert templates == [
            "talent_application_received",
            "talent_application_admin",
            "talent_assessment_assigned",
            "talent_interview_scheduled",
        ]
        assert {c["status"] for c in detail["communications"]} == {"sent"}

    def test_list_filters(self, client, auth_headers, notifier):
        _apply(client)
        _apply(client, email="bo@example.com", role="designer")
        res = client.get(f"{BASE}/applications?role=designer", headers=auth_headers)
        body = res.get_json()
        assert [a["email"] for a in body["applications"]] == ["bo@example.com"]
        assert body["pagination"]["total"] == 1

    def test_admin_routes_require_token(self, client, notifier):
        application = _apply(client)
        assert client.get(f"{BASE}/applications").status_code == 401
        assert _status(client, {}, application["id"], "accepted").status_code == 401
