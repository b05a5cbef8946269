"""
Support desk tests.

Covers:
  - Ticket submission: numbering, SLA snapshot, client record reuse
  - Public lookup and replies guarded by ticket number + email
  - Admin responses, internal notes, partial updates and reopen
  - Stats, client plan changes
  - Ticket-number collisions retried inside a savepoint
  - Parallel submissions on an on-disk database
"""

from concurrent.futures import ThreadPoolExecutor, as_completed

import pytest

from opsdesk.models import db
from opsdesk.models.activity import activity_for
from opsdesk.models.support import SupportClient, SupportTicket, TicketMessage
from opsdesk.services import support_service

from conftest import request_payload, ticket_payload

BASE = "/api/support"


def _submit(client, **overrides):
    res = client.post(f"{BASE}/submit", json=ticket_payload(**overrides))
    assert res.status_code == 201, res.get_json()
    return res.get_json()["ticket"]


def _patch(client, headers, ticket_id, **body):
    return client.patch(f"{BASE}/admin/tickets/{ticket_id}", json=body, headers=headers)


# ═══════════════════════════════════════════════════════════════
# Submission
# ═══════════════════════════════════════════════════════════════


class TestSubmitTicket:
    def test_first_ticket_shape(self, client, notifier):
        ticket = _submit(client)
        assert ticket["ticketNumber"] == "ST-00001"
        assert ticket["status"] == "open"
        assert ticket["slaHours"] == 48

    def test_numbers_are_sequential(self, client, notifier):
        numbers = [_submit(client)["ticketNumber"] for _ in range(3)]
        assert numbers == ["ST-00001", "ST-00002", "ST-00003"]

    def test_client_record_is_reused(self, client, notifier):
        _submit(client)
        _submit(client, email="SAM@example.com", subject="Second issue")
        assert db.session.query(SupportClient).count() == 1
        client_row = db.session.execute(db.select(SupportClient)).scalar_one()
        assert client_row.plan_type == "basic"
        assert client_row.tickets.count() == 2

    def test_notifies_client_and_admin(self, app, client, notifier):
        _submit(client)
        assert sorted(notifier.templates) == ["ticket_created_admin", "ticket_created_client"]
        [client_mail] = notifier.to("sam@example.com")
        assert "ST-00001" in client_mail.subject

    def test_defaults_and_activity(self, client, notifier):
        ticket = _submit(client, category=None)
        row = db.session.get(SupportTicket, ticket["id"])
        assert row.category == "general"
        assert row.priority == "medium"
        [log] = activity_for("support_ticket", row.id)
        assert log.action == "created"
        assert log.details == {"category": "general", "plan": "basic"}

    def test_validation(self, client):
        res = client.post(f"{BASE}/submit", json={
            "full_name": "S", "email": "nope", "subject": "hi",
            "description": "short", "category": "rant", "phone": "555",
        })
        assert res.status_code == 400
        assert set(res.get_json()["details"]) == {
            "full_name", "email", "subject", "description", "category", "phone",
        }
        assert db.session.query(SupportTicket).count() == 0

    def test_unknown_project_reference(self, client):
        res = client.post(f"{BASE}/submit", json=ticket_payload(project_id=99))
        assert res.status_code == 400
        assert "project_id" in res.get_json()["details"]

    def test_links_existing_project(self, client, notifier):
        project = client.post("/api/requests", json=request_payload()).get_json()["request"]
        ticket = _submit(client, project_id=project["id"])
        assert db.session.get(SupportTicket, ticket["id"]).project_id == project["id"]


# ═══════════════════════════════════════════════════════════════
# Ticket numbering
# ═══════════════════════════════════════════════════════════════


class TestTicketNumbering:
    def test_collision_retries_with_next_number(self, client, notifier, monkeypatch):
        _submit(client)
        proposals = iter([1, 2])
        monkeypatch.setattr(support_service, "_next_ticket_seq", lambda: next(proposals))

        ticket = _submit(client, email="other@example.com")
        assert ticket["ticketNumber"] == "ST-00002"
        assert db.session.query(SupportTicket).count() == 2

    def test_exhausted_retries_fail_cleanly(self, client, notifier, monkeypatch):
        _submit(client)
        monkeypatch.setattr(support_service, "_next_ticket_seq", lambda: 1)

        res = client.post(f"{BASE}/submit", json=ticket_payload(subject="Another one"))
        assert res.status_code == 500
        assert res.get_json()["code"] == "ERR_DATABASE"
        assert db.session.query(SupportTicket).count() == 1


class TestConcurrentSubmission:
    """Parallel submissions against a real on-disk database."""

    WORKERS = 8

    def test_parallel_submissions_get_distinct_numbers(self, file_app):
        def submit(i):
            with file_app.test_client() as c:
                res = c.post(f"{BASE}/submit", json=ticket_payload(
                    email=f"client{i}@example.com", subject=f"Printer {i} offline",
                ))
                return res.status_code, res.get_json()

        with ThreadPoolExecutor(max_workers=self.WORKERS) as executor:
            futures = [executor.submit(submit, i) for i in range(self.WORKERS)]
            results = [f.result() for f in as_completed(futures)]

        assert [status for status, _ in results] == [201] * self.WORKERS
        numbers = {body["ticket"]["ticketNumber"] for _, body in results}
        assert numbers == {f"ST-{n:05d}" for n in range(1, self.WORKERS + 1)}

        with file_app.app_context():
            seqs = db.session.execute(
                db.select(SupportTicket.ticket_seq).order_by(SupportTicket.id)
            ).scalars().all()
        # insert order and number order agree
        assert seqs == list(range(1, self.WORKERS + 1))

    def test_same_new_client_submitting_twice_at_once(self, file_app):
        def submit(i):
            with file_app.test_client() as c:
                return c.post(f"{BASE}/submit", json=ticket_payload(subject=f"Issue number {i}")).status_code

        with ThreadPoolExecutor(max_workers=4) as executor:
            statuses = list(executor.map(submit, range(4)))

        assert statuses == [201] * 4
        with file_app.app_context():
            assert db.session.query(SupportClient).count() == 1
            assert db.session.query(SupportTicket).count() == 4


# ═══════════════════════════════════════════════════════════════
# Public lookup & replies
# ═══════════════════════════════════════════════════════════════


class TestPublicTicket:
    def test_lookup_is_case_insensitive(self, client, notifier):
        _submit(client)
        res = client.get(f"{BASE}/ticket/st-00001?email=SAM@Example.com")
        assert res.status_code == 200
        body = res.get_json()["ticket"]
        assert body["ticket_number"] == "ST-00001"
        assert "assigned_to" not in body
        assert "client_email" not in body

    def test_email_mismatch_is_404(self, client, notifier):
        _submit(client)
        res = client.get(f"{BASE}/ticket/ST-00001?email=someone@else.com")
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"

    def test_missing_email_is_400(self, client, notifier):
        _submit(client)
        assert client.get(f"{BASE}/ticket/ST-00001").status_code == 400

    def test_internal_notes_are_hidden(self, client, auth_headers, notifier):
        ticket = _submit(client)
        client.post(
            f"{BASE}/admin/tickets/{ticket['id']}/respond",
            json={"message": "Customer is on legacy checkout", "is_internal_note": True},
            headers=auth_headers,
        )
        client.post(
            f"{BASE}/admin/tickets/{ticket['id']}/respond",
            json={"message": "We are looking into it."},
            headers=auth_headers,
        )
        public = client.get(f"{BASE}/ticket/ST-00001?email=sam@example.com").get_json()["ticket"]
        assert [m["message"] for m in public["messages"]] == ["We are looking into it."]
        assert "is_internal_note" not in public["messages"][0]

        detail = client.get(f"{BASE}/admin/tickets/{ticket['id']}", headers=auth_headers).get_json()["ticket"]
        assert len(detail["messages"]) == 2

    def test_client_reply_resumes_waiting_ticket(self, client, auth_headers, notifier):
        ticket = _submit(client)
        _patch(client, auth_headers, ticket["id"], status="waiting_client")

        res = client.post(
            f"{BASE}/ticket/ST-00001/message",
            json={"email": "sam@example.com", "message": "Here is the screenshot."},
        )
        assert res.status_code == 201
        assert res.get_json()["data"]["sender_type"] == "client"
        row = db.session.get(SupportTicket, ticket["id"])
        assert row.status == "in_progress"
        actions = [a.action for a in activity_for("support_ticket", row.id)]
        assert actions[-2:] == ["status_changed", "message_added"]
        assert "ticket_client_message_admin" in notifier.templates

    def test_client_reply_on_open_ticket_keeps_status(self, client, notifier):
        _submit(client)
        client.post(f"{BASE}/ticket/ST-00001/message", json={"email": "sam@example.com", "message": "Any news?"})
        assert db.session.execute(db.select(SupportTicket)).scalar_one().status == "open"

    def test_client_reply_with_wrong_email(self, client, notifier):
        _submit(client)
        res = client.post(f"{BASE}/ticket/ST-00001/message", json={"email": "x@example.com", "message": "hi"})
        assert res.status_code == 404
        assert db.session.query(TicketMessage).count() == 0


# ═══════════════════════════════════════════════════════════════
# Admin handling
# ═══════════════════════════════════════════════════════════════


class TestAdminTickets:
    def test_admin_response_starts_work(self, client, auth_headers, notifier, admin):
        ticket = _submit(client)
        res = client.post(
            f"{BASE}/admin/tickets/{ticket['id']}/respond",
            json={"message": "Fix deployed, please retry."},
            headers=auth_headers,
        )
        assert res.status_code == 201
        row = db.session.get(SupportTicket, ticket["id"])
        assert row.status == "in_progress"
        log = [a for a in activity_for("support_ticket", row.id) if a.action == "status_changed"][0]
        assert log.actor_id == admin.id
        assert notifier.to("sam@example.com")[-1].template == "ticket_admin_response_client"

    def test_internal_note_sends_nothing(self, client, auth_headers, notifier):
        ticket = _submit(client)
        before = len(notifier.sent)
        res = client.post(
            f"{BASE}/admin/tickets/{ticket['id']}/respond",
            json={"message": "Escalated to backend", "is_internal_note": True},
            headers=auth_headers,
        )
        assert res.get_json()["message"] == "Internal note added"
        assert len(notifier.sent) == before

    def test_resolve_stamps_and_notifies(self, client, auth_headers, notifier, admin):
        ticket = _submit(client)
        res = _patch(client, auth_headers, ticket["id"], status="resolved", resolution_notes="Cache cleared")
        assert res.status_code == 200
        row = db.session.get(SupportTicket, ticket["id"])
        assert row.resolved_at is not None
        assert row.resolved_by == admin.id
        [log] = [a for a in activity_for("support_ticket", row.id) if a.action == "updated"]
        assert log.details["status"] == {"old": "open", "new": "resolved"}
        assert log.details["resolution_notes"]["new"] == "Cache cleared"
        assert notifier.to("sam@example.com")[-1].template == "ticket_status_client"

    def test_reopen_clears_resolution_stamps(self, client, auth_headers, notifier):
        ticket = _submit(client)
        _patch(client, auth_headers, ticket["id"], status="resolved")
        _patch(client, auth_headers, ticket["id"], status="closed")
        res = _patch(client, auth_headers, ticket["id"], status="open")
        assert res.status_code == 200
        row = db.session.get(SupportTicket, ticket["id"])
        assert (row.status, row.resolved_at, row.resolved_by, row.closed_at) == ("open", None, None, None)

    def test_disallowed_edge_is_409(self, client, auth_headers, notifier):
        ticket = _submit(client)
        _patch(client, auth_headers, ticket["id"], status="waiting_client")
        res = _patch(client, auth_headers, ticket["id"], status="open")
        assert res.status_code == 409
        assert res.get_json()["details"] == {"current_status": "waiting_client", "target_status": "open"}

    def test_same_status_writes_nothing(self, client, auth_headers, notifier):
        ticket = _submit(client)
        before = len(notifier.sent)
        res = _patch(client, auth_headers, ticket["id"], status="open")
        assert res.status_code == 200
        assert [a.action for a in activity_for("support_ticket", ticket["id"])] == ["created"]
        assert len(notifier.sent) == before

    def test_assign_and_prioritise(self, client, auth_headers, notifier, admin):
        ticket = _submit(client)
        res = _patch(client, auth_headers, ticket["id"], priority="urgent", assigned_to=admin.id)
        body = res.get_json()["ticket"]
        assert body["priority"] == "urgent"
        assert body["assigned_to"] == admin.id
        assert body["assigned_at"] is not None

    def test_update_validation(self, client, auth_headers, notifier):
        ticket = _submit(client)
        assert _patch(client, auth_headers, ticket["id"]).status_code == 400
        res = _patch(client, auth_headers, ticket["id"], priority="whenever", assigned_to=999)
        assert res.status_code == 400
        assert set(res.get_json()["details"]) == {"priority", "assigned_to"}

    def test_list_filters(self, client, auth_headers, notifier):
        first = _submit(client)
        _submit(client, category="billing")
        _patch(client, auth_headers, first["id"], status="resolved")

        res = client.get(f"{BASE}/admin/tickets?status=open", headers=auth_headers)
        body = res.get_json()
        assert [t["category"] for t in body["tickets"]] == ["billing"]
        assert body["pagination"]["total"] == 1

        bad = client.get(f"{BASE}/admin/tickets?priority=someday", headers=auth_headers)
        assert bad.status_code == 400

    def test_admin_routes_require_token(self, client):
        assert client.get(f"{BASE}/admin/tickets").status_code == 401
        assert client.get(f"{BASE}/admin/stats").status_code == 401

    def test_stats(self, client, auth_headers, notifier):
        first = _submit(client)
        _submit(client, email="vip@example.com")
        _patch(client, auth_headers, first["id"], status="closed")

        stats = client.get(f"{BASE}/admin/stats", headers=auth_headers).get_json()["stats"]
        assert stats["total"] == 2
        assert stats["by_status"]["open"] == 1
        assert stats["by_status"]["closed"] == 1
        assert stats["by_status"]["resolved"] == 0
        assert stats["by_plan"] == {"basic": 2, "standard": 0, "premium": 0}
        assert stats["unassigned_active"] == 1


# ═══════════════════════════════════════════════════════════════
# Client plans
# ═══════════════════════════════════════════════════════════════


class TestClientPlans:
    def test_plan_change_keeps_existing_sla(self, client, auth_headers, notifier):
        first = _submit(client)
        client_row = db.session.execute(db.select(SupportClient)).scalar_one()

        res = client.patch(
            f"{BASE}/admin/clients/{client_row.id}/plan",
            json={"plan_type": "premium"},
            headers=auth_headers,
        )
        assert res.status_code == 200
        assert res.get_json()["client"]["plan_type"] == "premium"

        second = _submit(client, subject="Urgent outage")
        assert second["slaHours"] == 4
        assert db.session.get(SupportTicket, first["id"]).response_sla_hours == 48

    def test_invalid_plan(self, client, auth_headers, notifier):
        _submit(client)
        client_row = db.session.execute(db.select(SupportClient)).scalar_one()
        res = client.patch(
            f"{BASE}/admin/clients/{client_row.id}/plan",
            json={"plan_type": "gold"},
            headers=auth_headers,
        )
        assert res.status_code == 400

    @pytest.mark.parametrize("plan,hours", [("standard", 24), ("premium", 4)])
    def test_sla_hours_by_plan(self, client, auth_headers, notifier, plan, hours):
        _submit(client)
        client_row = db.session.execute(db.select(SupportClient)).scalar_one()
        client.patch(f"{BASE}/admin/clients/{client_row.id}/plan", json={"plan_type": plan}, headers=auth_headers)
        assert _submit(client)["slaHours"] == hours

    def test_list_clients(self, client, auth_headers, notifier):
        _submit(client)
        clients = client.get(f"{BASE}/admin/clients", headers=auth_headers).get_json()["clients"]
        assert [c["email"] for c in clients] == ["sam@example.com"]
