"""
Transition-table tests for the generic lifecycle machine.

Covers the three machines declared in ``opsdesk/models``:

    1. **ProjectRequest** (REQUEST_MACHINE)
       - only the quotation composer enters Quoted
       - admin same-state edits are accepted as no-ops
    2. **SupportTicket** (TICKET_MACHINE)
       - a client can only move waiting_client -> in_progress
       - closed tickets can be reopened by an admin
    3. **TalentApplication** (APPLICATION_MACHINE)
       - accepted / rejected / withdrawn are terminal
       - the applicant can only submit an assigned assessment

Plus ``apply_transition``: status write, activity row, no-op handling.
"""

import pytest

from opsdesk.core.exceptions import TransitionError, ValidationError
from opsdesk.core.lifecycle import Actor, LifecycleMachine, apply_transition, edges, merge_edges
from opsdesk.models import db
from opsdesk.models.activity import ActivityLog, activity_for
from opsdesk.models.project_request import REQUEST_MACHINE, REQUEST_STATUSES, ProjectRequest
from opsdesk.models.support import TICKET_MACHINE, TICKET_STATUSES
from opsdesk.models.talent import APPLICATION_MACHINE, APPLICATION_STATUSES, TERMINAL_STATUSES

ADMIN, CLIENT, QUOTATION, SYSTEM = Actor.ADMIN, Actor.CLIENT, Actor.QUOTATION, Actor.SYSTEM


# ═════════════════════════════════════════════════════════════════════════════
# Generic machine
# ═════════════════════════════════════════════════════════════════════════════


class TestLifecycleMachine:
    machine = LifecycleMachine(
        entity_type="widget",
        initial="new",
        transitions={
            "new": merge_edges(edges("done"), edges("done", "new", by=(CLIENT,))),
            "done": edges("archived"),
        },
        terminal=frozenset({"archived"}),
        noop_actors=frozenset({ADMIN}),
    )

    def test_states_collected_from_table(self):
        assert self.machine.states == {"new", "done", "archived"}

    def test_merge_edges_unions_actor_sets(self):
        assert self.machine.transitions["new"]["done"] == {ADMIN, CLIENT}

    def test_allowed_targets_include_noop_for_noop_actor(self):
        assert self.machine.allowed_targets("done", ADMIN) == {"archived", "done"}
        assert self.machine.allowed_targets("done", CLIENT) == set()

    def test_terminal_state_has_no_noop(self):
        assert self.machine.allowed_targets("archived", ADMIN) == set()

    def test_check_returns_whether_status_changes(self):
        assert self.machine.check("new", "done", ADMIN) is True
        assert self.machine.check("done", "done", ADMIN) is False

    def test_unknown_target_is_validation_error(self):
        with pytest.raises(ValidationError) as exc:
            self.machine.check("new", "bogus", ADMIN)
        assert "status" in exc.value.details

    def test_forbidden_edge_is_transition_error(self):
        with pytest.raises(TransitionError) as exc:
            self.machine.check("done", "new", ADMIN, entity_id=7)
        assert exc.value.current_status == "done"
        assert exc.value.target_status == "new"

    def test_leaving_terminal_state_reports_terminal(self):
        with pytest.raises(TransitionError, match="terminal"):
            self.machine.check("archived", "new", ADMIN)


# ═════════════════════════════════════════════════════════════════════════════
# Project request table
# ═════════════════════════════════════════════════════════════════════════════


class TestRequestMachine:
    def test_states(self):
        assert REQUEST_MACHINE.states == set(REQUEST_STATUSES)
        assert REQUEST_MACHINE.initial == "Pending"

    @pytest.mark.parametrize("current", REQUEST_STATUSES)
    def test_admin_cannot_enter_quoted(self, current):
        if current == "Quoted":
            # same-state no-op
            assert REQUEST_MACHINE.check(current, "Quoted", ADMIN) is False
        else:
            with pytest.raises(TransitionError):
                REQUEST_MACHINE.check(current, "Quoted", ADMIN)

    @pytest.mark.parametrize("current", ["Pending", "Quoted"])
    def test_quotation_enters_quoted(self, current):
        assert REQUEST_MACHINE.can_transition(current, "Quoted", QUOTATION)

    @pytest.mark.parametrize("current", ["Approved", "Rejected"])
    def test_decided_request_cannot_be_quoted(self, current):
        with pytest.raises(TransitionError):
            REQUEST_MACHINE.check(current, "Quoted", QUOTATION)

    @pytest.mark.parametrize("current", REQUEST_STATUSES)
    @pytest.mark.parametrize("target", ["Approved", "Rejected"])
    def test_admin_decides_from_anywhere(self, current, target):
        assert REQUEST_MACHINE.can_transition(current, target, ADMIN)

    @pytest.mark.parametrize("current", ["Quoted", "Approved", "Rejected"])
    def test_admin_resets_to_pending(self, current):
        assert REQUEST_MACHINE.check(current, "Pending", ADMIN) is True

    def test_client_cannot_move_requests(self):
        for current in REQUEST_STATUSES:
            assert REQUEST_MACHINE.allowed_targets(current, CLIENT) == set()


# ═════════════════════════════════════════════════════════════════════════════
# Support ticket table
# ═════════════════════════════════════════════════════════════════════════════


class TestTicketMachine:
    def test_states(self):
        assert TICKET_MACHINE.states == set(TICKET_STATUSES)
        assert TICKET_MACHINE.initial == "open"

    def test_client_reply_only_reopens_waiting_ticket(self):
        assert TICKET_MACHINE.allowed_targets("waiting_client", CLIENT) == {"in_progress"}
        for current in ("open", "in_progress", "resolved", "closed"):
            assert TICKET_MACHINE.allowed_targets(current, CLIENT) == set()

    def test_system_moves_open_to_in_progress(self):
        assert TICKET_MACHINE.can_transition("open", "in_progress", SYSTEM)

    @pytest.mark.parametrize("current", ["open", "in_progress", "waiting_client"])
    @pytest.mark.parametrize("target", ["resolved", "closed"])
    def test_admin_resolves_or_closes_active_ticket(self, current, target):
        assert TICKET_MACHINE.check(current, target, ADMIN) is True

    @pytest.mark.parametrize("target", ["open", "in_progress"])
    def test_closed_ticket_can_be_reopened(self, target):
        assert TICKET_MACHINE.can_transition("closed", target, ADMIN)

    def test_closed_cannot_jump_to_resolved(self):
        with pytest.raises(TransitionError):
            TICKET_MACHINE.check("closed", "resolved", ADMIN)


# ═════════════════════════════════════════════════════════════════════════════
# Talent application table
# ═════════════════════════════════════════════════════════════════════════════


class TestApplicationMachine:
    def test_states(self):
        assert APPLICATION_MACHINE.states == set(APPLICATION_STATUSES)

    @pytest.mark.parametrize("current", sorted(TERMINAL_STATUSES))
    @pytest.mark.parametrize("target", APPLICATION_STATUSES)
    def test_terminal_states_are_final(self, current, target):
        with pytest.raises(TransitionError):
            APPLICATION_MACHINE.check(current, target, ADMIN)

    def test_applicant_only_submits_assessment(self):
        for current in APPLICATION_STATUSES:
            expected = {"assessment_submitted"} if current == "assessment_assigned" else set()
            assert APPLICATION_MACHINE.allowed_targets(current, CLIENT) == expected

    def test_reassign_and_reschedule_are_explicit_edges(self):
        assert APPLICATION_MACHINE.check("assessment_assigned", "assessment_assigned", ADMIN) is False
        assert APPLICATION_MACHINE.check("interview_scheduled", "interview_scheduled", ADMIN) is False

    def test_admin_same_state_is_noop(self):
        assert APPLICATION_MACHINE.check("under_review", "under_review", ADMIN) is False
        assert APPLICATION_MACHINE.check("pending", "pending", ADMIN) is False

    def test_applicant_same_state_is_rejected(self):
        with pytest.raises(TransitionError):
            APPLICATION_MACHINE.check("pending", "pending", CLIENT)

    def test_cannot_accept_with_open_assessment(self):
        with pytest.raises(TransitionError):
            APPLICATION_MACHINE.check("assessment_assigned", "accepted", ADMIN)


# ═════════════════════════════════════════════════════════════════════════════
# apply_transition
# ═════════════════════════════════════════════════════════════════════════════


def _request(status="Pending") -> ProjectRequest:
    req = ProjectRequest(
        client_name="Jane Doe",
        client_email="jane@example.com",
        client_phone="0712345678",
        project_type="Business Website",
        requirements="A five page site with a contact form.",
        status=status,
    )
    db.session.add(req)
    db.session.flush()
    return req


class TestApplyTransition:
    def test_sets_status_and_writes_activity(self):
        req = _request()
        previous = apply_transition(req, REQUEST_MACHINE, "Approved", Actor(ADMIN, name="Ops"))
        assert previous == "Pending"
        assert req.status == "Approved"
        [log] = activity_for("project_request", req.id)
        assert log.action == "status_changed"
        assert log.actor_type == ADMIN
        assert log.details == {"from": "Pending", "to": "Approved"}

    def test_noop_writes_nothing(self):
        req = _request("Approved")
        apply_transition(req, REQUEST_MACHINE, "Approved", Actor(ADMIN))
        assert db.session.query(ActivityLog).count() == 0

    def test_log_unchanged_records_same_state_move(self):
        req = _request("Approved")
        apply_transition(
            req, REQUEST_MACHINE, "Approved", Actor(ADMIN),
            action="updated", details={"note": "re-confirmed"}, log_unchanged=True,
        )
        [log] = activity_for("project_request", req.id)
        assert log.details == {"from": "Approved", "to": "Approved", "note": "re-confirmed"}

    def test_rejected_move_leaves_entity_untouched(self):
        req = _request("Approved")
        with pytest.raises(TransitionError):
            apply_transition(req, REQUEST_MACHINE, "Quoted", Actor(ADMIN))
        assert req.status == "Approved"
        assert db.session.query(ActivityLog).count() == 0
