"""
Generic entity lifecycle machine.

Each entity kind (project request, support ticket, talent application)
declares one ``LifecycleMachine``: its states, which actor kinds may move it
along which edge, and which states are terminal.  Services call
``machine.check(...)`` before mutating ``status`` and
``apply_transition(...)`` to write the status and its activity row in the
caller's transaction.

Usage:
    from opsdesk.core.lifecycle import Actor, LifecycleMachine, apply_transition

    TICKET_MACHINE.check("open", "resolved", Actor.ADMIN)
    apply_transition(ticket, TICKET_MACHINE, "resolved", actor)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Mapping

from opsdesk.core.exceptions import TransitionError, ValidationError


@dataclass(frozen=True)
class Actor:
    """Who is driving a mutation.

    ``kind`` is one of ``client``, ``admin``, ``system`` or ``quotation``
    (the quotation composer, the only actor allowed to enter *Quoted*).
    """

    kind: str
    id: int | None = None
    name: str | None = None
    email: str | None = None

    CLIENT = "client"
    ADMIN = "admin"
    SYSTEM = "system"
    QUOTATION = "quotation"

    @classmethod
    def admin(cls, user) -> "Actor":
        return cls(cls.ADMIN, id=user.id, name=user.full_name or user.email, email=user.email)

    @classmethod
    def client(cls, name: str | None = None, email: str | None = None) -> "Actor":
        return cls(cls.CLIENT, name=name, email=email)

    @classmethod
    def system(cls) -> "Actor":
        return cls(cls.SYSTEM, name="system")

    def as_kind(self, kind: str) -> "Actor":
        """Same identity acting under another kind (e.g. admin issuing a quote)."""
        return Actor(kind, id=self.id, name=self.name, email=self.email)


@dataclass(frozen=True)
class LifecycleMachine:
    """A closed transition table keyed ``from_state -> to_state -> actor kinds``.

    Same-state requests by an actor in ``noop_actors`` pass ``check`` and are
    reported as unchanged; every other move must be listed in ``transitions``.
    """

    entity_type: str
    initial: str
    transitions: Mapping[str, Mapping[str, frozenset[str]]]
    terminal: frozenset[str] = frozenset()
    noop_actors: frozenset[str] = frozenset()
    states: frozenset[str] = field(init=False)

    def __post_init__(self):
        known = set(self.transitions) | set(self.terminal) | {self.initial}
        for targets in self.transitions.values():
            known.update(targets)
        object.__setattr__(self, "states", frozenset(known))

    def is_state(self, value: str | None) -> bool:
        return value in self.states

    def allowed_targets(self, current: str, actor: str) -> set[str]:
        """States reachable from *current* for *actor* in one step."""
        edges = self.transitions.get(current, {})
        targets = {to for to, actors in edges.items() if actor in actors}
        if actor in self.noop_actors and current not in self.terminal:
            targets.add(current)
        return targets

    def can_transition(self, current: str, target: str, actor: str) -> bool:
        return target in self.allowed_targets(current, actor)

    def check(
        self,
        current: str,
        target: str,
        actor: str,
        *,
        entity_id: int | None = None,
    ) -> bool:
        """Validate a move.  Returns True when the status actually changes.

        Raises:
            ValidationError: *target* is not a state of this machine.
            TransitionError: the edge is not permitted for *actor*.
        """
        if not self.is_state(target):
            raise ValidationError(
                f"Invalid status '{target}'",
                details={"status": f"Must be one of: {', '.join(sorted(self.states))}"},
            )
        if not self.can_transition(current, target, actor):
            reason = "terminal state" if current in self.terminal else f"not allowed for {actor}"
            raise TransitionError(
                self.entity_type, current, target,
                actor=actor, entity_id=entity_id, reason=reason,
            )
        return current != target


def edges(*targets: str, by: tuple[str, ...] = (Actor.ADMIN,)) -> dict[str, frozenset[str]]:
    """Build one row of a transition table: every target shares the same actors."""
    return {t: frozenset(by) for t in targets}


def merge_edges(*rows: dict[str, frozenset[str]]) -> dict[str, frozenset[str]]:
    """Union several ``edges`` rows; actor sets for a shared target are merged."""
    merged: dict[str, frozenset[str]] = {}
    for row in rows:
        for target, actors in row.items():
            merged[target] = merged.get(target, frozenset()) | actors
    return merged


def apply_transition(
    entity,
    machine: LifecycleMachine,
    target: str,
    actor: Actor,
    *,
    action: str = "status_changed",
    details: dict | None = None,
    log_unchanged: bool = False,
) -> str:
    """Check, set ``entity.status`` and append the activity row.

    Flushes only; the caller owns the transaction.  Returns the previous
    status.  A permitted same-state move writes nothing unless
    *log_unchanged* is set (re-assigning an assessment, rescheduling).
    """
    from opsdesk.models.activity import write_activity

    previous = entity.status
    changed = machine.check(previous, target, actor.kind, entity_id=entity.id)
    if not changed and not log_unchanged:
        return previous

    entity.status = target
    payload = {"from": previous, "to": target}
    payload.update(details or {})
    write_activity(
        entity_type=machine.entity_type,
        entity_id=entity.id,
        action=action,
        actor=actor,
        details=payload,
    )
    return previous
