"""
OpsDesk
Notification dispatcher.

Every lifecycle trigger that talks to the outside world goes through one
``NotificationDispatcher`` stored in ``app.extensions["notifications"]``.
The dispatcher owns *when* and *how long to wait*; a ``Notifier`` owns
*how* a message is delivered (SMTP by default, a recording fake in tests).

Policies (see ``TRIGGER_POLICIES``):
    DURABLE_ONLY         nothing is sent
    AWAITED_BEST_EFFORT  the caller waits up to a timeout and gets the outcome
    FIRE_AND_FORGET      the caller never waits; the outcome is only logged

Failures never propagate: a raising notifier, a timeout, or an unknown
template becomes a failed ``NotificationOutcome`` plus a log line and a
``NotificationLog`` row.

Configuration (env vars):
    MAIL_SERVER           SMTP host (default: None → log-only mode)
    MAIL_PORT             SMTP port (default: 587)
    MAIL_USE_TLS          Use TLS (default: true)
    MAIL_USERNAME         SMTP username
    MAIL_PASSWORD         SMTP password
    MAIL_DEFAULT_SENDER   From address
    NOTIFICATION_ASYNC    Run fire-and-forget sends on the worker pool (default: true)
    NOTIFICATION_WORKERS  Worker pool size (default: 4)
    NOTIFICATION_AWAITED_WORKERS  Pool reserved for awaited sends (default: 2)
"""

from __future__ import annotations

import enum
import logging
import smtplib
import threading
from concurrent.futures import Future, ThreadPoolExecutor, TimeoutError as FutureTimeout, wait as wait_futures
from dataclasses import dataclass, field
from datetime import UTC, datetime
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any, Protocol

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from opsdesk.core.exceptions import NotificationError
from opsdesk.models import db
from opsdesk.models.notification import NotificationLog
from opsdesk.services.email_templates import render

logger = logging.getLogger(__name__)


class NotificationPolicy(str, enum.Enum):
    DURABLE_ONLY = "durable_only"
    AWAITED_BEST_EFFORT = "awaited_best_effort"
    FIRE_AND_FORGET = "fire_and_forget"


# Trigger → policy.  Every dispatch names its trigger; unknown triggers are a bug.
TRIGGER_POLICIES: dict[str, NotificationPolicy] = {
    "request.submitted": NotificationPolicy.FIRE_AND_FORGET,
    "request.status_updated": NotificationPolicy.DURABLE_ONLY,
    "quotation.issued": NotificationPolicy.AWAITED_BEST_EFFORT,
    "ticket.submitted": NotificationPolicy.FIRE_AND_FORGET,
    "ticket.client_message": NotificationPolicy.FIRE_AND_FORGET,
    "ticket.admin_response": NotificationPolicy.FIRE_AND_FORGET,
    "ticket.updated": NotificationPolicy.FIRE_AND_FORGET,
    "talent.applied": NotificationPolicy.FIRE_AND_FORGET,
    "talent.assessment_assigned": NotificationPolicy.FIRE_AND_FORGET,
    "talent.assessment_submitted": NotificationPolicy.FIRE_AND_FORGET,
    "talent.interview_scheduled": NotificationPolicy.FIRE_AND_FORGET,
    "talent.status_updated": NotificationPolicy.FIRE_AND_FORGET,
    "auth.password_reset": NotificationPolicy.FIRE_AND_FORGET,
}


@dataclass
class Message:
    template: str
    recipient: str
    payload: dict[str, Any] = field(default_factory=dict)
    entity_type: str | None = None
    entity_id: int | None = None


@dataclass
class NotificationOutcome:
    template: str
    recipient: str
    status: str                 # sent | failed | timeout | queued
    error: str | None = None
    subject: str | None = None

    @property
    def delivered(self) -> bool:
        return self.status == "sent"


class Notifier(Protocol):
    """Delivers one rendered message.  Raises NotificationError on failure
    and returns the subject line on success."""

    def send(self, template: str, recipient: str, payload: dict[str, Any]) -> str | None:
        ...


# ═══════════════════════════════════════════════════════════════════════════
#  SMTP notifier
# ═══════════════════════════════════════════════════════════════════════════


class EmailNotifier:
    """
    Renders a template and sends it over SMTP.

    When no MAIL_SERVER is configured, messages are logged but not sent
    (dev/test mode) and count as delivered.
    """

    def __init__(
        self,
        *,
        server: str | None,
        port: int = 587,
        use_tls: bool = True,
        username: str | None = None,
        password: str | None = None,
        sender: str | None = None,
        timeout: float = 30,
        company_name: str = "OpsDesk",
    ):
        self.server = server
        self.port = port
        self.use_tls = use_tls
        self.username = username
        self.password = password
        self.sender = sender or f"noreply@{server or 'localhost'}"
        self.timeout = timeout
        self.company_name = company_name

    @classmethod
    def from_config(cls, cfg) -> "EmailNotifier":
        return cls(
            server=cfg.get("MAIL_SERVER"),
            port=cfg.get("MAIL_PORT", 587),
            use_tls=cfg.get("MAIL_USE_TLS", True),
            username=cfg.get("MAIL_USERNAME"),
            password=cfg.get("MAIL_PASSWORD"),
            sender=cfg.get("MAIL_DEFAULT_SENDER"),
            timeout=cfg.get("MAIL_TIMEOUT", 30),
            company_name=cfg.get("COMPANY_NAME", "OpsDesk"),
        )

    def is_configured(self) -> bool:
        return bool(self.server)

    def send(self, template: str, recipient: str, payload: dict[str, Any]) -> str | None:
        try:
            subject, html_body = render(template, {"company_name": self.company_name, **payload})
        except KeyError as exc:
            raise NotificationError(template, recipient, "unknown template") from exc

        if not self.is_configured():
            logger.info(
                "Email (dev mode): to=%s subject='%s' template=%s",
                recipient, subject, template,
            )
            return subject

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = self.sender
        msg["To"] = recipient
        msg.attach(MIMEText(html_body, "html"))

        try:
            with smtplib.SMTP(self.server, self.port, timeout=self.timeout) as smtp:
                if self.use_tls:
                    smtp.starttls()
                if self.username and self.password:
                    smtp.login(self.username, self.password)
                smtp.send_message(msg)
        except (smtplib.SMTPException, OSError) as exc:
            raise NotificationError(template, recipient, str(exc)) from exc

        logger.info("Email sent: to=%s subject='%s'", recipient, subject)
        return subject


# ═══════════════════════════════════════════════════════════════════════════
#  Dispatcher
# ═══════════════════════════════════════════════════════════════════════════


class _AwaitedSend:
    """Hand-off between a caller waiting on a send and the worker doing it.

    Whichever side gets the lock second sees what the other did: the caller
    picks up an outcome that landed just after its deadline, or the worker
    finds the ``timeout`` row the caller wrote and overwrites it with what
    actually happened.
    """

    def __init__(self, app, message: Message, policy: NotificationPolicy):
        self.app = app
        self.message = message
        self.policy = policy
        self.lock = threading.Lock()
        self.outcome: NotificationOutcome | None = None
        self.timeout_log_id: int | None = None
        self.abandoned = False


class NotificationDispatcher:
    """Applies a trigger's policy to one or more messages.

    Must be called after the triggering transaction has committed.

    Awaited sends run on their own pool so a backlog of fire-and-forget
    mail never eats into the caller's deadline.
    """

    def __init__(
        self,
        notifier: Notifier,
        *,
        app=None,
        run_async: bool = True,
        workers: int = 4,
        awaited_workers: int = 2,
        default_timeout: float = 10.0,
    ):
        self.notifier = notifier
        self.app = app
        self.run_async = run_async
        self.default_timeout = default_timeout
        self._executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="notify")
        self._awaited_executor = ThreadPoolExecutor(
            max_workers=awaited_workers, thread_name_prefix="notify-awaited",
        )
        self._late: set[Future] = set()
        self._late_lock = threading.Lock()

    def policy_for(self, trigger: str) -> NotificationPolicy:
        try:
            return TRIGGER_POLICIES[trigger]
        except KeyError:
            raise ValueError(f"Unknown notification trigger: {trigger}") from None

    def dispatch(
        self,
        trigger: str,
        messages: Message | list[Message],
        *,
        timeout: float | None = None,
    ) -> list[NotificationOutcome]:
        policy = self.policy_for(trigger)
        if isinstance(messages, Message):
            messages = [messages]
        messages = [m for m in messages if m.recipient]

        if policy is NotificationPolicy.DURABLE_ONLY or not messages:
            return []

        if policy is NotificationPolicy.AWAITED_BEST_EFFORT:
            wait = self.default_timeout if timeout is None else timeout
            return [self._send_awaited(m, wait, policy) for m in messages]

        if self.run_async:
            app = self.app or current_app._get_current_object()
            outcomes = []
            for m in messages:
                self._executor.submit(self._send_in_background, app, m, policy)
                outcomes.append(NotificationOutcome(m.template, m.recipient, "queued"))
            return outcomes

        return [self._send_inline(m, policy) for m in messages]

    def shutdown(self, wait: bool = True):
        self._awaited_executor.shutdown(wait=wait)
        self._executor.shutdown(wait=wait)

    # ── delivery paths ───────────────────────────────────────────────────

    def _deliver(self, message: Message) -> NotificationOutcome:
        try:
            subject = self.notifier.send(message.template, message.recipient, message.payload)
            return NotificationOutcome(message.template, message.recipient, "sent", subject=subject)
        except Exception as exc:  # any notifier failure is an outcome, never an error
            logger.warning(
                "Notification failed: template=%s recipient=%s error=%s",
                message.template, message.recipient, exc,
                extra={"template": message.template, "recipient": message.recipient},
            )
            return NotificationOutcome(message.template, message.recipient, "failed", error=str(exc))

    def _send_inline(self, message, policy) -> NotificationOutcome:
        outcome = self._deliver(message)
        _record(message, policy, outcome)
        return outcome

    def _send_awaited(self, message, timeout, policy) -> NotificationOutcome:
        app = self.app or current_app._get_current_object()
        send = _AwaitedSend(app, message, policy)
        future = self._awaited_executor.submit(self._deliver_awaited, send)
        try:
            outcome = future.result(timeout=timeout)
        except FutureTimeout:
            outcome = self._give_up(send, future, timeout)
        else:
            _record(message, policy, outcome)
        return outcome

    def _give_up(self, send: _AwaitedSend, future: Future, timeout: float) -> NotificationOutcome:
        message = send.message
        with send.lock:
            if send.outcome is not None:
                # finished between the deadline and the lock
                _record(message, send.policy, send.outcome)
                return send.outcome

            never_started = future.cancel()
            logger.warning(
                "Notification timed out after %.1fs (%s): template=%s recipient=%s",
                timeout, "not sent" if never_started else "still sending",
                message.template, message.recipient,
                extra={"template": message.template, "recipient": message.recipient},
            )
            error = f"Email sending timed out after {timeout:g}s"
            error += "; it was not sent" if never_started else "; it may still be delivered"
            outcome = NotificationOutcome(message.template, message.recipient, "timeout", error=error)
            send.abandoned = True
            send.timeout_log_id = _record(message, send.policy, outcome)

        if not never_started:
            with self._late_lock:
                self._late.add(future)
            future.add_done_callback(self._forget_late)
        return outcome

    def _deliver_awaited(self, send: _AwaitedSend) -> NotificationOutcome:
        outcome = self._deliver(send.message)
        with send.lock:
            send.outcome = outcome
            if not send.abandoned:
                return outcome
            log_id = send.timeout_log_id
        logger.info(
            "Late notification outcome: template=%s recipient=%s status=%s",
            send.message.template, send.message.recipient, outcome.status,
            extra={"template": send.message.template, "recipient": send.message.recipient},
        )
        if log_id is not None:
            with send.app.app_context():
                _record_late(log_id, outcome)
        return outcome

    def _forget_late(self, future: Future):
        with self._late_lock:
            self._late.discard(future)

    def wait_for_pending(self, timeout: float | None = None) -> bool:
        """Block until sends that outlived their caller have finished.

        Returns False if some are still running after *timeout*.
        """
        with self._late_lock:
            pending = list(self._late)
        _done, not_done = wait_futures(pending, timeout=timeout)
        return not not_done

    def _send_in_background(self, app, message, policy):
        with app.app_context():
            outcome = self._deliver(message)
            _record(message, policy, outcome)


def _record(message: Message, policy: NotificationPolicy, outcome: NotificationOutcome) -> int | None:
    """Best-effort NotificationLog write in the current app context.

    Returns the new row id, or None when the write failed.
    """
    log = NotificationLog(
        template=message.template,
        recipient=message.recipient,
        subject=(outcome.subject or "")[:500] or None,
        entity_type=message.entity_type,
        entity_id=message.entity_id,
        policy=policy.value,
        status=outcome.status,
        error_message=(outcome.error or "")[:1000] or None,
        sent_at=datetime.now(UTC) if outcome.delivered else None,
    )
    try:
        db.session.add(log)
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error(
            "Could not record notification: template=%s recipient=%s error=%s",
            message.template, message.recipient, exc,
        )
        return None
    return log.id


def _record_late(log_id: int, outcome: NotificationOutcome):
    """Overwrite a ``timeout`` row with what the abandoned send really did."""
    try:
        log = db.session.get(NotificationLog, log_id)
        if log is None:
            return
        log.status = outcome.status
        log.subject = (outcome.subject or "")[:500] or log.subject
        if outcome.delivered:
            log.sent_at = datetime.now(UTC)
            log.error_message = "Delivered after the caller stopped waiting"
        else:
            log.error_message = (outcome.error or "")[:1000] or None
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("Could not update notification log #%s: %s", log_id, exc)


# ═══════════════════════════════════════════════════════════════════════════
#  Wiring
# ═══════════════════════════════════════════════════════════════════════════


def init_notifications(app, notifier: Notifier | None = None) -> NotificationDispatcher:
    """Build the dispatcher from config and register it on the app."""
    dispatcher = NotificationDispatcher(
        notifier or EmailNotifier.from_config(app.config),
        app=app,
        run_async=app.config.get("NOTIFICATION_ASYNC", True),
        workers=app.config.get("NOTIFICATION_WORKERS", 4),
        awaited_workers=app.config.get("NOTIFICATION_AWAITED_WORKERS", 2),
        default_timeout=app.config.get("QUOTE_EMAIL_TIMEOUT", 10.0),
    )
    app.extensions["notifications"] = dispatcher
    return dispatcher


def get_dispatcher() -> NotificationDispatcher:
    return current_app.extensions["notifications"]


def admin_recipient() -> str | None:
    return current_app.config.get("ADMIN_NOTIFICATION_EMAIL")


def frontend_url(path: str = "") -> str:
    return current_app.config.get("FRONTEND_URL", "").rstrip("/") + path
