"""
Platform-wide exception hierarchy.

Services raise these types; blueprints register handlers against them once
(see ``opsdesk.utils.errors.register_error_handlers``) and get consistent
HTTP status codes everywhere.

Usage:
    from opsdesk.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="SupportTicket", resource_id=42)
    raise ValidationError("Validation failed", details={"email": "Invalid email"})
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Also used when a public lookup fails its ownership check (ticket number
    with the wrong email). A 403 would confirm the resource exists; a 404
    does not.

    Args:
        resource: Human-readable entity name (e.g. "ProjectRequest").
        resource_id: The key that was looked up. Included in logs, not in HTTP response.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input fails validation before any write happens.

    Maps to HTTP 400 with a field-level ``details`` mapping.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown. Keys are field names;
                 values are error descriptions.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation would violate a uniqueness rule.

    Maps to HTTP 409.
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        super().__init__(f"{resource} with {field}={value!r} already exists")


class TransitionError(Exception):
    """Raised when a lifecycle transition is not permitted from the current state.

    Maps to HTTP 409.
    """

    def __init__(
        self,
        entity_type: str,
        current: str,
        target: str,
        *,
        actor: str | None = None,
        entity_id: int | None = None,
        reason: str | None = None,
    ) -> None:
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.current_status = current
        self.target_status = target
        self.actor = actor
        self.reason = reason
        msg = f"Cannot move {entity_type} from '{current}' to '{target}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class AuthError(Exception):
    """Raised when a bearer token or credential check fails.

    ``code`` is one of the ``E.AUTH_*`` constants and tells the caller
    why (missing, malformed, expired, bad signature, bad credentials).
    Maps to HTTP 401.
    """

    def __init__(self, code: str, message: str) -> None:
        self.code = code
        super().__init__(message)


class NotificationError(Exception):
    """Raised by a notifier when a message cannot be delivered.

    Never escapes the dispatcher: it is converted into a failed
    ``NotificationOutcome`` and logged.
    """

    def __init__(self, template: str, recipient: str, reason: str) -> None:
        self.template = template
        self.recipient = recipient
        self.reason = reason
        super().__init__(f"Notification '{template}' to {recipient} failed: {reason}")


class PersistenceError(Exception):
    """Raised after a rollback when the database rejects a unit of work.

    Maps to HTTP 500.
    """
