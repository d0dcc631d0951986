"""Typed errors raised by the engagement lifecycle engine.

Every error carries a stable ``code`` so callers can show the specific
failure ("payment window passed" vs "already paid") instead of a generic
message. The engine never retries a failed operation itself.
"""

from typing import Any


class LifecycleError(Exception):
    """Base class for all engine errors."""

    code = "lifecycle_error"

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, **self.context}


class ValidationError(LifecycleError):
    """Malformed or incomplete input."""

    code = "validation_error"

    def __init__(self, message: str, fields: dict[str, str] | None = None) -> None:
        super().__init__(message, fields=fields or {})
        self.fields = fields or {}


class NotFoundError(LifecycleError):
    """Referenced entity does not exist."""

    code = "not_found"

    def __init__(self, kind: str, entity_id: str) -> None:
        super().__init__(f"{kind} {entity_id} not found", kind=kind, entity_id=entity_id)
        self.kind = kind
        self.entity_id = entity_id


class InvalidTransition(LifecycleError):
    """Operation is not legal from the entity's current state."""

    code = "invalid_transition"

    def __init__(
        self,
        kind: str,
        entity_id: str,
        status: str,
        action: str,
        reason: str | None = None,
    ) -> None:
        message = f"Cannot {action} {kind} {entity_id} in status {status}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(
            message, kind=kind, entity_id=entity_id, status=status, action=action
        )
        self.kind = kind
        self.entity_id = entity_id
        self.status = status
        self.action = action


class DeadlineExceeded(LifecycleError):
    """Time-sensitive operation arrived at or after its deadline.

    Callers should re-fetch the entity to see the expiry outcome.
    """

    code = "deadline_exceeded"

    def __init__(self, kind: str, entity_id: str, deadline: int, at: int) -> None:
        super().__init__(
            f"{kind} {entity_id} deadline {deadline} passed (at {at})",
            kind=kind,
            entity_id=entity_id,
            deadline=deadline,
            at=at,
        )
        self.kind = kind
        self.entity_id = entity_id
        self.deadline = deadline
        self.at = at


class OverpaymentError(LifecycleError):
    """Confirming a payment would collect more than the case has billed."""

    code = "overpayment"

    def __init__(self, case_id: str, attempted: int, allowed: int) -> None:
        super().__init__(
            f"Payment of {attempted} exceeds outstanding {allowed} on case {case_id}",
            case_id=case_id,
            attempted=attempted,
            allowed=allowed,
        )
        self.case_id = case_id
        self.attempted = attempted
        self.allowed = allowed


class CaseClosedError(LifecycleError):
    """Mutation attempted on a closed, ended or terminated case."""

    code = "case_closed"

    def __init__(self, case_id: str, status: str) -> None:
        super().__init__(
            f"Case {case_id} is {status} and no longer accepts changes",
            case_id=case_id,
            status=status,
        )
        self.case_id = case_id
        self.status = status
