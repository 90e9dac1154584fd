"""
Typed errors for the signing workflow.

Every rejected command raises one of these; none of them is retried by the
engine. ConcurrencyConflict is the only one that is safe to retry as-is.
DeliveryDegraded is never raised: it is returned as a warning after a
transition has already been committed.
"""
from typing import Optional


class WorkflowError(Exception):
    """Base exception for all workflow errors."""
    code = "workflow_error"

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(WorkflowError):
    """Bad command shape, rejected before any state is touched."""
    code = "validation_error"


class EmptyRecipientList(ValidationError):
    """Raised when an envelope has no signer or approver to dispatch to."""
    code = "empty_recipient_list"

    def __init__(self, envelope_id: str):
        super().__init__(
            f"Envelope {envelope_id} needs at least one signer or approver",
            {"envelope_id": envelope_id},
        )


class NotFound(WorkflowError):
    code = "not_found"

    def __init__(self, entity: str, entity_id: str):
        super().__init__(f"{entity} {entity_id} not found", {"entity": entity, "id": entity_id})


class InvalidTransition(WorkflowError):
    """Raised when a state change is not allowed from the current state."""
    code = "invalid_transition"


class OutOfOrder(WorkflowError):
    """Raised when a sequential recipient acts before every earlier recipient signed."""
    code = "out_of_order"

    def __init__(self, recipient_id: str, waiting_on: list):
        super().__init__(
            f"Recipient {recipient_id} cannot act yet; waiting on: {', '.join(waiting_on)}",
            {"recipient_id": recipient_id, "waiting_on": waiting_on},
        )


class AlreadyDecided(WorkflowError):
    code = "already_decided"

    def __init__(self, recipient_id: str, state: str):
        super().__init__(
            f"Recipient {recipient_id} has already {state}",
            {"recipient_id": recipient_id, "state": state},
        )


class AlreadyDispatched(WorkflowError):
    code = "already_dispatched"

    def __init__(self, envelope_id: str, status: str):
        super().__init__(
            f"Envelope {envelope_id} is {status}, only draft envelopes can be dispatched",
            {"envelope_id": envelope_id, "status": status},
        )


class EnvelopeClosed(WorkflowError):
    """Raised for any recipient action on an envelope in a terminal status."""
    code = "envelope_closed"

    def __init__(self, envelope_id: str, status: str):
        super().__init__(
            f"Envelope {envelope_id} is {status} and accepts no further recipient actions",
            {"envelope_id": envelope_id, "status": status},
        )


class Expired(WorkflowError):
    code = "expired"

    def __init__(self, envelope_id: str, deadline):
        super().__init__(
            f"Envelope {envelope_id} expired at {deadline.isoformat() if deadline else 'unknown'}",
            {"envelope_id": envelope_id, "expiration_deadline": deadline.isoformat() if deadline else None},
        )


class AuthenticationRequired(WorkflowError):
    code = "authentication_required"

    def __init__(self, envelope_id: str, recipient_id: str):
        super().__init__(
            f"Envelope {envelope_id} requires an authenticated recipient to decide",
            {"envelope_id": envelope_id, "recipient_id": recipient_id},
        )


class ConcurrencyConflict(WorkflowError):
    """Another writer changed the envelope first; retry the whole command."""
    code = "concurrency_conflict"

    def __init__(self, envelope_id: Optional[str]):
        super().__init__(
            f"Envelope {envelope_id} was modified concurrently; retry the command",
            {"envelope_id": envelope_id},
        )


class DeliveryDegraded(WorkflowError):
    """A notification or archive hand-off failed after the transition was committed."""
    code = "delivery_degraded"

    def __init__(self, envelope_id: str, recipient_id: Optional[str], event_type: str, reason: str):
        super().__init__(
            f"Could not deliver {event_type} for envelope {envelope_id}: {reason}",
            {
                "envelope_id": envelope_id,
                "recipient_id": recipient_id,
                "event_type": event_type,
                "reason": reason,
            },
        )
