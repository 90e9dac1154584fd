"""Enums for the signing workflow - the valid values for roles, states and settings."""
from enum import Enum


class RecipientRole(str, Enum):
    """What a recipient is asked to do with the envelope."""
    SIGNER = "signer"
    APPROVER = "approver"
    VIEWER = "viewer"


class RecipientState(str, Enum):
    """Per-recipient lifecycle: pending → notified → viewed → signed/declined, or expired."""
    PENDING = "pending"
    NOTIFIED = "notified"
    VIEWED = "viewed"
    SIGNED = "signed"
    DECLINED = "declined"
    EXPIRED = "expired"


class EnvelopeStatus(str, Enum):
    """Aggregate envelope status."""
    DRAFT = "draft"
    DISPATCHED = "dispatched"
    PARTIALLY_SIGNED = "partially_signed"
    COMPLETED = "completed"
    DECLINED = "declined"
    EXPIRED = "expired"
    VOIDED = "voided"


class SigningOrder(str, Enum):
    PARALLEL = "parallel"
    SEQUENTIAL = "sequential"


class Decision(str, Enum):
    SIGN = "sign"
    DECLINE = "decline"


class ReminderFrequency(str, Enum):
    NEVER = "never"
    DAILY = "daily"
    WEEKLY = "weekly"


# Roles whose decision counts toward completion
REQUIRED_ROLES = frozenset({RecipientRole.SIGNER, RecipientRole.APPROVER})

# Recipient states from which no further transition is possible
DECIDED_STATES = frozenset({
    RecipientState.SIGNED,
    RecipientState.DECLINED,
    RecipientState.EXPIRED,
})

# Statuses from which no recipient-driven transition is possible
TERMINAL_STATUSES = frozenset({
    EnvelopeStatus.COMPLETED,
    EnvelopeStatus.DECLINED,
    EnvelopeStatus.EXPIRED,
    EnvelopeStatus.VOIDED,
})
