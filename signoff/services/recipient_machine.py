"""
Per-recipient signing lifecycle.

    pending → notified → viewed → signed | declined
    pending | notified | viewed → expired   (deadline, applied lazily)

These transitions only touch the recipient and the envelope's audit chain;
the envelope status is recomputed by the envelope state machine.
"""
from datetime import datetime
from typing import List, Optional
from signoff.models.audit import AuditEventType
from signoff.models.domain import Envelope, Recipient
from signoff.models.enums import (
    Decision,
    RecipientRole,
    RecipientState,
    SigningOrder,
)
from signoff.services.audit_log import AuditLog
from signoff.services.errors import (
    AlreadyDecided,
    Expired,
    InvalidTransition,
    OutOfOrder,
)

# States that count as "already notified or later" for notify()
_NOTIFIED_OR_LATER = (RecipientState.NOTIFIED, RecipientState.VIEWED)

# States in which a decision may be recorded
_DECIDABLE = (RecipientState.NOTIFIED, RecipientState.VIEWED)

# States that expire when the deadline passes
EXPIRABLE_STATES = (RecipientState.PENDING, RecipientState.NOTIFIED, RecipientState.VIEWED)


class RecipientStateMachine:
    """Validates and applies recipient transitions."""

    def __init__(self, audit_log: Optional[AuditLog] = None):
        self.audit_log = audit_log or AuditLog()

    def notify(self, recipient: Recipient) -> bool:
        """
        pending → notified.

        Returns True if the state changed. Idempotent for notified/viewed.
        """
        if recipient.state == RecipientState.PENDING:
            recipient.state = RecipientState.NOTIFIED
            return True
        if recipient.state in _NOTIFIED_OR_LATER:
            return False
        raise InvalidTransition(
            f"Cannot notify recipient {recipient.id} in state {recipient.state.value}",
            {"recipient_id": recipient.id, "state": recipient.state.value},
        )

    def record_view(self, envelope: Envelope, recipient: Recipient, timestamp: datetime) -> bool:
        """
        notified → viewed.

        Repeat views keep the recipient in viewed. Views of recipients that
        already reached signed/declined/expired are ignored. Returns True if
        the state changed.
        """
        if recipient.state == RecipientState.PENDING:
            raise InvalidTransition(
                f"Recipient {recipient.id} has not been sent the envelope yet",
                {"recipient_id": recipient.id, "state": recipient.state.value},
            )
        if recipient.state != RecipientState.NOTIFIED:
            return False

        recipient.state = RecipientState.VIEWED
        recipient.viewed_at = timestamp
        self.audit_log.append(
            envelope,
            actor=recipient.id,
            event_type=AuditEventType.RECIPIENT_VIEWED,
            payload={"recipient_id": recipient.id},
            timestamp=timestamp,
        )
        return True

    def decide(
        self,
        envelope: Envelope,
        recipient: Recipient,
        decision: Decision,
        artifact: Optional[str],
        timestamp: datetime,
        ip_address: Optional[str] = None,
        client_timestamp: Optional[datetime] = None
    ) -> Recipient:
        """
        notified | viewed → signed | declined.

        `timestamp` is the engine's clock and is what the deadline is checked
        against; `client_timestamp` is only recorded. Checks run before
        anything is written, so a rejected decision leaves the recipient and
        the audit chain untouched.
        """
        if recipient.role == RecipientRole.VIEWER:
            raise InvalidTransition(
                f"Recipient {recipient.id} is a viewer and cannot sign or decline",
                {"recipient_id": recipient.id, "role": recipient.role.value},
            )

        if recipient.state in (RecipientState.SIGNED, RecipientState.DECLINED):
            raise AlreadyDecided(recipient.id, recipient.state.value)

        if recipient.state == RecipientState.EXPIRED or (
            envelope.expiration_deadline is not None and timestamp > envelope.expiration_deadline
        ):
            raise Expired(envelope.id, envelope.expiration_deadline)

        if recipient.state not in _DECIDABLE:
            raise InvalidTransition(
                f"Recipient {recipient.id} cannot decide from state {recipient.state.value}",
                {"recipient_id": recipient.id, "state": recipient.state.value},
            )

        if envelope.signing_order == SigningOrder.SEQUENTIAL:
            waiting_on = self.blocking_recipients(envelope, recipient)
            if waiting_on:
                raise OutOfOrder(recipient.id, [r.id for r in waiting_on])

        signed = decision == Decision.SIGN
        recipient.state = RecipientState.SIGNED if signed else RecipientState.DECLINED
        recipient.decision_timestamp = timestamp
        recipient.decision_artifact = artifact
        recipient.decision_ip_address = ip_address
        recipient.decision_client_timestamp = client_timestamp

        self.audit_log.append(
            envelope,
            actor=recipient.id,
            event_type=AuditEventType.RECIPIENT_SIGNED if signed else AuditEventType.RECIPIENT_DECLINED,
            payload={
                "recipient_id": recipient.id,
                "decision": decision.value,
                "artifact": artifact,
                "ip_address": ip_address,
                "client_timestamp": client_timestamp.isoformat() if client_timestamp else None,
            },
            timestamp=timestamp,
        )
        return recipient

    def expire(self, recipient: Recipient) -> bool:
        """Force an undecided recipient to expired. Returns True if the state changed."""
        if recipient.state in EXPIRABLE_STATES:
            recipient.state = RecipientState.EXPIRED
            return True
        return False

    @staticmethod
    def blocking_recipients(envelope: Envelope, recipient: Recipient) -> List[Recipient]:
        """
        Required recipients with a strictly lower order that have not signed.

        Recipients sharing an order value form a cohort and never block each other.
        """
        return [
            other for other in envelope.recipients
            if other.is_required
            and other.order < recipient.order
            and other.state != RecipientState.SIGNED
        ]

    def is_actionable(self, envelope: Envelope, recipient: Recipient) -> bool:
        """True if the recipient could record a decision right now (ignoring the deadline)."""
        if not recipient.is_required or recipient.state not in _DECIDABLE:
            return False
        if envelope.signing_order == SigningOrder.SEQUENTIAL:
            return not self.blocking_recipients(envelope, recipient)
        return True
