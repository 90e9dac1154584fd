"""
Envelope state machine - the core enforcement point for signing invariants.

All envelope and recipient transitions go through here. Methods validate
before they write, so a rejected transition leaves the envelope untouched;
committing or rolling back is the caller's job.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional
from signoff.config import SYSTEM_ACTOR
from signoff.models.audit import AuditEventType
from signoff.models.domain import Envelope, Recipient
from signoff.models.enums import (
    Decision,
    EnvelopeStatus,
    RecipientState,
    DECIDED_STATES,
    TERMINAL_STATUSES,
)
from signoff.services.audit_log import AuditLog
from signoff.services.errors import (
    AlreadyDispatched,
    EmptyRecipientList,
    EnvelopeClosed,
    Expired,
    InvalidTransition,
    NotFound,
    ValidationError,
)
from signoff.services.recipient_machine import RecipientStateMachine

_TERMINAL_EVENT_TYPES = {
    EnvelopeStatus.COMPLETED: AuditEventType.ENVELOPE_COMPLETED,
    EnvelopeStatus.DECLINED: AuditEventType.ENVELOPE_DECLINED,
    EnvelopeStatus.EXPIRED: AuditEventType.ENVELOPE_EXPIRED,
}


@dataclass
class RecipientEvent:
    """A recipient-driven event: a view or a decision."""
    VIEW = "view"

    action: str  # "view", or a Decision value
    artifact: Optional[str] = None
    ip_address: Optional[str] = None
    client_timestamp: Optional[datetime] = None

    @classmethod
    def view(cls) -> "RecipientEvent":
        return cls(action=cls.VIEW)

    @classmethod
    def decision(cls, decision: Decision, artifact: Optional[str] = None,
                 ip_address: Optional[str] = None,
                 client_timestamp: Optional[datetime] = None) -> "RecipientEvent":
        return cls(action=Decision(decision).value, artifact=artifact, ip_address=ip_address,
                   client_timestamp=client_timestamp)


@dataclass
class TransitionResult:
    recipient: Recipient
    previous_status: EnvelopeStatus
    status: EnvelopeStatus

    @property
    def became_terminal(self) -> bool:
        return self.previous_status not in TERMINAL_STATUSES and self.status in TERMINAL_STATUSES


class EnvelopeStateMachine:
    """Aggregates recipient states into envelope status and enforces envelope-level rules."""

    def __init__(self, recipients: Optional[RecipientStateMachine] = None):
        self.recipients = recipients or RecipientStateMachine()

    @property
    def audit_log(self) -> AuditLog:
        return self.recipients.audit_log

    def compute_status(self, envelope: Envelope, now: datetime) -> EnvelopeStatus:
        """
        Calculate envelope status from recipient states and the deadline.

        Status invariants:
        - draft and voided are only ever set explicitly
        - any required recipient declined => declined
        - every required recipient signed => completed
        - past the deadline and neither of the above => expired
        - at least one required recipient signed => partially_signed
        """
        if envelope.status in (EnvelopeStatus.DRAFT, EnvelopeStatus.VOIDED):
            return envelope.status

        required = envelope.required_recipients

        if any(r.state == RecipientState.DECLINED for r in required):
            return EnvelopeStatus.DECLINED

        if required and all(r.state == RecipientState.SIGNED for r in required):
            return EnvelopeStatus.COMPLETED

        if envelope.expiration_deadline is not None and now > envelope.expiration_deadline:
            return EnvelopeStatus.EXPIRED

        if any(r.state == RecipientState.SIGNED for r in required):
            return EnvelopeStatus.PARTIALLY_SIGNED

        return EnvelopeStatus.DISPATCHED

    def recompute_status(self, envelope: Envelope, now: datetime, actor: str = SYSTEM_ACTOR) -> EnvelopeStatus:
        """
        Apply compute_status to the envelope.

        Idempotent: with no new recipient events a second call changes nothing.
        Entering expired forces every undecided recipient to expired.
        Entering a terminal status is audited.
        """
        previous = envelope.status
        status = self.compute_status(envelope, now)

        if status == EnvelopeStatus.EXPIRED:
            for recipient in envelope.recipients:
                self.recipients.expire(recipient)

        if status != previous:
            envelope.status = status
            event_type = _TERMINAL_EVENT_TYPES.get(status)
            if event_type:
                self.audit_log.append(
                    envelope,
                    actor=actor,
                    event_type=event_type,
                    payload={"previous_status": previous.value, "status": status.value},
                    timestamp=now,
                )
        return status

    def dispatch(self, envelope: Envelope, now: datetime, actor: str = SYSTEM_ACTOR) -> Envelope:
        """
        draft → dispatched.

        Starts the expiration clock and moves every recipient to notified.
        """
        if envelope.status != EnvelopeStatus.DRAFT:
            raise AlreadyDispatched(envelope.id, envelope.status.value)

        if not envelope.required_recipients:
            raise EmptyRecipientList(envelope.id)

        self.touch(envelope, now)
        envelope.dispatched_at = now
        envelope.expiration_deadline = now + timedelta(days=envelope.expiration_days)
        envelope.status = EnvelopeStatus.DISPATCHED

        notified = [r.id for r in envelope.recipients if self.recipients.notify(r)]

        self.audit_log.append(
            envelope,
            actor=actor,
            event_type=AuditEventType.ENVELOPE_DISPATCHED,
            payload={
                "notified_recipient_ids": notified,
                "signing_order": envelope.signing_order.value,
                "expiration_deadline": envelope.expiration_deadline.isoformat(),
            },
            timestamp=now,
        )
        return envelope

    def apply_recipient_transition(
        self,
        envelope: Envelope,
        recipient_id: str,
        event: RecipientEvent,
        now: datetime
    ) -> TransitionResult:
        """
        Delegate a recipient event to the recipient state machine, then recompute status.

        Refusal invariants:
        - draft envelopes accept no recipient events
        - terminal envelopes accept no recipient transitions (EnvelopeClosed,
          or Expired when the envelope expired)
        - views of recipients that already finished are ignored, never refused
        """
        recipient = envelope.find_recipient(recipient_id)
        if recipient is None:
            raise NotFound("Recipient", recipient_id)

        previous = envelope.status
        is_view = event.action == RecipientEvent.VIEW

        if envelope.status == EnvelopeStatus.DRAFT:
            raise InvalidTransition(
                f"Envelope {envelope.id} has not been dispatched",
                {"envelope_id": envelope.id, "status": envelope.status.value},
            )

        if envelope.is_terminal:
            if is_view and recipient.state in DECIDED_STATES:
                return TransitionResult(recipient, previous, previous)
            if envelope.status == EnvelopeStatus.EXPIRED:
                raise Expired(envelope.id, envelope.expiration_deadline)
            raise EnvelopeClosed(envelope.id, envelope.status.value)

        if is_view:
            changed = self.recipients.record_view(envelope, recipient, now)
        else:
            self.recipients.decide(
                envelope,
                recipient,
                Decision(event.action),
                artifact=event.artifact,
                timestamp=now,
                ip_address=event.ip_address,
                client_timestamp=event.client_timestamp,
            )
            changed = True

        if changed:
            self.touch(envelope, now)
        status = self.recompute_status(envelope, now, actor=recipient.id)
        if status != previous:
            self.touch(envelope, now)
        return TransitionResult(recipient, previous, status)

    def refresh_expiration(self, envelope: Envelope, now: datetime) -> bool:
        """
        Lazily expire a dispatched envelope whose deadline has passed.

        Returns True if the envelope moved to expired on this call.
        """
        if envelope.status not in (EnvelopeStatus.DISPATCHED, EnvelopeStatus.PARTIALLY_SIGNED):
            return False
        if envelope.expiration_deadline is None or now <= envelope.expiration_deadline:
            return False

        self.touch(envelope, now)
        return self.recompute_status(envelope, now) == EnvelopeStatus.EXPIRED

    def void(self, envelope: Envelope, reason: str, actor: str, now: datetime) -> Envelope:
        """
        Any non-terminal status → voided. Operator action only.

        Voiding replaces deletion: the envelope and its audit chain are kept.
        """
        if not reason or not reason.strip():
            raise ValidationError("A reason is required to void an envelope", {"envelope_id": envelope.id})

        if envelope.is_terminal:
            raise InvalidTransition(
                f"Envelope {envelope.id} is already {envelope.status.value} and cannot be voided",
                {"envelope_id": envelope.id, "status": envelope.status.value},
            )

        previous = envelope.status
        self.touch(envelope, now)
        envelope.status = EnvelopeStatus.VOIDED
        envelope.void_reason = reason.strip()

        self.audit_log.append(
            envelope,
            actor=actor,
            event_type=AuditEventType.ENVELOPE_VOIDED,
            payload={"previous_status": previous.value, "reason": envelope.void_reason},
            timestamp=now,
        )
        return envelope

    def touch(self, envelope: Envelope, now: datetime) -> None:
        """Bump the version so the write is compared against what was read."""
        envelope.updated_at = now
        envelope.version = (envelope.version or 0) + 1
