"""
Envelope audit event model - the tamper-evident history of an envelope.

Events are append-only and hash-chained per envelope: each event stores the
derived hash of its predecessor, so any edit to history breaks verification.
Only hashes of attached payloads are stored, never the payloads themselves.
"""
from sqlalchemy import Column, String, Integer, DateTime, ForeignKey, UniqueConstraint
from signoff.database import Base


class AuditEvent(Base):
    """
    Immutable, hash-chained audit event.

    Invariants:
    - Once written, never edited or deleted
    - sequence_number is contiguous per envelope, starting at 0
    - previous_hash is the event_hash of sequence_number - 1 (genesis constant for 0)
    """
    __tablename__ = "audit_events"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    envelope_id = Column(String(36), ForeignKey("envelopes.id"), nullable=False, index=True)
    sequence_number = Column(Integer, nullable=False)
    timestamp = Column(DateTime, nullable=False)
    actor = Column(String, nullable=False)  # Recipient id, operator id, or "system"
    event_type = Column(String, nullable=False, index=True)
    payload_hash = Column(String(64), nullable=False)
    previous_hash = Column(String(64), nullable=False)
    event_hash = Column(String(64), nullable=False)

    # Two writers racing on the same envelope cannot both claim a sequence number
    __table_args__ = (
        UniqueConstraint("envelope_id", "sequence_number", name="uq_audit_envelope_sequence"),
    )


class AuditEventType:
    """Enumeration of audit event types."""
    # Envelope lifecycle
    ENVELOPE_CREATED = "envelope_created"
    ENVELOPE_DISPATCHED = "envelope_dispatched"
    ENVELOPE_COMPLETED = "envelope_completed"
    ENVELOPE_DECLINED = "envelope_declined"
    ENVELOPE_EXPIRED = "envelope_expired"
    ENVELOPE_VOIDED = "envelope_voided"

    # Recipient lifecycle
    RECIPIENT_VIEWED = "recipient_viewed"
    RECIPIENT_SIGNED = "recipient_signed"
    RECIPIENT_DECLINED = "recipient_declined"

    REMINDER_SENT = "reminder_sent"
