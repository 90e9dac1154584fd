"""Domain models - envelopes, their recipients, and reusable envelope templates."""
import uuid
from datetime import datetime
from typing import List, Optional
from sqlalchemy import Boolean, Column, String, Integer, DateTime, ForeignKey, Text, Enum as SQLEnum, JSON
from sqlalchemy.orm import relationship, validates
from signoff.database import Base
from signoff.models.audit import AuditEvent
from signoff.models.enums import (
    EnvelopeStatus,
    RecipientRole,
    RecipientState,
    ReminderFrequency,
    SigningOrder,
    REQUIRED_ROLES,
    TERMINAL_STATUSES,
)


def new_id() -> str:
    return str(uuid.uuid4())


class Envelope(Base):
    """
    A signing transaction bundling documents and recipients.

    Status moves: draft → dispatched → partially_signed → completed/declined/expired,
    and any non-terminal status → voided.

    Invariants enforced here:
    - signing_order cannot change once the envelope has left draft
    - version is compared-and-swapped on every write (optimistic concurrency)
    """
    __tablename__ = "envelopes"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String, nullable=False)
    documents = Column(JSON, nullable=False, default=list)  # Opaque references, never parsed
    status = Column(SQLEnum(EnvelopeStatus), nullable=False, default=EnvelopeStatus.DRAFT)

    # Settings
    signing_order = Column(SQLEnum(SigningOrder), nullable=False, default=SigningOrder.PARALLEL)
    expiration_days = Column(Integer, nullable=False)
    reminder_frequency = Column(SQLEnum(ReminderFrequency), nullable=False, default=ReminderFrequency.DAILY)
    allow_reassign = Column(Boolean, nullable=False, default=True)  # Stored only
    require_authentication = Column(Boolean, nullable=False, default=False)

    created_by = Column(String, nullable=False)
    void_reason = Column(String, nullable=True)

    # Timestamps
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    dispatched_at = Column(DateTime, nullable=True)
    expiration_deadline = Column(DateTime, nullable=True)  # dispatched_at + expiration_days
    finalized_at = Column(DateTime, nullable=True)  # Set once, when finalize notifications go out

    version = Column(Integer, nullable=False, default=1)

    # Relationships
    recipients = relationship(
        "Recipient",
        back_populates="envelope",
        cascade="all, delete-orphan",
        order_by="Recipient.position",
    )
    audit_events = relationship(
        AuditEvent,
        cascade="all, delete-orphan",
        order_by=AuditEvent.sequence_number,
    )

    # Every mutating command bumps version itself, so each one emits a version-checked UPDATE
    __mapper_args__ = {"version_id_col": version, "version_id_generator": False}

    @validates("signing_order")
    def _guard_signing_order(self, key, value):
        if self.status not in (None, EnvelopeStatus.DRAFT) and value != self.signing_order:
            raise ValueError(
                f"IMMUTABILITY VIOLATION: {key} cannot change after dispatch "
                f"(envelope {self.id} is {self.status.value})"
            )
        return value

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def required_recipients(self) -> List["Recipient"]:
        return [r for r in self.recipients if r.is_required]

    def find_recipient(self, recipient_id: str) -> Optional["Recipient"]:
        for recipient in self.recipients:
            if recipient.id == recipient_id:
                return recipient
        return None


class Recipient(Base):
    """
    A party with a role in an envelope's signing workflow.

    Invariants:
    - A viewer never reaches signed/declined
    - decision_timestamp/decision_artifact are written exactly once
    - email and name are immutable once the envelope is dispatched
    """
    __tablename__ = "recipients"

    id = Column(String(36), primary_key=True, default=new_id)
    envelope_id = Column(String(36), ForeignKey("envelopes.id"), nullable=False, index=True)
    email = Column(String, nullable=False)
    name = Column(String, nullable=False)
    role = Column(SQLEnum(RecipientRole), nullable=False, default=RecipientRole.SIGNER)
    order = Column("sign_order", Integer, nullable=False, default=0)  # Only used for sequential envelopes
    position = Column(Integer, nullable=False)  # Insertion index within the envelope
    state = Column(SQLEnum(RecipientState), nullable=False, default=RecipientState.PENDING)

    viewed_at = Column(DateTime, nullable=True)
    decision_timestamp = Column(DateTime, nullable=True)  # Engine clock, never the caller's
    decision_client_timestamp = Column(DateTime, nullable=True)  # As reported by the signer's device
    decision_artifact = Column(Text, nullable=True)  # Signature payload or decline reason
    decision_ip_address = Column(String, nullable=True)
    last_reminded_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    envelope = relationship("Envelope", back_populates="recipients")

    @validates("email", "name")
    def _guard_identity(self, key, value):
        envelope = self.envelope
        if envelope is not None and envelope.status not in (None, EnvelopeStatus.DRAFT):
            if getattr(self, key) != value:
                raise ValueError(
                    f"IMMUTABILITY VIOLATION: recipient {key} cannot change after dispatch"
                )
        return value

    @property
    def is_required(self) -> bool:
        return self.role in REQUIRED_ROLES


class EnvelopeTemplate(Base):
    """
    Reusable envelope settings plus the recipient slots (role/order) to fill in.

    Templates carry no recipient identities and no documents.
    """
    __tablename__ = "envelope_templates"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String, nullable=False)
    signing_order = Column(SQLEnum(SigningOrder), nullable=False)
    expiration_days = Column(Integer, nullable=False)
    reminder_frequency = Column(SQLEnum(ReminderFrequency), nullable=False)
    allow_reassign = Column(Boolean, nullable=False)
    require_authentication = Column(Boolean, nullable=False)
    recipient_slots = Column(JSON, nullable=False, default=list)  # [{"role": ..., "order": ...}]
    source_envelope_id = Column(String(36), nullable=True)
    created_by = Column(String, nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
