"""Pydantic schemas for request/response validation."""
from datetime import datetime
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field
from signoff.models.enums import (
    Decision,
    EnvelopeStatus,
    RecipientRole,
    RecipientState,
    ReminderFrequency,
    SigningOrder,
)


# Envelope schemas
class RecipientCreate(BaseModel):
    email: str = Field(..., min_length=3)
    name: str = Field(..., min_length=1)
    role: Optional[RecipientRole] = None  # Falls back to the template slot, then signer
    order: Optional[int] = None


class EnvelopeCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    documents: List[Any] = []
    recipients: List[RecipientCreate] = []
    template_id: Optional[str] = None

    # Settings; omitted values come from the template, or the defaults
    signing_order: Optional[SigningOrder] = None
    expiration_days: Optional[int] = None
    reminder_frequency: Optional[ReminderFrequency] = None
    allow_reassign: Optional[bool] = None
    require_authentication: Optional[bool] = None


class EnvelopeCreated(BaseModel):
    envelope_id: str
    status: EnvelopeStatus


class RecipientResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    email: str
    name: str
    role: RecipientRole
    order: int
    state: RecipientState
    viewed_at: Optional[datetime]
    decision_timestamp: Optional[datetime]


class EnvelopeResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    documents: List[Any]
    status: EnvelopeStatus
    signing_order: SigningOrder
    expiration_days: int
    reminder_frequency: ReminderFrequency
    allow_reassign: bool
    require_authentication: bool
    created_by: str
    created_at: datetime
    dispatched_at: Optional[datetime]
    expiration_deadline: Optional[datetime]
    void_reason: Optional[str]
    version: int
    recipients: List[RecipientResponse]


class EnvelopeSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    status: EnvelopeStatus
    signing_order: SigningOrder
    created_by: str
    created_at: datetime
    expiration_deadline: Optional[datetime]
    recipients: List[RecipientResponse]


class DeliveryWarning(BaseModel):
    """A notification that could not be delivered after a successful transition."""
    event_type: str
    recipient_id: Optional[str]
    message: str


class DispatchResponse(BaseModel):
    status: EnvelopeStatus
    expiration_deadline: datetime
    warnings: List[DeliveryWarning] = []


# Recipient action schemas
class DecisionSubmit(BaseModel):
    recipient_id: str
    decision: Decision
    artifact: Optional[str] = None  # Signature payload or decline reason
    ip_address: Optional[str] = None
    timestamp: Optional[datetime] = None  # Client clock, recorded only


class DecisionResponse(BaseModel):
    status: EnvelopeStatus
    recipient_state: RecipientState
    warnings: List[DeliveryWarning] = []


class VoidRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)


class VoidResponse(BaseModel):
    status: EnvelopeStatus
    warnings: List[DeliveryWarning] = []


# Audit schemas
class AuditEventResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    sequence_number: int
    timestamp: datetime
    actor: str
    event_type: str
    payload_hash: str
    previous_hash: str
    event_hash: str


class ChainVerificationResponse(BaseModel):
    valid: bool
    event_count: int
    first_invalid_sequence: Optional[int]


class AuditTrailResponse(BaseModel):
    envelope_id: str
    events: List[AuditEventResponse]
    verification: ChainVerificationResponse


# Sweep schemas
class SweepResponse(BaseModel):
    envelope_ids: List[str]
    reminded: List[Dict[str, str]] = []
    conflicts: List[str] = []
    warnings: List[DeliveryWarning] = []


# Template schemas
class TemplateCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)


class TemplateResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    signing_order: SigningOrder
    expiration_days: int
    reminder_frequency: ReminderFrequency
    allow_reassign: bool
    require_authentication: bool
    recipient_slots: List[Dict[str, Any]]
    source_envelope_id: Optional[str]
    created_by: str
    created_at: datetime


# Error response
class ErrorResponse(BaseModel):
    """Response when a command is refused."""
    error: str
    message: str
    details: Dict[str, Any] = {}
