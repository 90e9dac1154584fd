"""API routes for the envelope signing workflow."""
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, status
from sqlalchemy.orm import Session

from signoff.config import SYSTEM_ACTOR
from signoff.database import get_db
from signoff.models.enums import EnvelopeStatus
from signoff.services.errors import (
    AuthenticationRequired,
    NotFound,
    ValidationError,
    WorkflowError,
)
from signoff.services.workflow import (
    DecisionContext,
    RecipientSpec,
    SweepResult,
    WorkflowEngine,
)
from signoff.api.schemas import (
    AuditTrailResponse,
    ChainVerificationResponse,
    AuditEventResponse,
    DecisionResponse,
    DecisionSubmit,
    DeliveryWarning,
    DispatchResponse,
    EnvelopeCreate,
    EnvelopeCreated,
    EnvelopeResponse,
    EnvelopeSummary,
    ErrorResponse,
    SweepResponse,
    TemplateCreate,
    TemplateResponse,
    VoidRequest,
    VoidResponse,
)

router = APIRouter()

REFUSALS = {
    404: {"model": ErrorResponse, "description": "Envelope or recipient not found"},
    409: {"model": ErrorResponse, "description": "Refused by the signing workflow, or a concurrent write"},
}


def get_engine(db: Session = Depends(get_db)) -> WorkflowEngine:
    """Dependency building a workflow engine over the request's session."""
    return WorkflowEngine(db)


def get_actor(x_actor: str = Header(SYSTEM_ACTOR)) -> str:
    """Operator identity, supplied by the auth layer in front of this service."""
    return x_actor


def get_recipient_authenticated(x_recipient_authenticated: bool = Header(False)) -> bool:
    """Whether the auth layer in front of this service verified the recipient."""
    return x_recipient_authenticated


def _refusal(e: WorkflowError) -> HTTPException:
    if isinstance(e, NotFound):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(e, ValidationError):
        code = 422
    elif isinstance(e, AuthenticationRequired):
        code = status.HTTP_403_FORBIDDEN
    else:
        code = status.HTTP_409_CONFLICT
    return HTTPException(
        status_code=code,
        detail={"error": e.code, "message": e.message, "details": e.details}
    )


def _warnings(warnings) -> List[DeliveryWarning]:
    return [
        DeliveryWarning(
            event_type=w.details["event_type"],
            recipient_id=w.details["recipient_id"],
            message=w.message
        )
        for w in warnings
    ]


def _sweep_response(result: SweepResult) -> SweepResponse:
    return SweepResponse(
        envelope_ids=result.envelope_ids,
        reminded=result.reminded,
        conflicts=result.conflicts,
        warnings=_warnings(result.warnings)
    )


# Envelope endpoints
@router.post("/envelopes", response_model=EnvelopeCreated, status_code=status.HTTP_201_CREATED, responses=REFUSALS)
def create_envelope(
    envelope_data: EnvelopeCreate,
    engine: WorkflowEngine = Depends(get_engine),
    actor: str = Depends(get_actor)
):
    """Create a draft envelope with its recipients."""
    overrides = envelope_data.model_dump(
        include={"signing_order", "expiration_days", "reminder_frequency", "allow_reassign", "require_authentication"},
        exclude_none=True
    )
    try:
        envelope = engine.create_envelope(
            name=envelope_data.name,
            documents=envelope_data.documents,
            recipients=[
                RecipientSpec(email=r.email, name=r.name, role=r.role, order=r.order)
                for r in envelope_data.recipients
            ],
            actor=actor,
            template_id=envelope_data.template_id,
            overrides=overrides
        )
    except WorkflowError as e:
        raise _refusal(e)
    return EnvelopeCreated(envelope_id=envelope.id, status=envelope.status)


@router.get("/envelopes", response_model=List[EnvelopeSummary])
def list_envelopes(
    status_filter: Optional[EnvelopeStatus] = Query(None, alias="status"),
    recipient_email: Optional[str] = None,
    engine: WorkflowEngine = Depends(get_engine)
):
    """List envelopes, newest first. Overdue envelopes are expired before filtering."""
    try:
        return engine.list_envelopes(status=status_filter, recipient_email=recipient_email)
    except WorkflowError as e:
        raise _refusal(e)


@router.get("/envelopes/{envelope_id}", response_model=EnvelopeResponse, responses=REFUSALS)
def get_envelope(envelope_id: str, engine: WorkflowEngine = Depends(get_engine)):
    """Get an envelope; an overdue envelope is expired before it is returned."""
    try:
        return engine.get_envelope(envelope_id)
    except WorkflowError as e:
        raise _refusal(e)


@router.post("/envelopes/{envelope_id}/dispatch", response_model=DispatchResponse, responses=REFUSALS)
def dispatch_envelope(
    envelope_id: str,
    engine: WorkflowEngine = Depends(get_engine),
    actor: str = Depends(get_actor)
):
    """
    Dispatch a draft envelope.
    Notification failures do not undo the dispatch; they come back as warnings.
    """
    try:
        result = engine.dispatch_envelope(envelope_id, actor=actor)
    except WorkflowError as e:
        raise _refusal(e)
    return DispatchResponse(
        status=result.envelope.status,
        expiration_deadline=result.envelope.expiration_deadline,
        warnings=_warnings(result.warnings)
    )


@router.post("/envelopes/{envelope_id}/recipients/{recipient_id}/view", response_model=DecisionResponse, responses=REFUSALS)
def record_view(
    envelope_id: str,
    recipient_id: str,
    engine: WorkflowEngine = Depends(get_engine)
):
    """Record that a recipient opened the envelope."""
    try:
        result = engine.record_view(envelope_id, recipient_id)
    except WorkflowError as e:
        raise _refusal(e)
    return DecisionResponse(
        status=result.envelope.status,
        recipient_state=result.recipient.state,
        warnings=_warnings(result.warnings)
    )


@router.post("/envelopes/{envelope_id}/decisions", response_model=DecisionResponse, responses={
    **REFUSALS,
    403: {"model": ErrorResponse, "description": "Envelope requires an authenticated recipient"}
})
def submit_decision(
    envelope_id: str,
    decision_data: DecisionSubmit,
    engine: WorkflowEngine = Depends(get_engine),
    authenticated: bool = Depends(get_recipient_authenticated)
):
    """
    Sign or decline on behalf of a recipient.

    WILL REFUSE if:
    - The envelope is closed, expired, or still a draft
    - A sequential recipient acts before earlier recipients signed
    - The recipient already decided
    """
    try:
        result = engine.submit_decision(
            envelope_id,
            decision_data.recipient_id,
            decision_data.decision,
            artifact=decision_data.artifact,
            context=DecisionContext(
                ip_address=decision_data.ip_address,
                timestamp=decision_data.timestamp,
                authenticated=authenticated
            )
        )
    except WorkflowError as e:
        raise _refusal(e)
    return DecisionResponse(
        status=result.envelope.status,
        recipient_state=result.recipient.state,
        warnings=_warnings(result.warnings)
    )


@router.post("/envelopes/{envelope_id}/void", response_model=VoidResponse, responses=REFUSALS)
def void_envelope(
    envelope_id: str,
    void_data: VoidRequest,
    engine: WorkflowEngine = Depends(get_engine),
    actor: str = Depends(get_actor)
):
    """Void an envelope. This is the only way to retire one; envelopes are never deleted."""
    try:
        result = engine.void_envelope(envelope_id, void_data.reason, actor=actor)
    except WorkflowError as e:
        raise _refusal(e)
    return VoidResponse(status=result.envelope.status, warnings=_warnings(result.warnings))


@router.get("/envelopes/{envelope_id}/audit-trail", response_model=AuditTrailResponse, responses=REFUSALS)
def get_audit_trail(envelope_id: str, engine: WorkflowEngine = Depends(get_engine)):
    """Ordered audit events plus the result of verifying the hash chain."""
    try:
        trail = engine.get_audit_trail(envelope_id)
    except WorkflowError as e:
        raise _refusal(e)
    return AuditTrailResponse(
        envelope_id=trail.envelope_id,
        events=[AuditEventResponse.model_validate(event) for event in trail.events],
        verification=ChainVerificationResponse(
            valid=trail.verification.valid,
            event_count=trail.verification.event_count,
            first_invalid_sequence=trail.verification.first_invalid_sequence
        )
    )


# Template endpoints
@router.post("/envelopes/{envelope_id}/template", response_model=TemplateResponse, status_code=status.HTTP_201_CREATED, responses=REFUSALS)
def save_as_template(
    envelope_id: str,
    template_data: TemplateCreate,
    engine: WorkflowEngine = Depends(get_engine),
    actor: str = Depends(get_actor)
):
    """Save an envelope's settings and recipient slots as a template."""
    try:
        return engine.save_as_template(envelope_id, template_data.name, actor=actor)
    except WorkflowError as e:
        raise _refusal(e)


@router.get("/templates", response_model=List[TemplateResponse])
def list_templates(engine: WorkflowEngine = Depends(get_engine)):
    """List all templates, newest first."""
    return engine.list_templates()


# Sweep endpoints, for an external scheduler
@router.post("/workflow/tick", response_model=SweepResponse)
def tick(engine: WorkflowEngine = Depends(get_engine)):
    """Expire every open envelope whose deadline has passed."""
    return _sweep_response(engine.tick())


@router.post("/workflow/reminders", response_model=SweepResponse)
def send_reminders(engine: WorkflowEngine = Depends(get_engine)):
    """Send due reminders to recipients who still need to act."""
    return _sweep_response(engine.send_reminders())
