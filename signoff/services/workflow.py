"""
Workflow engine - the command layer over the envelope state machine.

Each command loads one envelope, applies the transition, commits it under the
envelope's version check and only then talks to collaborators (notification
delivery, archival). Collaborator failures come back as DeliveryDegraded
warnings; they never roll a committed transition back.
"""
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Union

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from signoff.config import DEFAULT_EXPIRATION_DAYS, SYSTEM_ACTOR
from signoff.models.audit import AuditEvent, AuditEventType
from signoff.models.domain import Envelope, EnvelopeTemplate, Recipient, new_id
from signoff.models.enums import (
    Decision,
    EnvelopeStatus,
    RecipientRole,
    RecipientState,
    ReminderFrequency,
    SigningOrder,
)
from signoff.services.audit_log import AuditLog, ChainVerification
from signoff.services.clock import as_utc, utcnow
from signoff.services.errors import (
    AuthenticationRequired,
    ConcurrencyConflict,
    DeliveryDegraded,
    InvalidTransition,
    NotFound,
    ValidationError,
    WorkflowError,
)
from signoff.services.notifications import (
    ArchiveStore,
    LoggingArchiveStore,
    LoggingNotificationSender,
    NotificationEventType,
    NotificationSender,
    OutboundNotification,
    signing_link,
)
from signoff.services.state_machine import EnvelopeStateMachine, RecipientEvent

logger = logging.getLogger(__name__)

REMINDER_INTERVALS = {
    ReminderFrequency.DAILY: timedelta(days=1),
    ReminderFrequency.WEEKLY: timedelta(days=7),
}

_FINAL_NOTICES = {
    EnvelopeStatus.COMPLETED: NotificationEventType.ENVELOPE_COMPLETED,
    EnvelopeStatus.DECLINED: NotificationEventType.ENVELOPE_DECLINED,
    EnvelopeStatus.EXPIRED: NotificationEventType.ENVELOPE_EXPIRED,
}

_OPEN_STATUSES = (EnvelopeStatus.DISPATCHED, EnvelopeStatus.PARTIALLY_SIGNED)


@dataclass
class RecipientSpec:
    email: str
    name: str
    role: Optional[RecipientRole] = None
    order: Optional[int] = None


@dataclass
class EnvelopeSettings:
    signing_order: SigningOrder = SigningOrder.PARALLEL
    expiration_days: int = DEFAULT_EXPIRATION_DAYS
    reminder_frequency: ReminderFrequency = ReminderFrequency.DAILY
    allow_reassign: bool = True
    require_authentication: bool = False


@dataclass
class DecisionContext:
    """Request metadata supplied alongside a decision."""
    ip_address: Optional[str] = None
    timestamp: Optional[datetime] = None  # Reported by the client; recorded, never trusted for expiry
    authenticated: bool = False  # Set by the auth layer, not by the recipient


@dataclass
class CommandResult:
    envelope: Envelope
    warnings: List[DeliveryDegraded] = field(default_factory=list)


@dataclass
class DecisionResult:
    envelope: Envelope
    recipient: Recipient
    warnings: List[DeliveryDegraded] = field(default_factory=list)


@dataclass
class SweepResult:
    """Outcome of an expiration or reminder sweep across envelopes."""
    envelope_ids: List[str] = field(default_factory=list)
    reminded: List[Dict[str, str]] = field(default_factory=list)
    conflicts: List[str] = field(default_factory=list)
    warnings: List[DeliveryDegraded] = field(default_factory=list)


@dataclass
class AuditTrail:
    envelope_id: str
    events: List[AuditEvent]
    verification: ChainVerification


RecipientInput = Union[RecipientSpec, Mapping[str, Any]]


class WorkflowEngine:
    """Orchestrates envelope creation, dispatch, decisions, reminders and finalization."""

    def __init__(
        self,
        db: Session,
        notifier: Optional[NotificationSender] = None,
        archive: Optional[ArchiveStore] = None,
        clock: Callable[[], datetime] = utcnow,
        state_machine: Optional[EnvelopeStateMachine] = None
    ):
        self.db = db
        self.notifier = notifier or LoggingNotificationSender()
        self.archive = archive or LoggingArchiveStore()
        self.clock = clock
        self.state_machine = state_machine or EnvelopeStateMachine()

    @property
    def audit_log(self) -> AuditLog:
        return self.state_machine.audit_log

    # Commands -------------------------------------------------------------

    def create_envelope(
        self,
        name: str,
        documents: Optional[Iterable[Any]] = None,
        recipients: Optional[Iterable[RecipientInput]] = None,
        settings: Optional[EnvelopeSettings] = None,
        actor: str = SYSTEM_ACTOR,
        template_id: Optional[str] = None,
        overrides: Optional[Mapping[str, Any]] = None
    ) -> Envelope:
        """
        Build a draft envelope with its recipients.

        Settings start from `settings`, or the template's, or the defaults;
        `overrides` then replaces individual fields on top of them.

        Validation happens before anything is added to the session:
        - name is required
        - recipient emails are unique (case-insensitive)
        - expiration_days is a non-negative integer
        - signing_order, reminder_frequency and roles are known values
        """
        if not name or not name.strip():
            raise ValidationError("Envelope name is required")

        template = self._load_template(template_id) if template_id else None
        if settings is None:
            settings = self._settings_from_template(template) if template else EnvelopeSettings()
        if overrides:
            unknown = set(overrides) - set(EnvelopeSettings.__dataclass_fields__)
            if unknown:
                raise ValidationError(f"Unknown settings: {', '.join(sorted(unknown))}", {"settings": sorted(unknown)})
            settings = replace(settings, **overrides)
        settings = self._validate_settings(settings)

        slots = template.recipient_slots if template else []
        specs = [self._validate_recipient(r, i, slots) for i, r in enumerate(recipients or [])]
        self._check_unique_emails(specs)

        documents = list(documents or [])
        now = self.clock()
        envelope = Envelope(
            id=new_id(),
            name=name.strip(),
            documents=documents,
            status=EnvelopeStatus.DRAFT,
            signing_order=settings.signing_order,
            expiration_days=settings.expiration_days,
            reminder_frequency=settings.reminder_frequency,
            allow_reassign=settings.allow_reassign,
            require_authentication=settings.require_authentication,
            created_by=actor,
            created_at=now,
            updated_at=now,
            version=1,
        )
        for position, spec in enumerate(specs):
            envelope.recipients.append(Recipient(
                id=new_id(),
                email=spec.email,
                name=spec.name,
                role=spec.role,
                order=spec.order,
                position=position,
                state=RecipientState.PENDING,
                created_at=now,
            ))

        self.audit_log.append(
            envelope,
            actor=actor,
            event_type=AuditEventType.ENVELOPE_CREATED,
            payload={
                "name": envelope.name,
                "documents": documents,
                "recipients": [self._recipient_summary(r) for r in envelope.recipients],
                "signing_order": settings.signing_order.value,
                "expiration_days": settings.expiration_days,
                "template_id": template_id,
            },
            timestamp=now,
        )
        self.db.add(envelope)
        self._commit(envelope.id)
        logger.info("Created envelope %s with %d recipients", envelope.id, len(specs))
        return envelope

    def add_recipient(self, envelope_id: str, recipient: RecipientInput, actor: str = SYSTEM_ACTOR) -> Recipient:
        """Add a recipient to a draft envelope."""
        with self._command("add_recipient", envelope_id):
            envelope = self._load(envelope_id)
            if envelope.status != EnvelopeStatus.DRAFT:
                raise InvalidTransition(
                    f"Recipients can only be added while envelope {envelope_id} is a draft",
                    {"envelope_id": envelope_id, "status": envelope.status.value},
                )
            spec = self._validate_recipient(recipient, len(envelope.recipients), [])
            self._check_unique_emails(
                [RecipientSpec(r.email, r.name) for r in envelope.recipients] + [spec]
            )

            now = self.clock()
            added = Recipient(
                id=new_id(),
                email=spec.email,
                name=spec.name,
                role=spec.role,
                order=spec.order,
                position=len(envelope.recipients),
                state=RecipientState.PENDING,
                created_at=now,
            )
            envelope.recipients.append(added)
            self.state_machine.touch(envelope, now)
            self._commit(envelope_id)
            return added

    def dispatch_envelope(self, envelope_id: str, actor: str = SYSTEM_ACTOR) -> CommandResult:
        """
        Dispatch a draft envelope and deliver signing links.

        Link delivery happens after the commit. In sequential envelopes only
        the first actionable cohort (and viewers) get a link; later cohorts
        get theirs when the recipients ahead of them have signed.
        """
        with self._command("dispatch", envelope_id):
            envelope = self._load(envelope_id)
            now = self.clock()
            self.state_machine.dispatch(envelope, now, actor=actor)
            self._commit(envelope_id)

        logger.info(
            "Dispatched envelope %s; expires at %s",
            envelope.id, envelope.expiration_deadline.isoformat()
        )
        warnings = []
        for recipient in envelope.recipients:
            if recipient.role == RecipientRole.VIEWER:
                event_type = NotificationEventType.COPY_AVAILABLE
            elif self.state_machine.recipients.is_actionable(envelope, recipient):
                event_type = NotificationEventType.SIGNING_REQUESTED
            else:
                continue
            warnings.extend(self._deliver(OutboundNotification(
                envelope_id=envelope.id,
                recipient_id=recipient.id,
                event_type=event_type,
                link=signing_link(envelope.id, recipient.id),
                email=recipient.email,
            )))
        return CommandResult(envelope, warnings)

    def record_view(self, envelope_id: str, recipient_id: str) -> DecisionResult:
        """Record that a recipient opened the envelope, at the engine's clock."""
        now = self.clock()
        with self._command("record_view", envelope_id):
            envelope = self._load(envelope_id)
            warnings = self._expire_if_due(envelope, now)
            with self._carrying(warnings):
                result = self.state_machine.apply_recipient_transition(
                    envelope, recipient_id, RecipientEvent.view(), now
                )
            if self.db.dirty or self.db.new:
                finalize = self._mark_finalized(envelope, now) if result.became_terminal else False
                self._commit(envelope_id)
                if finalize:
                    warnings.extend(self._deliver_final_notices(envelope))
        return DecisionResult(envelope, result.recipient, warnings)

    def submit_decision(
        self,
        envelope_id: str,
        recipient_id: str,
        decision: Union[Decision, str],
        artifact: Optional[str] = None,
        context: Optional[DecisionContext] = None
    ) -> DecisionResult:
        """
        Record a sign/decline decision.

        The engine clock decides: lazy expiration is applied (and committed)
        first, so a decision that arrives after the deadline fails with
        Expired against an envelope that is already expired. A timestamp in
        the context is only recorded, and one later than the engine clock is
        rejected. Entering completed/declined/expired triggers the one-time
        finalize notifications.
        """
        context = context or DecisionContext()
        now = self.clock()
        client_timestamp = as_utc(context.timestamp)
        if client_timestamp is not None and client_timestamp > now:
            raise ValidationError(
                "Decision timestamp is in the future",
                {"timestamp": client_timestamp.isoformat(), "now": now.isoformat()},
            )
        try:
            decision = Decision(decision)
        except ValueError:
            raise ValidationError(f"Unknown decision: {decision}", {"decision": str(decision)})

        with self._command("submit_decision", envelope_id):
            envelope = self._load(envelope_id)
            warnings = self._expire_if_due(envelope, now)

            with self._carrying(warnings):
                if envelope.require_authentication and not context.authenticated and not envelope.is_terminal:
                    raise AuthenticationRequired(envelope.id, recipient_id)

                actionable_before = self._actionable_ids(envelope)
                result = self.state_machine.apply_recipient_transition(
                    envelope,
                    recipient_id,
                    RecipientEvent.decision(
                        decision,
                        artifact=artifact,
                        ip_address=context.ip_address,
                        client_timestamp=client_timestamp,
                    ),
                    now,
                )
            finalize = self._mark_finalized(envelope, now) if result.became_terminal else False
            self._commit(envelope_id)

        logger.info(
            "Recipient %s %s envelope %s; envelope is %s",
            recipient_id, result.recipient.state.value, envelope.id, envelope.status.value
        )
        if finalize:
            warnings.extend(self._deliver_final_notices(envelope))
        elif not envelope.is_terminal:
            warnings.extend(self._deliver_next_cohort(envelope, actionable_before))
        return DecisionResult(envelope, result.recipient, warnings)

    def void_envelope(self, envelope_id: str, reason: str, actor: str) -> CommandResult:
        """Void a non-terminal envelope. Recipients who were sent the envelope are told."""
        with self._command("void", envelope_id):
            envelope = self._load(envelope_id)
            now = self.clock()
            self._expire_if_due(envelope, now)
            was_dispatched = envelope.status != EnvelopeStatus.DRAFT
            self.state_machine.void(envelope, reason, actor, now)
            self._commit(envelope_id)

        logger.info("Envelope %s voided by %s", envelope.id, actor)
        warnings = []
        if was_dispatched:
            for recipient in envelope.recipients:
                warnings.extend(self._deliver(OutboundNotification(
                    envelope_id=envelope.id,
                    recipient_id=recipient.id,
                    event_type=NotificationEventType.ENVELOPE_VOIDED,
                    summary=f"Envelope '{envelope.name}' was voided: {envelope.void_reason}",
                    email=recipient.email,
                )))
        return CommandResult(envelope, warnings)

    def tick(self, now: Optional[datetime] = None) -> SweepResult:
        """
        Expire every open envelope whose deadline has passed.

        There is no background scheduler; call this from a cron job or any
        read path that needs a trustworthy status.
        """
        now = as_utc(now) or self.clock()
        result = SweepResult()
        due = self.db.query(Envelope).filter(
            Envelope.status.in_(_OPEN_STATUSES),
            Envelope.expiration_deadline < now
        ).all()

        for envelope in due:
            envelope_id = envelope.id
            try:
                with self._command("tick", envelope_id):
                    warnings = self._expire_if_due(envelope, now)
            except ConcurrencyConflict:
                result.conflicts.append(envelope_id)
                continue
            if envelope.status == EnvelopeStatus.EXPIRED:
                result.envelope_ids.append(envelope_id)
            result.warnings.extend(warnings)

        if result.envelope_ids:
            logger.info("Expiration sweep expired %d envelopes", len(result.envelope_ids))
        return result

    def send_reminders(self, now: Optional[datetime] = None) -> SweepResult:
        """
        Remind actionable recipients who have not decided yet.

        A recipient is due when the envelope's reminder interval has passed
        since their last reminder (or since dispatch). Only delivered
        reminders are recorded, so failed ones are retried by the next sweep.
        """
        now = as_utc(now) or self.clock()
        expiry = self.tick(now)
        result = SweepResult(conflicts=expiry.conflicts, warnings=expiry.warnings)

        candidates = self.db.query(Envelope).filter(
            Envelope.status.in_(_OPEN_STATUSES),
            Envelope.reminder_frequency != ReminderFrequency.NEVER
        ).all()

        for envelope in candidates:
            envelope_id = envelope.id
            interval = REMINDER_INTERVALS[envelope.reminder_frequency]
            sent = []
            for recipient in envelope.recipients:
                if not self.state_machine.recipients.is_actionable(envelope, recipient):
                    continue
                last = recipient.last_reminded_at or envelope.dispatched_at
                if now - last < interval:
                    continue
                failures = self._deliver(OutboundNotification(
                    envelope_id=envelope_id,
                    recipient_id=recipient.id,
                    event_type=NotificationEventType.REMINDER,
                    link=signing_link(envelope_id, recipient.id),
                    email=recipient.email,
                ))
                if failures:
                    result.warnings.extend(failures)
                    continue
                recipient.last_reminded_at = now
                self.audit_log.append(
                    envelope,
                    actor=SYSTEM_ACTOR,
                    event_type=AuditEventType.REMINDER_SENT,
                    payload={"recipient_id": recipient.id},
                    timestamp=now,
                )
                sent.append(recipient.id)

            if not sent:
                continue
            self.state_machine.touch(envelope, now)
            try:
                with self._command("send_reminders", envelope_id):
                    self._commit(envelope_id)
            except ConcurrencyConflict:
                result.conflicts.append(envelope_id)
                continue
            result.envelope_ids.append(envelope_id)
            result.reminded.extend({"envelope_id": envelope_id, "recipient_id": r} for r in sent)

        return result

    def save_as_template(self, envelope_id: str, name: str, actor: str = SYSTEM_ACTOR) -> EnvelopeTemplate:
        """Capture an envelope's settings and recipient slots as a reusable template."""
        if not name or not name.strip():
            raise ValidationError("Template name is required")
        envelope = self._load(envelope_id)
        template = EnvelopeTemplate(
            id=new_id(),
            name=name.strip(),
            signing_order=envelope.signing_order,
            expiration_days=envelope.expiration_days,
            reminder_frequency=envelope.reminder_frequency,
            allow_reassign=envelope.allow_reassign,
            require_authentication=envelope.require_authentication,
            recipient_slots=[{"role": r.role.value, "order": r.order} for r in envelope.recipients],
            source_envelope_id=envelope.id,
            created_by=actor,
            created_at=self.clock(),
        )
        self.db.add(template)
        self.db.commit()
        return template

    def list_templates(self) -> List[EnvelopeTemplate]:
        return self.db.query(EnvelopeTemplate).order_by(EnvelopeTemplate.created_at.desc()).all()

    # Reads ----------------------------------------------------------------

    def get_envelope(self, envelope_id: str) -> Envelope:
        """Load an envelope with lazy expiration applied, so its status can be trusted."""
        with self._command("get_envelope", envelope_id):
            envelope = self._load(envelope_id)
            self._expire_if_due(envelope, self.clock())
        return envelope

    def list_envelopes(
        self,
        status: Optional[Union[EnvelopeStatus, str]] = None,
        recipient_email: Optional[str] = None
    ) -> List[Envelope]:
        """
        List envelopes, newest first, optionally by status and/or recipient email.

        Runs the expiration sweep first so the statuses filtered on are current.
        """
        if status is not None:
            try:
                status = EnvelopeStatus(status)
            except ValueError:
                raise ValidationError(f"Unknown envelope status: {status}", {"status": str(status)})

        self.tick()

        query = self.db.query(Envelope)
        if status is not None:
            query = query.filter(Envelope.status == status)
        if recipient_email:
            query = query.filter(Envelope.recipients.any(
                func.lower(Recipient.email) == recipient_email.strip().lower()
            ))
        return query.order_by(Envelope.created_at.desc(), Envelope.id).all()

    def get_audit_trail(self, envelope_id: str) -> AuditTrail:
        envelope = self.get_envelope(envelope_id)
        return AuditTrail(
            envelope_id=envelope.id,
            events=list(envelope.audit_events),
            verification=self.audit_log.verify(envelope),
        )

    # Internals ------------------------------------------------------------

    @contextmanager
    def _command(self, name: str, envelope_id: Optional[str]):
        """Roll back and log any refused command; the error propagates unchanged."""
        try:
            yield
        except WorkflowError as exc:
            self.db.rollback()
            logger.info("%s refused for envelope %s: %s", name, envelope_id, exc.message)
            raise

    @contextmanager
    def _carrying(self, warnings: List[DeliveryDegraded]):
        """Attach warnings from an already committed expiration to a refusal that follows it."""
        try:
            yield
        except WorkflowError as exc:
            if warnings:
                exc.details["delivery_warnings"] = [w.details for w in warnings]
            raise

    def _commit(self, envelope_id: Optional[str]) -> None:
        try:
            self.db.commit()
        except (StaleDataError, IntegrityError) as exc:
            self.db.rollback()
            logger.warning("Concurrent write on envelope %s: %s", envelope_id, exc)
            raise ConcurrencyConflict(envelope_id) from exc

    def _load(self, envelope_id: str) -> Envelope:
        envelope = self.db.query(Envelope).filter(Envelope.id == envelope_id).first()
        if not envelope:
            raise NotFound("Envelope", envelope_id)
        return envelope

    def _load_template(self, template_id: str) -> EnvelopeTemplate:
        template = self.db.query(EnvelopeTemplate).filter(EnvelopeTemplate.id == template_id).first()
        if not template:
            raise NotFound("Template", template_id)
        return template

    def _expire_if_due(self, envelope: Envelope, now: datetime) -> List[DeliveryDegraded]:
        """Commit a pending lazy expiration and send its final notices."""
        if not self.state_machine.refresh_expiration(envelope, now):
            return []
        self._mark_finalized(envelope, now)
        self._commit(envelope.id)
        logger.info("Envelope %s expired at %s", envelope.id, envelope.expiration_deadline.isoformat())
        return self._deliver_final_notices(envelope)

    def _mark_finalized(self, envelope: Envelope, now: datetime) -> bool:
        """
        Claim the one-time finalize for a terminal envelope.

        Written in the same commit as the terminal transition, so the version
        check guarantees only one writer ever sends the final notices.
        """
        if envelope.finalized_at is not None or envelope.status not in _FINAL_NOTICES:
            return False
        envelope.finalized_at = now
        return True

    def _deliver_final_notices(self, envelope: Envelope) -> List[DeliveryDegraded]:
        event_type = _FINAL_NOTICES[envelope.status]
        summary = self._summary(envelope)
        warnings = []
        for recipient in envelope.recipients:
            warnings.extend(self._deliver(OutboundNotification(
                envelope_id=envelope.id,
                recipient_id=recipient.id,
                event_type=event_type,
                summary=summary,
                email=recipient.email,
            )))
        try:
            self.archive.archive(self.snapshot(envelope))
        except Exception as exc:
            logger.warning("Archiving envelope %s failed: %s", envelope.id, exc)
            warnings.append(DeliveryDegraded(envelope.id, None, "archive", str(exc)))
        return warnings

    def _deliver_next_cohort(self, envelope: Envelope, actionable_before: set) -> List[DeliveryDegraded]:
        """Send signing links to sequential recipients whose turn just came."""
        if envelope.signing_order != SigningOrder.SEQUENTIAL:
            return []
        warnings = []
        for recipient in envelope.recipients:
            if recipient.id in actionable_before:
                continue
            if not self.state_machine.recipients.is_actionable(envelope, recipient):
                continue
            warnings.extend(self._deliver(OutboundNotification(
                envelope_id=envelope.id,
                recipient_id=recipient.id,
                event_type=NotificationEventType.SIGNING_REQUESTED,
                link=signing_link(envelope.id, recipient.id),
                email=recipient.email,
            )))
        return warnings

    def _deliver(self, notification: OutboundNotification) -> List[DeliveryDegraded]:
        """Best-effort delivery; a failure becomes a warning, never an exception."""
        try:
            self.notifier.send(notification)
        except Exception as exc:
            logger.warning(
                "Delivery of %s to recipient %s on envelope %s failed: %s",
                notification.event_type, notification.recipient_id, notification.envelope_id, exc
            )
            return [DeliveryDegraded(
                notification.envelope_id, notification.recipient_id, notification.event_type, str(exc)
            )]
        return []

    def _actionable_ids(self, envelope: Envelope) -> set:
        return {
            r.id for r in envelope.recipients
            if self.state_machine.recipients.is_actionable(envelope, r)
        }

    def snapshot(self, envelope: Envelope) -> Dict[str, Any]:
        """Archive payload: the envelope, its recipients and its verified audit chain."""
        verification = self.audit_log.verify(envelope)
        return {
            "envelope_id": envelope.id,
            "name": envelope.name,
            "status": envelope.status.value,
            "documents": envelope.documents,
            "dispatched_at": envelope.dispatched_at.isoformat() if envelope.dispatched_at else None,
            "expiration_deadline": envelope.expiration_deadline.isoformat() if envelope.expiration_deadline else None,
            "finalized_at": envelope.finalized_at.isoformat() if envelope.finalized_at else None,
            "recipients": [
                dict(
                    self._recipient_summary(r),
                    state=r.state.value,
                    decision_timestamp=r.decision_timestamp.isoformat() if r.decision_timestamp else None,
                )
                for r in envelope.recipients
            ],
            "audit_events": [
                {
                    "sequence_number": e.sequence_number,
                    "timestamp": e.timestamp.isoformat(),
                    "actor": e.actor,
                    "event_type": e.event_type,
                    "payload_hash": e.payload_hash,
                    "previous_hash": e.previous_hash,
                    "event_hash": e.event_hash,
                }
                for e in envelope.audit_events
            ],
            "audit_chain_valid": verification.valid,
        }

    @staticmethod
    def _summary(envelope: Envelope) -> str:
        signed = sum(1 for r in envelope.required_recipients if r.state == RecipientState.SIGNED)
        return (
            f"Envelope '{envelope.name}' is {envelope.status.value} "
            f"({signed}/{len(envelope.required_recipients)} signatures)"
        )

    @staticmethod
    def _recipient_summary(recipient: Recipient) -> Dict[str, Any]:
        return {
            "id": recipient.id,
            "email": recipient.email,
            "name": recipient.name,
            "role": recipient.role.value,
            "order": recipient.order,
        }

    @staticmethod
    def _settings_from_template(template: EnvelopeTemplate) -> EnvelopeSettings:
        return EnvelopeSettings(
            signing_order=template.signing_order,
            expiration_days=template.expiration_days,
            reminder_frequency=template.reminder_frequency,
            allow_reassign=template.allow_reassign,
            require_authentication=template.require_authentication,
        )

    @staticmethod
    def _validate_settings(settings: EnvelopeSettings) -> EnvelopeSettings:
        try:
            signing_order = SigningOrder(settings.signing_order)
        except ValueError:
            raise ValidationError(
                f"Unknown signing order: {settings.signing_order}",
                {"signing_order": str(settings.signing_order)},
            )
        try:
            reminder_frequency = ReminderFrequency(settings.reminder_frequency)
        except ValueError:
            raise ValidationError(
                f"Unknown reminder frequency: {settings.reminder_frequency}",
                {"reminder_frequency": str(settings.reminder_frequency)},
            )
        expiration_days = settings.expiration_days
        if isinstance(expiration_days, bool) or not isinstance(expiration_days, int) or expiration_days < 0:
            raise ValidationError(
                "expiration_days must be a non-negative integer",
                {"expiration_days": expiration_days},
            )
        return EnvelopeSettings(
            signing_order=signing_order,
            expiration_days=expiration_days,
            reminder_frequency=reminder_frequency,
            allow_reassign=bool(settings.allow_reassign),
            require_authentication=bool(settings.require_authentication),
        )

    @staticmethod
    def _validate_recipient(recipient: RecipientInput, index: int, slots: List[dict]) -> RecipientSpec:
        if isinstance(recipient, Mapping):
            recipient = RecipientSpec(
                email=recipient.get("email"),
                name=recipient.get("name"),
                role=recipient.get("role"),
                order=recipient.get("order"),
            )
        slot = slots[index] if index < len(slots) else {}

        email = (recipient.email or "").strip()
        name = (recipient.name or "").strip()
        if "@" not in email:
            raise ValidationError(f"Recipient {index} needs a valid email", {"index": index, "email": email})
        if not name:
            raise ValidationError(f"Recipient {index} needs a name", {"index": index})

        role = recipient.role or slot.get("role") or RecipientRole.SIGNER
        try:
            role = RecipientRole(role)
        except ValueError:
            raise ValidationError(f"Unknown recipient role: {role}", {"index": index, "role": str(role)})

        order = recipient.order
        if order is None:
            order = slot.get("order", index)
        if isinstance(order, bool) or not isinstance(order, int) or order < 0:
            raise ValidationError("Recipient order must be a non-negative integer", {"index": index, "order": order})

        return RecipientSpec(email=email, name=name, role=role, order=order)

    @staticmethod
    def _check_unique_emails(specs: List[RecipientSpec]) -> None:
        seen = set()
        for spec in specs:
            key = spec.email.lower()
            if key in seen:
                raise ValidationError(f"Duplicate recipient email: {spec.email}", {"email": spec.email})
            seen.add(key)
