"""
Tests that prove the signing workflow invariants.

Each test verifies a specific invariant of the recipient and envelope state machines.
"""
import random
from datetime import timedelta

import pytest
from signoff.models.audit import AuditEventType
from signoff.models.enums import (
    Decision,
    EnvelopeStatus,
    RecipientRole,
    RecipientState,
    SigningOrder,
)
from signoff.services.errors import (
    AlreadyDecided,
    AlreadyDispatched,
    EmptyRecipientList,
    EnvelopeClosed,
    Expired,
    InvalidTransition,
    OutOfOrder,
    ValidationError,
    WorkflowError,
)
from signoff.services.recipient_machine import RecipientStateMachine
from signoff.services.state_machine import EnvelopeStateMachine

SIGNER = RecipientRole.SIGNER
APPROVER = RecipientRole.APPROVER
VIEWER = RecipientRole.VIEWER


class TestRecipientTransitions:
    """Test the per-recipient lifecycle."""

    def test_notify_is_idempotent(self, make_envelope):
        machine = RecipientStateMachine()
        recipient = make_envelope().recipients[0]

        assert machine.notify(recipient) is True
        assert machine.notify(recipient) is False
        assert recipient.state == RecipientState.NOTIFIED

    def test_notify_after_decision_is_invalid(self, engine, dispatched):
        envelope = dispatched(recipients=[("a@x.com", SIGNER, 0), ("b@x.com", SIGNER, 0)])
        recipient = envelope.recipients[0]
        engine.submit_decision(envelope.id, recipient.id, Decision.SIGN, "sig")

        with pytest.raises(InvalidTransition):
            RecipientStateMachine().notify(recipient)

    def test_repeat_views_stay_viewed(self, engine, dispatched, clock):
        envelope = dispatched()
        recipient_id = envelope.recipients[0].id

        first = engine.record_view(envelope.id, recipient_id)
        first_viewed_at = first.recipient.viewed_at
        clock.advance(minutes=10)
        second = engine.record_view(envelope.id, recipient_id)

        assert second.recipient.state == RecipientState.VIEWED
        assert second.recipient.viewed_at == first_viewed_at
        views = [e for e in envelope.audit_events if e.event_type == AuditEventType.RECIPIENT_VIEWED]
        assert len(views) == 1

    def test_view_after_signing_is_ignored(self, engine, dispatched):
        envelope = dispatched()
        recipient_id = envelope.recipients[0].id
        engine.submit_decision(envelope.id, recipient_id, Decision.SIGN, "sig")

        result = engine.record_view(envelope.id, recipient_id)

        assert result.recipient.state == RecipientState.SIGNED

    def test_view_on_draft_is_invalid(self, engine, make_envelope):
        envelope = make_envelope()

        with pytest.raises(InvalidTransition):
            engine.record_view(envelope.id, envelope.recipients[0].id)

    def test_decision_allowed_without_view(self, engine, dispatched):
        """notified → signed is allowed; viewing first is not required."""
        envelope = dispatched()

        result = engine.submit_decision(envelope.id, envelope.recipients[0].id, Decision.SIGN, "sig")

        assert result.recipient.state == RecipientState.SIGNED

    def test_decision_is_written_once(self, engine, dispatched, clock):
        envelope = dispatched()
        recipient_id = envelope.recipients[0].id
        clock.advance(minutes=3)
        engine.submit_decision(envelope.id, recipient_id, Decision.SIGN, "sig-1")

        with pytest.raises(AlreadyDecided):
            engine.submit_decision(envelope.id, recipient_id, Decision.DECLINE, "changed my mind")

        recipient = envelope.recipients[0]
        assert recipient.state == RecipientState.SIGNED
        assert recipient.decision_artifact == "sig-1"
        assert recipient.decision_timestamp == clock.now

    def test_viewer_never_signs(self, engine, dispatched):
        """INVARIANT: A viewer never reaches signed/declined."""
        envelope = dispatched(recipients=[("a@x.com", SIGNER, 0), ("v@x.com", VIEWER, 0)])
        viewer = envelope.recipients[1]

        with pytest.raises(InvalidTransition):
            engine.submit_decision(envelope.id, viewer.id, Decision.SIGN, "sig")

        engine.record_view(envelope.id, viewer.id)
        assert envelope.recipients[1].state == RecipientState.VIEWED


class TestSequentialOrder:
    """Sequential envelopes only let a recipient act once everyone before them signed."""

    def test_later_signer_is_out_of_order(self, engine, dispatched):
        envelope = dispatched(signing_order=SigningOrder.SEQUENTIAL)

        with pytest.raises(OutOfOrder) as exc_info:
            engine.submit_decision(envelope.id, envelope.recipients[1].id, Decision.SIGN, "sig")

        assert envelope.recipients[0].id in exc_info.value.details["waiting_on"]

    def test_decline_is_also_ordered(self, engine, dispatched):
        envelope = dispatched(signing_order=SigningOrder.SEQUENTIAL)

        with pytest.raises(OutOfOrder):
            engine.submit_decision(envelope.id, envelope.recipients[1].id, Decision.DECLINE, "no")

    def test_equal_order_forms_a_parallel_cohort(self, engine, dispatched):
        envelope = dispatched(
            recipients=[("a@x.com", SIGNER, 0), ("b@x.com", SIGNER, 1), ("c@x.com", SIGNER, 1)],
            signing_order=SigningOrder.SEQUENTIAL,
        )
        a, b, c = [r.id for r in envelope.recipients]
        engine.submit_decision(envelope.id, a, Decision.SIGN, "sig-a")

        engine.submit_decision(envelope.id, c, Decision.SIGN, "sig-c")
        result = engine.submit_decision(envelope.id, b, Decision.SIGN, "sig-b")

        assert result.envelope.status == EnvelopeStatus.COMPLETED

    def test_viewers_do_not_block_the_sequence(self, engine, dispatched):
        envelope = dispatched(
            recipients=[("v@x.com", VIEWER, 0), ("a@x.com", SIGNER, 1)],
            signing_order=SigningOrder.SEQUENTIAL,
        )

        result = engine.submit_decision(envelope.id, envelope.recipients[1].id, Decision.SIGN, "sig")

        assert result.envelope.status == EnvelopeStatus.COMPLETED

    def test_order_ignored_for_parallel_envelopes(self, engine, dispatched):
        envelope = dispatched(signing_order=SigningOrder.PARALLEL)

        result = engine.submit_decision(envelope.id, envelope.recipients[1].id, Decision.SIGN, "sig")

        assert result.recipient.state == RecipientState.SIGNED
        assert result.envelope.status == EnvelopeStatus.PARTIALLY_SIGNED


class TestDispatchInvariants:
    """Test the draft → dispatched transition."""

    def test_dispatch_requires_a_signer_or_approver(self, engine, make_envelope):
        envelope = make_envelope(recipients=[("v@x.com", VIEWER, 0)])

        with pytest.raises(EmptyRecipientList):
            engine.dispatch_envelope(envelope.id)

        assert engine.get_envelope(envelope.id).status == EnvelopeStatus.DRAFT

    def test_empty_recipient_list_is_a_validation_error(self, engine, make_envelope):
        envelope = make_envelope(recipients=[])

        with pytest.raises(ValidationError):
            engine.dispatch_envelope(envelope.id)

    def test_dispatch_twice_is_refused(self, engine, dispatched):
        envelope = dispatched()

        with pytest.raises(AlreadyDispatched):
            engine.dispatch_envelope(envelope.id)

    def test_dispatch_notifies_everyone_and_sets_deadline(self, engine, make_envelope, clock):
        envelope = make_envelope(
            recipients=[("a@x.com", SIGNER, 0), ("p@x.com", APPROVER, 1), ("v@x.com", VIEWER, 2)],
            expiration_days=7,
        )

        result = engine.dispatch_envelope(envelope.id)

        assert result.envelope.status == EnvelopeStatus.DISPATCHED
        assert result.envelope.dispatched_at == clock.now
        assert result.envelope.expiration_deadline == clock.now + timedelta(days=7)
        assert {r.state for r in result.envelope.recipients} == {RecipientState.NOTIFIED}

    def test_signing_order_is_immutable_after_dispatch(self, dispatched):
        envelope = dispatched(signing_order=SigningOrder.SEQUENTIAL)

        with pytest.raises(ValueError) as exc_info:
            envelope.signing_order = SigningOrder.PARALLEL

        assert "IMMUTABILITY VIOLATION" in str(exc_info.value)

    def test_recipient_identity_is_immutable_after_dispatch(self, dispatched):
        envelope = dispatched()

        with pytest.raises(ValueError) as exc_info:
            envelope.recipients[0].email = "someone-else@example.com"

        assert "IMMUTABILITY VIOLATION" in str(exc_info.value)

    def test_draft_settings_can_still_change(self, make_envelope):
        envelope = make_envelope()

        envelope.signing_order = SigningOrder.SEQUENTIAL
        envelope.recipients[0].name = "Alice Cooper"

        assert envelope.signing_order == SigningOrder.SEQUENTIAL


class TestEnvelopeStatus:
    """Status is a pure function of recipient states and the deadline."""

    def test_completed_requires_every_required_recipient_signed(self, engine, dispatched):
        envelope = dispatched(recipients=[("a@x.com", SIGNER, 0), ("p@x.com", APPROVER, 0), ("v@x.com", VIEWER, 0)])
        a, p, v = [r.id for r in envelope.recipients]

        first = engine.submit_decision(envelope.id, a, Decision.SIGN, "sig")
        assert first.envelope.status == EnvelopeStatus.PARTIALLY_SIGNED

        second = engine.submit_decision(envelope.id, p, Decision.SIGN, "approved")
        assert second.envelope.status == EnvelopeStatus.COMPLETED
        # The viewer never acted and is not part of completion
        assert envelope.recipients[2].state == RecipientState.NOTIFIED

    def test_any_required_decline_closes_the_envelope(self, engine, dispatched):
        envelope = dispatched(signing_order=SigningOrder.PARALLEL)
        a, b = [r.id for r in envelope.recipients]

        result = engine.submit_decision(envelope.id, a, Decision.DECLINE, "terms unacceptable")
        assert result.envelope.status == EnvelopeStatus.DECLINED

        with pytest.raises(EnvelopeClosed):
            engine.submit_decision(envelope.id, b, Decision.SIGN, "sig")
        with pytest.raises(EnvelopeClosed):
            engine.record_view(envelope.id, b)

    def test_decline_after_partial_signing(self, engine, dispatched):
        envelope = dispatched(recipients=[("a@x.com", SIGNER, 0), ("b@x.com", SIGNER, 0), ("c@x.com", SIGNER, 0)])
        a, b, c = [r.id for r in envelope.recipients]
        engine.submit_decision(envelope.id, a, Decision.SIGN, "sig")

        result = engine.submit_decision(envelope.id, b, Decision.DECLINE, "no")

        assert result.envelope.status == EnvelopeStatus.DECLINED
        assert envelope.recipients[2].state == RecipientState.NOTIFIED

    def test_recompute_is_idempotent(self, engine, dispatched, clock):
        envelope = dispatched()
        engine.submit_decision(envelope.id, envelope.recipients[0].id, Decision.SIGN, "sig")
        machine = EnvelopeStateMachine()
        events_before = len(envelope.audit_events)

        first = machine.recompute_status(envelope, clock.now)
        second = machine.recompute_status(envelope, clock.now)

        assert first == second == EnvelopeStatus.PARTIALLY_SIGNED
        assert len(envelope.audit_events) == events_before

    def test_terminal_transitions_are_audited_once(self, engine, dispatched):
        envelope = dispatched()
        for recipient in list(envelope.recipients):
            engine.submit_decision(envelope.id, recipient.id, Decision.SIGN, "sig")

        completed = [e for e in envelope.audit_events if e.event_type == AuditEventType.ENVELOPE_COMPLETED]
        assert len(completed) == 1
        assert completed[0].actor == envelope.recipients[1].id


class TestExpiration:
    """Expiration is lazy: applied by tick() or on access once the deadline has passed."""

    def test_tick_expires_overdue_envelopes(self, engine, dispatched, clock):
        envelope = dispatched(expiration_days=1)
        engine.submit_decision(envelope.id, envelope.recipients[0].id, Decision.SIGN, "sig")
        clock.advance(days=1, seconds=1)

        result = engine.tick()

        assert result.envelope_ids == [envelope.id]
        assert envelope.status == EnvelopeStatus.EXPIRED
        states = [r.state for r in envelope.recipients]
        assert states == [RecipientState.SIGNED, RecipientState.EXPIRED]

    def test_deadline_itself_is_not_expired(self, engine, dispatched, clock):
        envelope = dispatched(expiration_days=1)
        clock.advance(days=1)

        assert engine.tick().envelope_ids == []
        result = engine.submit_decision(envelope.id, envelope.recipients[0].id, Decision.SIGN, "sig")
        assert result.recipient.state == RecipientState.SIGNED

    def test_access_applies_expiration(self, engine, dispatched, clock):
        envelope = dispatched(expiration_days=1)
        clock.advance(days=2)

        assert engine.get_envelope(envelope.id).status == EnvelopeStatus.EXPIRED

    def test_decision_after_deadline_fails_with_expired(self, engine, dispatched, clock):
        envelope = dispatched(expiration_days=1)
        clock.advance(days=2)

        with pytest.raises(Expired):
            engine.submit_decision(envelope.id, envelope.recipients[0].id, Decision.SIGN, "sig")

        # The lazy expiration itself was committed even though the decision was refused
        assert engine.get_envelope(envelope.id).status == EnvelopeStatus.EXPIRED
        assert {r.state for r in envelope.recipients} == {RecipientState.EXPIRED}

    def test_decision_after_tick_fails_with_expired(self, engine, dispatched, clock):
        envelope = dispatched(expiration_days=1)
        clock.advance(days=2)
        engine.tick()

        with pytest.raises(Expired):
            engine.submit_decision(envelope.id, envelope.recipients[1].id, Decision.DECLINE, "late")

    def test_zero_day_expiration(self, engine, dispatched, clock):
        envelope = dispatched(expiration_days=0)
        clock.advance(seconds=1)

        with pytest.raises(Expired):
            engine.submit_decision(envelope.id, envelope.recipients[0].id, Decision.SIGN, "sig")

    def test_completed_envelopes_never_expire(self, engine, dispatched, clock):
        envelope = dispatched(expiration_days=1)
        for recipient in list(envelope.recipients):
            engine.submit_decision(envelope.id, recipient.id, Decision.SIGN, "sig")
        clock.advance(days=5)

        assert engine.tick().envelope_ids == []
        assert engine.get_envelope(envelope.id).status == EnvelopeStatus.COMPLETED

    def test_drafts_never_expire(self, engine, make_envelope, clock):
        envelope = make_envelope(expiration_days=0)
        clock.advance(days=30)

        engine.tick()

        assert engine.get_envelope(envelope.id).status == EnvelopeStatus.DRAFT


class TestVoid:
    """Voiding is the operator-only replacement for deletion."""

    def test_void_open_envelope(self, engine, dispatched):
        envelope = dispatched()

        result = engine.void_envelope(envelope.id, "Sent to the wrong client", actor="ops_7")

        assert result.envelope.status == EnvelopeStatus.VOIDED
        assert result.envelope.void_reason == "Sent to the wrong client"
        last = envelope.audit_events[-1]
        assert last.event_type == AuditEventType.ENVELOPE_VOIDED
        assert last.actor == "ops_7"

    def test_void_draft(self, engine, make_envelope):
        envelope = make_envelope()

        assert engine.void_envelope(envelope.id, "duplicate", actor="ops_7").envelope.status == EnvelopeStatus.VOIDED

    def test_voided_envelope_rejects_decisions(self, engine, dispatched):
        envelope = dispatched()
        engine.void_envelope(envelope.id, "cancelled", actor="ops_7")

        with pytest.raises(EnvelopeClosed):
            engine.submit_decision(envelope.id, envelope.recipients[0].id, Decision.SIGN, "sig")

    def test_terminal_envelopes_cannot_be_voided(self, engine, dispatched):
        envelope = dispatched()
        engine.submit_decision(envelope.id, envelope.recipients[0].id, Decision.DECLINE, "no")

        with pytest.raises(InvalidTransition):
            engine.void_envelope(envelope.id, "too late", actor="ops_7")

    def test_void_requires_reason(self, engine, dispatched):
        envelope = dispatched()

        with pytest.raises(ValidationError):
            engine.void_envelope(envelope.id, "   ", actor="ops_7")


class TestRandomWalks:
    """
    Drive envelopes with random legal and illegal commands and check the
    invariants after every step.
    """

    @pytest.mark.parametrize("seed", range(12))
    def test_invariants_hold_after_every_command(self, engine, make_envelope, clock, seed):
        rng = random.Random(seed)
        roles = [rng.choice([SIGNER, SIGNER, APPROVER, VIEWER]) for _ in range(rng.randint(2, 5))]
        roles[0] = SIGNER
        envelope = make_envelope(
            recipients=[(f"r{i}@x.com", role, rng.randint(0, 2)) for i, role in enumerate(roles)],
            signing_order=rng.choice([SigningOrder.PARALLEL, SigningOrder.SEQUENTIAL]),
            expiration_days=1,
        )
        engine.dispatch_envelope(envelope.id)

        for _ in range(15):
            clock.advance(minutes=rng.randint(1, 180))
            recipient = rng.choice(envelope.recipients)
            action = rng.choice(["sign", "sign", "decline", "view", "tick"])
            try:
                if action == "view":
                    engine.record_view(envelope.id, recipient.id)
                elif action == "tick":
                    engine.tick()
                else:
                    engine.submit_decision(envelope.id, recipient.id, Decision(action), "artifact")
            except WorkflowError:
                pass

            self._check(engine, envelope, clock)

    @staticmethod
    def _check(engine, envelope, clock):
        required = [r for r in envelope.recipients if r.role != VIEWER]
        all_signed = all(r.state == RecipientState.SIGNED for r in required)

        assert (envelope.status == EnvelopeStatus.COMPLETED) == all_signed
        if any(r.state == RecipientState.DECLINED for r in required):
            assert envelope.status == EnvelopeStatus.DECLINED
        if envelope.status == EnvelopeStatus.EXPIRED:
            assert not any(r.state in (RecipientState.NOTIFIED, RecipientState.VIEWED) for r in envelope.recipients)
        for viewer in (r for r in envelope.recipients if r.role == VIEWER):
            assert viewer.state not in (RecipientState.SIGNED, RecipientState.DECLINED)
        if envelope.is_terminal:
            assert EnvelopeStateMachine().compute_status(envelope, clock.now) == envelope.status
        assert engine.audit_log.verify(envelope).valid
