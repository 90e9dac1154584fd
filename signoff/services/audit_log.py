"""
Hash-chained audit log for envelopes.

Each event's hash covers (sequence_number, timestamp, actor, event_type,
payload_hash, previous_hash). The next event stores that hash as its
previous_hash, so recomputing the chain from sequence 0 detects any edit.
"""
import hashlib
import json
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional
from signoff.models.audit import AuditEvent
from signoff.services.clock import as_utc

GENESIS_HASH = "0" * 64


@dataclass(frozen=True)
class ChainVerification:
    """Result of recomputing an envelope's hash chain."""
    valid: bool
    event_count: int
    first_invalid_sequence: Optional[int] = None


def _canonical(value: Any) -> bytes:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str).encode("utf-8")


def hash_payload(payload: Any) -> str:
    """Hash an attached artifact; None hashes like an empty payload."""
    return hashlib.sha256(_canonical(payload if payload is not None else {})).hexdigest()


def hash_event(
    sequence_number: int,
    timestamp: datetime,
    actor: str,
    event_type: str,
    payload_hash: str,
    previous_hash: str
) -> str:
    """Derived hash of one event's tuple."""
    return hashlib.sha256(_canonical([
        sequence_number,
        timestamp.isoformat(),
        actor,
        event_type,
        payload_hash,
        previous_hash,
    ])).hexdigest()


class AuditLog:
    """Appends to and verifies the audit chain of a single envelope at a time."""

    def append(
        self,
        envelope,
        actor: str,
        event_type: str,
        payload: Any = None,
        timestamp: Optional[datetime] = None
    ) -> AuditEvent:
        """
        Append an event to the envelope's chain.

        Never touches prior events. The new event becomes part of the
        envelope's session state and is written with the envelope.
        """
        events = envelope.audit_events
        sequence_number = len(events)
        previous_hash = events[-1].event_hash if events else GENESIS_HASH
        timestamp = as_utc(timestamp) if timestamp is not None else envelope.updated_at
        payload_hash = hash_payload(payload)

        event = AuditEvent(
            envelope_id=envelope.id,
            sequence_number=sequence_number,
            timestamp=timestamp,
            actor=actor,
            event_type=event_type,
            payload_hash=payload_hash,
            previous_hash=previous_hash,
            event_hash=hash_event(
                sequence_number, timestamp, actor, event_type, payload_hash, previous_hash
            ),
        )
        events.append(event)
        return event

    def verify(self, envelope) -> ChainVerification:
        """
        Recompute the chain from sequence 0.

        Returns the first sequence number whose stored linkage or hash does
        not match the recomputation. Read-only.
        """
        expected_previous = GENESIS_HASH
        events = sorted(envelope.audit_events, key=lambda e: e.sequence_number)

        for index, event in enumerate(events):
            if event.sequence_number != index or event.previous_hash != expected_previous:
                return ChainVerification(False, len(events), index)

            recomputed = hash_event(
                event.sequence_number,
                as_utc(event.timestamp),
                event.actor,
                event.event_type,
                event.payload_hash,
                event.previous_hash,
            )
            if recomputed != event.event_hash:
                return ChainVerification(False, len(events), event.sequence_number)
            expected_previous = recomputed

        return ChainVerification(True, len(events))
