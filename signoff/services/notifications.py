"""
Outbound collaborators: notification delivery and archival.

The engine hands messages to these and never waits on their outcome for
correctness. A failure is reported back as DeliveryDegraded; it never undoes
the transition that triggered the message.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from signoff.config import SIGNING_BASE_URL

logger = logging.getLogger(__name__)


class NotificationEventType:
    SIGNING_REQUESTED = "signing_requested"  # Link to act on the envelope
    COPY_AVAILABLE = "copy_available"  # Link for viewers
    REMINDER = "reminder"
    ENVELOPE_COMPLETED = "envelope_completed"
    ENVELOPE_DECLINED = "envelope_declined"
    ENVELOPE_EXPIRED = "envelope_expired"
    ENVELOPE_VOIDED = "envelope_voided"


@dataclass
class OutboundNotification:
    envelope_id: str
    recipient_id: str
    event_type: str
    link: Optional[str] = None
    summary: Optional[str] = None
    email: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)


def signing_link(envelope_id: str, recipient_id: str) -> str:
    return f"{SIGNING_BASE_URL}/{envelope_id}/{recipient_id}"


class NotificationSender:
    """Delivery collaborator. Implementations raise on failure."""

    def send(self, notification: OutboundNotification) -> None:
        raise NotImplementedError


class LoggingNotificationSender(NotificationSender):
    """Default sender: writes the notification to the log instead of delivering it."""

    def send(self, notification: OutboundNotification) -> None:
        logger.info(
            "Notification %s for envelope %s -> recipient %s (%s)",
            notification.event_type,
            notification.envelope_id,
            notification.recipient_id,
            notification.link or notification.summary,
        )


class ArchiveStore:
    """Storage collaborator receiving final envelope snapshots."""

    def archive(self, snapshot: Dict[str, Any]) -> None:
        raise NotImplementedError


class LoggingArchiveStore(ArchiveStore):
    def archive(self, snapshot: Dict[str, Any]) -> None:
        logger.info(
            "Archived envelope %s in status %s (%d audit events)",
            snapshot["envelope_id"],
            snapshot["status"],
            len(snapshot.get("audit_events", [])),
        )
