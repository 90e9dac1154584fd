"""Pytest configuration and shared fixtures."""
from datetime import datetime, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from signoff.database import Base
from signoff.models.domain import Envelope, Recipient, EnvelopeTemplate
from signoff.models.audit import AuditEvent
from signoff.models.enums import RecipientRole, SigningOrder
from signoff.services.notifications import ArchiveStore, NotificationSender
from signoff.services.workflow import EnvelopeSettings, RecipientSpec, WorkflowEngine

T0 = datetime(2025, 3, 3, 9, 0, 0)


class FrozenClock:
    """Clock the tests move by hand."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingNotifier(NotificationSender):
    """Keeps every notification; raises for every send while `failing` is set."""

    def __init__(self):
        self.sent = []
        self.failing = False

    def send(self, notification):
        if self.failing:
            raise ConnectionError("mail relay unavailable")
        self.sent.append(notification)

    def of_type(self, event_type):
        return [n for n in self.sent if n.event_type == event_type]


class RecordingArchive(ArchiveStore):
    def __init__(self):
        self.snapshots = []

    def archive(self, snapshot):
        self.snapshots.append(snapshot)


@pytest.fixture
def db_session():
    """Create a fresh in-memory database for each test."""
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    TestingSessionLocal = sessionmaker(bind=engine)
    session = TestingSessionLocal()

    yield session

    session.close()


@pytest.fixture
def clock():
    return FrozenClock(T0)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def archive():
    return RecordingArchive()


@pytest.fixture
def engine(db_session, notifier, archive, clock):
    return WorkflowEngine(db_session, notifier=notifier, archive=archive, clock=clock)


@pytest.fixture
def make_envelope(engine):
    """Factory for draft envelopes; recipients are (email, role, order) tuples."""
    def _make(recipients=None, signing_order=SigningOrder.PARALLEL, expiration_days=1, **settings):
        if recipients is None:
            recipients = [("alice@example.com", RecipientRole.SIGNER, 0),
                          ("bob@example.com", RecipientRole.SIGNER, 1)]
        return engine.create_envelope(
            name="Services agreement",
            documents=[{"name": "agreement.pdf"}],
            recipients=[
                RecipientSpec(email=email, name=email.split("@")[0].title(), role=role, order=order)
                for email, role, order in recipients
            ],
            settings=EnvelopeSettings(
                signing_order=signing_order,
                expiration_days=expiration_days,
                **settings
            ),
            actor="sender_1",
        )
    return _make


@pytest.fixture
def dispatched(engine, make_envelope):
    """Factory for envelopes that have already been dispatched at T0."""
    def _make(*args, **kwargs):
        envelope = make_envelope(*args, **kwargs)
        engine.dispatch_envelope(envelope.id, actor="sender_1")
        return envelope
    return _make
