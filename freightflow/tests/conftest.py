"""
Shared fixtures. The environment is pinned before any freightflow import so
the engine binds to an in-memory SQLite database.
"""
import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["LLM_PROVIDER"] = "mock"
os.environ["LLM_CALL_DELAY_SECONDS"] = "0"
os.environ["CLASSIFICATION_USE_LLM_FALLBACK"] = "true"

from datetime import datetime, timezone  # noqa: E402
from itertools import count  # noqa: E402

import pytest  # noqa: E402

from freightflow.db.session import Base, SessionLocal, engine  # noqa: E402
from freightflow.db import models  # noqa: E402


@pytest.fixture
def db():
    """Fresh schema and session per test."""
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def make_message(db):
    """Factory for stored messages."""
    ids = count(1)

    def _make(
        subject="",
        sender="someone@example.com",
        body_text="",
        attachments=None,
        received_at=None,
        **kwargs,
    ):
        message = models.Message(
            external_id=kwargs.pop("external_id", f"msg-{next(ids)}"),
            subject=subject,
            sender=sender,
            body_text=body_text,
            attachments=attachments or [],
            received_at=received_at or datetime(2026, 3, 1, 10, 0, tzinfo=timezone.utc),
            **kwargs,
        )
        db.add(message)
        db.flush()
        return message

    return _make


@pytest.fixture
def make_link(db, make_message):
    """Attach a (document type, direction) pair to a shipment through a new message."""

    def _link(shipment, document_type, direction, link_method="booking"):
        message = make_message(subject=f"{document_type.value} for {shipment.booking_number}")
        db.add(models.ShipmentDocument(
            shipment_id=shipment.id,
            message_id=message.id,
            document_type=document_type.value,
            direction=direction.value,
            link_method=link_method,
            confidence=90,
        ))
        db.flush()
        return message

    return _link


@pytest.fixture
def booking_confirmation_message(make_message):
    """A Maersk booking confirmation as it arrives from the carrier."""
    return make_message(
        subject="Booking Confirmation: 263522431",
        sender="in.export@maersk.com",
        attachments=[{
            "filename": "BC_263522431.pdf",
            "text": "BOOKING CONFIRMATION\nVessel: MAERSK KINLOSS / 612W\nETD: 15/03/2026",
        }],
        received_at=datetime(2026, 3, 1, 10, 0, tzinfo=timezone.utc),
    )


@pytest.fixture
def bill_of_lading_message(make_message):
    """A carrier BL mail that names the booking and a container, received before the confirmation."""
    return make_message(
        subject="BL copy for booking 263522431",
        sender="docs@maersk.com",
        body_text="Please find the bill of lading. Container MSKU1234565",
        received_at=datetime(2026, 2, 28, 9, 0, tzinfo=timezone.utc),
    )
