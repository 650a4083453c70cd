"""
Seed demo data for pipeline verification.
Creates the built-in action rules and a small Maersk mail thread
(booking confirmation, BL copy, arrival notice) left pending for the pipeline.
Run: python -m scripts.seed_demo_data
"""
import os
import sys
from datetime import datetime, timezone

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from freightflow.db.session import SessionLocal
from freightflow.db.models import Message
from freightflow.services.action_rules import seed_action_rules


DEMO_MESSAGES = [
    {
        "external_id": "demo-bc-263522431",
        "thread_id": "demo-263522431",
        "subject": "Booking Confirmation: 263522431",
        "sender": "in.export@maersk.com",
        "body_text": "Dear customer, please find attached the booking confirmation.",
        "attachments": [{
            "filename": "BC_263522431.pdf",
            "text": (
                "BOOKING CONFIRMATION\n"
                "Booking No.: 263522431\n"
                "Vessel: MAERSK KINLOSS / 612W\n"
                "Port of Loading: Nhava Sheva\n"
                "Port of Discharge: Newark\n"
                "ETD: 15/03/2026\nETA: 20/04/2026\n"
                "SI Cutoff: 10/03/2026\nVGM Cutoff: 11/03/2026"
            ),
        }],
        "received_at": datetime(2026, 3, 1, 10, 0, tzinfo=timezone.utc),
    },
    {
        "external_id": "demo-bl-263522431",
        "thread_id": "demo-263522431",
        "subject": "BL copy for booking 263522431",
        "sender": "docs@maersk.com",
        "body_text": "Please find the bill of lading. Container MSKU1234565",
        "attachments": [],
        "received_at": datetime(2026, 3, 18, 9, 0, tzinfo=timezone.utc),
    },
    {
        "external_id": "demo-an-263522431",
        "thread_id": "demo-263522431",
        "subject": "Arrival notice 263522431",
        "sender": "noreply@maersk.com",
        "body_text": "ARRIVAL NOTICE\nETA: 20/04/2026\nContainer MSKU1234565",
        "attachments": [],
        "received_at": datetime(2026, 4, 15, 7, 30, tzinfo=timezone.utc),
    },
]


def seed_demo_data():
    """Create demo data for verification."""
    db = SessionLocal()

    try:
        # 1. Action rules
        created = seed_action_rules(db)
        print(f"✅ Seeded {created['rules']} action rules and {created['defaults']} type defaults")

        # 2. Demo messages
        for data in DEMO_MESSAGES:
            existing = db.query(Message).filter(Message.external_id == data["external_id"]).first()
            if existing:
                print(f"✓ Message exists: {existing.subject} (ID: {existing.id})")
                continue
            message = Message(**data)
            db.add(message)
            db.flush()
            print(f"✅ Created message: {message.subject} (ID: {message.id})")

        db.commit()
        print("\nRun the pipeline with: POST /api/pipeline/run {\"inline\": true}")

    except Exception as e:
        db.rollback()
        print(f"❌ Error seeding demo data: {e}")
        raise
    finally:
        db.close()


if __name__ == "__main__":
    seed_demo_data()
