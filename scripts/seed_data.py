#!/usr/bin/env python
"""
Seed Data
Script to seed the database with a demo patient, a family member and a few
medication commands for development
"""

import sys
import os
import argparse
import asyncio
import logging

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from database import get_db_context, init_db
import models
from services.event_store import event_store


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

DEMO_PATIENT_ID = "demo-patient"
DEMO_FAMILY_ID = "demo-family"

DEMO_MEDICATIONS = [
    {"medication_name": "Metformin", "dosage_amount": "500mg", "frequency": "twice_daily",
     "scheduled_times": ["08:00", "20:00"]},
    {"medication_name": "Lisinopril", "dosage_amount": "10mg", "frequency": "daily",
     "scheduled_times": ["09:00"]},
    {"medication_name": "Vitamin D", "dosage_amount": "1000 IU", "frequency": "daily",
     "scheduled_times": []},
]


def seed_users(db, timezone: str) -> None:
    """Create the demo patient and an active family grant"""
    if db.get(models.User, DEMO_PATIENT_ID):
        logger.info("Demo users already exist")
        return

    db.add(models.User(
        id=DEMO_PATIENT_ID,
        name="Demo Patient",
        email="patient@example.com",
        timezone=timezone,
        preferred_methods=["browser", "email"],
    ))
    db.add(models.User(
        id=DEMO_FAMILY_ID,
        name="Demo Caregiver",
        email="caregiver@example.com",
        timezone=timezone,
        preferred_methods=["email"],
    ))
    db.add(models.FamilyAccessGrant(
        patient_id=DEMO_PATIENT_ID,
        family_member_id=DEMO_FAMILY_ID,
        family_member_name="Demo Caregiver",
        family_member_email="caregiver@example.com",
        permissions={"canView": True, "canReceiveNotifications": True},
        is_emergency_contact=True,
        status=models.AccessStatus.ACTIVE,
    ))
    db.commit()


async def seed_all(timezone: str) -> None:
    init_db()
    with get_db_context() as db:
        seed_users(db, timezone)

        existing = db.query(models.MedicationCommand).filter(
            models.MedicationCommand.patient_id == DEMO_PATIENT_ID
        ).count()
        if existing:
            logger.info(f"Demo patient already has {existing} commands")
            return

        for medication in DEMO_MEDICATIONS:
            command = await event_store.append_command(patient_id=DEMO_PATIENT_ID, db=db, **medication)
            created = await event_store.materialize_scheduled_events(command.id, db=db)
            logger.info(f"Seeded {command.medication_name} with {len(created)} scheduled doses")

        print("\n" + "=" * 60)
        print("Seeding Complete!")
        print("=" * 60)
        print(f"  Commands: {db.query(models.MedicationCommand).count()}")
        print(f"  Events: {db.query(models.MedicationEvent).count()}")
        print(f"  Calendar mirror rows: {db.query(models.LegacyCalendarEvent).count()}")
        print(f"\nDemo Patient ID: {DEMO_PATIENT_ID}")


def main():
    parser = argparse.ArgumentParser(
        description="Seed the database with demo data"
    )
    parser.add_argument(
        "--timezone",
        default="America/Chicago",
        help="IANA timezone for the demo users"
    )

    args = parser.parse_args()

    asyncio.run(seed_all(args.timezone))


if __name__ == "__main__":
    main()
