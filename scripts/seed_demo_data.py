#!/usr/bin/env python3
"""
Seed script to create a demo user with a handful of incidents.
Run with: python -m scripts.seed_demo_data
"""

import random

from incident_api.api.deps import build_auth_service
from incident_api.core.database import SessionLocal
from incident_api.models import IncidentCategory, User
from incident_api.schemas.auth import RegisterRequest
from incident_api.schemas.incidents import IncidentCreate, IncidentUpdateRequest
from incident_api.services.incident_service import IncidentService, seed_reference_data
from incident_api.models.incident import STATUS_CLOSED, STATUS_IN_PROGRESS

DEMO_USERNAME = "jdoe"
DEMO_PASSWORD = "Dem0!Incident"

DEMO_INCIDENTS = [
    ("Mail relay rejecting messages", "Outbound mail queue is growing since the certificate rotation", 4),
    ("VPN drops every hour", "Remote staff report the VPN tunnel resets roughly every sixty minutes", 3),
    ("Suspicious login attempts", "Repeated failed logins against the admin console from one address", 5),
    ("Slow report generation", "Monthly reports take more than ten minutes to render", 2),
    ("Broken link on intranet", "The holiday calendar link on the intranet home page returns 404", 1),
]


def create_demo_data():
    """Create the demo user and incidents in various states."""
    db = SessionLocal()

    try:
        seed_reference_data(db)

        if db.query(User).filter(User.username == DEMO_USERNAME).first():
            print("Demo user already exists. Skipping seed.")
            return

        print("Creating demo user...")
        result = build_auth_service(db).register(RegisterRequest(
            username=DEMO_USERNAME,
            email="jdoe@example.com",
            password=DEMO_PASSWORD,
            confirm_password=DEMO_PASSWORD,
            first_name="Jane",
            last_name="Doe",
        ))
        user = result.user

        categories = db.query(IncidentCategory).filter(IncidentCategory.is_active == True).all()
        for index, (title, description, priority) in enumerate(DEMO_INCIDENTS):
            incident = IncidentService.create_incident(db, user, IncidentCreate(
                title=title,
                description=description,
                category_id=random.choice(categories).id,
                priority=priority,
            ))
            if index % 3 == 1:
                IncidentService.add_comment(db, incident, user, "Investigating, will update shortly")
                IncidentService.update_incident(
                    db, incident, user, IncidentUpdateRequest(status_id=STATUS_IN_PROGRESS)
                )
            elif index % 3 == 2:
                IncidentService.update_incident(
                    db, incident, user, IncidentUpdateRequest(status_id=STATUS_CLOSED)
                )

        print("\n" + "=" * 50)
        print("Demo data created successfully!")
        print("=" * 50)
        print(f"\nLogin credentials:")
        print(f"  Username: {DEMO_USERNAME}")
        print(f"  Password: {DEMO_PASSWORD}")
        print(f"Incidents: {len(DEMO_INCIDENTS)}")
        print("=" * 50)

    except Exception as e:
        db.rollback()
        print(f"Error creating demo data: {e}")
        raise
    finally:
        db.close()


if __name__ == "__main__":
    create_demo_data()
