"""
workflows/demo.py

Seed a store with demo users and walk one case through the whole funding
pipeline: registration, NGO verification, case review, pool, contributions.

Usage:
  python -m workflows.demo                 # writes to $MEDSEAL_DB_PATH or data/medseal.db;
                                           # requires APP_DATA_KEY
  python -m workflows.demo --memory        # throwaway in-memory store

Demo identities are fixed strings, so re-running against the same database
only seeds what is missing.  Contains no real personal data.
"""

import argparse
import logging
import sys

from storage.crypto import env_data_key
from storage.db import Store
from storage.models import UserRole
from workflows.service import MedSealService

logger = logging.getLogger(__name__)

DEMO_USERS = [
    ("demo-admin", "Demo Admin", "admin@demo.org", UserRole.admin),
    ("demo-doctor", "Dr. Demo", "doctor@demo.org", UserRole.doctor),
    ("demo-ngo", "Demo Relief Fund", "ngo@demo.org", UserRole.ngo),
    ("demo-patient", "Demo Patient", "patient@demo.org", UserRole.patient),
]


def seed_demo_users(service: MedSealService) -> None:
    """Register each demo identity that has no account yet."""
    for identity, name, email, role in DEMO_USERS:
        if service.identity_has_account(identity):
            continue
        if role == UserRole.admin and service.admin_exists():
            logger.info("An admin already exists; skipping %s", identity)
            continue
        service.register_user(identity, name=name, email=email, role=role)


def run_pipeline(service: MedSealService) -> None:
    ngo = service.get_user_by_identity("demo-ngo")
    if ngo is not None and ngo.verification_request is None:
        request_id = service.submit_verification_request(
            "demo-ngo",
            institution_name="Demo Relief Fund",
            license_number="NGO-0001",
            license_authority="Demo Charity Register",
        )
        service.process_verification_request(
            "demo-admin", request_id, "approved", ["Registration checked"]
        )

    case_id = service.submit_patient_case(
        "demo-patient",
        title="Knee surgery",
        description="Reconstructive surgery after a fall.",
        medical_condition="Torn ACL",
        required_amount=1000,
        urgency="high",
    )
    service.review_patient_case("demo-admin", case_id, "approved", "Documents verified")
    pool_id = service.create_contribution_pool(
        "demo-ngo", case_id, target_amount=1000, title="Help with knee surgery", deadline_days=30
    )

    for donor, amount in (("donor-1", 600), ("donor-2", 500)):
        service.contribute_to_pool(donor, pool_id, amount, message="Get well soon")

    pool = service.get_contribution_pool(pool_id)
    case = service.get_patient_case("demo-admin", case_id)
    print(
        f"\n[MedSeal Demo] Pool {pool.id}: {pool.current_amount}/{pool.target_amount} "
        f"from {pool.contributors_count} contributors, completed={pool.is_completed}; "
        f"case status={case.status.value}"
    )
    print(service.get_system_overview("demo-admin").model_dump_json(indent=2))


def main(argv: list[str] | None = None) -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")
    parser = argparse.ArgumentParser(description="Seed and exercise a MedSeal store.")
    parser.add_argument("--memory", action="store_true", help="use an in-memory store")
    args = parser.parse_args(argv)

    if args.memory:
        store = Store(":memory:")
    else:
        data_key = env_data_key()
        if data_key is None:
            # Persistent stores need a key that outlives this process.
            logger.error(
                "APP_DATA_KEY must be set to use a persistent store; "
                "pass --memory for a throwaway run."
            )
            sys.exit(1)
        store = Store(data_key=data_key)
    try:
        service = MedSealService(store)
        seed_demo_users(service)
        run_pipeline(service)
    finally:
        store.close()


if __name__ == "__main__":
    main()
