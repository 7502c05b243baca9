"""
Seed an account with demo contacts, tags and activities.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from crm.config import get_settings
from crm.data_access import CrmDataAccess
from crm.dependencies import build_backends
from crm.errors import CrmError
from crm.session import AuthOutcome, SessionManager

logger = logging.getLogger(__name__)

DEMO_TAGS = [
    {"name": "VIP", "color": "#f59e0b"},
    {"name": "Newsletter", "color": "#10b981"},
]

DEMO_CONTACTS = [
    {
        "first_name": "Jane",
        "last_name": "Doe",
        "email": "jane.doe@example.com",
        "company": "Acme Corp",
        "status": "Lead",
    },
    {
        "first_name": "John",
        "last_name": "Smith",
        "email": "john.smith@example.com",
        "company": "Globex",
        "status": "Prospect",
    },
    {
        "first_name": "Ada",
        "last_name": "Lovelace",
        "email": "ada@example.com",
        "company": "Analytical Engines",
        "status": "Customer",
    },
]


def seed(data: CrmDataAccess) -> int:
    tags = [data.create_tag(tag) for tag in DEMO_TAGS]
    created = 0
    for index, fields in enumerate(DEMO_CONTACTS):
        contact, failed = data.create_contact_with_tags(
            fields, [tags[index % len(tags)].id]
        )
        if failed:
            logger.warning("Tags %s not attached to %s", failed, contact.full_name)
        data.create_activity(
            {
                "contact_id": contact.id,
                "type": "Note",
                "description": f"Imported {contact.full_name} from demo data",
            }
        )
        created += 1
    return created


def main() -> int:
    parser = argparse.ArgumentParser(description="Seed demo CRM data")
    parser.add_argument("email", type=str, help="Account email")
    parser.add_argument("password", type=str, help="Account password")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(name)s %(levelname)s %(asctime)s %(message)s",
        datefmt="%m/%d/%Y %I:%M:%S %p",
    )

    settings = get_settings()
    backend, identity = build_backends(settings)
    with SessionManager(identity, redirect_url=settings.auth_redirect_url) as session:
        try:
            outcome = session.sign_in(args.email, args.password)
            if outcome is not AuthOutcome.SIGNED_IN:
                logger.error("Cannot seed: %s", outcome.value)
                return 1
            created = seed(CrmDataAccess(backend, session))
        except CrmError as exc:
            logger.error("Seeding failed: %s", exc.message)
            return 1
    logger.info("Seeded %d contacts", created)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
