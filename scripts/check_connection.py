"""
CLI helper to check that the configured backend answers table requests.
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
from crm.errors import ConfigurationError
from crm.session import SessionManager

logger = logging.getLogger(__name__)


def main() -> int:
    parser = argparse.ArgumentParser(description="Check the CRM backend connection")
    parser.add_argument(
        "--local",
        action="store_true",
        help="Check the local SQLAlchemy backend instead of Supabase",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(name)s %(levelname)s %(asctime)s %(message)s",
        datefmt="%m/%d/%Y %I:%M:%S %p",
    )

    settings = get_settings()
    if args.local:
        settings = settings.model_copy(update={"use_in_memory_backends": True})
    try:
        backend, identity = build_backends(settings)
    except ConfigurationError as exc:
        logger.error(exc.message)
        return 2

    data = CrmDataAccess(backend, SessionManager(identity))
    if data.check_connection():
        logger.info("Backend reachable")
        return 0
    logger.error("Backend not reachable")
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
