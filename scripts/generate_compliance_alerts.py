#!/usr/bin/env python3
"""
Refresh compliance alerts for one company or for every company.

Resolves the open alerts and re-inserts the current ones, so it is safe to
run from cron as often as needed.

Usage:
    python3 scripts/generate_compliance_alerts.py --all
    python3 scripts/generate_compliance_alerts.py --company-id 12
"""
import argparse
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

load_dotenv(PROJECT_ROOT / ".env")

from haulsync.database import session_scope  # noqa: E402
from haulsync.models.company import Company  # noqa: E402
from haulsync.services.compliance import generate_compliance_alerts  # noqa: E402

logger = logging.getLogger("generate_compliance_alerts")


def run(company_ids: list[int]) -> int:
    failures = 0
    with session_scope() as db:
        for company_id in company_ids:
            try:
                result = generate_compliance_alerts(db, company_id)
            except Exception:
                db.rollback()
                failures += 1
                logger.exception("compliance: refresh failed company=%s", company_id)
                continue
            counts = result["counts"]
            print(
                f"company {company_id}: {result['created']} open "
                f"(expired {counts['expired']}, critical {counts['critical']}, "
                f"urgent {counts['urgent']}, warning {counts['warning']}), "
                f"{result['resolved']} resolved"
            )
    return failures


def main() -> int:
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    target = parser.add_mutually_exclusive_group(required=True)
    target.add_argument("--company-id", type=int)
    target.add_argument("--all", action="store_true")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")

    if args.all:
        with session_scope() as db:
            company_ids = [row.id for row in db.query(Company.id).order_by(Company.id).all()]
    else:
        company_ids = [args.company_id]

    return 1 if run(company_ids) else 0


if __name__ == "__main__":
    sys.exit(main())
