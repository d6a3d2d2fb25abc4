#!/usr/bin/env python3
"""
Credit Operator Tool
Grants, removes or inspects business credits through the ledger. This is the
fix for a failed job whose refund never happened (crash between the failed
write and the refund).

Usage:
    python scripts/grant_credits.py biz_123 --show
    python scripts/grant_credits.py biz_123 --amount 40 --note "refund job_abc"
    python scripts/grant_credits.py biz_123 --amount -10 --note "correction"
    python scripts/grant_credits.py biz_123 --create --name "Acme Coffee" --amount 200
"""

import argparse
import logging
import os
import sys

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.core.database import SessionLocal, init_db
from app.models.business import Business, CreditEntry
from app.services.credits import CreditLedger

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S"
)
logger = logging.getLogger("credits")


def main():
    parser = argparse.ArgumentParser(description="Grant or correct business credits")
    parser.add_argument("business_id", help="Business id")
    parser.add_argument("--amount", "-a", type=int, default=0, help="Credits to add (negative to remove)")
    parser.add_argument("--note", "-n", default="", help="Reason recorded on the ledger entry")
    parser.add_argument("--show", action="store_true", help="Print balance and recent entries")
    parser.add_argument("--create", action="store_true", help="Create the business if it does not exist")
    parser.add_argument("--name", default=None, help="Business name (with --create)")
    parser.add_argument("--logo-url", default=None, help="Brand mark URL (with --create)")

    args = parser.parse_args()

    init_db()
    ledger = CreditLedger()
    db = SessionLocal()
    try:
        business = db.query(Business).filter(Business.id == args.business_id).first()
        if business is None:
            if not args.create:
                logger.error(f"Business not found: {args.business_id} (use --create)")
                sys.exit(1)
            db.add(Business(id=args.business_id, name=args.name or args.business_id,
                            logo_url=args.logo_url, credits=0))
            db.commit()
            logger.info(f"Created business {args.business_id}")

        if args.amount:
            balance = ledger.grant(db, args.business_id, args.amount, note=args.note)
            logger.info(f"{args.business_id}: balance is now {balance}")

        if args.show or not args.amount:
            print(f"{args.business_id}: {ledger.balance(db, args.business_id)} credits")
            entries = (
                db.query(CreditEntry)
                .filter(CreditEntry.business_id == args.business_id)
                .order_by(CreditEntry.id.desc())
                .limit(20)
                .all()
            )
            for entry in entries:
                print(f"  {entry.created_at:%Y-%m-%d %H:%M:%S}  {entry.kind:<7} {entry.amount:>6}  "
                      f"{entry.job_id or '-':<18} {entry.note or ''}")
    finally:
        db.close()


if __name__ == "__main__":
    main()
