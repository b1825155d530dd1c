#!/usr/bin/env python3
"""
Seed the ledger with a realistic month of Vietnamese daily spending.

Usage:
  # Seed the current month, up to today, for the "default" owner:
  python seed_demo.py

  # Another owner, an explicit month, and a clean slate first:
  python seed_demo.py --owner-id alice --month 2026-09 --reset

The script inserts, for each seeded day, a breakfast, a coffee, a commute
and — on some days — groceries, entertainment, bills or pharmacy items, so
that /forecast and the expense tools have data to work with.
"""

import argparse
import calendar
import random
import sys
from datetime import date

import ledger
from currency import format_vnd

# (category, note, min, max) in đồng
DAILY = [
    ("Food", "Ăn sáng phở", 35_000, 60_000),
    ("Food", "Cà phê", 25_000, 55_000),
    ("Transport", "Grab đi làm", 30_000, 80_000),
]

OCCASIONAL = [
    # (every_n_days, category, note, min, max)
    (3, "Food", "Đi chợ", 150_000, 400_000),
    (5, "Shopping", "Mua sắm Shopee", 100_000, 600_000),
    (7, "Entertainment", "Xem phim", 90_000, 250_000),
    (10, "Health", "Nhà thuốc", 50_000, 300_000),
]

MONTHLY_BILLS = [
    (1, "Bills", "Tiền nhà", 4_000_000),
    (5, "Bills", "Tiền điện", 650_000),
    (5, "Bills", "Internet", 220_000),
]


def _round_thousand(value: int) -> int:
    return max(1_000, value // 1_000 * 1_000)


def seed_month(owner_id: str, year: int, month: int, through_day: int, rng: random.Random) -> list[dict]:
    created = []
    for day in range(1, through_day + 1):
        tx_date = date(year, month, day)
        for category, note, low, high in DAILY:
            created.append(ledger.add_transaction(
                owner_id, _round_thousand(rng.randint(low, high)), category, tx_date, note=note,
            ))
        for every, category, note, low, high in OCCASIONAL:
            if day % every == 0:
                created.append(ledger.add_transaction(
                    owner_id, _round_thousand(rng.randint(low, high)), category, tx_date, note=note,
                ))
        for bill_day, category, note, amount in MONTHLY_BILLS:
            if day == bill_day:
                created.append(ledger.add_transaction(owner_id, amount, category, tx_date, note=note))
    return created


def main():
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("--owner-id", default="default", help="Ledger owner to seed")
    parser.add_argument("--month", default=None, help="YYYY-MM (default: current month, up to today)")
    parser.add_argument("--reset", action="store_true", help="Delete the owner's transactions first")
    parser.add_argument("--seed", type=int, default=42, help="Random seed for amounts")
    args = parser.parse_args()

    today = date.today()
    if args.month:
        try:
            year, month = (int(p) for p in args.month.split("-"))
            date(year, month, 1)
        except ValueError:
            print(f"Invalid --month {args.month!r}, expected YYYY-MM", file=sys.stderr)
            sys.exit(1)
    else:
        year, month = today.year, today.month

    if (year, month) == (today.year, today.month):
        through_day = today.day
    else:
        through_day = calendar.monthrange(year, month)[1]

    if args.reset:
        removed = ledger.remove_transactions(args.owner_id)
        print(f"Removed {len(removed)} existing transactions for {args.owner_id}")

    print(f"Seeding {month}/{year} days 1-{through_day} for owner {args.owner_id} …")
    created = seed_month(args.owner_id, year, month, through_day, random.Random(args.seed))
    total = sum(t["amount"] for t in created)

    print()
    print("=" * 60)
    print("  Ledger seeded successfully!")
    print("=" * 60)
    print(f"  Transactions : {len(created)}")
    print(f"  Total spent  : {format_vnd(total)}")
    print("  Try: GET /forecast?owner_id=" + args.owner_id)
    print("=" * 60)


if __name__ == "__main__":
    main()
