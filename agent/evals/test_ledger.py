"""
Unit tests for the SQLite ledger store.

Tests cover:
  1. add_transaction — returns the stored record with a generated id
  2. add_transaction — rejects zero, negative and fractional amounts
  3. Category normalisation — canonical names, Vietnamese aliases, fallback to Other
  4. Owner isolation — reads and deletes never cross owners
  5. Ordering — most recent date first, insertion order breaks ties
  6. month_bounds — real last day of month, leap years included
  7. remove_transactions — category filter and limit
  8. delete_transactions — by id set, scoped to owner
"""

import os
import sys
from datetime import date

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import pytest

import ledger


def test_add_transaction_returns_record():
    tx = ledger.add_transaction("alice", 50_000, "food", date(2026, 10, 5), note=" phở ")

    assert tx["id"].startswith("tx_")
    assert tx["amount"] == 50_000
    assert tx["category"] == "Food"
    assert tx["note"] == "phở"
    assert tx["date"] == "2026-10-05"
    assert ledger.count_transactions("alice") == 1


@pytest.mark.parametrize("amount", [0, -1_000, 10.5, True])
def test_add_transaction_rejects_bad_amounts(amount):
    with pytest.raises(ValueError):
        ledger.add_transaction("alice", amount, "Food", date(2026, 10, 5))
    assert ledger.count_transactions("alice") == 0


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("Food", "Food"),
        ("transport", "Transport"),
        ("ăn uống", "Food"),
        ("xăng", "Transport"),
        ("Hóa đơn", "Bills"),
        ("thuốc", "Health"),
        ("something odd", "Other"),
        (None, "Other"),
    ],
)
def test_normalize_category(raw, expected):
    assert ledger.normalize_category(raw) == expected


def test_match_category_unknown_is_none():
    assert ledger.match_category("vé số") is None
    assert ledger.match_category("") is None


def test_owner_isolation():
    ledger.add_transaction("alice", 10_000, "Food", date(2026, 10, 1))
    ledger.add_transaction("bob", 20_000, "Food", date(2026, 10, 1))

    alice = ledger.month_transactions("alice", 2026, 10)
    assert [t["amount"] for t in alice] == [10_000]

    removed = ledger.remove_transactions("alice")
    assert len(removed) == 1
    assert ledger.count_transactions("bob") == 1


def test_recent_first_ordering():
    first = ledger.add_transaction("alice", 1_000, "Food", date(2026, 10, 3))
    second = ledger.add_transaction("alice", 2_000, "Food", date(2026, 10, 3))
    older = ledger.add_transaction("alice", 3_000, "Food", date(2026, 10, 1))

    ids = [t["id"] for t in ledger.recent_transactions("alice", limit=10)]
    assert ids == [second["id"], first["id"], older["id"]]


def test_month_bounds():
    assert ledger.month_bounds(2026, 2) == (date(2026, 2, 1), date(2026, 2, 28))
    assert ledger.month_bounds(2024, 2) == (date(2024, 2, 1), date(2024, 2, 29))
    assert ledger.month_bounds(2026, 12) == (date(2026, 12, 1), date(2026, 12, 31))


def test_month_transactions_excludes_other_months():
    ledger.add_transaction("alice", 1_000, "Food", date(2026, 9, 30))
    ledger.add_transaction("alice", 2_000, "Food", date(2026, 10, 31))
    ledger.add_transaction("alice", 3_000, "Food", date(2026, 11, 1))

    october = ledger.month_transactions("alice", 2026, 10)
    assert [t["amount"] for t in october] == [2_000]


def test_remove_transactions_by_category_and_limit():
    ledger.add_transaction("alice", 1_000, "Food", date(2026, 10, 1))
    ledger.add_transaction("alice", 2_000, "Food", date(2026, 10, 2))
    ledger.add_transaction("alice", 3_000, "Transport", date(2026, 10, 3))

    removed = ledger.remove_transactions("alice", category="Food", limit=1)

    assert [t["amount"] for t in removed] == [2_000]
    remaining = sorted(t["amount"] for t in ledger.recent_transactions("alice"))
    assert remaining == [1_000, 3_000]


def test_delete_transactions_by_id_is_owner_scoped():
    tx = ledger.add_transaction("alice", 1_000, "Food", date(2026, 10, 1))

    assert ledger.delete_transactions("bob", [tx["id"]]) == 0
    assert ledger.delete_transactions("alice", []) == 0
    assert ledger.delete_transactions("alice", [tx["id"]]) == 1
    assert ledger.count_transactions("alice") == 0
