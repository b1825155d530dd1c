"""
Unit tests for the expense tools, driven through execute_tool exactly as
the agent loop calls them.

Tests cover:
  1. add_expense then get_monthly_expenses — the new amount is in the total
  2. add_expense — shorthand string amounts ("50k") are normalised
     and large integers are stored exactly
  3. add_expense validation — zero / negative / boolean amount, malformed date, extra keys
  4. get_monthly_expenses — empty month returns zeros, recent list capped at 5
  5. get_expense_stats — ranking, percentages sum to ~100, empty month is 0%
  6. delete_expense — deleteAll, by category, most recent, precedence, limit
  7. delete_expense — nothing to delete is a successful zero-count result
  8. Unknown tool — structured UNKNOWN_TOOL failure, no crash
  9. tool_definitions — one schema per registry entry, deleteAll alias exposed
  10. Ledger access happens off the event-loop thread
"""

import os
import sys
import threading
from datetime import date

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import pytest

import ledger
from tools import TOOL_REGISTRY, execute_tool, tool_definitions

OWNER = "alice"


async def _add(amount, category, day, note=None):
    args = {"amount": amount, "category": category, "date": day.isoformat()}
    if note is not None:
        args["note"] = note
    result = await execute_tool("add_expense", args, OWNER)
    assert result["success"] is True, result
    return result


# ---------------------------------------------------------------------------
# add_expense
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_add_then_monthly_includes_amount():
    """
    GIVEN  an empty ledger
    WHEN   add_expense records 50,000 for Food today
    THEN   get_monthly_expenses for this month includes it in the total.
    """
    result = await _add(50_000, "Food", date(2026, 10, 19), note="phở")

    assert result["tool_name"] == "add_expense"
    assert result["result"]["amount"] == 50_000
    assert result["result"]["amount_formatted"] == "50.000 ₫"
    assert "50.000 ₫" in result["result"]["message"]

    monthly = await execute_tool("get_monthly_expenses", {"year": 2026, "month": 10}, OWNER)
    assert monthly["success"] is True
    assert monthly["result"]["total"] == 50_000
    assert monthly["result"]["transaction_count"] == 1
    assert monthly["result"]["summary"][0]["category"] == "Food"


@pytest.mark.asyncio
async def test_add_expense_accepts_shorthand_amount():
    result = await _add("50k", "ăn uống", date(2026, 10, 19))
    assert result["result"]["amount"] == 50_000
    assert result["result"]["category"] == "Food"


@pytest.mark.asyncio
@pytest.mark.parametrize("amount", [0, -20_000, "abc", True, False])
async def test_add_expense_rejects_invalid_amount(amount):
    result = await execute_tool(
        "add_expense", {"amount": amount, "category": "Food", "date": "2026-10-19"}, OWNER,
    )
    assert result["success"] is False
    assert result["error"] == "VALIDATION_ERROR"
    assert "amount" in result["message"]
    assert ledger.count_transactions(OWNER) == 0


@pytest.mark.asyncio
async def test_add_expense_keeps_large_integers_exact():
    amount = 2**53 + 1

    result = await _add(amount, "Bills", date(2026, 10, 19))

    assert result["result"]["amount"] == amount
    assert ledger.recent_transactions(OWNER)[0]["amount"] == amount


@pytest.mark.asyncio
async def test_add_expense_rounds_fractional_amount():
    result = await _add(49_999.6, "Food", date(2026, 10, 19))
    assert result["result"]["amount"] == 50_000


@pytest.mark.asyncio
async def test_add_expense_rejects_malformed_date():
    result = await execute_tool(
        "add_expense", {"amount": 50_000, "category": "Food", "date": "19/10/2026"}, OWNER,
    )
    assert result["success"] is False
    assert result["error"] == "VALIDATION_ERROR"
    assert "date" in result["message"]


@pytest.mark.asyncio
async def test_add_expense_rejects_unknown_arguments():
    result = await execute_tool(
        "add_expense",
        {"amount": 50_000, "category": "Food", "date": "2026-10-19", "currency": "USD"},
        OWNER,
    )
    assert result["success"] is False
    assert result["error"] == "VALIDATION_ERROR"


# ---------------------------------------------------------------------------
# get_monthly_expenses / get_expense_stats
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_monthly_empty_month():
    result = await execute_tool("get_monthly_expenses", {"year": 2026, "month": 3}, OWNER)

    assert result["success"] is True
    assert result["result"]["total"] == 0
    assert result["result"]["transaction_count"] == 0
    assert result["result"]["summary"] == []
    assert result["result"]["recent_transactions"] == []


@pytest.mark.asyncio
async def test_monthly_recent_is_capped_and_newest_first():
    for day in range(1, 8):
        await _add(day * 1_000, "Food", date(2026, 10, day))

    result = await execute_tool("get_monthly_expenses", {"year": 2026, "month": 10}, OWNER)
    recent = result["result"]["recent_transactions"]

    assert len(recent) == 5
    assert [t["date"] for t in recent] == [f"2026-10-0{d}" for d in (7, 6, 5, 4, 3)]
    assert result["result"]["total"] == sum(d * 1_000 for d in range(1, 8))


@pytest.mark.asyncio
async def test_monthly_rejects_out_of_range_month():
    result = await execute_tool("get_monthly_expenses", {"year": 2026, "month": 13}, OWNER)
    assert result["success"] is False
    assert result["error"] == "VALIDATION_ERROR"


@pytest.mark.asyncio
async def test_stats_ranking_and_percentages():
    await _add(300_000, "Food", date(2026, 10, 1))
    await _add(100_000, "Transport", date(2026, 10, 2))
    await _add(200_000, "Food", date(2026, 10, 3))
    await _add(100_000, "Shopping", date(2026, 10, 4))

    result = await execute_tool("get_expense_stats", {"year": 2026, "month": 10}, OWNER)
    stats = result["result"]

    assert stats["total"] == 700_000
    assert stats["categories"][0]["category"] == "Food"
    assert stats["categories"][0]["count"] == 2
    assert stats["top_category"]["category"] == "Food"
    assert stats["categories"][0]["percentage"] == pytest.approx(71.4)
    assert sum(c["percentage"] for c in stats["categories"]) == pytest.approx(100, abs=0.2)
    assert "Food" in stats["insights"]


@pytest.mark.asyncio
async def test_stats_empty_month():
    result = await execute_tool("get_expense_stats", {"year": 2026, "month": 10}, OWNER)

    assert result["success"] is True
    assert result["result"]["total"] == 0
    assert result["result"]["categories"] == []
    assert result["result"]["top_category"] is None
    assert result["result"]["insights"] == "Chưa có dữ liệu chi tiêu"


# ---------------------------------------------------------------------------
# delete_expense
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_delete_all_leaves_zero():
    await _add(50_000, "Food", date(2026, 10, 1))
    await _add(80_000, "Transport", date(2026, 10, 2))

    result = await execute_tool("delete_expense", {"deleteAll": True}, OWNER)
    assert result["success"] is True
    assert result["result"]["mode"] == "all"
    assert result["result"]["deleted_count"] == 2
    assert result["result"]["deleted_total"] == 130_000

    monthly = await execute_tool("get_monthly_expenses", {"year": 2026, "month": 10}, OWNER)
    assert monthly["result"]["total"] == 0


@pytest.mark.asyncio
async def test_delete_all_takes_precedence_over_category():
    await _add(50_000, "Food", date(2026, 10, 1))
    await _add(80_000, "Transport", date(2026, 10, 2))

    result = await execute_tool("delete_expense", {"deleteAll": True, "category": "Food"}, OWNER)
    assert result["result"]["mode"] == "all"
    assert ledger.count_transactions(OWNER) == 0


@pytest.mark.asyncio
async def test_delete_by_category_removes_most_recent_of_that_category():
    await _add(10_000, "Food", date(2026, 10, 1))
    await _add(20_000, "Food", date(2026, 10, 2))
    await _add(30_000, "Transport", date(2026, 10, 3))

    result = await execute_tool("delete_expense", {"category": "food"}, OWNER)

    assert result["result"]["mode"] == "category"
    assert [t["amount"] for t in result["result"]["deleted"]] == [20_000]
    remaining = sorted(t["amount"] for t in ledger.recent_transactions(OWNER))
    assert remaining == [10_000, 30_000]


@pytest.mark.asyncio
async def test_delete_recent_with_limit():
    for day in (1, 2, 3):
        await _add(day * 10_000, "Food", date(2026, 10, day))

    result = await execute_tool("delete_expense", {"limit": 2}, OWNER)

    assert result["result"]["mode"] == "recent"
    assert [t["amount"] for t in result["result"]["deleted"]] == [30_000, 20_000]
    assert ledger.count_transactions(OWNER) == 1


@pytest.mark.asyncio
async def test_delete_with_nothing_to_delete():
    result = await execute_tool("delete_expense", {}, OWNER)
    assert result["success"] is True
    assert result["result"]["deleted_count"] == 0


@pytest.mark.asyncio
async def test_delete_unknown_category_deletes_nothing():
    await _add(10_000, "Other", date(2026, 10, 1))

    result = await execute_tool("delete_expense", {"category": "vé số"}, OWNER)

    assert result["success"] is True
    assert result["result"]["deleted_count"] == 0
    assert ledger.count_transactions(OWNER) == 1


@pytest.mark.asyncio
async def test_delete_is_owner_scoped():
    await _add(10_000, "Food", date(2026, 10, 1))

    result = await execute_tool("delete_expense", {"deleteAll": True}, "bob")

    assert result["result"]["deleted_count"] == 0
    assert ledger.count_transactions(OWNER) == 1


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_unknown_tool_is_structured_failure():
    result = await execute_tool("transfer_money", {"amount": 1}, OWNER)
    assert result["success"] is False
    assert result["error"] == "UNKNOWN_TOOL"
    assert "transfer_money" in result["message"]


def test_tool_definitions_cover_registry():
    definitions = tool_definitions()
    names = [d["name"] for d in definitions]

    assert names == list(TOOL_REGISTRY)
    assert len(names) == 7
    delete_schema = next(d for d in definitions if d["name"] == "delete_expense")["input_schema"]
    assert "deleteAll" in delete_schema["properties"]
    add_schema = next(d for d in definitions if d["name"] == "add_expense")["input_schema"]
    assert set(add_schema["required"]) == {"amount", "category", "date"}


@pytest.mark.asyncio
async def test_ledger_calls_leave_the_event_loop_thread(monkeypatch):
    loop_thread = threading.get_ident()
    seen = []
    real_add = ledger.add_transaction

    def _recording_add(*args, **kwargs):
        seen.append(threading.get_ident())
        return real_add(*args, **kwargs)

    monkeypatch.setattr(ledger, "add_transaction", _recording_add)

    await _add(50_000, "Food", date(2026, 10, 19))

    assert len(seen) == 1
    assert seen[0] != loop_thread
