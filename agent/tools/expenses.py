"""
Expense tools — the ledger-facing half of the tool registry.

Four capabilities, all scoped to the calling owner:
  1. add_expense(...)           — record one expense
  2. get_monthly_expenses(...)  — month total, per-category subtotals, 5 most recent
  3. get_expense_stats(...)     — categories ranked with percentage share + insight
  4. delete_expense(...)        — delete all / by category / most recent

Arguments are validated by the pydantic models below before an executor
runs (see tools.execute_tool). Executors return the standard tool result
envelope:
  {tool_name, success, tool_result_id, timestamp, result}  — on success
  {tool_name, success, tool_result_id, error, message}     — on failure

Ledger calls run in a worker thread so the event loop stays free.
"""

import asyncio
import datetime as dt
import logging
import sqlite3
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

import ledger
from currency import format_vnd, parse_vnd

logger = logging.getLogger(__name__)

RECENT_LIMIT = 5


# ---------------------------------------------------------------------------
# Argument schemas
# ---------------------------------------------------------------------------

class AddExpenseArgs(BaseModel):
    model_config = ConfigDict(extra="forbid")

    amount: Union[int, float] = Field(
        description='Amount in VND, whole đồng. "50k" = 50000, "30 nghìn" = 30000, "2 triệu" = 2000000',
    )
    category: str = Field(
        description="Category: Food, Transport, Shopping, Entertainment, Bills, Health, Other",
    )
    note: Optional[str] = Field(default=None, description="Short note, e.g. 'phở bò'")
    date: dt.date = Field(description="Date in YYYY-MM-DD format")

    @field_validator("amount", mode="before")
    @classmethod
    def _coerce_amount(cls, value):
        if isinstance(value, bool):
            raise ValueError("amount must be a number, not a boolean")
        if isinstance(value, str):
            parsed = parse_vnd(value)
            if parsed <= 0:
                raise ValueError(f"cannot read an amount from {value!r}")
            return parsed
        return value

    @field_validator("amount")
    @classmethod
    def _positive_whole_amount(cls, value: Union[int, float]) -> int:
        # Integers stay exact; only fractional input is rounded.
        rounded = value if isinstance(value, int) else int(round(value))
        if value <= 0 or rounded <= 0:
            raise ValueError("amount must be greater than zero")
        return rounded

    @field_validator("category")
    @classmethod
    def _canonical_category(cls, value: str) -> str:
        return ledger.normalize_category(value)


class MonthArgs(BaseModel):
    model_config = ConfigDict(extra="forbid")

    year: int = Field(ge=2000, le=2100, description="Year, e.g. 2026")
    month: int = Field(ge=1, le=12, description="Month (1-12)")


class DeleteExpenseArgs(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    category: Optional[str] = Field(
        default=None,
        description="Delete by category (Food, Transport, ...). Leave empty to delete the most recent.",
    )
    delete_all: bool = Field(
        default=False,
        alias="deleteAll",
        description="Set true to delete ALL of the user's transactions. Use carefully!",
    )
    limit: int = Field(
        default=1,
        ge=1,
        description="Number of transactions to delete (default 1, most recent first)",
    )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _result_id(prefix: str) -> str:
    return f"{prefix}_{int(dt.datetime.utcnow().timestamp())}"


def _failure(tool_name: str, tool_result_id: str, code: str, message: str) -> dict:
    return {
        "tool_name": tool_name,
        "success": False,
        "tool_result_id": tool_result_id,
        "error": code,
        "message": message,
    }


def _brief(tx: dict) -> dict:
    return {
        "id": tx["id"],
        "date": tx["date"],
        "category": tx["category"],
        "amount": tx["amount"],
        "amount_formatted": format_vnd(tx["amount"]),
        "note": tx.get("note") or "",
        "merchant": tx.get("merchant") or "",
    }


def _by_category(transactions: list[dict]) -> dict[str, dict]:
    summary: dict[str, dict] = {}
    for tx in transactions:
        bucket = summary.setdefault(tx["category"], {"total": 0, "count": 0})
        bucket["total"] += tx["amount"]
        bucket["count"] += 1
    return summary


# ---------------------------------------------------------------------------
# Executors
# ---------------------------------------------------------------------------

async def add_expense(
    owner_id: str,
    amount: int,
    category: str,
    date: dt.date,
    note: Optional[str] = None,
) -> dict:
    """Records one expense for owner_id and confirms it with the formatted amount."""
    tool_result_id = _result_id("add_expense")
    logger.info("add_expense owner=%s amount=%s category=%s date=%s", owner_id, amount, category, date)

    try:
        tx = await asyncio.to_thread(
            ledger.add_transaction, owner_id, amount, category, date, note=note or "",
        )
    except (sqlite3.Error, ValueError) as exc:
        logger.warning("add_expense failed owner=%s: %s", owner_id, exc)
        return _failure("add_expense", tool_result_id, "EXECUTION_ERROR", f"Không lưu được chi tiêu: {exc}")

    formatted = format_vnd(tx["amount"])
    return {
        "tool_name": "add_expense",
        "success": True,
        "tool_result_id": tool_result_id,
        "timestamp": dt.datetime.utcnow().isoformat(),
        "result": {
            "id": tx["id"],
            "amount": tx["amount"],
            "amount_formatted": formatted,
            "category": tx["category"],
            "note": tx["note"],
            "date": tx["date"],
            "message": f"Đã lưu chi tiêu: {formatted} cho {tx['category']}",
        },
    }


async def get_monthly_expenses(owner_id: str, year: int, month: int) -> dict:
    """
    Month summary: total, per-category subtotals (count + formatted total),
    and the five most recent transactions. An empty month returns zeros.
    """
    tool_result_id = _result_id("monthly")

    try:
        transactions = await asyncio.to_thread(ledger.month_transactions, owner_id, year, month)
    except sqlite3.Error as exc:
        logger.warning("get_monthly_expenses failed owner=%s: %s", owner_id, exc)
        return _failure("get_monthly_expenses", tool_result_id, "EXECUTION_ERROR", f"Không đọc được dữ liệu: {exc}")

    total = sum(t["amount"] for t in transactions)
    summary = [
        {
            "category": category,
            "total": data["total"],
            "total_formatted": format_vnd(data["total"]),
            "count": data["count"],
        }
        for category, data in _by_category(transactions).items()
    ]

    return {
        "tool_name": "get_monthly_expenses",
        "success": True,
        "tool_result_id": tool_result_id,
        "timestamp": dt.datetime.utcnow().isoformat(),
        "result": {
            "period": f"{month}/{year}",
            "total": total,
            "total_formatted": format_vnd(total),
            "transaction_count": len(transactions),
            "summary": summary,
            # month_transactions is already most-recent-first
            "recent_transactions": [_brief(t) for t in transactions[:RECENT_LIMIT]],
        },
    }


async def get_expense_stats(owner_id: str, year: int, month: int) -> dict:
    """Ranks the month's categories by total and reports each one's share."""
    tool_result_id = _result_id("stats")

    try:
        transactions = await asyncio.to_thread(ledger.month_transactions, owner_id, year, month)
    except sqlite3.Error as exc:
        logger.warning("get_expense_stats failed owner=%s: %s", owner_id, exc)
        return _failure("get_expense_stats", tool_result_id, "EXECUTION_ERROR", f"Không đọc được dữ liệu: {exc}")

    total = sum(t["amount"] for t in transactions)
    categories = sorted(
        (
            {
                "category": category,
                "total": data["total"],
                "total_formatted": format_vnd(data["total"]),
                "count": data["count"],
                "percentage": round(data["total"] / total * 100, 1) if total > 0 else 0.0,
            }
            for category, data in _by_category(transactions).items()
        ),
        key=lambda c: c["total"],
        reverse=True,
    )

    top = categories[0] if categories else None
    if top:
        insights = (
            f"Bạn chi tiêu nhiều nhất cho {top['category']} "
            f"với {top['total_formatted']} ({top['percentage']}%)"
        )
    else:
        insights = "Chưa có dữ liệu chi tiêu"

    return {
        "tool_name": "get_expense_stats",
        "success": True,
        "tool_result_id": tool_result_id,
        "timestamp": dt.datetime.utcnow().isoformat(),
        "result": {
            "period": f"{month}/{year}",
            "total": total,
            "total_formatted": format_vnd(total),
            "transaction_count": len(transactions),
            "categories": categories,
            "top_category": top,
            "insights": insights,
        },
    }


async def delete_expense(
    owner_id: str,
    category: Optional[str] = None,
    delete_all: bool = False,
    limit: int = 1,
) -> dict:
    """
    Deletes transactions in exactly one mode, checked in this order:
      delete_all → every transaction for the owner
      category   → up to `limit` most recent of that category
      otherwise  → up to `limit` most recent overall
    """
    tool_result_id = _result_id("delete")

    if delete_all:
        mode, target, take = "all", None, None
    elif category:
        # An unrecognised category matches nothing rather than falling into "Other".
        mode, target, take = "category", ledger.match_category(category), limit
    else:
        mode, target, take = "recent", None, limit

    logger.info("delete_expense owner=%s mode=%s category=%s limit=%s", owner_id, mode, target, take)

    try:
        if mode == "category" and target is None:
            deleted = []
        else:
            deleted = await asyncio.to_thread(
                ledger.remove_transactions, owner_id, category=target, limit=take,
            )
    except sqlite3.Error as exc:
        logger.warning("delete_expense failed owner=%s: %s", owner_id, exc)
        return _failure("delete_expense", tool_result_id, "EXECUTION_ERROR", f"Không xóa được giao dịch: {exc}")

    count = len(deleted)
    if count == 0:
        if mode == "category":
            message = f"Không tìm thấy giao dịch {target or category} để xóa"
        else:
            message = "Không có giao dịch nào để xóa"
    elif mode == "all":
        message = f"Đã xóa tất cả {count} giao dịch"
    elif mode == "category":
        message = f"Đã xóa {count} giao dịch {target}"
    else:
        message = f"Đã xóa {count} giao dịch gần nhất"

    deleted_total = sum(t["amount"] for t in deleted)
    return {
        "tool_name": "delete_expense",
        "success": True,
        "tool_result_id": tool_result_id,
        "timestamp": dt.datetime.utcnow().isoformat(),
        "result": {
            "mode": mode,
            "deleted_count": count,
            "deleted_total": deleted_total,
            "deleted_total_formatted": format_vnd(deleted_total),
            "deleted": [_brief(t) for t in deleted[:20]],
            "message": message,
        },
    }
