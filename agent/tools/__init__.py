"""
Tool registry — the fixed set of operations the agent may call.

Every entry carries the model-facing name and description, a pydantic
argument model (its JSON schema is what the model is bound to) and the
async executor. execute_tool() is the only way the agent loop runs a tool:
it validates arguments, injects the owner, and always returns a result
envelope; nothing raises past it.
"""

import logging
from datetime import datetime

from pydantic import ValidationError

from tools.expenses import (
    AddExpenseArgs,
    DeleteExpenseArgs,
    MonthArgs,
    add_expense,
    delete_expense,
    get_expense_stats,
    get_monthly_expenses,
)
from tools.market_data import NoArgs, get_btc_price, get_market_info, get_usd_rate

logger = logging.getLogger(__name__)

TOOL_REGISTRY = {
    "add_expense": {
        "name": "add_expense",
        "description": (
            "Adds a new expense transaction for the user. "
            "Use when the user mentions spending money. "
            'Examples: "Sáng nay ăn phở hết 50k", "Mua cafe 30 nghìn".'
        ),
        "args_model": AddExpenseArgs,
        "executor": add_expense,
    },
    "get_monthly_expenses": {
        "name": "get_monthly_expenses",
        "description": (
            "Gets the expense summary for a month: total, per-category subtotals "
            "and the 5 most recent transactions. "
            'Use when the user asks: "Tháng này tiêu bao nhiêu?", "Chi tiêu tháng 10".'
        ),
        "args_model": MonthArgs,
        "executor": get_monthly_expenses,
    },
    "get_expense_stats": {
        "name": "get_expense_stats",
        "description": (
            "Gets expense statistics for a month: categories ranked by total with "
            "percentage share and the top category. "
            'Use when the user asks: "Phân tích chi tiêu", "Tôi tiêu nhiều nhất vào gì?".'
        ),
        "args_model": MonthArgs,
        "executor": get_expense_stats,
    },
    "delete_expense": {
        "name": "delete_expense",
        "description": (
            "Deletes expense transaction(s). deleteAll=true removes everything; "
            "otherwise category removes the most recent of that category; "
            "with neither, removes the most recent transaction(s). "
            'Examples: "Xóa giao dịch cuối", "Xóa chi tiêu Food", "Xóa hết".'
        ),
        "args_model": DeleteExpenseArgs,
        "executor": delete_expense,
    },
    "get_btc_price": {
        "name": "get_btc_price",
        "description": (
            "Gets the current BTC/USD Bitcoin price. "
            'Use when the user asks: "Giá Bitcoin hôm nay?", "BTC price?".'
        ),
        "args_model": NoArgs,
        "executor": get_btc_price,
    },
    "get_usd_rate": {
        "name": "get_usd_rate",
        "description": (
            "Gets the current USD to VND exchange rate (buy/sell). "
            'Use when the user asks: "Giá USD hôm nay?", "Tỷ giá đô la?".'
        ),
        "args_model": NoArgs,
        "executor": get_usd_rate,
    },
    "get_market_info": {
        "name": "get_market_info",
        "description": (
            "Gets a market overview with both the Bitcoin price and the USD/VND rate. "
            'Use when the user asks: "Thị trường hôm nay thế nào?".'
        ),
        "args_model": NoArgs,
        "executor": get_market_info,
    },
}


def tool_definitions() -> list[dict]:
    """Tool schemas in the shape the Anthropic Messages API expects."""
    return [
        {
            "name": spec["name"],
            "description": spec["description"],
            "input_schema": spec["args_model"].model_json_schema(by_alias=True),
        }
        for spec in TOOL_REGISTRY.values()
    ]


def _validation_message(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        where = ".".join(str(p) for p in err.get("loc", ())) or "arguments"
        parts.append(f"{where}: {err.get('msg', 'invalid')}")
    return "; ".join(parts)


async def execute_tool(name: str, arguments: dict | None, owner_id: str) -> dict:
    """
    Runs one tool call for owner_id and returns its result envelope.

    Unknown names, invalid arguments and executor crashes come back as
    failed envelopes (UNKNOWN_TOOL / VALIDATION_ERROR / EXECUTION_ERROR).
    """
    tool_result_id = f"{name}_{int(datetime.utcnow().timestamp())}"
    spec = TOOL_REGISTRY.get(name)
    if spec is None:
        logger.warning("model requested unknown tool %r", name)
        return {
            "tool_name": name,
            "success": False,
            "tool_result_id": tool_result_id,
            "error": "UNKNOWN_TOOL",
            "message": f"Tool {name} not found",
        }

    try:
        args = spec["args_model"].model_validate(arguments or {})
    except ValidationError as exc:
        logger.info("invalid arguments for %s: %s", name, exc)
        return {
            "tool_name": name,
            "success": False,
            "tool_result_id": tool_result_id,
            "error": "VALIDATION_ERROR",
            "message": f"Invalid arguments for {name}: {_validation_message(exc)}",
        }

    try:
        return await spec["executor"](owner_id=owner_id, **args.model_dump())
    except Exception as exc:
        logger.exception("tool %s crashed for owner=%s", name, owner_id)
        return {
            "tool_name": name,
            "success": False,
            "tool_result_id": tool_result_id,
            "error": "EXECUTION_ERROR",
            "message": f"Error executing {name}: {exc}",
        }
