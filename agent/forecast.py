"""
Forecast Engine — end-of-month spending projection.

Builds a gap-free cumulative daily series for the current month (day 1
through today), fits an ordinary least-squares line through it and reads
the line at the last day of the month. With a single point the projection
falls back to the simple daily average. The prediction is never allowed to
drop below what has already been spent, then it is compared with the
budget:

    predicted >= budget        → Danger
    predicted >= 0.8 * budget  → Warning
    otherwise                  → Safe

Amounts stay exact integers until the final rounding of the prediction.
"""

import calendar
import logging
from datetime import date
from statistics import linear_regression
from typing import Literal, Optional

from pydantic import BaseModel

import config
import ledger
from currency import format_vnd_short

logger = logging.getLogger(__name__)

WARNING_RATIO = 0.8

RiskStatus = Literal["Safe", "Warning", "Danger"]


class DailyPoint(BaseModel):
    day: int
    cumulative_amount: int


class ForecastResult(BaseModel):
    as_of_day: int
    spent_so_far: int
    predicted_total: int
    status: RiskStatus
    narrative: str
    method: Literal["no_data", "simple_average", "linear_regression"]
    daily_series: list[DailyPoint]
    budget: int
    headroom: int
    days_in_month: int
    month: int
    year: int


def build_daily_series(transactions: list[dict], through_day: int) -> list[DailyPoint]:
    """Cumulative totals for days 1..through_day; days without spending repeat the running total."""
    per_day: dict[int, int] = {}
    for tx in transactions:
        day = date.fromisoformat(tx["date"]).day
        per_day[day] = per_day.get(day, 0) + abs(tx["amount"])

    series = []
    running = 0
    for day in range(1, through_day + 1):
        running += per_day.get(day, 0)
        series.append(DailyPoint(day=day, cumulative_amount=running))
    return series


def project_total(series: list[DailyPoint], days_in_month: int) -> tuple[float, str]:
    """
    Raw (unclamped, unrounded) month-end projection and the method used.
    Fewer than two points → average per elapsed day × days_in_month.
    """
    spent = series[-1].cumulative_amount
    if len(series) < 2:
        elapsed = series[-1].day
        return spent / elapsed * days_in_month, "simple_average"

    slope, intercept = linear_regression(
        [p.day for p in series],
        [p.cumulative_amount for p in series],
    )
    logger.debug("regression y = %.2fx + %.2f", slope, intercept)
    return slope * days_in_month + intercept, "linear_regression"


def classify_risk(predicted_total: int, budget: int) -> RiskStatus:
    if predicted_total >= budget:
        return "Danger"
    if predicted_total >= WARNING_RATIO * budget:
        return "Warning"
    return "Safe"


def _narrative(status: RiskStatus, predicted: int, budget: int) -> str:
    headroom = budget - predicted
    if status == "Danger":
        return (
            f"⚠️ CẢNH BÁO: Với tốc độ này, cuối tháng bạn sẽ chi tiêu {format_vnd_short(predicted)}, "
            f"vượt ngân sách {format_vnd_short(max(0, -headroom))}!"
        )
    if status == "Warning":
        return (
            f"⚡ CHÚ Ý: Bạn đang chi tiêu nhanh. Dự đoán cuối tháng: {format_vnd_short(predicted)} "
            f"({predicted / budget * 100:.0f}% ngân sách). Còn dư {format_vnd_short(max(0, headroom))}."
        )
    return (
        f"✅ AN TOÀN: Với tốc độ này, cuối tháng bạn sẽ chi {format_vnd_short(predicted)}. "
        f"Còn dư {format_vnd_short(max(0, headroom))}."
    )


def predict_end_of_month(
    owner_id: str = "default",
    budget: Optional[int] = None,
    today: Optional[date] = None,
) -> ForecastResult:
    """
    Forecast for the month containing `today` (defaults to the current date).
    budget falls back to DEFAULT_MONTHLY_BUDGET; it must be positive.
    """
    today = today or date.today()
    budget = config.default_budget() if budget is None else int(budget)
    if budget <= 0:
        raise ValueError("budget must be greater than zero")

    days_in_month = calendar.monthrange(today.year, today.month)[1]
    transactions = ledger.transactions_between(owner_id, today.replace(day=1), today)
    logger.info(
        "forecast owner=%s month=%d/%d day=%d transactions=%d",
        owner_id, today.month, today.year, today.day, len(transactions),
    )

    if not transactions:
        return ForecastResult(
            as_of_day=today.day,
            spent_so_far=0,
            predicted_total=0,
            status="Safe",
            narrative="Chưa có giao dịch nào trong tháng này.",
            method="no_data",
            daily_series=[],
            budget=budget,
            headroom=budget,
            days_in_month=days_in_month,
            month=today.month,
            year=today.year,
        )

    series = build_daily_series(transactions, today.day)
    spent = series[-1].cumulative_amount
    raw_total, method = project_total(series, days_in_month)

    # A flat or falling trend cannot un-spend money.
    predicted = round(max(raw_total, spent))
    status = classify_risk(predicted, budget)

    return ForecastResult(
        as_of_day=today.day,
        spent_so_far=spent,
        predicted_total=predicted,
        status=status,
        narrative=_narrative(status, predicted, budget),
        method=method,
        daily_series=series,
        budget=budget,
        headroom=budget - predicted,
        days_in_month=days_in_month,
        month=today.month,
        year=today.year,
    )
