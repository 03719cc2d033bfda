"""
Aggregations over one owner's documents.

These work on lists already fetched from the store. All timestamps are naive
UTC and "now" is passed in by the caller; weeks start on Sunday.
"""

import calendar
from collections import OrderedDict
from datetime import datetime, time, timedelta
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from database import as_naive_utc

Window = Tuple[datetime, datetime]

DAY_NAMES = ["Sun", "Mon", "Tue", "Wed", "Thu", "Fri", "Sat"]


def _number(value) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


def created_at(item: dict) -> datetime:
    return as_naive_utc(item["created_at"])


def sum_by_predicate(items: Iterable[dict], predicate: Callable[[dict], bool]) -> float:
    return sum(_number(item.get("amount")) for item in items if predicate(item))


def sum_amounts(items: Iterable[dict]) -> float:
    return sum_by_predicate(items, lambda item: True)


# ---------------------------
# Date windows
# ---------------------------
def start_of_day(moment: datetime) -> datetime:
    return datetime.combine(moment.date(), time.min)


def end_of_day(moment: datetime) -> datetime:
    return datetime.combine(moment.date(), time.max)


def week_start(now: datetime) -> datetime:
    days_since_sunday = (now.weekday() + 1) % 7
    return start_of_day(now - timedelta(days=days_since_sunday))


def month_window(year: int, month: int) -> Window:
    last_day = calendar.monthrange(year, month)[1]
    return datetime(year, month, 1), datetime.combine(datetime(year, month, last_day).date(), time.max)


def _shift_month(year: int, month: int, delta: int) -> Tuple[int, int]:
    index = year * 12 + (month - 1) + delta
    return index // 12, index % 12 + 1


def window(name: str, now: datetime, start: Optional[datetime] = None, end: Optional[datetime] = None) -> Window:
    """Named window relative to ``now``. ``custom`` takes the caller's ``start`` and ``end``."""
    if name == "custom":
        if start is None or end is None:
            raise ValueError("custom window needs start and end")
        if start > end:
            raise ValueError("custom window starts after it ends")
        return start, end
    if name == "today":
        return start_of_day(now), end_of_day(now)
    if name == "yesterday":
        day = now - timedelta(days=1)
        return start_of_day(day), end_of_day(day)
    if name == "this_week":
        first = week_start(now)
        return first, end_of_day(first + timedelta(days=6))
    if name == "last_week":
        first = week_start(now) - timedelta(days=7)
        return first, end_of_day(first + timedelta(days=6))
    if name == "this_month":
        return month_window(now.year, now.month)
    if name == "last_month":
        return month_window(*_shift_month(now.year, now.month, -1))
    raise ValueError(f"unknown window: {name}")


def in_window(span: Window) -> Callable[[dict], bool]:
    start, end = span
    return lambda item: start <= created_at(item) <= end


def period_totals(items: List[dict], now: datetime) -> Dict[str, float]:
    totals = {
        "today": sum_by_predicate(items, in_window(window("today", now))),
        "thisWeek": sum_by_predicate(items, in_window(window("this_week", now))),
        "lastWeek": sum_by_predicate(items, in_window(window("last_week", now))),
        "thisMonth": sum_by_predicate(items, in_window(window("this_month", now))),
        "lastMonth": sum_by_predicate(items, in_window(window("last_month", now))),
    }
    totals["weekDiff"] = totals["thisWeek"] - totals["lastWeek"]
    totals["monthDiff"] = totals["thisMonth"] - totals["lastMonth"]
    return {key: round(value, 2) for key, value in totals.items()}


# ---------------------------
# Ledger
# ---------------------------
def ledger_stats(entries: Iterable[dict]) -> Dict[str, Dict[str, float]]:
    """
    Outstanding balance and active entry count per category slug.

    ``total`` is the sum of ``amount - paid_amount`` over entries that are not
    completed, so ``partial`` entries add to it. ``count`` only includes
    entries whose status is ``active``. The same formula is used for
    deposit-style categories, where ``paid_amount`` normally stays 0.
    """
    stats: Dict[str, Dict[str, float]] = OrderedDict()
    for entry in entries:
        slot = stats.setdefault(entry["type"], {"total": 0.0, "count": 0})
        if entry.get("status") == "completed":
            continue
        slot["total"] += _number(entry.get("amount")) - _number(entry.get("paid_amount"))
        if entry.get("status") == "active":
            slot["count"] += 1
    for slot in stats.values():
        slot["total"] = round(slot["total"], 2)
    return dict(stats)


# ---------------------------
# Rankings and breakdowns
# ---------------------------
def top_n(items: Iterable[dict], key: str, n: int) -> List[dict]:
    # sorted() is stable, so ties keep their incoming (newest first) order.
    return sorted(items, key=lambda item: _number(item.get(key)), reverse=True)[:n]


def group_totals(items: Iterable[dict], field: str, n: Optional[int] = None, default: str = "Other") -> List[dict]:
    totals: Dict[str, float] = {}
    for item in items:
        name = item.get(field) or default
        totals[name] = totals.get(name, 0.0) + _number(item.get("amount"))
    ranked = sorted(
        ({"name": name, "value": round(value, 2)} for name, value in totals.items() if value > 0),
        key=lambda row: row["value"],
        reverse=True,
    )
    return ranked[:n] if n is not None else ranked


def daily_comparison(items: List[dict], now: datetime) -> List[dict]:
    this_start = week_start(now)
    last_start = this_start - timedelta(days=7)
    rows = []
    for offset, day in enumerate(DAY_NAMES):
        this_day = this_start + timedelta(days=offset)
        last_day = last_start + timedelta(days=offset)
        rows.append({
            "day": day,
            "thisWeek": round(sum_by_predicate(items, in_window((this_day, end_of_day(this_day)))), 2),
            "lastWeek": round(sum_by_predicate(items, in_window((last_day, end_of_day(last_day)))), 2),
        })
    return rows


def monthly_trend(items: List[dict], now: datetime, months: int = 6) -> List[dict]:
    rows = []
    for back in range(months - 1, -1, -1):
        year, month = _shift_month(now.year, now.month, -back)
        rows.append({
            "month": calendar.month_abbr[month],
            "year": year,
            "total": round(sum_by_predicate(items, in_window(month_window(year, month))), 2),
        })
    return rows


def expense_summary(items: List[dict], now: datetime) -> dict:
    total = sum_amounts(items)
    count = len(items)
    highest = top_n(items, "amount", 1)
    return {
        "total": round(total, 2),
        "count": count,
        "average": round(total / count, 2) if count else 0,
        "todayTotal": round(sum_by_predicate(items, in_window(window("today", now))), 2),
        "thisWeekTotal": round(sum_by_predicate(items, in_window(window("this_week", now))), 2),
        "thisMonthTotal": round(sum_by_predicate(items, in_window(window("this_month", now))), 2),
        "highest": (
            {"title": highest[0].get("title"), "amount": _number(highest[0].get("amount"))}
            if highest else {"title": "-", "amount": 0}
        ),
    }
