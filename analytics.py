"""Aggregates over a snapshot of weeks, used by the dashboard and analytics views."""

from __future__ import annotations

from collections import OrderedDict
from typing import Dict, List, Sequence

from chain import to_cents


def income_usage(week) -> float:
    """Percent of the week's income already spent, one decimal place."""
    return round(week.total_expenses / (week.income or 1) * 100, 1)


def monthly_spending(weeks: Sequence) -> List[Dict]:
    """Expenses summed by the calendar month each week starts in, oldest first."""
    totals: Dict[str, float] = {}
    labels: Dict[str, str] = {}
    for week in weeks:
        key = week.start_date.strftime("%Y-%m")
        labels[key] = week.start_date.strftime("%b %Y")
        totals[key] = totals.get(key, 0.0) + week.total_expenses
    return [
        {"month": key, "label": labels[key], "spending": to_cents(totals[key])}
        for key in sorted(totals)
    ]


def weekly_comparison(weeks: Sequence) -> List[Dict]:
    return [
        {
            "week_id": week.id,
            "start_date": week.start_date.isoformat(),
            "income": week.income,
            "expenses": week.total_expenses,
        }
        for week in weeks
    ]


def category_breakdown(weeks: Sequence) -> List[Dict]:
    """Expense amounts summed per activity label, in first-seen order."""
    totals: "OrderedDict[str, float]" = OrderedDict()
    for week in weeks:
        for expense in week.expenses:
            totals[expense.activity] = totals.get(expense.activity, 0.0) + expense.amount
    return [{"name": name, "value": to_cents(value)} for name, value in totals.items()]


def trend(weeks: Sequence) -> List[Dict]:
    return [
        {
            "week_id": week.id,
            "start_date": week.start_date.isoformat(),
            "income": week.income,
            "expenses": week.total_expenses,
            "net": to_cents(week.income - week.total_expenses),
        }
        for week in weeks
    ]


def summarize(weeks: Sequence) -> Dict:
    total_income = to_cents(sum(w.income for w in weeks))
    total_expenses = to_cents(sum(w.total_expenses for w in weeks))
    avg_weekly = to_cents(total_expenses / len(weeks)) if weeks else 0.0
    savings_rate = (
        round((total_income - total_expenses) / total_income * 100, 1) if total_income > 0 else 0.0
    )
    return {
        "total_income": total_income,
        "total_expenses": total_expenses,
        "average_weekly_spending": avg_weekly,
        "savings_rate": savings_rate,
        "weeks": len(weeks),
    }


def build_report(weeks: Sequence) -> Dict:
    """Everything the analytics view shows, in one dict."""
    return {
        "summary": summarize(weeks),
        "monthly_spending": monthly_spending(weeks),
        "weekly_comparison": weekly_comparison(weeks),
        "category_breakdown": category_breakdown(weeks),
        "trend": trend(weeks),
        "income_usage": [
            {"week_id": week.id, "percent": income_usage(week)} for week in weeks
        ],
    }
