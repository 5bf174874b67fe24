"""Data access for weeks and expenses.

Every function is scoped by the owning user's id: a row that belongs to
somebody else is reported exactly like a row that does not exist. Writes
commit immediately; callers own rollback on failure.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Dict, List, Tuple

from sqlalchemy import func

from chain import ChainLink, compute_week_chain
from errors import NotFoundError
from models import db, Expense, Week

logger = logging.getLogger(__name__)


# ------------------------------
# Reads
# ------------------------------

def get_weeks(user_id) -> List[Week]:
    return (
        Week.query.filter_by(user_id=user_id)
        .order_by(Week.start_date, Week.created_at, Week.id)
        .all()
    )


def get_week(user_id, week_id) -> Week:
    week = Week.query.filter_by(id=week_id, user_id=user_id).first()
    if week is None:
        raise NotFoundError(f"Week {week_id} not found")
    return week


def get_expenses(user_id, week_id) -> List[Expense]:
    return (
        Expense.query.filter_by(week_id=week_id, user_id=user_id)
        .order_by(Expense.created_at, Expense.id)
        .all()
    )


def get_expenses_by_week(user_id) -> Dict[int, List[Expense]]:
    """All of a user's expenses grouped by week id, in creation order."""
    grouped: Dict[int, List[Expense]] = defaultdict(list)
    rows = (
        Expense.query.filter_by(user_id=user_id)
        .order_by(Expense.created_at, Expense.id)
        .all()
    )
    for expense in rows:
        grouped[expense.week_id].append(expense)
    return grouped


def get_expense(user_id, expense_id) -> Expense:
    expense = Expense.query.filter_by(id=expense_id, user_id=user_id).first()
    if expense is None:
        raise NotFoundError(f"Expense {expense_id} not found")
    return expense


# ------------------------------
# Writes
# ------------------------------

def create_week(user_id, start_date, end_date, initial_balance, income) -> Week:
    week = Week(
        user_id=user_id,
        start_date=start_date,
        end_date=end_date,
        initial_balance=initial_balance,
        income=income,
    )
    db.session.add(week)
    db.session.commit()
    return week


def update_week_income(user_id, week_id, income) -> Week:
    week = get_week(user_id, week_id)
    week.income = income
    db.session.commit()
    return week


def add_expense(user_id, week_id, activity, amount, paid=False) -> Expense:
    # make sure the week is ours before attaching anything to it
    get_week(user_id, week_id)
    expense = Expense(
        user_id=user_id,
        week_id=week_id,
        activity=activity,
        amount=amount,
        paid=paid,
    )
    db.session.add(expense)
    db.session.commit()
    return expense


def update_expense(user_id, expense_id, patch) -> Expense:
    expense = get_expense(user_id, expense_id)
    for field in ("activity", "amount", "paid"):
        if field in patch:
            setattr(expense, field, patch[field])
    db.session.commit()
    return expense


def delete_expense(user_id, expense_id) -> None:
    expense = get_expense(user_id, expense_id)
    db.session.delete(expense)
    db.session.commit()


def delete_week(user_id, week_id) -> None:
    week = get_week(user_id, week_id)
    # relationship cascade removes the week's expenses
    db.session.delete(week)
    db.session.commit()


def delete_all_weeks(user_id) -> int:
    """Delete every week of a user along with all their expenses."""
    # bulk deletes skip ORM cascades, so expenses go first
    Expense.query.filter_by(user_id=user_id).delete(synchronize_session=False)
    count = Week.query.filter_by(user_id=user_id).delete(synchronize_session=False)
    db.session.commit()
    return count


# ------------------------------
# Chain recompute
# ------------------------------

def expense_totals(user_id) -> Dict[int, float]:
    rows = (
        db.session.query(Expense.week_id, func.coalesce(func.sum(Expense.amount), 0.0))
        .filter(Expense.user_id == user_id)
        .group_by(Expense.week_id)
        .all()
    )
    return {week_id: float(total) for week_id, total in rows}


def recompute_week_chain(user_id) -> List[Tuple[int, float]]:
    """Carry each week's remaining balance into the next week's initial balance.

    Reads, recomputes and writes in a single transaction. Returns the
    ``(week_id, initial_balance)`` pairs that were changed, which is empty
    when the chain was already consistent.
    """
    weeks = get_weeks(user_id)
    totals = expense_totals(user_id)
    links = [
        ChainLink(
            week_id=w.id,
            initial_balance=w.initial_balance,
            income=w.income,
            total_expenses=totals.get(w.id, 0.0),
        )
        for w in weeks
    ]

    updates = compute_week_chain(links)
    by_id = {w.id: w for w in weeks}
    for week_id, balance in updates:
        by_id[week_id].initial_balance = balance
    db.session.commit()

    if updates:
        logger.debug("recomputed %d week balance(s) for user %s", len(updates), user_id)
    return updates
