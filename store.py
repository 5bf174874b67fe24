"""Per-user application state: the last fetched snapshot of weeks and expenses.

A ``BudgetStore`` never patches its snapshot in place. Every mutation goes
through the same cycle:

    validate -> one write -> recompute the week chain -> fetch everything
    -> swap in the new snapshot -> fix up the selected week

Input is validated before the database is touched. If any step fails the
session is rolled back and the previous snapshot stays as it was. All
mutations for one user hold the store's lock, so a recompute always sees the
write that preceded it.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from dataclasses import asdict, dataclass, replace
from datetime import date, datetime, timedelta
from typing import Callable, Dict, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError

import backend
from chain import to_cents
from errors import AuthenticationError, BackendError, BudgetError, NotFoundError, ValidationError
from models import db

logger = logging.getLogger(__name__)

DATE_FORMAT = "%Y-%m-%d"


# ------------------------------
# Snapshot types
# ------------------------------

@dataclass(frozen=True)
class ExpenseView:
    id: int
    week_id: int
    activity: str
    amount: float
    paid: bool

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class WeekView:
    id: int
    start_date: date
    end_date: date
    initial_balance: float
    income: float
    expenses: Tuple[ExpenseView, ...] = ()

    @property
    def total_expenses(self) -> float:
        # paid expenses still count, the flag is only a marker
        return to_cents(sum(e.amount for e in self.expenses))

    @property
    def current_balance(self) -> float:
        return to_cents(self.initial_balance + self.income)

    @property
    def remaining_balance(self) -> float:
        return to_cents(self.initial_balance + self.income - self.total_expenses)

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
            "initial_balance": self.initial_balance,
            "income": self.income,
            "expenses": [e.as_dict() for e in self.expenses],
            "total_expenses": self.total_expenses,
            "current_balance": self.current_balance,
            "remaining_balance": self.remaining_balance,
        }


@dataclass(frozen=True)
class Settings:
    currency: str = "USD"
    default_weekly_income: float = 500.0

    def as_dict(self) -> dict:
        return asdict(self)


# ------------------------------
# Input validation
# ------------------------------

def parse_amount(value, name: str, allow_negative: bool = False) -> float:
    """Parse a currency amount, rejecting blanks, non-numbers and non-finite values."""
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{name} must be a number")
    if isinstance(value, str):
        value = value.strip()
        if not value:
            raise ValidationError(f"{name} is required")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be a number")
    if not math.isfinite(number):
        raise ValidationError(f"{name} must be a number")
    if number < 0 and not allow_negative:
        raise ValidationError(f"{name} cannot be negative")
    return to_cents(number)


def parse_date(value, name: str) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not value or not isinstance(value, str):
        raise ValidationError(f"{name} is required")
    try:
        return datetime.strptime(value.strip(), DATE_FORMAT).date()
    except ValueError:
        raise ValidationError(f"{name} must be a date in YYYY-MM-DD format")


def parse_activity(value) -> str:
    activity = value.strip() if isinstance(value, str) else ""
    if not activity:
        raise ValidationError("activity is required")
    return activity


def parse_flag(value, name: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "1", "yes", "on"):
        return True
    if isinstance(value, str) and value.strip().lower() in ("false", "0", "no", "off", ""):
        return False
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    raise ValidationError(f"{name} must be true or false")


# ------------------------------
# Store
# ------------------------------

class BudgetStore:
    """In-memory view of one user's weeks, kept in step with the database.

    ``identity`` returns the authenticated user's id, or ``None`` when there
    is no session. Without a session every operation fails with
    ``AuthenticationError`` and the state is cleared.
    """

    def __init__(self, identity: Callable[[], Optional[int]], settings: Optional[Settings] = None):
        self._identity = identity
        self._lock = threading.RLock()
        self._weeks: Tuple[WeekView, ...] = ()
        self._current_week_id: Optional[int] = None
        self.loaded = False
        self.settings = settings or Settings()

    # -- read side --------------------------------------------------------

    @property
    def weeks(self) -> Tuple[WeekView, ...]:
        return self._weeks

    @property
    def current_week_id(self) -> Optional[int]:
        return self._current_week_id

    @property
    def current_week(self) -> Optional[WeekView]:
        return self.find_week(self._current_week_id)

    def find_week(self, week_id) -> Optional[WeekView]:
        for week in self._weeks:
            if week.id == week_id:
                return week
        return None

    def as_dict(self) -> dict:
        weeks, current = self._weeks, self._current_week_id
        start, end = self.suggest_next_range()
        return {
            "weeks": [w.as_dict() for w in weeks],
            "current_week_id": current,
            "settings": self.settings.as_dict(),
            "next_range": {"start_date": start.isoformat(), "end_date": end.isoformat()},
        }

    # -- local state ------------------------------------------------------

    def clear(self) -> None:
        with self._lock:
            self._weeks, self._current_week_id = (), None
            self.loaded = False

    def select_week(self, week_id) -> WeekView:
        with self._lock:
            week = self.find_week(week_id)
            if week is None:
                raise NotFoundError(f"Week {week_id} not found")
            self._current_week_id = week.id
            return week

    def update_settings(self, **changes) -> Settings:
        unknown = set(changes) - {"currency", "default_weekly_income"}
        if unknown:
            raise ValidationError(f"Unknown setting(s): {', '.join(sorted(unknown))}")
        if "currency" in changes:
            currency = changes["currency"]
            if not isinstance(currency, str) or not currency.strip():
                raise ValidationError("currency is required")
            changes["currency"] = currency.strip().upper()
        if "default_weekly_income" in changes:
            changes["default_weekly_income"] = parse_amount(
                changes["default_weekly_income"], "default_weekly_income"
            )
        with self._lock:
            self.settings = replace(self.settings, **changes)
            return self.settings

    def suggest_next_range(self, today: Optional[date] = None) -> Tuple[date, date]:
        """Date range for the next week: the seven days after the selected week."""
        weeks = self._weeks
        base = self.current_week or (weeks[-1] if weeks else None)
        if base is None:
            start = today or date.today()
            return start, start + timedelta(days=6)
        return base.end_date + timedelta(days=1), base.end_date + timedelta(days=7)

    # -- refresh ----------------------------------------------------------

    def refresh(self) -> Tuple[WeekView, ...]:
        """Pull the full snapshot and replace the current one in one step."""
        with self._lock:
            user_id = self._identity()
            if user_id is None:
                self.clear()
                return self._weeks
            try:
                snapshot = self._fetch(user_id)
            except SQLAlchemyError as exc:
                db.session.rollback()
                logger.exception("refresh failed for user %s", user_id)
                raise BackendError() from exc
            self._replace(snapshot)
            return self._weeks

    # -- mutations --------------------------------------------------------

    def create_week(self, start_date, end_date, initial_balance=None, income=None) -> WeekView:
        start = parse_date(start_date, "start_date")
        end = parse_date(end_date, "end_date")
        if start > end:
            raise ValidationError("start_date must be on or before end_date")
        initial = None if initial_balance is None else parse_amount(
            initial_balance, "initial_balance", allow_negative=True
        )
        weekly_income = None if income is None else parse_amount(income, "income")

        def write(user_id):
            # carry over from whatever week is selected right now
            opening = initial
            if opening is None:
                selected = self.current_week
                opening = selected.remaining_balance if selected else 0.0
            amount = self.settings.default_weekly_income if weekly_income is None else weekly_income
            week = backend.create_week(user_id, start, end, to_cents(opening), to_cents(amount))
            return week.id

        week_id = self._run("create_week", write, select=True)
        return self.find_week(week_id)

    def delete_week(self, week_id) -> None:
        self._run("delete_week", lambda user_id: backend.delete_week(user_id, week_id))

    def add_expense(self, week_id, activity, amount, paid=False) -> ExpenseView:
        label = parse_activity(activity)
        value = parse_amount(amount, "amount")
        is_paid = parse_flag(paid, "paid")

        def write(user_id):
            expense = backend.add_expense(user_id, week_id, label, value, is_paid)
            return expense.week_id, expense.id

        _, expense_id = self._run("add_expense", write, select=lambda r: r[0])
        return self._find_expense(expense_id)

    def update_expense(self, expense_id, activity=None, amount=None, paid=None) -> ExpenseView:
        patch: Dict[str, object] = {}
        if activity is not None:
            patch["activity"] = parse_activity(activity)
        if amount is not None:
            patch["amount"] = parse_amount(amount, "amount")
        if paid is not None:
            patch["paid"] = parse_flag(paid, "paid")
        if not patch:
            raise ValidationError("Nothing to update")

        self._run(
            "update_expense",
            lambda user_id: backend.update_expense(user_id, expense_id, patch),
        )
        return self._find_expense(expense_id)

    def toggle_expense_paid(self, expense_id) -> ExpenseView:
        def write(user_id):
            expense = backend.get_expense(user_id, expense_id)
            backend.update_expense(user_id, expense_id, {"paid": not expense.paid})

        self._run("toggle_expense_paid", write)
        return self._find_expense(expense_id)

    def delete_expense(self, expense_id) -> None:
        self._run("delete_expense", lambda user_id: backend.delete_expense(user_id, expense_id))

    def update_week_income(self, week_id, income) -> WeekView:
        value = parse_amount(income, "income")

        def write(user_id):
            return backend.update_week_income(user_id, week_id, value).id

        self._run("update_week_income", write, select=True)
        return self.find_week(week_id)

    def reset_all(self) -> int:
        """Delete every week and expense of the user."""
        return self._run("reset_all", backend.delete_all_weeks)

    # -- internals --------------------------------------------------------

    def _require_user(self) -> int:
        user_id = self._identity()
        if user_id is None:
            self.clear()
            raise AuthenticationError()
        return user_id

    def _run(self, action, write, select=None):
        """One write, then recompute and refresh. ``select`` picks the week to show."""
        with self._lock:
            user_id = self._require_user()
            try:
                result = write(user_id)
                backend.recompute_week_chain(user_id)
                snapshot = self._fetch(user_id)
            except BudgetError:
                db.session.rollback()
                raise
            except SQLAlchemyError as exc:
                db.session.rollback()
                logger.exception("%s failed for user %s", action, user_id)
                raise BackendError() from exc

            if select is True:
                prefer = result
            elif callable(select):
                prefer = select(result)
            else:
                prefer = None
            self._replace(snapshot, prefer)
            logger.info("%s done for user %s", action, user_id)
            return result

    def _fetch(self, user_id) -> Tuple[WeekView, ...]:
        expenses = backend.get_expenses_by_week(user_id)
        return tuple(
            WeekView(
                id=w.id,
                start_date=w.start_date,
                end_date=w.end_date,
                initial_balance=to_cents(w.initial_balance),
                income=to_cents(w.income),
                expenses=tuple(
                    ExpenseView(
                        id=e.id,
                        week_id=e.week_id,
                        activity=e.activity,
                        amount=to_cents(e.amount),
                        paid=bool(e.paid),
                    )
                    for e in expenses.get(w.id, ())
                ),
            )
            for w in backend.get_weeks(user_id)
        )

    def _replace(self, snapshot: Tuple[WeekView, ...], prefer=None) -> None:
        ids = {w.id for w in snapshot}
        if prefer in ids:
            current = prefer
        elif self._current_week_id in ids:
            current = self._current_week_id
        else:
            # fall back to the most recent week
            current = snapshot[-1].id if snapshot else None
        self._weeks, self._current_week_id = snapshot, current
        self.loaded = True

    def _find_expense(self, expense_id) -> Optional[ExpenseView]:
        for week in self._weeks:
            for expense in week.expenses:
                if expense.id == expense_id:
                    return expense
        return None


class StoreRegistry:
    """One ``BudgetStore`` per user id, created on first use.

    Stores of users not seen for ``idle_timeout`` seconds are dropped on the
    next lookup, so an expired session does not pin its snapshot in memory.
    """

    def __init__(
        self,
        settings_factory: Callable[[], Settings] = Settings,
        idle_timeout: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._settings_factory = settings_factory
        self._idle_timeout = idle_timeout
        self._clock = clock
        self._stores: Dict[int, BudgetStore] = {}
        self._last_seen: Dict[int, float] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._stores)

    def for_user(self, user_id: int, identity: Callable[[], Optional[int]]) -> BudgetStore:
        with self._lock:
            now = self._clock()
            self._evict_idle(now, keep=user_id)
            store = self._stores.get(user_id)
            if store is None:
                store = BudgetStore(identity, self._settings_factory())
                self._stores[user_id] = store
            self._last_seen[user_id] = now
            return store

    def discard(self, user_id) -> None:
        with self._lock:
            store = self._stores.pop(user_id, None)
            self._last_seen.pop(user_id, None)
        if store is not None:
            store.clear()

    def _evict_idle(self, now: float, keep) -> None:
        if self._idle_timeout is None:
            return
        for user_id, seen in list(self._last_seen.items()):
            if user_id != keep and now - seen > self._idle_timeout:
                del self._last_seen[user_id]
                store = self._stores.pop(user_id, None)
                if store is not None:
                    store.clear()
                logger.debug("dropped idle store for user %s", user_id)
