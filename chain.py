"""Week chain balance propagation.

Each week starts with whatever the previous week (by start date) had left:

    remaining = initial_balance + income - total_expenses
    next.initial_balance = remaining

The first week keeps its stored initial balance. ``compute_week_chain`` is a
pure function so it can be tested without a database; the backend runs it
inside a single transaction and writes back only the balances that moved.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Sequence, Tuple


def to_cents(value: float) -> float:
    """Round a currency amount to 2 decimal places."""
    # + 0.0 turns -0.0 into 0.0
    return round(float(value), 2) + 0.0


@dataclass(frozen=True)
class ChainLink:
    week_id: int
    initial_balance: float
    income: float
    total_expenses: float

    def remaining(self, initial_balance: float | None = None) -> float:
        start = self.initial_balance if initial_balance is None else initial_balance
        return to_cents(start + self.income - self.total_expenses)


def compute_week_chain(links: Sequence[ChainLink]) -> List[Tuple[int, float]]:
    """Return ``(week_id, new_initial_balance)`` for every link whose balance changes.

    ``links`` must already be in start-date order. A recomputed balance feeds
    the next link, so a change early in the chain ripples all the way down.
    Running the result back through this function yields no updates.
    """
    updates: List[Tuple[int, float]] = []
    carried: float | None = None

    for link in links:
        if carried is None:
            balance = link.initial_balance
        else:
            balance = carried
            if to_cents(link.initial_balance) != balance:
                updates.append((link.week_id, balance))
        carried = link.remaining(balance)

    return updates
