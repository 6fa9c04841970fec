"""Day arithmetic shared by every place that reports lateness.

Overdue is never stored: it is recomputed from the due date and the
current day each time a transaction is shown, counted or fined.
"""
from datetime import date
from decimal import ROUND_HALF_UP, Decimal

ISSUED = 'Issued'
RETURNED = 'Returned'
OVERDUE = 'Overdue'

CENTS = Decimal('0.01')


def is_overdue(due_date: date, today: date) -> bool:
    return due_date < today


def days_late(due_date: date, on_date: date) -> int:
    return max(0, (on_date - due_date).days)


def status_for(return_date, due_date: date, today: date) -> str:
    if return_date is not None:
        return RETURNED
    return OVERDUE if is_overdue(due_date, today) else ISSUED


def fine_for(days: int, per_day: Decimal) -> Decimal:
    return (Decimal(days) * per_day).quantize(CENTS, rounding=ROUND_HALF_UP)
