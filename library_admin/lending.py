import logging
from datetime import date, timedelta
from decimal import Decimal, InvalidOperation

from .errors import (
    AlreadyPaid,
    AlreadyReturned,
    CapacityError,
    MemberNotActive,
    NoCopiesAvailable,
    ValidationError,
)
from .models import Fine, MemberStatus, PaymentStatus, Transaction, TransactionStatus
from .overdue import days_late, fine_for

logger = logging.getLogger(__name__)


def parse_rate(value) -> Decimal:
    """Turn a configured per-day fine into a non-negative Decimal."""
    if value is None or isinstance(value, bool):
        raise ValueError('FINE_PER_DAY must be configured')
    try:
        rate = Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f'FINE_PER_DAY is not a number: {value!r}')
    if not rate.is_finite() or rate < 0:
        raise ValueError(f'FINE_PER_DAY must be zero or positive, got {value!r}')
    return rate


class LendingEngine:
    """Issue and return books while keeping copy counts and fines consistent.

    Each operation is a single unit of work against ``store``: a rejected
    call leaves books, members, transactions and fines exactly as they
    were. ``clock`` returns the current day and is injectable so due dates
    and fines can be checked for any day.
    """

    def __init__(self, store, fine_per_day, default_loan_days=14, min_loan_days=1,
                 max_loan_days=90, clock=date.today):
        if not min_loan_days <= default_loan_days <= max_loan_days:
            raise ValueError('default_loan_days must lie within min_loan_days..max_loan_days')
        self.store = store
        self.fine_per_day = parse_rate(fine_per_day)
        self.default_loan_days = default_loan_days
        self.min_loan_days = min_loan_days
        self.max_loan_days = max_loan_days
        self.clock = clock

    def loan_days(self, value=None) -> int:
        if value is None:
            return self.default_loan_days
        if isinstance(value, bool):
            raise ValidationError('Loan days must be a whole number')
        if isinstance(value, str) and value.strip().isdigit():
            value = int(value)
        if not isinstance(value, int):
            raise ValidationError('Loan days must be a whole number')
        if not self.min_loan_days <= value <= self.max_loan_days:
            raise ValidationError(
                f'Loan days must be between {self.min_loan_days} and {self.max_loan_days}'
            )
        return value

    def issue_book(self, book_id, member_id, staff_id, loan_days=None) -> Transaction:
        days = self.loan_days(loan_days)

        def issue(store):
            book = store.get_book(book_id, for_update=True)
            member = store.get_member(member_id)
            store.get_staff(staff_id)
            if member.status != MemberStatus.ACTIVE:
                raise MemberNotActive(f'Member {member.id} is {member.status}, only Active members can borrow')
            try:
                store.decrement_availability(book.id)
            except CapacityError:
                raise NoCopiesAvailable(f'No copies of "{book.title}" are available')
            today = self.clock()
            txn = store.add(Transaction(
                book_id=book.id,
                member_id=member.id,
                staff_id=staff_id,
                issue_date=today,
                due_date=today + timedelta(days=days),
                status=TransactionStatus.ISSUED,
            ))
            store.flush()
            return txn

        txn = self.store.run_in_transaction(issue)
        logger.info(f"Issued book {book_id} to member {member_id} as transaction {txn.id}, due {txn.due_date}")
        return txn

    def return_book(self, transaction_id):
        """Close an open transaction.

        Returns ``(transaction, fine_amount)``. A late return records an
        Unpaid fine of days late times the per-day rate; an on-time return
        records no fine and reports ``Decimal('0.00')``.
        """

        def close(store):
            txn = store.get_transaction(transaction_id, for_update=True)
            if txn.status == TransactionStatus.RETURNED:
                raise AlreadyReturned(f'Transaction {txn.id} was already returned on {txn.return_date}')
            today = self.clock()
            txn.return_date = today
            txn.status = TransactionStatus.RETURNED
            # claim the transaction row before the book is touched
            store.flush()
            store.increment_availability(txn.book_id)

            amount = fine_for(0, self.fine_per_day)
            late = days_late(txn.due_date, today)
            if late > 0:
                amount = fine_for(late, self.fine_per_day)
                store.add(Fine(transaction=txn, fine_amount=amount, payment_status=PaymentStatus.UNPAID))
            store.flush()
            return txn, amount

        txn, amount = self.store.run_in_transaction(close)
        if amount > 0:
            logger.info(f"Returned transaction {transaction_id} late, fine {amount}")
        else:
            logger.info(f"Returned transaction {transaction_id} on time")
        return txn, amount

    def pay_fine(self, fine_id) -> Fine:
        def pay(store):
            fine = store.get_fine(fine_id, for_update=True)
            if fine.payment_status == PaymentStatus.PAID:
                raise AlreadyPaid(f'Fine {fine.id} was paid on {fine.payment_date}')
            fine.payment_status = PaymentStatus.PAID
            fine.payment_date = self.clock()
            store.flush()
            return fine

        fine = self.store.run_in_transaction(pay)
        logger.info(f"Fine {fine_id} paid")
        return fine
