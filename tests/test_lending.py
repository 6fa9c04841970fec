from datetime import date, timedelta
from decimal import Decimal

import pytest
from sqlalchemy.orm import Session

from library_admin.errors import (
    AlreadyPaid,
    AlreadyReturned,
    MemberNotActive,
    NoCopiesAvailable,
    NotFound,
    ValidationError,
)
from library_admin.extensions import db
from library_admin.lending import LendingEngine, parse_rate
from library_admin.models import Book, Fine, PaymentStatus, Transaction, TransactionStatus
from library_admin.overdue import days_late, fine_for, is_overdue, status_for
from library_admin.store import SqlAlchemyStore


def book_state(book_id):
    db.session.expire_all()
    book = db.session.get(Book, book_id)
    open_loans = Transaction.query.filter(
        Transaction.book_id == book_id, Transaction.open_clause()
    ).count()
    return book.available_copies, open_loans, book.total_copies


def test_issue_then_return_on_time(ctx, make_engine, clock):
    engine = make_engine()
    day0 = clock.today

    txn = engine.issue_book(ctx['book_id'], ctx['member_id'], ctx['staff_id'], 14)

    assert txn.status == TransactionStatus.ISSUED
    assert txn.issue_date == day0
    assert txn.due_date == day0 + timedelta(days=14)
    assert txn.staff_id == ctx['staff_id']
    assert book_state(ctx['book_id'])[0] == 1

    clock.advance(10)
    returned, fine_amount = engine.return_book(txn.id)

    assert returned.status == TransactionStatus.RETURNED
    assert returned.return_date == day0 + timedelta(days=10)
    assert fine_amount == Decimal('0.00')
    assert book_state(ctx['book_id'])[0] == 2
    assert Fine.query.count() == 0


def test_default_loan_period_is_fourteen_days(ctx, make_engine, clock):
    txn = make_engine().issue_book(ctx['book_id'], ctx['member_id'], ctx['staff_id'])
    assert txn.due_date == clock.today + timedelta(days=14)


def test_overdue_return_records_unpaid_fine(ctx, make_engine, clock):
    engine = make_engine(fine_per_day='50')
    txn = engine.issue_book(ctx['book_id'], ctx['member_id'], ctx['staff_id'], 14)

    clock.advance(20)
    returned, fine_amount = engine.return_book(txn.id)

    assert fine_amount == Decimal('300.00')
    fine = Fine.query.filter_by(transaction_id=txn.id).one()
    assert fine.fine_amount == Decimal('300.00')
    assert fine.payment_status == PaymentStatus.UNPAID
    assert returned.fine is fine


def test_fine_is_days_late_times_rate(ctx, make_engine, clock):
    engine = make_engine(fine_per_day='12.5')
    txn = engine.issue_book(ctx['book_id'], ctx['member_id'], ctx['staff_id'], 7)

    clock.advance(10)
    _, fine_amount = engine.return_book(txn.id)

    assert fine_amount == Decimal('37.50')


def test_return_on_due_date_is_not_fined(ctx, make_engine, clock):
    engine = make_engine()
    txn = engine.issue_book(ctx['book_id'], ctx['member_id'], ctx['staff_id'], 5)

    clock.advance(5)
    _, fine_amount = engine.return_book(txn.id)

    assert fine_amount == 0
    assert Fine.query.count() == 0


def test_second_return_is_rejected_without_double_credit(ctx, make_engine):
    engine = make_engine()
    txn = engine.issue_book(ctx['book_id'], ctx['member_id'], ctx['staff_id'])
    engine.return_book(txn.id)

    with pytest.raises(AlreadyReturned):
        engine.return_book(txn.id)

    assert book_state(ctx['book_id']) == (2, 0, 2)


def test_copies_are_conserved_across_issues_and_returns(ctx, make_engine, clock):
    engine = make_engine()
    book_id = ctx['book_id']
    members = [ctx['member_id'], ctx['member2_id']]
    open_ids = []

    def check():
        available, open_loans, total = book_state(book_id)
        assert available + open_loans == total
        assert 0 <= available <= total

    for member_id in members:
        open_ids.append(engine.issue_book(book_id, member_id, ctx['staff_id']).id)
        check()

    with pytest.raises(NoCopiesAvailable):
        engine.issue_book(book_id, ctx['member_id'], ctx['staff_id'])
    check()

    clock.advance(3)
    engine.return_book(open_ids.pop(0))
    check()
    open_ids.append(engine.issue_book(book_id, ctx['member_id'], ctx['staff_id']).id)
    check()
    for txn_id in open_ids:
        engine.return_book(txn_id)
        check()

    assert book_state(book_id) == (2, 0, 2)


def test_inactive_member_cannot_borrow(ctx, make_engine):
    with pytest.raises(MemberNotActive) as excinfo:
        make_engine().issue_book(ctx['book_id'], ctx['suspended_id'], ctx['staff_id'])

    assert excinfo.value.kind == 'PreconditionFailed'
    assert book_state(ctx['book_id']) == (2, 0, 2)
    assert Transaction.query.count() == 0


@pytest.mark.parametrize('field', ['book_id', 'member_id', 'staff_id'])
def test_unknown_references_are_not_found(ctx, make_engine, field):
    args = {'book_id': ctx['book_id'], 'member_id': ctx['member_id'], 'staff_id': ctx['staff_id']}
    args[field] = 9999

    with pytest.raises(NotFound):
        make_engine().issue_book(**args)

    assert book_state(ctx['book_id']) == (2, 0, 2)


def test_unknown_transaction_cannot_be_returned(ctx, make_engine):
    with pytest.raises(NotFound):
        make_engine().return_book(9999)


@pytest.mark.parametrize('days', [0, 91, -1, 'abc', True, 14.5])
def test_loan_days_out_of_bounds(ctx, make_engine, days):
    with pytest.raises(ValidationError):
        make_engine().issue_book(ctx['book_id'], ctx['member_id'], ctx['staff_id'], days)
    assert Transaction.query.count() == 0


def test_loan_days_accepts_numeric_strings(ctx, make_engine, clock):
    txn = make_engine().issue_book(ctx['book_id'], ctx['member_id'], ctx['staff_id'], '30')
    assert txn.due_date == clock.today + timedelta(days=30)


def test_overdue_is_derived_from_today():
    due = date(2025, 1, 15)

    assert not is_overdue(due, due)
    assert is_overdue(due, due + timedelta(days=1))
    assert status_for(None, due, due) == 'Issued'
    assert status_for(None, due, due + timedelta(days=1)) == 'Overdue'
    assert status_for(due + timedelta(days=3), due, due + timedelta(days=30)) == 'Returned'
    assert days_late(due, due - timedelta(days=2)) == 0
    assert days_late(due, due + timedelta(days=3)) == 3
    assert fine_for(3, Decimal('0.335')) == Decimal('1.01')


def test_open_transaction_status_is_recomputed_not_stored(ctx, make_engine, clock):
    txn = make_engine().issue_book(ctx['book_id'], ctx['member_id'], ctx['staff_id'], 14)
    due = txn.due_date

    assert txn.effective_status(due) == 'Issued'
    assert txn.effective_status(due + timedelta(days=1)) == 'Overdue'
    assert txn.days_overdue(due + timedelta(days=4)) == 4
    assert txn.effective_status(due) == 'Issued'
    assert txn.status == TransactionStatus.ISSUED
    assert Transaction.query.filter(Transaction.overdue_clause(due + timedelta(days=1))).count() == 1
    assert Transaction.query.filter(Transaction.overdue_clause(due)).count() == 0
    assert Transaction.query.filter(Transaction.on_loan_clause(due)).count() == 1
    assert Transaction.query.filter(Transaction.on_loan_clause(due + timedelta(days=1))).count() == 0


def test_last_copy_race_has_one_winner(ctx, make_engine):
    book_id = ctx['last_copy_id']
    loser = make_engine()
    read_book = loser.store.get_book
    winners = []

    def get_book_then_lose_race(ident, for_update=False):
        book = read_book(ident, for_update)
        if not winners:
            with Session(db.engine) as other:
                winners.append(make_engine(session=other).issue_book(book_id, ctx['member2_id'], ctx['staff_id']).id)
        return book

    loser.store.get_book = get_book_then_lose_race

    with pytest.raises(NoCopiesAvailable):
        loser.issue_book(book_id, ctx['member_id'], ctx['staff_id'])

    assert book_state(book_id) == (0, 1, 1)
    only = Transaction.query.filter_by(book_id=book_id).one()
    assert only.id == winners[0]
    assert only.member_id == ctx['member2_id']


def test_concurrent_return_has_one_winner(ctx, make_engine, clock):
    engine = make_engine()
    txn_id = engine.issue_book(ctx['book_id'], ctx['member_id'], ctx['staff_id'], 3).id
    clock.advance(5)

    loser = make_engine()
    read_transaction = loser.store.get_transaction
    winner_fines = []

    def get_transaction_then_lose_race(ident, for_update=False):
        txn = read_transaction(ident, for_update)
        if not winner_fines:
            with Session(db.engine) as other:
                winner_fines.append(make_engine(session=other).return_book(txn_id)[1])
        return txn

    loser.store.get_transaction = get_transaction_then_lose_race

    with pytest.raises(AlreadyReturned):
        loser.return_book(txn_id)

    assert winner_fines == [Decimal('100.00')]
    assert book_state(ctx['book_id']) == (2, 0, 2)
    assert Fine.query.filter_by(transaction_id=txn_id).count() == 1


def test_pay_fine_once(ctx, make_engine, clock):
    engine = make_engine()
    txn = engine.issue_book(ctx['book_id'], ctx['member_id'], ctx['staff_id'], 1)
    clock.advance(4)
    engine.return_book(txn.id)
    fine_id = Fine.query.one().id

    clock.advance(1)
    fine = engine.pay_fine(fine_id)

    assert fine.payment_status == PaymentStatus.PAID
    assert fine.payment_date == clock.today
    with pytest.raises(AlreadyPaid):
        engine.pay_fine(fine_id)
    with pytest.raises(NotFound):
        engine.pay_fine(9999)


@pytest.mark.parametrize('value', [None, 'abc', '-1', 'NaN', True])
def test_fine_rate_must_be_configured(value):
    with pytest.raises(ValueError):
        parse_rate(value)


def test_engine_rejects_default_outside_bounds(ctx):
    with pytest.raises(ValueError):
        LendingEngine(SqlAlchemyStore(db.session), fine_per_day='1', default_loan_days=120)


def test_concurrent_fine_payment_has_one_winner(ctx, make_engine, clock):
    engine = make_engine()
    txn = engine.issue_book(ctx['book_id'], ctx['member_id'], ctx['staff_id'], 1)
    clock.advance(3)
    engine.return_book(txn.id)
    fine_id = Fine.query.one().id
    paid_on = clock.today

    loser = make_engine()
    read_fine = loser.store.get_fine
    winners = []

    def get_fine_then_lose_race(ident, for_update=False):
        fine = read_fine(ident, for_update)
        if not winners:
            with Session(db.engine) as other:
                winners.append(make_engine(session=other).pay_fine(fine_id).payment_date)
            clock.advance(1)
        return fine

    loser.store.get_fine = get_fine_then_lose_race

    with pytest.raises(AlreadyPaid):
        loser.pay_fine(fine_id)

    db.session.expire_all()
    assert winners == [paid_on]
    assert db.session.get(Fine, fine_id).payment_date == paid_on
