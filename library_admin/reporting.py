import calendar
from datetime import date

from sqlalchemy import case, extract, func, select

from .extensions import db
from .models import Book, Category, Fine, Member, MemberStatus, PaymentStatus, Transaction
from .overdue import fine_for


def _money(value):
    return float(value or 0)


def daily_statistics(today=None):
    today = today or date.today()
    session = db.session

    issued_today = session.scalar(select(func.count(Transaction.id)).where(Transaction.issue_date == today))
    returned_today = session.scalar(select(func.count(Transaction.id)).where(Transaction.return_date == today))
    open_loans = session.scalar(select(func.count(Transaction.id)).where(Transaction.open_clause()))
    overdue = session.scalar(select(func.count(Transaction.id)).where(Transaction.overdue_clause(today)))
    active_members = session.scalar(
        select(func.count(Member.id)).where(Member.status == MemberStatus.ACTIVE)
    )
    titles, copies, available = session.execute(
        select(
            func.count(Book.id),
            func.coalesce(func.sum(Book.total_copies), 0),
            func.coalesce(func.sum(Book.available_copies), 0),
        )
    ).one()
    pending = session.scalar(
        select(func.sum(Fine.fine_amount)).where(Fine.payment_status == PaymentStatus.UNPAID)
    )
    collected = session.scalar(
        select(func.sum(Fine.fine_amount)).where(
            Fine.payment_status == PaymentStatus.PAID, Fine.payment_date == today
        )
    )

    return {
        'date': today.isoformat(),
        'today_issues': issued_today,
        'today_returns': returned_today,
        'currently_issued': open_loans,
        'overdue_books': overdue,
        'active_members': active_members,
        'total_books': titles,
        'total_copies': int(copies),
        'available_books': int(available),
        'pending_fines': _money(pending),
        'fines_collected_today': _money(collected),
    }


def overdue_transactions(fine_per_day, today=None):
    today = today or date.today()
    rows = Transaction.query.filter(Transaction.overdue_clause(today)).order_by(Transaction.due_date).all()
    report = []
    for txn in rows:
        days = txn.days_overdue(today)
        report.append({
            'transaction_id': txn.id,
            'book_id': txn.book_id,
            'title': txn.book.title,
            'isbn': txn.book.isbn,
            'member_id': txn.member_id,
            'member_name': txn.member.full_name,
            'email': txn.member.email,
            'phone': txn.member.phone,
            'issue_date': txn.issue_date.isoformat(),
            'due_date': txn.due_date.isoformat(),
            'days_overdue': days,
            'estimated_fine': float(fine_for(days, fine_per_day)),
        })
    return report


def popular_books(limit=10):
    borrowed = func.count(Transaction.id).label('times_borrowed')
    rows = db.session.execute(
        select(Book, borrowed)
        .join(Transaction, Transaction.book_id == Book.id)
        .group_by(Book.id)
        .order_by(borrowed.desc(), Book.title)
        .limit(limit)
    ).all()
    return [{
        'book_id': book.id,
        'title': book.title,
        'isbn': book.isbn,
        'authors': ', '.join(a.author_name for a in book.authors),
        'category_name': book.category.category_name if book.category else None,
        'times_borrowed': times,
    } for book, times in rows]


def category_statistics():
    book_count = func.count(Book.id).label('book_count')
    rows = db.session.execute(
        select(
            Category.id,
            Category.category_name,
            book_count,
            func.coalesce(func.sum(Book.total_copies), 0),
            func.coalesce(func.sum(Book.available_copies), 0),
        )
        .outerjoin(Book, Book.category_id == Category.id)
        .group_by(Category.id, Category.category_name)
        .order_by(book_count.desc(), Category.category_name)
    ).all()
    return [{
        'category_id': category_id,
        'category_name': name,
        'book_count': count,
        'total_copies': int(total),
        'available_copies': int(available),
    } for category_id, name, count, total, available in rows]


def monthly_report(year, today=None):
    today = today or date.today()
    month = extract('month', Transaction.issue_date).label('month')
    rows = db.session.execute(
        select(
            month,
            func.count(Transaction.id),
            func.sum(case((Transaction.return_date.isnot(None), 1), else_=0)),
            func.sum(case((Transaction.overdue_clause(today), 1), else_=0)),
        )
        .where(extract('year', Transaction.issue_date) == year)
        .group_by(month)
        .order_by(month)
    ).all()
    return [{
        'month': int(m),
        'month_name': calendar.month_name[int(m)],
        'total_issues': issues,
        'total_returns': int(returns or 0),
        'overdue': int(overdue or 0),
    } for m, issues, returns, overdue in rows]


def member_statistics():
    def count_status(status):
        return func.sum(case((Member.status == status, 1), else_=0))

    rows = db.session.execute(
        select(
            Member.membership_type,
            func.count(Member.id),
            count_status(MemberStatus.ACTIVE),
            count_status(MemberStatus.EXPIRED),
            count_status(MemberStatus.SUSPENDED),
        )
        .group_by(Member.membership_type)
        .order_by(Member.membership_type)
    ).all()
    return [{
        'membership_type': kind,
        'total': total,
        'active': int(active or 0),
        'expired': int(expired or 0),
        'suspended': int(suspended or 0),
    } for kind, total, active, expired, suspended in rows]


def revenue_report(start_date=None, end_date=None):
    query = (
        select(Fine.payment_date, func.count(Fine.id), func.sum(Fine.fine_amount))
        .where(Fine.payment_status == PaymentStatus.PAID)
        .group_by(Fine.payment_date)
        .order_by(Fine.payment_date.desc())
    )
    if start_date:
        query = query.where(Fine.payment_date >= start_date)
    if end_date:
        query = query.where(Fine.payment_date <= end_date)
    return [{
        'date': paid_on.isoformat(),
        'transactions': count,
        'total_revenue': _money(total),
    } for paid_on, count, total in db.session.execute(query).all()]
