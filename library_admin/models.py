from datetime import date

from sqlalchemy import and_, not_

from .extensions import db
from .overdue import ISSUED, RETURNED, days_late, status_for


class StaffRole:
    ADMIN = 'Admin'
    LIBRARIAN = 'Librarian'
    ALL = (ADMIN, LIBRARIAN)


class StaffStatus:
    ACTIVE = 'Active'
    INACTIVE = 'Inactive'


class MemberStatus:
    ACTIVE = 'Active'
    EXPIRED = 'Expired'
    SUSPENDED = 'Suspended'
    ALL = (ACTIVE, EXPIRED, SUSPENDED)


class TransactionStatus:
    ISSUED = ISSUED
    RETURNED = RETURNED


class PaymentStatus:
    UNPAID = 'Unpaid'
    PAID = 'Paid'
    ALL = (UNPAID, PAID)


def _iso(value):
    return value.isoformat() if value else None


def _money(value):
    return float(value) if value is not None else None


book_author = db.Table(
    'book_author',
    db.Column('book_id', db.Integer, db.ForeignKey('book.id', ondelete='CASCADE'), primary_key=True),
    db.Column('author_id', db.Integer, db.ForeignKey('author.id'), primary_key=True),
)


class Staff(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(80), unique=True, nullable=False)
    password_hash = db.Column(db.String(255), nullable=False)
    first_name = db.Column(db.String(100), nullable=False)
    last_name = db.Column(db.String(100), nullable=False)
    email = db.Column(db.String(150), unique=True, nullable=False)
    role = db.Column(db.String(20), nullable=False, default=StaffRole.LIBRARIAN)
    status = db.Column(db.String(20), nullable=False, default=StaffStatus.ACTIVE)
    hired_date = db.Column(db.Date, nullable=False, default=date.today)

    @property
    def full_name(self):
        return f'{self.first_name} {self.last_name}'

    def to_dict(self):
        return {
            'staff_id': self.id,
            'username': self.username,
            'first_name': self.first_name,
            'last_name': self.last_name,
            'email': self.email,
            'role': self.role,
        }


class Category(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    category_name = db.Column(db.String(100), unique=True, nullable=False)

    def to_dict(self):
        return {'category_id': self.id, 'category_name': self.category_name}


class Author(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    author_name = db.Column(db.String(150), unique=True, nullable=False)


class Book(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    isbn = db.Column(db.String(20), unique=True, nullable=False)
    title = db.Column(db.String(255), nullable=False)
    category_id = db.Column(db.Integer, db.ForeignKey('category.id'), nullable=False)
    publisher = db.Column(db.String(150))
    publication_year = db.Column(db.Integer)
    price = db.Column(db.Numeric(10, 2))
    total_copies = db.Column(db.Integer, nullable=False)
    available_copies = db.Column(db.Integer, nullable=False)
    version_id = db.Column(db.Integer, nullable=False)

    category = db.relationship('Category', backref='books')
    authors = db.relationship('Author', secondary=book_author, backref='books', order_by='Author.author_name')

    __table_args__ = (
        db.CheckConstraint(
            'available_copies >= 0 AND available_copies <= total_copies',
            name='ck_book_availability',
        ),
    )
    __mapper_args__ = {'version_id_col': version_id}

    def to_dict(self):
        return {
            'book_id': self.id,
            'isbn': self.isbn,
            'title': self.title,
            'category_id': self.category_id,
            'category_name': self.category.category_name if self.category else None,
            'publisher': self.publisher,
            'publication_year': self.publication_year,
            'price': _money(self.price),
            'total_copies': self.total_copies,
            'available_copies': self.available_copies,
            'authors': [a.author_name for a in self.authors],
        }


class Member(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    first_name = db.Column(db.String(100), nullable=False)
    last_name = db.Column(db.String(100), nullable=False)
    email = db.Column(db.String(150), unique=True, nullable=False)
    phone = db.Column(db.String(30))
    address = db.Column(db.String(255))
    membership_type = db.Column(db.String(50), nullable=False, default='General')
    status = db.Column(db.String(20), nullable=False, default=MemberStatus.ACTIVE)
    join_date = db.Column(db.Date, nullable=False)
    expiry_date = db.Column(db.Date, nullable=False)

    @property
    def full_name(self):
        return f'{self.first_name} {self.last_name}'

    def to_dict(self):
        return {
            'member_id': self.id,
            'first_name': self.first_name,
            'last_name': self.last_name,
            'email': self.email,
            'phone': self.phone,
            'address': self.address,
            'membership_type': self.membership_type,
            'status': self.status,
            'join_date': _iso(self.join_date),
            'expiry_date': _iso(self.expiry_date),
        }


class Transaction(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    book_id = db.Column(db.Integer, db.ForeignKey('book.id'), nullable=False)
    member_id = db.Column(db.Integer, db.ForeignKey('member.id'), nullable=False)
    staff_id = db.Column(db.Integer, db.ForeignKey('staff.id'), nullable=False)
    issue_date = db.Column(db.Date, nullable=False)
    due_date = db.Column(db.Date, nullable=False)
    return_date = db.Column(db.Date, nullable=True)
    status = db.Column(db.String(20), nullable=False, default=TransactionStatus.ISSUED)
    version_id = db.Column(db.Integer, nullable=False)

    book = db.relationship('Book', backref='transactions')
    member = db.relationship('Member', backref='transactions')
    staff = db.relationship('Staff')
    fine = db.relationship('Fine', back_populates='transaction', uselist=False)

    __mapper_args__ = {'version_id_col': version_id}

    @classmethod
    def open_clause(cls):
        return cls.return_date.is_(None)

    @classmethod
    def overdue_clause(cls, today):
        # SQL form of overdue.is_overdue for open transactions
        return and_(cls.return_date.is_(None), cls.due_date < today)

    @classmethod
    def on_loan_clause(cls, today):
        return and_(cls.open_clause(), not_(cls.overdue_clause(today)))

    def effective_status(self, today=None):
        return status_for(self.return_date, self.due_date, today or date.today())

    def days_overdue(self, today=None):
        if self.return_date is not None:
            return days_late(self.due_date, self.return_date)
        return days_late(self.due_date, today or date.today())

    def to_dict(self, today=None):
        today = today or date.today()
        return {
            'transaction_id': self.id,
            'book_id': self.book_id,
            'book_title': self.book.title if self.book else None,
            'isbn': self.book.isbn if self.book else None,
            'member_id': self.member_id,
            'member_name': self.member.full_name if self.member else None,
            'member_email': self.member.email if self.member else None,
            'staff_id': self.staff_id,
            'staff_name': self.staff.full_name if self.staff else None,
            'issue_date': _iso(self.issue_date),
            'due_date': _iso(self.due_date),
            'return_date': _iso(self.return_date),
            'status': self.effective_status(today),
            'days_overdue': self.days_overdue(today),
            'fine_amount': _money(self.fine.fine_amount) if self.fine else 0.0,
        }


class Fine(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    transaction_id = db.Column(db.Integer, db.ForeignKey('transaction.id'), unique=True, nullable=False)
    fine_amount = db.Column(db.Numeric(10, 2), nullable=False)
    payment_status = db.Column(db.String(20), nullable=False, default=PaymentStatus.UNPAID)
    payment_date = db.Column(db.Date, nullable=True)
    version_id = db.Column(db.Integer, nullable=False)

    transaction = db.relationship('Transaction', back_populates='fine')

    __table_args__ = (
        db.CheckConstraint('fine_amount >= 0', name='ck_fine_amount'),
    )
    __mapper_args__ = {'version_id_col': version_id}

    def to_dict(self):
        txn = self.transaction
        return {
            'fine_id': self.id,
            'transaction_id': self.transaction_id,
            'member_id': txn.member_id if txn else None,
            'member_name': txn.member.full_name if txn and txn.member else None,
            'book_title': txn.book.title if txn and txn.book else None,
            'fine_amount': _money(self.fine_amount),
            'payment_status': self.payment_status,
            'payment_date': _iso(self.payment_date),
        }
