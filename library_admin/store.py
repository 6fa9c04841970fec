import logging

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from .errors import (
    CapacityError,
    ConflictRetryExhausted,
    DuplicateEntry,
    LibraryError,
    NotFound,
    StoreUnavailable,
)
from .models import Book, Fine, Member, Staff, Transaction

logger = logging.getLogger(__name__)


class SqlAlchemyStore:
    """Catalog, membership and lending rows behind one session.

    Work passed to ``run_in_transaction`` either commits as a whole or
    leaves the database untouched. Book, Transaction and Fine rows are version
    counted, so a write that lost a race shows up as ``StaleDataError``
    and the whole unit of work is run again on fresh rows.
    """

    def __init__(self, session, max_attempts=3):
        if max_attempts < 1:
            raise ValueError('max_attempts must be at least 1')
        self.session = session
        self.max_attempts = max_attempts

    def run_in_transaction(self, work):
        attempt = 0
        while True:
            attempt += 1
            try:
                result = work(self)
                self.session.commit()
                return result
            except StaleDataError:
                self.session.rollback()
                if attempt >= self.max_attempts:
                    logger.error(f"Concurrent update still conflicting after {attempt} attempts")
                    raise ConflictRetryExhausted()
                logger.warning(f"Concurrent update detected, retrying (attempt {attempt}/{self.max_attempts})")
            except LibraryError:
                self.session.rollback()
                raise
            except SQLAlchemyError as e:
                self.session.rollback()
                logger.error(f"Database error, transaction rolled back: {e}")
                raise StoreUnavailable() from e
            except Exception:
                self.session.rollback()
                raise

    def _get(self, model, ident, label, for_update):
        if for_update:
            obj = self.session.get(model, ident, with_for_update=True, populate_existing=True)
        else:
            obj = self.session.get(model, ident)
        if obj is None:
            raise NotFound(f'{label} not found')
        return obj

    def get_book(self, book_id, for_update=False) -> Book:
        return self._get(Book, book_id, 'Book', for_update)

    def get_member(self, member_id) -> Member:
        return self._get(Member, member_id, 'Member', False)

    def get_staff(self, staff_id) -> Staff:
        return self._get(Staff, staff_id, 'Staff member', False)

    def get_transaction(self, transaction_id, for_update=False) -> Transaction:
        return self._get(Transaction, transaction_id, 'Transaction', for_update)

    def get_fine(self, fine_id, for_update=False) -> Fine:
        return self._get(Fine, fine_id, 'Fine', for_update)

    def decrement_availability(self, book_id) -> Book:
        book = self.get_book(book_id)
        if book.available_copies <= 0:
            raise CapacityError(f'Book {book_id} has no copies left to lend')
        book.available_copies -= 1
        return book

    def increment_availability(self, book_id) -> Book:
        book = self.get_book(book_id)
        if book.available_copies >= book.total_copies:
            raise CapacityError(f'Book {book_id} already has all {book.total_copies} copies on the shelf')
        book.available_copies += 1
        return book

    def add(self, obj):
        self.session.add(obj)
        return obj

    def flush(self):
        self.session.flush()


def commit_unique(session, message):
    """Commit, turning a unique constraint violation into ``DuplicateEntry``.

    Duplicate checks run before the insert, so two requests racing on the
    same key both pass them; the database constraint decides the loser.
    """
    try:
        session.commit()
    except IntegrityError as e:
        session.rollback()
        logger.warning(f"Unique constraint rejected write: {e.orig}")
        raise DuplicateEntry(message) from e
