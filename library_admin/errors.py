class LibraryError(Exception):
    """Base class for every rejected library operation."""

    kind = 'LibraryError'
    reason = None
    status_code = 500
    default_message = 'Library operation failed'

    def __init__(self, message=None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message

    def to_dict(self):
        payload = {'error': self.kind, 'message': self.message}
        if self.reason:
            payload['reason'] = self.reason
        return payload


class NotFound(LibraryError):
    kind = 'NotFound'
    status_code = 404
    default_message = 'Resource not found'


class ValidationError(LibraryError):
    kind = 'ValidationError'
    status_code = 400
    default_message = 'Invalid request'


class DuplicateEntry(ValidationError):
    reason = 'Duplicate'
    status_code = 409
    default_message = 'Record already exists'


class PreconditionFailed(LibraryError):
    kind = 'PreconditionFailed'
    status_code = 409
    default_message = 'Operation not allowed in the current state'


class NoCopiesAvailable(PreconditionFailed):
    reason = 'NoCopiesAvailable'
    default_message = 'No copies of this book are available'


class MemberNotActive(PreconditionFailed):
    reason = 'MemberNotActive'
    default_message = 'Member is not active'


class AlreadyReturned(PreconditionFailed):
    reason = 'AlreadyReturned'
    status_code = 400
    default_message = 'This book has already been returned'


class CapacityError(PreconditionFailed):
    reason = 'CapacityExceeded'
    default_message = 'Availability would leave the range 0..total_copies'


class OpenTransactions(PreconditionFailed):
    reason = 'OpenTransactions'
    default_message = 'Record still has unreturned books'


class AlreadyPaid(PreconditionFailed):
    reason = 'AlreadyPaid'
    default_message = 'Fine has already been paid'


class ConflictRetryExhausted(LibraryError):
    kind = 'ConflictRetryExhausted'
    status_code = 409
    default_message = 'Concurrent update could not be resolved, try again'


class StoreUnavailable(LibraryError):
    kind = 'StoreUnavailable'
    status_code = 503
    default_message = 'Database is unavailable'
