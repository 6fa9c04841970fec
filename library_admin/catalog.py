import logging

from flask import Blueprint, jsonify, request
from sqlalchemy import or_

from . import reporting
from .auth import roles_required, staff_only
from .errors import DuplicateEntry, NotFound, OpenTransactions, PreconditionFailed, ValidationError
from .extensions import db
from .models import Author, Book, Category, StaffRole, Transaction
from .store import commit_unique
from .validation import (
    MAX_ID,
    json_body,
    optional_str,
    parse_id,
    parse_int,
    parse_money,
    parse_str,
    query_int,
    require_fields,
)

logger = logging.getLogger(__name__)

bp = Blueprint('catalog', __name__, url_prefix='/api')

DUPLICATE_ISBN = 'Book with this ISBN already exists'


def get_book_or_404(book_id):
    book = db.session.get(Book, parse_id(book_id, 'book_id'))
    if book is None:
        raise NotFound('Book not found')
    return book


def author_names(value):
    if isinstance(value, str):
        names = value.split(',')
    elif isinstance(value, list):
        names = [parse_str(name, 'authors') for name in value]
    else:
        raise ValidationError('Authors must be a comma-separated string or a list')
    names = [name.strip() for name in names if name.strip()]
    if not names:
        raise ValidationError('At least one author is required')
    return names


def authors_for(names):
    authors = []
    for name in names:
        author = Author.query.filter_by(author_name=name).first()
        if author is None:
            author = Author(author_name=name)
            db.session.add(author)
        authors.append(author)
    return authors


def parse_year(value):
    return parse_int(value, 'publication_year', minimum=0, maximum=9999)


def get_category(category_id):
    category = db.session.get(Category, parse_id(category_id, 'category_id'))
    if category is None:
        raise NotFound('Category not found')
    return category


@bp.route('/books', methods=['GET'])
@staff_only
def list_books():
    books = Book.query.order_by(Book.id.desc()).all()
    return jsonify({'data': [book.to_dict() for book in books], 'count': len(books)}), 200


@bp.route('/books/search', methods=['GET'])
@staff_only
def search_books():
    text = request.args.get('q', '').strip()
    query = Book.query
    if text:
        pattern = f'%{text}%'
        query = (
            query.outerjoin(Book.category)
            .outerjoin(Book.authors)
            .filter(or_(
                Book.title.ilike(pattern),
                Book.isbn.ilike(pattern),
                Book.publisher.ilike(pattern),
                Category.category_name.ilike(pattern),
                Author.author_name.ilike(pattern),
            ))
            .distinct()
        )
    books = query.order_by(Book.title).all()
    return jsonify({'data': [book.to_dict() for book in books], 'count': len(books)}), 200


@bp.route('/books/popular', methods=['GET'])
@staff_only
def popular_books():
    limit = query_int('limit', 10, minimum=1, maximum=100)
    return jsonify({'data': reporting.popular_books(limit)}), 200


@bp.route('/books/<int:book_id>', methods=['GET'])
@staff_only
def get_book(book_id):
    return jsonify(get_book_or_404(book_id).to_dict()), 200


@bp.route('/books', methods=['POST'])
@roles_required(StaffRole.ADMIN, StaffRole.LIBRARIAN)
def add_book():
    data = json_body()
    require_fields(data, 'isbn', 'title', 'category_id', 'total_copies', 'authors')

    isbn = parse_str(data['isbn'], 'isbn')
    if Book.query.filter_by(isbn=isbn).first():
        raise DuplicateEntry(DUPLICATE_ISBN)

    total = parse_int(data['total_copies'], 'total_copies', minimum=1, maximum=MAX_ID)
    book = Book(
        isbn=isbn,
        title=parse_str(data['title'], 'title'),
        category=get_category(data['category_id']),
        publisher=optional_str(data, 'publisher'),
        publication_year=parse_year(data['publication_year']) if data.get('publication_year') else None,
        price=parse_money(data['price'], 'price') if data.get('price') is not None else None,
        total_copies=total,
        available_copies=total,
        authors=authors_for(author_names(data['authors'])),
    )
    db.session.add(book)
    commit_unique(db.session, DUPLICATE_ISBN)
    logger.info(f"Book added: {book.isbn} ({book.title}), {total} copies")
    return jsonify({'message': 'Book added successfully', **book.to_dict()}), 201


@bp.route('/books/<int:book_id>', methods=['PUT'])
@roles_required(StaffRole.ADMIN, StaffRole.LIBRARIAN)
def update_book(book_id):
    book = get_book_or_404(book_id)
    data = json_body()

    isbn = optional_str(data, 'isbn')
    if isbn and isbn != book.isbn:
        if Book.query.filter_by(isbn=isbn).first():
            raise DuplicateEntry(DUPLICATE_ISBN)
        book.isbn = isbn
    for field in ('title', 'publisher'):
        if data.get(field) is not None:
            setattr(book, field, parse_str(data[field], field))
    if data.get('publication_year') is not None:
        book.publication_year = parse_year(data['publication_year'])
    if data.get('price') is not None:
        book.price = parse_money(data['price'], 'price')
    if data.get('category_id') is not None:
        book.category = get_category(data['category_id'])
    if data.get('authors') is not None:
        book.authors = authors_for(author_names(data['authors']))
    if data.get('total_copies') is not None:
        total = parse_int(data['total_copies'], 'total_copies', minimum=1, maximum=MAX_ID)
        # copies on loan stay on loan; only the shelf count moves
        available = book.available_copies + (total - book.total_copies)
        if available < 0:
            raise ValidationError(
                f'total_copies cannot drop below the {book.total_copies - book.available_copies} copies on loan'
            )
        book.total_copies = total
        book.available_copies = available

    commit_unique(db.session, DUPLICATE_ISBN)
    logger.info(f"Book updated: {book.id}")
    return jsonify({'message': 'Book updated successfully', **book.to_dict()}), 200


@bp.route('/books/<int:book_id>', methods=['DELETE'])
@roles_required(StaffRole.ADMIN)
def delete_book(book_id):
    book = get_book_or_404(book_id)
    history = Transaction.query.filter_by(book_id=book.id)
    if history.filter(Transaction.open_clause()).count():
        raise OpenTransactions('Cannot delete a book with unreturned copies')
    if history.count():
        raise PreconditionFailed('Cannot delete a book with lending history')

    book.authors = []
    db.session.delete(book)
    db.session.commit()
    logger.info(f"Book deleted: {book_id}")
    return jsonify({'message': 'Book deleted successfully'}), 200


@bp.route('/categories', methods=['GET'])
@staff_only
def list_categories():
    categories = Category.query.order_by(Category.category_name).all()
    return jsonify({'data': [c.to_dict() for c in categories]}), 200


@bp.route('/categories', methods=['POST'])
@roles_required(StaffRole.ADMIN, StaffRole.LIBRARIAN)
def add_category():
    data = json_body()
    require_fields(data, 'category_name')
    name = parse_str(data['category_name'], 'category_name')
    if Category.query.filter_by(category_name=name).first():
        raise DuplicateEntry('Category already exists')

    category = Category(category_name=name)
    db.session.add(category)
    commit_unique(db.session, 'Category already exists')
    return jsonify({'message': 'Category added successfully', **category.to_dict()}), 201
