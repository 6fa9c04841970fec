import logging
from datetime import date

from flask import Blueprint, current_app, jsonify, request
from flask_jwt_extended import current_user

from . import reporting
from .auth import roles_required, staff_only
from .errors import NotFound, ValidationError
from .extensions import db
from .lending import LendingEngine
from .models import Fine, Member, PaymentStatus, StaffRole, Transaction, TransactionStatus
from .overdue import ISSUED, OVERDUE, RETURNED
from .store import SqlAlchemyStore
from .validation import json_body, parse_id, require_fields

logger = logging.getLogger(__name__)

bp = Blueprint('transactions', __name__, url_prefix='/api')


def lending_engine():
    config = current_app.config
    return LendingEngine(
        SqlAlchemyStore(db.session, max_attempts=config['LENDING_MAX_ATTEMPTS']),
        fine_per_day=config['FINE_PER_DAY'],
        default_loan_days=config['DEFAULT_LOAN_DAYS'],
        min_loan_days=config['MIN_LOAN_DAYS'],
        max_loan_days=config['MAX_LOAN_DAYS'],
    )


def returned_payload(txn, fine_amount):
    return {
        'message': 'Book returned successfully' if fine_amount == 0 else 'Book returned late, fine recorded',
        'transaction_id': txn.id,
        'return_date': txn.return_date.isoformat(),
        'status': TransactionStatus.RETURNED,
        'fine_amount': float(fine_amount),
    }


@bp.route('/transactions', methods=['GET'])
@staff_only
def list_transactions():
    today = date.today()
    query = Transaction.query
    status = request.args.get('status')
    if status == OVERDUE:
        query = query.filter(Transaction.overdue_clause(today))
    elif status == ISSUED:
        query = query.filter(Transaction.on_loan_clause(today))
    elif status == RETURNED:
        query = query.filter(Transaction.status == TransactionStatus.RETURNED)
    elif status:
        raise ValidationError(f'Status must be one of: {ISSUED}, {OVERDUE}, {RETURNED}')
    if request.args.get('member_id'):
        query = query.filter_by(member_id=parse_id(request.args['member_id'], 'member_id'))
    if request.args.get('book_id'):
        query = query.filter_by(book_id=parse_id(request.args['book_id'], 'book_id'))

    rows = query.order_by(Transaction.id.desc()).all()
    return jsonify({'data': [t.to_dict(today) for t in rows], 'count': len(rows)}), 200


@bp.route('/transactions/overdue', methods=['GET'])
@staff_only
def overdue_transactions():
    rows = reporting.overdue_transactions(current_app.config['FINE_PER_DAY'])
    return jsonify({'data': rows, 'count': len(rows)}), 200


@bp.route('/transactions/member/<int:member_id>', methods=['GET'])
@staff_only
def member_transactions(member_id):
    if db.session.get(Member, parse_id(member_id, 'member_id')) is None:
        raise NotFound('Member not found')
    today = date.today()
    rows = Transaction.query.filter_by(member_id=member_id).order_by(
        Transaction.issue_date.desc(), Transaction.id.desc()
    ).all()
    return jsonify({'data': [t.to_dict(today) for t in rows], 'count': len(rows)}), 200


@bp.route('/transactions/<int:transaction_id>', methods=['GET'])
@staff_only
def get_transaction(transaction_id):
    txn = db.session.get(Transaction, parse_id(transaction_id, 'transaction_id'))
    if txn is None:
        raise NotFound('Transaction not found')
    return jsonify(txn.to_dict()), 200


@bp.route('/transactions/issue', methods=['POST'])
@roles_required(StaffRole.ADMIN, StaffRole.LIBRARIAN)
def issue_book():
    data = json_body()
    require_fields(data, 'book_id', 'member_id')
    staff_id = parse_id(data['staff_id'], 'staff_id') if data.get('staff_id') is not None else current_user.id

    txn = lending_engine().issue_book(
        parse_id(data['book_id'], 'book_id'),
        parse_id(data['member_id'], 'member_id'),
        staff_id,
        data.get('days'),
    )
    return jsonify({
        'message': 'Book issued successfully',
        'transaction_id': txn.id,
        'issue_date': txn.issue_date.isoformat(),
        'due_date': txn.due_date.isoformat(),
        'status': txn.status,
    }), 201


@bp.route('/transactions/return', methods=['POST'])
@roles_required(StaffRole.ADMIN, StaffRole.LIBRARIAN)
def return_book():
    data = json_body()
    require_fields(data, 'transaction_id')
    txn, fine_amount = lending_engine().return_book(parse_id(data['transaction_id'], 'transaction_id'))
    return jsonify(returned_payload(txn, fine_amount)), 200


@bp.route('/transactions/<int:transaction_id>/return', methods=['PUT'])
@roles_required(StaffRole.ADMIN, StaffRole.LIBRARIAN)
def return_book_by_id(transaction_id):
    txn, fine_amount = lending_engine().return_book(parse_id(transaction_id, 'transaction_id'))
    return jsonify(returned_payload(txn, fine_amount)), 200


@bp.route('/fines', methods=['GET'])
@staff_only
def list_fines():
    query = Fine.query
    status = request.args.get('status')
    if status:
        if status not in PaymentStatus.ALL:
            raise ValidationError(f"Status must be one of: {', '.join(PaymentStatus.ALL)}")
        query = query.filter_by(payment_status=status)
    fines = query.order_by(Fine.id.desc()).all()
    return jsonify({'data': [f.to_dict() for f in fines], 'count': len(fines)}), 200


@bp.route('/fines/<int:fine_id>/pay', methods=['POST'])
@roles_required(StaffRole.ADMIN, StaffRole.LIBRARIAN)
def pay_fine(fine_id):
    fine = lending_engine().pay_fine(parse_id(fine_id, 'fine_id'))
    return jsonify({'message': 'Fine paid successfully', **fine.to_dict()}), 200
