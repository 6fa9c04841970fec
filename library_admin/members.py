import logging
from datetime import date

from flask import Blueprint, jsonify, request
from sqlalchemy import or_

from .auth import roles_required, staff_only
from .errors import DuplicateEntry, NotFound, OpenTransactions, PreconditionFailed, ValidationError
from .extensions import db
from .models import Member, MemberStatus, StaffRole, Transaction
from .store import commit_unique
from .validation import json_body, optional_str, parse_date, parse_id, parse_str, require_fields

logger = logging.getLogger(__name__)

bp = Blueprint('members', __name__, url_prefix='/api/members')

DUPLICATE_EMAIL = 'Member with this email already exists'
EDITABLE_FIELDS = ('first_name', 'last_name', 'phone', 'address', 'membership_type')


def get_member_or_404(member_id):
    member = db.session.get(Member, parse_id(member_id, 'member_id'))
    if member is None:
        raise NotFound('Member not found')
    return member


def check_status(status):
    if not isinstance(status, str) or status not in MemberStatus.ALL:
        raise ValidationError(f"Status must be one of: {', '.join(MemberStatus.ALL)}")
    return status


@bp.route('', methods=['GET'])
@staff_only
def list_members():
    query = Member.query
    status = request.args.get('status')
    if status:
        query = query.filter_by(status=check_status(status))
    members = query.order_by(Member.id.desc()).all()
    return jsonify({'data': [m.to_dict() for m in members], 'count': len(members)}), 200


@bp.route('/search', methods=['GET'])
@staff_only
def search_members():
    pattern = f"%{request.args.get('q', '').strip()}%"
    members = Member.query.filter(or_(
        Member.first_name.ilike(pattern),
        Member.last_name.ilike(pattern),
        Member.email.ilike(pattern),
        Member.phone.ilike(pattern),
    )).order_by(Member.id.desc()).all()
    return jsonify({'data': [m.to_dict() for m in members], 'count': len(members)}), 200


@bp.route('/<int:member_id>', methods=['GET'])
@staff_only
def get_member(member_id):
    member = get_member_or_404(member_id)
    today = date.today()
    open_loans = (
        Transaction.query.filter(Transaction.member_id == member.id, Transaction.open_clause())
        .order_by(Transaction.issue_date.desc())
        .all()
    )
    return jsonify({**member.to_dict(), 'borrowed_books': [t.to_dict(today) for t in open_loans]}), 200


@bp.route('', methods=['POST'])
@roles_required(StaffRole.ADMIN, StaffRole.LIBRARIAN)
def add_member():
    data = json_body()
    require_fields(data, 'first_name', 'last_name', 'email', 'join_date', 'expiry_date')

    email = parse_str(data['email'], 'email')
    if Member.query.filter_by(email=email).first():
        raise DuplicateEntry(DUPLICATE_EMAIL)

    join_date = parse_date(data['join_date'], 'join_date')
    expiry_date = parse_date(data['expiry_date'], 'expiry_date')
    if expiry_date < join_date:
        raise ValidationError('expiry_date cannot be before join_date')

    member = Member(
        first_name=parse_str(data['first_name'], 'first_name'),
        last_name=parse_str(data['last_name'], 'last_name'),
        email=email,
        phone=optional_str(data, 'phone'),
        address=optional_str(data, 'address'),
        membership_type=optional_str(data, 'membership_type') or 'General',
        status=check_status(data.get('status') or MemberStatus.ACTIVE),
        join_date=join_date,
        expiry_date=expiry_date,
    )
    db.session.add(member)
    commit_unique(db.session, DUPLICATE_EMAIL)
    logger.info(f"Member added: {member.email}")
    return jsonify({'message': 'Member added successfully', **member.to_dict()}), 201


@bp.route('/<int:member_id>', methods=['PUT'])
@roles_required(StaffRole.ADMIN, StaffRole.LIBRARIAN)
def update_member(member_id):
    member = get_member_or_404(member_id)
    data = json_body()

    email = optional_str(data, 'email')
    if email and email != member.email:
        if Member.query.filter_by(email=email).first():
            raise DuplicateEntry(DUPLICATE_EMAIL)
        member.email = email
    for field in EDITABLE_FIELDS:
        if data.get(field) is not None:
            setattr(member, field, parse_str(data[field], field))
    if data.get('expiry_date') is not None:
        expiry_date = parse_date(data['expiry_date'], 'expiry_date')
        if expiry_date < member.join_date:
            raise ValidationError('expiry_date cannot be before join_date')
        member.expiry_date = expiry_date
    if data.get('status') is not None:
        member.status = check_status(data['status'])

    commit_unique(db.session, DUPLICATE_EMAIL)
    logger.info(f"Member updated: {member.id}")
    return jsonify({'message': 'Member updated successfully', **member.to_dict()}), 200


@bp.route('/<int:member_id>', methods=['DELETE'])
@roles_required(StaffRole.ADMIN)
def delete_member(member_id):
    member = get_member_or_404(member_id)
    history = Transaction.query.filter_by(member_id=member.id)
    if history.filter(Transaction.open_clause()).count():
        raise OpenTransactions('Cannot delete member with unreturned books')
    if history.count():
        raise PreconditionFailed('Cannot delete member with lending history')

    db.session.delete(member)
    db.session.commit()
    logger.info(f"Member deleted: {member_id}")
    return jsonify({'message': 'Member deleted successfully'}), 200
