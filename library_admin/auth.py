import logging
from functools import wraps

from flask import Blueprint, jsonify
from flask_jwt_extended import create_access_token, current_user, jwt_required

from .errors import DuplicateEntry, ValidationError
from .extensions import bcrypt, db, jwt
from .models import Staff, StaffRole, StaffStatus
from .store import commit_unique
from .validation import json_body, parse_str, require_fields

logger = logging.getLogger(__name__)

bp = Blueprint('auth', __name__, url_prefix='/api/auth')


def _unauthorized(message):
    return jsonify({'error': 'Unauthorized', 'message': message}), 401


@jwt.user_lookup_loader
def load_staff(_jwt_header, jwt_data):
    staff = db.session.get(Staff, int(jwt_data['sub']))
    if staff is None or staff.status != StaffStatus.ACTIVE:
        return None
    return staff


@jwt.user_lookup_error_loader
def staff_lookup_failed(_jwt_header, _jwt_data):
    return _unauthorized('User not found or inactive')


@jwt.unauthorized_loader
def missing_token(reason):
    return _unauthorized('Access token required')


@jwt.expired_token_loader
def expired_token(_jwt_header, _jwt_data):
    return _unauthorized('Token has expired')


@jwt.invalid_token_loader
def invalid_token(reason):
    return _unauthorized('Invalid token')


def roles_required(*roles):
    def wrapper(fn):
        @wraps(fn)
        @jwt_required()
        def decorator(*args, **kwargs):
            if current_user.role not in roles:
                logger.warning(f"Staff {current_user.username} ({current_user.role}) denied access to {fn.__name__}")
                return jsonify({'error': 'Forbidden', 'message': 'Access denied. Insufficient permissions'}), 403
            return fn(*args, **kwargs)
        return decorator
    return wrapper


staff_only = roles_required(*StaffRole.ALL)


def hash_password(password):
    return bcrypt.generate_password_hash(password).decode('utf-8')


def create_staff(username, password, first_name, last_name, email, role=StaffRole.LIBRARIAN):
    username = parse_str(username, 'username')
    password = parse_str(password, 'password')
    first_name = parse_str(first_name, 'first_name')
    last_name = parse_str(last_name, 'last_name')
    email = parse_str(email, 'email')
    if not isinstance(role, str) or role not in StaffRole.ALL:
        raise ValidationError(f"Role must be one of: {', '.join(StaffRole.ALL)}")
    if Staff.query.filter((Staff.username == username) | (Staff.email == email)).first():
        raise DuplicateEntry('Username or email already exists')
    staff = Staff(
        username=username,
        password_hash=hash_password(password),
        first_name=first_name,
        last_name=last_name,
        email=email,
        role=role,
    )
    db.session.add(staff)
    commit_unique(db.session, 'Username or email already exists')
    logger.info(f"Staff registered: {username}, Role: {role}")
    return staff


@bp.route('/login', methods=['POST'])
def login():
    data = json_body()
    if not data.get('username') or not data.get('password'):
        return jsonify({'error': 'ValidationError', 'message': 'Username and password are required'}), 400
    username = parse_str(data['username'], 'username')
    password = parse_str(data['password'], 'password')

    staff = Staff.query.filter_by(username=username, status=StaffStatus.ACTIVE).first()
    if staff and bcrypt.check_password_hash(staff.password_hash, password):
        access_token = create_access_token(
            identity=str(staff.id),
            additional_claims={'username': staff.username, 'role': staff.role},
        )
        logger.info(f"Staff logged in: {staff.username}")
        return jsonify({'message': 'Login successful', 'token': access_token, 'user': staff.to_dict()}), 200

    logger.warning(f"Login failed: Invalid credentials for {username}")
    return _unauthorized('Invalid credentials')


@bp.route('/register', methods=['POST'])
@roles_required(StaffRole.ADMIN)
def register():
    data = json_body()
    require_fields(data, 'username', 'password', 'first_name', 'last_name', 'email')
    staff = create_staff(
        data['username'],
        data['password'],
        data['first_name'],
        data['last_name'],
        data['email'],
        data.get('role') or StaffRole.LIBRARIAN,
    )
    return jsonify({'message': 'Staff registered successfully', 'staff_id': staff.id}), 201


@bp.route('/profile', methods=['GET'])
@jwt_required()
def profile():
    return jsonify(current_user.to_dict()), 200
