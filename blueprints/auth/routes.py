"""
blueprints/auth/routes.py - Authentication Blueprint
Handles login, logout, token refresh, profile and account registration.
"""

from flask import Blueprint, current_app
from flask_login import login_required, current_user
from extensions import db, bcrypt
from models import User
from services.errors import ConflictError, ValidationError
from services.tokens import issue_token, revoke_tokens
from blueprints.helpers import get_json, require_fields, role_required, success

# Create blueprint
auth_bp = Blueprint('auth', __name__)


def create_user(data, role=None):
    """
    Create a user account from a request payload

    Raises:
        ValidationError, ConflictError
    """
    require_fields(data, 'first_name', 'last_name', 'email', 'password')
    role = role or data.get('role')
    if role not in User.ROLES:
        raise ValidationError("Invalid role", allowed=list(User.ROLES))

    email = data['email'].strip().lower()
    if len(data['password']) < 6:
        raise ValidationError("Password must be at least 6 characters.")
    if User.query.filter_by(email=email).first():
        raise ConflictError("Email already exists.")

    user = User(
        email=email,
        password=bcrypt.generate_password_hash(data['password']).decode('utf-8'),
        role=role,
        first_name=data['first_name'].strip(),
        last_name=data['last_name'].strip(),
        phone=data.get('phone'),
    )
    db.session.add(user)
    db.session.commit()
    return user


@auth_bp.route('/login', methods=['POST'])
def login():
    """
    Email + password login, returns a bearer token
    """
    data = get_json()
    email = (data.get('email') or '').strip().lower()
    password = data.get('password') or ''

    if not email or not password:
        raise ValidationError("Please enter both email and password.")

    user = User.query.filter_by(email=email).first()
    if user is None or not bcrypt.check_password_hash(user.password, password):
        current_app.logger.info("Failed login for %s", email)
        return {
            'success': False,
            'error': 'invalid_credentials',
            'message': 'Invalid email or password.'
        }, 401

    return success({'user': user.to_dict(), **issue_token(user)}, 'Login successful')


@auth_bp.route('/logout', methods=['POST'])
@login_required
def logout():
    """
    Revoke every token of the current user
    """
    revoke_tokens(current_user)
    return success(message='You have been logged out successfully.')


@auth_bp.route('/refresh', methods=['POST'])
@login_required
def refresh():
    return success(issue_token(current_user), 'Token refreshed')


@auth_bp.route('/profile', methods=['GET'])
@login_required
def profile():
    data = current_user.to_dict()
    if current_user.is_student() and current_user.student_profile:
        data['student'] = current_user.student_profile.to_dict()
    elif current_user.is_teacher() and current_user.teacher_profile:
        data['teacher'] = current_user.teacher_profile.to_dict()
    return success(data)


@auth_bp.route('/profile', methods=['PUT'])
@login_required
def update_profile():
    data = get_json()
    for name in ('first_name', 'last_name', 'phone'):
        if name in data:
            setattr(current_user, name, data[name])

    if data.get('password'):
        if len(data['password']) < 6:
            raise ValidationError("Password must be at least 6 characters.")
        current_user.password = bcrypt.generate_password_hash(data['password']).decode('utf-8')

    db.session.commit()
    return success(current_user.to_dict(), 'Profile updated')


@auth_bp.route('/register-first-admin', methods=['POST'])
def register_first_admin():
    """
    Bootstrap route: only works while no admin account exists
    """
    if User.query.filter_by(role='admin').first():
        return {
            'success': False,
            'error': 'forbidden',
            'message': 'An administrator already exists. Ask them to create your account.'
        }, 403

    user = create_user(get_json(), role='admin')
    return success(user.to_dict(), 'Administrator registered', 201)


@auth_bp.route('/register', methods=['POST'])
@role_required('admin')
def register():
    user = create_user(get_json())
    return success(user.to_dict(), 'User registered', 201)
