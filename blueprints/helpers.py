"""
blueprints/helpers.py - Shared route helpers
Role decorator, JSON envelopes, request parsing and pagination.
"""

from functools import wraps

from flask import current_app, jsonify, request
from flask_login import current_user, login_required

from services.errors import ValidationError


def role_required(*roles):
    """
    Decorator to ensure only the given roles can access the route
    """
    def decorator(f):
        @wraps(f)
        @login_required
        def decorated_function(*args, **kwargs):
            if current_user.role not in roles:
                return jsonify({
                    'success': False,
                    'error': 'forbidden',
                    'message': 'Access denied for this role.'
                }), 403
            return f(*args, **kwargs)
        return decorated_function
    return decorator


def success(data=None, message='OK', status=200):
    payload = {'success': True, 'message': message}
    if data is not None:
        payload['data'] = data
    return jsonify(payload), status


def get_json():
    """Request body as a dict (empty dict when missing)"""
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def require_fields(data, *names):
    missing = [name for name in names if data.get(name) in (None, '')]
    if missing:
        raise ValidationError("Missing required fields", fields=missing)


def parse_bool(value):
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().lower() in ('1', 'true', 'yes', 'on')


def parse_int(value, name):
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be an integer")


def paginate(query, serializer):
    """Paginate a query from ?page= and ?per_page= and serialize the items"""
    per_page = min(
        request.args.get('per_page', current_app.config['ITEMS_PER_PAGE'], type=int),
        current_app.config['MAX_ITEMS_PER_PAGE']
    )
    page = request.args.get('page', 1, type=int)
    pagination = query.paginate(page=page, per_page=per_page, error_out=False)
    return {
        'items': [serializer(item) for item in pagination.items],
        'page': pagination.page,
        'per_page': pagination.per_page,
        'total': pagination.total,
        'pages': pagination.pages,
    }
