"""
services/tokens.py - Bearer token issuance and verification (PyJWT)
Tokens carry the user's token_version; bumping it (logout) revokes them.
"""

from datetime import datetime, timedelta, timezone

import jwt
from flask import current_app

from extensions import db
from models import User


def issue_token(user):
    """Create a signed access token for a user"""
    now = datetime.now(timezone.utc)
    expires_in = current_app.config['JWT_EXPIRES_IN']
    payload = {
        'sub': str(user.id),
        'role': user.role,
        'ver': user.token_version,
        'iat': now,
        'exp': now + timedelta(seconds=expires_in),
    }
    token = jwt.encode(
        payload,
        current_app.config['JWT_SECRET_KEY'],
        algorithm=current_app.config['JWT_ALGORITHM'],
    )
    return {
        'token': token,
        'token_type': 'bearer',
        'expires_in': expires_in,
    }


def user_from_token(token):
    """
    Resolve the user a token belongs to

    Returns:
        User or None if the token is invalid, expired or revoked
    """
    try:
        payload = jwt.decode(
            token,
            current_app.config['JWT_SECRET_KEY'],
            algorithms=[current_app.config['JWT_ALGORITHM']],
        )
        user_id = int(payload['sub'])
    except (jwt.InvalidTokenError, KeyError, ValueError):
        return None

    user = db.session.get(User, user_id)
    if user is None or payload.get('ver') != user.token_version:
        return None
    return user


def user_from_request(request):
    """Flask-Login request loader: read 'Authorization: Bearer <token>'"""
    header = request.headers.get('Authorization', '')
    scheme, _, token = header.partition(' ')
    if scheme.lower() != 'bearer' or not token.strip():
        return None
    return user_from_token(token.strip())


def revoke_tokens(user):
    """Invalidate every token issued so far for this user"""
    user.token_version = (user.token_version or 0) + 1
    db.session.commit()
