"""
services/accounts.py - Account helpers shared by routes and CLI commands
"""

import logging

from flask import current_app

from extensions import bcrypt, db
from models import User

logger = logging.getLogger(__name__)


def link_parent_account(student, password=None):
    """
    Attach the parent account matching student.parent_email

    Creates the parent user when no account uses that email yet.

    Returns:
        tuple (User or None, created: bool)
    """
    email = (student.parent_email or '').strip().lower()
    if not email:
        return None, False

    parent = User.query.filter_by(email=email).first()
    created = False
    if parent is None:
        password = password or current_app.config['DEFAULT_PARENT_PASSWORD']
        parent = User(
            email=email,
            password=bcrypt.generate_password_hash(password).decode('utf-8'),
            role='parent',
            first_name='Parent',
            last_name=student.user.last_name if student.user else '',
            phone=student.parent_phone,
        )
        db.session.add(parent)
        db.session.flush()
        created = True
        logger.info("Parent account created: %s", email)

    if parent.role != 'parent':
        logger.warning("Email %s belongs to a %s account, not linked as parent", email, parent.role)
        return None, False

    if student.parent_id is None:
        student.parent_id = parent.id
    return parent, created


def create_missing_parents():
    """
    Create and link parent accounts for every student with a parent email

    Returns:
        tuple (created, linked)
    """
    from models import Student

    created = linked = 0
    students = Student.query.filter(Student.parent_email.isnot(None), Student.parent_email != '').all()
    for student in students:
        had_parent = student.parent_id is not None
        parent, was_created = link_parent_account(student)
        if was_created:
            created += 1
        if parent is not None and not had_parent:
            linked += 1
    db.session.commit()
    return created, linked
