"""
services/grades.py - Grade Store writes
Grade edits never recompute existing report cards (they are snapshots).
"""

import logging
from datetime import date
from decimal import Decimal, InvalidOperation

from flask import current_app

from extensions import db
from models import ClassRoom, Grade, Student, Subject
from services.errors import ForbiddenError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)


def parse_grade_value(value):
    """
    Validate a grade value

    Returns:
        Decimal in [MIN_GRADE, MAX_GRADE]
    """
    if isinstance(value, bool):
        raise ValidationError("value must be a number")
    try:
        number = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError("value must be a number")
    if not number.is_finite():
        raise ValidationError("value must be a number")

    low = Decimal(current_app.config['MIN_GRADE'])
    high = Decimal(current_app.config['MAX_GRADE'])
    if not low <= number <= high:
        raise ValidationError(f"value must be between {low} and {high}")
    return number


def parse_period(period):
    if period not in current_app.config['PERIODS']:
        raise ValidationError(f"Invalid period '{period}'", allowed=list(current_app.config['PERIODS']))
    return period


def parse_date(value):
    if value in (None, ''):
        return date.today()
    try:
        return date.fromisoformat(str(value))
    except ValueError:
        raise ValidationError("grade_date must be an ISO date (YYYY-MM-DD)")


def get_grade(grade_id, teacher=None):
    grade = db.session.get(Grade, grade_id)
    if grade is None:
        raise NotFoundError(f"Grade {grade_id} not found")
    if teacher is not None and grade.subject.teacher_id != teacher.id:
        raise ForbiddenError("You can only manage grades of your own subjects.")
    return grade


def record_grade(data, teacher=None):
    """
    Create a grade from a request payload

    Args:
        data: {'student_id', 'subject_id', 'value', 'period',
               'evaluation_type'?, 'grade_date'?, 'comment'?, 'class_id'?}
        teacher: restrict to this teacher's subjects when given
    """
    missing = [name for name in ('student_id', 'subject_id', 'value', 'period') if data.get(name) in (None, '')]
    if missing:
        raise ValidationError("Missing required fields", fields=missing)

    student = db.session.get(Student, data['student_id'])
    if student is None:
        raise NotFoundError(f"Student {data['student_id']} not found")
    subject = db.session.get(Subject, data['subject_id'])
    if subject is None:
        raise NotFoundError(f"Subject {data['subject_id']} not found")
    if teacher is not None and subject.teacher_id != teacher.id:
        raise ForbiddenError("You can only grade your own subjects.")

    class_id = data.get('class_id') or student.class_id
    if db.session.get(ClassRoom, class_id) is None:
        raise NotFoundError(f"Class {class_id} not found")

    grade = Grade(
        value=parse_grade_value(data['value']),
        period=parse_period(data['period']),
        evaluation_type=(data.get('evaluation_type') or 'devoir').strip(),
        grade_date=parse_date(data.get('grade_date')),
        comment=data.get('comment'),
        student_id=student.id,
        subject_id=subject.id,
        class_id=class_id,
    )
    db.session.add(grade)
    db.session.commit()
    logger.info("Grade %s recorded: student %s, subject %s, %s", grade.id, student.id, subject.id, grade.value)
    return grade


def update_grade(grade_id, data, teacher=None):
    grade = get_grade(grade_id, teacher)
    if 'value' in data:
        grade.value = parse_grade_value(data['value'])
    if 'period' in data:
        grade.period = parse_period(data['period'])
    if 'evaluation_type' in data:
        grade.evaluation_type = (data['evaluation_type'] or 'devoir').strip()
    if 'grade_date' in data:
        grade.grade_date = parse_date(data['grade_date'])
    if 'comment' in data:
        grade.comment = data['comment']
    db.session.commit()
    return grade


def delete_grade(grade_id, teacher=None):
    grade = get_grade(grade_id, teacher)
    db.session.delete(grade)
    db.session.commit()
