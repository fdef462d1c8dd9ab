"""
services/averages.py - Average Calculator
Flat arithmetic means over grade records, plus the per-subject breakdown
shown on a report card. Subject coefficients never weight the overall average.
"""

from collections import OrderedDict
from datetime import date
from decimal import Decimal, ROUND_HALF_UP, localcontext

from models import Grade

TWO_PLACES = Decimal('0.01')


def _quantize(value):
    return value.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def _as_decimal(value):
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def compute_average(values):
    """
    Arithmetic mean of grade values, rounded half-up to 2 decimals

    Args:
        values: iterable of numbers (Decimal, int, float) or Grade records

    Returns:
        Decimal or None: None when there is nothing to average
    """
    numbers = [_as_decimal(v.value if isinstance(v, Grade) else v) for v in values]
    if not numbers:
        return None

    with localcontext() as ctx:
        ctx.prec = 28
        mean = sum(numbers, Decimal(0)) / len(numbers)
    return _quantize(mean)


def period_grades(student_id, period):
    """All grades of a student for one period"""
    return Grade.query.filter_by(student_id=student_id, period=period).all()


def class_period_grades(class_id, period):
    """All grades recorded in a class for one period"""
    return Grade.query.filter_by(class_id=class_id, period=period).all()


def resolve_coefficient(subject, defaults=None, fallback=2):
    """
    Coefficient displayed for a subject

    Uses the subject's own coefficient when set and non-zero, otherwise the
    explicit defaults map (keyed by lower-cased subject name), otherwise
    the fallback.
    """
    if subject.coefficient:
        return float(subject.coefficient)
    defaults = defaults or {}
    return defaults.get((subject.name or '').strip().lower(), fallback)


def subject_breakdown(grades, default_coefficients=None, fallback_coefficient=2):
    """
    Group grades by subject with per-subject statistics

    Args:
        grades: iterable of Grade records (normally one student, one period)
        default_coefficients: {lower-cased subject name: coefficient}
        fallback_coefficient: used when neither the subject nor the map has one

    Returns:
        list of dicts, one per subject, ordered by subject id:
        {
            'subject': {'id', 'name', 'code'},
            'average': 13.5,
            'coefficient': 4,
            'grades': [...],
            'grade_count': 2,
            'min_grade': 12.0,
            'max_grade': 15.0
        }
    """
    ordered = sorted(grades, key=lambda g: (g.subject_id, g.grade_date or date.min, g.id))
    groups = OrderedDict()
    for grade in ordered:
        groups.setdefault(grade.subject_id, []).append(grade)

    breakdown = []
    for subject_grades in groups.values():
        subject = subject_grades[0].subject
        values = [_as_decimal(g.value) for g in subject_grades]
        breakdown.append({
            'subject': {
                'id': subject.id,
                'name': subject.name,
                'code': subject.code or subject.name[:3].upper(),
            },
            'average': float(compute_average(values)),
            'coefficient': resolve_coefficient(subject, default_coefficients, fallback_coefficient),
            'grades': [
                {
                    'value': float(g.value),
                    'evaluation_type': g.evaluation_type,
                    'type_label': g.type_label,
                    'grade_date': g.grade_date.isoformat() if g.grade_date else None,
                    'comment': g.comment,
                }
                for g in subject_grades
            ],
            'grade_count': len(values),
            'min_grade': float(min(values)),
            'max_grade': float(max(values)),
        })
    return breakdown
