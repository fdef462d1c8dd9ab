"""
blueprints/parent/routes.py - Parent Blueprint
Read access to the grades and published report cards of a parent's children.
"""

from flask import Blueprint, request
from flask_login import current_user

from config import Config
from models import Grade, ReportCard, Student
from services import report_cards as report_card_service
from services.averages import compute_average, subject_breakdown
from services.errors import NotFoundError
from blueprints.helpers import role_required, success

parent_bp = Blueprint('parent', __name__)

parent_required = role_required('parent')


def get_child(student_id):
    """A child of the current parent, or 404 (other students are not disclosed)"""
    child = current_user.children.filter(Student.id == student_id).first()
    if child is None:
        raise NotFoundError(f"Student {student_id} not found")
    return child


@parent_bp.route('/dashboard')
@parent_required
def dashboard():
    children = current_user.children.order_by(Student.id).all()
    data = []
    for child in children:
        latest_card = child.report_cards.filter_by(published=True)\
            .order_by(ReportCard.created_at.desc()).first()
        data.append({
            'student': child.to_dict(),
            'total_grades': child.grades.count(),
            'latest_report_card': latest_card.to_dict(with_student=False) if latest_card else None,
        })
    return success({
        'current_school_year': Config.get_current_school_year(),
        'children': data,
    })


@parent_bp.route('/children')
@parent_required
def children():
    return success([c.to_dict() for c in current_user.children.order_by(Student.id).all()])


@parent_bp.route('/children/<int:student_id>/grades')
@parent_required
def child_grades(student_id):
    child = get_child(student_id)
    query = child.grades
    period = request.args.get('period')
    if period:
        report_card_service.validate_period(period)
        query = query.filter_by(period=period)

    grades = query.order_by(Grade.grade_date.desc()).all()
    average = compute_average(grades)
    return success({
        'student': child.to_dict(),
        'period': period,
        'average': float(average) if average is not None else None,
        'subjects': subject_breakdown(
            grades,
            default_coefficients=Config.SUBJECT_COEFFICIENT_DEFAULTS,
            fallback_coefficient=Config.DEFAULT_SUBJECT_COEFFICIENT,
        ),
    })


@parent_bp.route('/children/<int:student_id>/report-cards')
@parent_required
def child_report_cards(student_id):
    child = get_child(student_id)
    cards = child.report_cards.filter_by(published=True)\
        .order_by(ReportCard.school_year.desc(), ReportCard.period.desc()).all()
    return success({
        'student': child.to_dict(),
        'report_cards': [c.to_dict(with_student=False) for c in cards],
    })


@parent_bp.route('/children/<int:student_id>/report-cards/<int:card_id>')
@parent_required
def child_report_card_detail(student_id, card_id):
    child = get_child(student_id)
    card = child.report_cards.filter_by(id=card_id, published=True).first()
    if card is None:
        raise NotFoundError(f"Report card {card_id} not found")
    return success(report_card_service.report_card_details(card))
