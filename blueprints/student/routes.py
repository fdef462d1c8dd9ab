"""
blueprints/student/routes.py - Student Blueprint
Handles student-specific routes: dashboard, grades and published report cards.
"""

from flask import Blueprint, request
from flask_login import current_user

from config import Config
from models import Grade, Notification, ReportCard
from services import report_cards as report_card_service
from services.averages import compute_average, subject_breakdown
from services.errors import ForbiddenError, NotFoundError
from blueprints.helpers import role_required, success

# Initialize the blueprint for student-related routes
student_bp = Blueprint('student', __name__)

student_required = role_required('student')


def current_student():
    student = current_user.student_profile
    if student is None:
        raise ForbiddenError("No student profile attached to this account.")
    return student


@student_bp.route('/dashboard')
@student_required
def dashboard():
    """
    Student Dashboard - latest grades, current averages and last report card
    """
    student = current_student()
    periods = Config.PERIODS

    averages = {}
    for period in periods:
        average = compute_average(student.grades.filter_by(period=period).all())
        averages[period] = float(average) if average is not None else None

    latest_card = student.report_cards.filter_by(published=True)\
        .order_by(ReportCard.created_at.desc()).first()
    recent = student.grades.order_by(Grade.grade_date.desc(), Grade.id.desc()).limit(5).all()

    return success({
        'student': student.to_dict(),
        'current_school_year': Config.get_current_school_year(),
        'averages': averages,
        'total_grades': student.grades.count(),
        'recent_grades': [g.to_dict() for g in recent],
        'latest_report_card': latest_card.to_dict(with_student=False) if latest_card else None,
        'unread_notifications': Notification.query.filter_by(user_id=current_user.id, is_read=False).count(),
    })


@student_bp.route('/grades')
@student_required
def my_grades():
    """
    Grades grouped by subject, optionally for one period (?period=)
    """
    student = current_student()
    query = student.grades
    period = request.args.get('period')
    if period:
        report_card_service.validate_period(period)
        query = query.filter_by(period=period)

    grades = query.all()
    average = compute_average(grades)
    return success({
        'period': period,
        'average': float(average) if average is not None else None,
        'subjects': subject_breakdown(
            grades,
            default_coefficients=Config.SUBJECT_COEFFICIENT_DEFAULTS,
            fallback_coefficient=Config.DEFAULT_SUBJECT_COEFFICIENT,
        ),
    })


@student_bp.route('/report-cards')
@student_required
def my_report_cards():
    """Published report cards only; drafts stay invisible"""
    student = current_student()
    cards = student.report_cards.filter_by(published=True)\
        .order_by(ReportCard.school_year.desc(), ReportCard.period.desc()).all()
    return success([c.to_dict(with_student=False) for c in cards])


@student_bp.route('/report-cards/<int:card_id>')
@student_required
def report_card_detail(card_id):
    student = current_student()
    card = ReportCard.query.filter_by(id=card_id, student_id=student.id, published=True).first()
    if card is None:
        raise NotFoundError(f"Report card {card_id} not found")
    return success(report_card_service.report_card_details(card))
