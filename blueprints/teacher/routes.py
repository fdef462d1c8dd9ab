"""
blueprints/teacher/routes.py - Teacher Blueprint
Handles teacher-specific routes: dashboard, classes, subjects, grading
and the report cards of the classes they teach.
"""

from flask import Blueprint, request
from flask_login import current_user
from sqlalchemy import func

from config import Config
from extensions import db
from models import ClassRoom, Grade, ReportCard, Student, Subject
from services import report_cards as report_card_service
from services.averages import compute_average
from services.errors import ForbiddenError, NotFoundError
from services.grades import delete_grade, record_grade, update_grade
from blueprints.helpers import get_json, paginate, role_required, success

# Initialize the blueprint for teacher-related routes
teacher_bp = Blueprint('teacher', __name__)

teacher_required = role_required('teacher')


def current_teacher():
    teacher = current_user.teacher_profile
    if teacher is None:
        raise ForbiddenError("No teacher profile attached to this account.")
    return teacher


def _own_class(teacher, class_id):
    classroom = db.session.get(ClassRoom, class_id)
    if classroom is None:
        raise NotFoundError(f"Class {class_id} not found")
    if classroom.id not in teacher.taught_class_ids():
        raise ForbiddenError("You do not teach this class.")
    return classroom


@teacher_bp.route('/dashboard')
@teacher_required
def dashboard():
    """
    Teacher Dashboard - subjects, classes and grading activity
    """
    teacher = current_teacher()
    subject_ids = [s.id for s in teacher.subjects]
    class_ids = teacher.taught_class_ids()

    grade_count = 0
    class_average = None
    if subject_ids:
        grade_count = Grade.query.filter(Grade.subject_id.in_(subject_ids)).count()
        values = [row.value for row in db.session.query(Grade.value).filter(Grade.subject_id.in_(subject_ids))]
        class_average = compute_average(values)

    recent = Grade.query.filter(Grade.subject_id.in_(subject_ids or [0]))\
        .order_by(Grade.created_at.desc()).limit(10).all()

    return success({
        'current_school_year': Config.get_current_school_year(),
        'teacher': teacher.to_dict(),
        'total_subjects': len(subject_ids),
        'total_classes': len(class_ids),
        'total_students': Student.query.filter(Student.class_id.in_(class_ids or [0])).count(),
        'total_grades': grade_count,
        'grades_average': float(class_average) if class_average is not None else None,
        'recent_grades': [g.to_dict() for g in recent],
    })


@teacher_bp.route('/classes')
@teacher_required
def my_classes():
    teacher = current_teacher()
    class_ids = teacher.taught_class_ids()
    classes = ClassRoom.query.filter(ClassRoom.id.in_(class_ids or [0]))\
        .order_by(ClassRoom.level, ClassRoom.name).all()
    return success([c.to_dict(with_counts=True) for c in classes])


@teacher_bp.route('/classes/<int:class_id>/students')
@teacher_required
def class_students(class_id):
    classroom = _own_class(current_teacher(), class_id)
    students = classroom.students.order_by(Student.enrollment_number).all()
    return success({
        'class': classroom.to_dict(),
        'students': [s.to_dict() for s in students],
    })


@teacher_bp.route('/subjects')
@teacher_required
def my_subjects():
    teacher = current_teacher()
    subjects = teacher.subjects.order_by(Subject.name).all()

    counts = dict(
        db.session.query(Grade.subject_id, func.count(Grade.id))
        .filter(Grade.subject_id.in_([s.id for s in subjects] or [0]))
        .group_by(Grade.subject_id).all()
    )
    data = []
    for subject in subjects:
        item = subject.to_dict()
        item['grade_count'] = counts.get(subject.id, 0)
        data.append(item)
    return success(data)


# ============================================================================
# GRADES (own subjects only)
# ============================================================================

@teacher_bp.route('/grades', methods=['GET'])
@teacher_required
def list_grades():
    teacher = current_teacher()
    subject_ids = [s.id for s in teacher.subjects]
    query = Grade.query.filter(Grade.subject_id.in_(subject_ids or [0]))

    for name in ('student_id', 'subject_id', 'class_id'):
        value = request.args.get(name, type=int)
        if value is not None:
            query = query.filter(getattr(Grade, name) == value)
    if request.args.get('period'):
        query = query.filter(Grade.period == request.args['period'])

    return success(paginate(query.order_by(Grade.grade_date.desc(), Grade.id.desc()), lambda g: g.to_dict()))


@teacher_bp.route('/grades', methods=['POST'])
@teacher_required
def create_grade():
    grade = record_grade(get_json(), teacher=current_teacher())
    return success(grade.to_dict(), 'Grade recorded', 201)


@teacher_bp.route('/grades/<int:grade_id>', methods=['PUT'])
@teacher_required
def edit_grade(grade_id):
    grade = update_grade(grade_id, get_json(), teacher=current_teacher())
    return success(grade.to_dict(), 'Grade updated')


@teacher_bp.route('/grades/<int:grade_id>', methods=['DELETE'])
@teacher_required
def remove_grade(grade_id):
    delete_grade(grade_id, teacher=current_teacher())
    return success(message='Grade deleted')


# ============================================================================
# REPORT CARDS (read only)
# ============================================================================

@teacher_bp.route('/report-cards')
@teacher_required
def report_cards():
    """Report cards of the students in the classes this teacher teaches"""
    teacher = current_teacher()
    class_ids = teacher.taught_class_ids()

    query = ReportCard.query.join(Student, ReportCard.student_id == Student.id)\
        .filter(Student.class_id.in_(class_ids or [0]))
    if request.args.get('class_id'):
        query = query.filter(Student.class_id == request.args.get('class_id', type=int))
    if request.args.get('period'):
        query = query.filter(ReportCard.period == request.args['period'])
    if request.args.get('school_year'):
        query = query.filter(ReportCard.school_year == request.args['school_year'])

    query = query.order_by(ReportCard.school_year.desc(), ReportCard.period, ReportCard.rank)
    return success(paginate(query, lambda c: c.to_dict()))


@teacher_bp.route('/report-cards/<int:card_id>')
@teacher_required
def report_card_detail(card_id):
    teacher = current_teacher()
    card = report_card_service.get_report_card(card_id)
    if card.student.class_id not in teacher.taught_class_ids():
        raise ForbiddenError("This report card is outside your classes.")
    return success(report_card_service.report_card_details(card))
