"""
blueprints/admin/routes.py - Admin Blueprint
School-wide management: classes, teachers, subjects, students, grades,
report cards (creation, publication, bulk generation, re-ranking) and
notifications.
"""

import math
from datetime import date, datetime

from flask import Blueprint, request
from flask_login import current_user
from sqlalchemy import func, or_

from config import Config
from extensions import db, bcrypt
from models import ClassRoom, Grade, Notification, ReportCard, Student, Subject, Teacher, User
from services import ranking
from services import report_cards as report_card_service
from services.accounts import link_parent_account
from services.errors import ConflictError, NotFoundError, ValidationError
from services.grades import delete_grade, record_grade, update_grade
from services.notifications import create_notification
from blueprints.helpers import (
    get_json, paginate, parse_bool, parse_int, require_fields, role_required, success
)

admin_bp = Blueprint('admin', __name__)

admin_required = role_required('admin')

# Subject.coefficient is Numeric(4, 2)
MAX_COEFFICIENT = 100


def _get_or_404(model, object_id, label):
    obj = db.session.get(model, object_id)
    if obj is None:
        raise NotFoundError(f"{label} {object_id} not found")
    return obj


def _parse_birth_date(value):
    if not value:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise ValidationError("birth_date must be an ISO date (YYYY-MM-DD)")


# ============================================================================
# DASHBOARD
# ============================================================================

@admin_bp.route('/dashboard')
@admin_required
def dashboard():
    """Admin Dashboard - school-wide counters"""
    today_start = datetime.utcnow().replace(hour=0, minute=0, second=0, microsecond=0)

    published_average = db.session.query(func.avg(ReportCard.average)).filter(
        ReportCard.published.is_(True)
    ).scalar()

    users_by_role = dict(
        db.session.query(User.role, func.count(User.id)).group_by(User.role).all()
    )

    classes = [c.to_dict(with_counts=True) for c in ClassRoom.query.order_by(ClassRoom.name).all()]

    return success({
        'current_school_year': Config.get_current_school_year(),
        'total_students': Student.query.count(),
        'total_teachers': Teacher.query.count(),
        'total_parents': users_by_role.get('parent', 0),
        'total_classes': len(classes),
        'total_subjects': Subject.query.count(),
        'total_grades': Grade.query.count(),
        'new_users_today': User.query.filter(User.created_at >= today_start).count(),
        'report_cards': {
            'total': ReportCard.query.count(),
            'published': ReportCard.query.filter_by(published=True).count(),
            'drafts': ReportCard.query.filter_by(published=False).count(),
            'published_average': round(float(published_average), 2) if published_average is not None else None,
        },
        'classes': classes,
    })


# ============================================================================
# CLASSES
# ============================================================================

@admin_bp.route('/classes', methods=['GET'])
@admin_required
def list_classes():
    query = ClassRoom.query
    if request.args.get('school_year'):
        query = query.filter_by(school_year=request.args['school_year'])
    if request.args.get('level'):
        query = query.filter_by(level=request.args['level'])
    classes = query.order_by(ClassRoom.level, ClassRoom.name).all()
    return success([c.to_dict(with_counts=True) for c in classes])


@admin_bp.route('/classes', methods=['POST'])
@admin_required
def create_class():
    data = get_json()
    require_fields(data, 'name', 'level')

    lead_teacher_id = data.get('lead_teacher_id')
    if lead_teacher_id is not None:
        _get_or_404(Teacher, lead_teacher_id, 'Teacher')

    classroom = ClassRoom(
        name=data['name'].strip(),
        level=data['level'].strip(),
        school_year=data.get('school_year') or Config.get_current_school_year(),
        lead_teacher_id=lead_teacher_id,
    )
    db.session.add(classroom)
    db.session.commit()
    return success(classroom.to_dict(with_counts=True), 'Class created', 201)


@admin_bp.route('/classes/<int:class_id>', methods=['GET'])
@admin_required
def show_class(class_id):
    classroom = _get_or_404(ClassRoom, class_id, 'Class')
    return success(classroom.to_dict(with_counts=True))


@admin_bp.route('/classes/<int:class_id>', methods=['PUT'])
@admin_required
def update_class(class_id):
    classroom = _get_or_404(ClassRoom, class_id, 'Class')
    data = get_json()

    if 'lead_teacher_id' in data and data['lead_teacher_id'] is not None:
        _get_or_404(Teacher, data['lead_teacher_id'], 'Teacher')

    for name in ('name', 'level', 'school_year', 'lead_teacher_id'):
        if name in data:
            setattr(classroom, name, data[name])
    db.session.commit()
    return success(classroom.to_dict(with_counts=True), 'Class updated')


@admin_bp.route('/classes/<int:class_id>', methods=['DELETE'])
@admin_required
def delete_class(class_id):
    classroom = _get_or_404(ClassRoom, class_id, 'Class')
    if classroom.headcount() > 0:
        raise ConflictError("Cannot delete a class that still has students.")
    db.session.delete(classroom)
    db.session.commit()
    return success(message='Class deleted')


@admin_bp.route('/classes/<int:class_id>/students', methods=['GET'])
@admin_required
def class_students(class_id):
    classroom = _get_or_404(ClassRoom, class_id, 'Class')
    students = classroom.students.order_by(Student.enrollment_number).all()
    return success({
        'class': classroom.to_dict(),
        'students': [s.to_dict() for s in students],
    })


# ============================================================================
# TEACHERS
# ============================================================================

@admin_bp.route('/teachers', methods=['GET'])
@admin_required
def list_teachers():
    teachers = Teacher.query.order_by(Teacher.employee_number).all()
    return success([t.to_dict() for t in teachers])


@admin_bp.route('/teachers', methods=['POST'])
@admin_required
def create_teacher():
    """Register a teacher (user account + profile)"""
    data = get_json()
    require_fields(data, 'first_name', 'last_name', 'email', 'employee_number')

    email = data['email'].strip().lower()
    if User.query.filter_by(email=email).first():
        raise ConflictError("Email already exists.")
    if Teacher.query.filter_by(employee_number=data['employee_number']).first():
        raise ConflictError("Employee number already exists.")

    password = data.get('password') or data['employee_number']  # Default to employee number
    user = User(
        email=email,
        password=bcrypt.generate_password_hash(password).decode('utf-8'),
        role='teacher',
        first_name=data['first_name'].strip(),
        last_name=data['last_name'].strip(),
        phone=data.get('phone'),
    )
    db.session.add(user)
    db.session.flush()

    teacher = Teacher(
        user_id=user.id,
        employee_number=data['employee_number'],
        specialization=data.get('specialization'),
    )
    db.session.add(teacher)
    db.session.commit()
    return success(teacher.to_dict(), 'Teacher registered', 201)


# ============================================================================
# SUBJECTS
# ============================================================================

def _parse_coefficient(value):
    try:
        coefficient = float(value)
    except (TypeError, ValueError):
        raise ValidationError("coefficient must be a number")
    if isinstance(value, bool) or not math.isfinite(coefficient):
        raise ValidationError("coefficient must be a number")
    if not 0 < coefficient < MAX_COEFFICIENT:
        raise ValidationError(f"coefficient must be between 0 and {MAX_COEFFICIENT} (exclusive)")
    return coefficient


@admin_bp.route('/subjects', methods=['GET'])
@admin_required
def list_subjects():
    subjects = Subject.query.order_by(Subject.name).all()
    return success([s.to_dict() for s in subjects])


@admin_bp.route('/subjects', methods=['POST'])
@admin_required
def create_subject():
    data = get_json()
    require_fields(data, 'name', 'code', 'teacher_id')
    _get_or_404(Teacher, data['teacher_id'], 'Teacher')

    if Subject.query.filter_by(code=data['code']).first():
        raise ConflictError("Subject code already exists.")

    subject = Subject(
        name=data['name'].strip(),
        code=data['code'].strip(),
        coefficient=_parse_coefficient(data['coefficient']) if data.get('coefficient') is not None else None,
        level=data.get('level'),
        teacher_id=data['teacher_id'],
    )
    db.session.add(subject)
    db.session.commit()
    return success(subject.to_dict(), 'Subject created', 201)


@admin_bp.route('/subjects/<int:subject_id>', methods=['GET'])
@admin_required
def show_subject(subject_id):
    subject = _get_or_404(Subject, subject_id, 'Subject')
    data = subject.to_dict()
    data['grade_count'] = subject.grades.count()
    return success(data)


@admin_bp.route('/subjects/<int:subject_id>', methods=['PUT'])
@admin_required
def update_subject(subject_id):
    subject = _get_or_404(Subject, subject_id, 'Subject')
    data = get_json()

    if 'teacher_id' in data:
        _get_or_404(Teacher, data['teacher_id'], 'Teacher')
    if 'code' in data and data['code'] != subject.code and Subject.query.filter_by(code=data['code']).first():
        raise ConflictError("Subject code already exists.")
    if 'coefficient' in data:
        subject.coefficient = _parse_coefficient(data['coefficient']) if data['coefficient'] is not None else None

    for name in ('name', 'code', 'level', 'teacher_id'):
        if name in data:
            setattr(subject, name, data[name])
    db.session.commit()
    return success(subject.to_dict(), 'Subject updated')


@admin_bp.route('/subjects/<int:subject_id>', methods=['DELETE'])
@admin_required
def delete_subject(subject_id):
    subject = _get_or_404(Subject, subject_id, 'Subject')
    db.session.delete(subject)
    db.session.commit()
    return success(message='Subject deleted')


# ============================================================================
# STUDENTS
# ============================================================================

@admin_bp.route('/students', methods=['GET'])
@admin_required
def list_students():
    query = Student.query.join(User, Student.user_id == User.id)
    if request.args.get('class_id'):
        query = query.filter(Student.class_id == request.args.get('class_id', type=int))
    search = request.args.get('search')
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(
            User.first_name.ilike(pattern),
            User.last_name.ilike(pattern),
            Student.enrollment_number.ilike(pattern),
        ))
    return success(paginate(query.order_by(Student.enrollment_number), lambda s: s.to_dict()))


@admin_bp.route('/students', methods=['POST'])
@admin_required
def create_student():
    """Register a student; links (or creates) the parent account from parent_email"""
    data = get_json()
    require_fields(data, 'first_name', 'last_name', 'email', 'enrollment_number', 'class_id')
    _get_or_404(ClassRoom, data['class_id'], 'Class')

    email = data['email'].strip().lower()
    if User.query.filter_by(email=email).first():
        raise ConflictError("Email already exists.")
    if Student.query.filter_by(enrollment_number=data['enrollment_number']).first():
        raise ConflictError("Enrollment number already exists.")

    password = data.get('password') or data['enrollment_number']  # Default to enrollment number
    user = User(
        email=email,
        password=bcrypt.generate_password_hash(password).decode('utf-8'),
        role='student',
        first_name=data['first_name'].strip(),
        last_name=data['last_name'].strip(),
        phone=data.get('phone'),
    )
    db.session.add(user)
    db.session.flush()

    student = Student(
        user_id=user.id,
        enrollment_number=data['enrollment_number'],
        birth_date=_parse_birth_date(data.get('birth_date')),
        address=data.get('address'),
        parent_phone=data.get('parent_phone'),
        parent_email=(data.get('parent_email') or '').strip().lower() or None,
        class_id=data['class_id'],
    )
    db.session.add(student)
    db.session.flush()

    link_parent_account(student)
    db.session.commit()
    return success(student.to_dict(), 'Student registered', 201)


@admin_bp.route('/students/<int:student_id>', methods=['GET'])
@admin_required
def show_student(student_id):
    student = _get_or_404(Student, student_id, 'Student')
    data = student.to_dict()
    data['report_cards'] = [
        c.to_dict(with_student=False)
        for c in student.report_cards.order_by(ReportCard.school_year.desc(), ReportCard.period).all()
    ]
    return success(data)


@admin_bp.route('/students/<int:student_id>', methods=['PUT'])
@admin_required
def update_student(student_id):
    """Update a student; changing class_id does not touch existing report cards"""
    student = _get_or_404(Student, student_id, 'Student')
    data = get_json()

    if 'class_id' in data:
        _get_or_404(ClassRoom, data['class_id'], 'Class')
        student.class_id = data['class_id']
    if 'birth_date' in data:
        student.birth_date = _parse_birth_date(data['birth_date'])
    for name in ('address', 'parent_phone'):
        if name in data:
            setattr(student, name, data[name])
    for name in ('first_name', 'last_name', 'phone'):
        if name in data:
            setattr(student.user, name, data[name])
    if 'parent_email' in data:
        student.parent_email = (data['parent_email'] or '').strip().lower() or None
        student.parent_id = None
        link_parent_account(student)

    db.session.commit()
    return success(student.to_dict(), 'Student updated')


@admin_bp.route('/students/<int:student_id>', methods=['DELETE'])
@admin_required
def delete_student(student_id):
    student = _get_or_404(Student, student_id, 'Student')
    db.session.delete(student.user)
    db.session.commit()
    return success(message='Student deleted')


# ============================================================================
# GRADES
# ============================================================================

@admin_bp.route('/grades', methods=['GET'])
@admin_required
def list_grades():
    query = Grade.query
    for name in ('student_id', 'subject_id', 'class_id'):
        value = request.args.get(name, type=int)
        if value is not None:
            query = query.filter(getattr(Grade, name) == value)
    if request.args.get('period'):
        query = query.filter(Grade.period == request.args['period'])
    return success(paginate(query.order_by(Grade.grade_date.desc(), Grade.id.desc()), lambda g: g.to_dict()))


@admin_bp.route('/grades', methods=['POST'])
@admin_required
def create_grade():
    grade = record_grade(get_json())
    return success(grade.to_dict(), 'Grade recorded', 201)


@admin_bp.route('/grades/<int:grade_id>', methods=['PUT'])
@admin_required
def edit_grade(grade_id):
    grade = update_grade(grade_id, get_json())
    return success(grade.to_dict(), 'Grade updated')


@admin_bp.route('/grades/<int:grade_id>', methods=['DELETE'])
@admin_required
def remove_grade(grade_id):
    delete_grade(grade_id)
    return success(message='Grade deleted')


# ============================================================================
# REPORT CARDS
# ============================================================================

@admin_bp.route('/report-cards', methods=['GET'])
@admin_required
def list_report_cards():
    """
    Report cards, newest first
    Filters: ?period= ?school_year= ?published= ?class_id= ?search=
    """
    query = ReportCard.query.join(Student, ReportCard.student_id == Student.id)\
        .join(User, Student.user_id == User.id)

    if request.args.get('period'):
        query = query.filter(ReportCard.period == request.args['period'])
    if request.args.get('school_year'):
        query = query.filter(ReportCard.school_year == request.args['school_year'])
    if 'published' in request.args:
        query = query.filter(ReportCard.published.is_(parse_bool(request.args['published'])))
    if request.args.get('class_id'):
        query = query.filter(Student.class_id == request.args.get('class_id', type=int))

    search = request.args.get('search')
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(
            User.first_name.ilike(pattern),
            User.last_name.ilike(pattern),
            Student.enrollment_number.ilike(pattern),
        ))

    query = query.order_by(ReportCard.created_at.desc(), ReportCard.id.desc())
    return success(paginate(query, lambda c: c.to_dict()), 'Report cards')


@admin_bp.route('/report-cards', methods=['POST'])
@admin_required
def create_report_card():
    data = get_json()
    require_fields(data, 'student_id', 'period', 'school_year')
    card = report_card_service.create_report_card(
        parse_int(data['student_id'], 'student_id'),
        data['period'],
        data['school_year'],
        remark=data.get('remark'),
    )
    return success(card.to_dict(), 'Report card generated', 201)


@admin_bp.route('/report-cards/<int:card_id>', methods=['GET'])
@admin_required
def show_report_card(card_id):
    card = report_card_service.get_report_card(card_id)
    return success(report_card_service.report_card_details(card), 'Report card details')


@admin_bp.route('/report-cards/<int:card_id>', methods=['PUT'])
@admin_required
def update_report_card(card_id):
    card = report_card_service.update_report_card(card_id, get_json())
    return success(card.to_dict(), 'Report card updated')


@admin_bp.route('/report-cards/<int:card_id>', methods=['DELETE'])
@admin_required
def delete_report_card(card_id):
    report_card_service.delete_report_card(card_id)
    return success(message='Report card deleted')


@admin_bp.route('/report-cards/<int:card_id>/publish', methods=['POST'])
@admin_required
def publish_report_card(card_id):
    outcome = report_card_service.publish_report_card(card_id, published_by=current_user.id)
    return success({
        'report_card': outcome.report_card.to_dict(),
        'deliveries': [
            {'user_id': user_id, 'delivered': delivered}
            for user_id, delivered in outcome.deliveries.items()
        ],
        'fully_delivered': outcome.fully_delivered,
    }, 'Report card published')


@admin_bp.route('/report-cards/generate-bulk', methods=['POST'])
@admin_required
def generate_bulk():
    data = get_json()
    require_fields(data, 'class_id', 'period', 'school_year')
    result = report_card_service.generate_for_class(
        parse_int(data['class_id'], 'class_id'),
        data['period'],
        data['school_year'],
        publish_immediately=parse_bool(data.get('publish_immediately')),
        published_by=current_user.id,
    )
    return success({
        'created_count': result.created_count,
        'errors': result.errors,
        'report_cards': [c.to_dict() for c in result.created],
    }, 'Report cards generated')


@admin_bp.route('/report-cards/recalculate-ranks', methods=['POST'])
@admin_required
def recalculate_ranks():
    data = get_json()
    require_fields(data, 'class_id', 'period', 'school_year')
    class_id = parse_int(data['class_id'], 'class_id')
    _get_or_404(ClassRoom, class_id, 'Class')
    report_card_service.validate_period(data['period'])

    cards = ranking.recalculate_ranks(class_id, data['period'], data['school_year'])
    return success({
        'updated_count': len(cards),
        'ranking': [
            {
                'report_card_id': c.id,
                'student_id': c.student_id,
                'average': float(c.average),
                'rank': c.rank,
                'total_students': c.total_students,
            }
            for c in cards
        ],
    }, 'Ranks recalculated')


# ============================================================================
# NOTIFICATIONS
# ============================================================================

@admin_bp.route('/notifications', methods=['GET'])
@admin_required
def list_notifications():
    query = Notification.query
    if request.args.get('user_id'):
        query = query.filter(Notification.user_id == request.args.get('user_id', type=int))
    if request.args.get('type'):
        query = query.filter(Notification.type == request.args['type'])
    return success(paginate(query.order_by(Notification.created_at.desc()), lambda n: n.to_dict()))


@admin_bp.route('/notifications', methods=['POST'])
@admin_required
def send_notification():
    """Send an in-app notification to users (user_ids) or a whole role"""
    data = get_json()
    require_fields(data, 'title', 'message')

    if data.get('role'):
        if data['role'] not in User.ROLES:
            raise ValidationError("Invalid role", allowed=list(User.ROLES))
        recipients = [u.id for u in User.query.filter_by(role=data['role']).all()]
    else:
        require_fields(data, 'user_ids')
        recipients = [parse_int(uid, 'user_ids') for uid in data['user_ids']]
        known = {u.id for u in User.query.filter(User.id.in_(recipients)).all()}
        unknown = [uid for uid in recipients if uid not in known]
        if unknown:
            raise NotFoundError("Unknown users", user_ids=unknown)

    for user_id in recipients:
        create_notification(
            user_id, data['title'], data['message'],
            type=data.get('type', 'info'),
            priority=data.get('priority', 'normale'),
            sent_by=current_user.id,
            action_link=data.get('action_link'),
        )
    db.session.commit()
    return success({'sent_count': len(recipients)}, 'Notification sent', 201)
