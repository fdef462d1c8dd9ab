"""
models.py - Database Models
School management: users, classes, subjects, grades, report cards, notifications
"""

from extensions import db
from flask_login import UserMixin
from datetime import datetime
from config import Config
import json


class User(UserMixin, db.Model):
    """
    Base User Model - Authentication for all users
    """
    __tablename__ = 'user'

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(120), unique=True, nullable=False, index=True)
    password = db.Column(db.String(255), nullable=False)
    role = db.Column(db.String(20), nullable=False)  # 'admin', 'teacher', 'student', 'parent'
    first_name = db.Column(db.String(100), nullable=False)
    last_name = db.Column(db.String(100), nullable=False)
    phone = db.Column(db.String(30), nullable=True)

    # Bumped on logout to revoke outstanding bearer tokens
    token_version = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    # Relationships
    student_profile = db.relationship('Student', backref='user', uselist=False,
                                      foreign_keys='Student.user_id', cascade='all, delete-orphan')
    teacher_profile = db.relationship('Teacher', backref='user', uselist=False, cascade='all, delete-orphan')
    children = db.relationship('Student', backref='parent', lazy='dynamic', foreign_keys='Student.parent_id')

    ROLES = ('admin', 'teacher', 'student', 'parent')

    def __repr__(self):
        return f'<User {self.email} ({self.role})>'

    def get_full_name(self):
        return f"{self.first_name} {self.last_name}"

    def is_admin(self):
        return self.role == 'admin'

    def is_teacher(self):
        return self.role == 'teacher'

    def is_student(self):
        return self.role == 'student'

    def is_parent(self):
        return self.role == 'parent'

    def to_dict(self):
        return {
            'id': self.id,
            'email': self.email,
            'role': self.role,
            'first_name': self.first_name,
            'last_name': self.last_name,
            'full_name': self.get_full_name(),
            'phone': self.phone,
        }


class Teacher(db.Model):
    """
    Teacher Profile - Extended teacher information
    """
    __tablename__ = 'teacher'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, unique=True)

    employee_number = db.Column(db.String(50), unique=True, nullable=False, index=True)
    specialization = db.Column(db.String(200), nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    # Relationships
    subjects = db.relationship('Subject', backref='teacher', lazy='dynamic')
    led_classes = db.relationship('ClassRoom', backref='lead_teacher', lazy='dynamic')

    def __repr__(self):
        return f'<Teacher {self.employee_number}>'

    def taught_class_ids(self):
        """Classes where this teacher graded something or is the lead teacher"""
        graded = db.session.query(Grade.class_id).join(Subject).filter(
            Subject.teacher_id == self.id
        ).distinct()
        ids = {row.class_id for row in graded}
        ids.update(c.id for c in self.led_classes)
        return ids

    def to_dict(self):
        return {
            'id': self.id,
            'user': self.user.to_dict() if self.user else None,
            'employee_number': self.employee_number,
            'specialization': self.specialization,
        }


class ClassRoom(db.Model):
    """
    ClassRoom - A group of students for one school year
    """
    __tablename__ = 'classroom'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    level = db.Column(db.String(50), nullable=False)
    school_year = db.Column(db.String(20), nullable=False)
    lead_teacher_id = db.Column(db.Integer, db.ForeignKey('teacher.id'), nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    # Relationships
    students = db.relationship('Student', backref='classroom', lazy='dynamic')
    grades = db.relationship('Grade', backref='classroom', lazy='dynamic')

    __table_args__ = (
        db.Index('ix_classroom_level_year', 'level', 'school_year'),
    )

    def __repr__(self):
        return f'<ClassRoom {self.name} ({self.school_year})>'

    def headcount(self):
        """Number of students currently enrolled in the class"""
        return self.students.count()

    def to_dict(self, with_counts=False):
        data = {
            'id': self.id,
            'name': self.name,
            'level': self.level,
            'school_year': self.school_year,
            'lead_teacher_id': self.lead_teacher_id,
        }
        if with_counts:
            data['student_count'] = self.headcount()
        return data


class Student(db.Model):
    """
    Student Profile - Extended student information
    """
    __tablename__ = 'student'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, unique=True)

    enrollment_number = db.Column(db.String(50), unique=True, nullable=False, index=True)
    birth_date = db.Column(db.Date, nullable=True)
    address = db.Column(db.Text, nullable=True)
    parent_phone = db.Column(db.String(30), nullable=True)
    parent_email = db.Column(db.String(120), nullable=True)

    class_id = db.Column(db.Integer, db.ForeignKey('classroom.id'), nullable=False, index=True)
    parent_id = db.Column(db.Integer, db.ForeignKey('user.id', ondelete='SET NULL'), nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    # Relationships
    grades = db.relationship('Grade', backref='student', lazy='dynamic', cascade='all, delete-orphan')
    report_cards = db.relationship('ReportCard', backref='student', lazy='dynamic', cascade='all, delete-orphan')

    def __repr__(self):
        return f'<Student {self.enrollment_number}>'

    def get_full_name(self):
        return self.user.get_full_name() if self.user else self.enrollment_number

    def to_dict(self):
        return {
            'id': self.id,
            'enrollment_number': self.enrollment_number,
            'full_name': self.get_full_name(),
            'email': self.user.email if self.user else None,
            'birth_date': self.birth_date.isoformat() if self.birth_date else None,
            'address': self.address,
            'parent_phone': self.parent_phone,
            'parent_email': self.parent_email,
            'class_id': self.class_id,
            'class_name': self.classroom.name if self.classroom else None,
            'parent_id': self.parent_id,
        }


class Subject(db.Model):
    """
    Subject - Taught by one teacher, weighted by a coefficient
    The coefficient is informational (per-subject breakdown only).
    """
    __tablename__ = 'subject'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    code = db.Column(db.String(20), unique=True, nullable=False, index=True)
    coefficient = db.Column(db.Numeric(4, 2), nullable=True)
    level = db.Column(db.String(50), nullable=True)
    teacher_id = db.Column(db.Integer, db.ForeignKey('teacher.id'), nullable=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    grades = db.relationship('Grade', backref='subject', lazy='dynamic', cascade='all, delete-orphan')

    def __repr__(self):
        return f'<Subject {self.code} - {self.name}>'

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'code': self.code,
            'coefficient': float(self.coefficient) if self.coefficient is not None else None,
            'level': self.level,
            'teacher_id': self.teacher_id,
        }


class Grade(db.Model):
    """
    Grade - One evaluation of a student in a subject, on a 0-20 scale
    """
    __tablename__ = 'grade'

    id = db.Column(db.Integer, primary_key=True)
    value = db.Column(db.Numeric(4, 2), nullable=False)
    period = db.Column(db.String(20), nullable=False)
    evaluation_type = db.Column(db.String(50), nullable=False, default='devoir')
    grade_date = db.Column(db.Date, nullable=False, default=lambda: datetime.utcnow().date())
    comment = db.Column(db.Text, nullable=True)

    student_id = db.Column(db.Integer, db.ForeignKey('student.id'), nullable=False)
    subject_id = db.Column(db.Integer, db.ForeignKey('subject.id'), nullable=False)
    class_id = db.Column(db.Integer, db.ForeignKey('classroom.id'), nullable=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        db.Index('ix_grade_student_subject_period', 'student_id', 'subject_id', 'period'),
        db.Index('ix_grade_class_period', 'class_id', 'period'),
    )

    def __repr__(self):
        return f'<Grade Student:{self.student_id} Subject:{self.subject_id} {self.value}>'

    @property
    def type_label(self):
        return Config.EVALUATION_TYPE_LABELS.get(
            self.evaluation_type, (self.evaluation_type or '').capitalize()
        )

    def to_dict(self):
        return {
            'id': self.id,
            'value': float(self.value),
            'period': self.period,
            'evaluation_type': self.evaluation_type,
            'type_label': self.type_label,
            'grade_date': self.grade_date.isoformat() if self.grade_date else None,
            'comment': self.comment,
            'student_id': self.student_id,
            'subject_id': self.subject_id,
            'subject_name': self.subject.name if self.subject else None,
            'class_id': self.class_id,
        }


class ReportCard(db.Model):
    """
    ReportCard (bulletin) - Snapshot of a student's results for one period
    Not kept in sync with later grade edits; ranks are rewritten by the
    ranking engine (services/ranking.py).
    """
    __tablename__ = 'report_card'

    id = db.Column(db.Integer, primary_key=True)
    period = db.Column(db.String(20), nullable=False)
    school_year = db.Column(db.String(20), nullable=False)
    average = db.Column(db.Numeric(4, 2), nullable=False)
    mention = db.Column(db.String(20), nullable=False)
    rank = db.Column(db.Integer, nullable=False)
    total_students = db.Column(db.Integer, nullable=False)
    published = db.Column(db.Boolean, nullable=False, default=False)
    remark = db.Column(db.Text, nullable=True)

    student_id = db.Column(db.Integer, db.ForeignKey('student.id', ondelete='CASCADE'), nullable=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint('student_id', 'period', 'school_year', name='uq_report_card_student_period_year'),
        db.Index('ix_report_card_published_period', 'published', 'period'),
    )

    def __repr__(self):
        return f'<ReportCard Student:{self.student_id} {self.period} {self.school_year}>'

    @property
    def period_label(self):
        return Config.PERIOD_LABELS.get(self.period, self.period)

    @property
    def rank_display(self):
        return f"{self.rank}/{self.total_students}"

    @property
    def average_display(self):
        return f"{self.average:.2f}/20"

    def to_dict(self, with_student=True):
        data = {
            'id': self.id,
            'period': self.period,
            'period_label': self.period_label,
            'school_year': self.school_year,
            'average': float(self.average),
            'mention': self.mention,
            'rank': self.rank,
            'total_students': self.total_students,
            'rank_display': self.rank_display,
            'published': self.published,
            'remark': self.remark,
            'student_id': self.student_id,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }
        if with_student and self.student:
            data['student'] = self.student.to_dict()
        return data


class Notification(db.Model):
    """
    In-app notification addressed to one user
    """
    __tablename__ = 'notification'

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(255), nullable=False)
    message = db.Column(db.Text, nullable=False)
    type = db.Column(db.String(20), nullable=False, default='info')  # info, bulletin, note, urgent, erreur
    priority = db.Column(db.String(20), nullable=False, default='normale')  # basse, normale, haute, urgente
    is_read = db.Column(db.Boolean, nullable=False, default=False)
    read_at = db.Column(db.DateTime, nullable=True)
    extra_data = db.Column(db.Text, nullable=True)  # JSON string
    action_link = db.Column(db.String(255), nullable=True)

    user_id = db.Column(db.Integer, db.ForeignKey('user.id', ondelete='CASCADE'), nullable=False)
    sent_by = db.Column(db.Integer, db.ForeignKey('user.id', ondelete='SET NULL'), nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    __table_args__ = (
        db.Index('ix_notification_user_read', 'user_id', 'is_read', 'created_at'),
    )

    def __repr__(self):
        return f'<Notification User:{self.user_id} {self.title}>'

    def get_extra_data(self):
        if self.extra_data:
            try:
                return json.loads(self.extra_data)
            except json.JSONDecodeError:
                return {}
        return {}

    def set_extra_data(self, data):
        self.extra_data = json.dumps(data, default=str) if data is not None else None

    def mark_as_read(self):
        self.is_read = True
        self.read_at = datetime.utcnow()

    def to_dict(self):
        return {
            'id': self.id,
            'title': self.title,
            'message': self.message,
            'type': self.type,
            'priority': self.priority,
            'is_read': self.is_read,
            'read_at': self.read_at.isoformat() if self.read_at else None,
            'extra_data': self.get_extra_data(),
            'action_link': self.action_link,
            'sent_by': self.sent_by,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


class SystemSettings(db.Model):
    """
    System-wide settings stored in database
    Allows admin to override auto-calculated values
    """
    __tablename__ = 'system_settings'

    id = db.Column(db.Integer, primary_key=True)
    setting_key = db.Column(db.String(100), unique=True, nullable=False, index=True)
    setting_value = db.Column(db.String(200), nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f'<SystemSettings {self.setting_key}={self.setting_value}>'

    @staticmethod
    def get_setting(key, default=None):
        setting = SystemSettings.query.filter_by(setting_key=key).first()
        return setting.setting_value if setting else default

    @staticmethod
    def set_setting(key, value):
        setting = SystemSettings.query.filter_by(setting_key=key).first()
        if setting:
            setting.setting_value = value
        else:
            setting = SystemSettings(setting_key=key, setting_value=value)
            db.session.add(setting)
        db.session.commit()
        return setting
