"""
Shared fixtures: a fresh in-memory database per test and small factories.

Service tests use the `ctx` fixture (app context pushed for the whole test).
API tests build their data inside `with app.app_context():` and only keep
ids, so every request gets its own app context (and its own current_user).
"""

import itertools
from datetime import date
from decimal import Decimal

import pytest

from app import create_app
from extensions import db, bcrypt
from models import ClassRoom, Grade, Student, Subject, Teacher, User

SCHOOL_YEAR = '2024-2025'
PASSWORD = 'secret123'


@pytest.fixture
def app():
    app = create_app('testing')
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def ctx(app):
    with app.app_context():
        yield app


@pytest.fixture
def client(app):
    return app.test_client()


class Factory:
    """Creates and commits model instances with unique defaults"""

    def __init__(self):
        self._seq = itertools.count(1)

    def user(self, role, email=None, password=PASSWORD, first_name=None, last_name='Test'):
        n = next(self._seq)
        user = User(
            email=email or f'{role}{n}@ecole.test',
            password=bcrypt.generate_password_hash(password).decode('utf-8'),
            role=role,
            first_name=first_name or f'{role.capitalize()}{n}',
            last_name=last_name,
        )
        db.session.add(user)
        db.session.commit()
        return user

    def admin(self, **kwargs):
        return self.user('admin', **kwargs)

    def teacher(self, **kwargs):
        user = self.user('teacher', **kwargs)
        teacher = Teacher(user_id=user.id, employee_number=f'EMP{user.id:04d}')
        db.session.add(teacher)
        db.session.commit()
        return teacher

    def classroom(self, name='6ème A', level='6ème', school_year=SCHOOL_YEAR, lead_teacher=None):
        classroom = ClassRoom(
            name=name,
            level=level,
            school_year=school_year,
            lead_teacher_id=lead_teacher.id if lead_teacher else None,
        )
        db.session.add(classroom)
        db.session.commit()
        return classroom

    def student(self, classroom, first_name=None, parent=None, parent_email=None, **kwargs):
        user = self.user('student', first_name=first_name, **kwargs)
        student = Student(
            user_id=user.id,
            enrollment_number=f'ELV{user.id:04d}',
            class_id=classroom.id,
            parent_id=parent.id if parent else None,
            parent_email=parent.email if parent else parent_email,
        )
        db.session.add(student)
        db.session.commit()
        return student

    def subject(self, teacher, name='Mathématiques', coefficient=None, code=None):
        n = next(self._seq)
        subject = Subject(
            name=name,
            code=code or f'SUB{n}',
            coefficient=coefficient,
            teacher_id=teacher.id,
        )
        db.session.add(subject)
        db.session.commit()
        return subject

    def grade(self, student, subject, value, period='trimestre_1', grade_date=None):
        grade = Grade(
            value=Decimal(str(value)),
            period=period,
            grade_date=grade_date or date(2024, 10, 15),
            student_id=student.id,
            subject_id=subject.id,
            class_id=student.class_id,
        )
        db.session.add(grade)
        db.session.commit()
        return grade

    def graded_student(self, classroom, subject, values, period='trimestre_1', **kwargs):
        student = self.student(classroom, **kwargs)
        for value in values:
            self.grade(student, subject, value, period=period)
        return student


@pytest.fixture
def factory():
    return Factory()


class FailingMailer:
    """Mail stand-in: records sent messages, fails for the given addresses"""

    def __init__(self, failing=()):
        self.failing = set(failing)
        self.sent = []

    def send(self, message):
        if self.failing.intersection(message.recipients):
            raise ConnectionError('SMTP server unreachable')
        self.sent.append(message)


@pytest.fixture
def failing_mailer():
    return FailingMailer


def login(client, email, password=PASSWORD):
    response = client.post('/auth/login', json={'email': email, 'password': password})
    assert response.status_code == 200, response.get_json()
    return {'Authorization': f"Bearer {response.get_json()['data']['token']}"}


@pytest.fixture
def auth_headers(client):
    def headers(email, password=PASSWORD):
        return login(client, email, password)
    return headers
