import pytest

from extensions import db
from models import ReportCard, User

from conftest import SCHOOL_YEAR


@pytest.fixture
def school(app, factory):
    """A class of two graded students, one with a parent; returns ids and emails"""
    with app.app_context():
        admin = factory.admin(email='admin@ecole.test')
        teacher = factory.teacher(email='prof@ecole.test')
        other_teacher = factory.teacher(email='autre@ecole.test')
        subject = factory.subject(teacher)
        other_subject = factory.subject(other_teacher, name='Anglais')
        classroom = factory.classroom()
        parent = factory.user('parent', email='parent@ecole.test')
        first = factory.graded_student(classroom, subject, [18, 16], email='awa@ecole.test', parent=parent)
        second = factory.graded_student(classroom, subject, [10, 12], email='bakary@ecole.test')
        outsider = factory.graded_student(factory.classroom(name='5ème B'), other_subject, [9])
        return {
            'admin_id': admin.id,
            'subject_id': subject.id,
            'other_subject_id': other_subject.id,
            'class_id': classroom.id,
            'first_id': first.id,
            'second_id': second.id,
            'outsider_id': outsider.id,
        }


class TestAuthentication:

    def test_login_returns_bearer_token(self, client, school):
        response = client.post('/auth/login', json={'email': 'admin@ecole.test', 'password': 'secret123'})
        body = response.get_json()
        assert response.status_code == 200
        assert body['data']['token_type'] == 'bearer'
        assert body['data']['user']['role'] == 'admin'

    def test_wrong_password(self, client, school):
        response = client.post('/auth/login', json={'email': 'admin@ecole.test', 'password': 'nope'})
        assert response.status_code == 401
        assert response.get_json()['error'] == 'invalid_credentials'

    def test_missing_or_invalid_token(self, client, school):
        assert client.get('/admin/dashboard').status_code == 401
        response = client.get('/admin/dashboard', headers={'Authorization': 'Bearer not-a-token'})
        assert response.status_code == 401
        assert response.get_json()['error'] == 'unauthenticated'

    def test_logout_revokes_token(self, client, school, auth_headers):
        headers = auth_headers('admin@ecole.test')
        assert client.post('/auth/logout', headers=headers).status_code == 200
        assert client.get('/auth/profile', headers=headers).status_code == 401

    def test_wrong_role_is_forbidden(self, client, school, auth_headers):
        headers = auth_headers('awa@ecole.test')
        response = client.get('/admin/report-cards', headers=headers)
        assert response.status_code == 403
        assert response.get_json()['error'] == 'forbidden'

    def test_first_admin_registration_closed_once_an_admin_exists(self, client, school):
        response = client.post('/auth/register-first-admin', json={
            'first_name': 'New', 'last_name': 'Admin', 'email': 'new@ecole.test', 'password': 'secret123',
        })
        assert response.status_code == 403

    def test_health_is_public(self, client):
        assert client.get('/api/health').get_json()['status'] == 'online'


class TestAdminReportCards:

    def test_create_conflict_and_no_grades_status_codes(self, client, school, auth_headers):
        headers = auth_headers('admin@ecole.test')
        payload = {'student_id': school['first_id'], 'period': 'trimestre_1', 'school_year': SCHOOL_YEAR}

        created = client.post('/admin/report-cards', json=payload, headers=headers)
        assert created.status_code == 201
        assert created.get_json()['data']['average'] == 17.0

        conflict = client.post('/admin/report-cards', json=payload, headers=headers)
        assert conflict.status_code == 409
        assert conflict.get_json()['error'] == 'conflict'

        no_grades = client.post('/admin/report-cards', json={**payload, 'period': 'trimestre_2'}, headers=headers)
        assert no_grades.status_code == 422
        assert no_grades.get_json()['error'] == 'no_grades'

        missing = client.post('/admin/report-cards', json={**payload, 'student_id': 9999}, headers=headers)
        assert missing.status_code == 404

    def test_bulk_generation_and_publication(self, client, app, school, auth_headers):
        headers = auth_headers('admin@ecole.test')

        response = client.post('/admin/report-cards/generate-bulk', json={
            'class_id': school['class_id'], 'period': 'trimestre_1', 'school_year': SCHOOL_YEAR,
        }, headers=headers)
        data = response.get_json()['data']
        assert response.status_code == 200
        assert data['created_count'] == 2
        ranks = {card['student_id']: card['rank'] for card in data['report_cards']}
        assert ranks == {school['first_id']: 1, school['second_id']: 2}

        card_id = data['report_cards'][0]['id']
        published = client.post(f'/admin/report-cards/{card_id}/publish', headers=headers)
        assert published.status_code == 200
        assert published.get_json()['data']['report_card']['published'] is True

        listing = client.get('/admin/report-cards?published=true', headers=headers).get_json()['data']
        assert [item['id'] for item in listing['items']] == [card_id]

    def test_details_and_recalculate(self, client, app, school, auth_headers):
        headers = auth_headers('admin@ecole.test')
        client.post('/admin/report-cards/generate-bulk', json={
            'class_id': school['class_id'], 'period': 'trimestre_1', 'school_year': SCHOOL_YEAR,
        }, headers=headers)
        with app.app_context():
            card_id = ReportCard.query.filter_by(student_id=school['first_id']).one().id

        details = client.get(f'/admin/report-cards/{card_id}', headers=headers).get_json()['data']
        assert details['subjects'][0]['grade_count'] == 2

        response = client.post('/admin/report-cards/recalculate-ranks', json={
            'class_id': school['class_id'], 'period': 'trimestre_1', 'school_year': SCHOOL_YEAR,
        }, headers=headers)
        assert response.get_json()['data']['updated_count'] == 2

    def test_update_rejects_rank_above_total(self, client, school, auth_headers):
        headers = auth_headers('admin@ecole.test')
        card = client.post('/admin/report-cards', json={
            'student_id': school['first_id'], 'period': 'trimestre_1', 'school_year': SCHOOL_YEAR,
        }, headers=headers).get_json()['data']

        response = client.put(f"/admin/report-cards/{card['id']}", json={'rank': 50}, headers=headers)
        assert response.status_code == 400
        assert response.get_json()['error'] == 'validation_error'

    def test_update_rejects_non_finite_average(self, client, school, auth_headers):
        headers = auth_headers('admin@ecole.test')
        card = client.post('/admin/report-cards', json={
            'student_id': school['first_id'], 'period': 'trimestre_1', 'school_year': SCHOOL_YEAR,
        }, headers=headers).get_json()['data']

        response = client.put(
            f"/admin/report-cards/{card['id']}", data='{"average": NaN}',
            content_type='application/json', headers=headers,
        )
        assert response.status_code == 400
        assert response.get_json()['error'] == 'validation_error'


class TestStudentAndParentViews:

    def test_student_sees_only_published_cards(self, client, app, school, auth_headers):
        admin = auth_headers('admin@ecole.test')
        client.post('/admin/report-cards/generate-bulk', json={
            'class_id': school['class_id'], 'period': 'trimestre_1', 'school_year': SCHOOL_YEAR,
        }, headers=admin)

        student = auth_headers('awa@ecole.test')
        assert client.get('/student/report-cards', headers=student).get_json()['data'] == []

        with app.app_context():
            card_id = ReportCard.query.filter_by(student_id=school['first_id']).one().id
        client.post(f'/admin/report-cards/{card_id}/publish', headers=admin)

        cards = client.get('/student/report-cards', headers=student).get_json()['data']
        assert [c['id'] for c in cards] == [card_id]
        detail = client.get(f'/student/report-cards/{card_id}', headers=student)
        assert detail.status_code == 200

    def test_student_cannot_read_someone_elses_card(self, client, app, school, auth_headers):
        admin = auth_headers('admin@ecole.test')
        card = client.post('/admin/report-cards', json={
            'student_id': school['second_id'], 'period': 'trimestre_1', 'school_year': SCHOOL_YEAR,
        }, headers=admin).get_json()['data']
        client.post(f"/admin/report-cards/{card['id']}/publish", headers=admin)

        response = client.get(f"/student/report-cards/{card['id']}", headers=auth_headers('awa@ecole.test'))
        assert response.status_code == 404

    def test_parent_sees_published_cards_of_their_child_only(self, client, app, school, auth_headers):
        admin = auth_headers('admin@ecole.test')
        card = client.post('/admin/report-cards', json={
            'student_id': school['first_id'], 'period': 'trimestre_1', 'school_year': SCHOOL_YEAR,
        }, headers=admin).get_json()['data']
        client.post(f"/admin/report-cards/{card['id']}/publish", headers=admin)

        parent = auth_headers('parent@ecole.test')
        children = client.get('/parent/children', headers=parent).get_json()['data']
        assert [c['id'] for c in children] == [school['first_id']]

        cards = client.get(f"/parent/children/{school['first_id']}/report-cards", headers=parent)
        assert [c['id'] for c in cards.get_json()['data']['report_cards']] == [card['id']]

        other = client.get(f"/parent/children/{school['second_id']}/report-cards", headers=parent)
        assert other.status_code == 404

    def test_publication_reaches_notification_inbox(self, client, app, school, auth_headers):
        admin = auth_headers('admin@ecole.test')
        card = client.post('/admin/report-cards', json={
            'student_id': school['first_id'], 'period': 'trimestre_1', 'school_year': SCHOOL_YEAR,
        }, headers=admin).get_json()['data']
        client.post(f"/admin/report-cards/{card['id']}/publish", headers=admin)

        parent = auth_headers('parent@ecole.test')
        count = client.get('/common/notifications/unread-count', headers=parent).get_json()['data']
        assert count['unread_count'] == 1

        inbox = client.get('/common/notifications', headers=parent).get_json()['data']['items']
        notification_id = inbox[0]['id']
        client.post(f'/common/notifications/{notification_id}/read', headers=parent)
        count = client.get('/common/notifications/unread-count', headers=parent).get_json()['data']
        assert count['unread_count'] == 0


class TestTeacherGrades:

    def test_teacher_grades_own_subject_only(self, client, school, auth_headers):
        headers = auth_headers('prof@ecole.test')

        created = client.post('/teacher/grades', json={
            'student_id': school['second_id'], 'subject_id': school['subject_id'],
            'value': 14.5, 'period': 'trimestre_1', 'evaluation_type': 'controle',
        }, headers=headers)
        assert created.status_code == 201
        assert created.get_json()['data']['type_label'] == 'Contrôle'

        forbidden = client.post('/teacher/grades', json={
            'student_id': school['second_id'], 'subject_id': school['other_subject_id'],
            'value': 14, 'period': 'trimestre_1',
        }, headers=headers)
        assert forbidden.status_code == 403

    @pytest.mark.parametrize('value', [-1, 20.5, 'abc'])
    def test_out_of_scale_values_rejected(self, client, school, auth_headers, value):
        response = client.post('/teacher/grades', json={
            'student_id': school['second_id'], 'subject_id': school['subject_id'],
            'value': value, 'period': 'trimestre_1',
        }, headers=auth_headers('prof@ecole.test'))
        assert response.status_code == 400

    def test_grade_edit_does_not_change_existing_card(self, client, app, school, auth_headers):
        admin = auth_headers('admin@ecole.test')
        card = client.post('/admin/report-cards', json={
            'student_id': school['second_id'], 'period': 'trimestre_1', 'school_year': SCHOOL_YEAR,
        }, headers=admin).get_json()['data']

        client.post('/teacher/grades', json={
            'student_id': school['second_id'], 'subject_id': school['subject_id'],
            'value': 20, 'period': 'trimestre_1',
        }, headers=auth_headers('prof@ecole.test'))

        with app.app_context():
            assert float(db.session.get(ReportCard, card['id']).average) == 11.0


class TestAdminManagement:

    def test_student_registration_links_parent_account(self, client, app, school, auth_headers):
        headers = auth_headers('admin@ecole.test')
        response = client.post('/admin/students', json={
            'first_name': 'Fatou', 'last_name': 'Diallo', 'email': 'fatou@ecole.test',
            'enrollment_number': 'ELV-NEW', 'class_id': school['class_id'],
            'parent_email': 'Parent@Ecole.test',
        }, headers=headers)

        assert response.status_code == 201
        with app.app_context():
            parent = User.query.filter_by(email='parent@ecole.test').one()
            assert response.get_json()['data']['parent_id'] == parent.id

    def test_class_with_students_cannot_be_deleted(self, client, school, auth_headers):
        headers = auth_headers('admin@ecole.test')
        response = client.delete(f"/admin/classes/{school['class_id']}", headers=headers)
        assert response.status_code == 409

        empty = client.post('/admin/classes', json={'name': '4ème C', 'level': '4ème'}, headers=headers)
        assert empty.status_code == 201
        deleted = client.delete(f"/admin/classes/{empty.get_json()['data']['id']}", headers=headers)
        assert deleted.status_code == 200

    def test_send_notification_to_a_role(self, client, school, auth_headers):
        headers = auth_headers('admin@ecole.test')
        response = client.post('/admin/notifications', json={
            'title': 'Réunion', 'message': 'Réunion parents-professeurs vendredi', 'role': 'parent',
        }, headers=headers)
        assert response.status_code == 201
        assert response.get_json()['data']['sent_count'] == 1

    @pytest.mark.parametrize('body', [
        '{"coefficient": NaN}',
        '{"coefficient": Infinity}',
        '{"coefficient": "inf"}',
        '{"coefficient": 100}',
        '{"coefficient": 0}',
        '{"coefficient": true}',
    ])
    def test_subject_coefficient_must_fit_the_column(self, client, school, auth_headers, body):
        headers = auth_headers('admin@ecole.test')
        response = client.put(
            f"/admin/subjects/{school['subject_id']}", data=body,
            content_type='application/json', headers=headers,
        )
        assert response.status_code == 400
        assert response.get_json()['error'] == 'validation_error'

    def test_subject_coefficient_accepted_below_limit(self, client, school, auth_headers):
        response = client.put(
            f"/admin/subjects/{school['subject_id']}", json={'coefficient': 99.5},
            headers=auth_headers('admin@ecole.test'),
        )
        assert response.status_code == 200
        assert response.get_json()['data']['coefficient'] == 99.5
