from decimal import Decimal

import pytest

from extensions import db
from models import Notification, ReportCard
from services import report_cards
from services.errors import NotFoundError, ValidationError
from services.mentions import ASSEZ_BIEN, EXCELLENT
from services.notifications import Notifier

from conftest import SCHOOL_YEAR


@pytest.fixture
def school(ctx, factory):
    teacher = factory.teacher()
    subject = factory.subject(teacher)
    classroom = factory.classroom()
    return factory, classroom, subject


class TestGenerateForClass:

    def test_end_to_end_ranking_with_tie(self, school):
        factory, classroom, subject = school
        a = factory.graded_student(classroom, subject, [18, 16], first_name='Awa')
        b = factory.graded_student(classroom, subject, [10, 10], first_name='Bakary')
        c = factory.graded_student(classroom, subject, [10, 10], first_name='Coumba')

        result = report_cards.generate_for_class(classroom.id, 'trimestre_1', SCHOOL_YEAR)

        assert result.created_count == 3
        assert result.errors == []
        cards = {card.student_id: card for card in ReportCard.query.all()}
        assert cards[a.id].average == Decimal('17.00')
        assert cards[a.id].mention == EXCELLENT
        assert cards[b.id].mention == ASSEZ_BIEN
        assert [cards[s.id].rank for s in (a, b, c)] == [1, 2, 2]
        assert {card.total_students for card in cards.values()} == {3}
        assert not any(card.published for card in cards.values())

    def test_failures_are_collected_per_student(self, school):
        factory, classroom, subject = school
        existing = factory.graded_student(classroom, subject, [19], first_name='Déjà')
        report_cards.create_report_card(existing.id, 'trimestre_1', SCHOOL_YEAR)
        factory.student(classroom, first_name='Sans', last_name='Notes')
        graded = factory.graded_student(classroom, subject, [12])

        result = report_cards.generate_for_class(classroom.id, 'trimestre_1', SCHOOL_YEAR)

        assert result.created_count == 1
        assert result.created[0].student_id == graded.id
        assert sorted(result.errors) == sorted([
            'Report card already exists for Déjà Test',
            'No grade for Sans Notes',
        ])

    def test_rerank_includes_cards_created_earlier(self, school):
        factory, classroom, subject = school
        earlier = factory.graded_student(classroom, subject, [11])
        earlier_card = report_cards.create_report_card(earlier.id, 'trimestre_1', SCHOOL_YEAR)
        better = factory.graded_student(classroom, subject, [15])

        report_cards.generate_for_class(classroom.id, 'trimestre_1', SCHOOL_YEAR)

        assert db.session.get(ReportCard, earlier_card.id).rank == 2
        assert ReportCard.query.filter_by(student_id=better.id).one().rank == 1

    def test_unique_constraint_race_is_recorded_and_batch_continues(self, school, monkeypatch):
        factory, classroom, subject = school
        raced = factory.graded_student(classroom, subject, [9], first_name='Awa')
        existing = report_cards.create_report_card(raced.id, 'trimestre_1', SCHOOL_YEAR)
        other = factory.graded_student(classroom, subject, [15])
        monkeypatch.setattr(report_cards, 'find_report_card', lambda *args: None)

        result = report_cards.generate_for_class(classroom.id, 'trimestre_1', SCHOOL_YEAR)

        assert result.errors == ['Report card already exists for Awa Test']
        assert [card.student_id for card in result.created] == [other.id]
        assert ReportCard.query.count() == 2
        assert db.session.get(ReportCard, existing.id).average == Decimal('9.00')
        assert db.session.get(ReportCard, existing.id).rank == 2

    def test_running_twice_only_reports_conflicts(self, school):
        factory, classroom, subject = school
        factory.graded_student(classroom, subject, [14])
        factory.graded_student(classroom, subject, [16])

        report_cards.generate_for_class(classroom.id, 'trimestre_1', SCHOOL_YEAR)
        second = report_cards.generate_for_class(classroom.id, 'trimestre_1', SCHOOL_YEAR)

        assert second.created_count == 0
        assert len(second.errors) == 2
        assert ReportCard.query.count() == 2

    def test_empty_class(self, school):
        _, classroom, _ = school
        result = report_cards.generate_for_class(classroom.id, 'trimestre_1', SCHOOL_YEAR)
        assert result.created_count == 0
        assert result.errors == []

    def test_unknown_class_and_period(self, school):
        _, classroom, _ = school
        with pytest.raises(NotFoundError):
            report_cards.generate_for_class(9999, 'trimestre_1', SCHOOL_YEAR)
        with pytest.raises(ValidationError):
            report_cards.generate_for_class(classroom.id, 'annuel', SCHOOL_YEAR)


class TestImmediatePublication:

    def test_notifications_carry_final_ranks(self, school, failing_mailer):
        factory, classroom, subject = school
        low = factory.graded_student(classroom, subject, [8])
        high = factory.graded_student(classroom, subject, [17])

        result = report_cards.generate_for_class(
            classroom.id, 'trimestre_1', SCHOOL_YEAR,
            publish_immediately=True, notifier=Notifier(failing_mailer()),
        )

        assert all(card.published for card in result.created)
        ranks = {
            n.user_id: n.get_extra_data()['rank']
            for n in Notification.query.filter_by(type='bulletin').all()
        }
        assert ranks == {high.user_id: 1, low.user_id: 2}

    def test_delivery_failures_are_reported_not_raised(self, school, failing_mailer):
        factory, classroom, subject = school
        parent = factory.user('parent', email='parent@ecole.test')
        student = factory.graded_student(classroom, subject, [13], parent=parent)

        result = report_cards.generate_for_class(
            classroom.id, 'trimestre_1', SCHOOL_YEAR,
            publish_immediately=True,
            notifier=Notifier(failing_mailer(failing=['parent@ecole.test'])),
        )

        card = result.created[0]
        assert card.published is True
        assert result.deliveries[card.id] == {student.user_id: True, parent.id: False}
        assert len(result.errors) == 1
        assert result.errors[0].startswith('Email not delivered')
