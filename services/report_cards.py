"""
services/report_cards.py - Report Card Lifecycle and Bulk Generator

Lifecycle: Draft (published=False) -> Published (published=True), no way back.
A report card is a snapshot: grade edits made afterwards do not change it.

Bulk generation is a two-phase protocol run under the scope lock:
    1. stage_cards()  - create draft cards (placeholder rank 1), not committed
    2. commit_ranks() - re-rank the whole scope, then commit
so placeholder ranks are never visible outside the batch.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Dict, List, Optional

from flask import current_app
from sqlalchemy.exc import IntegrityError

from extensions import db
from models import ClassRoom, ReportCard, Student
from services import ranking
from services.averages import compute_average, period_grades, subject_breakdown
from services.errors import ConflictError, NotFoundError, PreconditionFailedError, ValidationError
from services.mentions import MENTIONS, classify
from services.notifications import notify_report_card_published

logger = logging.getLogger(__name__)

PLACEHOLDER_RANK = 1
UPDATABLE_FIELDS = ('average', 'mention', 'rank', 'total_students', 'remark', 'published')


@dataclass
class PublishOutcome:
    report_card: ReportCard
    deliveries: Dict[int, bool] = field(default_factory=dict)

    @property
    def fully_delivered(self):
        return all(self.deliveries.values())


@dataclass
class BulkResult:
    created: List[ReportCard] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    deliveries: Dict[int, Dict[int, bool]] = field(default_factory=dict)

    @property
    def created_count(self):
        return len(self.created)


def validate_period(period):
    if period not in current_app.config['PERIODS']:
        raise ValidationError(
            f"Invalid period '{period}'",
            allowed=list(current_app.config['PERIODS']),
        )


def get_report_card(card_id):
    card = db.session.get(ReportCard, card_id)
    if card is None:
        raise NotFoundError(f"Report card {card_id} not found")
    return card


def find_report_card(student_id, period, school_year):
    return ReportCard.query.filter_by(
        student_id=student_id, period=period, school_year=school_year
    ).first()


def _compute_snapshot(student, period):
    """Average and mention of a student for a period, or PreconditionFailedError"""
    average = compute_average(period_grades(student.id, period))
    if average is None:
        raise PreconditionFailedError(
            f"No grade found for {student.get_full_name()} in {period}",
            student_id=student.id, period=period,
        )
    return average, classify(average)


# ============================================================================
# SINGLE CARD
# ============================================================================

def create_report_card(student_id, period, school_year, remark=None):
    """
    Create a draft report card for one student

    Rank is provisional: 1 + number of existing cards of the same
    class/period/year with a strictly better average. Other cards are not
    touched; run ranking.recalculate_ranks() to restore a consistent scope.

    Raises:
        NotFoundError, ConflictError, PreconditionFailedError, ValidationError
    """
    validate_period(period)
    student = db.session.get(Student, student_id)
    if student is None:
        raise NotFoundError(f"Student {student_id} not found")

    if find_report_card(student.id, period, school_year):
        logger.warning("Report card already exists: student %s, %s %s", student.id, period, school_year)
        raise ConflictError(
            "A report card already exists for this period",
            student_id=student.id, period=period, school_year=school_year,
        )

    average, mention = _compute_snapshot(student, period)

    existing = ranking.scope_cards(student.class_id, period, school_year)
    card = ReportCard(
        student_id=student.id,
        period=period,
        school_year=school_year,
        average=average,
        mention=mention,
        rank=ranking.provisional_rank(average, [c.average for c in existing]),
        total_students=ranking.class_headcount(student.class_id),
        remark=remark,
        published=False,
    )
    db.session.add(card)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError(
            "A report card already exists for this period",
            student_id=student_id, period=period, school_year=school_year,
        )

    logger.info(
        "Report card %s created: student %s, %s %s, average %s (%s), rank %s/%s",
        card.id, student.id, period, school_year, average, mention, card.rank, card.total_students,
    )
    return card


def publish_report_card(card_id, published_by=None, notifier=None):
    """
    Publish a report card and notify the student and parent

    Publishing twice is allowed and sends the notifications again.
    Delivery failures are returned in the outcome, never raised.
    """
    card = get_report_card(card_id)
    card.published = True
    db.session.commit()

    deliveries = notify_report_card_published(card, sent_by=published_by, notifier=notifier)
    logger.info("Report card %s published (deliveries: %s)", card.id, deliveries)
    return PublishOutcome(report_card=card, deliveries=deliveries)


def _coerce_update(name, value):
    if name == 'average':
        try:
            number = Decimal(str(value))
        except (InvalidOperation, ValueError):
            raise ValidationError("average must be a number")
        if not number.is_finite():
            raise ValidationError("average must be a number")
        if not Decimal(0) <= number <= Decimal(20):
            raise ValidationError("average must be between 0 and 20")
        return number
    if name == 'mention':
        if value not in MENTIONS:
            raise ValidationError("Invalid mention", allowed=list(MENTIONS))
        return value
    if name in ('rank', 'total_students'):
        if isinstance(value, bool) or not isinstance(value, int) or value < 1:
            raise ValidationError(f"{name} must be a positive integer")
        return value
    if name == 'published':
        if not isinstance(value, bool):
            raise ValidationError("published must be a boolean")
        return value
    return value


def update_report_card(card_id, fields):
    """
    Partial update of the mutable fields that were explicitly supplied

    Nothing is recomputed; call ranking.recalculate_ranks() if needed.
    """
    card = get_report_card(card_id)
    updates = {name: _coerce_update(name, fields[name]) for name in UPDATABLE_FIELDS if name in fields}

    rank = updates.get('rank', card.rank)
    total = updates.get('total_students', card.total_students)
    if rank > total:
        raise ValidationError("rank cannot exceed total_students")

    for name, value in updates.items():
        setattr(card, name, value)
    db.session.commit()
    return card


def delete_report_card(card_id):
    card = get_report_card(card_id)
    db.session.delete(card)
    db.session.commit()


def report_card_details(card):
    """Report card plus its per-subject breakdown for the period"""
    config = current_app.config
    return {
        'report_card': card.to_dict(),
        'subjects': subject_breakdown(
            period_grades(card.student_id, card.period),
            default_coefficients=config['SUBJECT_COEFFICIENT_DEFAULTS'],
            fallback_coefficient=config['DEFAULT_SUBJECT_COEFFICIENT'],
        ),
    }


# ============================================================================
# BULK GENERATION
# ============================================================================

def stage_cards(classroom, period, school_year, result):
    """
    Phase 1: add draft cards for every student of the class (no commit)

    Each student is staged in its own savepoint so one failure leaves
    the others in place. Failures are appended to result.errors.
    """
    students = classroom.students.order_by(Student.id).all()
    headcount = len(students)

    for student in students:
        name = student.get_full_name()

        if find_report_card(student.id, period, school_year):
            result.errors.append(f"Report card already exists for {name}")
            continue

        try:
            average, mention = _compute_snapshot(student, period)
        except PreconditionFailedError:
            result.errors.append(f"No grade for {name}")
            continue

        card = ReportCard(
            student_id=student.id,
            period=period,
            school_year=school_year,
            average=average,
            mention=mention,
            rank=PLACEHOLDER_RANK,
            total_students=headcount,
            published=False,
        )
        try:
            with db.session.begin_nested():
                db.session.add(card)
        except IntegrityError:
            result.errors.append(f"Report card already exists for {name}")
            continue
        result.created.append(card)

    return result


def commit_ranks(classroom, period, school_year, result):
    """Phase 2: re-rank the scope if anything was staged, then commit"""
    if result.created:
        ranking.assign_ranks(classroom.id, period, school_year)
    db.session.commit()
    return result


def generate_for_class(class_id, period, school_year, publish_immediately=False,
                       published_by=None, notifier=None):
    """
    Generate report cards for every student of a class

    One student's failure (existing card, no grades) never aborts the batch.
    When publish_immediately is set, cards are published after the re-rank
    so notifications carry the final rank.

    Returns:
        BulkResult
    """
    validate_period(period)
    classroom = db.session.get(ClassRoom, class_id)
    if classroom is None:
        raise NotFoundError(f"Class {class_id} not found")

    result = BulkResult()
    with ranking.scope_lock(classroom.id, period, school_year):
        try:
            stage_cards(classroom, period, school_year, result)
            commit_ranks(classroom, period, school_year, result)
        except Exception:
            db.session.rollback()
            raise

    if publish_immediately:
        for card in result.created:
            outcome = publish_report_card(card.id, published_by=published_by, notifier=notifier)
            result.deliveries[card.id] = outcome.deliveries
            failed = [uid for uid, ok in outcome.deliveries.items() if not ok]
            if failed:
                result.errors.append(
                    f"Email not delivered for {card.student.get_full_name()} (users {failed})"
                )

    logger.info(
        "Bulk generation for class %s, %s %s: %d created, %d error(s)",
        classroom.id, period, school_year, result.created_count, len(result.errors),
    )
    return result
