"""
services/ranking.py - Ranking Engine

RANKING METHODOLOGY:
- Report cards of a class/period/school year are sorted by average, highest first
- Tie handling: equal (2-decimal) averages share the rank of the first of the group
- Rank gaps: positions used by a tie are not reused ([18, 15, 15, 12] -> 1, 2, 2, 4)
- total_students is the class headcount, not the number of report cards

Ranks are only ever written onto existing report cards. Every run is a
full overwrite of the scope, so running it twice gives the same result.
"""

import logging
import threading
from contextlib import contextmanager
from decimal import Decimal, ROUND_HALF_UP
from functools import reduce

from extensions import db
from models import ReportCard, Student

logger = logging.getLogger(__name__)

TWO_PLACES = Decimal('0.01')

# key -> [RLock, number of holders and waiters]; entries go away with their last user
_scope_locks = {}
_registry_lock = threading.Lock()


@contextmanager
def scope_lock(class_id, period, school_year):
    """
    Serialize re-rank and bulk generation for one (class, period, year)

    Re-entrant, so a bulk generation holding the lock can re-rank its own scope.
    """
    key = (int(class_id), period, school_year)
    with _registry_lock:
        entry = _scope_locks.setdefault(key, [threading.RLock(), 0])
        entry[1] += 1
    try:
        with entry[0]:
            yield
    finally:
        with _registry_lock:
            entry[1] -= 1
            if entry[1] == 0:
                del _scope_locks[key]


def _rounded(average):
    value = average if isinstance(average, Decimal) else Decimal(str(average))
    return value.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def _rank_step(state, average):
    ranks, previous = state
    position = len(ranks) + 1
    if previous is not None and average == previous[0]:
        rank = previous[1]
    else:
        rank = position
    ranks.append(rank)
    return ranks, (average, rank)


def competition_ranks(sorted_averages):
    """
    Ranks for averages already sorted from highest to lowest

    Args:
        sorted_averages: iterable of averages, descending

    Returns:
        list[int]: rank of each average, same order
    """
    rounded = [_rounded(a) for a in sorted_averages]
    ranks, _ = reduce(_rank_step, rounded, ([], None))
    return ranks


def rank_entries(entries):
    """
    Sort (key, average) pairs and rank them

    Ties keep their input order, which decides who is listed first
    inside a tie group (not their rank).

    Returns:
        list of (key, rank) tuples, best average first
    """
    ordered = sorted(entries, key=lambda entry: _rounded(entry[1]), reverse=True)
    ranks = competition_ranks(average for _, average in ordered)
    return [(key, rank) for (key, _), rank in zip(ordered, ranks)]


def provisional_rank(average, existing_averages):
    """Rank of a new average among existing ones: 1 + number strictly above it"""
    value = _rounded(average)
    return 1 + sum(1 for other in existing_averages if _rounded(other) > value)


def class_headcount(class_id):
    """Number of students currently in the class"""
    return Student.query.filter_by(class_id=class_id).count()


def scope_cards(class_id, period, school_year):
    """Report cards whose student currently belongs to the class, for one period/year"""
    return ReportCard.query.join(Student, ReportCard.student_id == Student.id).filter(
        Student.class_id == class_id,
        ReportCard.period == period,
        ReportCard.school_year == school_year,
    ).order_by(ReportCard.id).all()


def assign_ranks(class_id, period, school_year):
    """
    Write rank and total_students on every card of the scope (no commit)

    Returns:
        list of ReportCard, best average first
    """
    cards = scope_cards(class_id, period, school_year)
    total = class_headcount(class_id)

    ranked = rank_entries([(card, card.average) for card in cards])
    for card, rank in ranked:
        card.rank = rank
        card.total_students = total
    db.session.flush()
    return [card for card, _ in ranked]


def recalculate_ranks(class_id, period, school_year):
    """
    Re-rank a class for one period and school year and commit

    Returns:
        list of ReportCard, best average first
    """
    with scope_lock(class_id, period, school_year):
        cards = assign_ranks(class_id, period, school_year)
        db.session.commit()

    logger.info(
        "Re-ranked %d report card(s) for class %s, %s %s",
        len(cards), class_id, period, school_year,
    )
    return cards


def ranked_scopes():
    """Every (class_id, period, school_year) that has at least one report card"""
    rows = db.session.query(
        Student.class_id, ReportCard.period, ReportCard.school_year
    ).join(Student, ReportCard.student_id == Student.id).distinct().order_by(
        Student.class_id, ReportCard.school_year, ReportCard.period
    ).all()
    return [(row[0], row[1], row[2]) for row in rows]


def recalculate_all_ranks():
    """
    Re-rank every scope that has report cards

    Returns:
        dict: {(class_id, period, school_year): [ReportCard, ...]}
    """
    results = {}
    for class_id, period, school_year in ranked_scopes():
        results[(class_id, period, school_year)] = recalculate_ranks(class_id, period, school_year)
    return results
