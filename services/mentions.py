"""
services/mentions.py - Mention Classifier
Maps an average (0-20) to its qualitative band. Thresholds are inclusive
lower bounds, checked from the highest band down.
"""

from decimal import Decimal

EXCELLENT = 'Excellent'
TRES_BIEN = 'Très bien'
BIEN = 'Bien'
ASSEZ_BIEN = 'Assez bien'
PASSABLE = 'Passable'
INSUFFISANT = 'Insuffisant'

MENTION_THRESHOLDS = (
    (Decimal('16'), EXCELLENT),
    (Decimal('14'), TRES_BIEN),
    (Decimal('12'), BIEN),
    (Decimal('10'), ASSEZ_BIEN),
    (Decimal('8'), PASSABLE),
)

MENTIONS = tuple(label for _, label in MENTION_THRESHOLDS) + (INSUFFISANT,)


def classify(average):
    """
    Return the mention for an average

    Args:
        average: Decimal, int, float or numeric string

    Returns:
        str: one of MENTIONS
    """
    value = Decimal(str(average))
    for threshold, label in MENTION_THRESHOLDS:
        if value >= threshold:
            return label
    return INSUFFISANT
