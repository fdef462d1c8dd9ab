"""
services/notifications.py - Publication Notifier
Emails (Flask-Mail) plus in-app notifications. A failed email never fails
the caller: it is logged, the recipient gets an in-app notice that the
email could not be sent, and the attempt is reported as not delivered.
"""

import logging

from flask_mail import Message

from extensions import db, mail
from models import Notification, User

logger = logging.getLogger(__name__)


def create_notification(user_id, title, message, type='info', priority='normale',
                        sent_by=None, extra_data=None, action_link=None):
    """Add an in-app notification to the session (caller commits)"""
    notification = Notification(
        user_id=user_id,
        title=title,
        message=message,
        type=type,
        priority=priority,
        sent_by=sent_by,
        action_link=action_link,
    )
    notification.set_extra_data(extra_data)
    db.session.add(notification)
    return notification


class Notifier:
    """
    Sends one message to one user: email first, in-app record second
    """

    def __init__(self, mailer=None):
        self.mailer = mailer or mail

    def send_email(self, email, subject, body):
        self.mailer.send(Message(subject=subject, recipients=[email], body=body))

    def notify(self, recipient_id, subject, body, metadata=None, sent_by=None,
               action_link=None, priority='normale', type='bulletin'):
        """
        Deliver a message to a user

        Returns:
            bool: True if the email went out, False otherwise
        """
        user = db.session.get(User, recipient_id)
        if user is None:
            logger.warning("Notification skipped: user %s does not exist", recipient_id)
            return False

        try:
            self.send_email(user.email, subject, body)
        except Exception as exc:
            logger.warning("Email to user %s (%s) failed: %s", user.id, user.email, exc)
            create_notification(
                user.id,
                "⚠️ Erreur envoi email",
                f"L'email « {subject} » n'a pas pu être envoyé. Consultez directement votre espace.",
                type='erreur',
                priority='haute',
                sent_by=sent_by,
                extra_data={'email_error': str(exc), **(metadata or {})},
                action_link=action_link,
            )
            return False

        create_notification(
            user.id, subject, body,
            type=type, priority=priority, sent_by=sent_by,
            extra_data={**(metadata or {}), 'email_sent': True},
            action_link=action_link,
        )
        return True


def notify_report_card_published(card, sent_by=None, notifier=None):
    """
    Tell the student, and the linked parent if any, that a report card is out

    Each recipient is handled on its own: one failure does not stop the other.

    Returns:
        dict: {recipient_user_id: delivered}
    """
    notifier = notifier or Notifier()
    student = card.student
    deliveries = {}

    metadata = {
        'report_card_id': card.id,
        'period': card.period,
        'average': float(card.average),
        'mention': card.mention,
        'rank': card.rank,
        'total_students': card.total_students,
    }

    deliveries[student.user_id] = notifier.notify(
        student.user_id,
        f"📬 Bulletin disponible : {card.period_label}",
        (
            f"Votre bulletin du {card.period_label} ({card.school_year}) est disponible.\n"
            f"Moyenne : {card.average_display} - Mention : {card.mention} - "
            f"Rang : {card.rank_display}"
        ),
        metadata=metadata,
        sent_by=sent_by,
        action_link='/student/report-cards',
    )

    parent = student.parent
    if parent is not None:
        deliveries[parent.id] = notifier.notify(
            parent.id,
            f"👨‍👩‍👧 Bulletin de {student.get_full_name()} publié",
            (
                f"Le bulletin de {student.get_full_name()} pour le {card.period_label} "
                f"est maintenant disponible. Moyenne : {card.average_display} - "
                f"Mention : {card.mention}"
            ),
            metadata={**metadata, 'child_name': student.get_full_name()},
            sent_by=sent_by,
            action_link=f'/parent/children/{student.id}/report-cards',
            priority='haute',
        )

    db.session.commit()
    return deliveries
