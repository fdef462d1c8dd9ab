"""
blueprints/common/routes.py - Routes shared by every role
Notification inbox, permissions and an authenticated health check.
"""

from datetime import datetime

from flask import Blueprint, request
from flask_login import current_user, login_required

from extensions import db
from models import Notification
from services.errors import NotFoundError
from blueprints.helpers import paginate, parse_bool, success

common_bp = Blueprint('common', __name__)

# What each role may do, shown to clients to build their menus
PERMISSIONS = {
    'admin': [
        'manage_users', 'manage_classes', 'manage_subjects', 'manage_grades',
        'manage_report_cards', 'publish_report_cards', 'send_notifications',
    ],
    'teacher': ['view_classes', 'manage_own_grades', 'view_report_cards'],
    'student': ['view_own_grades', 'view_own_report_cards'],
    'parent': ['view_children_grades', 'view_children_report_cards'],
}


def get_own_notification(notification_id):
    notification = Notification.query.filter_by(id=notification_id, user_id=current_user.id).first()
    if notification is None:
        raise NotFoundError(f"Notification {notification_id} not found")
    return notification


@common_bp.route('/notifications')
@login_required
def notifications():
    """Current user's notifications, newest first (?unread_only=true)"""
    query = Notification.query.filter_by(user_id=current_user.id)
    if parse_bool(request.args.get('unread_only')):
        query = query.filter_by(is_read=False)
    if request.args.get('type'):
        query = query.filter_by(type=request.args['type'])
    query = query.order_by(Notification.created_at.desc(), Notification.id.desc())
    return success(paginate(query, lambda n: n.to_dict()))


@common_bp.route('/notifications/unread-count')
@login_required
def unread_count():
    count = Notification.query.filter_by(user_id=current_user.id, is_read=False).count()
    return success({'unread_count': count})


@common_bp.route('/notifications/<int:notification_id>/read', methods=['POST'])
@login_required
def mark_read(notification_id):
    notification = get_own_notification(notification_id)
    if not notification.is_read:
        notification.mark_as_read()
        db.session.commit()
    return success(notification.to_dict(), 'Notification marked as read')


@common_bp.route('/notifications/mark-all-read', methods=['POST'])
@login_required
def mark_all_read():
    updated = Notification.query.filter_by(user_id=current_user.id, is_read=False).update(
        {'is_read': True, 'read_at': datetime.utcnow()}, synchronize_session=False
    )
    db.session.commit()
    return success({'updated_count': updated}, 'All notifications marked as read')


@common_bp.route('/permissions')
@login_required
def permissions():
    return success({
        'role': current_user.role,
        'permissions': PERMISSIONS.get(current_user.role, []),
    })


@common_bp.route('/health')
@login_required
def health():
    return success({'status': 'online', 'user_id': current_user.id})
