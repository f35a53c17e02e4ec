"""
Notification fan-out.

``notify`` is a direct call chain run on the request path:

1. persist the Notification row
2. emit a ``notification`` event to the recipient's user room
3. send a Web Push message when the recipient enabled push
4. optionally mirror it by email when the recipient enabled email

Only step 1 can fail the caller. Steps 2-4 are best effort and log their own
failures.
"""
import logging

from . import emails, push, realtime
from .cache_utils import invalidate_unread_count
from .utils import create_notification

logger = logging.getLogger(__name__)


def serialize_notification(notification):
    return {
        'id': str(notification.id),
        'type': notification.type,
        'title': notification.title,
        'message': notification.message,
        'link': notification.link,
        'is_read': notification.is_read,
        'created_at': notification.created_at.isoformat(),
    }


def notify(user, notification_type, title, message, link='', email=False, actor=None):
    """Create a notification for ``user`` and fan it out. Self-notifications are skipped."""
    if actor is not None and actor.pk == user.pk:
        return None

    notification = create_notification(user, notification_type, title, message, link=link)
    invalidate_unread_count(str(user.id))

    realtime.emit_to_user(user.id, 'notification', serialize_notification(notification))

    if notification_type == 'message' and not user.message_notifications:
        return notification

    try:
        push.send_push_to_user(user, title, message, url=link or '/notifications', tag=notification_type)
    except Exception as e:
        logger.warning(f"Push fan-out for notification {notification.id} failed: {e}")

    if email:
        emails.send_notification_email(user, title, message, link=link)

    return notification
