"""
Browser push delivery over the Web Push protocol (VAPID signed).
"""
import json
import logging

from django.conf import settings
from pywebpush import webpush, WebPushException

from .models import PushSubscription

logger = logging.getLogger(__name__)

STALE_SUBSCRIPTION_STATUSES = (404, 410)


def is_configured():
    return bool(settings.VAPID_PUBLIC_KEY and settings.VAPID_PRIVATE_KEY)


def send_push_to_user(user, title, body, url='/', tag=None):
    """
    Deliver a push message to every subscription the user registered.

    Returns the number of successful deliveries. Subscriptions the push
    service reports as gone are deleted; any other failure is logged and
    skipped.
    """
    if not is_configured() or not user.push_notifications:
        return 0

    payload = json.dumps({
        'title': title,
        'body': body,
        'url': url,
        'tag': tag or 'dreamx',
    })

    delivered = 0
    for subscription in PushSubscription.objects.filter(user=user):
        try:
            webpush(
                subscription_info=subscription.as_subscription_info(),
                data=payload,
                vapid_private_key=settings.VAPID_PRIVATE_KEY,
                vapid_claims={'sub': settings.VAPID_SUBJECT},
            )
            delivered += 1
        except WebPushException as e:
            status_code = getattr(e.response, 'status_code', None)
            if status_code in STALE_SUBSCRIPTION_STATUSES:
                logger.info(f"Removing expired push subscription {subscription.id} for {user.email}")
                subscription.delete()
            else:
                logger.warning(f"Push delivery to {user.email} failed: {e}")
    return delivered
