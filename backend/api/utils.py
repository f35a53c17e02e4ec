from __future__ import annotations

# Shared helpers for persistence side effects, sanitising and parsing

import logging
import re
from datetime import timedelta

import bleach
from django.utils import timezone

from .models import AuditLog, Notification, User

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 5000
MAX_COMMENT_LENGTH = 2000

SPECIAL_CHARACTERS = re.compile(r'[^A-Za-z0-9]')
DURATION_PATTERN = re.compile(r'^(\d+)([hdwm])$')
DURATION_UNITS = {
    'h': timedelta(hours=1),
    'd': timedelta(days=1),
    'w': timedelta(weeks=1),
    'm': timedelta(days=30),
}


def sanitize_text(value: str | None, max_length: int = MAX_MESSAGE_LENGTH) -> str:
    """Strip every HTML tag and clamp to max_length."""
    cleaned = bleach.clean(value or '', tags=[], strip=True).strip()
    return cleaned[:max_length]


def create_notification(
    user: User,
    notification_type: str,
    title: str,
    message: str,
    link: str = '',
) -> Notification:
    """Persist a notification and return the instance."""
    return Notification.objects.create(
        user=user,
        type=notification_type,
        title=title,
        message=message,
        link=link,
    )


def record_audit(actor: User | None, action: str, target_user: User | None = None, **details) -> AuditLog:
    return AuditLog.objects.create(
        actor=actor,
        target_user=target_user,
        action=action,
        details=details,
    )


def password_complexity_errors(password: str) -> list[str]:
    errors = []
    if len(password or '') < 8:
        errors.append('Password must be at least 8 characters long.')
    if not re.search(r'[A-Z]', password or ''):
        errors.append('Password must contain an uppercase letter.')
    if not re.search(r'[a-z]', password or ''):
        errors.append('Password must contain a lowercase letter.')
    if not re.search(r'\d', password or ''):
        errors.append('Password must contain a number.')
    if not SPECIAL_CHARACTERS.search(password or ''):
        errors.append('Password must contain a special character.')
    return errors


def parse_suspension_duration(duration=None, days=None) -> timedelta:
    """
    Resolve a suspension length.

    Accepts a compact duration such as ``12h``, ``7d``, ``2w`` or ``1m`` (30 days),
    or a plain number of days. Defaults to seven days.
    """
    if duration:
        match = DURATION_PATTERN.match(str(duration).strip().lower())
        if not match:
            raise ValueError('Duration must look like 12h, 7d, 2w or 1m.')
        amount = int(match.group(1))
        if amount <= 0:
            raise ValueError('Duration must be positive.')
        return DURATION_UNITS[match.group(2)] * amount
    if days is not None and days != '':
        try:
            days = int(days)
        except (TypeError, ValueError):
            raise ValueError('Days must be a whole number.')
        if days <= 0:
            raise ValueError('Days must be positive.')
        return timedelta(days=days)
    return timedelta(days=7)


def suspension_end(duration=None, days=None):
    return timezone.now() + parse_suspension_duration(duration, days)


def check_account_status(user: User) -> str:
    """
    Return the effective account status, lifting an expired suspension on
    the way.
    """
    if user.account_status == 'suspended' and not user.is_suspended:
        user.account_status = 'active'
        user.suspension_until = None
        user.moderation_reason = ''
        user.save(update_fields=['account_status', 'suspension_until', 'moderation_reason'])
        logger.info(f"Suspension for {user.email} expired and was lifted")
    return user.account_status


def account_block_reason(user: User) -> str | None:
    """Message explaining why ``user`` may not sign in, or None."""
    status = check_account_status(user)
    if status == 'banned':
        return 'This account has been banned.'
    if status == 'suspended':
        return f"This account is suspended until {user.suspension_until:%Y-%m-%d %H:%M} UTC."
    return None
