"""
Outbound email.

Every message is rendered from ``emails/message.html`` with a plain-text
alternative derived from it. Sending is best effort: failures are logged and
never raised to the caller.
"""
import logging

from django.conf import settings
from django.core.mail import EmailMultiAlternatives
from django.template.loader import render_to_string
from django.utils.html import strip_tags

logger = logging.getLogger(__name__)


def _absolute(path):
    if not path:
        return ''
    if path.startswith('http://') or path.startswith('https://'):
        return path
    return f"{settings.FRONTEND_URL.rstrip('/')}/{path.lstrip('/')}"


def send_templated_email(to_email, subject, heading, paragraphs, name='there', code=None,
                         action_url=None, action_label=None):
    context = {
        'heading': heading,
        'name': name,
        'paragraphs': paragraphs,
        'code': code,
        'action_url': _absolute(action_url),
        'action_label': action_label,
    }
    try:
        html_content = render_to_string('emails/message.html', context)
        text_content = strip_tags(html_content)
        msg = EmailMultiAlternatives(subject, text_content, settings.DEFAULT_FROM_EMAIL, [to_email])
        msg.attach_alternative(html_content, 'text/html')
        msg.send()
        return True
    except Exception as e:
        logger.warning(f"Email '{subject}' to {to_email} failed: {e}")
        return False


def send_verification_code(user, code):
    return send_templated_email(
        user.email,
        'Verify your Dream X email',
        'Confirm your email address',
        ['Use the code below to verify your email. It expires in 15 minutes.'],
        name=user.get_short_name(),
        code=code,
    )


def send_password_reset(user, token):
    return send_templated_email(
        user.email,
        'Reset your Dream X password',
        'Password reset requested',
        [
            'Someone asked to reset the password for your account. The link is valid for one hour.',
            'If this was not you, you can ignore this email.',
        ],
        name=user.get_short_name(),
        action_url=f"/reset-password?token={token}",
        action_label='Reset password',
    )


def send_notification_email(user, title, message, link=''):
    """Mirror of an in-app notification, sent only when the user opted in."""
    if not user.email_notifications:
        return False
    return send_templated_email(
        user.email,
        title,
        title,
        [message],
        name=user.get_short_name(),
        action_url=link or '/notifications',
        action_label='View on Dream X',
    )


ACCOUNT_ACTION_COPY = {
    'banned': ('Your Dream X account has been banned',
               'Your account has been permanently banned for violating our community guidelines.'),
    'suspended': ('Your Dream X account has been suspended',
                  'Your account has been temporarily suspended.'),
    'unbanned': ('Your Dream X account has been restored',
                 'Your account is active again. Welcome back.'),
    'seller_frozen': ('Your seller privileges have been frozen',
                      'You can no longer list services and your existing listings are hidden.'),
    'seller_unfrozen': ('Your seller privileges have been restored',
                        'You can list services again.'),
}


def send_account_action_email(user, action, reason='', until=None):
    subject, summary = ACCOUNT_ACTION_COPY[action]
    paragraphs = [summary]
    if reason:
        paragraphs.append(f"Reason: {reason}")
    if until is not None:
        paragraphs.append(f"This suspension ends on {until:%B %d, %Y at %H:%M} UTC.")
    if action in ('banned', 'suspended', 'seller_frozen'):
        paragraphs.append('If you believe this was a mistake you can submit an appeal.')
    return send_templated_email(
        user.email,
        subject,
        subject,
        paragraphs,
        name=user.get_short_name(),
        action_url='/appeals' if action in ('banned', 'suspended', 'seller_frozen') else '/',
        action_label='Submit an appeal' if action in ('banned', 'suspended', 'seller_frozen') else None,
    )


def send_appeal_decision(appeal):
    decision = 'approved' if appeal.status == 'approved' else 'denied'
    paragraphs = [f"Your appeal {appeal.case_number} has been {decision}."]
    if appeal.admin_notes:
        paragraphs.append(appeal.admin_notes)
    return send_templated_email(
        appeal.email,
        f"Update on appeal {appeal.case_number}",
        f"Appeal {decision}",
        paragraphs,
    )


def send_account_deleted(email, name):
    return send_templated_email(
        email,
        'Your Dream X account was deleted',
        'Account deleted',
        ['Your account and its content have been removed. We are sorry to see you go.'],
        name=name,
    )


def send_career_application_received(application):
    return send_templated_email(
        application.email,
        f"Application received: {application.position}",
        'Application received',
        [
            f"Thank you for applying for the {application.position} position at Dream X.",
            f"Your application number is {application.application_id}. Our team will review it "
            'and you can expect to hear from us within 5-7 business days.',
        ],
        name=application.name,
    )


CAREER_STATUS_COPY = {
    'under_review': 'Your application is currently under review by our team.',
    'accepted': 'We would like to move forward with your application. '
                'Our team will contact you soon to schedule an interview.',
    'rejected': 'After careful consideration we have decided to move forward with other candidates. '
                'We appreciate your interest in Dream X and encourage you to apply for future positions.',
}


def send_career_status_update(application):
    return send_templated_email(
        application.email,
        f"Application update: {application.position}",
        'Application status update',
        [
            f"Your application for the {application.position} position is now "
            f"{application.get_status_display().lower()}.",
            CAREER_STATUS_COPY.get(application.status, 'Your application status has been updated.'),
        ],
        name=application.name,
    )


def send_refund_decision(refund):
    paragraphs = [f"Your refund request {refund.case_number} is now {refund.get_status_display().lower()}."]
    if refund.status in ('approved', 'refunded') and refund.refund_amount is not None:
        paragraphs.append(f"Refund amount: ${refund.refund_amount}.")
    if refund.admin_notes:
        paragraphs.append(refund.admin_notes)
    return send_templated_email(
        refund.user.email,
        f"Update on refund request {refund.case_number}",
        'Refund request update',
        paragraphs,
        name=refund.user.get_short_name(),
        action_url='/billing',
        action_label='View billing',
    )
