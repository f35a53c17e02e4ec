from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation

from django.db import transaction
from django.utils import timezone
from rest_framework.exceptions import PermissionDenied

from . import emails
from .cache_utils import invalidate_on_user_change
from .models import (
    AccountAppeal, AdminNote, CareerApplication, ContentAppeal, Post, PostComment, RefundRequest, Service, User,
    UserReport,
)
from .notifications import notify
from .services import ReviewService
from .utils import record_audit, suspension_end

logger = logging.getLogger(__name__)

REPORT_STATUSES = [value for value, _ in UserReport.STATUS_CHOICES]
APPEAL_STATUSES = [value for value, _ in ContentAppeal.STATUS_CHOICES]
REFUND_STATUSES = [value for value, _ in RefundRequest.STATUS_CHOICES]
CAREER_STATUSES = [value for value, _ in CareerApplication.STATUS_CHOICES]


class ModerationService:
    """
    Admin actions against users and content.

    Every action writes an AuditLog entry. Actions aimed at a user also
    notify that user.
    """

    @staticmethod
    def _guard_target(admin: User, target: User) -> None:
        if admin.pk == target.pk:
            raise ValueError('You cannot moderate your own account.')
        if target.role == 'super_admin' and admin.role != 'super_admin':
            raise PermissionDenied('Only a super admin can moderate another super admin.')

    @staticmethod
    def _save(user: User, fields: list[str]) -> None:
        user.save(update_fields=fields)
        invalidate_on_user_change(user)

    @staticmethod
    def ban(admin: User, target: User, reason: str = '', send_email: bool = True) -> User:
        ModerationService._guard_target(admin, target)
        target.account_status = 'banned'
        target.suspension_until = None
        target.moderation_reason = reason
        ModerationService._save(target, ['account_status', 'suspension_until', 'moderation_reason'])
        record_audit(admin, 'user_banned', target_user=target, reason=reason)
        notify(target, 'account_banned', 'Account banned',
               reason or 'Your account has been banned.')
        if send_email:
            emails.send_account_action_email(target, 'banned', reason=reason)
        logger.warning(f"Admin {admin.email} banned {target.email}")
        return target

    @staticmethod
    def suspend(admin: User, target: User, reason: str = '', duration=None, days=None,
                send_email: bool = True) -> User:
        ModerationService._guard_target(admin, target)
        until = suspension_end(duration, days)
        target.account_status = 'suspended'
        target.suspension_until = until
        target.moderation_reason = reason
        ModerationService._save(target, ['account_status', 'suspension_until', 'moderation_reason'])
        record_audit(admin, 'user_suspended', target_user=target, reason=reason, until=until.isoformat())
        notify(target, 'account_suspended', 'Account suspended',
               f"Your account is suspended until {until:%Y-%m-%d %H:%M} UTC.")
        if send_email:
            emails.send_account_action_email(target, 'suspended', reason=reason, until=until)
        logger.warning(f"Admin {admin.email} suspended {target.email} until {until.isoformat()}")
        return target

    @staticmethod
    def unban(admin: User, target: User, send_email: bool = True) -> User:
        previous = target.account_status
        target.account_status = 'active'
        target.suspension_until = None
        target.moderation_reason = ''
        ModerationService._save(target, ['account_status', 'suspension_until', 'moderation_reason'])
        record_audit(admin, 'user_unbanned', target_user=target, previous_status=previous)
        notify(target, 'account_restored', 'Account restored', 'Your account is active again.', link='/')
        if send_email:
            emails.send_account_action_email(target, 'unbanned')
        return target

    @staticmethod
    def set_role(admin: User, target: User, role: str) -> User:
        if admin.role != 'super_admin':
            raise PermissionDenied('Only a super admin can change roles.')
        if role not in dict(User.ROLE_CHOICES):
            raise ValueError('Unknown role.')
        if admin.pk == target.pk:
            raise ValueError('You cannot change your own role.')
        previous = target.role
        target.role = role
        target.is_staff = role in ('admin', 'super_admin')
        ModerationService._save(target, ['role', 'is_staff'])
        record_audit(admin, 'role_changed', target_user=target, previous_role=previous, role=role)
        notify(target, 'role_changed', 'Your role changed', f"Your role is now {target.get_role_display()}.")
        return target

    @staticmethod
    def freeze_seller(admin: User, target: User, reason: str = '') -> User:
        ModerationService._guard_target(admin, target)
        with transaction.atomic():
            target.seller_privileges_frozen = True
            target.moderation_reason = reason
            ModerationService._save(target, ['seller_privileges_frozen', 'moderation_reason'])
            frozen = Service.objects.filter(user=target, status='active').update(status='frozen')
            record_audit(admin, 'seller_frozen', target_user=target, reason=reason, services_frozen=frozen)
        notify(target, 'seller_frozen', 'Seller privileges frozen',
               reason or 'Your seller privileges have been frozen.', link='/services')
        emails.send_account_action_email(target, 'seller_frozen', reason=reason)
        return target

    @staticmethod
    def unfreeze_seller(admin: User, target: User) -> User:
        with transaction.atomic():
            target.seller_privileges_frozen = False
            ModerationService._save(target, ['seller_privileges_frozen'])
            restored = Service.objects.filter(user=target, status='frozen').update(status='active')
            record_audit(admin, 'seller_unfrozen', target_user=target, services_restored=restored)
        notify(target, 'seller_unfrozen', 'Seller privileges restored', 'You can list services again.',
               link='/services')
        emails.send_account_action_email(target, 'seller_unfrozen')
        return target

    @staticmethod
    def set_chat_frozen(admin: User, target: User, frozen: bool, reason: str = '') -> User:
        if frozen:
            ModerationService._guard_target(admin, target)
        target.chat_privileges_frozen = frozen
        ModerationService._save(target, ['chat_privileges_frozen'])
        record_audit(admin, 'chat_frozen' if frozen else 'chat_unfrozen', target_user=target, reason=reason)
        if frozen:
            notify(target, 'chat_frozen', 'Messaging frozen',
                   reason or 'Your messaging privileges have been frozen.', link='/messages')
        else:
            notify(target, 'chat_unfrozen', 'Messaging restored', 'You can send messages again.',
                   link='/messages')
        return target

    @staticmethod
    def set_blocking_locked(admin: User, target: User, locked: bool, reason: str = '') -> User:
        target.blocking_locked = locked
        target.blocking_locked_reason = reason if locked else ''
        ModerationService._save(target, ['blocking_locked', 'blocking_locked_reason'])
        record_audit(admin, 'blocking_locked' if locked else 'blocking_unlocked', target_user=target, reason=reason)
        notify(
            target,
            'blocking_locked' if locked else 'blocking_unlocked',
            'Blocking disabled' if locked else 'Blocking enabled',
            reason or ('A moderator disabled blocking on your account.' if locked else 'You can block users again.'),
        )
        return target

    @staticmethod
    def add_note(admin: User, target: User, note: str) -> AdminNote:
        note = (note or '').strip()
        if not note:
            raise ValueError('Note cannot be empty.')
        admin_note = AdminNote.objects.create(user=target, author=admin, note=note)
        record_audit(admin, 'admin_note_added', target_user=target)
        return admin_note

    @staticmethod
    def update_report(admin: User, report: UserReport, status: str, admin_notes: str = '') -> UserReport:
        if status not in REPORT_STATUSES:
            raise ValueError(f"Status must be one of: {', '.join(REPORT_STATUSES)}")
        report.status = status
        if admin_notes:
            report.admin_notes = admin_notes
        report.reviewed_by = admin
        report.reviewed_at = timezone.now()
        report.save(update_fields=['status', 'admin_notes', 'reviewed_by', 'reviewed_at'])
        record_audit(admin, 'report_updated', target_user=report.reported_user, report_id=str(report.id),
                     status=status)
        return report

    @staticmethod
    def moderate_post(admin: User, post: Post, action: str, reason: str = '') -> Post | None:
        if action == 'hide':
            post.is_hidden = True
            post.save(update_fields=['is_hidden'])
        elif action == 'unhide':
            post.is_hidden = False
            post.save(update_fields=['is_hidden'])
        elif action != 'delete':
            raise ValueError('Action must be hide, unhide or delete.')
        record_audit(admin, f"post_{action}", target_user=post.user, post_id=str(post.id), reason=reason)
        if action != 'unhide':
            notify(
                post.user,
                'content_removed',
                'Your post was removed' if action == 'delete' else 'Your post was hidden',
                reason or 'It was found to violate our community guidelines.',
                link='/appeals',
            )
        if action == 'delete':
            post.delete()
            return None
        return post

    @staticmethod
    def moderate_comment(admin: User, comment: PostComment, action: str, reason: str = '') -> PostComment:
        if action == 'hide':
            comment.is_hidden = True
        elif action == 'delete':
            comment.is_deleted = True
        elif action == 'restore':
            comment.is_hidden = False
            comment.is_deleted = False
        else:
            raise ValueError('Action must be hide, delete or restore.')
        comment.moderated_by = admin
        comment.moderated_at = timezone.now()
        comment.save(update_fields=['is_hidden', 'is_deleted', 'moderated_by', 'moderated_at'])
        record_audit(admin, f"comment_{action}", target_user=comment.user, comment_id=str(comment.id), reason=reason)
        if action != 'restore':
            notify(comment.user, 'content_removed', 'Your comment was removed',
                   reason or 'It was found to violate our community guidelines.', link='/appeals')
        return comment

    @staticmethod
    def moderate_service(admin: User, service: Service, action: str, reason: str = '') -> Service | None:
        owner = service.user
        if action == 'hide':
            service.status = 'hidden'
            service.save(update_fields=['status', 'updated_at'])
        elif action == 'unhide':
            service.status = 'frozen' if owner.seller_privileges_frozen else 'active'
            service.save(update_fields=['status', 'updated_at'])
        elif action != 'delete':
            raise ValueError('Action must be hide, unhide or delete.')
        record_audit(admin, f"service_{action}", target_user=owner, service_id=str(service.id), reason=reason)
        if action != 'unhide':
            verb = 'hidden' if action == 'hide' else 'deleted'
            notify(owner, 'content_removed', f"Your service \"{service.title}\" was {verb}",
                   reason or 'It was found to violate our community guidelines.', link='/appeals')
        if action == 'delete':
            service.delete()
            return None
        return service

    @staticmethod
    def moderate_review(admin: User, review, action: str):
        review = ReviewService.moderate(review, admin, action)
        record_audit(admin, f"review_{action}", target_user=review.user, review_id=str(review.id))
        return review

    @staticmethod
    def update_appeal(admin: User, appeal, status: str, admin_notes: str = ''):
        if status not in APPEAL_STATUSES:
            raise ValueError(f"Status must be one of: {', '.join(APPEAL_STATUSES)}")
        appeal.status = status
        appeal.admin_notes = admin_notes or appeal.admin_notes
        appeal.reviewed_by = admin
        appeal.reviewed_at = timezone.now()
        appeal.save(update_fields=['status', 'admin_notes', 'reviewed_by', 'reviewed_at'])
        record_audit(admin, 'appeal_updated', target_user=appeal.user, case_number=appeal.case_number, status=status)

        if isinstance(appeal, AccountAppeal) and status == 'approved' and appeal.user is not None:
            if appeal.user.account_status != 'active':
                ModerationService.unban(admin, appeal.user, send_email=False)
        if status != 'pending':
            emails.send_appeal_decision(appeal)
        return appeal

    @staticmethod
    def update_refund_request(admin: User, refund: RefundRequest, status: str, admin_notes: str = '',
                              refund_amount=None) -> RefundRequest:
        """
        Move a refund request through pending, processing, approved, denied
        and refunded. Approving or refunding without an explicit amount
        grants the full requested amount.
        """
        if status not in REFUND_STATUSES:
            raise ValueError(f"Status must be one of: {', '.join(REFUND_STATUSES)}")
        if refund_amount not in (None, ''):
            try:
                refund_amount = Decimal(str(refund_amount))
            except InvalidOperation:
                raise ValueError('Refund amount must be a number.')
            if not refund_amount.is_finite() or refund_amount <= 0 or refund_amount > refund.amount:
                raise ValueError(f"Refund amount must be above 0 and at most {refund.amount}.")
            refund.refund_amount = refund_amount
        elif status in ('approved', 'refunded') and refund.refund_amount is None:
            refund.refund_amount = refund.amount

        refund.status = status
        refund.admin_notes = admin_notes or refund.admin_notes
        refund.reviewed_by = admin
        refund.reviewed_at = timezone.now()
        refund.save(update_fields=['status', 'admin_notes', 'refund_amount', 'reviewed_by', 'reviewed_at'])
        record_audit(
            admin, 'refund_request_updated', target_user=refund.user, case_number=refund.case_number,
            status=status, refund_amount=str(refund.refund_amount) if refund.refund_amount is not None else None,
        )
        notify(refund.user, 'refund_update', 'Refund request update',
               f"Your refund request {refund.case_number} is now {refund.get_status_display().lower()}.",
               link='/billing')
        if status in ('approved', 'denied', 'refunded'):
            emails.send_refund_decision(refund)
        return refund

    @staticmethod
    def update_career_application(admin: User, application: CareerApplication, status: str) -> CareerApplication:
        if status not in CAREER_STATUSES:
            raise ValueError(f"Status must be one of: {', '.join(CAREER_STATUSES)}")
        application.status = status
        application.reviewed_by = admin
        application.reviewed_at = timezone.now()
        application.save(update_fields=['status', 'reviewed_by', 'reviewed_at'])
        record_audit(admin, 'career_status_updated', application_id=application.application_id, status=status)
        if status != 'new':
            emails.send_career_status_update(application)
        return application


def delete_own_account(user: User, confirmation: str) -> None:
    """Self-service account deletion. Moderation never hard-deletes users."""
    if confirmation != 'DELETE':
        raise ValueError('Type DELETE to confirm account deletion.')
    email, name = user.email, user.get_short_name()
    with transaction.atomic():
        record_audit(None, 'account_deleted', email=email)
        user.delete()
    emails.send_account_deleted(email, name)
    logger.info(f"Account {email} deleted by its owner")
