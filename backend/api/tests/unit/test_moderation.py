"""
Unit tests for admin moderation actions and account status checks
"""
import pytest
from datetime import timedelta
from decimal import Decimal
from django.utils import timezone
from rest_framework.exceptions import PermissionDenied

from api.models import AccountAppeal, AuditLog, ContentAppeal, Notification, Post, Service
from api.moderation import ModerationService, delete_own_account
from api.utils import account_block_reason, check_account_status
from api.tests.helpers.factories import (
    AdminUserFactory, CareerApplicationFactory, PostCommentFactory, PostFactory, RefundRequestFactory,
    ServiceFactory, SuperAdminFactory, UserFactory, UserReportFactory,
)


@pytest.mark.django_db
@pytest.mark.unit
class TestAccountStatus:

    def test_ban(self, mailoutbox):
        admin = AdminUserFactory()
        target = UserFactory()
        ModerationService.ban(admin, target, reason='Spam')
        target.refresh_from_db()
        assert target.account_status == 'banned'
        assert account_block_reason(target) == 'This account has been banned.'
        assert AuditLog.objects.filter(actor=admin, target_user=target, action='user_banned').exists()
        assert len(mailoutbox) == 1
        notification = Notification.objects.get(user=target, type='account_banned')
        assert notification.message == 'Spam'

    def test_suspend_with_duration(self):
        target = UserFactory()
        before = timezone.now()
        ModerationService.suspend(AdminUserFactory(), target, reason='Cool off', duration='2w')
        target.refresh_from_db()
        assert target.account_status == 'suspended'
        assert target.suspension_until >= before + timedelta(weeks=2)
        assert 'suspended until' in account_block_reason(target)
        notification = Notification.objects.get(user=target, type='account_suspended')
        assert f"{target.suspension_until:%Y-%m-%d %H:%M} UTC" in notification.message

    def test_suspend_rejects_bad_duration(self):
        target = UserFactory()
        with pytest.raises(ValueError):
            ModerationService.suspend(AdminUserFactory(), target, duration='forever')
        target.refresh_from_db()
        assert target.account_status == 'active'

    def test_expired_suspension_is_lifted(self):
        target = UserFactory(account_status='suspended', suspension_until=timezone.now() - timedelta(minutes=1))
        assert check_account_status(target) == 'active'
        target.refresh_from_db()
        assert target.account_status == 'active'
        assert target.suspension_until is None
        assert account_block_reason(target) is None

    def test_unban_notifies(self):
        target = UserFactory(account_status='banned')
        ModerationService.unban(AdminUserFactory(), target, send_email=False)
        target.refresh_from_db()
        assert target.account_status == 'active'
        assert Notification.objects.filter(user=target, type='account_restored').exists()

    def test_cannot_moderate_self(self):
        admin = AdminUserFactory()
        with pytest.raises(ValueError):
            ModerationService.ban(admin, admin)

    def test_admin_cannot_moderate_super_admin(self):
        with pytest.raises(PermissionDenied):
            ModerationService.ban(AdminUserFactory(), SuperAdminFactory())

    def test_only_super_admin_changes_roles(self):
        target = UserFactory()
        with pytest.raises(PermissionDenied):
            ModerationService.set_role(AdminUserFactory(), target, 'admin')

        ModerationService.set_role(SuperAdminFactory(), target, 'admin')
        target.refresh_from_db()
        assert target.role == 'admin'
        assert target.is_staff is True


@pytest.mark.django_db
@pytest.mark.unit
class TestPrivilegeFreezes:

    def test_freeze_seller_freezes_services(self):
        seller = UserFactory()
        services = ServiceFactory.create_batch(2, user=seller)
        ServiceFactory(user=seller, status='hidden')
        ModerationService.freeze_seller(AdminUserFactory(), seller, reason='Chargebacks')

        seller.refresh_from_db()
        assert seller.seller_privileges_frozen is True
        assert set(Service.objects.filter(user=seller, status='frozen')) == set(services)
        assert Service.objects.filter(user=seller, status='hidden').count() == 1

    def test_unfreeze_seller_restores_frozen_services(self):
        seller = UserFactory()
        ServiceFactory(user=seller)
        admin = AdminUserFactory()
        ModerationService.freeze_seller(admin, seller)
        ModerationService.unfreeze_seller(admin, seller)
        assert Service.objects.filter(user=seller, status='active').count() == 1

    def test_chat_freeze_toggle(self):
        target = UserFactory()
        admin = AdminUserFactory()
        ModerationService.set_chat_frozen(admin, target, True, reason='Harassment')
        assert target.chat_privileges_frozen is True
        ModerationService.set_chat_frozen(admin, target, False)
        target.refresh_from_db()
        assert target.chat_privileges_frozen is False
        assert AuditLog.objects.filter(target_user=target, action__in=['chat_frozen', 'chat_unfrozen']).count() == 2

    def test_blocking_lock(self):
        target = UserFactory()
        ModerationService.set_blocking_locked(AdminUserFactory(), target, True, reason='Abuse of blocks')
        target.refresh_from_db()
        assert target.blocking_locked is True
        assert target.blocking_locked_reason == 'Abuse of blocks'


@pytest.mark.django_db
@pytest.mark.unit
class TestContentModeration:

    def test_hide_and_unhide_post(self):
        post = PostFactory()
        admin = AdminUserFactory()
        ModerationService.moderate_post(admin, post, 'hide', reason='Off topic')
        post.refresh_from_db()
        assert post.is_hidden is True
        assert Notification.objects.filter(user=post.user, type='content_removed').exists()

        ModerationService.moderate_post(admin, post, 'unhide')
        post.refresh_from_db()
        assert post.is_hidden is False

    def test_delete_post(self):
        post = PostFactory()
        assert ModerationService.moderate_post(AdminUserFactory(), post, 'delete') is None
        assert not Post.objects.filter(pk=post.pk).exists()

    def test_unknown_action(self):
        with pytest.raises(ValueError):
            ModerationService.moderate_post(AdminUserFactory(), PostFactory(), 'archive')

    def test_comment_soft_delete(self):
        comment = PostCommentFactory()
        admin = AdminUserFactory()
        ModerationService.moderate_comment(admin, comment, 'delete')
        comment.refresh_from_db()
        assert comment.is_deleted is True
        assert comment.moderated_by == admin

    def test_report_status(self):
        report = UserReportFactory()
        ModerationService.update_report(AdminUserFactory(), report, 'resolved', admin_notes='Warned')
        report.refresh_from_db()
        assert report.status == 'resolved'
        assert report.admin_notes == 'Warned'

        with pytest.raises(ValueError):
            ModerationService.update_report(AdminUserFactory(), report, 'escalated')


@pytest.mark.django_db
@pytest.mark.unit
class TestAppeals:

    def test_case_numbers(self):
        content = ContentAppeal.objects.create(email='a@test.com', appeal_reason='Mistake', content_type='post')
        account = AccountAppeal.objects.create(email='b@test.com', appeal_reason='Sorry', account_action='banned')
        assert content.case_number == f'CA-{content.id}'
        assert account.case_number == f'AA-{account.id}'

    def test_approved_account_appeal_restores_account(self, mailoutbox):
        user = UserFactory(account_status='banned')
        appeal = AccountAppeal.objects.create(
            user=user, email=user.email, appeal_reason='It was not me', account_action='banned',
        )
        ModerationService.update_appeal(AdminUserFactory(), appeal, 'approved')
        user.refresh_from_db()
        assert user.account_status == 'active'
        assert any(appeal.case_number in message.subject or appeal.case_number in message.body
                   for message in mailoutbox)

    def test_denied_appeal_keeps_ban(self):
        user = UserFactory(account_status='banned')
        appeal = AccountAppeal.objects.create(user=user, email=user.email, appeal_reason='Please',
                                              account_action='banned')
        ModerationService.update_appeal(AdminUserFactory(), appeal, 'denied')
        user.refresh_from_db()
        assert user.account_status == 'banned'


@pytest.mark.django_db
@pytest.mark.unit
class TestDeleteOwnAccount:

    def test_requires_confirmation(self):
        user = UserFactory()
        with pytest.raises(ValueError):
            delete_own_account(user, 'delete')

    def test_deletes_and_audits(self, mailoutbox):
        user = UserFactory()
        email = user.email
        delete_own_account(user, 'DELETE')
        assert not type(user).objects.filter(email=email).exists()
        assert AuditLog.objects.filter(action='account_deleted', details__email=email).exists()
        assert mailoutbox[0].to == [email]


@pytest.mark.django_db
@pytest.mark.unit
class TestRefundReview:

    def test_approve_defaults_to_full_amount(self, mailoutbox):
        refund = RefundRequestFactory(amount=Decimal('29.99'))
        admin = AdminUserFactory()
        ModerationService.update_refund_request(admin, refund, 'approved', admin_notes='Duplicate charge')
        refund.refresh_from_db()
        assert refund.status == 'approved'
        assert refund.refund_amount == Decimal('29.99')
        assert refund.reviewed_by == admin
        assert Notification.objects.filter(user=refund.user, type='refund_update').exists()
        assert AuditLog.objects.filter(action='refund_request_updated',
                                       details__case_number=refund.case_number).exists()
        assert mailoutbox[0].to == [refund.user.email]
        assert 'Duplicate charge' in mailoutbox[0].body

    def test_partial_refund_amount(self):
        refund = RefundRequestFactory(amount=Decimal('29.99'))
        ModerationService.update_refund_request(AdminUserFactory(), refund, 'refunded', refund_amount='10.50')
        refund.refresh_from_db()
        assert refund.refund_amount == Decimal('10.50')

    @pytest.mark.parametrize('amount', ['40.00', '0', '-3', 'NaN', 'Infinity', 'ten'])
    def test_invalid_refund_amount(self, amount):
        refund = RefundRequestFactory(amount=Decimal('29.99'))
        with pytest.raises(ValueError):
            ModerationService.update_refund_request(AdminUserFactory(), refund, 'approved', refund_amount=amount)
        refund.refresh_from_db()
        assert refund.status == 'pending'

    def test_unknown_status(self):
        with pytest.raises(ValueError, match='Status must be one of'):
            ModerationService.update_refund_request(AdminUserFactory(), RefundRequestFactory(), 'lost')

    def test_processing_sends_no_email(self, mailoutbox):
        refund = RefundRequestFactory()
        ModerationService.update_refund_request(AdminUserFactory(), refund, 'processing')
        assert refund.refund_amount is None
        assert mailoutbox == []


@pytest.mark.django_db
@pytest.mark.unit
class TestCareerReview:

    def test_status_change_emails_applicant(self, mailoutbox):
        application = CareerApplicationFactory()
        ModerationService.update_career_application(AdminUserFactory(), application, 'under_review')
        application.refresh_from_db()
        assert application.status == 'under_review'
        assert mailoutbox[0].to == [application.email]
        assert AuditLog.objects.filter(action='career_status_updated',
                                       details__application_id=application.application_id).exists()

    def test_back_to_new_is_silent(self, mailoutbox):
        application = CareerApplicationFactory(status='under_review')
        ModerationService.update_career_application(AdminUserFactory(), application, 'new')
        assert mailoutbox == []

    def test_unknown_status(self):
        with pytest.raises(ValueError):
            ModerationService.update_career_application(AdminUserFactory(), CareerApplicationFactory(), 'hired')
