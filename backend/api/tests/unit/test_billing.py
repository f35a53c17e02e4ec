"""
Unit tests for subscriptions, saved cards and payment webhooks
"""
import base64
import hashlib
import hmac
import json
import pytest
from datetime import timedelta
from decimal import Decimal
from unittest.mock import MagicMock, patch
from django.test import override_settings
from django.utils import timezone
from rest_framework.exceptions import NotFound, Throttled

from api import payments
from api.billing import BillingService, get_subscription, get_tier
from api.exceptions import PaymentProviderError, PaymentRequired
from api.models import AuditLog, Invoice, PaymentCustomer, PaymentMethod, RefundRequest, Subscription
from api.tests.helpers.factories import (
    InvoiceFactory, PaymentMethodFactory, RefundRequestFactory, UserFactory, set_tier,
)

CARD = {
    'card_type': 'visa',
    'last_four': '4242',
    'expiry_month': 12,
    'expiry_year': 2030,
    'cardholder_name': 'Test Holder',
}


@pytest.mark.django_db
@pytest.mark.unit
class TestPaymentMethods:

    def test_first_card_becomes_default(self):
        user = UserFactory()
        method = BillingService.add_payment_method(user, **CARD)
        assert method.is_default is True

    def test_second_card_keeps_existing_default(self):
        user = UserFactory()
        first = BillingService.add_payment_method(user, **CARD)
        second = BillingService.add_payment_method(user, **{**CARD, 'last_four': '1111'})
        first.refresh_from_db()
        assert first.is_default is True
        assert second.is_default is False

    def test_make_default_moves_the_flag(self):
        user = UserFactory()
        first = BillingService.add_payment_method(user, **CARD)
        second = BillingService.add_payment_method(user, **{**CARD, 'last_four': '1111'}, make_default=True)
        first.refresh_from_db()
        assert first.is_default is False
        assert second.is_default is True
        assert PaymentMethod.objects.filter(user=user, is_default=True).count() == 1

    def test_set_default(self):
        user = UserFactory()
        BillingService.add_payment_method(user, **CARD)
        other = BillingService.add_payment_method(user, **{**CARD, 'last_four': '9999'})
        BillingService.set_default_payment_method(user, other.pk)
        assert list(PaymentMethod.objects.filter(user=user, is_default=True)) == [other]

    def test_cannot_touch_another_users_card(self):
        method = PaymentMethodFactory()
        with pytest.raises(NotFound):
            BillingService.set_default_payment_method(UserFactory(), method.pk)
        with pytest.raises(NotFound):
            BillingService.delete_payment_method(UserFactory(), method.pk)

    def test_deleting_default_promotes_another(self):
        user = UserFactory()
        first = BillingService.add_payment_method(user, **CARD)
        second = BillingService.add_payment_method(user, **{**CARD, 'last_four': '1111'})
        BillingService.delete_payment_method(user, first.pk)
        second.refresh_from_db()
        assert second.is_default is True


@pytest.mark.django_db
@pytest.mark.unit
class TestSubscriptions:

    def test_new_users_start_free(self):
        user = UserFactory()
        assert Subscription.objects.filter(user=user, tier='free').exists()
        assert get_tier(user) == 'free'

    def test_paid_tier_requires_card(self):
        user = UserFactory()
        with pytest.raises(PaymentRequired):
            BillingService.subscribe(user, 'pro-seller')
        assert get_tier(user) == 'free'
        assert Invoice.objects.filter(user=user).count() == 0

    def test_subscribe_with_new_card(self):
        user = UserFactory()
        result = BillingService.subscribe(user, 'pro-seller', card=CARD, save_card=True)
        assert result.subscription.tier == 'pro-seller'
        assert result.subscription.current_period_end is not None
        assert result.next_action == {}
        assert result.invoice.amount == Decimal('9.99')
        assert PaymentMethod.objects.filter(user=user, is_default=True).count() == 1
        assert get_tier(user) == 'pro-seller'

    def test_subscribe_with_saved_card(self):
        user = UserFactory()
        PaymentMethodFactory(user=user)
        invoice = BillingService.subscribe(user, 'elite-seller').invoice
        assert invoice.status == 'paid'
        assert get_tier(user) == 'elite-seller'

    def test_free_tier_has_no_invoice(self):
        user = UserFactory()
        assert BillingService.subscribe(user, 'free').invoice is None

    def test_unknown_tier(self):
        with pytest.raises(ValueError):
            BillingService.subscribe(UserFactory(), 'platinum')

    def test_cancel_returns_to_free(self):
        user = UserFactory()
        set_tier(user, 'pro-buyer')
        subscription = BillingService.cancel(user, reason='Too expensive')
        assert subscription.status == 'cancelled'
        assert get_tier(user) == 'free'

    def test_cancel_free_plan_rejected(self):
        with pytest.raises(ValueError):
            BillingService.cancel(UserFactory())

    def test_paid_tier_needs_provider_outside_local_mode(self, settings):
        settings.BILLING_LOCAL_MODE = False
        user = UserFactory()
        PaymentMethodFactory(user=user)
        with pytest.raises(ValueError, match='No payment provider configured'):
            BillingService.subscribe(user, 'pro-seller')
        assert get_tier(user) == 'free'
        assert Invoice.objects.filter(user=user).count() == 0

    def test_free_tier_allowed_outside_local_mode(self, settings):
        settings.BILLING_LOCAL_MODE = False
        user = UserFactory()
        set_tier(user, 'pro-buyer')
        assert BillingService.subscribe(user, 'free').subscription.tier == 'free'


PLAN_IDS = {
    'stripe': {'pro-buyer': 'price_buyer', 'pro-seller': 'price_seller', 'elite-seller': ''},
    'square': {},
    'lemonsqueezy': {'pro-buyer': '11', 'pro-seller': '12', 'elite-seller': '13'},
}


@pytest.fixture
def stripe_billing(settings):
    settings.DEFAULT_PAYMENT_PROVIDER = 'stripe'
    settings.STRIPE_SECRET_KEY = 'sk_test_dreamx'
    settings.PAYMENT_PLAN_IDS = PLAN_IDS
    settings.BILLING_LOCAL_MODE = False


@pytest.fixture
def lemonsqueezy_billing(settings):
    settings.DEFAULT_PAYMENT_PROVIDER = 'lemonsqueezy'
    settings.STRIPE_SECRET_KEY = ''
    settings.LEMONSQUEEZY_API_KEY = 'ls-key'
    settings.LEMONSQUEEZY_STORE_ID = '5'
    settings.PAYMENT_PLAN_IDS = PLAN_IDS
    settings.BILLING_LOCAL_MODE = False


def _json_response(payload):
    response = MagicMock()
    response.content = b'{}'
    response.json.return_value = payload
    return response


@pytest.mark.django_db
@pytest.mark.unit
class TestProviderSubscriptions:

    @patch('stripe.Subscription.create')
    @patch('stripe.Customer.create', return_value={'id': 'cus_1'})
    def test_stripe_subscription_waits_for_payment(self, create_customer, create_subscription, stripe_billing):
        create_subscription.return_value = {
            'id': 'sub_1',
            'status': 'incomplete',
            'latest_invoice': {'payment_intent': {'client_secret': 'pi_1_secret'}},
        }
        user = UserFactory()
        PaymentMethodFactory(user=user)

        result = BillingService.subscribe(user, 'pro-seller')

        assert result.subscription.status == 'incomplete'
        assert result.subscription.provider == 'stripe'
        assert result.subscription.provider_subscription_id == 'sub_1'
        assert result.invoice is None
        assert result.next_action == {'type': 'confirm_payment', 'client_secret': 'pi_1_secret'}
        assert get_tier(user) == 'free'
        assert PaymentCustomer.objects.filter(user=user, provider='stripe', customer_id='cus_1').exists()
        kwargs = create_subscription.call_args.kwargs
        assert kwargs['customer'] == 'cus_1'
        assert kwargs['items'] == [{'price': 'price_seller'}]
        assert kwargs['metadata']['user_id'] == str(user.id)

        paid = payments.WebhookEvent(
            provider='stripe', event_type='invoice.paid',
            subscription_id='sub_1', status='paid', amount=Decimal('9.99'), reference='in_1',
        )
        assert BillingService.handle_webhook(paid) == 'invoice paid'
        assert get_tier(user) == 'pro-seller'
        assert Invoice.objects.filter(user=user, provider_reference='in_1', status='paid').exists()

    @patch('stripe.Subscription.create')
    @patch('stripe.Customer.create')
    def test_missing_plan_id_is_rejected_before_calling_provider(self, create_customer, create_subscription,
                                                                 stripe_billing):
        user = UserFactory()
        PaymentMethodFactory(user=user)
        with pytest.raises(ValueError, match='No stripe plan'):
            BillingService.subscribe(user, 'elite-seller')
        create_customer.assert_not_called()
        create_subscription.assert_not_called()

    @patch('stripe.Customer.create', return_value={'id': 'cus_1'})
    def test_provider_failure_leaves_subscription_untouched(self, create_customer, stripe_billing):
        import stripe

        user = UserFactory()
        PaymentMethodFactory(user=user)
        with patch('stripe.Subscription.create', side_effect=stripe.StripeError('card declined')):
            with pytest.raises(ValueError, match='Payment failed'):
                BillingService.subscribe(user, 'pro-buyer')
        subscription = get_subscription(user)
        assert subscription.tier == 'free'
        assert subscription.provider_subscription_id == ''

    @patch('stripe.Subscription.cancel', return_value={'id': 'sub_old', 'status': 'canceled'})
    def test_downgrade_cancels_provider_subscription(self, cancel_subscription, stripe_billing):
        user = UserFactory()
        subscription = set_tier(user, 'pro-seller')
        subscription.provider = 'stripe'
        subscription.provider_subscription_id = 'sub_old'
        subscription.save()

        result = BillingService.subscribe(user, 'free')

        cancel_subscription.assert_called_once()
        assert cancel_subscription.call_args.args[0] == 'sub_old'
        assert result.subscription.provider_subscription_id == ''
        assert get_tier(user) == 'free'

    @patch('api.payments.lemonsqueezy.requests.request')
    def test_lemonsqueezy_checkout_linked_by_webhook(self, request, lemonsqueezy_billing):
        request.side_effect = [
            _json_response({'data': {'id': '88'}}),
            _json_response({'data': {'id': 'chk-1', 'attributes': {'url': 'https://pay.test/chk-1'}}}),
        ]
        user = UserFactory()
        PaymentMethodFactory(user=user)

        result = BillingService.subscribe(user, 'pro-buyer')

        assert result.subscription.status == 'incomplete'
        assert result.next_action == {'type': 'redirect', 'url': 'https://pay.test/chk-1'}
        checkout = json.loads(request.call_args_list[1].kwargs['data'])
        assert checkout['data']['attributes']['checkout_data']['custom']['user_id'] == str(user.id)
        assert checkout['data']['relationships']['variant']['data']['id'] == '11'

        created = payments.WebhookEvent(
            provider='lemonsqueezy', event_type='subscription_created',
            subscription_id='901', customer_id='unmapped', status='active', user_id=str(user.id),
        )
        assert BillingService.handle_webhook(created) == 'subscription active'
        subscription = get_subscription(user)
        assert subscription.provider_subscription_id == '901'
        assert get_tier(user) == 'pro-buyer'

    def test_webhook_with_malformed_user_id_is_ignored(self):
        event = payments.WebhookEvent(
            provider='lemonsqueezy', event_type='subscription_created',
            subscription_id='902', status='active', user_id='not-a-uuid',
        )
        assert BillingService.handle_webhook(event) == 'ignored'


SQUARE_SETTINGS = {
    'SQUARE_WEBHOOK_SIGNATURE_KEY': 'square-key',
    'SQUARE_WEBHOOK_URL': 'https://dreamx.test/api/webhooks/square/',
}


def _square_signature(body):
    message = SQUARE_SETTINGS['SQUARE_WEBHOOK_URL'].encode('utf-8') + body
    digest = hmac.new(b'square-key', message, hashlib.sha256).digest()
    return base64.b64encode(digest).decode('ascii')


def _lemonsqueezy_signature(body):
    return hmac.new(b'lemon-secret', body, hashlib.sha256).hexdigest()


@pytest.mark.django_db
@pytest.mark.unit
class TestWebhookVerification:

    @override_settings(**SQUARE_SETTINGS)
    def test_square_valid_signature(self):
        body = json.dumps({
            'type': 'subscription.updated',
            'data': {'object': {'subscription': {'id': 'sq-sub', 'customer_id': 'sq-cus', 'status': 'ACTIVE'}}},
        }).encode()
        event = payments.PROVIDERS['square'].verify_webhook(body, _square_signature(body))
        assert event.subscription_id == 'sq-sub'
        assert event.status == 'active'

    @override_settings(**SQUARE_SETTINGS)
    def test_square_bad_signature(self):
        body = b'{"type": "subscription.updated"}'
        with pytest.raises(PaymentProviderError):
            payments.PROVIDERS['square'].verify_webhook(body, 'bm90LXZhbGlk')
        with pytest.raises(PaymentProviderError):
            payments.PROVIDERS['square'].verify_webhook(body, '')

    @override_settings(LEMONSQUEEZY_WEBHOOK_SECRET='lemon-secret')
    def test_lemonsqueezy_payment_event(self):
        body = json.dumps({
            'meta': {'event_name': 'subscription_payment_success'},
            'data': {'id': 'inv-1', 'attributes': {'subscription_id': 77, 'total': 999}},
        }).encode()
        event = payments.PROVIDERS['lemonsqueezy'].verify_webhook(body, _lemonsqueezy_signature(body))
        assert event.subscription_id == '77'
        assert event.status == 'paid'
        assert event.amount == Decimal('9.99')

    @override_settings(LEMONSQUEEZY_WEBHOOK_SECRET='lemon-secret')
    def test_lemonsqueezy_tampered_body(self):
        body = b'{"meta": {"event_name": "subscription_created"}}'
        signature = _lemonsqueezy_signature(body)
        with pytest.raises(PaymentProviderError):
            payments.PROVIDERS['lemonsqueezy'].verify_webhook(body + b' ', signature)

    @override_settings(LEMONSQUEEZY_WEBHOOK_SECRET='')
    def test_unconfigured_secret_rejects(self):
        with pytest.raises(PaymentProviderError):
            payments.PROVIDERS['lemonsqueezy'].verify_webhook(b'{}', 'anything')


@pytest.mark.django_db
@pytest.mark.unit
class TestWebhookHandling:

    def _subscription(self, tier='pro-seller'):
        user = UserFactory()
        subscription = set_tier(user, tier)
        subscription.provider = 'lemonsqueezy'
        subscription.provider_subscription_id = '77'
        subscription.save()
        return user, subscription

    def test_payment_records_invoice(self):
        user, _ = self._subscription()
        event = payments.WebhookEvent(
            provider='lemonsqueezy', event_type='subscription_payment_success',
            subscription_id='77', status='paid', amount=Decimal('9.99'), reference='inv-1',
        )
        assert BillingService.handle_webhook(event) == 'invoice paid'
        assert Invoice.objects.filter(user=user, provider_reference='inv-1', status='paid').exists()

    def test_failed_payment_marks_past_due(self):
        user, subscription = self._subscription()
        event = payments.WebhookEvent(
            provider='lemonsqueezy', event_type='subscription_payment_failed',
            subscription_id='77', status='failed', amount=Decimal('9.99'),
        )
        BillingService.handle_webhook(event)
        subscription.refresh_from_db()
        assert subscription.status == 'past_due'

    def test_cancellation_drops_to_free(self):
        user, _ = self._subscription()
        event = payments.WebhookEvent(
            provider='lemonsqueezy', event_type='subscription_expired',
            subscription_id='77', status='cancelled',
        )
        assert BillingService.handle_webhook(event) == 'subscription cancelled'
        assert get_tier(user) == 'free'

    def test_customer_mapping_links_subscription(self):
        user = UserFactory()
        PaymentCustomer.objects.create(user=user, provider='square', customer_id='sq-cus')
        event = payments.WebhookEvent(
            provider='square', event_type='subscription.created',
            subscription_id='sq-sub', customer_id='sq-cus', status='active',
        )
        BillingService.handle_webhook(event)
        subscription = get_subscription(user)
        assert subscription.provider == 'square'
        assert subscription.provider_subscription_id == 'sq-sub'

    def test_unknown_subscription_ignored(self):
        event = payments.WebhookEvent(provider='stripe', event_type='invoice.paid', subscription_id='nope')
        assert BillingService.handle_webhook(event) == 'ignored'


@pytest.mark.django_db
@pytest.mark.unit
class TestRefundRequests:

    def test_request_against_own_invoice(self):
        invoice = InvoiceFactory()
        refund = BillingService.request_refund(
            invoice.user, Decimal('29.99'), 'charged_twice', invoice=invoice, description='Billed twice in May',
        )
        assert refund.status == 'pending'
        assert refund.case_number == f'RR-{refund.id}'
        assert refund.description == 'Billed twice in May'
        assert AuditLog.objects.filter(action='refund_requested', details__case_number=refund.case_number).exists()

    def test_other_users_invoice_is_not_found(self):
        invoice = InvoiceFactory()
        with pytest.raises(NotFound):
            BillingService.request_refund(UserFactory(), Decimal('5.00'), 'other', invoice=invoice)
        assert not RefundRequest.objects.exists()

    def test_amount_cannot_exceed_charge(self):
        invoice = InvoiceFactory(amount=Decimal('9.99'))
        with pytest.raises(ValueError, match='cannot exceed'):
            BillingService.request_refund(invoice.user, Decimal('10.00'), 'other', invoice=invoice)

    def test_repeat_for_same_invoice_is_throttled(self):
        previous = RefundRequestFactory()
        with pytest.raises(Throttled) as excinfo:
            BillingService.request_refund(previous.user, Decimal('1.00'), 'other', invoice=previous.invoice)
        assert previous.case_number in str(excinfo.value.detail)
        assert '5 more day(s)' in str(excinfo.value.detail)
        assert 0 < excinfo.value.wait <= 5 * 86400
        assert RefundRequest.objects.count() == 1

    def test_repeat_for_same_transaction_is_throttled(self):
        user = UserFactory()
        BillingService.request_refund(user, Decimal('4.00'), 'not_received', transaction_id='ch_123')
        with pytest.raises(Throttled):
            BillingService.request_refund(user, Decimal('4.00'), 'not_received', transaction_id='ch_123')

    def test_repeat_after_window_is_allowed(self):
        previous = RefundRequestFactory()
        RefundRequest.objects.filter(pk=previous.pk).update(created_at=timezone.now() - timedelta(days=6))
        refund = BillingService.request_refund(previous.user, Decimal('29.99'), 'other', invoice=previous.invoice)
        assert refund.pk != previous.pk

    def test_different_users_do_not_throttle_each_other(self):
        BillingService.request_refund(UserFactory(), Decimal('4.00'), 'other', transaction_id='ch_shared')
        refund = BillingService.request_refund(UserFactory(), Decimal('4.00'), 'other', transaction_id='ch_shared')
        assert refund.transaction_id == 'ch_shared'
