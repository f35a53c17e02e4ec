import logging
from decimal import Decimal

import stripe
from django.conf import settings

from ..exceptions import PaymentProviderError
from .base import PaymentProvider, WebhookEvent, to_minor_units

logger = logging.getLogger(__name__)

SUBSCRIPTION_STATUS_MAP = {
    'active': 'active',
    'trialing': 'active',
    'past_due': 'past_due',
    'unpaid': 'past_due',
    'incomplete': 'incomplete',
    'canceled': 'cancelled',
    'incomplete_expired': 'cancelled',
}


def _client_secret(subscription):
    """Client secret of the first invoice's payment intent, used to confirm the card in the browser."""
    try:
        return subscription['latest_invoice']['payment_intent']['client_secret'] or ''
    except (KeyError, TypeError):
        return ''


class StripeProvider(PaymentProvider):
    name = 'stripe'

    def is_configured(self):
        return bool(settings.STRIPE_SECRET_KEY)

    @property
    def _api_key(self):
        return settings.STRIPE_SECRET_KEY

    def create_payment(self, amount, currency='USD', customer_id=None, source_id=None, metadata=None):
        self._require_configured()
        params = {
            'amount': to_minor_units(amount),
            'currency': currency.lower(),
            'metadata': metadata or {},
            'automatic_payment_methods': {'enabled': True},
        }
        if customer_id:
            params['customer'] = customer_id
        try:
            intent = stripe.PaymentIntent.create(api_key=self._api_key, **params)
        except stripe.StripeError as e:
            logger.error(f"Stripe payment intent failed: {e}")
            raise PaymentProviderError(str(e))
        return {
            'id': intent['id'],
            'status': intent['status'],
            'client_secret': intent['client_secret'],
        }

    def create_subscription(self, customer_id, plan_id, metadata=None):
        self._require_configured()
        try:
            subscription = stripe.Subscription.create(
                api_key=self._api_key,
                customer=customer_id,
                items=[{'price': plan_id}],
                payment_behavior='default_incomplete',
                metadata=metadata or {},
                expand=['latest_invoice.payment_intent'],
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe subscription create failed: {e}")
            raise PaymentProviderError(str(e))
        return {
            'id': subscription['id'],
            'status': SUBSCRIPTION_STATUS_MAP.get(subscription['status'], 'incomplete'),
            'client_secret': _client_secret(subscription),
        }

    def cancel_subscription(self, subscription_id):
        self._require_configured()
        try:
            subscription = stripe.Subscription.cancel(subscription_id, api_key=self._api_key)
        except stripe.StripeError as e:
            logger.error(f"Stripe subscription cancel failed: {e}")
            raise PaymentProviderError(str(e))
        return {'id': subscription['id'], 'status': subscription['status']}

    def create_customer(self, email, name='', metadata=None):
        self._require_configured()
        try:
            customer = stripe.Customer.create(
                api_key=self._api_key,
                email=email,
                name=name or None,
                metadata=metadata or {},
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe customer create failed: {e}")
            raise PaymentProviderError(str(e))
        return {'id': customer['id']}

    def verify_webhook(self, payload, signature):
        if not settings.STRIPE_WEBHOOK_SECRET:
            raise PaymentProviderError('stripe webhook secret is not configured')
        try:
            event = stripe.Webhook.construct_event(payload, signature, settings.STRIPE_WEBHOOK_SECRET)
        except (ValueError, stripe.SignatureVerificationError) as e:
            raise PaymentProviderError(f"Invalid stripe webhook: {e}")

        obj = event['data']['object']
        parsed = WebhookEvent(provider=self.name, event_type=event['type'], data=obj)
        if event['type'].startswith('customer.subscription.'):
            parsed.subscription_id = obj.get('id', '')
            parsed.customer_id = obj.get('customer') or ''
            parsed.status = SUBSCRIPTION_STATUS_MAP.get(obj.get('status'), '')
            parsed.user_id = str((obj.get('metadata') or {}).get('user_id', ''))
        elif event['type'] in ('invoice.paid', 'invoice.payment_succeeded', 'invoice.payment_failed'):
            parsed.subscription_id = obj.get('subscription') or ''
            parsed.customer_id = obj.get('customer') or ''
            parsed.status = 'paid' if event['type'] != 'invoice.payment_failed' else 'failed'
            parsed.amount = Decimal(obj.get('amount_paid') or obj.get('amount_due') or 0) / 100
            parsed.reference = obj.get('id', '')
        return parsed
