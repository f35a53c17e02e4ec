"""
Lemon Squeezy acts as merchant of record: it collects tax and VAT itself, so
payments and subscriptions both start from a hosted checkout URL.
"""
import hmac
import json
import logging
from decimal import Decimal

import requests
from django.conf import settings

from ..exceptions import PaymentProviderError
from .base import PaymentProvider, WebhookEvent, hmac_sha256, to_minor_units

logger = logging.getLogger(__name__)

API_BASE = 'https://api.lemonsqueezy.com/v1'


class LemonSqueezyProvider(PaymentProvider):
    name = 'lemonsqueezy'

    def is_configured(self):
        return bool(settings.LEMONSQUEEZY_API_KEY and settings.LEMONSQUEEZY_STORE_ID)

    def _request(self, method, path, body=None):
        self._require_configured()
        try:
            response = requests.request(
                method,
                f"{API_BASE}{path}",
                data=json.dumps(body) if body is not None else None,
                headers={
                    'Authorization': f"Bearer {settings.LEMONSQUEEZY_API_KEY}",
                    'Accept': 'application/vnd.api+json',
                    'Content-Type': 'application/vnd.api+json',
                },
                timeout=settings.PAYMENT_REQUEST_TIMEOUT,
            )
            response.raise_for_status()
        except requests.RequestException as e:
            logger.error(f"Lemon Squeezy {method} {path} failed: {e}")
            raise PaymentProviderError(f"Lemon Squeezy request failed: {e}")
        return response.json() if response.content else {}

    def _store(self):
        return {'data': {'type': 'stores', 'id': str(settings.LEMONSQUEEZY_STORE_ID)}}

    def _checkout(self, variant_id, custom_price=None, email=None, custom=None):
        attributes = {
            'checkout_data': {
                'custom': {k: str(v) for k, v in (custom or {}).items()},
            },
        }
        if email:
            attributes['checkout_data']['email'] = email
        if custom_price is not None:
            attributes['custom_price'] = custom_price
        body = {
            'data': {
                'type': 'checkouts',
                'attributes': attributes,
                'relationships': {
                    'store': self._store(),
                    'variant': {'data': {'type': 'variants', 'id': str(variant_id)}},
                },
            }
        }
        checkout = self._request('POST', '/checkouts', body)['data']
        return {
            'id': checkout['id'],
            'status': 'pending',
            'checkout_url': checkout['attributes']['url'],
        }

    def create_payment(self, amount, currency='USD', customer_id=None, source_id=None, metadata=None):
        metadata = dict(metadata or {})
        variant_id = metadata.pop('variant_id', None)
        if not variant_id:
            raise PaymentProviderError('Lemon Squeezy checkouts require a variant id')
        return self._checkout(
            variant_id,
            custom_price=to_minor_units(amount),
            email=metadata.pop('email', None),
            custom=metadata,
        )

    def create_subscription(self, customer_id, plan_id, metadata=None):
        """
        The subscription only exists once the buyer finishes the hosted checkout,
        so the id stays empty and is linked later by the subscription_created
        webhook through the custom data.
        """
        metadata = dict(metadata or {})
        checkout = self._checkout(plan_id, email=metadata.pop('email', None), custom=metadata)
        return {'id': '', 'status': 'incomplete', 'checkout_url': checkout['checkout_url']}

    def cancel_subscription(self, subscription_id):
        data = self._request('DELETE', f'/subscriptions/{subscription_id}').get('data', {})
        return {'id': str(subscription_id), 'status': data.get('attributes', {}).get('status', 'cancelled')}

    def create_customer(self, email, name='', metadata=None):
        body = {
            'data': {
                'type': 'customers',
                'attributes': {'name': name or email, 'email': email},
                'relationships': {'store': self._store()},
            }
        }
        customer = self._request('POST', '/customers', body)['data']
        return {'id': customer['id']}

    def verify_webhook(self, payload, signature):
        """X-Signature is the hex HMAC-SHA256 of the raw body."""
        secret = settings.LEMONSQUEEZY_WEBHOOK_SECRET
        if not secret:
            raise PaymentProviderError('lemonsqueezy webhook secret is not configured')
        expected = hmac_sha256(secret, payload).hex()
        if not signature or not hmac.compare_digest(expected, signature):
            raise PaymentProviderError('Invalid lemonsqueezy webhook signature')

        event = json.loads(payload)
        event_type = event.get('meta', {}).get('event_name', '')
        data = event.get('data', {})
        attributes = data.get('attributes', {})
        parsed = WebhookEvent(provider=self.name, event_type=event_type, data=event)
        parsed.user_id = str((event.get('meta', {}).get('custom_data') or {}).get('user_id', ''))
        if event_type.startswith('subscription_payment_'):
            parsed.subscription_id = str(attributes.get('subscription_id', ''))
            parsed.reference = str(data.get('id', ''))
            parsed.status = 'paid' if event_type == 'subscription_payment_success' else 'failed'
            if attributes.get('total') is not None:
                parsed.amount = Decimal(attributes['total']) / 100
        elif event_type.startswith('subscription_'):
            parsed.subscription_id = str(data.get('id', ''))
            parsed.customer_id = str(attributes.get('customer_id', ''))
            parsed.status = {
                'active': 'active',
                'on_trial': 'active',
                'pending': 'incomplete',
                'past_due': 'past_due',
                'unpaid': 'past_due',
                'cancelled': 'cancelled',
                'expired': 'cancelled',
            }.get(attributes.get('status', ''), '')
        return parsed
