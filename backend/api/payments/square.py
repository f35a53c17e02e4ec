import base64
import hmac
import json
import logging
import uuid
from decimal import Decimal

import requests
from django.conf import settings

from ..exceptions import PaymentProviderError
from .base import PaymentProvider, WebhookEvent, hmac_sha256, to_minor_units

logger = logging.getLogger(__name__)

SQUARE_VERSION = '2024-10-17'
BASE_URLS = {
    'production': 'https://connect.squareup.com',
    'sandbox': 'https://connect.squareupsandbox.com',
}

SUBSCRIPTION_STATUS_MAP = {
    'PENDING': 'incomplete',
    'ACTIVE': 'active',
    'PAUSED': 'past_due',
    'CANCELED': 'cancelled',
    'DEACTIVATED': 'cancelled',
}


class SquareProvider(PaymentProvider):
    name = 'square'

    def is_configured(self):
        return bool(settings.SQUARE_ACCESS_TOKEN and settings.SQUARE_LOCATION_ID)

    def _request(self, method, path, body=None):
        self._require_configured()
        base_url = BASE_URLS.get(settings.SQUARE_ENVIRONMENT, BASE_URLS['sandbox'])
        try:
            response = requests.request(
                method,
                f"{base_url}{path}",
                json=body,
                headers={
                    'Authorization': f"Bearer {settings.SQUARE_ACCESS_TOKEN}",
                    'Square-Version': SQUARE_VERSION,
                    'Content-Type': 'application/json',
                },
                timeout=settings.PAYMENT_REQUEST_TIMEOUT,
            )
            response.raise_for_status()
        except requests.RequestException as e:
            logger.error(f"Square {method} {path} failed: {e}")
            raise PaymentProviderError(f"Square request failed: {e}")
        return response.json()

    def create_payment(self, amount, currency='USD', customer_id=None, source_id=None, metadata=None):
        if not source_id:
            raise PaymentProviderError('Square payments require a card source id')
        body = {
            'idempotency_key': str(uuid.uuid4()),
            'source_id': source_id,
            'location_id': settings.SQUARE_LOCATION_ID,
            'amount_money': {'amount': to_minor_units(amount), 'currency': currency.upper()},
        }
        if customer_id:
            body['customer_id'] = customer_id
        if metadata:
            body['note'] = json.dumps(metadata)[:500]
        payment = self._request('POST', '/v2/payments', body)['payment']
        return {'id': payment['id'], 'status': payment['status'].lower()}

    def create_subscription(self, customer_id, plan_id, metadata=None):
        body = {
            'idempotency_key': str(uuid.uuid4()),
            'location_id': settings.SQUARE_LOCATION_ID,
            'plan_variation_id': plan_id,
            'customer_id': customer_id,
        }
        subscription = self._request('POST', '/v2/subscriptions', body)['subscription']
        status = SUBSCRIPTION_STATUS_MAP.get(subscription['status'], 'incomplete')
        return {'id': subscription['id'], 'status': status}

    def cancel_subscription(self, subscription_id):
        subscription = self._request('POST', f'/v2/subscriptions/{subscription_id}/cancel')['subscription']
        return {'id': subscription['id'], 'status': subscription['status'].lower()}

    def create_customer(self, email, name='', metadata=None):
        body = {
            'idempotency_key': str(uuid.uuid4()),
            'email_address': email,
        }
        if name:
            body['given_name'] = name
        customer = self._request('POST', '/v2/customers', body)['customer']
        return {'id': customer['id']}

    def verify_webhook(self, payload, signature):
        """Square signs notification URL + raw body with HMAC-SHA256, base64 encoded."""
        key = settings.SQUARE_WEBHOOK_SIGNATURE_KEY
        if not key:
            raise PaymentProviderError('square webhook signature key is not configured')
        message = settings.SQUARE_WEBHOOK_URL.encode('utf-8') + payload
        expected = base64.b64encode(hmac_sha256(key, message)).decode('ascii')
        if not signature or not hmac.compare_digest(expected, signature):
            raise PaymentProviderError('Invalid square webhook signature')

        event = json.loads(payload)
        event_type = event.get('type', '')
        obj = event.get('data', {}).get('object', {})
        parsed = WebhookEvent(provider=self.name, event_type=event_type, data=obj)
        if event_type.startswith('subscription.'):
            subscription = obj.get('subscription', {})
            parsed.subscription_id = subscription.get('id', '')
            parsed.customer_id = subscription.get('customer_id', '')
            parsed.status = SUBSCRIPTION_STATUS_MAP.get(subscription.get('status', ''), '')
        elif event_type.startswith('invoice.'):
            invoice = obj.get('invoice', {})
            parsed.subscription_id = invoice.get('subscription_id', '')
            parsed.reference = invoice.get('id', '')
            parsed.status = 'paid' if event_type == 'invoice.payment_made' else ''
            payment_requests = invoice.get('payment_requests') or [{}]
            money = payment_requests[0].get('computed_amount_money') or {}
            if money.get('amount') is not None:
                parsed.amount = Decimal(money['amount']) / 100
        return parsed
