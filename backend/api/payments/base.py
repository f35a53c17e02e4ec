from __future__ import annotations

import hashlib
import hmac
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP

from ..exceptions import PaymentProviderError


def to_minor_units(amount) -> int:
    """Dollars (Decimal, str or number) to integer cents."""
    return int((Decimal(str(amount)) * 100).quantize(Decimal('1'), rounding=ROUND_HALF_UP))


def hmac_sha256(secret: str, message: bytes) -> bytes:
    return hmac.new(secret.encode('utf-8'), message, hashlib.sha256).digest()


@dataclass
class WebhookEvent:
    """Provider-neutral view of a verified webhook delivery."""
    provider: str
    event_type: str
    data: dict = field(default_factory=dict)
    subscription_id: str = ''
    customer_id: str = ''
    status: str = ''
    amount: Decimal | None = None
    reference: str = ''
    user_id: str = ''


class PaymentProvider:
    """
    Uniform surface every payment processor implements.

    Amounts are passed in major units (dollars) and converted by the provider.
    Provider errors are raised as PaymentProviderError.
    """
    name = ''

    def is_configured(self) -> bool:
        raise NotImplementedError

    def create_payment(self, amount, currency='USD', customer_id=None, source_id=None, metadata=None) -> dict:
        raise NotImplementedError

    def create_subscription(self, customer_id, plan_id, metadata=None) -> dict:
        raise NotImplementedError

    def cancel_subscription(self, subscription_id) -> dict:
        raise NotImplementedError

    def create_customer(self, email, name='', metadata=None) -> dict:
        raise NotImplementedError

    def verify_webhook(self, payload: bytes, signature: str) -> WebhookEvent:
        """Return the parsed event or raise PaymentProviderError when the signature does not match."""
        raise NotImplementedError

    def _require_configured(self):
        if not self.is_configured():
            raise PaymentProviderError(f"{self.name} is not configured")
