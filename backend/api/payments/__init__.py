"""
Payment provider registry.

The provider used for a call is the explicit ``name`` argument, else
``DEFAULT_PAYMENT_PROVIDER``, else the first configured provider.
"""
from django.conf import settings

from ..exceptions import PaymentProviderError
from .base import PaymentProvider, WebhookEvent
from .lemonsqueezy import LemonSqueezyProvider
from .square import SquareProvider
from .stripe_provider import StripeProvider

PROVIDERS = {
    'stripe': StripeProvider(),
    'square': SquareProvider(),
    'lemonsqueezy': LemonSqueezyProvider(),
}

__all__ = [
    'PROVIDERS', 'PaymentProvider', 'WebhookEvent',
    'configured_providers', 'default_provider_name', 'get_provider',
]


def configured_providers():
    return [name for name, provider in PROVIDERS.items() if provider.is_configured()]


def default_provider_name():
    preferred = (settings.DEFAULT_PAYMENT_PROVIDER or '').lower()
    if preferred:
        return preferred
    configured = configured_providers()
    return configured[0] if configured else None


def get_provider(name=None):
    name = (name or default_provider_name() or '').lower()
    if not name:
        raise PaymentProviderError('No payment provider configured')
    provider = PROVIDERS.get(name)
    if provider is None:
        raise PaymentProviderError(f"Unknown payment provider: {name}")
    if not provider.is_configured():
        raise PaymentProviderError(f"{name} is not configured")
    return provider
