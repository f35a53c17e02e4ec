from __future__ import annotations

import logging
import math
import uuid
from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal

from django.conf import settings
from django.db import IntegrityError, transaction
from django.db.models import Q
from django.utils import timezone
from rest_framework.exceptions import NotFound, Throttled

from . import payments
from .exceptions import PaymentProviderError, PaymentRequired
from .models import Invoice, PaymentCustomer, PaymentMethod, RefundRequest, Subscription, User
from .utils import record_audit

logger = logging.getLogger(__name__)

TIER_PRICES = {
    'free': Decimal('0.00'),
    'pro-buyer': Decimal('5.99'),
    'pro-seller': Decimal('9.99'),
    'elite-seller': Decimal('29.99'),
}

# Maximum active service listings per tier
TIER_SERVICE_LIMITS = {
    'free': 0,
    'pro-buyer': 0,
    'pro-seller': 5,
    'elite-seller': 999,
}

TIER_LABELS = dict(Subscription.TIER_CHOICES)

# An incomplete subscription keeps the user on the free tier until the provider confirms payment
PAID_STATUSES = ('active', 'past_due')

# A second refund request for the same charge is refused inside this window
REFUND_REPEAT_WINDOW = timedelta(days=5)


def get_subscription(user: User) -> Subscription:
    subscription, _ = Subscription.objects.get_or_create(user=user)
    return subscription


def get_tier(user: User) -> str:
    row = Subscription.objects.filter(user=user).values_list('tier', 'status').first()
    if row is None or row[1] not in PAID_STATUSES:
        return 'free'
    return row[0]


@dataclass
class SubscribeResult:
    subscription: Subscription
    invoice: Invoice | None = None
    # How the client finishes paying: confirm a card payment or follow a hosted checkout
    next_action: dict = field(default_factory=dict)


class BillingService:
    """Subscriptions, saved cards, invoices and provider webhooks."""

    @staticmethod
    def add_payment_method(user: User, card_type, last_four, expiry_month, expiry_year,
                           cardholder_name='', make_default=False) -> PaymentMethod:
        """
        Save a card. The first card a user saves becomes the default; asking for
        ``make_default`` clears the previous default in the same transaction.
        """
        with transaction.atomic():
            # Serialise concurrent default flips for the same user
            User.objects.select_for_update().filter(pk=user.pk).first()
            has_default = PaymentMethod.objects.filter(user=user, is_default=True).exists()
            is_default = make_default or not has_default
            if is_default and has_default:
                PaymentMethod.objects.filter(user=user, is_default=True).update(is_default=False)
            return PaymentMethod.objects.create(
                user=user,
                card_type=card_type,
                last_four=last_four,
                expiry_month=expiry_month,
                expiry_year=expiry_year,
                cardholder_name=cardholder_name,
                is_default=is_default,
            )

    @staticmethod
    def set_default_payment_method(user: User, method_id) -> PaymentMethod:
        with transaction.atomic():
            try:
                method = PaymentMethod.objects.select_for_update().get(pk=method_id, user=user)
            except PaymentMethod.DoesNotExist:
                raise NotFound('Payment method not found.')
            PaymentMethod.objects.filter(user=user, is_default=True).exclude(pk=method.pk).update(is_default=False)
            if not method.is_default:
                method.is_default = True
                method.save(update_fields=['is_default'])
            return method

    @staticmethod
    def delete_payment_method(user: User, method_id) -> None:
        """Delete one of the user's cards, promoting the newest remaining card if it was the default."""
        with transaction.atomic():
            try:
                method = PaymentMethod.objects.select_for_update().get(pk=method_id, user=user)
            except PaymentMethod.DoesNotExist:
                raise NotFound('Payment method not found.')
            was_default = method.is_default
            method.delete()
            if was_default:
                replacement = PaymentMethod.objects.filter(user=user).order_by('-created_at').first()
                if replacement is not None:
                    replacement.is_default = True
                    replacement.save(update_fields=['is_default'])

    @staticmethod
    def ensure_customer(user: User, provider_name: str) -> str:
        """Return the provider customer id for the user, creating it on first use."""
        existing = PaymentCustomer.objects.filter(user=user, provider=provider_name).first()
        if existing is not None:
            return existing.customer_id
        provider = payments.get_provider(provider_name)
        customer = provider.create_customer(user.email, name=user.full_name, metadata={'user_id': str(user.id)})
        try:
            with transaction.atomic():
                mapping = PaymentCustomer.objects.create(user=user, provider=provider_name, customer_id=customer['id'])
        except IntegrityError:
            mapping = PaymentCustomer.objects.get(user=user, provider=provider_name)
        return mapping.customer_id

    @staticmethod
    def subscribe(user: User, tier: str, card=None, save_card=False) -> SubscribeResult:
        """
        Move the user to ``tier``.

        Paid tiers need either a card in the request or a saved card. With a
        payment provider configured the subscription is created there against
        the tier's plan id; it stays ``incomplete`` until the provider reports
        the first payment through a webhook, and ``next_action`` tells the
        client how to finish paying. Without a provider the tier is only
        activated locally when BILLING_LOCAL_MODE is on.
        """
        if tier not in TIER_PRICES:
            raise ValueError('Unknown subscription tier.')

        price = TIER_PRICES[tier]
        if price > 0:
            if card and save_card:
                BillingService.add_payment_method(user, **card)
            elif not card and not PaymentMethod.objects.filter(user=user).exists():
                raise PaymentRequired('Add a payment method to subscribe to a paid plan.')

        provider_name = payments.default_provider_name() if payments.configured_providers() else None
        if price > 0 and provider_name is None and not settings.BILLING_LOCAL_MODE:
            raise ValueError('No payment provider configured')

        subscription = get_subscription(user)
        previous_provider = subscription.provider
        previous_provider_id = subscription.provider_subscription_id

        status = 'active'
        provider_subscription_id = ''
        next_action = {}
        if price > 0 and provider_name:
            plan_id = settings.PAYMENT_PLAN_IDS.get(provider_name, {}).get(tier)
            if not plan_id:
                raise ValueError(f"No {provider_name} plan is configured for {tier}.")
            try:
                customer_id = BillingService.ensure_customer(user, provider_name)
                created = payments.get_provider(provider_name).create_subscription(
                    customer_id,
                    plan_id,
                    metadata={'user_id': str(user.id), 'tier': tier, 'email': user.email},
                )
            except PaymentProviderError as e:
                logger.error(f"Subscription for {user.email} via {provider_name} failed: {e}")
                raise ValueError(f"Payment failed: {e}")
            status = created.get('status') or 'incomplete'
            provider_subscription_id = created.get('id', '')
            if created.get('client_secret'):
                next_action = {'type': 'confirm_payment', 'client_secret': created['client_secret']}
            elif created.get('checkout_url'):
                next_action = {'type': 'redirect', 'url': created['checkout_url']}

        if previous_provider and previous_provider_id and previous_provider_id != provider_subscription_id:
            BillingService._cancel_at_provider(previous_provider, previous_provider_id)

        with transaction.atomic():
            subscription.tier = tier
            subscription.status = status
            subscription.provider = (provider_name or '') if price > 0 else ''
            subscription.provider_subscription_id = provider_subscription_id
            subscription.cancel_reason = ''
            subscription.started_at = timezone.now()
            subscription.current_period_end = timezone.now() + timedelta(days=30) if price > 0 else None
            subscription.save()

            invoice = None
            if price > 0 and status == 'active':
                invoice = Invoice.objects.create(
                    user=user,
                    description=f"{TIER_LABELS[tier]} subscription",
                    amount=price,
                    status='paid',
                    provider=provider_name or '',
                    provider_reference=provider_subscription_id,
                )
            record_audit(user, 'subscription_changed', target_user=user, tier=tier, status=status)

        logger.info(f"User {user.email} subscribed to {tier} ({status})")
        return SubscribeResult(subscription=subscription, invoice=invoice, next_action=next_action)

    @staticmethod
    def _cancel_at_provider(provider_name, provider_subscription_id):
        try:
            payments.get_provider(provider_name).cancel_subscription(provider_subscription_id)
        except PaymentProviderError as e:
            logger.warning(f"Provider cancel for subscription {provider_subscription_id} failed: {e}")

    @staticmethod
    def cancel(user: User, reason: str = '') -> Subscription:
        subscription = get_subscription(user)
        if subscription.tier == 'free':
            raise ValueError('You do not have a paid subscription.')

        if subscription.provider and subscription.provider_subscription_id:
            BillingService._cancel_at_provider(subscription.provider, subscription.provider_subscription_id)

        previous_tier = subscription.tier
        subscription.tier = 'free'
        subscription.status = 'cancelled'
        subscription.provider_subscription_id = ''
        subscription.cancel_reason = reason
        subscription.current_period_end = None
        subscription.save()
        record_audit(user, 'subscription_cancelled', target_user=user, previous_tier=previous_tier, reason=reason)
        return subscription

    @staticmethod
    def request_refund(user: User, amount, reason: str, invoice: Invoice | None = None,
                       transaction_id: str = '', **details) -> RefundRequest:
        """
        File a refund request against one of the user's charges.

        The charge is identified by invoice or by provider transaction id; a
        repeat request for either within REFUND_REPEAT_WINDOW is throttled.
        """
        if invoice is not None and invoice.user_id != user.pk:
            raise NotFound('Invoice not found.')
        if invoice is not None and amount > invoice.amount:
            raise ValueError('Refund amount cannot exceed the charged amount.')

        same_charge = Q()
        if invoice is not None:
            same_charge |= Q(invoice=invoice)
        if transaction_id:
            same_charge |= Q(transaction_id=transaction_id)
        if same_charge:
            previous = (
                RefundRequest.objects
                .filter(same_charge, user=user, created_at__gte=timezone.now() - REFUND_REPEAT_WINDOW)
                .order_by('-created_at')
                .first()
            )
            if previous is not None:
                wait = max(int((previous.created_at + REFUND_REPEAT_WINDOW - timezone.now()).total_seconds()), 1)
                raise Throttled(
                    wait=wait,
                    detail=f"You already requested a refund for this charge ({previous.case_number}). "
                           f"Please wait {math.ceil(wait / 86400)} more day(s) before submitting another request.",
                )

        refund = RefundRequest.objects.create(
            user=user,
            invoice=invoice,
            transaction_id=transaction_id,
            amount=amount,
            reason=reason,
            **details,
        )
        record_audit(user, 'refund_requested', target_user=user, case_number=refund.case_number,
                     amount=str(refund.amount))
        logger.info(f"Refund request {refund.case_number} filed by {user.email} for {refund.amount}")
        return refund

    @staticmethod
    def _match_subscription(event: payments.WebhookEvent) -> Subscription | None:
        """
        Find the local subscription an event belongs to: by provider
        subscription id, then by the customer mapping, then by the user id
        carried in checkout metadata. The latter two link the provider id.
        """
        if event.subscription_id:
            subscription = Subscription.objects.filter(
                provider=event.provider, provider_subscription_id=event.subscription_id
            ).select_related('user').first()
            if subscription is not None:
                return subscription

        user = None
        if event.customer_id:
            mapping = PaymentCustomer.objects.filter(
                provider=event.provider, customer_id=event.customer_id
            ).select_related('user').first()
            user = mapping.user if mapping is not None else None
        if user is None and event.user_id:
            try:
                user = User.objects.filter(pk=uuid.UUID(event.user_id)).first()
            except ValueError:
                user = None
        if user is None:
            return None

        subscription = get_subscription(user)
        if event.subscription_id and subscription.provider_subscription_id != event.subscription_id:
            subscription.provider = event.provider
            subscription.provider_subscription_id = event.subscription_id
            subscription.save(update_fields=['provider', 'provider_subscription_id', 'updated_at'])
        return subscription

    @staticmethod
    def handle_webhook(event: payments.WebhookEvent) -> str:
        """
        Apply a verified provider event to local records.

        Returns a short description of what happened, for logging and the
        webhook response body.
        """
        subscription = BillingService._match_subscription(event)
        if subscription is None:
            logger.info(f"Ignoring {event.provider} event {event.event_type}: no matching subscription")
            return 'ignored'

        if event.amount is not None and event.status in ('paid', 'failed'):
            Invoice.objects.create(
                user=subscription.user,
                description=f"{TIER_LABELS.get(subscription.tier, subscription.tier)} subscription",
                amount=event.amount,
                status=event.status,
                provider=event.provider,
                provider_reference=event.reference,
            )
            if event.status == 'failed':
                subscription.status = 'past_due'
            elif subscription.tier != 'free':
                subscription.status = 'active'
                subscription.current_period_end = timezone.now() + timedelta(days=30)
            subscription.save(update_fields=['status', 'current_period_end', 'updated_at'])
            return f"invoice {event.status}"

        if event.status in ('active', 'incomplete', 'past_due', 'cancelled'):
            subscription.status = event.status
            if event.status == 'cancelled':
                subscription.tier = 'free'
            subscription.save(update_fields=['status', 'tier', 'updated_at'])
            return f"subscription {event.status}"

        return 'ignored'
