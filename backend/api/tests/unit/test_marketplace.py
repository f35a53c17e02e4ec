"""
Unit tests for listing eligibility, bookings and verified-purchaser reviews
"""
import pytest
from decimal import Decimal
from rest_framework.exceptions import PermissionDenied

from api.exceptions import PaymentRequired
from api.models import Invoice, ServiceOrder, ServiceReview
from api.services import MarketplaceService, ReviewService
from api.tests.helpers.factories import (
    AdminUserFactory, PaymentMethodFactory, ServiceFactory, ServiceOrderFactory,
    ServiceReviewFactory, UserFactory, set_tier,
)


@pytest.mark.django_db
@pytest.mark.unit
class TestListingEligibility:

    def test_free_tier_cannot_list(self):
        eligibility = MarketplaceService.listing_eligibility(UserFactory())
        assert eligibility['allowed'] is False
        assert eligibility['limit'] == 0

    def test_pro_seller_limit(self):
        seller = UserFactory()
        set_tier(seller, 'pro-seller')
        ServiceFactory.create_batch(4, user=seller)
        assert MarketplaceService.listing_eligibility(seller)['allowed'] is True

        ServiceFactory(user=seller)
        eligibility = MarketplaceService.listing_eligibility(seller)
        assert eligibility['allowed'] is False
        assert eligibility['active'] == 5

    def test_elite_seller_unlimited(self):
        seller = UserFactory()
        set_tier(seller, 'elite-seller')
        ServiceFactory.create_batch(8, user=seller)
        assert MarketplaceService.listing_eligibility(seller)['allowed'] is True

    def test_frozen_seller_cannot_list(self):
        seller = UserFactory(seller_privileges_frozen=True)
        set_tier(seller, 'elite-seller')
        with pytest.raises(PermissionDenied):
            MarketplaceService.require_can_list(seller)

    def test_admin_bypasses_tier(self):
        assert MarketplaceService.listing_eligibility(AdminUserFactory())['allowed'] is True


@pytest.mark.django_db
@pytest.mark.unit
class TestBooking:

    def test_booking_requires_payment_method(self):
        service = ServiceFactory()
        with pytest.raises(PaymentRequired):
            MarketplaceService.book(service, UserFactory())
        assert ServiceOrder.objects.count() == 0

    def test_booking_charges_by_duration(self):
        service = ServiceFactory(price_per_hour=Decimal('80.00'))
        buyer = UserFactory()
        PaymentMethodFactory(user=buyer)
        order = MarketplaceService.book(service, buyer, session_minutes=90)

        assert order.status == 'completed'
        assert order.amount == Decimal('120.00')
        assert Invoice.objects.filter(user=buyer, amount=Decimal('120.00'), status='paid').exists()

    def test_short_sessions_bill_half_an_hour(self):
        service = ServiceFactory(price_per_hour=Decimal('50.00'))
        buyer = UserFactory()
        PaymentMethodFactory(user=buyer)
        order = MarketplaceService.book(service, buyer, session_minutes=15)
        assert order.amount == Decimal('25.00')

    def test_cannot_book_own_service(self):
        service = ServiceFactory()
        PaymentMethodFactory(user=service.user)
        with pytest.raises(ValueError):
            MarketplaceService.book(service, service.user)

    def test_cannot_book_hidden_service(self):
        service = ServiceFactory(status='hidden')
        buyer = UserFactory()
        PaymentMethodFactory(user=buyer)
        with pytest.raises(ValueError):
            MarketplaceService.book(service, buyer)


@pytest.mark.django_db
@pytest.mark.unit
class TestReviews:

    def test_review_requires_completed_order(self):
        service = ServiceFactory()
        reviewer = UserFactory()
        with pytest.raises(PermissionDenied):
            ReviewService.submit(service, reviewer, 5, 'Great')

        ServiceOrderFactory(service=service, buyer=reviewer, status='pending')
        with pytest.raises(PermissionDenied):
            ReviewService.submit(service, reviewer, 5, 'Great')
        assert ServiceReview.objects.count() == 0

    def test_verified_purchaser_can_review(self):
        service = ServiceFactory()
        reviewer = UserFactory()
        ServiceOrderFactory(service=service, buyer=reviewer)
        review, created = ReviewService.submit(service, reviewer, 4, 'Solid session')
        assert created is True
        assert review.rating == 4

    def test_second_review_updates_first(self):
        service = ServiceFactory()
        reviewer = UserFactory()
        ServiceOrderFactory(service=service, buyer=reviewer)
        ReviewService.submit(service, reviewer, 2)
        review, created = ReviewService.submit(service, reviewer, 5)
        assert created is False
        assert ServiceReview.objects.filter(service=service, user=reviewer).count() == 1
        assert review.rating == 5

    @pytest.mark.parametrize('rating', [0, 6, 'five', None])
    def test_rating_range(self, rating):
        service = ServiceFactory()
        reviewer = UserFactory()
        ServiceOrderFactory(service=service, buyer=reviewer)
        with pytest.raises(ValueError):
            ReviewService.submit(service, reviewer, rating)

    def test_owner_cannot_review(self):
        service = ServiceFactory()
        with pytest.raises(PermissionDenied):
            ReviewService.submit(service, service.user, 5)

    def test_rating_summary(self):
        service = ServiceFactory()
        ServiceReviewFactory(service=service, rating=5)
        ServiceReviewFactory(service=service, rating=4)
        ServiceReviewFactory(service=service, rating=1, is_hidden=True)

        summary = ReviewService.rating_summary(service)
        assert summary['count'] == 2
        assert summary['average'] == 4.5
        assert summary['distribution']['5'] == 1
        assert summary['distribution']['1'] == 0

    def test_summary_refreshes_after_moderation(self):
        service = ServiceFactory()
        review = ServiceReviewFactory(service=service, rating=2)
        ServiceReviewFactory(service=service, rating=4)
        assert ReviewService.rating_summary(service)['average'] == 3.0

        ReviewService.moderate(review, AdminUserFactory(), 'hide')
        assert ReviewService.rating_summary(service)['average'] == 4.0

        ReviewService.moderate(review, AdminUserFactory(), 'restore')
        assert ReviewService.rating_summary(service)['count'] == 2
