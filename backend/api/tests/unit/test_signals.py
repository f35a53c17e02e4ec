"""
Unit tests for Django signals
"""
import pytest
from unittest.mock import patch

from api.cache_utils import cache_public_profile, cache_rating_summary, get_cached_public_profile, get_cached_rating_summary
from api.models import Follow, Subscription
from api.tests.helpers.factories import ServiceFactory, ServiceReviewFactory, UserFactory


@pytest.mark.django_db
@pytest.mark.unit
class TestUserSignals:
    """Test user-related signals"""

    def test_free_subscription_created(self):
        """Every new account gets a free subscription"""
        user = UserFactory()
        subscription = Subscription.objects.get(user=user)
        assert subscription.tier == 'free'

    def test_saving_user_keeps_single_subscription(self):
        user = UserFactory()
        user.bio = 'Updated'
        user.save()
        assert Subscription.objects.filter(user=user).count() == 1

    def test_profile_cache_cleared_on_save(self):
        """Saving a user drops the cached public profile"""
        user = UserFactory()
        cache_public_profile(str(user.id), {'handle': user.handle})
        user.bio = 'Changed'
        user.save()
        assert get_cached_public_profile(str(user.id)) is None


@pytest.mark.django_db
@pytest.mark.unit
class TestFollowSignals:
    """Test follow-related signals"""

    @patch('api.signals.invalidate_on_user_change')
    def test_follow_invalidates_both_profiles(self, mock_invalidate):
        follower = UserFactory()
        following = UserFactory()
        mock_invalidate.reset_mock()
        follow = Follow.objects.create(follower=follower, following=following)
        invalidated = {call[0][0].pk for call in mock_invalidate.call_args_list}
        assert invalidated == {follower.pk, following.pk}

        mock_invalidate.reset_mock()
        follow.delete()
        assert mock_invalidate.call_count == 2


@pytest.mark.django_db
@pytest.mark.unit
class TestReviewSignals:
    """Test review-related signals"""

    def test_review_save_and_delete_clear_summary(self):
        service = ServiceFactory()
        cache_rating_summary(str(service.id), {'count': 0})
        review = ServiceReviewFactory(service=service)
        assert get_cached_rating_summary(str(service.id)) is None

        cache_rating_summary(str(service.id), {'count': 1})
        review.delete()
        assert get_cached_rating_summary(str(service.id)) is None
