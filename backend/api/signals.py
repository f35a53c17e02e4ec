from django.db.models.signals import post_save, post_delete
from django.dispatch import receiver
from .models import Follow, ServiceReview, Subscription, User
from .cache_utils import invalidate_on_user_change, invalidate_rating_summary


@receiver(post_save, sender=User)
def create_free_subscription(sender, instance, created, **kwargs):
    """Every account starts on the free tier."""
    if created:
        Subscription.objects.get_or_create(user=instance)


@receiver([post_save], sender=User)
def invalidate_user_cache(sender, instance, **kwargs):
    invalidate_on_user_change(instance)


@receiver([post_save, post_delete], sender=Follow)
def invalidate_follow_counts(sender, instance, **kwargs):
    # Both public profiles carry follower/following counts
    invalidate_on_user_change(instance.follower)
    invalidate_on_user_change(instance.following)


@receiver([post_save, post_delete], sender=ServiceReview)
def invalidate_review_summary(sender, instance, **kwargs):
    invalidate_rating_summary(str(instance.service_id))
