from django.core.cache import cache
from typing import Any, Optional

CACHE_TTL_SHORT = 60 * 5
CACHE_TTL_MEDIUM = 60 * 15
CACHE_TTL_LONG = 60 * 60


class CacheManager:
    @staticmethod
    def get(key: str) -> Optional[Any]:
        return cache.get(key)

    @staticmethod
    def set(key: str, value: Any, ttl: int = CACHE_TTL_MEDIUM) -> None:
        cache.set(key, value, ttl)

    @staticmethod
    def delete(key: str) -> None:
        cache.delete(key)


def cache_public_profile(user_id: str, data: dict, ttl: int = CACHE_TTL_MEDIUM) -> None:
    CacheManager.set(f"public_profile:{user_id}", data, ttl)


def get_cached_public_profile(user_id: str) -> Optional[dict]:
    return CacheManager.get(f"public_profile:{user_id}")


def invalidate_public_profile(user_id: str) -> None:
    CacheManager.delete(f"public_profile:{user_id}")


def cache_rating_summary(service_id: str, data: dict, ttl: int = CACHE_TTL_LONG) -> None:
    CacheManager.set(f"rating_summary:{service_id}", data, ttl)


def get_cached_rating_summary(service_id: str) -> Optional[dict]:
    return CacheManager.get(f"rating_summary:{service_id}")


def invalidate_rating_summary(service_id: str) -> None:
    CacheManager.delete(f"rating_summary:{service_id}")


def cache_unread_count(user_id: str, count: int, ttl: int = CACHE_TTL_SHORT) -> None:
    CacheManager.set(f"unread_notifications:{user_id}", count, ttl)


def get_cached_unread_count(user_id: str) -> Optional[int]:
    return CacheManager.get(f"unread_notifications:{user_id}")


def invalidate_unread_count(user_id: str) -> None:
    CacheManager.delete(f"unread_notifications:{user_id}")


def invalidate_on_user_change(user) -> None:
    invalidate_public_profile(str(user.id))
