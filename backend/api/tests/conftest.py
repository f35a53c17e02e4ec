import pytest


@pytest.fixture(autouse=True)
def clear_django_cache():
    from django.core.cache import cache
    cache.clear()


@pytest.fixture(autouse=True)
def disable_drf_throttling(settings, monkeypatch):
    """Disable DRF throttling for test stability.

    The production settings use tight rate limits (e.g., auth: 10/minute), which
    makes the full backend test suite flaky because it exercises many public
    endpoints in quick succession.
    """
    monkeypatch.setenv('DISABLE_THROTTLING', '1')
    settings.REST_FRAMEWORK = dict(settings.REST_FRAMEWORK)
    rates = dict(settings.REST_FRAMEWORK.get('DEFAULT_THROTTLE_RATES', {}))
    for scope in list(rates.keys()):
        rates[scope] = '1000000/hour'
    rates.setdefault('anon', '1000000/hour')
    rates.setdefault('user', '1000000/hour')
    settings.REST_FRAMEWORK['DEFAULT_THROTTLE_RATES'] = rates

    settings.DEBUG = True
    settings.DEBUG_PROPAGATE_EXCEPTIONS = True


@pytest.fixture(autouse=True)
def in_memory_backends(settings, tmp_path):
    """Keep e-mail, uploads and the channel layer local to the test run."""
    settings.EMAIL_BACKEND = 'django.core.mail.backends.locmem.EmailBackend'
    settings.MEDIA_ROOT = tmp_path / 'media'
    settings.CHANNEL_LAYERS = {'default': {'BACKEND': 'channels.layers.InMemoryChannelLayer'}}
    settings.VAPID_PRIVATE_KEY = ''
    settings.VAPID_PUBLIC_KEY = ''
    settings.BILLING_LOCAL_MODE = True


@pytest.fixture
def api_client():
    from api.tests.helpers.test_client import AuthenticatedAPIClient
    return AuthenticatedAPIClient()


@pytest.fixture
def user():
    from api.tests.helpers.factories import UserFactory
    return UserFactory()


@pytest.fixture
def other_user():
    from api.tests.helpers.factories import UserFactory
    return UserFactory()


@pytest.fixture
def admin_user():
    from api.tests.helpers.factories import AdminUserFactory
    return AdminUserFactory()
