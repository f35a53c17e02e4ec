"""
Tests for OAuth sign-in - start, callback and account linking
"""
from unittest.mock import MagicMock, patch
from urllib.parse import parse_qs, urlparse

import requests
from django.test import override_settings
from rest_framework import status
from rest_framework.test import APITestCase

from api import oauth
from api.models import OAuthAccount, User
from api.tests.helpers.factories import UserFactory
from api.tests.helpers.test_client import AuthenticatedAPIClient

GOOGLE_SETTINGS = {
    'GOOGLE_CLIENT_ID': 'google-client',
    'GOOGLE_CLIENT_SECRET': 'google-secret',
    'OAUTH_REDIRECT_BASE': 'https://dreamx.test/api/auth/oauth',
}


def _json_response(payload):
    response = MagicMock()
    response.json.return_value = payload
    response.raise_for_status.return_value = None
    return response


@override_settings(**GOOGLE_SETTINGS)
class OAuthFlowTests(APITestCase):
    """Tests for /api/auth/oauth/{provider}/start/ and /callback/"""

    def _start(self):
        response = self.client.get('/api/auth/oauth/google/start/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        return response.data['state']

    def test_start_returns_consent_url(self):
        response = self.client.get('/api/auth/oauth/google/start/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        query = parse_qs(urlparse(response.data['authorization_url']).query)
        self.assertEqual(query['client_id'], ['google-client'])
        self.assertEqual(query['state'], [response.data['state']])
        self.assertEqual(query['redirect_uri'], ['https://dreamx.test/api/auth/oauth/google/callback/'])

    @override_settings(MICROSOFT_CLIENT_ID='', MICROSOFT_CLIENT_SECRET='')
    def test_unconfigured_provider(self):
        response = self.client.get('/api/auth/oauth/microsoft/start/')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_unknown_provider(self):
        response = self.client.get('/api/auth/oauth/myspace/start/')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    @patch('api.oauth.requests.get')
    @patch('api.oauth.requests.post')
    def test_callback_creates_verified_user(self, mock_post, mock_get):
        """A first Google sign-in creates a verified account without a password"""
        mock_post.return_value = _json_response({'access_token': 'google-token'})
        mock_get.return_value = _json_response({'sub': 'g-123', 'email': 'new.person@gmail.com', 'name': 'New Person'})
        state = self._start()

        response = self.client.get('/api/auth/oauth/google/callback/', {'state': state, 'code': 'auth-code'})

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertIn('access', response.data)
        self.assertTrue(response.data['created'])
        user = User.objects.get(email='new.person@gmail.com')
        self.assertTrue(user.is_email_verified)
        self.assertFalse(user.has_usable_password())
        self.assertTrue(OAuthAccount.objects.filter(user=user, provider='google', provider_id='g-123').exists())
        self.assertEqual(mock_post.call_args.kwargs['data']['code'], 'auth-code')

    @patch('api.oauth.requests.get')
    @patch('api.oauth.requests.post')
    def test_callback_links_existing_account(self, mock_post, mock_get):
        existing = UserFactory(email='maya@test.com', is_email_verified=False)
        mock_post.return_value = _json_response({'access_token': 'google-token'})
        mock_get.return_value = _json_response({'sub': 'g-456', 'email': 'Maya@test.com', 'name': 'Maya'})

        response = self.client.get('/api/auth/oauth/google/callback/', {'state': self._start(), 'code': 'c'})

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertFalse(response.data['created'])
        existing.refresh_from_db()
        self.assertTrue(existing.is_email_verified)
        self.assertEqual(OAuthAccount.objects.get(provider_id='g-456').user, existing)

    def test_state_is_single_use(self):
        state = self._start()
        self.assertTrue(oauth.consume_state('google', state))
        response = self.client.get('/api/auth/oauth/google/callback/', {'state': state, 'code': 'c'})
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    @patch('api.oauth.requests.post')
    def test_provider_failure(self, mock_post):
        mock_post.side_effect = requests.ConnectionError('down')
        response = self.client.get('/api/auth/oauth/google/callback/', {'state': self._start(), 'code': 'c'})
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    @patch('api.oauth.requests.get')
    @patch('api.oauth.requests.post')
    def test_banned_account_refused(self, mock_post, mock_get):
        user = UserFactory(email='banned@test.com', account_status='banned')
        OAuthAccount.objects.create(user=user, provider='google', provider_id='g-banned')
        mock_post.return_value = _json_response({'access_token': 'google-token'})
        mock_get.return_value = _json_response({'sub': 'g-banned', 'email': 'banned@test.com'})

        response = self.client.get('/api/auth/oauth/google/callback/', {'state': self._start(), 'code': 'c'})
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)


class OAuthAccountTests(APITestCase):
    """Tests for listing and unlinking OAuth accounts"""

    def test_list_accounts(self):
        user = UserFactory()
        OAuthAccount.objects.create(user=user, provider='google', provider_id='g-1')
        client = AuthenticatedAPIClient().authenticate_user(user)
        response = client.get('/api/auth/oauth/accounts/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual([row['provider'] for row in response.data['accounts']], ['google'])
        self.assertTrue(response.data['has_password'])

    def test_unlink_with_password(self):
        user = UserFactory()
        OAuthAccount.objects.create(user=user, provider='google', provider_id='g-1')
        client = AuthenticatedAPIClient().authenticate_user(user)
        response = client.delete('/api/auth/oauth/accounts/google/')
        self.assertEqual(response.status_code, status.HTTP_204_NO_CONTENT)
        self.assertFalse(OAuthAccount.objects.filter(user=user).exists())

    def test_cannot_unlink_last_login_method(self):
        user = User.objects.create_user(email='oauth-only@test.com', full_name='OAuth Only')
        OAuthAccount.objects.create(user=user, provider='google', provider_id='g-2')
        client = AuthenticatedAPIClient().authenticate_user(user)
        response = client.delete('/api/auth/oauth/accounts/google/')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertTrue(OAuthAccount.objects.filter(user=user).exists())
