"""
OAuth sign-in for Google, Microsoft and Apple.

The client is redirected to the provider's consent screen with a one-time
``state`` kept in the cache. The callback exchanges the authorisation code
for tokens over HTTP, reads the provider's user id and e-mail, and then
finds or links a local account.
"""
from __future__ import annotations

import logging
import secrets
import time
from urllib.parse import urlencode

import jwt
import requests
from django.conf import settings
from django.core.cache import cache
from django.db import transaction

from .models import OAuthAccount, User

logger = logging.getLogger(__name__)

STATE_TTL = 60 * 10
REQUEST_TIMEOUT = 10

APPLE_ISSUER = 'https://appleid.apple.com'
APPLE_KEYS_URL = 'https://appleid.apple.com/auth/keys'


def _microsoft_base():
    return f"https://login.microsoftonline.com/{settings.MICROSOFT_TENANT}/oauth2/v2.0"


def _redirect_uri(provider):
    return f"{settings.OAUTH_REDIRECT_BASE.rstrip('/')}/{provider}/callback/"


def is_configured(provider: str) -> bool:
    if provider == 'google':
        return bool(settings.GOOGLE_CLIENT_ID and settings.GOOGLE_CLIENT_SECRET)
    if provider == 'microsoft':
        return bool(settings.MICROSOFT_CLIENT_ID and settings.MICROSOFT_CLIENT_SECRET)
    if provider == 'apple':
        return bool(settings.APPLE_CLIENT_ID and settings.APPLE_TEAM_ID
                    and settings.APPLE_KEY_ID and settings.APPLE_PRIVATE_KEY)
    return False


def _require_provider(provider: str) -> None:
    if provider not in dict(OAuthAccount.PROVIDER_CHOICES):
        raise ValueError(f"Unknown OAuth provider: {provider}")
    if not is_configured(provider):
        raise ValueError(f"{provider} sign-in is not configured")


def authorization_url(provider: str) -> tuple[str, str]:
    """Return (url, state) for starting the consent flow."""
    _require_provider(provider)
    state = secrets.token_urlsafe(24)
    cache.set(f"oauth_state:{state}", provider, STATE_TTL)

    redirect_uri = _redirect_uri(provider)
    if provider == 'google':
        base = 'https://accounts.google.com/o/oauth2/v2/auth'
        params = {
            'client_id': settings.GOOGLE_CLIENT_ID,
            'response_type': 'code',
            'scope': 'openid email profile',
            'prompt': 'select_account',
        }
    elif provider == 'microsoft':
        base = f"{_microsoft_base()}/authorize"
        params = {
            'client_id': settings.MICROSOFT_CLIENT_ID,
            'response_type': 'code',
            'scope': 'openid email profile User.Read',
        }
    else:
        base = f"{APPLE_ISSUER}/auth/authorize"
        params = {
            'client_id': settings.APPLE_CLIENT_ID,
            'response_type': 'code',
            'response_mode': 'form_post',
            'scope': 'name email',
        }
    params.update({'redirect_uri': redirect_uri, 'state': state})
    return f"{base}?{urlencode(params)}", state


def consume_state(provider: str, state: str) -> bool:
    if not state:
        return False
    key = f"oauth_state:{state}"
    stored = cache.get(key)
    cache.delete(key)
    return stored == provider


def _post_token(url, data):
    try:
        response = requests.post(url, data=data, headers={'Accept': 'application/json'}, timeout=REQUEST_TIMEOUT)
        response.raise_for_status()
    except requests.RequestException as e:
        logger.error(f"OAuth token exchange with {url} failed: {e}")
        raise ValueError('Could not complete sign-in with the provider.')
    return response.json()


def _get_json(url, access_token):
    try:
        response = requests.get(url, headers={'Authorization': f"Bearer {access_token}"}, timeout=REQUEST_TIMEOUT)
        response.raise_for_status()
    except requests.RequestException as e:
        logger.error(f"OAuth profile lookup at {url} failed: {e}")
        raise ValueError('Could not read your profile from the provider.')
    return response.json()


def _apple_client_secret():
    now = int(time.time())
    return jwt.encode(
        {
            'iss': settings.APPLE_TEAM_ID,
            'iat': now,
            'exp': now + 60 * 5,
            'aud': APPLE_ISSUER,
            'sub': settings.APPLE_CLIENT_ID,
        },
        settings.APPLE_PRIVATE_KEY,
        algorithm='ES256',
        headers={'kid': settings.APPLE_KEY_ID},
    )


def _decode_apple_id_token(id_token):
    try:
        signing_key = jwt.PyJWKClient(APPLE_KEYS_URL).get_signing_key_from_jwt(id_token)
        return jwt.decode(
            id_token,
            signing_key.key,
            algorithms=['RS256'],
            audience=settings.APPLE_CLIENT_ID,
            issuer=APPLE_ISSUER,
        )
    except jwt.PyJWTError as e:
        logger.warning(f"Rejected Apple id_token: {e}")
        raise ValueError('Apple sign-in could not be verified.')


def exchange_code(provider: str, code: str, user_data: dict | None = None) -> dict:
    """
    Trade an authorisation code for the provider profile.

    Returns ``{'provider_id', 'email', 'name'}``.
    """
    _require_provider(provider)
    if not code:
        raise ValueError('Missing authorisation code.')
    redirect_uri = _redirect_uri(provider)

    if provider == 'google':
        tokens = _post_token('https://oauth2.googleapis.com/token', {
            'code': code,
            'client_id': settings.GOOGLE_CLIENT_ID,
            'client_secret': settings.GOOGLE_CLIENT_SECRET,
            'redirect_uri': redirect_uri,
            'grant_type': 'authorization_code',
        })
        info = _get_json('https://openidconnect.googleapis.com/v1/userinfo', tokens['access_token'])
        return {'provider_id': str(info['sub']), 'email': info.get('email', ''), 'name': info.get('name', '')}

    if provider == 'microsoft':
        tokens = _post_token(f"{_microsoft_base()}/token", {
            'code': code,
            'client_id': settings.MICROSOFT_CLIENT_ID,
            'client_secret': settings.MICROSOFT_CLIENT_SECRET,
            'redirect_uri': redirect_uri,
            'grant_type': 'authorization_code',
            'scope': 'openid email profile User.Read',
        })
        info = _get_json('https://graph.microsoft.com/v1.0/me', tokens['access_token'])
        email = info.get('mail') or info.get('userPrincipalName') or ''
        return {'provider_id': str(info['id']), 'email': email, 'name': info.get('displayName', '')}

    tokens = _post_token(f"{APPLE_ISSUER}/auth/token", {
        'code': code,
        'client_id': settings.APPLE_CLIENT_ID,
        'client_secret': _apple_client_secret(),
        'redirect_uri': redirect_uri,
        'grant_type': 'authorization_code',
    })
    claims = _decode_apple_id_token(tokens.get('id_token', ''))
    # Apple sends the user's name only on first authorisation, in the form post
    name_parts = ((user_data or {}).get('name') or {})
    name = ' '.join(filter(None, [name_parts.get('firstName'), name_parts.get('lastName')]))
    return {'provider_id': str(claims['sub']), 'email': claims.get('email', ''), 'name': name}


def find_or_create_user(provider: str, profile: dict) -> tuple[User, bool]:
    """
    Resolve the local account for a provider profile: an existing link first,
    then an account with the same e-mail (which gets linked), else a new
    verified account without a usable password.
    """
    provider_id = profile['provider_id']
    link = OAuthAccount.objects.filter(provider=provider, provider_id=provider_id).select_related('user').first()
    if link is not None:
        return link.user, False

    email = User.objects.normalize_email(profile.get('email') or '')
    if not email:
        raise ValueError('The provider did not share an e-mail address.')

    with transaction.atomic():
        user = User.objects.filter(email__iexact=email).first()
        created = user is None
        if created:
            user = User.objects.create_user(
                email=email,
                full_name=profile.get('name') or email.split('@')[0],
                is_email_verified=True,
            )
        elif not user.is_email_verified:
            user.is_email_verified = True
            user.save(update_fields=['is_email_verified'])
        OAuthAccount.objects.create(user=user, provider=provider, provider_id=provider_id)

    logger.info(f"Linked {provider} account to {email} (new user: {created})")
    return user, created


def unlink(user: User, provider: str) -> None:
    link = OAuthAccount.objects.filter(user=user, provider=provider).first()
    if link is None:
        raise ValueError(f"No {provider} account is linked.")
    has_other_login = (
        user.has_usable_password()
        or OAuthAccount.objects.filter(user=user).exclude(pk=link.pk).exists()
        or user.webauthn_credentials.exists()
    )
    if not has_other_login:
        raise ValueError('Set a password or link another provider before unlinking this one.')
    link.delete()
