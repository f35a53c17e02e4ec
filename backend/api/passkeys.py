"""
WebAuthn passkey registration and sign-in.

Challenges live in the cache for five minutes. Registration challenges are
keyed by user; sign-in challenges are keyed by a random ``challenge_id``
handed to the client with the options.
"""
from __future__ import annotations

import json
import logging
import secrets

from django.conf import settings
from django.core.cache import cache
from django.utils import timezone
from webauthn import (
    generate_authentication_options,
    generate_registration_options,
    options_to_json,
    verify_authentication_response,
    verify_registration_response,
)
from webauthn.helpers import base64url_to_bytes, bytes_to_base64url
from webauthn.helpers.exceptions import InvalidAuthenticationResponse, InvalidRegistrationResponse
from webauthn.helpers.structs import (
    AuthenticatorSelectionCriteria,
    PublicKeyCredentialDescriptor,
    ResidentKeyRequirement,
    UserVerificationRequirement,
)

from .models import User, WebAuthnCredential

logger = logging.getLogger(__name__)

CHALLENGE_TTL = 60 * 5


def _registration_key(user):
    return f"webauthn:registration:{user.pk}"


def _authentication_key(challenge_id):
    return f"webauthn:authentication:{challenge_id}"


def _as_dict(credential):
    if isinstance(credential, str):
        try:
            return json.loads(credential)
        except ValueError:
            raise ValueError('Malformed credential.')
    if not isinstance(credential, dict):
        raise ValueError('Malformed credential.')
    return credential


def registration_options(user: User) -> dict:
    existing = [
        PublicKeyCredentialDescriptor(id=base64url_to_bytes(credential.credential_id))
        for credential in user.webauthn_credentials.all()
    ]
    options = generate_registration_options(
        rp_id=settings.WEBAUTHN_RP_ID,
        rp_name=settings.WEBAUTHN_RP_NAME,
        user_id=str(user.pk).encode('utf-8'),
        user_name=user.email,
        user_display_name=user.full_name or user.email,
        exclude_credentials=existing,
        authenticator_selection=AuthenticatorSelectionCriteria(
            resident_key=ResidentKeyRequirement.PREFERRED,
            user_verification=UserVerificationRequirement.PREFERRED,
        ),
    )
    cache.set(_registration_key(user), bytes_to_base64url(options.challenge), CHALLENGE_TTL)
    return json.loads(options_to_json(options))


def verify_registration(user: User, credential, name: str = '') -> WebAuthnCredential:
    challenge = cache.get(_registration_key(user))
    if not challenge:
        raise ValueError('No passkey registration in progress.')
    cache.delete(_registration_key(user))

    credential = _as_dict(credential)
    try:
        verified = verify_registration_response(
            credential=credential,
            expected_challenge=base64url_to_bytes(challenge),
            expected_origin=settings.WEBAUTHN_ORIGIN,
            expected_rp_id=settings.WEBAUTHN_RP_ID,
        )
    except InvalidRegistrationResponse as e:
        logger.warning(f"Passkey registration for {user.email} rejected: {e}")
        raise ValueError('Passkey registration could not be verified.')

    transports = credential.get('response', {}).get('transports') or []
    return WebAuthnCredential.objects.create(
        user=user,
        credential_id=bytes_to_base64url(verified.credential_id),
        public_key=bytes_to_base64url(verified.credential_public_key),
        sign_count=verified.sign_count,
        transports=transports,
        name=(name or 'Passkey')[:100],
    )


def authentication_options(email: str | None = None) -> dict:
    """
    Options for a sign-in ceremony. With an e-mail the allowed credentials
    are narrowed to that user's passkeys; without one the browser offers
    discoverable credentials.
    """
    allowed = []
    hinted_user_id = None
    if email:
        user = User.objects.filter(email__iexact=email).first()
        if user is not None:
            hinted_user_id = str(user.pk)
            allowed = [
                PublicKeyCredentialDescriptor(id=base64url_to_bytes(credential.credential_id))
                for credential in user.webauthn_credentials.all()
            ]
    options = generate_authentication_options(
        rp_id=settings.WEBAUTHN_RP_ID,
        allow_credentials=allowed,
        user_verification=UserVerificationRequirement.PREFERRED,
    )
    challenge_id = secrets.token_urlsafe(16)
    cache.set(
        _authentication_key(challenge_id),
        {'challenge': bytes_to_base64url(options.challenge), 'user_id': hinted_user_id},
        CHALLENGE_TTL,
    )
    payload = json.loads(options_to_json(options))
    payload['challenge_id'] = challenge_id
    return payload


def verify_authentication(challenge_id: str, credential) -> User:
    state = cache.get(_authentication_key(challenge_id)) if challenge_id else None
    if not state:
        raise ValueError('No passkey sign-in in progress.')
    cache.delete(_authentication_key(challenge_id))

    credential = _as_dict(credential)
    stored = WebAuthnCredential.objects.filter(credential_id=credential.get('id', '')).select_related('user').first()
    if stored is None:
        raise ValueError('Unknown passkey.')
    if state['user_id'] and str(stored.user_id) != state['user_id']:
        raise ValueError('This passkey belongs to a different account.')

    try:
        verified = verify_authentication_response(
            credential=credential,
            expected_challenge=base64url_to_bytes(state['challenge']),
            expected_rp_id=settings.WEBAUTHN_RP_ID,
            expected_origin=settings.WEBAUTHN_ORIGIN,
            credential_public_key=base64url_to_bytes(stored.public_key),
            credential_current_sign_count=stored.sign_count,
        )
    except InvalidAuthenticationResponse as e:
        logger.warning(f"Passkey sign-in for {stored.user.email} rejected: {e}")
        raise ValueError('Passkey sign-in could not be verified.')

    stored.sign_count = verified.new_sign_count
    stored.last_used_at = timezone.now()
    stored.save(update_fields=['sign_count', 'last_used_at'])
    return stored.user
