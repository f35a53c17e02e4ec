from rest_framework.exceptions import PermissionDenied
from rest_framework_simplejwt.authentication import JWTAuthentication
from rest_framework_simplejwt.tokens import RefreshToken

from .utils import account_block_reason


def tokens_for_user(user):
    refresh = RefreshToken.for_user(user)
    return {
        'access': str(refresh.access_token),
        'refresh': str(refresh),
    }


class ModeratedJWTAuthentication(JWTAuthentication):
    """
    JWT authentication that re-checks moderation state on every request, so
    a ban or suspension takes effect without waiting for the token to expire.
    """

    def authenticate(self, request):
        result = super().authenticate(request)
        if result is None:
            return None
        user, token = result
        reason = account_block_reason(user)
        if reason:
            raise PermissionDenied(reason)
        return user, token
