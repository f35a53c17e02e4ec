from rest_framework import generics, viewsets, permissions, status
from rest_framework.response import Response
from rest_framework.decorators import action
from rest_framework.views import APIView
from rest_framework.exceptions import AuthenticationFailed, NotFound, PermissionDenied
from rest_framework.exceptions import ValidationError as DRFValidationError
from rest_framework.parsers import JSONParser, FormParser, MultiPartParser
from rest_framework_simplejwt.views import TokenObtainPairView, TokenRefreshView
from rest_framework_simplejwt.exceptions import InvalidToken, TokenError
from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from django.conf import settings
from django.core.cache import cache
from django.core.exceptions import ValidationError
from django.db import connection
from django.db.models import Count, Q
from django.utils import timezone
from datetime import timedelta
import json
import logging
import secrets
import uuid

logger = logging.getLogger(__name__)

from .throttles import (
    AuthThrottle,
    ConfirmationThrottle,
    MessageThrottle,
    ReactionThrottle,
    SensitiveOperationThrottle,
)
from .exceptions import create_error_response, ErrorCodes, PaymentProviderError
from .models import (
    User, OAuthAccount, WebAuthnCredential, EmailVerificationCode, PasswordResetToken,
    UserBlock, UserReport, AuditLog, ContentAppeal, AccountAppeal,
    Post, PostComment, PostReaction, Conversation, Message, Notification, PushSubscription,
    Service, ServiceOrder, ServiceReview, Invoice, PaymentMethod,
    PayoutAccount, RefundRequest, CareerApplication,
)
from .serializers import (
    UserSummarySerializer,
    AdminUserListSerializer,
    UserRegistrationSerializer,
    UserProfileSerializer,
    PublicUserProfileSerializer,
    OnboardingSerializer,
    NotificationPreferencesSerializer,
    PrivacySettingsSerializer,
    ChangePasswordSerializer,
    PasswordResetConfirmSerializer,
    OAuthAccountSerializer,
    WebAuthnCredentialSerializer,
    PostSerializer,
    PostCommentSerializer,
    MessageSerializer,
    SendMessageSerializer,
    ConversationSerializer,
    GroupConversationSerializer,
    NotificationSerializer,
    PushSubscriptionSerializer,
    ServiceSerializer,
    ServiceOrderSerializer,
    ServiceReviewSerializer,
    SubscriptionSerializer,
    PaymentMethodSerializer,
    SubscribeSerializer,
    InvoiceSerializer,
    UserReportSerializer,
    AuditLogSerializer,
    AdminNoteSerializer,
    ContentAppealSerializer,
    AccountAppealSerializer,
    ReelAuthorSerializer,
    RefundRequestSerializer,
    AdminRefundRequestSerializer,
    PayoutAccountSerializer,
    CareerApplicationSerializer,
)
from . import emails, exports, oauth, passkeys, payments, push
from .authentication import tokens_for_user
from .billing import BillingService, TIER_LABELS, TIER_PRICES, TIER_SERVICE_LIMITS, get_subscription
from .cache_utils import (
    get_cached_public_profile, cache_public_profile, invalidate_on_user_change,
    get_cached_unread_count, cache_unread_count, invalidate_unread_count,
)
from .moderation import ModerationService, delete_own_account
from .pagination import ReelAuthorPagination, StandardResultsSetPagination
from .performance import track_performance
from .services import (
    CommentService, ConversationService, MarketplaceService, ReactionService, ReviewService, SocialService,
)
from .utils import account_block_reason, record_audit

VERIFICATION_CODE_MINUTES = 15
PASSWORD_RESET_HOURS = 1


class IsPlatformAdmin(permissions.BasePermission):
    message = 'Admin access required'

    def has_permission(self, request, view):
        return bool(request.user and request.user.is_authenticated and request.user.is_admin)


def _bad_request(error):
    return create_error_response(str(error), code=ErrorCodes.INVALID_INPUT, status_code=status.HTTP_400_BAD_REQUEST)


def _get_or_404(model, message, **lookup):
    try:
        return model.objects.get(**lookup)
    except (model.DoesNotExist, ValidationError, ValueError):
        raise NotFound(message)


def _user_filter(request):
    """The user query parameter parsed as a user id, or None when absent."""
    value = request.query_params.get('user')
    if not value:
        return None
    try:
        return uuid.UUID(value)
    except ValueError:
        raise DRFValidationError({'user': ['Enter a valid user id.']})


def _paginate(view, request, queryset, serializer_class, **context):
    paginator = StandardResultsSetPagination()
    page = paginator.paginate_queryset(queryset, request, view=view)
    serializer = serializer_class(page, many=True, context={'request': request, **context})
    return paginator.get_paginated_response(serializer.data)


def _check_database():
    with connection.cursor() as cursor:
        cursor.execute("SELECT 1")
        cursor.fetchone()


def _check_cache():
    cache.set('health:check', 'ok', timeout=10)
    if cache.get('health:check') != 'ok':
        raise RuntimeError('written value could not be read back')


def _check_channel_layer():
    layer = get_channel_layer()
    if layer is None:
        raise RuntimeError('no channel layer configured')
    async_to_sync(layer.new_channel)()


class HealthCheckView(APIView):
    """
    Liveness check for the load balancer.

    Database, cache and channel layer are checked; any failure turns the
    response into a 503. Integrations (payments, push, OAuth) are reported
    but never make the service unhealthy.
    """
    permission_classes = [permissions.AllowAny]
    authentication_classes = []
    throttle_classes = []

    checks = (
        ('database', _check_database),
        ('cache', _check_cache),
        ('channel_layer', _check_channel_layer),
    )

    def get(self, request):
        dependencies = {}
        for name, check in self.checks:
            try:
                check()
                dependencies[name] = 'ok'
            except Exception as e:
                logger.error(f"Health check {name} failed: {e}")
                dependencies[name] = f'error: {e}'

        healthy = all(result == 'ok' for result in dependencies.values())
        return Response({
            'status': 'healthy' if healthy else 'unhealthy',
            'timestamp': timezone.now().isoformat(),
            'dependencies': dependencies,
            'integrations': {
                'payments': payments.configured_providers(),
                'push': push.is_configured(),
                'oauth': [name for name in ('google', 'microsoft', 'apple') if oauth.is_configured(name)],
            },
        }, status=status.HTTP_200_OK if healthy else status.HTTP_503_SERVICE_UNAVAILABLE)


def _issue_verification_code(user):
    code = f"{secrets.randbelow(1000000):06d}"
    EmailVerificationCode.objects.filter(user=user, used_at__isnull=True).update(used_at=timezone.now())
    EmailVerificationCode.objects.create(
        user=user,
        code=code,
        expires_at=timezone.now() + timedelta(minutes=VERIFICATION_CODE_MINUTES),
    )
    emails.send_verification_code(user, code)
    return code


def _auth_payload(user, request, status_code=status.HTTP_200_OK, **extra):
    return Response({
        **tokens_for_user(user),
        'user': UserProfileSerializer(user, context={'request': request}).data,
        **extra,
    }, status=status_code)


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------

class CustomTokenRefreshView(TokenRefreshView):
    """Custom token refresh view that handles deleted users gracefully"""

    def post(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        try:
            serializer.is_valid(raise_exception=True)
        except (TokenError, InvalidToken):
            return Response(
                {'detail': 'Invalid refresh token.', 'code': 'token_not_valid'},
                status=status.HTTP_401_UNAUTHORIZED
            )
        except User.DoesNotExist:
            return Response(
                {'detail': 'User account no longer exists.', 'code': 'user_not_found'},
                status=status.HTTP_401_UNAUTHORIZED
            )
        return Response(serializer.validated_data, status=status.HTTP_200_OK)


class CustomTokenObtainPairView(TokenObtainPairView):
    """
    Email + password login.

    Five consecutive failures lock the account for thirty minutes (423).
    Banned accounts and accounts inside a suspension window get a 403;
    suspensions that have run out are lifted on the way in.
    """
    throttle_classes = [AuthThrottle]

    def _locked_response(self, user, message):
        return Response(
            {'detail': message, 'code': ErrorCodes.ACCOUNT_LOCKED, 'locked_until': user.locked_until.isoformat()},
            status=status.HTTP_423_LOCKED
        )

    def post(self, request, *args, **kwargs):
        email = (request.data.get('email') or '').strip()
        user = User.objects.filter(email__iexact=email).first() if email else None

        # Check for account lockout before attempting authentication
        if user is not None and user.locked_until:
            if user.locked_until > timezone.now():
                remaining_minutes = max(1, int((user.locked_until - timezone.now()).total_seconds() / 60))
                return self._locked_response(
                    user,
                    f'Account is temporarily locked due to too many failed login attempts. '
                    f'Please try again in {remaining_minutes} minutes.'
                )
            user.locked_until = None
            user.failed_login_attempts = 0
            user.save(update_fields=['locked_until', 'failed_login_attempts'])

        data = request.data.copy()
        if user is not None:
            data['email'] = user.email
        serializer = self.get_serializer(data=data)
        try:
            serializer.is_valid(raise_exception=True)
        except AuthenticationFailed as e:
            if user is not None:
                user.failed_login_attempts += 1
                if user.failed_login_attempts >= settings.MAX_LOGIN_ATTEMPTS:
                    user.locked_until = timezone.now() + timedelta(minutes=settings.LOGIN_LOCKOUT_MINUTES)
                    user.save(update_fields=['failed_login_attempts', 'locked_until'])
                    logger.warning(f"Locked {user.email} after {user.failed_login_attempts} failed logins")
                    return self._locked_response(
                        user,
                        f'Account has been temporarily locked due to too many failed login attempts. '
                        f'Please try again in {settings.LOGIN_LOCKOUT_MINUTES} minutes.'
                    )
                user.save(update_fields=['failed_login_attempts'])
            logger.info(f"Failed login for {email or '<blank>'}: {type(e).__name__}")
            return create_error_response(
                'No active account found with the given credentials',
                code=ErrorCodes.INVALID_CREDENTIALS,
                status_code=status.HTTP_401_UNAUTHORIZED
            )

        user = serializer.user
        reason = account_block_reason(user)
        if reason:
            code = ErrorCodes.ACCOUNT_BANNED if user.account_status == 'banned' else ErrorCodes.ACCOUNT_SUSPENDED
            return create_error_response(reason, code=code, status_code=status.HTTP_403_FORBIDDEN,
                                         suspension_until=user.suspension_until)

        # Reset failed login attempts on successful login
        if user.failed_login_attempts > 0 or user.locked_until:
            user.failed_login_attempts = 0
            user.locked_until = None
            user.save(update_fields=['failed_login_attempts', 'locked_until'])

        response_data = dict(serializer.validated_data)
        response_data['user'] = UserProfileSerializer(user, context={'request': request}).data
        return Response(response_data, status=status.HTTP_200_OK)


class UserRegistrationView(generics.CreateAPIView):
    """
    User Registration Endpoint

    **Request Format:**
    ```json
    {
        "email": "maya@example.com",
        "password": "Sunrise#2024",
        "full_name": "Maya Chen",
        "handle": "mayachen"
    }
    ```

    Passwords need at least 8 characters with an uppercase letter, a lowercase
    letter, a digit and a special character. A six digit verification code is
    e-mailed on success and the response carries a JWT pair.

    **Error Scenarios:**
    - 400 Bad Request: Invalid email, duplicate email or handle, weak password
    - 429 Too Many Requests: Registration rate limit exceeded
    """
    queryset = User.objects.all()
    serializer_class = UserRegistrationSerializer
    permission_classes = [permissions.AllowAny]
    throttle_classes = [AuthThrottle]

    def create(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        user = serializer.save()
        _issue_verification_code(user)
        logger.info(f"Registered new user {user.email}")
        return _auth_payload(user, request, status_code=status.HTTP_201_CREATED)


class EmailVerificationView(APIView):
    permission_classes = [permissions.IsAuthenticated]
    throttle_classes = [ConfirmationThrottle]

    def post(self, request):
        user = request.user
        if user.is_email_verified:
            return Response({'verified': True})
        code = str(request.data.get('code', '')).strip()
        record = EmailVerificationCode.objects.filter(user=user, code=code, used_at__isnull=True).first()
        if record is None or not record.is_valid:
            return create_error_response('Invalid or expired verification code.')
        record.used_at = timezone.now()
        record.save(update_fields=['used_at'])
        user.is_email_verified = True
        user.save(update_fields=['is_email_verified'])
        return Response({'verified': True})


class ResendVerificationView(APIView):
    permission_classes = [permissions.IsAuthenticated]
    throttle_classes = [SensitiveOperationThrottle]

    def post(self, request):
        if request.user.is_email_verified:
            return create_error_response('Your email is already verified.')
        _issue_verification_code(request.user)
        return Response({'sent': True})


class PasswordResetRequestView(APIView):
    """Always answers 200 so the endpoint cannot be used to discover accounts."""
    permission_classes = [permissions.AllowAny]
    authentication_classes = []
    throttle_classes = [AuthThrottle]

    def post(self, request):
        email = (request.data.get('email') or '').strip()
        user = User.objects.filter(email__iexact=email).first() if email else None
        if user is not None and user.account_status != 'banned':
            token = secrets.token_urlsafe(32)
            PasswordResetToken.objects.create(
                user=user,
                token=token,
                expires_at=timezone.now() + timedelta(hours=PASSWORD_RESET_HOURS),
            )
            emails.send_password_reset(user, token)
        return Response({'detail': 'If an account exists for that email, a reset link has been sent.'})


class PasswordResetConfirmView(APIView):
    permission_classes = [permissions.AllowAny]
    authentication_classes = []
    throttle_classes = [AuthThrottle]

    def post(self, request):
        serializer = PasswordResetConfirmSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        record = PasswordResetToken.objects.filter(token=serializer.validated_data['token']).select_related('user').first()
        if record is None or not record.is_valid:
            return create_error_response('This reset link is invalid or has expired.')
        user = record.user
        user.set_password(serializer.validated_data['new_password'])
        user.failed_login_attempts = 0
        user.locked_until = None
        user.save(update_fields=['password', 'failed_login_attempts', 'locked_until'])
        record.used_at = timezone.now()
        record.save(update_fields=['used_at'])
        return Response({'detail': 'Your password has been reset.'})


class OAuthStartView(APIView):
    permission_classes = [permissions.AllowAny]
    authentication_classes = []

    def get(self, request, provider):
        try:
            url, state = oauth.authorization_url(provider)
        except ValueError as e:
            return _bad_request(e)
        return Response({'authorization_url': url, 'state': state})


class OAuthCallbackView(APIView):
    """Code exchange for Google, Microsoft and Apple. Apple posts the callback as a form."""
    permission_classes = [permissions.AllowAny]
    authentication_classes = []
    throttle_classes = [AuthThrottle]
    parser_classes = [JSONParser, FormParser]

    def get(self, request, provider):
        return self._complete(request, provider, request.query_params)

    def post(self, request, provider):
        return self._complete(request, provider, request.data)

    def _complete(self, request, provider, params):
        if not oauth.consume_state(provider, params.get('state', '')):
            return create_error_response('Sign-in session expired. Please try again.')
        user_data = params.get('user')
        if isinstance(user_data, str):
            try:
                user_data = json.loads(user_data)
            except ValueError:
                user_data = None
        try:
            profile = oauth.exchange_code(provider, params.get('code', ''), user_data=user_data)
            user, created = oauth.find_or_create_user(provider, profile)
        except ValueError as e:
            return _bad_request(e)

        reason = account_block_reason(user)
        if reason:
            return create_error_response(reason, code=ErrorCodes.PERMISSION_DENIED,
                                         status_code=status.HTTP_403_FORBIDDEN)
        return _auth_payload(user, request, created=created)


class OAuthAccountViewSet(viewsets.ViewSet):
    permission_classes = [permissions.IsAuthenticated]

    def list(self, request):
        accounts = OAuthAccount.objects.filter(user=request.user).order_by('created_at')
        return Response({
            'accounts': OAuthAccountSerializer(accounts, many=True).data,
            'has_password': request.user.has_usable_password(),
        })

    def destroy(self, request, pk=None):
        try:
            oauth.unlink(request.user, pk)
        except ValueError as e:
            return _bad_request(e)
        return Response(status=status.HTTP_204_NO_CONTENT)


class PasskeyViewSet(viewsets.ViewSet):
    """
    WebAuthn passkeys.

    **Register:** POST register/options/ then POST register/verify/ with the
    browser credential.
    **Sign in:** POST login/options/ (optionally with ``email``) then POST
    login/verify/ with ``challenge_id`` and the credential; returns a JWT pair.
    """
    permission_classes = [permissions.IsAuthenticated]

    def get_permissions(self):
        if self.action in ('login_options', 'login_verify'):
            return [permissions.AllowAny()]
        return super().get_permissions()

    def list(self, request):
        credentials = WebAuthnCredential.objects.filter(user=request.user)
        return Response(WebAuthnCredentialSerializer(credentials, many=True).data)

    def destroy(self, request, pk=None):
        credential = _get_or_404(WebAuthnCredential, 'Passkey not found.', pk=pk, user=request.user)
        credential.delete()
        return Response(status=status.HTTP_204_NO_CONTENT)

    @action(detail=False, methods=['post'], url_path='register/options')
    def register_options(self, request):
        return Response(passkeys.registration_options(request.user))

    @action(detail=False, methods=['post'], url_path='register/verify')
    def register_verify(self, request):
        try:
            credential = passkeys.verify_registration(
                request.user, request.data.get('credential'), name=request.data.get('name', '')
            )
        except ValueError as e:
            return _bad_request(e)
        return Response(WebAuthnCredentialSerializer(credential).data, status=status.HTTP_201_CREATED)

    @action(detail=False, methods=['post'], url_path='login/options', throttle_classes=[AuthThrottle],
            authentication_classes=[])
    def login_options(self, request):
        return Response(passkeys.authentication_options(request.data.get('email')))

    @action(detail=False, methods=['post'], url_path='login/verify', throttle_classes=[AuthThrottle],
            authentication_classes=[])
    def login_verify(self, request):
        try:
            user = passkeys.verify_authentication(request.data.get('challenge_id'), request.data.get('credential'))
        except ValueError as e:
            return create_error_response(str(e), code=ErrorCodes.INVALID_CREDENTIALS,
                                         status_code=status.HTTP_401_UNAUTHORIZED)
        reason = account_block_reason(user)
        if reason:
            return create_error_response(reason, code=ErrorCodes.PERMISSION_DENIED,
                                         status_code=status.HTTP_403_FORBIDDEN)
        return _auth_payload(user, request)


# ---------------------------------------------------------------------------
# Profiles and settings
# ---------------------------------------------------------------------------

class UserProfileView(generics.RetrieveUpdateAPIView):
    """
    Current user's profile.

    **GET /api/users/me/** - profile, follower counts and subscription tier
    **PATCH /api/users/me/** - update name, handle, bio, location, skills;
    multipart requests may carry ``avatar`` and ``banner`` files
    """
    serializer_class = UserProfileSerializer
    permission_classes = [permissions.IsAuthenticated]
    parser_classes = [JSONParser, FormParser, MultiPartParser]

    def get_object(self):
        return self.request.user

    def perform_update(self, serializer):
        user = serializer.save()
        invalidate_on_user_change(user)


class OnboardingView(generics.UpdateAPIView):
    serializer_class = OnboardingSerializer
    permission_classes = [permissions.IsAuthenticated]
    http_method_names = ['patch', 'put']

    def get_object(self):
        return self.request.user


class NotificationPreferencesView(generics.RetrieveUpdateAPIView):
    serializer_class = NotificationPreferencesSerializer
    permission_classes = [permissions.IsAuthenticated]

    def get_object(self):
        return self.request.user


class PrivacySettingsView(generics.RetrieveUpdateAPIView):
    serializer_class = PrivacySettingsSerializer
    permission_classes = [permissions.IsAuthenticated]

    def get_object(self):
        return self.request.user

    def perform_update(self, serializer):
        user = serializer.save()
        invalidate_on_user_change(user)


class PayoutAccountView(APIView):
    """
    Seller banking details.

    **GET /api/users/me/payout-account/** - country, masked account number, routing number
    **PUT /api/users/me/payout-account/** - all three fields are required; a
    masked account number keeps the one on file
    """
    permission_classes = [permissions.IsAuthenticated]

    def get(self, request):
        account = PayoutAccount.objects.filter(user=request.user).first()
        if account is None:
            raise NotFound('No payout account on file.')
        return Response(PayoutAccountSerializer(account).data)

    def put(self, request):
        account = PayoutAccount.objects.filter(user=request.user).first()
        serializer = PayoutAccountSerializer(account, data=request.data)
        serializer.is_valid(raise_exception=True)
        account = serializer.save(user=request.user)
        record_audit(request.user, 'payout_account_updated', target_user=request.user, country=account.country)
        logger.info(f"Payout account updated for {request.user.email}")
        return Response(PayoutAccountSerializer(account).data)


class ChangePasswordView(APIView):
    permission_classes = [permissions.IsAuthenticated]
    throttle_classes = [SensitiveOperationThrottle]

    def post(self, request):
        serializer = ChangePasswordSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        user = request.user
        # OAuth-only accounts have no current password to check
        if user.has_usable_password() and not user.check_password(serializer.validated_data.get('current_password', '')):
            return create_error_response('Current password is incorrect.', code=ErrorCodes.INVALID_CREDENTIALS)
        user.set_password(serializer.validated_data['new_password'])
        user.save(update_fields=['password'])
        return Response({'detail': 'Password updated.'})


class DeleteAccountView(APIView):
    permission_classes = [permissions.IsAuthenticated]
    throttle_classes = [SensitiveOperationThrottle]

    def post(self, request):
        user = request.user
        if user.has_usable_password() and not user.check_password(request.data.get('password', '')):
            return create_error_response('Password is incorrect.', code=ErrorCodes.INVALID_CREDENTIALS)
        try:
            delete_own_account(user, request.data.get('confirmation', ''))
        except ValueError as e:
            return _bad_request(e)
        return Response(status=status.HTTP_204_NO_CONTENT)


class UserViewSet(viewsets.ViewSet):
    """
    Public profiles and the social graph.

    **Profile:** GET /api/users/{id}/
    **Search:** GET /api/users/search/?q=
    **Follow / unfollow:** POST / DELETE /api/users/{id}/follow/
    **Followers / following:** GET /api/users/{id}/followers/, /following/
    **Block / unblock:** POST / DELETE /api/users/{id}/block/
    **Blocked users:** GET /api/users/blocked/
    **Report:** POST /api/users/{id}/report/
    **Reels:** GET /api/users/{id}/reels/, /reels/count/ and /api/users/following/reels/

    Profiles respect ``profile_visibility`` (public, members, private) and
    blocks in either direction hide the profile entirely (404).
    """
    permission_classes = [permissions.IsAuthenticatedOrReadOnly]

    def _target(self, pk):
        return _get_or_404(User, 'User not found.', pk=pk)

    def _visible_profile(self, request, target):
        viewer = request.user if request.user.is_authenticated else None
        if viewer is not None and viewer.pk == target.pk:
            return target
        if target.account_status == 'banned' and not (viewer and viewer.is_admin):
            raise NotFound('User not found.')
        if viewer is not None and not viewer.is_admin and SocialService.is_blocked_between(viewer, target):
            raise NotFound('User not found.')
        if viewer is not None and viewer.is_admin:
            return target
        if target.profile_visibility == 'private':
            raise PermissionDenied('This profile is private.')
        if target.profile_visibility == 'members' and viewer is None:
            raise PermissionDenied('Sign in to view this profile.')
        return target

    def retrieve(self, request, pk=None):
        target = self._visible_profile(request, self._target(pk))
        cached = get_cached_public_profile(str(target.pk))
        if cached is not None:
            data = cached
        else:
            data = PublicUserProfileSerializer(target, context={'request': request}).data
            cache_public_profile(str(target.pk), data)
        if request.user.is_authenticated:
            data = {
                **data,
                'is_following': target.follower_edges.filter(follower=request.user).exists(),
                'is_blocked': UserBlock.objects.filter(blocker=request.user, blocked=target).exists(),
            }
        return Response(data)

    @action(detail=False, methods=['get'], permission_classes=[permissions.IsAuthenticated])
    def search(self, request):
        query = (request.query_params.get('q') or '').strip().lstrip('@')
        if len(query) < 2:
            return Response({'count': 0, 'next': None, 'previous': None, 'results': []})
        matches = Q(full_name__icontains=query) | Q(handle__icontains=query)
        if '@' in query or '.' in query:
            matches |= Q(email__iexact=query, discoverable_by_email=True)
        queryset = (
            User.objects.filter(matches)
            .exclude(pk=request.user.pk)
            .exclude(account_status='banned')
            .exclude(pk__in=SocialService.blocked_user_ids(request.user))
            .order_by('full_name')
        )
        return _paginate(self, request, queryset, UserSummarySerializer)

    @action(detail=True, methods=['post', 'delete'], permission_classes=[permissions.IsAuthenticated])
    def follow(self, request, pk=None):
        target = self._target(pk)
        try:
            if request.method == 'DELETE':
                SocialService.unfollow(request.user, target)
                following = False
            else:
                SocialService.follow(request.user, target)
                following = True
        except ValueError as e:
            return _bad_request(e)
        invalidate_on_user_change(target)
        return Response({'following': following, 'follower_count': target.follower_edges.count()})

    @action(detail=True, methods=['get'])
    def followers(self, request, pk=None):
        target = self._visible_profile(request, self._target(pk))
        queryset = User.objects.filter(following_edges__following=target).order_by('-following_edges__created_at')
        return _paginate(self, request, queryset, UserSummarySerializer)

    @action(detail=True, methods=['get'])
    def following(self, request, pk=None):
        target = self._visible_profile(request, self._target(pk))
        queryset = User.objects.filter(follower_edges__follower=target).order_by('-follower_edges__created_at')
        return _paginate(self, request, queryset, UserSummarySerializer)

    @action(detail=True, methods=['get'])
    def reels(self, request, pk=None):
        target = self._visible_profile(request, self._target(pk))
        return _paginate(self, request, SocialService.active_reels(target), PostSerializer)

    @action(detail=True, methods=['get'], url_path='reels/count')
    def reel_count(self, request, pk=None):
        target = self._visible_profile(request, self._target(pk))
        return Response({'count': SocialService.active_reels(target).count()})

    @action(detail=False, methods=['get'], url_path='following/reels',
            permission_classes=[permissions.IsAuthenticated])
    def following_reels(self, request):
        paginator = ReelAuthorPagination()
        page = paginator.paginate_queryset(SocialService.following_with_reels(request.user), request, view=self)
        serializer = ReelAuthorSerializer(page, many=True, context={'request': request})
        return paginator.get_paginated_response(serializer.data)

    @action(detail=True, methods=['post', 'delete'], permission_classes=[permissions.IsAuthenticated])
    def block(self, request, pk=None):
        target = self._target(pk)
        try:
            if request.method == 'DELETE':
                SocialService.unblock(request.user, target)
                return Response({'blocked': False})
            SocialService.block(request.user, target, reason=request.data.get('reason', ''))
        except ValueError as e:
            return _bad_request(e)
        return Response({'blocked': True}, status=status.HTTP_201_CREATED)

    @action(detail=False, methods=['get'], permission_classes=[permissions.IsAuthenticated])
    def blocked(self, request):
        queryset = User.objects.filter(blocks_received__blocker=request.user).order_by('full_name')
        return _paginate(self, request, queryset, UserSummarySerializer)

    @action(detail=True, methods=['post'], permission_classes=[permissions.IsAuthenticated],
            throttle_classes=[ConfirmationThrottle])
    def report(self, request, pk=None):
        target = self._target(pk)
        try:
            report = SocialService.report(
                request.user, target, request.data.get('reason', ''), request.data.get('description', '')
            )
        except ValueError as e:
            return _bad_request(e)
        return Response(UserReportSerializer(report, context={'request': request}).data,
                        status=status.HTTP_201_CREATED)


# ---------------------------------------------------------------------------
# Feed
# ---------------------------------------------------------------------------

class PostViewSet(viewsets.ModelViewSet):
    """
    Feed posts.

    **Feed:** GET /api/posts/ (newest first; ``?user=`` and ``?content_type=`` filters)
    **Create:** POST /api/posts/ (multipart for image, video and reel posts)
    **React:** POST /api/posts/{id}/react/ with ``{"reaction_type": "fire"}``

    Reacting toggles: the same kind twice clears it, a different kind
    replaces it. The response carries the outcome and the per-kind counts.
    """
    serializer_class = PostSerializer
    permission_classes = [permissions.IsAuthenticatedOrReadOnly]
    parser_classes = [JSONParser, FormParser, MultiPartParser]
    http_method_names = ['get', 'post', 'delete', 'head', 'options']

    def get_queryset(self):
        queryset = Post.objects.select_related('user').filter(is_hidden=False)
        user = self.request.user
        if user.is_authenticated:
            queryset = queryset.exclude(user_id__in=SocialService.blocked_user_ids(user))
        author = _user_filter(self.request)
        if author:
            queryset = queryset.filter(user_id=author)
        content_type = self.request.query_params.get('content_type')
        if content_type:
            queryset = queryset.filter(content_type=content_type)
        return queryset.exclude(user__account_status='banned').order_by('-created_at')

    @track_performance
    def list(self, request, *args, **kwargs):
        return super().list(request, *args, **kwargs)

    def perform_create(self, serializer):
        serializer.save(user=self.request.user)

    def perform_destroy(self, instance):
        if instance.user_id != self.request.user.pk:
            raise PermissionDenied('You can only delete your own posts.')
        instance.delete()

    @action(detail=True, methods=['post'], permission_classes=[permissions.IsAuthenticated],
            throttle_classes=[ReactionThrottle])
    def react(self, request, pk=None):
        post = self.get_object()
        kind = request.data.get('reaction_type') or request.data.get('kind') or 'like'
        try:
            result = ReactionService.react_to_post(post, request.user, kind)
        except ValueError as e:
            return _bad_request(e)
        return Response({
            'status': result.status,
            'counts': result.counts,
            'my_reaction': None if result.status == ReactionService.CLEARED else kind,
        })

    @action(detail=True, methods=['get'])
    def reactions(self, request, pk=None):
        post = self.get_object()
        return Response({
            'counts': ReactionService.summarize(PostReaction, post),
            'my_reaction': ReactionService.user_reaction(PostReaction, post, request.user),
        })

    @action(detail=True, methods=['get', 'post'], throttle_classes=[MessageThrottle])
    def comments(self, request, pk=None):
        post = self.get_object()
        if request.method == 'POST':
            if not request.user.is_authenticated:
                raise PermissionDenied('Sign in to comment.')
            serializer = PostCommentSerializer(data=request.data, context={'request': request})
            serializer.is_valid(raise_exception=True)
            try:
                comment = CommentService.add_comment(
                    post, request.user, serializer.validated_data['content'],
                    parent_id=serializer.validated_data.get('parent_id'),
                )
            except ValueError as e:
                return _bad_request(e)
            return Response(PostCommentSerializer(comment, context={'request': request}).data,
                            status=status.HTTP_201_CREATED)

        queryset = (
            PostComment.objects.filter(post=post, is_hidden=False)
            .select_related('user')
            .order_by('created_at')
        )
        if request.user.is_authenticated:
            queryset = queryset.exclude(user_id__in=SocialService.blocked_user_ids(request.user))
        return _paginate(self, request, queryset, PostCommentSerializer)


class CommentViewSet(viewsets.GenericViewSet):
    permission_classes = [permissions.IsAuthenticated]
    queryset = PostComment.objects.select_related('user', 'post')

    def destroy(self, request, pk=None):
        comment = self.get_object()
        if comment.user_id != request.user.pk:
            raise PermissionDenied('You can only delete your own comments.')
        comment.is_deleted = True
        comment.save(update_fields=['is_deleted'])
        return Response(status=status.HTTP_204_NO_CONTENT)

    @action(detail=True, methods=['post'], throttle_classes=[ReactionThrottle])
    def star(self, request, pk=None):
        comment = self.get_object()
        if comment.is_deleted or comment.is_hidden:
            raise NotFound('Comment not found.')
        result = ReactionService.star_comment(comment, request.user)
        return Response({
            'liked': result.status != ReactionService.CLEARED,
            'star_count': result.counts.get('star', 0),
            'status': result.status,
            'counts': result.counts,
        })


# ---------------------------------------------------------------------------
# Messaging
# ---------------------------------------------------------------------------

class ConversationViewSet(viewsets.ViewSet):
    """
    Direct and group conversations.

    **List:** GET /api/conversations/
    **Direct:** POST /api/conversations/direct/ ``{"user_id": "..."}`` returns the
    single conversation for the pair, creating it on first use
    **Group:** POST /api/conversations/group/ ``{"name": "...", "member_ids": [...]}``
    **Messages:** GET / POST /api/conversations/{id}/messages/
    **Read:** POST /api/conversations/{id}/read/
    **Members:** POST /api/conversations/{id}/members/ ``{"user_id"}``,
    DELETE /api/conversations/{id}/members/{user_id}/
    **Rename / leave:** PATCH rename/, POST leave/

    New messages are pushed to the ``conversation_<id>`` websocket group as
    ``new-message`` events.
    """
    permission_classes = [permissions.IsAuthenticated]
    parser_classes = [JSONParser, FormParser, MultiPartParser]

    def _conversation(self, request, pk):
        conversation = _get_or_404(Conversation, 'Conversation not found.', pk=pk)
        ConversationService.require_participant(conversation, request.user)
        return conversation

    def list(self, request):
        queryset = (
            Conversation.objects.filter(memberships__user=request.user)
            .prefetch_related('participants')
            .order_by('-updated_at')
        )
        return _paginate(self, request, queryset, ConversationSerializer)

    def retrieve(self, request, pk=None):
        conversation = self._conversation(request, pk)
        return Response(ConversationSerializer(conversation, context={'request': request}).data)

    @action(detail=False, methods=['post'])
    def direct(self, request):
        other = _get_or_404(User, 'User not found.', pk=request.data.get('user_id'))
        try:
            conversation, created = ConversationService.get_or_create_direct(request.user, other)
        except ValueError as e:
            return _bad_request(e)
        return Response(
            ConversationSerializer(conversation, context={'request': request}).data,
            status=status.HTTP_201_CREATED if created else status.HTTP_200_OK
        )

    @action(detail=False, methods=['post'])
    def group(self, request):
        serializer = GroupConversationSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        members = list(User.objects.filter(pk__in=serializer.validated_data['member_ids']).exclude(account_status='banned'))
        blocked = SocialService.blocked_user_ids(request.user)
        members = [member for member in members if member.pk not in blocked]
        try:
            conversation = ConversationService.create_group(request.user, members, serializer.validated_data['name'])
        except ValueError as e:
            return _bad_request(e)
        return Response(ConversationSerializer(conversation, context={'request': request}).data,
                        status=status.HTTP_201_CREATED)

    @action(detail=True, methods=['get', 'post'], throttle_classes=[MessageThrottle])
    def messages(self, request, pk=None):
        conversation = self._conversation(request, pk)
        if request.method == 'POST':
            serializer = SendMessageSerializer(data=request.data)
            serializer.is_valid(raise_exception=True)
            try:
                created = ConversationService.send_message(
                    conversation,
                    request.user,
                    content=serializer.validated_data.get('content', ''),
                    attachments=request.FILES.getlist('attachments') or request.FILES.getlist('attachment'),
                    reply_to_id=serializer.validated_data.get('reply_to'),
                )
            except ValueError as e:
                return _bad_request(e)
            return Response(MessageSerializer(created, many=True, context={'request': request}).data,
                            status=status.HTTP_201_CREATED)

        queryset = (
            Message.objects.filter(conversation=conversation)
            .select_related('sender', 'reply_to')
            .order_by('created_at')
        )
        return _paginate(self, request, queryset, MessageSerializer)

    @action(detail=True, methods=['post'])
    def read(self, request, pk=None):
        conversation = self._conversation(request, pk)
        ConversationService.mark_read(conversation, request.user)
        return Response({'unread_count': 0})

    @action(detail=True, methods=['patch'])
    def rename(self, request, pk=None):
        conversation = self._conversation(request, pk)
        try:
            ConversationService.rename_group(conversation, request.user, request.data.get('name', ''))
        except ValueError as e:
            return _bad_request(e)
        return Response(ConversationSerializer(conversation, context={'request': request}).data)

    @action(detail=True, methods=['post'])
    def members(self, request, pk=None):
        conversation = self._conversation(request, pk)
        member = _get_or_404(User, 'User not found.', pk=request.data.get('user_id'))
        if SocialService.is_blocked_between(request.user, member):
            raise PermissionDenied('You cannot add this user.')
        try:
            added = ConversationService.add_member(conversation, request.user, member)
        except ValueError as e:
            return _bad_request(e)
        return Response({'added': added}, status=status.HTTP_201_CREATED if added else status.HTTP_200_OK)

    @action(detail=True, methods=['delete'], url_path=r'members/(?P<user_id>[^/.]+)')
    def remove_member(self, request, pk=None, user_id=None):
        conversation = self._conversation(request, pk)
        member = _get_or_404(User, 'User not found.', pk=user_id)
        try:
            ConversationService.remove_member(conversation, request.user, member)
        except ValueError as e:
            return _bad_request(e)
        return Response(status=status.HTTP_204_NO_CONTENT)

    @action(detail=True, methods=['post'])
    def leave(self, request, pk=None):
        conversation = self._conversation(request, pk)
        try:
            ConversationService.leave(conversation, request.user)
        except ValueError as e:
            return _bad_request(e)
        return Response(status=status.HTTP_204_NO_CONTENT)


class MessageViewSet(viewsets.GenericViewSet):
    permission_classes = [permissions.IsAuthenticated]
    queryset = Message.objects.select_related('conversation', 'sender')

    @action(detail=True, methods=['post'], throttle_classes=[ReactionThrottle])
    def react(self, request, pk=None):
        message = self.get_object()
        kind = request.data.get('reaction_type') or 'like'
        try:
            result = ReactionService.react_to_message(message, request.user, kind)
        except ValueError as e:
            return _bad_request(e)
        return Response({'status': result.status, 'counts': result.counts})


# ---------------------------------------------------------------------------
# Notifications and push
# ---------------------------------------------------------------------------

class NotificationViewSet(viewsets.ReadOnlyModelViewSet):
    """
    Notification Management

    **List:** GET /api/notifications/ (paginated, includes ``unread_count``)
    **Unread count:** GET /api/notifications/unread-count/
    **Mark one read:** POST /api/notifications/{id}/read/
    **Mark all read:** POST /api/notifications/read-all/
    **Delete:** DELETE /api/notifications/{id}/
    """
    serializer_class = NotificationSerializer
    permission_classes = [permissions.IsAuthenticated]

    def get_queryset(self):
        queryset = Notification.objects.filter(user=self.request.user).order_by('-created_at')
        if self.request.query_params.get('unread') in ('1', 'true'):
            queryset = queryset.filter(is_read=False)
        return queryset

    def _unread_count(self, user):
        count = get_cached_unread_count(str(user.id))
        if count is None:
            count = Notification.objects.filter(user=user, is_read=False).count()
            cache_unread_count(str(user.id), count)
        return count

    def list(self, request, *args, **kwargs):
        response = super().list(request, *args, **kwargs)
        response.data['unread_count'] = self._unread_count(request.user)
        return response

    def destroy(self, request, pk=None):
        notification = self.get_object()
        notification.delete()
        invalidate_unread_count(str(request.user.id))
        return Response(status=status.HTTP_204_NO_CONTENT)

    @action(detail=False, methods=['get'], url_path='unread-count')
    def unread_count(self, request):
        return Response({'unread_count': self._unread_count(request.user)})

    @action(detail=True, methods=['post'], url_path='read')
    def mark_read(self, request, pk=None):
        notification = self.get_object()
        if not notification.is_read:
            notification.is_read = True
            notification.save(update_fields=['is_read'])
            invalidate_unread_count(str(request.user.id))
        return Response(NotificationSerializer(notification).data)

    @action(detail=False, methods=['post'], url_path='read-all')
    def mark_all_read(self, request):
        updated = Notification.objects.filter(user=request.user, is_read=False).update(is_read=True)
        invalidate_unread_count(str(request.user.id))
        return Response({'status': 'success', 'updated': updated})


class PushSubscriptionViewSet(viewsets.ViewSet):
    permission_classes = [permissions.IsAuthenticated]

    @action(detail=False, methods=['get'], url_path='vapid-public-key', permission_classes=[permissions.AllowAny])
    def vapid_public_key(self, request):
        return Response({'public_key': settings.VAPID_PUBLIC_KEY, 'enabled': push.is_configured()})

    @action(detail=False, methods=['post'])
    def subscribe(self, request):
        serializer = PushSubscriptionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        keys = serializer.validated_data['keys']
        subscription, created = PushSubscription.objects.update_or_create(
            endpoint=serializer.validated_data['endpoint'],
            defaults={'user': request.user, 'p256dh': keys['p256dh'], 'auth': keys['auth']},
        )
        return Response({'subscribed': True}, status=status.HTTP_201_CREATED if created else status.HTTP_200_OK)

    @action(detail=False, methods=['post'])
    def unsubscribe(self, request):
        endpoint = request.data.get('endpoint', '')
        deleted, _ = PushSubscription.objects.filter(user=request.user, endpoint=endpoint).delete()
        return Response({'subscribed': False, 'removed': deleted})


# ---------------------------------------------------------------------------
# Marketplace
# ---------------------------------------------------------------------------

class ServiceViewSet(viewsets.ModelViewSet):
    """
    Service Marketplace

    **Browse:** GET /api/services/ with optional ``category``, ``min_price``,
    ``max_price``, ``experience_level``, ``format``, ``search`` and ``user``
    **Create:** POST /api/services/ (requires a seller tier, see eligibility)
    **Eligibility:** GET /api/services/eligibility/
    **Book:** POST /api/services/{id}/book/ ``{"session_minutes": 90}``
    **Reviews:** GET / POST /api/services/{id}/reviews/

    **Listing limits by tier:** free 0, pro-buyer 0, pro-seller 5,
    elite-seller unlimited. Frozen sellers cannot list.

    **Error Scenarios:**
    - 402 Payment Required: booking without a saved payment method
    - 403 Forbidden: listing over the tier limit, reviewing without a completed order
    """
    serializer_class = ServiceSerializer
    permission_classes = [permissions.IsAuthenticatedOrReadOnly]
    parser_classes = [JSONParser, FormParser, MultiPartParser]

    def get_queryset(self):
        queryset = Service.objects.select_related('user')
        user = self.request.user
        owner = _user_filter(self.request)
        is_own_listing = user.is_authenticated and owner == user.pk
        if self.action in ('list',) and not is_own_listing:
            queryset = queryset.filter(status='active').exclude(user__account_status='banned')
        elif self.action == 'retrieve' and not (user.is_authenticated and user.is_admin):
            visible = Q(status='active')
            if user.is_authenticated:
                visible |= Q(user=user)
            queryset = queryset.filter(visible)

        params = self.request.query_params
        if owner:
            queryset = queryset.filter(user_id=owner)
        if params.get('category'):
            queryset = queryset.filter(category=params['category'])
        if params.get('experience_level'):
            queryset = queryset.filter(experience_level=params['experience_level'])
        if params.get('format'):
            queryset = queryset.filter(format=params['format'])
        try:
            if params.get('min_price'):
                queryset = queryset.filter(price_per_hour__gte=params['min_price'])
            if params.get('max_price'):
                queryset = queryset.filter(price_per_hour__lte=params['max_price'])
        except (ValueError, TypeError):
            pass
        search = (params.get('search') or '').strip()
        if search:
            queryset = queryset.filter(
                Q(title__icontains=search) | Q(description__icontains=search) | Q(tags__icontains=search)
            )
        if user.is_authenticated and self.action == 'list':
            queryset = queryset.exclude(user_id__in=SocialService.blocked_user_ids(user))
        return queryset.order_by('-created_at')

    @track_performance
    def list(self, request, *args, **kwargs):
        return super().list(request, *args, **kwargs)

    def perform_create(self, serializer):
        MarketplaceService.require_can_list(self.request.user)
        serializer.save(user=self.request.user)

    def perform_update(self, serializer):
        if serializer.instance.user_id != self.request.user.pk:
            raise PermissionDenied('You can only edit your own services.')
        serializer.save()

    def perform_destroy(self, instance):
        if instance.user_id != self.request.user.pk:
            raise PermissionDenied('You can only delete your own services.')
        instance.delete()

    @action(detail=False, methods=['get'], permission_classes=[permissions.IsAuthenticated])
    def eligibility(self, request):
        return Response(MarketplaceService.listing_eligibility(request.user))

    @action(detail=False, methods=['get'], permission_classes=[permissions.IsAuthenticated])
    def orders(self, request):
        queryset = ServiceOrder.objects.filter(buyer=request.user).select_related('service', 'buyer')
        return _paginate(self, request, queryset, ServiceOrderSerializer)

    @action(detail=True, methods=['post'], permission_classes=[permissions.IsAuthenticated],
            throttle_classes=[ConfirmationThrottle])
    def book(self, request, pk=None):
        service = self.get_object()
        minutes = request.data.get('session_minutes')
        try:
            order = MarketplaceService.book(service, request.user, int(minutes) if minutes else None)
        except (TypeError, ValueError) as e:
            return _bad_request(e)
        return Response(ServiceOrderSerializer(order, context={'request': request}).data,
                        status=status.HTTP_201_CREATED)

    @action(detail=True, methods=['get', 'post'])
    def reviews(self, request, pk=None):
        service = self.get_object()
        if request.method == 'POST':
            if not request.user.is_authenticated:
                raise PermissionDenied('Sign in to leave a review.')
            try:
                review, created = ReviewService.submit(
                    service, request.user, request.data.get('rating'), request.data.get('comment', '')
                )
            except ValueError as e:
                return _bad_request(e)
            return Response({
                'review': ServiceReviewSerializer(review, context={'request': request}).data,
                'rating_summary': ReviewService.rating_summary(service),
            }, status=status.HTTP_201_CREATED if created else status.HTTP_200_OK)

        queryset = (
            ServiceReview.objects.filter(service=service, is_hidden=False, is_deleted=False)
            .select_related('user')
        )
        response = _paginate(self, request, queryset, ServiceReviewSerializer)
        response.data['rating_summary'] = ReviewService.rating_summary(service)
        response.data['can_review'] = ReviewService.can_review(service, request.user)
        return response


# ---------------------------------------------------------------------------
# Billing
# ---------------------------------------------------------------------------

class BillingViewSet(viewsets.ViewSet):
    """
    Subscriptions, saved cards and invoices.

    **Plans:** GET /api/billing/plans/
    **Subscription:** GET /api/billing/subscription/
    **Subscribe:** POST /api/billing/subscribe/ ``{"tier": "pro-seller", "card": {...}, "save_card": true}``
    **Cancel:** POST /api/billing/cancel/ ``{"reason": "..."}``
    **Cards:** GET / POST /api/billing/payment-methods/, DELETE payment-methods/{id}/,
    POST payment-methods/{id}/default/
    **Invoices:** GET /api/billing/invoices/
    """
    permission_classes = [permissions.IsAuthenticated]

    @action(detail=False, methods=['get'], permission_classes=[permissions.AllowAny])
    def plans(self, request):
        return Response([
            {'tier': tier, 'label': TIER_LABELS[tier], 'price': str(price), 'service_limit': TIER_SERVICE_LIMITS[tier]}
            for tier, price in TIER_PRICES.items()
        ])

    @action(detail=False, methods=['get'])
    def subscription(self, request):
        return Response(SubscriptionSerializer(get_subscription(request.user)).data)

    @action(detail=False, methods=['post'], throttle_classes=[SensitiveOperationThrottle])
    def subscribe(self, request):
        serializer = SubscribeSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            result = BillingService.subscribe(
                request.user,
                serializer.validated_data['tier'],
                card=serializer.validated_data.get('card'),
                save_card=serializer.validated_data.get('save_card', False),
            )
        except ValueError as e:
            return _bad_request(e)
        return Response({
            'subscription': SubscriptionSerializer(result.subscription).data,
            'invoice': InvoiceSerializer(result.invoice).data if result.invoice else None,
            'next_action': result.next_action or None,
        })

    @action(detail=False, methods=['post'])
    def cancel(self, request):
        try:
            subscription = BillingService.cancel(request.user, reason=request.data.get('reason', ''))
        except ValueError as e:
            return _bad_request(e)
        return Response(SubscriptionSerializer(subscription).data)

    @action(detail=False, methods=['get', 'post'], url_path='payment-methods')
    def payment_methods(self, request):
        if request.method == 'POST':
            serializer = PaymentMethodSerializer(data=request.data)
            serializer.is_valid(raise_exception=True)
            method = BillingService.add_payment_method(request.user, **serializer.validated_data)
            return Response(PaymentMethodSerializer(method).data, status=status.HTTP_201_CREATED)
        methods = PaymentMethod.objects.filter(user=request.user)
        return Response(PaymentMethodSerializer(methods, many=True).data)

    @action(detail=False, methods=['delete'], url_path=r'payment-methods/(?P<method_id>[^/.]+)')
    def delete_payment_method(self, request, method_id=None):
        BillingService.delete_payment_method(request.user, method_id)
        return Response(status=status.HTTP_204_NO_CONTENT)

    @action(detail=False, methods=['post'], url_path=r'payment-methods/(?P<method_id>[^/.]+)/default')
    def default_payment_method(self, request, method_id=None):
        method = BillingService.set_default_payment_method(request.user, method_id)
        return Response(PaymentMethodSerializer(method).data)

    @action(detail=False, methods=['get'])
    def invoices(self, request):
        queryset = Invoice.objects.filter(user=request.user)
        return _paginate(self, request, queryset, InvoiceSerializer)


class PaymentWebhookView(APIView):
    """Provider webhooks. Authenticated by signature over the raw body, never by JWT."""
    permission_classes = [permissions.AllowAny]
    authentication_classes = []
    throttle_classes = []

    SIGNATURE_HEADERS = {
        'stripe': 'HTTP_STRIPE_SIGNATURE',
        'square': 'HTTP_X_SQUARE_HMACSHA256_SIGNATURE',
        'lemonsqueezy': 'HTTP_X_SIGNATURE',
    }

    def post(self, request, provider):
        handler = payments.PROVIDERS.get(provider)
        if handler is None:
            return create_error_response('Unknown payment provider.', code=ErrorCodes.NOT_FOUND,
                                         status_code=status.HTTP_404_NOT_FOUND)
        signature = request.META.get(self.SIGNATURE_HEADERS[provider], '')
        try:
            event = handler.verify_webhook(request.body, signature)
        except PaymentProviderError as e:
            logger.warning(f"Rejected {provider} webhook: {e}")
            return create_error_response(str(e), code=ErrorCodes.PROVIDER_ERROR)
        outcome = BillingService.handle_webhook(event)
        logger.info(f"{provider} webhook {event.event_type}: {outcome}")
        return Response({'received': True, 'result': outcome})


class RefundRequestViewSet(viewsets.ViewSet):
    """
    Refund requests for the signed-in user's charges.

    **List:** GET /api/refunds/
    **Request:** POST /api/refunds/ with ``invoice`` or ``transaction_id``,
    ``amount`` and ``reason`` (multipart when a ``screenshot`` is attached)

    Asking again for the same charge within five days answers 429.
    """
    permission_classes = [permissions.IsAuthenticated]
    parser_classes = [JSONParser, FormParser, MultiPartParser]

    def list(self, request):
        queryset = RefundRequest.objects.filter(user=request.user).order_by('-created_at')
        return _paginate(self, request, queryset, RefundRequestSerializer)

    def create(self, request):
        serializer = RefundRequestSerializer(data=request.data, context={'request': request})
        serializer.is_valid(raise_exception=True)
        details = dict(serializer.validated_data)
        try:
            refund = BillingService.request_refund(
                request.user,
                details.pop('amount'),
                details.pop('reason'),
                invoice=details.pop('invoice', None),
                transaction_id=details.pop('transaction_id', ''),
                **details,
            )
        except ValueError as e:
            return _bad_request(e)
        return Response(
            {'case_number': refund.case_number,
             'refund': RefundRequestSerializer(refund, context={'request': request}).data},
            status=status.HTTP_201_CREATED
        )


# ---------------------------------------------------------------------------
# Appeals
# ---------------------------------------------------------------------------

class AppealSubmitView(APIView):
    """Public appeal submission. Banned users can still reach this endpoint."""
    permission_classes = [permissions.AllowAny]
    authentication_classes = []
    throttle_classes = [AuthThrottle]

    serializers_by_kind = {
        'content': ContentAppealSerializer,
        'account': AccountAppealSerializer,
    }

    def post(self, request, kind):
        serializer_class = self.serializers_by_kind.get(kind)
        if serializer_class is None:
            raise NotFound('Unknown appeal type.')
        serializer = serializer_class(data=request.data)
        serializer.is_valid(raise_exception=True)
        user = User.objects.filter(email__iexact=serializer.validated_data['email']).first()
        appeal = serializer.save(user=user)
        logger.info(f"Appeal {appeal.case_number} submitted by {appeal.email}")
        return Response(
            {'case_number': appeal.case_number, 'appeal': serializer_class(appeal).data},
            status=status.HTTP_201_CREATED
        )


# ---------------------------------------------------------------------------
# Careers
# ---------------------------------------------------------------------------

class CareerApplyView(APIView):
    """Public job applications: multipart with an optional ``resume`` and ``portfolio``."""
    permission_classes = [permissions.AllowAny]
    authentication_classes = []
    throttle_classes = [AuthThrottle]
    parser_classes = [JSONParser, FormParser, MultiPartParser]

    def post(self, request):
        serializer = CareerApplicationSerializer(data=request.data, context={'request': request})
        serializer.is_valid(raise_exception=True)
        application = serializer.save()
        emails.send_career_application_received(application)
        logger.info(f"Career application {application.application_id} for {application.position} "
                    f"from {application.email}")
        return Response(
            {'application_id': application.application_id, 'status': application.status},
            status=status.HTTP_201_CREATED
        )


# ---------------------------------------------------------------------------
# Admin
# ---------------------------------------------------------------------------

class AdminUserViewSet(viewsets.ViewSet):
    """
    Admin User Management

    **List Users:** GET /api/admin/users/?search=&status=&role=
    **Stats:** GET /api/admin/users/stats/
    **Role:** POST /api/admin/users/{id}/role/ (super admin only)
    **Ban / suspend / unban:** POST ban/, suspend/ (``duration`` like 7d, 12h, 2w, 1m
    or ``days``), unban/
    **Seller:** POST freeze-seller/, unfreeze-seller/
    **Chat:** POST freeze-chat/, unfreeze-chat/
    **Blocking:** POST lock-blocking/, unlock-blocking/
    **Notes:** GET / POST notes/

    Every action writes an audit log entry and notifies the user.
    """
    permission_classes = [IsPlatformAdmin]

    def _target(self, pk):
        return _get_or_404(User, 'User not found', pk=pk)

    def _respond(self, user):
        return Response({'status': 'success', 'user': AdminUserListSerializer(user).data})

    def list(self, request):
        """List all users with search and filter support (admin only)"""
        queryset = User.objects.all().order_by('-date_joined')
        search = request.query_params.get('search', '').strip()
        if search:
            queryset = queryset.filter(
                Q(email__icontains=search) | Q(full_name__icontains=search) | Q(handle__icontains=search)
            )
        status_filter = request.query_params.get('status', '').strip().lower()
        if status_filter:
            queryset = queryset.filter(account_status=status_filter)
        role = request.query_params.get('role', '').strip()
        if role:
            queryset = queryset.filter(role=role)
        return _paginate(self, request, queryset, AdminUserListSerializer)

    def retrieve(self, request, pk=None):
        user = self._target(pk)
        data = AdminUserListSerializer(user).data
        data['reports_received'] = user.reports_received.count()
        data['notes'] = AdminNoteSerializer(user.admin_notes.select_related('author')[:20], many=True).data
        return Response(data)

    @action(detail=False, methods=['get'])
    def stats(self, request):
        by_status = dict(User.objects.values_list('account_status').annotate(total=Count('id')))
        return Response({
            'total_users': User.objects.count(),
            'active': by_status.get('active', 0),
            'suspended': by_status.get('suspended', 0),
            'banned': by_status.get('banned', 0),
            'pending_reports': UserReport.objects.filter(status='pending').count(),
            'pending_appeals': (
                ContentAppeal.objects.filter(status='pending').count()
                + AccountAppeal.objects.filter(status='pending').count()
            ),
            'posts': Post.objects.count(),
            'services': Service.objects.filter(status='active').count(),
        })

    @action(detail=True, methods=['post'], throttle_classes=[ConfirmationThrottle])
    def role(self, request, pk=None):
        try:
            user = ModerationService.set_role(request.user, self._target(pk), request.data.get('role', ''))
        except ValueError as e:
            return _bad_request(e)
        return self._respond(user)

    @action(detail=True, methods=['post'], throttle_classes=[ConfirmationThrottle])
    def ban(self, request, pk=None):
        try:
            user = ModerationService.ban(
                request.user, self._target(pk), reason=request.data.get('reason', ''),
                send_email=request.data.get('send_email', True) not in (False, 'false', '0'),
            )
        except ValueError as e:
            return _bad_request(e)
        return self._respond(user)

    @action(detail=True, methods=['post'], throttle_classes=[ConfirmationThrottle])
    def suspend(self, request, pk=None):
        try:
            user = ModerationService.suspend(
                request.user,
                self._target(pk),
                reason=request.data.get('reason', ''),
                duration=request.data.get('duration'),
                days=request.data.get('days'),
                send_email=request.data.get('send_email', True) not in (False, 'false', '0'),
            )
        except ValueError as e:
            return _bad_request(e)
        return self._respond(user)

    @action(detail=True, methods=['post'], throttle_classes=[ConfirmationThrottle])
    def unban(self, request, pk=None):
        user = ModerationService.unban(
            request.user, self._target(pk),
            send_email=request.data.get('send_email', True) not in (False, 'false', '0'),
        )
        return self._respond(user)

    @action(detail=True, methods=['post'], url_path='freeze-seller')
    def freeze_seller(self, request, pk=None):
        try:
            user = ModerationService.freeze_seller(request.user, self._target(pk), request.data.get('reason', ''))
        except ValueError as e:
            return _bad_request(e)
        return self._respond(user)

    @action(detail=True, methods=['post'], url_path='unfreeze-seller')
    def unfreeze_seller(self, request, pk=None):
        return self._respond(ModerationService.unfreeze_seller(request.user, self._target(pk)))

    @action(detail=True, methods=['post'], url_path='freeze-chat')
    def freeze_chat(self, request, pk=None):
        try:
            user = ModerationService.set_chat_frozen(request.user, self._target(pk), True,
                                                     request.data.get('reason', ''))
        except ValueError as e:
            return _bad_request(e)
        return self._respond(user)

    @action(detail=True, methods=['post'], url_path='unfreeze-chat')
    def unfreeze_chat(self, request, pk=None):
        return self._respond(ModerationService.set_chat_frozen(request.user, self._target(pk), False))

    @action(detail=True, methods=['post'], url_path='lock-blocking')
    def lock_blocking(self, request, pk=None):
        user = ModerationService.set_blocking_locked(request.user, self._target(pk), True,
                                                     request.data.get('reason', ''))
        return self._respond(user)

    @action(detail=True, methods=['post'], url_path='unlock-blocking')
    def unlock_blocking(self, request, pk=None):
        return self._respond(ModerationService.set_blocking_locked(request.user, self._target(pk), False))

    @action(detail=True, methods=['get', 'post'])
    def notes(self, request, pk=None):
        user = self._target(pk)
        if request.method == 'POST':
            try:
                note = ModerationService.add_note(request.user, user, request.data.get('note', ''))
            except ValueError as e:
                return _bad_request(e)
            return Response(AdminNoteSerializer(note).data, status=status.HTTP_201_CREATED)
        return Response(AdminNoteSerializer(user.admin_notes.select_related('author'), many=True).data)


class AdminReportViewSet(viewsets.ReadOnlyModelViewSet):
    serializer_class = UserReportSerializer
    permission_classes = [IsPlatformAdmin]

    def get_queryset(self):
        queryset = UserReport.objects.select_related('reporter', 'reported_user')
        status_filter = self.request.query_params.get('status')
        if status_filter:
            queryset = queryset.filter(status=status_filter)
        return queryset.order_by('-created_at')

    @action(detail=True, methods=['post'], url_path='status')
    def update_status(self, request, pk=None):
        report = self.get_object()
        try:
            report = ModerationService.update_report(
                request.user, report, request.data.get('status', ''), request.data.get('admin_notes', '')
            )
        except ValueError as e:
            return _bad_request(e)
        return Response(UserReportSerializer(report, context={'request': request}).data)


class AdminContentView(APIView):
    """
    POST /api/admin/content/{kind}/{id}/ ``{"action": "hide", "reason": "..."}``

    ``kind`` is post (hide, unhide, delete), comment (hide, delete, restore),
    service (hide, unhide, delete) or review (hide, delete, restore).
    """
    permission_classes = [IsPlatformAdmin]

    def post(self, request, kind, pk):
        action_name = request.data.get('action', '')
        reason = request.data.get('reason', '')
        try:
            if kind == 'post':
                post = _get_or_404(Post, 'Post not found.', pk=pk)
                result = ModerationService.moderate_post(request.user, post, action_name, reason)
                data = PostSerializer(result, context={'request': request}).data if result else None
            elif kind == 'comment':
                comment = _get_or_404(PostComment, 'Comment not found.', pk=pk)
                result = ModerationService.moderate_comment(request.user, comment, action_name, reason)
                data = PostCommentSerializer(result, context={'request': request}).data
            elif kind == 'service':
                service = _get_or_404(Service, 'Service not found.', pk=pk)
                result = ModerationService.moderate_service(request.user, service, action_name, reason)
                data = ServiceSerializer(result, context={'request': request}).data if result else None
            elif kind == 'review':
                review = _get_or_404(ServiceReview, 'Review not found.', pk=pk)
                result = ModerationService.moderate_review(request.user, review, action_name)
                data = ServiceReviewSerializer(result, context={'request': request}).data
            else:
                raise NotFound('Unknown content type.')
        except ValueError as e:
            return _bad_request(e)
        return Response({'status': 'success', 'action': action_name, 'item': data})


class AdminAppealViewSet(viewsets.ViewSet):
    """Appeals are listed per kind: ``?type=content`` (default) or ``?type=account``."""
    permission_classes = [IsPlatformAdmin]

    models_by_kind = {
        'content': (ContentAppeal, ContentAppealSerializer),
        'account': (AccountAppeal, AccountAppealSerializer),
    }

    def _kind(self, request):
        kind = request.query_params.get('type') or request.data.get('type') or 'content'
        if kind not in self.models_by_kind:
            raise NotFound('Unknown appeal type.')
        return self.models_by_kind[kind]

    def list(self, request):
        model, serializer_class = self._kind(request)
        queryset = model.objects.all()
        status_filter = request.query_params.get('status')
        if status_filter:
            queryset = queryset.filter(status=status_filter)
        return _paginate(self, request, queryset.order_by('-created_at'), serializer_class)

    @action(detail=True, methods=['post'], url_path='status')
    def update_status(self, request, pk=None):
        model, serializer_class = self._kind(request)
        appeal = _get_or_404(model, 'Appeal not found.', pk=pk)
        try:
            appeal = ModerationService.update_appeal(
                request.user, appeal, request.data.get('status', ''), request.data.get('admin_notes', '')
            )
        except ValueError as e:
            return _bad_request(e)
        return Response(serializer_class(appeal).data)


class AdminAuditLogViewSet(viewsets.ReadOnlyModelViewSet):
    serializer_class = AuditLogSerializer
    permission_classes = [IsPlatformAdmin]

    def get_queryset(self):
        queryset = AuditLog.objects.select_related('actor', 'target_user')
        action_filter = self.request.query_params.get('action')
        if action_filter:
            queryset = queryset.filter(action=action_filter)
        target = _user_filter(self.request)
        if target:
            queryset = queryset.filter(target_user_id=target)
        return queryset.order_by('-created_at')


class AdminRefundRequestViewSet(viewsets.ViewSet):
    """
    Refund review.

    **List:** GET /api/admin/refunds/?status=
    **Detail:** GET /api/admin/refunds/{id}/ with the audit trail of the case
    **Status:** POST /api/admin/refunds/{id}/status/
    ``{"status": "approved", "admin_notes": "...", "refund_amount": "9.99"}``
    """
    permission_classes = [IsPlatformAdmin]

    def list(self, request):
        queryset = RefundRequest.objects.select_related('user', 'reviewed_by')
        status_filter = request.query_params.get('status')
        if status_filter:
            queryset = queryset.filter(status=status_filter)
        return _paginate(self, request, queryset.order_by('-created_at'), AdminRefundRequestSerializer)

    def retrieve(self, request, pk=None):
        refund = _get_or_404(RefundRequest, 'Refund request not found.', pk=pk)
        history = (
            AuditLog.objects.filter(details__case_number=refund.case_number)
            .select_related('actor', 'target_user')
            .order_by('created_at')
        )
        data = AdminRefundRequestSerializer(refund, context={'request': request}).data
        return Response({**data, 'history': AuditLogSerializer(history, many=True).data})

    @action(detail=True, methods=['post'], url_path='status')
    def update_status(self, request, pk=None):
        refund = _get_or_404(RefundRequest, 'Refund request not found.', pk=pk)
        try:
            refund = ModerationService.update_refund_request(
                request.user,
                refund,
                request.data.get('status', ''),
                admin_notes=request.data.get('admin_notes', ''),
                refund_amount=request.data.get('refund_amount'),
            )
        except ValueError as e:
            return _bad_request(e)
        return Response(AdminRefundRequestSerializer(refund, context={'request': request}).data)


class AdminCareerViewSet(viewsets.ViewSet):
    """Job applications: GET ?status=&position=, POST {id}/status/."""
    permission_classes = [IsPlatformAdmin]

    def list(self, request):
        queryset = CareerApplication.objects.all()
        status_filter = request.query_params.get('status')
        if status_filter:
            queryset = queryset.filter(status=status_filter)
        position = request.query_params.get('position')
        if position:
            queryset = queryset.filter(position__iexact=position)
        return _paginate(self, request, queryset.order_by('-created_at'), CareerApplicationSerializer)

    @action(detail=True, methods=['post'], url_path='status')
    def update_status(self, request, pk=None):
        application = _get_or_404(CareerApplication, 'Application not found.', pk=pk)
        try:
            application = ModerationService.update_career_application(
                request.user, application, request.data.get('status', '')
            )
        except ValueError as e:
            return _bad_request(e)
        return Response(CareerApplicationSerializer(application, context={'request': request}).data)


class AdminExportView(APIView):
    """CSV downloads: GET /api/admin/exports/{users,messages,careers}/. Every download is audited."""
    permission_classes = [IsPlatformAdmin]

    builders = {
        'users': ('export_users', exports.users_csv),
        'messages': ('export_messages', exports.messages_csv),
        'careers': ('export_careers', exports.careers_csv),
    }

    def get(self, request, kind):
        if kind not in self.builders:
            raise NotFound('Unknown export.')
        audit_action, build = self.builders[kind]
        record_audit(request.user, audit_action)
        logger.info(f"Admin {request.user.email} exported {kind}")
        return build()
