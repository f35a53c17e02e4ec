from django.urls import path, include
from rest_framework.routers import DefaultRouter
from .views import (
    HealthCheckView,
    UserRegistrationView,
    CustomTokenObtainPairView,
    CustomTokenRefreshView,
    EmailVerificationView,
    ResendVerificationView,
    PasswordResetRequestView,
    PasswordResetConfirmView,
    OAuthStartView,
    OAuthCallbackView,
    OAuthAccountViewSet,
    PasskeyViewSet,
    UserProfileView,
    OnboardingView,
    NotificationPreferencesView,
    PrivacySettingsView,
    PayoutAccountView,
    ChangePasswordView,
    DeleteAccountView,
    UserViewSet,
    PostViewSet,
    CommentViewSet,
    ConversationViewSet,
    MessageViewSet,
    NotificationViewSet,
    PushSubscriptionViewSet,
    ServiceViewSet,
    BillingViewSet,
    PaymentWebhookView,
    RefundRequestViewSet,
    AppealSubmitView,
    CareerApplyView,
    AdminUserViewSet,
    AdminReportViewSet,
    AdminContentView,
    AdminAppealViewSet,
    AdminAuditLogViewSet,
    AdminRefundRequestViewSet,
    AdminCareerViewSet,
    AdminExportView,
)
from drf_spectacular.views import SpectacularAPIView, SpectacularSwaggerView, SpectacularRedocView

router = DefaultRouter()
router.register(r'auth/oauth/accounts', OAuthAccountViewSet, basename='oauth-account')
router.register(r'auth/passkeys', PasskeyViewSet, basename='passkey')
router.register(r'users', UserViewSet, basename='user')
router.register(r'posts', PostViewSet, basename='post')
router.register(r'comments', CommentViewSet, basename='comment')
router.register(r'conversations', ConversationViewSet, basename='conversation')
router.register(r'messages', MessageViewSet, basename='message')
router.register(r'notifications', NotificationViewSet, basename='notification')
router.register(r'push', PushSubscriptionViewSet, basename='push')
router.register(r'services', ServiceViewSet, basename='service')
router.register(r'billing', BillingViewSet, basename='billing')
router.register(r'refunds', RefundRequestViewSet, basename='refund')
router.register(r'admin/users', AdminUserViewSet, basename='admin-user')
router.register(r'admin/reports', AdminReportViewSet, basename='admin-report')
router.register(r'admin/appeals', AdminAppealViewSet, basename='admin-appeal')
router.register(r'admin/audit-log', AdminAuditLogViewSet, basename='admin-audit-log')
router.register(r'admin/refunds', AdminRefundRequestViewSet, basename='admin-refund')
router.register(r'admin/careers', AdminCareerViewSet, basename='admin-career')


urlpatterns = [
    path('health/', HealthCheckView.as_view(), name='health-check'),
    path('auth/register/', UserRegistrationView.as_view(), name='register'),
    path('auth/login/', CustomTokenObtainPairView.as_view(), name='token_obtain_pair'),
    path('auth/refresh/', CustomTokenRefreshView.as_view(), name='token_refresh'),
    path('auth/verify-email/', EmailVerificationView.as_view(), name='verify-email'),
    path('auth/verify-email/resend/', ResendVerificationView.as_view(), name='verify-email-resend'),
    path('auth/password-reset/', PasswordResetRequestView.as_view(), name='password-reset'),
    path('auth/password-reset/confirm/', PasswordResetConfirmView.as_view(), name='password-reset-confirm'),
    path('auth/oauth/<str:provider>/start/', OAuthStartView.as_view(), name='oauth-start'),
    path('auth/oauth/<str:provider>/callback/', OAuthCallbackView.as_view(), name='oauth-callback'),
    path('users/me/', UserProfileView.as_view(), name='user-profile'),
    path('users/me/onboarding/', OnboardingView.as_view(), name='user-onboarding'),
    path('users/me/payout-account/', PayoutAccountView.as_view(), name='user-payout-account'),
    path('settings/notifications/', NotificationPreferencesView.as_view(), name='settings-notifications'),
    path('settings/privacy/', PrivacySettingsView.as_view(), name='settings-privacy'),
    path('settings/password/', ChangePasswordView.as_view(), name='settings-password'),
    path('settings/delete-account/', DeleteAccountView.as_view(), name='settings-delete-account'),
    path('webhooks/<str:provider>/', PaymentWebhookView.as_view(), name='payment-webhook'),
    path('appeals/<str:kind>/', AppealSubmitView.as_view(), name='appeal-submit'),
    path('careers/apply/', CareerApplyView.as_view(), name='career-apply'),
    path('admin/exports/<str:kind>/', AdminExportView.as_view(), name='admin-export'),
    path('admin/content/<str:kind>/<uuid:pk>/', AdminContentView.as_view(), name='admin-content'),
    path('schema/', SpectacularAPIView.as_view(), name='schema'),
    path('docs/', SpectacularSwaggerView.as_view(url_name='schema'), name='swagger-ui'),
    path('redoc/', SpectacularRedocView.as_view(url_name='schema'), name='redoc'),
    path('', include(router.urls)),
]
