# api/serializers.py

from rest_framework import serializers
from .models import (
    User, OAuthAccount, WebAuthnCredential, Follow, UserReport, AuditLog, AdminNote,
    ContentAppeal, AccountAppeal, Post, PostComment, PostReaction,
    Conversation, Message, MessageReaction, Notification,
    Service, ServiceOrder, ServiceReview, Subscription, PaymentMethod, Invoice,
    PayoutAccount, RefundRequest, CareerApplication,
)
from django.utils import timezone
import bleach
import re
import logging
from drf_spectacular.utils import extend_schema_field, extend_schema_serializer, OpenApiExample
from drf_spectacular.types import OpenApiTypes

from .billing import TIER_PRICES, TIER_SERVICE_LIMITS, get_tier
from .services import ConversationService, ReactionService, ReviewService
from .utils import MAX_COMMENT_LENGTH, MAX_MESSAGE_LENGTH, password_complexity_errors

logger = logging.getLogger(__name__)

HANDLE_PATTERN = re.compile(r'^[A-Za-z0-9_]{3,30}$')
MAX_UPLOAD_BYTES = 10 * 1024 * 1024
DOCUMENT_TYPES = (
    'application/pdf',
    'application/msword',
    'application/vnd.openxmlformats-officedocument.wordprocessingml.document',
)


def _clean(value):
    return bleach.clean(value or '', tags=[], strip=True).strip()


def _file_url(file_field, request=None):
    if not file_field:
        return None
    url = file_field.url
    return request.build_absolute_uri(url) if request else url


def _validate_upload(value, allowed_prefixes):
    if value is None:
        return value
    if value.size > MAX_UPLOAD_BYTES:
        raise serializers.ValidationError('File must be 10MB or smaller.')
    content_type = getattr(value, 'content_type', '') or ''
    if content_type and not content_type.startswith(allowed_prefixes):
        raise serializers.ValidationError('Unsupported file type.')
    return value


class UserSummarySerializer(serializers.ModelSerializer):
    """
    Reusable serializer for user summary information
    Used in nested serializations to avoid circular references
    """
    avatar_url = serializers.SerializerMethodField()

    class Meta:
        model = User
        fields = ['id', 'full_name', 'handle', 'avatar_url', 'role']
        read_only_fields = fields

    @extend_schema_field(OpenApiTypes.STR)
    def get_avatar_url(self, obj):
        return _file_url(obj.avatar, self.context.get('request'))


class AdminUserListSerializer(serializers.ModelSerializer):
    """Simplified serializer for admin user list view"""
    tier = serializers.SerializerMethodField()

    class Meta:
        model = User
        fields = [
            'id', 'email', 'full_name', 'handle', 'role', 'account_status',
            'suspension_until', 'moderation_reason', 'seller_privileges_frozen',
            'chat_privileges_frozen', 'blocking_locked', 'is_email_verified',
            'tier', 'date_joined',
        ]
        read_only_fields = fields

    @extend_schema_field(OpenApiTypes.STR)
    def get_tier(self, obj):
        return get_tier(obj)


@extend_schema_serializer(
    examples=[
        OpenApiExample(
            'Registration Request',
            value={
                'email': 'maya@example.com',
                'password': 'Sunrise#2024',
                'full_name': 'Maya Chen',
                'handle': 'mayachen'
            },
            request_only=True
        )
    ]
)
class UserRegistrationSerializer(serializers.ModelSerializer):
    handle = serializers.CharField(max_length=30, required=False, allow_blank=True)

    class Meta:
        model = User
        fields = ['email', 'password', 'full_name', 'handle']
        extra_kwargs = {'password': {'write_only': True}}

    def validate_email(self, value):
        value = User.objects.normalize_email(value).lower()
        if User.objects.filter(email__iexact=value).exists():
            raise serializers.ValidationError('An account with this email already exists.')
        return value

    def validate_password(self, value):
        errors = password_complexity_errors(value)
        if errors:
            raise serializers.ValidationError(errors)
        return value

    def validate_full_name(self, value):
        cleaned = _clean(value)
        if not cleaned:
            raise serializers.ValidationError('Name is required.')
        return cleaned

    def validate_handle(self, value):
        return validate_handle_value(value)

    def create(self, validated_data):
        password = validated_data.pop('password')
        handle = validated_data.pop('handle', '') or None
        return User.objects.create_user(password=password, handle=handle, **validated_data)


def validate_handle_value(value, instance=None):
    value = (value or '').strip().lstrip('@')
    if not value:
        return None
    if not HANDLE_PATTERN.match(value):
        raise serializers.ValidationError('Handles use 3-30 letters, numbers or underscores.')
    taken = User.objects.filter(handle__iexact=value)
    if instance is not None:
        taken = taken.exclude(pk=instance.pk)
    if taken.exists():
        raise serializers.ValidationError('This handle is taken.')
    return value


class UserProfileSerializer(serializers.ModelSerializer):
    avatar_url = serializers.SerializerMethodField()
    banner_url = serializers.SerializerMethodField()
    follower_count = serializers.SerializerMethodField()
    following_count = serializers.SerializerMethodField()
    tier = serializers.SerializerMethodField()
    bio = serializers.CharField(max_length=1000, allow_blank=True, required=False)
    full_name = serializers.CharField(max_length=150, required=False)
    handle = serializers.CharField(max_length=30, required=False, allow_blank=True, allow_null=True)
    skills = serializers.ListField(child=serializers.CharField(max_length=50), required=False, max_length=30)

    class Meta:
        model = User
        fields = [
            'id', 'email', 'full_name', 'handle', 'bio', 'location', 'skills',
            'avatar', 'banner', 'avatar_url', 'banner_url', 'role', 'is_email_verified',
            'onboarding_completed', 'follower_count', 'following_count', 'tier',
            'seller_privileges_frozen', 'chat_privileges_frozen', 'blocking_locked',
            'date_joined',
        ]
        read_only_fields = [
            'id', 'email', 'role', 'is_email_verified', 'onboarding_completed',
            'seller_privileges_frozen', 'chat_privileges_frozen', 'blocking_locked', 'date_joined',
        ]
        extra_kwargs = {
            'avatar': {'write_only': True, 'required': False},
            'banner': {'write_only': True, 'required': False},
        }

    @extend_schema_field(OpenApiTypes.STR)
    def get_avatar_url(self, obj):
        return _file_url(obj.avatar, self.context.get('request'))

    @extend_schema_field(OpenApiTypes.STR)
    def get_banner_url(self, obj):
        return _file_url(obj.banner, self.context.get('request'))

    @extend_schema_field(OpenApiTypes.INT)
    def get_follower_count(self, obj):
        return obj.follower_edges.count()

    @extend_schema_field(OpenApiTypes.INT)
    def get_following_count(self, obj):
        return obj.following_edges.count()

    @extend_schema_field(OpenApiTypes.STR)
    def get_tier(self, obj):
        return get_tier(obj)

    def validate_bio(self, value):
        return _clean(value)

    def validate_full_name(self, value):
        cleaned = _clean(value)
        if not cleaned:
            raise serializers.ValidationError('Name cannot be empty.')
        return cleaned

    def validate_location(self, value):
        return _clean(value)

    def validate_handle(self, value):
        return validate_handle_value(value, instance=self.instance)

    def validate_skills(self, value):
        return [skill for skill in (_clean(item) for item in value) if skill]

    def validate_avatar(self, value):
        return _validate_upload(value, ('image/',))

    def validate_banner(self, value):
        return _validate_upload(value, ('image/',))


class PublicUserProfileSerializer(serializers.ModelSerializer):
    avatar_url = serializers.SerializerMethodField()
    banner_url = serializers.SerializerMethodField()
    follower_count = serializers.SerializerMethodField()
    following_count = serializers.SerializerMethodField()

    class Meta:
        model = User
        fields = [
            'id', 'full_name', 'handle', 'bio', 'location', 'skills',
            'avatar_url', 'banner_url', 'role', 'follower_count', 'following_count', 'date_joined',
        ]
        read_only_fields = fields

    @extend_schema_field(OpenApiTypes.STR)
    def get_avatar_url(self, obj):
        return _file_url(obj.avatar, self.context.get('request'))

    @extend_schema_field(OpenApiTypes.STR)
    def get_banner_url(self, obj):
        return _file_url(obj.banner, self.context.get('request'))

    @extend_schema_field(OpenApiTypes.INT)
    def get_follower_count(self, obj):
        return obj.follower_edges.count()

    @extend_schema_field(OpenApiTypes.INT)
    def get_following_count(self, obj):
        return obj.following_edges.count()


class OnboardingSerializer(serializers.ModelSerializer):
    onboarding_categories = serializers.ListField(child=serializers.CharField(max_length=50), max_length=20)
    onboarding_goals = serializers.ListField(child=serializers.CharField(max_length=100), required=False, max_length=20)

    class Meta:
        model = User
        fields = ['onboarding_categories', 'onboarding_goals', 'onboarding_experience']

    def update(self, instance, validated_data):
        validated_data['onboarding_completed'] = True
        return super().update(instance, validated_data)


class NotificationPreferencesSerializer(serializers.ModelSerializer):
    class Meta:
        model = User
        fields = ['email_notifications', 'push_notifications', 'message_notifications']


class PrivacySettingsSerializer(serializers.ModelSerializer):
    class Meta:
        model = User
        fields = [
            'profile_visibility', 'allow_messages_from', 'discoverable_by_email',
            'show_online_status', 'read_receipts',
        ]


class ChangePasswordSerializer(serializers.Serializer):
    current_password = serializers.CharField(required=False, allow_blank=True)
    new_password = serializers.CharField()

    def validate_new_password(self, value):
        errors = password_complexity_errors(value)
        if errors:
            raise serializers.ValidationError(errors)
        return value


class PasswordResetConfirmSerializer(serializers.Serializer):
    token = serializers.CharField(max_length=64)
    new_password = serializers.CharField()

    def validate_new_password(self, value):
        errors = password_complexity_errors(value)
        if errors:
            raise serializers.ValidationError(errors)
        return value


class OAuthAccountSerializer(serializers.ModelSerializer):
    class Meta:
        model = OAuthAccount
        fields = ['id', 'provider', 'created_at']
        read_only_fields = fields


class WebAuthnCredentialSerializer(serializers.ModelSerializer):
    class Meta:
        model = WebAuthnCredential
        fields = ['id', 'name', 'transports', 'created_at', 'last_used_at']
        read_only_fields = fields


class FollowSerializer(serializers.ModelSerializer):
    follower = UserSummarySerializer(read_only=True)
    following = UserSummarySerializer(read_only=True)

    class Meta:
        model = Follow
        fields = ['id', 'follower', 'following', 'created_at']
        read_only_fields = fields


class ReelAuthorSerializer(UserSummarySerializer):
    """A followed user together with how many of their reels are still live."""
    reel_count = serializers.IntegerField(read_only=True)

    class Meta(UserSummarySerializer.Meta):
        fields = UserSummarySerializer.Meta.fields + ['reel_count']
        read_only_fields = fields


# Feed Serializers
@extend_schema_serializer(
    examples=[
        OpenApiExample(
            'Post Example',
            value={
                'id': '3f6c1a52-1f0e-4a54-9a7c-2b1d9d6b0c11',
                'user': {'id': '9b2e7f80-6c41-4d0d-8d55-0f5d2c8a1e21', 'full_name': 'Maya Chen'},
                'content_type': 'text',
                'text_content': 'Shipped my first mobile app today!',
                'media_url': None,
                'activity_label': 'celebrating',
                'reaction_counts': {'celebrate': 3, 'like': 1},
                'my_reaction': 'celebrate',
                'comment_count': 2,
                'created_at': '2024-05-01T12:00:00Z'
            },
            response_only=True
        )
    ]
)
class PostSerializer(serializers.ModelSerializer):
    user = UserSummarySerializer(read_only=True)
    media_url = serializers.SerializerMethodField()
    reaction_counts = serializers.SerializerMethodField()
    my_reaction = serializers.SerializerMethodField()
    comment_count = serializers.SerializerMethodField()

    class Meta:
        model = Post
        fields = [
            'id', 'user', 'content_type', 'text_content', 'media', 'media_url', 'activity_label',
            'reaction_counts', 'my_reaction', 'comment_count', 'is_hidden', 'created_at',
        ]
        read_only_fields = ['id', 'user', 'is_hidden', 'created_at']
        extra_kwargs = {'media': {'write_only': True, 'required': False}}

    @extend_schema_field(OpenApiTypes.STR)
    def get_media_url(self, obj):
        return _file_url(obj.media, self.context.get('request'))

    @extend_schema_field(OpenApiTypes.OBJECT)
    def get_reaction_counts(self, obj):
        return ReactionService.summarize(PostReaction, obj)

    @extend_schema_field(OpenApiTypes.STR)
    def get_my_reaction(self, obj):
        request = self.context.get('request')
        return ReactionService.user_reaction(PostReaction, obj, getattr(request, 'user', None))

    @extend_schema_field(OpenApiTypes.INT)
    def get_comment_count(self, obj):
        return obj.comments.filter(is_hidden=False, is_deleted=False).count()

    def validate_text_content(self, value):
        return _clean(value)[:MAX_MESSAGE_LENGTH]

    def validate_activity_label(self, value):
        return _clean(value)

    def validate_media(self, value):
        return _validate_upload(value, ('image/', 'video/'))

    def validate(self, attrs):
        content_type = attrs.get('content_type', 'text')
        if content_type == 'text' and not attrs.get('text_content'):
            raise serializers.ValidationError({'text_content': 'Text posts need some text.'})
        if content_type != 'text' and not attrs.get('media'):
            raise serializers.ValidationError({'media': f'{content_type.capitalize()} posts need a media file.'})
        return attrs


class PostCommentSerializer(serializers.ModelSerializer):
    user = UserSummarySerializer(read_only=True)
    parent_id = serializers.UUIDField(required=False, allow_null=True, write_only=True)
    parent = serializers.UUIDField(source='parent.id', read_only=True, allow_null=True)
    content = serializers.CharField(max_length=MAX_COMMENT_LENGTH)
    star_count = serializers.SerializerMethodField()
    liked = serializers.SerializerMethodField()

    class Meta:
        model = PostComment
        fields = [
            'id', 'post', 'user', 'parent', 'parent_id', 'content', 'star_count', 'liked',
            'is_hidden', 'is_deleted', 'created_at',
        ]
        read_only_fields = ['id', 'post', 'user', 'is_hidden', 'is_deleted', 'created_at']

    @extend_schema_field(OpenApiTypes.INT)
    def get_star_count(self, obj):
        return obj.likes.count()

    @extend_schema_field(OpenApiTypes.BOOL)
    def get_liked(self, obj):
        request = self.context.get('request')
        if not request or not request.user.is_authenticated:
            return False
        return obj.likes.filter(user=request.user).exists()

    def to_representation(self, instance):
        data = super().to_representation(instance)
        if instance.is_deleted:
            data['content'] = '[deleted]'
        return data


# Messaging Serializers
@extend_schema_serializer(
    examples=[
        OpenApiExample(
            'Message Example',
            value={
                'id': '5d7c3e1f-2a4b-4c6d-8e9f-0a1b2c3d4e5f',
                'conversation': '0f1e2d3c-4b5a-6978-8695-a4b3c2d1e0f9',
                'sender': {'id': '9b2e7f80-6c41-4d0d-8d55-0f5d2c8a1e21', 'full_name': 'Maya Chen'},
                'content': 'Are you free for a call tomorrow?',
                'attachment_url': None,
                'attachment_type': '',
                'reply_to': None,
                'reaction_counts': {'like': 1},
                'created_at': '2024-05-01T12:00:00Z'
            },
            response_only=True
        )
    ]
)
class MessageSerializer(serializers.ModelSerializer):
    sender = UserSummarySerializer(read_only=True)
    attachment_url = serializers.SerializerMethodField()
    reaction_counts = serializers.SerializerMethodField()
    reply_to = serializers.UUIDField(source='reply_to.id', read_only=True, allow_null=True)

    class Meta:
        model = Message
        fields = [
            'id', 'conversation', 'sender', 'content', 'attachment_url', 'attachment_type',
            'reply_to', 'reaction_counts', 'created_at',
        ]
        read_only_fields = fields

    @extend_schema_field(OpenApiTypes.STR)
    def get_attachment_url(self, obj):
        return _file_url(obj.attachment, self.context.get('request'))

    @extend_schema_field(OpenApiTypes.OBJECT)
    def get_reaction_counts(self, obj):
        return ReactionService.summarize(MessageReaction, obj)


class SendMessageSerializer(serializers.Serializer):
    content = serializers.CharField(max_length=MAX_MESSAGE_LENGTH, required=False, allow_blank=True)
    reply_to = serializers.UUIDField(required=False, allow_null=True)


class ConversationSerializer(serializers.ModelSerializer):
    participants = UserSummarySerializer(many=True, read_only=True)
    last_message = serializers.SerializerMethodField()
    unread_count = serializers.SerializerMethodField()
    title = serializers.SerializerMethodField()

    class Meta:
        model = Conversation
        fields = [
            'id', 'is_group', 'group_name', 'title', 'created_by', 'participants',
            'last_message', 'unread_count', 'created_at', 'updated_at',
        ]
        read_only_fields = fields

    @extend_schema_field(OpenApiTypes.OBJECT)
    def get_last_message(self, obj):
        message = obj.messages.select_related('sender').order_by('-created_at').first()
        if message is None:
            return None
        return MessageSerializer(message, context=self.context).data

    @extend_schema_field(OpenApiTypes.INT)
    def get_unread_count(self, obj):
        request = self.context.get('request')
        if not request or not request.user.is_authenticated:
            return 0
        return ConversationService.unread_count(obj, request.user)

    @extend_schema_field(OpenApiTypes.STR)
    def get_title(self, obj):
        if obj.is_group:
            return obj.group_name
        request = self.context.get('request')
        for participant in obj.participants.all():
            if not request or participant.pk != request.user.pk:
                return participant.full_name
        return ''


class GroupConversationSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=100)
    member_ids = serializers.ListField(child=serializers.UUIDField(), min_length=1, max_length=50)


# Notification Serializers
@extend_schema_serializer(
    examples=[
        OpenApiExample(
            'Notification Example',
            value={
                'id': '7a8b9c0d-1e2f-4a3b-8c4d-5e6f7a8b9c0d',
                'type': 'post_reaction',
                'title': 'New reaction',
                'message': 'Maya Chen reacted celebrate to your post',
                'link': '/posts/3f6c1a52-1f0e-4a54-9a7c-2b1d9d6b0c11',
                'is_read': False,
                'created_at': '2024-05-01T12:00:00Z'
            },
            response_only=True
        )
    ]
)
class NotificationSerializer(serializers.ModelSerializer):
    class Meta:
        model = Notification
        fields = ['id', 'type', 'title', 'message', 'link', 'is_read', 'created_at']
        read_only_fields = ['id', 'type', 'title', 'message', 'link', 'created_at']


class PushSubscriptionSerializer(serializers.Serializer):
    endpoint = serializers.URLField(max_length=1000)
    keys = serializers.DictField(child=serializers.CharField(max_length=255))

    def validate_keys(self, value):
        if not value.get('p256dh') or not value.get('auth'):
            raise serializers.ValidationError('Both p256dh and auth keys are required.')
        return value


# Marketplace Serializers
@extend_schema_serializer(
    examples=[
        OpenApiExample(
            'Service Example',
            value={
                'id': '2b3c4d5e-6f7a-4b8c-9d0e-1f2a3b4c5d6e',
                'user': {'id': '9b2e7f80-6c41-4d0d-8d55-0f5d2c8a1e21', 'full_name': 'Maya Chen'},
                'title': 'Portfolio review for junior designers',
                'description': 'A one hour walkthrough of your portfolio with actionable notes.',
                'category': 'design',
                'price_per_hour': '45.00',
                'duration_minutes': 60,
                'experience_level': 'expert',
                'format': 'online',
                'tags': ['portfolio', 'ux'],
                'rating_summary': {'average': 4.5, 'count': 2, 'distribution': {'1': 0, '2': 0, '3': 0, '4': 1, '5': 1}},
                'status': 'active'
            },
            response_only=True
        )
    ]
)
class ServiceSerializer(serializers.ModelSerializer):
    user = UserSummarySerializer(read_only=True)
    image_url = serializers.SerializerMethodField()
    rating_summary = serializers.SerializerMethodField()
    tags = serializers.ListField(child=serializers.CharField(max_length=40), required=False, max_length=15)

    class Meta:
        model = Service
        fields = [
            'id', 'user', 'title', 'description', 'category', 'price_per_hour', 'duration_minutes',
            'experience_level', 'format', 'availability', 'location', 'tags', 'image', 'image_url',
            'rating_summary', 'status', 'created_at', 'updated_at',
        ]
        read_only_fields = ['id', 'user', 'status', 'created_at', 'updated_at']
        extra_kwargs = {'image': {'write_only': True, 'required': False}}

    @extend_schema_field(OpenApiTypes.STR)
    def get_image_url(self, obj):
        return _file_url(obj.image, self.context.get('request'))

    @extend_schema_field(OpenApiTypes.OBJECT)
    def get_rating_summary(self, obj):
        return ReviewService.rating_summary(obj)

    def validate_title(self, value):
        """Sanitize and validate title"""
        cleaned = _clean(value)
        if len(cleaned) < 3:
            raise serializers.ValidationError('Title must be at least 3 characters.')
        return cleaned[:200]

    def validate_description(self, value):
        cleaned = _clean(value)
        if len(cleaned) < 10:
            raise serializers.ValidationError('Description must be at least 10 characters.')
        return cleaned

    def validate_price_per_hour(self, value):
        if value < 0:
            raise serializers.ValidationError('Price cannot be negative.')
        return value

    def validate_duration_minutes(self, value):
        if value < 15 or value > 480:
            raise serializers.ValidationError('Duration must be between 15 minutes and 8 hours.')
        return value

    def validate_tags(self, value):
        return [tag for tag in (_clean(item).lower() for item in value) if tag]

    def validate_availability(self, value):
        return _clean(value)

    def validate_location(self, value):
        return _clean(value)

    def validate_image(self, value):
        return _validate_upload(value, ('image/',))


class ServiceOrderSerializer(serializers.ModelSerializer):
    service_title = serializers.CharField(source='service.title', read_only=True)
    buyer = UserSummarySerializer(read_only=True)

    class Meta:
        model = ServiceOrder
        fields = ['id', 'service', 'service_title', 'buyer', 'status', 'session_minutes', 'amount',
                  'created_at', 'completed_at']
        read_only_fields = fields


class ServiceReviewSerializer(serializers.ModelSerializer):
    user = UserSummarySerializer(read_only=True)
    rating = serializers.IntegerField(min_value=1, max_value=5)

    class Meta:
        model = ServiceReview
        fields = ['id', 'service', 'user', 'rating', 'comment', 'is_hidden', 'is_deleted',
                  'created_at', 'updated_at']
        read_only_fields = ['id', 'service', 'user', 'is_hidden', 'is_deleted', 'created_at', 'updated_at']


# Billing Serializers
class SubscriptionSerializer(serializers.ModelSerializer):
    tier_label = serializers.CharField(source='get_tier_display', read_only=True)
    price = serializers.SerializerMethodField()
    service_limit = serializers.SerializerMethodField()

    class Meta:
        model = Subscription
        fields = ['tier', 'tier_label', 'status', 'price', 'service_limit', 'provider',
                  'started_at', 'current_period_end', 'cancel_reason']
        read_only_fields = fields

    @extend_schema_field(OpenApiTypes.STR)
    def get_price(self, obj):
        return str(TIER_PRICES.get(obj.tier))

    @extend_schema_field(OpenApiTypes.INT)
    def get_service_limit(self, obj):
        return TIER_SERVICE_LIMITS.get(obj.tier, 0)


class PaymentMethodSerializer(serializers.ModelSerializer):
    make_default = serializers.BooleanField(write_only=True, required=False, default=False)

    class Meta:
        model = PaymentMethod
        fields = ['id', 'card_type', 'last_four', 'expiry_month', 'expiry_year', 'cardholder_name',
                  'is_default', 'make_default', 'created_at']
        read_only_fields = ['id', 'is_default', 'created_at']

    def validate_last_four(self, value):
        if not re.fullmatch(r'\d{4}', value or ''):
            raise serializers.ValidationError('Enter the last four digits of the card.')
        return value

    def validate_expiry_month(self, value):
        if value < 1 or value > 12:
            raise serializers.ValidationError('Expiry month must be between 1 and 12.')
        return value

    def validate_cardholder_name(self, value):
        return _clean(value)

    def validate(self, attrs):
        now = timezone.now()
        year, month = attrs.get('expiry_year'), attrs.get('expiry_month')
        if year is not None and year < 100:
            year += 2000
            attrs['expiry_year'] = year
        if year is not None and month is not None and (year, month) < (now.year, now.month):
            raise serializers.ValidationError({'expiry_year': 'This card has expired.'})
        return attrs


class SubscribeSerializer(serializers.Serializer):
    tier = serializers.ChoiceField(choices=Subscription.TIER_CHOICES)
    card = PaymentMethodSerializer(required=False)
    save_card = serializers.BooleanField(required=False, default=False)


class InvoiceSerializer(serializers.ModelSerializer):
    class Meta:
        model = Invoice
        fields = ['id', 'description', 'amount', 'currency', 'status', 'provider', 'created_at']
        read_only_fields = fields


class RefundRequestSerializer(serializers.ModelSerializer):
    case_number = serializers.CharField(read_only=True)
    invoice = serializers.PrimaryKeyRelatedField(queryset=Invoice.objects.all(), required=False, allow_null=True)
    screenshot_url = serializers.SerializerMethodField()

    class Meta:
        model = RefundRequest
        fields = ['id', 'case_number', 'invoice', 'transaction_id', 'amount', 'reason', 'description',
                  'order_date', 'preferred_method', 'account_email', 'account_last_four', 'screenshot',
                  'screenshot_url', 'status', 'admin_notes', 'refund_amount', 'reviewed_at', 'created_at']
        read_only_fields = ['id', 'case_number', 'status', 'admin_notes', 'refund_amount', 'reviewed_at',
                            'created_at']
        extra_kwargs = {'screenshot': {'write_only': True}}

    @extend_schema_field(OpenApiTypes.STR)
    def get_screenshot_url(self, obj):
        return _file_url(obj.screenshot, self.context.get('request'))

    def validate_amount(self, value):
        if value <= 0:
            raise serializers.ValidationError('Amount must be greater than zero.')
        return value

    def validate_reason(self, value):
        cleaned = _clean(value)
        if not cleaned:
            raise serializers.ValidationError('Please choose a reason.')
        return cleaned

    def validate_description(self, value):
        return _clean(value)

    def validate_transaction_id(self, value):
        return _clean(value)

    def validate_account_last_four(self, value):
        if value and not re.fullmatch(r'\d{4}', value):
            raise serializers.ValidationError('Enter the last four digits of the account.')
        return value

    def validate_screenshot(self, value):
        return _validate_upload(value, ('image/', 'application/pdf'))

    def validate(self, attrs):
        if attrs.get('invoice') is None and not attrs.get('transaction_id'):
            raise serializers.ValidationError({'transaction_id': 'Identify the charge by invoice or transaction id.'})
        if attrs.get('preferred_method') == 'paypal' and not attrs.get('account_email'):
            raise serializers.ValidationError({'account_email': 'A PayPal refund needs the account e-mail.'})
        return attrs


class AdminRefundRequestSerializer(RefundRequestSerializer):
    user = UserSummarySerializer(read_only=True)
    user_email = serializers.EmailField(source='user.email', read_only=True)
    reviewed_by_email = serializers.EmailField(source='reviewed_by.email', read_only=True, default=None)

    class Meta(RefundRequestSerializer.Meta):
        fields = [name for name in RefundRequestSerializer.Meta.fields if name != 'screenshot'] + [
            'user', 'user_email', 'reviewed_by_email',
        ]
        read_only_fields = fields
        extra_kwargs = {}


class PayoutAccountSerializer(serializers.ModelSerializer):
    """
    Bank details marketplace payouts are sent to.

    The account number is write-only and comes back masked. Sending the
    masked value back on update keeps the stored number.
    """
    account_number = serializers.CharField(write_only=True, max_length=34)
    masked_account_number = serializers.CharField(read_only=True)

    class Meta:
        model = PayoutAccount
        fields = ['country', 'account_number', 'masked_account_number', 'routing_number', 'updated_at']
        read_only_fields = ['updated_at']

    def to_internal_value(self, data):
        if self.instance is not None and '••••' in str(data.get('account_number', '')):
            data = dict(data.items())
            data['account_number'] = self.instance.account_number
        return super().to_internal_value(data)

    def validate_country(self, value):
        value = (value or '').strip().upper()
        if not re.fullmatch(r'[A-Z]{2}', value):
            raise serializers.ValidationError('Use the two-letter country code.')
        return value

    def validate_account_number(self, value):
        value = re.sub(r'[\s-]', '', value or '').upper()
        if not re.fullmatch(r'[A-Z0-9]{4,34}', value):
            raise serializers.ValidationError('Enter a valid account number or IBAN.')
        return value

    def validate_routing_number(self, value):
        value = re.sub(r'[\s-]', '', value or '').upper()
        if not re.fullmatch(r'[A-Z0-9]{3,20}', value):
            raise serializers.ValidationError('Enter a valid routing number or sort code.')
        return value


# Moderation Serializers
class UserReportSerializer(serializers.ModelSerializer):
    reporter = UserSummarySerializer(read_only=True)
    reported_user = UserSummarySerializer(read_only=True)

    class Meta:
        model = UserReport
        fields = ['id', 'reporter', 'reported_user', 'reason', 'description', 'status',
                  'admin_notes', 'reviewed_by', 'reviewed_at', 'created_at']
        read_only_fields = fields


class AuditLogSerializer(serializers.ModelSerializer):
    actor_email = serializers.EmailField(source='actor.email', read_only=True, default=None)
    target_email = serializers.EmailField(source='target_user.email', read_only=True, default=None)

    class Meta:
        model = AuditLog
        fields = ['id', 'actor', 'actor_email', 'target_user', 'target_email', 'action', 'details', 'created_at']
        read_only_fields = fields


class AdminNoteSerializer(serializers.ModelSerializer):
    author_email = serializers.EmailField(source='author.email', read_only=True, default=None)

    class Meta:
        model = AdminNote
        fields = ['id', 'note', 'author_email', 'created_at']
        read_only_fields = ['id', 'author_email', 'created_at']


class ContentAppealSerializer(serializers.ModelSerializer):
    case_number = serializers.CharField(read_only=True)

    class Meta:
        model = ContentAppeal
        fields = ['id', 'case_number', 'email', 'content_type', 'content_url', 'removal_reason',
                  'appeal_reason', 'additional_info', 'status', 'admin_notes', 'reviewed_at', 'created_at']
        read_only_fields = ['id', 'case_number', 'status', 'admin_notes', 'reviewed_at', 'created_at']

    def validate_appeal_reason(self, value):
        cleaned = _clean(value)
        if len(cleaned) < 10:
            raise serializers.ValidationError('Please explain your appeal in at least 10 characters.')
        return cleaned


class AccountAppealSerializer(serializers.ModelSerializer):
    case_number = serializers.CharField(read_only=True)

    class Meta:
        model = AccountAppeal
        fields = ['id', 'case_number', 'email', 'handle', 'account_action', 'violation_reason',
                  'appeal_reason', 'prevention_plan', 'additional_info', 'status', 'admin_notes',
                  'reviewed_at', 'created_at']
        read_only_fields = ['id', 'case_number', 'status', 'admin_notes', 'reviewed_at', 'created_at']

    def validate_appeal_reason(self, value):
        cleaned = _clean(value)
        if len(cleaned) < 10:
            raise serializers.ValidationError('Please explain your appeal in at least 10 characters.')
        return cleaned


# Careers
class CareerApplicationSerializer(serializers.ModelSerializer):
    application_id = serializers.CharField(read_only=True)
    resume_url = serializers.SerializerMethodField()
    portfolio_url = serializers.SerializerMethodField()

    class Meta:
        model = CareerApplication
        fields = ['id', 'application_id', 'position', 'name', 'email', 'phone', 'cover_letter',
                  'resume', 'resume_url', 'portfolio', 'portfolio_url', 'status', 'reviewed_at', 'created_at']
        read_only_fields = ['id', 'application_id', 'status', 'reviewed_at', 'created_at']
        extra_kwargs = {
            'resume': {'write_only': True},
            'portfolio': {'write_only': True},
        }

    @extend_schema_field(OpenApiTypes.STR)
    def get_resume_url(self, obj):
        return _file_url(obj.resume, self.context.get('request'))

    @extend_schema_field(OpenApiTypes.STR)
    def get_portfolio_url(self, obj):
        return _file_url(obj.portfolio, self.context.get('request'))

    def _required_text(self, value, label):
        cleaned = _clean(value)
        if not cleaned:
            raise serializers.ValidationError(f'{label} is required.')
        return cleaned

    def validate_position(self, value):
        return self._required_text(value, 'Position')

    def validate_name(self, value):
        return self._required_text(value, 'Name')

    def validate_cover_letter(self, value):
        return self._required_text(value, 'Cover letter')

    def validate_phone(self, value):
        return _clean(value)

    def validate_resume(self, value):
        return _validate_upload(value, DOCUMENT_TYPES)

    def validate_portfolio(self, value):
        return _validate_upload(value, DOCUMENT_TYPES + ('image/', 'application/zip'))
