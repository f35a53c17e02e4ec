from django.db import models
from django.contrib.auth.models import AbstractUser, UserManager
from django.utils import timezone
from decimal import Decimal
import uuid


REACTION_TYPES = (
    ('like', 'Like'),
    ('love', 'Love'),
    ('clap', 'Clap'),
    ('fire', 'Fire'),
    ('rocket', 'Rocket'),
    ('celebrate', 'Celebrate'),
)

ADMIN_ROLES = ('admin', 'super_admin')


def _upload_name(prefix, filename):
    ext = filename.rsplit('.', 1)[-1].lower() if '.' in filename else 'bin'
    return f"uploads/{prefix}-{uuid.uuid4().hex}.{ext}"


def profile_upload_to(instance, filename):
    return _upload_name('profile', filename)


def banner_upload_to(instance, filename):
    return _upload_name('banner', filename)


def chat_upload_to(instance, filename):
    return _upload_name('chat', filename)


def post_upload_to(instance, filename):
    return _upload_name('post', filename)


def service_upload_to(instance, filename):
    return _upload_name('service', filename)


def refund_upload_to(instance, filename):
    return _upload_name('refund', filename)


def career_upload_to(instance, filename):
    return _upload_name('career', filename)


class CustomUserManager(UserManager):
    def create_user(self, email, password=None, **extra_fields):
        if not email:
            raise ValueError('The Email field must be set')
        email = self.normalize_email(email)
        user = self.model(email=email, **extra_fields)
        if password:
            user.set_password(password)
        else:
            user.set_unusable_password()
        user.save(using=self._db)
        return user

    def create_superuser(self, email, password=None, **extra_fields):
        extra_fields.setdefault('is_staff', True)
        extra_fields.setdefault('is_superuser', True)
        extra_fields.setdefault('role', 'super_admin')
        extra_fields.setdefault('is_email_verified', True)
        if extra_fields.get('is_staff') is not True:
            raise ValueError('Superuser must have is_staff=True.')
        if extra_fields.get('is_superuser') is not True:
            raise ValueError('Superuser must have is_superuser=True.')
        return self.create_user(email, password, **extra_fields)


class User(AbstractUser):
    ROLE_CHOICES = (
        ('user', 'User'),
        ('admin', 'Admin'),
        ('super_admin', 'Super Admin'),
    )
    ACCOUNT_STATUS_CHOICES = (
        ('active', 'Active'),
        ('suspended', 'Suspended'),
        ('banned', 'Banned'),
    )
    PROFILE_VISIBILITY_CHOICES = (
        ('public', 'Public'),
        ('members', 'Members only'),
        ('private', 'Private'),
    )
    ALLOW_MESSAGES_CHOICES = (
        ('everyone', 'Everyone'),
        ('no_one', 'No one'),
    )

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    email = models.EmailField(unique=True)
    username = None
    first_name = None
    last_name = None
    full_name = models.CharField(max_length=150)
    handle = models.CharField(max_length=30, unique=True, null=True, blank=True)
    bio = models.TextField(blank=True, default='')
    location = models.CharField(max_length=120, blank=True, default='')
    skills = models.JSONField(default=list, blank=True)
    avatar = models.FileField(upload_to=profile_upload_to, blank=True, null=True)
    banner = models.FileField(upload_to=banner_upload_to, blank=True, null=True)
    role = models.CharField(max_length=20, choices=ROLE_CHOICES, default='user')
    date_joined = models.DateTimeField(auto_now_add=True)

    # Onboarding answers
    onboarding_categories = models.JSONField(default=list, blank=True)
    onboarding_goals = models.JSONField(default=list, blank=True)
    onboarding_experience = models.CharField(max_length=50, blank=True, default='')
    onboarding_completed = models.BooleanField(default=False)

    is_email_verified = models.BooleanField(default=False)

    # Notification preferences
    email_notifications = models.BooleanField(default=True)
    push_notifications = models.BooleanField(default=True)
    message_notifications = models.BooleanField(default=True)

    # Privacy preferences
    profile_visibility = models.CharField(max_length=10, choices=PROFILE_VISIBILITY_CHOICES, default='public')
    allow_messages_from = models.CharField(max_length=10, choices=ALLOW_MESSAGES_CHOICES, default='everyone')
    discoverable_by_email = models.BooleanField(default=True)
    show_online_status = models.BooleanField(default=True)
    read_receipts = models.BooleanField(default=True)

    # Moderation state
    account_status = models.CharField(max_length=10, choices=ACCOUNT_STATUS_CHOICES, default='active')
    suspension_until = models.DateTimeField(null=True, blank=True)
    moderation_reason = models.TextField(blank=True, default='')
    seller_privileges_frozen = models.BooleanField(default=False)
    chat_privileges_frozen = models.BooleanField(default=False)
    blocking_locked = models.BooleanField(default=False)
    blocking_locked_reason = models.TextField(blank=True, default='')

    failed_login_attempts = models.IntegerField(default=0, help_text='Number of consecutive failed login attempts')
    locked_until = models.DateTimeField(null=True, blank=True, help_text='Account locked until this time (null if not locked)')

    objects = CustomUserManager()

    USERNAME_FIELD = 'email'
    REQUIRED_FIELDS = ['full_name']

    def __str__(self):
        return self.email

    def get_full_name(self):
        return self.full_name

    def get_short_name(self):
        return self.full_name.split(' ')[0] if self.full_name else self.email

    @property
    def is_admin(self):
        return self.role in ADMIN_ROLES

    @property
    def is_suspended(self):
        return (
            self.account_status == 'suspended'
            and self.suspension_until is not None
            and self.suspension_until > timezone.now()
        )

    class Meta:
        indexes = [
            models.Index(fields=['role'], name='user_role_idx'),
            models.Index(fields=['account_status'], name='user_status_idx'),
        ]


class OAuthAccount(models.Model):
    PROVIDER_CHOICES = (
        ('google', 'Google'),
        ('microsoft', 'Microsoft'),
        ('apple', 'Apple'),
    )

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name='oauth_accounts')
    provider = models.CharField(max_length=20, choices=PROVIDER_CHOICES)
    provider_id = models.CharField(max_length=255)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return f"{self.provider}:{self.user.email}"

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=['provider', 'provider_id'],
                name='unique_oauth_provider_account',
            ),
        ]


class WebAuthnCredential(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name='webauthn_credentials')
    credential_id = models.CharField(max_length=512, unique=True, help_text='base64url credential id')
    public_key = models.TextField(help_text='base64url encoded COSE public key')
    sign_count = models.PositiveIntegerField(default=0)
    transports = models.JSONField(default=list, blank=True)
    name = models.CharField(max_length=100, blank=True, default='')
    created_at = models.DateTimeField(auto_now_add=True)
    last_used_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ['-created_at']


class EmailVerificationCode(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name='verification_codes')
    code = models.CharField(max_length=6)
    expires_at = models.DateTimeField()
    used_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    @property
    def is_valid(self):
        return self.used_at is None and self.expires_at > timezone.now()

    class Meta:
        ordering = ['-created_at']


class PasswordResetToken(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name='password_reset_tokens')
    token = models.CharField(max_length=64, unique=True)
    expires_at = models.DateTimeField()
    used_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    @property
    def is_valid(self):
        return self.used_at is None and self.expires_at > timezone.now()


class Follow(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    follower = models.ForeignKey(User, on_delete=models.CASCADE, related_name='following_edges')
    following = models.ForeignKey(User, on_delete=models.CASCADE, related_name='follower_edges')
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=['follower', 'following'], name='unique_follow_pair'),
            models.CheckConstraint(
                condition=~models.Q(follower=models.F('following')),
                name='follow_not_self',
            ),
        ]


class UserBlock(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    blocker = models.ForeignKey(User, on_delete=models.CASCADE, related_name='blocks_made')
    blocked = models.ForeignKey(User, on_delete=models.CASCADE, related_name='blocks_received')
    reason = models.TextField(blank=True, default='')
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=['blocker', 'blocked'], name='unique_block_pair'),
        ]


class UserReport(models.Model):
    """Reports filed by one user against another"""
    STATUS_CHOICES = (
        ('pending', 'Pending'),
        ('reviewing', 'Reviewing'),
        ('resolved', 'Resolved'),
        ('dismissed', 'Dismissed'),
    )

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    reporter = models.ForeignKey(User, on_delete=models.CASCADE, related_name='reports_made')
    reported_user = models.ForeignKey(User, on_delete=models.CASCADE, related_name='reports_received')
    reason = models.CharField(max_length=100)
    description = models.TextField(blank=True, default='')
    status = models.CharField(max_length=10, choices=STATUS_CHOICES, default='pending')
    admin_notes = models.TextField(blank=True, default='')
    reviewed_by = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True, related_name='reviewed_reports')
    reviewed_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return f"{self.reason} - {self.status}"

    class Meta:
        indexes = [
            models.Index(fields=['status', 'created_at'], name='report_status_idx'),
        ]
        ordering = ['-created_at']


class AuditLog(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    actor = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True, related_name='audit_entries')
    target_user = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True, related_name='audit_targets')
    action = models.CharField(max_length=50)
    details = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [
            models.Index(fields=['action', 'created_at'], name='audit_action_idx'),
        ]
        ordering = ['-created_at']


class AdminNote(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name='admin_notes')
    author = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, related_name='authored_admin_notes')
    note = models.TextField()
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at']


class Appeal(models.Model):
    STATUS_CHOICES = (
        ('pending', 'Pending'),
        ('approved', 'Approved'),
        ('denied', 'Denied'),
    )

    id = models.BigAutoField(primary_key=True)
    user = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True)
    email = models.EmailField()
    appeal_reason = models.TextField()
    additional_info = models.TextField(blank=True, default='')
    status = models.CharField(max_length=10, choices=STATUS_CHOICES, default='pending')
    admin_notes = models.TextField(blank=True, default='')
    reviewed_by = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True, related_name='+')
    reviewed_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    case_prefix = 'CA'

    @property
    def case_number(self):
        return f"{self.case_prefix}-{self.id}"

    class Meta:
        abstract = True
        ordering = ['-created_at']


class ContentAppeal(Appeal):
    content_type = models.CharField(max_length=50)
    content_url = models.CharField(max_length=500, blank=True, default='')
    removal_reason = models.TextField(blank=True, default='')

    case_prefix = 'CA'


class AccountAppeal(Appeal):
    handle = models.CharField(max_length=50, blank=True, default='')
    account_action = models.CharField(max_length=20)
    violation_reason = models.TextField(blank=True, default='')
    prevention_plan = models.TextField(blank=True, default='')

    case_prefix = 'AA'


class Post(models.Model):
    CONTENT_TYPE_CHOICES = (
        ('text', 'Text'),
        ('image', 'Image'),
        ('video', 'Video'),
        ('reel', 'Reel'),
    )

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name='posts')
    content_type = models.CharField(max_length=10, choices=CONTENT_TYPE_CHOICES, default='text')
    text_content = models.TextField(blank=True, default='')
    media = models.FileField(upload_to=post_upload_to, blank=True, null=True)
    activity_label = models.CharField(max_length=100, blank=True, default='')
    is_hidden = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return f"{self.user.email}: {self.text_content[:50]}"

    class Meta:
        indexes = [
            models.Index(fields=['user', 'created_at'], name='post_user_idx'),
            models.Index(fields=['is_hidden', 'created_at'], name='post_feed_idx'),
        ]
        ordering = ['-created_at']


class PostReaction(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    post = models.ForeignKey(Post, on_delete=models.CASCADE, related_name='reactions')
    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name='post_reactions')
    reaction_type = models.CharField(max_length=20, choices=REACTION_TYPES)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    subject_field = 'post'

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=['post', 'user'], name='unique_post_reaction_per_user'),
        ]


class PostComment(models.Model):
    """Comments on posts with threaded replies"""
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    post = models.ForeignKey(Post, on_delete=models.CASCADE, related_name='comments')
    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name='post_comments')
    parent = models.ForeignKey(
        'self',
        null=True,
        blank=True,
        on_delete=models.CASCADE,
        related_name='replies',
        help_text='Parent comment for replies (null for top-level comments)'
    )
    content = models.TextField(max_length=2000)
    is_hidden = models.BooleanField(default=False)
    is_deleted = models.BooleanField(default=False, help_text='Soft delete flag')
    moderated_by = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True, related_name='+')
    moderated_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [
            models.Index(fields=['post', 'created_at'], name='comment_post_idx'),
        ]
        ordering = ['created_at']


class CommentLike(models.Model):
    KIND_CHOICES = (
        ('star', 'Star'),
    )

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    comment = models.ForeignKey(PostComment, on_delete=models.CASCADE, related_name='likes')
    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name='comment_likes')
    reaction_type = models.CharField(max_length=10, choices=KIND_CHOICES, default='star')
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    subject_field = 'comment'

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=['comment', 'user'], name='unique_comment_like_per_user'),
        ]


class Conversation(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    is_group = models.BooleanField(default=False)
    group_name = models.CharField(max_length=100, blank=True, default='')
    direct_key = models.CharField(
        max_length=80,
        unique=True,
        null=True,
        blank=True,
        help_text='Sorted participant ids for direct conversations (null for groups)'
    )
    created_by = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, related_name='created_conversations')
    participants = models.ManyToManyField(User, through='ConversationParticipant', related_name='conversations')
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    @staticmethod
    def build_direct_key(user_a_id, user_b_id):
        first, second = sorted([str(user_a_id), str(user_b_id)])
        return f"{first}:{second}"

    class Meta:
        ordering = ['-updated_at']


class ConversationParticipant(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    conversation = models.ForeignKey(Conversation, on_delete=models.CASCADE, related_name='memberships')
    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name='conversation_memberships')
    joined_at = models.DateTimeField(auto_now_add=True)
    last_read_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=['conversation', 'user'], name='unique_conversation_participant'),
        ]


class Message(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    conversation = models.ForeignKey(Conversation, on_delete=models.CASCADE, related_name='messages')
    sender = models.ForeignKey(User, on_delete=models.CASCADE, related_name='sent_messages')
    content = models.TextField(blank=True, default='')
    attachment = models.FileField(upload_to=chat_upload_to, blank=True, null=True)
    attachment_type = models.CharField(max_length=100, blank=True, default='')
    reply_to = models.ForeignKey('self', on_delete=models.SET_NULL, null=True, blank=True, related_name='replies')
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return f"{self.sender.email}: {self.content[:50]}"

    class Meta:
        indexes = [
            models.Index(fields=['conversation', 'created_at'], name='message_conversation_idx'),
        ]
        ordering = ['created_at']


class MessageReaction(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    message = models.ForeignKey(Message, on_delete=models.CASCADE, related_name='reactions')
    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name='message_reactions')
    reaction_type = models.CharField(max_length=20, choices=REACTION_TYPES, default='like')
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    subject_field = 'message'

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=['message', 'user'], name='unique_message_reaction_per_user'),
        ]


class Notification(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name='notifications')
    type = models.CharField(max_length=50)
    title = models.CharField(max_length=200)
    message = models.TextField()
    link = models.CharField(max_length=500, blank=True, default='')
    is_read = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [
            models.Index(fields=['user', 'is_read', 'created_at'], name='notification_inbox_idx'),
        ]
        ordering = ['-created_at']


class PushSubscription(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name='push_subscriptions')
    endpoint = models.URLField(max_length=1000, unique=True)
    p256dh = models.CharField(max_length=255)
    auth = models.CharField(max_length=255)
    created_at = models.DateTimeField(auto_now_add=True)

    def as_subscription_info(self):
        return {'endpoint': self.endpoint, 'keys': {'p256dh': self.p256dh, 'auth': self.auth}}


class Service(models.Model):
    CATEGORY_CHOICES = (
        ('design', 'Design'),
        ('development', 'Development'),
        ('marketing', 'Marketing'),
        ('writing', 'Writing'),
        ('music', 'Music'),
        ('video', 'Video'),
        ('coaching', 'Coaching'),
        ('fitness', 'Fitness'),
        ('education', 'Education'),
        ('other', 'Other'),
    )
    EXPERIENCE_CHOICES = (
        ('beginner', 'Beginner'),
        ('intermediate', 'Intermediate'),
        ('expert', 'Expert'),
    )
    FORMAT_CHOICES = (
        ('online', 'Online'),
        ('in-person', 'In-Person'),
        ('hybrid', 'Hybrid'),
    )
    STATUS_CHOICES = (
        ('active', 'Active'),
        ('hidden', 'Hidden'),
        ('frozen', 'Frozen'),
    )

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name='services')
    title = models.CharField(max_length=200)
    description = models.TextField()
    category = models.CharField(max_length=20, choices=CATEGORY_CHOICES, default='other')
    price_per_hour = models.DecimalField(max_digits=10, decimal_places=2)
    duration_minutes = models.PositiveIntegerField(default=60)
    experience_level = models.CharField(max_length=20, choices=EXPERIENCE_CHOICES, default='intermediate')
    format = models.CharField(max_length=20, choices=FORMAT_CHOICES, default='online')
    availability = models.CharField(max_length=200, blank=True, default='')
    location = models.CharField(max_length=120, blank=True, default='')
    tags = models.JSONField(default=list, blank=True)
    image = models.FileField(upload_to=service_upload_to, blank=True, null=True)
    status = models.CharField(max_length=10, choices=STATUS_CHOICES, default='active')
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return self.title

    class Meta:
        indexes = [
            models.Index(fields=['status', 'created_at'], name='service_browse_idx'),
            models.Index(fields=['category', 'status'], name='service_category_idx'),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(price_per_hour__gte=0),
                name='service_price_non_negative',
            ),
        ]
        ordering = ['-created_at']


class ServiceOrder(models.Model):
    STATUS_CHOICES = (
        ('pending', 'Pending'),
        ('completed', 'Completed'),
        ('cancelled', 'Cancelled'),
        ('refunded', 'Refunded'),
    )

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    service = models.ForeignKey(Service, on_delete=models.CASCADE, related_name='orders')
    buyer = models.ForeignKey(User, on_delete=models.CASCADE, related_name='service_orders')
    status = models.CharField(max_length=10, choices=STATUS_CHOICES, default='pending')
    session_minutes = models.PositiveIntegerField(default=60)
    amount = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal('0.00'))
    created_at = models.DateTimeField(auto_now_add=True)
    completed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        indexes = [
            models.Index(fields=['service', 'buyer', 'status'], name='order_purchase_idx'),
        ]
        ordering = ['-created_at']


class ServiceReview(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    service = models.ForeignKey(Service, on_delete=models.CASCADE, related_name='reviews')
    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name='service_reviews')
    rating = models.PositiveSmallIntegerField()
    comment = models.TextField(blank=True, default='')
    is_hidden = models.BooleanField(default=False)
    is_deleted = models.BooleanField(default=False)
    moderated_by = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True, related_name='+')
    moderated_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=['service', 'user'], name='unique_review_per_service_user'),
            models.CheckConstraint(
                condition=models.Q(rating__gte=1) & models.Q(rating__lte=5),
                name='review_rating_range',
            ),
        ]
        ordering = ['-created_at']


class Subscription(models.Model):
    TIER_CHOICES = (
        ('free', 'Free'),
        ('pro-buyer', 'Pro Buyer'),
        ('pro-seller', 'Pro Seller'),
        ('elite-seller', 'Elite Seller'),
    )
    STATUS_CHOICES = (
        ('active', 'Active'),
        ('incomplete', 'Awaiting payment'),
        ('cancelled', 'Cancelled'),
        ('past_due', 'Past due'),
    )

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.OneToOneField(User, on_delete=models.CASCADE, related_name='subscription')
    tier = models.CharField(max_length=20, choices=TIER_CHOICES, default='free')
    status = models.CharField(max_length=10, choices=STATUS_CHOICES, default='active')
    provider = models.CharField(max_length=20, blank=True, default='')
    provider_subscription_id = models.CharField(max_length=255, blank=True, default='')
    cancel_reason = models.TextField(blank=True, default='')
    started_at = models.DateTimeField(default=timezone.now)
    current_period_end = models.DateTimeField(null=True, blank=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.user.email} - {self.tier}"


class PaymentMethod(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name='payment_methods')
    card_type = models.CharField(max_length=20)
    last_four = models.CharField(max_length=4)
    expiry_month = models.PositiveSmallIntegerField()
    expiry_year = models.PositiveSmallIntegerField()
    cardholder_name = models.CharField(max_length=150, blank=True, default='')
    is_default = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=['user'],
                condition=models.Q(is_default=True),
                name='single_default_payment_method',
            ),
        ]
        ordering = ['-is_default', '-created_at']


class Invoice(models.Model):
    STATUS_CHOICES = (
        ('paid', 'Paid'),
        ('failed', 'Failed'),
        ('refunded', 'Refunded'),
    )

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name='invoices')
    description = models.CharField(max_length=255)
    amount = models.DecimalField(max_digits=10, decimal_places=2)
    currency = models.CharField(max_length=3, default='USD')
    status = models.CharField(max_length=10, choices=STATUS_CHOICES, default='paid')
    provider = models.CharField(max_length=20, blank=True, default='')
    provider_reference = models.CharField(max_length=255, blank=True, default='')
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at']


class PaymentCustomer(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name='payment_customers')
    provider = models.CharField(max_length=20)
    customer_id = models.CharField(max_length=255)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=['user', 'provider'], name='unique_customer_per_provider'),
        ]


class PayoutAccount(models.Model):
    """Bank account a seller's marketplace earnings are paid out to."""
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.OneToOneField(User, on_delete=models.CASCADE, related_name='payout_account')
    country = models.CharField(max_length=2)
    account_number = models.CharField(max_length=34)
    routing_number = models.CharField(max_length=20)
    updated_at = models.DateTimeField(auto_now=True)

    @property
    def masked_account_number(self):
        return f"••••{self.account_number[-4:]}"


class RefundRequest(models.Model):
    STATUS_CHOICES = (
        ('pending', 'Pending'),
        ('processing', 'Processing'),
        ('approved', 'Approved'),
        ('denied', 'Denied'),
        ('refunded', 'Refunded'),
    )
    METHOD_CHOICES = (
        ('original_payment', 'Original payment method'),
        ('paypal', 'PayPal'),
        ('store_credit', 'Store credit'),
    )

    id = models.BigAutoField(primary_key=True)
    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name='refund_requests')
    invoice = models.ForeignKey(Invoice, on_delete=models.SET_NULL, null=True, blank=True,
                                related_name='refund_requests')
    transaction_id = models.CharField(max_length=255, blank=True, default='')
    amount = models.DecimalField(max_digits=10, decimal_places=2)
    reason = models.CharField(max_length=100)
    description = models.TextField(blank=True, default='')
    order_date = models.DateField(null=True, blank=True)
    preferred_method = models.CharField(max_length=20, choices=METHOD_CHOICES, default='original_payment')
    account_email = models.EmailField(blank=True, default='')
    account_last_four = models.CharField(max_length=4, blank=True, default='')
    screenshot = models.FileField(upload_to=refund_upload_to, blank=True, null=True)
    status = models.CharField(max_length=10, choices=STATUS_CHOICES, default='pending')
    admin_notes = models.TextField(blank=True, default='')
    refund_amount = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)
    reviewed_by = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True, related_name='+')
    reviewed_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    @property
    def case_number(self):
        return f"RR-{self.id}"

    class Meta:
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['user', 'created_at'], name='refund_user_idx'),
            models.Index(fields=['status', 'created_at'], name='refund_status_idx'),
        ]


class CareerApplication(models.Model):
    STATUS_CHOICES = (
        ('new', 'New'),
        ('under_review', 'Under review'),
        ('accepted', 'Accepted'),
        ('rejected', 'Rejected'),
    )

    id = models.BigAutoField(primary_key=True)
    position = models.CharField(max_length=100)
    name = models.CharField(max_length=150)
    email = models.EmailField()
    phone = models.CharField(max_length=30, blank=True, default='')
    cover_letter = models.TextField()
    resume = models.FileField(upload_to=career_upload_to, blank=True, null=True)
    portfolio = models.FileField(upload_to=career_upload_to, blank=True, null=True)
    status = models.CharField(max_length=15, choices=STATUS_CHOICES, default='new')
    reviewed_by = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True, related_name='+')
    reviewed_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    @property
    def application_id(self):
        return f"JOB-{self.id}"

    class Meta:
        ordering = ['-created_at']
        indexes = [models.Index(fields=['status', 'created_at'], name='career_status_idx')]
