from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal, ROUND_HALF_UP

from django.db import IntegrityError, transaction
from django.db.models import Avg, Count, Q
from django.utils import timezone
from rest_framework.exceptions import PermissionDenied

from . import realtime
from .billing import TIER_SERVICE_LIMITS, get_tier
from .cache_utils import cache_rating_summary, get_cached_rating_summary, invalidate_rating_summary
from .exceptions import PaymentRequired
from .models import (
    CommentLike, Conversation, ConversationParticipant, Follow, Invoice, Message, MessageReaction,
    PaymentMethod, Post, PostComment, PostReaction, Service, ServiceOrder, ServiceReview, User,
    UserBlock, UserReport,
)
from .notifications import notify
from .utils import MAX_COMMENT_LENGTH, sanitize_text

logger = logging.getLogger(__name__)

REEL_LIFETIME = timedelta(hours=48)


@dataclass
class ToggleResult:
    status: str
    counts: dict = field(default_factory=dict)


class ReactionService:
    """
    Toggle upsert shared by post reactions, message reactions and comment likes.

    Each reaction model declares ``subject_field`` (the FK to the thing being
    reacted to) and carries a ``reaction_type`` column. A unique constraint
    on (subject, user) guarantees at most one row per pair.
    """

    SET = 'set'
    CLEARED = 'cleared'
    UPDATED = 'updated'

    @staticmethod
    def allowed_kinds(model) -> list[str]:
        return [value for value, _ in model._meta.get_field('reaction_type').choices]

    @staticmethod
    def toggle(model, subject, user: User, kind: str) -> ToggleResult:
        """
        No row: insert (set). Same kind: delete (cleared). Different kind:
        update (updated). Returns the outcome plus the per-kind counts for
        the subject, read inside the same transaction as the write.
        """
        if kind not in ReactionService.allowed_kinds(model):
            raise ValueError(f"Unsupported reaction type: {kind}")

        lookup = {model.subject_field: subject, 'user': user}
        try:
            with transaction.atomic():
                status = ReactionService._apply(model, lookup, kind)
                counts = ReactionService.summarize(model, subject)
        except IntegrityError:
            # A concurrent request inserted the row first; apply on top of its committed state
            with transaction.atomic():
                status = ReactionService._apply(model, lookup, kind)
                counts = ReactionService.summarize(model, subject)
        return ToggleResult(status=status, counts=counts)

    @staticmethod
    def _apply(model, lookup: dict, kind: str) -> str:
        existing = model.objects.select_for_update().filter(**lookup).first()
        if existing is None:
            model.objects.create(reaction_type=kind, **lookup)
            return ReactionService.SET
        if existing.reaction_type == kind:
            existing.delete()
            return ReactionService.CLEARED
        existing.reaction_type = kind
        existing.save(update_fields=['reaction_type', 'updated_at'])
        return ReactionService.UPDATED

    @staticmethod
    def summarize(model, subject) -> dict:
        rows = (
            model.objects.filter(**{model.subject_field: subject})
            .values('reaction_type')
            .annotate(total=Count('id'))
            .order_by('reaction_type')
        )
        return {row['reaction_type']: row['total'] for row in rows}

    @staticmethod
    def user_reaction(model, subject, user: User) -> str | None:
        if not user or not user.is_authenticated:
            return None
        return (
            model.objects.filter(**{model.subject_field: subject, 'user': user})
            .values_list('reaction_type', flat=True)
            .first()
        )

    @staticmethod
    def react_to_post(post: Post, user: User, kind: str) -> ToggleResult:
        result = ReactionService.toggle(PostReaction, post, user, kind)
        if result.status != ReactionService.CLEARED:
            notify(
                post.user,
                'post_reaction',
                'New reaction',
                f"{user.full_name} reacted {kind} to your post",
                link=f"/posts/{post.id}",
                email=True,
                actor=user,
            )
        realtime.broadcast('post-reaction', {'post_id': post.id, 'counts': result.counts})
        return result

    @staticmethod
    def react_to_message(message: Message, user: User, kind: str = 'like') -> ToggleResult:
        ConversationService.require_participant(message.conversation, user)
        result = ReactionService.toggle(MessageReaction, message, user, kind)
        if result.status != ReactionService.CLEARED:
            notify(
                message.sender,
                'message_reaction',
                'New reaction',
                f"{user.full_name} reacted {kind} to your message",
                link=f"/messages/{message.conversation_id}",
                actor=user,
            )
        realtime.emit_to_conversation(message.conversation_id, 'message-reaction', {
            'message_id': message.id,
            'counts': result.counts,
        })
        return result

    @staticmethod
    def star_comment(comment: PostComment, user: User) -> ToggleResult:
        result = ReactionService.toggle(CommentLike, comment, user, 'star')
        if result.status == ReactionService.SET:
            notify(
                comment.user,
                'comment_like',
                'Your comment got a star',
                f"{user.full_name} starred your comment",
                link=f"/posts/{comment.post_id}",
                email=True,
                actor=user,
            )
        return result


class CommentService:
    @staticmethod
    def add_comment(post: Post, user: User, content: str, parent_id=None) -> PostComment:
        content = sanitize_text(content, MAX_COMMENT_LENGTH)
        if not content:
            raise ValueError('Comment cannot be empty.')

        parent = None
        if parent_id:
            parent = PostComment.objects.filter(pk=parent_id, post=post, is_deleted=False).select_related('user').first()
            if parent is None:
                raise ValueError('Parent comment does not belong to this post.')

        comment = PostComment.objects.create(post=post, user=user, parent=parent, content=content)

        if parent is None:
            notify(
                post.user,
                'post_comment',
                'New comment',
                f"{user.full_name} commented on your post",
                link=f"/posts/{post.id}",
                email=True,
                actor=user,
            )
        else:
            notify(
                parent.user,
                'comment_reply',
                'New reply',
                f"{user.full_name} replied to your comment",
                link=f"/posts/{post.id}",
                email=True,
                actor=user,
            )
        return comment


class SocialService:
    @staticmethod
    def is_blocked_between(user_a: User, user_b: User) -> bool:
        return UserBlock.objects.filter(
            Q(blocker=user_a, blocked=user_b) | Q(blocker=user_b, blocked=user_a)
        ).exists()

    @staticmethod
    def blocked_user_ids(user: User) -> set:
        """Ids of users hidden from ``user`` because of a block in either direction."""
        pairs = UserBlock.objects.filter(Q(blocker=user) | Q(blocked=user)).values_list('blocker_id', 'blocked_id')
        ids = set()
        for blocker_id, blocked_id in pairs:
            ids.add(blocked_id if blocker_id == user.pk else blocker_id)
        return ids

    @staticmethod
    def follow(follower: User, target: User) -> bool:
        if follower.pk == target.pk:
            raise ValueError('You cannot follow yourself.')
        if SocialService.is_blocked_between(follower, target):
            raise PermissionDenied('You cannot follow this user.')
        _, created = Follow.objects.get_or_create(follower=follower, following=target)
        if created:
            notify(
                target,
                'follow',
                'New follower',
                f"{follower.full_name} started following you",
                link=f"/profile/{follower.id}",
                actor=follower,
            )
        return created

    @staticmethod
    def unfollow(follower: User, target: User) -> bool:
        deleted, _ = Follow.objects.filter(follower=follower, following=target).delete()
        return deleted > 0

    @staticmethod
    def block(blocker: User, target: User, reason: str = '') -> UserBlock:
        if blocker.pk == target.pk:
            raise ValueError('You cannot block yourself.')
        if blocker.blocking_locked:
            raise PermissionDenied('Blocking has been disabled for your account by a moderator.')
        with transaction.atomic():
            block, _ = UserBlock.objects.get_or_create(
                blocker=blocker, blocked=target, defaults={'reason': sanitize_text(reason, 500)}
            )
            Follow.objects.filter(
                Q(follower=blocker, following=target) | Q(follower=target, following=blocker)
            ).delete()
        return block

    @staticmethod
    def unblock(blocker: User, target: User) -> bool:
        if blocker.blocking_locked:
            raise PermissionDenied('Blocking has been disabled for your account by a moderator.')
        deleted, _ = UserBlock.objects.filter(blocker=blocker, blocked=target).delete()
        return deleted > 0

    @staticmethod
    def report(reporter: User, target: User, reason: str, description: str = '') -> UserReport:
        if reporter.pk == target.pk:
            raise ValueError('You cannot report yourself.')
        reason = sanitize_text(reason, 100)
        if not reason:
            raise ValueError('A reason is required.')
        report = UserReport.objects.create(
            reporter=reporter,
            reported_user=target,
            reason=reason,
            description=sanitize_text(description, 2000),
        )
        logger.info(f"User {reporter.email} reported {target.email}: {reason}")
        return report

    @staticmethod
    def active_reels(owner: User):
        """Reels stay visible for REEL_LIFETIME after they are posted."""
        return Post.objects.select_related('user').filter(
            user=owner,
            content_type='reel',
            is_hidden=False,
            created_at__gte=timezone.now() - REEL_LIFETIME,
        ).order_by('-created_at')

    @staticmethod
    def following_with_reels(viewer: User):
        """Followed users who have live reels, most reels first."""
        since = timezone.now() - REEL_LIFETIME
        live_reels = Q(posts__content_type='reel', posts__is_hidden=False, posts__created_at__gte=since)
        return (
            User.objects.filter(follower_edges__follower=viewer)
            .exclude(account_status='banned')
            .exclude(pk__in=SocialService.blocked_user_ids(viewer))
            .annotate(reel_count=Count('posts', filter=live_reels, distinct=True))
            .filter(reel_count__gt=0)
            .order_by('-reel_count', 'full_name')
        )


class ConversationService:
    """Direct and group conversations and the messages inside them."""

    @staticmethod
    def is_participant(conversation: Conversation, user: User) -> bool:
        return ConversationParticipant.objects.filter(conversation=conversation, user=user).exists()

    @staticmethod
    def require_participant(conversation: Conversation, user: User) -> None:
        if not ConversationService.is_participant(conversation, user):
            raise PermissionDenied('You are not a participant in this conversation.')

    @staticmethod
    def get_or_create_direct(user: User, other: User) -> tuple[Conversation, bool]:
        """
        Return the single direct conversation for the unordered pair
        {user, other}, creating it if needed.
        """
        if user.pk == other.pk:
            raise ValueError('You cannot start a conversation with yourself.')
        if SocialService.is_blocked_between(user, other):
            raise PermissionDenied('You cannot message this user.')

        key = Conversation.build_direct_key(user.pk, other.pk)
        with transaction.atomic():
            conversation, created = Conversation.objects.get_or_create(
                direct_key=key,
                defaults={'is_group': False, 'created_by': user},
            )
            if created:
                ConversationParticipant.objects.bulk_create([
                    ConversationParticipant(conversation=conversation, user=user),
                    ConversationParticipant(conversation=conversation, user=other),
                ])
        return conversation, created

    @staticmethod
    def create_group(creator: User, members: list[User], name: str) -> Conversation:
        name = sanitize_text(name, 100)
        if not name:
            raise ValueError('Group name is required.')
        others = {member.pk: member for member in members if member.pk != creator.pk}
        if not others:
            raise ValueError('Add at least one other member.')

        with transaction.atomic():
            conversation = Conversation.objects.create(is_group=True, group_name=name, created_by=creator)
            ConversationParticipant.objects.bulk_create(
                [ConversationParticipant(conversation=conversation, user=creator)]
                + [ConversationParticipant(conversation=conversation, user=member) for member in others.values()]
            )
        for member in others.values():
            notify(
                member,
                'group_added',
                'Added to a group',
                f"{creator.full_name} added you to {name}",
                link=f"/messages/{conversation.id}",
                actor=creator,
            )
        return conversation

    @staticmethod
    def _require_group(conversation: Conversation) -> None:
        if not conversation.is_group:
            raise ValueError('This action is only available for group conversations.')

    @staticmethod
    def rename_group(conversation: Conversation, user: User, name: str) -> Conversation:
        ConversationService._require_group(conversation)
        ConversationService.require_participant(conversation, user)
        name = sanitize_text(name, 100)
        if not name:
            raise ValueError('Group name is required.')
        conversation.group_name = name
        conversation.save(update_fields=['group_name', 'updated_at'])
        realtime.emit_to_conversation(conversation.id, 'group-renamed', {'name': name})
        return conversation

    @staticmethod
    def add_member(conversation: Conversation, user: User, new_member: User) -> bool:
        ConversationService._require_group(conversation)
        ConversationService.require_participant(conversation, user)
        _, created = ConversationParticipant.objects.get_or_create(conversation=conversation, user=new_member)
        if created:
            notify(
                new_member,
                'group_added',
                'Added to a group',
                f"{user.full_name} added you to {conversation.group_name}",
                link=f"/messages/{conversation.id}",
                actor=user,
            )
        return created

    @staticmethod
    def remove_member(conversation: Conversation, user: User, member: User) -> None:
        ConversationService._require_group(conversation)
        if conversation.created_by_id != user.pk and not user.is_admin:
            raise PermissionDenied('Only the group creator can remove members.')
        if member.pk == user.pk:
            raise ValueError('Use leave to exit the group.')
        ConversationParticipant.objects.filter(conversation=conversation, user=member).delete()

    @staticmethod
    def leave(conversation: Conversation, user: User) -> None:
        ConversationService._require_group(conversation)
        ConversationService.require_participant(conversation, user)
        with transaction.atomic():
            ConversationParticipant.objects.filter(conversation=conversation, user=user).delete()
            remaining = conversation.memberships.order_by('joined_at').first()
            if remaining is None:
                conversation.delete()
            elif conversation.created_by_id == user.pk:
                conversation.created_by_id = remaining.user_id
                conversation.save(update_fields=['created_by', 'updated_at'])

    @staticmethod
    def send_message(conversation: Conversation, sender: User, content: str = '',
                     attachments=None, reply_to_id=None) -> list[Message]:
        """
        Store a message (or one message per attachment) and fan out to the
        other participants.
        """
        ConversationService.require_participant(conversation, sender)
        if sender.chat_privileges_frozen:
            raise PermissionDenied('Your messaging privileges have been frozen.')

        others = list(
            User.objects.filter(conversation_memberships__conversation=conversation).exclude(pk=sender.pk)
        )
        if not conversation.is_group:
            for recipient in others:
                if recipient.allow_messages_from == 'no_one':
                    raise PermissionDenied('This user is not accepting messages.')
                if SocialService.is_blocked_between(sender, recipient):
                    raise PermissionDenied('You cannot message this user.')

        reply_to = None
        if reply_to_id:
            reply_to = Message.objects.filter(pk=reply_to_id, conversation=conversation).first()
            if reply_to is None:
                raise ValueError('Reply target is not in this conversation.')

        content = sanitize_text(content)
        attachments = list(attachments or [])
        if not content and not attachments:
            raise ValueError('Message cannot be empty.')

        with transaction.atomic():
            created = []
            if attachments:
                for index, upload in enumerate(attachments):
                    created.append(Message.objects.create(
                        conversation=conversation,
                        sender=sender,
                        content=content if index == 0 else '',
                        attachment=upload,
                        attachment_type=getattr(upload, 'content_type', '') or '',
                        reply_to=reply_to,
                    ))
            else:
                created.append(Message.objects.create(
                    conversation=conversation, sender=sender, content=content, reply_to=reply_to,
                ))
            Conversation.objects.filter(pk=conversation.pk).update(updated_at=timezone.now())
            ConversationParticipant.objects.filter(conversation=conversation, user=sender).update(
                last_read_at=timezone.now()
            )

        from .serializers import MessageSerializer
        payload = MessageSerializer(created, many=True).data
        realtime.emit_to_conversation(conversation.id, 'new-message', {
            'conversation_id': conversation.id,
            'messages': payload,
        })
        title = conversation.group_name if conversation.is_group else sender.full_name
        preview = content[:120] if content else 'Sent an attachment'
        for recipient in others:
            notify(
                recipient,
                'message',
                f"New message from {title}",
                preview,
                link=f"/messages/{conversation.id}",
                actor=sender,
            )
        return created

    @staticmethod
    def mark_read(conversation: Conversation, user: User) -> None:
        ConversationService.require_participant(conversation, user)
        now = timezone.now()
        ConversationParticipant.objects.filter(conversation=conversation, user=user).update(last_read_at=now)
        if user.read_receipts:
            realtime.emit_to_conversation(conversation.id, 'read-receipt', {
                'conversation_id': conversation.id,
                'user_id': user.id,
                'read_at': now,
            })

    @staticmethod
    def unread_count(conversation: Conversation, user: User) -> int:
        membership = ConversationParticipant.objects.filter(conversation=conversation, user=user).first()
        if membership is None:
            return 0
        messages = Message.objects.filter(conversation=conversation).exclude(sender=user)
        if membership.last_read_at:
            messages = messages.filter(created_at__gt=membership.last_read_at)
        return messages.count()


class MarketplaceService:
    """Listing eligibility and bookings."""

    @staticmethod
    def listing_eligibility(user: User) -> dict:
        tier = get_tier(user)
        limit = TIER_SERVICE_LIMITS.get(tier, 0)
        active = Service.objects.filter(user=user).exclude(status='hidden').count()
        if user.is_admin:
            return {'allowed': True, 'tier': tier, 'limit': None, 'active': active, 'reason': ''}
        if user.seller_privileges_frozen:
            reason = 'Your seller privileges are frozen.'
        elif limit == 0:
            reason = 'Upgrade to a seller plan to list services.'
        elif active >= limit:
            reason = f'Your plan allows {limit} active services.'
        else:
            reason = ''
        return {'allowed': not reason, 'tier': tier, 'limit': limit, 'active': active, 'reason': reason}

    @staticmethod
    def require_can_list(user: User) -> None:
        eligibility = MarketplaceService.listing_eligibility(user)
        if not eligibility['allowed']:
            raise PermissionDenied(eligibility['reason'])

    @staticmethod
    def book(service: Service, buyer: User, session_minutes: int | None = None) -> ServiceOrder:
        """
        Book a session. Payment is captured immediately, so the order is
        recorded as completed together with its invoice.
        """
        if service.user_id == buyer.pk:
            raise ValueError('You cannot book your own service.')
        if service.status != 'active':
            raise ValueError('This service is not available for booking.')
        if not PaymentMethod.objects.filter(user=buyer).exists():
            raise PaymentRequired('Add a payment method before booking a service.')

        minutes = session_minutes or service.duration_minutes
        if minutes <= 0:
            raise ValueError('Session length must be positive.')
        hours = max(Decimal('0.5'), Decimal(minutes) / Decimal(60))
        amount = (service.price_per_hour * hours).quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)

        with transaction.atomic():
            order = ServiceOrder.objects.create(
                service=service,
                buyer=buyer,
                status='completed',
                session_minutes=minutes,
                amount=amount,
                completed_at=timezone.now(),
            )
            Invoice.objects.create(
                user=buyer,
                description=f"Booking: {service.title}",
                amount=amount,
                status='paid',
            )
        notify(
            service.user,
            'service_booked',
            'New booking',
            f"{buyer.full_name} booked {service.title}",
            link=f"/services/{service.id}",
            email=True,
            actor=buyer,
        )
        return order


class ReviewService:
    """Verified-purchaser reviews, one per (service, reviewer)."""

    @staticmethod
    def is_verified_purchaser(service: Service, user: User) -> bool:
        return ServiceOrder.objects.filter(service=service, buyer=user, status='completed').exists()

    @staticmethod
    def can_review(service: Service, user: User) -> bool:
        if not user or not user.is_authenticated or service.user_id == user.pk:
            return False
        return ReviewService.is_verified_purchaser(service, user)

    @staticmethod
    def submit(service: Service, user: User, rating, comment: str = '') -> tuple[ServiceReview, bool]:
        try:
            rating = int(rating)
        except (TypeError, ValueError):
            raise ValueError('Rating must be a whole number from 1 to 5.')
        if rating < 1 or rating > 5:
            raise ValueError('Rating must be between 1 and 5.')
        if service.user_id == user.pk:
            raise PermissionDenied('You cannot review your own service.')
        if not ReviewService.is_verified_purchaser(service, user):
            raise PermissionDenied('Only customers with a completed order can review this service.')

        with transaction.atomic():
            review, created = ServiceReview.objects.update_or_create(
                service=service,
                user=user,
                defaults={'rating': rating, 'comment': sanitize_text(comment, MAX_COMMENT_LENGTH)},
            )
        invalidate_rating_summary(str(service.id))
        notify(
            service.user,
            'service_review',
            'New review' if created else 'Review updated',
            f"{user.full_name} rated {service.title} {rating}/5",
            link=f"/services/{service.id}",
            email=created,
            actor=user,
        )
        return review, created

    @staticmethod
    def rating_summary(service: Service) -> dict:
        cached = get_cached_rating_summary(str(service.id))
        if cached is not None:
            return cached
        visible = ServiceReview.objects.filter(service=service, is_hidden=False, is_deleted=False)
        aggregate = visible.aggregate(average=Avg('rating'), count=Count('id'))
        distribution = {str(star): 0 for star in range(1, 6)}
        for row in visible.values('rating').annotate(total=Count('id')).order_by():
            distribution[str(row['rating'])] = row['total']
        summary = {
            'average': round(float(aggregate['average']), 2) if aggregate['average'] is not None else None,
            'count': aggregate['count'],
            'distribution': distribution,
        }
        cache_rating_summary(str(service.id), summary)
        return summary

    @staticmethod
    def moderate(review: ServiceReview, moderator: User, action: str) -> ServiceReview:
        if action == 'hide':
            review.is_hidden = True
        elif action == 'delete':
            review.is_deleted = True
        elif action == 'restore':
            review.is_hidden = False
            review.is_deleted = False
        else:
            raise ValueError('Action must be hide, delete or restore.')
        review.moderated_by = moderator
        review.moderated_at = timezone.now()
        review.save(update_fields=['is_hidden', 'is_deleted', 'moderated_by', 'moderated_at', 'updated_at'])
        invalidate_rating_summary(str(review.service_id))
        return review
