"""
Unit tests for the reaction toggle shared by posts, messages and comments
"""
import pytest
from unittest.mock import patch
from django.db import IntegrityError

from api.models import CommentLike, MessageReaction, Notification, PostReaction
from api.services import ReactionService
from api.tests.helpers.factories import (
    GroupConversationFactory, MessageFactory, PostCommentFactory, PostFactory, UserFactory,
)


@pytest.mark.django_db
@pytest.mark.unit
class TestToggle:

    def test_first_reaction_is_set(self):
        post = PostFactory()
        user = UserFactory()
        result = ReactionService.toggle(PostReaction, post, user, 'like')
        assert result.status == ReactionService.SET
        assert result.counts == {'like': 1}

    def test_same_kind_twice_clears(self):
        post = PostFactory()
        user = UserFactory()
        ReactionService.toggle(PostReaction, post, user, 'like')
        result = ReactionService.toggle(PostReaction, post, user, 'like')
        assert result.status == ReactionService.CLEARED
        assert result.counts == {}
        assert not PostReaction.objects.filter(post=post, user=user).exists()

    def test_different_kind_replaces(self):
        post = PostFactory()
        user = UserFactory()
        ReactionService.toggle(PostReaction, post, user, 'like')
        result = ReactionService.toggle(PostReaction, post, user, 'fire')
        assert result.status == ReactionService.UPDATED
        rows = PostReaction.objects.filter(post=post, user=user)
        assert rows.count() == 1
        assert rows.get().reaction_type == 'fire'
        assert result.counts == {'fire': 1}

    def test_unsupported_kind_rejected(self):
        post = PostFactory()
        with pytest.raises(ValueError):
            ReactionService.toggle(PostReaction, post, UserFactory(), 'shrug')
        assert PostReaction.objects.count() == 0

    def test_documented_sequence(self):
        """U likes, likes again, celebrates; then V likes."""
        post = PostFactory()
        u = UserFactory()
        v = UserFactory()

        first = ReactionService.toggle(PostReaction, post, u, 'like')
        assert (first.status, first.counts) == ('set', {'like': 1})

        second = ReactionService.toggle(PostReaction, post, u, 'like')
        assert (second.status, second.counts) == ('cleared', {})

        third = ReactionService.toggle(PostReaction, post, u, 'celebrate')
        assert (third.status, third.counts) == ('set', {'celebrate': 1})

        fourth = ReactionService.toggle(PostReaction, post, v, 'like')
        assert fourth.counts == {'celebrate': 1, 'like': 1}

    def test_summary_ignores_other_subjects(self):
        post = PostFactory()
        other_post = PostFactory()
        ReactionService.toggle(PostReaction, post, UserFactory(), 'love')
        ReactionService.toggle(PostReaction, other_post, UserFactory(), 'clap')
        assert ReactionService.summarize(PostReaction, post) == {'love': 1}

    def test_user_reaction(self):
        post = PostFactory()
        user = UserFactory()
        assert ReactionService.user_reaction(PostReaction, post, user) is None
        ReactionService.toggle(PostReaction, post, user, 'rocket')
        assert ReactionService.user_reaction(PostReaction, post, user) == 'rocket'

    def test_lost_insert_race_is_retried_on_committed_row(self):
        post = PostFactory()
        user = UserFactory()
        # Row committed by the request that won the race
        PostReaction.objects.create(post=post, user=user, reaction_type='fire')
        real_apply = ReactionService._apply
        attempts = []

        def racing_apply(model, lookup, kind):
            attempts.append(kind)
            if len(attempts) == 1:
                raise IntegrityError('duplicate key value violates unique constraint')
            return real_apply(model, lookup, kind)

        with patch.object(ReactionService, '_apply', side_effect=racing_apply):
            result = ReactionService.toggle(PostReaction, post, user, 'like')

        assert attempts == ['like', 'like']
        assert result.status == ReactionService.UPDATED
        assert result.counts == {'like': 1}
        assert PostReaction.objects.get(post=post, user=user).reaction_type == 'like'


@pytest.mark.django_db
@pytest.mark.unit
class TestReactionSideEffects:

    @patch('api.services.realtime.broadcast')
    def test_post_reaction_notifies_author_and_broadcasts(self, mock_broadcast):
        post = PostFactory()
        reactor = UserFactory()
        ReactionService.react_to_post(post, reactor, 'like')

        assert Notification.objects.filter(user=post.user, type='post_reaction').count() == 1
        mock_broadcast.assert_called_once()
        event, payload = mock_broadcast.call_args[0]
        assert event == 'post-reaction'
        assert payload['counts'] == {'like': 1}

    @patch('api.services.realtime.broadcast')
    def test_clearing_does_not_notify(self, mock_broadcast):
        post = PostFactory()
        reactor = UserFactory()
        ReactionService.react_to_post(post, reactor, 'like')
        ReactionService.react_to_post(post, reactor, 'like')
        assert Notification.objects.filter(user=post.user, type='post_reaction').count() == 1
        assert mock_broadcast.call_count == 2

    def test_reacting_to_own_post_does_not_notify(self):
        post = PostFactory()
        ReactionService.react_to_post(post, post.user, 'fire')
        assert not Notification.objects.filter(user=post.user).exists()

    def test_message_reaction_requires_participant(self):
        from rest_framework.exceptions import PermissionDenied
        message = MessageFactory()
        with pytest.raises(PermissionDenied):
            ReactionService.react_to_message(message, UserFactory(), 'like')
        assert MessageReaction.objects.count() == 0

    def test_message_reaction_by_participant(self):
        member = UserFactory()
        conversation = GroupConversationFactory(members=[member])
        message = MessageFactory(conversation=conversation)
        result = ReactionService.react_to_message(message, member, 'love')
        assert result.status == ReactionService.SET
        assert result.counts == {'love': 1}

    def test_comment_star_toggles(self):
        comment = PostCommentFactory()
        user = UserFactory()
        assert ReactionService.star_comment(comment, user).status == ReactionService.SET
        assert CommentLike.objects.filter(comment=comment).count() == 1
        assert ReactionService.star_comment(comment, user).status == ReactionService.CLEARED
        assert CommentLike.objects.filter(comment=comment).count() == 0
