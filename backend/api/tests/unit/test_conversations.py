"""
Unit tests for ConversationService
"""
import pytest
from unittest.mock import patch
from django.core.files.uploadedfile import SimpleUploadedFile
from rest_framework.exceptions import PermissionDenied

from api.models import Conversation, ConversationParticipant, Message, Notification
from api.services import ConversationService, SocialService
from api.tests.helpers.factories import GroupConversationFactory, MessageFactory, UserFactory


@pytest.mark.django_db
@pytest.mark.unit
class TestDirectConversations:

    def test_same_row_regardless_of_initiator(self):
        alice = UserFactory()
        bob = UserFactory()
        first, created = ConversationService.get_or_create_direct(alice, bob)
        second, created_again = ConversationService.get_or_create_direct(bob, alice)

        assert created is True
        assert created_again is False
        assert first.pk == second.pk
        assert Conversation.objects.filter(is_group=False).count() == 1
        assert set(first.participants.values_list('pk', flat=True)) == {alice.pk, bob.pk}

    def test_cannot_message_self(self):
        alice = UserFactory()
        with pytest.raises(ValueError):
            ConversationService.get_or_create_direct(alice, alice)

    def test_blocked_pair_cannot_start(self):
        alice = UserFactory()
        bob = UserFactory()
        SocialService.block(bob, alice)
        with pytest.raises(PermissionDenied):
            ConversationService.get_or_create_direct(alice, bob)


@pytest.mark.django_db
@pytest.mark.unit
class TestSendMessage:

    def _direct(self):
        alice = UserFactory()
        bob = UserFactory()
        conversation, _ = ConversationService.get_or_create_direct(alice, bob)
        return conversation, alice, bob

    @patch('api.services.realtime.emit_to_conversation')
    def test_send_emits_and_notifies(self, mock_emit):
        conversation, alice, bob = self._direct()
        created = ConversationService.send_message(conversation, alice, content='<b>Hello</b> Bob')

        assert len(created) == 1
        assert created[0].content == 'Hello Bob'
        assert Notification.objects.filter(user=bob, type='message').exists()
        assert not Notification.objects.filter(user=alice).exists()
        event = mock_emit.call_args[0][1]
        assert event == 'new-message'

    def test_non_participant_rejected(self):
        conversation, _, _ = self._direct()
        with pytest.raises(PermissionDenied):
            ConversationService.send_message(conversation, UserFactory(), content='hi')

    def test_chat_frozen_sender_rejected(self):
        conversation, alice, _ = self._direct()
        alice.chat_privileges_frozen = True
        alice.save()
        with pytest.raises(PermissionDenied):
            ConversationService.send_message(conversation, alice, content='hi')

    def test_recipient_not_accepting_messages(self):
        conversation, alice, bob = self._direct()
        bob.allow_messages_from = 'no_one'
        bob.save()
        with pytest.raises(PermissionDenied):
            ConversationService.send_message(conversation, alice, content='hi')

    def test_block_after_conversation_started(self):
        conversation, alice, bob = self._direct()
        SocialService.block(bob, alice)
        with pytest.raises(PermissionDenied):
            ConversationService.send_message(conversation, alice, content='hi')

    def test_empty_message_rejected(self):
        conversation, alice, _ = self._direct()
        with pytest.raises(ValueError):
            ConversationService.send_message(conversation, alice, content='<p></p>')

    def test_message_is_truncated(self):
        conversation, alice, _ = self._direct()
        created = ConversationService.send_message(conversation, alice, content='x' * 6000)
        assert len(created[0].content) == 5000

    def test_reply_must_be_in_same_conversation(self):
        conversation, alice, _ = self._direct()
        elsewhere = MessageFactory()
        with pytest.raises(ValueError):
            ConversationService.send_message(conversation, alice, content='re', reply_to_id=elsewhere.pk)

    def test_each_attachment_is_its_own_message(self):
        conversation, alice, _ = self._direct()
        files = [
            SimpleUploadedFile('a.png', b'\x89PNG a', content_type='image/png'),
            SimpleUploadedFile('b.pdf', b'%PDF b', content_type='application/pdf'),
        ]
        created = ConversationService.send_message(conversation, alice, content='files', attachments=files)
        assert len(created) == 2
        assert created[0].content == 'files'
        assert created[1].content == ''
        assert {message.attachment_type for message in created} == {'image/png', 'application/pdf'}

    def test_unread_count_and_mark_read(self):
        conversation, alice, bob = self._direct()
        ConversationService.send_message(conversation, alice, content='one')
        ConversationService.send_message(conversation, alice, content='two')
        assert ConversationService.unread_count(conversation, bob) == 2
        assert ConversationService.unread_count(conversation, alice) == 0

        ConversationService.mark_read(conversation, bob)
        assert ConversationService.unread_count(conversation, bob) == 0


@pytest.mark.django_db
@pytest.mark.unit
class TestGroups:

    def test_create_group_adds_members(self):
        creator = UserFactory()
        members = [UserFactory(), UserFactory()]
        conversation = ConversationService.create_group(creator, members + [creator], 'Design crew')
        assert conversation.is_group
        assert conversation.participants.count() == 3
        assert Notification.objects.filter(type='group_added').count() == 2

    def test_group_needs_other_members(self):
        creator = UserFactory()
        with pytest.raises(ValueError):
            ConversationService.create_group(creator, [creator], 'Solo')

    def test_only_creator_removes_members(self):
        member = UserFactory()
        outsider_member = UserFactory()
        conversation = GroupConversationFactory(members=[member, outsider_member])
        with pytest.raises(PermissionDenied):
            ConversationService.remove_member(conversation, member, outsider_member)

        ConversationService.remove_member(conversation, conversation.created_by, outsider_member)
        assert not ConversationService.is_participant(conversation, outsider_member)

    def test_creator_leaving_hands_over_group(self):
        member = UserFactory()
        conversation = GroupConversationFactory(members=[member])
        creator = conversation.created_by
        ConversationService.leave(conversation, creator)
        conversation.refresh_from_db()
        assert conversation.created_by_id == member.pk

    def test_last_member_leaving_deletes_group(self):
        conversation = GroupConversationFactory()
        ConversationService.leave(conversation, conversation.created_by)
        assert not Conversation.objects.filter(pk=conversation.pk).exists()
        assert not ConversationParticipant.objects.filter(conversation_id=conversation.pk).exists()
        assert not Message.objects.filter(conversation_id=conversation.pk).exists()

    def test_rename_requires_group(self):
        alice = UserFactory()
        bob = UserFactory()
        direct, _ = ConversationService.get_or_create_direct(alice, bob)
        with pytest.raises(ValueError):
            ConversationService.rename_group(direct, alice, 'New name')
