import json
from channels.generic.websocket import AsyncWebsocketConsumer
from channels.db import database_sync_to_async
from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError
from rest_framework_simplejwt.exceptions import InvalidToken, TokenError
from .models import Conversation, ConversationParticipant
from .utils import account_block_reason
from .realtime import FEED_GROUP, conversation_group, user_group

User = get_user_model()


def _token_from_scope(scope):
    query_string = scope.get('query_string', b'').decode()
    if 'token=' in query_string:
        return query_string.split('token=')[-1].split('&')[0]
    return None


class RelayConsumer(AsyncWebsocketConsumer):
    """
    Base consumer: authenticates with a JWT from the query string and forwards
    ``relay.event`` messages from the channel layer to the socket as
    ``{"event": ..., "payload": ...}``.
    """
    groups_joined = ()

    async def connect(self):
        token = _token_from_scope(self.scope)
        if not token:
            await self.close(code=4001)
            return

        user = await self.authenticate_user(token)
        if not user:
            await self.close(code=4001)
            return
        # Banned and suspended accounts get no realtime channel
        if await self.is_blocked(user):
            await self.close(code=4003)
            return
        self.user = user

        groups = await self.get_groups()
        if groups is None:
            return
        self.groups_joined = groups
        for group in groups:
            await self.channel_layer.group_add(group, self.channel_name)

        await self.accept()

    async def disconnect(self, close_code):
        for group in self.groups_joined:
            await self.channel_layer.group_discard(group, self.channel_name)

    async def get_groups(self):
        raise NotImplementedError

    async def relay_event(self, event):
        await self.send(text_data=json.dumps({
            'event': event['event'],
            'payload': event['payload'],
        }))

    @database_sync_to_async
    def authenticate_user(self, token):
        try:
            from rest_framework_simplejwt.tokens import AccessToken
            access_token = AccessToken(token)
            user = User.objects.get(id=access_token['user_id'], is_active=True)
        except (InvalidToken, TokenError, User.DoesNotExist):
            return None
        return user

    @database_sync_to_async
    def is_blocked(self, user):
        return bool(account_block_reason(user))


class NotificationConsumer(RelayConsumer):
    """Per-user room plus the shared feed group."""

    async def get_groups(self):
        return [user_group(self.user.id), FEED_GROUP]

    async def receive(self, text_data):
        # Keepalive only
        try:
            data = json.loads(text_data)
        except ValueError:
            return
        if data.get('type') == 'ping':
            await self.send(text_data=json.dumps({'event': 'pong', 'payload': {}}))


class ConversationConsumer(RelayConsumer):
    """Conversation room for participants; relays typing indicators."""
    TYPING_EVENTS = ('typing', 'stop-typing')

    async def get_groups(self):
        self.conversation_id = self.scope['url_route']['kwargs']['conversation_id']
        exists, is_participant = await self.verify_participant(self.user, self.conversation_id)
        if not exists:
            await self.close(code=4004)
            return None
        if not is_participant:
            await self.close(code=4003)
            return None
        return [conversation_group(self.conversation_id)]

    async def receive(self, text_data):
        try:
            data = json.loads(text_data)
        except ValueError:
            await self.send(text_data=json.dumps({
                'event': 'error',
                'payload': {'message': 'Invalid message format'}
            }))
            return

        event = data.get('type')
        if event not in self.TYPING_EVENTS:
            return
        await self.channel_layer.group_send(
            conversation_group(self.conversation_id),
            {
                'type': 'relay.event',
                'event': event,
                'payload': {
                    'conversation_id': str(self.conversation_id),
                    'user_id': str(self.user.id),
                    'full_name': self.user.full_name,
                },
            }
        )

    async def relay_event(self, event):
        # Senders do not need their own typing indicator echoed back
        if event['event'] in self.TYPING_EVENTS and event['payload'].get('user_id') == str(self.user.id):
            return
        await super().relay_event(event)

    @database_sync_to_async
    def verify_participant(self, user, conversation_id):
        try:
            conversation = Conversation.objects.get(id=conversation_id)
        except (Conversation.DoesNotExist, ValidationError, ValueError):
            return False, False
        return True, ConversationParticipant.objects.filter(conversation=conversation, user=user).exists()
