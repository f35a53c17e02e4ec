"""
Fire-and-forget bridge from request handlers to websocket groups.

Groups:
    user_<id>          one room per user, receives notifications and read receipts
    conversation_<id>  participants currently viewing a conversation
    feed               every connected session, receives reaction count updates

Delivery is best effort: a failed send is logged and dropped, there is no
acknowledgement, retry or ordering guarantee.
"""
import json
import logging

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from django.core.serializers.json import DjangoJSONEncoder

logger = logging.getLogger(__name__)

FEED_GROUP = 'feed'


def user_group(user_id):
    return f'user_{user_id}'


def conversation_group(conversation_id):
    return f'conversation_{conversation_id}'


def _jsonable(payload):
    # Channel layers only carry msgpack-friendly values (no UUID, datetime or Decimal)
    return json.loads(json.dumps(payload, cls=DjangoJSONEncoder))


def _send(group, event, payload):
    channel_layer = get_channel_layer()
    if channel_layer is None:
        return False
    try:
        async_to_sync(channel_layer.group_send)(
            group,
            {
                'type': 'relay.event',
                'event': event,
                'payload': _jsonable(payload),
            }
        )
        return True
    except Exception as e:
        logger.warning(f"Realtime emit of '{event}' to {group} failed: {e}")
        return False


def emit_to_user(user_id, event, payload):
    return _send(user_group(user_id), event, payload)


def emit_to_conversation(conversation_id, event, payload):
    return _send(conversation_group(conversation_id), event, payload)


def broadcast(event, payload):
    return _send(FEED_GROUP, event, payload)
