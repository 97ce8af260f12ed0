"""
Post-write orchestration of chat side effects.

After a service call succeeds, views and consumers hand the result to the
ChatEventPublisher, which:

    1. broadcasts the realtime event to the conversation room (RealtimeHub)
    2. invalidates the affected cache keys (CacheCoordinator)
    3. hands offline recipients to the NotificationBridge (new messages,
       new participants)

Each step is best-effort: a failure is logged and the next step still runs.
The write itself has already committed when the publisher is called.

Methods are synchronous (request threads, database_sync_to_async in
consumers); hub coroutines are driven with async_to_sync.

Usage:
    from chat.events import get_publisher

    result = MessageService.append_text(conversation, request.user, text)
    if result.success:
        get_publisher().message_created(result.data)
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from asgiref.sync import async_to_sync
from django.apps import apps

from chat.hub import conversation_room, order_room, restaurant_room
from chat.models import ConversationType
from chat.serializers import (
    ConversationSerializer,
    MessageSerializer,
    ParticipantSerializer,
    serialize_metadata,
)

if TYPE_CHECKING:
    from authentication.models import User
    from chat.bridge import NotificationBridge
    from chat.cache import CacheCoordinator
    from chat.hub import RealtimeHub
    from chat.models import Conversation, Message, Participant

logger = logging.getLogger(__name__)


class ChatEventPublisher:
    """Broadcast, then invalidate, then notify."""

    def __init__(
        self,
        hub: RealtimeHub,
        cache: CacheCoordinator,
        bridge: NotificationBridge,
    ):
        self.hub = hub
        self.cache = cache
        self.bridge = bridge

    # ------------------------------------------------------------------
    # Building blocks
    # ------------------------------------------------------------------

    def broadcast(
        self,
        conversation: Conversation,
        event: str,
        data: Any,
        exclude_user=None,
    ) -> int:
        try:
            return async_to_sync(self.hub.broadcast_to_room)(
                conversation_room(conversation.id),
                event,
                data,
                exclude_user=exclude_user,
            )
        except Exception:
            logger.exception(f"Failed to broadcast {event} for conversation {conversation.id}")
            return 0

    def send_to_user(self, user_id, event: str, data: Any) -> bool:
        try:
            return async_to_sync(self.hub.send_to_user)(user_id, event, data)
        except Exception:
            logger.exception(f"Failed to send {event} to user {user_id}")
            return False

    def invalidate(self, conversation: Conversation, extra_user_ids=()) -> None:
        user_ids = set(conversation.participant_user_ids()) | set(extra_user_ids)
        self.cache.invalidate_conversation(conversation.id, user_ids)

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    def message_created(self, message: Message) -> None:
        conversation = message.conversation
        self.broadcast(conversation, "message:new", MessageSerializer(message).data)
        self.invalidate(conversation)
        try:
            self.bridge.notify_new_message(message)
        except Exception:
            logger.exception(f"Notification hand-off failed for message {message.id}")

    def system_message(self, message: Message) -> None:
        """Narration: broadcast and invalidate, never notify."""
        self.broadcast(message.conversation, "message:new", MessageSerializer(message).data)
        self.invalidate(message.conversation)

    def message_edited(self, message: Message) -> None:
        self.broadcast(message.conversation, "message:edited", MessageSerializer(message).data)
        self.invalidate(message.conversation)

    def message_deleted(self, message: Message) -> None:
        self.broadcast(
            message.conversation,
            "message:deleted",
            {
                "message_id": message.id,
                "conversation_id": message.conversation_id,
                "delete_type": message.delete_type,
                "deleted_by_id": message.deleted_by_id,
            },
        )
        self.invalidate(message.conversation)

    def reaction_changed(self, message: Message, user: User, emoji: str | None) -> None:
        """Broadcast a reaction add (emoji) or removal (emoji=None)."""
        data = {
            "message_id": message.id,
            "conversation_id": message.conversation_id,
            "user_id": user.pk,
        }
        if emoji is None:
            self.broadcast(message.conversation, "message:reaction:removed", data)
        else:
            self.broadcast(message.conversation, "message:reaction", {**data, "emoji": emoji})
        self.invalidate(message.conversation)

    def pin_changed(self, message: Message) -> None:
        event = "message:pinned" if message.is_pinned else "message:unpinned"
        self.broadcast(
            message.conversation,
            event,
            {
                "message_id": message.id,
                "conversation_id": message.conversation_id,
                "pinned_by_id": message.pinned_by_id,
                "pinned_at": message.pinned_at,
            },
        )
        self.invalidate(message.conversation)

    def messages_read(
        self,
        conversation: Conversation,
        user: User,
        message_id=None,
        count: int = 0,
    ) -> None:
        if conversation.allows("show_read_receipts"):
            self.broadcast(
                conversation,
                "message:read",
                {
                    "conversation_id": conversation.id,
                    "user_id": user.pk,
                    "message_id": message_id,
                    "count": count,
                },
                exclude_user=user.pk,
            )
        # Message pages carry read receipts
        self.cache.invalidate_conversation(conversation.id, [user.pk])

    def message_delivered(self, message: Message, user: User) -> None:
        """Tell the sender a recipient's client received the message."""
        if message.conversation.allows("show_read_receipts") and message.sender_id:
            self.send_to_user(
                message.sender_id,
                "message:delivered",
                {
                    "conversation_id": message.conversation_id,
                    "message_id": message.id,
                    "user_id": user.pk,
                },
            )

    # ------------------------------------------------------------------
    # Conversations and participants
    # ------------------------------------------------------------------

    def conversation_created(self, conversation: Conversation) -> None:
        data = ConversationSerializer(conversation).data
        for user_id in conversation.participant_user_ids():
            self.send_to_user(user_id, "conversation:new", data)
        self.invalidate(conversation)

    def conversation_changed(self, conversation: Conversation, removed_user_ids=()) -> None:
        """Status event for lifecycle changes (update, archive, delete, transitions)."""
        data = {
            "conversation_id": conversation.id,
            "type": conversation.conversation_type,
            "title": conversation.title,
            "is_active": conversation.is_active,
            "archived_at": conversation.archived_at,
            "deleted_at": conversation.deleted_at,
            "expires_at": conversation.expires_at,
            "metadata": serialize_metadata(conversation),
        }
        self.broadcast(conversation, "status", data)
        if conversation.conversation_type == ConversationType.ORDER:
            details = conversation.order_details
            try:
                async_to_sync(self.hub.broadcast_to_room)(order_room(details.order_id), "status", data)
                if details.restaurant_id:
                    async_to_sync(self.hub.broadcast_to_room)(
                        restaurant_room(details.restaurant_id), "status", data
                    )
            except Exception:
                logger.exception(f"Failed to broadcast order status for {details.order_id}")
        self.invalidate(conversation, extra_user_ids=removed_user_ids)

    def participant_added(
        self,
        conversation: Conversation,
        participant: Participant,
        added_by: User | None = None,
    ) -> None:
        data = {
            "conversation_id": conversation.id,
            "participant": ParticipantSerializer(participant).data,
            "added_by_id": added_by.pk if added_by else None,
        }
        self.broadcast(conversation, "participant:added", data)
        self.send_to_user(
            participant.user_id,
            "conversation:new",
            ConversationSerializer(conversation).data,
        )
        self.invalidate(conversation)
        try:
            self.bridge.notify_added(conversation, participant.user, added_by)
        except Exception:
            logger.exception(
                f"Notification hand-off failed for participant {participant.user_id}"
            )

    def participant_removed(
        self,
        conversation: Conversation,
        participant: Participant,
    ) -> None:
        data = {
            "conversation_id": conversation.id,
            "user_id": participant.user_id,
            "removed_by_id": participant.removed_by_id,
            "voluntary": participant.left_voluntarily,
        }
        self.broadcast(conversation, "participant:removed", data)
        self.send_to_user(participant.user_id, "participant:removed", data)
        self.invalidate(conversation, extra_user_ids=[participant.user_id])


def get_publisher() -> ChatEventPublisher:
    """The process-wide publisher built by ChatConfig.ready()."""
    return apps.get_app_config("chat").publisher
