"""
Notification bridge.

Hands "user X has something new in conversation Y" to the notification
collaborator for participants who are not connected to the realtime hub.
Connected users already received the event over their WebSocket.

Rules for a new message:
    - the sender is never notified
    - muted conversations notify nobody
    - only offline participants (RealtimeHub.is_online is False) are notified
    - the preview is the payload preview cut to 100 characters

The collaborator is anything satisfying NotificationSender. The default,
CeleryNotificationSender, enqueues the notification worker's task by name
(settings.CHAT_NOTIFICATION_TASK), so this service never imports it.

Failure policy:
    Sender failures are logged with logger.exception and swallowed, one
    recipient at a time. Message creation never fails because of them.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Protocol

from celery import current_app
from django.conf import settings

from chat.constants import NOTIFICATION_CONFIG

if TYPE_CHECKING:
    from authentication.models import User
    from chat.hub import RealtimeHub
    from chat.models import Conversation, Message

logger = logging.getLogger(__name__)


class NotificationSender(Protocol):
    def send(self, user_id: Any, event_type: str, payload: dict) -> bool:
        ...


class CeleryNotificationSender:
    """Enqueues the notification worker's task by name."""

    def __init__(self, task_name: str | None = None):
        self.task_name = task_name or getattr(
            settings, "CHAT_NOTIFICATION_TASK", NOTIFICATION_CONFIG.DEFAULT_TASK_NAME
        )

    def send(self, user_id: Any, event_type: str, payload: dict) -> bool:
        current_app.send_task(
            self.task_name,
            kwargs={
                "user_id": str(user_id),
                "event_type": event_type,
                "payload": payload,
            },
        )
        return True


def truncate_preview(text: str, length: int = NOTIFICATION_CONFIG.PREVIEW_LENGTH) -> str:
    return text if len(text) <= length else text[:length]


class NotificationBridge:
    """Selects offline recipients and hands them to the NotificationSender."""

    def __init__(self, hub: RealtimeHub, sender: NotificationSender | None = None):
        self.hub = hub
        self.sender = sender or CeleryNotificationSender()

    def _send(self, user_id: Any, event_type: str, payload: dict) -> bool:
        try:
            return bool(self.sender.send(user_id, event_type, payload))
        except Exception:
            logger.exception(f"Failed to send {event_type} notification to user {user_id}")
            return False

    def offline_recipients(self, conversation: Conversation, exclude_user_id=None) -> list:
        user_ids = [
            user_id
            for user_id in conversation.participant_user_ids()
            if exclude_user_id is None or str(user_id) != str(exclude_user_id)
        ]
        online = self.hub.online_users(user_ids)
        return [user_id for user_id in user_ids if str(user_id) not in online]

    def notify_new_message(self, message: Message) -> list:
        """
        Notify offline participants about a new message.

        Returns:
            Ids of users a notification was handed off for
        """
        conversation = message.conversation
        if conversation.is_muted:
            logger.debug(f"Conversation {conversation.id} is muted, skipping notifications")
            return []

        recipients = self.offline_recipients(conversation, exclude_user_id=message.sender_id)
        if not recipients:
            return []

        sender = message.sender
        payload = {
            "conversation_id": str(conversation.id),
            "conversation_type": conversation.conversation_type,
            "conversation_title": conversation.title,
            "message_id": str(message.id),
            "message_type": message.message_type,
            "sender_id": str(sender.pk) if sender else None,
            "sender_name": sender.get_full_name() if sender else "",
            "preview": truncate_preview(message.get_display_content()),
        }

        notified = [
            user_id
            for user_id in recipients
            if self._send(user_id, NOTIFICATION_CONFIG.EVENT_NEW_MESSAGE, payload)
        ]
        logger.info(
            f"Handed off {len(notified)} notifications for message {message.id}"
        )
        return notified

    def notify_added(
        self,
        conversation: Conversation,
        user: User,
        added_by: User | None = None,
    ) -> bool:
        """Tell a newly added participant, if offline, that they were added."""
        if self.hub.is_online(user.pk):
            return False
        return self._send(
            user.pk,
            NOTIFICATION_CONFIG.EVENT_ADDED_TO_CONVERSATION,
            {
                "conversation_id": str(conversation.id),
                "conversation_type": conversation.conversation_type,
                "conversation_title": conversation.title,
                "added_by_id": str(added_by.pk) if added_by else None,
                "added_by_name": added_by.get_full_name() if added_by else "",
            },
        )
