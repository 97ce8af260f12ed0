"""
Conversation change signals and their narration receivers.

ConversationService and ParticipantService emit these signals after a
membership or lifecycle change commits. The receivers below narrate each
change as a system message in the conversation, so the conversation side
never depends on the message side.

Signals (all sent with sender=Conversation):
    conversation_created: conversation, created_by
    participant_added: conversation, user, added_by
    participant_removed: conversation, user, removed_by, voluntary
    conversation_changed: conversation, action, data

Receivers are connected in ChatConfig.ready().
"""

from __future__ import annotations

import logging

from django.dispatch import Signal, receiver

from chat.models import Conversation, SystemAction

logger = logging.getLogger(__name__)


conversation_created = Signal()
participant_added = Signal()
participant_removed = Signal()
conversation_changed = Signal()


def _narrate(conversation: Conversation, action: str, data: dict):
    from chat.events import get_publisher
    from chat.services import MessageService

    result = MessageService.append_system(conversation, action, data)
    if not result.success:
        logger.warning(
            f"Could not narrate {action} in conversation {conversation.id}: {result.error}"
        )
        return None
    get_publisher().system_message(result.data)
    return result.data


@receiver(conversation_created, sender=Conversation)
def narrate_conversation_created(sender, conversation, created_by=None, **kwargs):
    return _narrate(
        conversation,
        SystemAction.CONVERSATION_CREATED,
        {
            "type": conversation.conversation_type,
            "title": conversation.title,
            "created_by_id": str(created_by.pk) if created_by else None,
        },
    )


@receiver(participant_added, sender=Conversation)
def narrate_participant_added(sender, conversation, user, added_by=None, **kwargs):
    return _narrate(
        conversation,
        SystemAction.PARTICIPANT_ADDED,
        {
            "user_id": str(user.pk),
            "added_by_id": str(added_by.pk) if added_by else None,
        },
    )


@receiver(participant_removed, sender=Conversation)
def narrate_participant_removed(
    sender, conversation, user, removed_by=None, voluntary=False, **kwargs
):
    return _narrate(
        conversation,
        SystemAction.PARTICIPANT_REMOVED,
        {
            "user_id": str(user.pk),
            "removed_by_id": str(removed_by.pk) if removed_by else None,
            "reason": "left" if voluntary else "removed",
        },
    )


@receiver(conversation_changed, sender=Conversation)
def narrate_conversation_changed(sender, conversation, action, data=None, **kwargs):
    return _narrate(conversation, action, data or {})
