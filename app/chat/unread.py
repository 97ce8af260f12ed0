"""
Unread message tracking.

Unread counts are never stored. They are recomputed from message and
receipt rows every time, so they cannot drift:

    unread(conversation, user) = messages in conversation
        that are not deleted
        and were not sent by user
        and have no read receipt from user

Usage:
    from chat.unread import UnreadTracker

    UnreadTracker.count(conversation, user)
    UnreadTracker.counts_for([c.id for c in page.items], user)   # one query
    UnreadTracker.mark_all_read(conversation, user)
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from django.db.models import Count, Exists, OuterRef, Q
from django.utils import timezone

from chat.models import Message, MessageReceipt, Participant, ReceiptKind

if TYPE_CHECKING:
    from collections.abc import Iterable

    from authentication.models import User
    from chat.models import Conversation

logger = logging.getLogger(__name__)


class UnreadTracker:
    """Recomputes unread counts and bulk-inserts read receipts."""

    @staticmethod
    def unread_messages(user: User):
        """Messages (in any conversation) that are unread for user."""
        read_receipt = MessageReceipt.objects.filter(
            message=OuterRef("pk"),
            user=user,
            kind=ReceiptKind.READ,
        )
        return (
            Message.objects.filter(is_deleted=False)
            .filter(Q(sender__isnull=True) | ~Q(sender=user))
            .filter(~Exists(read_receipt))
        )

    @classmethod
    def count(cls, conversation: Conversation, user: User) -> int:
        return cls.unread_messages(user).filter(conversation=conversation).count()

    @classmethod
    def counts_for(cls, conversation_ids: Iterable, user: User) -> dict:
        """
        Unread counts for many conversations in a single grouped query.

        Conversations with nothing unread are present with 0.
        """
        ids = list(conversation_ids)
        if not ids:
            return {}
        rows = (
            cls.unread_messages(user)
            .filter(conversation_id__in=ids)
            .order_by()
            .values("conversation_id")
            .annotate(unread=Count("id"))
        )
        counts = {conversation_id: 0 for conversation_id in ids}
        counts.update({row["conversation_id"]: row["unread"] for row in rows})
        return counts

    @classmethod
    def total_for_user(cls, user: User) -> int:
        """Unread messages across all of the user's active conversations."""
        active = Participant.objects.filter(user=user, left_at__isnull=True).values(
            "conversation_id"
        )
        return (
            cls.unread_messages(user)
            .filter(conversation_id__in=active, conversation__is_deleted=False)
            .count()
        )

    @classmethod
    def mark_all_read(cls, conversation: Conversation, user: User) -> int:
        """
        Insert read receipts for every unread message and bump last_read_at.

        Idempotent: receipts that already exist are skipped by the unique
        (message, user, kind) constraint.

        Returns:
            Number of messages that were unread before the call
        """
        now = timezone.now()
        unread_ids = list(
            cls.unread_messages(user)
            .filter(conversation=conversation)
            .values_list("id", flat=True)
        )
        if unread_ids:
            MessageReceipt.objects.bulk_create(
                [
                    MessageReceipt(
                        message_id=message_id,
                        user=user,
                        kind=ReceiptKind.READ,
                        at=now,
                    )
                    for message_id in unread_ids
                ],
                ignore_conflicts=True,
            )

        Participant.objects.filter(
            conversation=conversation,
            user=user,
            left_at__isnull=True,
        ).update(last_read_at=now)

        logger.debug(
            f"Marked {len(unread_ids)} messages read for user {user.pk} "
            f"in conversation {conversation.id}"
        )
        return len(unread_ids)
