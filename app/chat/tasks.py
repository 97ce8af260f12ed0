"""
Celery tasks for chat app.

This module defines periodic maintenance tasks:
- Soft deleting conversations past their expiry (order chats)
- Reconciling denormalized conversation counters

Both are scheduled with django-celery-beat (see CELERY_BEAT_SCHEDULE in
config/settings.py) and are safe to run repeatedly.

Usage:
    from chat.tasks import reconcile_conversation_stats

    reconcile_conversation_stats.delay()
    reconcile_conversation_stats.delay(conversation_ids=[str(conversation.id)])
"""

from __future__ import annotations

import logging

from celery import shared_task
from django.db.models import Count, Max, Min, Q
from django.utils import timezone

from chat.models import Conversation

logger = logging.getLogger(__name__)


EXPIRY_BATCH_SIZE = 500


@shared_task(
    bind=True,
    autoretry_for=(Exception,),
    retry_backoff=True,
    retry_kwargs={"max_retries": 3},
)
def soft_delete_expired_conversations(self) -> int:
    """
    Soft delete conversations whose expires_at has passed.

    Participants get a status event and their cached listings are dropped.

    Returns:
        Number of conversations deleted
    """
    from chat.events import get_publisher

    now = timezone.now()
    expired = list(
        Conversation.objects.filter(
            is_deleted=False,
            expires_at__isnull=False,
            expires_at__lte=now,
        )
        .select_related("order_details")
        .order_by("expires_at")[:EXPIRY_BATCH_SIZE]
    )

    publisher = get_publisher()
    for conversation in expired:
        user_ids = conversation.participant_user_ids()
        conversation.soft_delete()
        publisher.conversation_changed(conversation, removed_user_ids=user_ids)

    if expired:
        logger.info(f"Soft deleted {len(expired)} expired conversations")
    return len(expired)


@shared_task(
    bind=True,
    autoretry_for=(Exception,),
    retry_backoff=True,
    retry_kwargs={"max_retries": 3},
)
def reconcile_conversation_stats(self, conversation_ids: list[str] | None = None) -> int:
    """
    Recount message_count, participant_count, first_message_at and
    last_message_at from the message and participant tables.

    The counters are maintained with F() updates on every write; this
    task repairs any drift.

    Args:
        conversation_ids: Limit to these conversations (default: all live ones)

    Returns:
        Number of conversations whose counters were corrected
    """
    queryset = Conversation.objects.filter(is_deleted=False)
    if conversation_ids:
        queryset = queryset.filter(pk__in=conversation_ids)

    rows = queryset.annotate(
        actual_messages=Count("messages", distinct=True),
        actual_participants=Count(
            "participants",
            filter=Q(participants__left_at__isnull=True),
            distinct=True,
        ),
        actual_first=Min("messages__sent_at"),
        actual_last=Max("messages__sent_at"),
    ).only("id", "message_count", "participant_count", "first_message_at", "last_message_at")

    corrected = 0
    for conversation in rows.iterator():
        expected = {
            "message_count": conversation.actual_messages,
            "participant_count": conversation.actual_participants,
            "first_message_at": conversation.actual_first,
            "last_message_at": conversation.actual_last,
        }
        changed = {
            field: value
            for field, value in expected.items()
            if getattr(conversation, field) != value
        }
        if not changed:
            continue
        Conversation.objects.filter(pk=conversation.pk).update(**changed)
        corrected += 1
        logger.warning(f"Reconciled counters of conversation {conversation.pk}: {changed}")

    logger.info(f"Reconciled {corrected} conversations")
    return corrected
