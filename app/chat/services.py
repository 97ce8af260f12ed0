"""
Chat system service layer.

This module provides the business logic for the chat system, encapsulating
all operations on conversations, participants, and messages.

Services:
    ConversationService: Conversation lifecycle (create, update, archive, delete,
        order/support state transitions, listings, stats)
    ParticipantService: Membership (add, remove, leave, join by code)
    MessageService: Message operations (append, edit, delete, pin, star,
        forward, receipts, listing)
    ReactionService: One reaction per user per message
    MessageSearchService: Text search within a conversation

Design Principles:
    - Services are stateless (use class methods)
    - Expected failures return ServiceResult.failure() with an error code
    - Unexpected failures raise exceptions
    - MessageService depends on ConversationService only through
      update_last_message(); the conversation side never imports messages
    - Membership and lifecycle changes emit chat.signals, which narrate them
      as system messages
    - Realtime broadcast, cache invalidation and notifications happen after
      the service returns (chat.events.ChatEventPublisher)

Usage:
    from chat.services import ConversationService, MessageService

    result = ConversationService.create_direct(customer, driver)
    if result.success:
        conversation = result.data

    result = MessageService.append_text(conversation, customer, "Where are you?")
    if not result.success:
        print(result.error_code)
"""

from __future__ import annotations

import string
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from django.conf import settings
from django.contrib.auth import get_user_model
from django.db import IntegrityError
from django.db.models import Count, F, Value
from django.db.models.functions import Coalesce, ExtractWeekDay, Greatest, TruncDate
from django.utils import timezone
from django.utils.crypto import get_random_string
from django_fsm import TransitionNotAllowed

from core.exceptions import ValidationError
from core.services import BaseService, ServiceResult

from chat import signals
from chat.constants import CONVERSATION_CONFIG, MESSAGE_CONFIG, REACTION_CONFIG
from chat.hub import get_hub
from chat.models import (
    MEDIA_MESSAGE_TYPES,
    Conversation,
    ConversationType,
    DeleteType,
    DirectConversationPair,
    GroupDetails,
    Message,
    MessageEditHistory,
    MessageReaction,
    MessageReceipt,
    MessageType,
    OrderDetails,
    OrderStatus,
    Participant,
    ParticipantRole,
    ReceiptKind,
    SupportDepartment,
    SupportDetails,
    SupportPriority,
    SystemAction,
    default_notification_settings,
    default_privacy_settings,
)
from chat.pagination import PageResult, clamp_limit, clamp_page, paginate
from chat.payloads import MediaPayload, TextPayload, media_type_for_mime, parse_payload
from chat.unread import UnreadTracker

if TYPE_CHECKING:
    from authentication.models import User
    from chat.hub import RealtimeHub


LISTING_RELATED = (
    "created_by",
    "last_message",
    "last_message__sender",
    "support_details",
    "order_details",
    "group_details",
)

WEEKDAYS = {
    1: "Sunday",
    2: "Monday",
    3: "Tuesday",
    4: "Wednesday",
    5: "Thursday",
    6: "Friday",
    7: "Saturday",
}


def _not_participant() -> ServiceResult:
    # Non-participants cannot tell a conversation exists
    return ServiceResult.failure(
        "Conversation not found",
        error_code="NOT_PARTICIPANT",
    )


def _as_uuid(value) -> uuid.UUID | None:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        return None


def _message_not_found() -> ServiceResult:
    return ServiceResult.failure("Message not found", error_code="MESSAGE_NOT_FOUND")


def _is_group_admin(conversation: Conversation, user: User) -> bool:
    participant = conversation.get_active_participant_for_user(user)
    return participant is not None and participant.is_admin


def _can_moderate(conversation: Conversation, user: User) -> bool:
    """Platform admins moderate everything; group/broadcast admins their own."""
    if user.is_platform_admin or user.is_staff:
        return True
    if conversation.conversation_type in (ConversationType.GROUP, ConversationType.BROADCAST):
        return _is_group_admin(conversation, user)
    return False


# =============================================================================
# Conversation Service
# =============================================================================


class ConversationService(BaseService):
    """
    Service for conversation lifecycle operations.

    Methods:
        create_direct: Create or retrieve direct conversation between two users
        create_support: Open a support conversation, auto-assigning an online agent
        create_order: Create or retrieve the chat of an order
        create_group: Create a new group conversation
        create_broadcast: Create a staff-only announcement channel
        update_last_message: Record a new message on the conversation
        update: Change title/description/image/settings/tags
        archive / unarchive / delete_conversation: Lifecycle timestamps
        mute / unmute: Notification settings shortcuts
        transition_order / transition_support: State machine transitions
        list_for_user: Paginated listing with unread counts
        get_for_user: Participant-scoped lookup
        get_detail: Conversation plus message statistics
        user_stats: Per-user overview
    """

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    @classmethod
    def _find_direct(cls, user_lower: User, user_higher: User) -> Conversation | None:
        pair = (
            DirectConversationPair.objects.select_related("conversation")
            .filter(user_lower=user_lower, user_higher=user_higher, conversation__is_deleted=False)
            .first()
        )
        return pair.conversation if pair else None

    @classmethod
    def create_direct(
        cls,
        user1: User,
        user2: User,
    ) -> ServiceResult[Conversation]:
        """
        Create or retrieve a direct conversation between two users.

        Direct conversations are unique per user pair. If a conversation
        already exists between the two users, it is returned instead of
        creating a duplicate.

        Implementation:
            1. Validate users are different
            2. Canonicalize order (lower user id first)
            3. Look up existing DirectConversationPair
            4. If not found, create conversation, pair and participants
            5. If a concurrent call inserted the pair first, the unique
               constraint fails and the winner's conversation is returned

        Error codes:
            SAME_USER: Cannot create direct conversation with yourself
        """
        if user1.pk == user2.pk:
            return ServiceResult.failure(
                "Cannot create a direct conversation with yourself",
                error_code="SAME_USER",
            )

        user_lower, user_higher = (user1, user2) if user1.pk < user2.pk else (user2, user1)

        existing = cls._find_direct(user_lower, user_higher)
        if existing is not None:
            cls.get_logger().debug(
                f"Found existing direct conversation {existing.id} "
                f"between users {user_lower.pk} and {user_higher.pk}"
            )
            return ServiceResult.success(existing)

        try:
            with cls.atomic():
                conversation = Conversation.objects.create(
                    conversation_type=ConversationType.DIRECT,
                    created_by=user1,
                    participant_count=2,
                )
                DirectConversationPair.objects.create(
                    conversation=conversation,
                    user_lower=user_lower,
                    user_higher=user_higher,
                )
                Participant.objects.bulk_create(
                    [
                        Participant(conversation=conversation, user=user_lower),
                        Participant(conversation=conversation, user=user_higher),
                    ]
                )
        except IntegrityError:
            existing = cls._find_direct(user_lower, user_higher)
            if existing is None:
                raise
            cls.get_logger().info(
                f"Concurrent direct conversation create for users "
                f"{user_lower.pk} and {user_higher.pk}, returning {existing.id}"
            )
            return ServiceResult.success(existing)

        cls.get_logger().info(
            f"Created direct conversation {conversation.id} "
            f"between users {user_lower.pk} and {user_higher.pk}"
        )
        return ServiceResult.success(conversation)

    @classmethod
    def _find_available_agent(cls, customer: User, hub: RealtimeHub) -> User | None:
        """First online admin flagged as support agent."""
        User = get_user_model()
        agents = (
            User.objects.filter(role="admin", is_support_agent=True, is_active=True)
            .exclude(pk=customer.pk)
            .order_by("pk")
        )
        for agent in agents:
            if hub.is_online(agent.pk):
                return agent
        return None

    @classmethod
    def create_support(
        cls,
        user: User,
        department: str = SupportDepartment.GENERAL,
        hub: RealtimeHub | None = None,
    ) -> ServiceResult[Conversation]:
        """
        Open a support conversation.

        An online support agent is assigned immediately when one exists
        (status becomes pending). Otherwise the conversation waits
        unassigned with status open.

        Priority is high for complaints, medium otherwise. Tags start as
        [department, "new"].

        Error codes:
            INVALID_DEPARTMENT: Unknown department
        """
        if department not in SupportDepartment.values:
            return ServiceResult.failure(
                f"Unknown department '{department}'",
                error_code="INVALID_DEPARTMENT",
            )

        agent = cls._find_available_agent(user, hub or get_hub())
        priority = (
            SupportPriority.HIGH
            if department == SupportDepartment.COMPLAINTS
            else SupportPriority.MEDIUM
        )

        with cls.atomic():
            conversation = Conversation.objects.create(
                conversation_type=ConversationType.SUPPORT,
                title=f"Support: {department}",
                created_by=user,
                tags=[department, "new"],
                participant_count=2 if agent else 1,
            )
            details = SupportDetails(
                conversation=conversation,
                department=department,
                priority=priority,
            )
            if agent is not None:
                details.assign(agent)
            details.save()

            Participant.objects.create(conversation=conversation, user=user)
            if agent is not None:
                Participant.objects.create(conversation=conversation, user=agent)

        cls.get_logger().info(
            f"Created support conversation {conversation.id} for user {user.pk} "
            f"(department={department}, agent={agent.pk if agent else None})"
        )
        return ServiceResult.success(conversation)

    @classmethod
    def create_order(
        cls,
        order_id: str,
        user: User,
        driver: User | None = None,
        restaurant_id: str = "",
    ) -> ServiceResult[Conversation]:
        """
        Create or retrieve the chat of an order.

        At most one conversation exists per order id; repeated calls return
        it. Participants are the customer and, when assigned, the driver.
        The chat expires 30 days after creation.

        Error codes:
            VALIDATION_ERROR: order_id missing
        """
        validation = cls.validate_required(order_id=order_id)
        if validation is not None:
            return validation
        order_id = str(order_id).strip()

        existing = OrderDetails.objects.select_related("conversation").filter(order_id=order_id).first()
        if existing is not None:
            return ServiceResult.success(existing.conversation)

        ttl_days = getattr(
            settings, "CHAT_ORDER_CHAT_TTL_DAYS", CONVERSATION_CONFIG.ORDER_CHAT_TTL_DAYS
        )
        members = [user]
        if driver is not None and driver.pk != user.pk:
            members.append(driver)

        try:
            with cls.atomic():
                conversation = Conversation.objects.create(
                    conversation_type=ConversationType.ORDER,
                    title=f"Order chat #{order_id[-6:]}",
                    created_by=user,
                    expires_at=timezone.now() + timedelta(days=ttl_days),
                    participant_count=len(members),
                )
                OrderDetails.objects.create(
                    conversation=conversation,
                    order_id=order_id,
                    restaurant_id=restaurant_id or "",
                    driver=driver,
                )
                Participant.objects.bulk_create(
                    [Participant(conversation=conversation, user=member) for member in members]
                )
        except IntegrityError:
            existing = OrderDetails.objects.select_related("conversation").filter(order_id=order_id).first()
            if existing is None:
                raise
            return ServiceResult.success(existing.conversation)

        cls.get_logger().info(f"Created order conversation {conversation.id} for order {order_id}")
        return ServiceResult.success(conversation)

    @classmethod
    def _generate_join_code(cls) -> str:
        alphabet = string.ascii_uppercase + string.digits
        while True:
            code = get_random_string(CONVERSATION_CONFIG.JOIN_CODE_LENGTH, alphabet)
            if not GroupDetails.objects.filter(join_code=code).exists():
                return code

    @classmethod
    def create_group(
        cls,
        creator: User,
        title: str,
        description: str = "",
        participants: list[User] | None = None,
        is_public: bool = False,
        max_participants: int | None = None,
    ) -> ServiceResult[Conversation]:
        """
        Create a new group conversation.

        The creator becomes the only admin. Other participants join as
        members. Public groups get a 6-character join code.

        Error codes:
            TITLE_REQUIRED: Group title cannot be empty
            INVALID_CAPACITY: max_participants below 2
            CONVERSATION_FULL: More participants than max_participants
        """
        title = title.strip() if title else ""
        if not title:
            return ServiceResult.failure("Group title is required", error_code="TITLE_REQUIRED")

        max_participants = max_participants or CONVERSATION_CONFIG.DEFAULT_MAX_PARTICIPANTS
        if max_participants < 2:
            return ServiceResult.failure(
                "A group needs room for at least 2 participants",
                error_code="INVALID_CAPACITY",
            )

        members = []
        seen = {creator.pk}
        for member in participants or []:
            if member.pk not in seen:
                seen.add(member.pk)
                members.append(member)

        if 1 + len(members) > max_participants:
            return ServiceResult.failure(
                f"Group cannot have more than {max_participants} participants",
                error_code="CONVERSATION_FULL",
            )

        with cls.atomic():
            conversation = Conversation.objects.create(
                conversation_type=ConversationType.GROUP,
                title=title,
                description=description or "",
                created_by=creator,
                participant_count=1 + len(members),
            )
            GroupDetails.objects.create(
                conversation=conversation,
                is_public=is_public,
                max_participants=max_participants,
                join_code=cls._generate_join_code() if is_public else None,
            )
            Participant.objects.create(
                conversation=conversation,
                user=creator,
                role=ParticipantRole.ADMIN,
            )
            Participant.objects.bulk_create(
                [
                    Participant(
                        conversation=conversation,
                        user=member,
                        role=ParticipantRole.MEMBER,
                    )
                    for member in members
                ]
            )

        signals.conversation_created.send(
            sender=Conversation, conversation=conversation, created_by=creator
        )
        cls.get_logger().info(
            f"Created group {conversation.id} with {1 + len(members)} participants"
        )
        return ServiceResult.success(conversation)

    @classmethod
    def create_broadcast(
        cls,
        creator: User,
        title: str,
        recipients: list[User] | None = None,
        description: str = "",
    ) -> ServiceResult[Conversation]:
        """
        Create a one-to-many announcement channel.

        Only staff may create broadcasts and only the creator may post.

        Error codes:
            PERMISSION_DENIED: Creator is not staff
            TITLE_REQUIRED: Title cannot be empty
        """
        if not (creator.is_platform_admin or creator.is_staff):
            return ServiceResult.failure(
                "Only staff can create broadcasts",
                error_code="PERMISSION_DENIED",
            )
        title = title.strip() if title else ""
        if not title:
            return ServiceResult.failure("Broadcast title is required", error_code="TITLE_REQUIRED")

        members = {member.pk: member for member in recipients or [] if member.pk != creator.pk}

        with cls.atomic():
            conversation = Conversation.objects.create(
                conversation_type=ConversationType.BROADCAST,
                title=title,
                description=description or "",
                created_by=creator,
                participant_count=1 + len(members),
                privacy_settings={**default_privacy_settings(), "allow_new_members": False},
            )
            Participant.objects.create(
                conversation=conversation,
                user=creator,
                role=ParticipantRole.ADMIN,
            )
            Participant.objects.bulk_create(
                [
                    Participant(
                        conversation=conversation,
                        user=member,
                        role=ParticipantRole.MEMBER,
                    )
                    for member in members.values()
                ]
            )

        signals.conversation_created.send(
            sender=Conversation, conversation=conversation, created_by=creator
        )
        cls.get_logger().info(
            f"Created broadcast {conversation.id} for {len(members)} recipients"
        )
        return ServiceResult.success(conversation)

    # ------------------------------------------------------------------
    # Message bookkeeping
    # ------------------------------------------------------------------

    @classmethod
    def update_last_message(
        cls,
        conversation: Conversation,
        message: Message,
    ) -> ServiceResult[Conversation]:
        """
        Record a new message on its conversation.

        A single UPDATE statement sets last_message, moves last_activity
        forward (never backward), increments message_count by exactly one
        and maintains first/last message timestamps.
        """
        sent_at = Value(message.sent_at)
        Conversation.objects.filter(pk=conversation.pk).update(
            last_message=message,
            last_activity=Greatest(F("last_activity"), sent_at),
            message_count=F("message_count") + 1,
            first_message_at=Coalesce(F("first_message_at"), sent_at),
            last_message_at=Greatest(Coalesce(F("last_message_at"), sent_at), sent_at),
            updated_at=timezone.now(),
        )
        conversation.refresh_from_db(
            fields=[
                "last_message",
                "last_activity",
                "message_count",
                "first_message_at",
                "last_message_at",
                "updated_at",
            ]
        )
        return ServiceResult.success(conversation)

    # ------------------------------------------------------------------
    # Lookups and listings
    # ------------------------------------------------------------------

    @classmethod
    def get_for_user(cls, conversation_id, user: User) -> ServiceResult[Conversation]:
        """
        Fetch a conversation the user participates in.

        Platform admins may open any conversation. Everyone else gets
        NOT_FOUND for conversations they are not part of.
        """
        conversation = (
            Conversation.objects.filter(pk=_as_uuid(conversation_id), is_deleted=False)
            .select_related(*LISTING_RELATED)
            .first()
        )
        if conversation is None:
            return ServiceResult.failure("Conversation not found", error_code="NOT_FOUND")
        if not user.is_platform_admin and conversation.get_active_participant_for_user(user) is None:
            return ServiceResult.failure("Conversation not found", error_code="NOT_FOUND")
        return ServiceResult.success(conversation)

    @classmethod
    def list_for_user(
        cls,
        user: User,
        page: int = 1,
        limit: int = CONVERSATION_CONFIG.DEFAULT_PAGE_SIZE,
        conversation_type: str | None = None,
        include_archived: bool = False,
        include_expired: bool = False,
    ) -> ServiceResult[PageResult]:
        """
        List the user's conversations, most recent activity first.

        Each returned conversation carries an ``unread_count`` attribute,
        computed for the whole page in one query.

        Error codes:
            INVALID_TYPE: Unknown conversation type filter
        """
        if conversation_type and conversation_type not in ConversationType.values:
            return ServiceResult.failure(
                f"Unknown conversation type '{conversation_type}'",
                error_code="INVALID_TYPE",
            )

        queryset = (
            Conversation.objects.for_user(user)
            .visible(include_archived=include_archived, include_expired=include_expired)
            .select_related(*LISTING_RELATED)
            .order_by("-last_activity", "-id")
        )
        if conversation_type:
            queryset = queryset.filter(conversation_type=conversation_type)

        result = paginate(
            queryset,
            clamp_page(page),
            clamp_limit(limit, CONVERSATION_CONFIG.DEFAULT_PAGE_SIZE, CONVERSATION_CONFIG.MAX_PAGE_SIZE),
        )
        counts = UnreadTracker.counts_for([c.id for c in result.items], user)
        for conversation in result.items:
            conversation.unread_count = counts.get(conversation.id, 0)
        return ServiceResult.success(result)

    @classmethod
    def get_detail(cls, conversation: Conversation, user: User) -> ServiceResult[dict]:
        """
        Conversation plus statistics.

        Returns:
            {
                "conversation": Conversation,
                "unread_count": int,
                "stats": {
                    "message_count": int,
                    "participant_count": int,
                    "messages_by_type": {type: count},
                    "top_senders": [{"user_id", "name", "count"}],
                    "activity": [{"date": "YYYY-MM-DD", "count": int}],
                },
            }
        """
        messages = conversation.messages.filter(is_deleted=False).order_by()

        by_type = dict(
            messages.values_list("message_type").annotate(count=Count("id"))
        )
        top_senders = [
            {"user_id": row["sender_id"], "name": row["sender__full_name"], "count": row["count"]}
            for row in messages.filter(sender__isnull=False)
            .values("sender_id", "sender__full_name")
            .annotate(count=Count("id"))
            .order_by("-count", "sender_id")[: CONVERSATION_CONFIG.TOP_SENDERS]
        ]
        since = timezone.now() - timedelta(days=CONVERSATION_CONFIG.ACTIVE_WINDOW_DAYS)
        activity = [
            {"date": row["day"].isoformat(), "count": row["count"]}
            for row in messages.filter(sent_at__gte=since)
            .annotate(day=TruncDate("sent_at"))
            .values("day")
            .annotate(count=Count("id"))
            .order_by("day")
        ]

        return ServiceResult.success(
            {
                "conversation": conversation,
                "unread_count": UnreadTracker.count(conversation, user),
                "stats": {
                    "message_count": conversation.message_count,
                    "participant_count": conversation.participant_count,
                    "messages_by_type": by_type,
                    "top_senders": top_senders,
                    "activity": activity,
                },
            }
        )

    @classmethod
    def user_stats(cls, user: User) -> ServiceResult[dict]:
        """
        Overview of a user's chat usage.

        Returns:
            {
                "overview": {total_conversations, unread_messages, active_chats, total_messages},
                "by_type": {type: count},
                "recent_conversations": [{id, type, title, last_activity}],
                "usage": {storage_used, average_messages_per_day, busiest_day},
            }
        """
        now = timezone.now()
        conversations = Conversation.objects.for_user(user).filter(is_deleted=False)
        sent = Message.objects.filter(sender=user, is_deleted=False)

        total_messages = sent.count()
        by_type = dict(
            conversations.order_by()
            .values_list("conversation_type")
            .annotate(count=Count("id", distinct=True))
        )
        recent = [
            {
                "id": str(conversation.id),
                "type": conversation.conversation_type,
                "title": conversation.title,
                "last_activity": conversation.last_activity,
            }
            for conversation in conversations.order_by("-last_activity")[
                : CONVERSATION_CONFIG.RECENT_CONVERSATIONS
            ]
        ]

        storage_used = sum(
            (content or {}).get("size") or 0
            for content in sent.filter(message_type__in=MEDIA_MESSAGE_TYPES).values_list(
                "content", flat=True
            )
        )
        days_active = max(1, (now - user.date_joined).days)
        busiest = (
            sent.annotate(weekday=ExtractWeekDay("sent_at"))
            .order_by()
            .values("weekday")
            .annotate(count=Count("id"))
            .order_by("-count", "weekday")
            .first()
        )

        return ServiceResult.success(
            {
                "overview": {
                    "total_conversations": conversations.count(),
                    "unread_messages": UnreadTracker.total_for_user(user),
                    "active_chats": conversations.filter(
                        last_activity__gte=now - timedelta(days=CONVERSATION_CONFIG.ACTIVE_WINDOW_DAYS)
                    ).count(),
                    "total_messages": total_messages,
                },
                "by_type": by_type,
                "recent_conversations": recent,
                "usage": {
                    "storage_used": storage_used,
                    "average_messages_per_day": round(total_messages / days_active, 2),
                    "busiest_day": WEEKDAYS.get(busiest["weekday"]) if busiest else None,
                },
            }
        )

    # ------------------------------------------------------------------
    # Updates
    # ------------------------------------------------------------------

    @classmethod
    def update(
        cls,
        conversation: Conversation,
        actor: User,
        fields: dict[str, Any],
    ) -> ServiceResult[Conversation]:
        """
        Update conversation attributes.

        Allowed fields: title, description, image, notification_settings,
        privacy_settings, tags. Settings dicts are merged into the current
        values; unknown setting keys are ignored.

        Error codes:
            NOT_PARTICIPANT: Actor is not an active participant
            INVALID_FIELDS: Fields outside the allowed set
            PERMISSION_DENIED: Non-admin changing group title/description/image
            VALIDATION_ERROR: Malformed value
        """
        participant = conversation.get_active_participant_for_user(actor)
        if participant is None:
            return _not_participant()

        unknown = set(fields) - set(CONVERSATION_CONFIG.UPDATABLE_FIELDS)
        if unknown:
            return ServiceResult.failure(
                "Some fields cannot be updated",
                error_code="INVALID_FIELDS",
                errors={name: ["This field cannot be updated."] for name in sorted(unknown)},
            )

        restricted = set(fields) & set(CONVERSATION_CONFIG.ADMIN_ONLY_FIELDS)
        if (
            restricted
            and conversation.conversation_type in (ConversationType.GROUP, ConversationType.BROADCAST)
            and not participant.is_admin
        ):
            return ServiceResult.failure(
                "Only admins can change the group profile",
                error_code="PERMISSION_DENIED",
            )

        errors: dict[str, list[str]] = {}
        if "title" in fields:
            title = (fields["title"] or "").strip()
            if len(title) > 100:
                errors["title"] = ["Ensure this field has no more than 100 characters."]
            elif not title and conversation.conversation_type == ConversationType.GROUP:
                errors["title"] = ["Group title is required."]
            else:
                conversation.title = title
        if "description" in fields:
            conversation.description = (fields["description"] or "").strip()[:500]
        if "image" in fields:
            conversation.image = fields["image"] or ""
        if "tags" in fields:
            tags = fields["tags"]
            if not isinstance(tags, list) or not all(isinstance(tag, str) for tag in tags):
                errors["tags"] = ["Tags must be a list of strings."]
            else:
                conversation.tags = tags
        for name, defaults in (
            ("notification_settings", default_notification_settings()),
            ("privacy_settings", default_privacy_settings()),
        ):
            if name in fields:
                value = fields[name]
                if not isinstance(value, dict):
                    errors[name] = ["Expected an object."]
                    continue
                merged = {**defaults, **(getattr(conversation, name) or {})}
                merged.update({key: val for key, val in value.items() if key in defaults})
                setattr(conversation, name, merged)

        if errors:
            conversation.refresh_from_db()
            return ServiceResult.failure(
                "Invalid conversation update",
                error_code="VALIDATION_ERROR",
                errors=errors,
            )

        conversation.save(update_fields=[*fields, "updated_at"])

        if restricted:
            signals.conversation_changed.send(
                sender=Conversation,
                conversation=conversation,
                action=SystemAction.CONVERSATION_UPDATED,
                data={"fields": sorted(restricted), "changed_by_id": str(actor.pk)},
            )

        cls.get_logger().info(
            f"User {actor.pk} updated {sorted(fields)} on conversation {conversation.id}"
        )
        return ServiceResult.success(conversation)

    @classmethod
    def mute(
        cls,
        conversation: Conversation,
        user: User,
        hours: int | None = None,
    ) -> ServiceResult[Conversation]:
        """Mute notifications, indefinitely or for a number of hours."""
        if conversation.get_active_participant_for_user(user) is None:
            return _not_participant()
        if hours is not None and hours <= 0:
            return ServiceResult.failure(
                "Mute duration must be positive",
                error_code="VALIDATION_ERROR",
            )

        mute_until = timezone.now() + timedelta(hours=hours) if hours else None
        conversation.notification_settings = {
            **default_notification_settings(),
            **(conversation.notification_settings or {}),
            "mute": True,
            "mute_until": mute_until.isoformat() if mute_until else None,
        }
        conversation.save(update_fields=["notification_settings", "updated_at"])
        return ServiceResult.success(conversation)

    @classmethod
    def unmute(cls, conversation: Conversation, user: User) -> ServiceResult[Conversation]:
        if conversation.get_active_participant_for_user(user) is None:
            return _not_participant()
        conversation.notification_settings = {
            **default_notification_settings(),
            **(conversation.notification_settings or {}),
            "mute": False,
            "mute_until": None,
        }
        conversation.save(update_fields=["notification_settings", "updated_at"])
        return ServiceResult.success(conversation)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @classmethod
    def archive(cls, conversation: Conversation, user: User) -> ServiceResult[Conversation]:
        """Hide from default listings. Idempotent."""
        if conversation.get_active_participant_for_user(user) is None:
            return _not_participant()
        if conversation.archived_at is None:
            conversation.archived_at = timezone.now()
            conversation.save(update_fields=["archived_at", "updated_at"])
            cls.get_logger().info(f"Archived conversation {conversation.id}")
        return ServiceResult.success(conversation)

    @classmethod
    def unarchive(cls, conversation: Conversation, user: User) -> ServiceResult[Conversation]:
        if conversation.get_active_participant_for_user(user) is None:
            return _not_participant()
        if conversation.archived_at is not None:
            conversation.archived_at = None
            conversation.save(update_fields=["archived_at", "updated_at"])
            cls.get_logger().info(f"Unarchived conversation {conversation.id}")
        return ServiceResult.success(conversation)

    @classmethod
    def delete_conversation(
        cls,
        conversation: Conversation,
        user: User,
    ) -> ServiceResult[Conversation]:
        """
        Soft delete a conversation.

        Groups and broadcasts can only be deleted by their admins. Other
        types by any participant. Platform admins can delete anything.
        Deleting a direct conversation releases its user pair, so the same
        two users can start a new one.

        Error codes:
            NOT_PARTICIPANT: User is not an active participant
            PERMISSION_DENIED: User is not an admin of the group
        """
        participant = conversation.get_active_participant_for_user(user)
        if participant is None and not user.is_platform_admin:
            return _not_participant()

        if (
            conversation.conversation_type in (ConversationType.GROUP, ConversationType.BROADCAST)
            and not _can_moderate(conversation, user)
        ):
            return ServiceResult.failure(
                "Only admins can delete this conversation",
                error_code="PERMISSION_DENIED",
            )

        with cls.atomic():
            conversation.soft_delete()
            # Frees the user pair for a new direct conversation
            DirectConversationPair.objects.filter(conversation=conversation).delete()
        cls.get_logger().info(f"User {user.pk} deleted conversation {conversation.id}")
        return ServiceResult.success(conversation)

    @classmethod
    def transition_order(
        cls,
        conversation: Conversation,
        actor: User,
        status: str,
    ) -> ServiceResult[Conversation]:
        """
        Move an order chat to completed or cancelled.

        Both states are terminal and shorten expires_at to 7 days from now.

        Error codes:
            INVALID_OPERATION: Not an order conversation
            NOT_PARTICIPANT: Actor is not in the order chat
            INVALID_STATUS: Target is not completed/cancelled
            INVALID_TRANSITION: Order is already closed
        """
        if conversation.conversation_type != ConversationType.ORDER:
            return ServiceResult.failure(
                "Not an order conversation",
                error_code="INVALID_OPERATION",
            )

        details = conversation.order_details
        is_member = (
            conversation.get_active_participant_for_user(actor) is not None
            or details.driver_id == actor.pk
        )
        if not (is_member or actor.is_platform_admin):
            return _not_participant()

        transitions = {
            OrderStatus.COMPLETED: details.complete,
            OrderStatus.CANCELLED: details.cancel,
        }
        if status not in transitions:
            return ServiceResult.failure(
                f"Cannot move an order chat to '{status}'",
                error_code="INVALID_STATUS",
            )

        try:
            with cls.atomic():
                transitions[status]()
                details.save()
        except TransitionNotAllowed:
            return ServiceResult.failure(
                f"Order chat is already {details.status}",
                error_code="INVALID_TRANSITION",
            )

        signals.conversation_changed.send(
            sender=Conversation,
            conversation=conversation,
            action=SystemAction.ORDER_STATUS_CHANGED,
            data={"order_id": details.order_id, "status": details.status},
        )
        cls.get_logger().info(f"Order chat {conversation.id} is now {details.status}")
        return ServiceResult.success(conversation)

    @classmethod
    def transition_support(
        cls,
        conversation: Conversation,
        actor: User,
        action: str,
        agent: User | None = None,
    ) -> ServiceResult[Conversation]:
        """
        Apply a support state machine transition.

        Actions: assign (requires agent), resolve, close, reopen.
        Staff may apply any action; the customer may close and reopen.

        Error codes:
            INVALID_OPERATION: Not a support conversation, or unknown action
            NOT_PARTICIPANT: Actor is not in the conversation
            PERMISSION_DENIED: Customer attempting a staff-only action
            VALIDATION_ERROR: assign without an agent
            INVALID_TRANSITION: Action not allowed from the current status
        """
        if conversation.conversation_type != ConversationType.SUPPORT:
            return ServiceResult.failure(
                "Not a support conversation",
                error_code="INVALID_OPERATION",
            )

        is_staff = actor.is_platform_admin or actor.is_staff
        if not is_staff and conversation.get_active_participant_for_user(actor) is None:
            return _not_participant()

        if action not in ("assign", "resolve", "close", "reopen"):
            return ServiceResult.failure(
                f"Unknown support action '{action}'",
                error_code="INVALID_OPERATION",
            )
        if action in ("assign", "resolve") and not is_staff:
            return ServiceResult.failure(
                "Only support staff can do this",
                error_code="PERMISSION_DENIED",
            )
        if action == "assign" and agent is None:
            return ServiceResult.failure(
                "An agent is required",
                error_code="VALIDATION_ERROR",
                errors={"agent": ["This field is required."]},
            )

        details = conversation.support_details
        try:
            with cls.atomic():
                if action == "assign":
                    details.assign(agent)
                    if conversation.get_active_participant_for_user(agent) is None:
                        Participant.objects.create(conversation=conversation, user=agent)
                        Conversation.objects.filter(pk=conversation.pk).update(
                            participant_count=F("participant_count") + 1
                        )
                else:
                    getattr(details, action)()
                details.save()
        except TransitionNotAllowed:
            return ServiceResult.failure(
                f"Cannot {action} a {details.status} support conversation",
                error_code="INVALID_TRANSITION",
            )

        if action == "assign":
            signals.conversation_changed.send(
                sender=Conversation,
                conversation=conversation,
                action=SystemAction.SUPPORT_ASSIGNED,
                data={"agent_id": str(agent.pk)},
            )
        else:
            signals.conversation_changed.send(
                sender=Conversation,
                conversation=conversation,
                action=SystemAction.SUPPORT_STATUS_CHANGED,
                data={"status": details.status},
            )
        conversation.refresh_from_db(fields=["participant_count"])
        return ServiceResult.success(conversation)


# =============================================================================
# Participant Service
# =============================================================================


class ParticipantService(BaseService):
    """
    Service for participant management.

    Methods:
        add_participant: Add a user (group/broadcast admins only)
        remove_participant: Remove a user, or leave when removing yourself
        leave: Leave a conversation voluntarily
        join_by_code: Join a public group with its join code

    Direct conversations have fixed membership.
    """

    @classmethod
    def _add(
        cls,
        conversation: Conversation,
        user: User,
        added_by: User | None,
    ) -> ServiceResult[Participant]:
        role = (
            ParticipantRole.MEMBER
            if conversation.conversation_type in (ConversationType.GROUP, ConversationType.BROADCAST)
            else None
        )
        try:
            with cls.atomic():
                locked = Conversation.objects.select_for_update().get(pk=conversation.pk)

                if conversation.get_active_participant_for_user(user) is not None:
                    return ServiceResult.failure(
                        "User is already a participant",
                        error_code="ALREADY_PARTICIPANT",
                    )

                if locked.conversation_type == ConversationType.GROUP:
                    capacity = locked.group_details.max_participants
                    if locked.get_active_participants().count() >= capacity:
                        return ServiceResult.failure(
                            f"Conversation is full ({capacity} participants)",
                            error_code="CONVERSATION_FULL",
                        )

                participant = Participant.objects.create(
                    conversation=conversation,
                    user=user,
                    role=role,
                )
                Conversation.objects.filter(pk=conversation.pk).update(
                    participant_count=F("participant_count") + 1
                )
        except IntegrityError:
            return ServiceResult.failure(
                "User is already a participant",
                error_code="ALREADY_PARTICIPANT",
            )

        conversation.refresh_from_db(fields=["participant_count"])
        signals.participant_added.send(
            sender=Conversation,
            conversation=conversation,
            user=user,
            added_by=added_by,
        )
        cls.get_logger().info(f"Added user {user.pk} to conversation {conversation.id}")
        return ServiceResult.success(participant)

    @classmethod
    def add_participant(
        cls,
        conversation: Conversation,
        actor: User,
        user: User,
    ) -> ServiceResult[Participant]:
        """
        Add a user to a conversation.

        Error codes:
            NOT_PARTICIPANT: Actor is not an active participant
            INVALID_OPERATION: Direct conversations have fixed membership
            PERMISSION_DENIED: Only group/broadcast admins can add members
            ALREADY_PARTICIPANT: User is already an active participant
            CONVERSATION_FULL: Group is at max_participants
        """
        if conversation.conversation_type == ConversationType.DIRECT:
            return ServiceResult.failure(
                "Direct conversations have fixed membership",
                error_code="INVALID_OPERATION",
            )

        actor_participant = conversation.get_active_participant_for_user(actor)
        if actor_participant is None and not actor.is_platform_admin:
            return _not_participant()

        if conversation.conversation_type in (ConversationType.GROUP, ConversationType.BROADCAST):
            if not _can_moderate(conversation, actor):
                return ServiceResult.failure(
                    "Only admins can add participants",
                    error_code="PERMISSION_DENIED",
                )

        return cls._add(conversation, user, added_by=actor)

    @classmethod
    def join_by_code(cls, user: User, code: str) -> ServiceResult[Participant]:
        """
        Join a public group by its join code.

        Error codes:
            NOT_FOUND: No public group with this code
            PERMISSION_DENIED: Group does not accept new members
            ALREADY_PARTICIPANT, CONVERSATION_FULL
        """
        code = (code or "").strip().upper()
        details = (
            GroupDetails.objects.select_related("conversation")
            .filter(join_code=code, is_public=True, conversation__is_deleted=False)
            .first()
            if code
            else None
        )
        if details is None:
            return ServiceResult.failure("Invalid join code", error_code="NOT_FOUND")

        conversation = details.conversation
        if not conversation.allows("allow_new_members"):
            return ServiceResult.failure(
                "This group is not accepting new members",
                error_code="PERMISSION_DENIED",
            )
        return cls._add(conversation, user, added_by=None)

    @classmethod
    def _deactivate(
        cls,
        participant: Participant,
        removed_by: User | None,
        voluntary: bool,
    ) -> None:
        participant.left_at = timezone.now()
        participant.left_voluntarily = voluntary
        participant.removed_by = removed_by
        participant.save(update_fields=["left_at", "left_voluntarily", "removed_by", "updated_at"])
        Conversation.objects.filter(
            pk=participant.conversation_id,
            participant_count__gt=0,
        ).update(participant_count=F("participant_count") - 1)

    @classmethod
    def remove_participant(
        cls,
        conversation: Conversation,
        actor: User,
        user: User,
    ) -> ServiceResult[Participant]:
        """
        Remove a user from a conversation.

        Removing yourself is the same as leave(). Otherwise only group and
        broadcast admins (or platform admins) may remove members.

        Error codes:
            INVALID_OPERATION: Direct conversations have fixed membership
            NOT_PARTICIPANT: Actor or target is not an active participant
            PERMISSION_DENIED: Actor cannot remove others
        """
        if actor.pk == user.pk:
            return cls.leave(conversation, user)

        if conversation.conversation_type == ConversationType.DIRECT:
            return ServiceResult.failure(
                "Direct conversations have fixed membership",
                error_code="INVALID_OPERATION",
            )

        if conversation.get_active_participant_for_user(actor) is None and not actor.is_platform_admin:
            return _not_participant()

        if not _can_moderate(conversation, actor):
            return ServiceResult.failure(
                "Only admins can remove participants",
                error_code="PERMISSION_DENIED",
            )

        target = conversation.get_active_participant_for_user(user)
        if target is None:
            return ServiceResult.failure(
                "User is not a participant",
                error_code="NOT_PARTICIPANT",
            )

        with cls.atomic():
            cls._deactivate(target, removed_by=actor, voluntary=False)
            cls._ensure_admin(conversation)

        conversation.refresh_from_db(fields=["participant_count"])
        signals.participant_removed.send(
            sender=Conversation,
            conversation=conversation,
            user=user,
            removed_by=actor,
            voluntary=False,
        )
        cls.get_logger().info(
            f"User {actor.pk} removed user {user.pk} from conversation {conversation.id}"
        )
        return ServiceResult.success(target)

    @classmethod
    def leave(cls, conversation: Conversation, user: User) -> ServiceResult[Participant]:
        """
        Leave a conversation.

        When the last group admin leaves, the longest-standing member is
        promoted so the group always has an admin.

        Error codes:
            INVALID_OPERATION: Direct conversations have fixed membership
            NOT_PARTICIPANT: User is not an active participant
        """
        if conversation.conversation_type == ConversationType.DIRECT:
            return ServiceResult.failure(
                "Direct conversations have fixed membership",
                error_code="INVALID_OPERATION",
            )

        participant = conversation.get_active_participant_for_user(user)
        if participant is None:
            return _not_participant()

        with cls.atomic():
            cls._deactivate(participant, removed_by=None, voluntary=True)
            cls._ensure_admin(conversation)

        conversation.refresh_from_db(fields=["participant_count"])
        signals.participant_removed.send(
            sender=Conversation,
            conversation=conversation,
            user=user,
            removed_by=None,
            voluntary=True,
        )
        cls.get_logger().info(f"User {user.pk} left conversation {conversation.id}")
        return ServiceResult.success(participant)

    @classmethod
    def _ensure_admin(cls, conversation: Conversation) -> None:
        if conversation.conversation_type != ConversationType.GROUP:
            return
        active = conversation.get_active_participants()
        if active.filter(role=ParticipantRole.ADMIN).exists():
            return
        successor = active.order_by("joined_at", "id").first()
        if successor is not None:
            successor.role = ParticipantRole.ADMIN
            successor.save(update_fields=["role", "updated_at"])
            cls.get_logger().info(
                f"Promoted user {successor.user_id} to admin of group {conversation.id}"
            )


# =============================================================================
# Message Service
# =============================================================================


class MessageService(BaseService):
    """
    Service for message operations.

    Methods:
        append_text / append_media / append_content / append_system: Create
        forward: Copy a message into another conversation
        edit: Replace text, keeping the last 10 prior payloads
        soft_delete: Hide a message (sender, admin or system delete)
        pin / unpin / toggle_star
        mark_delivered / mark_read / mark_all_read: Receipts
        list_messages: Paginated listing, returned oldest to newest
        unread_count: Delegates to UnreadTracker
        get_for_user: Participant-scoped lookup
    """

    @classmethod
    def _check_can_post(cls, conversation: Conversation, sender: User) -> ServiceResult | None:
        if conversation.get_active_participant_for_user(sender) is None:
            return _not_participant()
        if not conversation.is_active:
            return ServiceResult.failure(
                "Conversation is no longer active",
                error_code="CONVERSATION_INACTIVE",
            )
        if conversation.is_broadcast and conversation.created_by_id != sender.pk:
            return ServiceResult.failure(
                "Only the broadcaster can post here",
                error_code="PERMISSION_DENIED",
            )
        return None

    @classmethod
    def _resolve_reply(cls, conversation: Conversation, reply_to) -> Message | ServiceResult | None:
        if reply_to is None:
            return None
        if not isinstance(reply_to, Message):
            reply_to = Message.objects.filter(pk=_as_uuid(reply_to)).first()
        if reply_to is None or reply_to.conversation_id != conversation.pk:
            return ServiceResult.failure(
                "Reply target must be a message in this conversation",
                error_code="INVALID_REPLY",
            )
        return reply_to

    @classmethod
    def _create(
        cls,
        conversation: Conversation,
        sender: User | None,
        message_type: str,
        content: dict,
        reply_to=None,
        mentions=None,
        forwarded_from: Message | None = None,
    ) -> ServiceResult[Message]:
        reply = cls._resolve_reply(conversation, reply_to)
        if isinstance(reply, ServiceResult):
            return reply

        with cls.atomic():
            message = Message.objects.create(
                conversation=conversation,
                sender=sender,
                message_type=message_type,
                content=content,
                reply_to=reply,
                forwarded_from=forwarded_from,
            )
            if mentions:
                mention_ids = [getattr(m, "pk", m) for m in mentions]
                valid_ids = conversation.get_active_participants().filter(
                    user_id__in=mention_ids
                ).values_list("user_id", flat=True)
                message.mentions.set(list(valid_ids))

        ConversationService.update_last_message(conversation, message)
        message.conversation = conversation
        return ServiceResult.success(message)

    @classmethod
    def append_text(
        cls,
        conversation: Conversation,
        sender: User,
        text: str,
        reply_to=None,
        mentions=None,
    ) -> ServiceResult[Message]:
        """
        Send a text message.

        Args:
            conversation: Target conversation (must be active)
            sender: Active participant sending the message
            text: Body, trimmed; 1 to 5000 characters
            reply_to: Optional Message (or id) in the same conversation
            mentions: Optional users (or ids); non-participants are dropped

        Error codes:
            NOT_PARTICIPANT: Sender is not an active participant
            CONVERSATION_INACTIVE: Conversation expired, archived or closed
            PERMISSION_DENIED: Non-broadcaster posting to a broadcast
            EMPTY_CONTENT: Text empty after trimming
            CONTENT_TOO_LONG: Text over 5000 characters
            INVALID_REPLY: reply_to is not in this conversation
        """
        failure = cls._check_can_post(conversation, sender)
        if failure is not None:
            return failure

        try:
            payload = TextPayload.parse(text)
        except ValidationError as e:
            return ServiceResult.from_exception(e)

        result = cls._create(
            conversation,
            sender,
            MessageType.TEXT,
            payload.to_content(),
            reply_to=reply_to,
            mentions=mentions,
        )
        if result.success:
            cls.get_logger().info(
                f"User {sender.pk} sent message {result.data.id} to conversation {conversation.id}"
            )
        return result

    @classmethod
    def _check_media_allowed(cls, conversation: Conversation, message_type: str) -> ServiceResult | None:
        if not conversation.allows("allow_media"):
            return ServiceResult.failure(
                "Media is not allowed in this conversation",
                error_code="MEDIA_NOT_ALLOWED",
            )
        if message_type == MessageType.AUDIO and not conversation.allows("allow_voice_messages"):
            return ServiceResult.failure(
                "Voice messages are not allowed in this conversation",
                error_code="MEDIA_NOT_ALLOWED",
            )
        return None

    @classmethod
    def append_media(
        cls,
        conversation: Conversation,
        sender: User,
        descriptor: dict,
        message_type: str | None = None,
        reply_to=None,
    ) -> ServiceResult[Message]:
        """
        Send an uploaded file as an image/video/audio/file message.

        The descriptor {url, filename, size, mime_type} comes from the
        upload collaborator and is stored verbatim. Without an explicit
        type, the type is derived from the MIME prefix.

        Error codes:
            INVALID_MESSAGE_TYPE: Type is not a media type
            MEDIA_NOT_ALLOWED: Privacy settings forbid media (or voice)
            INVALID_PAYLOAD: Descriptor missing url
        """
        failure = cls._check_can_post(conversation, sender)
        if failure is not None:
            return failure

        try:
            payload = MediaPayload.parse(descriptor)
        except ValidationError as e:
            return ServiceResult.from_exception(e)

        message_type = message_type or media_type_for_mime(payload.mime_type)
        if message_type not in MEDIA_MESSAGE_TYPES:
            return ServiceResult.failure(
                f"'{message_type}' is not a media message type",
                error_code="INVALID_MESSAGE_TYPE",
            )

        failure = cls._check_media_allowed(conversation, message_type)
        if failure is not None:
            return failure

        return cls._create(
            conversation, sender, message_type, payload.to_content(), reply_to=reply_to
        )

    @classmethod
    def append_content(
        cls,
        conversation: Conversation,
        sender: User,
        message_type: str,
        payload: Any,
        reply_to=None,
        mentions=None,
    ) -> ServiceResult[Message]:
        """
        Send any non-system message type with a validated payload.

        Text and media are routed to append_text and append_media.

        Error codes:
            INVALID_MESSAGE_TYPE: Unknown type, or system
            INVALID_PAYLOAD: Payload does not match the type
        """
        if message_type == MessageType.TEXT:
            text = payload.get("text") if isinstance(payload, dict) else payload
            return cls.append_text(conversation, sender, text, reply_to=reply_to, mentions=mentions)
        if message_type in MEDIA_MESSAGE_TYPES:
            return cls.append_media(conversation, sender, payload, message_type, reply_to=reply_to)
        if message_type == MessageType.SYSTEM:
            return ServiceResult.failure(
                "System messages cannot be sent by users",
                error_code="INVALID_MESSAGE_TYPE",
            )

        failure = cls._check_can_post(conversation, sender)
        if failure is not None:
            return failure

        try:
            parsed = parse_payload(message_type, payload)
        except ValidationError as e:
            return ServiceResult.from_exception(e)

        return cls._create(
            conversation,
            sender,
            message_type,
            parsed.to_content(),
            reply_to=reply_to,
            mentions=mentions,
        )

    @classmethod
    def append_system(
        cls,
        conversation: Conversation,
        action: str,
        data: dict | None = None,
    ) -> ServiceResult[Message]:
        """Record a system message (sender is null)."""
        try:
            payload = parse_payload(MessageType.SYSTEM, {"action": action, "data": data or {}})
        except ValidationError as e:
            return ServiceResult.from_exception(e)
        return cls._create(conversation, None, MessageType.SYSTEM, payload.to_content())

    @classmethod
    def forward(
        cls,
        message: Message,
        target: Conversation,
        user: User,
    ) -> ServiceResult[Message]:
        """
        Copy a message into another conversation the user can post to.

        Error codes:
            MESSAGE_NOT_FOUND: User cannot see the source message
            INVALID_OPERATION: Source is deleted or a system message
            MEDIA_NOT_ALLOWED: Target forbids media
        """
        if message.conversation.get_active_participant_for_user(user) is None:
            return _message_not_found()
        if message.is_deleted or message.is_system_message:
            return ServiceResult.failure(
                "This message cannot be forwarded",
                error_code="INVALID_OPERATION",
            )

        failure = cls._check_can_post(target, user)
        if failure is not None:
            return failure
        if message.message_type in MEDIA_MESSAGE_TYPES:
            failure = cls._check_media_allowed(target, message.message_type)
            if failure is not None:
                return failure

        return cls._create(
            target,
            user,
            message.message_type,
            dict(message.content),
            forwarded_from=message,
        )

    @classmethod
    def edit(cls, message: Message, actor: User, new_text: str) -> ServiceResult[Message]:
        """
        Replace the text of a message.

        The previous payload is pushed to the edit history, which keeps
        only the last 10 entries (oldest first). sent_at never changes.

        Error codes:
            SYSTEM_MESSAGE: Cannot edit system messages
            MESSAGE_DELETED: Cannot edit deleted messages
            NOT_AUTHOR: Only the sender can edit
            NOT_EDITABLE: Only text messages can be edited
            EMPTY_CONTENT / CONTENT_TOO_LONG
        """
        if message.is_system_message:
            return ServiceResult.failure("Cannot edit system messages", error_code="SYSTEM_MESSAGE")
        if message.is_deleted:
            return ServiceResult.failure("Cannot edit deleted messages", error_code="MESSAGE_DELETED")
        if message.sender_id != actor.pk:
            return ServiceResult.failure(
                "You can only edit your own messages",
                error_code="NOT_AUTHOR",
            )
        if message.message_type != MessageType.TEXT:
            return ServiceResult.failure(
                "Only text messages can be edited",
                error_code="NOT_EDITABLE",
            )

        try:
            payload = TextPayload.parse(new_text)
        except ValidationError as e:
            return ServiceResult.from_exception(e)

        with cls.atomic():
            locked = Message.objects.select_for_update().get(pk=message.pk)
            if locked.is_deleted:
                return ServiceResult.failure(
                    "Cannot edit deleted messages",
                    error_code="MESSAGE_DELETED",
                )

            MessageEditHistory.objects.create(message=locked, content=locked.content)
            keep = list(
                locked.edit_history.order_by("-edited_at", "-id").values_list("id", flat=True)[
                    : MESSAGE_CONFIG.MAX_EDIT_HISTORY
                ]
            )
            locked.edit_history.exclude(id__in=keep).delete()

            locked.content = payload.to_content()
            locked.edit_count = F("edit_count") + 1
            locked.last_edited_at = timezone.now()
            locked.save(update_fields=["content", "edit_count", "last_edited_at", "updated_at"])

        message.refresh_from_db()
        cls.get_logger().info(
            f"User {actor.pk} edited message {message.id} (edit #{message.edit_count})"
        )
        return ServiceResult.success(message)

    @classmethod
    def soft_delete(
        cls,
        message: Message,
        actor: User | None,
        delete_type: str | None = None,
    ) -> ServiceResult[Message]:
        """
        Soft delete a message.

        delete_type is derived from the actor: sender for the author, admin
        for staff or group admins. Background jobs pass actor=None and
        delete_type=DeleteType.SYSTEM.

        Error codes:
            MESSAGE_NOT_FOUND: Actor cannot see the message
            MESSAGE_DELETED: Already deleted
            PERMISSION_DENIED: Actor is neither the author nor a moderator
        """
        if message.is_deleted:
            return ServiceResult.failure("Message is already deleted", error_code="MESSAGE_DELETED")

        if delete_type != DeleteType.SYSTEM:
            conversation = message.conversation
            if actor is None:
                return ServiceResult.failure(
                    "An actor is required",
                    error_code="PERMISSION_DENIED",
                )
            if (
                conversation.get_active_participant_for_user(actor) is None
                and not actor.is_platform_admin
            ):
                return _message_not_found()

            if message.sender_id is not None and message.sender_id == actor.pk:
                delete_type = DeleteType.SENDER
            elif _can_moderate(conversation, actor):
                delete_type = DeleteType.ADMIN
            else:
                return ServiceResult.failure(
                    "You can only delete your own messages",
                    error_code="PERMISSION_DENIED",
                )

        message.deleted_by = actor
        message.delete_type = delete_type
        message.soft_delete(extra_fields=("deleted_by", "delete_type"))

        cls.get_logger().info(
            f"Message {message.id} deleted ({delete_type}) by {actor.pk if actor else 'system'}"
        )
        return ServiceResult.success(message)

    @classmethod
    def _set_pinned(cls, message: Message, actor: User, pinned: bool) -> ServiceResult[Message]:
        conversation = message.conversation
        participant = conversation.get_active_participant_for_user(actor)
        if participant is None:
            return _message_not_found()
        if message.is_deleted:
            return ServiceResult.failure("Message is deleted", error_code="MESSAGE_DELETED")
        if conversation.is_group and not participant.is_admin:
            return ServiceResult.failure(
                "Only group admins can pin messages",
                error_code="PERMISSION_DENIED",
            )

        if message.is_pinned != pinned:
            message.is_pinned = pinned
            message.pinned_at = timezone.now() if pinned else None
            message.pinned_by = actor if pinned else None
            message.save(update_fields=["is_pinned", "pinned_at", "pinned_by", "updated_at"])
        return ServiceResult.success(message)

    @classmethod
    def pin(cls, message: Message, actor: User) -> ServiceResult[Message]:
        """Pin a message. In groups only admins may pin."""
        return cls._set_pinned(message, actor, True)

    @classmethod
    def unpin(cls, message: Message, actor: User) -> ServiceResult[Message]:
        return cls._set_pinned(message, actor, False)

    @classmethod
    def toggle_star(cls, message: Message, user: User) -> ServiceResult[bool]:
        """
        Star or unstar a message for the user.

        Returns:
            ServiceResult with True if now starred, False if unstarred
        """
        if message.conversation.get_active_participant_for_user(user) is None:
            return _message_not_found()
        if message.starred_by.filter(pk=user.pk).exists():
            message.starred_by.remove(user)
            return ServiceResult.success(False)
        message.starred_by.add(user)
        return ServiceResult.success(True)

    @classmethod
    def _mark(cls, message: Message, user: User, kind: str) -> ServiceResult[bool]:
        if message.conversation.get_active_participant_for_user(user) is None:
            return _message_not_found()
        if message.sender_id == user.pk:
            return ServiceResult.success(False)
        _, created = MessageReceipt.objects.get_or_create(
            message=message,
            user=user,
            kind=kind,
        )
        return ServiceResult.success(created)

    @classmethod
    def mark_delivered(cls, message: Message, user: User) -> ServiceResult[bool]:
        """Record delivery. Idempotent; returns True when a receipt was added."""
        return cls._mark(message, user, ReceiptKind.DELIVERED)

    @classmethod
    def mark_read(cls, message: Message, user: User) -> ServiceResult[bool]:
        """Record a read. Idempotent; returns True when a receipt was added."""
        return cls._mark(message, user, ReceiptKind.READ)

    @classmethod
    def mark_all_read(cls, conversation: Conversation, user: User) -> ServiceResult[int]:
        """Read every unread message in the conversation."""
        if conversation.get_active_participant_for_user(user) is None:
            return _not_participant()
        return ServiceResult.success(UnreadTracker.mark_all_read(conversation, user))

    @classmethod
    def unread_count(cls, conversation: Conversation, user: User) -> int:
        return UnreadTracker.count(conversation, user)

    @classmethod
    def get_for_user(cls, message_id, user: User) -> ServiceResult[Message]:
        message = (
            Message.objects.filter(pk=_as_uuid(message_id))
            .select_related("conversation", "sender")
            .first()
        )
        if message is None or message.conversation.is_deleted:
            return _message_not_found()
        if (
            not user.is_platform_admin
            and message.conversation.get_active_participant_for_user(user) is None
        ):
            return _message_not_found()
        return ServiceResult.success(message)

    @classmethod
    def list_messages(
        cls,
        conversation: Conversation,
        user: User,
        page: int = 1,
        limit: int = MESSAGE_CONFIG.DEFAULT_PAGE_SIZE,
        before: datetime | None = None,
        after: datetime | None = None,
        types: list[str] | None = None,
        include_deleted: bool = False,
        include_system: bool = True,
        mark_read: bool = True,
    ) -> ServiceResult[PageResult]:
        """
        Paginated message listing.

        Pages are taken newest-first (page 1 is the most recent messages)
        and each page is returned oldest to newest. An explicit ``types``
        filter overrides ``include_system``. Fetching page 1 marks the
        conversation read for the user unless mark_read is False.

        Error codes:
            NOT_PARTICIPANT: User cannot see the conversation
            INVALID_MESSAGE_TYPE: Unknown type in types
        """
        participant = conversation.get_active_participant_for_user(user)
        if participant is None and not user.is_platform_admin:
            return _not_participant()

        queryset = conversation.messages.select_related(
            "sender", "reply_to", "reply_to__sender"
        ).prefetch_related("reactions", "mentions", "receipts")

        if not include_deleted:
            queryset = queryset.filter(is_deleted=False)
        if types:
            unknown = set(types) - set(MessageType.values)
            if unknown:
                return ServiceResult.failure(
                    f"Unknown message types: {sorted(unknown)}",
                    error_code="INVALID_MESSAGE_TYPE",
                )
            queryset = queryset.filter(message_type__in=types)
        elif not include_system:
            queryset = queryset.exclude(message_type=MessageType.SYSTEM)
        if before is not None:
            queryset = queryset.filter(sent_at__lt=before)
        if after is not None:
            queryset = queryset.filter(sent_at__gt=after)

        page = clamp_page(page)
        result = paginate(
            queryset.order_by("-sent_at", "-id"),
            page,
            clamp_limit(limit, MESSAGE_CONFIG.DEFAULT_PAGE_SIZE, MESSAGE_CONFIG.MAX_PAGE_SIZE),
        )
        result.items.reverse()

        if page == 1 and mark_read and participant is not None:
            UnreadTracker.mark_all_read(conversation, user)

        return ServiceResult.success(result)


# =============================================================================
# Reaction Service
# =============================================================================


@dataclass
class ReactionSummary:
    emoji: str
    count: int
    user_ids: list


class ReactionService(BaseService):
    """
    Service for message reactions.

    A user has at most one reaction per message; adding another replaces
    it (last write wins). The unique (message, user) constraint backs this.
    """

    @classmethod
    def _validate_emoji(cls, emoji: str | None) -> bool:
        if not emoji or not emoji.strip():
            return False
        emoji = emoji.strip()
        if len(emoji) > REACTION_CONFIG.MAX_EMOJI_LENGTH:
            return False
        if REACTION_CONFIG.ALLOWED_EMOJIS is not None:
            return emoji in REACTION_CONFIG.ALLOWED_EMOJIS
        # Plain words and ASCII smileys are not emoji
        return not emoji.isascii()

    @classmethod
    def add_reaction(
        cls,
        message: Message,
        user: User,
        emoji: str,
    ) -> ServiceResult[MessageReaction]:
        """
        Set the user's reaction on a message.

        Error codes:
            INVALID_EMOJI: Empty, too long, or not an emoji
            MESSAGE_NOT_FOUND: User cannot see the message
            MESSAGE_DELETED: Cannot react to deleted messages
        """
        if not cls._validate_emoji(emoji):
            return ServiceResult.failure("Invalid emoji", error_code="INVALID_EMOJI")
        if message.conversation.get_active_participant_for_user(user) is None:
            return _message_not_found()
        if message.is_deleted:
            return ServiceResult.failure(
                "Cannot react to deleted messages",
                error_code="MESSAGE_DELETED",
            )

        reaction, _ = MessageReaction.objects.update_or_create(
            message=message,
            user=user,
            defaults={"emoji": emoji.strip()},
        )
        return ServiceResult.success(reaction)

    @classmethod
    def remove_reaction(cls, message: Message, user: User) -> ServiceResult[bool]:
        """Remove the user's reaction. Returns True if one existed."""
        if message.conversation.get_active_participant_for_user(user) is None:
            return _message_not_found()
        deleted, _ = MessageReaction.objects.filter(message=message, user=user).delete()
        return ServiceResult.success(deleted > 0)

    @classmethod
    def summarize(cls, message: Message) -> list[ReactionSummary]:
        """Reactions grouped by emoji, most used first."""
        grouped: dict[str, list] = {}
        for reaction in message.reactions.all():
            grouped.setdefault(reaction.emoji, []).append(reaction.user_id)
        return sorted(
            (ReactionSummary(emoji, len(ids), ids) for emoji, ids in grouped.items()),
            key=lambda summary: (-summary.count, summary.emoji),
        )


# =============================================================================
# Search Service
# =============================================================================


class MessageSearchService(BaseService):
    """Case-insensitive text search within one conversation."""

    @classmethod
    def search(
        cls,
        conversation: Conversation,
        user: User,
        term: str | None = None,
        sender=None,
        types: list[str] | None = None,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
        page: int = 1,
        limit: int = MESSAGE_CONFIG.SEARCH_DEFAULT_PAGE_SIZE,
    ) -> ServiceResult[PageResult]:
        """
        Search messages, newest first.

        At least one filter besides the conversation is required. Without
        an explicit types filter only text messages are searched.

        Error codes:
            NOT_PARTICIPANT: User cannot see the conversation
            SEARCH_FILTER_REQUIRED: No filter given
            INVALID_MESSAGE_TYPE: Unknown type in types
        """
        if (
            conversation.get_active_participant_for_user(user) is None
            and not user.is_platform_admin
        ):
            return _not_participant()

        term = term.strip() if term else ""
        if not (term or sender or types or date_from or date_to):
            return ServiceResult.failure(
                "Provide a search term or at least one filter",
                error_code="SEARCH_FILTER_REQUIRED",
            )

        types = types or [MessageType.TEXT]
        unknown = set(types) - set(MessageType.values)
        if unknown:
            return ServiceResult.failure(
                f"Unknown message types: {sorted(unknown)}",
                error_code="INVALID_MESSAGE_TYPE",
            )

        queryset = conversation.messages.filter(
            is_deleted=False,
            message_type__in=types,
        ).select_related("sender")
        if term:
            queryset = queryset.filter(content__text__icontains=term)
        if sender:
            queryset = queryset.filter(sender_id=getattr(sender, "pk", sender))
        if date_from:
            queryset = queryset.filter(sent_at__gte=date_from)
        if date_to:
            queryset = queryset.filter(sent_at__lte=date_to)

        result = paginate(
            queryset.order_by("-sent_at", "-id"),
            clamp_page(page),
            clamp_limit(limit, MESSAGE_CONFIG.SEARCH_DEFAULT_PAGE_SIZE, MESSAGE_CONFIG.SEARCH_MAX_PAGE_SIZE),
        )
        return ServiceResult.success(result)
