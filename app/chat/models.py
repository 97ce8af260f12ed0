"""
Chat system models.

This module defines the data models for the delivery platform's messaging core:
- Direct (1:1) conversations between customers, drivers and restaurants
- Support conversations between a customer and the support desk
- Order conversations scoped to a single delivery order
- Group conversations with admin/member roles
- Broadcast channels for one-to-many announcements

Models:
    Conversation: Container for messages between participants
    DirectConversationPair: Helper for enforcing uniqueness of direct conversations
    Participant: User participation in a conversation with role and tracking
    SupportDetails / OrderDetails / GroupDetails: Per-type metadata
    Message: Individual message within a conversation
    MessageEditHistory: Prior payloads of an edited message (last 10)
    MessageReaction: One reaction per user per message
    MessageReceipt: Delivery and read receipts

Design Decisions:
    - Metadata is a tagged variant by conversation type, stored as a one-to-one
      detail row so each arm has real columns and constraints
    - Order and support status are django-fsm state machines
    - is_active is derived from timestamps and order status, never stored
    - Group admins are participants with the ADMIN role, so admins are always
      a subset of participants
    - Messages are never physically deleted by normal flows
"""

from __future__ import annotations

from datetime import timedelta
from typing import TYPE_CHECKING

from django.conf import settings
from django.db import models
from django.db.models import F, Q
from django.utils import timezone
from django.utils.dateparse import parse_datetime
from django_fsm import FSMField, transition

from core.models import BaseModel
from core.model_mixins import SoftDeleteMixin, UUIDPrimaryKeyMixin

from chat.constants import CONVERSATION_CONFIG

if TYPE_CHECKING:
    from authentication.models import User


class ConversationType(models.TextChoices):
    """
    Type of conversation.

    DIRECT: Exactly two participants, unique per user pair
    SUPPORT: Customer plus (optionally) an assigned support agent
    ORDER: Customer and driver of a single order, expires after the order
    GROUP: Admin/member roles, capacity limit, optional public join code
    BROADCAST: Staff-created one-to-many channel, only the creator posts
    """

    DIRECT = "direct", "Direct Message"
    SUPPORT = "support", "Support"
    ORDER = "order", "Order"
    GROUP = "group", "Group"
    BROADCAST = "broadcast", "Broadcast"


class ParticipantRole(models.TextChoices):
    """
    Role within a group or broadcast conversation.

    Note: Direct, support and order conversations do not use roles
    (role is NULL for their participants).
    """

    ADMIN = "admin", "Admin"
    MEMBER = "member", "Member"


class MessageType(models.TextChoices):
    """Type of message content. Each type has its own payload shape (see chat.payloads)."""

    TEXT = "text", "Text"
    IMAGE = "image", "Image"
    VIDEO = "video", "Video"
    AUDIO = "audio", "Audio"
    FILE = "file", "File"
    LOCATION = "location", "Location"
    CONTACT = "contact", "Contact"
    STICKER = "sticker", "Sticker"
    SYSTEM = "system", "System"
    ORDER_UPDATE = "order_update", "Order Update"
    DELIVERY = "delivery", "Delivery"


MEDIA_MESSAGE_TYPES = (
    MessageType.IMAGE,
    MessageType.VIDEO,
    MessageType.AUDIO,
    MessageType.FILE,
)


class DeleteType(models.TextChoices):
    """Who soft deleted a message."""

    SENDER = "sender", "Sender"
    ADMIN = "admin", "Admin"
    SYSTEM = "system", "System"


class ReceiptKind(models.TextChoices):
    DELIVERED = "delivered", "Delivered"
    READ = "read", "Read"


class SupportDepartment(models.TextChoices):
    TECHNICAL = "technical", "Technical"
    BILLING = "billing", "Billing"
    GENERAL = "general", "General"
    COMPLAINTS = "complaints", "Complaints"


class SupportPriority(models.TextChoices):
    LOW = "low", "Low"
    MEDIUM = "medium", "Medium"
    HIGH = "high", "High"
    URGENT = "urgent", "Urgent"


class SupportStatus(models.TextChoices):
    OPEN = "open", "Open"
    PENDING = "pending", "Pending"
    RESOLVED = "resolved", "Resolved"
    CLOSED = "closed", "Closed"


class OrderStatus(models.TextChoices):
    ACTIVE = "active", "Active"
    COMPLETED = "completed", "Completed"
    CANCELLED = "cancelled", "Cancelled"


class SystemAction:
    """
    System message actions.

    System messages store {"action": <action>, "data": {...}} as content.

    Actions:
        CONVERSATION_CREATED: data: {"type": str, "title": str}
        PARTICIPANT_ADDED: data: {"user_id": str, "added_by_id": str|None}
        PARTICIPANT_REMOVED: data: {"user_id": str, "removed_by_id": str|None, "reason": "left"|"removed"}
        CONVERSATION_UPDATED: data: {"fields": [str], "changed_by_id": str}
        SUPPORT_ASSIGNED: data: {"agent_id": str}
        SUPPORT_STATUS_CHANGED: data: {"status": str}
        ORDER_STATUS_CHANGED: data: {"order_id": str, "status": str}
    """

    CONVERSATION_CREATED = "conversation_created"
    PARTICIPANT_ADDED = "participant_added"
    PARTICIPANT_REMOVED = "participant_removed"
    CONVERSATION_UPDATED = "conversation_updated"
    SUPPORT_ASSIGNED = "support_assigned"
    SUPPORT_STATUS_CHANGED = "support_status_changed"
    ORDER_STATUS_CHANGED = "order_status_changed"


def default_notification_settings() -> dict:
    return {"mute": False, "mute_until": None, "sound": True, "vibrate": True}


def default_privacy_settings() -> dict:
    return {
        "allow_new_members": True,
        "show_online_status": True,
        "show_read_receipts": True,
        "allow_media": True,
        "allow_voice_messages": True,
    }


class ConversationQuerySet(models.QuerySet):
    """Chainable filters for conversation listings."""

    def for_user(self, user: User) -> ConversationQuerySet:
        """Conversations where the user is an active participant."""
        return self.filter(
            participants__user=user,
            participants__left_at__isnull=True,
        ).distinct()

    def visible(
        self,
        include_archived: bool = False,
        include_expired: bool = False,
    ) -> ConversationQuerySet:
        """Exclude deleted and (by default) archived and expired conversations."""
        queryset = self.filter(is_deleted=False)
        if not include_archived:
            queryset = queryset.filter(archived_at__isnull=True)
        if not include_expired:
            queryset = queryset.filter(
                Q(expires_at__isnull=True) | Q(expires_at__gt=timezone.now())
            )
        return queryset


class Conversation(UUIDPrimaryKeyMixin, SoftDeleteMixin, BaseModel):
    """
    A typed container of participants and their ordered stream of messages.

    Lifecycle timestamps:
        archived_at: Hidden from default listings, restorable
        deleted_at / is_deleted: Soft deleted (SoftDeleteMixin)
        expires_at: Order chats expire 30 days after creation, 7 days
                    after the order is completed or cancelled

    Stats (best-effort, recoverable by recount):
        message_count, participant_count, first_message_at, last_message_at
    """

    conversation_type = models.CharField(
        max_length=10,
        choices=ConversationType.choices,
        default=ConversationType.DIRECT,
        db_index=True,
        help_text="Type of conversation",
    )

    title = models.CharField(
        max_length=100,
        blank=True,
        default="",
        help_text="Title (generated for support/order chats, chosen for groups)",
    )

    description = models.CharField(
        max_length=500,
        blank=True,
        default="",
        help_text="Optional description (groups and broadcasts)",
    )

    image = models.URLField(
        max_length=500,
        blank=True,
        default="",
        help_text="Optional conversation image URL",
    )

    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="created_conversations",
        help_text="User who created this conversation (null for system-created)",
    )

    last_message = models.ForeignKey(
        "Message",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
        help_text="Most recent message in this conversation",
    )

    last_activity = models.DateTimeField(
        default=timezone.now,
        db_index=True,
        help_text="Timestamp of most recent activity (for sorting)",
    )

    notification_settings = models.JSONField(
        default=default_notification_settings,
        help_text="mute, mute_until, sound, vibrate",
    )

    privacy_settings = models.JSONField(
        default=default_privacy_settings,
        help_text="allow_new_members, show_online_status, show_read_receipts, "
        "allow_media, allow_voice_messages",
    )

    tags = models.JSONField(
        default=list,
        blank=True,
        help_text="Free-form tags (support department, status labels, etc.)",
    )

    archived_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the conversation was archived",
    )

    expires_at = models.DateTimeField(
        null=True,
        blank=True,
        db_index=True,
        help_text="When the conversation expires (order chats)",
    )

    message_count = models.PositiveIntegerField(
        default=0,
        help_text="Number of messages (best-effort, reconciled by recount)",
    )

    participant_count = models.PositiveIntegerField(
        default=0,
        help_text="Current number of active participants",
    )

    first_message_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Timestamp of the first message",
    )

    last_message_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Timestamp of the most recent message",
    )

    objects = ConversationQuerySet.as_manager()

    class Meta:
        db_table = "chat_conversation"
        ordering = ["-last_activity", "-created_at"]
        indexes = [
            models.Index(
                fields=["conversation_type", "is_deleted"],
                name="chat_conv_type_deleted_idx",
            ),
            models.Index(
                fields=["-last_activity"],
                name="chat_conv_activity_idx",
                condition=Q(is_deleted=False),
            ),
        ]

    def __str__(self) -> str:
        if self.title:
            return f"{self.get_conversation_type_display()}: {self.title}"
        return f"{self.get_conversation_type_display()}({self.pk})"

    @property
    def is_direct(self) -> bool:
        return self.conversation_type == ConversationType.DIRECT

    @property
    def is_group(self) -> bool:
        return self.conversation_type == ConversationType.GROUP

    @property
    def is_broadcast(self) -> bool:
        return self.conversation_type == ConversationType.BROADCAST

    @property
    def is_expired(self) -> bool:
        return self.expires_at is not None and self.expires_at <= timezone.now()

    @property
    def is_active(self) -> bool:
        """
        Derived activity flag.

        False when expired, archived, deleted, or an order chat whose
        order is no longer active.
        """
        if self.is_deleted or self.archived_at is not None or self.is_expired:
            return False
        if self.conversation_type == ConversationType.ORDER:
            details = getattr(self, "order_details", None)
            if details is not None and details.status != OrderStatus.ACTIVE:
                return False
        return True

    @property
    def details(self) -> SupportDetails | OrderDetails | GroupDetails | None:
        """Type-specific metadata row, or None for types without one."""
        attr = {
            ConversationType.SUPPORT: "support_details",
            ConversationType.ORDER: "order_details",
            ConversationType.GROUP: "group_details",
        }.get(self.conversation_type)
        if attr is None:
            return None
        return getattr(self, attr, None)

    @property
    def is_muted(self) -> bool:
        """Whether notifications are muted right now."""
        settings_ = self.notification_settings or {}
        if not settings_.get("mute"):
            return False
        mute_until = settings_.get("mute_until")
        if not mute_until:
            return True
        until = parse_datetime(mute_until)
        return until is None or until > timezone.now()

    def allows(self, privacy_flag: str) -> bool:
        """Read a privacy flag, falling back to the default value."""
        merged = {**default_privacy_settings(), **(self.privacy_settings or {})}
        return bool(merged.get(privacy_flag))

    def get_active_participants(self):
        """QuerySet of Participant objects where left_at is NULL."""
        return self.participants.filter(left_at__isnull=True)

    def get_active_participant_for_user(self, user: User) -> Participant | None:
        """Active participant record for a user, or None."""
        if user is None or not getattr(user, "is_authenticated", False):
            return None
        return self.participants.filter(user=user, left_at__isnull=True).first()

    def participant_user_ids(self) -> list:
        """Ids of users with an active membership."""
        return list(self.get_active_participants().values_list("user_id", flat=True))


class DirectConversationPair(models.Model):
    """
    Enforces uniqueness of direct conversations between two users.

    Stores user pairs in canonical order (lower user id first). The unique
    constraint makes concurrent create_direct() calls for the same pair
    collapse onto a single conversation.
    """

    conversation = models.OneToOneField(
        Conversation,
        on_delete=models.CASCADE,
        primary_key=True,
        related_name="direct_pair",
        help_text="The direct conversation this pair represents",
    )

    user_lower = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="+",
        help_text="User with lower ID in this conversation pair",
    )

    user_higher = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="+",
        help_text="User with higher ID in this conversation pair",
    )

    class Meta:
        db_table = "chat_direct_conversation_pair"
        constraints = [
            models.UniqueConstraint(
                fields=["user_lower", "user_higher"],
                name="unique_direct_conversation_pair",
            ),
            models.CheckConstraint(
                condition=Q(user_lower_id__lt=F("user_higher_id")),
                name="user_lower_less_than_higher",
            ),
        ]

    def __str__(self) -> str:
        return f"DirectPair({self.user_lower_id}, {self.user_higher_id})"


class Participant(BaseModel):
    """
    Tracks user participation in conversations.

    Each join creates a new record; leaving sets left_at. History of past
    memberships is preserved.

    Constraints:
        - UniqueConstraint(conversation, user) WHERE left_at IS NULL:
          participants of a conversation are duplicate-free
    """

    conversation = models.ForeignKey(
        Conversation,
        on_delete=models.CASCADE,
        related_name="participants",
        help_text="Conversation this participation belongs to",
    )

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="conversation_participations",
        help_text="User participating in the conversation",
    )

    role = models.CharField(
        max_length=10,
        choices=ParticipantRole.choices,
        null=True,
        blank=True,
        db_index=True,
        help_text="Role in group/broadcast conversation (null otherwise)",
    )

    joined_at = models.DateTimeField(
        auto_now_add=True,
        help_text="When the user joined this conversation",
    )

    left_at = models.DateTimeField(
        null=True,
        blank=True,
        db_index=True,
        help_text="When the user left (null if still active)",
    )

    left_voluntarily = models.BooleanField(
        null=True,
        blank=True,
        help_text="True if user left voluntarily, False if removed",
    )

    removed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="removed_participants",
        help_text="User who removed this participant (if removed by someone)",
    )

    last_read_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Last time the user marked the conversation as read",
    )

    class Meta:
        db_table = "chat_participant"
        ordering = ["joined_at"]
        indexes = [
            models.Index(
                fields=["conversation", "left_at"],
                name="chat_part_conv_active_idx",
            ),
            models.Index(
                fields=["user", "left_at"],
                name="chat_part_user_active_idx",
            ),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["conversation", "user"],
                condition=Q(left_at__isnull=True),
                name="unique_active_participation",
            ),
        ]

    def __str__(self) -> str:
        status = "active" if self.is_active else "left"
        role_str = f" ({self.role})" if self.role else ""
        return f"Participant: {self.user_id} in {self.conversation_id}{role_str} [{status}]"

    @property
    def is_active(self) -> bool:
        return self.left_at is None

    @property
    def is_admin(self) -> bool:
        return self.role == ParticipantRole.ADMIN


class SupportDetails(BaseModel):
    """
    Support conversation metadata.

    State machine (status):
        open -> pending (assign)
        open | pending -> resolved (resolve)
        any -> closed (close)
        resolved | closed -> open (reopen)
    """

    conversation = models.OneToOneField(
        Conversation,
        on_delete=models.CASCADE,
        primary_key=True,
        related_name="support_details",
    )

    department = models.CharField(
        max_length=20,
        choices=SupportDepartment.choices,
        default=SupportDepartment.GENERAL,
        help_text="Department handling the request",
    )

    priority = models.CharField(
        max_length=10,
        choices=SupportPriority.choices,
        default=SupportPriority.MEDIUM,
        help_text="Ticket priority",
    )

    status = FSMField(
        default=SupportStatus.OPEN,
        choices=SupportStatus.choices,
        db_index=True,
        help_text="Ticket status",
    )

    assigned_to = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="assigned_support_conversations",
        help_text="Support agent handling this conversation",
    )

    class Meta:
        db_table = "chat_support_details"

    def __str__(self) -> str:
        return f"Support({self.department}, {self.status})"

    @transition(field=status, source=SupportStatus.OPEN, target=SupportStatus.PENDING)
    def assign(self, agent: User) -> None:
        self.assigned_to = agent

    @transition(
        field=status,
        source=[SupportStatus.OPEN, SupportStatus.PENDING],
        target=SupportStatus.RESOLVED,
    )
    def resolve(self) -> None:
        pass

    @transition(field=status, source="*", target=SupportStatus.CLOSED)
    def close(self) -> None:
        pass

    @transition(
        field=status,
        source=[SupportStatus.RESOLVED, SupportStatus.CLOSED],
        target=SupportStatus.OPEN,
    )
    def reopen(self) -> None:
        pass


class OrderDetails(BaseModel):
    """
    Order conversation metadata (snapshot of the external order).

    State machine (status):
        active -> completed | cancelled (both terminal)

    Entering a terminal state shortens the conversation's expires_at to
    ORDER_CLOSED_TTL_DAYS from now.
    """

    conversation = models.OneToOneField(
        Conversation,
        on_delete=models.CASCADE,
        primary_key=True,
        related_name="order_details",
    )

    order_id = models.CharField(
        max_length=64,
        unique=True,
        help_text="Id of the order in the ordering service",
    )

    restaurant_id = models.CharField(
        max_length=64,
        blank=True,
        default="",
        db_index=True,
        help_text="Id of the restaurant preparing the order",
    )

    driver = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="order_conversations_as_driver",
        help_text="Driver assigned to the order",
    )

    status = FSMField(
        default=OrderStatus.ACTIVE,
        choices=OrderStatus.choices,
        db_index=True,
        help_text="Order chat status",
    )

    class Meta:
        db_table = "chat_order_details"

    def __str__(self) -> str:
        return f"Order({self.order_id}, {self.status})"

    @transition(field=status, source=OrderStatus.ACTIVE, target=OrderStatus.COMPLETED)
    def complete(self) -> None:
        self._shorten_expiry()

    @transition(field=status, source=OrderStatus.ACTIVE, target=OrderStatus.CANCELLED)
    def cancel(self) -> None:
        self._shorten_expiry()

    def _shorten_expiry(self) -> None:
        conversation = self.conversation
        conversation.expires_at = timezone.now() + timedelta(
            days=getattr(
                settings,
                "CHAT_ORDER_CLOSED_TTL_DAYS",
                CONVERSATION_CONFIG.ORDER_CLOSED_TTL_DAYS,
            )
        )
        conversation.save(update_fields=["expires_at", "updated_at"])


class GroupDetails(BaseModel):
    """Group conversation metadata. Admins are participants with the ADMIN role."""

    conversation = models.OneToOneField(
        Conversation,
        on_delete=models.CASCADE,
        primary_key=True,
        related_name="group_details",
    )

    is_public = models.BooleanField(
        default=False,
        help_text="Whether users can join with the join code",
    )

    max_participants = models.PositiveIntegerField(
        default=CONVERSATION_CONFIG.DEFAULT_MAX_PARTICIPANTS,
        help_text="Maximum number of active participants",
    )

    join_code = models.CharField(
        max_length=CONVERSATION_CONFIG.JOIN_CODE_LENGTH,
        null=True,
        blank=True,
        unique=True,
        help_text="Join code (public groups only)",
    )

    class Meta:
        db_table = "chat_group_details"

    def __str__(self) -> str:
        visibility = "public" if self.is_public else "private"
        return f"Group({visibility}, max={self.max_participants})"


class Message(UUIDPrimaryKeyMixin, SoftDeleteMixin, BaseModel):
    """
    A message within a conversation.

    Content:
        content holds the payload for message_type, shaped per chat.payloads
        (e.g. {"text": "..."} for text, {"url", "filename", ...} for media,
        {"action", "data"} for system messages).

    Soft Delete Behavior:
        is_deleted/deleted_at plus deleted_by and delete_type.
        Deleted messages are hidden from listings unless explicitly
        requested and do not count toward unread totals.

    Delivery:
        sent_at is set once on creation and never changes.
        Delivered and read markers are MessageReceipt rows.
    """

    conversation = models.ForeignKey(
        Conversation,
        on_delete=models.CASCADE,
        related_name="messages",
        help_text="Conversation this message belongs to",
    )

    sender = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="sent_messages",
        help_text="User who sent this message (null for system messages)",
    )

    message_type = models.CharField(
        max_length=20,
        choices=MessageType.choices,
        default=MessageType.TEXT,
        db_index=True,
        help_text="Type of message (determines content shape)",
    )

    content = models.JSONField(
        default=dict,
        help_text="Payload for the message type",
    )

    reply_to = models.ForeignKey(
        "self",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="replies",
        help_text="Message this one replies to (same conversation)",
    )

    forwarded_from = models.ForeignKey(
        "self",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="forwards",
        help_text="Original message when this one was forwarded",
    )

    mentions = models.ManyToManyField(
        settings.AUTH_USER_MODEL,
        blank=True,
        related_name="chat_mentions",
        help_text="Users mentioned in this message",
    )

    sent_at = models.DateTimeField(
        default=timezone.now,
        db_index=True,
        help_text="When the message was sent",
    )

    edit_count = models.PositiveIntegerField(
        default=0,
        help_text="Number of times this message was edited",
    )

    last_edited_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Timestamp of the most recent edit",
    )

    deleted_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
        help_text="User who deleted the message",
    )

    delete_type = models.CharField(
        max_length=10,
        choices=DeleteType.choices,
        null=True,
        blank=True,
        help_text="Who deleted the message (sender, admin, system)",
    )

    is_pinned = models.BooleanField(
        default=False,
        db_index=True,
        help_text="Whether the message is pinned",
    )

    pinned_at = models.DateTimeField(null=True, blank=True)

    pinned_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )

    starred_by = models.ManyToManyField(
        settings.AUTH_USER_MODEL,
        blank=True,
        related_name="starred_chat_messages",
        help_text="Users who starred this message",
    )

    class Meta:
        db_table = "chat_message"
        ordering = ["sent_at", "id"]
        indexes = [
            models.Index(
                fields=["conversation", "sent_at"],
                name="chat_msg_conv_sent_idx",
            ),
            models.Index(
                fields=["conversation", "message_type"],
                name="chat_msg_conv_type_idx",
            ),
            models.Index(
                fields=["sender", "-sent_at"],
                name="chat_msg_sender_idx",
            ),
        ]

    def __str__(self) -> str:
        sender_str = f"User {self.sender_id}" if self.sender_id else "System"
        deleted_str = " [deleted]" if self.is_deleted else ""
        return f"{sender_str}: {self.get_display_content()[:50]}{deleted_str}"

    @property
    def is_system_message(self) -> bool:
        return self.message_type == MessageType.SYSTEM

    @property
    def is_edited(self) -> bool:
        return self.edit_count > 0

    @property
    def text(self) -> str:
        """Text body for text messages, empty string otherwise."""
        return (self.content or {}).get("text", "")

    def get_display_content(self) -> str:
        """
        Human-readable content.

        Returns:
            - "[Message deleted]" if soft deleted
            - Payload preview otherwise
        """
        if self.is_deleted:
            return "[Message deleted]"

        from chat.payloads import preview_content

        return preview_content(self.message_type, self.content)


class MessageEditHistory(models.Model):
    """Prior payload of an edited message. Only the last 10 are kept."""

    message = models.ForeignKey(
        Message,
        on_delete=models.CASCADE,
        related_name="edit_history",
    )

    content = models.JSONField(help_text="Payload before the edit")

    edited_at = models.DateTimeField(
        default=timezone.now,
        help_text="When the edit replacing this payload happened",
    )

    class Meta:
        db_table = "chat_message_edit_history"
        ordering = ["edited_at", "id"]

    def __str__(self) -> str:
        return f"Edit of {self.message_id} at {self.edited_at:%Y-%m-%d %H:%M}"


class MessageReaction(BaseModel):
    """A user's reaction to a message. At most one per user per message."""

    message = models.ForeignKey(
        Message,
        on_delete=models.CASCADE,
        related_name="reactions",
    )

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="chat_reactions",
    )

    emoji = models.CharField(max_length=32)

    class Meta:
        db_table = "chat_message_reaction"
        ordering = ["created_at"]
        constraints = [
            models.UniqueConstraint(
                fields=["message", "user"],
                name="unique_reaction_per_user",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.user_id} {self.emoji} {self.message_id}"


class MessageReceipt(models.Model):
    """Delivery or read marker for one (message, user) pair."""

    message = models.ForeignKey(
        Message,
        on_delete=models.CASCADE,
        related_name="receipts",
    )

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="chat_receipts",
    )

    kind = models.CharField(max_length=10, choices=ReceiptKind.choices)

    at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = "chat_message_receipt"
        ordering = ["at"]
        constraints = [
            models.UniqueConstraint(
                fields=["message", "user", "kind"],
                name="unique_receipt_per_kind",
            ),
        ]
        indexes = [
            models.Index(
                fields=["user", "kind", "message"],
                name="chat_receipt_user_kind_idx",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.kind} {self.message_id} by {self.user_id}"
