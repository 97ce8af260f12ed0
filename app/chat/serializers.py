"""
Serializers for chat API.

This module provides serializers for the chat system:
- Read serializers shared by the REST API and realtime events
- Input serializers validating request bodies and query strings

Serializer Hierarchy:
    ChatUserSerializer: Minimal user identity
    MessageSerializer: Message with delivery, edit, delete, reaction and pin state
    MessagePreviewSerializer: Last-message preview in conversation lists
    MessageEditHistorySerializer: Prior payloads of an edited message
    ParticipantSerializer: Membership with role and read marker
    ConversationSerializer: List item with unread count and metadata
    ConversationDetailSerializer: Adds participants and settings

    ConversationCreateSerializer: Type-dependent creation body
    ConversationUpdateSerializer / MuteSerializer
    MessageCreateSerializer / MessageEditSerializer / MediaSubmitSerializer
    ReactionCreateSerializer / ForwardSerializer
    MessageListQuerySerializer / ConversationListQuerySerializer / SearchQuerySerializer
    OrderStatusSerializer / SupportActionSerializer

Design Decisions:
    - Read and write serializers are separate for clarity
    - Soft-deleted message content is replaced with an empty payload and
      "[Message deleted]" display text
    - Payload validation happens in the service layer (chat.payloads);
      serializers only check the envelope
"""

from __future__ import annotations

from django.contrib.auth import get_user_model
from rest_framework import serializers

from chat.constants import CONVERSATION_CONFIG, MESSAGE_CONFIG
from chat.models import (
    Conversation,
    ConversationType,
    GroupDetails,
    Message,
    MessageEditHistory,
    MessageType,
    OrderDetails,
    OrderStatus,
    Participant,
    ParticipantRole,
    ReceiptKind,
    SupportDepartment,
    SupportDetails,
)

User = get_user_model()


# =============================================================================
# Read Serializers
# =============================================================================


class ChatUserSerializer(serializers.ModelSerializer):
    """Minimal user identity shown next to messages and participants."""

    name = serializers.CharField(source="get_full_name", read_only=True)

    class Meta:
        model = User
        fields = ["id", "email", "name", "role"]
        read_only_fields = fields


class MessagePreviewSerializer(serializers.ModelSerializer):
    """
    Minimal message serializer for conversation list preview.

    Handles soft-deleted message content replacement.
    """

    sender_name = serializers.SerializerMethodField()
    preview = serializers.CharField(source="get_display_content", read_only=True)

    class Meta:
        model = Message
        fields = ["id", "sender_id", "sender_name", "message_type", "preview", "sent_at", "is_deleted"]
        read_only_fields = fields

    def get_sender_name(self, obj: Message) -> str | None:
        return obj.sender.get_full_name() if obj.sender_id else None


class MessageSerializer(serializers.ModelSerializer):
    """
    Full message representation.

    Nested groups mirror the message lifecycle: delivery (receipts),
    edited, deleted, pinned, plus reactions grouped by emoji.
    """

    sender = ChatUserSerializer(read_only=True)
    content = serializers.SerializerMethodField()
    display_content = serializers.CharField(source="get_display_content", read_only=True)
    reply_to = MessagePreviewSerializer(read_only=True)
    mentions = serializers.PrimaryKeyRelatedField(many=True, read_only=True)
    delivery = serializers.SerializerMethodField()
    edited = serializers.SerializerMethodField()
    deleted = serializers.SerializerMethodField()
    pinned = serializers.SerializerMethodField()
    reactions = serializers.SerializerMethodField()

    class Meta:
        model = Message
        fields = [
            "id",
            "conversation_id",
            "sender",
            "message_type",
            "content",
            "display_content",
            "reply_to",
            "forwarded_from_id",
            "mentions",
            "sent_at",
            "delivery",
            "edited",
            "deleted",
            "pinned",
            "reactions",
        ]
        read_only_fields = fields

    def get_content(self, obj: Message) -> dict:
        return {} if obj.is_deleted else obj.content

    def get_delivery(self, obj: Message) -> dict:
        receipts = list(obj.receipts.all())
        return {
            "sent_at": obj.sent_at,
            "delivered_to": [
                {"user_id": r.user_id, "delivered_at": r.at}
                for r in receipts
                if r.kind == ReceiptKind.DELIVERED
            ],
            "read_by": [
                {"user_id": r.user_id, "read_at": r.at}
                for r in receipts
                if r.kind == ReceiptKind.READ
            ],
        }

    def get_edited(self, obj: Message) -> dict:
        return {
            "is_edited": obj.is_edited,
            "edit_count": obj.edit_count,
            "last_edited_at": obj.last_edited_at,
        }

    def get_deleted(self, obj: Message) -> dict:
        return {
            "is_deleted": obj.is_deleted,
            "deleted_at": obj.deleted_at,
            "deleted_by_id": obj.deleted_by_id,
            "delete_type": obj.delete_type,
        }

    def get_pinned(self, obj: Message) -> dict:
        return {
            "is_pinned": obj.is_pinned,
            "pinned_at": obj.pinned_at,
            "pinned_by_id": obj.pinned_by_id,
        }

    def get_reactions(self, obj: Message) -> list[dict]:
        grouped: dict[str, list] = {}
        for reaction in obj.reactions.all():
            grouped.setdefault(reaction.emoji, []).append(reaction.user_id)
        return [
            {"emoji": emoji, "count": len(user_ids), "user_ids": user_ids}
            for emoji, user_ids in sorted(grouped.items(), key=lambda item: (-len(item[1]), item[0]))
        ]


class MessageEditHistorySerializer(serializers.ModelSerializer):
    class Meta:
        model = MessageEditHistory
        fields = ["id", "content", "edited_at"]
        read_only_fields = fields


class ParticipantSerializer(serializers.ModelSerializer):
    """Participant with user info."""

    user = ChatUserSerializer(read_only=True)

    class Meta:
        model = Participant
        fields = ["id", "user", "role", "joined_at", "last_read_at"]
        read_only_fields = fields


def serialize_metadata(conversation: Conversation) -> dict | None:
    """Type-specific metadata as a plain dict."""
    details = conversation.details
    if isinstance(details, SupportDetails):
        return {
            "department": details.department,
            "priority": details.priority,
            "status": details.status,
            "assigned_to_id": details.assigned_to_id,
        }
    if isinstance(details, OrderDetails):
        return {
            "order_id": details.order_id,
            "restaurant_id": details.restaurant_id,
            "driver_id": details.driver_id,
            "status": details.status,
        }
    if isinstance(details, GroupDetails):
        return {
            "is_public": details.is_public,
            "max_participants": details.max_participants,
            "join_code": details.join_code,
            "admin_ids": list(
                conversation.get_active_participants()
                .filter(role=ParticipantRole.ADMIN)
                .values_list("user_id", flat=True)
            ),
        }
    return None


class ConversationSerializer(serializers.ModelSerializer):
    """
    Conversation list item.

    unread_count is read from the attribute set by
    ConversationService.list_for_user when present.
    """

    type = serializers.CharField(source="conversation_type", read_only=True)
    last_message = MessagePreviewSerializer(read_only=True)
    unread_count = serializers.SerializerMethodField()
    is_active = serializers.BooleanField(read_only=True)
    is_muted = serializers.BooleanField(read_only=True)
    metadata = serializers.SerializerMethodField()
    stats = serializers.SerializerMethodField()

    class Meta:
        model = Conversation
        fields = [
            "id",
            "type",
            "title",
            "description",
            "image",
            "created_by_id",
            "last_message",
            "last_activity",
            "unread_count",
            "is_active",
            "is_muted",
            "tags",
            "metadata",
            "stats",
            "archived_at",
            "expires_at",
            "created_at",
        ]
        read_only_fields = fields

    def get_unread_count(self, obj: Conversation) -> int | None:
        return getattr(obj, "unread_count", None)

    def get_metadata(self, obj: Conversation) -> dict | None:
        return serialize_metadata(obj)

    def get_stats(self, obj: Conversation) -> dict:
        return {
            "message_count": obj.message_count,
            "participant_count": obj.participant_count,
            "first_message_at": obj.first_message_at,
            "last_message_at": obj.last_message_at,
        }


class ConversationDetailSerializer(ConversationSerializer):
    """Full conversation including participants and settings."""

    participants = serializers.SerializerMethodField()
    current_user_role = serializers.SerializerMethodField()

    class Meta(ConversationSerializer.Meta):
        fields = ConversationSerializer.Meta.fields + [
            "participants",
            "current_user_role",
            "notification_settings",
            "privacy_settings",
        ]
        read_only_fields = fields

    def get_participants(self, obj: Conversation) -> list[dict]:
        participants = obj.get_active_participants().select_related("user")
        return ParticipantSerializer(participants, many=True).data

    def get_current_user_role(self, obj: Conversation) -> str | None:
        request = self.context.get("request")
        if request is None:
            return None
        participant = obj.get_active_participant_for_user(request.user)
        return participant.role if participant else None


# =============================================================================
# Input Serializers
# =============================================================================


class ConversationCreateSerializer(serializers.Serializer):
    """
    Validate conversation creation.

    Required fields by type:
        direct: participant_ids (exactly one other user)
        support: department (optional, default general)
        order: order_id, optional driver_id / restaurant_id
        group: title, optional participant_ids, is_public, max_participants
        broadcast: title, participant_ids (recipients)
    """

    type = serializers.ChoiceField(choices=ConversationType.choices)
    participant_ids = serializers.ListField(
        child=serializers.IntegerField(min_value=1),
        required=False,
        default=list,
    )
    title = serializers.CharField(max_length=100, required=False, allow_blank=True, default="")
    description = serializers.CharField(max_length=500, required=False, allow_blank=True, default="")
    is_public = serializers.BooleanField(required=False, default=False)
    max_participants = serializers.IntegerField(min_value=2, required=False)
    department = serializers.ChoiceField(
        choices=SupportDepartment.choices,
        required=False,
        default=SupportDepartment.GENERAL,
    )
    order_id = serializers.CharField(max_length=64, required=False)
    driver_id = serializers.IntegerField(min_value=1, required=False)
    restaurant_id = serializers.CharField(max_length=64, required=False, allow_blank=True, default="")

    def validate(self, attrs: dict) -> dict:
        conversation_type = attrs["type"]
        participant_ids = attrs.get("participant_ids") or []

        if conversation_type == ConversationType.DIRECT and len(participant_ids) != 1:
            raise serializers.ValidationError(
                {"participant_ids": "Direct conversations need exactly one other participant."}
            )
        if conversation_type == ConversationType.ORDER and not attrs.get("order_id"):
            raise serializers.ValidationError({"order_id": "This field is required."})
        if conversation_type in (ConversationType.GROUP, ConversationType.BROADCAST):
            if not (attrs.get("title") or "").strip():
                raise serializers.ValidationError({"title": "This field is required."})
        return attrs


class ConversationUpdateSerializer(serializers.Serializer):
    """Partial update; only provided fields are passed to the service."""

    title = serializers.CharField(max_length=100, required=False, allow_blank=True)
    description = serializers.CharField(max_length=500, required=False, allow_blank=True)
    image = serializers.URLField(max_length=500, required=False, allow_blank=True)
    notification_settings = serializers.DictField(required=False)
    privacy_settings = serializers.DictField(required=False)
    tags = serializers.ListField(
        child=serializers.CharField(max_length=50),
        required=False,
    )

    def validate(self, attrs: dict) -> dict:
        if not attrs:
            raise serializers.ValidationError(
                f"Provide at least one of: {', '.join(CONVERSATION_CONFIG.UPDATABLE_FIELDS)}"
            )
        return attrs


class MuteSerializer(serializers.Serializer):
    hours = serializers.IntegerField(min_value=1, max_value=24 * 365, required=False, allow_null=True)


class ParticipantCreateSerializer(serializers.Serializer):
    user_id = serializers.IntegerField(min_value=1)


class JoinByCodeSerializer(serializers.Serializer):
    code = serializers.CharField(max_length=CONVERSATION_CONFIG.JOIN_CODE_LENGTH)


class MessageCreateSerializer(serializers.Serializer):
    """
    Validate a new message envelope.

    Text messages send ``text``; every other type sends ``content``.
    """

    message_type = serializers.ChoiceField(
        choices=MessageType.choices,
        required=False,
        default=MessageType.TEXT,
    )
    text = serializers.CharField(required=False, allow_blank=True, trim_whitespace=False)
    content = serializers.JSONField(required=False)
    reply_to = serializers.UUIDField(required=False, allow_null=True)
    mentions = serializers.ListField(
        child=serializers.IntegerField(min_value=1),
        required=False,
        default=list,
    )

    def validate(self, attrs: dict) -> dict:
        if attrs["message_type"] == MessageType.TEXT:
            if "text" not in attrs:
                raise serializers.ValidationError({"text": "This field is required."})
        elif "content" not in attrs:
            raise serializers.ValidationError({"content": "This field is required."})
        return attrs


class MessageEditSerializer(serializers.Serializer):
    text = serializers.CharField(allow_blank=True, trim_whitespace=False)


class MediaSubmitSerializer(serializers.Serializer):
    """Descriptor returned by the upload collaborator."""

    url = serializers.URLField(max_length=1000)
    filename = serializers.CharField(max_length=255)
    size = serializers.IntegerField(min_value=0)
    mime_type = serializers.CharField(max_length=127)
    duration = serializers.FloatField(min_value=0, required=False)
    dimensions = serializers.DictField(required=False)
    message_type = serializers.ChoiceField(
        choices=[
            (MessageType.IMAGE, "Image"),
            (MessageType.VIDEO, "Video"),
            (MessageType.AUDIO, "Audio"),
            (MessageType.FILE, "File"),
        ],
        required=False,
    )
    reply_to = serializers.UUIDField(required=False, allow_null=True)


class ReactionCreateSerializer(serializers.Serializer):
    emoji = serializers.CharField(max_length=32)


class ForwardSerializer(serializers.Serializer):
    conversation_id = serializers.UUIDField()


class CommaListField(serializers.Field):
    """Query string list given as ``a,b,c`` or repeated keys."""

    def to_internal_value(self, data):
        if isinstance(data, list):
            items = [part for value in data for part in str(value).split(",")]
        else:
            items = str(data).split(",")
        return [item.strip() for item in items if item.strip()]

    def to_representation(self, value):
        return ",".join(value)


class ConversationListQuerySerializer(serializers.Serializer):
    page = serializers.IntegerField(min_value=1, required=False, default=1)
    limit = serializers.IntegerField(
        min_value=1,
        max_value=CONVERSATION_CONFIG.MAX_PAGE_SIZE,
        required=False,
        default=CONVERSATION_CONFIG.DEFAULT_PAGE_SIZE,
    )
    type = serializers.ChoiceField(choices=ConversationType.choices, required=False)
    include_archived = serializers.BooleanField(required=False, default=False)
    include_expired = serializers.BooleanField(required=False, default=False)


class MessageListQuerySerializer(serializers.Serializer):
    page = serializers.IntegerField(min_value=1, required=False, default=1)
    limit = serializers.IntegerField(
        min_value=1,
        max_value=MESSAGE_CONFIG.MAX_PAGE_SIZE,
        required=False,
        default=MESSAGE_CONFIG.DEFAULT_PAGE_SIZE,
    )
    before = serializers.DateTimeField(required=False)
    after = serializers.DateTimeField(required=False)
    types = CommaListField(required=False)
    include_deleted = serializers.BooleanField(required=False, default=False)
    include_system = serializers.BooleanField(required=False, default=True)


class SearchQuerySerializer(serializers.Serializer):
    q = serializers.CharField(required=False, allow_blank=True, default="")
    sender = serializers.IntegerField(min_value=1, required=False)
    types = CommaListField(required=False)
    date_from = serializers.DateTimeField(required=False)
    date_to = serializers.DateTimeField(required=False)
    page = serializers.IntegerField(min_value=1, required=False, default=1)
    limit = serializers.IntegerField(
        min_value=1,
        max_value=MESSAGE_CONFIG.SEARCH_MAX_PAGE_SIZE,
        required=False,
        default=MESSAGE_CONFIG.SEARCH_DEFAULT_PAGE_SIZE,
    )


class OrderStatusSerializer(serializers.Serializer):
    status = serializers.ChoiceField(
        choices=[(OrderStatus.COMPLETED, "Completed"), (OrderStatus.CANCELLED, "Cancelled")]
    )


class SupportActionSerializer(serializers.Serializer):
    action = serializers.ChoiceField(choices=["assign", "resolve", "close", "reopen"])
    agent_id = serializers.IntegerField(min_value=1, required=False)
