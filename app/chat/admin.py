"""
Django admin configuration for chat models.

Provides admin interfaces for:
- Conversation management (with type-specific details inline)
- Participant viewing
- Message moderation with edit history and receipts
"""

from django.contrib import admin

from chat.models import (
    Conversation,
    DirectConversationPair,
    GroupDetails,
    Message,
    MessageEditHistory,
    MessageReaction,
    MessageReceipt,
    OrderDetails,
    Participant,
    SupportDetails,
)


class ParticipantInline(admin.TabularInline):
    """Inline display of participants in conversation admin."""

    model = Participant
    extra = 0
    readonly_fields = [
        "joined_at",
        "left_at",
        "left_voluntarily",
        "removed_by",
        "last_read_at",
    ]
    raw_id_fields = ["user", "removed_by"]


class SupportDetailsInline(admin.StackedInline):
    model = SupportDetails
    extra = 0
    readonly_fields = ["status"]
    raw_id_fields = ["assigned_to"]


class OrderDetailsInline(admin.StackedInline):
    model = OrderDetails
    extra = 0
    readonly_fields = ["status"]
    raw_id_fields = ["driver"]


class GroupDetailsInline(admin.StackedInline):
    model = GroupDetails
    extra = 0


@admin.register(Conversation)
class ConversationAdmin(admin.ModelAdmin):
    """Admin interface for Conversation model."""

    list_display = [
        "id",
        "conversation_type",
        "title",
        "participant_count",
        "message_count",
        "is_deleted",
        "archived_at",
        "expires_at",
        "last_activity",
    ]
    list_filter = ["conversation_type", "is_deleted", "created_at"]
    search_fields = ["title", "id", "order_details__order_id"]
    readonly_fields = [
        "created_at",
        "updated_at",
        "deleted_at",
        "last_message",
        "message_count",
        "participant_count",
        "first_message_at",
        "last_message_at",
    ]
    raw_id_fields = ["created_by"]
    inlines = [
        ParticipantInline,
        SupportDetailsInline,
        OrderDetailsInline,
        GroupDetailsInline,
    ]
    ordering = ["-last_activity"]


@admin.register(DirectConversationPair)
class DirectConversationPairAdmin(admin.ModelAdmin):
    """Admin interface for DirectConversationPair model."""

    list_display = ["conversation", "user_lower", "user_higher"]
    raw_id_fields = ["conversation", "user_lower", "user_higher"]


@admin.register(Participant)
class ParticipantAdmin(admin.ModelAdmin):
    """Admin interface for Participant model."""

    list_display = [
        "id",
        "conversation",
        "user",
        "role",
        "joined_at",
        "left_at",
        "left_voluntarily",
    ]
    list_filter = ["role", "left_voluntarily", "joined_at"]
    search_fields = ["user__email", "conversation__title"]
    readonly_fields = ["created_at", "updated_at", "joined_at"]
    raw_id_fields = ["conversation", "user", "removed_by"]
    ordering = ["-joined_at"]


class MessageEditHistoryInline(admin.TabularInline):
    model = MessageEditHistory
    extra = 0
    readonly_fields = ["content", "edited_at"]


class MessageReactionInline(admin.TabularInline):
    model = MessageReaction
    extra = 0
    raw_id_fields = ["user"]


class MessageReceiptInline(admin.TabularInline):
    model = MessageReceipt
    extra = 0
    readonly_fields = ["user", "kind", "at"]


@admin.register(Message)
class MessageAdmin(admin.ModelAdmin):
    """Admin interface for Message model."""

    list_display = [
        "id",
        "conversation",
        "sender",
        "message_type",
        "content_preview",
        "is_pinned",
        "is_deleted",
        "sent_at",
    ]
    list_filter = ["message_type", "is_deleted", "delete_type", "sent_at"]
    search_fields = ["sender__email", "conversation__title"]
    readonly_fields = [
        "created_at",
        "updated_at",
        "deleted_at",
        "deleted_by",
        "delete_type",
        "edit_count",
        "last_edited_at",
    ]
    raw_id_fields = ["conversation", "sender", "reply_to", "forwarded_from", "pinned_by"]
    inlines = [MessageEditHistoryInline, MessageReactionInline, MessageReceiptInline]
    ordering = ["-sent_at"]

    @admin.display(description="Content Preview")
    def content_preview(self, obj: Message) -> str:
        """Return truncated display content for list display."""
        max_length = 50
        content = obj.get_display_content()
        if len(content) > max_length:
            return content[:max_length] + "..."
        return content
