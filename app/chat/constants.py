"""
Constants and configuration for chat module features.

This module centralizes configuration values for:
- Message operations (content limits, edit history, search)
- Conversation lifecycle (order chat expiry, group capacity)
- Reaction validation
- Cache key conventions and TTLs
- Realtime room naming and notification previews

Values that operators tune per deployment (TTLs, notification task name)
are read from Django settings with these as defaults.

Import example:
    from chat.constants import MESSAGE_CONFIG, CACHE_CONFIG
"""

from typing import Final


# =============================================================================
# Message Configuration
# =============================================================================


class MESSAGE_CONFIG:
    """Configuration for message operations."""

    # Content limits
    MAX_TEXT_LENGTH: Final[int] = 5000  # Characters

    # Edit history keeps the most recent prior payloads only
    MAX_EDIT_HISTORY: Final[int] = 10

    # Listing
    DEFAULT_PAGE_SIZE: Final[int] = 50
    MAX_PAGE_SIZE: Final[int] = 100

    # Search
    SEARCH_DEFAULT_PAGE_SIZE: Final[int] = 20
    SEARCH_MAX_PAGE_SIZE: Final[int] = 50


# =============================================================================
# Conversation Configuration
# =============================================================================


class CONVERSATION_CONFIG:
    """Configuration for conversation lifecycle."""

    # Listing
    DEFAULT_PAGE_SIZE: Final[int] = 20
    MAX_PAGE_SIZE: Final[int] = 50

    # Order chats live 30 days, then 7 more days once the order is closed
    ORDER_CHAT_TTL_DAYS: Final[int] = 30
    ORDER_CLOSED_TTL_DAYS: Final[int] = 7

    # Groups
    DEFAULT_MAX_PARTICIPANTS: Final[int] = 100
    JOIN_CODE_LENGTH: Final[int] = 6

    # Stats windows
    ACTIVE_WINDOW_DAYS: Final[int] = 7
    RECENT_CONVERSATIONS: Final[int] = 5
    TOP_SENDERS: Final[int] = 5

    # Fields a participant may change through update()
    UPDATABLE_FIELDS: Final[tuple] = (
        "title",
        "description",
        "image",
        "notification_settings",
        "privacy_settings",
        "tags",
    )

    # Group fields restricted to admins
    ADMIN_ONLY_FIELDS: Final[tuple] = ("title", "description", "image")


# =============================================================================
# Reaction Configuration
# =============================================================================


class REACTION_CONFIG:
    """Configuration for message reactions."""

    # Max characters for a single emoji (handles compound emojis)
    MAX_EMOJI_LENGTH: Final[int] = 8

    # None = allow any emoji-like string
    ALLOWED_EMOJIS: Final[tuple | None] = None


# =============================================================================
# Cache Configuration
# =============================================================================


class CACHE_CONFIG:
    """Cache key conventions used by CacheCoordinator."""

    KEY_PREFIX_CONVERSATIONS: Final[str] = "chat:conversations"
    KEY_PREFIX_MESSAGES: Final[str] = "chat:messages"
    KEY_PREFIX_STATS: Final[str] = "chat:stats"

    # Key index used when the cache backend has no delete_pattern()
    KEY_PREFIX_INDEX: Final[str] = "chat:keys"

    CONVERSATIONS_TTL_SECONDS: Final[int] = 120
    MESSAGES_TTL_SECONDS: Final[int] = 60
    STATS_TTL_SECONDS: Final[int] = 300
    INDEX_TTL_SECONDS: Final[int] = 600


# =============================================================================
# Realtime Configuration
# =============================================================================


class REALTIME_CONFIG:
    """Room naming and channel layer message types for the realtime hub."""

    ROOM_USER: Final[str] = "user"
    ROOM_CONVERSATION: Final[str] = "conversation"
    ROOM_ORDER: Final[str] = "order"
    ROOM_RESTAURANT: Final[str] = "restaurant"
    ROOM_ADMIN: Final[str] = "admin"
    ROOM_DASHBOARD: Final[str] = "dashboard"

    # Channel layer message type; dispatched to ChatConsumer.hub_event
    CHANNEL_EVENT_TYPE: Final[str] = "hub.event"

    # WebSocket close codes
    CLOSE_UNAUTHENTICATED: Final[int] = 4001
    CLOSE_FORBIDDEN: Final[int] = 4003
    CLOSE_NOT_FOUND: Final[int] = 4004


# =============================================================================
# Notification Configuration
# =============================================================================


class NOTIFICATION_CONFIG:
    """Configuration for the notification bridge."""

    PREVIEW_LENGTH: Final[int] = 100
    EVENT_NEW_MESSAGE: Final[str] = "chat_message"
    EVENT_ADDED_TO_CONVERSATION: Final[str] = "chat_participant_added"
    DEFAULT_TASK_NAME: Final[str] = "notifications.tasks.deliver_notification"
