"""
Chat app for real-time messaging.

This app handles:
- Conversations (direct, support, order, group and broadcast)
- Message sending, editing, soft deletion, reactions and pins
- Delivery and read receipts with recomputed unread counts
- WebSocket real-time updates through the RealtimeHub
- Cache invalidation and offline notification hand-off

Related apps:
    - authentication: User model for participants, roles and support agents

WebSocket Support:
    Uses Django Channels for real-time communication.
    See consumers.py for WebSocket handlers.
    See routing.py for WebSocket URL patterns.

Usage:
    from chat.events import get_publisher
    from chat.services import ConversationService, MessageService

    conversation = ConversationService.create_direct(user, other_user).data
    result = MessageService.append_text(conversation, user, "Hello!")
    if result.success:
        get_publisher().message_created(result.data)
"""
