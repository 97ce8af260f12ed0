"""
Chat application configuration.

ready() connects the narration signal receivers and builds the process-wide
realtime components:

    hub        RealtimeHub         live connections, rooms, fan-out
    cache      CacheCoordinator    listing cache and invalidation
    bridge     NotificationBridge  offline recipients -> notification worker
    publisher  ChatEventPublisher  broadcast, invalidate, notify
"""

from django.apps import AppConfig


class ChatConfig(AppConfig):
    """Configuration for the chat application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "chat"
    verbose_name = "Chat"

    def ready(self):
        from chat import signals  # noqa: F401
        from chat.bridge import NotificationBridge
        from chat.cache import CacheCoordinator
        from chat.events import ChatEventPublisher
        from chat.hub import RealtimeHub

        self.hub = RealtimeHub()
        self.cache = CacheCoordinator()
        self.bridge = NotificationBridge(self.hub)
        self.publisher = ChatEventPublisher(self.hub, self.cache, self.bridge)
