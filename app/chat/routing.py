"""
WebSocket URL routing for the chat application.

URL Patterns:
    ws/chat/                       - Connect, authenticate, then join rooms
    ws/chat/<conversation_id>/     - Connect and join a conversation room

Authentication:
    JWT token as query parameter (?token=<jwt_access_token>), as the
    "jwt, <token>" subprotocol pair, or with an "authenticate" event after
    connecting. See chat.middleware.

Every consumer instance receives the process-wide RealtimeHub by handle.
"""

from django.urls import path

from chat.consumers import ChatConsumer


def build_websocket_urlpatterns(hub):
    consumer = ChatConsumer.as_asgi(hub=hub)
    return [
        path("ws/chat/", consumer),
        path("ws/chat/<uuid:conversation_id>/", consumer),
    ]
