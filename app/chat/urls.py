"""
URL configuration for chat API.

URL Structure:
    Conversations:
        /conversations/                              GET, POST
        /conversations/stats/                        GET
        /conversations/join/                         POST
        /conversations/{id}/                         GET, PATCH, DELETE
        /conversations/{id}/archive/                 POST, DELETE
        /conversations/{id}/mute/                    POST, DELETE
        /conversations/{id}/read/                    POST
        /conversations/{id}/leave/                   POST
        /conversations/{id}/order-status/            POST
        /conversations/{id}/support/                 POST

    Participants:
        /conversations/{id}/participants/            POST
        /conversations/{id}/participants/{user_id}/  DELETE

    Messages:
        /conversations/{id}/messages/                GET, POST
        /conversations/{id}/messages/media/          POST
        /conversations/{id}/messages/search/         GET
        /conversations/{id}/messages/{pk}/           GET, PATCH, DELETE
        /conversations/{id}/messages/{pk}/history/   GET
        /conversations/{id}/messages/{pk}/reactions/ POST, DELETE
        /conversations/{id}/messages/{pk}/pin/       POST, DELETE
        /conversations/{id}/messages/{pk}/star/      POST
        /conversations/{id}/messages/{pk}/read/      POST
        /conversations/{id}/messages/{pk}/forward/   POST

All URLs are prefixed with /api/v1/chat/ in the main URL configuration.
"""

from django.urls import include, path
from rest_framework.routers import DefaultRouter

from chat.views import ConversationViewSet, MessageViewSet

# Main router for conversations
router = DefaultRouter()
router.register(r"conversations", ConversationViewSet, basename="conversation")

app_name = "chat"

urlpatterns = [
    path("", include(router.urls)),
    # Nested routes for messages
    path(
        "conversations/<uuid:conversation_pk>/messages/",
        MessageViewSet.as_view({"get": "list", "post": "create"}),
        name="conversation-message-list",
    ),
    path(
        "conversations/<uuid:conversation_pk>/messages/media/",
        MessageViewSet.as_view({"post": "media"}),
        name="conversation-message-media",
    ),
    path(
        "conversations/<uuid:conversation_pk>/messages/search/",
        MessageViewSet.as_view({"get": "search"}),
        name="conversation-message-search",
    ),
    path(
        "conversations/<uuid:conversation_pk>/messages/<uuid:pk>/",
        MessageViewSet.as_view(
            {"get": "retrieve", "patch": "partial_update", "delete": "destroy"}
        ),
        name="conversation-message-detail",
    ),
    path(
        "conversations/<uuid:conversation_pk>/messages/<uuid:pk>/history/",
        MessageViewSet.as_view({"get": "history"}),
        name="conversation-message-history",
    ),
    path(
        "conversations/<uuid:conversation_pk>/messages/<uuid:pk>/reactions/",
        MessageViewSet.as_view({"post": "reactions", "delete": "reactions"}),
        name="conversation-message-reactions",
    ),
    path(
        "conversations/<uuid:conversation_pk>/messages/<uuid:pk>/pin/",
        MessageViewSet.as_view({"post": "pin", "delete": "pin"}),
        name="conversation-message-pin",
    ),
    path(
        "conversations/<uuid:conversation_pk>/messages/<uuid:pk>/star/",
        MessageViewSet.as_view({"post": "star"}),
        name="conversation-message-star",
    ),
    path(
        "conversations/<uuid:conversation_pk>/messages/<uuid:pk>/read/",
        MessageViewSet.as_view({"post": "read"}),
        name="conversation-message-read",
    ),
    path(
        "conversations/<uuid:conversation_pk>/messages/<uuid:pk>/forward/",
        MessageViewSet.as_view({"post": "forward"}),
        name="conversation-message-forward",
    ),
]
