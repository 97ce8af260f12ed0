"""
WebSocket consumers for the chat application.

This module implements the WebSocket consumer for real-time chat, bridging
client events to the service layer and hub events back to the client.

Consumers:
    ChatConsumer: One instance per WebSocket connection

Authentication:
    Users are authenticated via JWT, either on connect (query string or
    subprotocol, see chat.middleware) or with an "authenticate" event
    carrying {"token": "<access token>"}. An authenticated connection is
    registered with the RealtimeHub and joins its private user room.

Envelope (both directions):
    {"type": "<event>", "data": {...}}

Events accepted from the client:
    authenticate   {token}
    join           {conversation_id}
    leave          {conversation_id}
    subscribe      {room}  (order:<id>, restaurant:<id>, admin, dashboard)
    message:send   {conversation_id, message_type?, text? | content?, reply_to?, mentions?, client_id?}
    message:read   {conversation_id, message_id?}
    message:delivered {message_id}
    message:react  {message_id, emoji}  (emoji null removes)
    message:edit   {message_id, text}
    message:delete {message_id}
    typing         {conversation_id, is_typing}
    presence       {status}

Events sent to the client:
    Everything the hub delivers (message:new, message:edited, presence, ...)
    plus room:joined, room:left, status (send acknowledgements) and error.

Error handling:
    Every handler failure is logged and reported as an "error" event; the
    connection stays open.
"""

from __future__ import annotations

import logging

from channels.db import database_sync_to_async
from channels.generic.websocket import AsyncJsonWebsocketConsumer

from chat.constants import REALTIME_CONFIG
from chat.events import get_publisher
from chat.hub import conversation_room, get_hub
from chat.middleware import get_user_for_token
from chat.services import (
    ConversationService,
    MessageService,
    ReactionService,
)

logger = logging.getLogger(__name__)


class ChatError(Exception):
    """Expected failure reported to the client as an error event."""

    def __init__(self, message: str, error_code: str):
        super().__init__(message)
        self.message = message
        self.error_code = error_code


def _unwrap(result):
    if not result.success:
        raise ChatError(result.error, result.error_code)
    return result.data


class ChatConsumer(AsyncJsonWebsocketConsumer):
    """
    WebSocket consumer for real-time chat functionality.

    Attributes:
        hub: RealtimeHub handle passed through as_asgi(hub=...)
        user: Authenticated user, or None until authentication
    """

    def __init__(self, *args, hub=None, **kwargs):
        super().__init__(*args, **kwargs)
        self.hub = hub
        self.user = None

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    async def connect(self):
        """
        Accept the connection.

        Users authenticated by the middleware are registered immediately.
        With a conversation id in the URL the conversation room is joined
        too; non-participants are rejected with 4003.
        """
        if self.hub is None:
            self.hub = get_hub()

        subprotocols = self.scope.get("subprotocols") or []
        await self.accept(subprotocols[0] if subprotocols[:1] == ["jwt"] else None)

        user = self.scope.get("user")
        if user is not None and user.is_authenticated:
            await self._authenticated(user)

            conversation_id = self.scope.get("url_route", {}).get("kwargs", {}).get(
                "conversation_id"
            )
            if conversation_id is not None:
                room = conversation_room(conversation_id)
                allowed = await database_sync_to_async(self.hub.authorizer.can_join)(user, room)
                if not allowed:
                    logger.warning(
                        f"User {user.pk} is not a participant in conversation {conversation_id}"
                    )
                    await self.close(code=REALTIME_CONFIG.CLOSE_FORBIDDEN)
                    return
                await self._join(room)

    async def disconnect(self, close_code):
        """Deregister the connection; presence offline goes out if it was the last one."""
        if self.user is not None:
            await self.hub.disconnect(self.channel_name)
            logger.info(f"User {self.user.pk} disconnected (code={close_code})")

    async def _authenticated(self, user) -> None:
        self.user = user
        self.hub.register(self.channel_name, user.pk)
        logger.info(f"User {user.pk} connected on {self.channel_name}")

    async def _join(self, room: str) -> None:
        self.hub.join(self.channel_name, room)
        await self.send_event("room:joined", {"room": room})

    # ------------------------------------------------------------------
    # Client -> server
    # ------------------------------------------------------------------

    async def receive_json(self, content, **kwargs):
        if not isinstance(content, dict):
            await self.send_error("Expected a JSON object", "INVALID_EVENT")
            return

        event = content.get("type")
        data = content.get("data") or {}
        handlers = {
            "authenticate": self.handle_authenticate,
            "join": self.handle_join,
            "leave": self.handle_leave,
            "subscribe": self.handle_subscribe,
            "message:send": self.handle_message_send,
            "message:read": self.handle_message_read,
            "message:delivered": self.handle_message_delivered,
            "message:react": self.handle_message_react,
            "message:edit": self.handle_message_edit,
            "message:delete": self.handle_message_delete,
            "typing": self.handle_typing,
            "presence": self.handle_presence,
        }
        handler = handlers.get(event)
        if handler is None:
            await self.send_error(f"Unknown event '{event}'", "UNKNOWN_EVENT", event)
            return
        if event != "authenticate" and self.user is None:
            await self.send_error("Authentication required", "AUTH_REQUIRED", event)
            return

        try:
            await handler(data)
        except ChatError as e:
            await self.send_error(e.message, e.error_code, event)
        except Exception:
            logger.exception(f"Error handling {event} on {self.channel_name}")
            await self.send_error("Internal error", "INTERNAL_ERROR", event)

    async def handle_authenticate(self, data: dict) -> None:
        if self.user is not None:
            await self.send_event("status", {"authenticated": True, "user_id": self.user.pk})
            return
        user = await get_user_for_token(data.get("token") or "")
        if not user.is_authenticated:
            raise ChatError("Invalid or expired token", "AUTH_FAILED")
        await self._authenticated(user)
        await self.send_event("status", {"authenticated": True, "user_id": user.pk})

    async def handle_join(self, data: dict) -> None:
        conversation_id = data.get("conversation_id")
        if not conversation_id:
            raise ChatError("conversation_id is required", "VALIDATION_ERROR")
        room = conversation_room(conversation_id)
        if not await database_sync_to_async(self.hub.authorizer.can_join)(self.user, room):
            raise ChatError("Conversation not found", "NOT_PARTICIPANT")
        await self._join(room)

    async def handle_leave(self, data: dict) -> None:
        room = conversation_room(data.get("conversation_id"))
        self.hub.leave(self.channel_name, room)
        await self.send_event("room:left", {"room": room})

    async def handle_subscribe(self, data: dict) -> None:
        room = data.get("room") or ""
        if not await database_sync_to_async(self.hub.authorizer.can_join)(self.user, room):
            raise ChatError("Not allowed to subscribe to this room", "PERMISSION_DENIED")
        await self._join(room)

    async def handle_message_send(self, data: dict) -> None:
        message = await database_sync_to_async(self._send_message)(data)
        await self.send_event(
            "status",
            {
                "client_id": data.get("client_id"),
                "message_id": str(message.id),
                "status": "sent",
                "sent_at": message.sent_at.isoformat(),
            },
        )

    def _send_message(self, data: dict):
        conversation = _unwrap(
            ConversationService.get_for_user(data.get("conversation_id"), self.user)
        )
        message = _unwrap(
            MessageService.append_content(
                conversation,
                self.user,
                data.get("message_type") or "text",
                data.get("content") if data.get("content") is not None else data.get("text"),
                reply_to=data.get("reply_to"),
                mentions=data.get("mentions"),
            )
        )
        get_publisher().message_created(message)
        return message

    async def handle_message_read(self, data: dict) -> None:
        await database_sync_to_async(self._mark_read)(data)

    def _mark_read(self, data: dict) -> None:
        conversation = _unwrap(
            ConversationService.get_for_user(data.get("conversation_id"), self.user)
        )
        message_id = data.get("message_id")
        if message_id:
            message = _unwrap(MessageService.get_for_user(message_id, self.user))
            if message.conversation_id != conversation.id:
                raise ChatError("Message not found", "MESSAGE_NOT_FOUND")
            count = int(_unwrap(MessageService.mark_read(message, self.user)))
        else:
            count = _unwrap(MessageService.mark_all_read(conversation, self.user))
        get_publisher().messages_read(conversation, self.user, message_id=message_id, count=count)

    async def handle_message_delivered(self, data: dict) -> None:
        await database_sync_to_async(self._mark_delivered)(data)

    def _mark_delivered(self, data: dict) -> None:
        message = _unwrap(MessageService.get_for_user(data.get("message_id"), self.user))
        if _unwrap(MessageService.mark_delivered(message, self.user)):
            get_publisher().message_delivered(message, self.user)

    async def handle_message_react(self, data: dict) -> None:
        await database_sync_to_async(self._react)(data)

    def _react(self, data: dict) -> None:
        message = _unwrap(MessageService.get_for_user(data.get("message_id"), self.user))
        emoji = data.get("emoji")
        if emoji:
            _unwrap(ReactionService.add_reaction(message, self.user, emoji))
        else:
            _unwrap(ReactionService.remove_reaction(message, self.user))
        get_publisher().reaction_changed(message, self.user, emoji or None)

    async def handle_message_edit(self, data: dict) -> None:
        await database_sync_to_async(self._edit)(data)

    def _edit(self, data: dict) -> None:
        message = _unwrap(MessageService.get_for_user(data.get("message_id"), self.user))
        message = _unwrap(MessageService.edit(message, self.user, data.get("text") or ""))
        get_publisher().message_edited(message)

    async def handle_message_delete(self, data: dict) -> None:
        await database_sync_to_async(self._delete)(data)

    def _delete(self, data: dict) -> None:
        message = _unwrap(MessageService.get_for_user(data.get("message_id"), self.user))
        message = _unwrap(MessageService.soft_delete(message, self.user))
        get_publisher().message_deleted(message)

    async def handle_typing(self, data: dict) -> None:
        """Typing is only relayed to rooms this connection has joined."""
        room = conversation_room(data.get("conversation_id"))
        if not self.hub.in_room(self.channel_name, room):
            raise ChatError("Join the conversation first", "NOT_JOINED")
        await self.hub.broadcast_to_room(
            room,
            "typing",
            {
                "conversation_id": data.get("conversation_id"),
                "user_id": self.user.pk,
                "is_typing": bool(data.get("is_typing", True)),
            },
            exclude_channel=self.channel_name,
        )

    async def handle_presence(self, data: dict) -> None:
        status = data.get("status") or "online"
        if status not in ("online", "away", "busy"):
            raise ChatError(f"Unknown presence status '{status}'", "VALIDATION_ERROR")
        presence = {"user_id": self.user.pk, "status": status}
        for room in self.hub.rooms_for(self.channel_name):
            if room.startswith(f"{REALTIME_CONFIG.ROOM_USER}:"):
                continue
            await self.hub.broadcast_to_room(
                room, "presence", presence, exclude_channel=self.channel_name
            )

    # ------------------------------------------------------------------
    # Server -> client
    # ------------------------------------------------------------------

    async def hub_event(self, event):
        """Handler for channel layer messages of type "hub.event"."""
        await self.send_json({"type": event["event"], "data": event["data"]})

    async def send_event(self, event: str, data: dict) -> None:
        await self.send_json({"type": event, "data": data})

    async def send_error(self, message: str, error_code: str, event: str | None = None) -> None:
        await self.send_event(
            "error",
            {"error": message, "error_code": error_code, "event": event},
        )
