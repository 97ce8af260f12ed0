"""
Realtime hub: live-connection registry, room memberships and fan-out.

One RealtimeHub is built per process in ChatConfig.ready() and handed to
every WebSocket consumer (ChatConsumer.as_asgi(hub=...)) and every request
handler (get_hub()). It tracks four registries:

    user id  -> channel names      (a user may have several tabs/devices)
    channel  -> user id
    room     -> channel names
    channel  -> rooms

Registry mutations take a threading.Lock because request threads read
presence (is_online) while the event loop registers connections.

Delivery goes through the Channels channel layer: each channel receives
{"type": "hub.event", "event": <name>, "data": <json-safe dict>}, which
ChatConsumer.hub_event forwards to the client.

Room kinds:
    user:<id>            private room, joined on authentication
    conversation:<id>    active participants
    order:<order_id>     order chat participants, assigned driver, admins
    restaurant:<id>      the restaurant's managing user, admins
    admin / dashboard    admins only

Usage:
    from chat.hub import get_hub, conversation_room

    hub = get_hub()
    hub.is_online(user.id)
    await hub.broadcast_to_room(conversation_room(conversation.id), "message:new", data)

Design Decisions:
    - Registries are process-local; the channel layer (channels_redis) carries
      delivery between processes
    - send_to_user reports whether a live connection existed; there is no
      outbox and no retry, offline users go through NotificationBridge
"""

from __future__ import annotations

import json
import logging
import threading
import uuid
from collections import defaultdict
from typing import TYPE_CHECKING, Any

from channels.exceptions import ChannelFull
from channels.layers import get_channel_layer
from django.apps import apps
from django.core.serializers.json import DjangoJSONEncoder

from chat.constants import REALTIME_CONFIG

if TYPE_CHECKING:
    from collections.abc import Iterable

    from authentication.models import User

logger = logging.getLogger(__name__)


def user_room(user_id) -> str:
    return f"{REALTIME_CONFIG.ROOM_USER}:{user_id}"


def conversation_room(conversation_id) -> str:
    return f"{REALTIME_CONFIG.ROOM_CONVERSATION}:{conversation_id}"


def order_room(order_id) -> str:
    return f"{REALTIME_CONFIG.ROOM_ORDER}:{order_id}"


def restaurant_room(restaurant_id) -> str:
    return f"{REALTIME_CONFIG.ROOM_RESTAURANT}:{restaurant_id}"


def json_safe(data: Any) -> Any:
    """Round-trip through DjangoJSONEncoder (UUIDs, datetimes, Decimals)."""
    return json.loads(json.dumps(data, cls=DjangoJSONEncoder))


class RoomAuthorizer:
    """
    Decides whether a user may subscribe to a room.

    All checks are synchronous ORM reads; consumers call can_join through
    database_sync_to_async.
    """

    def can_join(self, user: User | None, room: str) -> bool:
        if user is None or not getattr(user, "is_authenticated", False):
            return False

        kind, _, ident = room.partition(":")

        if kind in (REALTIME_CONFIG.ROOM_ADMIN, REALTIME_CONFIG.ROOM_DASHBOARD):
            return not ident and user.is_platform_admin
        if not ident:
            return False
        if kind == REALTIME_CONFIG.ROOM_USER:
            return str(user.pk) == ident
        if kind == REALTIME_CONFIG.ROOM_CONVERSATION:
            return self._is_conversation_participant(user, ident)
        if kind == REALTIME_CONFIG.ROOM_ORDER:
            return user.is_platform_admin or self._is_order_member(user, ident)
        if kind == REALTIME_CONFIG.ROOM_RESTAURANT:
            return user.is_platform_admin or user.managed_restaurant_id == ident
        return False

    @staticmethod
    def _is_conversation_participant(user: User, conversation_id: str) -> bool:
        from chat.models import Participant

        try:
            conversation_id = uuid.UUID(conversation_id)
        except ValueError:
            return False
        return Participant.objects.filter(
            conversation_id=conversation_id,
            user=user,
            left_at__isnull=True,
            conversation__is_deleted=False,
        ).exists()

    @staticmethod
    def _is_order_member(user: User, order_id: str) -> bool:
        from chat.models import OrderDetails

        details = (
            OrderDetails.objects.select_related("conversation")
            .filter(order_id=order_id)
            .first()
        )
        if details is None:
            return False
        if details.driver_id == user.pk:
            return True
        return details.conversation.participants.filter(
            user=user,
            left_at__isnull=True,
        ).exists()


class RealtimeHub:
    """
    Process-local registry of live connections with channel layer fan-out.

    Registry methods (register, unregister, join, leave, is_online, ...)
    are synchronous and thread-safe. Delivery methods (send_to_user,
    broadcast_to_room, disconnect) are coroutines.
    """

    def __init__(
        self,
        channel_layer_alias: str = "default",
        authorizer: RoomAuthorizer | None = None,
    ):
        self.channel_layer_alias = channel_layer_alias
        self.authorizer = authorizer or RoomAuthorizer()
        self._lock = threading.Lock()
        self._user_channels: dict[str, set[str]] = defaultdict(set)
        self._channel_user: dict[str, str] = {}
        self._room_channels: dict[str, set[str]] = defaultdict(set)
        self._channel_rooms: dict[str, set[str]] = defaultdict(set)

    @property
    def channel_layer(self):
        return get_channel_layer(self.channel_layer_alias)

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------

    def register(self, channel_name: str, user_id) -> bool:
        """
        Register an authenticated connection and join its private room.

        Returns:
            True if this is the user's first live connection
        """
        user_key = str(user_id)
        with self._lock:
            first = not self._user_channels.get(user_key)
            self._user_channels[user_key].add(channel_name)
            self._channel_user[channel_name] = user_key
            self._join_locked(channel_name, user_room(user_key))
        logger.debug(f"Registered channel {channel_name} for user {user_key}")
        return first

    def unregister(self, channel_name: str) -> tuple[str | None, set[str], bool]:
        """
        Drop a connection and all its room memberships.

        Returns:
            (user id, rooms the channel was in, whether the user went offline)
        """
        with self._lock:
            user_key = self._channel_user.pop(channel_name, None)
            rooms = self._channel_rooms.pop(channel_name, set())
            for room in rooms:
                members = self._room_channels.get(room)
                if members is not None:
                    members.discard(channel_name)
                    if not members:
                        del self._room_channels[room]

            went_offline = False
            if user_key is not None:
                channels = self._user_channels.get(user_key, set())
                channels.discard(channel_name)
                if not channels:
                    self._user_channels.pop(user_key, None)
                    went_offline = True
        return user_key, rooms, went_offline

    def join(self, channel_name: str, room: str) -> None:
        with self._lock:
            self._join_locked(channel_name, room)

    def _join_locked(self, channel_name: str, room: str) -> None:
        self._room_channels[room].add(channel_name)
        self._channel_rooms[channel_name].add(room)

    def leave(self, channel_name: str, room: str) -> None:
        with self._lock:
            members = self._room_channels.get(room)
            if members is not None:
                members.discard(channel_name)
                if not members:
                    del self._room_channels[room]
            rooms = self._channel_rooms.get(channel_name)
            if rooms is not None:
                rooms.discard(room)

    def rooms_for(self, channel_name: str) -> set[str]:
        with self._lock:
            return set(self._channel_rooms.get(channel_name, ()))

    def room_members(self, room: str) -> set[str]:
        with self._lock:
            return set(self._room_channels.get(room, ()))

    def in_room(self, channel_name: str, room: str) -> bool:
        with self._lock:
            return channel_name in self._room_channels.get(room, ())

    def user_for(self, channel_name: str) -> str | None:
        with self._lock:
            return self._channel_user.get(channel_name)

    def channels_for_user(self, user_id) -> set[str]:
        with self._lock:
            return set(self._user_channels.get(str(user_id), ()))

    def is_online(self, user_id) -> bool:
        with self._lock:
            return bool(self._user_channels.get(str(user_id)))

    def online_users(self, user_ids: Iterable) -> set[str]:
        """Subset of user_ids (as strings) with at least one live connection."""
        with self._lock:
            return {
                str(user_id)
                for user_id in user_ids
                if self._user_channels.get(str(user_id))
            }

    def reset(self) -> None:
        """Forget every connection (used between tests)."""
        with self._lock:
            self._user_channels.clear()
            self._channel_user.clear()
            self._room_channels.clear()
            self._channel_rooms.clear()

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    async def _deliver(self, channel_name: str, message: dict) -> bool:
        try:
            await self.channel_layer.send(channel_name, message)
            return True
        except ChannelFull:
            logger.warning(f"Channel {channel_name} is full, dropping event {message['event']}")
            return False

    def _message(self, event: str, data: Any) -> dict:
        return {
            "type": REALTIME_CONFIG.CHANNEL_EVENT_TYPE,
            "event": event,
            "data": json_safe(data),
        }

    async def send_to_user(self, user_id, event: str, data: Any) -> bool:
        """
        Deliver an event to every live connection of a user.

        Returns:
            True if at least one live connection was found
        """
        channels = self.channels_for_user(user_id)
        if not channels:
            return False
        message = self._message(event, data)
        for channel_name in channels:
            await self._deliver(channel_name, message)
        return True

    async def broadcast_to_room(
        self,
        room: str,
        event: str,
        data: Any,
        exclude_channel: str | None = None,
        exclude_user=None,
    ) -> int:
        """
        Fan an event out to every current member of a room.

        Returns:
            Number of channels the event was handed to
        """
        excluded = set()
        if exclude_channel:
            excluded.add(exclude_channel)
        if exclude_user is not None:
            excluded |= self.channels_for_user(exclude_user)

        targets = self.room_members(room) - excluded
        if not targets:
            return 0

        message = self._message(event, data)
        delivered = 0
        for channel_name in targets:
            if await self._deliver(channel_name, message):
                delivered += 1
        logger.debug(f"Broadcast {event} to {delivered} channels in {room}")
        return delivered

    async def disconnect(self, channel_name: str) -> None:
        """
        Unregister a connection.

        When it was the user's last connection, presence offline is
        broadcast (best-effort) to every room the connection was in.
        """
        user_key, rooms, went_offline = self.unregister(channel_name)
        if not went_offline:
            return
        presence = {"user_id": user_key, "status": "offline"}
        for room in rooms:
            if room == user_room(user_key):
                continue
            try:
                await self.broadcast_to_room(room, "presence", presence)
            except Exception:
                logger.exception(f"Failed to broadcast offline presence to {room}")


def get_hub() -> RealtimeHub:
    """The process-wide hub built by ChatConfig.ready()."""
    return apps.get_app_config("chat").hub
