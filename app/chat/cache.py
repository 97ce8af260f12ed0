"""
Cache coordination for chat listings.

Key conventions:
    chat:conversations:<user_id>:<options>         conversation lists   (120s)
    chat:messages:<conversation_id>:<options>      message pages         (60s)
    chat:stats:<user_id>                           user stats           (300s)

<options> is a short digest of the listing query (page, limit, filters),
so each distinct query is cached separately and invalidated together.

Invalidation:
    Every mutation calls invalidate_conversation() after the write. With
    django-redis the prefix is cleared with delete_pattern(). Other backends
    (local memory in tests) keep a per-prefix key index under
    chat:keys:<prefix> and delete the indexed keys.

Failure policy:
    Cache errors are logged at WARNING and swallowed. A cache outage makes
    listings slower, never makes writes fail.

Usage:
    from chat.cache import CacheCoordinator

    coordinator = CacheCoordinator()
    key = coordinator.conversations_key(user.id, {"page": 1, "limit": 20})
    data = coordinator.get_or_set(key, build_listing, coordinator.conversations_ttl)
    coordinator.invalidate_conversation(conversation.id, participant_ids)
"""

from __future__ import annotations

import hashlib
import json
import logging
from typing import TYPE_CHECKING, Any

from django.conf import settings
from django.core.cache import caches

from chat.constants import CACHE_CONFIG

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

logger = logging.getLogger(__name__)

_MISSING = object()


def options_digest(options: dict | None) -> str:
    if not options:
        return "default"
    encoded = json.dumps(options, sort_keys=True, default=str).encode()
    return hashlib.md5(encoded).hexdigest()[:16]


class CacheCoordinator:
    """Reads, writes and prefix invalidation for chat cache keys."""

    def __init__(self, alias: str = "default"):
        self.alias = alias

    @property
    def cache(self):
        return caches[self.alias]

    @property
    def conversations_ttl(self) -> int:
        return getattr(
            settings, "CHAT_CACHE_TTL_CONVERSATIONS", CACHE_CONFIG.CONVERSATIONS_TTL_SECONDS
        )

    @property
    def messages_ttl(self) -> int:
        return getattr(settings, "CHAT_CACHE_TTL_MESSAGES", CACHE_CONFIG.MESSAGES_TTL_SECONDS)

    @property
    def stats_ttl(self) -> int:
        return getattr(settings, "CHAT_CACHE_TTL_STATS", CACHE_CONFIG.STATS_TTL_SECONDS)

    # ------------------------------------------------------------------
    # Keys
    # ------------------------------------------------------------------

    @staticmethod
    def conversations_prefix(user_id) -> str:
        return f"{CACHE_CONFIG.KEY_PREFIX_CONVERSATIONS}:{user_id}"

    @staticmethod
    def messages_prefix(conversation_id) -> str:
        return f"{CACHE_CONFIG.KEY_PREFIX_MESSAGES}:{conversation_id}"

    def conversations_key(self, user_id, options: dict | None = None) -> str:
        return f"{self.conversations_prefix(user_id)}:{options_digest(options)}"

    def messages_key(self, conversation_id, options: dict | None = None) -> str:
        return f"{self.messages_prefix(conversation_id)}:{options_digest(options)}"

    @staticmethod
    def stats_key(user_id) -> str:
        return f"{CACHE_CONFIG.KEY_PREFIX_STATS}:{user_id}"

    @staticmethod
    def _index_key(prefix: str) -> str:
        return f"{CACHE_CONFIG.KEY_PREFIX_INDEX}:{prefix}"

    @staticmethod
    def _prefix_of(key: str) -> str:
        return key.rsplit(":", 1)[0]

    @property
    def _supports_patterns(self) -> bool:
        return hasattr(self.cache, "delete_pattern")

    # ------------------------------------------------------------------
    # Reads and writes
    # ------------------------------------------------------------------

    def get(self, key: str, default: Any = None) -> Any:
        try:
            return self.cache.get(key, default)
        except Exception as e:
            logger.warning(f"Cache get failed for {key}: {e}")
            return default

    def set(self, key: str, value: Any, timeout: int) -> None:
        try:
            self.cache.set(key, value, timeout)
            if not self._supports_patterns and not key.startswith(
                CACHE_CONFIG.KEY_PREFIX_STATS
            ):
                self._index(key)
        except Exception as e:
            logger.warning(f"Cache set failed for {key}: {e}")

    def get_or_set(self, key: str, builder: Callable[[], Any], timeout: int) -> Any:
        """Return the cached value, building and storing it on a miss."""
        value = self.get(key, _MISSING)
        if value is not _MISSING:
            return value
        value = builder()
        self.set(key, value, timeout)
        return value

    def _index(self, key: str) -> None:
        index_key = self._index_key(self._prefix_of(key))
        keys = set(self.cache.get(index_key) or ())
        keys.add(key)
        self.cache.set(index_key, sorted(keys), CACHE_CONFIG.INDEX_TTL_SECONDS)

    # ------------------------------------------------------------------
    # Invalidation
    # ------------------------------------------------------------------

    def _delete_prefix(self, prefix: str) -> None:
        if self._supports_patterns:
            self.cache.delete_pattern(f"{prefix}:*")
            return
        index_key = self._index_key(prefix)
        keys = list(self.cache.get(index_key) or ())
        self.cache.delete_many([*keys, index_key])

    def invalidate_user(self, user_id) -> None:
        """Drop a user's conversation listings and stats."""
        try:
            self._delete_prefix(self.conversations_prefix(user_id))
            self.cache.delete(self.stats_key(user_id))
        except Exception as e:
            logger.warning(f"Cache invalidation failed for user {user_id}: {e}")

    def invalidate_conversation(self, conversation_id, user_ids: Iterable = ()) -> None:
        """
        Drop cached message pages of a conversation, plus the listings
        and stats of every affected user.
        """
        try:
            self._delete_prefix(self.messages_prefix(conversation_id))
        except Exception as e:
            logger.warning(f"Cache invalidation failed for conversation {conversation_id}: {e}")
        for user_id in user_ids:
            self.invalidate_user(user_id)
