"""Per-post classification cache keyed by user and post id."""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Iterable, Optional

from .hashing import hash_text

logger = logging.getLogger(__name__)


@dataclass
class CachedClassification:
    """Cached classifier output for one post."""

    post_id: str
    text_hash: str
    topic_label: str
    summary: str
    raw_label: Optional[str] = None  # label before the first normalization
    cached_at: int = 0  # epoch milliseconds


@dataclass(frozen=True)
class CacheEntry:
    """Input row for ClassificationCache.set_many."""

    post_id: str
    text: str
    topic_label: str
    summary: str


def _now_ms() -> int:
    return int(time.time() * 1000)


class ClassificationCache:
    """
    In-memory classification cache: user_id -> post_id -> CachedClassification.

    An entry is valid only for the exact text it was computed from; a lookup
    with different text evicts it. When disabled, reads always miss and
    writes are dropped, so callers never see a hit.
    """

    def __init__(self, enabled: bool = True, clock: Callable[[], int] = _now_ms):
        self.enabled = enabled
        self._clock = clock
        self._users: dict[str, dict[str, CachedClassification]] = {}

    def __enter__(self) -> "ClassificationCache":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def _user_cache(self, user_id: str) -> dict[str, CachedClassification]:
        return self._users.setdefault(user_id, {})

    def get(self, user_id: str, post_id: str, current_text: str) -> Optional[CachedClassification]:
        """Return the cached classification if the post text is unchanged."""
        if not self.enabled:
            return None

        user_cache = self._users.get(user_id)
        if not user_cache:
            return None

        cached = user_cache.get(post_id)
        if cached is None:
            return None

        if cached.text_hash != hash_text(current_text):
            # Text changed since classification
            del user_cache[post_id]
            return None

        return cached

    def set(self, user_id: str, post_id: str, text: str, topic_label: str, summary: str) -> None:
        """Store a classification result, replacing any existing entry."""
        if not self.enabled:
            return

        self._user_cache(user_id)[post_id] = CachedClassification(
            post_id=post_id,
            text_hash=hash_text(text),
            topic_label=topic_label,
            summary=summary,
            cached_at=self._clock(),
        )

    def set_many(self, user_id: str, entries: Iterable[CacheEntry]) -> None:
        """Store a batch of results under a single timestamp."""
        if not self.enabled:
            return

        user_cache = self._user_cache(user_id)
        now = self._clock()
        for entry in entries:
            user_cache[entry.post_id] = CachedClassification(
                post_id=entry.post_id,
                text_hash=hash_text(entry.text),
                topic_label=entry.topic_label,
                summary=entry.summary,
                cached_at=now,
            )

    def apply_normalization(self, user_id: str, mapping: dict[str, str]) -> int:
        """
        Rewrite cached labels to their normalized names.

        The label being replaced is kept in raw_label unless an earlier
        normalization already recorded one. Returns the number of entries
        rewritten.
        """
        user_cache = self._users.get(user_id)
        if not user_cache:
            return 0

        rewritten = 0
        for cached in user_cache.values():
            normalized = mapping.get(cached.topic_label)
            if normalized and normalized != cached.topic_label:
                if cached.raw_label is None:
                    cached.raw_label = cached.topic_label
                cached.topic_label = normalized
                rewritten += 1
        return rewritten

    def get_all(self, user_id: str) -> list[CachedClassification]:
        return list(self._users.get(user_id, {}).values())

    def get_stats(self, user_id: str) -> dict:
        """Entry count plus oldest/newest entry age in whole minutes."""
        user_cache = self._users.get(user_id, {})
        if not user_cache:
            return {"total": 0, "oldest_age": 0, "newest_age": 0}

        now = self._clock()
        stamps = [c.cached_at for c in user_cache.values()]
        return {
            "total": len(user_cache),
            "oldest_age": round((now - min(stamps)) / 1000 / 60),
            "newest_age": round((now - max(stamps)) / 1000 / 60),
        }

    def clear(self, user_id: str) -> None:
        self._users.pop(user_id, None)

    def clear_all(self) -> None:
        self._users.clear()

    def close(self) -> None:
        """Drop every user's entries; the cache stays usable afterwards."""
        if self._users:
            logger.debug("Closing classification cache with %d users", len(self._users))
        self.clear_all()
