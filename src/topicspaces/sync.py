"""Sync orchestration: cached classification, normalization, topic cap, grouping."""

import logging
import threading
from collections import Counter, defaultdict
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Optional, Protocol

from .classification_cache import CacheEntry, ClassificationCache
from .config import Settings
from .label_normalizer import LabelNormalizer, NormalizationResult
from .topic_cap import apply_topic_cap, long_tail_labels

logger = logging.getLogger(__name__)


class SyncInProgressError(Exception):
    """Raised when a sync is requested for a user whose sync is still running."""


@dataclass
class Post:
    id: str
    text: str
    summary: Optional[str] = None
    topic_label: Optional[str] = None
    metadata: dict = field(default_factory=dict)


@dataclass(frozen=True)
class Classification:
    post_id: str
    raw_label: str
    summary: str


class Classifier(Protocol):
    """Assigns a raw topic label and a summary to each post (one LLM call per batch)."""

    def classify_batch(self, posts: list[Post]) -> list[Classification]: ...


@dataclass
class TopicGroup:
    title: str
    post_ids: list[str]
    is_long_tail: bool = False


@dataclass
class SyncResult:
    posts: list[Post]
    groups: list[TopicGroup]
    normalization: NormalizationResult
    stats: dict


class TopicSync:
    """
    Turns a user's posts into Topic Space groups.

    Owns the classification cache for its lifetime. Syncs for the same user
    are serialized; a concurrent request either fails fast with
    SyncInProgressError or waits, depending on `blocking`.
    """

    def __init__(
        self,
        settings: Settings,
        classifier: Classifier,
        cache: Optional[ClassificationCache] = None,
        normalizer: Optional[LabelNormalizer] = None,
    ):
        self.settings = settings
        self.classifier = classifier
        self.cache = cache if cache is not None else ClassificationCache(enabled=settings.enable_cache)
        self.normalizer = normalizer if normalizer is not None else LabelNormalizer(settings)
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def close(self) -> None:
        self.cache.close()

    def _user_lock(self, user_id: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(user_id, threading.Lock())

    @contextmanager
    def _serialized(self, user_id: str, blocking: bool):
        lock = self._user_lock(user_id)
        if not lock.acquire(blocking=blocking):
            raise SyncInProgressError(f"Sync already running for user {user_id}")
        try:
            yield
        finally:
            lock.release()

    def sync(self, user_id: str, posts: list[Post], blocking: bool = False) -> SyncResult:
        """Classify, normalize and cap one user's posts.

        Raises:
            SyncInProgressError: If another sync for user_id is running and
                blocking is False.
        """
        with self._serialized(user_id, blocking):
            return self._run(user_id, posts)

    def _run(self, user_id: str, posts: list[Post]) -> SyncResult:
        settings = self.settings
        unique_posts = list({post.id: post for post in posts}.values())

        labels: dict[str, str] = {}
        summaries: dict[str, str] = {}
        to_classify: list[Post] = []

        for post in unique_posts:
            cached = (
                self.cache.get(user_id, post.id, post.text) if settings.skip_cached_posts else None
            )
            if cached:
                labels[post.id] = cached.topic_label
                summaries[post.id] = cached.summary
            else:
                to_classify.append(post)

        cached_count = len(unique_posts) - len(to_classify)
        if settings.log_cache_stats:
            logger.info(
                "Cache: %d hits, %d misses (%s)",
                cached_count,
                len(to_classify),
                self.cache.get_stats(user_id),
            )

        classified = self._classify(user_id, to_classify)
        for result in classified:
            labels[result.post_id] = result.raw_label
            summaries[result.post_id] = result.summary

        unclassified = [p.id for p in to_classify if p.id not in labels]
        if unclassified:
            logger.warning(
                "Classifier returned nothing for %d posts, filing them under %r",
                len(unclassified),
                settings.long_tail_label,
            )

        label_counts = dict(Counter(labels[p.id] for p in unique_posts if p.id in labels))

        normalization = self.normalizer.normalize(label_counts)
        if any(raw != canonical for raw, canonical in normalization.mapping.items()):
            rewritten = self.cache.apply_normalization(user_id, normalization.mapping)
            logger.debug("Rewrote %d cached labels after normalization", rewritten)

        display = apply_topic_cap(
            label_counts,
            normalization.mapping,
            min_posts_per_topic=settings.min_posts_per_topic,
            max_topics=settings.max_topics,
            long_tail_label=settings.long_tail_label,
        )
        demoted = long_tail_labels(
            label_counts,
            normalization.mapping,
            min_posts_per_topic=settings.min_posts_per_topic,
            max_topics=settings.max_topics,
            long_tail_label=settings.long_tail_label,
        )

        for post in unique_posts:
            if post.id in labels:
                post.topic_label = display[labels[post.id]]
                post.summary = summaries[post.id]
            else:
                post.topic_label = settings.long_tail_label
                post.summary = ""

        groups = group_posts(unique_posts, settings.long_tail_label)

        stats = {
            "total_posts": len(unique_posts),
            "cached_posts": cached_count,
            "classified_posts": len(classified),
            "unclassified_posts": len(unclassified),
            "normalization": {
                "success": normalization.success,
                "fallback_reason": normalization.fallback_reason,
                "raw_label_count": normalization.stats.raw_label_count,
                "canonical_label_count": normalization.stats.canonical_label_count,
                "merged_count": normalization.stats.merged_count,
            },
            "long_tail_labels": sorted(demoted - {settings.long_tail_label}),
            "topic_count": len(groups),
        }
        if settings.log_classification_stats:
            logger.info(
                "Sync for %s: %d posts, %d topics (%d cached, %d classified)",
                user_id,
                len(unique_posts),
                len(groups),
                cached_count,
                len(classified),
            )

        return SyncResult(posts=unique_posts, groups=groups, normalization=normalization, stats=stats)

    def _classify(self, user_id: str, posts: list[Post]) -> list[Classification]:
        """Classify posts batch by batch, caching each batch as it completes."""
        results: list[Classification] = []
        if not posts:
            return results

        texts = {post.id: post.text for post in posts}
        batch_size = self.settings.classification_batch_size

        for start in range(0, len(posts), batch_size):
            batch = posts[start : start + batch_size]
            batch_results = [
                r for r in self.classifier.classify_batch(batch) if r.post_id in texts
            ]
            self.cache.set_many(
                user_id,
                [
                    CacheEntry(
                        post_id=r.post_id,
                        text=texts[r.post_id],
                        topic_label=r.raw_label,
                        summary=r.summary,
                    )
                    for r in batch_results
                ],
            )
            results.extend(batch_results)

        return results


def group_posts(posts: list[Post], long_tail_label: str) -> list[TopicGroup]:
    """Group posts by display label, largest first, Long Tail last."""
    by_label: dict[str, list[str]] = defaultdict(list)
    for post in posts:
        by_label[post.topic_label].append(post.id)

    groups = [
        TopicGroup(title=label, post_ids=ids, is_long_tail=label == long_tail_label)
        for label, ids in by_label.items()
    ]
    groups.sort(key=lambda g: (g.is_long_tail, -len(g.post_ids), g.title))
    return groups
