"""Bound the visible topic vocabulary and route the rest into Long Tail."""

import logging
from collections import defaultdict

logger = logging.getLogger(__name__)


def canonical_counts(
    label_counts: dict[str, int], existing_mapping: dict[str, str]
) -> dict[str, int]:
    """Aggregate post counts per canonical label (unmapped raw labels stand for themselves)."""
    counts: dict[str, int] = defaultdict(int)
    for raw_label, count in label_counts.items():
        counts[existing_mapping.get(raw_label) or raw_label] += count
    return dict(counts)


def long_tail_labels(
    label_counts: dict[str, int],
    existing_mapping: dict[str, str],
    *,
    min_posts_per_topic: int,
    max_topics: int,
    long_tail_label: str,
) -> set[str]:
    """
    Canonical labels that should be shown under the Long Tail label.

    Labels are ranked by post count descending with ties broken by label.
    A label is demoted when it covers fewer than min_posts_per_topic posts,
    or when max_topics labels ranked above it were already accepted.
    long_tail_label itself is always demoted and never uses a slot.
    """
    ranked = sorted(
        canonical_counts(label_counts, existing_mapping).items(),
        key=lambda item: (-item[1], item[0]),
    )

    demoted: set[str] = set()
    accepted = 0
    for label, count in ranked:
        if label == long_tail_label or count < min_posts_per_topic or accepted >= max_topics:
            demoted.add(label)
        else:
            accepted += 1
    return demoted


def apply_topic_cap(
    label_counts: dict[str, int],
    existing_mapping: dict[str, str],
    *,
    min_posts_per_topic: int,
    max_topics: int,
    long_tail_label: str,
) -> dict[str, str]:
    """
    Resolve every raw label to the label it is displayed under.

    Pure function: the result covers every key of label_counts and is either
    the raw label's canonical name or long_tail_label.
    """
    demoted = long_tail_labels(
        label_counts,
        existing_mapping,
        min_posts_per_topic=min_posts_per_topic,
        max_topics=max_topics,
        long_tail_label=long_tail_label,
    )

    final_mapping: dict[str, str] = {}
    for raw_label in label_counts:
        canonical = existing_mapping.get(raw_label) or raw_label
        final_mapping[raw_label] = long_tail_label if canonical in demoted else canonical

    if demoted:
        logger.info("Topic cap: %d labels merged into %r", len(demoted), long_tail_label)

    return final_mapping
