"""Shared fixtures for topicspaces tests."""

import json
from unittest.mock import MagicMock

import pytest

from topicspaces.classification_cache import ClassificationCache
from topicspaces.config import Settings
from topicspaces.llm import ChatResponse
from topicspaces.sync import Classification, Post


class FakeClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, start: int = 1_700_000_000_000):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, minutes: float):
        self.now += int(minutes * 60 * 1000)


class FakeClassifier:
    """Classifier returning preassigned labels and recording every batch."""

    def __init__(self, labels: dict[str, str]):
        self.labels = labels
        self.batches: list[list[str]] = []

    def classify_batch(self, posts):
        self.batches.append([p.id for p in posts])
        return [
            Classification(post_id=p.id, raw_label=self.labels[p.id], summary=f"summary of {p.id}")
            for p in posts
            if p.id in self.labels
        ]


def make_chat(payload, model: str = "xai/test-model"):
    """MagicMock chat client returning `payload` (dict or raw string) as content."""
    content = payload if isinstance(payload, str) else json.dumps(payload)
    return MagicMock(
        return_value=ChatResponse(content=content, model=model, usage={"total_tokens": 42})
    )


@pytest.fixture
def settings():
    """Pipeline settings with the stock hyperparameters."""
    return Settings(
        normalization_target_labels=12,
        normalization_max_labels=15,
        max_topics=20,
        min_posts_per_topic=2,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return ClassificationCache(enabled=True, clock=clock)


@pytest.fixture
def sample_posts():
    """Sample posts for testing."""
    return [
        Post(id="1", text="Writing CUDA kernels for matrix multiplication"),
        Post(id="2", text="Why transformers beat RNNs on long sequences"),
        Post(id="3", text="Sourdough starter tips for cold kitchens"),
        Post(id="4", text="Shared memory bank conflicts explained"),
        Post(id="5", text="Fine-tuning small language models on a laptop"),
    ]


@pytest.fixture
def temp_config_dir(tmp_path, monkeypatch):
    """Create a temporary config directory."""
    config_dir = tmp_path / ".topicspaces"
    config_dir.mkdir()

    # Patch the config module to use temp directory
    monkeypatch.setattr("topicspaces.config.USER_CONFIG_DIR", config_dir)
    monkeypatch.setattr("topicspaces.config.USER_CONFIG_FILE", config_dir / "config.yaml")
    for var in (
        "TOPICSPACES_ENABLE_CACHE",
        "TOPICSPACES_ENABLE_NORMALIZATION",
        "TOPICSPACES_TARGET_LABELS",
        "TOPICSPACES_MAX_LABELS",
        "TOPICSPACES_MAX_TOPICS",
        "TOPICSPACES_MIN_POSTS_PER_TOPIC",
        "TOPICSPACES_LONG_TAIL_LABEL",
    ):
        monkeypatch.delenv(var, raising=False)

    return config_dir
