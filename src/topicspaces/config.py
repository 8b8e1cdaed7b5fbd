"""Configuration settings for topicspaces."""

import os
from pathlib import Path

from pydantic import BaseModel, ValidationError, model_validator

# User config directory
USER_CONFIG_DIR = Path.home() / ".topicspaces"
USER_CONFIG_FILE = USER_CONFIG_DIR / "config.yaml"


class ConfigError(Exception):
    """Raised when the pipeline settings are inconsistent."""


def get_user_config() -> dict:
    """Load user configuration from ~/.topicspaces/config.yaml"""
    if not USER_CONFIG_FILE.exists():
        return {}

    try:
        import yaml

        with open(USER_CONFIG_FILE) as f:
            return yaml.safe_load(f) or {}
    except Exception:
        return {}


def save_user_config(config: dict):
    """Save user configuration to ~/.topicspaces/config.yaml"""
    import yaml

    USER_CONFIG_DIR.mkdir(parents=True, exist_ok=True)
    with open(USER_CONFIG_FILE, "w") as f:
        yaml.dump(config, f, default_flow_style=False)


# LLM settings: override with env vars or the `llm:` section of config.yaml
# Models with a provider prefix (xai/, gemini/, lm_studio/) go through litellm,
# bare "name:tag" models go straight to a local Ollama server.
DEFAULT_MODEL = os.environ.get("TOPICSPACES_MODEL", "xai/grok-4-1-fast-non-reasoning")
FALLBACK_MODEL = os.environ.get("TOPICSPACES_FALLBACK_MODEL", "xai/grok-2")
OLLAMA_HOST = os.environ.get("OLLAMA_HOST", "http://localhost:11434")
LLM_TIMEOUT = 120.0

# Classification
CLASSIFICATION_BATCH_SIZE = 20
SKIP_CACHED_POSTS = True

# Caching
ENABLE_CACHE = True

# Label normalization
ENABLE_NORMALIZATION = True
NORMALIZATION_TARGET_LABELS = 12
NORMALIZATION_MAX_LABELS = 15
NORMALIZATION_TEMPERATURE = 0.2

# Topic spaces
MAX_TOPICS = 20
MIN_POSTS_PER_TOPIC = 2
LONG_TAIL_LABEL = "Long Tail / Misc"

# Logging
LOG_CLASSIFICATION_STATS = True
LOG_CACHE_STATS = True
LOG_NORMALIZATION_STATS = True


class Settings(BaseModel):
    """Tunables read by the consolidation pipeline.

    Built once at startup (see load_settings) and passed to every component,
    so tests can construct their own without touching module state.
    """

    model: str = DEFAULT_MODEL
    fallback_model: str | None = FALLBACK_MODEL
    ollama_host: str = OLLAMA_HOST
    llm_timeout: float = LLM_TIMEOUT

    classification_batch_size: int = CLASSIFICATION_BATCH_SIZE
    skip_cached_posts: bool = SKIP_CACHED_POSTS
    enable_cache: bool = ENABLE_CACHE

    enable_normalization: bool = ENABLE_NORMALIZATION
    normalization_target_labels: int = NORMALIZATION_TARGET_LABELS
    normalization_max_labels: int = NORMALIZATION_MAX_LABELS
    normalization_temperature: float = NORMALIZATION_TEMPERATURE

    max_topics: int = MAX_TOPICS
    min_posts_per_topic: int = MIN_POSTS_PER_TOPIC
    long_tail_label: str = LONG_TAIL_LABEL

    log_classification_stats: bool = LOG_CLASSIFICATION_STATS
    log_cache_stats: bool = LOG_CACHE_STATS
    log_normalization_stats: bool = LOG_NORMALIZATION_STATS

    @model_validator(mode="after")
    def _check_bounds(self) -> "Settings":
        if self.classification_batch_size < 1:
            raise ValueError("classification_batch_size must be at least 1")
        if self.normalization_target_labels < 1:
            raise ValueError("normalization_target_labels must be at least 1")
        if self.normalization_max_labels < self.normalization_target_labels:
            raise ValueError(
                "normalization_max_labels must be >= normalization_target_labels"
            )
        if not 0.0 <= self.normalization_temperature <= 2.0:
            raise ValueError("normalization_temperature must be between 0 and 2")
        if self.max_topics < 1:
            raise ValueError("max_topics must be at least 1")
        if self.min_posts_per_topic < 1:
            raise ValueError("min_posts_per_topic must be at least 1")
        if not self.long_tail_label.strip():
            raise ValueError("long_tail_label must not be empty")
        if self.llm_timeout <= 0:
            raise ValueError("llm_timeout must be positive")
        return self


# Environment variables that override individual settings
_ENV_OVERRIDES = {
    "TOPICSPACES_ENABLE_CACHE": "enable_cache",
    "TOPICSPACES_ENABLE_NORMALIZATION": "enable_normalization",
    "TOPICSPACES_TARGET_LABELS": "normalization_target_labels",
    "TOPICSPACES_MAX_LABELS": "normalization_max_labels",
    "TOPICSPACES_MAX_TOPICS": "max_topics",
    "TOPICSPACES_MIN_POSTS_PER_TOPIC": "min_posts_per_topic",
    "TOPICSPACES_LONG_TAIL_LABEL": "long_tail_label",
}


def load_settings(**overrides) -> Settings:
    """
    Build validated settings from defaults, config.yaml, env vars and overrides.

    Later sources win. The YAML file may carry a `hyperparams:` section with
    Settings field names and an `llm:` section with model/fallback_model/
    ollama_host/timeout keys.

    Raises:
        ConfigError: If the combined values fail validation.
    """
    user_cfg = get_user_config()
    values: dict = {}

    llm_cfg = user_cfg.get("llm", {}) or {}
    for key, field in (
        ("model", "model"),
        ("fallback_model", "fallback_model"),
        ("ollama_host", "ollama_host"),
        ("timeout", "llm_timeout"),
    ):
        if key in llm_cfg:
            values[field] = llm_cfg[key]

    values.update(user_cfg.get("hyperparams", {}) or {})

    for env_var, field in _ENV_OVERRIDES.items():
        if env_var in os.environ:
            values[field] = os.environ[env_var]

    values.update(overrides)

    try:
        return Settings(**values)
    except ValidationError as e:
        raise ConfigError(f"Invalid topicspaces settings: {e}") from e
