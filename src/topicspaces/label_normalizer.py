"""Merge near-duplicate topic labels into a canonical vocabulary using an LLM."""

import json
import logging
from dataclasses import dataclass, field
from typing import Callable, Optional, Union

from pydantic import ValidationError

from .config import Settings
from .llm import ChatResponse, LLMError, chat_completion, parse_json_response
from .schemas import NormalizationResponse

logger = logging.getLogger(__name__)

# Why a normalization pass fell back to raw labels
FALLBACK_LLM_ERROR = "llm_error"
FALLBACK_INVALID_JSON = "invalid_json"
FALLBACK_INVALID_SCHEMA = "invalid_schema"


@dataclass(frozen=True)
class LabelInfo:
    label: str
    count: int


@dataclass
class NormalizationStats:
    raw_label_count: int = 0
    canonical_label_count: int = 0
    merged_count: int = 0


@dataclass
class NormalizationResult:
    """Output of one normalization pass.

    mapping covers every raw label passed in. success is False only when the
    LLM call failed and the labels were passed through unchanged.
    """

    mapping: dict[str, str] = field(default_factory=dict)
    canonical_labels: list[str] = field(default_factory=list)
    success: bool = True
    stats: NormalizationStats = field(default_factory=NormalizationStats)
    fallback_reason: Optional[str] = None


@dataclass(frozen=True)
class NormalizationFailure:
    reason: str
    detail: str


def _identity_result(
    labels: list[str], success: bool = True, fallback_reason: Optional[str] = None
) -> NormalizationResult:
    return NormalizationResult(
        mapping={label: label for label in labels},
        canonical_labels=list(labels),
        success=success,
        stats=NormalizationStats(
            raw_label_count=len(labels),
            canonical_label_count=len(labels),
            merged_count=0,
        ),
        fallback_reason=fallback_reason,
    )


def build_label_infos(label_counts: dict[str, int]) -> list[LabelInfo]:
    """Label frequencies sorted by count descending, then label, for a stable prompt."""
    return sorted(
        (LabelInfo(label, count) for label, count in label_counts.items()),
        key=lambda info: (-info.count, info.label),
    )


class LabelNormalizer:
    """
    One LLM pass per sync that collapses raw topic labels.

    Normalization is best-effort: every exit path returns a total mapping,
    and an LLM failure degrades to raw labels instead of raising.
    """

    def __init__(
        self,
        settings: Settings,
        chat: Callable[..., ChatResponse] = chat_completion,
    ):
        self.settings = settings
        self._chat = chat

    def normalize(self, label_counts: dict[str, int]) -> NormalizationResult:
        if not self.settings.enable_normalization:
            return _identity_result(list(label_counts))

        label_infos = build_label_infos(label_counts)
        if not label_infos:
            return NormalizationResult()

        labels = [info.label for info in label_infos]

        if len(label_infos) <= self.settings.normalization_target_labels:
            if self.settings.log_normalization_stats:
                logger.info("Skipping normalization: only %d labels", len(label_infos))
            return _identity_result(labels)

        outcome = self._request_mapping(label_infos)

        if isinstance(outcome, NormalizationFailure):
            logger.warning(
                "Label normalization failed (%s), using raw labels: %s",
                outcome.reason,
                outcome.detail,
            )
            return _identity_result(labels, success=False, fallback_reason=outcome.reason)

        return self._build_result(labels, outcome)

    def _build_prompt(self, label_infos: list[LabelInfo]) -> list[dict]:
        target = self.settings.normalization_target_labels
        maximum = self.settings.normalization_max_labels
        long_tail = self.settings.long_tail_label

        system_prompt = f"""You are a topic taxonomy expert. Your job is to normalize and consolidate topic labels.

Given a list of raw topic labels with their frequencies, create a clean set of canonical topic names by:
1. Merging similar/overlapping topics (e.g., "AI/ML", "Machine Learning", "Artificial Intelligence" → "AI & Machine Learning")
2. Keeping distinct topics separate
3. Using clear, concise names (2-5 words)
4. Preserving important distinctions (don't over-merge)
5. Never using the name "{long_tail}", it is reserved

Target: {target} canonical labels (max {maximum})

Return JSON with this exact structure:
{{
  "mapping": [
    {{ "raw": "original label 1", "canonical": "Canonical Name" }},
    {{ "raw": "original label 2", "canonical": "Canonical Name" }}
  ],
  "canonicalLabels": ["Canonical Name 1", "Canonical Name 2"]
}}

Every raw label MUST appear exactly once in the mapping."""

        labels_text = "\n".join(f'- "{info.label}" ({info.count} posts)' for info in label_infos)
        user_prompt = f"Normalize these {len(label_infos)} topic labels:\n\n{labels_text}"

        return [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ]

    def _request_mapping(
        self, label_infos: list[LabelInfo]
    ) -> Union[NormalizationResponse, NormalizationFailure]:
        """Ask the LLM for a mapping; failures come back as values, not exceptions."""
        try:
            response = self._chat(
                self._build_prompt(label_infos),
                model=self.settings.model,
                temperature=self.settings.normalization_temperature,
                json_response=True,
                timeout=self.settings.llm_timeout,
                fallback_model=self.settings.fallback_model,
                ollama_host=self.settings.ollama_host,
            )
        except LLMError as e:
            return NormalizationFailure(FALLBACK_LLM_ERROR, str(e))
        except Exception as e:
            # Any client failure degrades to raw labels
            return NormalizationFailure(FALLBACK_LLM_ERROR, f"{type(e).__name__}: {e}")

        if self.settings.log_normalization_stats:
            logger.info(
                "Normalization model: %s, tokens: %s",
                response.model,
                response.usage.get("total_tokens", "?"),
            )

        try:
            payload = parse_json_response(response.content)
        except (json.JSONDecodeError, ValueError) as e:
            return NormalizationFailure(FALLBACK_INVALID_JSON, str(e))

        try:
            return NormalizationResponse.model_validate(payload)
        except ValidationError as e:
            return NormalizationFailure(FALLBACK_INVALID_SCHEMA, str(e))

    def _build_result(
        self, labels: list[str], response: NormalizationResponse
    ) -> NormalizationResult:
        long_tail = self.settings.long_tail_label
        known = set(labels)

        mapping: dict[str, str] = {}
        for entry in response.mapping:
            if entry.raw not in known or entry.raw in mapping:
                continue
            if entry.canonical == long_tail or entry.raw == long_tail:
                # Reserved for the topic cap; keep the raw label instead
                continue
            mapping[entry.raw] = entry.canonical

        missing = [label for label in labels if label not in mapping]
        for label in missing:
            mapping[label] = label
        if missing:
            logger.debug("Normalizer omitted %d labels, mapped to themselves", len(missing))

        canonical_labels = list(
            dict.fromkeys(label for label in response.canonical_labels if label != long_tail)
        )
        merged_count = len(labels) - len(canonical_labels)

        if self.settings.log_normalization_stats:
            logger.info(
                "Normalization: %d raw → %d canonical (merged %d)",
                len(labels),
                len(canonical_labels),
                merged_count,
            )

        return NormalizationResult(
            mapping=mapping,
            canonical_labels=canonical_labels,
            success=True,
            stats=NormalizationStats(
                raw_label_count=len(labels),
                canonical_label_count=len(canonical_labels),
                merged_count=merged_count,
            ),
        )
