"""Pydantic schemas for structured LLM replies."""

from pydantic import BaseModel, ConfigDict, Field


class LabelMappingEntry(BaseModel):
    """One raw label and the canonical name it merges into."""

    raw: str
    canonical: str = Field(min_length=1)


class NormalizationResponse(BaseModel):
    """Reply expected from the label normalization prompt."""

    model_config = ConfigDict(populate_by_name=True)

    mapping: list[LabelMappingEntry]
    canonical_labels: list[str] = Field(alias="canonicalLabels")
