"""Metric sample model produced by the normalizer."""

from __future__ import annotations

from enum import StrEnum

from pydantic import field_validator

from pyovms.models._base import OvmsModel

MetricValue = bool | float | str
"""Coerced metric value: boolean lexicon, leading number, or trimmed text."""


class MetricSource(StrEnum):
    STANDARD = "standard"
    VENDOR = "vendor"


class MetricSample(OvmsModel):
    """A single normalized metric, consumed immediately by the live state."""

    key: str
    value: MetricValue
    source: MetricSource

    @field_validator("key")
    @classmethod
    def _normalize_key(cls, value: str) -> str:
        key = value.strip()
        if not key:
            raise ValueError("metric key must be non-empty")
        return key
