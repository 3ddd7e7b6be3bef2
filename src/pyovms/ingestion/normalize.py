"""Normalization helpers.

Centralizes value coercion for textual metric encodings and the mapping of
bus topics to canonical dot-joined metric keys.
"""

from __future__ import annotations

import math
import re
from typing import Any

from pyovms._constants import METRIC_TOPIC_MARKER, STANDARD_NAMESPACE
from pyovms.models.metrics import MetricSample, MetricSource, MetricValue

_TRUE_WORDS = frozenset({"yes", "true"})
_FALSE_WORDS = frozenset({"no", "false"})
_LEADING_NUMBER = re.compile(r"^\s*([-+]?\d+(?:\.\d+)?)")


def safe_float(value: Any) -> float | None:
    if value is None or value == "" or value == "--":
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(result):
        return None
    return result


def safe_int(value: Any) -> int | None:
    parsed = safe_float(value)
    if parsed is None:
        return None
    return int(parsed)


def parse_value(raw: Any) -> MetricValue:
    """Coerce a textual metric value.

    - ``yes``/``true`` and ``no``/``false`` (any case) become booleans
    - a leading signed decimal is extracted, dropping trailing units
      (``"12.5 V"`` -> ``12.5``)
    - anything else is returned as the trimmed original string
    """
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, (int, float)):
        return float(raw)
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")
    text = str(raw)
    lowered = text.strip().lower()
    if lowered in _TRUE_WORDS:
        return True
    if lowered in _FALSE_WORDS:
        return False
    match = _LEADING_NUMBER.match(text)
    if match:
        number = float(match.group(1))
        if math.isfinite(number):
            return number
    return text.strip()


def topic_to_key(topic: str) -> str | None:
    """Strip the topic prefix up to the metric marker and dot-join the rest.

    ``ovms/user/VEH1/metric/v/b/soc`` -> ``v.b.soc``. Topics without the
    marker (client commands, notifications) yield ``None``.
    """
    _, marker, path = topic.partition(METRIC_TOPIC_MARKER)
    if not marker:
        return None
    key = path.strip("/").replace("/", ".")
    return key or None


def source_for_key(key: str) -> MetricSource:
    if key.startswith(STANDARD_NAMESPACE):
        return MetricSource.STANDARD
    return MetricSource.VENDOR


def normalize_metric(key: str, raw: Any) -> MetricSample:
    """Build a typed sample from a canonical key and its raw value."""
    return MetricSample(key=key, value=parse_value(raw), source=source_for_key(key))


def normalize_topic(topic: str, payload: Any) -> MetricSample | None:
    key = topic_to_key(topic)
    if key is None:
        return None
    return normalize_metric(key, payload)
