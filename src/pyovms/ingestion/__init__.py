"""Ingestion layer.

Converts bus topics and protocol records into normalized metric samples and
applies them to the live vehicle state.
"""

__all__: list[str] = []
