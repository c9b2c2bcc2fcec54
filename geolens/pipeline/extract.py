"""Candidate code extraction from raw feature-info responses."""

from __future__ import annotations

import json
import re
from typing import Any, Mapping

from geolens.common.constants import (
    CODE_KEY_ALIASES,
    DESCRIPTION_KEY_ALIASES,
    INVALID_LAYER_MARKERS,
)
from geolens.common.models import ExtractedCode

_TEXT_CODE_PATTERNS = (
    re.compile(r"NOTATION[\"']?[:\s=]+[\"']?([A-Za-z0-9\-_]+)", re.IGNORECASE),
    re.compile(r"CODE[\"']?[:\s=]+[\"']?([A-Za-z0-9\-_]+)", re.IGNORECASE),
)


def _marker_pattern(marker: str) -> re.Pattern[str]:
    # Marker words may be run together or separated (LayerNotDefined, layer_not_defined); the match must start a word.
    joined = r"[\s_-]*".join(re.escape(word) for word in marker.split())
    return re.compile(r"(?<![a-z0-9])" + joined, re.IGNORECASE)


_MARKER_PATTERNS = tuple(_marker_pattern(marker) for marker in INVALID_LAYER_MARKERS)


def is_invalid_marker(value: str) -> bool:
    """True when value carries an invalid-layer marker, ignoring case and in-token separators."""
    return any(pattern.search(value) for pattern in _MARKER_PATTERNS)


def _lookup_first(properties: Mapping[str, Any], aliases: tuple[str, ...]) -> str | None:
    for key in aliases:
        value = properties.get(key)
        if value in (None, ""):
            continue
        text = str(value).strip()
        if not text or is_invalid_marker(text):
            continue
        return text
    return None


def _first_feature_properties(payload: Any) -> Mapping[str, Any] | None:
    if not isinstance(payload, dict):
        return None
    features = payload.get("features")
    if not isinstance(features, list) or not features:
        return None
    first = features[0]
    if not isinstance(first, dict):
        return None
    properties = first.get("properties")
    if not isinstance(properties, dict):
        return None
    return properties


def _extract_from_text(raw_text: str) -> str | None:
    for pattern in _TEXT_CODE_PATTERNS:
        match = pattern.search(raw_text)
        if match is None:
            continue
        candidate = match.group(1)
        if is_invalid_marker(candidate):
            continue
        return candidate
    return None


def extract_code(raw_text: str | None) -> ExtractedCode:
    if raw_text is None or not raw_text.strip():
        return ExtractedCode()

    if is_invalid_marker(raw_text):
        return ExtractedCode()

    try:
        payload = json.loads(raw_text)
    except ValueError:
        code = _extract_from_text(raw_text)
        if code is None:
            return ExtractedCode(raw_text=raw_text)
        return ExtractedCode(code=code, valid=True, raw_text=raw_text)

    properties = _first_feature_properties(payload)
    if properties is None:
        return ExtractedCode(raw_text=raw_text)

    code = _lookup_first(properties, CODE_KEY_ALIASES)
    if code is None:
        return ExtractedCode(raw_text=raw_text)
    description = _lookup_first(properties, DESCRIPTION_KEY_ALIASES)
    return ExtractedCode(code=code, description=description, valid=True, raw_text=raw_text)
