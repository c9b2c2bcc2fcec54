"""Reply cleanup, JSON extraction and record validation."""

from __future__ import annotations

import json
import re
from typing import Any, Iterable

from geolens.common.constants import MANDATORY_RECORD_FIELDS
from geolens.common.errors import IncompleteRecordError, InvalidFormatError
from geolens.common.logging import get_logger, log_event
from geolens.common.models import (
    AnalysisRecord,
    Coordinate,
    ExtractedCode,
    Fossil,
    Paleogeography,
    Source,
)

logger = get_logger("pipeline.normalize")

_FENCE = re.compile(r"```[A-Za-z0-9_-]*")
_NUMBER = re.compile(r"-?\d+(?:[.,]\d+)?")


def strip_wrappers(text: str) -> str:
    """Remove code fences and slice from the first '{' to the last '}'."""
    cleaned = _FENCE.sub("", text).strip()
    first = cleaned.find("{")
    last = cleaned.rfind("}")
    if first != -1 and last > first:
        cleaned = cleaned[first : last + 1]
    return cleaned


def parse_reply(text: str) -> dict[str, Any]:
    cleaned = strip_wrappers(text)
    try:
        payload = json.loads(cleaned)
    except ValueError as exc:
        raise InvalidFormatError(f"Reply is not valid JSON: {cleaned[:200]!r}") from exc
    if not isinstance(payload, dict):
        raise InvalidFormatError(f"Reply JSON is a {type(payload).__name__}, expected an object")
    return payload


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return ""


def _number(value: Any) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        match = _NUMBER.search(value)
        if match:
            return float(match.group(0).replace(",", "."))
    return None


def _optional_text(value: Any) -> str | None:
    text = _text(value)
    return text or None


def upcast_fossils(value: Any) -> tuple[Fossil, ...]:
    """Accept both fossil shapes (plain names, or name/scientific_query objects)."""
    if not isinstance(value, list):
        return ()
    fossils: list[Fossil] = []
    for item in value:
        if isinstance(item, str):
            name = item.strip()
            if name:
                fossils.append(Fossil(name=name, scientific_query=name))
        elif isinstance(item, dict):
            name = _text(item.get("name"))
            query = _text(item.get("scientific_query"))
            if not name and not query:
                continue
            fossils.append(Fossil(name=name or query, scientific_query=query or name))
    return tuple(fossils)


def missing_mandatory_fields(payload: dict[str, Any]) -> list[str]:
    missing: list[str] = []
    for dotted in MANDATORY_RECORD_FIELDS:
        value: Any = payload
        for key in dotted.split("."):
            value = value.get(key) if isinstance(value, dict) else None
        if not isinstance(value, str) or not value.strip():
            missing.append(dotted)
    return missing


def build_record(
    payload: dict[str, Any],
    coord: Coordinate,
    sources: Iterable[Source] = (),
) -> AnalysisRecord:
    missing = missing_mandatory_fields(payload)
    if missing:
        raise IncompleteRecordError(missing)

    paleo = payload["paleogeography"]
    return AnalysisRecord(
        code=_text(payload["code"]),
        location_name=_text(payload.get("location_name")),
        map_sheet=_text(payload.get("map_sheet")),
        age=_text(payload.get("age")),
        age_ma=_number(payload.get("age_ma")),
        formation=_text(payload["formation"]),
        lithology=_text(payload["lithology"]),
        description=_text(payload["description"]),
        paleogeography=Paleogeography(
            environment=_text(paleo["environment"]),
            climate=_text(paleo.get("climate")),
            sea_level=_text(paleo.get("sea_level")),
            context=_text(paleo.get("context")),
            temperature=_optional_text(paleo.get("temperature")),
            sea_level_m=_number(paleo.get("sea_level_m")),
            period_en=_optional_text(paleo.get("period_en")),
        ),
        fossils=upcast_fossils(payload.get("fossils")),
        coords=coord,
        sources=tuple(sources),
    )


def normalize_reply(
    text: str,
    coord: Coordinate,
    extracted: ExtractedCode,
    *,
    sources: Iterable[Source] = (),
    request_id: str | None = None,
) -> AnalysisRecord:
    payload = parse_reply(text)
    record = build_record(payload, coord, sources)

    if extracted.valid and extracted.code and record.code != extracted.code:
        # Informational only: the reply is final once parsed.
        log_event(
            logger,
            f"inference chose code {record.code!r} over database code {extracted.code!r}",
            request_id=request_id,
            stage="NORMALIZING",
            event="CODE_DIVERGENCE",
            status="info",
            code=record.code,
        )
    return record
