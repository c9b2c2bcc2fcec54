"""Data models used across the pipeline."""

from __future__ import annotations

import base64
import binascii
from dataclasses import asdict, dataclass, field, replace
from typing import Any


@dataclass(frozen=True)
class Coordinate:
    lat: float
    lng: float

    def __post_init__(self) -> None:
        if not -90 <= self.lat <= 90:
            raise ValueError(f"Latitude out of range: {self.lat}")
        if not -180 <= self.lng <= 180:
            raise ValueError(f"Longitude out of range: {self.lng}")

    def to_dict(self) -> dict[str, float]:
        return {"lat": self.lat, "lng": self.lng}


@dataclass(frozen=True)
class GeometryEvidence:
    raw_text: str = ""
    image_snapshot: bytes | None = None
    manual_code: str | None = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "GeometryEvidence":
        """Build evidence from the browser wire shape (rawResponse, mapImageBase64, manualCode)."""
        image = None
        encoded = payload.get("mapImageBase64")
        if isinstance(encoded, str) and encoded:
            if "," in encoded and encoded.startswith("data:"):
                encoded = encoded.split(",", 1)[1]
            try:
                image = base64.b64decode(encoded, validate=True)
            except (binascii.Error, ValueError):
                image = None
        manual = payload.get("manualCode")
        return cls(
            raw_text=str(payload.get("rawResponse") or ""),
            image_snapshot=image or None,
            manual_code=str(manual) if manual else None,
        )

    def with_manual_code(self, code: str) -> "GeometryEvidence":
        return replace(self, manual_code=code)

    @property
    def manual(self) -> str | None:
        if self.manual_code is None:
            return None
        stripped = self.manual_code.strip()
        return stripped or None


@dataclass(frozen=True)
class ExtractedCode:
    code: str | None = None
    description: str | None = None
    valid: bool = False
    raw_text: str | None = None


@dataclass(frozen=True)
class Fossil:
    name: str
    scientific_query: str


@dataclass(frozen=True)
class Paleogeography:
    environment: str
    climate: str = ""
    sea_level: str = ""
    context: str = ""
    temperature: str | None = None
    sea_level_m: float | None = None
    period_en: str | None = None


@dataclass(frozen=True)
class Source:
    uri: str
    title: str


@dataclass(frozen=True)
class AnalysisRecord:
    code: str
    location_name: str
    map_sheet: str
    age: str
    formation: str
    lithology: str
    description: str
    paleogeography: Paleogeography
    fossils: tuple[Fossil, ...]
    coords: Coordinate
    age_ma: float | None = None
    sources: tuple[Source, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        if payload["age_ma"] is None:
            payload.pop("age_ma")
        paleo = payload["paleogeography"]
        for optional_key in ("temperature", "sea_level_m", "period_en"):
            if paleo[optional_key] is None:
                paleo.pop(optional_key)
        payload["fossils"] = [dict(item) for item in payload["fossils"]]
        payload["sources"] = [dict(item) for item in payload["sources"]]
        return payload
