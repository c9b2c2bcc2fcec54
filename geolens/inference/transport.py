"""Typed transport to the multimodal inference service."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

import httpx
from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from geolens.common.constants import DEFAULT_IMAGE_MIME
from geolens.common.models import Source

_DURATION = re.compile(r"^\s*(\d+(?:\.\d+)?)s\s*$")


class FailureKind(str, Enum):
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
    SERVICE_OVERLOADED = "SERVICE_OVERLOADED"
    TRANSPORT_ERROR = "TRANSPORT_ERROR"


class TransportFailure(Exception):
    def __init__(self, kind: FailureKind, detail: str = "", *, retry_after: float | None = None) -> None:
        super().__init__(detail or kind.value)
        self.kind = kind
        self.detail = detail
        self.retry_after = retry_after


@dataclass(frozen=True)
class InferenceRequest:
    instructions: str
    image: bytes | None = None
    image_mime: str = DEFAULT_IMAGE_MIME

    def without_image(self) -> "InferenceRequest":
        return InferenceRequest(instructions=self.instructions, image=None, image_mime=self.image_mime)


@dataclass(frozen=True)
class InferenceReply:
    text: str
    sources: tuple[Source, ...] = field(default_factory=tuple)

    @property
    def usable(self) -> bool:
        return bool(self.text and self.text.strip())


class Transport(Protocol):
    async def send(self, request: InferenceRequest) -> InferenceReply: ...


def build_contents(request: InferenceRequest) -> list[types.Part]:
    parts: list[types.Part] = []
    if request.image:
        parts.append(types.Part.from_bytes(data=request.image, mime_type=request.image_mime))
    parts.append(types.Part.from_text(text=request.instructions))
    return parts


def _parse_retry_delay(details: Any) -> float | None:
    if not isinstance(details, dict):
        return None
    error = details.get("error")
    if not isinstance(error, dict):
        return None
    for item in error.get("details") or []:
        if not isinstance(item, dict):
            continue
        if not str(item.get("@type", "")).endswith("RetryInfo"):
            continue
        match = _DURATION.match(str(item.get("retryDelay", "")))
        if match:
            return float(match.group(1))
    return None


def failure_from_api_error(exc: genai_errors.APIError) -> TransportFailure:
    status = getattr(exc, "code", None)
    detail = f"{status} {getattr(exc, 'status', '') or ''} {getattr(exc, 'message', '') or ''}".strip()
    if status == 429:
        return TransportFailure(
            FailureKind.QUOTA_EXCEEDED,
            detail,
            retry_after=_parse_retry_delay(getattr(exc, "details", None)),
        )
    if status == 503:
        return TransportFailure(FailureKind.SERVICE_OVERLOADED, detail)
    return TransportFailure(FailureKind.TRANSPORT_ERROR, detail)


def grounding_sources(response: types.GenerateContentResponse) -> tuple[Source, ...]:
    if not response.candidates:
        return ()
    metadata = response.candidates[0].grounding_metadata
    if metadata is None or not metadata.grounding_chunks:
        return ()
    sources: list[Source] = []
    seen: set[str] = set()
    for chunk in metadata.grounding_chunks:
        web = chunk.web
        if web is None or not web.uri or not web.title or web.uri in seen:
            continue
        seen.add(web.uri)
        sources.append(Source(uri=web.uri, title=web.title))
    return tuple(sources)


def _reply_text(response: types.GenerateContentResponse) -> str:
    # .text raises on some blocked candidates in older SDK releases.
    try:
        return response.text or ""
    except ValueError:
        return ""


class GeminiTransport:
    def __init__(self, api_key: str, *, model: str, search_grounding: bool = False) -> None:
        self.client = genai.Client(api_key=api_key)
        self.model = model
        self.search_grounding = search_grounding

    def _config(self) -> types.GenerateContentConfig | None:
        if not self.search_grounding:
            return None
        return types.GenerateContentConfig(tools=[types.Tool(google_search=types.GoogleSearch())])

    async def send(self, request: InferenceRequest) -> InferenceReply:
        try:
            response = await self.client.aio.models.generate_content(
                model=self.model,
                contents=build_contents(request),
                config=self._config(),
            )
        except genai_errors.APIError as exc:
            raise failure_from_api_error(exc) from exc
        except (httpx.HTTPError, OSError) as exc:
            raise TransportFailure(FailureKind.TRANSPORT_ERROR, str(exc)) from exc
        return InferenceReply(text=_reply_text(response), sources=grounding_sources(response))
