"""Inference client with bounded retry and failure classification."""

from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable, TypeVar

from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt, wait_incrementing

from geolens.common.config_loader import RetrySettings
from geolens.common.errors import (
    EmptyResponseError,
    PipelineError,
    QuotaExceededError,
    ServiceOverloadedError,
    TransportError,
)
from geolens.common.logging import get_logger, log_event
from geolens.common.time_utils import elapsed_ms
from geolens.inference.transport import (
    FailureKind,
    InferenceReply,
    InferenceRequest,
    Transport,
    TransportFailure,
)
from geolens.pipeline.synthesize import EvidenceBrief

T = TypeVar("T")

logger = get_logger("inference")


class _EmptyReply(Exception):
    pass


def _is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, TransportFailure):
        return exc.kind is not FailureKind.QUOTA_EXCEEDED
    return isinstance(exc, Exception)


def classify_failure(exc: TransportFailure) -> PipelineError:
    if exc.kind is FailureKind.QUOTA_EXCEEDED:
        return QuotaExceededError(exc.detail, retry_after=exc.retry_after)
    if exc.kind is FailureKind.SERVICE_OVERLOADED:
        return ServiceOverloadedError(exc.detail)
    return TransportError(str(exc))


class InferenceClient:
    def __init__(
        self,
        transport: Transport,
        *,
        retry: RetrySettings | None = None,
        timeout_seconds: float = 90.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.transport = transport
        self.retry = retry or RetrySettings()
        self.timeout_seconds = timeout_seconds
        self.sleep = sleep

    async def _attempt(self, request: InferenceRequest, *, attempt: int, request_id: str | None) -> InferenceReply:
        started = time.monotonic()
        try:
            try:
                reply = await asyncio.wait_for(self.transport.send(request), timeout=self.timeout_seconds)
            except asyncio.TimeoutError as exc:
                raise TransportFailure(
                    FailureKind.TRANSPORT_ERROR,
                    f"Inference call timed out after {self.timeout_seconds}s",
                ) from exc
        except TransportFailure as exc:
            log_event(
                logger,
                "inference attempt failed",
                request_id=request_id,
                stage="INFERRING",
                event="INFERENCE_ATTEMPT",
                status="error",
                attempt=attempt,
                duration_ms=elapsed_ms(started),
                error_code=exc.kind.value,
            )
            raise

        usable = reply.usable
        log_event(
            logger,
            "inference attempt returned" if usable else "inference attempt returned no text",
            request_id=request_id,
            stage="INFERRING",
            event="INFERENCE_ATTEMPT",
            status="ok" if usable else "empty",
            attempt=attempt,
            duration_ms=elapsed_ms(started),
        )
        if not usable:
            raise _EmptyReply()
        return reply

    async def _classified(self, awaitable: Awaitable[T]) -> T:
        try:
            return await awaitable
        except TransportFailure as exc:
            raise classify_failure(exc) from exc

    async def _with_retry(self, request: InferenceRequest, request_id: str | None) -> InferenceReply:
        base = self.retry.base_delay_seconds
        counter = {"attempt": 0}

        def _before_sleep(state: RetryCallState) -> None:
            exc = state.outcome.exception() if state.outcome is not None else None
            log_event(
                logger,
                f"retrying inference after {state.next_action.sleep if state.next_action else 0:.1f}s",
                request_id=request_id,
                stage="INFERRING",
                event="INFERENCE_RETRY",
                status="retry",
                attempt=state.attempt_number,
                error_code=exc.kind.value if isinstance(exc, TransportFailure) else type(exc).__name__,
            )

        async def _one() -> InferenceReply:
            counter["attempt"] += 1
            return await self._attempt(request, attempt=counter["attempt"], request_id=request_id)

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.retry.max_attempts),
            wait=wait_incrementing(start=base, increment=base),
            retry=retry_if_exception(_is_retryable),
            before_sleep=_before_sleep,
            sleep=self.sleep,
            reraise=True,
        )
        return await self._classified(retrying(_one))

    async def generate(self, brief: EvidenceBrief, *, request_id: str | None = None) -> InferenceReply:
        request = InferenceRequest(
            instructions=brief.instructions,
            image=brief.image,
            image_mime=brief.image_mime,
        )
        try:
            return await self._with_retry(request, request_id)
        except _EmptyReply:
            pass

        if not request.image:
            raise EmptyResponseError(f"No usable text after {self.retry.max_attempts} attempts")

        log_event(
            logger,
            "empty replies with image, retrying once without image",
            request_id=request_id,
            stage="INFERRING",
            event="INFERENCE_FALLBACK_NO_IMAGE",
            status="retry",
            attempt=self.retry.max_attempts + 1,
        )
        try:
            return await self._classified(
                self._attempt(
                    request.without_image(),
                    attempt=self.retry.max_attempts + 1,
                    request_id=request_id,
                )
            )
        except _EmptyReply as exc:
            raise EmptyResponseError("No usable text from image-less fallback call") from exc
