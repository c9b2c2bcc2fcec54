from __future__ import annotations

import asyncio

import pytest

from geolens.common.config_loader import RetrySettings
from geolens.common.errors import (
    EmptyResponseError,
    QuotaExceededError,
    ServiceOverloadedError,
    TransportError,
)
from geolens.inference.client import InferenceClient
from geolens.inference.transport import FailureKind, InferenceReply, TransportFailure
from geolens.pipeline.synthesize import EvidenceBrief, NoEvidence


class ScriptedTransport:
    def __init__(self, outcomes):
        self.outcomes = list(outcomes)
        self.requests = []

    async def send(self, request):
        self.requests.append(request)
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


class SleepRecorder:
    def __init__(self):
        self.delays = []

    async def __call__(self, seconds):
        self.delays.append(seconds)


def _client(transport, sleeper=None, timeout_seconds=5.0):
    return InferenceClient(
        transport,
        retry=RetrySettings(max_attempts=3, base_delay_seconds=2.0),
        timeout_seconds=timeout_seconds,
        sleep=sleeper or SleepRecorder(),
    )


def _brief(image=b"jpeg-bytes"):
    return EvidenceBrief(case=NoEvidence(), instructions="read the map", image=image)


def _overloaded():
    return TransportFailure(FailureKind.SERVICE_OVERLOADED, "503 UNAVAILABLE")


def test_transient_failures_then_success_returns_reply_with_linear_backoff():
    transport = ScriptedTransport(
        [
            TransportFailure(FailureKind.TRANSPORT_ERROR, "connection reset"),
            _overloaded(),
            InferenceReply(text='{"code": "t2"}'),
        ]
    )
    sleeper = SleepRecorder()

    reply = asyncio.run(_client(transport, sleeper).generate(_brief()))

    assert reply.text == '{"code": "t2"}'
    assert len(transport.requests) == 3
    assert sleeper.delays == [2.0, 4.0]


def test_quota_failure_short_circuits_without_retry():
    transport = ScriptedTransport([TransportFailure(FailureKind.QUOTA_EXCEEDED, "429", retry_after=30.0)])
    sleeper = SleepRecorder()

    with pytest.raises(QuotaExceededError) as excinfo:
        asyncio.run(_client(transport, sleeper).generate(_brief()))

    assert len(transport.requests) == 1
    assert sleeper.delays == []
    assert excinfo.value.retry_after == 30.0
    assert "30 secondes" in excinfo.value.user_message


def test_overload_surfaces_after_attempt_budget():
    transport = ScriptedTransport([_overloaded(), _overloaded(), _overloaded()])

    with pytest.raises(ServiceOverloadedError):
        asyncio.run(_client(transport).generate(_brief()))

    assert len(transport.requests) == 3


def test_other_transport_failure_is_reraised_with_original_message():
    transport = ScriptedTransport([TransportFailure(FailureKind.TRANSPORT_ERROR, "500 INTERNAL boom")] * 3)

    with pytest.raises(TransportError, match="500 INTERNAL boom"):
        asyncio.run(_client(transport).generate(_brief()))

    assert len(transport.requests) == 3


def test_unexpected_exception_is_retried_then_reraised_verbatim():
    transport = ScriptedTransport([RuntimeError("sdk bug")] * 3)

    with pytest.raises(RuntimeError, match="sdk bug"):
        asyncio.run(_client(transport).generate(_brief()))

    assert len(transport.requests) == 3


def test_empty_replies_trigger_single_fallback_without_image():
    transport = ScriptedTransport(
        [
            InferenceReply(text=""),
            InferenceReply(text="   "),
            InferenceReply(text=""),
            InferenceReply(text='{"code": "t2"}'),
        ]
    )

    reply = asyncio.run(_client(transport).generate(_brief()))

    assert reply.text == '{"code": "t2"}'
    assert len(transport.requests) == 4
    assert [request.image for request in transport.requests] == [b"jpeg-bytes"] * 3 + [None]


def test_empty_fallback_reply_is_empty_response():
    transport = ScriptedTransport([InferenceReply(text="")] * 4)

    with pytest.raises(EmptyResponseError):
        asyncio.run(_client(transport).generate(_brief()))

    assert len(transport.requests) == 4


def test_empty_replies_without_image_skip_fallback():
    transport = ScriptedTransport([InferenceReply(text="")] * 3)

    with pytest.raises(EmptyResponseError):
        asyncio.run(_client(transport).generate(_brief(image=None)))

    assert len(transport.requests) == 3


def test_fallback_quota_failure_is_classified():
    transport = ScriptedTransport([InferenceReply(text="")] * 3 + [TransportFailure(FailureKind.QUOTA_EXCEEDED, "429")])

    with pytest.raises(QuotaExceededError):
        asyncio.run(_client(transport).generate(_brief()))


def test_attempt_timeout_counts_as_transport_error():
    class SlowTransport:
        def __init__(self):
            self.calls = 0

        async def send(self, request):
            self.calls += 1
            await asyncio.sleep(1)
            return InferenceReply(text="{}")

    transport = SlowTransport()

    with pytest.raises(TransportError, match="timed out"):
        asyncio.run(_client(transport, timeout_seconds=0.01).generate(_brief()))

    assert transport.calls == 3
