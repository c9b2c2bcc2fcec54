from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest

from geolens.common.config_loader import AppSettings
from geolens.common.models import Coordinate, ExtractedCode, GeometryEvidence
from geolens.inference.client import InferenceClient
from geolens.inference.transport import InferenceReply
from geolens.pipeline.normalize import normalize_reply
from geolens.pipeline.orchestrator import GeologyPipeline

COORD = Coordinate(lat=46.1, lng=2.5)
REQUIRED_TOP_LEVEL = {
    "code",
    "location_name",
    "map_sheet",
    "age",
    "formation",
    "lithology",
    "description",
    "paleogeography",
    "fossils",
    "coords",
    "sources",
}
REQUIRED_PALEO = {"environment", "climate", "sea_level", "context"}


class RecordedTransport:
    async def send(self, request):
        return InferenceReply(text=Path("tests/fixtures/reply_t2.txt").read_text(encoding="utf-8"))


@pytest.mark.regression
def test_wire_record_matches_snapshot():
    pipeline = GeologyPipeline(AppSettings(), InferenceClient(RecordedTransport()))
    evidence = GeometryEvidence(raw_text='{"features":[{"properties":{"CODE":"t2"}}]}')

    ok, payload = asyncio.run(pipeline.resolve_payload(COORD, evidence))

    expected = json.loads(Path("tests/fixtures/expected_record_t2.json").read_text(encoding="utf-8"))
    assert ok is True
    assert payload == expected
    assert list(payload) == list(expected)


@pytest.mark.regression
def test_minimal_reply_still_carries_every_contract_field():
    reply = json.dumps(
        {
            "code": "Fz",
            "formation": "Alluvions récentes",
            "lithology": "Sables et graviers",
            "description": "Alluvions de fond de vallée.",
            "paleogeography": {"environment": "Plaine alluviale"},
            "fossils": [],
        }
    )

    payload = normalize_reply(reply, COORD, ExtractedCode()).to_dict()

    assert REQUIRED_TOP_LEVEL <= set(payload)
    assert REQUIRED_PALEO <= set(payload["paleogeography"])
    assert "age_ma" not in payload
    assert payload["location_name"] == ""
    assert payload["fossils"] == []
