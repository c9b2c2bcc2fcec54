import base64
import json
import logging

import pytest

from geolens.common.errors import IncompleteRecordError, QuotaExceededError, failure_surface
from geolens.common.ids import generate_request_id
from geolens.common.logging import JsonLineFormatter
from geolens.common.models import Coordinate, GeometryEvidence


def test_coordinate_rejects_out_of_range_values():
    with pytest.raises(ValueError):
        Coordinate(lat=91.0, lng=2.0)
    with pytest.raises(ValueError):
        Coordinate(lat=46.0, lng=-181.0)
    assert Coordinate(lat=46.1, lng=2.5).to_dict() == {"lat": 46.1, "lng": 2.5}


def test_geometry_evidence_from_browser_payload_decodes_image():
    payload = {
        "rawResponse": "NOTATION: j9ad",
        "mapImageBase64": base64.b64encode(b"\xff\xd8jpeg").decode("ascii"),
        "manualCode": "J9ad",
    }

    evidence = GeometryEvidence.from_payload(payload)

    assert evidence.raw_text == "NOTATION: j9ad"
    assert evidence.image_snapshot == b"\xff\xd8jpeg"
    assert evidence.manual == "J9ad"


def test_geometry_evidence_drops_undecodable_image_and_blank_manual_code():
    evidence = GeometryEvidence.from_payload({"rawResponse": None, "mapImageBase64": "%%%", "manualCode": ""})

    assert evidence.raw_text == ""
    assert evidence.image_snapshot is None
    assert evidence.manual is None
    assert evidence.with_manual_code("  n4 ").manual == "n4"


@pytest.mark.parametrize("encoded", [12345, ["/9j/"], {"data": "/9j/"}])
def test_geometry_evidence_ignores_non_string_image_payload(encoded):
    evidence = GeometryEvidence.from_payload({"rawResponse": "NOTATION: t2", "mapImageBase64": encoded})

    assert evidence.image_snapshot is None
    assert evidence.raw_text == "NOTATION: t2"


def test_failure_surface_hides_details_outside_development():
    exc = IncompleteRecordError(["lithology"])

    assert failure_surface(exc) == {"error": exc.user_message}
    detailed = failure_surface(exc, include_details=True)
    assert detailed["details"] == "INCOMPLETE_RECORD: Missing mandatory fields: lithology"


def test_failure_surface_for_unexpected_error_uses_generic_message():
    assert failure_surface(RuntimeError("boom")) == {"error": "Impossible d'analyser la géologie."}


def test_quota_message_without_retry_after_asks_for_a_minute():
    assert "une minute" in QuotaExceededError("429").user_message


def test_generate_request_id_prefix():
    assert generate_request_id().startswith("req-")


def test_json_line_formatter_emits_stable_keys():
    record = logging.LogRecord("geolens.pipeline", logging.INFO, __file__, 1, "case selected", None, None)
    record.request_id = "req-1"
    record.case = "MANUAL_OVERRIDE"

    payload = json.loads(JsonLineFormatter().format(record))

    assert payload["request_id"] == "req-1"
    assert payload["case"] == "MANUAL_OVERRIDE"
    assert payload["attempt"] is None
    assert payload["message"] == "case selected"
