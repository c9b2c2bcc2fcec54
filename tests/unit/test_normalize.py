import json
import logging

import pytest

from geolens.common.errors import IncompleteRecordError, InvalidFormatError
from geolens.common.models import Coordinate, ExtractedCode, Fossil, Source
from geolens.pipeline.normalize import normalize_reply, strip_wrappers, upcast_fossils

COORD = Coordinate(lat=46.1, lng=2.5)


def _payload(**overrides):
    payload = {
        "code": "j9ad",
        "location_name": "Bourges",
        "map_sheet": "n°519 Bourges",
        "age": "Kimméridgien",
        "age_ma": "155",
        "formation": "Calcaires de Bourges",
        "lithology": "Calcaires micritiques",
        "description": "Calcaires blancs en bancs métriques.",
        "paleogeography": {
            "environment": "Plate-forme carbonatée peu profonde",
            "climate": "Tropical chaud",
            "sea_level": "Haut niveau marin",
            "context": "Une mer chaude et claire recouvre le Berry.",
        },
        "fossils": [{"name": "Huître", "scientific_query": "Nanogyra virgula"}],
    }
    payload.update(overrides)
    return payload


def test_strip_wrappers_removes_fences_and_commentary():
    text = 'Voici l\'analyse :\n```json\n{"code": "t2"}\n```\nBonne lecture !'
    assert strip_wrappers(text) == '{"code": "t2"}'


def test_normalize_parses_fenced_reply_with_surrounding_prose():
    text = "Here you go:\n```json\n" + json.dumps(_payload()) + "\n```\nHope this helps."

    record = normalize_reply(text, COORD, ExtractedCode())

    assert record.code == "j9ad"
    assert record.age_ma == 155.0
    assert record.coords == COORD
    assert record.sources == ()
    assert record.fossils == (Fossil(name="Huître", scientific_query="Nanogyra virgula"),)


def test_normalize_rejects_non_json_reply():
    with pytest.raises(InvalidFormatError):
        normalize_reply("Je ne peux pas lire la carte.", COORD, ExtractedCode())


def test_normalize_rejects_json_array():
    with pytest.raises(InvalidFormatError):
        normalize_reply('["j9ad"]', COORD, ExtractedCode())


def test_normalize_missing_lithology_is_incomplete():
    payload = _payload()
    payload.pop("lithology")

    with pytest.raises(IncompleteRecordError) as excinfo:
        normalize_reply(json.dumps(payload), COORD, ExtractedCode())

    assert excinfo.value.missing == ["lithology"]


def test_normalize_blank_environment_is_incomplete():
    payload = _payload(paleogeography={"environment": "  ", "climate": "x"})

    with pytest.raises(IncompleteRecordError) as excinfo:
        normalize_reply(json.dumps(payload), COORD, ExtractedCode())

    assert "paleogeography.environment" in excinfo.value.missing


def test_normalize_keeps_inference_code_on_divergence_and_logs(caplog):
    caplog.set_level(logging.INFO, logger="geolens")

    record = normalize_reply(json.dumps(_payload(code="j9b")), COORD, ExtractedCode(code="j9ad", valid=True))

    assert record.code == "j9b"
    assert any(getattr(item, "event", None) == "CODE_DIVERGENCE" for item in caplog.records)


def test_normalize_ignores_reply_coordinates_and_attaches_sources():
    payload = _payload(coords={"lat": 0, "lng": 0}, sources=[{"uri": "https://bad", "title": "bad"}])
    sources = (Source(uri="https://infoterre.brgm.fr", title="InfoTerre"),)

    record = normalize_reply(json.dumps(payload), COORD, ExtractedCode(), sources=sources)

    assert record.coords == COORD
    assert record.sources == sources


def test_upcast_fossils_accepts_plain_strings_and_objects():
    fossils = upcast_fossils(["Gryphaea arcuata", {"name": "Ammonite", "scientific_query": "Arietites bucklandi"}, {"name": ""}, 3])

    assert fossils == (
        Fossil(name="Gryphaea arcuata", scientific_query="Gryphaea arcuata"),
        Fossil(name="Ammonite", scientific_query="Arietites bucklandi"),
    )


def test_normalize_is_idempotent_on_clean_json():
    first = normalize_reply("```json\n" + json.dumps(_payload()) + "\n```", COORD, ExtractedCode())

    second = normalize_reply(json.dumps(first.to_dict(), ensure_ascii=False), COORD, ExtractedCode())

    assert second == first
    assert second.to_dict() == first.to_dict()


def test_normalize_is_idempotent_with_grounding_sources():
    sources = (
        Source(uri="https://infoterre.brgm.fr", title="InfoTerre"),
        Source(uri="https://fr.wikipedia.org/wiki/Kimm%C3%A9ridgien", title="Kimméridgien"),
    )
    first = normalize_reply(json.dumps(_payload()), COORD, ExtractedCode(code="j9ad", valid=True), sources=sources)

    second = normalize_reply(
        json.dumps(first.to_dict(), ensure_ascii=False),
        COORD,
        ExtractedCode(code="j9ad", valid=True),
        sources=sources,
    )

    assert first.sources == sources
    assert second == first
    assert second.to_dict()["sources"] == [dict(uri=s.uri, title=s.title) for s in sources]
