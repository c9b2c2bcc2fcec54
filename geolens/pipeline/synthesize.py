"""Resolution case selection and instruction synthesis for the inference call.

Exactly one resolution case applies per request, chosen in fixed priority
order: manual override, parsed database code, raw feature-info text, nothing.
The case decides which evidence source is authoritative for the identity of
the geological unit (its map code). The map image, when present, is always
admissible as context for the paleo-environment narrative.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from geolens.common.constants import DEFAULT_IMAGE_MIME
from geolens.common.models import Coordinate, ExtractedCode, GeometryEvidence
from geolens.pipeline.lexicon import period_for_code, render_lexicon

POLICY_DATABASE = "database"
POLICY_IMAGE = "image"
RAW_TEXT_EXCERPT_CHARS = 1500


@dataclass(frozen=True)
class ManualOverride:
    code: str
    name = "MANUAL_OVERRIDE"


@dataclass(frozen=True)
class DatabaseAuthoritative:
    code: str
    description: str = ""
    name = "DATABASE_AUTHORITATIVE"


@dataclass(frozen=True)
class RawTextOnly:
    raw_text: str
    name = "RAW_TEXT_ONLY"


@dataclass(frozen=True)
class NoEvidence:
    name = "NO_EVIDENCE"


ResolutionCase = Union[ManualOverride, DatabaseAuthoritative, RawTextOnly, NoEvidence]


@dataclass(frozen=True)
class EvidenceBrief:
    case: ResolutionCase
    instructions: str
    image: bytes | None = None
    image_mime: str = DEFAULT_IMAGE_MIME
    authority_policy: str = POLICY_DATABASE

    @property
    def has_image(self) -> bool:
        return bool(self.image)


def select_case(manual_code: str | None, extracted: ExtractedCode) -> ResolutionCase:
    if manual_code is not None and manual_code.strip():
        return ManualOverride(code=manual_code.strip())
    if extracted.valid and extracted.code:
        return DatabaseAuthoritative(code=extracted.code, description=extracted.description or "")
    if extracted.raw_text is not None and extracted.raw_text.strip():
        return RawTextOnly(raw_text=extracted.raw_text)
    return NoEvidence()


def _manual_block(case: ManualOverride) -> list[str]:
    lines = [
        "SOURCE OF TRUTH: MANUAL OVERRIDE.",
        f'The user has confirmed that the geological unit at this point is "{case.code}".',
        "This code is ground truth for identity. Return it unchanged in the \"code\" field.",
        "Do not contradict it with the database, the image, or your own reading of the map.",
        "Synthesize the description, age, formation, lithology and paleo-context from your "
        "internal knowledge of this notation on French 1/50 000 maps, using the image only to "
        "cross-reference the local context.",
    ]
    period = period_for_code(case.code)
    if period:
        lines.append(f'Age hint from the notation prefix "{case.code[0]}": {period}.')
    return lines


def _database_block(case: DatabaseAuthoritative, policy: str) -> list[str]:
    described = f" ({case.description})" if case.description else ""
    if policy == POLICY_IMAGE:
        lines = [
            "SOURCE OF TRUTH: MAP IMAGE.",
            f'DB_HINT: the vector database suggests code "{case.code}"{described}.',
            "The database layer can be spatially offset from the scanned map. Read the code "
            "printed at the exact centre of the image; if it differs from the hint, use the "
            "printed code and ignore the hint.",
            "Use the hint only when the centre of the image is unreadable.",
        ]
    else:
        lines = [
            "SOURCE OF TRUTH: GEOLOGICAL DATABASE.",
            f'The vector database identifies the unit as "{case.code}"{described}.',
            "This code is authoritative for identity. Return it unchanged in the \"code\" field "
            "and do not override it with a visual reading of the image.",
            "Use the image only for spatial and paleo-environmental context.",
        ]
    period = period_for_code(case.code)
    if period:
        lines.append(f'Age hint from the notation prefix "{case.code[0]}": {period}.')
    return lines


def _raw_text_block(case: RawTextOnly) -> list[str]:
    excerpt = case.raw_text[:RAW_TEXT_EXCERPT_CHARS]
    return [
        "SOURCE OF TRUTH: RAW DATABASE RESPONSE.",
        "The map server returned the following unparsed response for this point:",
        f'"""{excerpt}"""',
        "Look first for a notation or code in this text (fields such as NOTATION, CODE, "
        "DESCRIPTION, LIGNE_ETIQ) and trust it.",
        "Only if the text yields nothing, read the code printed at the exact centre of the image.",
    ]


def _no_evidence_block() -> list[str]:
    return [
        "SOURCE OF TRUTH: MAP IMAGE.",
        "No database answer is available for this point.",
        "Read the code printed at the exact geometric centre of the image, under the marker.",
        "Never use the code of an adjacent, non-central polygon. If no image is attached, "
        "rely on your general knowledge of the geology at these coordinates.",
    ]


def _common_requirements(language: str, locale: str, has_image: bool) -> list[str]:
    lines = [
        f"Write every text value in {language} ({locale}).",
        "Fossils must be specific taxa (genus or species, e.g. \"Gryphaea arcuata\"), never "
        "generic terms such as \"ammonites\", \"shells\" or \"marine fauna\".",
    ]
    if has_image:
        lines.append(
            "The attached image is always valid context for the paleo-environment, climate and "
            "landscape reconstruction, whichever source decides the code."
        )
    return lines


RESPONSE_SCHEMA = """{
  "code": "map notation (e.g. j9ad)",
  "location_name": "commune or locality",
  "map_sheet": "1/50 000 sheet (number and name)",
  "age": "stratigraphic age",
  "age_ma": 160.0,
  "formation": "formation name",
  "lithology": "rock description",
  "description": "technical geological description of this unit",
  "paleogeography": {
    "environment": "depositional environment",
    "climate": "paleoclimate",
    "temperature": "approximate mean temperature",
    "sea_level": "sea level trend",
    "sea_level_m": 50,
    "context": "one sentence describing the landscape of the time",
    "period_en": "period name in English"
  },
  "fossils": [{"name": "common name", "scientific_query": "Genus species"}]
}"""


def synthesize_brief(
    coord: Coordinate,
    evidence: GeometryEvidence | None,
    extracted: ExtractedCode,
    *,
    authority_policy: str = POLICY_DATABASE,
    language: str = "français",
    locale: str = "fr-FR",
) -> EvidenceBrief:
    manual_code = evidence.manual if evidence is not None else None
    image = evidence.image_snapshot if evidence is not None else None
    has_image = bool(image)
    case = select_case(manual_code, extracted)
    # Image authority needs an image to read; without one the database code stays authoritative.
    if authority_policy == POLICY_IMAGE and not has_image:
        authority_policy = POLICY_DATABASE

    if isinstance(case, ManualOverride):
        case_lines = _manual_block(case)
    elif isinstance(case, DatabaseAuthoritative):
        case_lines = _database_block(case, authority_policy)
    elif isinstance(case, RawTextOnly):
        case_lines = _raw_text_block(case)
    else:
        case_lines = _no_evidence_block()

    sections = [
        "You are an expert geologist and paleontologist reading the BRGM 1/50 000 geological "
        "map of France.",
        "Identify the geological unit at the point below and reconstruct its ancient "
        "environment and fauna.",
        "",
        f"LOCATION: lat {coord.lat:.4f}, lng {coord.lng:.4f}",
        f"MAP IMAGE: {'attached, centred on the point' if has_image else 'not available'}",
        "",
        *case_lines,
        "",
        "NOTATION LEXICON (first letter of the code gives the period):",
        render_lexicon(),
        "",
        "REQUIREMENTS:",
        *(f"- {line}" for line in _common_requirements(language, locale, has_image)),
        "",
        "Answer with a single JSON object and nothing else, using exactly these keys:",
        RESPONSE_SCHEMA,
    ]
    return EvidenceBrief(
        case=case,
        instructions="\n".join(sections),
        image=image if has_image else None,
        authority_policy=authority_policy,
    )
