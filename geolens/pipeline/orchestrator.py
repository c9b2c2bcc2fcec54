"""Per-request sequencing of extraction, synthesis, inference and normalization."""

from __future__ import annotations

import time

from geolens.common.config_loader import AppSettings
from geolens.common.errors import PipelineError, failure_surface
from geolens.common.ids import generate_request_id
from geolens.common.logging import get_logger, log_event
from geolens.common.models import AnalysisRecord, Coordinate, GeometryEvidence
from geolens.common.time_utils import elapsed_ms
from geolens.inference.client import InferenceClient
from geolens.pipeline.extract import extract_code
from geolens.pipeline.normalize import normalize_reply
from geolens.pipeline.synthesize import synthesize_brief

logger = get_logger("pipeline")


class GeologyPipeline:
    """Stateless resolver: every call owns its own evidence, brief and record."""

    def __init__(self, settings: AppSettings, client: InferenceClient) -> None:
        self.settings = settings
        self.client = client

    def _stage(self, request_id: str, stage: str, event: str, **fields) -> None:
        log_event(logger, f"{stage.lower()} {event.lower()}", request_id=request_id, stage=stage, event=event, **fields)

    async def resolve(
        self,
        coord: Coordinate,
        evidence: GeometryEvidence | None = None,
        *,
        request_id: str | None = None,
    ) -> AnalysisRecord:
        request_id = request_id or generate_request_id()
        started = time.monotonic()
        stage = "COLLECTING_EVIDENCE"
        try:
            self._stage(request_id, stage, "STAGE_START", status="ok")
            extracted = extract_code(evidence.raw_text if evidence is not None else None)
            if not extracted.valid:
                log_event(
                    logger,
                    "no usable database code",
                    request_id=request_id,
                    stage=stage,
                    event="EXTRACTION_INVALID",
                    status="degraded",
                )

            stage = "SYNTHESIZING"
            resolution = self.settings.resolution
            brief = synthesize_brief(
                coord,
                evidence,
                extracted,
                authority_policy=resolution.authority_policy,
                language=resolution.language,
                locale=resolution.locale,
            )
            self._stage(
                request_id,
                stage,
                "CASE_SELECTED",
                status="ok",
                case=brief.case.name,
                code=getattr(brief.case, "code", None),
            )
            if brief.authority_policy != resolution.authority_policy:
                log_event(
                    logger,
                    f"authority policy {resolution.authority_policy!r} not applicable without a map image, "
                    f"using {brief.authority_policy!r}",
                    request_id=request_id,
                    stage=stage,
                    event="AUTHORITY_DOWNGRADED",
                    status="degraded",
                    case=brief.case.name,
                )

            stage = "INFERRING"
            reply = await self.client.generate(brief, request_id=request_id)

            stage = "NORMALIZING"
            record = normalize_reply(
                reply.text,
                coord,
                extracted,
                sources=reply.sources,
                request_id=request_id,
            )
        except PipelineError as exc:
            log_event(
                logger,
                f"request failed during {stage.lower()}: {exc}",
                request_id=request_id,
                stage=stage,
                event="FAILED",
                status="error",
                duration_ms=elapsed_ms(started),
                error_code=exc.error_code,
            )
            raise
        except Exception as exc:
            log_event(
                logger,
                f"request failed during {stage.lower()}: {exc!r}",
                request_id=request_id,
                stage=stage,
                event="FAILED",
                status="error",
                duration_ms=elapsed_ms(started),
                error_code="UNEXPECTED_ERROR",
            )
            raise

        self._stage(
            request_id,
            "DONE",
            "STAGE_END",
            status="ok",
            code=record.code,
            duration_ms=elapsed_ms(started),
        )
        return record

    async def resolve_payload(
        self,
        coord: Coordinate,
        evidence: GeometryEvidence | None = None,
        *,
        request_id: str | None = None,
    ) -> tuple[bool, dict]:
        """Return (ok, wire payload): the record dict, or the user-facing failure surface."""
        try:
            record = await self.resolve(coord, evidence, request_id=request_id)
        except Exception as exc:
            return False, failure_surface(exc, include_details=self.settings.runtime.is_development)
        return True, record.to_dict()
