"""CLI entrypoint for the geological code resolution pipeline."""

from __future__ import annotations

import argparse
import asyncio
import base64
import json
import sys
from pathlib import Path

from geolens.common.config_loader import AppSettings, load_settings
from geolens.common.constants import EXIT_HARD_FAIL, EXIT_RESOLUTION_FAILED, EXIT_SUCCESS
from geolens.common.errors import PipelineError, failure_surface
from geolens.common.fs import read_bytes, read_json, read_text, write_json
from geolens.common.ids import generate_request_id
from geolens.common.logging import build_logger, get_logger, log_event
from geolens.common.models import Coordinate, GeometryEvidence
from geolens.evidence.debounce import ClickDebouncer
from geolens.evidence.wms import fetch_geometry_evidence
from geolens.inference.client import InferenceClient
from geolens.inference.transport import GeminiTransport, Transport
from geolens.pipeline.orchestrator import GeologyPipeline

COMMANDS = ("analyze", "evidence", "clicks")

logger = get_logger("cli")


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("command", choices=COMMANDS)
    parser.add_argument("--lat", type=float, default=None)
    parser.add_argument("--lng", type=float, default=None)
    parser.add_argument("--events", default=None)
    parser.add_argument("--raw-text-file", default=None)
    parser.add_argument("--evidence-json", default=None)
    parser.add_argument("--image", default=None)
    parser.add_argument("--manual-code", default=None)
    parser.add_argument("--fetch-wms", action="store_true")
    parser.add_argument("--config", default=None)
    parser.add_argument("--overlay-config", default=None)
    parser.add_argument("--request-id", default=None)
    parser.add_argument("--output", default=None)
    parser.add_argument("--log-file", default=None)
    parser.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    return parser.parse_args(argv)


def build_transport(settings: AppSettings) -> Transport:
    return GeminiTransport(
        settings.inference.api_key(),
        model=settings.inference.model,
        search_grounding=settings.inference.search_grounding,
    )


def collect_evidence(args: argparse.Namespace, coord: Coordinate, settings: AppSettings) -> GeometryEvidence | None:
    evidence: GeometryEvidence | None = None
    if args.evidence_json:
        evidence = GeometryEvidence.from_payload(read_json(Path(args.evidence_json)))
    elif args.fetch_wms:
        evidence = fetch_geometry_evidence(coord, settings.wms)

    if args.raw_text_file:
        evidence = GeometryEvidence(
            raw_text=read_text(Path(args.raw_text_file)),
            image_snapshot=evidence.image_snapshot if evidence else None,
            manual_code=evidence.manual_code if evidence else None,
        )
    if args.image:
        evidence = GeometryEvidence(
            raw_text=evidence.raw_text if evidence else "",
            image_snapshot=read_bytes(Path(args.image)),
            manual_code=evidence.manual_code if evidence else None,
        )
    if args.manual_code:
        evidence = (evidence or GeometryEvidence()).with_manual_code(args.manual_code)
    return evidence


def _emit(payload: dict, output: str | None) -> None:
    if output:
        write_json(Path(output), payload)
    else:
        sys.stdout.write(json.dumps(payload, ensure_ascii=False, indent=2) + "\n")


def _evidence_payload(evidence: GeometryEvidence | None) -> dict:
    if evidence is None:
        return {"rawResponse": ""}
    payload = {"rawResponse": evidence.raw_text}
    if evidence.image_snapshot:
        payload["mapImageBase64"] = base64.b64encode(evidence.image_snapshot).decode("ascii")
    if evidence.manual_code:
        payload["manualCode"] = evidence.manual_code
    return payload


def read_click_events(path: Path) -> list[tuple[Coordinate, GeometryEvidence, float | None]]:
    """Parse a JSON-lines file of map clicks: lat, lng, optional `at` seconds and the browser evidence keys."""
    events = []
    for line in read_text(path).splitlines():
        if not line.strip():
            continue
        item = json.loads(line)
        if not isinstance(item, dict):
            raise ValueError(f"Click event must be a JSON object: {line[:80]!r}")
        at = item.get("at")
        events.append(
            (
                Coordinate(lat=float(item["lat"]), lng=float(item["lng"])),
                GeometryEvidence.from_payload(item),
                float(at) if at is not None else None,
            )
        )
    return events


async def resolve_clicks(
    pipeline: GeologyPipeline,
    debouncer: ClickDebouncer,
    events: list[tuple[Coordinate, GeometryEvidence, float | None]],
    *,
    request_id: str,
) -> tuple[bool, list[dict]]:
    all_ok = True
    results = []
    for index, (coord, evidence, at) in enumerate(events, start=1):
        click_id = f"{request_id}-{index}"
        entry: dict = {"coords": coord.to_dict(), "accepted": debouncer.accept(at)}
        if entry["accepted"]:
            ok, entry["result"] = await pipeline.resolve_payload(coord, evidence, request_id=click_id)
            all_ok = all_ok and ok
        else:
            log_event(
                logger,
                "click ignored inside cool-down window",
                request_id=click_id,
                event="CLICK_DEBOUNCED",
                status="skipped",
            )
        results.append(entry)
    return all_ok, results


def run_command(args: argparse.Namespace) -> int:
    request_id = args.request_id or generate_request_id()
    logger = build_logger(args.log_level, Path(args.log_file) if args.log_file else None)

    coord: Coordinate | None = None
    events: list[tuple[Coordinate, GeometryEvidence, float | None]] = []
    try:
        settings = load_settings(
            Path(args.config) if args.config else None,
            overlay_path=Path(args.overlay_config) if args.overlay_config else None,
        )
        if args.command == "clicks":
            if not args.events:
                raise ValueError("--events is required for the clicks command")
            events = read_click_events(Path(args.events))
        else:
            if args.lat is None or args.lng is None:
                raise ValueError(f"--lat and --lng are required for the {args.command} command")
            coord = Coordinate(lat=args.lat, lng=args.lng)
    except (PipelineError, ValueError, TypeError, KeyError, OSError) as exc:
        log_event(logger, f"startup failed: {exc}", request_id=request_id, event="STARTUP_FAIL", status="error")
        _emit(failure_surface(exc), args.output)
        return EXIT_HARD_FAIL

    evidence: GeometryEvidence | None = None
    if coord is not None:
        log_event(logger, "collecting evidence", request_id=request_id, stage="COLLECTING_EVIDENCE", event="STAGE_START", status="ok")
        evidence = collect_evidence(args, coord, settings)
        if args.command == "evidence":
            _emit(_evidence_payload(evidence), args.output)
            return EXIT_SUCCESS

    try:
        client = InferenceClient(
            build_transport(settings),
            retry=settings.retry,
            timeout_seconds=settings.inference.timeout_seconds,
        )
    except PipelineError as exc:
        log_event(
            logger,
            f"inference transport unavailable: {exc}",
            request_id=request_id,
            event="STARTUP_FAIL",
            status="error",
            error_code=exc.error_code,
        )
        _emit(failure_surface(exc, include_details=settings.runtime.is_development), args.output)
        return EXIT_HARD_FAIL

    pipeline = GeologyPipeline(settings, client)
    if args.command == "clicks":
        debouncer = ClickDebouncer.from_settings(settings.debounce)
        ok, results = asyncio.run(resolve_clicks(pipeline, debouncer, events, request_id=request_id))
        _emit({"clicks": results}, args.output)
    else:
        ok, payload = asyncio.run(pipeline.resolve_payload(coord, evidence, request_id=request_id))
        _emit(payload, args.output)
    return EXIT_SUCCESS if ok else EXIT_RESOLUTION_FAILED


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv or sys.argv[1:])
    try:
        return run_command(args)
    except PipelineError:
        return EXIT_HARD_FAIL
    except Exception:
        return EXIT_HARD_FAIL


if __name__ == "__main__":
    raise SystemExit(main())
