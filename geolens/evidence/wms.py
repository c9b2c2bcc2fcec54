"""Geometry evidence collection from a WMS 1.1.1 geological map service."""

from __future__ import annotations

from pyproj import Transformer

from geolens.common.config_loader import WmsSettings
from geolens.common.http import HttpClient, HttpRequestError, TimeoutConfig
from geolens.common.logging import get_logger, log_event
from geolens.common.models import Coordinate, GeometryEvidence

logger = get_logger("evidence.wms")

FEATURE_INFO_PIXELS = 101
_TO_WEB_MERCATOR = Transformer.from_crs("EPSG:4326", "EPSG:3857", always_xy=True)


def feature_info_params(coord: Coordinate, settings: WmsSettings) -> dict[str, str]:
    delta = settings.feature_delta_deg
    centre = FEATURE_INFO_PIXELS // 2
    # WMS 1.1.1 with EPSG:4326 keeps lon/lat axis order.
    bbox = f"{coord.lng - delta},{coord.lat - delta},{coord.lng + delta},{coord.lat + delta}"
    return {
        "request": "GetFeatureInfo",
        "service": "WMS",
        "version": "1.1.1",
        "srs": "EPSG:4326",
        "styles": "",
        "transparent": "true",
        "format": "image/png",
        "bbox": bbox,
        "width": str(FEATURE_INFO_PIXELS),
        "height": str(FEATURE_INFO_PIXELS),
        "layers": settings.feature_layer,
        "query_layers": settings.feature_layer,
        "info_format": "application/json",
        "x": str(centre),
        "y": str(centre),
        "feature_count": "1",
    }


def web_mercator_bbox(coord: Coordinate, delta_deg: float) -> tuple[float, float, float, float]:
    min_x, min_y = _TO_WEB_MERCATOR.transform(coord.lng - delta_deg, coord.lat - delta_deg)
    max_x, max_y = _TO_WEB_MERCATOR.transform(coord.lng + delta_deg, coord.lat + delta_deg)
    return min_x, min_y, max_x, max_y


def map_image_params(coord: Coordinate, settings: WmsSettings) -> dict[str, str]:
    bbox = web_mercator_bbox(coord, settings.image_delta_deg)
    return {
        "request": "GetMap",
        "service": "WMS",
        "version": "1.1.1",
        "srs": "EPSG:3857",
        "styles": "",
        "format": "image/jpeg",
        "bbox": ",".join(f"{value:.3f}" for value in bbox),
        "width": str(settings.image_size),
        "height": str(settings.image_size),
        "layers": settings.image_layer,
    }


def fetch_feature_info(client: HttpClient, coord: Coordinate, settings: WmsSettings) -> str:
    try:
        return client.get_text(
            settings.endpoint,
            params=feature_info_params(coord, settings),
            timeout=TimeoutConfig(connect=10, read=30),
        )
    except HttpRequestError as exc:
        log_event(
            logger,
            f"feature info query failed: {exc}",
            stage="COLLECTING_EVIDENCE",
            event="WMS_FEATURE_INFO",
            status="error",
            error_code=exc.error_code,
        )
        return ""


def fetch_map_image(client: HttpClient, coord: Coordinate, settings: WmsSettings) -> bytes | None:
    try:
        content, content_type = client.get_bytes(
            settings.endpoint,
            params=map_image_params(coord, settings),
            timeout=TimeoutConfig(connect=10, read=60),
        )
    except HttpRequestError as exc:
        log_event(
            logger,
            f"map image query failed: {exc}",
            stage="COLLECTING_EVIDENCE",
            event="WMS_MAP_IMAGE",
            status="error",
            error_code=exc.error_code,
        )
        return None

    # Small payloads are service exception documents, not rasters.
    if len(content) < settings.min_image_bytes or (content_type and not content_type.startswith("image/")):
        log_event(
            logger,
            f"map image discarded ({len(content)} bytes, {content_type or 'no content type'})",
            stage="COLLECTING_EVIDENCE",
            event="WMS_MAP_IMAGE",
            status="discarded",
        )
        return None
    return content


def fetch_geometry_evidence(
    coord: Coordinate,
    settings: WmsSettings,
    client: HttpClient | None = None,
) -> GeometryEvidence:
    owns_client = client is None
    http = client or HttpClient(rate_per_sec=settings.rate_per_sec)
    try:
        raw_text = fetch_feature_info(http, coord, settings)
        image = fetch_map_image(http, coord, settings)
    finally:
        if owns_client:
            http.close()
    return GeometryEvidence(raw_text=raw_text, image_snapshot=image)
