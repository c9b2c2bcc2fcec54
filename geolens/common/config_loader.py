"""Configuration loading and validation."""

from __future__ import annotations

import os
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any

from geolens.common.errors import ConfigError
from geolens.common.fs import read_yaml
from geolens.common.schema import validate_app_config

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parents[2] / "config" / "geolens.yml"


@dataclass(frozen=True)
class RuntimeSettings:
    environment: str = "production"

    @property
    def is_development(self) -> bool:
        return self.environment == "development"


@dataclass(frozen=True)
class InferenceSettings:
    model: str = "gemini-2.5-flash"
    api_key_env: str = "GEMINI_API_KEY"
    search_grounding: bool = False
    timeout_seconds: float = 90.0

    def api_key(self) -> str:
        value = os.environ.get(self.api_key_env, "").strip()
        if not value:
            raise ConfigError(f"Inference API key not configured: set {self.api_key_env}")
        return value


@dataclass(frozen=True)
class RetrySettings:
    max_attempts: int = 3
    base_delay_seconds: float = 2.0


@dataclass(frozen=True)
class ResolutionSettings:
    authority_policy: str = "database"
    locale: str = "fr-FR"
    language: str = "français"


@dataclass(frozen=True)
class WmsSettings:
    endpoint: str = "https://geoservices.brgm.fr/geologie"
    feature_layer: str = "GEO50K_HARM"
    image_layer: str = "SCAN_D_GEOL50"
    image_size: int = 512
    image_delta_deg: float = 0.005
    feature_delta_deg: float = 0.001
    min_image_bytes: int = 2000
    rate_per_sec: float = 2.0


@dataclass(frozen=True)
class DebounceSettings:
    cooldown_seconds: float = 1.0


@dataclass(frozen=True)
class AppSettings:
    runtime: RuntimeSettings = RuntimeSettings()
    inference: InferenceSettings = InferenceSettings()
    retry: RetrySettings = RetrySettings()
    resolution: ResolutionSettings = ResolutionSettings()
    wms: WmsSettings = WmsSettings()
    debounce: DebounceSettings = DebounceSettings()


def _deep_merge(base: Any, overlay: Any) -> Any:
    if isinstance(base, dict) and isinstance(overlay, dict):
        merged = dict(base)
        for key, value in overlay.items():
            if key in merged:
                merged[key] = _deep_merge(merged[key], value)
            else:
                merged[key] = value
        return merged
    return overlay


def _apply_overlay(base: dict, overlay_path: Path | None) -> dict:
    if overlay_path is None or not overlay_path.exists():
        return base
    overlay = read_yaml(overlay_path)
    if not overlay:
        return base
    return _deep_merge(base, overlay)


def _load_yaml_with_overlay(path: Path, overlay_path: Path | None) -> dict:
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}")
    return _apply_overlay(read_yaml(path) or {}, overlay_path)


def settings_from_mapping(cfg: dict) -> AppSettings:
    wms = cfg["wms"]
    return AppSettings(
        runtime=RuntimeSettings(environment=str(cfg["runtime"]["environment"])),
        inference=InferenceSettings(
            model=str(cfg["inference"]["model"]),
            api_key_env=str(cfg["inference"]["api_key_env"]),
            search_grounding=bool(cfg["inference"]["search_grounding"]),
            timeout_seconds=float(cfg["inference"]["timeout_seconds"]),
        ),
        retry=RetrySettings(
            max_attempts=int(cfg["retry"]["max_attempts"]),
            base_delay_seconds=float(cfg["retry"]["base_delay_seconds"]),
        ),
        resolution=ResolutionSettings(
            authority_policy=str(cfg["resolution"]["authority_policy"]),
            locale=str(cfg["resolution"]["locale"]),
            language=str(cfg["resolution"]["language"]),
        ),
        wms=WmsSettings(
            endpoint=str(wms["endpoint"]),
            feature_layer=str(wms["feature_layer"]),
            image_layer=str(wms["image_layer"]),
            image_size=int(wms["image_size"]),
            image_delta_deg=float(wms["image_delta_deg"]),
            feature_delta_deg=float(wms["feature_delta_deg"]),
            min_image_bytes=int(wms["min_image_bytes"]),
            rate_per_sec=float(wms["rate_per_sec"]),
        ),
        debounce=DebounceSettings(cooldown_seconds=float(cfg["debounce"]["cooldown_seconds"])),
    )


def load_settings(
    config_path: Path | None = None,
    *,
    overlay_path: Path | None = None,
    allow_unknown: bool = False,
) -> AppSettings:
    if config_path is None and not DEFAULT_CONFIG_PATH.exists():
        # Installed without the source tree: built-in defaults stand in for config/geolens.yml.
        cfg = _apply_overlay(asdict(AppSettings()), overlay_path)
    else:
        cfg = _load_yaml_with_overlay(config_path or DEFAULT_CONFIG_PATH, overlay_path)
    return settings_from_mapping(validate_app_config(cfg, allow_unknown=allow_unknown))
