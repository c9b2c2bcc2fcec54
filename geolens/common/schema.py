"""Minimal strict schemas for YAML config validation."""

from __future__ import annotations

from geolens.common.errors import ConfigError

AUTHORITY_POLICIES = {"database", "image"}
ENVIRONMENTS = {"production", "development"}


def _assert_required_keys(obj: dict, required: set[str], ctx: str) -> None:
    if not isinstance(obj, dict):
        raise ConfigError(f"{ctx} must be a mapping")
    missing = required - set(obj)
    if missing:
        missing_str = ", ".join(sorted(missing))
        raise ConfigError(f"Missing keys in {ctx}: {missing_str}")


def _assert_no_unknown_keys(obj: dict, known: set[str], ctx: str, allow_unknown: bool) -> None:
    if allow_unknown:
        return
    unknown = set(obj) - known
    if unknown:
        unknown_str = ", ".join(sorted(unknown))
        raise ConfigError(f"Unknown keys in {ctx}: {unknown_str}")


def _assert_positive(value, ctx: str) -> None:
    if not isinstance(value, (int, float)) or isinstance(value, bool) or value <= 0:
        raise ConfigError(f"{ctx} must be a positive number")


def validate_app_config(cfg: dict, *, allow_unknown: bool = False) -> dict:
    sections = {
        "runtime": {"environment"},
        "inference": {"model", "api_key_env", "search_grounding", "timeout_seconds"},
        "retry": {"max_attempts", "base_delay_seconds"},
        "resolution": {"authority_policy", "locale", "language"},
        "wms": {
            "endpoint",
            "feature_layer",
            "image_layer",
            "image_size",
            "image_delta_deg",
            "feature_delta_deg",
            "min_image_bytes",
            "rate_per_sec",
        },
        "debounce": {"cooldown_seconds"},
    }
    _assert_required_keys(cfg, set(sections), "app config")
    _assert_no_unknown_keys(cfg, set(sections), "app config", allow_unknown)
    for name, keys in sections.items():
        _assert_required_keys(cfg[name], keys, name)
        _assert_no_unknown_keys(cfg[name], keys, name, allow_unknown)

    if cfg["runtime"]["environment"] not in ENVIRONMENTS:
        raise ConfigError(f"runtime.environment must be one of: {', '.join(sorted(ENVIRONMENTS))}")
    if cfg["resolution"]["authority_policy"] not in AUTHORITY_POLICIES:
        raise ConfigError(
            f"resolution.authority_policy must be one of: {', '.join(sorted(AUTHORITY_POLICIES))}"
        )

    max_attempts = cfg["retry"]["max_attempts"]
    if not isinstance(max_attempts, int) or isinstance(max_attempts, bool) or not 1 <= max_attempts <= 3:
        raise ConfigError("retry.max_attempts must be an integer between 1 and 3")
    _assert_positive(cfg["retry"]["base_delay_seconds"], "retry.base_delay_seconds")
    _assert_positive(cfg["inference"]["timeout_seconds"], "inference.timeout_seconds")
    _assert_positive(cfg["wms"]["image_size"], "wms.image_size")
    _assert_positive(cfg["wms"]["image_delta_deg"], "wms.image_delta_deg")
    _assert_positive(cfg["wms"]["feature_delta_deg"], "wms.feature_delta_deg")
    _assert_positive(cfg["wms"]["rate_per_sec"], "wms.rate_per_sec")
    _assert_positive(cfg["debounce"]["cooldown_seconds"], "debounce.cooldown_seconds")

    return cfg
