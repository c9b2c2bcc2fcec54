"""Application constants."""

USER_AGENT = "geolens/0.3 (+geological-map research; contact: configured-email)"
EXIT_SUCCESS = 0
EXIT_RESOLUTION_FAILED = 10
EXIT_HARD_FAIL = 20
JSON_LOG_FIELDS = (
    "timestamp",
    "request_id",
    "stage",
    "event",
    "status",
    "case",
    "attempt",
    "duration_ms",
    "code",
    "error_code",
    "message",
)
INVALID_LAYER_MARKERS = (
    "layer not defined",
    "undefined",
    "no geometry",
    "unknown",
)
CODE_KEY_ALIASES = ("NOTATION", "notation", "Notation", "CODE", "code", "Code")
DESCRIPTION_KEY_ALIASES = (
    "DESCR",
    "DESCRIPTION",
    "descr",
    "description",
    "Descr",
    "Description",
)
MANDATORY_RECORD_FIELDS = (
    "code",
    "formation",
    "lithology",
    "description",
    "paleogeography.environment",
)
DEFAULT_IMAGE_MIME = "image/jpeg"
