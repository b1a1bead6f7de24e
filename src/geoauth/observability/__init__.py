from geoauth.observability.metrics import (
    DB_GENERATION,
    DB_RELOADS,
    DECISIONS,
    LOOKUP_DURATION,
    REQUEST_ERRORS,
    generate_metrics,
    get_content_type,
)

__all__ = [
    "DECISIONS",
    "REQUEST_ERRORS",
    "DB_RELOADS",
    "DB_GENERATION",
    "LOOKUP_DURATION",
    "generate_metrics",
    "get_content_type",
]
