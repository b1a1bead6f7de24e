from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, generate_latest

DECISIONS = Counter(
    "geoauth_decisions_total",
    "Total forward-auth decisions",
    ["verdict"],  # allow/deny
)

REQUEST_ERRORS = Counter(
    "geoauth_request_errors_total",
    "Requests answered with an error status",
    ["reason"],  # missing_ip, invalid_ip, lookup_failed
)

DB_RELOADS = Counter(
    "geoauth_db_reloads_total",
    "Database reload attempts",
    ["result"],  # success/failure
)

DB_GENERATION = Gauge(
    "geoauth_db_generation",
    "Number of database swaps since startup",
)

LOOKUP_DURATION = Histogram(
    "geoauth_lookup_duration_seconds",
    "GeoIP lookup latency",
    buckets=(0.0001, 0.0005, 0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0),
)


def generate_metrics() -> bytes:
    return generate_latest()


def get_content_type() -> str:
    return CONTENT_TYPE_LATEST
