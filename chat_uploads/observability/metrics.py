# chat_uploads/observability/metrics.py
from fastapi import APIRouter
from starlette.responses import Response

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST

router = APIRouter(tags=["observability"])

presign_counter = Counter(
    "chat_uploads_presign_total",
    "Aantal presign requests",
    ["category", "result"],  # success|validation|error
)

process_counter = Counter(
    "chat_uploads_process_total",
    "Aantal verwerkte uploads per uitkomst",
    ["category", "result"],  # completed|not_found|content_invalid|infected|internal_*
)

scan_counter = Counter(
    "chat_uploads_scan_total",
    "Scan verdicts",
    ["status", "engine"],
)

derivative_failures = Counter(
    "chat_uploads_derivative_failures_total",
    "Mislukte thumbnail/preview generaties",
    ["derivative"],
)

upload_size_hist = Histogram(
    "chat_uploads_size_bytes",
    "Bestandsgroottes van uploads (client gemeld)",
    ["category"],
    buckets=(1e4, 1e5, 3e5, 1e6, 3e6, 1e7, 2.5e7, 5e7),
)

stage_latency = Histogram(
    "chat_uploads_stage_seconds",
    "Latency per pipeline stage",
    ["stage"],  # exists|fetch|metadata|validate|scan|derivatives
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 120.0),
)


@router.get("/metrics", include_in_schema=True)
def metrics() -> Response:
    # Prometheus expects text/plain; version=0.0.4
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
