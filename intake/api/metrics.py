"""Prometheus metrics of the HTTP surface.

Pipeline metrics (recognition, extraction attempts, stage durations, run
outcomes) live in ``intake.pipeline.metrics``; both modules register on the
default registry, so ``/metrics`` exposes them together.
"""

from prometheus_client import Counter, Histogram, generate_latest
from prometheus_client.openmetrics.exposition import CONTENT_TYPE_LATEST

http_requests_total = Counter(
    "http_requests_total",
    "HTTP requests by route template and status",
    ["method", "endpoint", "status"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=(0.05, 0.25, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0),
)

invoices_uploaded_total = Counter(
    "intake_invoices_uploaded_total",
    "Invoice uploads by admission outcome",
    ["status"],  # accepted, rejected
)

invoice_upload_size_bytes = Histogram(
    "intake_invoice_upload_size_bytes",
    "Size of accepted invoice uploads",
    buckets=(16384, 131072, 1048576, 4194304, 10485760),
)


def get_metrics() -> tuple[bytes, str]:
    """Exposition payload and its content type."""
    return generate_latest(), CONTENT_TYPE_LATEST
