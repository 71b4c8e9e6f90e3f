"""Prometheus metrics for the ingestion pipeline.

Based on Prometheus best practices:
https://prometheus.io/docs/practices/naming/
"""

from prometheus_client import Counter, Histogram

# Recognition
ocr_processing_duration_seconds = Histogram(
    "intake_ocr_processing_duration_seconds",
    "Recognition duration per document in seconds",
    buckets=(0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0),
)

ocr_requests_total = Counter(
    "intake_ocr_requests_total",
    "Total recognition requests",
    ["status"],  # success, failed
)

# Extraction
extraction_attempts_total = Counter(
    "intake_extraction_attempts_total",
    "Extraction attempts by strategy",
    ["provider", "outcome"],  # outcome: success, failed
)

ai_fallbacks_total = Counter(
    "intake_ai_fallbacks_total",
    "Runs where AI extraction failed and the pattern extractor was used",
    ["provider"],
)

# Pipeline
pipeline_runs_total = Counter(
    "intake_pipeline_runs_total",
    "Completed pipeline runs by result code",
    ["code"],  # OK or an error code such as VALIDATION_ERROR
)

pipeline_stage_duration_seconds = Histogram(
    "intake_pipeline_stage_duration_seconds",
    "Pipeline stage duration in seconds",
    ["stage"],
    buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 10.0, 30.0),
)
