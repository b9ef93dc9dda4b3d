"""Prometheus metrics for the generation pipeline."""

from prometheus_client import Counter, Gauge, Histogram

generations_total = Counter(
    "composit_generations_total",
    "Total number of generation requests by lifecycle status",
    ["status"],
)

generation_duration_seconds = Histogram(
    "composit_generation_duration_seconds",
    "Generation end-to-end duration in seconds",
    buckets=[10, 30, 60, 120, 240, 480],
)

queue_depth = Gauge(
    "composit_queue_depth",
    "Number of generation jobs waiting in the queue",
)

storage_uploads_total = Counter(
    "composit_storage_uploads_total",
    "Total object storage uploads",
    ["kind"],
)
