"""
Prometheus metrics for the Sentinel pipeline.
"""
from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, Counter, Histogram, generate_latest

registry = CollectorRegistry()

sentinel_runs_total = Counter(
    "sentinel_runs_total",
    "Total number of Sentinel runs",
    ["severity"],
    registry=registry,
)

stage_latency_ms = Histogram(
    "sentinel_stage_latency_ms",
    "Stage latency in milliseconds",
    ["stage"],
    buckets=[50, 100, 250, 500, 1000, 2500, 5000, 10000, 30000, 60000],
    registry=registry,
)

stage_errors_total = Counter(
    "sentinel_stage_errors_total",
    "Total number of stage failures degraded to error events",
    ["stage"],
    registry=registry,
)

llm_calls_total = Counter(
    "sentinel_llm_calls_total",
    "Total number of LLM completion calls",
    ["status"],
    registry=registry,
)

rule_hits_total = Counter(
    "sentinel_rule_hits_total",
    "Total number of rule hits produced by the transaction scorer",
    ["rule_id"],
    registry=registry,
)

regulatory_documents_total = Counter(
    "sentinel_regulatory_documents_total",
    "Total number of regulatory documents extracted",
    ["content_type"],
    registry=registry,
)


def get_metrics() -> bytes:
    """Render all metrics in Prometheus text format."""
    return generate_latest(registry)


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
