"""
Pipeline Metrics

Prometheus counters and histograms for ingestion, enrichment, routing and
sync. Metrics live on a dedicated registry exposed by the /metrics endpoint.
"""
from prometheus_client import CollectorRegistry, Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST

registry = CollectorRegistry()

interactions_ingested_total = Counter(
    'inbox_interactions_ingested_total',
    'Interactions seen by the persistence gate',
    ['platform', 'outcome'],  # outcome: created, duplicate
    registry=registry
)

adapter_item_errors_total = Counter(
    'inbox_adapter_item_errors_total',
    'Payload items skipped by a platform adapter',
    ['platform'],
    registry=registry
)

enrichment_stage_failures_total = Counter(
    'inbox_enrichment_stage_failures_total',
    'Enrichment stages that fell back to their safe default',
    ['stage'],
    registry=registry
)

enrichment_duration_seconds = Histogram(
    'inbox_enrichment_duration_seconds',
    'Wall time of a full enrichment run',
    registry=registry
)

routing_decisions_total = Counter(
    'inbox_routing_decisions_total',
    'Routing outcomes',
    ['decision'],  # auto_reply, assigned, unassigned, already_assigned
    registry=registry
)

negative_spike_alerts_total = Counter(
    'inbox_negative_spike_alerts_total',
    'Negative spike escalations',
    registry=registry
)

sync_runs_total = Counter(
    'inbox_sync_runs_total',
    'Platform sync runs',
    ['platform', 'status'],
    registry=registry
)


def render_latest():
    """Return (body, content_type) for the metrics endpoint."""
    return generate_latest(registry), CONTENT_TYPE_LATEST
