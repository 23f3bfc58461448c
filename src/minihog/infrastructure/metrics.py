from __future__ import annotations
from prometheus_client import CollectorRegistry, Counter, Histogram

# Shared registry so every component's metrics appear under the API's /metrics
registry = CollectorRegistry()

STORE_FAILURES = Counter('store_failures_total', 'Store query/execution failures', ['store', 'operation'], registry=registry)
FUNNEL_COMPUTATIONS = Counter('analytics_funnel_computations_total', 'Funnel computations performed', ['step_order'], registry=registry)
RETENTION_COMPUTATIONS = Counter('analytics_retention_computations_total', 'Retention computations performed', ['period_type'], registry=registry)
ANALYTICS_LATENCY = Histogram('analytics_computation_latency_seconds', 'Latency of analytical computations', ['engine'], registry=registry, buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10))
FLAG_EVALUATIONS = Counter('flag_evaluations_total', 'Feature flag evaluations', ['reason'], registry=registry)
FLAG_DECISION_RACES = Counter('flag_decision_races_total', 'Concurrent first evaluations resolved by the unique constraint', registry=registry)
EVENTS_INGESTED = Counter('ingest_events_persisted_total', 'Events persisted to the event store', registry=registry)
EVENTS_REJECTED = Counter('ingest_events_rejected_total', 'Events rejected during validation', ['reason'], registry=registry)
NL_QUERIES = Counter('nl_queries_total', 'Natural language queries processed', ['status'], registry=registry)
