"""
Shared Prometheus metrics for the telemetry pipeline.

This module provides centralized metric definitions to avoid
duplicate registrations across the generator, worker and sink modules.
"""

from prometheus_client import Counter, Gauge, Histogram

# Ingestion metrics
EVENTS_PROCESSED = Counter(
    'pipeline_events_processed_total',
    'Total messages handled by the stream worker',
    ['event_type', 'status']
)

PROCESSING_DURATION = Histogram(
    'pipeline_processing_duration_seconds',
    'Time spent validating, normalizing and sinking one message',
    ['topic']
)

VALIDATION_ERRORS = Counter(
    'pipeline_validation_errors_total',
    'Field-level validation failures',
    ['field']
)

# Sink metrics
SINK_WRITES = Counter(
    'pipeline_sink_writes_total',
    'Rows/documents written to sinks',
    ['sink', 'status']
)

# Generator metrics
EVENTS_GENERATED = Counter(
    'generator_events_total',
    'Total number of events generated',
    ['event_type', 'mode', 'status']
)

GENERATION_DURATION = Histogram(
    'generator_event_generation_duration_seconds',
    'Time taken to generate and send a single event'
)

ATTACK_MODE = Gauge(
    'generator_attack_mode',
    'Whether the generator is currently in attack mode (1) or not (0)'
)

# Detection metrics
HIGH_RISK_SNAPSHOTS = Counter(
    'detection_high_risk_snapshots_total',
    'Account activity snapshots above a rolling 5-minute threshold'
)

ROLLING_KEYS = Gauge(
    'detection_rolling_window_keys',
    'Keys currently tracked by rolling activity windows',
    ['dimension']
)
