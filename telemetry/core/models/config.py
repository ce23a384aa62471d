"""
Configuration models for the telemetry pipeline.

Centralized configuration for the stream worker and the event generator.
"""

import os
from dataclasses import dataclass, field
from typing import List, Optional

from telemetry.core.routing import TOPICS


@dataclass
class WorkerConfig:
    """Configuration for the stream worker."""

    # Kafka settings
    kafka_bootstrap_servers: str = "localhost:9092"
    consumer_group: str = "telemetry-worker"
    topics: List[str] = field(default_factory=lambda: list(TOPICS))

    # Redis settings (analytical row store)
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_db: int = 0
    row_store_prefix: str = "telemetry"

    # Meilisearch settings (search index)
    meilisearch_url: str = "http://localhost:7700"
    meilisearch_key: Optional[str] = None
    index_name: str = "events"

    # Processing settings
    batch_size: int = 100
    stats_interval_messages: int = 1000

    # Monitoring
    metrics_port: int = 8000
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, **overrides) -> "WorkerConfig":
        """Defaults, overlaid by environment variables, overlaid by `overrides`."""
        config = cls()
        env = os.environ
        if "KAFKA_BROKERS" in env:
            config.kafka_bootstrap_servers = env["KAFKA_BROKERS"]
        if "REDIS_HOST" in env:
            config.redis_host = env["REDIS_HOST"]
        if "REDIS_PORT" in env:
            config.redis_port = int(env["REDIS_PORT"])
        if "MEILISEARCH_HOST" in env:
            config.meilisearch_url = env["MEILISEARCH_HOST"]
        if "MEILISEARCH_KEY" in env:
            config.meilisearch_key = env["MEILISEARCH_KEY"]
        if "LOG_LEVEL" in env:
            config.log_level = env["LOG_LEVEL"]
        if "METRICS_PORT" in env:
            config.metrics_port = int(env["METRICS_PORT"])

        for key, value in overrides.items():
            if value is not None:
                setattr(config, key, value)
        return config


@dataclass
class GeneratorConfig:
    """Configuration for the synthetic event generator."""

    kafka_bootstrap_servers: str = "localhost:9092"

    # Rate: None means a random 1-100 ms pause between events
    events_per_second: Optional[float] = None
    duration_seconds: Optional[int] = None

    # Closed identity population
    user_pool_size: int = 1000
    ip_pool_size: int = 500

    # Attack mode
    attack_mode: bool = False
    attack_toggle_interval_seconds: int = 300
    attack_probability: float = 0.2

    seed: Optional[int] = None
    metrics_port: Optional[int] = None
