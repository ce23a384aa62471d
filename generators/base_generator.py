#!/usr/bin/env python3
"""
Base generator class for streaming event generation.

This module provides common functionality for event generators:
- Kafka producer configuration (JSON values, userId partition keys)
- Per-event topic routing
- Rate limiting
- Metrics and monitoring
"""

import json
import random
import time
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
import logging

from faker import Faker
from kafka import KafkaProducer
from prometheus_client import start_http_server

from telemetry.core.routing import topic_for
from telemetry.core.utils.event_time import EventTimeExtractor
from telemetry.core.utils.metrics import EVENTS_GENERATED, GENERATION_DURATION


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


class BaseEventGenerator(ABC):
    """Base class for event generators."""

    def __init__(
        self,
        bootstrap_servers: str = "localhost:9092",
        events_per_second: Optional[float] = None,
        duration_seconds: Optional[int] = None,
        metrics_port: Optional[int] = None,
        producer: Optional[KafkaProducer] = None,
        rng: Optional[random.Random] = None,
    ):
        """
        Initialize the event generator.

        Args:
            bootstrap_servers: Kafka broker addresses
            events_per_second: Target event generation rate; None pauses a
                random 1-100 ms between events
            duration_seconds: How long to run (None = infinite)
            metrics_port: Port for the Prometheus metrics server (optional)
            producer: Pre-built producer; one is created on first send otherwise
            rng: Random source for delays
        """
        self.bootstrap_servers = bootstrap_servers
        self.events_per_second = events_per_second
        self.duration_seconds = duration_seconds
        self.metrics_port = metrics_port
        self.rng = rng or random.Random()
        self._producer = producer

        # Statistics
        self.events_produced = 0
        self.start_time = None
        self.errors = 0

    @property
    def producer(self) -> KafkaProducer:
        if self._producer is None:
            self._producer = KafkaProducer(
                bootstrap_servers=self.bootstrap_servers.split(','),
                value_serializer=lambda v: json.dumps(v).encode('utf-8'),
                key_serializer=lambda k: k.encode('utf-8') if k else None,
                acks='all',  # Wait for all replicas
                retries=3,
                linger_ms=10,  # Small batching delay
            )
        return self._producer

    @abstractmethod
    def generate_event(self) -> Dict[str, Any]:
        """Generate a single event in wire shape. Must be implemented by subclasses."""
        pass

    def get_topic(self, event: Dict[str, Any]) -> str:
        """Topic for an event, from the routing table."""
        return topic_for(event['type'])

    def get_partition_key(self, event: Dict[str, Any]) -> str:
        """Use userId as partition key so a user's events stay ordered."""
        return event['userId']

    def mode_label(self) -> str:
        """Label for the `mode` dimension of generator metrics."""
        return "normal"

    def _on_send_success(self, event_type: str, mode: str):
        def callback(record_metadata):
            self.events_produced += 1
            EVENTS_GENERATED.labels(event_type=event_type, mode=mode, status='success').inc()

            if self.events_produced % 1000 == 0:
                elapsed = time.time() - self.start_time if self.start_time else 0
                rate = self.events_produced / elapsed if elapsed > 0 else 0
                logger.info(f"Produced {self.events_produced} events, rate: {rate:.1f}/sec")
        return callback

    def _on_send_error(self, event_type: str, mode: str):
        def errback(ex):
            self.errors += 1
            EVENTS_GENERATED.labels(event_type=event_type, mode=mode, status='error').inc()
            logger.error(f"Failed to send event: {ex}")
        return errback

    def produce_event(self, event: Dict[str, Any]) -> None:
        """Send a single event to its topic."""
        event_type = event['type']
        mode = self.mode_label()
        topic = self.get_topic(event)
        future = self.producer.send(
            topic,
            key=self.get_partition_key(event),
            value=event
        )
        future.add_callback(self._on_send_success(event_type, mode))
        future.add_errback(self._on_send_error(event_type, mode))
        logger.debug(f"Generated event type={event_type} topic={topic}")

    def _delay(self) -> float:
        if self.events_per_second and self.events_per_second > 0:
            return 1.0 / self.events_per_second
        return self.rng.uniform(0.001, 0.1)

    def on_start(self) -> None:
        """Hook run once before the produce loop."""

    def on_stop(self) -> None:
        """Hook run once after the produce loop, before the producer is flushed."""

    def run(self) -> None:
        """Main execution loop."""
        logger.info(f"Starting {self.__class__.__name__}")
        logger.info(
            f"Target rate: {self.events_per_second} events/sec"
            if self.events_per_second else "Target rate: random 1-100ms delay"
        )
        logger.info(f"Duration: {self.duration_seconds}s" if self.duration_seconds else "Duration: infinite")

        # Start metrics server if port specified
        if self.metrics_port:
            start_http_server(self.metrics_port)
            logger.info(f"Metrics server started on port {self.metrics_port}")

        self.start_time = time.time()
        self.on_start()

        try:
            while True:
                # Check duration limit
                if self.duration_seconds:
                    elapsed = time.time() - self.start_time
                    if elapsed >= self.duration_seconds:
                        logger.info(f"Reached duration limit of {self.duration_seconds}s")
                        break

                # Generate and send event
                with GENERATION_DURATION.time():
                    event = self.generate_event()
                    try:
                        self.produce_event(event)
                    except Exception as e:
                        logger.error(f"Failed to produce event: {e}")
                        self.errors += 1

                time.sleep(self._delay())

        except KeyboardInterrupt:
            logger.info("Received interrupt signal, shutting down...")

        finally:
            self.on_stop()

            # Cleanup
            if self._producer is not None:
                logger.info("Flushing producer...")
                self._producer.flush(timeout=30)
                self._producer.close()

            # Final statistics
            elapsed = time.time() - self.start_time
            avg_rate = self.events_produced / elapsed if elapsed > 0 else 0

            logger.info("="*50)
            logger.info("Generator completed:")
            logger.info(f"  Events produced: {self.events_produced}")
            logger.info(f"  Errors: {self.errors}")
            logger.info(f"  Duration: {elapsed:.1f}s")
            logger.info(f"  Average rate: {avg_rate:.1f} events/sec")
            logger.info("="*50)


class TimestampMixin:
    """Mixin for adding timestamp utilities."""

    @staticmethod
    def current_timestamp_iso() -> str:
        """Current time as ISO-8601 UTC with milliseconds and a `Z` suffix."""
        return EventTimeExtractor.to_iso(datetime.now(timezone.utc))


def random_uuid(rng: random.Random) -> str:
    """UUID4 string drawn from `rng`, so seeded generators are reproducible."""
    return str(uuid.UUID(int=rng.getrandbits(128), version=4))


class IdentityPool:
    """
    Closed population of actors shared by every generated event.

    Users and IPs are drawn from fixed pools rather than invented per event,
    so per-user and per-IP frequencies carry signal downstream.
    """

    def __init__(
        self,
        user_count: int = 1000,
        ip_count: int = 500,
        rng: Optional[random.Random] = None,
        fake: Optional[Faker] = None,
    ):
        self.rng = rng or random.Random()
        self.fake = fake or Faker()

        self.user_ids: List[str] = [random_uuid(self.rng) for _ in range(user_count)]
        self.user_emails: List[str] = [self.fake.email() for _ in range(user_count)]
        self.source_ips: List[str] = [self.fake.ipv4() for _ in range(ip_count)]

    def user_id(self) -> str:
        return self.rng.choice(self.user_ids)

    def email(self) -> str:
        return self.rng.choice(self.user_emails)

    def source_ip(self, concentrated: bool = False) -> str:
        """
        Pick a source IP. A concentrated pick draws from the first tenth of
        the pool only.
        """
        if concentrated:
            return self.rng.choice(self.source_ips[:max(1, len(self.source_ips) // 10)])
        return self.rng.choice(self.source_ips)
