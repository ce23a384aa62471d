#!/usr/bin/env python3
"""
Stream Worker for Telemetry Ingestion

Consumes events from the per-type Kafka topics and, for every message:
- validates the payload against the event schema
- normalizes it into an analytical row and a search document
- appends the row to the row store and indexes the document
- feeds account activity into the rolling 5-minute counters

A bad message is counted and skipped; it never halts the stream.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from kafka import KafkaConsumer
import click
import structlog
from prometheus_client import start_http_server

from telemetry.core.models.config import WorkerConfig
from telemetry.core.normalizer import to_analytical_row, to_search_document
from telemetry.core.processors.suspicious import RollingActivityCounter
from telemetry.core.routing import UnknownEventTypeError, event_type_for_topic
from telemetry.core.sinks.row_store import RedisRowStore, RowStore
from telemetry.core.sinks.search_index import MeilisearchBackend, SearchBackend
from telemetry.core.utils.event_time import EventTimeExtractor
from telemetry.core.utils.log_config import configure_logging
from telemetry.core.utils.metrics import EVENTS_PROCESSED, PROCESSING_DURATION, VALIDATION_ERRORS
from telemetry.core.validation import SchemaValidationError, validate_event

logger = structlog.get_logger(__name__)


@dataclass
class WorkerStats:
    processed_events: int = 0
    failed_events: int = 0
    failures_by_reason: Dict[str, int] = field(default_factory=dict)
    index_failures: int = 0
    last_processed_timestamp: Optional[datetime] = None

    def record_failure(self, reason: str):
        self.failed_events += 1
        self.failures_by_reason[reason] = self.failures_by_reason.get(reason, 0) + 1

    def as_dict(self) -> Dict[str, Any]:
        return {
            "processedEvents": self.processed_events,
            "failedEvents": self.failed_events,
            "failuresByReason": dict(self.failures_by_reason),
            "indexFailures": self.index_failures,
            "lastProcessedTimestamp": (
                EventTimeExtractor.to_iso(self.last_processed_timestamp)
                if self.last_processed_timestamp else None
            ),
        }


class StreamWorker:
    """Main ingestion loop: Kafka -> validate -> normalize -> sinks."""

    def __init__(
        self,
        config: WorkerConfig,
        store: Optional[RowStore] = None,
        search: Optional[SearchBackend] = None,
        consumer: Optional[KafkaConsumer] = None,
    ):
        self.config = config
        self.running = False
        self.stats = WorkerStats()

        self.store = store or RedisRowStore(config)
        self.search = search or MeilisearchBackend(config)
        self.activity_counter = RollingActivityCounter()
        self._pending_documents: List[Dict[str, Any]] = []
        self._consumer = consumer

        logger.info("Stream worker initialized",
                   topics=config.topics,
                   consumer_group=config.consumer_group)

    @property
    def consumer(self) -> KafkaConsumer:
        if self._consumer is None:
            # No value deserializer; payloads are decoded during validation
            self._consumer = KafkaConsumer(
                *self.config.topics,
                bootstrap_servers=self.config.kafka_bootstrap_servers.split(','),
                group_id=self.config.consumer_group,
                enable_auto_commit=True,
                auto_offset_reset='earliest'
            )
        return self._consumer

    def start(self):
        """Start the stream worker."""
        self.running = True

        # Start metrics server
        start_http_server(self.config.metrics_port)
        logger.info(f"Metrics server started on port {self.config.metrics_port}")

        self.search.ensure_index()
        logger.info("Starting stream worker...")

        try:
            for message in self.consumer:
                if not self.running:
                    break

                self.process_message(message)

                if self.stats.processed_events and \
                        self.stats.processed_events % self.config.stats_interval_messages == 0:
                    self.activity_counter.evict_idle(
                        EventTimeExtractor.to_epoch_ms(datetime.now(timezone.utc))
                    )
                    self.log_stats()

        except KeyboardInterrupt:
            logger.info("Received interrupt signal")
        finally:
            self.stop()

    def stop(self):
        """Stop the stream worker, flushing pending search documents."""
        self.running = False
        self.flush()
        if self._consumer is not None:
            self._consumer.close()
        self.log_stats()
        logger.info("Stream worker stopped")

    def flush(self) -> int:
        """
        Index buffered search documents. Returns the number sent.

        The buffer is only cleared once the backend accepts the batch; on
        failure the documents stay buffered for the next flush.
        """
        if not self._pending_documents:
            return 0
        documents = list(self._pending_documents)
        try:
            sent = self.search.add_documents(documents)
        except Exception as e:
            self.stats.index_failures += 1
            logger.error("Failed to index search documents",
                         pending=len(documents), error=str(e))
            return 0
        del self._pending_documents[:len(documents)]
        return sent

    def log_stats(self):
        logger.info("Processing metrics", **self.stats.as_dict())

    def _fail(self, topic: str, reason: str, event_type: str = "unknown", **log_fields):
        self.stats.record_failure(reason)
        EVENTS_PROCESSED.labels(event_type=event_type, status=reason).inc()
        logger.error("Failed to process message", topic=topic, reason=reason, **log_fields)

    def process_message(self, message) -> bool:
        """
        Process a single Kafka message.

        Returns True when the event reached the sinks. Every failure is
        counted by reason (`invalid`, `unknown_type`, `sink_error`) and logged.
        """
        topic = message.topic
        with PROCESSING_DURATION.labels(topic=topic).time():
            if message.value is None:
                self._fail(topic, "empty")
                return False

            try:
                event = validate_event(message.value)
            except SchemaValidationError as e:
                for err in e.errors:
                    VALIDATION_ERRORS.labels(field=err.field or "<root>").inc()
                self._fail(topic, "invalid", partition=message.partition, errors=[str(err) for err in e.errors])
                return False

            event_type = event.type
            try:
                expected = event_type_for_topic(topic)
                if expected.value != event_type:
                    logger.warning("Event arrived on unexpected topic",
                                  topic=topic, type=event_type, expected_type=expected.value)
            except UnknownEventTypeError:
                logger.warning("Message from unrouted topic", topic=topic, type=event_type)

            try:
                row = to_analytical_row(event)
                document = to_search_document(event)
            except UnknownEventTypeError as e:
                self._fail(topic, "unknown_type", error=str(e))
                return False

            try:
                self.store.insert(row)
            except Exception as e:
                self._fail(topic, "sink_error", event_type=event_type, id=event.id, error=str(e))
                return False

            # A failed flush keeps the batch buffered for the next one
            self._pending_documents.append(document)
            if len(self._pending_documents) >= self.config.batch_size:
                self.flush()

            self.activity_counter.update(row)

            self.stats.processed_events += 1
            self.stats.last_processed_timestamp = datetime.now(timezone.utc)
            EVENTS_PROCESSED.labels(event_type=event_type, status='success').inc()

            logger.debug("Processed event",
                        topic=topic,
                        partition=message.partition,
                        type=event_type,
                        timestamp=event.timestamp)
            return True


@click.command()
@click.option('--kafka-servers', default=None, help='Kafka bootstrap servers')
@click.option('--consumer-group', default=None, help='Kafka consumer group')
@click.option('--redis-host', default=None, help='Redis host')
@click.option('--redis-port', default=None, type=int, help='Redis port')
@click.option('--meilisearch-url', default=None, help='Meilisearch URL')
@click.option('--meilisearch-key', default=None, help='Meilisearch API key')
@click.option('--batch-size', default=None, type=int, help='Search documents per indexing batch')
@click.option('--metrics-port', default=None, type=int, help='Metrics server port')
@click.option('--log-format', default='json', type=click.Choice(['json', 'console']), help='Log output format')
@click.option('--verbose', '-v', is_flag=True, help='Verbose logging')
def main(kafka_servers, consumer_group, redis_host, redis_port, meilisearch_url,
         meilisearch_key, batch_size, metrics_port, log_format, verbose):
    """Run the telemetry stream worker."""

    config = WorkerConfig.from_env(
        kafka_bootstrap_servers=kafka_servers,
        consumer_group=consumer_group,
        redis_host=redis_host,
        redis_port=redis_port,
        meilisearch_url=meilisearch_url,
        meilisearch_key=meilisearch_key,
        batch_size=batch_size,
        metrics_port=metrics_port,
    )
    configure_logging("DEBUG" if verbose else config.log_level, log_format)

    worker = StreamWorker(config)

    try:
        worker.start()
    except Exception as e:
        logger.error("Stream worker failed", error=str(e))
        raise


if __name__ == '__main__':
    main()
