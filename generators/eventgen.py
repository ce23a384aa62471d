#!/usr/bin/env python3
"""
Security Event Generator

Generates synthetic trust-and-safety telemetry events.
Features:
- Three event variants (account activity, API requests, email sends)
- Closed user/IP population for meaningful per-actor frequencies
- Attack mode: login bursts from a concentrated IP range, elevated error
  rates and latency spikes, more bounces
- Attack mode re-rolled on a timer
"""

import random
import sys
import threading
from typing import Any, Dict, Optional
import logging

import click
from faker import Faker

from generators.base_generator import BaseEventGenerator, IdentityPool, TimestampMixin, random_uuid
from telemetry.core.models.config import GeneratorConfig
from telemetry.core.models.events import ACCOUNT_ACTIONS, EVENT_TYPES, HTTP_METHODS, EventType
from telemetry.core.utils.metrics import ATTACK_MODE

logger = logging.getLogger(__name__)

EMAIL_TEMPLATES = [
    'welcome',
    'reset_password',
    'verification',
    'newsletter',
    'security_alert',
]

API_PATHS = [
    '/api/v1/users',
    '/api/v1/posts',
    '/api/v1/comments',
    '/api/v1/auth/login',
    '/api/v1/auth/logout',
    '/api/v1/products',
    '/api/v1/orders',
]

COUNTRIES = [
    'US', 'GB', 'CA', 'FR', 'DE', 'JP', 'AU', 'IN',
    'BR', 'MX', 'CU', 'KZ', 'KR', 'NG', 'SA',
]


class AttackModeFlag:
    """Shared attack-mode switch, read once per generated event."""

    def __init__(self, enabled: bool = False):
        self._event = threading.Event()
        self.set(enabled)

    def set(self, enabled: bool):
        if enabled:
            self._event.set()
        else:
            self._event.clear()
        ATTACK_MODE.set(1 if enabled else 0)

    def is_set(self) -> bool:
        return self._event.is_set()


class AttackModeToggler(threading.Thread):
    """Re-rolls the attack flag every `interval_seconds` with `probability` of attack."""

    def __init__(
        self,
        flag: AttackModeFlag,
        interval_seconds: float = 300,
        probability: float = 0.2,
        rng: Optional[random.Random] = None,
    ):
        super().__init__(name="attack-mode-toggler", daemon=True)
        self.flag = flag
        self.interval_seconds = interval_seconds
        self.probability = probability
        self.rng = rng or random.Random()
        self._stopped = threading.Event()

    def roll(self) -> bool:
        attack = self.rng.random() < self.probability
        self.flag.set(attack)
        if attack:
            logger.info("Entering attack mode - expect increased suspicious activity")
        else:
            logger.debug("Attack mode off")
        return attack

    def run(self):
        while not self._stopped.wait(self.interval_seconds):
            self.roll()

    def stop(self):
        self._stopped.set()


class SecurityEventGenerator(BaseEventGenerator, TimestampMixin):
    """Generates account activity, API request and email events."""

    def __init__(
        self,
        attack_mode: Optional[AttackModeFlag] = None,
        identities: Optional[IdentityPool] = None,
        seed: Optional[int] = None,
        toggle_interval_seconds: Optional[float] = None,
        attack_probability: float = 0.2,
        **kwargs
    ):
        rng = random.Random(seed)
        super().__init__(rng=rng, **kwargs)

        self.fake = Faker()
        if seed is not None:
            self.fake.seed_instance(seed)  # Reproducible fake data

        self.attack_mode = attack_mode or AttackModeFlag()
        self.identities = identities or IdentityPool(rng=self.rng, fake=self.fake)

        self.toggler = None
        if toggle_interval_seconds:
            self.toggler = AttackModeToggler(
                self.attack_mode,
                interval_seconds=toggle_interval_seconds,
                probability=attack_probability,
                rng=self.rng,
            )

        logger.info(
            f"Initialized SecurityEventGenerator with {len(self.identities.user_ids)} users, "
            f"{len(self.identities.source_ips)} IPs"
        )

    def mode_label(self) -> str:
        return "attack" if self.attack_mode.is_set() else "normal"

    def generate_event(self) -> Dict[str, Any]:
        """Generate a single event."""
        # One read per event so every field sees the same mode
        attack = self.attack_mode.is_set()

        event_type = self._pick_event_type(attack)
        base = self._generate_base_event(attack)

        if event_type == EventType.ACCOUNT_ACTIVITY.value:
            return self._generate_account_activity(base, attack)
        if event_type == EventType.API_REQUEST.value:
            return self._generate_api_request(base, attack)
        return self._generate_email(base, attack)

    def _pick_event_type(self, attack: bool) -> str:
        # During attack, generate more account activity events
        if attack and self.rng.random() < 0.6:
            return EventType.ACCOUNT_ACTIVITY.value
        return self.rng.choice(EVENT_TYPES)

    def _generate_base_event(self, attack: bool) -> Dict[str, Any]:
        return {
            'id': random_uuid(self.rng),
            'timestamp': self.current_timestamp_iso(),
            'sourceIp': self.identities.source_ip(concentrated=attack),
            'userId': self.identities.user_id(),
        }

    def _generate_account_activity(self, base: Dict[str, Any], attack: bool) -> Dict[str, Any]:
        success = self.rng.random() > 0.7 if attack else self.rng.random() > 0.05

        event = {
            **base,
            'type': EventType.ACCOUNT_ACTIVITY.value,
            'action': self.rng.choice(ACCOUNT_ACTIONS),
            'success': success,
            'userAgent': self.fake.user_agent(),
            'geoLocation': {
                'country': self.rng.choice(COUNTRIES),
                'city': self.fake.city(),
                'latitude': round(self.rng.uniform(-90, 90), 4),
                'longitude': round(self.rng.uniform(-180, 180), 4),
            },
        }
        if not success:
            event['failureReason'] = 'Invalid credentials'
        return event

    def _generate_api_request(self, base: Dict[str, Any], attack: bool) -> Dict[str, Any]:
        # Latency spikes only during attack
        if attack and self.rng.random() > 0.8:
            response_time_ms = int(self.rng.random() * 10000 + 1000)
        else:
            response_time_ms = int(self.rng.random() * 200 + 50)

        rand = self.rng.random()
        if attack:
            if rand < 0.4:
                status_code = 500
            elif rand < 0.6:
                status_code = 429
            elif rand < 0.8:
                status_code = 200
            else:
                status_code = 400
        else:
            if rand < 0.95:
                status_code = 200
            elif rand < 0.98:
                status_code = 400
            else:
                status_code = 500

        return {
            **base,
            'type': EventType.API_REQUEST.value,
            'method': self.rng.choice(HTTP_METHODS),
            'path': self.rng.choice(API_PATHS),
            'statusCode': status_code,
            'responseTimeMs': response_time_ms,
            'userAgent': self.fake.user_agent(),
            'requestSize': int(self.rng.random() * 10000),
            'responseSize': int(self.rng.random() * 50000),
        }

    def _generate_email(self, base: Dict[str, Any], attack: bool) -> Dict[str, Any]:
        success = self.rng.random() > 0.4 if attack else self.rng.random() > 0.05

        event = {
            **base,
            'type': EventType.EMAIL_SEND.value,
            'recipientEmail': self.identities.email(),
            'templateId': self.rng.choice(EMAIL_TEMPLATES),
            'success': success,
        }
        if success:
            event['messageId'] = random_uuid(self.rng)
            event['bounceType'] = 'none'
        else:
            bounce_type = 'hard' if self.rng.random() > 0.5 else 'soft'
            event['bounceType'] = bounce_type
            event['failureReason'] = f'Bounce: {bounce_type}'
        return event

    def on_start(self) -> None:
        if self.toggler is not None:
            self.toggler.start()
            logger.info(f"Attack mode re-rolled every {self.toggler.interval_seconds}s")

    def on_stop(self) -> None:
        if self.toggler is not None:
            self.toggler.stop()


def build_generator(config: GeneratorConfig) -> SecurityEventGenerator:
    rng = random.Random(config.seed)
    fake = Faker()
    if config.seed is not None:
        fake.seed_instance(config.seed)

    identities = IdentityPool(
        user_count=config.user_pool_size,
        ip_count=config.ip_pool_size,
        rng=rng,
        fake=fake,
    )
    return SecurityEventGenerator(
        attack_mode=AttackModeFlag(config.attack_mode),
        identities=identities,
        seed=config.seed,
        toggle_interval_seconds=config.attack_toggle_interval_seconds,
        attack_probability=config.attack_probability,
        bootstrap_servers=config.kafka_bootstrap_servers,
        events_per_second=config.events_per_second,
        duration_seconds=config.duration_seconds,
        metrics_port=config.metrics_port,
    )


@click.command()
@click.option('--events-per-second', '-r', default=None, type=float, help='Events per second (random 1-100ms delay if not set)')
@click.option('--duration', '-d', default=None, type=int, help='Duration in seconds (infinite if not set)')
@click.option('--bootstrap-servers', '-b', default='localhost:9092', envvar='KAFKA_BROKERS', help='Kafka bootstrap servers')
@click.option('--attack-mode', is_flag=True, help='Start in attack mode')
@click.option('--toggle-interval', default=300, type=int, help='Seconds between attack mode re-rolls (0 disables)')
@click.option('--attack-probability', default=0.2, type=float, help='Probability of attack mode on each re-roll')
@click.option('--seed', default=None, type=int, help='Random seed for reproducible streams')
@click.option('--metrics-port', default=None, type=int, help='Port for metrics server (optional)')
@click.option('--verbose', '-v', is_flag=True, help='Verbose logging')
def main(events_per_second, duration, bootstrap_servers, attack_mode, toggle_interval,
         attack_probability, seed, metrics_port, verbose):
    """Security telemetry event generator."""

    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    config = GeneratorConfig(
        kafka_bootstrap_servers=bootstrap_servers,
        events_per_second=events_per_second,
        duration_seconds=duration,
        attack_mode=attack_mode,
        attack_toggle_interval_seconds=toggle_interval,
        attack_probability=attack_probability,
        seed=seed,
        metrics_port=metrics_port,
    )

    try:
        generator = build_generator(config)
        generator.run()

    except Exception as e:
        logger.error(f"Generator failed: {e}")
        sys.exit(1)


if __name__ == '__main__':
    main()
