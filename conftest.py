"""
Shared sample events for the test suites.

Fixtures return fresh dicts in wire shape so tests can mutate them freely.
"""

import copy
import uuid

import pytest

from telemetry.core.normalizer import to_analytical_row
from telemetry.core.validation import validate_event

BASE_EVENT = {
    'id': '123e4567-e89b-12d3-a456-426614174000',
    'timestamp': '2023-10-20T12:00:00.000Z',
    'sourceIp': '192.168.1.100',
    'userId': '123e4567-e89b-12d3-a456-426614174001',
}

ACCOUNT_ACTIVITY_EVENT = {
    **BASE_EVENT,
    'type': 'account_activity',
    'action': 'login',
    'success': True,
    'userAgent': 'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36',
    'geoLocation': {
        'country': 'US',
        'city': 'San Francisco',
        'latitude': 37.7749,
        'longitude': -122.4194,
    },
}

FAILED_LOGIN_EVENT = {
    **BASE_EVENT,
    'id': '123e4567-e89b-12d3-a456-426614174002',
    'type': 'account_activity',
    'action': 'login',
    'success': False,
    'failureReason': 'Invalid credentials',
    'userAgent': 'Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7)',
    'geoLocation': {
        'country': 'GB',
        'city': 'London',
        'latitude': 51.5074,
        'longitude': -0.1278,
    },
}

API_REQUEST_EVENT = {
    **BASE_EVENT,
    'id': '123e4567-e89b-12d3-a456-426614174003',
    'type': 'api_request',
    'method': 'POST',
    'path': '/api/v1/users',
    'statusCode': 200,
    'responseTimeMs': 150,
    'requestSize': 1024,
    'responseSize': 2048,
    'userAgent': 'curl/7.64.1',
}

API_ERROR_EVENT = {
    **BASE_EVENT,
    'id': '123e4567-e89b-12d3-a456-426614174004',
    'type': 'api_request',
    'method': 'GET',
    'path': '/api/v1/posts',
    'statusCode': 500,
    'responseTimeMs': 5000,
    'requestSize': 512,
    'responseSize': 256,
    'userAgent': 'PostmanRuntime/7.29.2',
}

EMAIL_EVENT = {
    **BASE_EVENT,
    'id': '123e4567-e89b-12d3-a456-426614174005',
    'type': 'email_send',
    'recipientEmail': 'user@example.com',
    'templateId': 'welcome',
    'success': True,
    'messageId': '123e4567-e89b-12d3-a456-426614174006',
    'bounceType': 'none',
}

BOUNCED_EMAIL_EVENT = {
    **BASE_EVENT,
    'id': '123e4567-e89b-12d3-a456-426614174007',
    'type': 'email_send',
    'recipientEmail': 'invalid@example.com',
    'templateId': 'reset_password',
    'success': False,
    'failureReason': 'Bounce: hard',
    'bounceType': 'hard',
}

SAMPLE_EVENTS = [
    ACCOUNT_ACTIVITY_EVENT,
    FAILED_LOGIN_EVENT,
    API_REQUEST_EVENT,
    API_ERROR_EVENT,
    EMAIL_EVENT,
    BOUNCED_EMAIL_EVENT,
]


@pytest.fixture
def account_event():
    return copy.deepcopy(ACCOUNT_ACTIVITY_EVENT)


@pytest.fixture
def failed_login_event():
    return copy.deepcopy(FAILED_LOGIN_EVENT)


@pytest.fixture
def api_event():
    return copy.deepcopy(API_REQUEST_EVENT)


@pytest.fixture
def api_error_event():
    return copy.deepcopy(API_ERROR_EVENT)


@pytest.fixture
def email_event():
    return copy.deepcopy(EMAIL_EVENT)


@pytest.fixture
def bounced_email_event():
    return copy.deepcopy(BOUNCED_EMAIL_EVENT)


@pytest.fixture
def sample_events():
    return copy.deepcopy(SAMPLE_EVENTS)


TEMPLATES = {
    'account_activity': ACCOUNT_ACTIVITY_EVENT,
    'failed_login': FAILED_LOGIN_EVENT,
    'api_request': API_REQUEST_EVENT,
    'api_error': API_ERROR_EVENT,
    'email_send': EMAIL_EVENT,
    'bounced_email': BOUNCED_EMAIL_EVENT,
}


@pytest.fixture
def make_event():
    """Factory: a copy of a sample event with a fresh id and the given overrides."""
    def factory(kind='account_activity', **overrides):
        event = copy.deepcopy(TEMPLATES[kind])
        event['id'] = str(uuid.uuid4())
        event.update(overrides)
        return event
    return factory


@pytest.fixture
def make_row(make_event):
    """Factory: an AnalyticalRow normalized from a sample event."""
    def factory(kind='account_activity', **overrides):
        return to_analytical_row(validate_event(make_event(kind, **overrides)))
    return factory
