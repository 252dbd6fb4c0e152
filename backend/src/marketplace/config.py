"""
Configuration module for the task/booking marketplace.
Loads all environment variables needed by the platform.
"""
import json
import os


def _env_bool(name: str, default: str) -> bool:
    return os.environ.get(name, default).strip().lower() in ('1', 'true', 'yes', 'on')


class Config:
    """Centralized configuration from environment variables."""

    # AWS Region
    AWS_REGION = os.environ.get('AWS_REGION', 'us-east-1')

    # DynamoDB Tables
    TASKS_TABLE = os.environ.get('TASKS_TABLE', 'Tasks')
    BOOKINGS_TABLE = os.environ.get('BOOKINGS_TABLE', 'Bookings')
    PROVIDERS_TABLE = os.environ.get('PROVIDERS_TABLE', 'Providers')
    SERVICES_TABLE = os.environ.get('SERVICES_TABLE', 'Services')
    COUNTERS_TABLE = os.environ.get('COUNTERS_TABLE', 'Counters')

    # SQS Queues
    NOTIFICATIONS_QUEUE_URL = os.environ.get('NOTIFICATIONS_QUEUE_URL', '')

    # Matching Configuration
    MIN_MATCH_SCORE = int(os.environ.get('MIN_MATCH_SCORE', '40'))
    FALLBACK_THRESHOLD = int(os.environ.get('FALLBACK_THRESHOLD', '3'))
    MAX_PROVIDERS_TO_RETURN = int(os.environ.get('MAX_PROVIDERS_TO_RETURN', '20'))
    MAX_CANDIDATES = int(os.environ.get('MAX_CANDIDATES', '200'))
    FALLBACK_TO_LOCATION_ONLY = _env_bool('FALLBACK_TO_LOCATION_ONLY', 'true')
    MATCH_WEIGHTS = json.loads(os.environ.get('MATCH_WEIGHTS', '{}') or '{}')

    # Task / Booking lifecycle
    TASK_EXPIRY_DAYS = int(os.environ.get('TASK_EXPIRY_DAYS', '30'))
    DEFAULT_CURRENCY = os.environ.get('DEFAULT_CURRENCY', 'GHS')
    DEFAULT_SLOT_START = os.environ.get('DEFAULT_SLOT_START', '09:00')
    DEFAULT_SLOT_END = os.environ.get('DEFAULT_SLOT_END', '17:00')
    BOOKING_NUMBER_PREFIX = os.environ.get('BOOKING_NUMBER_PREFIX', 'BK')

    def matching_settings(self, overrides: dict = None) -> dict:
        """Settings dict consumed by the matching orchestrator."""
        settings = {
            'minimumMatchScore': self.MIN_MATCH_SCORE,
            'fallbackThreshold': self.FALLBACK_THRESHOLD,
            'maxProvidersToReturn': self.MAX_PROVIDERS_TO_RETURN,
            'maxCandidates': self.MAX_CANDIDATES,
            'fallbackToLocationOnly': self.FALLBACK_TO_LOCATION_ONLY,
            'weights': dict(self.MATCH_WEIGHTS),
        }
        if overrides:
            settings.update(overrides)
        return settings


config = Config()
