"""
Process-level wiring.

Repositories, the orchestrator, the converter and the services are built once
per Lambda container and reused across invocations.
"""
from typing import Dict, Any

from .candidates import CandidateSelector
from .config import config
from .conversion import TaskBookingConverter
from .matching import MatchingOrchestrator
from .notifications import NotificationSink
from .repositories import (
    DynamoTaskRepository,
    DynamoBookingRepository,
    DynamoProviderDirectory,
    DynamoServiceCatalog,
    DynamoBookingNumberAllocator,
)
from .services import TaskService, BookingService

_services = None


def build_services(clock=None, id_factory=None) -> Dict[str, Any]:
    """Construct the DynamoDB-backed task and booking services."""
    tasks = DynamoTaskRepository()
    bookings = DynamoBookingRepository()
    providers = DynamoProviderDirectory()
    catalog = DynamoServiceCatalog()
    notifier = NotificationSink(clock=clock)

    settings = config.matching_settings()
    selector = CandidateSelector(providers, catalog, settings.get('maxCandidates'))
    orchestrator = MatchingOrchestrator(providers, catalog, settings, selector)
    converter = TaskBookingConverter(
        tasks, providers, catalog, DynamoBookingNumberAllocator(), notifier,
        clock=clock, id_factory=id_factory
    )

    return {
        'tasks': TaskService(
            tasks, bookings, providers, catalog, orchestrator, converter, notifier,
            clock=clock, id_factory=id_factory
        ),
        'bookings': BookingService(bookings, notifier, clock=clock),
    }


def get_services() -> Dict[str, Any]:
    """Get or create the process-wide services."""
    global _services
    if _services is None:
        _services = build_services()
    return _services
