"""
Task -> Booking conversion.

Turns a REQUESTED task into a CONFIRMED booking when the requested provider
accepts. The booking insert and the task flip to CONVERTED are one
transactional write conditioned on the task still being REQUESTED at the
version that was read, so two racing accepts produce exactly one booking.
"""
import uuid
from datetime import datetime, timezone
from typing import Dict, Any, Callable, List, Optional, Tuple

from .booking_state import new_booking
from .errors import NotFoundError, ResolutionError, StateConflictError
from .logging import logger, log_transition
from .models import TaskStatus, BookingStatus, NotificationType
from .notifications import NotificationSink
from .repositories import TaskRepository, ProviderDirectory, ServiceCatalog, BookingNumberAllocator
from .task_state import accept_request, mark_converted, is_expired


class TaskBookingConverter:

    def __init__(
        self,
        tasks: TaskRepository,
        providers: ProviderDirectory,
        catalog: ServiceCatalog,
        allocator: BookingNumberAllocator,
        notifier: NotificationSink,
        clock: Callable[[], datetime] = None,
        id_factory: Callable[[], str] = None
    ):
        self.tasks = tasks
        self.providers = providers
        self.catalog = catalog
        self.allocator = allocator
        self.notifier = notifier
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.id_factory = id_factory or (lambda: str(uuid.uuid4()))

    def resolve_service(self, task: Dict[str, Any], provider_id: str) -> Dict[str, Any]:
        """
        Pick the service the booking will reference.

        1. a service matched to this provider during matching
        2. any active service the provider offers
        3. any active service in the task's category

        Raises:
            ResolutionError: if none of the above exists
        """
        provider_services = self.catalog.for_provider(provider_id)

        matched = next(
            (m for m in task.get('matchedProviders') or [] if m['providerId'] == provider_id),
            None
        )
        if matched:
            by_id = {s['serviceId']: s for s in provider_services}
            for service_id in matched.get('matchedServiceIds') or []:
                if service_id in by_id:
                    logger.info(f"Resolved service {service_id} from matching for task {task['taskId']}")
                    return by_id[service_id]

        if provider_services:
            service = provider_services[0]
            logger.info(f"Resolved service {service['serviceId']} from provider catalog for task {task['taskId']}")
            return service

        category = task.get('category')
        if category:
            in_category: List[Dict[str, Any]] = sorted(
                (s for s in self.catalog.list_active() if s.get('categoryId') == category),
                key=lambda s: s['serviceId']
            )
            if in_category:
                service = in_category[0]
                logger.info(f"Resolved service {service['serviceId']} by category for task {task['taskId']}")
                return service

        raise ResolutionError(
            "No service found for this provider. The provider must have at least one "
            "active service to accept tasks."
        )

    def convert(
        self,
        task_id: str,
        provider_id: str,
        message: Optional[str] = None
    ) -> Tuple[Dict[str, Any], Dict[str, Any]]:
        """
        Accept a request and create its booking.

        Returns:
            (converted task, new booking)

        Raises:
            NotFoundError, StateConflictError, AuthorizationError, ResolutionError.
            On any of them the task is left exactly as it was (REQUESTED).
        """
        now = self.clock()

        task = self.tasks.get(task_id)
        if not task or task.get('isDeleted'):
            raise NotFoundError(f"Task {task_id} not found")

        accepted = accept_request(task, provider_id, message, now)
        if is_expired(task, now):
            raise StateConflictError("Task has expired")

        provider = self.providers.get(provider_id)
        if not provider:
            raise NotFoundError(f"Provider {provider_id} not found")

        service = self.resolve_service(task, provider_id)

        booking_number = self.allocator.next_booking_number(now)
        booking = new_booking(self.id_factory(), booking_number, accepted, provider, service, now)
        converted = mark_converted(accepted, booking['bookingId'], now)

        stored_task, stored_booking = self.tasks.convert_to_booking(
            converted, booking, expected_version=task['version']
        )

        log_transition('Task', task_id, TaskStatus.REQUESTED, TaskStatus.CONVERTED)
        log_transition('Booking', stored_booking['bookingId'], None, BookingStatus.CONFIRMED)

        self.notifier.notify(
            NotificationType.BOOKING_CONFIRMED,
            taskId=task_id,
            bookingId=stored_booking['bookingId'],
            bookingNumber=stored_booking['bookingNumber'],
            clientId=stored_booking['clientId'],
            providerId=provider_id
        )

        return stored_task, stored_booking
