"""
Task and Booking services.

The operation boundary of the marketplace core. Each public method loads the
entity, applies a pure transition, persists it conditioned on the status and
version it read, and publishes a notification once the write has committed.
MarketplaceError subclasses are turned into structured failure results by the
@operation decorator; infrastructure faults propagate.
"""
import uuid
from datetime import datetime, timezone
from typing import Dict, Any, Callable, List, Optional

from . import task_state, booking_state
from .candidates import extract_search_terms, service_matches
from .conversion import TaskBookingConverter
from .errors import NotFoundError, AuthorizationError, ValidationError, StateConflictError, operation
from .location import in_area
from .logging import logger, log_transition
from .matching import MatchingOrchestrator
from .models import TaskStatus, TaskEvent, BookingStatus, MatchingStrategy, RequestAction, NotificationType
from .notifications import NotificationSink
from .repositories import TaskRepository, BookingRepository, ProviderDirectory, ServiceCatalog
from .scoring import score_provider
from .utils import parse_iso
from .validation import validate_task_input, validate_task_changes, validate_message

# Score reported for an in-area provider with no service relevant to the task
NO_SERVICES_SUITABILITY_SCORE = 50
DEFAULT_FLOATING_LIMIT = 20


def _default_clock() -> datetime:
    return datetime.now(timezone.utc)


def _default_id() -> str:
    return str(uuid.uuid4())


def _newest_first(items: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return sorted(
        items,
        key=lambda i: (i.get('createdAt') or '', i.get('bookingId') or i.get('taskId')),
        reverse=True
    )


def _count_by_status(items: List[Dict[str, Any]], statuses) -> Dict[str, int]:
    counts = {status: 0 for status in statuses}
    for item in items:
        counts[item['status']] = counts.get(item['status'], 0) + 1
    return counts


class TaskService:
    """Discovery-phase operations on Tasks."""

    def __init__(
        self,
        tasks: TaskRepository,
        bookings: BookingRepository,
        providers: ProviderDirectory,
        catalog: ServiceCatalog,
        orchestrator: MatchingOrchestrator,
        converter: TaskBookingConverter,
        notifier: NotificationSink,
        clock: Callable[[], datetime] = None,
        id_factory: Callable[[], str] = None
    ):
        self.tasks = tasks
        self.bookings = bookings
        self.providers = providers
        self.catalog = catalog
        self.orchestrator = orchestrator
        self.converter = converter
        self.notifier = notifier
        self.clock = clock or _default_clock
        self.id_factory = id_factory or _default_id

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _load(self, task_id: str) -> Dict[str, Any]:
        task = self.tasks.get(task_id)
        if not task or task.get('isDeleted'):
            raise NotFoundError(f"Task {task_id} not found")
        return task

    def _load_provider(self, provider_id: str) -> Dict[str, Any]:
        provider = self.providers.get(provider_id)
        if not provider:
            raise NotFoundError(f"Provider {provider_id} not found")
        return provider

    def _commit(self, current: Dict[str, Any], updated: Dict[str, Any]) -> Dict[str, Any]:
        stored = self.tasks.save(updated, current['status'], current['version'])
        if current['status'] != stored['status']:
            log_transition('Task', stored['taskId'], current['status'], stored['status'])
        return stored

    def _match(
        self,
        task: Dict[str, Any],
        strategy: str,
        overrides: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """Run matching and persist the result. Returns {'task', 'matchResult'}."""
        # Fail before doing any work if the task cannot take a matching result
        task_state.ensure_transition(task, TaskEvent.MATCH_FOUND)

        result = self.orchestrator.find_matches(task, strategy, overrides)
        stored = self._commit(task, task_state.apply_matching_result(task, result, self.clock()))

        if stored['status'] == TaskStatus.MATCHED:
            self.notifier.notify(
                NotificationType.TASK_MATCHED,
                taskId=stored['taskId'],
                customerId=stored['customerId'],
                providerIds=[m['providerId'] for m in stored['matchedProviders']]
            )
        else:
            self.notifier.notify(
                NotificationType.TASK_FLOATING,
                taskId=stored['taskId'],
                customerId=stored['customerId'],
                location=stored.get('location')
            )

        return {
            'task': stored,
            'matchResult': {
                'strategy': result['strategy'],
                'metadata': result['metadata'],
                'matches': result['matches'],
            },
        }

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    @operation
    def create_task(
        self,
        customer_id: str,
        task_input: Dict[str, Any],
        strategy: str = MatchingStrategy.INTELLIGENT
    ) -> Dict[str, Any]:
        """Create a PENDING task and immediately run matching on it."""
        if not customer_id:
            raise ValidationError("customerId is required")
        if strategy not in MatchingStrategy.ALL:
            raise ValidationError(f"Unknown matching strategy: {strategy}")

        fields = validate_task_input(task_input)
        task = self.tasks.create(task_state.new_task(self.id_factory(), customer_id, fields, self.clock()))
        logger.info(f"Task {task['taskId']} created by customer {customer_id}")

        outcome = self._match(task, strategy)
        return {
            'success': True,
            'message': 'Task created successfully',
            **outcome
        }

    @operation
    def get_task(self, task_id: str) -> Dict[str, Any]:
        return {'success': True, 'message': 'Task retrieved', 'task': self._load(task_id)}

    @operation
    def run_matching(
        self,
        task_id: str,
        strategy: str = MatchingStrategy.INTELLIGENT,
        customer_id: Optional[str] = None,
        overrides: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """
        (Re)run matching for a discovery-phase task.

        When customer_id is given the caller must own the task; system callers
        pass None.
        """
        task = self._load(task_id)
        task_state.ensure_discovery(task, 'rematch the task')
        if customer_id is not None:
            task_state.ensure_owner(task, customer_id)

        outcome = self._match(task, strategy, overrides)
        return {
            'success': True,
            'message': f"Found {outcome['matchResult']['metadata']['totalMatches']} matching provider(s)",
            **outcome
        }

    @operation
    def update_task(self, task_id: str, customer_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        """Edit descriptive fields; a new title or description reruns matching."""
        task = self._load(task_id)
        cleaned = validate_task_changes(changes)
        updated, needs_rematch = task_state.update_details(task, customer_id, cleaned, self.clock())
        stored = self._commit(task, updated)

        if not needs_rematch:
            return {'success': True, 'message': 'Task updated', 'task': stored}

        logger.info(f"Task {task_id} description changed, rerunning matching")
        outcome = self._match(stored, MatchingStrategy.INTELLIGENT)
        return {
            'success': True,
            'message': 'Task updated and providers rematched',
            **outcome
        }

    @operation
    def express_interest(self, task_id: str, provider_id: str, message: Optional[str] = None) -> Dict[str, Any]:
        message = validate_message(message)
        task = self._load(task_id)
        task_state.ensure_transition(task, TaskEvent.EXPRESS_INTEREST)

        provider = self._load_provider(provider_id)
        if not in_area(task.get('location'), provider.get('location'), task.get('maxTravelDistanceKm')):
            raise AuthorizationError("Provider does not serve the task's area")

        if provider_id in task_state.interested_provider_ids(task):
            return {'success': True, 'message': 'Interest already recorded', 'task': task}

        stored = self._commit(task, task_state.express_interest(task, provider_id, message, self.clock()))
        self.notifier.notify(
            NotificationType.TASK_INTEREST_EXPRESSED,
            taskId=task_id,
            customerId=stored['customerId'],
            providerId=provider_id
        )
        return {'success': True, 'message': 'Interest expressed successfully', 'task': stored}

    @operation
    def withdraw_interest(self, task_id: str, provider_id: str) -> Dict[str, Any]:
        task = self._load(task_id)
        task_state.ensure_transition(task, TaskEvent.EXPRESS_INTEREST)
        if provider_id not in task_state.interested_provider_ids(task):
            return {'success': True, 'message': 'No interest to withdraw', 'task': task}

        stored = self._commit(task, task_state.withdraw_interest(task, provider_id, self.clock()))
        return {'success': True, 'message': 'Interest withdrawn', 'task': stored}

    @operation
    def request_provider(
        self,
        task_id: str,
        customer_id: str,
        provider_id: str,
        message: Optional[str] = None
    ) -> Dict[str, Any]:
        message = validate_message(message)
        task = self._load(task_id)
        updated = task_state.request_provider(task, customer_id, provider_id, message, self.clock())
        self._load_provider(provider_id)

        stored = self._commit(task, updated)
        self.notifier.notify(
            NotificationType.TASK_PROVIDER_REQUESTED,
            taskId=task_id,
            customerId=customer_id,
            providerId=provider_id,
            message=message
        )
        return {'success': True, 'message': 'Provider requested successfully', 'task': stored}

    @operation
    def respond_to_request(
        self,
        task_id: str,
        provider_id: str,
        action: str,
        message: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Provider accepts or rejects a request.

        accept returns both the CONVERTED task and the new booking; reject
        returns the task reverted to MATCHED, FLOATING or PENDING.
        """
        message = validate_message(message)

        if action == RequestAction.ACCEPT:
            task, booking = self.converter.convert(task_id, provider_id, message)
            return {
                'success': True,
                'message': 'Request accepted and booking created',
                'task': task,
                'booking': booking_state.booking_view(booking),
            }

        if action != RequestAction.REJECT:
            raise ValidationError(f"Invalid action: {action}")

        task = self._load(task_id)
        stored = self._commit(task, task_state.reject_request(task, provider_id, message, self.clock()))
        self.notifier.notify(
            NotificationType.TASK_REQUEST_REJECTED,
            taskId=task_id,
            customerId=stored['customerId'],
            providerId=provider_id,
            reason=message
        )
        return {'success': True, 'message': 'Request rejected', 'task': stored}

    @operation
    def cancel_task(self, task_id: str, actor_id: str, actor_role: str, reason: Optional[str] = None) -> Dict[str, Any]:
        reason = validate_message(reason)
        task = self._load(task_id)
        stored = self._commit(task, task_state.cancel(task, actor_id, actor_role, reason, self.clock()))

        self.notifier.notify(
            NotificationType.TASK_CANCELLED,
            taskId=task_id,
            customerId=stored['customerId'],
            providerId=task_state.requested_provider_id(task) or task_state.accepted_provider_id(task),
            cancelledBy=actor_id,
            reason=reason
        )
        return {'success': True, 'message': 'Task cancelled successfully', 'task': stored}

    @operation
    def delete_task(self, task_id: str, customer_id: str) -> Dict[str, Any]:
        task = self._load(task_id)
        self._commit(task, task_state.soft_delete(task, customer_id, self.clock()))
        logger.info(f"Task {task_id} deleted by customer {customer_id}")
        return {'success': True, 'message': 'Task deleted successfully'}

    @operation
    def get_booking_for_task(self, task_id: str) -> Dict[str, Any]:
        task = self._load(task_id)
        booking = self.bookings.find_by_task(task['taskId'])
        if not booking:
            raise NotFoundError(f"No booking found for task {task_id}")
        return {'success': True, 'message': 'Booking retrieved', 'booking': booking_state.booking_view(booking)}

    @operation
    def get_booking_with_task(self, booking_id: str) -> Dict[str, Any]:
        """A booking together with the task it was converted from."""
        booking = self.bookings.get(booking_id)
        if not booking:
            raise NotFoundError(f"Booking {booking_id} not found")
        return {
            'success': True,
            'message': 'Booking retrieved',
            'booking': booking_state.booking_view(booking),
            'task': self.tasks.get(booking['taskId']),
        }

    @operation
    def list_customer_tasks(self, customer_id: str, status: Optional[str] = None) -> Dict[str, Any]:
        """The customer's tasks, newest first, optionally narrowed to one status."""
        if status is not None and status not in TaskStatus.ALL:
            raise ValidationError(f"Invalid status: {status}")

        tasks = [
            t for t in self.tasks.list_by_customer(customer_id)
            if not t.get('isDeleted') and (status is None or t['status'] == status)
        ]
        return {'success': True, 'message': 'Tasks retrieved successfully', 'tasks': _newest_first(tasks)}

    @operation
    def list_matched_tasks_for_provider(self, provider_id: str) -> Dict[str, Any]:
        """MATCHED, unexpired tasks that list the provider among their matches."""
        now = self.clock()
        tasks = [
            t for t in self.tasks.list_by_status(TaskStatus.MATCHED)
            if not t.get('isDeleted')
            and not task_state.is_expired(t, now)
            and provider_id in task_state.matched_provider_ids(t)
        ]
        return {'success': True, 'message': 'Matched tasks retrieved successfully', 'tasks': _newest_first(tasks)}

    @operation
    def list_floating_tasks_for_provider(self, provider_id: str, limit: int = DEFAULT_FLOATING_LIMIT) -> Dict[str, Any]:
        """FLOATING tasks in the provider's area it has not yet shown interest in, newest first."""
        provider = self._load_provider(provider_id)
        now = self.clock()

        tasks = [
            t for t in self.tasks.list_by_status(TaskStatus.FLOATING)
            if not t.get('isDeleted')
            and not task_state.is_expired(t, now)
            and in_area(t.get('location'), provider.get('location'), t.get('maxTravelDistanceKm'))
            and provider_id not in task_state.interested_provider_ids(t)
        ]
        tasks = _newest_first(tasks)[:limit]

        return {'success': True, 'message': f'Found {len(tasks)} floating task(s)', 'tasks': tasks}

    @operation
    def get_customer_history(self, customer_id: str) -> Dict[str, Any]:
        """Every task the customer posted and every booking made for them, with counts."""
        tasks = _newest_first([t for t in self.tasks.list_by_customer(customer_id) if not t.get('isDeleted')])
        bookings = _newest_first(self.bookings.list_by_client(customer_id))

        return {
            'success': True,
            'message': 'Customer history retrieved',
            'tasks': tasks,
            'bookings': [booking_state.booking_view(b) for b in bookings],
            'stats': {
                'totalTasks': len(tasks),
                'tasksByStatus': _count_by_status(tasks, TaskStatus.ALL),
                **self._booking_stats(bookings),
            },
        }

    @operation
    def get_provider_history(self, provider_id: str) -> Dict[str, Any]:
        """Tasks the provider was matched to and the provider's bookings, with counts."""
        matched_tasks = []
        for status in TaskStatus.ALL:
            matched_tasks.extend(
                t for t in self.tasks.list_by_status(status)
                if not t.get('isDeleted') and provider_id in task_state.matched_provider_ids(t)
            )
        matched_tasks = _newest_first(matched_tasks)
        bookings = sorted(
            self.bookings.list_by_provider(provider_id),
            key=lambda b: (b.get('scheduledDate') or '', b['bookingId']),
            reverse=True
        )

        return {
            'success': True,
            'message': 'Provider history retrieved',
            'matchedTasks': matched_tasks,
            'bookings': [booking_state.booking_view(b) for b in bookings],
            'stats': {
                'totalMatches': len(matched_tasks),
                'tasksByStatus': _count_by_status(matched_tasks, TaskStatus.ALL),
                **self._booking_stats(bookings),
            },
        }

    def _booking_stats(self, bookings) -> Dict[str, Any]:
        now = self.clock()
        live = [b for b in bookings if b['status'] in (BookingStatus.CONFIRMED, BookingStatus.IN_PROGRESS)]
        return {
            'totalBookings': len(bookings),
            'bookingsByStatus': _count_by_status(bookings, BookingStatus.ALL),
            'activeBookings': len(live),
            'upcomingBookings': len([
                b for b in live
                if b.get('scheduledDate') and parse_iso(b['scheduledDate']) > now
            ]),
        }

    @operation
    def check_provider_suitability(self, task_id: str, provider_id: str) -> Dict[str, Any]:
        task = self._load(task_id)
        provider = self._load_provider(provider_id)

        matched = next(
            (m for m in task.get('matchedProviders') or [] if m['providerId'] == provider_id),
            None
        )
        if matched:
            return {
                'success': True, 'message': 'Provider already matched',
                'suitable': True, 'score': matched['score'], 'reasons': matched['reasons'],
            }

        if provider_id in task_state.interested_provider_ids(task):
            return {
                'success': True, 'message': 'Provider already expressed interest',
                'suitable': True, 'score': None, 'reasons': ['Already expressed interest'],
            }

        if not in_area(task.get('location'), provider.get('location'), task.get('maxTravelDistanceKm')):
            return {
                'success': True, 'message': 'Provider is outside the task area',
                'suitable': False, 'score': 0, 'reasons': ["Outside the task's area"],
            }

        terms = extract_search_terms(task)
        services = [s for s in self.catalog.for_provider(provider_id) if service_matches(s, task, terms)]
        if not services:
            return {
                'success': True, 'message': 'Provider is in the task area',
                'suitable': True, 'score': NO_SERVICES_SUITABILITY_SCORE,
                'reasons': ['Available in your area', 'No specific service match'],
            }

        result = score_provider(task, provider, services, self.orchestrator.settings.get('weights') or None)
        return {
            'success': True, 'message': 'Provider is in the task area',
            'suitable': True, 'score': result['totalScore'], 'reasons': result['reasons'],
        }

    def expire_due_tasks(self) -> Dict[str, Any]:
        """
        Move every non-terminal task past its expiresAt to EXPIRED.

        A task that changes underneath the sweep is skipped; the next run
        picks it up again if it is still due.
        """
        now = self.clock()
        checked = 0
        expired = 0
        skipped = 0

        for status in task_state.NON_TERMINAL:
            for task in self.tasks.list_by_status(status):
                checked += 1
                if task.get('isDeleted') or not task_state.is_expired(task, now):
                    continue
                try:
                    stored = self._commit(task, task_state.expire(task, now))
                except StateConflictError as e:
                    logger.warning(f"Skipping expiry of task {task['taskId']}: {e.message}")
                    skipped += 1
                    continue

                expired += 1
                self.notifier.notify(
                    NotificationType.TASK_EXPIRED,
                    taskId=stored['taskId'],
                    customerId=stored['customerId']
                )

        logger.info(f"Expiry sweep: checked {checked}, expired {expired}, skipped {skipped}")
        return {'checked': checked, 'expired': expired, 'skipped': skipped}


class BookingService:
    """Execution-phase operations on Bookings."""

    def __init__(
        self,
        bookings: BookingRepository,
        notifier: NotificationSink,
        clock: Callable[[], datetime] = None
    ):
        self.bookings = bookings
        self.notifier = notifier
        self.clock = clock or _default_clock

    def _load(self, booking_id: str) -> Dict[str, Any]:
        booking = self.bookings.get(booking_id)
        if not booking:
            raise NotFoundError(f"Booking {booking_id} not found")
        return booking

    def _commit(self, current: Dict[str, Any], updated: Dict[str, Any], event_type: str, **payload) -> Dict[str, Any]:
        stored = self.bookings.save(updated, current['status'], current['version'])
        if current['status'] != stored['status']:
            log_transition('Booking', stored['bookingId'], current['status'], stored['status'])

        self.notifier.notify(
            event_type,
            bookingId=stored['bookingId'],
            bookingNumber=stored.get('bookingNumber'),
            taskId=stored['taskId'],
            clientId=stored['clientId'],
            providerId=stored['providerId'],
            **payload
        )
        return booking_state.booking_view(stored)

    @operation
    def get_booking(self, booking_id: str) -> Dict[str, Any]:
        return {
            'success': True,
            'message': 'Booking retrieved',
            'booking': booking_state.booking_view(self._load(booking_id)),
        }

    @operation
    def start_booking(self, booking_id: str, actor_id: str, message: Optional[str] = None) -> Dict[str, Any]:
        message = validate_message(message)
        booking = self._load(booking_id)
        updated = booking_state.start(booking, actor_id, self.clock(), message)
        view = self._commit(booking, updated, NotificationType.BOOKING_STARTED)
        return {'success': True, 'message': 'Service started', 'booking': view}

    @operation
    def complete_booking(
        self,
        booking_id: str,
        actor_id: str,
        final_price: Optional[float] = None,
        message: Optional[str] = None
    ) -> Dict[str, Any]:
        message = validate_message(message)
        booking = self._load(booking_id)
        updated = booking_state.complete(booking, actor_id, self.clock(), final_price, message)
        view = self._commit(
            booking, updated, NotificationType.BOOKING_COMPLETED,
            finalPrice=updated['pricing']['finalPrice']
        )
        return {'success': True, 'message': 'Service completed', 'booking': view}

    @operation
    def cancel_booking(
        self,
        booking_id: str,
        actor_id: str,
        actor_role: str,
        reason: Optional[str] = None
    ) -> Dict[str, Any]:
        reason = validate_message(reason)
        booking = self._load(booking_id)
        updated = booking_state.cancel(booking, actor_id, actor_role, reason, self.clock())
        view = self._commit(
            booking, updated, NotificationType.BOOKING_CANCELLED,
            cancelledBy=actor_id, reason=reason
        )
        return {'success': True, 'message': 'Booking cancelled', 'booking': view}

    @operation
    def reschedule_booking(
        self,
        booking_id: str,
        actor_id: str,
        actor_role: str,
        scheduled_date: str,
        time_slot: Optional[Dict[str, str]] = None,
        reason: Optional[str] = None
    ) -> Dict[str, Any]:
        reason = validate_message(reason)
        booking = self._load(booking_id)
        updated = booking_state.reschedule(
            booking, actor_id, actor_role, scheduled_date, time_slot, reason, self.clock()
        )
        view = self._commit(
            booking, updated, NotificationType.BOOKING_RESCHEDULED,
            scheduledDate=updated['scheduledDate'],
            scheduledTimeSlot=updated['scheduledTimeSlot'],
            rescheduledBy=actor_id
        )
        return {'success': True, 'message': 'Booking rescheduled', 'booking': view}
