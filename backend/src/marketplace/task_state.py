"""
Task state machine.

Every transition is a pure function: it takes a Task item and returns a new
Task item, never mutating its input. Persisting the result (conditioned on the
status and version that were read) is the caller's job.

Checks run in a fixed order: terminal status, then legality of the event from
the current status, then the actor, then event-specific preconditions.
"""
from datetime import datetime, timedelta
from typing import Dict, Any, List, Optional, Tuple

from .config import config
from .errors import StateConflictError, AuthorizationError, ValidationError
from .matching import to_matched_provider
from .models import TaskStatus, TaskEvent, UserRole
from .utils import clone, to_iso, parse_iso

NON_TERMINAL = tuple(s for s in TaskStatus.ALL if s not in TaskStatus.TERMINAL)

# event -> statuses it may be applied from
TRANSITIONS = {
    TaskEvent.MATCH_FOUND: TaskStatus.DISCOVERY,
    TaskEvent.MATCH_EMPTY: TaskStatus.DISCOVERY,
    TaskEvent.EXPRESS_INTEREST: (TaskStatus.FLOATING,),
    TaskEvent.REQUEST_PROVIDER: (TaskStatus.MATCHED, TaskStatus.FLOATING),
    TaskEvent.ACCEPT: (TaskStatus.REQUESTED,),
    TaskEvent.CONVERT: (TaskStatus.ACCEPTED,),
    TaskEvent.REJECT: (TaskStatus.REQUESTED,),
    TaskEvent.CANCEL: NON_TERMINAL,
    TaskEvent.EXPIRE: NON_TERMINAL,
}


def can_transition(status: str, event: str) -> bool:
    return status in TRANSITIONS.get(event, ())


def ensure_transition(task: Dict[str, Any], event: str) -> None:
    status = task['status']
    if status in TaskStatus.TERMINAL:
        raise StateConflictError(f"Task is {status} and can no longer change")
    if not can_transition(status, event):
        raise StateConflictError(f"Cannot {event.replace('_', ' ')} while task is {status}")


def ensure_discovery(task: Dict[str, Any], action: str) -> None:
    status = task['status']
    if status in TaskStatus.TERMINAL:
        raise StateConflictError(f"Task is {status} and can no longer change")
    if status not in TaskStatus.DISCOVERY:
        raise StateConflictError(f"Cannot {action} once a provider has been requested")


def ensure_owner(task: Dict[str, Any], customer_id: str) -> None:
    if task.get('customerId') != customer_id:
        raise AuthorizationError("Only the task owner can perform this action")


def requested_provider_id(task: Dict[str, Any]) -> Optional[str]:
    return (task.get('requestedProvider') or {}).get('providerId')


def accepted_provider_id(task: Dict[str, Any]) -> Optional[str]:
    return (task.get('acceptedProvider') or {}).get('providerId')


def ensure_requested_provider(task: Dict[str, Any], provider_id: str) -> None:
    if not provider_id or requested_provider_id(task) != provider_id:
        raise AuthorizationError("Only the requested provider can respond to this request")


def matched_provider_ids(task: Dict[str, Any]) -> List[str]:
    return [m['providerId'] for m in task.get('matchedProviders') or []]


def interested_provider_ids(task: Dict[str, Any]) -> List[str]:
    return [i['providerId'] for i in task.get('interestedProviders') or []]


def is_expired(task: Dict[str, Any], now: datetime) -> bool:
    expires_at = parse_iso(task.get('expiresAt'))
    return expires_at is not None and expires_at < now


def _touch(task: Dict[str, Any], now: datetime) -> Dict[str, Any]:
    task['updatedAt'] = to_iso(now)
    return task


def new_task(task_id: str, customer_id: str, fields: Dict[str, Any], now: datetime) -> Dict[str, Any]:
    """Build a PENDING task from validated input fields."""
    timestamp = to_iso(now)
    task = {
        'taskId': task_id,
        'customerId': customer_id,
        'status': TaskStatus.PENDING,
        'matchedProviders': [],
        'matchingAttemptedAt': None,
        'matchingCriteria': None,
        'interestedProviders': [],
        'requestedProvider': None,
        'acceptedProvider': None,
        'lastRejection': None,
        'convertedToBookingId': None,
        'convertedAt': None,
        'cancelledAt': None,
        'cancellationReason': None,
        'cancelledBy': None,
        'expiresAt': to_iso(now + timedelta(days=config.TASK_EXPIRY_DAYS)),
        'isDeleted': False,
        'createdAt': timestamp,
        'updatedAt': timestamp,
    }
    task.update(clone(fields))
    return task


def apply_matching_result(task: Dict[str, Any], result: Dict[str, Any], now: datetime) -> Dict[str, Any]:
    """
    Record a matching run. Non-empty results move the task to MATCHED,
    empty results to FLOATING.
    """
    matches = result.get('matches') or []
    event = TaskEvent.MATCH_FOUND if matches else TaskEvent.MATCH_EMPTY
    ensure_transition(task, event)

    updated = clone(task)
    updated['matchedProviders'] = [to_matched_provider(m) for m in matches]
    updated['matchingAttemptedAt'] = to_iso(now)
    updated['matchingCriteria'] = clone(result.get('criteria') or {})
    updated['status'] = TaskStatus.MATCHED if matches else TaskStatus.FLOATING
    return _touch(updated, now)


def express_interest(
    task: Dict[str, Any],
    provider_id: str,
    message: Optional[str],
    now: datetime
) -> Dict[str, Any]:
    """Add a provider to interestedProviders. Repeating it is a no-op."""
    ensure_transition(task, TaskEvent.EXPRESS_INTEREST)

    updated = clone(task)
    if provider_id in interested_provider_ids(task):
        return updated

    updated['interestedProviders'] = updated.get('interestedProviders') or []
    updated['interestedProviders'].append({
        'providerId': provider_id,
        'expressedAt': to_iso(now),
        'message': message,
    })
    return _touch(updated, now)


def withdraw_interest(task: Dict[str, Any], provider_id: str, now: datetime) -> Dict[str, Any]:
    """Remove a provider from interestedProviders. Withdrawing twice is a no-op."""
    ensure_transition(task, TaskEvent.EXPRESS_INTEREST)

    updated = clone(task)
    if provider_id not in interested_provider_ids(task):
        return updated

    updated['interestedProviders'] = [
        i for i in updated['interestedProviders'] if i['providerId'] != provider_id
    ]
    return _touch(updated, now)


def request_provider(
    task: Dict[str, Any],
    customer_id: str,
    provider_id: str,
    message: Optional[str],
    now: datetime
) -> Dict[str, Any]:
    ensure_transition(task, TaskEvent.REQUEST_PROVIDER)
    ensure_owner(task, customer_id)

    if provider_id not in matched_provider_ids(task) + interested_provider_ids(task):
        raise ValidationError("Provider is not among the matched or interested providers")

    updated = clone(task)
    updated['requestedProvider'] = {
        'providerId': provider_id,
        'requestedAt': to_iso(now),
        'message': message,
    }
    updated['status'] = TaskStatus.REQUESTED
    return _touch(updated, now)


def accept_request(
    task: Dict[str, Any],
    provider_id: str,
    message: Optional[str],
    now: datetime
) -> Dict[str, Any]:
    ensure_transition(task, TaskEvent.ACCEPT)
    ensure_requested_provider(task, provider_id)

    updated = clone(task)
    updated['acceptedProvider'] = {
        'providerId': provider_id,
        'acceptedAt': to_iso(now),
        'message': message,
    }
    updated['status'] = TaskStatus.ACCEPTED
    return _touch(updated, now)


def mark_converted(task: Dict[str, Any], booking_id: str, now: datetime) -> Dict[str, Any]:
    """Link the task to its booking. convertedToBookingId is write-once."""
    ensure_transition(task, TaskEvent.CONVERT)
    if task.get('convertedToBookingId'):
        raise StateConflictError("Task has already been converted to a booking")

    updated = clone(task)
    updated['convertedToBookingId'] = booking_id
    updated['convertedAt'] = to_iso(now)
    updated['status'] = TaskStatus.CONVERTED
    return _touch(updated, now)


def status_after_rejection(task: Dict[str, Any]) -> str:
    if task.get('matchedProviders'):
        return TaskStatus.MATCHED
    if task.get('interestedProviders'):
        return TaskStatus.FLOATING
    return TaskStatus.PENDING


def reject_request(
    task: Dict[str, Any],
    provider_id: str,
    reason: Optional[str],
    now: datetime
) -> Dict[str, Any]:
    ensure_transition(task, TaskEvent.REJECT)
    ensure_requested_provider(task, provider_id)

    updated = clone(task)
    updated['status'] = status_after_rejection(task)
    updated['requestedProvider'] = None
    updated['cancellationReason'] = reason
    updated['lastRejection'] = {
        'providerId': provider_id,
        'reason': reason,
        'rejectedAt': to_iso(now),
    }
    return _touch(updated, now)


def cancel(
    task: Dict[str, Any],
    actor_id: str,
    actor_role: str,
    reason: Optional[str],
    now: datetime
) -> Dict[str, Any]:
    """Cancel by the owning customer or by the requested/accepted provider."""
    ensure_transition(task, TaskEvent.CANCEL)

    if actor_role == UserRole.CUSTOMER:
        allowed = actor_id == task.get('customerId')
    elif actor_role == UserRole.PROVIDER:
        allowed = bool(actor_id) and actor_id in (requested_provider_id(task), accepted_provider_id(task))
    else:
        allowed = False
    if not allowed:
        raise AuthorizationError("Only the task owner or the requested provider can cancel this task")

    updated = clone(task)
    updated['status'] = TaskStatus.CANCELLED
    updated['cancelledAt'] = to_iso(now)
    updated['cancellationReason'] = reason
    updated['cancelledBy'] = {'actorId': actor_id, 'actorRole': actor_role}
    return _touch(updated, now)


def expire(task: Dict[str, Any], now: datetime) -> Dict[str, Any]:
    ensure_transition(task, TaskEvent.EXPIRE)
    if not is_expired(task, now):
        raise StateConflictError("Task has not reached its expiry time")

    updated = clone(task)
    updated['status'] = TaskStatus.EXPIRED
    return _touch(updated, now)


def update_details(
    task: Dict[str, Any],
    customer_id: str,
    changes: Dict[str, Any],
    now: datetime
) -> Tuple[Dict[str, Any], bool]:
    """
    Apply validated descriptive changes during discovery.

    Returns:
        (updated task, True if title or description changed and matching must rerun)
    """
    ensure_discovery(task, 'update the task')
    ensure_owner(task, customer_id)

    updated = clone(task)
    needs_rematch = False
    for field, value in changes.items():
        if field in ('title', 'description') and task.get(field) != value:
            needs_rematch = True
        updated[field] = clone(value)
    return _touch(updated, now), needs_rematch


def soft_delete(task: Dict[str, Any], customer_id: str, now: datetime) -> Dict[str, Any]:
    ensure_discovery(task, 'delete the task')
    ensure_owner(task, customer_id)

    updated = clone(task)
    updated['isDeleted'] = True
    updated['deletedAt'] = to_iso(now)
    updated['deletedBy'] = customer_id
    return _touch(updated, now)
