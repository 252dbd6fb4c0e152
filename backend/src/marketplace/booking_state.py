"""
Booking state machine.

CONFIRMED -> IN_PROGRESS -> COMPLETED, with CANCELLED reachable from CONFIRMED
and IN_PROGRESS, and reschedule allowed only while CONFIRMED. statusHistory is
append-only and is the only place workflow timestamps are stored.
"""
from datetime import datetime, timedelta, timezone, time
from typing import Dict, Any, Optional

from .config import config
from .errors import StateConflictError, AuthorizationError, ValidationError
from .models import BookingStatus, UserRole
from .task_state import accepted_provider_id
from .utils import clone, to_iso, parse_iso
from .validation import validate_time_slot, validate_date


def history_entry(
    status: str,
    now: datetime,
    actor: Optional[str],
    actor_role: str,
    reason: Optional[str] = None,
    message: Optional[str] = None
) -> Dict[str, Any]:
    return {
        'status': status,
        'timestamp': to_iso(now),
        'actor': actor,
        'actorRole': actor_role,
        'reason': reason,
        'message': message,
    }


def default_scheduled_date(now: datetime) -> datetime:
    """Next day at the default slot start, UTC."""
    hour, minute = (int(part) for part in config.DEFAULT_SLOT_START.split(':'))
    tomorrow = (now.astimezone(timezone.utc) + timedelta(days=1)).date()
    return datetime.combine(tomorrow, time(hour, minute), tzinfo=timezone.utc)


def scheduled_date_for(task: Dict[str, Any], now: datetime) -> str:
    preferred = parse_iso((task.get('schedule') or {}).get('preferredDate'))
    if preferred is None or preferred <= now:
        preferred = default_scheduled_date(now)
    return to_iso(preferred)


def time_slot_for(task: Dict[str, Any]) -> Dict[str, str]:
    slot = (task.get('schedule') or {}).get('timeSlot') or {}
    if slot.get('start') and slot.get('end'):
        return {'start': slot['start'], 'end': slot['end']}
    return {'start': config.DEFAULT_SLOT_START, 'end': config.DEFAULT_SLOT_END}


def estimate_price(task: Dict[str, Any], service: Dict[str, Any]) -> Optional[float]:
    budget = task.get('budget') or {}
    if budget.get('max') is not None:
        return budget['max']
    if budget.get('min') is not None:
        return budget['min']
    return service.get('basePrice')


def deposit_for(provider: Dict[str, Any], estimated_price: Optional[float]) -> Optional[float]:
    if not provider.get('requireInitialDeposit') or estimated_price is None:
        return None
    percentage = provider.get('percentageDeposit') or 0
    return round(float(estimated_price) * float(percentage) / 100, 2)


def new_booking(
    booking_id: str,
    booking_number: str,
    task: Dict[str, Any],
    provider: Dict[str, Any],
    service: Dict[str, Any],
    now: datetime
) -> Dict[str, Any]:
    """
    Materialize a CONFIRMED booking from an accepted task.

    Location, schedule, description and pricing are copied, not referenced, so
    later edits to the task, provider or service never change the booking.
    """
    provider_id = accepted_provider_id(task)
    message = (task.get('acceptedProvider') or {}).get('message')
    budget = task.get('budget') or {}
    estimated = estimate_price(task, service)
    deposit = deposit_for(provider, estimated)
    timestamp = to_iso(now)

    return {
        'bookingId': booking_id,
        'bookingNumber': booking_number,
        'taskId': task['taskId'],
        'clientId': task['customerId'],
        'providerId': provider_id,
        'serviceId': service['serviceId'],
        'status': BookingStatus.CONFIRMED,
        'serviceLocation': clone(task.get('location') or {}),
        'scheduledDate': scheduled_date_for(task, now),
        'scheduledTimeSlot': time_slot_for(task),
        'serviceDescription': {
            'title': task.get('title'),
            'description': task.get('description'),
            'tags': list(task.get('tags') or []),
            'category': task.get('category'),
            'serviceTitle': service.get('title'),
        },
        'pricing': {
            'estimatedPrice': estimated,
            'finalPrice': None,
            'depositRequired': deposit is not None,
            'depositAmount': deposit,
        },
        'currency': budget.get('currency') or service.get('currency') or config.DEFAULT_CURRENCY,
        'specialInstructions': message,
        'rescheduleCount': 0,
        'statusHistory': [
            history_entry(
                BookingStatus.CONFIRMED, now, provider_id, UserRole.PROVIDER,
                reason='Provider accepted the request', message=message
            )
        ],
        'createdAt': timestamp,
        'updatedAt': timestamp,
    }


def _ensure_open(booking: Dict[str, Any]) -> None:
    status = booking['status']
    if status in BookingStatus.TERMINAL:
        raise StateConflictError(f"Booking is {status} and can no longer change")


def _ensure_status(booking: Dict[str, Any], allowed: tuple, action: str) -> None:
    _ensure_open(booking)
    if booking['status'] not in allowed:
        raise StateConflictError(f"Cannot {action} a booking that is {booking['status']}")


def _ensure_provider(booking: Dict[str, Any], actor_id: str) -> None:
    if not actor_id or booking.get('providerId') != actor_id:
        raise AuthorizationError("Only the booking's provider can perform this action")


def _ensure_party(booking: Dict[str, Any], actor_id: str, actor_role: str) -> None:
    if actor_role == UserRole.CUSTOMER and actor_id == booking.get('clientId'):
        return
    if actor_role == UserRole.PROVIDER and actor_id == booking.get('providerId'):
        return
    raise AuthorizationError("Only the booking's client or provider can perform this action")


def _append(booking: Dict[str, Any], entry: Dict[str, Any], now: datetime) -> Dict[str, Any]:
    updated = clone(booking)
    updated['statusHistory'] = list(updated.get('statusHistory') or []) + [entry]
    updated['status'] = entry['status']
    updated['updatedAt'] = to_iso(now)
    return updated


def start(booking: Dict[str, Any], actor_id: str, now: datetime, message: Optional[str] = None) -> Dict[str, Any]:
    _ensure_status(booking, (BookingStatus.CONFIRMED,), 'start')
    _ensure_provider(booking, actor_id)
    return _append(booking, history_entry(
        BookingStatus.IN_PROGRESS, now, actor_id, UserRole.PROVIDER, message=message
    ), now)


def complete(
    booking: Dict[str, Any],
    actor_id: str,
    now: datetime,
    final_price: Optional[float] = None,
    message: Optional[str] = None
) -> Dict[str, Any]:
    """Complete the work. final_price overrides the estimate when given."""
    _ensure_status(booking, (BookingStatus.IN_PROGRESS,), 'complete')
    _ensure_provider(booking, actor_id)
    if final_price is not None and (
        not isinstance(final_price, (int, float)) or isinstance(final_price, bool) or final_price < 0
    ):
        raise ValidationError("finalPrice must be a non-negative number")

    updated = _append(booking, history_entry(
        BookingStatus.COMPLETED, now, actor_id, UserRole.PROVIDER, message=message
    ), now)
    pricing = updated.get('pricing') or {}
    pricing['finalPrice'] = final_price if final_price is not None else pricing.get('estimatedPrice')
    updated['pricing'] = pricing
    return updated


def cancel(
    booking: Dict[str, Any],
    actor_id: str,
    actor_role: str,
    reason: Optional[str],
    now: datetime
) -> Dict[str, Any]:
    _ensure_status(booking, (BookingStatus.CONFIRMED, BookingStatus.IN_PROGRESS), 'cancel')
    _ensure_party(booking, actor_id, actor_role)
    return _append(booking, history_entry(
        BookingStatus.CANCELLED, now, actor_id, actor_role, reason=reason
    ), now)


def reschedule(
    booking: Dict[str, Any],
    actor_id: str,
    actor_role: str,
    scheduled_date: str,
    time_slot: Optional[Dict[str, str]],
    reason: Optional[str],
    now: datetime
) -> Dict[str, Any]:
    """Move a CONFIRMED booking to a new date and, optionally, a new slot."""
    _ensure_status(booking, (BookingStatus.CONFIRMED,), 'reschedule')
    _ensure_party(booking, actor_id, actor_role)

    if not scheduled_date:
        raise ValidationError("scheduledDate is required")
    validate_date(scheduled_date, 'scheduledDate')
    if parse_iso(scheduled_date) <= now:
        raise ValidationError("scheduledDate must be in the future")
    slot = validate_time_slot(time_slot) or clone(booking.get('scheduledTimeSlot'))

    previous = booking.get('scheduledDate')
    updated = _append(booking, history_entry(
        BookingStatus.CONFIRMED, now, actor_id, actor_role,
        reason=reason or 'Rescheduled',
        message=f"Rescheduled from {previous} to {scheduled_date}"
    ), now)
    updated['scheduledDate'] = scheduled_date
    updated['scheduledTimeSlot'] = slot
    updated['rescheduleCount'] = int(booking.get('rescheduleCount') or 0) + 1
    return updated


def _first_entry(booking: Dict[str, Any], status: str) -> Optional[Dict[str, Any]]:
    for entry in booking.get('statusHistory') or []:
        if entry['status'] == status:
            return entry
    return None


def booking_view(booking: Dict[str, Any]) -> Dict[str, Any]:
    """Booking plus the timestamps derived from statusHistory."""
    confirmed = _first_entry(booking, BookingStatus.CONFIRMED) or {}
    started = _first_entry(booking, BookingStatus.IN_PROGRESS) or {}
    completed = _first_entry(booking, BookingStatus.COMPLETED) or {}
    cancelled = _first_entry(booking, BookingStatus.CANCELLED) or {}

    view = clone(booking)
    view.update({
        'confirmedAt': confirmed.get('timestamp'),
        'startedAt': started.get('timestamp'),
        'completedAt': completed.get('timestamp'),
        'cancelledAt': cancelled.get('timestamp'),
        'cancellationReason': cancelled.get('reason'),
        'cancelledBy': cancelled.get('actor'),
        'providerMessage': confirmed.get('message'),
    })
    return view
