"""
Data models and status constants for the marketplace.
Discovery lifecycle: Pending → Matched/Floating → Requested → Accepted → Converted
Execution lifecycle: Confirmed → InProgress → Completed (or Cancelled)
"""


class TaskStatus:
    """Task lifecycle statuses (discovery phase)."""
    PENDING = 'PENDING'
    MATCHED = 'MATCHED'
    FLOATING = 'FLOATING'
    REQUESTED = 'REQUESTED'
    ACCEPTED = 'ACCEPTED'
    CONVERTED = 'CONVERTED'
    EXPIRED = 'EXPIRED'
    CANCELLED = 'CANCELLED'

    ALL = (PENDING, MATCHED, FLOATING, REQUESTED, ACCEPTED, CONVERTED, EXPIRED, CANCELLED)
    TERMINAL = (CONVERTED, EXPIRED, CANCELLED)
    DISCOVERY = (PENDING, MATCHED, FLOATING)


class BookingStatus:
    """Booking lifecycle statuses (execution phase)."""
    CONFIRMED = 'CONFIRMED'
    IN_PROGRESS = 'IN_PROGRESS'
    COMPLETED = 'COMPLETED'
    CANCELLED = 'CANCELLED'

    ALL = (CONFIRMED, IN_PROGRESS, COMPLETED, CANCELLED)
    TERMINAL = (COMPLETED, CANCELLED)


class TaskPriority:
    """Task urgency levels."""
    LOW = 'LOW'
    MEDIUM = 'MEDIUM'
    HIGH = 'HIGH'
    URGENT = 'URGENT'

    ALL = (LOW, MEDIUM, HIGH, URGENT)


class UserRole:
    """Actor roles recorded on transitions."""
    CUSTOMER = 'CUSTOMER'
    PROVIDER = 'PROVIDER'
    SYSTEM = 'SYSTEM'


class MatchingStrategy:
    """Provider matching modes."""
    INTELLIGENT = 'intelligent'
    LOCATION_ONLY = 'location-only'

    ALL = (INTELLIGENT, LOCATION_ONLY)


class TaskEvent:
    """Events accepted by the task state machine."""
    MATCH_FOUND = 'match_found'
    MATCH_EMPTY = 'match_empty'
    EXPRESS_INTEREST = 'express_interest'
    REQUEST_PROVIDER = 'request_provider'
    ACCEPT = 'accept'
    CONVERT = 'convert'
    REJECT = 'reject'
    CANCEL = 'cancel'
    EXPIRE = 'expire'

    ALL = (MATCH_FOUND, MATCH_EMPTY, EXPRESS_INTEREST, REQUEST_PROVIDER,
           ACCEPT, CONVERT, REJECT, CANCEL, EXPIRE)


class RequestAction:
    """Provider responses to a customer request."""
    ACCEPT = 'accept'
    REJECT = 'reject'


class NotificationType:
    """Event types published to the notifications queue."""
    TASK_MATCHED = 'task.matched'
    TASK_FLOATING = 'task.floating'
    TASK_INTEREST_EXPRESSED = 'task.interest_expressed'
    TASK_PROVIDER_REQUESTED = 'task.provider_requested'
    TASK_REQUEST_REJECTED = 'task.request_rejected'
    TASK_CANCELLED = 'task.cancelled'
    TASK_EXPIRED = 'task.expired'
    BOOKING_CONFIRMED = 'booking.confirmed'
    BOOKING_STARTED = 'booking.started'
    BOOKING_COMPLETED = 'booking.completed'
    BOOKING_CANCELLED = 'booking.cancelled'
    BOOKING_RESCHEDULED = 'booking.rescheduled'
