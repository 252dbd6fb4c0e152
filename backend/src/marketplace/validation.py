"""
Input validation for task operations.

Runs before any state is touched. Every failure raises ValidationError with a
message naming the offending field.
"""
import re
from typing import Dict, Any, List, Optional

from .errors import ValidationError
from .models import TaskPriority
from .utils import parse_iso

MAX_TITLE_LENGTH = 200
MAX_DESCRIPTION_LENGTH = 2000
MAX_MESSAGE_LENGTH = 500

TIME_PATTERN = re.compile(r'^([01]\d|2[0-3]):[0-5]\d$')

# Fields a customer may change during discovery
UPDATABLE_FIELDS = (
    'title', 'description', 'tags', 'category', 'location', 'schedule',
    'budget', 'isRemote', 'maxTravelDistanceKm', 'requirements',
)


def _required_text(data: Dict[str, Any], field: str, max_length: int) -> str:
    value = data.get(field)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} is required")
    value = value.strip()
    if len(value) > max_length:
        raise ValidationError(f"{field} cannot exceed {max_length} characters")
    return value


def validate_message(message: Optional[str]) -> Optional[str]:
    if message is None:
        return None
    if not isinstance(message, str):
        raise ValidationError("message must be a string")
    message = message.strip()
    if len(message) > MAX_MESSAGE_LENGTH:
        raise ValidationError(f"message cannot exceed {MAX_MESSAGE_LENGTH} characters")
    return message or None


def normalize_tags(tags: Optional[List[str]]) -> List[str]:
    """Lower-case, trim and de-duplicate tags, keeping first-seen order."""
    if tags is None:
        return []
    if not isinstance(tags, list):
        raise ValidationError("tags must be a list")
    cleaned = []
    for tag in tags:
        if not isinstance(tag, str):
            raise ValidationError("tags must be strings")
        tag = tag.strip().lower()
        if tag and tag not in cleaned:
            cleaned.append(tag)
    return cleaned


def validate_location(location: Any) -> Dict[str, Any]:
    if not isinstance(location, dict):
        raise ValidationError("location is required")

    coords = location.get('gpsCoordinates')
    if coords is not None:
        if not isinstance(coords, dict):
            raise ValidationError("gpsCoordinates must be an object")
        lat = coords.get('latitude')
        lon = coords.get('longitude')
        if not isinstance(lat, (int, float)) or not isinstance(lon, (int, float)):
            raise ValidationError("gpsCoordinates requires numeric latitude and longitude")
        if not -90 <= lat <= 90 or not -180 <= lon <= 180:
            raise ValidationError("gpsCoordinates out of range")

    has_area = any(location.get(field) for field in ('locality', 'city', 'region'))
    if not has_area and coords is None:
        raise ValidationError("location requires a locality, city, region or GPS coordinates")

    return dict(location)


def validate_time_slot(slot: Any) -> Optional[Dict[str, str]]:
    if slot is None:
        return None
    if not isinstance(slot, dict):
        raise ValidationError("timeSlot must be an object")
    start = slot.get('start')
    end = slot.get('end')
    if not start or not end:
        raise ValidationError("timeSlot requires start and end")
    if not TIME_PATTERN.match(start) or not TIME_PATTERN.match(end):
        raise ValidationError("timeSlot times must use HH:MM format")
    if start >= end:
        raise ValidationError("timeSlot start must be before end")
    return {'start': start, 'end': end}


def validate_date(value: Any, field: str = 'preferredDate') -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be an ISO-8601 date")
    try:
        parse_iso(value)
    except ValueError:
        raise ValidationError(f"{field} must be an ISO-8601 date")
    return value


def validate_schedule(schedule: Any) -> Dict[str, Any]:
    schedule = schedule or {}
    if not isinstance(schedule, dict):
        raise ValidationError("schedule must be an object")

    priority = schedule.get('priority') or TaskPriority.MEDIUM
    if priority not in TaskPriority.ALL:
        raise ValidationError(f"Invalid priority: {priority}")

    return {
        'priority': priority,
        'preferredDate': validate_date(schedule.get('preferredDate')),
        'flexibleDates': bool(schedule.get('flexibleDates', False)),
        'timeSlot': validate_time_slot(schedule.get('timeSlot')),
    }


def validate_budget(budget: Any) -> Optional[Dict[str, Any]]:
    if budget is None:
        return None
    if not isinstance(budget, dict):
        raise ValidationError("budget must be an object")

    low = budget.get('min')
    high = budget.get('max')
    for name, value in (('min', low), ('max', high)):
        if value is not None and (not isinstance(value, (int, float)) or isinstance(value, bool) or value < 0):
            raise ValidationError(f"budget {name} must be a non-negative number")
    if low is not None and high is not None and low > high:
        raise ValidationError("budget min cannot exceed max")

    cleaned = {'min': low, 'max': high}
    if budget.get('currency'):
        cleaned['currency'] = str(budget['currency']).upper()
    return cleaned


def validate_requirements(requirements: Any) -> Dict[str, bool]:
    requirements = requirements or {}
    if not isinstance(requirements, dict):
        raise ValidationError("requirements must be an object")
    return {
        'companyTrained': bool(requirements.get('companyTrained', False)),
        'idVerified': bool(requirements.get('idVerified', False)),
        'alwaysAvailable': bool(requirements.get('alwaysAvailable', False)),
    }


def validate_travel_distance(value: Any) -> Optional[float]:
    if value is None:
        return None
    if not isinstance(value, (int, float)) or isinstance(value, bool) or value <= 0:
        raise ValidationError("maxTravelDistanceKm must be a positive number")
    return value


def validate_task_input(data: Any) -> Dict[str, Any]:
    """
    Validate and normalize the body of a createTask call.

    Returns:
        dict of the descriptive task fields, ready to be placed on a new Task
    """
    if not isinstance(data, dict):
        raise ValidationError("Task input must be an object")

    return {
        'title': _required_text(data, 'title', MAX_TITLE_LENGTH),
        'description': _required_text(data, 'description', MAX_DESCRIPTION_LENGTH),
        'tags': normalize_tags(data.get('tags')),
        'category': data.get('category') or None,
        'location': validate_location(data.get('location')),
        'schedule': validate_schedule(data.get('schedule')),
        'budget': validate_budget(data.get('budget')),
        'isRemote': bool(data.get('isRemote', False)),
        'maxTravelDistanceKm': validate_travel_distance(data.get('maxTravelDistanceKm')),
        'requirements': validate_requirements(data.get('requirements')),
    }


def validate_task_changes(changes: Any) -> Dict[str, Any]:
    """Validate a partial update; only UPDATABLE_FIELDS are accepted."""
    if not isinstance(changes, dict) or not changes:
        raise ValidationError("No changes provided")

    unknown = sorted(set(changes) - set(UPDATABLE_FIELDS))
    if unknown:
        raise ValidationError(f"Fields cannot be updated: {', '.join(unknown)}")

    validators = {
        'title': lambda v: _required_text({'title': v}, 'title', MAX_TITLE_LENGTH),
        'description': lambda v: _required_text({'description': v}, 'description', MAX_DESCRIPTION_LENGTH),
        'tags': normalize_tags,
        'category': lambda v: v or None,
        'location': validate_location,
        'schedule': validate_schedule,
        'budget': validate_budget,
        'isRemote': bool,
        'maxTravelDistanceKm': validate_travel_distance,
        'requirements': validate_requirements,
    }
    return {field: validators[field](value) for field, value in changes.items()}
