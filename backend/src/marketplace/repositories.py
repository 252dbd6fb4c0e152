"""
Persistence ports and their DynamoDB implementations.

The domain services only depend on the base classes below. Tasks and Bookings
are independent aggregates linked by taskId / convertedToBookingId; the only
write that touches both is TaskRepository.convert_to_booking.
"""
from datetime import datetime
from typing import List, Dict, Any, Optional, Tuple
from boto3.dynamodb.conditions import Key, Attr
from .config import config
from .location import get_coordinates, in_area
from .logging import logger
from .models import TaskStatus
from . import dynamo


class TaskRepository:
    """Load/save port for Task items."""

    def get(self, task_id: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    def create(self, task: Dict[str, Any]) -> Dict[str, Any]:
        raise NotImplementedError

    def save(self, task: Dict[str, Any], expected_status: str, expected_version: int) -> Dict[str, Any]:
        """Conditional replace. Raises StateConflictError on a lost race."""
        raise NotImplementedError

    def convert_to_booking(
        self,
        task: Dict[str, Any],
        booking: Dict[str, Any],
        expected_version: int
    ) -> Tuple[Dict[str, Any], Dict[str, Any]]:
        """
        Atomically create the booking and store the CONVERTED task.

        Returns (stored task, stored booking). A lost race raises StateConflictError
        and neither item is written.
        """
        raise NotImplementedError

    def list_by_status(self, status: str) -> List[Dict[str, Any]]:
        raise NotImplementedError

    def list_by_customer(self, customer_id: str) -> List[Dict[str, Any]]:
        """Every non-deleted task a customer owns."""
        raise NotImplementedError


class BookingRepository:
    """Load/save port for Booking items."""

    def get(self, booking_id: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    def find_by_task(self, task_id: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    def list_by_client(self, client_id: str) -> List[Dict[str, Any]]:
        raise NotImplementedError

    def list_by_provider(self, provider_id: str) -> List[Dict[str, Any]]:
        raise NotImplementedError

    def save(self, booking: Dict[str, Any], expected_status: str, expected_version: int) -> Dict[str, Any]:
        raise NotImplementedError


class ProviderDirectory:
    """Read-only provider lookups."""

    def get(self, provider_id: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    def get_many(self, provider_ids: List[str]) -> List[Dict[str, Any]]:
        raise NotImplementedError

    def find_by_region(self, region: str) -> List[Dict[str, Any]]:
        raise NotImplementedError

    def find_in_area(self, location: Dict[str, Any], max_distance_km: float = None) -> List[Dict[str, Any]]:
        """Providers that can reach a location, see location.in_area."""
        raise NotImplementedError


class ServiceCatalog:
    """Read-only service catalog lookups."""

    def list_active(self) -> List[Dict[str, Any]]:
        raise NotImplementedError

    def for_provider(self, provider_id: str) -> List[Dict[str, Any]]:
        """Active services offered by one provider."""
        raise NotImplementedError


class BookingNumberAllocator:
    """Per-day sequence for human-readable booking numbers."""

    def __init__(self, prefix: str = None):
        self.prefix = prefix or config.BOOKING_NUMBER_PREFIX

    def day_prefix(self, now: datetime) -> str:
        return f"{self.prefix}-{now.strftime('%Y%m%d')}"

    def next_sequence(self, day_prefix: str) -> int:
        raise NotImplementedError

    def next_booking_number(self, now: datetime) -> str:
        """e.g. BK-20250101-0007"""
        day_prefix = self.day_prefix(now)
        sequence = self.next_sequence(day_prefix)
        return f"{day_prefix}-{sequence:04d}"


def is_active_service(service: Dict[str, Any]) -> bool:
    return bool(service.get('isActive')) and not service.get('deletedAt')


class DynamoTaskRepository(TaskRepository):

    def __init__(self, table_name: str = None, bookings_table_name: str = None):
        self.table_name = table_name or config.TASKS_TABLE
        self.bookings_table_name = bookings_table_name or config.BOOKINGS_TABLE

    def get(self, task_id: str) -> Optional[Dict[str, Any]]:
        return dynamo.get_item(self.table_name, {'taskId': task_id})

    def create(self, task: Dict[str, Any]) -> Dict[str, Any]:
        stored = dict(task)
        stored['version'] = 0
        dynamo.put_new(self.table_name, stored, 'taskId')
        logger.info(f"Created task {stored['taskId']}")
        return stored

    def save(self, task: Dict[str, Any], expected_status: str, expected_version: int) -> Dict[str, Any]:
        return dynamo.put_versioned(self.table_name, task, expected_status, expected_version)

    def convert_to_booking(
        self,
        task: Dict[str, Any],
        booking: Dict[str, Any],
        expected_version: int
    ) -> Tuple[Dict[str, Any], Dict[str, Any]]:
        # Transactional write to ensure atomicity:
        # 1. Booking must not exist yet.
        # 2. Task must still be REQUESTED at the version we read, and never converted.
        stored_task = dict(task)
        stored_task['version'] = expected_version + 1
        stored_booking = dict(booking)
        stored_booking['version'] = 0

        dynamo.transact_write(
            [
                {
                    'Put': {
                        'TableName': self.bookings_table_name,
                        'Item': dynamo.serialize(stored_booking),
                        'ConditionExpression': 'attribute_not_exists(bookingId)'
                    }
                },
                {
                    'Put': {
                        'TableName': self.table_name,
                        'Item': dynamo.serialize(stored_task),
                        'ConditionExpression': (
                            '#status = :requested AND #version = :expected_version '
                            'AND attribute_not_exists(convertedToBookingId)'
                        ),
                        'ExpressionAttributeNames': {'#status': 'status', '#version': 'version'},
                        'ExpressionAttributeValues': {
                            ':requested': {'S': TaskStatus.REQUESTED},
                            ':expected_version': {'N': str(expected_version)}
                        }
                    }
                }
            ],
            conflict_message="Task is no longer awaiting a response or was already converted"
        )
        return stored_task, stored_booking

    def list_by_status(self, status: str) -> List[Dict[str, Any]]:
        return dynamo.query(
            self.table_name,
            index_name='StatusIndex',
            key_condition=Key('status').eq(status),
            filter_expression=Attr('isDeleted').ne(True)
        )

    def list_by_customer(self, customer_id: str) -> List[Dict[str, Any]]:
        return dynamo.query(
            self.table_name,
            index_name='CustomerIndex',
            key_condition=Key('customerId').eq(customer_id),
            filter_expression=Attr('isDeleted').ne(True)
        )


class DynamoBookingRepository(BookingRepository):

    def __init__(self, table_name: str = None):
        self.table_name = table_name or config.BOOKINGS_TABLE

    def get(self, booking_id: str) -> Optional[Dict[str, Any]]:
        return dynamo.get_item(self.table_name, {'bookingId': booking_id})

    def find_by_task(self, task_id: str) -> Optional[Dict[str, Any]]:
        items = dynamo.query(
            self.table_name,
            index_name='TaskIndex',
            key_condition=Key('taskId').eq(task_id)
        )
        return items[0] if items else None

    def list_by_client(self, client_id: str) -> List[Dict[str, Any]]:
        return dynamo.query(
            self.table_name,
            index_name='ClientIndex',
            key_condition=Key('clientId').eq(client_id)
        )

    def list_by_provider(self, provider_id: str) -> List[Dict[str, Any]]:
        return dynamo.query(
            self.table_name,
            index_name='ProviderIndex',
            key_condition=Key('providerId').eq(provider_id)
        )

    def save(self, booking: Dict[str, Any], expected_status: str, expected_version: int) -> Dict[str, Any]:
        return dynamo.put_versioned(self.table_name, booking, expected_status, expected_version)


class DynamoProviderDirectory(ProviderDirectory):

    def __init__(self, table_name: str = None):
        self.table_name = table_name or config.PROVIDERS_TABLE

    def get(self, provider_id: str) -> Optional[Dict[str, Any]]:
        provider = dynamo.get_item(self.table_name, {'providerId': provider_id})
        if provider and provider.get('isDeleted'):
            return None
        return provider

    def get_many(self, provider_ids: List[str]) -> List[Dict[str, Any]]:
        if not provider_ids:
            return []
        providers = dynamo.batch_get(self.table_name, 'providerId', provider_ids)
        return [p for p in providers if not p.get('isDeleted')]

    def find_by_region(self, region: str) -> List[Dict[str, Any]]:
        if not region:
            return []
        return dynamo.query(
            self.table_name,
            index_name='RegionIndex',
            key_condition=Key('region').eq(region),
            filter_expression=Attr('isDeleted').ne(True)
        )

    def find_in_area(self, location: Dict[str, Any], max_distance_km: float = None) -> List[Dict[str, Any]]:
        location = location or {}
        conditions = [
            Attr(f'location.{field}').eq(location[field])
            for field in ('locality', 'city', 'region') if location.get(field)
        ]
        # Distance is computed client side, so any provider with coordinates is a candidate
        if get_coordinates(location) is not None:
            conditions.append(Attr('location.gpsCoordinates').exists())
        if not conditions:
            return []
        area = conditions[0]
        for condition in conditions[1:]:
            area = area | condition
        providers = dynamo.scan(self.table_name, filter_expression=area & Attr('isDeleted').ne(True))
        return [p for p in providers if in_area(location, p.get('location'), max_distance_km)]


class DynamoServiceCatalog(ServiceCatalog):

    def __init__(self, table_name: str = None):
        self.table_name = table_name or config.SERVICES_TABLE

    def list_active(self) -> List[Dict[str, Any]]:
        services = dynamo.scan(self.table_name, filter_expression=Attr('isActive').eq(True))
        return [s for s in services if is_active_service(s)]

    def for_provider(self, provider_id: str) -> List[Dict[str, Any]]:
        services = dynamo.scan(
            self.table_name,
            filter_expression=Attr('isActive').eq(True) & Attr('providerIds').contains(provider_id)
        )
        return sorted((s for s in services if is_active_service(s)), key=lambda s: s['serviceId'])


class DynamoBookingNumberAllocator(BookingNumberAllocator):

    def __init__(self, table_name: str = None, prefix: str = None):
        super().__init__(prefix)
        self.table_name = table_name or config.COUNTERS_TABLE

    def next_sequence(self, day_prefix: str) -> int:
        return dynamo.increment_counter(self.table_name, day_prefix)
