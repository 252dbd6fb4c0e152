"""
DynamoDB utility functions: reads, conditional writes and transactions.
"""
import boto3
from typing import List, Dict, Any, Optional
from boto3.dynamodb.types import TypeSerializer
from botocore.exceptions import ClientError
from .config import config
from .errors import StateConflictError
from .logging import logger
from .utils import to_dynamo, from_dynamo

# Initialize the resource lazily so importing never touches AWS
_dynamodb = None
_serializer = TypeSerializer()


def get_dynamodb():
    """Get or create the DynamoDB resource."""
    global _dynamodb
    if _dynamodb is None:
        _dynamodb = boto3.resource('dynamodb', region_name=config.AWS_REGION)
    return _dynamodb


def get_table(table_name: str):
    return get_dynamodb().Table(table_name)


def is_conditional_failure(error: ClientError) -> bool:
    """True for a failed ConditionExpression, single-item or transactional."""
    code = error.response.get('Error', {}).get('Code')
    if code == 'ConditionalCheckFailedException':
        return True
    if code == 'TransactionCanceledException':
        reasons = error.response.get('CancellationReasons') or []
        # Without reasons we cannot tell, treat as a lost race
        if not reasons:
            return True
        return any(r.get('Code') == 'ConditionalCheckFailed' for r in reasons)
    return False


def get_item(table_name: str, key: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Get a single item from DynamoDB."""
    response = get_table(table_name).get_item(Key=key, ConsistentRead=True)
    return from_dynamo(response.get('Item'))


def query(
    table_name: str,
    index_name: Optional[str] = None,
    key_condition: Optional[Any] = None,
    filter_expression: Optional[Any] = None,
    scan_forward: bool = True
) -> List[Dict[str, Any]]:
    """
    Query a DynamoDB table or index, following pagination.

    Args:
        table_name: Name of the DynamoDB table
        index_name: Optional GSI name
        key_condition: Key condition expression
        filter_expression: Optional filter expression
        scan_forward: True for ascending, False for descending

    Returns:
        List of items matching the query
    """
    table = get_table(table_name)

    query_params = {
        'ScanIndexForward': scan_forward
    }

    if index_name:
        query_params['IndexName'] = index_name
    if key_condition is not None:
        query_params['KeyConditionExpression'] = key_condition
    if filter_expression is not None:
        query_params['FilterExpression'] = filter_expression

    items = []
    while True:
        response = table.query(**query_params)
        items.extend(response.get('Items', []))
        last_key = response.get('LastEvaluatedKey')
        if not last_key:
            break
        query_params['ExclusiveStartKey'] = last_key

    return from_dynamo(items)


def scan(table_name: str, filter_expression: Optional[Any] = None) -> List[Dict[str, Any]]:
    """Scan a table, following pagination."""
    table = get_table(table_name)
    params = {}
    if filter_expression is not None:
        params['FilterExpression'] = filter_expression

    items = []
    while True:
        response = table.scan(**params)
        items.extend(response.get('Items', []))
        last_key = response.get('LastEvaluatedKey')
        if not last_key:
            break
        params['ExclusiveStartKey'] = last_key

    return from_dynamo(items)


def batch_get(table_name: str, key_name: str, ids: List[str]) -> List[Dict[str, Any]]:
    """Fetch many items by primary key (max 100 keys per request)."""
    items = []
    resource = get_dynamodb()
    unique_ids = sorted(set(ids))
    for i in range(0, len(unique_ids), 100):
        request = {table_name: {'Keys': [{key_name: item_id} for item_id in unique_ids[i:i + 100]]}}
        while request:
            response = resource.batch_get_item(RequestItems=request)
            items.extend(response.get('Responses', {}).get(table_name, []))
            request = response.get('UnprocessedKeys') or None
    return from_dynamo(items)


def put_new(table_name: str, item: Dict[str, Any], key_name: str) -> None:
    """Insert an item that must not already exist."""
    try:
        get_table(table_name).put_item(
            Item=to_dynamo(item),
            ConditionExpression=f'attribute_not_exists({key_name})'
        )
    except ClientError as e:
        if is_conditional_failure(e):
            raise StateConflictError(f"{key_name} {item.get(key_name)} already exists")
        raise


def versioned_condition(expected_status: str, expected_version: int) -> Dict[str, Any]:
    """Optimistic concurrency guard on the stored status and version."""
    return {
        'ConditionExpression': '#status = :expected_status AND #version = :expected_version',
        'ExpressionAttributeNames': {'#status': 'status', '#version': 'version'},
        'ExpressionAttributeValues': {
            ':expected_status': expected_status,
            ':expected_version': expected_version,
        },
    }


def put_versioned(
    table_name: str,
    item: Dict[str, Any],
    expected_status: str,
    expected_version: int
) -> Dict[str, Any]:
    """
    Replace an item only if it is still in the expected status and version.

    Returns the stored item (version incremented). A lost race raises
    StateConflictError; any other ClientError propagates.
    """
    stored = dict(item)
    stored['version'] = expected_version + 1
    try:
        get_table(table_name).put_item(
            Item=to_dynamo(stored),
            **versioned_condition(expected_status, expected_version)
        )
    except ClientError as e:
        if is_conditional_failure(e):
            raise StateConflictError(
                f"Record changed concurrently (expected {expected_status} v{expected_version})"
            )
        raise
    return stored


def serialize(item: Dict[str, Any]) -> Dict[str, Any]:
    """Encode an item into the low-level attribute-value format."""
    return {k: _serializer.serialize(v) for k, v in to_dynamo(item).items()}


def transact_write(transact_items: List[Dict[str, Any]], conflict_message: str) -> None:
    """
    Run a transactional write. All items commit or none do.

    Raises:
        StateConflictError: if any ConditionExpression failed
    """
    try:
        get_dynamodb().meta.client.transact_write_items(TransactItems=transact_items)
    except ClientError as e:
        if is_conditional_failure(e):
            logger.warning(f"Transaction cancelled: {e.response.get('CancellationReasons')}")
            raise StateConflictError(conflict_message)
        raise


def increment_counter(table_name: str, counter_id: str) -> int:
    """Atomically increment a counter item and return the new value."""
    response = get_table(table_name).update_item(
        Key={'counterId': counter_id},
        UpdateExpression='ADD seq :one',
        ExpressionAttributeValues={':one': 1},
        ReturnValues='UPDATED_NEW'
    )
    return int(response['Attributes']['seq'])
