"""
Common utility functions shared by the marketplace modules.
"""
import copy
import json
import re
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional


class DecimalEncoder(json.JSONEncoder):
    """JSON encoder that handles Decimal types from DynamoDB."""

    def default(self, o):
        if isinstance(o, Decimal):
            # Convert to int if it's a whole number, otherwise float
            if o % 1 == 0:
                return int(o)
            return float(o)
        return super().default(o)


def to_dynamo(item: Any) -> Any:
    """Convert floats to Decimal so the item can be written by boto3."""
    return json.loads(json.dumps(item, cls=DecimalEncoder), parse_float=Decimal)


def from_dynamo(item: Any) -> Any:
    """Convert Decimal values read from DynamoDB back to int/float."""
    if item is None:
        return None
    return json.loads(json.dumps(item, cls=DecimalEncoder))


def clone(item: dict) -> dict:
    """Deep copy an entity so transitions never mutate their input."""
    return copy.deepcopy(item)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat()


def parse_iso(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp, treating naive values as UTC."""
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def normalize_text(text: str) -> str:
    """
    Normalize text for comparison.
    Removes punctuation, extra whitespace, and converts to lowercase.

    Args:
        text: Raw text input

    Returns:
        Normalized text string
    """
    if not text:
        return ''
    text = str(text).lower().strip()
    text = re.sub(r'[^\w\s]', '', text)  # Remove punctuation
    text = re.sub(r'\s+', ' ', text)     # Normalize whitespace
    return text


def same_place(a: Optional[str], b: Optional[str]) -> bool:
    """Case-insensitive equality for place names. Missing names never match."""
    if not a or not b:
        return False
    return a.strip().casefold() == b.strip().casefold()
