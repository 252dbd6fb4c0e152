"""
SQS utility functions for message operations.
"""
import boto3
import json
from typing import Dict, Any
from .config import config
from .logging import logger

# Initialize the client lazily so importing never touches AWS
_sqs_client = None


def get_sqs_client():
    """Get or create the SQS client."""
    global _sqs_client
    if _sqs_client is None:
        _sqs_client = boto3.client('sqs', region_name=config.AWS_REGION)
    return _sqs_client


def send_message(queue_url: str, message_body: Dict[str, Any]) -> bool:
    """
    Send a single message to SQS queue.

    Args:
        queue_url: SQS queue URL
        message_body: Message body as dict (will be JSON serialized)

    Returns:
        True if sent successfully, False otherwise
    """
    try:
        get_sqs_client().send_message(
            QueueUrl=queue_url,
            MessageBody=json.dumps(message_body, default=str)
        )
        logger.info(f"Message sent to {queue_url}")
        return True
    except Exception as e:
        logger.error(f"Error sending message to SQS: {e}")
        return False
