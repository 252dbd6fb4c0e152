"""
Expire Tasks Handler.
Triggered by EventBridge on a schedule to retire tasks past their expiresAt.
"""
from marketplace.logging import logger, log_event
from marketplace.wiring import get_services


def handler(event, context):
    """
    Scheduled handler to expire stale discovery-phase tasks.
    Should be triggered every 15-60 minutes by EventBridge.

    For every non-terminal task whose expiresAt has passed:
    1. Task status -> 'EXPIRED' (conditional on the status/version read)
    2. A task.expired notification is published
    A task that changes during the sweep is skipped and retried on the next run.
    """
    log_event(event or {})
    logger.info("Running task expiration check...")

    summary = get_services()['tasks'].expire_due_tasks()

    return {
        'checked': summary['checked'],
        'expired': summary['expired'],
        'skipped': summary['skipped']
    }
