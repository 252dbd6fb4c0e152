"""
Tests for the scheduled task expiry handler.
"""
from unittest.mock import MagicMock, patch

from marketplace.models import TaskStatus


class TestExpireTasksHandler:
    """Tests for handlers.tasks.expire_tasks."""

    @patch('handlers.tasks.expire_tasks.get_services')
    def test_returns_summary(self, mock_get_services):
        """The handler reports what the sweep did."""
        from handlers.tasks.expire_tasks import handler

        tasks = MagicMock()
        tasks.expire_due_tasks.return_value = {'checked': 4, 'expired': 2, 'skipped': 1}
        mock_get_services.return_value = {'tasks': tasks}

        result = handler({'source': 'aws.events'}, None)

        assert result == {'checked': 4, 'expired': 2, 'skipped': 1}
        tasks.expire_due_tasks.assert_called_once_with()

    @patch('handlers.tasks.expire_tasks.get_services')
    def test_expires_stale_tasks(self, mock_get_services, market):
        """End to end over the in-memory repositories."""
        from handlers.tasks.expire_tasks import handler

        mock_get_services.return_value = {'tasks': market.tasks, 'bookings': market.bookings}
        task = market.create()['task']
        market.clock.advance(days=30, seconds=1)

        result = handler({}, None)

        assert result['expired'] == 1
        assert market.tasks_repo.items[task['taskId']]['status'] == TaskStatus.EXPIRED
