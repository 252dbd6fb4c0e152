"""
Tests for the task state machine.
"""
import copy
from datetime import timedelta

import pytest

from marketplace import task_state
from marketplace.errors import StateConflictError, AuthorizationError, ValidationError
from marketplace.models import TaskStatus, TaskEvent, UserRole
from fakes import FIXED_NOW, make_location

NOW = FIXED_NOW

MATCH = {
    'providerId': 'provider-1',
    'totalScore': 85,
    'matchedServiceIds': ['service-1'],
    'reasons': ['Located in Osu'],
    'distance': None,
}


def make_task(status=TaskStatus.PENDING, **overrides):
    task = task_state.new_task('task-1', 'customer-1', {
        'title': 'Fix pipe',
        'description': 'Leaking pipe',
        'tags': ['plumbing'],
        'category': 'cat-plumbing',
        'location': make_location(),
    }, NOW - timedelta(days=40))
    task['version'] = 3
    task['status'] = status
    task['matchedProviders'] = [task_state.to_matched_provider(MATCH)]
    if status in (TaskStatus.REQUESTED, TaskStatus.ACCEPTED):
        task['requestedProvider'] = {'providerId': 'provider-1', 'requestedAt': None, 'message': None}
    if status == TaskStatus.ACCEPTED:
        task['acceptedProvider'] = {'providerId': 'provider-1', 'acceptedAt': None, 'message': None}
    task.update(overrides)
    return task


# event -> (call with valid actors, resulting status)
EVENT_CALLS = {
    TaskEvent.MATCH_FOUND: (
        lambda t: task_state.apply_matching_result(t, {'matches': [MATCH], 'criteria': {}}, NOW),
        TaskStatus.MATCHED),
    TaskEvent.MATCH_EMPTY: (
        lambda t: task_state.apply_matching_result(t, {'matches': [], 'criteria': {}}, NOW),
        TaskStatus.FLOATING),
    TaskEvent.EXPRESS_INTEREST: (
        lambda t: task_state.express_interest(t, 'provider-2', None, NOW),
        TaskStatus.FLOATING),
    TaskEvent.REQUEST_PROVIDER: (
        lambda t: task_state.request_provider(t, 'customer-1', 'provider-1', None, NOW),
        TaskStatus.REQUESTED),
    TaskEvent.ACCEPT: (
        lambda t: task_state.accept_request(t, 'provider-1', None, NOW),
        TaskStatus.ACCEPTED),
    TaskEvent.CONVERT: (
        lambda t: task_state.mark_converted(t, 'booking-1', NOW),
        TaskStatus.CONVERTED),
    TaskEvent.REJECT: (
        lambda t: task_state.reject_request(t, 'provider-1', 'busy', NOW),
        TaskStatus.MATCHED),
    TaskEvent.CANCEL: (
        lambda t: task_state.cancel(t, 'customer-1', UserRole.CUSTOMER, 'changed my mind', NOW),
        TaskStatus.CANCELLED),
    TaskEvent.EXPIRE: (
        lambda t: task_state.expire(t, NOW),
        TaskStatus.EXPIRED),
}

ALLOWED = {
    (TaskStatus.PENDING, TaskEvent.MATCH_FOUND), (TaskStatus.MATCHED, TaskEvent.MATCH_FOUND),
    (TaskStatus.FLOATING, TaskEvent.MATCH_FOUND),
    (TaskStatus.PENDING, TaskEvent.MATCH_EMPTY), (TaskStatus.MATCHED, TaskEvent.MATCH_EMPTY),
    (TaskStatus.FLOATING, TaskEvent.MATCH_EMPTY),
    (TaskStatus.FLOATING, TaskEvent.EXPRESS_INTEREST),
    (TaskStatus.MATCHED, TaskEvent.REQUEST_PROVIDER), (TaskStatus.FLOATING, TaskEvent.REQUEST_PROVIDER),
    (TaskStatus.REQUESTED, TaskEvent.ACCEPT),
    (TaskStatus.ACCEPTED, TaskEvent.CONVERT),
    (TaskStatus.REQUESTED, TaskEvent.REJECT),
    (TaskStatus.PENDING, TaskEvent.CANCEL), (TaskStatus.MATCHED, TaskEvent.CANCEL),
    (TaskStatus.FLOATING, TaskEvent.CANCEL), (TaskStatus.REQUESTED, TaskEvent.CANCEL),
    (TaskStatus.ACCEPTED, TaskEvent.CANCEL),
    (TaskStatus.PENDING, TaskEvent.EXPIRE), (TaskStatus.MATCHED, TaskEvent.EXPIRE),
    (TaskStatus.FLOATING, TaskEvent.EXPIRE), (TaskStatus.REQUESTED, TaskEvent.EXPIRE),
    (TaskStatus.ACCEPTED, TaskEvent.EXPIRE),
}


class TestTransitionTable:
    """Every (status, event) pair: only the listed transitions succeed."""

    @pytest.mark.parametrize('status', TaskStatus.ALL)
    @pytest.mark.parametrize('event', TaskEvent.ALL)
    def test_pair(self, status, event):
        """Listed pairs move to the expected status; all others raise a state conflict."""
        call, expected_status = EVENT_CALLS[event]
        task = make_task(status)

        assert task_state.can_transition(status, event) == ((status, event) in ALLOWED)

        if (status, event) in ALLOWED:
            assert call(task)['status'] == expected_status
        else:
            with pytest.raises(StateConflictError):
                call(task)

    def test_transitions_do_not_mutate_input(self):
        task = make_task(TaskStatus.MATCHED)
        before = copy.deepcopy(task)
        task_state.request_provider(task, 'customer-1', 'provider-1', 'hi', NOW)
        assert task == before


class TestMatchingResult:
    """Tests for recording a matching run."""

    def test_records_matches_and_criteria(self):
        result = {'matches': [MATCH], 'criteria': {'strategy': 'intelligent', 'useLocationOnly': False}}
        task = task_state.apply_matching_result(make_task(matchedProviders=[]), result, NOW)
        assert task['matchedProviders'][0]['score'] == 85
        assert task['matchingCriteria']['strategy'] == 'intelligent'
        assert task['matchingAttemptedAt'] == NOW.isoformat()

    def test_empty_result_clears_matches(self):
        task = task_state.apply_matching_result(make_task(TaskStatus.MATCHED), {'matches': []}, NOW)
        assert task['status'] == TaskStatus.FLOATING
        assert task['matchedProviders'] == []


class TestInterest:
    """Tests for floating-task interest."""

    def test_duplicate_interest_is_noop(self):
        """Expressing interest twice leaves one entry."""
        task = make_task(TaskStatus.FLOATING, matchedProviders=[])
        once = task_state.express_interest(task, 'provider-2', 'Happy to help', NOW)
        twice = task_state.express_interest(once, 'provider-2', 'Again', NOW)
        assert task_state.interested_provider_ids(twice) == ['provider-2']
        assert twice['interestedProviders'][0]['message'] == 'Happy to help'

    def test_withdraw(self):
        task = make_task(TaskStatus.FLOATING, matchedProviders=[])
        task = task_state.express_interest(task, 'provider-2', None, NOW)
        task = task_state.withdraw_interest(task, 'provider-2', NOW)
        assert task['interestedProviders'] == []
        assert task_state.withdraw_interest(task, 'provider-2', NOW)['interestedProviders'] == []

    def test_interested_provider_can_be_requested(self):
        task = make_task(TaskStatus.FLOATING, matchedProviders=[])
        task = task_state.express_interest(task, 'provider-2', None, NOW)
        task = task_state.request_provider(task, 'customer-1', 'provider-2', None, NOW)
        assert task['requestedProvider']['providerId'] == 'provider-2'


class TestRequestAndResponse:
    """Tests for requesting, accepting and rejecting providers."""

    def test_request_requires_owner(self):
        with pytest.raises(AuthorizationError):
            task_state.request_provider(make_task(TaskStatus.MATCHED), 'customer-2', 'provider-1', None, NOW)

    def test_request_requires_known_provider(self):
        with pytest.raises(ValidationError):
            task_state.request_provider(make_task(TaskStatus.MATCHED), 'customer-1', 'provider-9', None, NOW)

    def test_only_requested_provider_can_accept(self):
        with pytest.raises(AuthorizationError):
            task_state.accept_request(make_task(TaskStatus.REQUESTED), 'provider-2', None, NOW)

    def test_only_requested_provider_can_reject(self):
        with pytest.raises(AuthorizationError):
            task_state.reject_request(make_task(TaskStatus.REQUESTED), 'provider-2', 'busy', NOW)

    def test_reject_back_to_matched(self):
        task = task_state.reject_request(make_task(TaskStatus.REQUESTED), 'provider-1', 'unavailable', NOW)
        assert task['status'] == TaskStatus.MATCHED
        assert task['requestedProvider'] is None
        assert task['cancellationReason'] == 'unavailable'
        assert task['lastRejection']['providerId'] == 'provider-1'

    def test_reject_back_to_floating(self):
        task = make_task(
            TaskStatus.REQUESTED, matchedProviders=[],
            interestedProviders=[{'providerId': 'provider-1', 'expressedAt': None, 'message': None}]
        )
        assert task_state.reject_request(task, 'provider-1', None, NOW)['status'] == TaskStatus.FLOATING

    def test_reject_back_to_pending(self):
        task = make_task(TaskStatus.REQUESTED, matchedProviders=[], interestedProviders=[])
        assert task_state.reject_request(task, 'provider-1', None, NOW)['status'] == TaskStatus.PENDING

    def test_converted_link_is_write_once(self):
        task = make_task(TaskStatus.ACCEPTED, convertedToBookingId='booking-0')
        with pytest.raises(StateConflictError):
            task_state.mark_converted(task, 'booking-1', NOW)


class TestCancellation:
    """Tests for who may cancel."""

    def test_requested_provider_can_cancel(self):
        task = task_state.cancel(make_task(TaskStatus.REQUESTED), 'provider-1', UserRole.PROVIDER, None, NOW)
        assert task['cancelledBy'] == {'actorId': 'provider-1', 'actorRole': UserRole.PROVIDER}

    def test_other_provider_cannot_cancel(self):
        with pytest.raises(AuthorizationError):
            task_state.cancel(make_task(TaskStatus.REQUESTED), 'provider-2', UserRole.PROVIDER, None, NOW)

    def test_other_customer_cannot_cancel(self):
        with pytest.raises(AuthorizationError):
            task_state.cancel(make_task(TaskStatus.MATCHED), 'customer-2', UserRole.CUSTOMER, None, NOW)

    def test_terminal_status_checked_before_actor(self):
        """A cancelled task reports a state conflict even to a stranger."""
        with pytest.raises(StateConflictError):
            task_state.cancel(make_task(TaskStatus.CANCELLED), 'someone', UserRole.CUSTOMER, None, NOW)


class TestExpiry:
    """Tests for expiry."""

    def test_default_expiry_is_thirty_days(self):
        task = task_state.new_task('task-1', 'customer-1', {}, NOW)
        assert task['expiresAt'] == (NOW + timedelta(days=30)).isoformat()

    def test_cannot_expire_early(self):
        task = make_task(expiresAt=(NOW + timedelta(days=1)).isoformat())
        with pytest.raises(StateConflictError):
            task_state.expire(task, NOW)


class TestDiscoveryEdits:
    """Tests for update and soft delete."""

    def test_title_change_needs_rematch(self):
        task, needs_rematch = task_state.update_details(
            make_task(TaskStatus.MATCHED), 'customer-1', {'title': 'Replace pipe'}, NOW
        )
        assert needs_rematch is True
        assert task['title'] == 'Replace pipe'

    def test_budget_change_does_not_rematch(self):
        _, needs_rematch = task_state.update_details(
            make_task(TaskStatus.MATCHED), 'customer-1', {'budget': {'min': 10, 'max': 20}}, NOW
        )
        assert needs_rematch is False

    def test_update_after_request_conflicts(self):
        with pytest.raises(StateConflictError):
            task_state.update_details(make_task(TaskStatus.REQUESTED), 'customer-1', {'title': 'x'}, NOW)

    def test_soft_delete(self):
        task = task_state.soft_delete(make_task(TaskStatus.FLOATING), 'customer-1', NOW)
        assert task['isDeleted'] is True
        assert task['deletedBy'] == 'customer-1'

    def test_soft_delete_requires_owner(self):
        with pytest.raises(AuthorizationError):
            task_state.soft_delete(make_task(TaskStatus.PENDING), 'customer-2', NOW)
