import pytest

from errors import NotFound, PreconditionFailed, TaskLocked
from lifecycle import (DonationEvent, advance_donation, check_task_transition,
                       is_task_locked, next_donation_status)
from models import DonationStatus, Task, TaskStatus
from donations import get_donation


@pytest.mark.parametrize('current, event, expected', [
    (DonationStatus.PENDING_ASSIGNMENT, DonationEvent.COLLECTION_ASSIGNED,
     DonationStatus.ASSIGNED_FOR_COLLECTION),
    (DonationStatus.ASSIGNED_FOR_COLLECTION, DonationEvent.COLLECTION_COMPLETED,
     DonationStatus.COLLECTED),
    (DonationStatus.COLLECTED, DonationEvent.DISTRIBUTION_ASSIGNED,
     DonationStatus.ASSIGNED_FOR_DISTRIBUTION),
    (DonationStatus.ASSIGNED_FOR_DISTRIBUTION, DonationEvent.DISTRIBUTION_COMPLETED,
     DonationStatus.DELIVERED),
])
def test_donation_moves_forward(current, event, expected):
    assert next_donation_status(current, event) == expected


@pytest.mark.parametrize('current, event', [
    (DonationStatus.PENDING_ASSIGNMENT, DonationEvent.COLLECTION_COMPLETED),
    (DonationStatus.PENDING_ASSIGNMENT, DonationEvent.DISTRIBUTION_ASSIGNED),
    (DonationStatus.COLLECTED, DonationEvent.COLLECTION_ASSIGNED),
    (DonationStatus.DELIVERED, DonationEvent.COLLECTION_ASSIGNED),
    (DonationStatus.DELIVERED, DonationEvent.DISTRIBUTION_COMPLETED),
])
def test_donation_rejects_moves_outside_table(current, event):
    with pytest.raises(PreconditionFailed):
        next_donation_status(current, event)


def _task(status, issue_reported=False):
    return Task(status=status, issue_reported=issue_reported)


@pytest.mark.parametrize('current, new', [
    (TaskStatus.ASSIGNED, TaskStatus.EN_ROUTE),
    (TaskStatus.ASSIGNED, TaskStatus.COMPLETED),
    (TaskStatus.PENDING, TaskStatus.CANCELLED),
    (TaskStatus.EN_ROUTE, TaskStatus.COMPLETED),
    (TaskStatus.EN_ROUTE, TaskStatus.FAILED),
])
def test_task_allowed_moves(current, new):
    check_task_transition(_task(current), new)


@pytest.mark.parametrize('current, new', [
    (TaskStatus.EN_ROUTE, TaskStatus.EN_ROUTE),
    (TaskStatus.COMPLETED, TaskStatus.EN_ROUTE),
    (TaskStatus.CANCELLED, TaskStatus.COMPLETED),
    (TaskStatus.FAILED, TaskStatus.EN_ROUTE),
])
def test_task_rejected_moves(current, new):
    with pytest.raises(PreconditionFailed):
        check_task_transition(_task(current), new)


def test_task_under_review_is_locked():
    with pytest.raises(TaskLocked):
        check_task_transition(_task(TaskStatus.PENDING_REVIEW), TaskStatus.EN_ROUTE)
    # The flag alone locks it too
    flagged = _task(TaskStatus.ASSIGNED, issue_reported=True)
    assert is_task_locked(flagged)
    with pytest.raises(TaskLocked):
        check_task_transition(flagged, TaskStatus.COMPLETED)


def test_advance_donation_is_conditional(post):
    donation_id = post()

    assert advance_donation(donation_id, DonationEvent.COLLECTION_ASSIGNED) == \
        DonationStatus.ASSIGNED_FOR_COLLECTION
    assert get_donation(donation_id).status == DonationStatus.ASSIGNED_FOR_COLLECTION

    # Same event again matches no row
    with pytest.raises(PreconditionFailed):
        advance_donation(donation_id, DonationEvent.COLLECTION_ASSIGNED)
    assert get_donation(donation_id).status == DonationStatus.ASSIGNED_FOR_COLLECTION


def test_advance_donation_unknown_id(app):
    with pytest.raises(NotFound):
        advance_donation('missing', DonationEvent.COLLECTION_ASSIGNED)
