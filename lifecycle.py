"""Donation and task state machines.

Both tables below are the only place the allowed status moves are written
down.  Donation moves are applied with a conditional UPDATE that matches the
donation id *and* the expected current status, so two admins racing on the
same donation cannot both win: the loser matches zero rows.
"""
import enum
import logging

from sqlalchemy import update

from errors import NotFound, PreconditionFailed, TaskLocked
from models import db, Donation, DonationStatus, TaskStatus, TaskType

logger = logging.getLogger(__name__)


class DonationEvent(str, enum.Enum):
    COLLECTION_ASSIGNED = 'collectionAssigned'
    COLLECTION_COMPLETED = 'collectionCompleted'
    DISTRIBUTION_ASSIGNED = 'distributionAssigned'
    DISTRIBUTION_COMPLETED = 'distributionCompleted'


# event -> (required current status, resulting status)
DONATION_TRANSITIONS = {
    DonationEvent.COLLECTION_ASSIGNED: (
        DonationStatus.PENDING_ASSIGNMENT, DonationStatus.ASSIGNED_FOR_COLLECTION),
    DonationEvent.COLLECTION_COMPLETED: (
        DonationStatus.ASSIGNED_FOR_COLLECTION, DonationStatus.COLLECTED),
    DonationEvent.DISTRIBUTION_ASSIGNED: (
        DonationStatus.COLLECTED, DonationStatus.ASSIGNED_FOR_DISTRIBUTION),
    DonationEvent.DISTRIBUTION_COMPLETED: (
        DonationStatus.ASSIGNED_FOR_DISTRIBUTION, DonationStatus.DELIVERED),
}

COMPLETION_EVENTS = {
    TaskType.COLLECTION: DonationEvent.COLLECTION_COMPLETED,
    TaskType.DISTRIBUTION: DonationEvent.DISTRIBUTION_COMPLETED,
}

TERMINAL_TASK_STATUSES = frozenset({
    TaskStatus.COMPLETED,
    TaskStatus.CANCELLED,
    TaskStatus.FAILED,
})

# Statuses a volunteer may request through a status update
VOLUNTEER_STATUSES = frozenset({
    TaskStatus.EN_ROUTE,
    TaskStatus.COMPLETED,
    TaskStatus.CANCELLED,
    TaskStatus.FAILED,
})

_OPEN_MOVES = frozenset({
    TaskStatus.EN_ROUTE,
    TaskStatus.COMPLETED,
    TaskStatus.CANCELLED,
    TaskStatus.FAILED,
})

TASK_TRANSITIONS = {
    TaskStatus.PENDING: _OPEN_MOVES,
    TaskStatus.ASSIGNED: _OPEN_MOVES,
    TaskStatus.EN_ROUTE: _OPEN_MOVES - {TaskStatus.EN_ROUTE},
    TaskStatus.COMPLETED: frozenset(),
    TaskStatus.CANCELLED: frozenset(),
    TaskStatus.FAILED: frozenset(),
    TaskStatus.PENDING_REVIEW: frozenset(),
}


def next_donation_status(current, event):
    """Return the status *event* moves a donation in *current* to."""
    expected, target = DONATION_TRANSITIONS[event]
    if current != expected:
        raise PreconditionFailed(
            f"Donation must be {expected.value} for {event.value}, "
            f"but it is {DonationStatus(current).value}.")
    return target


def is_task_locked(task):
    return task.issue_reported or task.status == TaskStatus.PENDING_REVIEW


def check_task_transition(task, new_status):
    """Reject a volunteer status move the task table does not allow."""
    if is_task_locked(task):
        raise TaskLocked(
            'Task is under Admin review (issue reported) and cannot have its status changed.')
    if new_status not in TASK_TRANSITIONS[task.status]:
        raise PreconditionFailed(
            f"Task cannot move from {task.status.value} to {TaskStatus(new_status).value}.")


def advance_donation(donation_id, event, **changes):
    """Apply *event* to a donation with a conditional update.

    Runs inside the caller's transaction; the caller commits or rolls back
    together with its task write.
    """
    expected, target = DONATION_TRANSITIONS[event]
    result = db.session.execute(
        update(Donation)
        .where(Donation.donation_id == donation_id, Donation.status == expected)
        .values(status=target, **changes)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 1:
        # Loaded Donation objects are stale after a bulk UPDATE
        db.session.expire_all()
        logger.info(f"Donation {donation_id}: {expected.value} -> {target.value}")
        return target

    current = db.session.execute(
        db.select(Donation.status).where(Donation.donation_id == donation_id)
    ).scalar_one_or_none()
    if current is None:
        raise NotFound(f"Donation {donation_id} not found.")
    raise PreconditionFailed(
        f"Donation must be {expected.value} for {event.value}, "
        f"but it is {DonationStatus(current).value}.")
