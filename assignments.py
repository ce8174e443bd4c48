"""Task assignment engine and issue escalation.

Every operation that moves a donation does so through
``lifecycle.advance_donation`` inside the same transaction as its task write,
so a task and its donation are never left in mismatched phases.  Metrics are
recorded after the commit and never fail the operation.
"""
import logging

from sqlalchemy import asc, desc, exists, func, select, update

from donations import get_donation
from errors import NotFound, PreconditionFailed, TaskLocked, ValidationError
from lifecycle import (COMPLETION_EVENTS, TERMINAL_TASK_STATUSES, VOLUNTEER_STATUSES,
                       DonationEvent, advance_donation, check_task_transition,
                       is_task_locked, next_donation_status)
from metrics import record_best_effort, record_task_assigned, record_task_completed
from models import (db, Donation, Organization, OrganizationType, Task, TaskStatus,
                    TaskType, User, Volunteer, new_id, utcnow)
from proximity import rank_by_proximity

logger = logging.getLogger(__name__)


def get_task(task_id):
    task = db.session.execute(
        select(Task).where(Task.task_id == task_id)
    ).scalar_one_or_none()
    if task is None:
        raise NotFound('Task not found.')
    return task


def get_organization(location_id):
    organization = db.session.execute(
        select(Organization).where(Organization.organization_id == str(location_id))
    ).scalar_one_or_none()
    if organization is None:
        raise NotFound('Invalid drop-off location selected.')
    return organization


def require_active_volunteer(volunteer_id):
    volunteer = db.session.execute(
        select(Volunteer).where(Volunteer.user_id == volunteer_id)
    ).scalar_one_or_none()
    if volunteer is None:
        raise NotFound(f"Volunteer {volunteer_id} not found.")
    if volunteer.status != 'active':
        raise PreconditionFailed(f"Volunteer {volunteer_id} is not active.")
    return volunteer


def _create_task(admin_id, donation_id, volunteer_id, task_type, point, address, event,
                 **donation_changes):
    lng, lat = point
    task_id = new_id()
    task = Task(
        task_id=task_id,
        donation_id=donation_id,
        volunteer_id=volunteer_id,
        task_type=task_type,
        status=TaskStatus.ASSIGNED,
        lng=lng,
        lat=lat,
        address=address,
        assigned_at=utcnow(),
    )
    try:
        db.session.add(task)
        advance_donation(donation_id, event, **donation_changes)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    logger.info(f"{task_type.value.capitalize()} task {task_id} assigned to "
                f"{volunteer_id} for donation {donation_id} by {admin_id}")

    record_best_effort(record_task_assigned, volunteer_id)
    return get_donation(donation_id), get_task(task_id)


def assign_collection_task(donation_id, volunteer_id, admin_id=None):
    """Create the collection task for a pendingAssignment donation."""
    donation = get_donation(donation_id)
    next_donation_status(donation.status, DonationEvent.COLLECTION_ASSIGNED)
    require_active_volunteer(volunteer_id)

    return _create_task(
        admin_id, donation_id, volunteer_id, TaskType.COLLECTION,
        donation.pickup_location, donation.pickup_address,
        DonationEvent.COLLECTION_ASSIGNED,
    )


def assign_distribution_task(donation_id, volunteer_id, location_id, admin_id=None):
    """Create the distribution task for a collected donation.

    The drop-off center's point and address are copied onto both the task and
    the donation.
    """
    organization = get_organization(location_id)
    donation = get_donation(donation_id)
    next_donation_status(donation.status, DonationEvent.DISTRIBUTION_ASSIGNED)
    require_active_volunteer(volunteer_id)

    return _create_task(
        admin_id, donation_id, volunteer_id, TaskType.DISTRIBUTION,
        organization.coordinates, organization.address,
        DonationEvent.DISTRIBUTION_ASSIGNED,
        dropoff_lng=organization.lng,
        dropoff_lat=organization.lat,
        dropoff_address=organization.address,
    )


def _parse_volunteer_status(status):
    try:
        status = TaskStatus(status)
    except ValueError:
        status = None
    if status not in VOLUNTEER_STATUSES:
        raise ValidationError('Invalid or missing new status.',
                              details={'allowed': sorted(s.value for s in VOLUNTEER_STATUSES)})
    return status


def update_task_status(volunteer_id, task_id, new_status):
    new_status = _parse_volunteer_status(new_status)
    task = get_task(task_id)
    if task.volunteer_id != volunteer_id:
        raise PreconditionFailed('You are not assigned to this task.')
    check_task_transition(task, new_status)

    previous_status = task.status
    task_type = task.task_type
    donation_id = task.donation_id
    now = utcnow()

    changes = {'status': new_status}
    if new_status == TaskStatus.EN_ROUTE:
        changes['started_at'] = now
    elif new_status == TaskStatus.COMPLETED:
        changes['completed_at'] = now

    try:
        result = db.session.execute(
            update(Task)
            .where(Task.task_id == task_id,
                   Task.volunteer_id == volunteer_id,
                   Task.status == previous_status,
                   Task.issue_reported.is_(False))
            .values(**changes)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise PreconditionFailed('Task changed while updating; refresh and try again.')

        if new_status == TaskStatus.COMPLETED:
            if task_type == TaskType.COLLECTION:
                donation_changes = {'collected_at': now, 'collected_by_volunteer_id': volunteer_id}
            else:
                donation_changes = {'delivered_at': now, 'distribution_volunteer_id': volunteer_id}
            advance_donation(donation_id, COMPLETION_EVENTS[task_type], **donation_changes)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    logger.info(f"Task {task_id}: {previous_status.value} -> {new_status.value} by {volunteer_id}")

    if new_status == TaskStatus.COMPLETED:
        record_best_effort(record_task_completed, volunteer_id, task_type)
    db.session.expire_all()
    return get_task(task_id)


def report_issue(volunteer_id, task_id, notes):
    """Put a task under admin review; only reassignment lifts it."""
    notes = (notes or '').strip()
    if not notes:
        raise ValidationError('Issue notes are required to report an issue.')
    task = get_task(task_id)
    if task.volunteer_id != volunteer_id:
        raise PreconditionFailed('Task not found or not assigned to you.')
    if is_task_locked(task):
        raise TaskLocked('An issue is already under review for this task.')
    if task.status in TERMINAL_TASK_STATUSES:
        raise PreconditionFailed(f"Task is already {task.status.value}.")

    try:
        result = db.session.execute(
            update(Task)
            .where(Task.task_id == task_id,
                   Task.status == task.status,
                   Task.issue_reported.is_(False))
            .values(issue_reported=True, issue_notes=notes,
                    status=TaskStatus.PENDING_REVIEW)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise PreconditionFailed('Task changed while reporting; refresh and try again.')
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    logger.warning(f"Issue reported on task {task_id} by {volunteer_id}: {notes}")
    db.session.expire_all()
    return get_task(task_id)


def reassign_task(task_id, new_volunteer_id, admin_id=None):
    """Hand a task to another volunteer and clear any issue on it.

    Donation status and metrics are left alone.
    """
    task = get_task(task_id)
    if task.status == TaskStatus.COMPLETED:
        raise PreconditionFailed('Completed tasks cannot be reassigned.')
    require_active_volunteer(new_volunteer_id)

    try:
        result = db.session.execute(
            update(Task)
            .where(Task.task_id == task_id, Task.status == task.status)
            .values(volunteer_id=new_volunteer_id,
                    status=TaskStatus.ASSIGNED,
                    issue_reported=False,
                    issue_notes=None,
                    assigned_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise PreconditionFailed('Task changed while reassigning; refresh and try again.')
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    logger.info(f"Task {task_id} reassigned to {new_volunteer_id} by {admin_id}")
    db.session.expire_all()
    return get_task(task_id)


def list_reported_issues():
    tasks = db.session.execute(
        select(Task)
        .where(Task.issue_reported.is_(True))
        .order_by(desc(Task.assigned_at))
    ).scalars().all()
    donation_ids = {task.donation_id for task in tasks}
    donations = {}
    if donation_ids:
        donations = {
            d.donation_id: d for d in db.session.execute(
                select(Donation).where(Donation.donation_id.in_(donation_ids))
            ).scalars()
        }

    issues = []
    for task in tasks:
        donation = donations.get(task.donation_id)
        issues.append({
            'taskId': task.task_id,
            'donationId': task.donation_id,
            'taskType': task.task_type.value,
            'currentVolunteer': task.volunteer_id,
            'issueNotes': task.issue_notes or 'No notes provided.',
            'issueReportedAt': task.assigned_at.isoformat(),
            'postedAt': donation.posted_at.isoformat() if donation else None,
            'foodItem': donation.item_type if donation else 'Unknown Item',
            'quantity': donation.quantity if donation else None,
            'donorName': donation.donor_name if donation else None,
            'address': task.address or (donation.pickup_address if donation else None),
        })
    return issues


def orphan_report():
    """Tasks whose donation id resolves to nothing. Read only."""
    has_donation = exists().where(Donation.donation_id == Task.donation_id)
    orphans = db.session.execute(
        select(Task).where(~has_donation).order_by(desc(Task.assigned_at))
    ).scalars().all()
    return {
        'totalTasks': db.session.scalar(select(func.count(Task.id))),
        'totalDonations': db.session.scalar(select(func.count(Donation.id))),
        'orphanedTasksCount': len(orphans),
        'orphanedTasks': [
            {
                'taskId': t.task_id,
                'donationId': t.donation_id,
                'volunteerId': t.volunteer_id,
                'status': t.status.value,
                'createdAt': t.assigned_at.isoformat(),
            }
            for t in orphans
        ],
    }


def volunteer_active_tasks(volunteer_id, limit=20):
    query = (
        select(Task)
        .where(Task.volunteer_id == volunteer_id,
               Task.status.not_in([TaskStatus.COMPLETED, TaskStatus.CANCELLED]))
        .order_by(desc(Task.assigned_at))
    )
    if limit:
        query = query.limit(limit)
    return db.session.execute(query).scalars().all()


def volunteer_task_history(volunteer_id):
    return db.session.execute(
        select(Task)
        .where(Task.volunteer_id == volunteer_id)
        .order_by(desc(Task.assigned_at))
    ).scalars().all()


def _count_tasks(*criteria):
    return db.session.scalar(select(func.count(Task.id)).where(*criteria))


def volunteer_stats(volunteer_id):
    active = volunteer_active_tasks(volunteer_id, limit=1)
    volunteer = db.session.execute(
        select(Volunteer).where(Volunteer.user_id == volunteer_id)
    ).scalar_one_or_none()
    return {
        'tasksCompleted': _count_tasks(Task.volunteer_id == volunteer_id,
                                       Task.status == TaskStatus.COMPLETED),
        'distributionCount': _count_tasks(Task.volunteer_id == volunteer_id,
                                          Task.task_type == TaskType.DISTRIBUTION),
        'completedDistribution': _count_tasks(Task.volunteer_id == volunteer_id,
                                              Task.task_type == TaskType.DISTRIBUTION,
                                              Task.status == TaskStatus.COMPLETED),
        'tasksAssigned': _count_tasks(Task.volunteer_id == volunteer_id),
        'rating': volunteer.rating if volunteer else 5.0,
        'latestActiveTask': active[0].to_dict() if active else None,
    }


def list_distribution_locations():
    return db.session.execute(
        select(Organization)
        .where(Organization.organization_type == OrganizationType.DISTRIBUTION_CENTER)
        .order_by(asc(Organization.name))
    ).scalars().all()


def add_distribution_center(name, address, coords, manager_user_id=None):
    lng, lat = coords
    organization = Organization(
        organization_id=new_id(),
        name=name,
        address=address,
        lng=lng,
        lat=lat,
        organization_type=OrganizationType.DISTRIBUTION_CENTER,
        manager_user_id=manager_user_id,
    )
    try:
        db.session.add(organization)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    logger.info(f"Distribution center {name} added")
    return organization


def rank_volunteers_by_proximity(pickup_coords=None):
    """Active volunteers with name/email, nearest first when a pickup is given."""
    rows = db.session.execute(
        select(Volunteer, User)
        .join(User, User.uid == Volunteer.user_id)
        .where(Volunteer.status == 'active', User.status == 'active')
        .order_by(asc(Volunteer.id))
    ).all()

    if pickup_coords is None:
        ranked = [((volunteer, user), None) for volunteer, user in rows]
    else:
        ranked = rank_by_proximity(pickup_coords, rows,
                                   location_of=lambda row: row[0].home_location)

    return [
        {
            **volunteer.to_dict(),
            'uid': volunteer.user_id,
            'name': user.name,
            'email': user.email,
            'distanceKm': distance,
        }
        for (volunteer, user), distance in ranked
    ]
