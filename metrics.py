"""Per-user counters and the admin dashboard rollup.

The ledger is a side channel: callers go through ``record_best_effort`` so a
failing increment is logged and dropped instead of failing the request that
triggered it.
"""
import logging
import re
from collections import OrderedDict

from sqlalchemy import desc, func, select, update
from sqlalchemy.exc import IntegrityError

from errors import NotFound
from models import db, Donation, DonationStatus, Metrics, Task, TaskStatus, TaskType, utcnow

logger = logging.getLogger(__name__)

MONTH_NAMES = ['Jan', 'Feb', 'Mar', 'Apr', 'May', 'Jun',
               'Jul', 'Aug', 'Sep', 'Oct', 'Nov', 'Dec']

_LEADING_NUMBER = re.compile(r'\s*(\d+(?:\.\d+)?)')


def parse_quantity(quantity):
    """Best-effort number from free text: "10 lbs" -> 10, "a few" -> 0."""
    if isinstance(quantity, (int, float)) and not isinstance(quantity, bool):
        return quantity if quantity > 0 else 0
    match = _LEADING_NUMBER.match(str(quantity or ''))
    if not match:
        return 0
    value = float(match.group(1))
    return int(value) if value.is_integer() else value


def _increment(user_id, user_type, **amounts):
    """Atomically add *amounts* to the user's row, creating it if absent."""
    statement = (
        update(Metrics)
        .where(Metrics.user_id == user_id)
        .values({getattr(Metrics, name): getattr(Metrics, name) + amount
                 for name, amount in amounts.items()})
        .execution_options(synchronize_session=False)
    )
    if db.session.execute(statement).rowcount:
        return
    try:
        with db.session.begin_nested():
            db.session.add(Metrics(user_id=user_id, user_type=user_type, **amounts))
    except IntegrityError:
        # Someone else created the row first
        db.session.execute(statement)


def record_donation_posted(donor_id, quantity):
    _increment(donor_id, 'Donor',
               total_donations_posted=1,
               food_items_collected=parse_quantity(quantity))
    db.session.commit()


def record_task_assigned(volunteer_id):
    _increment(volunteer_id, 'Volunteer', tasks_assigned=1)
    db.session.commit()


def record_task_completed(volunteer_id, task_type):
    amounts = {'tasks_completed': 1}
    if task_type == TaskType.COLLECTION:
        amounts['donations_collected'] = 1
    elif task_type == TaskType.DISTRIBUTION:
        amounts['donations_delivered'] = 1
    _increment(volunteer_id, 'Volunteer', **amounts)
    db.session.commit()


def record_best_effort(operation, *args):
    """Run a ledger update; log and swallow any failure."""
    try:
        operation(*args)
        return True
    except Exception as e:
        db.session.rollback()
        logger.error(f"METRICS UPDATE ERROR ({operation.__name__}): {str(e)}")
        return False


def create_empty_metrics(user_id, user_type):
    if db.session.execute(select(Metrics.id).where(Metrics.user_id == user_id)).first():
        return
    db.session.add(Metrics(user_id=user_id, user_type=user_type))


def get_user_metrics(user_id):
    metrics = db.session.execute(
        select(Metrics).where(Metrics.user_id == user_id)
    ).scalar_one_or_none()
    if metrics is None:
        raise NotFound(f"No metrics recorded for user {user_id}.")
    return metrics


def top_volunteers(limit=10):
    return db.session.execute(
        select(Metrics)
        .where(Metrics.user_type == 'Volunteer')
        .order_by(desc(Metrics.rating), desc(Metrics.tasks_completed))
        .limit(limit)
    ).scalars().all()


def months_ago(moment, months):
    month_index = moment.year * 12 + (moment.month - 1) - months
    year, month = divmod(month_index, 12)
    # Clamp the day for short months
    day = min(moment.day, 28)
    return moment.replace(year=year, month=month + 1, day=day)


def monthly_breakdown(since):
    buckets = OrderedDict()
    rows = db.session.execute(
        select(Donation.posted_at, Donation.status)
        .where(Donation.posted_at >= since)
        .order_by(Donation.posted_at)
    ).all()
    for posted_at, status in rows:
        bucket = buckets.setdefault((posted_at.year, posted_at.month),
                                    {'received': 0, 'delivered': 0})
        bucket['received'] += 1
        if status == DonationStatus.DELIVERED:
            bucket['delivered'] += 1
    return [
        {'month': MONTH_NAMES[month - 1], 'year': year, **counts}
        for (year, month), counts in buckets.items()
    ]


def dashboard_metrics(now=None):
    now = now or utcnow()
    total_donations = db.session.scalar(select(func.count(Donation.id)))
    tasks_completed = db.session.scalar(
        select(func.count(Task.id)).where(
            Task.task_type == TaskType.DISTRIBUTION,
            Task.status == TaskStatus.COMPLETED,
        ))
    tasks_in_transit = db.session.scalar(
        select(func.count(Task.id)).where(
            Task.status.in_([TaskStatus.ASSIGNED, TaskStatus.EN_ROUTE])))

    if total_donations:
        completion_rate = f"{tasks_completed / total_donations * 100:.1f}"
    else:
        completion_rate = '0.0'

    return {
        'totalDonations': total_donations,
        'tasksCompleted': tasks_completed,
        'tasksInTransit': tasks_in_transit,
        'completionRate': completion_rate,
        'monthlyBreakdown': monthly_breakdown(months_ago(now, 6)),
    }
