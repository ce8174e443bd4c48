import logging
import re
from datetime import timedelta

from sqlalchemy import asc, desc, select

from errors import NotFound
from metrics import record_best_effort, record_donation_posted
from models import db, Donation, DonationStatus, new_id, utcnow

logger = logging.getLogger(__name__)

URGENT_WINDOW = timedelta(hours=6)
HIGH_PRIORITY_WINDOW = timedelta(hours=24)


def post_donation(donor_id, donor_name, item_type, quantity, pickup_address,
                  pickup_coords, availability_time, notes=None):
    """Create a donation in pendingAssignment and bump the donor's counters."""
    lng, lat = pickup_coords
    donation = Donation(
        donation_id=new_id(),
        donor_id=donor_id,
        donor_name=donor_name,
        item_type=item_type,
        quantity=str(quantity),
        notes=notes or None,
        status=DonationStatus.PENDING_ASSIGNMENT,
        pickup_lng=lng,
        pickup_lat=lat,
        pickup_address=pickup_address,
        availability_time=availability_time,
        posted_at=utcnow(),
    )
    try:
        db.session.add(donation)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    logger.info(f"Donation {donation.donation_id} posted by {donor_id}")

    record_best_effort(record_donation_posted, donor_id, donation.quantity)
    return donation


def get_donation(donation_id):
    donation = db.session.execute(
        select(Donation).where(Donation.donation_id == donation_id)
    ).scalar_one_or_none()
    if donation is None:
        raise NotFound('Donation not found.')
    return donation


def pickup_priority(availability_time, now=None):
    """URGENT inside 6 hours (or overdue), HIGH inside 24, else STANDARD."""
    now = now or utcnow()
    if availability_time < now or availability_time - now < URGENT_WINDOW:
        return 'URGENT'
    if availability_time - now < HIGH_PRIORITY_WINDOW:
        return 'HIGH'
    return 'STANDARD'


def list_pending_assignments():
    """Donations waiting on an admin: new ones and collected ones."""
    return db.session.execute(
        select(Donation)
        .where(Donation.status.in_([DonationStatus.PENDING_ASSIGNMENT,
                                    DonationStatus.COLLECTED]))
        .order_by(desc(Donation.posted_at))
    ).scalars().all()


def list_pending_collection():
    # Soonest availability first so urgent pickups surface at the top
    return db.session.execute(
        select(Donation)
        .where(Donation.status == DonationStatus.PENDING_ASSIGNMENT)
        .order_by(asc(Donation.availability_time))
    ).scalars().all()


def list_pending_distribution():
    return db.session.execute(
        select(Donation)
        .where(Donation.status == DonationStatus.COLLECTED)
        .order_by(desc(Donation.posted_at))
    ).scalars().all()


def donor_history(donor_id):
    return db.session.execute(
        select(Donation)
        .where(Donation.donor_id == donor_id)
        .order_by(desc(Donation.posted_at))
    ).scalars().all()


def _status_words(status):
    return re.sub(r'([A-Z])', r' \1', status.value).strip()


def donor_notifications(donor_id, limit=5):
    latest = db.session.execute(
        select(Donation)
        .where(Donation.donor_id == donor_id)
        .order_by(desc(Donation.posted_at))
        .limit(limit)
    ).scalars().all()
    return [
        {
            'id': d.donation_id,
            'message': f"Your donation of {d.item_type} ({d.quantity}) "
                       f"is currently: {_status_words(d.status)}",
            'status': d.status.value,
            'timestamp': d.posted_at.isoformat(),
        }
        for d in latest
    ]
