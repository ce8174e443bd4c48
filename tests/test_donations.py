from datetime import datetime, timedelta

import pytest

from donations import (donor_history, donor_notifications, get_donation,
                       list_pending_assignments, list_pending_collection,
                       list_pending_distribution, pickup_priority)
from errors import NotFound
from lifecycle import DonationEvent, advance_donation
from metrics import get_user_metrics
from models import db, DonationStatus, utcnow


def test_post_donation(post, donor):
    donation = get_donation(post('10 lbs', notes='back door'))

    assert donation.status == DonationStatus.PENDING_ASSIGNMENT
    assert donation.donor_id == donor
    assert donation.quantity == '10 lbs'
    assert donation.notes == 'back door'
    assert donation.posted_at is not None
    assert donation.dropoff_location is None

    metrics = get_user_metrics(donor)
    assert metrics.total_donations_posted == 1
    assert metrics.food_items_collected == 10


def test_get_missing_donation(app):
    with pytest.raises(NotFound):
        get_donation('nope')


@pytest.mark.parametrize('offset, expected', [
    (timedelta(hours=-2), 'URGENT'),
    (timedelta(hours=3), 'URGENT'),
    (timedelta(hours=12), 'HIGH'),
    (timedelta(hours=30), 'STANDARD'),
])
def test_pickup_priority(offset, expected):
    now = datetime(2024, 6, 1, 12, 0)
    assert pickup_priority(now + offset, now=now) == expected


def _collect(donation_id):
    advance_donation(donation_id, DonationEvent.COLLECTION_ASSIGNED)
    advance_donation(donation_id, DonationEvent.COLLECTION_COMPLETED)
    db.session.commit()


def test_pending_queues(post):
    now = utcnow()
    later = post(availability_time=now + timedelta(days=2))
    sooner = post(availability_time=now + timedelta(hours=1))
    collected = post()
    _collect(collected)
    assigned = post()
    advance_donation(assigned, DonationEvent.COLLECTION_ASSIGNED)
    db.session.commit()

    pending = {d.donation_id for d in list_pending_assignments()}
    assert pending == {later, sooner, collected}

    assert [d.donation_id for d in list_pending_collection()] == [sooner, later]
    assert [d.donation_id for d in list_pending_distribution()] == [collected]


def test_history_and_notifications(post, donor, make_user):
    make_user('other', 'Donor')
    post(donor_id='other', donor_name='Other')
    first = post('3 trays', item_type='Lasagna')
    _collect(first)

    history = donor_history(donor)
    assert [d.donation_id for d in history] == [first]

    notifications = donor_notifications(donor)
    assert notifications == [{
        'id': first,
        'message': 'Your donation of Lasagna (3 trays) is currently: collected',
        'status': 'collected',
        'timestamp': get_donation(first).posted_at.isoformat(),
    }]


def test_notifications_split_status_words(post, donor):
    post('1 box', item_type='Apples')
    [notification] = donor_notifications(donor)
    assert notification['message'] == \
        'Your donation of Apples (1 box) is currently: pending Assignment'


def test_notifications_limit(post, donor):
    for _ in range(7):
        post()
    assert len(donor_notifications(donor)) == 5
