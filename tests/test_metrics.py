import logging
from datetime import datetime

import pytest

from errors import NotFound
from metrics import (create_empty_metrics, dashboard_metrics, get_user_metrics, months_ago,
                     parse_quantity, record_best_effort, record_donation_posted,
                     record_task_assigned, record_task_completed, top_volunteers)
from models import db, Donation, DonationStatus, Metrics, Task, TaskStatus, TaskType, new_id


@pytest.mark.parametrize('quantity, expected', [
    ('10 lbs', 10),
    ('2.5kg', 2.5),
    ('  7 boxes', 7),
    ('a few crates', 0),
    ('', 0),
    (None, 0),
    (12, 12),
    (-3, 0),
])
def test_parse_quantity(quantity, expected):
    assert parse_quantity(quantity) == expected


def test_increment_creates_row_then_adds(app):
    record_task_assigned('vol-1')
    record_task_assigned('vol-1')
    record_task_completed('vol-1', TaskType.DISTRIBUTION)

    metrics = get_user_metrics('vol-1')
    assert metrics.user_type == 'Volunteer'
    assert metrics.tasks_assigned == 2
    assert metrics.tasks_completed == 1
    assert metrics.donations_delivered == 1
    assert metrics.donations_collected == 0
    assert metrics.rating == 5.0
    assert db.session.query(Metrics).count() == 1


def test_donation_posted_counts_food_items(app):
    record_donation_posted('donor-1', '10 lbs')
    record_donation_posted('donor-1', 'some apples')
    record_donation_posted('donor-1', '2.5 kg')

    metrics = get_user_metrics('donor-1')
    assert metrics.user_type == 'Donor'
    assert metrics.total_donations_posted == 3
    assert metrics.food_items_collected == pytest.approx(12.5)


def test_existing_empty_row_is_incremented(app):
    create_empty_metrics('vol-2', 'Volunteer')
    db.session.commit()
    create_empty_metrics('vol-2', 'Volunteer')

    record_task_completed('vol-2', TaskType.COLLECTION)
    metrics = get_user_metrics('vol-2')
    assert metrics.tasks_completed == 1
    assert metrics.donations_collected == 1


def test_best_effort_swallows_and_logs(app, caplog):
    def explode(user_id):
        raise RuntimeError('disk full')

    with caplog.at_level(logging.ERROR):
        assert record_best_effort(explode, 'vol-3') is False
    assert 'METRICS UPDATE ERROR (explode): disk full' in caplog.text
    assert record_best_effort(record_task_assigned, 'vol-3') is True


def test_missing_metrics(app):
    with pytest.raises(NotFound):
        get_user_metrics('ghost')


def test_top_volunteers_order(app):
    db.session.add_all([
        Metrics(user_id='a', user_type='Volunteer', rating=4.5, tasks_completed=9),
        Metrics(user_id='b', user_type='Volunteer', rating=5.0, tasks_completed=1),
        Metrics(user_id='c', user_type='Volunteer', rating=5.0, tasks_completed=3),
        Metrics(user_id='d', user_type='Donor', rating=5.0, tasks_completed=99),
    ])
    db.session.commit()

    assert [m.user_id for m in top_volunteers()] == ['c', 'b', 'a']
    assert [m.user_id for m in top_volunteers(limit=1)] == ['c']


@pytest.mark.parametrize('moment, months, expected', [
    (datetime(2024, 3, 15), 6, datetime(2023, 9, 15)),
    (datetime(2024, 8, 31), 6, datetime(2024, 2, 28)),
    (datetime(2024, 1, 10), 1, datetime(2023, 12, 10)),
])
def test_months_ago(moment, months, expected):
    assert months_ago(moment, months) == expected


def _donation(posted_at, status):
    return Donation(donation_id=new_id(), donor_id='donor', donor_name='Donor',
                    item_type='Soup', quantity='4', status=status, pickup_lng=0.0,
                    pickup_lat=0.0, pickup_address='here', availability_time=posted_at,
                    posted_at=posted_at)


def _task(task_type, status):
    return Task(task_id=new_id(), donation_id='x', volunteer_id='v', task_type=task_type,
                status=status, lng=0.0, lat=0.0, address='here')


def test_dashboard_empty(app):
    dashboard = dashboard_metrics()
    assert dashboard['totalDonations'] == 0
    assert dashboard['completionRate'] == '0.0'
    assert dashboard['monthlyBreakdown'] == []


def test_dashboard_rollup(app):
    db.session.add_all([
        _donation(datetime(2024, 5, 10), DonationStatus.DELIVERED),
        _donation(datetime(2024, 6, 1), DonationStatus.COLLECTED),
        _donation(datetime(2024, 6, 3), DonationStatus.PENDING_ASSIGNMENT),
        _donation(datetime(2023, 10, 1), DonationStatus.DELIVERED),
        _task(TaskType.DISTRIBUTION, TaskStatus.COMPLETED),
        _task(TaskType.COLLECTION, TaskStatus.COMPLETED),
        _task(TaskType.COLLECTION, TaskStatus.ASSIGNED),
        _task(TaskType.DISTRIBUTION, TaskStatus.EN_ROUTE),
        _task(TaskType.COLLECTION, TaskStatus.PENDING_REVIEW),
    ])
    db.session.commit()

    dashboard = dashboard_metrics(now=datetime(2024, 6, 15))
    assert dashboard['totalDonations'] == 4
    assert dashboard['tasksCompleted'] == 1
    assert dashboard['tasksInTransit'] == 2
    assert dashboard['completionRate'] == '25.0'
    assert dashboard['monthlyBreakdown'] == [
        {'month': 'May', 'year': 2024, 'received': 1, 'delivered': 1},
        {'month': 'Jun', 'year': 2024, 'received': 2, 'delivered': 0},
    ]
