"""Shared fixtures.

The app module configures itself on import, so the test config has to be in
the environment before anything imports it.
"""

import os
import tempfile
from datetime import timedelta

os.environ['APP_CONFIG'] = 'config.TestConfig'
os.environ['LOG_FILE'] = os.path.join(tempfile.gettempdir(), 'nourishlink-tests.log')

import pytest  # noqa: E402
from flask import g  # noqa: E402
from flask.testing import FlaskClient  # noqa: E402

from app import app as flask_app  # noqa: E402
from assignments import add_distribution_center  # noqa: E402
from auth import issue_token  # noqa: E402
from donations import post_donation  # noqa: E402
from models import db, Donor, Role, User, Volunteer, utcnow  # noqa: E402

# Toronto-ish points, [lng, lat]
PICKUP = [-79.3832, 43.6532]
NEAR_HOME = [-79.3900, 43.6600]
FAR_HOME = [-79.7000, 43.9000]


@pytest.fixture
def app():
    with flask_app.app_context():
        db.drop_all()
        db.create_all()
        yield flask_app
        db.session.remove()
        db.drop_all()


class FreshCallerClient(FlaskClient):
    """Requests reuse the fixture's app context, so drop the cached caller."""

    def open(self, *args, **kwargs):
        g.pop('_login_user', None)
        return super().open(*args, **kwargs)


@pytest.fixture
def client(app):
    return FreshCallerClient(app, app.response_class)


@pytest.fixture
def make_user(app):
    """Create a user row plus its role profile."""

    def _make_user(uid, role, home=None, status='active'):
        role = Role(role)
        db.session.add(User(uid=uid, email=f'{uid}@example.com', name=uid.title(),
                            role=role, status=status))
        if role == Role.VOLUNTEER:
            lng, lat = home if home else (None, None)
            db.session.add(Volunteer(user_id=uid, phone='555-0100', home_lng=lng,
                                     home_lat=lat, status=status))
        elif role == Role.DONOR:
            db.session.add(Donor(user_id=uid))
        db.session.commit()
        return uid

    return _make_user


@pytest.fixture
def admin(make_user):
    return make_user('admin', Role.ADMIN)


@pytest.fixture
def donor(make_user):
    return make_user('donor', Role.DONOR)


@pytest.fixture
def v1(make_user):
    return make_user('v1', Role.VOLUNTEER, home=NEAR_HOME)


@pytest.fixture
def v2(make_user):
    return make_user('v2', Role.VOLUNTEER, home=FAR_HOME)


@pytest.fixture
def center(app):
    return add_distribution_center('Downtown Food Bank', '1 Front St', [-79.37, 43.64]).organization_id


@pytest.fixture
def post(donor):
    """Post a donation as the donor fixture and return its id."""

    def _post(quantity='10 lbs', **overrides):
        fields = dict(
            donor_id=donor,
            donor_name='Donor',
            item_type='Bread',
            quantity=quantity,
            pickup_address='12 Baker St',
            pickup_coords=PICKUP,
            availability_time=utcnow() + timedelta(hours=3),
        )
        fields.update(overrides)
        return post_donation(**fields).donation_id

    return _post


@pytest.fixture
def auth_headers(app):
    def _headers(uid):
        return {'Authorization': f'Bearer {issue_token(uid)}'}

    return _headers
