import enum
import uuid
from datetime import datetime, timezone

from flask_login import UserMixin
from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()


def utcnow():
    # Naive UTC, the way every timestamp column is stored
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id():
    return uuid.uuid4().hex


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


def enum_column(enum_cls, **kwargs):
    return db.Column(db.Enum(enum_cls, native_enum=False, length=32,
                             values_callable=_enum_values,
                             validate_strings=True), **kwargs)


def _isoformat(value):
    return value.isoformat() if value else None


def _point(lng, lat):
    if lng is None or lat is None:
        return None
    return [lng, lat]


class Role(str, enum.Enum):
    DONOR = 'Donor'
    VOLUNTEER = 'Volunteer'
    ADMIN = 'Admin'


class DonationStatus(str, enum.Enum):
    PENDING_ASSIGNMENT = 'pendingAssignment'
    ASSIGNED_FOR_COLLECTION = 'assignedForCollection'
    COLLECTED = 'collected'
    ASSIGNED_FOR_DISTRIBUTION = 'assignedForDistribution'
    DELIVERED = 'delivered'


class TaskType(str, enum.Enum):
    COLLECTION = 'collection'
    DISTRIBUTION = 'distribution'


class TaskStatus(str, enum.Enum):
    PENDING = 'pending'
    ASSIGNED = 'assigned'
    EN_ROUTE = 'enRoute'
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'
    FAILED = 'failed'
    PENDING_REVIEW = 'pending_review'


class OrganizationType(str, enum.Enum):
    DONOR_BUSINESS = 'DonorBusiness'
    DISTRIBUTION_CENTER = 'DistributionCenter'
    COMMUNITY_PARTNER = 'CommunityPartner'


class User(db.Model, UserMixin):
    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    uid = db.Column(db.String(128), unique=True, nullable=False, index=True)
    email = db.Column(db.String(120), unique=True, nullable=False)
    name = db.Column(db.String(100), nullable=False)
    role = enum_column(Role, nullable=False, index=True)
    status = db.Column(db.String(20), nullable=False, default='active')
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    def get_id(self):
        return self.uid

    @property
    def is_active(self):
        return self.status == 'active'

    def to_dict(self):
        return {
            'uid': self.uid,
            'email': self.email,
            'name': self.name,
            'role': self.role.value,
            'status': self.status,
            'createdAt': _isoformat(self.created_at),
        }

    def __repr__(self):
        return f'<User {self.name}, {self.role.value}>'


class Volunteer(db.Model):
    __tablename__ = 'volunteers'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.String(128), unique=True, nullable=False, index=True)
    phone = db.Column(db.String(30), nullable=False, default='')
    # Home point, longitude first
    home_lng = db.Column(db.Float, nullable=True)
    home_lat = db.Column(db.Float, nullable=True)
    home_address = db.Column(db.String(255), nullable=True)
    rating = db.Column(db.Float, nullable=False, default=5.0)
    status = db.Column(db.String(20), nullable=False, default='active')  # active, inactive
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    @property
    def home_location(self):
        return _point(self.home_lng, self.home_lat)

    def to_dict(self):
        return {
            'userId': self.user_id,
            'phone': self.phone,
            'homeLocation': {
                'coordinates': self.home_location,
                'address': self.home_address,
            },
            'rating': self.rating,
            'status': self.status,
        }

    def __repr__(self):
        return f'<Volunteer {self.user_id}, status: {self.status}>'


class Donor(db.Model):
    __tablename__ = 'donors'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.String(128), unique=True, nullable=False, index=True)
    organization_name = db.Column(db.String(120), nullable=True)
    status = db.Column(db.String(20), nullable=False, default='active')
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    def to_dict(self):
        return {
            'userId': self.user_id,
            'organizationName': self.organization_name,
            'status': self.status,
        }


class Organization(db.Model):
    __tablename__ = 'organizations'

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.String(64), unique=True, nullable=False, index=True)
    name = db.Column(db.String(120), unique=True, nullable=False)
    address = db.Column(db.String(255), nullable=False)
    lng = db.Column(db.Float, nullable=False)
    lat = db.Column(db.Float, nullable=False)
    organization_type = enum_column(OrganizationType, nullable=False,
                                    default=OrganizationType.DISTRIBUTION_CENTER)
    manager_user_id = db.Column(db.String(128), nullable=True)

    @property
    def coordinates(self):
        return [self.lng, self.lat]

    def to_dict(self):
        return {
            'id': self.organization_id,
            'name': self.name,
            'address': self.address,
            'coordinates': self.coordinates,
            'organizationType': self.organization_type.value,
        }

    def __repr__(self):
        return f'<Organization {self.name}>'


class Donation(db.Model):
    __tablename__ = 'donations'
    __table_args__ = (
        db.Index('ix_donations_donor_status', 'donor_id', 'status'),
    )

    id = db.Column(db.Integer, primary_key=True)
    donation_id = db.Column(db.String(64), unique=True, nullable=False, default=new_id)
    donor_id = db.Column(db.String(128), nullable=False, index=True)
    donor_name = db.Column(db.String(100), nullable=False)
    item_type = db.Column(db.String(100), nullable=False)
    quantity = db.Column(db.String(100), nullable=False)
    notes = db.Column(db.Text, nullable=True)
    status = enum_column(DonationStatus, nullable=False,
                         default=DonationStatus.PENDING_ASSIGNMENT)
    pickup_lng = db.Column(db.Float, nullable=False)
    pickup_lat = db.Column(db.Float, nullable=False)
    pickup_address = db.Column(db.String(255), nullable=False)
    dropoff_lng = db.Column(db.Float, nullable=True)
    dropoff_lat = db.Column(db.Float, nullable=True)
    dropoff_address = db.Column(db.String(255), nullable=True)
    availability_time = db.Column(db.DateTime, nullable=False)
    posted_at = db.Column(db.DateTime, nullable=False, default=utcnow, index=True)
    collected_at = db.Column(db.DateTime, nullable=True)
    delivered_at = db.Column(db.DateTime, nullable=True)
    collected_by_volunteer_id = db.Column(db.String(128), nullable=True)
    distribution_volunteer_id = db.Column(db.String(128), nullable=True)

    @property
    def pickup_location(self):
        return _point(self.pickup_lng, self.pickup_lat)

    @property
    def dropoff_location(self):
        return _point(self.dropoff_lng, self.dropoff_lat)

    def to_dict(self):
        return {
            'donationId': self.donation_id,
            'donorId': self.donor_id,
            'donorName': self.donor_name,
            'itemType': self.item_type,
            'quantity': self.quantity,
            'notes': self.notes,
            'status': self.status.value,
            'pickupLocation': {'type': 'Point', 'coordinates': self.pickup_location},
            'pickupAddress': self.pickup_address,
            'dropoffLocation': {'type': 'Point', 'coordinates': self.dropoff_location}
                               if self.dropoff_location else None,
            'dropoffAddress': self.dropoff_address,
            'availabilityTime': _isoformat(self.availability_time),
            'postedAt': _isoformat(self.posted_at),
            'collectedAt': _isoformat(self.collected_at),
            'deliveredAt': _isoformat(self.delivered_at),
            'collectedByVolunteerId': self.collected_by_volunteer_id,
            'distributionVolunteerId': self.distribution_volunteer_id,
        }

    def __repr__(self):
        return f'<Donation {self.item_type}, {self.status.value}>'


class Task(db.Model):
    __tablename__ = 'tasks'
    __table_args__ = (
        db.Index('ix_tasks_volunteer_status', 'volunteer_id', 'status'),
    )

    id = db.Column(db.Integer, primary_key=True)
    task_id = db.Column(db.String(64), unique=True, nullable=False, default=new_id)
    # Relation by identifier only; orphaned tasks are reported, not prevented
    donation_id = db.Column(db.String(64), nullable=False, index=True)
    volunteer_id = db.Column(db.String(128), nullable=False)
    task_type = enum_column(TaskType, nullable=False)
    status = enum_column(TaskStatus, nullable=False, default=TaskStatus.PENDING)
    # Snapshot of the target at assignment time
    lng = db.Column(db.Float, nullable=False)
    lat = db.Column(db.Float, nullable=False)
    address = db.Column(db.String(255), nullable=False)
    assigned_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    started_at = db.Column(db.DateTime, nullable=True)
    completed_at = db.Column(db.DateTime, nullable=True)
    notes = db.Column(db.Text, nullable=True)
    issue_reported = db.Column(db.Boolean, nullable=False, default=False)
    issue_notes = db.Column(db.Text, nullable=True)

    @property
    def location(self):
        return [self.lng, self.lat]

    def to_dict(self):
        return {
            'taskId': self.task_id,
            'donationId': self.donation_id,
            'volunteerId': self.volunteer_id,
            'taskType': self.task_type.value,
            'status': self.status.value,
            'location': {'type': 'Point', 'coordinates': self.location},
            'address': self.address,
            'assignedAt': _isoformat(self.assigned_at),
            'startedAt': _isoformat(self.started_at),
            'completedAt': _isoformat(self.completed_at),
            'notes': self.notes,
            'issueReported': self.issue_reported,
            'issueNotes': self.issue_notes,
        }

    def __repr__(self):
        return f'<Task {self.task_id}, {self.task_type.value}, status: {self.status.value}>'


class Metrics(db.Model):
    __tablename__ = 'metrics'

    id = db.Column(db.Integer, primary_key=True)
    metrics_id = db.Column(db.String(64), unique=True, nullable=False, default=new_id)
    user_id = db.Column(db.String(128), unique=True, nullable=False, index=True)
    user_type = db.Column(db.String(20), nullable=False)  # Volunteer, Donor
    tasks_completed = db.Column(db.Integer, nullable=False, default=0)
    tasks_assigned = db.Column(db.Integer, nullable=False, default=0)
    donations_collected = db.Column(db.Integer, nullable=False, default=0)
    donations_delivered = db.Column(db.Integer, nullable=False, default=0)
    total_donations_posted = db.Column(db.Integer, nullable=False, default=0)
    food_items_collected = db.Column(db.Float, nullable=False, default=0)
    rating = db.Column(db.Float, nullable=False, default=5.0)
    review_count = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    def to_dict(self):
        return {
            'metricsId': self.metrics_id,
            'userId': self.user_id,
            'userType': self.user_type,
            'tasksCompleted': self.tasks_completed,
            'tasksAssigned': self.tasks_assigned,
            'donationsCollected': self.donations_collected,
            'donationsDelivered': self.donations_delivered,
            'totalDonationsPosted': self.total_donations_posted,
            'foodItemsCollected': self.food_items_collected,
            'rating': self.rating,
            'reviewCount': self.review_count,
        }

    def __repr__(self):
        return f'<Metrics {self.user_id}>'
