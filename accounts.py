import logging

from sqlalchemy import asc, select, update

from errors import NotFound, PreconditionFailed
from metrics import create_empty_metrics
from models import db, Donor, Metrics, Role, User, Volunteer

logger = logging.getLogger(__name__)


def get_user(uid):
    user = db.session.execute(select(User).where(User.uid == uid)).scalar_one_or_none()
    if user is None:
        raise NotFound('User not found.')
    return user


def role_details(user):
    if user.role == Role.VOLUNTEER:
        model = Volunteer
    elif user.role == Role.DONOR:
        model = Donor
    else:
        return None
    return db.session.execute(
        select(model).where(model.user_id == user.uid)
    ).scalar_one_or_none()


def register_user(uid, email, name, role, phone=None, home_coords=None,
                  home_address=None, organization_name=None):
    """Create the user row, its role profile and an empty metrics row."""
    role = Role(role)
    email = email.strip().lower()
    if db.session.execute(select(User.id).where(User.uid == uid)).first():
        raise PreconditionFailed('User is already registered.')
    if db.session.execute(select(User.id).where(User.email == email)).first():
        raise PreconditionFailed('Email already registered.')

    user = User(uid=uid, email=email, name=name, role=role, status='active')
    try:
        db.session.add(user)
        if role == Role.VOLUNTEER:
            lng, lat = home_coords if home_coords else (None, None)
            db.session.add(Volunteer(
                user_id=uid,
                phone=phone or '',
                home_lng=lng,
                home_lat=lat,
                home_address=home_address,
            ))
        elif role == Role.DONOR:
            db.session.add(Donor(user_id=uid, organization_name=organization_name))
        if role != Role.ADMIN:
            create_empty_metrics(uid, role.value)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    logger.info(f"Registered {role.value} {uid} ({email})")
    return user


def _ensure_role_profile(user):
    """Give a user whose role changed the profile and metrics row of the new role."""
    if user.role == Role.ADMIN:
        return
    if role_details(user) is None:
        if user.role == Role.VOLUNTEER:
            db.session.add(Volunteer(user_id=user.uid, status=user.status))
        else:
            db.session.add(Donor(user_id=user.uid, status=user.status))
    create_empty_metrics(user.uid, user.role.value)
    db.session.execute(
        update(Metrics)
        .where(Metrics.user_id == user.uid)
        .values(user_type=user.role.value)
    )


def update_user(uid, role=None, status=None):
    user = get_user(uid)
    try:
        if role and Role(role) != user.role:
            user.role = Role(role)
            _ensure_role_profile(user)
        if status:
            user.status = status
            profile = role_details(user)
            if profile is not None:
                profile.status = status
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    logger.info(f"Updated user {uid}: role={user.role.value}, status={user.status}")
    return user


def list_users():
    return db.session.execute(select(User).order_by(asc(User.created_at))).scalars().all()
