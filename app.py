from flask import Flask, request, jsonify
from flask_login import login_required, current_user
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import BadRequest
import click
import logging
import os

import accounts
import assignments
import donations
import geocoding
import metrics
from auth import (login_manager, role_required, ensure_self_or_admin, issue_token,
                  read_token, bearer_token)
from config import Config
from errors import LifecycleError, DependencyFailure, NotFound, ValidationError
from forms import (validate_request, DonationForm, AssignCollectionForm, AssignDistributionForm,
                   TaskStatusForm, IssueReportForm, ReassignForm, RegisterForm, UserUpdateForm,
                   ReverseGeocodeForm, ForwardGeocodeForm, AutocompleteForm)
from models import db, Role, User, utcnow

# Set up logging first
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.FileHandler(Config.LOG_FILE),
        logging.StreamHandler()
    ]
)
logger = logging.getLogger(__name__)

# Initialize Flask app
app = Flask(__name__)
app.config.from_object(os.environ.get('APP_CONFIG', 'config.Config'))

# Initialize database
db.init_app(app)

# Bearer tokens only, no session cookies
login_manager.init_app(app)


def init_db():
    """Create missing tables and the bootstrap admin when one is configured."""
    try:
        inspect = db.inspect(db.engine)
        if not inspect.get_table_names():
            logger.info("Creating database tables...")
        db.create_all()

        admin_uid = app.config.get('ADMIN_UID')
        if admin_uid:
            admin_exists = db.session.execute(
                select(User.id).where(User.uid == admin_uid)).first()
            if not admin_exists:
                logger.info("Creating admin user...")
                db.session.add(User(
                    uid=admin_uid,
                    email=app.config['ADMIN_EMAIL'],
                    name='Admin',
                    role=Role.ADMIN,
                ))
                db.session.commit()
                logger.info("Admin user created successfully!")
    except Exception as e:
        db.session.rollback()
        logger.error(f"Database initialization error: {str(e)}")
        raise e


with app.app_context():
    init_db()


@app.cli.command('init-db')
def init_db_command():
    init_db()
    click.echo('Database initialized.')


@app.cli.command('add-center')
@click.argument('name')
@click.argument('address')
@click.argument('lng', type=float)
@click.argument('lat', type=float)
def add_center_command(name, address, lng, lat):
    """Add a distribution center (use -- before negative coordinates)."""
    center = assignments.add_distribution_center(name, address, [lng, lat])
    click.echo(f"Added {center.name} ({center.organization_id})")


@app.cli.command('issue-token')
@click.argument('uid')
def issue_token_command(uid):
    """Print a bearer token for UID."""
    click.echo(issue_token(uid))


@app.before_request
def require_json_object():
    # Forms are built from the body as a mapping
    if request.is_json and request.method in ('POST', 'PUT'):
        if not isinstance(request.get_json(silent=True), dict):
            raise ValidationError('Request body must be a JSON object.')


def _pickup_query():
    lng = request.args.get('lng', type=float)
    lat = request.args.get('lat', type=float)
    if lng is None and lat is None:
        return None
    if lng is None or lat is None:
        raise ValidationError('Both lng and lat are required to rank by proximity.')
    return [lng, lat]


# Donations

@app.route('/api/donations/post', methods=['POST'])
@login_required
@role_required(Role.DONOR, Role.ADMIN)
def post_donation():
    form = validate_request(DonationForm())
    donation = donations.post_donation(
        donor_id=current_user.uid,
        donor_name=current_user.name,
        item_type=form.item_type.data,
        quantity=form.quantity.data,
        pickup_address=form.pickup_address.data,
        pickup_coords=form.pickup_coords.data,
        availability_time=form.availability_time.data,
        notes=form.notes.data,
    )
    return jsonify({
        'success': True,
        'message': 'Donation posted successfully!',
        'donation': donation.to_dict()
    }), 201


@app.route('/api/donations/pending')
@login_required
@role_required(Role.ADMIN)
def pending_donations():
    queue = request.args.get('queue')
    if queue == 'collection':
        now = utcnow()
        items = [
            {**d.to_dict(), 'priority': donations.pickup_priority(d.availability_time, now)}
            for d in donations.list_pending_collection()
        ]
    elif queue == 'distribution':
        items = [d.to_dict() for d in donations.list_pending_distribution()]
    elif queue is None:
        items = [d.to_dict() for d in donations.list_pending_assignments()]
    else:
        raise ValidationError('queue must be collection or distribution.')
    return jsonify({'success': True, 'donations': items})


@app.route('/api/donations/donor/<uid>/history')
@login_required
def donor_history(uid):
    ensure_self_or_admin(uid)
    history = donations.donor_history(uid)
    return jsonify({'success': True, 'donations': [d.to_dict() for d in history]})


@app.route('/api/donations/donor/<uid>/notifications')
@login_required
def donor_notifications(uid):
    ensure_self_or_admin(uid)
    return jsonify({'success': True, 'notifications': donations.donor_notifications(uid)})


@app.route('/api/donations/assign-collection-task/<donation_id>', methods=['PUT'])
@login_required
@role_required(Role.ADMIN)
def assign_collection_task(donation_id):
    form = validate_request(AssignCollectionForm())
    donation, task = assignments.assign_collection_task(
        donation_id, form.volunteer_id.data, admin_id=current_user.uid)
    return jsonify({
        'success': True,
        'message': 'Collection task assigned successfully.',
        'donation': donation.to_dict(),
        'task': task.to_dict()
    })


@app.route('/api/donations/assign-distribution-task/<donation_id>', methods=['PUT'])
@login_required
@role_required(Role.ADMIN)
def assign_distribution_task(donation_id):
    form = validate_request(AssignDistributionForm())
    donation, task = assignments.assign_distribution_task(
        donation_id, form.volunteer_id.data, form.location_id.data, admin_id=current_user.uid)
    return jsonify({
        'success': True,
        'message': 'Distribution task assigned successfully.',
        'donation': donation.to_dict(),
        'task': task.to_dict()
    })


@app.route('/api/donations/distribution-locations')
@login_required
@role_required(Role.ADMIN)
def distribution_locations():
    locations = assignments.list_distribution_locations()
    return jsonify({'success': True, 'locations': [o.to_dict() for o in locations]})


# Tasks

@app.route('/api/donations/<task_id>/status', methods=['PUT'])
@login_required
@role_required(Role.VOLUNTEER)
def update_task_status(task_id):
    form = validate_request(TaskStatusForm())
    task = assignments.update_task_status(current_user.uid, task_id, form.new_status.data)
    return jsonify({
        'success': True,
        'message': f"Task status updated to {task.status.value}.",
        'task': task.to_dict()
    })


@app.route('/api/donations/report-issue/<task_id>', methods=['PUT'])
@login_required
@role_required(Role.VOLUNTEER)
def report_issue(task_id):
    form = validate_request(IssueReportForm())
    task = assignments.report_issue(current_user.uid, task_id, form.notes.data)
    return jsonify({
        'success': True,
        'message': 'Issue reported. The task is now under admin review.',
        'task': task.to_dict()
    })


@app.route('/api/donations/reassign-task/<task_id>', methods=['PUT'])
@login_required
@role_required(Role.ADMIN)
def reassign_task(task_id):
    form = validate_request(ReassignForm())
    task = assignments.reassign_task(task_id, form.new_volunteer_id.data,
                                     admin_id=current_user.uid)
    return jsonify({
        'success': True,
        'message': 'Task reassigned successfully.',
        'task': task.to_dict()
    })


@app.route('/api/donations/reported-issues')
@login_required
@role_required(Role.ADMIN)
def reported_issues():
    return jsonify({'success': True, 'issues': assignments.list_reported_issues()})


@app.route('/api/donations/admin/orphaned-tasks')
@login_required
@role_required(Role.ADMIN)
def orphaned_tasks():
    return jsonify({'success': True, **assignments.orphan_report()})


@app.route('/api/donations/volunteer/<uid>/active-tasks')
@login_required
def volunteer_active_tasks(uid):
    ensure_self_or_admin(uid)
    tasks = assignments.volunteer_active_tasks(uid)
    return jsonify({'success': True, 'tasks': [t.to_dict() for t in tasks]})


@app.route('/api/donations/volunteer/<uid>/all-tasks')
@login_required
def volunteer_all_tasks(uid):
    ensure_self_or_admin(uid)
    tasks = assignments.volunteer_task_history(uid)
    return jsonify({'success': True, 'tasks': [t.to_dict() for t in tasks]})


@app.route('/api/donations/volunteer/<uid>/stats')
@login_required
def volunteer_stats(uid):
    ensure_self_or_admin(uid)
    return jsonify({'success': True, 'stats': assignments.volunteer_stats(uid)})


@app.route('/api/donations/tasks')
@login_required
@role_required(Role.VOLUNTEER)
def my_tasks():
    tasks = assignments.volunteer_active_tasks(current_user.uid)
    return jsonify({'success': True, 'tasks': [t.to_dict() for t in tasks]})


@app.route('/api/donations/volunteers')
@login_required
@role_required(Role.ADMIN)
def volunteers():
    ranked = assignments.rank_volunteers_by_proximity(_pickup_query())
    return jsonify({'success': True, 'volunteers': ranked})


@app.route('/api/donations/metrics')
@login_required
@role_required(Role.ADMIN)
def dashboard_metrics():
    return jsonify({'success': True, **metrics.dashboard_metrics()})


@app.route('/api/donations/<donation_id>')
@login_required
def get_donation(donation_id):
    donation = donations.get_donation(donation_id)
    if current_user.role == Role.DONOR and donation.donor_id != current_user.uid:
        raise NotFound('Donation not found.')
    return jsonify({'success': True, 'donation': donation.to_dict()})


# Users

@app.route('/api/users/register', methods=['POST'])
def register_user():
    # The caller has a valid token but may not have a user row yet
    uid = read_token(bearer_token(request))
    form = validate_request(RegisterForm())
    user = accounts.register_user(
        uid=uid,
        email=form.email.data,
        name=form.name.data,
        role=form.role.data,
        phone=form.phone.data,
        home_coords=form.home_coords.data,
        home_address=form.home_address.data,
        organization_name=form.organization_name.data,
    )
    return jsonify({
        'success': True,
        'message': 'User registered successfully',
        'user': user.to_dict()
    }), 201


@app.route('/api/users/')
@login_required
@role_required(Role.ADMIN)
def list_users():
    return jsonify({'success': True, 'users': [u.to_dict() for u in accounts.list_users()]})


@app.route('/api/users/leaderboard')
@login_required
def leaderboard():
    top = metrics.top_volunteers()
    return jsonify({'success': True, 'volunteers': [m.to_dict() for m in top]})


@app.route('/api/users/<uid>/metrics')
@login_required
def user_metrics(uid):
    ensure_self_or_admin(uid)
    return jsonify({'success': True, 'metrics': metrics.get_user_metrics(uid).to_dict()})


@app.route('/api/users/<uid>', methods=['PUT'])
@login_required
@role_required(Role.ADMIN)
def update_user(uid):
    form = validate_request(UserUpdateForm())
    user = accounts.update_user(uid, role=form.role.data, status=form.status.data)
    return jsonify({
        'success': True,
        'message': 'User updated successfully.',
        'user': user.to_dict()
    })


@app.route('/api/users/<uid>')
@login_required
def get_user(uid):
    ensure_self_or_admin(uid)
    user = accounts.get_user(uid)
    details = accounts.role_details(user)
    return jsonify({
        'success': True,
        'user': user.to_dict(),
        'roleDetails': details.to_dict() if details else None
    })


# Geocoding

@app.route('/api/geocoding/reverse', methods=['POST'])
@login_required
def reverse_geocode():
    form = validate_request(ReverseGeocodeForm())
    address = geocoding.reverse_geocode(form.lat.data, form.lng.data)
    return jsonify({'success': True, 'address': address})


@app.route('/api/geocoding/forward', methods=['POST'])
@login_required
def forward_geocode():
    form = validate_request(ForwardGeocodeForm())
    result = geocoding.forward_geocode(address=form.address.data, place_id=form.place_id.data)
    return jsonify({'success': True, **result})


@app.route('/api/geocoding/autocomplete', methods=['POST'])
@login_required
def autocomplete():
    form = validate_request(AutocompleteForm())
    return jsonify({'success': True, 'predictions': geocoding.autocomplete(form.text.data)})


# Error handlers

@app.errorhandler(LifecycleError)
def handle_lifecycle_error(error):
    if error.status_code >= 500:
        logger.error(f"{request.method} {request.path} failed: {error.kind}: {error.message}")
    else:
        logger.warning(f"{request.method} {request.path} rejected: {error.kind}: {error.message}")
    return jsonify(error.to_dict()), error.status_code


@app.errorhandler(SQLAlchemyError)
def handle_database_error(error):
    db.session.rollback()
    logger.error(f"Database error on {request.method} {request.path}: {str(error)}")
    failure = DependencyFailure('Database operation failed. Please try again.')
    return jsonify(failure.to_dict()), failure.status_code


@app.errorhandler(BadRequest)
def bad_request_error(error):
    logger.warning(f"{request.method} {request.path} bad request: {error.description}")
    return jsonify(ValidationError('Malformed request.').to_dict()), 400


@app.errorhandler(404)
def not_found_error(error):
    return jsonify(NotFound('Resource not found.').to_dict()), 404


@app.errorhandler(405)
def method_not_allowed_error(error):
    failure = ValidationError(f"Method {request.method} not allowed for {request.path}.")
    return jsonify(failure.to_dict()), 405


@app.errorhandler(500)
def internal_error(error):
    db.session.rollback()
    logger.error(f"Server Error: {str(error)}")
    return jsonify(DependencyFailure('Internal server error.').to_dict()), 500


if __name__ == '__main__':
    try:
        app.run(debug=app.config['DEBUG'])
    except Exception as e:
        logger.error(f"Application failed to start: {str(e)}")
