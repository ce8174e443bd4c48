from datetime import datetime, timezone

from flask_wtf import FlaskForm
from wtforms import Field, FloatField, StringField, TextAreaField
from wtforms.validators import (AnyOf, DataRequired, Email, Length, NumberRange, Optional,
                                StopValidation, ValidationError)

import errors
from models import Role


def _text(value):
    # JSON bodies may carry numbers where text is expected ("quantity": 10)
    return str(value).strip() if value is not None else value


def _present(form, field):
    if not field.raw_data or field.raw_data[0] in (None, ''):
        raise StopValidation('This field is required.')


class CoordinatesField(Field):
    """A ``[longitude, latitude]`` pair sent as a two element JSON array."""

    def process_formdata(self, valuelist):
        if not valuelist:
            return
        self.data = None
        if len(valuelist) != 2:
            raise ValueError('Coordinates must be [longitude, latitude].')
        try:
            lng, lat = (float(v) for v in valuelist)
        except (TypeError, ValueError):
            raise ValueError('Coordinates must be numbers.')
        if not (-180 <= lng <= 180 and -90 <= lat <= 90):
            raise ValueError('Coordinates are out of range.')
        self.data = [lng, lat]


class IsoDateTimeField(Field):
    """ISO 8601 timestamp; aware values are stored as naive UTC."""

    def process_formdata(self, valuelist):
        if not valuelist or valuelist[0] in (None, ''):
            return
        value = str(valuelist[0]).strip()
        if value.endswith('Z'):
            value = value[:-1] + '+00:00'
        try:
            parsed = datetime.fromisoformat(value)
        except ValueError:
            self.data = None
            raise ValueError('Not a valid ISO 8601 date-time.')
        if parsed.tzinfo is not None:
            parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
        self.data = parsed


def validate_request(form):
    """Validate a submitted form or raise a 400 with the field errors."""
    if not form.validate_on_submit():
        raise errors.ValidationError('Invalid request data.', details=form.errors)
    return form


class DonationForm(FlaskForm):
    item_type = StringField('Item Type', name='itemType', filters=[_text],
                            validators=[DataRequired(), Length(max=100)])
    quantity = StringField('Quantity', filters=[_text],
                           validators=[DataRequired(), Length(max=100)])
    pickup_address = StringField('Pickup Address', name='pickupAddress', filters=[_text],
                                 validators=[DataRequired(), Length(max=255)])
    pickup_coords = CoordinatesField('Pickup Coordinates', name='pickupCoords',
                                     validators=[DataRequired()])
    availability_time = IsoDateTimeField('Availability Time', name='availabilityTime',
                                         validators=[DataRequired()])
    notes = TextAreaField('Notes', filters=[_text], validators=[Optional()])


class AssignCollectionForm(FlaskForm):
    volunteer_id = StringField('Volunteer', name='volunteerId', filters=[_text],
                               validators=[DataRequired(message='Volunteer ID is required.')])


class AssignDistributionForm(FlaskForm):
    volunteer_id = StringField('Volunteer', name='volunteerId', filters=[_text],
                               validators=[DataRequired(message='Volunteer ID is required.')])
    location_id = StringField('Drop-off Location', name='locationId', filters=[_text],
                              validators=[DataRequired(message='Drop-off location is required.')])


class TaskStatusForm(FlaskForm):
    new_status = StringField('New Status', name='status', filters=[_text],
                             validators=[DataRequired(message='Invalid or missing new status.')])


class IssueReportForm(FlaskForm):
    notes = TextAreaField('Issue Notes', name='issueNotes', filters=[_text],
                          validators=[DataRequired(message='Issue notes are required.')])


class ReassignForm(FlaskForm):
    new_volunteer_id = StringField('New Volunteer', name='newVolunteerId', filters=[_text],
                                   validators=[DataRequired(message='New volunteer ID is required.')])


class RegisterForm(FlaskForm):
    email = StringField('Email', filters=[_text], validators=[DataRequired(), Email()])
    name = StringField('Full Name', filters=[_text], validators=[DataRequired(), Length(max=100)])
    role = StringField('Role', filters=[_text], validators=[
        DataRequired(),
        AnyOf([Role.DONOR.value, Role.VOLUNTEER.value],
              message='Role must be Donor or Volunteer.'),
    ])
    phone = StringField('Phone', filters=[_text], validators=[Optional(), Length(max=30)])
    home_coords = CoordinatesField('Home Coordinates', name='homeCoords', validators=[Optional()])
    home_address = StringField('Home Address', name='homeAddress', filters=[_text],
                               validators=[Optional(), Length(max=255)])
    organization_name = StringField('Organization', name='organizationName', filters=[_text],
                                    validators=[Optional(), Length(max=120)])

    def validate_home_address(self, field):
        if field.data and not self.home_coords.data:
            raise ValidationError('Home address needs home coordinates')


class UserUpdateForm(FlaskForm):
    role = StringField('Role', filters=[_text],
                       validators=[Optional(), AnyOf([r.value for r in Role])])
    status = StringField('Status', filters=[_text],
                         validators=[Optional(), AnyOf(['active', 'inactive'])])


class ReverseGeocodeForm(FlaskForm):
    lat = FloatField('Latitude', validators=[_present, NumberRange(min=-90, max=90)])
    lng = FloatField('Longitude', validators=[_present, NumberRange(min=-180, max=180)])


class ForwardGeocodeForm(FlaskForm):
    address = StringField('Address', filters=[_text])
    place_id = StringField('Place ID', name='placeId', filters=[_text], validators=[Optional()])

    def validate_address(self, field):
        if not field.data and not self.place_id.data:
            raise ValidationError('Address string or Place ID is required for forward geocoding.')


class AutocompleteForm(FlaskForm):
    text = StringField('Input', name='input', filters=[_text],
                       validators=[DataRequired(message='Input string is required for autocomplete.')])
