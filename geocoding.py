"""Thin client for the Google Geocoding and Places Autocomplete APIs.

Coordinates go out as ``[longitude, latitude]`` like everywhere else in the
app, even though Google answers with ``{lat, lng}``.
"""
import logging

import requests
from flask import current_app

from errors import DependencyFailure, NotFound, ValidationError

logger = logging.getLogger(__name__)

GEOCODE_URL = 'https://maps.googleapis.com/maps/api/geocode/json'
AUTOCOMPLETE_URL = 'https://maps.googleapis.com/maps/api/place/autocomplete/json'

OK_STATUSES = ('OK', 'ZERO_RESULTS')


def _call(url, params):
    api_key = current_app.config.get('GEOCODING_API_KEY')
    if not api_key:
        raise DependencyFailure('Geocoding service is not configured.')
    try:
        response = requests.get(url, params={**params, 'key': api_key},
                                timeout=current_app.config['GEOCODING_TIMEOUT'])
        response.raise_for_status()
        payload = response.json()
    except (requests.RequestException, ValueError) as e:
        logger.error(f"Geocoding request failed: {str(e)}")
        raise DependencyFailure('External API service failed.')

    status = payload.get('status')
    if status not in OK_STATUSES:
        logger.error(f"Geocoding provider returned {status}: {payload.get('error_message')}")
        raise DependencyFailure(f"Geocoding provider error: {status}")
    return payload


def reverse_geocode(lat, lng):
    if lat is None or lng is None:
        raise ValidationError('Latitude and longitude are required.')
    results = _call(GEOCODE_URL, {'latlng': f"{lat},{lng}"}).get('results') or []
    if not results:
        raise NotFound('No address found for these coordinates.')
    return results[0]['formatted_address']


def forward_geocode(address=None, place_id=None):
    if not address and not place_id:
        raise ValidationError('Address string or Place ID is required for forward geocoding.')
    params = {'place_id': place_id} if place_id else {'address': address}
    results = _call(GEOCODE_URL, params).get('results') or []
    if not results:
        raise NotFound('Could not find coordinates for the provided address.')
    location = results[0]['geometry']['location']
    return {
        'coordinates': [location['lng'], location['lat']],
        'formattedAddress': results[0].get('formatted_address'),
    }


def autocomplete(text):
    if not text:
        raise ValidationError('Input string is required for autocomplete.')
    predictions = _call(AUTOCOMPLETE_URL, {'input': text}).get('predictions') or []
    return [
        {'description': p.get('description'), 'placeId': p.get('place_id')}
        for p in predictions
    ]
