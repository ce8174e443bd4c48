from math import atan2, cos, inf, radians, sin, sqrt

EARTH_RADIUS_KM = 6371


def haversine_km(origin, destination):
    """Great-circle distance in km between two [longitude, latitude] points."""
    lng1, lat1 = origin
    lng2, lat2 = destination
    d_lat = radians(lat2 - lat1)
    d_lng = radians(lng2 - lng1)
    a = sin(d_lat / 2) ** 2 + cos(radians(lat1)) * cos(radians(lat2)) * sin(d_lng / 2) ** 2
    c = 2 * atan2(sqrt(a), sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def rank_by_proximity(pickup, candidates, location_of=lambda c: c.home_location):
    """Order *candidates* nearest first relative to *pickup*.

    Returns ``(candidate, distance_km)`` pairs; candidates without a home
    point come last with a distance of ``None``.  The sort is stable, so equal
    distances keep their input order.
    """
    ranked = []
    for candidate in candidates:
        home = location_of(candidate)
        distance = haversine_km(home, pickup) if home else inf
        ranked.append((candidate, distance))
    ranked.sort(key=lambda pair: pair[1])
    return [(candidate, None if distance == inf else round(distance, 3))
            for candidate, distance in ranked]
