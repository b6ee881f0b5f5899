"""
Haversine distance for nearby-stop queries and Google encoded polyline decoding for route shapes.
"""
import math

# Earth radius in km (WGS84 approximate)
EARTH_RADIUS_KM = 6371.0
POLYLINE_PRECISION = 1e5


def haversine_distance_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """
    Return great-circle distance between two points in kilometers.
    Arguments in degrees.
    """
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    dlat = math.radians(lat2 - lat1)
    dlng = math.radians(lng2 - lng1)
    a = math.sin(dlat / 2) ** 2 + math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(dlng / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def haversine_distance_m(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Return great-circle distance in meters. Arguments in degrees."""
    return haversine_distance_km(lat1, lng1, lat2, lng2) * 1000.0


def _read_varint(encoded: str, index: int) -> tuple[int, int]:
    result = shift = 0
    while True:
        b = ord(encoded[index]) - 63
        index += 1
        result |= (b & 0x1F) << shift
        shift += 5
        if b < 0x20:
            break
    delta = ~(result >> 1) if result & 1 else result >> 1
    return delta, index


def decode_polyline(encoded: str) -> list[dict[str, float]]:
    """Decode a Google encoded polyline into [{lat, lng}, ...]. Truncated input yields the points read so far."""
    points: list[dict[str, float]] = []
    index = lat = lng = 0
    while index < len(encoded):
        try:
            dlat, index = _read_varint(encoded, index)
            dlng, index = _read_varint(encoded, index)
        except IndexError:
            break
        lat += dlat
        lng += dlng
        points.append({"lat": lat / POLYLINE_PRECISION, "lng": lng / POLYLINE_PRECISION})
    return points
