import math
from typing import Dict, Iterable, List, NamedTuple, Optional, Tuple

from pydantic import BaseModel

from ..models.schemas import Member

EARTH_RADIUS_KM = 6371.0

DEFAULT_LOCATION_WARNING = (
    "Location access denied. Using a default location. "
    "Enable permissions for accurate routing."
)
UNCATEGORIZED_CITY = "Uncategorized"

# Plus-Code style digipin
DIGIPIN_ALPHABET = "23456789CFGHJMPQRVWX"
DIGIPIN_SEPARATOR = "+"
DIGIPIN_SEPARATOR_POSITION = 8
DIGIPIN_PAIRS = 5
# 1/8000 of a degree, the resolution of a 10-digit code
DIGIPIN_GRID = 20 ** 3
# An 11th digit splits the 10-digit cell into 5 rows by 4 columns
DIGIPIN_GRID_ROWS = 5
DIGIPIN_GRID_COLUMNS = 4


class GeoPoint(NamedTuple):
    lat: float
    lng: float


def haversine_km(a: GeoPoint, b: GeoPoint) -> float:
    d_lat = math.radians(b.lat - a.lat)
    d_lng = math.radians(b.lng - a.lng)
    h = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(a.lat)) * math.cos(math.radians(b.lat)) * math.sin(d_lng / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def encode_digipin(lat: float, lng: float, refined: bool = False) -> str:
    """Encode a point as a 10-digit digipin, or 11 digits when refined."""
    lat = min(max(lat, -90.0), 90.0)
    lng = ((lng + 180.0) % 360.0) - 180.0
    lat_fine = min(
        math.floor((lat + 90.0) * DIGIPIN_GRID * DIGIPIN_GRID_ROWS),
        180 * DIGIPIN_GRID * DIGIPIN_GRID_ROWS - 1,
    )
    lng_fine = math.floor((lng + 180.0) * DIGIPIN_GRID * DIGIPIN_GRID_COLUMNS)
    lat_units, row = divmod(lat_fine, DIGIPIN_GRID_ROWS)
    lng_units, column = divmod(lng_fine, DIGIPIN_GRID_COLUMNS)

    pairs = []
    for _ in range(DIGIPIN_PAIRS):
        pairs.append(DIGIPIN_ALPHABET[lat_units % 20] + DIGIPIN_ALPHABET[lng_units % 20])
        lat_units //= 20
        lng_units //= 20
    digits = "".join(reversed(pairs))
    if refined:
        digits += DIGIPIN_ALPHABET[row * DIGIPIN_GRID_COLUMNS + column]
    return digits[:DIGIPIN_SEPARATOR_POSITION] + DIGIPIN_SEPARATOR + digits[DIGIPIN_SEPARATOR_POSITION:]


def decode_digipin(code: Optional[str]) -> Optional[GeoPoint]:
    """Return the centre of the area a digipin covers, or None if it is malformed.

    Accepts 8, 10 or 11 digits. The 11th digit picks one cell of a
    5 x 4 grid laid over the 10-digit area.
    """
    if not code:
        return None
    code = code.strip().upper()
    if code.find(DIGIPIN_SEPARATOR) != DIGIPIN_SEPARATOR_POSITION:
        return None
    digits = code.replace(DIGIPIN_SEPARATOR, "")
    if len(digits) not in (8, 10, 11) or any(c not in DIGIPIN_ALPHABET for c in digits):
        return None

    pair_digits, grid_digit = digits[:DIGIPIN_PAIRS * 2], digits[DIGIPIN_PAIRS * 2:]
    lat_units = lng_units = 0
    for i in range(0, len(pair_digits), 2):
        lat_units = lat_units * 20 + DIGIPIN_ALPHABET.index(pair_digits[i])
        lng_units = lng_units * 20 + DIGIPIN_ALPHABET.index(pair_digits[i + 1])

    resolution = 20.0 / 20 ** (len(pair_digits) // 2 - 1)
    lat_south = lat_units * resolution - 90.0
    lng_west = lng_units * resolution - 180.0
    lat_size = lng_size = resolution
    if grid_digit:
        row, column = divmod(DIGIPIN_ALPHABET.index(grid_digit), DIGIPIN_GRID_COLUMNS)
        lat_size = resolution / DIGIPIN_GRID_ROWS
        lng_size = resolution / DIGIPIN_GRID_COLUMNS
        lat_south += row * lat_size
        lng_west += column * lng_size

    lat = lat_south + lat_size / 2
    lng = lng_west + lng_size / 2
    if not (-90.0 <= lat <= 90.0 and -180.0 <= lng <= 180.0):
        return None
    return GeoPoint(lat, lng)


def member_coordinates(member: Member) -> Optional[GeoPoint]:
    if member.lat is not None and member.lng is not None:
        return GeoPoint(member.lat, member.lng)
    return decode_digipin(member.digipin)


def resolve_origin(
    location: Optional[GeoPoint],
    default: GeoPoint = GeoPoint(20.5937, 78.9629),
) -> Tuple[GeoPoint, Optional[str]]:
    """Caller's location, or the default with a warning when it was not shared."""
    if location is None:
        return default, DEFAULT_LOCATION_WARNING
    return location, None


class CustomerDistance(BaseModel):
    member_id: str
    name: str
    city: str
    lat: float
    lng: float
    distance_km: float


def customers_by_distance(members: Iterable[Member], origin: Optional[GeoPoint]) -> List[CustomerDistance]:
    """Members with known coordinates, nearest first.

    Without an origin the list is alphabetical and distances are -1.
    """
    rows = []
    for member in members:
        point = member_coordinates(member)
        if point is None:
            continue
        distance = haversine_km(origin, point) if origin is not None else -1.0
        rows.append(CustomerDistance(
            member_id=member.id,
            name=member.name,
            city=member.city,
            lat=point.lat,
            lng=point.lng,
            distance_km=distance,
        ))
    if origin is None:
        return sorted(rows, key=lambda r: r.name.lower())
    return sorted(rows, key=lambda r: r.distance_km)


def group_by_city(rows: Iterable[CustomerDistance]) -> Dict[str, List[CustomerDistance]]:
    groups: Dict[str, List[CustomerDistance]] = {}
    for row in rows:
        groups.setdefault(row.city.strip() or UNCATEGORIZED_CITY, []).append(row)
    return groups


def nearest_neighbour_order(origin: GeoPoint, points: Dict[str, GeoPoint]) -> List[str]:
    """Greedy visiting order starting from origin."""
    remaining = dict(points)
    order = []
    current = origin
    while remaining:
        next_id = min(remaining, key=lambda pid: haversine_km(current, remaining[pid]))
        order.append(next_id)
        current = remaining.pop(next_id)
    return order
