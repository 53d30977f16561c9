"""
Device <-> need compatibility scoring.

Scores are integers in 0..100 built from type compatibility, the need's
priority and an optional proximity bonus.  A device in worse condition than
the need's minimum is filtered out of rankings rather than scored low.
"""
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional, Sequence

from models import Device, Need, User, as_utc

Coords = tuple[float, float]

EARTH_RADIUS_KM = 6371.0

CONDITION_RANK = {"used-fair": 1, "used-good": 2, "new": 3}

EXACT_TYPE_POINTS = 60
GROUP_TYPE_POINTS = 40

SYNONYM_GROUPS: Sequence[tuple[str, Sequence[str]]] = (
    ("laptop", ("laptop", "notebook", "macbook", "thinkpad")),
    ("desktop", ("desktop", "pc", "computer", "tower")),
    ("tablet", ("tablet", "ipad", "surface")),
    ("phone", ("phone", "smartphone", "mobile")),
)

PRIORITY_POINTS = {"urgent": 20, "high": 15, "medium": 10, "low": 5}

# (max distance in km, bonus); farther than the last band earns nothing.
DISTANCE_BANDS: Sequence[tuple[float, int]] = ((10.0, 10), (50.0, 5), (100.0, 2))


@dataclass
class MatchCandidate:
    device: Device
    need: Need
    score: int
    distance_km: Optional[float] = None


def haversine_km(a: Coords, b: Coords) -> float:
    lat1, lon1 = map(math.radians, a)
    lat2, lon2 = map(math.radians, b)
    dlat = lat2 - lat1
    dlon = lon2 - lon1
    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def coords_of(obj) -> Optional[Coords]:
    """(latitude, longitude) of anything carrying both, else None."""
    lat = getattr(obj, "latitude", None)
    lon = getattr(obj, "longitude", None)
    if lat is None or lon is None:
        return None
    return float(lat), float(lon)


def distance_between(a: Optional[Coords], b: Optional[Coords]) -> Optional[float]:
    if a is None or b is None:
        return None
    return haversine_km(a, b)


def synonym_groups(label: Optional[str]) -> set[str]:
    if not label:
        return set()
    lowered = label.lower()
    return {
        group
        for group, keywords in SYNONYM_GROUPS
        if any(keyword in lowered for keyword in keywords)
    }


def type_points(device_type: Optional[str], need_type: Optional[str]) -> int:
    if not device_type or not need_type:
        return 0
    if device_type.strip().lower() == need_type.strip().lower():
        return EXACT_TYPE_POINTS
    if synonym_groups(device_type) & synonym_groups(need_type):
        return GROUP_TYPE_POINTS
    return 0


def priority_points(priority: Optional[str]) -> int:
    return PRIORITY_POINTS.get(priority or "", 0)


def distance_points(distance_km: Optional[float]) -> int:
    if distance_km is None:
        return 0
    for limit, points in DISTANCE_BANDS:
        if distance_km <= limit:
            return points
    return 0


def meets_min_condition(device, need) -> bool:
    """False only when the need sets a minimum the device is strictly below."""
    minimum = CONDITION_RANK.get(getattr(need, "min_condition", None) or "")
    if minimum is None:
        return True
    # Unknown device conditions rank as the lowest grade.
    return CONDITION_RANK.get(getattr(device, "condition", None) or "", 1) >= minimum


def score(device, need, distance_km: Optional[float] = None) -> int:
    total = type_points(getattr(device, "device_type", None), getattr(need, "device_type", None))
    total += priority_points(getattr(need, "priority", None))
    total += distance_points(distance_km)
    return max(0, min(100, total))


def _created(obj) -> datetime:
    created = getattr(obj, "created_at", None)
    return as_utc(created) if created else datetime.min.replace(tzinfo=timezone.utc)


def rank(candidates: Iterable[MatchCandidate]) -> list[MatchCandidate]:
    """
    Drop candidates failing the minimum-condition filter and sort the rest by
    score, newest device then newest need first on ties.
    """
    eligible = [c for c in candidates if meets_min_condition(c.device, c.need)]
    return sorted(
        eligible,
        key=lambda c: (c.score, _created(c.device), _created(c.need)),
        reverse=True,
    )


def score_need(
    need: Need,
    devices: Iterable[Device],
    school_location: Optional[Coords] = None,
    locate: Callable[[Device], Optional[Coords]] = coords_of,
    limit: Optional[int] = None,
) -> list[MatchCandidate]:
    """Rank candidate devices for one need."""
    candidates = []
    for device in devices:
        distance = distance_between(locate(device), school_location)
        candidates.append(MatchCandidate(device, need, score(device, need, distance), distance))
    ranked = rank(candidates)
    return ranked[:limit] if limit is not None else ranked


def score_device(
    device: Device,
    schools_with_needs: Iterable[tuple[User, Sequence[Need]]],
    device_location: Optional[Coords] = None,
    limit: Optional[int] = None,
) -> list[MatchCandidate]:
    """
    Rank schools for one device.  Each school is represented by its
    best-scoring eligible need; schools with none are left out.
    """
    if device_location is None:
        device_location = coords_of(device)

    best_per_school = []
    for school, needs in schools_with_needs:
        distance = distance_between(device_location, coords_of(school))
        best = None
        for need in needs:
            if not meets_min_condition(device, need):
                continue
            points = score(device, need, distance)
            if best is None or points > best.score:
                best = MatchCandidate(device, need, points, distance)
        if best is not None:
            best_per_school.append(best)

    ranked = rank(best_per_school)
    return ranked[:limit] if limit is not None else ranked
