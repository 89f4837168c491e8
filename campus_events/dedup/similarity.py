"""Similarity Scorer - Normalized [0, 1] field similarities for event pairs.

Short text (titles, venue names), long text (descriptions), start-date
proximity and venue proximity. Every function is pure and symmetric in its
two arguments.
"""

import math
import re
from datetime import datetime

from ..events.models import Venue

EARTH_RADIUS_KM = 6371.0
SECONDS_PER_DAY = 86400

# Weights of the combined text score
LEVENSHTEIN_WEIGHT = 0.6
JACCARD_WEIGHT = 0.4

# Weights of the venue score. Missing coordinates or addresses contribute 0
# and their weight is not redistributed.
VENUE_NAME_WEIGHT = 0.5
VENUE_GEO_WEIGHT = 0.3
VENUE_ADDRESS_WEIGHT = 0.2

MIN_TOKEN_LENGTH = 3

_NON_WORD = re.compile(r"[^\w\s]|_")


def normalize_text(text: str) -> str:
    """Lowercase, trim and strip everything but letters, digits and whitespace."""
    return _NON_WORD.sub("", text.lower().strip())


def levenshtein_distance(a: str, b: str) -> int:
    """Edit distance with unit cost substitution, insertion and deletion."""
    if len(a) < len(b):
        a, b = b, a
    if not b:
        return len(a)

    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i]
        for j, char_b in enumerate(b, start=1):
            if char_a == char_b:
                current.append(previous[j - 1])
            else:
                current.append(min(
                    previous[j - 1] + 1,  # substitution
                    current[j - 1] + 1,   # insertion
                    previous[j] + 1,      # deletion
                ))
        previous = current

    return previous[-1]


def text_similarity(a: str | None, b: str | None) -> float:
    """Normalized Levenshtein similarity."""
    if a is None or b is None:
        return 0.0

    norm_a = normalize_text(a)
    norm_b = normalize_text(b)
    if norm_a == norm_b:
        return 1.0

    max_length = max(len(norm_a), len(norm_b))
    return 1.0 - levenshtein_distance(norm_a, norm_b) / max_length


def word_set_similarity(a: str | None, b: str | None) -> float:
    """Jaccard similarity of the words longer than two characters."""
    if a is None or b is None:
        return 0.0

    words_a = {w for w in a.lower().split() if len(w) >= MIN_TOKEN_LENGTH}
    words_b = {w for w in b.lower().split() if len(w) >= MIN_TOKEN_LENGTH}

    union = words_a | words_b
    if not union:
        return 0.0
    return len(words_a & words_b) / len(union)


def combined_text_similarity(a: str | None, b: str | None) -> float:
    """Blend of edit-distance and word-overlap similarity."""
    return (
        LEVENSHTEIN_WEIGHT * text_similarity(a, b)
        + JACCARD_WEIGHT * word_set_similarity(a, b)
    )


def date_proximity(start_a: datetime, start_b: datetime, window_days: int = 7) -> float:
    """Score how close two start instants are, in whole days rounded up."""
    seconds = abs((start_a - start_b).total_seconds())
    days = math.ceil(seconds / SECONDS_PER_DAY)

    if days == 0:
        return 1.0
    if days > window_days:
        return 0.0
    return 1.0 - days / window_days


def haversine_distance_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance between two points in kilometers."""
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)

    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2))
        * math.sin(d_lon / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def venue_proximity(venue_a: Venue, venue_b: Venue, radius_km: float = 5.0) -> float:
    """Score venue sameness from name, coordinates and street address."""
    name_similarity = combined_text_similarity(venue_a.name, venue_b.name)

    geo_proximity = 0.0
    if venue_a.coordinates is not None and venue_b.coordinates is not None:
        distance = haversine_distance_km(
            venue_a.coordinates.latitude, venue_a.coordinates.longitude,
            venue_b.coordinates.latitude, venue_b.coordinates.longitude,
        )
        if distance <= radius_km:
            geo_proximity = 1.0 - distance / radius_km

    address_similarity = 0.0
    if venue_a.address is not None and venue_b.address is not None:
        address_similarity = combined_text_similarity(
            venue_a.address.as_text(), venue_b.address.as_text()
        )

    return (
        VENUE_NAME_WEIGHT * name_similarity
        + VENUE_GEO_WEIGHT * geo_proximity
        + VENUE_ADDRESS_WEIGHT * address_similarity
    )
