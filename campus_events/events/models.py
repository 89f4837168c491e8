"""Event models - the fields of an event that duplicate detection scores."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from ..errors import InvalidCandidate


class EventCategory(str, Enum):
    """Closed set of event categories."""
    TECHNOLOGY = "technology"
    CULTURAL = "cultural"
    SPORTS = "sports"
    ACADEMIC = "academic"
    SOCIAL = "social"
    ARTS = "arts"
    MUSIC = "music"
    BUSINESS = "business"


class EventStatus(str, Enum):
    """Lifecycle status of a stored event."""
    DRAFT = "draft"
    PUBLISHED = "published"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


# Only events that can still happen are compared against a candidate
DUPLICATE_CHECK_STATUSES = (EventStatus.DRAFT, EventStatus.PUBLISHED)


@dataclass
class Coordinates:
    """Geographic position of a venue."""
    latitude: float
    longitude: float


@dataclass
class Address:
    """Street address of a venue."""
    street: str | None = None
    city: str | None = None

    def as_text(self) -> str:
        return f"{self.street or ''} {self.city or ''}"


@dataclass
class Venue:
    """Where an event takes place."""
    name: str
    address: Address | None = None
    coordinates: Coordinates | None = None


@dataclass
class EventCandidate:
    """An event draft, update or stored event being compared for duplication."""
    title: str
    description: str
    category: EventCategory
    venue: Venue
    start: datetime
    organizer_id: str | None = None
    event_id: str | None = None
    status: EventStatus | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "EventCandidate":
        """Build a candidate from a plain JSON-shaped event record.

        Accepts both API payloads and stored documents:
        ``{title, description, category, venue: {name, address, coordinates},
        dateTime: {start}, organizer | organizerId, _id | id, status}``.

        Raises:
            InvalidCandidate: If a required field is missing or malformed
        """
        if not isinstance(record, dict):
            raise InvalidCandidate("Event record must be a mapping")

        venue_data = record.get("venue") or {}
        date_data = record.get("dateTime") or {}

        missing = []
        if not record.get("title"):
            missing.append("title")
        if not record.get("description"):
            missing.append("description")
        if not record.get("category"):
            missing.append("category")
        if not isinstance(venue_data, dict) or not venue_data.get("name"):
            missing.append("venue.name")
        if not isinstance(date_data, dict) or not date_data.get("start"):
            missing.append("dateTime.start")
        if missing:
            raise InvalidCandidate(
                f"Event is missing required fields: {', '.join(missing)}",
                missing_fields=missing,
            )

        try:
            category = EventCategory(str(record["category"]).lower())
        except ValueError as e:
            raise InvalidCandidate(f"Unknown event category: {record['category']!r}") from e

        status = record.get("status")
        try:
            status = EventStatus(status) if status else None
        except ValueError as e:
            raise InvalidCandidate(f"Unknown event status: {status!r}") from e

        event_id = record.get("_id", record.get("id"))

        return cls(
            title=str(record["title"]),
            description=str(record["description"]),
            category=category,
            venue=_parse_venue(venue_data),
            start=parse_timestamp(date_data["start"]),
            organizer_id=_identity(record.get("organizer", record.get("organizerId"))),
            event_id=str(event_id) if event_id is not None else None,
            status=status,
            extra={
                k: v for k, v in record.items()
                if k not in _KNOWN_FIELDS
            },
        )

    def to_record(self) -> dict[str, Any]:
        """Serialize back to the JSON-shaped record format."""
        venue: dict[str, Any] = {"name": self.venue.name}
        if self.venue.address is not None:
            venue["address"] = {
                "street": self.venue.address.street,
                "city": self.venue.address.city,
            }
        if self.venue.coordinates is not None:
            venue["coordinates"] = {
                "latitude": self.venue.coordinates.latitude,
                "longitude": self.venue.coordinates.longitude,
            }

        record: dict[str, Any] = {
            **self.extra,
            "title": self.title,
            "description": self.description,
            "category": self.category.value,
            "venue": venue,
            "dateTime": {"start": self.start.isoformat()},
            "organizer": self.organizer_id,
        }
        if self.event_id is not None:
            record["_id"] = self.event_id
        if self.status is not None:
            record["status"] = self.status.value
        return record


_KNOWN_FIELDS = {
    "title", "description", "category", "venue", "organizer", "organizerId",
    "_id", "id", "status", "dateTime",
}


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO-8601 string or datetime into an aware UTC datetime."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as e:
            raise InvalidCandidate(f"Invalid start timestamp: {value!r}") from e
    else:
        raise InvalidCandidate(f"Invalid start timestamp: {value!r}")

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _identity(value: Any) -> str | None:
    """Reduce an organizer reference (id or populated document) to its id."""
    if value is None:
        return None
    if isinstance(value, dict):
        value = value.get("_id", value.get("id"))
        if value is None:
            return None
    return str(value)


def _parse_venue(data: dict[str, Any]) -> Venue:
    address = None
    address_data = data.get("address")
    if isinstance(address_data, dict):
        address = Address(
            street=address_data.get("street"),
            city=address_data.get("city"),
        )

    coordinates = None
    coord_data = data.get("coordinates")
    if isinstance(coord_data, dict):
        lat = coord_data.get("latitude")
        lon = coord_data.get("longitude")
        if lat is not None and lon is not None:
            try:
                coordinates = Coordinates(latitude=float(lat), longitude=float(lon))
            except (TypeError, ValueError, OverflowError) as e:
                raise InvalidCandidate(f"Invalid venue coordinates: {coord_data!r}") from e

    return Venue(name=str(data["name"]), address=address, coordinates=coordinates)
