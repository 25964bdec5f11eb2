"""Data models for Foresters event processing."""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


def _as_bool(value: Any) -> bool:
    """Read a JSON flag that may arrive as a bool, a number or a string."""
    if isinstance(value, str):
        return value.strip().lower() in ('true', '1', 'yes')
    return bool(value)


@dataclass
class Building:
    """Venue of an event. Only the name is always present."""
    name: str
    addressLine1: Optional[str] = None
    city: Optional[str] = None
    stateProvince: Optional[str] = None
    postalCode: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'Building':
        """Build a Building from the API's building object."""
        if not isinstance(data, dict):
            data = {}
        return cls(
            name=data.get('name') or '',
            addressLine1=data.get('addressLine1'),
            city=data.get('city'),
            stateProvince=data.get('stateProvince'),
            postalCode=data.get('postalCode')
        )

    def address_parts(self) -> List[str]:
        """Return the non-empty address fields in display order."""
        parts = [
            self.name,
            self.addressLine1,
            self.city,
            self.stateProvince,
            self.postalCode
        ]
        return [part for part in parts if part]


@dataclass
class ForestersEvent:
    """One activity returned by the Foresters events API.

    ``raw`` holds the complete source object so that fields this model does
    not know about survive a round trip through the store.
    """
    eventId: str
    eventName: str
    description: str
    startDate: str
    endDate: str
    building: Building
    registrationCount: int = 0
    openSpotsleft: int = 0
    activityFull: bool = False
    image_url: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict, repr=False, compare=False)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ForestersEvent':
        """
        Build an event from an API or store record.

        Args:
            data: Event object as decoded from JSON

        Returns:
            ForestersEvent wrapping a copy of the record

        Raises:
            KeyError: If the record has no eventId
        """
        image = data.get('image') or {}
        return cls(
            eventId=str(data['eventId']),
            eventName=data.get('eventName') or '',
            description=data.get('description') or '',
            startDate=data.get('startDate') or '',
            endDate=data.get('endDate') or '',
            building=Building.from_dict(data.get('building')),
            registrationCount=int(data.get('registrationCount') or 0),
            openSpotsleft=int(data.get('openSpotsleft') or 0),
            activityFull=_as_bool(data.get('activityFull')),
            image_url=image.get('eventcardimage') if isinstance(image, dict) else None,
            raw=dict(data)
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize back to the source record shape."""
        if self.raw:
            return dict(self.raw)
        data = {
            'eventId': self.eventId,
            'eventName': self.eventName,
            'description': self.description,
            'startDate': self.startDate,
            'endDate': self.endDate,
            'building': {
                key: value
                for key, value in vars(self.building).items()
                if value is not None
            },
            'registrationCount': self.registrationCount,
            'openSpotsleft': self.openSpotsleft,
            'activityFull': self.activityFull
        }
        if self.image_url:
            data['image'] = {'eventcardimage': self.image_url}
        return data


@dataclass
class EventsData:
    """Persisted store document."""
    lastUpdated: str
    events: List[ForestersEvent]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'lastUpdated': self.lastUpdated,
            'events': [event.to_dict() for event in self.events]
        }


@dataclass
class LoadResult:
    """Result of reading the store."""
    data: EventsData
    recovered: bool = False
    error: Optional[str] = None


@dataclass
class SaveResult:
    """Result of writing the store."""
    saved: bool
    path: str
    error: Optional[str] = None


@dataclass
class NotificationResult:
    """Result of a notification attempt."""
    sent: bool
    recipients: List[str] = field(default_factory=list)
    subject: Optional[str] = None
    skipped_reason: Optional[str] = None
    error: Optional[str] = None


@dataclass
class CheckResult:
    """Summary of one monitor run."""
    fetched: int
    active: int
    expired: int
    expired_from_store: int
    new_events: List[ForestersEvent]
    stored: int
    store_action: str
    notification: Optional[NotificationResult] = None
    save: Optional[SaveResult] = None
