"""Event processor for parsing, expiry pruning and new-event detection."""
import logging
from datetime import datetime, timezone
from typing import Any, Iterable, List, Optional

from dateutil import parser as dp

from processor.models import ForestersEvent

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def timestamp(now: Optional[datetime] = None) -> str:
    """Format a time as ISO-8601 UTC with milliseconds, e.g. 2024-06-15T09:30:00.000Z."""
    now = now or utc_now()
    return now.astimezone(timezone.utc).isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 timestamp into an aware UTC datetime.

    A trailing ``Z`` and fractions of any length are accepted. Naive
    timestamps are read as UTC.

    Args:
        value: Timestamp string from the API or the store

    Returns:
        Aware datetime, or None if the value is empty or malformed
    """
    if not value or not isinstance(value, str):
        return None
    try:
        parsed = dp.isoparse(value.strip())
    except (ValueError, OverflowError):
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


class EventProcessor:
    """Processor for raw Foresters events."""

    def process_events(self, raw_items: Iterable[Any]) -> List[ForestersEvent]:
        """
        Convert the API's JSON array into ForestersEvent objects.

        Items that are not objects or have no eventId are skipped.

        Args:
            raw_items: Decoded JSON array from the events API

        Returns:
            List of ForestersEvent objects in source order
        """
        events = []
        total = 0

        for item in raw_items:
            total += 1
            if not isinstance(item, dict):
                logger.warning(f"Skipping non-object event record: {item!r}")
                continue
            if not item.get('eventId'):
                logger.warning(
                    f"Skipping event without eventId: {item.get('eventName', '?')}"
                )
                continue
            try:
                events.append(ForestersEvent.from_dict(item))
            except (AttributeError, TypeError, ValueError) as e:
                logger.warning(
                    f"Failed to process event '{item.get('eventId')}': {e}"
                )
                continue

        logger.info(f"Processed {len(events)} valid events out of {total} records")
        return events

    def is_expired(self, event: ForestersEvent, now: datetime) -> bool:
        """
        Check whether an event has already ended.

        An event whose endDate is missing or malformed counts as active.

        Args:
            event: Event to check
            now: Current time (aware UTC)

        Returns:
            True if the event's end is strictly before now
        """
        end = parse_timestamp(event.endDate)
        if end is None:
            logger.warning(
                f"Event '{event.eventId}' has an unreadable endDate "
                f"{event.endDate!r}; treating it as active"
            )
            return False
        return end < now

    def prune_expired(self, events: List[ForestersEvent],
                      now: datetime) -> List[ForestersEvent]:
        """Return the events that have not ended yet, in their original order."""
        return [event for event in events if not self.is_expired(event, now)]

    def find_new(self, current: List[ForestersEvent],
                 existing: List[ForestersEvent]) -> List[ForestersEvent]:
        """
        Find events in ``current`` whose eventId is absent from ``existing``.

        Duplicate ids inside ``current`` are all reported.

        Args:
            current: Freshly fetched events
            existing: Previously stored events

        Returns:
            New events in the order they appear in ``current``
        """
        existing_ids = {event.eventId for event in existing}
        new_events = [
            event for event in current
            if event.eventId not in existing_ids
        ]

        new_ids = [event.eventId for event in new_events]
        if len(new_ids) != len(set(new_ids)):
            logger.debug("Incoming batch contains duplicate eventIds among new events")

        return new_events
