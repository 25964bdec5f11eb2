"""JSON file store for previously seen Foresters events."""
import json
import logging
import os
import shutil
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Optional

from processor.event_processor import timestamp, utc_now
from processor.exceptions import PersistenceError
from processor.models import EventsData, ForestersEvent, LoadResult, SaveResult

logger = logging.getLogger(__name__)

DEFAULT_DATA_FILE = Path('data') / 'foresters-events.json'


class JsonEventStore:
    """Reads and writes the events document.

    The file is read once at the start of a run and written at most once at
    the end. There is no locking; concurrent runs can race on the file.
    """

    def __init__(self, path: Optional[Path] = None):
        """
        Initialize the store.

        Args:
            path: Location of the JSON document (default: data/foresters-events.json)
        """
        self.path = Path(path) if path else DEFAULT_DATA_FILE
        logger.info(f"Initialized JsonEventStore at: {self.path}")

    def load(self, now: Optional[datetime] = None) -> EventsData:
        """Return the stored document, or an empty one if it cannot be read."""
        return self.load_result(now).data

    def load_result(self, now: Optional[datetime] = None) -> LoadResult:
        """
        Read the store file.

        A missing file yields an empty document. An unreadable file is copied
        aside and also yields an empty document.

        Args:
            now: Time to stamp on an empty document

        Returns:
            LoadResult with the document and any recovery error
        """
        if not self.path.exists():
            logger.info(f"No event store at {self.path}; starting empty")
            return LoadResult(data=self._empty(now))

        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                raw = json.load(f)
            data = self._document_from_json(raw)
            logger.info(f"Loaded {len(data.events)} events from {self.path}")
            return LoadResult(data=data)

        except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
            error = PersistenceError(f"Error loading existing events from {self.path}: {e}")
            logger.error(str(error))
            self._back_up_unreadable(now)
            return LoadResult(data=self._empty(now), recovered=True, error=str(error))

    def save(self, data: EventsData) -> SaveResult:
        """
        Write the document as pretty-printed UTF-8 JSON.

        The file is replaced atomically. Failures are logged and returned.

        Args:
            data: Document to persist

        Returns:
            SaveResult describing the outcome
        """
        tmp_name = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=str(self.path.parent),
                prefix=f".{self.path.name}.",
                suffix='.tmp'
            )
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(data.to_dict(), f, indent=2, ensure_ascii=False)
            os.replace(tmp_name, self.path)
            tmp_name = None

            logger.info(f"Events saved to {self.path}")
            return SaveResult(saved=True, path=str(self.path))

        except (OSError, TypeError, ValueError) as e:
            error = PersistenceError(f"Error saving events data to {self.path}: {e}")
            logger.error(str(error))
            return SaveResult(saved=False, path=str(self.path), error=str(error))

        finally:
            if tmp_name and os.path.exists(tmp_name):
                os.remove(tmp_name)

    def _empty(self, now: Optional[datetime]) -> EventsData:
        return EventsData(lastUpdated=timestamp(now), events=[])

    def _document_from_json(self, raw) -> EventsData:
        """
        Convert decoded JSON into an EventsData document.

        Raises:
            ValueError: If the JSON is not shaped like a store document
        """
        if not isinstance(raw, dict) or not isinstance(raw.get('events', []), list):
            raise ValueError("store document must be an object with an events list")

        return EventsData(
            lastUpdated=raw.get('lastUpdated') or timestamp(),
            events=[ForestersEvent.from_dict(item) for item in raw.get('events', [])]
        )

    def _back_up_unreadable(self, now: Optional[datetime]) -> None:
        """Copy an unreadable store aside so the next save does not destroy it."""
        stamp = (now or utc_now()).strftime('%Y%m%dT%H%M%SZ')
        backup = self.path.with_name(f"{self.path.name}.corrupt-{stamp}")
        try:
            shutil.copy2(self.path, backup)
            logger.warning(f"Copied unreadable event store to {backup}")
        except OSError as e:
            logger.error(f"Could not back up unreadable event store: {e}")
