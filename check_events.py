"""Entry point for the Foresters events check."""
import json
import logging
import sys
import time
from datetime import datetime
from typing import List, Optional

from dotenv import load_dotenv

from notifier.email_notifier import EmailNotifier
from notifier.templates import days_until
from processor.event_processor import EventProcessor, parse_timestamp, timestamp, utc_now
from processor.exceptions import ForestersCheckError
from processor.models import CheckResult, EventsData, ForestersEvent
from scraper.foresters_portal import ForestersPortalScraper
from settings import Settings
from storage.json_store import JsonEventStore

logger = logging.getLogger(__name__)


# Configure JSON logging
class JsonFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            'timestamp': self.formatTime(record),
            'level': record.levelname,
            'message': record.getMessage(),
            'logger': record.name
        }

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data)


def setup_logging(log_level: str = 'INFO') -> None:
    """
    Configure logging with JSON formatter.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
    """
    root_logger = logging.getLogger()

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root_logger.addHandler(handler)

    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))


def _log_active_events(events: List[ForestersEvent], now: datetime) -> None:
    """Log one line per active event for verification."""
    logger.info("Active events:")
    for index, event in enumerate(events, start=1):
        spots = "FULL" if event.activityFull else f"{event.openSpotsleft} spots left"
        start = parse_timestamp(event.startDate)
        when = (
            f"{start.date().isoformat()} (in {days_until(start, now)} days)"
            if start else event.startDate
        )
        logger.info(
            f"{index}. {event.building.city or '?'} | {event.eventName} - {when} - {spots}"
        )


def run_check(settings: Settings, scraper=None, store=None, notifier=None,
              processor=None, now: Optional[datetime] = None) -> CheckResult:
    """
    Fetch events, detect new ones, notify and update the store.

    Args:
        settings: Runtime settings
        scraper: Event source (default: ForestersPortalScraper)
        store: Event store (default: JsonEventStore at settings.data_file)
        notifier: Notifier (default: EmailNotifier)
        processor: Event processor (default: EventProcessor)
        now: Time of the check (default: current UTC time)

    Returns:
        CheckResult summarising the run

    Raises:
        ForestersCheckError: For fatal acquisition or configuration failures,
            after the error has been reported by email
    """
    notifier = notifier or EmailNotifier(settings)

    try:
        settings.require_login_credentials()

        processor = processor or EventProcessor()
        store = store or JsonEventStore(settings.data_file)
        scraper = scraper or ForestersPortalScraper(settings)
        now = now or utc_now()

        notification = None
        with scraper:
            raw_events = scraper.fetch_events()
            current_events = processor.process_events(raw_events)

            active_current = processor.prune_expired(current_events, now)
            expired_count = len(current_events) - len(active_current)
            logger.info(
                f"{len(active_current)} active events, "
                f"{expired_count} expired events filtered out"
            )

            existing = store.load(now)
            active_existing = processor.prune_expired(existing.events, now)
            removed_from_store = len(existing.events) - len(active_existing)
            logger.info(f"Removed {removed_from_store} expired events from storage")

            new_events = processor.find_new(active_current, active_existing)

            if new_events:
                logger.info(f"Found {len(new_events)} NEW events!")
                if settings.screenshot_path:
                    scraper.save_screenshot(settings.screenshot_path)

        if new_events:
            notification = notifier.send_new_events(new_events, now)
            stored_events = active_existing + new_events
            store_action = 'added'
        elif removed_from_store:
            logger.info("No new events found")
            stored_events = active_existing
            store_action = 'pruned'
        else:
            logger.info("No new events found")
            stored_events = existing.events
            store_action = 'touched'

        save = store.save(EventsData(lastUpdated=timestamp(now), events=stored_events))

        logger.info(
            f"Total events from API: {len(current_events)}, "
            f"active: {len(active_current)}, expired: {expired_count}, "
            f"new: {len(new_events)}, in storage after update: {len(stored_events)}"
        )
        _log_active_events(active_current, now)

        return CheckResult(
            fetched=len(current_events),
            active=len(active_current),
            expired=expired_count,
            expired_from_store=removed_from_store,
            new_events=new_events,
            stored=len(stored_events),
            store_action=store_action,
            notification=notification,
            save=save
        )

    except ForestersCheckError as e:
        logger.error(f"{e.stage} failed: {e}", exc_info=True)
        notifier.send_error(e, e.stage)
        raise

    except Exception as e:
        logger.error(f"Fatal error occurred: {e}", exc_info=True)
        notifier.send_error(e, 'Main Process')
        raise


def main(argv: Optional[List[str]] = None) -> int:
    """
    Run one check and return the process exit status.

    Args:
        argv: Unused; accepted so the function can serve as a console script

    Returns:
        0 on success, 1 on any fatal error
    """
    load_dotenv()

    try:
        settings = Settings.from_env()
    except ForestersCheckError as e:
        setup_logging()
        logger.error(f"Invalid configuration: {e}")
        return 1

    setup_logging(settings.log_level)

    start_time = time.time()
    logger.info(
        "[FORESTERS EVENT CHECK] Started",
        extra={
            'data_file': str(settings.data_file),
            'recipients': len(settings.recipients)
        }
    )

    try:
        result = run_check(settings)
    except Exception as e:
        logger.error(
            f"[FORESTERS EVENT CHECK] Failed: {e}",
            extra={
                'duration_seconds': round(time.time() - start_time, 2),
                'error_type': type(e).__name__
            }
        )
        return 1

    logger.info(
        "[FORESTERS EVENT CHECK] Completed",
        extra={
            'duration_seconds': round(time.time() - start_time, 2),
            'new_events': len(result.new_events),
            'stored_events': result.stored
        }
    )
    return 0


if __name__ == '__main__':
    sys.exit(main())
