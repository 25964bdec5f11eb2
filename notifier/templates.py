"""HTML email rendering for new-event digests and error alerts."""
import math
from datetime import datetime
from html import escape
from typing import List, Optional, Tuple

from bs4 import BeautifulSoup

from processor.event_processor import parse_timestamp
from processor.models import Building, ForestersEvent

PORTAL_URL = 'https://my.foresters.com'
DESCRIPTION_LIMIT = 150
LOW_AVAILABILITY_THRESHOLD = 3

FULL_COLOUR = '#e74c3c'
LOW_COLOUR = '#f39c12'
OPEN_COLOUR = '#27ae60'


def availability_badge(activity_full: bool, open_spots: int) -> Tuple[str, str]:
    """
    Choose the availability label and colour for an event.

    Args:
        activity_full: The source's activityFull flag
        open_spots: The source's openSpotsleft count

    Returns:
        Tuple of (label, hex colour)
    """
    if activity_full:
        return 'FULLY BOOKED', FULL_COLOUR
    if open_spots <= LOW_AVAILABILITY_THRESHOLD:
        plural = '' if open_spots == 1 else 'S'
        return f'ONLY {open_spots} SPOT{plural} LEFT!', LOW_COLOUR
    return f'{open_spots} spaces available', OPEN_COLOUR


def format_location(building: Building) -> str:
    """Join the non-empty building fields with commas."""
    return ', '.join(building.address_parts())


def clean_description(description: str, limit: int = DESCRIPTION_LIMIT) -> str:
    """Strip HTML tags and shorten to ``limit`` characters plus an ellipsis."""
    text = BeautifulSoup(description or '', 'html.parser').get_text(' ').strip()
    if len(text) > limit:
        return text[:limit] + '...'
    return text


def days_until(start: datetime, now: datetime) -> int:
    """Whole days from now until start, rounded up."""
    return math.ceil((start - now).total_seconds() / 86400)


def format_event_date(start: datetime) -> str:
    """Format as e.g. 'Saturday 15 June 2024'."""
    return f"{start.strftime('%A')} {start.day} {start.strftime('%B %Y')}"


def _date_line(event: ForestersEvent, now: datetime) -> str:
    start = parse_timestamp(event.startDate)
    if start is None:
        return escape(event.startDate or 'Date to be confirmed')
    return f"{format_event_date(start)} (in {days_until(start, now)} days)"


def render_event_card(event: ForestersEvent, now: datetime) -> str:
    """Render one event as an HTML card."""
    label, colour = availability_badge(event.activityFull, event.openSpotsleft)
    name = escape(event.eventName)

    image = ''
    if event.image_url:
        image = (
            f'<img src="{escape(event.image_url)}" alt="{name}" '
            f'style="max-width: 100%; height: auto; margin: 10px 0; '
            f'border-radius: 4px; display: block;">'
        )

    return f"""
    <div style="margin-bottom: 30px; padding: 20px; border: 1px solid #ddd; border-radius: 8px; background-color: #f9f9f9;">
      <h2 style="color: #2c3e50; margin-top: 0; font-size: 18px; line-height: 1.3;">{name}</h2>
      <p style="color: #7f8c8d; font-size: 14px; line-height: 1.4; margin: 10px 0;">
        <strong>Date:</strong> {_date_line(event, now)}<br>
        <strong>Location:</strong> {escape(format_location(event.building))}<br>
        <strong>Availability:</strong> <span style="color: {colour}; font-weight: bold;">{label}</span>
      </p>
      <p style="margin: 15px 0; font-size: 14px; line-height: 1.4;">{escape(clean_description(event.description))}</p>
      {image}
      <p style="margin-top: 15px; margin-bottom: 0;">
        <a href="{PORTAL_URL}" style="display: inline-block; padding: 10px 20px; background-color: #3498db; color: white; text-decoration: none; border-radius: 4px; font-weight: bold; font-size: 14px;">View Details</a>
      </p>
    </div>
    """


def new_events_subject(events: List[ForestersEvent]) -> str:
    if len(events) == 1:
        return f'New Foresters Event: {events[0].eventName}'
    return f'{len(events)} New Foresters Events Available'


def render_new_events_email(events: List[ForestersEvent], now: datetime) -> str:
    """Render the full digest document for a batch of new events."""
    cards = ''.join(render_event_card(event, now) for event in events)
    plural = 's' if len(events) > 1 else ''

    return f"""<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>New Foresters Events</title>
  <style>
    body {{ font-family: Arial, sans-serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px; }}
    h1 {{ color: #2c3e50; font-size: 24px; margin-bottom: 20px; }}
    .footer {{ margin-top: 30px; padding-top: 15px; border-top: 1px solid #eee; font-size: 12px; color: #7f8c8d; }}
    @media only screen and (max-width: 600px) {{
      body {{ padding: 10px; }}
      h1 {{ font-size: 20px; }}
    }}
  </style>
</head>
<body>
  <h1>New Foresters Events Found!</h1>
  <p>We've discovered {len(events)} new event{plural} that you might be interested in:</p>
  {cards}
  <div class="footer">
    <p>This is an automated notification from your Foresters Events Monitor.</p>
    <p>To stop receiving these emails, please reply with "Unsubscribe" in the subject line.</p>
  </div>
</body>
</html>
"""


def error_subject(stage: str) -> str:
    return f'Foresters Scraper Error: {stage}'


def render_error_email(stage: str, message: str, trace: Optional[str],
                       timestamp: str) -> str:
    """Render the error alert sent to the debug recipients."""
    return f"""<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <title>Foresters Scraper Error</title>
  <style>
    body {{ font-family: Arial, sans-serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px; }}
    .error-box {{ background-color: #ffe6e6; border: 2px solid #ff4444; border-radius: 8px; padding: 20px; margin: 20px 0; }}
    .error-title {{ color: #cc0000; font-weight: bold; font-size: 18px; }}
    .error-details {{ background-color: #f5f5f5; border-left: 4px solid #ccc; padding: 10px; margin: 10px 0; font-family: monospace; white-space: pre-wrap; }}
    .timestamp {{ color: #666; font-size: 12px; }}
  </style>
</head>
<body>
  <h1>Foresters Scraper Error Alert</h1>
  <div class="error-box">
    <div class="error-title">Error occurred in: {escape(stage)}</div>
    <div class="timestamp">Time: {escape(timestamp)}</div>
  </div>
  <h3>Error Details:</h3>
  <div class="error-details">{escape(message)}</div>
  <h3>Stack Trace:</h3>
  <div class="error-details">{escape(trace or 'No stack trace available')}</div>
  <p><strong>Action Required:</strong> Please check the scraper configuration and website changes.</p>
</body>
</html>
"""
