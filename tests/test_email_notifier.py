"""Unit tests for email rendering and EmailNotifier."""
import email
import logging
import smtplib
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest

from notifier import templates
from notifier.email_notifier import MISSING_CREDENTIALS, EmailNotifier
from processor.exceptions import TokenCaptureError
from processor.models import Building, ForestersEvent
from settings import Settings

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def make_event(event_id='evt-1', name='Summer Fete', open_spots=10, full=False,
               description='<p>Games &amp; cake</p>', image=None):
    data = {
        'eventId': event_id,
        'eventName': name,
        'description': description,
        'startDate': '2024-06-15T10:00:00',
        'endDate': '2024-06-15T16:00:00',
        'building': {
            'name': 'Village Hall',
            'addressLine1': '',
            'city': 'Cwmbran',
            'postalCode': 'NP44 6EP'
        },
        'registrationCount': 3,
        'openSpotsleft': open_spots,
        'activityFull': full
    }
    if image:
        data['image'] = {'eventcardimage': image}
    return ForestersEvent.from_dict(data)


def html_body(message):
    """Return the decoded HTML part of a raw message string."""
    parsed = email.message_from_string(message)
    for part in parsed.walk():
        if part.get_content_type() == 'text/html':
            return part.get_payload(decode=True).decode('utf-8')
    return ''


@pytest.fixture
def mail_settings():
    return Settings(
        email_user='monitor@example.com',
        email_password='app-password',
        recipients=['member@example.com', 'family@example.com'],
        debug_recipients=['admin@example.com']
    )


@pytest.fixture
def no_mail_settings():
    return Settings(
        recipients=['member@example.com'],
        debug_recipients=['admin@example.com']
    )


class TestAvailabilityBadge:
    """Test cases for the availability badge tiers."""

    def test_full_is_red(self):
        assert templates.availability_badge(True, 5) == ('FULLY BOOKED', templates.FULL_COLOUR)

    def test_full_flag_trusted_over_spots(self):
        """Test that activityFull wins even when spots remain."""
        label, colour = templates.availability_badge(True, 40)
        assert label == 'FULLY BOOKED'
        assert colour == '#e74c3c'

    @pytest.mark.parametrize('spots,label', [
        (0, 'ONLY 0 SPOTS LEFT!'),
        (1, 'ONLY 1 SPOT LEFT!'),
        (2, 'ONLY 2 SPOTS LEFT!'),
        (3, 'ONLY 3 SPOTS LEFT!'),
    ])
    def test_low_availability_is_orange(self, spots, label):
        assert templates.availability_badge(False, spots) == (label, '#f39c12')

    def test_open_is_green(self):
        assert templates.availability_badge(False, 4) == ('4 spaces available', '#27ae60')


class TestTemplates:
    """Test cases for the email templates."""

    def test_format_location_skips_empty(self):
        building = Building(name='Hall', addressLine1='', city='Newport', postalCode='NP20')
        assert templates.format_location(building) == 'Hall, Newport, NP20'

    def test_clean_description_strips_tags(self):
        assert templates.clean_description('<p>Hello <b>there</b></p>') == 'Hello  there'

    def test_clean_description_truncates(self):
        text = 'x' * 200
        cleaned = templates.clean_description(f'<div>{text}</div>')
        assert cleaned == 'x' * 150 + '...'

    def test_clean_description_exact_limit_not_truncated(self):
        assert templates.clean_description('y' * 150) == 'y' * 150

    def test_days_until_rounds_up(self):
        start = datetime(2024, 6, 2, 12, 0, 1, tzinfo=timezone.utc)
        assert templates.days_until(start, NOW) == 2

    def test_days_until_whole_days(self):
        start = datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)
        assert templates.days_until(start, NOW) == 14

    def test_format_event_date(self):
        start = datetime(2024, 6, 15, 10, 0, tzinfo=timezone.utc)
        assert templates.format_event_date(start) == 'Saturday 15 June 2024'

    def test_subject_single(self):
        assert templates.new_events_subject([make_event()]) == 'New Foresters Event: Summer Fete'

    def test_subject_multiple(self):
        events = [make_event('a'), make_event('b'), make_event('c')]
        assert templates.new_events_subject(events) == '3 New Foresters Events Available'

    def test_render_event_card(self):
        """Test the card content for one event."""
        event = make_event(open_spots=1, image='https://example.com/fete.jpg')

        card = templates.render_event_card(event, NOW)

        assert 'Summer Fete' in card
        assert 'Saturday 15 June 2024 (in 14 days)' in card
        assert 'Village Hall, Cwmbran, NP44 6EP' in card
        assert 'ONLY 1 SPOT LEFT!' in card
        assert 'Games &amp; cake' in card
        assert 'src="https://example.com/fete.jpg"' in card
        assert 'https://my.foresters.com' in card

    def test_render_event_card_without_image(self):
        card = templates.render_event_card(make_event(), NOW)
        assert '<img' not in card

    def test_render_new_events_email_pluralises(self):
        one = templates.render_new_events_email([make_event()], NOW)
        two = templates.render_new_events_email([make_event('a'), make_event('b')], NOW)

        assert "discovered 1 new event that" in one
        assert "discovered 2 new events that" in two

    def test_render_error_email(self):
        body = templates.render_error_email('Token Capture', 'boom <here>', None, '2024-06-01T12:00:00.000Z')

        assert 'Error occurred in: Token Capture' in body
        assert 'boom &lt;here&gt;' in body
        assert 'No stack trace available' in body
        assert '2024-06-01T12:00:00.000Z' in body


class TestEmailNotifier:
    """Test cases for EmailNotifier."""

    @patch('notifier.email_notifier.smtplib.SMTP_SSL')
    def test_send_new_events(self, mock_smtp_class, mail_settings):
        """Test that a digest is sent to all recipients in one message."""
        smtp = MagicMock()
        mock_smtp_class.return_value.__enter__.return_value = smtp

        result = EmailNotifier(mail_settings).send_new_events([make_event()], NOW)

        assert result.sent is True
        assert result.subject == 'New Foresters Event: Summer Fete'
        mock_smtp_class.assert_called_once_with('smtp.gmail.com', 465)
        smtp.login.assert_called_once_with('monitor@example.com', 'app-password')
        sender, recipients, message = smtp.sendmail.call_args[0]
        assert sender == 'monitor@example.com'
        assert recipients == ['member@example.com', 'family@example.com']
        assert 'Subject: New Foresters Event: Summer Fete' in message

    @patch('notifier.email_notifier.smtplib.SMTP_SSL')
    def test_send_new_events_uses_from_address(self, mock_smtp_class, mail_settings):
        smtp = MagicMock()
        mock_smtp_class.return_value.__enter__.return_value = smtp
        settings = Settings(
            email_user=mail_settings.email_user,
            email_password=mail_settings.email_password,
            email_from='Foresters Monitor <alerts@example.com>',
            recipients=mail_settings.recipients
        )

        EmailNotifier(settings).send_new_events([make_event()], NOW)

        message = smtp.sendmail.call_args[0][2]
        assert smtp.sendmail.call_args[0][0] == 'alerts@example.com'
        assert 'From: Foresters Monitor <alerts@example.com>' in message

    @patch('notifier.email_notifier.smtplib.SMTP_SSL')
    def test_no_events_not_sent(self, mock_smtp_class, mail_settings):
        result = EmailNotifier(mail_settings).send_new_events([], NOW)

        assert result.sent is False
        mock_smtp_class.assert_not_called()

    @patch('notifier.email_notifier.smtplib.SMTP_SSL')
    def test_no_recipients_not_sent(self, mock_smtp_class):
        settings = Settings(email_user='u@example.com', email_password='p')

        result = EmailNotifier(settings).send_new_events([make_event()], NOW)

        assert result.sent is False
        mock_smtp_class.assert_not_called()

    @patch('notifier.email_notifier.smtplib.SMTP_SSL')
    def test_missing_credentials_logs_instead(self, mock_smtp_class, no_mail_settings, caplog):
        """Test that without credentials the intended email is logged."""
        with caplog.at_level(logging.INFO, logger='notifier.email_notifier'):
            result = EmailNotifier(no_mail_settings).send_new_events([make_event()], NOW)

        assert result.sent is False
        assert result.skipped_reason == MISSING_CREDENTIALS
        assert result.recipients == ['member@example.com']
        mock_smtp_class.assert_not_called()
        messages = [record.message for record in caplog.records]
        assert any('member@example.com' in msg for msg in messages)
        assert any('Summer Fete (2024-06-15)' in msg for msg in messages)

    @patch('notifier.email_notifier.smtplib.SMTP_SSL')
    def test_transport_failure_returned(self, mock_smtp_class, mail_settings):
        """Test that SMTP failures are reported, not raised."""
        smtp = MagicMock()
        smtp.login.side_effect = smtplib.SMTPAuthenticationError(535, b'bad credentials')
        mock_smtp_class.return_value.__enter__.return_value = smtp

        result = EmailNotifier(mail_settings).send_new_events([make_event()], NOW)

        assert result.sent is False
        assert 'Error sending event notification' in result.error

    @patch('notifier.email_notifier.smtplib.SMTP_SSL')
    def test_connection_failure_returned(self, mock_smtp_class, mail_settings):
        mock_smtp_class.side_effect = OSError('network unreachable')

        result = EmailNotifier(mail_settings).send_error(RuntimeError('boom'), 'Main Process')

        assert result.sent is False
        assert 'network unreachable' in result.error

    @patch('notifier.email_notifier.smtplib.SMTP_SSL')
    def test_send_error(self, mock_smtp_class, mail_settings):
        """Test that error alerts go to the debug recipients with the stage label."""
        smtp = MagicMock()
        mock_smtp_class.return_value.__enter__.return_value = smtp

        try:
            raise TokenCaptureError('Bearer token not captured.')
        except TokenCaptureError as e:
            error = e

        result = EmailNotifier(mail_settings).send_error(error, error.stage)

        assert result.sent is True
        assert result.subject == 'Foresters Scraper Error: Token Capture'
        _, recipients, message = smtp.sendmail.call_args[0]
        assert recipients == ['admin@example.com']
        body = html_body(message)
        assert 'Error occurred in: Token Capture' in body
        assert 'Bearer token not captured.' in body
        assert 'Traceback (most recent call last)' in body
        assert 'No stack trace available' not in body

    @patch('notifier.email_notifier.smtplib.SMTP_SSL')
    def test_send_error_without_debug_recipients(self, mock_smtp_class):
        settings = Settings(email_user='u@example.com', email_password='p')

        result = EmailNotifier(settings).send_error(RuntimeError('boom'), 'Main Process')

        assert result.sent is False
        assert result.skipped_reason == 'no debug recipients'
        mock_smtp_class.assert_not_called()

    @patch('notifier.email_notifier.smtplib.SMTP_SSL')
    def test_send_error_without_credentials(self, mock_smtp_class, no_mail_settings):
        result = EmailNotifier(no_mail_settings).send_error(RuntimeError('boom'), 'API Request')

        assert result.sent is False
        assert result.skipped_reason == MISSING_CREDENTIALS
        mock_smtp_class.assert_not_called()
