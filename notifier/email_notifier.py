"""Email notifier for new events and error alerts."""
import logging
import smtplib
import traceback
from datetime import datetime
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import parseaddr
from typing import List, Optional

from notifier import templates
from processor.event_processor import parse_timestamp, timestamp, utc_now
from processor.exceptions import NotificationTransportError
from processor.models import ForestersEvent, NotificationResult
from settings import Settings

logger = logging.getLogger(__name__)

MISSING_CREDENTIALS = 'mail credentials not configured'


class EmailNotifier:
    """Decides when to send and delivers messages over SMTP."""

    def __init__(self, settings: Settings):
        """
        Initialize the notifier.

        Args:
            settings: Runtime settings holding mail account and recipients
        """
        self.settings = settings

    def send_new_events(self, events: List[ForestersEvent],
                        now: Optional[datetime] = None) -> NotificationResult:
        """
        Send the new-events digest.

        Nothing is sent when there are no events or no recipients. Without
        mail credentials the message is logged instead of sent.

        Args:
            events: Newly discovered events
            now: Time used for the "in N days" figures

        Returns:
            NotificationResult describing what happened
        """
        recipients = list(self.settings.recipients)

        if not events or not recipients:
            logger.info("No events to send or no recipients configured.")
            return NotificationResult(
                sent=False,
                recipients=recipients,
                skipped_reason='no events or no recipients'
            )

        now = now or utc_now()
        subject = templates.new_events_subject(events)

        if not self.settings.mail_configured:
            logger.info(
                f"Email would be sent to {', '.join(recipients)}, "
                f"but SMTP configuration is missing. Subject: {subject}"
            )
            for event in events:
                start = parse_timestamp(event.startDate)
                when = start.date().isoformat() if start else event.startDate
                logger.info(f"- {event.eventName} ({when})")
            return NotificationResult(
                sent=False,
                recipients=recipients,
                subject=subject,
                skipped_reason=MISSING_CREDENTIALS
            )

        html_body = templates.render_new_events_email(events, now)
        return self._deliver(recipients, subject, html_body, 'event notification')

    def send_error(self, error: BaseException, stage: str) -> NotificationResult:
        """
        Send an error alert to the debug recipients.

        Never raises; delivery problems are logged and returned.

        Args:
            error: The failure being reported
            stage: Label of the step that failed

        Returns:
            NotificationResult describing what happened
        """
        recipients = list(self.settings.debug_recipients)
        subject = templates.error_subject(stage)

        if not recipients:
            logger.info("No debug email recipients configured.")
            return NotificationResult(
                sent=False,
                subject=subject,
                skipped_reason='no debug recipients'
            )

        if not self.settings.mail_configured:
            logger.info("Debug email would be sent, but SMTP configuration is missing")
            logger.error(f"Error in {stage}: {error}")
            return NotificationResult(
                sent=False,
                recipients=recipients,
                subject=subject,
                skipped_reason=MISSING_CREDENTIALS
            )

        trace = None
        if error.__traceback__ is not None:
            trace = ''.join(
                traceback.format_exception(type(error), error, error.__traceback__)
            )

        html_body = templates.render_error_email(
            stage=stage,
            message=str(error),
            trace=trace,
            timestamp=timestamp()
        )
        return self._deliver(recipients, subject, html_body, 'debug email')

    def _deliver(self, recipients: List[str], subject: str, html_body: str,
                 kind: str) -> NotificationResult:
        """Send one HTML message to all recipients."""
        sender = self.settings.sender

        msg = MIMEMultipart('alternative')
        msg['Subject'] = subject
        msg['From'] = sender
        msg['To'] = ', '.join(recipients)
        msg.attach(MIMEText(html_body, 'html', 'utf-8'))

        try:
            with smtplib.SMTP_SSL(self.settings.smtp_host, self.settings.smtp_port) as smtp:
                smtp.login(self.settings.email_user, self.settings.email_password)
                smtp.sendmail(parseaddr(sender)[1] or sender, recipients, msg.as_string())

            logger.info(f"Sent {kind} '{subject}' to {len(recipients)} recipient(s)")
            return NotificationResult(sent=True, recipients=recipients, subject=subject)

        except (smtplib.SMTPException, OSError) as e:
            error = NotificationTransportError(f"Error sending {kind}: {e}")
            logger.error(str(error))
            return NotificationResult(
                sent=False,
                recipients=recipients,
                subject=subject,
                error=str(error)
            )
