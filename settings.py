"""Runtime configuration for the Foresters events monitor."""
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Mapping, Optional

from processor.exceptions import ConfigurationError


def _split_addresses(value: str) -> List[str]:
    """Split a comma-separated address list, dropping blanks."""
    return [part.strip() for part in (value or '').split(',') if part.strip()]


def _int_setting(environ: Mapping[str, str], name: str, default: int) -> int:
    raw = environ.get(name, '')
    if not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(
            f"{name} must be an integer, got {raw!r}",
            stage='Configuration'
        )


def _bool_setting(environ: Mapping[str, str], name: str, default: bool) -> bool:
    raw = environ.get(name, '').strip().lower()
    if not raw:
        return default
    return raw not in ('0', 'false', 'no', 'off')


@dataclass(frozen=True)
class Settings:
    """Configuration read once at process start and passed to each component."""
    username: str = ''
    password: str = ''
    email_user: str = ''
    email_password: str = ''
    email_from: str = ''
    recipients: List[str] = field(default_factory=list)
    debug_recipients: List[str] = field(default_factory=list)
    search_radius: str = '0'
    search_zipcode: str = 'NP44 6EP'
    search_country_code: str = 'GB'
    data_file: Path = Path('data') / 'foresters-events.json'
    smtp_host: str = 'smtp.gmail.com'
    smtp_port: int = 465
    log_level: str = 'INFO'
    headless: bool = True
    token_timeout_seconds: int = 15
    request_timeout_seconds: int = 30
    screenshot_path: Optional[Path] = Path('new-events-found.png')

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> 'Settings':
        """
        Build settings from environment variables.

        Credentials are not checked here; see ``require_login_credentials``.

        Args:
            environ: Mapping to read from (default: os.environ)

        Returns:
            Settings instance

        Raises:
            ConfigurationError: If a numeric setting is not an integer
        """
        if environ is None:
            environ = os.environ

        screenshot = environ.get('SCREENSHOT_PATH', 'new-events-found.png').strip()

        return cls(
            username=environ.get('FORESTERS_USERNAME', ''),
            password=environ.get('FORESTERS_PASSWORD', ''),
            email_user=environ.get('EMAIL_USER', ''),
            email_password=environ.get('GOOGLE_APP_PASSWORD', ''),
            email_from=environ.get('EMAIL_FROM', ''),
            recipients=_split_addresses(environ.get('EMAIL_RECIPIENTS', '')),
            debug_recipients=_split_addresses(environ.get('DEBUG_EMAIL_RECIPIENTS', '')),
            search_radius=environ.get('SEARCH_RADIUS') or '0',
            search_zipcode=environ.get('SEARCH_ZIPCODE') or 'NP44 6EP',
            search_country_code=environ.get('SEARCH_COUNTRY_CODE') or 'GB',
            data_file=Path(environ.get('EVENTS_DATA_FILE') or Path('data') / 'foresters-events.json'),
            smtp_host=environ.get('SMTP_HOST') or 'smtp.gmail.com',
            smtp_port=_int_setting(environ, 'SMTP_PORT', 465),
            log_level=environ.get('LOG_LEVEL') or 'INFO',
            headless=_bool_setting(environ, 'HEADLESS', True),
            token_timeout_seconds=_int_setting(environ, 'TOKEN_TIMEOUT_SECONDS', 15),
            request_timeout_seconds=_int_setting(environ, 'REQUEST_TIMEOUT_SECONDS', 30),
            screenshot_path=Path(screenshot) if screenshot else None
        )

    @property
    def mail_configured(self) -> bool:
        """True when SMTP credentials are present."""
        return bool(self.email_user and self.email_password)

    @property
    def sender(self) -> str:
        return self.email_from or self.email_user

    def require_login_credentials(self) -> None:
        """
        Check that portal login credentials are present.

        Raises:
            ConfigurationError: If the username or password is missing
        """
        if not self.username or not self.password:
            raise ConfigurationError(
                'Foresters login credentials not found in environment variables. '
                'Please set FORESTERS_USERNAME and FORESTERS_PASSWORD environment variables.'
            )
