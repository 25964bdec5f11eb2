"""Browser-driven acquisition of events from the Foresters member portal."""
import logging
import math
from typing import Any, Dict, List, Optional

import requests
from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PwTimeout
from playwright.sync_api import sync_playwright

from processor.exceptions import AcquisitionError, RequestError, TokenCaptureError
from settings import Settings

logger = logging.getLogger(__name__)

NO_THANKS_SELECTOR = (
    'a:has-text("No thanks"), a:has-text("no thanks"), '
    'button:has-text("No thanks"), button:has-text("no thanks")'
)


class TokenCapture:
    """Listens to browser requests and keeps the bearer token sent to the API host."""

    POLL_MS = 500

    def __init__(self, host_pattern: str):
        """
        Initialize the capture.

        Args:
            host_pattern: Substring identifying requests to the events API
        """
        self.host_pattern = host_pattern
        self.token: Optional[str] = None

    def attach(self, session) -> None:
        """Start listening on a browser context (or anything with ``on``)."""
        session.on('request', self.on_request)

    def on_request(self, request) -> None:
        auth = request.headers.get('authorization') or ''
        if self.host_pattern in request.url and auth.startswith('Bearer'):
            if self.token is None:
                logger.info(f"Captured bearer token from request to {self.host_pattern}")
            self.token = auth

    def acquire(self, page, timeout_seconds: float) -> str:
        """
        Wait until a token has been captured.

        Args:
            page: Page whose ``wait_for_timeout`` keeps the event loop running
            timeout_seconds: Maximum time to wait

        Returns:
            The Authorization header value, including the "Bearer" prefix

        Raises:
            TokenCaptureError: If no token appears before the timeout
        """
        polls = max(1, math.ceil(timeout_seconds * 1000 / self.POLL_MS))
        for _ in range(polls):
            if self.token:
                return self.token
            page.wait_for_timeout(self.POLL_MS)

        if self.token:
            return self.token
        raise TokenCaptureError(
            'Bearer token not captured. Ensure the Find an Activity popup '
            'triggers the API request.'
        )


class ForestersPortalScraper:
    """Logs into my.foresters.com and fetches events from the activity API.

    Use as a context manager so the browser is always closed::

        with ForestersPortalScraper(settings) as portal:
            raw_events = portal.fetch_events()
    """

    LOGIN_URL = 'https://my.foresters.com/en-gb/login'
    API_HOST = 'api-myevents.foresters.com'
    EVENTS_URL = 'https://api-myevents.foresters.com/api/events/publishedEventbyradius'

    BRANCH_NUMBER = '5006'
    CRM_CONTACT_ID = '4adf4e61-85a8-ed11-aacf-000d3a09c72f'
    LOCATION_LABEL = 'United Kingdom'

    CONSENT_TIMEOUT_MS = 5000
    NO_THANKS_TIMEOUT_MS = 8000
    LOGIN_SETTLE_MS = 5000

    def __init__(self, settings: Settings):
        """
        Initialize the scraper.

        Args:
            settings: Runtime settings with credentials and search parameters
        """
        self.settings = settings
        self.capture = TokenCapture(self.API_HOST)
        self._playwright = None
        self.browser = None
        self.context = None
        self.page = None
        self.popup = None

    def __enter__(self) -> 'ForestersPortalScraper':
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def start(self) -> None:
        """Launch Chromium and attach the token listener."""
        logger.info(f"Launching browser (headless={self.settings.headless})")
        try:
            self._playwright = sync_playwright().start()
            self.browser = self._playwright.chromium.launch(headless=self.settings.headless)
            self.context = self.browser.new_context(
                viewport={'width': 1280, 'height': 800},
                locale='en-GB'
            )
            self.capture.attach(self.context)
            self.page = self.context.new_page()
        except PlaywrightError as e:
            self.close()
            raise AcquisitionError(f"Could not start browser: {e}", stage='Browser Launch')

    def close(self) -> None:
        """Close the browser and stop Playwright."""
        if self.browser is not None:
            try:
                self.browser.close()
            except PlaywrightError as e:
                logger.warning(f"Error closing browser: {e}")
            self.browser = None
        if self._playwright is not None:
            self._playwright.stop()
            self._playwright = None

    def fetch_events(self) -> List[Dict[str, Any]]:
        """
        Run the full acquisition sequence.

        Returns:
            Raw event objects as returned by the events API

        Raises:
            ConfigurationError: If login credentials are missing
            AcquisitionError: If login or navigation fails
            TokenCaptureError: If no bearer token was captured
            RequestError: If the API call fails
        """
        self.settings.require_login_credentials()

        self.login()
        self.dismiss_no_thanks()
        self.page.wait_for_timeout(self.LOGIN_SETTLE_MS)

        logger.info("Navigating to events page")
        self.dismiss_no_thanks()
        self.popup = self.open_activity_search()

        logger.info("Waiting for token capture")
        token = self.capture.acquire(self.popup, self.settings.token_timeout_seconds)

        return self.request_events(token)

    def login(self) -> None:
        """Log in with the configured username and password."""
        logger.info("Logging in to Foresters website")
        try:
            self.page.goto(self.LOGIN_URL)
            self.dismiss_consent()
            username = self.page.get_by_role('textbox', name='Username')
            username.click()
            username.fill(self.settings.username)
            password = self.page.get_by_role('textbox', name='Password')
            password.click()
            password.fill(self.settings.password)
            self.page.get_by_role('button', name='Log in').click()
        except PlaywrightError as e:
            raise AcquisitionError(f"Login failed: {e}", stage='Login')

        logger.info("Waiting for login to complete")
        self.page.wait_for_timeout(self.LOGIN_SETTLE_MS)

    def dismiss_consent(self) -> bool:
        """Click the cookie banner's "Accept all" button if it appears."""
        button = self.page.get_by_role('button', name='Accept all')
        try:
            button.wait_for(state='visible', timeout=self.CONSENT_TIMEOUT_MS)
            button.click()
            return True
        except PwTimeout:
            logger.info("No cookie consent banner shown")
            return False

    def dismiss_no_thanks(self) -> bool:
        """
        Click a "No thanks" interstitial if one appears.

        Returns:
            True if the element was found and clicked
        """
        logger.info("Checking for No thanks element")
        try:
            element = self.page.wait_for_selector(
                NO_THANKS_SELECTOR,
                state='visible',
                timeout=self.NO_THANKS_TIMEOUT_MS
            )
        except PwTimeout:
            element = None
        except PlaywrightError as e:
            logger.warning(f"Error while checking for No thanks element: {e}")
            return False

        if element is None:
            logger.info('No "No thanks" element found after waiting')
            return False

        logger.info('Found "No thanks" element; clicking it')
        try:
            element.click()
            self.page.wait_for_timeout(500)
        except PlaywrightError as e:
            logger.warning(f"Could not click No thanks element: {e}")
            return False
        return True

    def open_activity_search(self):
        """
        Follow the menu to "Find an Activity", which opens a popup page.

        Returns:
            The popup page

        Raises:
            AcquisitionError: If any link is missing or no popup opens
        """
        try:
            self.page.get_by_role('link', name='Grants').click()
            self.page.locator('#menuItemFullContent2').get_by_role(
                'link', name='Member activities'
            ).click()
            with self.page.expect_popup() as popup_info:
                self.page.get_by_role('link', name='Find an Activity').first.click()
            return popup_info.value
        except PlaywrightError as e:
            raise AcquisitionError(f"Navigation to activity search failed: {e}")

    def build_request_body(self) -> Dict[str, Any]:
        """Search body for the events endpoint."""
        return {
            'radius': self.settings.search_radius,
            'zipcode': self.settings.search_zipcode,
            'countryCode': self.settings.search_country_code,
            'IsVirtual': False,
            'OpenSpot': False,
            'byLocation': self.LOCATION_LABEL,
            'DistanceUnit': '',
            'branchNumber': self.BRANCH_NUMBER,
            'crmContactId': self.CRM_CONTACT_ID,
            'filterflag': True
        }

    def request_events(self, token: str) -> List[Dict[str, Any]]:
        """
        Call the events endpoint once with the captured token.

        Args:
            token: Authorization header value

        Returns:
            Decoded JSON array of event objects

        Raises:
            RequestError: On network failure, HTTP error or a non-array body
        """
        body = self.build_request_body()
        logger.info(
            f"Searching for events with radius={body['radius']} "
            f"zipcode={body['zipcode']} countryCode={body['countryCode']}"
        )

        try:
            response = requests.post(
                self.EVENTS_URL,
                json=body,
                headers={
                    'Authorization': token,
                    'Content-Type': 'application/json',
                    'Accept': 'application/json'
                },
                timeout=self.settings.request_timeout_seconds
            )
            response.raise_for_status()
        except requests.RequestException as e:
            raise RequestError(f"API request failed: {e}")

        try:
            data = response.json()
        except ValueError as e:
            raise RequestError(f"API response was not valid JSON: {e}")

        if not isinstance(data, list):
            raise RequestError(
                f"API response was not a list of events (got {type(data).__name__})"
            )

        logger.info(f"Found {len(data)} events from API")
        return data

    def save_screenshot(self, path) -> bool:
        """Save a screenshot of the activity search popup. Failures are only logged."""
        target = self.popup or self.page
        if target is None:
            return False
        try:
            target.screenshot(path=str(path))
            logger.info(f"Screenshot saved to {path}")
            return True
        except PlaywrightError as e:
            logger.warning(f"Could not take screenshot: {e}")
            return False
