"""HTTP client for the nginx VTS status endpoint.

All requests library usage is isolated here. No other module imports
from requests.
"""

import logging

import requests

logger = logging.getLogger(__name__)

USER_AGENT = "vts-rps-exporter"


class FetchError(Exception):
    """Raised when the status document cannot be retrieved."""
    pass


def build_session() -> requests.Session:
    """Construct a session reused across polling cycles.

    Returns:
        requests.Session with JSON accept and user agent headers set
    """
    session = requests.Session()
    session.headers.update({"Accept": "application/json", "User-Agent": USER_AGENT})
    return session


def fetch_status(session: requests.Session, url: str, timeout: float) -> bytes:
    """Fetch the raw status document.

    Args:
        session: Session from build_session()
        url: Status endpoint URL
        timeout: Seconds to wait for connect and for each read

    Returns:
        Response body as bytes

    Raises:
        FetchError: On connection failure, timeout or non-2xx status
    """
    try:
        response = session.get(url, timeout=timeout)
        response.raise_for_status()
    except requests.RequestException as e:
        raise FetchError(f"Failed to fetch {url}: {e}") from e

    logger.debug(f"Fetched {len(response.content)} bytes from {url}")
    return response.content
