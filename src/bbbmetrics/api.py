"""HTTP client for the BigBlueButton API.

BigBlueButton authenticates API calls with a checksum: the hex SHA-1 of the
call name, its query string and the server secret. The collector only issues
calls without parameters, so the checksum covers the call name and secret.
"""

from __future__ import annotations

import hashlib
import logging
from typing import TYPE_CHECKING

import requests

from bbbmetrics.errors import TransportError
from bbbmetrics.models import (
    HealthCheck,
    Meeting,
    Recording,
    parse_health_response,
    parse_meetings_response,
    parse_recordings_response,
)

if TYPE_CHECKING:
    from bbbmetrics.config import BigBlueButtonConfig

logger = logging.getLogger(__name__)


def checksum(call_name: str, secret_key: str, query: str = "") -> str:
    """Compute the API checksum for a call."""
    return hashlib.sha1(f"{call_name}{query}{secret_key}".encode("utf-8")).hexdigest()


class BigBlueButtonClient:
    """Fetches meetings, recordings and health status from one server.

    All three fetch methods raise TransportError (or a subclass) on any
    failure; no retries are attempted.
    """

    def __init__(
        self,
        config: BigBlueButtonConfig,
        session: requests.Session | None = None,
    ):
        """Initialize the client.

        Args:
            config: Connection settings.
            session: HTTP session to use. A new one is created if omitted.

        Raises:
            ValueError: If the configuration is incomplete.
        """
        config.validate()
        self.config = config
        self.timeout = config.timeout

        base = config.url.rstrip("/")
        prefix = "/" + config.path_prefix.strip("/") if config.path_prefix.strip("/") else ""
        self.api_root = f"{base}{prefix}/api"

        self.get_meetings_url = self.get_url("getMeetings")
        self.get_recordings_url = self.get_url("getRecordings")
        self.health_check_url = self.api_root

        self.session = session if session is not None else requests.Session()
        self._configure_session()

    def _configure_session(self) -> None:
        config = self.config
        if config.username or config.password:
            self.session.auth = (config.username or "", config.password or "")

        if config.insecure_skip_verify:
            self.session.verify = False
        elif config.tls_ca:
            self.session.verify = config.tls_ca

        if config.tls_cert:
            self.session.cert = (
                (config.tls_cert, config.tls_key) if config.tls_key else config.tls_cert
            )

        if config.http_proxy_url:
            self.session.proxies = {
                "http": config.http_proxy_url,
                "https": config.http_proxy_url,
            }

    def get_url(self, call_name: str) -> str:
        """Build the checksummed URL of an API call."""
        return f"{self.api_root}/{call_name}?checksum={checksum(call_name, self.config.secret_key)}"

    def _get(self, url: str, call_name: str) -> bytes:
        logger.debug("Calling %s", call_name)
        try:
            response = self.session.get(url, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise TransportError(f"Error calling {call_name}: {e}") from e

        if response.status_code != 200:
            raise TransportError(
                f"Error calling {call_name}: status {response.status_code}"
            )
        return response.content

    def fetch_meetings(self) -> list[Meeting]:
        """Fetch running meetings."""
        return parse_meetings_response(self._get(self.get_meetings_url, "getMeetings"))

    def fetch_recordings(self) -> list[Recording]:
        """Fetch recordings."""
        return parse_recordings_response(
            self._get(self.get_recordings_url, "getRecordings")
        )

    def fetch_health(self) -> HealthCheck:
        """Fetch the API root, which reports the server status."""
        return parse_health_response(self._get(self.health_check_url, "health check"))

    def close(self) -> None:
        self.session.close()
