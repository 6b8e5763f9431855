"""Latitude.sh agent API client.

Fetches the firewall policy for this host from the agent ping endpoint::

    GET <api_endpoint>
    Content-Type: application/json
    Authorization: Bearer <token>      (when configured)

    {"ip_address": "<public_ip>"}

The request runs on a daemon thread so that a stop request can abandon
it without waiting for the HTTP timeout.
"""

import json
import threading
from datetime import datetime
from pathlib import Path
from typing import Optional

import requests

from lsh_agent import __version__
from lsh_agent.core.context import ExecutionContext
from lsh_agent.core.exceptions import CycleCancelled, FetchError
from lsh_agent.services.rules import CanonicalRule, parse_firewall_document


# Granularity of the stop-event check while a request is in flight
WAIT_INTERVAL = 0.2

# Body excerpt kept on FetchError
BODY_EXCERPT_LENGTH = 200

EMPTY_POLICY_WARNING = "Firewall is disabled or no rules exist for this server"


class LatitudeClient:
    """HTTP client for the Latitude.sh agent API."""

    def __init__(
        self,
        ctx: ExecutionContext,
        *,
        api_endpoint: str,
        public_ip: str = "",
        bearer_token: Optional[str] = None,
        timeout: float = 30.0,
        stop_event: Optional[threading.Event] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        """Initialize the client.

        Args:
            ctx: Execution context
            api_endpoint: Agent ping URL
            public_ip: Address sent as ``ip_address`` in the request body
            bearer_token: API token, sent as a Bearer authorization header
            timeout: Request timeout in seconds
            stop_event: Abandons the in-flight request when set
            session: Pre-built requests session (tests)
        """
        self.ctx = ctx
        self.api_endpoint = api_endpoint
        self.public_ip = public_ip
        self.timeout = timeout
        self.stop_event = stop_event or threading.Event()

        self.session = session or requests.Session()
        self.session.headers.update({
            "Content-Type": "application/json",
            "User-Agent": f"lsh-agent/{__version__}",
        })
        if bearer_token:
            self.session.headers["Authorization"] = f"Bearer {bearer_token}"

    def _request(self) -> requests.Response:
        return self.session.request(
            "GET",
            self.api_endpoint,
            data=json.dumps({"ip_address": self.public_ip}),
            timeout=self.timeout,
        )

    def _send(self) -> requests.Response:
        """Issue the request on a daemon thread, honouring the stop event.

        An abandoned request keeps its thread until the HTTP timeout, but
        a daemon thread never holds up interpreter exit.

        Raises:
            CycleCancelled: If stop was requested before the response arrived
            FetchError: On transport errors and timeouts
        """
        if self.stop_event.is_set():
            raise CycleCancelled("Stop requested before contacting the API")

        outcome: dict = {}
        done = threading.Event()

        def worker() -> None:
            try:
                outcome["response"] = self._request()
            except Exception as e:
                outcome["error"] = e
            finally:
                done.set()

        thread = threading.Thread(target=worker, name="lsh-fetch", daemon=True)
        thread.start()

        while not done.wait(WAIT_INTERVAL):
            if self.stop_event.is_set():
                self.session.close()
                raise CycleCancelled(f"Stop requested while fetching {self.api_endpoint}")

        error = outcome.get("error")
        if isinstance(error, requests.Timeout):
            raise FetchError(
                f"Request to {self.api_endpoint} timed out after {self.timeout}s",
                url=self.api_endpoint,
            ) from error
        if isinstance(error, requests.RequestException):
            raise FetchError(
                f"HTTP request failed: {error}",
                url=self.api_endpoint,
                hint="Check network connectivity and latitude.api_endpoint",
            ) from error
        if error is not None:
            raise error
        return outcome["response"]

    def fetch_document(self) -> str:
        """Fetch the raw policy document.

        Returns:
            Response body text

        Raises:
            FetchError: On transport error or non-200 status
            CycleCancelled: If stop was requested mid-request
        """
        self.ctx.console.info(f"Pinging Latitude.sh API at {self.api_endpoint}")
        response = self._send()

        if response.status_code != 200:
            body = response.text or ""
            excerpt = body[:BODY_EXCERPT_LENGTH]
            raise FetchError(
                f"API request failed with status {response.status_code}",
                url=self.api_endpoint,
                status_code=response.status_code,
                details=[f"Body: {excerpt}"] if excerpt else None,
                hint="Check LATITUDESH_AUTH_TOKEN and the server's public IP" if response.status_code in (401, 403) else None,
            )

        self.ctx.console.info("Successfully retrieved firewall rules from API")
        return response.text

    def fetch_rules(self, snapshot_path: Optional[Path] = None) -> list[CanonicalRule]:
        """Fetch, snapshot and parse the desired rules.

        Args:
            snapshot_path: Where to save the raw response (skipped if None)

        Returns:
            Desired rules, possibly empty

        Raises:
            FetchError: If the API is unreachable or returns non-200
            ParseError: If the response is not a valid policy document
        """
        body = self.fetch_document()

        if snapshot_path is not None:
            self.save_snapshot(body, snapshot_path)

        rules = parse_firewall_document(body)
        if not rules:
            self.ctx.console.warn(EMPTY_POLICY_WARNING)
        else:
            self.ctx.console.info(f"Validated firewall response with {len(rules)} rules")
            self.display_rules(rules)
        return rules

    def health_check(self) -> bool:
        """Check that the API endpoint answers.

        Never raises for HTTP problems; the result is only logged.
        """
        self.ctx.console.info("Performing health check")
        try:
            response = self._send()
        except FetchError as e:
            self.ctx.console.warn(f"Health check failed: {e}")
            return False

        if response.status_code >= 400:
            self.ctx.console.warn(f"Health check failed with status {response.status_code}")
            return False

        self.ctx.console.success("Health check passed")
        return True

    def save_snapshot(self, body: str, path: Path) -> None:
        """Save the last fetched policy; failures only warn."""
        if self.ctx.dry_run:
            self.ctx.console.dry_run_msg(f"Save firewall rules to {path}")
            return

        timestamp = datetime.now().astimezone().isoformat(timespec="seconds")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(f"{body}\nLast updated: {timestamp}\n")
        except OSError as e:
            self.ctx.console.warn(f"Could not save firewall rules to {path}: {e}")
            return

        self.ctx.console.debug(f"Firewall rules saved to {path}")

    def display_rules(self, rules: list[CanonicalRule]) -> None:
        """Log received rules one per line."""
        self.ctx.console.info("Firewall rules received:")
        for rule in rules:
            self.ctx.console.info(f"  {rule.display()}")

    def close(self) -> None:
        self.session.close()


class ApiRuleSource:
    """Desired-rule source backed by LatitudeClient.

    Keeps the snapshot path alongside the client so the reconciler only
    needs ``fetch()``.
    """

    def __init__(self, client: LatitudeClient, snapshot_path: Optional[Path] = None) -> None:
        self.client = client
        self.snapshot_path = snapshot_path

    def fetch(self) -> list[CanonicalRule]:
        return self.client.fetch_rules(self.snapshot_path)
