"""
Shopify Admin GraphQL API Client.
Handles rate limiting, transient transport errors and partial GraphQL responses.
"""

import time
import json
import logging
from typing import Any, Callable, Dict, Optional

import requests

from ..core.errors import GraphQLError, RateLimited, RequestRejected, Unavailable

logger = logging.getLogger(__name__)

DEFAULT_API_VERSION = "2024-01"
RETRYABLE_STATUSES = (500, 502, 503, 504)


def clean_domain(domain: str) -> str:
    """Strip scheme and trailing slash from a store domain."""
    domain = domain.strip()
    for prefix in ("https://", "http://"):
        if domain.startswith(prefix):
            domain = domain[len(prefix):]
    return domain.rstrip("/")


def _parse_retry_after(value: Optional[str]) -> Optional[float]:
    if value is None:
        return None
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        return None
    return seconds if seconds >= 0 else None


class ShopifyClient:
    """Client for the Shopify Admin GraphQL API."""

    def __init__(
        self,
        api_version: str = DEFAULT_API_VERSION,
        timeout: float = 30,
        max_attempts: int = 3,
        backoff_base: float = 1.0,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.api_version = api_version
        self.timeout = timeout
        self.max_attempts = max_attempts
        self.backoff_base = backoff_base
        self.session = session or requests.Session()
        self._sleep = sleep

    @classmethod
    def from_config(cls, config) -> "ShopifyClient":
        return cls(
            api_version=config.get('shopify', 'api_version', default=DEFAULT_API_VERSION),
            timeout=config.get_float('shopify', 'timeout', default=30),
            max_attempts=config.get_int('shopify', 'max_attempts', default=3),
            backoff_base=config.get_float('shopify', 'backoff_base', default=1.0)
        )

    def endpoint(self, domain: str) -> str:
        return f"https://{clean_domain(domain)}/admin/api/{self.api_version}/graphql.json"

    def call(
        self,
        domain: str,
        credential: str,
        query: str,
        variables: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """
        Execute one GraphQL query and return its `data` object.

        Retries 429s, 5xx and transport errors up to `max_attempts` times.
        A 429 waits for Retry-After when the server sends it, otherwise
        backoff_base * 2**attempt.

        Raises:
            Unavailable: retry budget exhausted
            RequestRejected: non-retryable HTTP status
            GraphQLError: errors returned without any data
        """
        url = self.endpoint(domain)
        headers = {
            'Content-Type': 'application/json',
            'X-Shopify-Access-Token': credential,
        }
        payload = {'query': query, 'variables': variables or {}}
        last_error: Optional[Exception] = None

        for attempt in range(self.max_attempts):
            try:
                return self._send(url, headers, payload)
            except RateLimited as e:
                last_error = e
                wait_time = e.retry_after if e.retry_after is not None else self._backoff(attempt)
                reason = f"Rate limit reached on {clean_domain(domain)}"
            except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as e:
                last_error = e
                wait_time = self._backoff(attempt)
                reason = f"Transport error on {clean_domain(domain)}: {e}"
            except RequestRejected as e:
                if e.status_code not in RETRYABLE_STATUSES:
                    raise
                last_error = e
                wait_time = self._backoff(attempt)
                reason = f"Server error {e.status_code} on {clean_domain(domain)}"

            if attempt < self.max_attempts - 1:
                logger.warning(
                    f"{reason}; retrying in {wait_time}s "
                    f"(attempt {attempt + 1}/{self.max_attempts})"
                )
                self._sleep(wait_time)

        logger.error(f"Giving up on {clean_domain(domain)} after {self.max_attempts} attempts")
        raise Unavailable(
            f"Shopify API unavailable after {self.max_attempts} attempts: {last_error}"
        ) from last_error

    def _backoff(self, attempt: int) -> float:
        return self.backoff_base * (2 ** attempt)

    def _send(self, url: str, headers: Dict[str, str], payload: Dict[str, Any]) -> Dict[str, Any]:
        """Single POST. Raises RateLimited / RequestRejected on bad statuses."""
        response = self.session.post(url, headers=headers, json=payload, timeout=self.timeout)

        if response.status_code == 429:
            raise RateLimited(_parse_retry_after(response.headers.get('Retry-After')))

        if not response.ok:
            logger.error(f"Failed to fetch: {url} ({response.status_code})")
            raise RequestRejected(response.status_code, response.reason or "")

        try:
            body = response.json()
        except ValueError as e:
            raise GraphQLError([f"Invalid JSON response: {e}"]) from e

        errors = body.get('errors')
        data = body.get('data')

        # GraphQL can return data AND errors (partial success)
        if errors:
            if not data:
                raise GraphQLError(errors)
            logger.warning(f"Shopify GraphQL warning: {json.dumps(errors)}")

        if data is None:
            raise GraphQLError(["Response contained no data"])

        return data
