"""Shared retry loop for the Trello and Graph HTTP clients."""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import Protocol

import requests

from trello2planner.rate_limiter import RateLimiter

RETRY_STATUSES = frozenset({429, 500, 502, 503, 504})  # Transient errors


class ErrorMapping(Protocol):
    """Per-provider translation of HTTP failures into typed exceptions"""

    def status_error(self, status_code: int, response_text: str) -> Exception:
        """Non-transient HTTP status (not retried)"""

    def exhausted_error(self, status_code: int, response_text: str, attempts: int) -> Exception:
        """Transient HTTP status that persisted through every attempt"""

    def network_error(self, error: requests.RequestException, attempts: int) -> Exception:
        """Connection failure or timeout on the last attempt"""


def send_with_retry(
    send: Callable[[], requests.Response],
    rate_limiter: RateLimiter,
    errors: ErrorMapping,
    retries: int = 3,
    base_delay: float = 1.0,
) -> requests.Response:
    """Call ``send`` until it returns a successful response.

    Every attempt passes through ``rate_limiter`` first. 429/5xx responses and
    network errors are retried with exponential backoff (1s, 2s, 4s, ...); any
    other HTTP error is raised immediately.

    Args:
        send: Performs one HTTP request and returns the response
        rate_limiter: Limiter of the provider being called
        errors: Builds the exception raised for each kind of failure
        retries: Total attempts

    Raises:
        Whatever ``errors`` builds, chained to the underlying requests error
    """
    last_exception: requests.HTTPError | None = None
    last_status = 0
    last_text = ""
    for attempt in range(retries):
        rate_limiter.acquire()
        try:
            response = send()
            response.raise_for_status()
            return response

        except requests.HTTPError as e:
            status_code = e.response.status_code if e.response is not None else 0
            response_text = e.response.text if e.response is not None else ""
            if status_code not in RETRY_STATUSES:
                raise errors.status_error(status_code, response_text) from e
            last_exception = e
            last_status = status_code
            last_text = response_text

        except requests.RequestException as e:
            if attempt == retries - 1:
                raise errors.network_error(e, retries) from e

        # Don't delay after last attempt
        if attempt < retries - 1:
            time.sleep(base_delay * (2**attempt))

    raise errors.exhausted_error(last_status, last_text, retries) from last_exception
