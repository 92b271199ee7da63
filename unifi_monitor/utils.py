"""HTTP plumbing shared by the scraper, notifier and feed client.

Provides the browser-like session the store expects and the retry policy
that classifies response statuses into retryable and fatal failures.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Optional

import requests
from requests import Response
from tenacity import (after_log, retry, retry_if_exception_type,
                      stop_after_attempt, wait_exponential)

from .config import FETCH_ATTEMPTS
from .errors import FetchError


logger = logging.getLogger(__name__)


def get_http_session() -> requests.Session:
    """Return a new HTTP session with browser-like defaults.

    The store's data endpoints reject obvious bots, so the session sends a
    realistic User-Agent and XHR headers.  Caller is responsible for
    closing the session or letting it be garbage collected.
    """
    session = requests.Session()
    session.headers.update(
        {
            "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
                          "(KHTML, like Gecko) Chrome/124.0 Safari/537.36",
            "Accept": "*/*",
            "Accept-Language": "en,en_US;q=0.9",
            "X-Requested-With": "XMLHttpRequest",
        }
    )
    return session


class HTTPError(FetchError):
    """Raised when an HTTP request returns an error status."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RetryableHTTPError(HTTPError):
    """Server-side or rate-limit status worth another attempt."""


def _is_retryable_status(status_code: int) -> bool:
    return status_code >= 500 or status_code == 429


def _raise_for_status(resp: Response) -> None:
    try:
        resp.raise_for_status()
    except requests.RequestException as e:
        raise HTTPError(str(e), status_code=resp.status_code) from e


def retryable_request(method: Callable[[requests.Session, str, Dict[str, Any]], Response]) -> Callable[..., Response]:
    """Decorator factory to apply retry logic to HTTP calls.

    The decorated function must accept a `requests.Session` as its first
    argument, followed by URL and optional kwargs, and return a
    `requests.Response`.  Retries are attempted for network errors,
    timeouts, HTTP 429 and HTTP >= 500.  Other 4xx statuses fail at once.
    ``FETCH_ATTEMPTS`` attempts are made with exponential back-off between
    0.5 and 4 seconds; use ``.retry_with(stop=...)`` on the result to
    override per call site.
    """

    @retry(
        reraise=True,
        stop=stop_after_attempt(FETCH_ATTEMPTS),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        retry=(
            retry_if_exception_type(requests.RequestException)
            | retry_if_exception_type(RetryableHTTPError)
        ),
        after=after_log(logger, logging.WARNING),
    )
    def wrapper(session: requests.Session, url: str, **kwargs: Any) -> Response:
        response = method(session, url, **kwargs)
        if _is_retryable_status(response.status_code):
            raise RetryableHTTPError(
                f"Server returned status {response.status_code}",
                status_code=response.status_code,
            )
        _raise_for_status(response)
        return response

    return wrapper


__all__ = ["get_http_session", "retryable_request", "HTTPError", "RetryableHTTPError"]
