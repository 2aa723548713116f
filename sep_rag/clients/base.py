"""HTTP plumbing shared by the encyclopedia and Workers AI clients.

Connection errors, 429 and 5xx answers are retried (honouring
``Retry-After``). Any other non-2xx answer becomes a :class:`ServiceError`
carrying the upstream's own complaint, which callers inspect: Workers AI
only signals an exceeded context window through that message.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, List, Optional

import requests
from tenacity import RetryCallState, retry, retry_if_exception_type, stop_after_attempt, wait_exponential

logger = logging.getLogger(__name__)

USER_AGENT = "sep-rag"
TRANSIENT_STATUSES = frozenset({429, 500, 502, 503, 504})
MAX_ATTEMPTS = 3
DETAIL_LIMIT = 500


class ClientError(Exception):
    """Base exception for failed outbound requests."""


class NotFoundError(ClientError):
    """The requested page or resource does not exist (HTTP 404)."""


class ServiceError(ClientError):
    """The service answered with an error status.

    ``body_excerpt`` holds the service's error message, whitespace-collapsed
    and cut to :data:`DETAIL_LIMIT` characters.
    """

    def __init__(self, status: int, url: str, body_excerpt: Optional[str] = None) -> None:
        message = f"{url} answered {status}"
        if body_excerpt:
            message = f"{message}: {body_excerpt}"
        super().__init__(message)
        self.status = status
        self.url = url
        self.body_excerpt = body_excerpt

    def mentions(self, marker: str) -> bool:
        """Case-insensitively test the error message for ``marker``."""

        return bool(self.body_excerpt) and marker.lower() in self.body_excerpt.lower()


class _TransientStatus(Exception):
    def __init__(self, response: requests.Response) -> None:
        super().__init__(f"transient HTTP {response.status_code}")
        self.response = response


def retry_after_seconds(value: Optional[str]) -> Optional[float]:
    """Parse a ``Retry-After`` header given in seconds or as an HTTP date."""

    if not value:
        return None
    if value.isdigit():
        return float(value)
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max((when - datetime.now(timezone.utc)).total_seconds(), 0.0)


_backoff = wait_exponential(multiplier=0.5, min=0.5, max=8)


def _wait(retry_state: RetryCallState) -> float:
    outcome = retry_state.outcome
    if outcome is not None and outcome.failed:
        exception = outcome.exception()
        if isinstance(exception, _TransientStatus):
            delay = retry_after_seconds(exception.response.headers.get("Retry-After"))
            if delay is not None:
                return delay
    return _backoff(retry_state)


def error_detail(response: requests.Response) -> Optional[str]:
    """Return the service's error message for ``response``.

    Cloudflare wraps failures as ``{"errors": [{"message": ...}]}``; those
    messages are joined with ``"; "``. Any other body is used as text.
    """

    messages: List[str] = []
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict) and isinstance(payload.get("errors"), list):
        for error in payload["errors"]:
            if isinstance(error, dict) and error.get("message"):
                messages.append(str(error["message"]))

    text = "; ".join(messages) if messages else (response.text or "")
    detail = " ".join(text.split())[:DETAIL_LIMIT]
    return detail or None


class BaseHttpClient:
    """Session, base URL and retry handling for one upstream service."""

    BASE_URL = ""

    def __init__(
        self,
        *,
        session: Optional[requests.Session] = None,
        base_url: Optional[str] = None,
        timeout: float = 30.0,
    ) -> None:
        self.session = session or requests.Session()
        agent = self.session.headers.get("User-Agent")
        if not agent or agent == requests.utils.default_user_agent():
            self.session.headers["User-Agent"] = USER_AGENT
        self.base_url = (base_url or self.BASE_URL).rstrip("/")
        self.timeout = timeout

    def _url(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        return f"{self.base_url}{path}"

    @retry(
        reraise=True,
        stop=stop_after_attempt(MAX_ATTEMPTS),
        wait=_wait,
        retry=retry_if_exception_type((requests.RequestException, _TransientStatus)),
    )
    def _send(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        logger.debug("%s %s", method, url)
        response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        if response.status_code in TRANSIENT_STATUSES:
            raise _TransientStatus(response)
        return response

    def _request(self, method: str, path: str, **kwargs: Any) -> requests.Response:
        """Send a request and return the response, raising for error statuses."""

        url = self._url(path)
        try:
            response = self._send(method, url, **kwargs)
        except _TransientStatus as exc:
            response = exc.response
            logger.warning(
                "%s %s still answering %d after %d attempts",
                method,
                url,
                response.status_code,
                MAX_ATTEMPTS,
            )
        except requests.RequestException as exc:
            raise ClientError(f"Request to {url} failed: {exc}") from exc

        if response.status_code == 404:
            raise NotFoundError(f"Not found: {url}")
        if response.status_code >= 400:
            raise ServiceError(response.status_code, url, error_detail(response))
        return response
