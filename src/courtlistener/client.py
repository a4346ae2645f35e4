"""
CourtListener REST client.

Wraps the v4 REST API with:
- Token authentication on every call
- Cursor pagination (the API's absolute ``next`` URLs are the cursor)
- Request accounting against a shared ``RateLimiter``
- Retry with exponential backoff for network errors and 5xx responses

HTTP 429 is never retried here: ``RateLimitedError`` carries the parsed
``Retry-After`` value and the caller decides whether to wait or abort.

Usage:
    from src.courtlistener.client import CourtListenerClient

    client = CourtListenerClient(api_key, limiter=limiter)
    page = client.list_courts(filters={"full_name__icontains": "California"})
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Callable, Iterable, Mapping, Optional
from urllib.parse import parse_qsl, urlsplit, urlunsplit

import httpx
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from src.core_config import DEFAULT_COURTLISTENER_BASE_URL

from .rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

USER_AGENT = "JudgeFinder Platform (https://judgefinder.io, support@judgefinder.io)"
MAX_ERROR_BODY_LEN = 500
DEFAULT_TIMEOUT = 30.0
DEFAULT_MAX_ATTEMPTS = 3


# =============================================================================
# Errors
# =============================================================================


class CourtListenerError(Exception):
    """Base class for CourtListener client failures."""


class CourtListenerConfigError(CourtListenerError):
    """Client cannot be built from the current configuration."""


class CourtListenerNetworkError(CourtListenerError):
    """Transport failure that persisted through all retries."""


class CourtListenerFetchError(CourtListenerError):
    """Non-2xx response other than 429."""

    def __init__(self, status_code: int, body: str, url: str | None = None) -> None:
        self.status_code = status_code
        self.body = (body or "")[:MAX_ERROR_BODY_LEN]
        self.url = url
        super().__init__(f"CourtListener request failed with HTTP {status_code}: {self.body}")


class _ServerError(CourtListenerFetchError):
    """5xx response; retried before surfacing as a fetch error."""


class RateLimitedError(CourtListenerError):
    """HTTP 429. ``retry_after`` is in seconds, or None when not provided."""

    def __init__(self, retry_after: Optional[float], url: str | None = None) -> None:
        self.retry_after = retry_after
        self.url = url
        hint = f"retry after {retry_after:.0f}s" if retry_after is not None else "no Retry-After"
        super().__init__(f"CourtListener rate limit hit (429, {hint})")


def parse_retry_after(value: str | None, now: datetime | None = None) -> Optional[float]:
    """Parse a Retry-After header given as delta-seconds or an HTTP-date."""
    if value is None:
        return None
    value = value.strip()
    if not value:
        return None
    if value.isdigit():
        return float(value)
    try:
        target = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if target is None:
        return None
    if target.tzinfo is None:
        target = target.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    return max(0.0, (target - now).total_seconds())


# =============================================================================
# Pages
# =============================================================================


@dataclass
class Page:
    """One page of results. ``next_cursor`` is None on the last page."""

    results: list[dict[str, Any]] = field(default_factory=list)
    next_cursor: Optional[str] = None
    count: Optional[int] = None

    @property
    def exhausted(self) -> bool:
        return self.next_cursor is None


def _with_format_json(url: str) -> str:
    parts = urlsplit(url)
    query = dict(parse_qsl(parts.query, keep_blank_values=True))
    if query.get("format") == "json":
        return url
    suffix = "format=json"
    new_query = f"{parts.query}&{suffix}" if parts.query else suffix
    return urlunsplit((parts.scheme, parts.netloc, parts.path, new_query, parts.fragment))


def _date_param(value: date | str | None) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, date):
        return value.isoformat()
    return value


class CourtListenerClient:
    """Synchronous CourtListener API client. One instance per run is enough."""

    def __init__(
        self,
        api_key: str | None,
        *,
        limiter: RateLimiter | None = None,
        base_url: str = DEFAULT_COURTLISTENER_BASE_URL,
        http_client: httpx.Client | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        request_delay: float = 0.0,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if not api_key or not api_key.strip():
            raise CourtListenerConfigError(
                "CourtListener API key missing: set COURTLISTENER_API_KEY"
            )
        self.base_url = base_url.rstrip("/")
        self.limiter = limiter
        self.request_delay = request_delay
        self.max_attempts = max_attempts
        self._sleep = sleep
        self._last_request_at: float | None = None
        self._http = http_client or httpx.Client(timeout=httpx.Timeout(timeout))
        self._headers = {
            "Authorization": f"Token {api_key.strip()}",
            "Accept": "application/json",
            "User-Agent": USER_AGENT,
        }

    @classmethod
    def from_settings(cls, settings: Any, limiter: RateLimiter | None = None) -> "CourtListenerClient":
        return cls(
            settings.COURTLISTENER_API_KEY,
            limiter=limiter,
            base_url=settings.COURTLISTENER_BASE_URL,
        )

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> "CourtListenerClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _url(self, resource: str) -> str:
        if resource.startswith("http://") or resource.startswith("https://"):
            return resource
        return f"{self.base_url}/{resource.strip('/')}/"

    def _throttle(self) -> None:
        if self.request_delay <= 0 or self._last_request_at is None:
            return
        elapsed = time.monotonic() - self._last_request_at
        if elapsed < self.request_delay:
            self._sleep(self.request_delay - elapsed)

    def _send_once(self, url: str, params: Mapping[str, Any] | None, allow_404: bool) -> Optional[dict[str, Any]]:
        self._throttle()
        try:
            response = self._http.get(url, params=params, headers=self._headers)
        finally:
            self._last_request_at = time.monotonic()
            # Failed attempts still count against the quota.
            if self.limiter is not None:
                self.limiter.record_request()

        status = response.status_code
        if status == 429:
            raise RateLimitedError(parse_retry_after(response.headers.get("Retry-After")), url=url)
        if status == 404 and allow_404:
            return None
        if status >= 500:
            raise _ServerError(status, response.text, url=url)
        if status < 200 or status >= 300:
            raise CourtListenerFetchError(status, response.text, url=url)
        return response.json()

    def request(
        self,
        resource: str,
        params: Mapping[str, Any] | None = None,
        *,
        allow_404: bool = False,
    ) -> Optional[dict[str, Any]]:
        """GET a resource (path relative to the API root, or an absolute URL)."""
        url = self._url(resource)
        query: dict[str, Any] | None
        if url == resource:
            # Absolute pagination URL already carries its query string.
            url = _with_format_json(url)
            query = None
        else:
            query = {key: value for key, value in (params or {}).items() if value is not None}
            query["format"] = "json"

        retryer = Retrying(
            retry=retry_if_exception_type((_ServerError, httpx.TransportError)),
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=1, min=1, max=10),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            sleep=self._sleep,
            reraise=True,
        )
        try:
            for attempt in retryer:
                with attempt:
                    return self._send_once(url, query, allow_404)
        except _ServerError as exc:
            raise CourtListenerFetchError(exc.status_code, exc.body, url=exc.url) from exc
        except httpx.TransportError as exc:
            raise CourtListenerNetworkError(f"CourtListener request to {url} failed: {exc}") from exc
        return None  # pragma: no cover - Retrying always returns or raises

    def list_page(
        self,
        resource: str,
        params: Mapping[str, Any] | None = None,
        cursor: str | None = None,
    ) -> Page:
        """Fetch one page. When ``cursor`` is given it replaces resource and params."""
        payload = self.request(cursor, None) if cursor else self.request(resource, params)
        payload = payload or {}
        return Page(
            results=list(payload.get("results") or []),
            next_cursor=payload.get("next") or None,
            count=payload.get("count"),
        )

    # ------------------------------------------------------------------
    # Endpoints
    # ------------------------------------------------------------------

    def list_courts(
        self,
        *,
        filters: Mapping[str, Any] | None = None,
        page_size: int = 20,
        cursor: str | None = None,
    ) -> Page:
        params = {"page_size": page_size, "ordering": "id", **(filters or {})}
        return self.list_page("courts", params, cursor)

    def list_judges(
        self,
        *,
        court_ids: Iterable[str] = (),
        page_size: int = 10,
        cursor: str | None = None,
    ) -> Page:
        params: dict[str, Any] = {"page_size": page_size, "ordering": "id"}
        ids = [court_id for court_id in court_ids if court_id]
        if ids:
            params["positions__court__id__in"] = ",".join(sorted(ids))
        return self.list_page("people", params, cursor)

    def get_judge(self, person_id: str | int) -> Optional[dict[str, Any]]:
        return self.request(f"people/{person_id}", allow_404=True)

    def get_positions(self, person_id: str | int) -> list[dict[str, Any]]:
        return self.list_page("positions", {"person": person_id, "page_size": 100}).results

    def get_educations(self, person_id: str | int) -> list[dict[str, Any]]:
        return self.list_page("educations", {"person": person_id, "page_size": 100}).results

    def get_political_affiliations(self, person_id: str | int) -> list[dict[str, Any]]:
        return self.list_page(
            "political-affiliations", {"person": person_id, "page_size": 100}
        ).results

    def get_opinions_by_judge(
        self,
        person_id: str | int,
        *,
        start_date: date | str | None = None,
        end_date: date | str | None = None,
        page_size: int = 50,
        cursor: str | None = None,
    ) -> Page:
        params = {
            "author": person_id,
            "cluster__date_filed__gte": _date_param(start_date),
            "cluster__date_filed__lte": _date_param(end_date),
            "page_size": page_size,
            "ordering": "-date_created",
        }
        return self.list_page("opinions", params, cursor)

    def get_dockets_by_judge(
        self,
        person_id: str | int,
        *,
        start_date: date | str | None = None,
        end_date: date | str | None = None,
        page_size: int = 25,
        cursor: str | None = None,
    ) -> Page:
        params = {
            "assigned_to_id": person_id,
            "date_filed__gte": _date_param(start_date),
            "date_filed__lte": _date_param(end_date),
            "page_size": page_size,
            "ordering": "-date_filed",
        }
        return self.list_page("dockets", params, cursor)

    def validate_judge(self, person_id: str | int) -> bool:
        """True when CourtListener has at least one opinion authored by the judge."""
        page = self.get_opinions_by_judge(person_id, page_size=1)
        return bool(page.results)
