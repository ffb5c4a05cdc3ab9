"""Paginated client for the CommCare HQ OData form feed."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, Protocol

import requests
from tenacity import RetryCallState, Retrying, retry_if_result, stop_after_attempt, wait_exponential

from ..core import FetchResult
from ..errors import (
    AuthenticationFailure,
    FetchError,
    TransientNetworkFailure,
    UpstreamServerError,
)
from . import DatasetSource

if TYPE_CHECKING:
    from ..config import ServiceCredentials, Settings

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://www.commcarehq.org"
DEFAULT_PAGE_SIZE = 2000
DEFAULT_TIMEOUT = 30.0
PAGING_STYLES = ("odata", "offset")
AUTH_STATUSES = frozenset({401, 403})

__all__ = [
    "DEFAULT_BASE_URL",
    "DEFAULT_PAGE_SIZE",
    "DEFAULT_TIMEOUT",
    "PAGING_STYLES",
    "HTTPSession",
    "feed_url",
    "page_params",
    "fetch_all",
    "fetch_with_retry",
    "build_commcare_source",
]


class HTTPSession(Protocol):
    """Subset of :class:`requests.Session` used by the fetcher."""

    def get(self, url: str, **kwargs: Any) -> requests.Response: ...


def feed_url(project: str, form_id: str, *, base_url: str = DEFAULT_BASE_URL) -> str:
    """Return the OData feed URL for ``form_id`` in ``project``."""
    if not project or not form_id:
        raise ValueError("Both a project space and a form id are required.")
    return f"{base_url.rstrip('/')}/a/{project}/api/v0.5/odata/forms/{form_id}/feed"


def page_params(offset: int, page_size: int, paging: str = "odata") -> dict[str, Any]:
    """Return the query parameters requesting one page starting at ``offset``."""
    if paging == "odata":
        return {"$skip": offset, "$top": page_size, "$format": "json"}
    if paging == "offset":
        return {"limit": page_size, "offset": offset}
    raise ValueError(f"paging must be one of {PAGING_STYLES}, got '{paging}'.")


def _request_page(
    session: HTTPSession,
    endpoint: str,
    params: Mapping[str, Any],
    auth: tuple[str, str],
    timeout: float,
    offset: int,
) -> list[dict[str, Any]]:
    try:
        response = session.get(endpoint, params=dict(params), auth=auth, timeout=timeout)
    except requests.Timeout as exc:
        raise TransientNetworkFailure(
            f"Request for offset {offset} timed out after {timeout}s.", offset=offset
        ) from exc
    except (requests.ConnectionError, requests.exceptions.ChunkedEncodingError) as exc:
        raise TransientNetworkFailure(
            f"Connection failed while requesting offset {offset} ({type(exc).__name__}).",
            offset=offset,
        ) from exc
    except requests.RequestException as exc:
        raise UpstreamServerError(
            f"Request for offset {offset} failed ({type(exc).__name__}).", offset=offset
        ) from exc

    status = response.status_code
    if status in AUTH_STATUSES:
        raise AuthenticationFailure(
            f"Feed rejected the supplied credentials (HTTP {status}).", status=status, offset=offset
        )
    if status != 200:
        raise UpstreamServerError(
            f"Feed request failed with HTTP {status} at offset {offset}.",
            status=status,
            offset=offset,
        )

    try:
        payload = response.json()
    except ValueError as exc:
        raise UpstreamServerError(
            f"Feed returned a non-JSON body at offset {offset}.", status=status, offset=offset
        ) from exc
    if not isinstance(payload, Mapping):
        raise UpstreamServerError(
            f"Feed returned an unexpected payload at offset {offset}.", status=status, offset=offset
        )

    if "value" not in payload:
        raise UpstreamServerError(
            f"Feed response at offset {offset} has no 'value' list.", status=status, offset=offset
        )
    records = payload["value"]
    if not isinstance(records, list) or not all(isinstance(item, Mapping) for item in records):
        raise UpstreamServerError(
            f"Feed 'value' at offset {offset} is not a list of records.",
            status=status,
            offset=offset,
        )
    return [dict(item) for item in records]


def fetch_all(
    endpoint: str,
    credentials: ServiceCredentials,
    page_size: int = DEFAULT_PAGE_SIZE,
    *,
    paging: str = "odata",
    timeout: float = DEFAULT_TIMEOUT,
    session: HTTPSession | None = None,
) -> FetchResult:
    """Page through ``endpoint`` and return every record it serves.

    Parameters
    ----------
    endpoint:
        Feed URL (see :func:`feed_url`).
    credentials:
        Username/API-key pair sent as HTTP basic auth.
    page_size:
        Records requested per call. A page shorter than this ends pagination;
        so does an empty page.
    paging:
        ``"odata"`` for ``$skip``/``$top`` parameters, ``"offset"`` for
        ``limit``/``offset``.
    timeout:
        Per-request timeout in seconds.
    session:
        Optional HTTP session; a private :class:`requests.Session` is opened
        (and closed) when omitted.

    Returns
    -------
    FetchResult
        On failure the result keeps the records accumulated before the
        failing page and stores the error; it is never reported as ``ok``.
    """

    if page_size <= 0:
        raise ValueError("page_size must be positive.")
    page_params(0, page_size, paging)

    http = session if session is not None else requests.Session()
    auth = credentials.as_auth()
    result = FetchResult()
    offset = 0
    try:
        while True:
            logger.debug("Requesting %s (offset=%d, page_size=%d)", endpoint, offset, page_size)
            result.requests += 1
            try:
                page = _request_page(
                    http,
                    endpoint,
                    page_params(offset, page_size, paging),
                    auth,
                    timeout,
                    offset,
                )
            except FetchError as exc:
                logger.warning(
                    "Fetch stopped at offset %d after %d records: %s",
                    offset,
                    len(result.records),
                    exc,
                )
                result.error = exc
                return result
            if not page:
                break
            result.records.extend(page)
            if len(page) < page_size:
                break
            offset += page_size
    finally:
        if session is None:
            http.close()

    logger.info("Fetched %d records in %d requests", len(result.records), result.requests)
    return result


def fetch_with_retry(
    endpoint: str,
    credentials: ServiceCredentials,
    page_size: int = DEFAULT_PAGE_SIZE,
    *,
    attempts: int = 3,
    wait_max: float = 30.0,
    retry_on: tuple[type[FetchError], ...] = (TransientNetworkFailure,),
    paging: str = "odata",
    timeout: float = DEFAULT_TIMEOUT,
    session: HTTPSession | None = None,
) -> FetchResult:
    """Run :func:`fetch_all`, restarting from offset 0 on retryable failures.

    Only errors listed in ``retry_on`` trigger another attempt; authentication
    and server errors come back immediately. The last result is returned once
    ``attempts`` is exhausted.
    """

    if attempts < 1:
        raise ValueError("attempts must be at least 1.")

    def _should_retry(result: FetchResult) -> bool:
        return result.error is not None and isinstance(result.error, retry_on)

    def _before_sleep(state: RetryCallState) -> None:
        logger.warning(
            "Retryable fetch failure (attempt %d of %d); retrying", state.attempt_number, attempts
        )

    retrying = Retrying(
        stop=stop_after_attempt(attempts),
        wait=wait_exponential(multiplier=1, max=wait_max),
        retry=retry_if_result(_should_retry),
        before_sleep=_before_sleep,
        retry_error_callback=lambda state: state.outcome.result(),
    )
    return retrying(
        fetch_all,
        endpoint,
        credentials,
        page_size,
        paging=paging,
        timeout=timeout,
        session=session,
    )


def build_commcare_source(settings: Settings, session: HTTPSession | None = None) -> DatasetSource:
    """Return a :class:`DatasetSource` that fetches the configured form feed."""

    endpoint = settings.feed_url()
    credentials = settings.credentials()
    metadata: dict[str, Any] = {
        "project": settings.COMMCARE_PROJECT,
        "form_id": settings.COMMCARE_FORM_ID,
        "paging": settings.SURVEY_PAGING,
        "page_size": settings.SURVEY_PAGE_SIZE,
        "timeout": settings.SURVEY_TIMEOUT,
        "retry_attempts": settings.SURVEY_RETRY_ATTEMPTS,
    }

    def _fetch(source: DatasetSource) -> FetchResult:
        logger.info("Fetching %s", source.description)
        return fetch_with_retry(
            endpoint,
            credentials,
            settings.SURVEY_PAGE_SIZE,
            attempts=settings.SURVEY_RETRY_ATTEMPTS,
            paging=settings.SURVEY_PAGING,
            timeout=settings.SURVEY_TIMEOUT,
            session=session,
        )

    return DatasetSource(
        name=f"commcare-{settings.COMMCARE_FORM_ID}",
        description=(
            f"CommCare form {settings.COMMCARE_FORM_ID} in project space {settings.COMMCARE_PROJECT}"
        ),
        uri=endpoint,
        metadata=metadata,
        fetcher=_fetch,
    )
