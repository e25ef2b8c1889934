"""Jenkins REST API client.

Provides an async HTTP client with basic authentication, CSRF crumb
handling, and a single bounded retry for stale crumbs and for read
endpoints that only answer under the JSON API suffix.
"""

import json
import re
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

import httpx
import structlog
from bs4 import BeautifulSoup

from ..singleflight import SingleFlight
from .errors import (
    ClientNotInitializedError,
    CrumbIssueError,
    JenkinsConnectionError,
    JenkinsError,
    JenkinsRequestError,
)
from .types import (
    ClientConfig,
    Crumb,
    FormPayload,
    JsonEnvelopePayload,
    Payload,
    RawPayload,
    coerce_form_payload,
)

logger = structlog.get_logger(__name__)

DEFAULT_TIMEOUT = 30.0

JSON_API_SUFFIX = "/api/json"
CRUMB_ISSUER_PATH = "/crumbIssuer/api/json"

FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"
XML_CONTENT_TYPE = "text/xml"

_NEWLINE_RE = re.compile(r"[\r\n]")


class RetryAction(Enum):
    """Compensating action to take before retrying a failed request."""

    NONE = "none"
    REFRESH_CRUMB = "refresh_crumb"
    APPEND_JSON_SUFFIX = "append_json_suffix"


@dataclass(frozen=True)
class PendingRequest:
    """A request as issued by the caller, kept until its final attempt.

    The body is encoded from ``payload`` on every attempt so that a retry
    picks up the crumb current at that time. ``join_base_url`` is cleared
    on retries, which target the absolute URL of the first attempt.
    """

    method: str
    url: str
    join_base_url: bool = True
    params: Mapping[str, Any] | None = None
    headers: Mapping[str, str] = field(default_factory=dict)
    payload: Payload | None = None
    content_type: str | None = None
    json_api: bool = True


def has_json_suffix(path: str) -> bool:
    """Return whether ``path`` already requests the JSON representation."""
    return JSON_API_SUFFIX in path


def append_json_suffix(url: httpx.URL) -> httpx.URL:
    """Append the JSON API suffix to the path of ``url`` unless present.

    The query string is preserved and a trailing slash is not doubled.
    """
    if has_json_suffix(url.path):
        return url
    return url.copy_with(path=url.path.rstrip("/") + JSON_API_SUFFIX)


def extract_error_message(response: httpx.Response) -> str | None:
    """Pull a human-readable error message out of a failed response.

    A ``message`` field of a JSON object body wins. Otherwise the Jenkins
    error page is parsed for its ``error-description`` element, whose text
    is returned with line breaks removed.

    Args:
        response: The failed response.

    Returns:
        The extracted message, or None if the body carries none.
    """
    try:
        data = response.json()
    except ValueError:
        data = None
    if isinstance(data, dict) and data.get("message"):
        return str(data["message"])

    soup = BeautifulSoup(response.text, "html.parser")
    element = soup.find(id="error-description")
    if element is None:
        return None
    message = _NEWLINE_RE.sub("", element.get_text()).strip()
    return message or None


def classify_failure(request: httpx.Request, response: httpx.Response) -> RetryAction:
    """Decide how a failed request may be recovered.

    Args:
        request: The request as it was sent.
        response: The non-2xx response it received.

    Returns:
        REFRESH_CRUMB for 401/403, APPEND_JSON_SUFFIX for a 404 on a GET
        whose path lacks the JSON API suffix, NONE otherwise.
    """
    if response.status_code in (httpx.codes.UNAUTHORIZED, httpx.codes.FORBIDDEN):
        return RetryAction.REFRESH_CRUMB
    if (
        response.status_code == httpx.codes.NOT_FOUND
        and request.method == "GET"
        and not has_json_suffix(request.url.path)
    ):
        return RetryAction.APPEND_JSON_SUFFIX
    return RetryAction.NONE


def _loggable_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


class JenkinsApiClient:
    """Async HTTP client for the Jenkins remote access API.

    Authenticates with a username and API token, attaches the CSRF crumb
    to every request, and retries a failed request at most once: after
    refreshing the crumb on 401/403, or with the JSON API suffix appended
    on a 404 read.

    Construction performs no I/O; call :meth:`init` (or use the client as
    an async context manager) before issuing requests.
    """

    def __init__(
        self,
        base_url: str,
        username: str,
        api_token: str,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the client without contacting the server.

        Args:
            base_url: Root URL of the Jenkins server (e.g., "https://ci.example.com/jenkins").
            username: Jenkins user name.
            api_token: API token of that user.
            timeout: Request timeout in seconds (default: 30.0).
            transport: Optional httpx transport, mainly for tests.
        """
        self.config = ClientConfig(
            base_url=base_url.rstrip("/"),
            username=username,
            api_token=api_token,
            timeout=timeout,
        )
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._crumb: Crumb | None = None
        self._crumb_refresh = SingleFlight[Crumb]()

    @property
    def base_url(self) -> str:
        """Root URL every relative path is joined onto."""
        return self.config.base_url

    @property
    def crumb(self) -> Crumb | None:
        """The crumb attached to outgoing requests, if one was issued."""
        return self._crumb

    async def __aenter__(self):
        """Enter async context manager, initializing the client.

        The transport is closed again if initialization fails.
        """
        try:
            await self.init()
        except BaseException:
            await self.aclose()
            raise
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Exit async context manager and cleanup resources."""
        await self.aclose()

    async def init(self) -> None:
        """Open the HTTP transport and fetch the initial crumb.

        Calling it again keeps the transport and refreshes the crumb.

        Raises:
            CrumbIssueError: If no crumb could be obtained.
        """
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                auth=(self.config.username, self.config.api_token),
                timeout=self.config.timeout,
                follow_redirects=True,
                transport=self._transport,
            )
        logger.info(
            "Initializing Jenkins client",
            base_url=self.base_url,
            username=self.config.username,
        )
        await self.get_crumb()

    async def aclose(self) -> None:
        """Close the HTTP transport if open."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()

    async def get_crumb(self) -> Crumb:
        """Fetch a fresh crumb from the crumb issuer and store it.

        Concurrent callers share a single in-flight fetch. The stored crumb
        is replaced as a whole.

        Returns:
            The newly issued crumb.

        Raises:
            CrumbIssueError: If the fetch or the decoding of its body fails.
        """
        self._require_client()
        return await self._crumb_refresh.run(self._fetch_crumb)

    async def _fetch_crumb(self) -> Crumb:
        pending = PendingRequest(method="GET", url=CRUMB_ISSUER_PATH)
        try:
            response = await self._execute(pending, allow_retry=False)
            data = response.json()
            # Some proxies hand back the crumb document JSON-encoded twice
            if isinstance(data, str):
                data = json.loads(data)
            crumb = Crumb.model_validate(data)
        except (JenkinsError, ValueError) as e:
            msg = (
                f"Could not obtain a CSRF crumb from {self.base_url}. CSRF "
                "protection may be disabled on the server, or it was changed "
                "after this client was initialized; re-initialize the client. "
                f"Cause: {e}"
            )
            raise CrumbIssueError(msg) from e

        self._crumb = crumb
        logger.debug("Refreshed crumb", crumb=crumb.as_headers())
        return crumb

    async def get(
        self,
        path: str,
        *,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
        json_api: bool = True,
    ) -> httpx.Response:
        """Issue a read request.

        Args:
            path: Path relative to the base URL, or an absolute URL.
            params: Optional query parameters (e.g., ``{"tree": "jobs[name]"}``).
            headers: Extra headers, applied over the crumb header.
            json_api: Append the JSON API suffix to the path (default: True).

        Returns:
            The successful response.

        Raises:
            JenkinsRequestError: If the final attempt is not successful.
            JenkinsConnectionError: If the server could not be reached.
            CrumbIssueError: If a crumb refresh was needed and failed.
        """
        self._require_ready()
        pending = PendingRequest(
            method="GET",
            url=path,
            params=params,
            headers=dict(headers or {}),
            json_api=json_api,
        )
        return await self._execute(pending)

    async def post(
        self,
        path: str,
        data: FormPayload | JsonEnvelopePayload | Mapping[str, Any] | None = None,
        *,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
        content_type: str = FORM_CONTENT_TYPE,
    ) -> httpx.Response:
        """Submit a form.

        A payload carrying a ``json`` document gets every crumb field
        injected into that document, which is then serialized to a string
        before the whole payload is form-encoded. ``data`` is not modified.

        Args:
            path: Path relative to the base URL, or an absolute URL.
            data: Form payload; plain mappings are coerced.
            params: Optional query parameters.
            headers: Extra headers, applied over the crumb header.
            content_type: Content type of the body.

        Returns:
            The successful response.

        Raises:
            JenkinsRequestError: If the final attempt is not successful.
            JenkinsConnectionError: If the server could not be reached.
            CrumbIssueError: If a crumb refresh was needed and failed.
        """
        self._require_ready()
        pending = PendingRequest(
            method="POST",
            url=path,
            params=params,
            headers=dict(headers or {}),
            payload=coerce_form_payload(data),
            content_type=content_type,
        )
        return await self._execute(pending)

    async def post_config(
        self,
        path: str,
        data: str | bytes = b"",
        *,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
        content_type: str = XML_CONTENT_TYPE,
    ) -> httpx.Response:
        """Post an opaque document, typically a job's ``config.xml``.

        Args:
            path: Path relative to the base URL, or an absolute URL.
            data: Body sent as is.
            params: Optional query parameters (e.g., ``{"name": "new-job"}``).
            headers: Extra headers, applied over the crumb header.
            content_type: Content type of the body.

        Returns:
            The successful response.

        Raises:
            JenkinsRequestError: If the final attempt is not successful.
            JenkinsConnectionError: If the server could not be reached.
            CrumbIssueError: If a crumb refresh was needed and failed.
        """
        self._require_ready()
        pending = PendingRequest(
            method="POST",
            url=path,
            params=params,
            headers=dict(headers or {}),
            payload=RawPayload(content=data),
            content_type=content_type,
        )
        return await self._execute(pending)

    def _require_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            msg = "Jenkins client is not initialized, call init() first"
            raise ClientNotInitializedError(msg)
        return self._client

    def _require_ready(self) -> None:
        self._require_client()
        if self._crumb is None:
            msg = "Jenkins client has no crumb, call init() first"
            raise ClientNotInitializedError(msg)

    def _resolve_url(self, pending: PendingRequest) -> httpx.URL:
        url = httpx.URL(pending.url)
        if pending.join_base_url and url.is_relative_url:
            url = httpx.URL(f"{self.base_url}/{pending.url.lstrip('/')}")
        if pending.json_api and pending.method == "GET":
            url = append_json_suffix(url)
        return url

    def _encode_payload(self, payload: Payload | None) -> dict[str, Any]:
        if payload is None:
            return {}
        if isinstance(payload, RawPayload):
            return {"content": payload.content}
        if isinstance(payload, JsonEnvelopePayload):
            crumb_fields = self._crumb.as_headers() if self._crumb else {}
            document = {**payload.json, **crumb_fields}
            return {"data": {**payload.fields, "json": json.dumps(document)}}
        if isinstance(payload, FormPayload):
            return {"data": dict(payload.fields)}
        msg = f"Unsupported payload type: {type(payload).__name__}"
        raise TypeError(msg)

    def _build_request(
        self,
        client: httpx.AsyncClient,
        pending: PendingRequest,
    ) -> httpx.Request:
        headers = self._crumb.as_headers() if self._crumb else {}
        if pending.content_type:
            headers["Content-Type"] = pending.content_type
        headers.update(pending.headers)
        return client.build_request(
            pending.method,
            self._resolve_url(pending),
            params=pending.params,
            headers=headers,
            **self._encode_payload(pending.payload),
        )

    async def _execute(
        self,
        pending: PendingRequest,
        allow_retry: bool = True,
    ) -> httpx.Response:
        """Send a request, retrying once after a recoverable failure.

        Args:
            pending: The request to send.
            allow_retry: Whether a failure may be retried. Always False on
                the retry itself and on the crumb fetch.

        Returns:
            The successful response.

        Raises:
            JenkinsRequestError: If the final attempt is not successful.
            JenkinsConnectionError: If the server could not be reached.
        """
        client = self._require_client()
        request = self._build_request(client, pending)

        try:
            response = await client.send(request)
        except httpx.RequestError as e:
            logger.exception(
                "API request could not be sent",
                method=request.method,
                url=str(request.url),
            )
            msg = f"{request.method} {request.url} could not be sent: {e}"
            raise JenkinsConnectionError(msg) from e

        if response.is_success:
            logger.debug(
                "API response",
                url=str(request.url),
                status_code=response.status_code,
                body=_loggable_body(response),
            )
            return response

        action = classify_failure(request, response) if allow_retry else RetryAction.NONE

        if action is RetryAction.REFRESH_CRUMB:
            logger.info(
                "Request rejected, refreshing crumb and retrying",
                method=request.method,
                url=str(request.url),
                status_code=response.status_code,
            )
            await self.get_crumb()
            retry = replace(pending, url=str(request.url), params=None, join_base_url=False)
            return await self._execute(retry, allow_retry=False)

        if action is RetryAction.APPEND_JSON_SUFFIX:
            retry_url = append_json_suffix(request.url)
            logger.info(
                "Resource not found, retrying with JSON API suffix",
                url=str(request.url),
                retry_url=str(retry_url),
            )
            retry = replace(pending, url=str(retry_url), params=None, join_base_url=False)
            return await self._execute(retry, allow_retry=False)

        raise self._request_error(request, response)

    def _request_error(
        self,
        request: httpx.Request,
        response: httpx.Response,
    ) -> JenkinsRequestError:
        detail = extract_error_message(response)
        logger.error(
            "API request failed",
            method=request.method,
            url=str(request.url),
            status_code=response.status_code,
            body=response.text,
        )
        msg = f"{request.method} {request.url} failed with status code {response.status_code}"
        if detail:
            msg = f"{msg} (html error message:{detail})"
        return JenkinsRequestError(
            msg,
            status_code=response.status_code,
            method=request.method,
            url=str(request.url),
            body=response.text,
            detail=detail,
        )
