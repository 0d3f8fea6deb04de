"""Microsoft Graph HTTP session.

:class:`GraphSession` owns one :class:`httpx.Client` for the lifetime of a
``with`` block. On enter it acquires a bearer token (client-credentials flow,
or a pre-issued token from configuration); on exit the client is closed.
"""

from __future__ import annotations

import time
from typing import Any, Callable, Iterator, Mapping

import httpx
from loguru import logger

from m365_admin.config import AdminConfig

GRAPH_BASE_URL = "https://graph.microsoft.com"
LOGIN_BASE_URL = "https://login.microsoftonline.com"
GRAPH_SCOPE = "https://graph.microsoft.com/.default"
DEFAULT_TIMEOUT_SECONDS = 60.0
RETRYABLE_STATUS_CODES = {429, 503, 504}
MAX_RETRIES = 4


class GraphAuthError(RuntimeError):
    """Raised when no usable access token can be obtained."""


class GraphRequestError(RuntimeError):
    """Raised when Graph answers with an error status."""

    def __init__(self, message: str, *, status_code: int | None = None, code: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.code = code


def _error_from_response(response: httpx.Response) -> GraphRequestError:
    code = None
    message = response.text[:300]
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, Mapping) and isinstance(body.get("error"), Mapping):
        code = body["error"].get("code")
        message = body["error"].get("message") or message
    return GraphRequestError(
        f"{response.request.method} {response.request.url} returned {response.status_code}: {message}",
        status_code=response.status_code,
        code=code,
    )


def _retry_after_seconds(response: httpx.Response, attempt: int) -> float:
    header = response.headers.get("Retry-After")
    if header:
        try:
            return max(float(header), 0.0)
        except ValueError:
            pass
    return float(2 ** attempt)


class GraphSession:
    """Authenticated Graph client with paging and throttling retries."""

    def __init__(
        self,
        config: AdminConfig,
        *,
        api_version: str = "v1.0",
        transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], None] = time.sleep,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ):
        self._config = config
        self._api_version = api_version
        self._transport = transport
        self._sleep = sleep
        self._timeout = timeout
        self._client: httpx.Client | None = None

    def __enter__(self) -> "GraphSession":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def open(self) -> None:
        if self._client is not None:
            return
        client = httpx.Client(timeout=self._timeout, transport=self._transport)
        try:
            token = self._acquire_token(client)
        except Exception:
            client.close()
            raise
        client.base_url = f"{GRAPH_BASE_URL}/{self._api_version}/"
        client.headers.update({"Authorization": f"Bearer {token}", "Accept": "application/json"})
        self._client = client
        logger.debug("Graph session opened ({})", self._api_version)

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None
            logger.debug("Graph session closed")

    def _acquire_token(self, client: httpx.Client) -> str:
        cfg = self._config
        if cfg.graph_token:
            return cfg.graph_token
        if not cfg.has_app_credentials:
            raise GraphAuthError(
                "Set M365_ADMIN_GRAPH_TOKEN, or M365_ADMIN_TENANT_ID, M365_ADMIN_CLIENT_ID and "
                "M365_ADMIN_CLIENT_SECRET for app-only access"
            )
        url = f"{LOGIN_BASE_URL}/{cfg.tenant_id}/oauth2/v2.0/token"
        try:
            response = client.post(
                url,
                data={
                    "client_id": cfg.client_id,
                    "client_secret": cfg.client_secret,
                    "scope": GRAPH_SCOPE,
                    "grant_type": "client_credentials",
                },
            )
        except httpx.HTTPError as exc:
            raise GraphAuthError(f"Token request failed: {exc}") from exc
        if response.status_code != 200:
            try:
                detail = response.json().get("error_description", response.text)
            except ValueError:
                detail = response.text
            raise GraphAuthError(f"Token request returned {response.status_code}: {str(detail)[:300]}")
        token = response.json().get("access_token")
        if not token:
            raise GraphAuthError("Token response did not contain an access_token")
        logger.info("Acquired Graph token for tenant {}", cfg.tenant_id)
        return token

    @property
    def client(self) -> httpx.Client:
        if self._client is None:
            raise RuntimeError("Graph session is not open")
        return self._client

    def request(self, method: str, path: str, *, params: Mapping[str, Any] | None = None, json: Any = None) -> httpx.Response:
        """Send a request, retrying throttled responses a bounded number of times."""
        attempt = 0
        while True:
            response = self.client.request(method, path, params=params, json=json)
            if response.status_code in RETRYABLE_STATUS_CODES and attempt < MAX_RETRIES:
                delay = _retry_after_seconds(response, attempt)
                attempt += 1
                logger.warning(
                    "Graph returned {} for {} {}; retry {}/{} in {}s",
                    response.status_code,
                    method,
                    path,
                    attempt,
                    MAX_RETRIES,
                    delay,
                )
                self._sleep(delay)
                continue
            if response.is_error:
                raise _error_from_response(response)
            return response

    def get_json(self, path: str, *, params: Mapping[str, Any] | None = None) -> Mapping[str, Any]:
        return self.request("GET", path, params=params).json()

    def iter_collection(self, path: str, *, params: Mapping[str, Any] | None = None) -> Iterator[Mapping[str, Any]]:
        """Yield every item of a collection, following ``@odata.nextLink``."""
        page = self.get_json(path, params=params)
        pages = 1
        while True:
            for item in page.get("value", []):
                yield item
            next_link = page.get("@odata.nextLink")
            if not next_link:
                break
            pages += 1
            logger.debug("Fetching page {} of {}", pages, path)
            page = self.get_json(next_link)

    def delete(self, path: str) -> None:
        self.request("DELETE", path)
