"""REST provisioning backend client: create/update/delete/describe keyed by resource identifier."""

from __future__ import annotations

import json
import time
from datetime import datetime
from functools import wraps
from typing import Any, Callable
from urllib.parse import quote

import requests
import structlog
from azure.core.credentials import TokenCredential
from azure.identity import DefaultAzureCredential, ClientSecretCredential

from apigw_ops.exceptions import (
    BackendError,
    BackendTransientError,
    RateLimitError,
    ConflictError,
    PreconditionFailedError,
    ServerError,
    BadRequestError,
    UnauthorizedError,
    ForbiddenError,
    NotFoundError,
)

logger = structlog.get_logger()

MAX_ATTEMPTS = 3
INITIAL_BACKOFF = 1  # seconds
REQUEST_TIMEOUT = 120  # seconds


def _parse_error(response: requests.Response) -> dict[str, Any]:
    """Extract error details from a backend error response.

    Errors are expected in the format:
    {
      "error": {
        "code": "ErrorCode",
        "message": "Error message"
      }
    }

    Returns:
        Dict with keys: code, message, request_id. Missing keys are None.
    """
    request_id = response.headers.get("x-request-id")

    try:
        data = response.json()
        error = data.get("error", {})
        return {
            "code": error.get("code"),
            "message": error.get("message"),
            "request_id": request_id,
        }
    except (ValueError, AttributeError, json.JSONDecodeError):
        return {
            "code": None,
            "message": response.text or f"HTTP {response.status_code}",
            "request_id": request_id,
        }


def _should_retry(response: requests.Response) -> bool:
    """Transient statuses: 409 (operation in progress), 412, 429 and 5xx."""
    status = response.status_code
    return status in (409, 412, 429) or status >= 500


def _parse_retry_after(response: requests.Response, default: float) -> float:
    """Parse Retry-After header from response.

    The Retry-After header can be:
    - An integer (seconds): "5"
    - An HTTP date (RFC 7231): "Wed, 21 Oct 2026 07:28:00 GMT"

    Args:
        response: The HTTP response object
        default: Default retry delay if header is missing or unparseable

    Returns:
        Number of seconds to wait before retrying
    """
    retry_after = response.headers.get("Retry-After")
    if not retry_after:
        return default

    try:
        return int(retry_after)
    except ValueError:
        pass

    try:
        dt = datetime.strptime(retry_after, "%a, %d %b %Y %H:%M:%S %Z")
        delay = int((dt.timestamp() - time.time()))
        return max(1, delay)
    except (ValueError, AttributeError):
        pass

    return default


def _create_exception(response: requests.Response, error_detail: dict[str, Any]) -> BackendError:
    """Map an error response to the matching exception class."""
    status = response.status_code
    error_code = error_detail.get("code")
    message = error_detail.get("message") or f"HTTP {status}"
    if error_code:
        message = f"{error_code}: {message}"

    exc_class: type[BackendError]
    if status == 429:
        exc_class = RateLimitError
    elif status == 409:
        exc_class = ConflictError
    elif status == 412:
        exc_class = PreconditionFailedError
    elif status >= 500:
        exc_class = ServerError
    elif status == 400 or status == 422:
        exc_class = BadRequestError
    elif status == 401:
        exc_class = UnauthorizedError
    elif status == 403:
        exc_class = ForbiddenError
    elif status == 404:
        exc_class = NotFoundError
    else:
        exc_class = BackendError

    return exc_class(
        message,
        status_code=status,
        error_code=error_code,
        request_id=error_detail.get("request_id"),
        response=response,
    )


def _with_retry(func: Callable[..., requests.Response]) -> Callable[..., requests.Response]:
    """Decorator that adds bounded retry with exponential backoff.

    Transient responses and connection failures are retried up to
    MAX_ATTEMPTS attempts in total, sleeping for Retry-After when given and
    otherwise INITIAL_BACKOFF, doubling each time. The final failure is
    raised as a BackendError subclass.
    """

    @wraps(func)
    def wrapper(*args, **kwargs) -> requests.Response:
        backoff: float = INITIAL_BACKOFF
        for attempt in range(1, MAX_ATTEMPTS + 1):
            try:
                resp = func(*args, **kwargs)
            except (requests.ConnectionError, requests.Timeout) as e:
                if attempt == MAX_ATTEMPTS:
                    raise BackendTransientError(f"Request failed after {attempt} attempts: {e}")
                logger.warning("backend_request_retry", attempt=attempt, error=str(e), delay=backoff)
                time.sleep(backoff)
                backoff *= 2
                continue

            if resp.status_code < 400:
                return resp

            error_detail = _parse_error(resp)
            if _should_retry(resp) and attempt < MAX_ATTEMPTS:
                delay = _parse_retry_after(resp, backoff)
                logger.warning(
                    "backend_request_retry", attempt=attempt,
                    status=resp.status_code, code=error_detail.get("code"), delay=delay,
                )
                time.sleep(delay)
                backoff *= 2
                continue

            raise _create_exception(resp, error_detail)

        # Unreachable, but satisfy type checker
        raise BackendTransientError("retries exhausted")

    return wrapper


class ProvisioningClient:
    """Thin wrapper around the provisioning REST API with auth and retry.

    Auth is either a static bearer token or, when token_scope is given, an
    Azure AD token for that scope (service principal or default credential).
    """

    def __init__(self, endpoint: str, token: str | None = None,
                 token_scope: str | None = None,
                 client_id: str | None = None, client_secret: str | None = None,
                 tenant_id: str | None = None) -> None:
        self.base_url = endpoint.rstrip("/")
        self._static_token = token
        self._scope = token_scope
        self._credential: TokenCredential | None = None
        if token_scope:
            if client_id and client_secret and tenant_id:
                self._credential = ClientSecretCredential(tenant_id, client_id, client_secret)
            else:
                self._credential = DefaultAzureCredential()
        self._token: str | None = None
        self._token_expiry: float = 0

    def _get_token(self) -> str | None:
        if self._credential is None:
            return self._static_token
        now = time.time()
        if self._token and now < self._token_expiry - 60:
            return self._token
        assert self._scope is not None
        token = self._credential.get_token(self._scope)
        self._token = token.token
        self._token_expiry = token.expires_on
        return self._token

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        token = self._get_token()
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    @_with_retry
    def _request(self, method: str, path: str, body: dict[str, Any] | None = None) -> requests.Response:
        """Make an HTTP request with retry logic via decorator.

        Raises:
            BackendError: On HTTP error after exhausting retries
        """
        url = f"{self.base_url}{path}"
        return requests.request(
            method, url, headers=self._headers(), json=body, timeout=REQUEST_TIMEOUT,
        )

    @staticmethod
    def _resource_path(identifier: str) -> str:
        return f"/resources/{quote(identifier, safe='')}"

    def create(self, resource_type: str, properties: dict[str, Any]) -> dict[str, Any]:
        """Create a resource. Returns {"identifier": str, "outputs": dict}."""
        resp = self._request("POST", f"/resources/{resource_type}", {"properties": properties})
        data = resp.json()
        return {"identifier": data["identifier"], "outputs": data.get("outputs", {})}

    def update(self, identifier: str, properties: dict[str, Any]) -> dict[str, Any]:
        """Update a resource in place or by replacement (backend decides).

        Returns {"outputs": dict} plus "identifier" when the backend replaced it.
        """
        resp = self._request("PUT", self._resource_path(identifier), {"properties": properties})
        data = resp.json() if resp.content else {}
        result = {"outputs": data.get("outputs", {})}
        if data.get("identifier") and data["identifier"] != identifier:
            result["identifier"] = data["identifier"]
        return result

    def delete(self, identifier: str) -> None:
        """DELETE a resource. 404 (Not Found) is treated as success."""
        try:
            self._request("DELETE", self._resource_path(identifier))
        except NotFoundError:
            pass

    def describe(self, identifier: str) -> dict[str, Any]:
        """Returns {"exists": bool, "outputs": dict}."""
        try:
            resp = self._request("GET", self._resource_path(identifier))
        except NotFoundError:
            return {"exists": False, "outputs": {}}
        data = resp.json()
        return {"exists": True, "outputs": data.get("outputs", {})}
