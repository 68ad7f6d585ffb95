"""Authenticated HTTP client shared by every finance backend call"""

import logging
from typing import Any, Callable, Dict, Optional

import httpx

from billpay_gateway.config import settings
from billpay_gateway.domain.exceptions import FinanceAPIError, SessionExpiredError
from billpay_gateway.infrastructure.observability.metrics import finance_api_failures_counter

logger = logging.getLogger(__name__)


class AuthenticatedHttpClient:
    """
    Thin async wrapper around httpx for the finance backend.

    - Attaches the bearer token to every request and the CSRF token to non-GET requests.
    - 401/403 invalidates the session and raises SessionExpiredError.
    - A 400 carrying ``requires_conversion`` is a prompt, not an error: its body is returned.
    - Every other non-2xx response raises FinanceAPIError with the backend's detail message.
    """

    def __init__(
        self,
        base_url: str | None = None,
        token: str | None = None,
        csrf_token: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        on_session_expired: Callable[[], None] | None = None,
    ):
        self.base_url = (base_url or settings.finance_api_base).rstrip("/")
        self.token = token if token is not None else settings.api_token
        self.csrf_token = csrf_token if csrf_token is not None else settings.csrf_token
        self.timeout = timeout or settings.http_timeout_seconds
        self.transport = transport
        self.on_session_expired = on_session_expired

    @property
    def has_session(self) -> bool:
        return self.token is not None

    def invalidate_session(self) -> None:
        """Drop credentials and notify the owner so it can send the operator to login"""
        self.token = None
        self.csrf_token = None
        if self.on_session_expired is not None:
            self.on_session_expired()

    def _headers(self, method: str, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        headers: Dict[str, str] = {}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        if self.csrf_token and method.upper() != "GET":
            headers["X-CSRFToken"] = self.csrf_token
        if extra:
            headers.update(extra)
        return headers

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Any = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            try:
                response = await client.request(
                    method,
                    f"{self.base_url}{path}",
                    params=params,
                    json=json,
                    headers=self._headers(method, headers),
                )
            except httpx.TimeoutException as e:
                finance_api_failures_counter.labels(reason="timeout").inc()
                raise FinanceAPIError(f"Finance API timeout after {self.timeout}s") from e
            except httpx.RequestError as e:
                finance_api_failures_counter.labels(reason="network").inc()
                raise FinanceAPIError(f"Finance API unreachable: {e}") from e

        if response.status_code in (401, 403):
            finance_api_failures_counter.labels(reason="session").inc()
            logger.warning("Finance API rejected session", extra={"status": response.status_code, "path": path})
            self.invalidate_session()
            raise SessionExpiredError(
                "Session expired or access denied. Please log in again.",
                status_code=response.status_code,
            )

        if response.is_error:
            body = _json_or_empty(response)
            if response.status_code == 400 and body.get("requires_conversion"):
                return body
            finance_api_failures_counter.labels(reason="http").inc()
            message = body.get("detail") or body.get("message") or body.get("error")
            raise FinanceAPIError(
                message or f"Finance API error: {response.status_code}",
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError as e:
            finance_api_failures_counter.labels(reason="invalid_json").inc()
            raise FinanceAPIError("Finance API returned invalid JSON") from e

    async def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return await self.request("GET", path, params=params)

    async def post(self, path: str, json: Any = None, headers: Optional[Dict[str, str]] = None) -> Any:
        return await self.request("POST", path, json=json, headers=headers)


def _json_or_empty(response: httpx.Response) -> Dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}
