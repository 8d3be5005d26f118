"""Cloud transport for foamsync.

``TransportClient`` posts ``{action, payload}`` envelopes to the single
``/api`` endpoint with a bearer token and a bounded retry budget.
``CloudClient`` wraps it with one coroutine per action.

Neither class raises into callers: every failure comes back as an
``ApiResponse`` with ``status == "error"`` (or a falsy return value).
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

import httpx

from foamsync.core.validation import validate_backend_url

logger = logging.getLogger(__name__)

DEFAULT_RETRIES = 2
DEFAULT_RETRY_DELAY = 1.0  # seconds, fixed
DEFAULT_TIMEOUT = 15.0

TokenProvider = Callable[[], Optional[str]]


@dataclass
class ApiResponse:
    """Response envelope: ``{status, data}`` or ``{status, message}``."""

    status: str
    data: Any = None
    message: Optional[str] = None
    http_status: Optional[int] = None

    @property
    def ok(self) -> bool:
        return self.status == "success"

    @property
    def unauthorized(self) -> bool:
        return self.http_status == 401

    @classmethod
    def error(cls, message: str, http_status: Optional[int] = None) -> "ApiResponse":
        return cls(status="error", message=message, http_status=http_status)

    @classmethod
    def from_body(cls, body: Any, http_status: int) -> "ApiResponse":
        if not isinstance(body, dict) or body.get("status") not in ("success", "error"):
            return cls.error("Malformed response envelope", http_status)
        return cls(
            status=body["status"],
            data=body.get("data"),
            message=body.get("message"),
            http_status=http_status,
        )


class TransportClient:
    """Single-endpoint request function with retries.

    Args:
        backend_url: Base URL of the backend (``/api`` is appended).
        token_provider: Callable returning the current session token, or None.
        retries: Extra attempts after the first one for transient failures.
        retry_delay: Fixed delay between attempts, in seconds.
        timeout: Per-request timeout, in seconds.
        http_client: Optional pre-built ``httpx.AsyncClient`` (tests inject one
            with a ``MockTransport``).
    """

    def __init__(
        self,
        backend_url: str,
        token_provider: Optional[TokenProvider] = None,
        *,
        retries: int = DEFAULT_RETRIES,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        timeout: float = DEFAULT_TIMEOUT,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        validated = validate_backend_url(backend_url)
        if not validated:
            raise ValueError(f"Refusing unsafe backend URL: {backend_url!r}")
        self.backend_url = validated.rstrip("/")
        self.endpoint = f"{self.backend_url}/api"
        self._token_provider = token_provider or (lambda: None)
        self.retries = retries
        self.retry_delay = retry_delay
        self.timeout = timeout
        self._client = http_client
        self._owns_client = http_client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        token = self._token_provider()
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    async def request(self, action: str, payload: Optional[Dict[str, Any]] = None) -> ApiResponse:
        """Send one action, retrying transient failures.

        Network errors, HTTP 5xx and unparseable bodies are retried.
        HTTP 401 and other 4xx responses are returned immediately since
        repeating them cannot succeed.
        """
        envelope = {"action": action, "payload": payload or {}}
        last_error = "Network request failed"

        for attempt in range(self.retries + 1):
            try:
                response = await self._get_client().post(
                    self.endpoint, json=envelope, headers=self._headers(), timeout=self.timeout
                )
            except httpx.HTTPError as e:
                last_error = str(e) or type(e).__name__
            else:
                code = response.status_code
                if 400 <= code < 500:
                    return ApiResponse.error(self._error_message(response), code)
                if code >= 500:
                    last_error = f"HTTP Error: {code}"
                else:
                    try:
                        return ApiResponse.from_body(response.json(), code)
                    except ValueError:
                        last_error = "Invalid JSON in response"

            if attempt < self.retries:
                logger.warning(
                    f"API request {action} failed, retrying... ({self.retries - attempt} left)"
                )
                await asyncio.sleep(self.retry_delay)

        logger.error(f"API request {action} failed: {last_error}")
        return ApiResponse.error(last_error)

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return f"HTTP Error: {response.status_code}"
        if isinstance(body, dict) and body.get("message"):
            return str(body["message"])
        return f"HTTP Error: {response.status_code}"

    async def health_check(self) -> Dict[str, Any]:
        """Probe ``GET /health``.

        Returns:
            Dict with 'healthy' and either 'latency_ms' or 'error'.
        """
        import time

        start = time.monotonic()
        try:
            response = await self._get_client().get(f"{self.backend_url}/health", timeout=self.timeout)
        except httpx.HTTPError as e:
            return {"healthy": False, "error": f"Connection failed: {e}"}
        latency_ms = round((time.monotonic() - start) * 1000, 2)
        if response.status_code != 200:
            return {"healthy": False, "error": f"HTTP {response.status_code}"}
        return {"healthy": True, "latency_ms": latency_ms}

    async def aclose(self):
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None


class CloudClient:
    """Action-level API built on a ``TransportClient``."""

    def __init__(self, transport: TransportClient):
        self.transport = transport

    async def sync_down(self) -> Optional[Dict[str, Any]]:
        """Fetch the full document; None on any failure or empty body."""
        result = await self.transport.request("SYNC_DOWN")
        if result.ok and isinstance(result.data, dict) and result.data:
            return result.data
        if not result.ok:
            logger.error(f"Sync down error: {result.message}")
        return None

    async def sync_up(self, state: Dict[str, Any]) -> bool:
        """Push the full document; True when the server accepted it."""
        result = await self.transport.request("SYNC_UP", {"state": state})
        if not result.ok:
            logger.error(f"Sync up error: {result.message}")
        return result.ok

    async def mark_job_paid(self, estimate_id: str) -> Optional[Dict[str, Any]]:
        """Mark an estimate Paid; returns the updated estimate."""
        result = await self.transport.request("MARK_JOB_PAID", {"estimateId": estimate_id})
        if not result.ok:
            return None
        return (result.data or {}).get("estimate")

    async def complete_job(self, estimate_id: str, actuals: Optional[Dict[str, Any]] = None) -> bool:
        result = await self.transport.request(
            "COMPLETE_JOB", {"estimateId": estimate_id, "actuals": actuals or {}}
        )
        return result.ok

    async def delete_estimate(self, estimate_id: str) -> bool:
        result = await self.transport.request("DELETE_ESTIMATE", {"estimateId": estimate_id})
        return result.ok

    async def create_work_order(
        self, estimate_id: str, estimate: Optional[Dict[str, Any]] = None
    ) -> Optional[str]:
        """Ask the server for a work order; returns its URL."""
        payload: Dict[str, Any] = {"estimateId": estimate_id}
        if estimate is not None:
            payload["estimateData"] = estimate
        result = await self.transport.request("CREATE_WORK_ORDER", payload)
        if not result.ok:
            logger.error(f"Create work order error: {result.message}")
            return None
        return (result.data or {}).get("url")

    async def log_crew_time(
        self, work_order_url: str, start_time: str, end_time: Optional[str], user: str
    ) -> bool:
        result = await self.transport.request(
            "LOG_TIME",
            {
                "workOrderUrl": work_order_url,
                "startTime": start_time,
                "endTime": end_time,
                "user": user,
            },
        )
        return result.ok
