from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

import httpx

from frontdesk.services.exceptions import DownstreamServiceError, ErrorCode

logger = logging.getLogger(__name__)

_STATUS_CODES = {
    401: ErrorCode.PERMISSION_DENIED,
    403: ErrorCode.PERMISSION_DENIED,
    404: ErrorCode.NOT_FOUND,
    409: ErrorCode.INVALID_STATUS,
    400: ErrorCode.BUSINESS_RULE_VIOLATION,
    422: ErrorCode.BUSINESS_RULE_VIOLATION,
}


def classify_response(status_code: int, body: Any) -> ErrorCode:
    """Map an error response onto the dashboard error taxonomy.

    An explicit code in the body wins over the HTTP status.
    """

    if isinstance(body, dict):
        for key in ("code", "errorCode", "error_code", "error"):
            value = body.get(key)
            if isinstance(value, str):
                try:
                    return ErrorCode(value.upper())
                except ValueError:
                    continue
    return _STATUS_CODES.get(status_code, ErrorCode.NETWORK)


def _error_message(body: Any, fallback: str) -> str:
    if isinstance(body, dict):
        for key in ("message", "detail", "error"):
            value = body.get(key)
            if isinstance(value, str) and value:
                return value
    return fallback


class SalonBackendClient:
    """Async HTTP client for the salon management backend."""

    def __init__(
        self,
        base_url: str | None,
        *,
        timeout: float = 10.0,
        use_mock_data: bool = True,
        token: str | None = None,
    ) -> None:
        self._base_url = str(base_url).rstrip("/") if base_url else None
        self._timeout = timeout
        self.use_mock_data = use_mock_data or not self._base_url
        self._headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if token:
            self._headers["Authorization"] = f"Bearer {token}"
        self._client: Optional[httpx.AsyncClient] = None
        if not self.use_mock_data and self._base_url:
            self._client = self._build_client()

    def _build_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._base_url,
            timeout=self._timeout,
            headers=self._headers,
        )

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()

    async def _ensure_client(self) -> httpx.AsyncClient:
        if self.use_mock_data or not self._base_url:
            raise RuntimeError("HTTP client requested while running in mock mode")
        if self._client is None:
            self._client = self._build_client()
        return self._client

    async def get(
        self, path: str, params: Dict[str, Any] | None = None
    ) -> Any:
        return await self._request("GET", path, params=params)

    async def post(self, path: str, payload: Dict[str, Any]) -> Any:
        return await self._request("POST", path, json=payload)

    async def put(
        self,
        path: str,
        payload: Dict[str, Any] | None = None,
        params: Dict[str, Any] | None = None,
    ) -> Any:
        return await self._request("PUT", path, json=payload, params=params)

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        if self.use_mock_data:
            raise RuntimeError("Real HTTP call requested while mock mode is enabled")
        client = await self._ensure_client()
        params = kwargs.get("params")
        if params:
            kwargs["params"] = {key: value for key, value in params.items() if value is not None}
        try:
            logger.debug("%s %s params=%s", method, path, kwargs.get("params"))
            response = await client.request(method, path, **kwargs)
            response.raise_for_status()
            if not response.content:
                return {}
            return response.json()
        except httpx.HTTPStatusError as exc:
            try:
                body = exc.response.json()
            except ValueError:
                body = exc.response.text
            code = classify_response(exc.response.status_code, body)
            logger.warning(
                "Salon backend returned %s (%s) for %s %s",
                exc.response.status_code,
                code.value,
                method,
                path,
            )
            raise DownstreamServiceError(
                _error_message(body, "Salon backend returned an error response"),
                status_code=exc.response.status_code,
                code=code,
                cause=exc,
            ) from exc
        except httpx.TimeoutException as exc:
            logger.warning("Salon backend timed out for %s %s", method, path)
            raise DownstreamServiceError(
                "Salon backend did not respond in time",
                status_code=None,
                code=ErrorCode.TIMEOUT,
                cause=exc,
            ) from exc
        except httpx.RequestError as exc:
            logger.exception("Unable to reach salon backend: %s", exc)
            raise DownstreamServiceError(
                "Unable to reach salon backend",
                status_code=None,
                code=ErrorCode.NETWORK,
                cause=exc,
            ) from exc

    async def simulate_latency(self) -> None:
        """Allow services to await for latency even when mocking responses."""

        await asyncio.sleep(0)
