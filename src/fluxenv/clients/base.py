from __future__ import annotations

from typing import Any

import httpx
import structlog
from circuitbreaker import circuit
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

logger = structlog.get_logger()


class RetryableHTTPError(Exception):
    """HTTP errors that should be retried."""


class PermanentHTTPError(Exception):
    """HTTP errors that should not be retried."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def is_retryable_status(status_code: int) -> bool:
    """Determine if HTTP status code is retryable."""
    return status_code in (408, 429, 500, 502, 503, 504)


class BaseHTTPClient:
    """Base HTTP client with retry logic and circuit breaker."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 30.0,
        verify: bool = True,
        follow_redirects: bool = True,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._verify = verify
        self._follow_redirects = follow_redirects

    @property
    def base_url(self) -> str:
        return self._base_url

    def _headers(self) -> dict[str, str]:
        """Override to provide custom headers."""
        return {"Content-Type": "application/json"}

    def _auth(self) -> httpx.Auth | None:
        """Override to provide request authentication."""
        return None

    @circuit(
        failure_threshold=5,
        recovery_timeout=60,
        expected_exception=RetryableHTTPError,
    )
    @retry(
        retry=retry_if_exception_type(RetryableHTTPError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=2, min=1, max=30),
        reraise=True,
    )
    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        """Execute HTTP request with retry and circuit breaker."""
        url = f"{self._base_url}{path}"
        req_headers = self._headers()
        if headers:
            req_headers.update(headers)

        try:
            async with httpx.AsyncClient(
                timeout=self._timeout,
                verify=self._verify,
                follow_redirects=self._follow_redirects,
            ) as client:
                response = await client.request(
                    method,
                    url,
                    json=json,
                    headers=req_headers,
                    auth=self._auth(),
                )

                if is_retryable_status(response.status_code):
                    logger.warning(
                        "http_retryable_error",
                        status=response.status_code,
                        method=method,
                        url=url,
                    )
                    raise RetryableHTTPError(f"HTTP {response.status_code}: {response.text}")

                response.raise_for_status()
                if not response.content:
                    return {}
                try:
                    return response.json()
                except ValueError:
                    return {"body": response.text}

        except httpx.HTTPStatusError as exc:
            logger.error(
                "http_permanent_error",
                status=exc.response.status_code,
                method=method,
                url=url,
                error=str(exc),
            )
            raise PermanentHTTPError(
                f"status code {exc.response.status_code}: {exc.response.text}",
                status_code=exc.response.status_code,
            ) from exc
        except (httpx.TimeoutException, httpx.ConnectError, httpx.ReadError) as exc:
            logger.warning("http_network_error", method=method, url=url, error=str(exc))
            raise RetryableHTTPError(str(exc)) from exc

    async def post(
        self,
        path: str,
        *,
        json: Any = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        """Execute POST request."""
        return await self._request("POST", path, json=json, headers=headers)
