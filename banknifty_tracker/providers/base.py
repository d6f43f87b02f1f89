"""
Base class for upstream quote sources in Bank Nifty Tracker.
Owns the HTTP client, per-request timeouts, rate limiting and the error taxonomy.
"""

from typing import Dict, Optional, Any
from datetime import datetime
import httpx
import asyncio

from ..core.logging_config import create_logger

logger = create_logger(__name__)

# NSE rejects requests that do not look like they come from a browser
DEFAULT_HEADERS = {
    'User-Agent': (
        'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 '
        '(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36'
    ),
    'Accept': 'application/json, text/plain, */*',
    'Accept-Language': 'en-US,en;q=0.9',
    'Connection': 'keep-alive'
}


class ProviderError(Exception):
    """Upstream unavailable: network error, timeout, non-2xx or malformed payload."""

    def __init__(self, message: str, provider: str, symbol: Optional[str] = None):
        self.message = message
        self.provider = provider
        self.symbol = symbol
        super().__init__(self.message)


class RateLimitError(ProviderError):
    """Exception raised when provider rate limit is exceeded."""
    pass


class SessionExpiredError(ProviderError):
    """Authorization failure from a session-authenticated source."""
    pass


class SessionUnavailableError(ProviderError):
    """No session could be acquired, so the source cannot be called at all."""
    pass


class DataNotFoundError(ProviderError):
    """Exception raised when requested data is not found."""
    pass


class BaseDataProvider:
    """Shared HTTP plumbing for market data providers."""

    def __init__(
        self,
        name: str,
        base_url: Optional[str] = None,
        timeout: float = 10.0,
        retry_count: int = 1,
        rate_limit_per_minute: int = 60,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.name = name
        self.base_url = base_url
        self.timeout = timeout
        self.retry_count = max(1, retry_count)
        self.rate_limit_per_minute = rate_limit_per_minute
        self.client: Optional[httpx.AsyncClient] = None
        self._transport = transport
        self._request_count = 0
        self._last_request_time = datetime.utcnow()
        self._rate_limit_lock = asyncio.Lock()

    async def __aenter__(self):
        """Async context manager entry."""
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.disconnect()

    async def connect(self) -> None:
        """Initialize HTTP client connection."""
        if self.client is None:
            limits = httpx.Limits(max_keepalive_connections=10, max_connections=20)

            self.client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout, connect=min(self.timeout, 5.0)),
                limits=limits,
                headers=self._get_default_headers(),
                follow_redirects=True,
                transport=self._transport
            )

            logger.debug("Connected to provider", extra={"provider": self.name})

    async def disconnect(self) -> None:
        """Close HTTP client connection."""
        if self.client:
            await self.client.aclose()
            self.client = None
            logger.debug("Disconnected from provider", extra={"provider": self.name})

    def _get_default_headers(self) -> Dict[str, str]:
        """Get default HTTP headers for requests."""
        return dict(DEFAULT_HEADERS)

    async def _make_request(
        self,
        method: str,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
        symbol: Optional[str] = None
    ) -> Any:
        """Make HTTP request with rate limiting and error handling."""

        if not self.client:
            await self.connect()

        await self._apply_rate_limit()

        request_headers = self._get_default_headers()
        if headers:
            request_headers.update(headers)

        request_timeout = httpx.Timeout(timeout) if timeout is not None else None

        for attempt in range(self.retry_count):
            try:
                logger.debug("Making request to provider", extra={
                    "provider": self.name,
                    "method": method,
                    "url": url,
                    "attempt": attempt + 1
                })

                request = self.client.build_request(
                    method=method,
                    url=url,
                    params=params,
                    headers=request_headers,
                    timeout=request_timeout if request_timeout is not None else self.client.timeout
                )
                response = await self.client.send(request)

                if response.status_code == 429:
                    raise RateLimitError(f"Rate limited by {self.name}", self.name, symbol)

                # NSE answers a stale or missing session with 401/403
                if response.status_code in (401, 403):
                    raise SessionExpiredError(
                        f"Authorization failed for {self.name} ({response.status_code})",
                        self.name,
                        symbol
                    )

                response.raise_for_status()

                try:
                    data = response.json()
                except ValueError as e:
                    raise ProviderError(
                        f"Invalid JSON response from {self.name}: {str(e)}",
                        self.name,
                        symbol
                    )

                logger.debug("Received response from provider", extra={
                    "provider": self.name,
                    "status_code": response.status_code,
                    "response_size": len(response.content)
                })
                return data

            except httpx.TimeoutException:
                logger.warning("Request timeout", extra={
                    "provider": self.name,
                    "attempt": attempt + 1,
                    "url": url
                })

                if attempt < self.retry_count - 1:
                    await asyncio.sleep(2 ** attempt)
                    continue
                raise ProviderError(f"Request timeout for {self.name}", self.name, symbol)

            except httpx.HTTPError as e:
                logger.warning("HTTP error", extra={
                    "provider": self.name,
                    "error": str(e),
                    "attempt": attempt + 1
                })

                if attempt < self.retry_count - 1:
                    await asyncio.sleep(2 ** attempt)
                    continue
                raise ProviderError(f"HTTP error for {self.name}: {str(e)}", self.name, symbol)

        raise ProviderError(f"Max retries exceeded for {self.name}", self.name, symbol)

    async def _apply_rate_limit(self) -> None:
        """Apply rate limiting to requests."""
        async with self._rate_limit_lock:
            now = datetime.utcnow()

            # Reset counter if more than a minute has passed
            if (now - self._last_request_time).total_seconds() > 60:
                self._request_count = 0
                self._last_request_time = now

            if self._request_count >= self.rate_limit_per_minute:
                wait_time = 60 - (now - self._last_request_time).total_seconds()
                if wait_time > 0:
                    logger.debug("Rate limiting request", extra={
                        "provider": self.name,
                        "wait_time": wait_time
                    })
                    await asyncio.sleep(wait_time)
                self._request_count = 0
                self._last_request_time = datetime.utcnow()

            self._request_count += 1


def to_float(value: Any) -> Optional[float]:
    """Coerce an upstream number; missing, blank, non-numeric and zero become None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.replace(',', '').strip()
        if not value or value == '-':
            return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if number != number or number == 0:
        return None
    return number
