"""
Session management for the NSE India API.
NSE only serves its JSON API to clients holding the cookies set by its home page.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional

import httpx

from ..core.logging_config import create_logger

logger = create_logger(__name__)


@dataclass(frozen=True)
class SessionToken:
    """Cookie bundle obtained from the NSE handshake."""
    cookies: Dict[str, str] = field(default_factory=dict)
    acquired_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    expires_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def is_valid(self, now: datetime) -> bool:
        return now < self.expires_at

    def cookie_header(self) -> str:
        return "; ".join(f"{name}={value}" for name, value in self.cookies.items())


class NSESessionManager:
    """Caches one NSE session and renews it after its validity window."""

    def __init__(
        self,
        base_url: str,
        validity_seconds: int = 900,
        timeout: float = 10.0,
        headers: Optional[Dict[str, str]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.base_url = base_url
        self.validity = timedelta(seconds=validity_seconds)
        self.timeout = timeout
        self._headers = headers or {}
        self._transport = transport
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._token: Optional[SessionToken] = None
        self._inflight: Optional[asyncio.Future] = None
        self.handshake_count = 0

    async def acquire_session(self) -> Optional[SessionToken]:
        """Return a valid session; concurrent callers share one handshake. None when NSE is unavailable."""
        token = self._token
        if token is not None and token.is_valid(self._clock()):
            return token

        # Callers arriving during a handshake share its outcome, success or None
        if self._inflight is None:
            self._inflight = asyncio.ensure_future(self._handshake())
            self._inflight.add_done_callback(self._clear_inflight)
        return await asyncio.shield(self._inflight)

    def _clear_inflight(self, future: asyncio.Future) -> None:
        if self._inflight is future:
            self._inflight = None

    def invalidate(self) -> None:
        """Force the next acquire_session() to handshake again."""
        if self._token is not None:
            logger.info("Invalidating NSE session")
        self._token = None

    async def _handshake(self) -> Optional[SessionToken]:
        self.handshake_count += 1
        try:
            async with httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                headers=self._headers,
                follow_redirects=True,
                transport=self._transport
            ) as client:
                response = await client.get(self.base_url)
                response.raise_for_status()
                # The jar tolerates one name set for several domains or paths
                cookies = {cookie.name: cookie.value for cookie in client.cookies.jar}
        except httpx.HTTPError as e:
            logger.warning("NSE session handshake failed", extra={"error": str(e)})
            return None
        except Exception as e:
            logger.error("Unexpected error during NSE session handshake", extra={"error": str(e)})
            return None

        if not cookies:
            logger.warning("NSE session handshake returned no cookies")
            return None

        now = self._clock()
        self._token = SessionToken(cookies=cookies, acquired_at=now, expires_at=now + self.validity)
        logger.info("Acquired NSE session", extra={
            "cookies": sorted(cookies),
            "expires_at": self._token.expires_at.isoformat()
        })
        return self._token
