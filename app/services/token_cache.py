"""OAuth access token cache with single-flight refresh."""
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

logger = logging.getLogger(__name__)

REFRESH_SKEW_SECONDS = 60


@dataclass(frozen=True)
class AccessToken:
    value: str
    expires_at: float  # epoch seconds


class AccessTokenCache:
    """
    Holds one provider's bearer token.

    `fetch` returns (token, expires_in_seconds). Only one thread refreshes at a
    time; the others wait on the lock and then reuse the fresh token.
    """

    def __init__(
        self,
        fetch: Callable[[], tuple],
        skew_seconds: int = REFRESH_SKEW_SECONDS,
        clock: Callable[[], float] = time.time,
        name: str = 'token',
    ):
        self._fetch = fetch
        self._skew = skew_seconds
        self._clock = clock
        self._name = name
        self._lock = threading.Lock()
        self._token: Optional[AccessToken] = None

    def _is_fresh(self, token: Optional[AccessToken]) -> bool:
        return token is not None and self._clock() < token.expires_at - self._skew

    def get_token(self) -> str:
        token = self._token
        if self._is_fresh(token):
            return token.value

        with self._lock:
            # Another thread may have refreshed while we waited
            if self._is_fresh(self._token):
                return self._token.value
            value, expires_in = self._fetch()
            self._token = AccessToken(value=value, expires_at=self._clock() + float(expires_in))
            logger.info(f"[EMAIL] {self._name} refreshed, expires in {int(expires_in)}s")
            return value

    def invalidate(self) -> None:
        with self._lock:
            if self._token is not None:
                logger.info(f"[EMAIL] {self._name} invalidated")
            self._token = None
