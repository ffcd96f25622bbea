"""In-memory stores for OAuth state.

These stores are shared between the OAuth endpoints and the session resolver.
Nothing here is persisted: a restart drops every pending authorization,
unredeemed code and issued token, and clients simply authorize again.

Each table has its own lock so a sweep of one table never blocks the others,
and every lookup-then-mutate sequence runs under that lock.
"""

import asyncio
import logging
import threading
import time
from collections import OrderedDict
from typing import Generic, Optional, TypeVar

from oauth.models import (
    AuthorizationCode,
    IssuedToken,
    PendingAuthorization,
    RegisteredClient,
)

logger = logging.getLogger(__name__)

TRANSACTION_TTL_SECONDS = 600
AUTHORIZATION_CODE_TTL_SECONDS = 300
ISSUED_TOKEN_TTL_SECONDS = 3600
SWEEP_INTERVAL_SECONDS = 60
MAX_REGISTERED_CLIENTS = 1000

T = TypeVar("T")


class InvalidCodeError(Exception):
    """Authorization code is unknown or has expired."""


class CodeAlreadyUsedError(Exception):
    """Authorization code was already redeemed once."""


class TTLTable(Generic[T]):
    """Keyed table whose entries expire ``ttl`` seconds after ``created_at``.

    Values must carry a ``created_at`` timestamp (seconds since the epoch).
    A ``ttl`` of None disables expiry.
    """

    def __init__(self, name: str, ttl: Optional[float]):
        self.name = name
        self.ttl = ttl
        self._entries: dict[str, T] = {}
        self._lock = threading.Lock()

    def _expired(self, value: T, now: float) -> bool:
        return self.ttl is not None and now - value.created_at > self.ttl

    def put(self, key: str, value: T) -> None:
        with self._lock:
            self._entries[key] = value

    def get(self, key: str) -> Optional[T]:
        now = time.time()
        with self._lock:
            value = self._entries.get(key)
            if value is None:
                return None
            if self._expired(value, now):
                del self._entries[key]
                return None
            return value

    def pop(self, key: str) -> Optional[T]:
        now = time.time()
        with self._lock:
            value = self._entries.pop(key, None)
        if value is None or self._expired(value, now):
            return None
        return value

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def sweep(self, now: Optional[float] = None) -> int:
        """Drop expired entries and return how many were removed."""
        if self.ttl is None:
            return 0
        now = time.time() if now is None else now
        with self._lock:
            expired = [k for k, v in self._entries.items() if self._expired(v, now)]
            for key in expired:
                del self._entries[key]
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class AuthorizationCodeTable(TTLTable[AuthorizationCode]):
    """Authorization codes, redeemable exactly once."""

    def redeem(self, code: str) -> AuthorizationCode:
        """Mark ``code`` used and return it.

        Raises InvalidCodeError for unknown or expired codes and
        CodeAlreadyUsedError on any redemption after the first.
        """
        now = time.time()
        with self._lock:
            record = self._entries.get(code)
            if record is None or self._expired(record, now):
                self._entries.pop(code, None)
                raise InvalidCodeError(code)
            if record.used:
                raise CodeAlreadyUsedError(code)
            record.used = True
            return record


class ClientRegistry(TTLTable[RegisteredClient]):
    """Dynamically registered clients; never swept, capped in size."""

    def __init__(self, name: str, max_clients: int = MAX_REGISTERED_CLIENTS):
        super().__init__(name, ttl=None)
        self.max_clients = max_clients
        self._entries: "OrderedDict[str, RegisteredClient]" = OrderedDict()

    def put(self, key: str, value: RegisteredClient) -> None:
        with self._lock:
            self._entries[key] = value
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_clients:
                evicted, _ = self._entries.popitem(last=False)
                logger.info(f"[STORE] Evicted oldest registered client: {evicted[:8]}...")


# OAuth client registration (dynamic client registration)
registered_clients = ClientRegistry("registered_clients")

# Pending authorization requests (transaction id -> client request)
pending_authorizations: TTLTable[PendingAuthorization] = TTLTable(
    "pending_authorizations", TRANSACTION_TTL_SECONDS
)

# Local authorization codes (short-lived, single use)
authorization_codes = AuthorizationCodeTable("authorization_codes", AUTHORIZATION_CODE_TTL_SECONDS)

# Issued bearer tokens (token sub -> Meta session)
issued_tokens: TTLTable[IssuedToken] = TTLTable("issued_tokens", ISSUED_TOKEN_TTL_SECONDS)

_swept_tables = (pending_authorizations, authorization_codes, issued_tokens)


def sweep_expired(now: Optional[float] = None) -> int:
    """Remove expired entries from every TTL table."""
    removed = 0
    for table in _swept_tables:
        count = table.sweep(now)
        if count:
            logger.debug(f"[STORE] Swept {count} expired entries from {table.name}")
        removed += count
    return removed


async def run_sweeper(interval: float = SWEEP_INTERVAL_SECONDS) -> None:
    """Sweep the stores every ``interval`` seconds until cancelled."""
    logger.info(f"[STORE] Expiry sweeper started (interval: {interval}s)")
    while True:
        await asyncio.sleep(interval)
        try:
            sweep_expired()
        except Exception:
            logger.exception("[STORE] Sweep failed")


def clear_all() -> None:
    """Drop all OAuth state."""
    registered_clients.clear()
    for table in _swept_tables:
        table.clear()
