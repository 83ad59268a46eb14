"""Connection codes — short shareable codes that pair two identities.

An owner generates a code; another user redeems it to create a connection
record. Codes may expire, may be limited to a number of uses, or may be
permanent. Live codes are kept in an :class:`ExpiryStore`; each issued code
is also recorded with the backend so the owner can look up their latest one.
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from pairing_broker.errors import (
    CodeExpiredError,
    CodeNotFoundError,
    InvalidOwnerError,
    NoCodeIssuedError,
    SelfConnectionError,
    UpstreamError,
    UsageExceededError,
    ValidationError,
)
from pairing_broker.gateways.base import AccountGateway, Connection
from pairing_broker.services.codes import generate_connection_code
from pairing_broker.store.expiry_store import Clock, ExpiryStore, utc_now

logger = logging.getLogger(__name__)

DEFAULT_EXPIRATION_MINUTES = 15
MAX_GENERATE_ATTEMPTS = 10


@dataclass(frozen=True)
class ConnectionCodeRecord:
    code: str
    owner_id: str
    is_permanent: bool = False
    max_uses: int | None = None
    current_uses: int = 0
    expires_at: datetime | None = None

    @property
    def exhausted(self) -> bool:
        return self.max_uses is not None and self.current_uses >= self.max_uses


@dataclass
class IssuedCode:
    code: str
    expires_at: datetime | None
    is_permanent: bool
    code_id: str | None = None


class _CodeSpent(Exception):
    """Raised inside a store mutation to abort it; carries the error to surface."""

    def __init__(self, error: Exception) -> None:
        self.error = error


class ConnectionCodeFlow:
    """Issues, redeems and looks up connection codes."""

    def __init__(
        self,
        store: ExpiryStore[str, ConnectionCodeRecord],
        gateway: AccountGateway,
        clock: Clock = utc_now,
        default_expiration_minutes: int = DEFAULT_EXPIRATION_MINUTES,
        max_generate_attempts: int = MAX_GENERATE_ATTEMPTS,
    ) -> None:
        self._store = store
        self._gateway = gateway
        self._clock = clock
        self._default_expiration = default_expiration_minutes
        self._max_attempts = max_generate_attempts

    async def generate(
        self,
        owner_id: str,
        expiration_minutes: int | None = None,
        max_uses: int | None = None,
        is_permanent: bool = False,
    ) -> IssuedCode:
        """Issue a new code owned by *owner_id*.

        The owner must exist in the backend. Permanent codes never expire;
        otherwise the code lives ``expiration_minutes`` (default 15).
        """
        if not owner_id:
            raise InvalidOwnerError("ownerId is required")
        if expiration_minutes is not None and expiration_minutes <= 0:
            raise ValidationError("expirationMinutes must be positive")
        if max_uses is not None and max_uses <= 0:
            raise ValidationError("maxUses must be positive")
        if await self._gateway.get_profile_by_id(owner_id) is None:
            logger.info("Refusing to issue code for unknown owner %s", owner_id)
            raise InvalidOwnerError()

        expires_at = None
        if not is_permanent:
            minutes = expiration_minutes or self._default_expiration
            expires_at = self._clock() + timedelta(minutes=minutes)

        code = self._fresh_code()
        record = ConnectionCodeRecord(
            code=code,
            owner_id=owner_id,
            is_permanent=is_permanent,
            max_uses=max_uses,
            expires_at=expires_at,
        )
        self._store.put(code, record, expires_at)
        try:
            code_id = await self._gateway.record_connection_code(
                owner_id, code, expires_at, is_permanent, max_uses
            )
        except Exception:
            # An unrecorded code must not stay redeemable.
            self._store.delete(code)
            raise
        logger.info(
            "Issued connection code for %s (permanent=%s, max_uses=%s)",
            owner_id,
            is_permanent,
            max_uses,
        )
        return IssuedCode(code=code, expires_at=expires_at, is_permanent=is_permanent, code_id=code_id)

    async def verify(self, code: str, requesting_id: str) -> Connection:
        """Redeem *code* on behalf of *requesting_id* and create the connection.

        The usage check and increment happen in a single store mutation before
        the backend is called, so a single-use code cannot be redeemed twice.
        A code whose last use has been taken stays in the store until the next
        attempt, which reports :class:`UsageExceededError` and removes it. A
        code past its expiry that the sweep has not removed yet reports
        :class:`CodeExpiredError`; once swept it is simply not found.
        """
        code = (code or "").strip().upper()
        if not code or not requesting_id:
            raise ValidationError("code and requestingUserId are required")

        now = self._clock()

        def consume(record: ConnectionCodeRecord) -> ConnectionCodeRecord:
            if record.owner_id == requesting_id:
                raise _CodeSpent(SelfConnectionError())
            if record.expires_at is not None and record.expires_at <= now:
                raise _CodeSpent(CodeExpiredError())
            if record.exhausted:
                raise _CodeSpent(UsageExceededError())
            return dataclasses.replace(record, current_uses=record.current_uses + 1)

        try:
            record = self._store.update(code, consume, include_expired=True)
        except _CodeSpent as spent:
            if not isinstance(spent.error, SelfConnectionError):
                self._store.delete(code)
            logger.info("Connection code %s rejected: %s", code, spent.error)
            raise spent.error from None

        if record is None:
            raise CodeNotFoundError()

        connection = await self._gateway.create_connection(record.owner_id, requesting_id)
        logger.info(
            "Connection %s created: %s ↔ %s (use %d/%s)",
            connection.id,
            record.owner_id,
            requesting_id,
            record.current_uses,
            record.max_uses if record.max_uses is not None else "∞",
        )
        return connection

    async def get_latest(self, owner_id: str) -> dict[str, Any]:
        """Most recently issued code row for *owner_id*."""
        if not owner_id:
            raise ValidationError("userId is required")
        row = await self._gateway.get_latest_connection_code(owner_id)
        if row is None:
            raise NoCodeIssuedError()
        return row

    def peek(self, code: str) -> ConnectionCodeRecord | None:
        """Live record for *code*, if any."""
        return self._store.get(code.strip().upper())

    # ── Private helpers ──────────────────────────────────

    def _fresh_code(self) -> str:
        for _ in range(self._max_attempts):
            code = generate_connection_code()
            if code not in self._store:
                return code
        raise UpstreamError("Could not allocate a unique connection code")
