"""Gateway interface — the managed auth/database backend behind the broker."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any


@dataclass
class Profile:
    """An identity known to the backend's ``profiles`` table."""

    id: str
    email: str


@dataclass
class AuthSession:
    """Result of a successful password login."""

    access_token: str
    user_id: str


@dataclass
class Connection:
    """A pairing between a code owner and the user who redeemed the code."""

    id: str
    user_id: str
    connected_user_id: str


class AccountGateway(ABC):
    """Abstract base class for the identity + database backend.

    Implementations raise :class:`~pairing_broker.errors.UpstreamError` when
    the backend cannot be reached or answers with an unexpected error, and
    :class:`~pairing_broker.errors.InvalidCredentialsError` from
    :meth:`sign_in_with_password` when the credentials are rejected.
    Lookups return ``None`` rather than raising when nothing matches.
    """

    # ── Identities ───────────────────────────────────────

    @abstractmethod
    async def find_profile_by_email(self, email: str) -> Profile | None:
        """Look up an identity by email address."""

    @abstractmethod
    async def get_profile_by_id(self, user_id: str) -> Profile | None:
        """Look up an identity by its id."""

    @abstractmethod
    async def create_user(
        self, email: str, password: str, email_confirmed: bool = True
    ) -> Profile:
        """Create an account with the given credentials."""

    @abstractmethod
    async def sign_in_with_password(self, email: str, password: str) -> AuthSession:
        """Exchange email + password for an access token."""

    # ── Connections ──────────────────────────────────────

    @abstractmethod
    async def create_connection(self, user_id: str, connected_user_id: str) -> Connection:
        """Persist a connection between two identities."""

    @abstractmethod
    async def record_connection_code(
        self,
        owner_id: str,
        code: str,
        expires_at: datetime | None,
        is_permanent: bool,
        max_uses: int | None,
    ) -> str:
        """Record an issued connection code and return its row id."""

    @abstractmethod
    async def get_latest_connection_code(self, owner_id: str) -> dict[str, Any] | None:
        """Return the most recently issued code row for *owner_id*."""

    # ── Messages ─────────────────────────────────────────

    @abstractmethod
    async def insert_message(self, sender_id: str, receiver_id: str, content: str) -> None:
        """Store a direct message."""

    @abstractmethod
    async def list_messages(self, user_id: str, partner_id: str) -> list[dict[str, Any]]:
        """Messages exchanged between two users, oldest first."""

    @abstractmethod
    async def mark_message_read(self, message_id: str) -> None:
        """Flag a message as read."""

    @abstractmethod
    async def delete_message(self, message_id: str) -> None:
        """Remove a message."""
