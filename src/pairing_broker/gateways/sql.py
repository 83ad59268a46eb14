"""SQL gateway — the account/database backend on a local SQLAlchemy database.

Used for local development and tests in place of the managed backend.
Passwords are stored as salted PBKDF2 hashes; login hands out an opaque
random token that nothing downstream validates. Any SQLAlchemy or driver
failure is reported as :class:`~pairing_broker.errors.UpstreamError`.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import and_, or_, select, update, delete
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pairing_broker.errors import InvalidCredentialsError, UpstreamError
from pairing_broker.gateways.base import AccountGateway, AuthSession, Connection, Profile
from pairing_broker.models import tables

logger = logging.getLogger(__name__)

PBKDF2_ITERATIONS = 200_000


def hash_password(password: str) -> str:
    salt = secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode(), salt.encode(), PBKDF2_ITERATIONS)
    return f"pbkdf2_sha256${PBKDF2_ITERATIONS}${salt}${digest.hex()}"


def check_password(password: str, stored: str) -> bool:
    try:
        _, iterations, salt, expected = stored.split("$")
    except ValueError:
        return False
    digest = hashlib.pbkdf2_hmac("sha256", password.encode(), salt.encode(), int(iterations))
    return hmac.compare_digest(digest.hex(), expected)


class SqlGateway(AccountGateway):
    """Encapsulates all backend queries against a SQLAlchemy async database."""

    def __init__(self, session_factory: async_sessionmaker) -> None:
        self._session_factory = session_factory

    # ── Identities ───────────────────────────────────────

    async def find_profile_by_email(self, email: str) -> Profile | None:
        async with self._session() as session:
            stmt = select(tables.Profile).where(tables.Profile.email == email)
            row = (await session.execute(stmt)).scalar_one_or_none()
        return Profile(id=row.id, email=row.email) if row else None

    async def get_profile_by_id(self, user_id: str) -> Profile | None:
        async with self._session() as session:
            row = await session.get(tables.Profile, user_id)
        return Profile(id=row.id, email=row.email) if row else None

    async def create_user(
        self, email: str, password: str, email_confirmed: bool = True
    ) -> Profile:
        profile = tables.Profile(
            email=email,
            password_hash=hash_password(password),
            email_confirmed=email_confirmed,
        )
        async with self._session() as session:
            session.add(profile)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                logger.warning("Account creation failed for %s: %s", email, exc.orig)
                raise UpstreamError("A user with this email address has already been registered") from exc
        logger.info("Created account %s for %s", profile.id, email)
        return Profile(id=profile.id, email=profile.email)

    async def sign_in_with_password(self, email: str, password: str) -> AuthSession:
        async with self._session() as session:
            stmt = select(tables.Profile).where(tables.Profile.email == email)
            row = (await session.execute(stmt)).scalar_one_or_none()
        if row is None or not check_password(password, row.password_hash):
            raise InvalidCredentialsError()
        return AuthSession(access_token=secrets.token_urlsafe(32), user_id=row.id)

    # ── Connections ──────────────────────────────────────

    async def create_connection(self, user_id: str, connected_user_id: str) -> Connection:
        row = tables.Connection(user_id=user_id, connected_user_id=connected_user_id)
        async with self._session() as session:
            session.add(row)
            await session.commit()
        return Connection(id=row.id, user_id=row.user_id, connected_user_id=row.connected_user_id)

    async def record_connection_code(
        self,
        owner_id: str,
        code: str,
        expires_at: datetime | None,
        is_permanent: bool,
        max_uses: int | None,
    ) -> str:
        row = tables.ConnectionCode(
            owner_id=owner_id,
            code=code,
            expires_at=expires_at,
            is_permanent=is_permanent,
            max_uses=max_uses,
        )
        async with self._session() as session:
            session.add(row)
            await session.commit()
        return row.id

    async def get_latest_connection_code(self, owner_id: str) -> dict[str, Any] | None:
        stmt = (
            select(tables.ConnectionCode)
            .where(tables.ConnectionCode.owner_id == owner_id)
            .order_by(tables.ConnectionCode.created_at.desc())
            .limit(1)
        )
        async with self._session() as session:
            row = (await session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        return {
            "id": row.id,
            "owner_id": row.owner_id,
            "code": row.code,
            "expires_at": _iso(row.expires_at),
            "is_permanent": row.is_permanent,
            "max_uses": row.max_uses,
            "created_at": _iso(row.created_at),
        }

    # ── Messages ─────────────────────────────────────────

    async def insert_message(self, sender_id: str, receiver_id: str, content: str) -> None:
        async with self._session() as session:
            session.add(
                tables.Message(sender_id=sender_id, receiver_id=receiver_id, content=content)
            )
            await session.commit()

    async def list_messages(self, user_id: str, partner_id: str) -> list[dict[str, Any]]:
        m = tables.Message
        stmt = (
            select(m)
            .where(
                or_(
                    and_(m.sender_id == user_id, m.receiver_id == partner_id),
                    and_(m.sender_id == partner_id, m.receiver_id == user_id),
                )
            )
            .order_by(m.created_at.asc())
        )
        async with self._session() as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [
            {
                "id": row.id,
                "sender_id": row.sender_id,
                "receiver_id": row.receiver_id,
                "content": row.content,
                "is_read": row.is_read,
                "created_at": _iso(row.created_at),
            }
            for row in rows
        ]

    async def mark_message_read(self, message_id: str) -> None:
        async with self._session() as session:
            await session.execute(
                update(tables.Message).where(tables.Message.id == message_id).values(is_read=True)
            )
            await session.commit()

    async def delete_message(self, message_id: str) -> None:
        async with self._session() as session:
            await session.execute(delete(tables.Message).where(tables.Message.id == message_id))
            await session.commit()

    # ── Private helpers ──────────────────────────────────

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        """Yield a session; database failures surface as ``UpstreamError``."""
        try:
            async with self._session_factory() as session:
                yield session
        except SQLAlchemyError as exc:
            logger.exception("Database request error: %s", exc)
            raise UpstreamError("Database request failed") from exc


def _iso(value: datetime | None) -> str | None:
    """SQLite drops tzinfo on the way back; everything is stored as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.isoformat()
