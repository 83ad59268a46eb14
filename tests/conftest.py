"""Shared fakes: controllable clock, in-memory gateway and mailer."""

from __future__ import annotations

import itertools
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from pairing_broker.errors import InvalidCredentialsError, UpstreamError
from pairing_broker.gateways.base import AccountGateway, AuthSession, Connection, Profile
from pairing_broker.store.expiry_store import ExpiryStore


class FakeClock:
    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 1, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@dataclass
class FakeGateway(AccountGateway):
    profiles: dict[str, Profile] = field(default_factory=dict)
    passwords: dict[str, str] = field(default_factory=dict)
    connections: list[Connection] = field(default_factory=list)
    codes: list[dict[str, Any]] = field(default_factory=list)
    messages: list[dict[str, Any]] = field(default_factory=list)
    calls: list[str] = field(default_factory=list)
    fail_create_user: bool = False
    fail_create_connection: bool = False
    fail_record_code: bool = False
    _ids: Any = field(default_factory=lambda: itertools.count(1))

    def add_profile(self, user_id: str, email: str, password: str = "secret") -> Profile:
        profile = Profile(id=user_id, email=email)
        self.profiles[user_id] = profile
        self.passwords[email] = password
        return profile

    async def find_profile_by_email(self, email: str) -> Profile | None:
        return next((p for p in self.profiles.values() if p.email == email), None)

    async def get_profile_by_id(self, user_id: str) -> Profile | None:
        return self.profiles.get(user_id)

    async def create_user(self, email: str, password: str, email_confirmed: bool = True) -> Profile:
        self.calls.append("create_user")
        if self.fail_create_user:
            raise UpstreamError("create user failed")
        return self.add_profile(f"user-{next(self._ids)}", email, password)

    async def sign_in_with_password(self, email: str, password: str) -> AuthSession:
        if self.passwords.get(email) != password:
            raise InvalidCredentialsError()
        profile = await self.find_profile_by_email(email)
        return AuthSession(access_token=f"token-{profile.id}", user_id=profile.id)

    async def create_connection(self, user_id: str, connected_user_id: str) -> Connection:
        self.calls.append("create_connection")
        if self.fail_create_connection:
            raise UpstreamError("create connection failed")
        conn = Connection(id=f"conn-{next(self._ids)}", user_id=user_id, connected_user_id=connected_user_id)
        self.connections.append(conn)
        return conn

    async def record_connection_code(self, owner_id, code, expires_at, is_permanent, max_uses) -> str:
        self.calls.append("record_connection_code")
        if self.fail_record_code:
            raise UpstreamError("record connection code failed")
        row = {
            "id": f"code-{next(self._ids)}",
            "owner_id": owner_id,
            "code": code,
            "expires_at": expires_at.isoformat() if expires_at else None,
            "is_permanent": is_permanent,
            "max_uses": max_uses,
        }
        self.codes.append(row)
        return row["id"]

    async def get_latest_connection_code(self, owner_id: str) -> dict[str, Any] | None:
        owned = [row for row in self.codes if row["owner_id"] == owner_id]
        return owned[-1] if owned else None

    async def insert_message(self, sender_id: str, receiver_id: str, content: str) -> None:
        self.messages.append(
            {
                "id": f"msg-{next(self._ids)}",
                "sender_id": sender_id,
                "receiver_id": receiver_id,
                "content": content,
                "is_read": False,
            }
        )

    async def list_messages(self, user_id: str, partner_id: str) -> list[dict[str, Any]]:
        pair = {user_id, partner_id}
        return [m for m in self.messages if {m["sender_id"], m["receiver_id"]} == pair]

    async def mark_message_read(self, message_id: str) -> None:
        self.calls.append(f"read:{message_id}")
        for m in self.messages:
            if m["id"] == message_id:
                m["is_read"] = True

    async def delete_message(self, message_id: str) -> None:
        self.calls.append(f"delete:{message_id}")
        self.messages = [m for m in self.messages if m["id"] != message_id]


class FakeMailer:
    def __init__(self, succeed: bool = True) -> None:
        self.succeed = succeed
        self.sent: list[tuple[str, str]] = []

    async def send_otp(self, recipient: str, code: str) -> bool:
        self.sent.append((recipient, code))
        return self.succeed

    def last_code(self, recipient: str) -> str:
        return next(code for to, code in reversed(self.sent) if to == recipient)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def gateway() -> FakeGateway:
    gw = FakeGateway()
    gw.add_profile("U1", "owner@example.com")
    gw.add_profile("U2", "two@example.com")
    gw.add_profile("U3", "three@example.com")
    gw.add_profile("U4", "four@example.com")
    return gw


@pytest.fixture
def mailer() -> FakeMailer:
    return FakeMailer()


@pytest.fixture
def otp_store(clock) -> ExpiryStore:
    return ExpiryStore(clock, name="otp")


@pytest.fixture
def code_store(clock) -> ExpiryStore:
    return ExpiryStore(clock, name="codes")
