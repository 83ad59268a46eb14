"""Supabase gateway — async HTTP client for the managed auth + database API.

Table access goes through PostgREST (``/rest/v1``) and account management
through GoTrue (``/auth/v1``), both authenticated with the service-role key.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

import httpx

from pairing_broker.errors import InvalidCredentialsError, UpstreamError, ValidationError
from pairing_broker.gateways.base import AccountGateway, AuthSession, Connection, Profile

logger = logging.getLogger(__name__)


class SupabaseGateway(AccountGateway):
    """Async HTTP wrapper around a Supabase project."""

    def __init__(
        self,
        base_url: str,
        service_role_key: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._headers = {
            "apikey": service_role_key,
            "Authorization": f"Bearer {service_role_key}",
        }
        self._timeout = timeout
        self._transport = transport

    # ── Identities ───────────────────────────────────────

    async def find_profile_by_email(self, email: str) -> Profile | None:
        rows = await self._select("profiles", {"select": "id,email", "email": f"eq.{email}", "limit": "1"})
        return _profile(rows[0]) if rows else None

    async def get_profile_by_id(self, user_id: str) -> Profile | None:
        rows = await self._select("profiles", {"select": "id,email", "id": f"eq.{user_id}", "limit": "1"})
        return _profile(rows[0]) if rows else None

    async def create_user(
        self, email: str, password: str, email_confirmed: bool = True
    ) -> Profile:
        resp = await self._request(
            "POST",
            "/auth/v1/admin/users",
            json={"email": email, "password": password, "email_confirm": email_confirmed},
        )
        self._raise_for_status(resp, "create user")
        data = _require_keys(self._json(resp, "create user"), ("id",), "create user")
        logger.info("Created account %s for %s", data["id"], email)
        return Profile(id=str(data["id"]), email=data.get("email") or email)

    async def sign_in_with_password(self, email: str, password: str) -> AuthSession:
        resp = await self._request(
            "POST",
            "/auth/v1/token",
            params={"grant_type": "password"},
            json={"email": email, "password": password},
        )
        if resp.status_code in (400, 401):
            logger.info("Password login rejected for %s", email)
            raise InvalidCredentialsError()
        self._raise_for_status(resp, "password login")
        data = _require_keys(self._json(resp, "password login"), ("access_token", "user"), "password login")
        user = _require_keys(data["user"], ("id",), "password login")
        return AuthSession(access_token=str(data["access_token"]), user_id=str(user["id"]))

    # ── Connections ──────────────────────────────────────

    async def create_connection(self, user_id: str, connected_user_id: str) -> Connection:
        row = await self._insert(
            "connections",
            {"user_id": user_id, "connected_user_id": connected_user_id},
            required=("id", "user_id", "connected_user_id"),
        )
        return Connection(
            id=str(row["id"]),
            user_id=str(row["user_id"]),
            connected_user_id=str(row["connected_user_id"]),
        )

    async def record_connection_code(
        self,
        owner_id: str,
        code: str,
        expires_at: datetime | None,
        is_permanent: bool,
        max_uses: int | None,
    ) -> str:
        row = await self._insert(
            "connection_codes",
            {
                "owner_id": owner_id,
                "code": code,
                "expires_at": expires_at.isoformat() if expires_at else None,
                "is_permanent": is_permanent,
                "max_uses": max_uses,
            },
            required=("id",),
        )
        return str(row["id"])

    async def get_latest_connection_code(self, owner_id: str) -> dict[str, Any] | None:
        rows = await self._select(
            "connection_codes",
            {"owner_id": f"eq.{owner_id}", "order": "created_at.desc", "limit": "1"},
        )
        return rows[0] if rows else None

    # ── Messages ─────────────────────────────────────────

    async def insert_message(self, sender_id: str, receiver_id: str, content: str) -> None:
        await self._insert(
            "messages",
            {"sender_id": sender_id, "receiver_id": receiver_id, "content": content},
        )

    async def list_messages(self, user_id: str, partner_id: str) -> list[dict[str, Any]]:
        # Ids go into a PostgREST logic tree; reserved characters would let a
        # caller add predicates of their own.
        user_id, partner_id = _filter_id(user_id), _filter_id(partner_id)
        conversation = (
            f"(and(sender_id.eq.{user_id},receiver_id.eq.{partner_id}),"
            f"and(sender_id.eq.{partner_id},receiver_id.eq.{user_id}))"
        )
        return await self._select("messages", {"or": conversation, "order": "created_at.asc"})

    async def mark_message_read(self, message_id: str) -> None:
        resp = await self._request(
            "PATCH", "/rest/v1/messages", params={"id": f"eq.{message_id}"}, json={"is_read": True}
        )
        self._raise_for_status(resp, "mark message read")

    async def delete_message(self, message_id: str) -> None:
        resp = await self._request("DELETE", "/rest/v1/messages", params={"id": f"eq.{message_id}"})
        self._raise_for_status(resp, "delete message")

    # ── Private helpers ──────────────────────────────────

    async def _select(self, table: str, params: dict[str, str]) -> list[dict[str, Any]]:
        resp = await self._request("GET", f"/rest/v1/{table}", params=params)
        self._raise_for_status(resp, f"select from {table}")
        rows = self._json(resp, f"select from {table}")
        if not isinstance(rows, list) or not all(isinstance(r, dict) for r in rows):
            logger.error("Supabase select from %s returned unexpected body: %s", table, resp.text)
            raise UpstreamError(f"Unexpected response from select from {table}")
        return rows

    async def _insert(
        self, table: str, row: dict[str, Any], required: tuple[str, ...] = ()
    ) -> dict[str, Any]:
        action = f"insert into {table}"
        resp = await self._request(
            "POST",
            f"/rest/v1/{table}",
            json=row,
            headers={"Prefer": "return=representation"},
        )
        self._raise_for_status(resp, action)
        data = self._json(resp, action)
        if isinstance(data, list):
            if not data and not required:
                return {}
            if not data:
                logger.error("Supabase %s returned no representation", action)
                raise UpstreamError(f"Failed to {action}: no row returned")
            data = data[0]
        return _require_keys(data, required, action)

    @staticmethod
    def _json(resp: httpx.Response, action: str) -> Any:
        try:
            return resp.json()
        except ValueError as exc:
            logger.error("Supabase %s returned non-JSON body: %s", action, resp.text[:200])
            raise UpstreamError(f"Unexpected response from {action}") from exc

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        headers = {**self._headers, **kwargs.pop("headers", {})}
        url = f"{self._base_url}{path}"
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                return await client.request(method, url, headers=headers, **kwargs)
        except httpx.HTTPError as exc:
            logger.exception("Supabase request error: %s %s", method, path)
            raise UpstreamError(f"Backend request failed: {exc}") from exc

    @staticmethod
    def _raise_for_status(resp: httpx.Response, action: str) -> None:
        if resp.is_success:
            return
        logger.error("Supabase %s failed: %s %s", action, resp.status_code, resp.text)
        message = None
        try:
            body = resp.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            message = body.get("message") or body.get("msg") or body.get("error_description")
        raise UpstreamError(message or f"Failed to {action}")


_RESERVED_FILTER_CHARS = frozenset(',.:()"\\')


def _filter_id(value: str) -> str:
    if not value or any(ch in _RESERVED_FILTER_CHARS or ch.isspace() for ch in value):
        raise ValidationError("Invalid user id")
    return value


def _require_keys(data: Any, keys: tuple[str, ...], action: str) -> dict[str, Any]:
    if not isinstance(data, dict) or any(data.get(key) is None for key in keys):
        logger.error("Supabase %s returned unexpected body: %r", action, data)
        raise UpstreamError(f"Unexpected response from {action}")
    return data


def _profile(row: dict[str, Any]) -> Profile:
    row = _require_keys(row, ("id",), "profile lookup")
    return Profile(id=str(row["id"]), email=row.get("email") or "")
