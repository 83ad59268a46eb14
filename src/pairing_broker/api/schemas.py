"""Request / response models for the ``/api`` surface (camelCase on the wire)."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ── Signup / login ───────────────────────────────────────

class EmailRequest(CamelModel):
    email: str


class VerifyOtpRequest(CamelModel):
    email: str
    otp: str | int


class CredentialsRequest(CamelModel):
    email: str
    password: str


class ExistsResponse(CamelModel):
    exists: bool


class SuccessResponse(CamelModel):
    success: bool = True
    message: str | None = None


class LoginResponse(CamelModel):
    success: bool = True
    token: str
    user_id: str


class UserIdResponse(CamelModel):
    id: str


# ── Connection codes ─────────────────────────────────────

class GenerateCodeRequest(CamelModel):
    owner_id: str = Field(validation_alias=AliasChoices("ownerId", "userId", "owner_id"))
    expiration_minutes: int | None = None
    max_uses: int | None = None
    is_permanent: bool = False


class GenerateCodeResponse(CamelModel):
    code: str
    expires_at: datetime | None
    is_permanent: bool
    code_id: str | None = None


class VerifyCodeRequest(CamelModel):
    code: str
    requesting_user_id: str


class ConnectionOut(CamelModel):
    id: str
    user_id: str
    connected_user_id: str


class VerifyCodeResponse(CamelModel):
    success: bool = True
    connection_id: str
    connection: ConnectionOut


class UserRequest(CamelModel):
    user_id: str


class LatestCodeResponse(CamelModel):
    code_data: dict[str, Any]


# ── Messages ─────────────────────────────────────────────

class SendMessageRequest(CamelModel):
    sender_id: str
    receiver_id: str
    content: str


class ConversationRequest(CamelModel):
    user_id: str
    partner_id: str


class MessagesResponse(CamelModel):
    messages: list[dict[str, Any]]


class ReadMessageRequest(CamelModel):
    message_id: str
