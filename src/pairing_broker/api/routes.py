"""HTTP routes — signup, login, connection codes and messaging.

Endpoints (all POST, JSON bodies)
---------------------------------
/api/check-email               → does an account exist for this email
/api/send-otp                  → email a signup OTP
/api/verify-otp                → check the OTP
/api/set-password              → create the account for a verified email
/api/login                     → password login
/api/get-user-id               → identity id for an email
/api/generate-connection-code  → issue a pairing code
/api/verify-connection-code    → redeem a pairing code
/api/get-latest-code           → owner's most recent code
/api/send-message              → relay a direct message
/api/get-messages              → conversation between two users
/api/read-message              → mark read, then delete
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from pairing_broker.api.dependencies import (
    get_code_flow,
    get_gateway,
    get_message_relay,
    get_otp_flow,
)
from pairing_broker.api.schemas import (
    ConnectionOut,
    ConversationRequest,
    CredentialsRequest,
    EmailRequest,
    ExistsResponse,
    GenerateCodeRequest,
    GenerateCodeResponse,
    LatestCodeResponse,
    LoginResponse,
    MessagesResponse,
    ReadMessageRequest,
    SendMessageRequest,
    SuccessResponse,
    UserIdResponse,
    UserRequest,
    VerifyCodeRequest,
    VerifyCodeResponse,
    VerifyOtpRequest,
)
from pairing_broker.errors import UserNotFoundError, ValidationError
from pairing_broker.gateways.base import AccountGateway
from pairing_broker.services.connection_codes import ConnectionCodeFlow
from pairing_broker.services.messaging import MessageRelay
from pairing_broker.services.otp_flow import OtpFlow, normalize_email

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["broker"])


# ── Signup ───────────────────────────────────────────────

@router.post("/check-email", response_model=ExistsResponse)
async def check_email(body: EmailRequest, otp_flow: OtpFlow = Depends(get_otp_flow)):
    """Report whether an account is already registered for the email."""
    return ExistsResponse(exists=await otp_flow.email_exists(body.email))


@router.post("/send-otp", response_model=SuccessResponse)
async def send_otp(body: EmailRequest, otp_flow: OtpFlow = Depends(get_otp_flow)):
    await otp_flow.send_otp(body.email)
    return SuccessResponse(message="OTP sent")


@router.post("/verify-otp", response_model=SuccessResponse)
async def verify_otp(body: VerifyOtpRequest, otp_flow: OtpFlow = Depends(get_otp_flow)):
    otp_flow.verify_otp(body.email, body.otp)
    return SuccessResponse(message="Email verified")


@router.post("/set-password", response_model=SuccessResponse)
async def set_password(body: CredentialsRequest, otp_flow: OtpFlow = Depends(get_otp_flow)):
    await otp_flow.complete_registration(body.email, body.password)
    return SuccessResponse(message="Account created")


# ── Login / identity ─────────────────────────────────────

@router.post("/login", response_model=LoginResponse)
async def login(body: CredentialsRequest, gateway: AccountGateway = Depends(get_gateway)):
    if not body.password:
        raise ValidationError("Password is required")
    session = await gateway.sign_in_with_password(normalize_email(body.email), body.password)
    logger.info("User %s logged in", session.user_id)
    return LoginResponse(token=session.access_token, user_id=session.user_id)


@router.post("/get-user-id", response_model=UserIdResponse)
async def get_user_id(body: EmailRequest, gateway: AccountGateway = Depends(get_gateway)):
    profile = await gateway.find_profile_by_email(normalize_email(body.email))
    if profile is None:
        raise UserNotFoundError()
    return UserIdResponse(id=profile.id)


# ── Connection codes ─────────────────────────────────────

@router.post("/generate-connection-code", response_model=GenerateCodeResponse)
async def generate_connection_code(
    body: GenerateCodeRequest, code_flow: ConnectionCodeFlow = Depends(get_code_flow)
):
    issued = await code_flow.generate(
        body.owner_id,
        expiration_minutes=body.expiration_minutes,
        max_uses=body.max_uses,
        is_permanent=body.is_permanent,
    )
    return GenerateCodeResponse(
        code=issued.code,
        expires_at=issued.expires_at,
        is_permanent=issued.is_permanent,
        code_id=issued.code_id,
    )


@router.post("/verify-connection-code", response_model=VerifyCodeResponse)
async def verify_connection_code(
    body: VerifyCodeRequest, code_flow: ConnectionCodeFlow = Depends(get_code_flow)
):
    connection = await code_flow.verify(body.code, body.requesting_user_id)
    return VerifyCodeResponse(
        connection_id=connection.id,
        connection=ConnectionOut(
            id=connection.id,
            user_id=connection.user_id,
            connected_user_id=connection.connected_user_id,
        ),
    )


@router.post("/get-latest-code", response_model=LatestCodeResponse)
async def get_latest_code(
    body: UserRequest, code_flow: ConnectionCodeFlow = Depends(get_code_flow)
):
    return LatestCodeResponse(code_data=await code_flow.get_latest(body.user_id))


# ── Messages ─────────────────────────────────────────────

@router.post("/send-message", response_model=SuccessResponse)
async def send_message(
    body: SendMessageRequest, relay: MessageRelay = Depends(get_message_relay)
):
    await relay.send(body.sender_id, body.receiver_id, body.content)
    return SuccessResponse()


@router.post("/get-messages", response_model=MessagesResponse)
async def get_messages(
    body: ConversationRequest, relay: MessageRelay = Depends(get_message_relay)
):
    return MessagesResponse(messages=await relay.list_conversation(body.user_id, body.partner_id))


@router.post("/read-message", response_model=SuccessResponse)
async def read_message(
    body: ReadMessageRequest, relay: MessageRelay = Depends(get_message_relay)
):
    await relay.mark_read_and_delete(body.message_id)
    return SuccessResponse()
