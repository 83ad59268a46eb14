"""FastAPI dependencies resolving the controllers wired in ``create_app``."""

from fastapi import Request

from pairing_broker.gateways.base import AccountGateway
from pairing_broker.services.connection_codes import ConnectionCodeFlow
from pairing_broker.services.messaging import MessageRelay
from pairing_broker.services.otp_flow import OtpFlow


def get_gateway(request: Request) -> AccountGateway:
    return request.app.state.gateway


def get_otp_flow(request: Request) -> OtpFlow:
    return request.app.state.otp_flow


def get_code_flow(request: Request) -> ConnectionCodeFlow:
    return request.app.state.code_flow


def get_message_relay(request: Request) -> MessageRelay:
    return request.app.state.message_relay
