"""OTP flow — email ownership check that gates account creation.

Per email the record moves ``NONE → PENDING → VERIFIED → consumed``; both
``PENDING`` and ``VERIFIED`` fall back to ``NONE`` once the OTP expires.
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from pairing_broker.errors import (
    AlreadyRegisteredError,
    MailDeliveryError,
    OtpMismatchError,
    OtpNotFoundError,
    OtpNotVerifiedError,
    ValidationError,
)
from pairing_broker.gateways.base import AccountGateway, Profile
from pairing_broker.services.codes import generate_otp
from pairing_broker.store.expiry_store import Clock, ExpiryStore, utc_now

if TYPE_CHECKING:
    from pairing_broker.services.email_service import OtpMailer

logger = logging.getLogger(__name__)

OTP_TTL = timedelta(minutes=5)


@dataclass(frozen=True)
class OtpRecord:
    otp: str
    expires_at: datetime
    verified: bool = False


def normalize_email(email: str) -> str:
    email = (email or "").strip().lower()
    if not email or "@" not in email:
        raise ValidationError("A valid email is required")
    return email


class OtpFlow:
    """Issues, verifies and consumes signup OTPs keyed by email."""

    def __init__(
        self,
        store: ExpiryStore[str, OtpRecord],
        gateway: AccountGateway,
        mailer: OtpMailer,
        clock: Clock = utc_now,
        ttl: timedelta = OTP_TTL,
    ) -> None:
        self._store = store
        self._gateway = gateway
        self._mailer = mailer
        self._clock = clock
        self._ttl = ttl

    async def email_exists(self, email: str) -> bool:
        """Whether an account already exists for *email*."""
        return await self._gateway.find_profile_by_email(normalize_email(email)) is not None

    async def send_otp(self, email: str) -> None:
        """Issue a fresh OTP for *email* and mail it, replacing any earlier one."""
        email = normalize_email(email)
        if await self._gateway.find_profile_by_email(email) is not None:
            raise AlreadyRegisteredError()

        otp = generate_otp()
        expires_at = self._clock() + self._ttl
        self._store.put(email, OtpRecord(otp=otp, expires_at=expires_at), expires_at)

        if not await self._mailer.send_otp(email, otp):
            # Leave alone a newer OTP issued for the same email meanwhile.
            self._store.delete_if(
                email, lambda current: current.otp == otp and current.expires_at == expires_at
            )
            raise MailDeliveryError()
        logger.info("OTP issued for %s (expires %s)", email, expires_at.isoformat())

    def verify_otp(self, email: str, otp: str | int) -> None:
        """Mark the pending OTP for *email* as verified if *otp* matches."""
        email = normalize_email(email)
        submitted = str(otp).strip()

        def mark_verified(record: OtpRecord) -> OtpRecord:
            if record.otp != submitted:
                raise OtpMismatchError()
            return dataclasses.replace(record, verified=True)

        try:
            updated = self._store.update(email, mark_verified)
        except OtpMismatchError:
            logger.info("OTP mismatch for %s", email)
            raise
        if updated is None:
            logger.info("No live OTP for %s", email)
            raise OtpNotFoundError()
        logger.info("OTP verified for %s", email)

    async def complete_registration(self, email: str, password: str) -> Profile:
        """Create the account for a verified email and consume its OTP.

        If account creation fails the verified record is kept so the caller
        can retry without requesting a new OTP.
        """
        email = normalize_email(email)
        if not password:
            raise ValidationError("Password is required")

        record = self._store.get(email)
        if record is None or not record.verified:
            raise OtpNotVerifiedError()

        profile = await self._gateway.create_user(email, password, email_confirmed=True)
        self._store.delete(email)
        logger.info("Registration completed for %s", email)
        return profile
