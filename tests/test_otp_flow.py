"""Tests for the OTP signup flow."""

from __future__ import annotations

from datetime import timedelta

import pytest

from pairing_broker.errors import (
    AlreadyRegisteredError,
    MailDeliveryError,
    OtpMismatchError,
    OtpNotFoundError,
    OtpNotVerifiedError,
    UpstreamError,
    ValidationError,
)
from pairing_broker.services.otp_flow import OtpFlow, OtpRecord

from conftest import FakeMailer


@pytest.fixture
def flow(otp_store, gateway, mailer, clock) -> OtpFlow:
    return OtpFlow(otp_store, gateway, mailer, clock)


# ──────────────────────────────────────────────────────────
# send_otp
# ──────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_send_then_verify_correct_otp(flow, mailer, otp_store):
    await flow.send_otp("a@b.com")
    otp = mailer.last_code("a@b.com")

    flow.verify_otp("a@b.com", otp)

    assert otp_store.get("a@b.com").verified is True


@pytest.mark.asyncio
async def test_send_rejects_registered_email(flow, mailer):
    with pytest.raises(AlreadyRegisteredError):
        await flow.send_otp("owner@example.com")
    assert mailer.sent == []


@pytest.mark.asyncio
async def test_send_normalizes_email(flow, mailer, otp_store):
    await flow.send_otp("  New@Example.COM ")
    assert mailer.sent[0][0] == "new@example.com"
    assert otp_store.get("new@example.com") is not None


@pytest.mark.asyncio
async def test_send_requires_valid_email(flow):
    with pytest.raises(ValidationError):
        await flow.send_otp("")


@pytest.mark.asyncio
async def test_resend_replaces_previous_record(flow, mailer, otp_store):
    await flow.send_otp("a@b.com")
    first = mailer.last_code("a@b.com")
    flow.verify_otp("a@b.com", first)

    await flow.send_otp("a@b.com")
    record = otp_store.get("a@b.com")

    assert record.verified is False
    assert record.otp == mailer.last_code("a@b.com")


@pytest.mark.asyncio
async def test_mail_failure_propagates_and_drops_record(otp_store, gateway, clock):
    flow = OtpFlow(otp_store, gateway, FakeMailer(succeed=False), clock)

    with pytest.raises(MailDeliveryError):
        await flow.send_otp("a@b.com")
    assert otp_store.get("a@b.com") is None


@pytest.mark.asyncio
async def test_mail_failure_keeps_newer_otp_sent_meanwhile(otp_store, gateway, clock):
    newer = OtpRecord(otp="654321", expires_at=clock() + timedelta(minutes=10))

    class ResendDuringDelivery(FakeMailer):
        async def send_otp(self, recipient: str, code: str) -> bool:
            # Another request issued a fresh OTP while this one was being mailed.
            otp_store.put(recipient, newer, newer.expires_at)
            return await super().send_otp(recipient, code)

    flow = OtpFlow(otp_store, gateway, ResendDuringDelivery(succeed=False), clock)

    with pytest.raises(MailDeliveryError):
        await flow.send_otp("a@b.com")
    assert otp_store.get("a@b.com") is newer



# ──────────────────────────────────────────────────────────
# verify_otp
# ──────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_wrong_otp_is_mismatch_and_keeps_record(flow, mailer, otp_store):
    await flow.send_otp("a@b.com")
    otp = mailer.last_code("a@b.com")
    wrong = "000000" if otp != "000000" else "111111"

    with pytest.raises(OtpMismatchError):
        flow.verify_otp("a@b.com", wrong)

    record = otp_store.get("a@b.com")
    assert record.otp == otp
    assert record.verified is False
    flow.verify_otp("a@b.com", otp)


@pytest.mark.asyncio
async def test_numeric_otp_compares_as_string(flow, mailer):
    await flow.send_otp("a@b.com")
    flow.verify_otp("a@b.com", int(mailer.last_code("a@b.com")))


def test_verify_without_send_is_not_found(flow):
    with pytest.raises(OtpNotFoundError):
        flow.verify_otp("a@b.com", "123456")


@pytest.mark.asyncio
async def test_otp_expires_after_five_minutes_without_sweep(flow, mailer, clock):
    await flow.send_otp("a@b.com")
    otp = mailer.last_code("a@b.com")

    clock.advance(minutes=5, seconds=1)

    with pytest.raises(OtpNotFoundError):
        flow.verify_otp("a@b.com", otp)


# ──────────────────────────────────────────────────────────
# complete_registration
# ──────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_registration_requires_verification(flow, gateway):
    await flow.send_otp("a@b.com")

    with pytest.raises(OtpNotVerifiedError):
        await flow.complete_registration("a@b.com", "hunter2")
    assert "create_user" not in gateway.calls


@pytest.mark.asyncio
async def test_registration_without_any_otp(flow):
    with pytest.raises(OtpNotVerifiedError):
        await flow.complete_registration("a@b.com", "hunter2")


@pytest.mark.asyncio
async def test_registration_consumes_record(flow, mailer, gateway, otp_store):
    await flow.send_otp("a@b.com")
    flow.verify_otp("a@b.com", mailer.last_code("a@b.com"))

    profile = await flow.complete_registration("a@b.com", "hunter2")

    assert profile.email == "a@b.com"
    assert otp_store.get("a@b.com") is None
    assert await gateway.find_profile_by_email("a@b.com") is not None


@pytest.mark.asyncio
async def test_gateway_failure_keeps_verified_record_for_retry(flow, mailer, gateway, otp_store):
    await flow.send_otp("a@b.com")
    flow.verify_otp("a@b.com", mailer.last_code("a@b.com"))
    gateway.fail_create_user = True

    with pytest.raises(UpstreamError):
        await flow.complete_registration("a@b.com", "hunter2")
    assert otp_store.get("a@b.com").verified is True

    gateway.fail_create_user = False
    await flow.complete_registration("a@b.com", "hunter2")
    assert otp_store.get("a@b.com") is None


@pytest.mark.asyncio
async def test_verified_record_also_expires(flow, mailer, clock):
    await flow.send_otp("a@b.com")
    flow.verify_otp("a@b.com", mailer.last_code("a@b.com"))
    clock.advance(minutes=6)

    with pytest.raises(OtpNotVerifiedError):
        await flow.complete_registration("a@b.com", "hunter2")


@pytest.mark.asyncio
async def test_registration_requires_password(flow, mailer):
    await flow.send_otp("a@b.com")
    flow.verify_otp("a@b.com", mailer.last_code("a@b.com"))

    with pytest.raises(ValidationError):
        await flow.complete_registration("a@b.com", "")
