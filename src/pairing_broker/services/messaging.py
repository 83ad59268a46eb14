"""Direct-message relay.

Messages are ephemeral: reading a message marks it read and then deletes it.
"""

from __future__ import annotations

import logging
from typing import Any

from pairing_broker.errors import ValidationError
from pairing_broker.gateways.base import AccountGateway

logger = logging.getLogger(__name__)


def _require(**fields: str | None) -> None:
    missing = [name for name, value in fields.items() if not value or not str(value).strip()]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")


class MessageRelay:
    def __init__(self, gateway: AccountGateway) -> None:
        self._gateway = gateway

    async def send(self, sender_id: str, receiver_id: str, content: str) -> None:
        _require(senderId=sender_id, receiverId=receiver_id, content=content)
        await self._gateway.insert_message(sender_id, receiver_id, content)
        logger.info("Message relayed %s → %s", sender_id, receiver_id)

    async def list_conversation(self, user_id: str, partner_id: str) -> list[dict[str, Any]]:
        _require(userId=user_id, partnerId=partner_id)
        return await self._gateway.list_messages(user_id, partner_id)

    async def mark_read_and_delete(self, message_id: str) -> None:
        _require(messageId=message_id)
        await self._gateway.mark_message_read(message_id)
        await self._gateway.delete_message(message_id)
        logger.debug("Message %s read and deleted", message_id)
