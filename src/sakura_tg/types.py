"""Bot API update envelope."""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict


class UpdateType(StrEnum):
    """Update tags accepted by ``allowed_updates``."""

    MESSAGE = "message"
    EDITED_MESSAGE = "edited_message"
    CHANNEL_POST = "channel_post"
    EDITED_CHANNEL_POST = "edited_channel_post"
    BUSINESS_CONNECTION = "business_connection"
    BUSINESS_MESSAGE = "business_message"
    EDITED_BUSINESS_MESSAGE = "edited_business_message"
    DELETED_BUSINESS_MESSAGES = "deleted_business_messages"
    MESSAGE_REACTION = "message_reaction"
    MESSAGE_REACTION_COUNT = "message_reaction_count"
    INLINE_QUERY = "inline_query"
    CHOSEN_INLINE_RESULT = "chosen_inline_result"
    CALLBACK_QUERY = "callback_query"
    SHIPPING_QUERY = "shipping_query"
    PRE_CHECKOUT_QUERY = "pre_checkout_query"
    PURCHASED_PAID_MEDIA = "purchased_paid_media"
    POLL = "poll"
    POLL_ANSWER = "poll_answer"
    MY_CHAT_MEMBER = "my_chat_member"
    CHAT_MEMBER = "chat_member"
    CHAT_JOIN_REQUEST = "chat_join_request"
    CHAT_BOOST = "chat_boost"
    REMOVED_CHAT_BOOST = "removed_chat_boost"


class Update(BaseModel):
    """One incoming update.

    Only ``update_id`` is interpreted; every other key of the Bot API object
    is kept verbatim as an extra field and handed to the handler untouched.
    """

    model_config = ConfigDict(extra="allow", frozen=True)

    update_id: int

    @property
    def payload(self) -> dict[str, Any]:
        return self.model_dump()

    @property
    def kind(self) -> str | None:
        """The update type tag, e.g. ``"message"`` or ``"callback_query"``."""
        for key in self.model_extra or {}:
            return key
        return None

    @property
    def sender_id(self) -> int | None:
        """Id of the user behind the update (its ``from`` field), if any."""
        kind = self.kind
        body = (self.model_extra or {}).get(kind) if kind else None
        if not isinstance(body, dict):
            return None
        sender = body.get("from")
        if isinstance(sender, dict) and isinstance(sender.get("id"), int):
            return sender["id"]
        return None


class BotUser(BaseModel):
    """The subset of the ``getMe`` result the package cares about."""

    model_config = ConfigDict(extra="ignore")

    id: int
    is_bot: bool = True
    first_name: str = ""
    username: str | None = None
