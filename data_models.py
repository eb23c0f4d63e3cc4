"""
Defines the core data structures for the relay using Pydantic.

This module provides the validated models shared by the identity store, the
chat session protocol and the gateway: the durable Chat and Message records
and the payloads of inbound Socket.IO events. Field names are snake_case in
Python and camelCase on the wire, so every model dumps with ``to_wire()``.
"""

from datetime import datetime
from typing import Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field, StrictBool
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from config import CHAT_ID_SEPARATOR
from errors import ValidationError


class WireModel(BaseModel):
    """Base model that accepts and emits camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict:
        """Dumps the model as a JSON-safe dict with camelCase keys."""
        return self.model_dump(mode="json", by_alias=True)


class Chat(WireModel):
    """
    A two-party chat as stored in the identity store.

    The id is derived from the sorted participant pair, which makes chat
    creation idempotent regardless of the order participants are given in.
    """

    id: str
    # Always exactly two user ids, sorted.
    participants: list[str]
    # Text of the most recent message, None until the first message is sent.
    last_message: Optional[str] = None
    last_message_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    def has_participant(self, user_id: str) -> bool:
        return user_id in self.participants


class Message(WireModel):
    """
    A single chat message.

    ``id`` and ``timestamp`` are None on a record that has not been persisted
    yet; the store fills them in when the message is appended.
    """

    id: Optional[str] = None
    chat_id: str
    sender_id: str
    # The trimmed, non-empty message text.
    message: str
    timestamp: Optional[datetime] = None


class JoinRequest(WireModel):
    """Payload of the inbound ``join`` event."""

    user_id: Optional[str] = None
    chat_id: Optional[str] = None


class SendMessageRequest(WireModel):
    """Payload of the inbound ``sendMessage`` event."""

    message: Optional[str] = None
    # Client clock, ISO-8601 string or epoch number. Only used when trusted.
    timestamp: Optional[datetime] = None


class TypingRequest(WireModel):
    """Payload of the inbound ``typing`` event."""

    is_typing: StrictBool


class CreateChatRequest(WireModel):
    """Body of ``POST /api/chats``."""

    participants: list[str] = Field(..., min_length=2, max_length=2)


def chat_id_for(participants: Sequence[str]) -> str:
    """Derives the deterministic chat id for a participant pair."""
    return CHAT_ID_SEPARATOR.join(sorted(participants))


def parse_payload(model_cls: type[BaseModel], data: object) -> BaseModel:
    """
    Validates a raw event payload against a model.

    Raises:
        ValidationError: If the payload is not an object or any field is invalid.
    """
    if not isinstance(data, dict):
        raise ValidationError("Payload must be a JSON object")
    try:
        return model_cls.model_validate(data)
    except PydanticValidationError as e:
        fields = ", ".join(str(err["loc"][0]) for err in e.errors() if err.get("loc"))
        raise ValidationError(f"Invalid value for field(s): {fields}") from e
