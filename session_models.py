"""
Defines the record that binds one live connection to a user and a chat.

A ChatSession exists only after a successful join. It is the value the
session registry stores per connection, and the context object every
subsequent event on that connection is authorized against.
"""
from enum import Enum

from pydantic import BaseModel, ConfigDict


class ChatSession(BaseModel):
    """
    Represents the binding of a Socket.IO connection to a (user, chat) pair.

    Sessions are immutable; a re-join replaces the registry entry with a new
    ChatSession rather than mutating the old one.
    """

    model_config = ConfigDict(frozen=True)

    # The Socket.IO session id (request.sid) of the connection.
    connection_id: str
    user_id: str
    chat_id: str


class ConnectionState(str, Enum):
    """Lifecycle of a single connection in the chat session protocol."""

    UNJOINED = "unjoined"
    JOINED = "joined"
    CLOSED = "closed"
