"""
Implements the chat session protocol: the lifecycle of a single connection.

Each connection moves through UNJOINED -> JOINED -> CLOSED. The state is not
stored as a separate field; it is derived from two facts:
- whether the connection is open (tracked here), and
- whether the session registry holds a session for it.

All operations raise a RelayError subclass on failure. Turning those errors
into ``error`` events for the originating connection is the job of the
Socket.IO bindings in events.py.
"""
import logging
import threading
from typing import Optional

from broadcaster import RoomBroadcaster
from config import TRUST_CLIENT_TIMESTAMP
from data_models import JoinRequest, Message, SendMessageRequest, TypingRequest, parse_payload
from errors import AuthorizationError, NotConnectedError, NotFoundError, ValidationError
from session_models import ChatSession, ConnectionState
from session_registry import SessionRegistry
from store import IdentityStore


class ChatSessionProtocol:
    """
    Orchestrates the identity store, the session registry and the room
    broadcaster for join, message, typing and disconnect events.

    No lock is held while the identity store is being called, so a slow
    store never blocks other connections from using the registry.
    """

    def __init__(
        self,
        store: IdentityStore,
        registry: SessionRegistry,
        broadcaster: RoomBroadcaster,
        trust_client_timestamp: bool = TRUST_CLIENT_TIMESTAMP,
    ):
        self.store = store
        self.registry = registry
        self.broadcaster = broadcaster
        self.trust_client_timestamp = trust_client_timestamp
        self._open_connections: set[str] = set()
        self._lock = threading.Lock()

    def connect(self, connection_id: str) -> None:
        """Marks a newly opened transport connection as UNJOINED."""
        with self._lock:
            self._open_connections.add(connection_id)

    def state(self, connection_id: str) -> ConnectionState:
        with self._lock:
            if connection_id not in self._open_connections:
                return ConnectionState.CLOSED
        if self.registry.lookup(connection_id) is None:
            return ConnectionState.UNJOINED
        return ConnectionState.JOINED

    def join(self, connection_id: str, data: object) -> Optional[ChatSession]:
        """
        Joins a connection to a chat after validating membership.

        On success the user is announced to the rest of the room with
        ``userOnline`` and the joiner receives ``joined``. Joining again from
        the same connection replaces the previous session.

        Returns:
            The new session, or None if the connection closed while the chat
            was being fetched.

        Raises:
            ValidationError: userId or chatId is missing.
            NotConnectedError: The connection is already closed.
            NotFoundError: The chat does not exist.
            AuthorizationError: The user is not a participant of the chat.
            StoreError: The identity store failed.
        """
        request = parse_payload(JoinRequest, data)
        if not request.user_id or not request.chat_id:
            raise ValidationError("userId and chatId are required")
        if self.state(connection_id) is ConnectionState.CLOSED:
            raise NotConnectedError("Connection is closed")

        chat = self.store.get_chat(request.chat_id)
        if chat is None:
            raise NotFoundError("Chat not found")
        if not chat.has_participant(request.user_id):
            raise AuthorizationError("Not authorized for this chat")

        with self._lock:
            # The transport may have dropped while the store call was in flight.
            if connection_id not in self._open_connections:
                logging.info(f"Connection {connection_id} closed while joining chat {chat.id}; join abandoned.")
                return None
            previous_connection = self.registry.connection_for(request.user_id)
            session = self.registry.register(connection_id, request.user_id, chat.id)

        if previous_connection and previous_connection != connection_id:
            logging.info(f"User {session.user_id} took over from connection {previous_connection}.")
        self.broadcaster.broadcast(chat.id, "userOnline", {"userId": session.user_id}, exclude=connection_id)
        logging.info(f"User {session.user_id} joined chat {chat.id} ({len(self.registry)} online)")
        self.broadcaster.send(connection_id, "joined", {"chatId": chat.id, "userId": session.user_id})
        return session

    def send_message(self, connection_id: str, data: object) -> Message:
        """
        Persists a message and delivers it to everyone in the room, sender included.

        The sender's copy doubles as the confirmation carrying the stored id.
        Nothing is broadcast if persistence fails.

        Raises:
            NotConnectedError: The connection has not joined a chat.
            ValidationError: The message is missing or blank.
            StoreError: The identity store failed.
        """
        session = self._require_session(connection_id)
        request = parse_payload(SendMessageRequest, data)
        text = (request.message or "").strip()
        if not text:
            raise ValidationError("Message cannot be empty")

        timestamp = request.timestamp if self.trust_client_timestamp else None
        saved = self.store.append_message(
            Message(chat_id=session.chat_id, sender_id=session.user_id, message=text, timestamp=timestamp)
        )
        self.store.update_chat_summary(session.chat_id, text)

        self.broadcaster.broadcast(session.chat_id, "newMessage", saved.to_wire())
        logging.info(f"Message sent in chat {session.chat_id} by user {session.user_id}")
        return saved

    def typing(self, connection_id: str, data: object) -> None:
        """
        Relays a typing indicator to the other participant.

        Typing events from a connection that has not joined are dropped
        silently.
        """
        session = self.registry.lookup(connection_id)
        if session is None:
            logging.debug(f"Dropped typing event from unjoined connection {connection_id}")
            return
        request = parse_payload(TypingRequest, data)
        self.broadcaster.broadcast(
            session.chat_id,
            "userTyping",
            {"userId": session.user_id, "isTyping": request.is_typing},
            exclude=connection_id,
        )

    def disconnect(self, connection_id: str) -> Optional[ChatSession]:
        """
        Closes a connection and announces the user as offline to the room.

        Safe to call more than once; only the first call has any effect.

        Returns:
            The session that was removed, or None if the connection had none.
        """
        with self._lock:
            self._open_connections.discard(connection_id)
            session = self.registry.unregister(connection_id)

        if session is None:
            return None
        self.broadcaster.broadcast(session.chat_id, "userOffline", {"userId": session.user_id})
        logging.info(f"User {session.user_id} disconnected from chat {session.chat_id} ({len(self.registry)} online)")
        return session

    def report_error(self, connection_id: str, payload: dict) -> None:
        """Sends an ``error`` event to one connection only."""
        self.broadcaster.send(connection_id, "error", payload)

    def _require_session(self, connection_id: str) -> ChatSession:
        session = self.registry.lookup(connection_id)
        if session is None:
            raise NotConnectedError("Not properly connected to chat")
        return session
