"""
Tracks which users are online and which chat each live connection has joined.

The registry is the single source of truth for presence. It keeps two maps in
lockstep under one lock:
- user_id -> connection_id (at most one live connection per user)
- connection_id -> ChatSession

A user id is present in the first map exactly when its connection is a key of
the second map with a matching user id. The registry never talks to the store
or the broadcaster; callers orchestrate.
"""
import threading
from typing import Optional

from session_models import ChatSession


class SessionRegistry:
    """In-memory, thread-safe registry of joined connections."""

    def __init__(self):
        self._connections_by_user: dict[str, str] = {}
        self._sessions_by_connection: dict[str, ChatSession] = {}
        self._lock = threading.Lock()

    def register(self, connection_id: str, user_id: str, chat_id: str) -> ChatSession:
        """
        Binds a connection to a (user, chat) pair.

        The last join wins: if the user is already registered on a different
        connection, that connection's entry is evicted. The evicted transport
        itself stays open; it simply stops being authorized for chat events.
        If this connection was previously bound to a different user, that
        user's entry is dropped as well.

        Returns:
            The newly created ChatSession.
        """
        session = ChatSession(connection_id=connection_id, user_id=user_id, chat_id=chat_id)
        with self._lock:
            previous = self._sessions_by_connection.get(connection_id)
            if previous and previous.user_id != user_id:
                if self._connections_by_user.get(previous.user_id) == connection_id:
                    del self._connections_by_user[previous.user_id]

            evicted_connection = self._connections_by_user.get(user_id)
            if evicted_connection and evicted_connection != connection_id:
                self._sessions_by_connection.pop(evicted_connection, None)

            self._connections_by_user[user_id] = connection_id
            self._sessions_by_connection[connection_id] = session
        return session

    def lookup(self, connection_id: str) -> Optional[ChatSession]:
        """Returns the session bound to a connection, or None."""
        with self._lock:
            return self._sessions_by_connection.get(connection_id)

    def unregister(self, connection_id: str) -> Optional[ChatSession]:
        """
        Removes a connection's session.

        Returns:
            The removed session, or None if the connection never joined (or was
            evicted). A miss is a normal idle state, not an error.
        """
        with self._lock:
            session = self._sessions_by_connection.pop(connection_id, None)
            if session and self._connections_by_user.get(session.user_id) == connection_id:
                del self._connections_by_user[session.user_id]
        return session

    def connections_in(self, chat_id: str) -> list[str]:
        """Returns a snapshot of the connection ids currently joined to a chat."""
        with self._lock:
            return [
                connection_id
                for connection_id, session in self._sessions_by_connection.items()
                if session.chat_id == chat_id
            ]

    def connection_for(self, user_id: str) -> Optional[str]:
        with self._lock:
            return self._connections_by_user.get(user_id)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions_by_connection)
