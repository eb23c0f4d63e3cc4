"""
Delivers events to the connections of a chat room.

Room membership is never stored here. It is read from the session registry
at broadcast time, so a connection receives room events exactly while the
registry says it has joined that room.
"""
import logging
from typing import Any, Optional

from session_registry import SessionRegistry


class RoomBroadcaster:
    """Fans events out over a Flask-SocketIO server using per-connection emits."""

    def __init__(self, socketio: Any, registry: SessionRegistry):
        """
        Args:
            socketio: The SocketIO server instance used to emit events.
            registry: The registry that defines room membership.
        """
        self.socketio = socketio
        self.registry = registry

    def send(self, connection_id: str, event: str, payload: Any) -> bool:
        """
        Emits an event to a single connection.

        Returns:
            True if the emit succeeded, False if the peer was unreachable.
        """
        try:
            self.socketio.emit(event, payload, to=connection_id)
            return True
        except Exception as e:
            logging.warning(f"Failed to deliver '{event}' to {connection_id}: {e}")
            return False

    def broadcast(self, chat_id: str, event: str, payload: Any, exclude: Optional[str] = None) -> list[str]:
        """
        Emits an event to every connection currently joined to a chat.

        A failed delivery to one peer is logged and does not stop delivery to
        the others.

        Args:
            chat_id: The room to deliver to.
            event: The Socket.IO event name.
            payload: The event body.
            exclude: A connection id to skip, typically the sender.

        Returns:
            The connection ids the event was delivered to.
        """
        delivered = []
        for connection_id in self.registry.connections_in(chat_id):
            if connection_id == exclude:
                continue
            if self.send(connection_id, event, payload):
                delivered.append(connection_id)
        return delivered
