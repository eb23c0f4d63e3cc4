"""
Handles all SocketIO event logic for the relay.

This module binds the transport-level Socket.IO events to the chat session
protocol. It is designed to be registered by the main relay.py script. Every
handler runs against ``request.sid``, and every failure is reported back to
that connection only as an ``error`` event of the form ``{kind, message}``.
"""

import functools
import logging

from flask import request
from flask_socketio import SocketIO

from errors import RelayError
from protocol import ChatSessionProtocol


def _reporting_failures(protocol: ChatSessionProtocol, action: str):
    """
    Wraps an event handler so that no failure escapes to the transport.

    Known relay errors are reported with their own kind; anything else is
    logged with a traceback and reported as an InternalError.
    """

    def decorator(handler):
        @functools.wraps(handler)
        def wrapper(data=None):
            connection_id = request.sid
            try:
                handler(connection_id, data)
            except RelayError as e:
                logging.warning(f"Could not {action} for {connection_id}: {e.kind}: {e.message}")
                protocol.report_error(connection_id, e.to_payload())
            except Exception as e:
                logging.exception(f"Unexpected error while trying to {action} for {connection_id}: {e}")
                protocol.report_error(connection_id, {"kind": "InternalError", "message": f"Failed to {action}"})

        return wrapper

    return decorator


def register_events(socketio: SocketIO, protocol: ChatSessionProtocol) -> None:
    """
    Registers all SocketIO event handlers with the main application.

    This function acts as the entry point for this module, connecting the
    event handlers to the given protocol instance.
    """

    @socketio.on("connect")
    def handle_connect(auth=None) -> None:
        """Tracks a new transport connection as unjoined."""
        protocol.connect(request.sid)
        logging.info(f"Client connected: {request.sid}")

    @socketio.on("disconnect")
    def handle_disconnect(reason=None) -> None:
        """Cleans up the connection's session and announces the user offline."""
        connection_id = request.sid
        try:
            protocol.disconnect(connection_id)
        except Exception as e:
            logging.exception(f"Error while cleaning up connection {connection_id}: {e}")
        logging.info(f"Client disconnected: {connection_id}")

    @socketio.on("join")
    @_reporting_failures(protocol, "join chat")
    def handle_join(connection_id: str, data: dict) -> None:
        """
        Joins the connection to a chat.

        Args:
            data: A dictionary of the form {"userId": "alice", "chatId": "alice_bob"}
        """
        protocol.join(connection_id, data)

    @socketio.on("sendMessage")
    @_reporting_failures(protocol, "send message")
    def handle_send_message(connection_id: str, data: dict) -> None:
        """
        Persists and relays a chat message.

        Args:
            data: A dictionary of the form {"message": "hi", "timestamp": optional}
        """
        protocol.send_message(connection_id, data)

    @socketio.on("typing")
    @_reporting_failures(protocol, "relay typing status")
    def handle_typing(connection_id: str, data: dict) -> None:
        """Relays a typing indicator of the form {"isTyping": true}."""
        protocol.typing(connection_id, data)
