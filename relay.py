"""
Main application bootstrap file.

This script initializes the Flask application and the SocketIO server, builds
the identity store, and registers the HTTP routes and SocketIO event
handlers. It is responsible for starting the server and bringing all
components of the relay online.
"""
import logging
from typing import Optional

import debugpy
from flask import Flask
from flask_cors import CORS
from flask_socketio import SocketIO

import events
import gateway
from broadcaster import RoomBroadcaster
from config import ASYNC_MODE, CORS_ALLOWED_ORIGINS, DEBUG_MODE, LOG_LEVEL, SERVER_HOST, SERVER_PORT
from protocol import ChatSessionProtocol
from session_registry import SessionRegistry
from store import IdentityStore, create_store


def create_app(store: Optional[IdentityStore] = None, async_mode: str = ASYNC_MODE) -> tuple[Flask, SocketIO]:
    """
    Wires the relay together.

    Args:
        store: The identity store to use. Built from configuration when omitted.
        async_mode: The Flask-SocketIO async mode ("eventlet" in production).

    Returns:
        The Flask app and its SocketIO server. The chat session protocol is
        available as ``app.extensions["relay"]``.
    """
    app = Flask(__name__)
    CORS(app, origins=CORS_ALLOWED_ORIGINS)
    # async_handlers=False keeps each connection's events in arrival order.
    socketio = SocketIO(
        app,
        cors_allowed_origins=CORS_ALLOWED_ORIGINS,
        async_mode=async_mode,
        async_handlers=False,
    )

    if store is None:
        store = create_store()
    registry = SessionRegistry()
    broadcaster = RoomBroadcaster(socketio, registry)
    protocol = ChatSessionProtocol(store, registry, broadcaster)

    gateway.register_routes(app, store)
    events.register_events(socketio, protocol)
    app.extensions["relay"] = protocol
    return app, socketio


# --- MAIN EXECUTION ---
if __name__ == "__main__":
    logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s - %(levelname)s - %(message)s")
    try:
        app, socketio = create_app()
    except Exception as e:
        logging.critical(f"FATAL: Could not initialize the identity store. The relay cannot start without it. Error: {e}")
        raise SystemExit(1)

    if DEBUG_MODE:
        debugpy.listen(("0.0.0.0", 5678))
        app.logger.info("Debugpy server listening. Waiting for debugger to attach...")
        debugpy.wait_for_client()
        app.logger.info("Debugger attached.")

    app.logger.info(f"Chat server running on http://{SERVER_HOST}:{SERVER_PORT}")
    socketio.run(app, host=SERVER_HOST, port=SERVER_PORT)
