import pytest

from relay import create_app
from store import InMemoryStore


@pytest.fixture
def store():
    """An in-memory store holding a single chat between 'a' and 'b'."""
    memory_store = InMemoryStore()
    memory_store.create_chat_if_absent(["b", "a"])
    return memory_store


@pytest.fixture
def relay(store):
    """The wired Flask app and SocketIO server, running in threading mode for the test clients."""
    app, socketio = create_app(store=store, async_mode="threading")
    app.config["TESTING"] = True
    return app, socketio


@pytest.fixture
def connect_client(relay):
    """
    Factory that opens Socket.IO test clients and returns them with their
    server-side connection id. All clients still connected are closed at teardown.
    """
    app, socketio = relay
    clients = []

    def _connect():
        client = socketio.test_client(app)
        clients.append(client)
        connection_id = socketio.server.manager.sid_from_eio_sid(client.eio_sid, "/")
        return client, connection_id

    yield _connect

    for client in clients:
        if client.is_connected():
            client.disconnect()

