import logging
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

from broadcaster import RoomBroadcaster
from errors import NotConnectedError, StoreError, ValidationError
from protocol import ChatSessionProtocol
from session_models import ConnectionState
from session_registry import SessionRegistry


def build_protocol(store, trust_client_timestamp=True):
    mock_socketio = MagicMock()
    registry = SessionRegistry()
    protocol = ChatSessionProtocol(
        store, registry, RoomBroadcaster(mock_socketio, registry), trust_client_timestamp=trust_client_timestamp
    )
    return protocol, mock_socketio


def emitted_to(mock_socketio, connection_id):
    """Returns (event, payload) pairs emitted to one connection, in order."""
    return [c.args for c in mock_socketio.emit.call_args_list if c.kwargs.get("to") == connection_id]


@pytest.fixture
def setup_protocol(store):
    protocol, mock_socketio = build_protocol(store)
    protocol.connect("sid-a")
    protocol.connect("sid-b")
    return protocol, mock_socketio


def test_state_moves_from_unjoined_to_joined_to_closed(setup_protocol):
    protocol, _ = setup_protocol
    assert protocol.state("sid-a") is ConnectionState.UNJOINED

    protocol.join("sid-a", {"userId": "a", "chatId": "a_b"})
    assert protocol.state("sid-a") is ConnectionState.JOINED

    protocol.disconnect("sid-a")
    assert protocol.state("sid-a") is ConnectionState.CLOSED


def test_closed_connection_cannot_join_again(setup_protocol):
    protocol, _ = setup_protocol
    protocol.disconnect("sid-a")

    with pytest.raises(NotConnectedError):
        protocol.join("sid-a", {"userId": "a", "chatId": "a_b"})


def test_disconnect_is_idempotent(setup_protocol):
    protocol, mock_socketio = setup_protocol
    protocol.join("sid-a", {"userId": "a", "chatId": "a_b"})
    protocol.join("sid-b", {"userId": "b", "chatId": "a_b"})
    mock_socketio.reset_mock()

    first = protocol.disconnect("sid-a")
    second = protocol.disconnect("sid-a")

    assert first.user_id == "a"
    assert second is None
    assert emitted_to(mock_socketio, "sid-b") == [("userOffline", {"userId": "a"})]


def test_disconnect_before_join_emits_nothing(setup_protocol):
    protocol, mock_socketio = setup_protocol

    assert protocol.disconnect("sid-a") is None
    mock_socketio.emit.assert_not_called()


def test_join_abandoned_when_connection_closes_during_store_lookup(store, setup_protocol, mocker):
    protocol, mock_socketio = setup_protocol
    real_get_chat = store.get_chat

    def get_chat_then_drop(chat_id):
        protocol.disconnect("sid-a")
        return real_get_chat(chat_id)

    mocker.patch.object(store, "get_chat", side_effect=get_chat_then_drop)

    assert protocol.join("sid-a", {"userId": "a", "chatId": "a_b"}) is None
    assert protocol.registry.lookup("sid-a") is None
    mock_socketio.emit.assert_not_called()


def test_second_connection_for_same_user_takes_over(setup_protocol):
    protocol, mock_socketio = setup_protocol
    protocol.connect("sid-a2")
    protocol.join("sid-a", {"userId": "a", "chatId": "a_b"})

    protocol.join("sid-a2", {"userId": "a", "chatId": "a_b"})

    assert protocol.state("sid-a") is ConnectionState.UNJOINED
    with pytest.raises(NotConnectedError):
        protocol.send_message("sid-a", {"message": "from the old tab"})
    # The old connection dropping later must not knock the new one offline.
    mock_socketio.reset_mock()
    protocol.disconnect("sid-a")
    assert protocol.registry.connection_for("a") == "sid-a2"
    mock_socketio.emit.assert_not_called()


def test_join_and_disconnect_log_presence(setup_protocol, caplog):
    protocol, _ = setup_protocol
    protocol.connect("sid-a2")
    caplog.set_level(logging.INFO)

    protocol.join("sid-a", {"userId": "a", "chatId": "a_b"})
    protocol.join("sid-b", {"userId": "b", "chatId": "a_b"})
    protocol.join("sid-a2", {"userId": "a", "chatId": "a_b"})
    protocol.disconnect("sid-b")

    assert "User b joined chat a_b (2 online)" in caplog.messages
    assert "User a took over from connection sid-a." in caplog.messages
    assert "User b disconnected from chat a_b (1 online)" in caplog.messages


def test_client_timestamp_is_kept_when_trusted(store, setup_protocol):
    protocol, _ = setup_protocol
    protocol.join("sid-a", {"userId": "a", "chatId": "a_b"})

    saved = protocol.send_message("sid-a", {"message": "hi", "timestamp": "2024-01-02T03:04:05+00:00"})

    assert saved.timestamp == datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)


def test_client_timestamp_is_ignored_when_not_trusted(store):
    protocol, _ = build_protocol(store, trust_client_timestamp=False)
    protocol.connect("sid-a")
    protocol.join("sid-a", {"userId": "a", "chatId": "a_b"})

    saved = protocol.send_message("sid-a", {"message": "hi", "timestamp": "2001-01-01T00:00:00+00:00"})

    assert saved.timestamp.year != 2001


def test_unparseable_timestamp_is_a_validation_error(setup_protocol):
    protocol, _ = setup_protocol
    protocol.join("sid-a", {"userId": "a", "chatId": "a_b"})

    with pytest.raises(ValidationError):
        protocol.send_message("sid-a", {"message": "hi", "timestamp": "not a date"})


def test_non_string_message_is_a_validation_error(setup_protocol):
    protocol, _ = setup_protocol
    protocol.join("sid-a", {"userId": "a", "chatId": "a_b"})

    with pytest.raises(ValidationError):
        protocol.send_message("sid-a", {"message": 42})


def test_summary_failure_prevents_broadcast(store, setup_protocol, mocker):
    protocol, mock_socketio = setup_protocol
    protocol.join("sid-a", {"userId": "a", "chatId": "a_b"})
    protocol.join("sid-b", {"userId": "b", "chatId": "a_b"})
    mock_socketio.reset_mock()
    mocker.patch.object(store, "update_chat_summary", side_effect=StoreError("Failed to update chat summary"))

    with pytest.raises(StoreError):
        protocol.send_message("sid-a", {"message": "hi"})

    mock_socketio.emit.assert_not_called()


@pytest.mark.parametrize("data", [{"isTyping": "yes"}, {"isTyping": None}, {}])
def test_typing_requires_a_boolean(setup_protocol, data):
    protocol, mock_socketio = setup_protocol
    protocol.join("sid-a", {"userId": "a", "chatId": "a_b"})
    protocol.join("sid-b", {"userId": "b", "chatId": "a_b"})
    mock_socketio.reset_mock()

    with pytest.raises(ValidationError):
        protocol.typing("sid-a", data)

    mock_socketio.emit.assert_not_called()


def test_report_error_targets_one_connection(setup_protocol):
    protocol, mock_socketio = setup_protocol

    protocol.report_error("sid-a", {"kind": "ValidationError", "message": "bad"})

    mock_socketio.emit.assert_called_once_with("error", {"kind": "ValidationError", "message": "bad"}, to="sid-a")
