"""
Provides the durable identity store for chats and messages.

The relay core only talks to the abstract IdentityStore interface. Two
backends are provided:
- InMemoryStore: process-local dictionaries, used for local runs and tests.
- FirestoreStore: Cloud Firestore through the Firebase Admin SDK, using a
  ``chats`` collection keyed by chat id and an auto-id ``messages`` collection.

Every backend failure surfaces as a StoreError with the original exception
chained, so callers never have to know which backend they are talking to.
"""

import functools
import json
import logging
import threading
import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional, Sequence

import firebase_admin
from firebase_admin import credentials, firestore
from google.api_core.exceptions import AlreadyExists, GoogleAPIError
from google.auth.exceptions import GoogleAuthError
from google.cloud.firestore import SERVER_TIMESTAMP
from google.cloud.firestore_v1.base_query import FieldFilter
from pydantic import ValidationError as PydanticValidationError

from config import (
    CHATS_COLLECTION,
    FIREBASE_DATABASE_URL,
    FIREBASE_SERVICE_ACCOUNT,
    FIREBASE_SERVICE_ACCOUNT_PATH,
    MESSAGES_COLLECTION,
    STORE_BACKEND,
)
from data_models import Chat, Message, chat_id_for
from errors import StoreError
from utils import utc_now


class IdentityStore(ABC):
    """The operations the relay needs from its durable chat/message store."""

    @abstractmethod
    def get_chat(self, chat_id: str) -> Optional[Chat]:
        """Returns the chat, or None if it does not exist."""

    @abstractmethod
    def create_chat_if_absent(self, participants: Sequence[str]) -> Chat:
        """Creates the chat for a participant pair unless it already exists, and returns it."""

    @abstractmethod
    def append_message(self, record: Message) -> Message:
        """Persists a message, assigning its id and, when missing, its timestamp."""

    @abstractmethod
    def update_chat_summary(self, chat_id: str, last_message: str, last_message_at: Optional[datetime] = None) -> None:
        """Records the latest message on the chat. A None timestamp means "now" on the store's clock."""

    @abstractmethod
    def list_chats_for_user(self, user_id: str) -> list[Chat]:
        """Returns every chat the user participates in."""


class InMemoryStore(IdentityStore):
    """
    A thread-safe, process-local store.

    Records are copied on the way in and out so callers can never mutate the
    stored state behind the store's back.
    """

    def __init__(self):
        self._chats: dict[str, Chat] = {}
        self._messages: dict[str, Message] = {}
        self._lock = threading.Lock()

    def get_chat(self, chat_id: str) -> Optional[Chat]:
        with self._lock:
            chat = self._chats.get(chat_id)
        return chat.model_copy(deep=True) if chat else None

    def create_chat_if_absent(self, participants: Sequence[str]) -> Chat:
        sorted_participants = sorted(participants)
        chat_id = chat_id_for(sorted_participants)
        with self._lock:
            chat = self._chats.get(chat_id)
            if chat is None:
                chat = Chat(id=chat_id, participants=sorted_participants, created_at=utc_now())
                self._chats[chat_id] = chat
                logging.info(f"Created chat '{chat_id}'.")
        return chat.model_copy(deep=True)

    def append_message(self, record: Message) -> Message:
        saved = record.model_copy(update={"id": uuid.uuid4().hex, "timestamp": record.timestamp or utc_now()})
        with self._lock:
            self._messages[saved.id] = saved
        return saved.model_copy(deep=True)

    def update_chat_summary(self, chat_id: str, last_message: str, last_message_at: Optional[datetime] = None) -> None:
        with self._lock:
            chat = self._chats.get(chat_id)
            if chat is None:
                raise StoreError(f"Chat '{chat_id}' does not exist")
            self._chats[chat_id] = chat.model_copy(
                update={"last_message": last_message, "last_message_at": last_message_at or utc_now()}
            )

    def list_chats_for_user(self, user_id: str) -> list[Chat]:
        with self._lock:
            return [chat.model_copy(deep=True) for chat in self._chats.values() if chat.has_participant(user_id)]

    def messages_in(self, chat_id: str) -> list[Message]:
        """Returns the stored messages of one chat in insertion order."""
        with self._lock:
            return [m.model_copy(deep=True) for m in self._messages.values() if m.chat_id == chat_id]


def _backend_call(operation: str):
    """
    Converts failures raised by the wrapped Firestore call into StoreError.

    Covers API errors, credential refresh errors and stored documents that do
    not validate as the expected model.
    """

    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except (GoogleAPIError, GoogleAuthError, PydanticValidationError) as e:
                logging.error(f"Firestore call failed during '{operation}': {e}")
                raise StoreError(f"Failed to {operation}") from e

        return wrapper

    return decorator


def _load_service_account() -> dict:
    """Reads the Firebase service account from the environment, falling back to the key file."""
    if FIREBASE_SERVICE_ACCOUNT:
        return json.loads(FIREBASE_SERVICE_ACCOUNT)
    with open(FIREBASE_SERVICE_ACCOUNT_PATH, "r") as f:
        return json.load(f)


def initialize_firestore_client():
    """Initializes the default Firebase app once and returns a Firestore client for it."""
    try:
        app = firebase_admin.get_app()
    except ValueError:
        options = {"databaseURL": FIREBASE_DATABASE_URL} if FIREBASE_DATABASE_URL else None
        app = firebase_admin.initialize_app(credentials.Certificate(_load_service_account()), options)
        logging.info("Firebase Admin SDK initialized.")
    return firestore.client(app)


class FirestoreStore(IdentityStore):
    """
    Handles all direct read/write interactions with Cloud Firestore.
    This class acts as a Data Access Layer (DAL), keeping the Firestore
    document layout out of the protocol and gateway logic.
    """

    def __init__(self, client=None):
        self.client = client if client is not None else initialize_firestore_client()
        self.chats = self.client.collection(CHATS_COLLECTION)
        self.messages = self.client.collection(MESSAGES_COLLECTION)

    @staticmethod
    def _chat_from_snapshot(snapshot) -> Chat:
        return Chat.model_validate({**(snapshot.to_dict() or {}), "id": snapshot.id})

    @_backend_call("fetch chat")
    def get_chat(self, chat_id: str) -> Optional[Chat]:
        snapshot = self.chats.document(chat_id).get()
        if not snapshot.exists:
            return None
        return self._chat_from_snapshot(snapshot)

    @_backend_call("create chat")
    def create_chat_if_absent(self, participants: Sequence[str]) -> Chat:
        sorted_participants = sorted(participants)
        chat_ref = self.chats.document(chat_id_for(sorted_participants))
        try:
            # create() raises AlreadyExists for an existing document, leaving its summary untouched.
            chat_ref.create(
                {
                    "participants": sorted_participants,
                    "createdAt": SERVER_TIMESTAMP,
                    "lastMessage": None,
                    "lastMessageAt": None,
                }
            )
            logging.info(f"Created chat '{chat_ref.id}'.")
        except AlreadyExists:
            pass
        return self._chat_from_snapshot(chat_ref.get())

    @_backend_call("save message")
    def append_message(self, record: Message) -> Message:
        data = {
            "senderId": record.sender_id,
            "message": record.message,
            "timestamp": record.timestamp or SERVER_TIMESTAMP,
            "chatId": record.chat_id,
        }
        _, message_ref = self.messages.add(data)
        # Re-read so the resolved server timestamp is returned to clients.
        snapshot = message_ref.get()
        return Message.model_validate({**(snapshot.to_dict() or {}), "id": snapshot.id})

    @_backend_call("update chat summary")
    def update_chat_summary(self, chat_id: str, last_message: str, last_message_at: Optional[datetime] = None) -> None:
        self.chats.document(chat_id).update(
            {"lastMessage": last_message, "lastMessageAt": last_message_at or SERVER_TIMESTAMP}
        )

    @_backend_call("fetch chats")
    def list_chats_for_user(self, user_id: str) -> list[Chat]:
        query = self.chats.where(filter=FieldFilter("participants", "array_contains", user_id))
        return [self._chat_from_snapshot(snapshot) for snapshot in query.stream()]


def create_store(backend: str = STORE_BACKEND) -> IdentityStore:
    """Builds the identity store selected by configuration."""
    if backend == "memory":
        return InMemoryStore()
    if backend == "firestore":
        return FirestoreStore()
    raise ValueError(f"Unknown store backend '{backend}'. Expected 'memory' or 'firestore'.")
