"""
Registers the HTTP routes of the relay.

These request/response endpoints cover chat discovery and creation and are
independent of live Socket.IO connections:
- GET  /                     health probe
- GET  /api/chats/<user_id>  chats the user participates in
- POST /api/chats            create (or fetch) the chat for a participant pair
"""
import logging

from flask import Flask, jsonify, request

from config import CHAT_ID_SEPARATOR
from data_models import CreateChatRequest, parse_payload
from errors import StoreError, ValidationError
from store import IdentityStore
from utils import iso_timestamp


def register_routes(app: Flask, store: IdentityStore) -> None:
    """Attaches the gateway routes to the Flask app, backed by the given store."""

    @app.route("/")
    def health():
        """Reports that the server is up."""
        return jsonify({"status": "Chat server is running", "timestamp": iso_timestamp()})

    @app.route("/api/chats/<user_id>", methods=["GET"])
    def list_chats(user_id: str):
        """Returns the JSON array of chats for a user."""
        try:
            chats = store.list_chats_for_user(user_id)
        except StoreError as e:
            logging.error(f"Error fetching chats for {user_id}: {e}")
            return jsonify({"error": "Failed to fetch chats"}), 500
        return jsonify([chat.to_wire() for chat in chats])

    @app.route("/api/chats", methods=["POST"])
    def create_chat():
        """
        Creates the chat for exactly two distinct participants, or returns the
        existing one. The participant order in the request does not matter.
        User ids containing the chat id separator are rejected.
        """
        try:
            body = parse_payload(CreateChatRequest, request.get_json(silent=True))
            participants = body.participants
            if len(set(participants)) != 2 or not all(p.strip() for p in participants):
                raise ValidationError("Participants must be two distinct user ids")
            # The separator joins the pair into the chat id, so it cannot appear inside an id.
            if any(CHAT_ID_SEPARATOR in p for p in participants):
                raise ValidationError(f"User ids cannot contain '{CHAT_ID_SEPARATOR}'")
        except ValidationError as e:
            logging.info(f"Rejected chat creation request: {e.message}")
            return jsonify({"error": "Exactly 2 participants required"}), 400

        try:
            chat = store.create_chat_if_absent(participants)
        except StoreError as e:
            logging.error(f"Error creating chat: {e}")
            return jsonify({"error": "Failed to create chat"}), 500
        return jsonify({"chatId": chat.id, "participants": chat.participants})
