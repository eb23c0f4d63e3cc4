import os


def _env_flag(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


# Server configuration
SERVER_HOST = os.environ.get("HOST", "0.0.0.0")
SERVER_PORT = int(os.environ.get("PORT", "3000"))

DEBUG_MODE = _env_flag("RELAY_DEBUG", False)
LOG_LEVEL = os.environ.get("RELAY_LOG_LEVEL", "INFO").upper()

# "eventlet" in production; the test suite runs the server in "threading" mode.
ASYNC_MODE = os.environ.get("RELAY_ASYNC_MODE", "eventlet")
CORS_ALLOWED_ORIGINS = os.environ.get("RELAY_CORS_ORIGINS", "*")

# Identity store selection: "memory" or "firestore".
STORE_BACKEND = os.environ.get("RELAY_STORE", "memory").lower()

# Firebase credentials. The JSON text in FIREBASE_SERVICE_ACCOUNT wins over the file path.
FIREBASE_SERVICE_ACCOUNT = os.environ.get("FIREBASE_SERVICE_ACCOUNT")
FIREBASE_SERVICE_ACCOUNT_PATH = os.environ.get(
    "FIREBASE_SERVICE_ACCOUNT_PATH",
    os.path.join(os.path.dirname(__file__), "service-account.json"),
)
FIREBASE_DATABASE_URL = os.environ.get("FIREBASE_DATABASE_URL")

CHATS_COLLECTION = "chats"
MESSAGES_COLLECTION = "messages"

# Chat ids are the sorted participant pair joined by this separator, e.g. "alice_bob".
CHAT_ID_SEPARATOR = "_"

# When False, client-supplied message timestamps are ignored and the server clock is used.
TRUST_CLIENT_TIMESTAMP = _env_flag("RELAY_TRUST_CLIENT_TIMESTAMP", True)
