# smartmeet/config.py
import os
from dotenv import load_dotenv

load_dotenv()  # Load environment variables from .env file


class Config:
    # General environmental details
    SECRET_KEY = os.environ.get("SECRET_KEY", "change_me_in_env")
    # Join credentials and handshake access tokens are HS256 JWTs
    JWT_SECRET = os.environ.get("JWT_SECRET") or SECRET_KEY
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

    # Database
    # Prefer env var, else default to absolute path under ./instance/smartmeet.sqlite
    _BASE_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
    _DEFAULT_SQLITE_PATH = os.path.join(_BASE_DIR, "instance", "smartmeet.sqlite")
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URI",
        f"sqlite:///{_DEFAULT_SQLITE_PATH}?timeout=20&check_same_thread=False"
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Socket.IO transport. eventlet in production, threading under pytest.
    SOCKETIO_ASYNC_MODE = os.environ.get("SOCKETIO_ASYNC_MODE", "eventlet")

    # Join gating
    try:
        JOIN_TOKEN_TTL_SECONDS = max(30, int(os.environ.get("JOIN_TOKEN_TTL_SECONDS", "300")))
    except ValueError:
        JOIN_TOKEN_TTL_SECONDS = 300
    # When true, join-room without a join credential is rejected
    REQUIRE_JOIN_TOKEN = os.environ.get("REQUIRE_JOIN_TOKEN", "false").lower() in {"1", "true", "yes"}

    # Room events
    try:
        CHAT_MESSAGE_MAX_CHARS = max(1, int(os.environ.get("CHAT_MESSAGE_MAX_CHARS", "500")))
    except ValueError:
        CHAT_MESSAGE_MAX_CHARS = 500

    # Meetings auto-expire after this many hours (0 disables expiry)
    try:
        MEETING_DEFAULT_TTL_HOURS = max(0, int(os.environ.get("MEETING_DEFAULT_TTL_HOURS", "24")))
    except ValueError:
        MEETING_DEFAULT_TTL_HOURS = 24
