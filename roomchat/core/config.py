# roomchat/core/config.py
import os
from typing import List, Literal
from dotenv import load_dotenv


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Settings:
    """
    Setup environment variables.
        - LOG_LEVEL root logging level (DEBUG, INFO, WARNING, ...)
        - MESSAGE_STORE the persistence backend: "memory", "redis" or "none"
        - DEFAULT_ROOMS comma separated rooms created at startup (never deletable)
        - DEFAULT_ROOM the room a message lands in when none is given
        - TYPING_TIMEOUT_SECONDS how long a typing indicator lives without refresh
        - ROOM_HISTORY_SIZE capacity of the in-memory ring buffer per room
        - PERSISTED_HISTORY_LIMIT how many stored messages are replayed on join
        - MAX_PERSISTED_MESSAGES stored messages kept per room before cleanup
    """

    # Load environment variables from the .env file
    load_dotenv()

    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    MESSAGE_STORE: Literal["memory", "redis", "none"] = os.getenv("MESSAGE_STORE", "memory")

    REDIS_HOST: str = os.getenv("REDIS_HOST", "localhost")
    REDIS_PORT: int = int(os.getenv("REDIS_PORT", "6379"))
    REDIS_ACCESS_KEY: str = os.getenv("REDIS_ACCESS_KEY", "")
    REDIS_SSL: bool = _env_bool("REDIS_SSL", "false")

    DEFAULT_ROOM: str = os.getenv("DEFAULT_ROOM", "global")
    DEFAULT_ROOMS: List[str] = [
        r.strip() for r in os.getenv("DEFAULT_ROOMS", "global,general,random").split(",") if r.strip()
    ]
    DEFAULT_MAX_USERS: int = int(os.getenv("DEFAULT_MAX_USERS", "100"))

    MAX_MESSAGE_LENGTH: int = int(os.getenv("MAX_MESSAGE_LENGTH", "200"))
    KEEP_HISTORY: bool = _env_bool("KEEP_HISTORY", "true")
    ROOM_HISTORY_SIZE: int = int(os.getenv("ROOM_HISTORY_SIZE", "100"))
    PERSISTED_HISTORY_LIMIT: int = int(os.getenv("PERSISTED_HISTORY_LIMIT", "50"))
    MAX_PERSISTED_MESSAGES: int = int(os.getenv("MAX_PERSISTED_MESSAGES", "1000"))
    PERSIST_TIMEOUT_SECONDS: float = float(os.getenv("PERSIST_TIMEOUT_SECONDS", "5.0"))

    TYPING_TIMEOUT_SECONDS: float = float(os.getenv("TYPING_TIMEOUT_SECONDS", "3.0"))

settings = Settings()
