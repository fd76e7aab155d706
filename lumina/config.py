import os

DB = {
    "host": os.getenv("LUMINA_DB_HOST", "localhost"),
    "port": int(os.getenv("LUMINA_DB_PORT", "5432")),
    "dbname": os.getenv("LUMINA_DB_NAME", "lumina"),
    "user": os.getenv("LUMINA_DB_USER", "lumina"),
    "password": os.getenv("LUMINA_DB_PASSWORD", "luminapassword"),
}

API_TITLE = "Lumina API"
API_VERSION = "0.1.0"

BIBLE_API_BASE = os.getenv("BIBLE_API_BASE", "https://rest.api.bible/v1")
BIBLE_API_KEY = os.getenv("BIBLE_API_KEY", "")
BIBLE_API_TIMEOUT_SEC = float(os.getenv("BIBLE_API_TIMEOUT_SEC", "15"))
BIBLE_SEARCH_LIMIT = int(os.getenv("BIBLE_SEARCH_LIMIT", "10"))

# 7 days
BIBLE_CACHE_EXPIRY_MS = int(os.getenv("BIBLE_CACHE_EXPIRY_MS", str(7 * 24 * 60 * 60 * 1000)))
CACHE_KEY_PREFIX = "lumina.bibleCache"
SELECTION_KEY_PREFIX = "lumina.bibleContext"
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")

OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
OPENAI_API_BASE = os.getenv("OPENAI_API_BASE", "https://api.openai.com/v1")
OPENAI_CHAT_MODEL = os.getenv("OPENAI_CHAT_MODEL", "gpt-4o")
OPENAI_REALTIME_MODEL = os.getenv("OPENAI_REALTIME_MODEL", "gpt-4o-realtime-preview-2024-12-17")
OPENAI_REALTIME_VOICE = os.getenv("OPENAI_REALTIME_VOICE", "marin")
OPENAI_TIMEOUT_SEC = float(os.getenv("OPENAI_TIMEOUT_SEC", "60"))

AUTH_JWT_SECRET = os.getenv("AUTH_JWT_SECRET", "change-me")
AUTH_JWT_AUDIENCE = os.getenv("AUTH_JWT_AUDIENCE", "authenticated")
AUTH_JWT_ALGORITHM = os.getenv("AUTH_JWT_ALGORITHM", "HS256")

EVENT_LOG_PATH = os.getenv("EVENT_LOG_PATH", "logs/events.log")
LOG_ID_SALT = os.getenv("LOG_ID_SALT", "")
UPSTREAM_SLOW_MS = int(os.getenv("UPSTREAM_SLOW_MS", "2000"))
