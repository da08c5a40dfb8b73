import os
from dotenv import load_dotenv
from loguru import logger

load_dotenv()

def _get_env(key: str, default: str | None = None) -> str:
    val = os.getenv(key, default)
    if val is None:
        raise RuntimeError(f"Missing required env var: {key}")
    return val

APP_ENV = _get_env("APP_ENV", "local")
DATABASE_URL = _get_env("DATABASE_URL", "sqlite:///./venue_presence.db")
LOG_LEVEL = _get_env("LOG_LEVEL", "DEBUG")
LOG_FILE = _get_env("LOG_FILE", "logs/app.log")

# Store timeouts / retries
DB_STATEMENT_TIMEOUT_MS = int(_get_env("DB_STATEMENT_TIMEOUT_MS", "5000"))
DB_POOL_TIMEOUT_SECONDS = int(_get_env("DB_POOL_TIMEOUT_SECONDS", "10"))
STORE_RETRY_ATTEMPTS = int(_get_env("STORE_RETRY_ATTEMPTS", "3"))

# Auth: "hs256", "jwks" or "header" (trusts X-User-Id, local only)
AUTH_VERIFY_MODE = _get_env("AUTH_VERIFY_MODE", "hs256").lower()
AUTH_JWT_SECRET = os.getenv("AUTH_JWT_SECRET")
AUTH_JWKS_URL = os.getenv("AUTH_JWKS_URL")

# Per-user requests per minute
RATE_LIMIT_NONCE_PER_MIN = int(_get_env("RATE_LIMIT_NONCE_PER_MIN", "5"))
RATE_LIMIT_VERIFY_PER_MIN = int(_get_env("RATE_LIMIT_VERIFY_PER_MIN", "3"))
RATE_LIMIT_PING_PER_MIN = int(_get_env("RATE_LIMIT_PING_PER_MIN", "60"))

logger.debug(
    f"Config loaded: APP_ENV={APP_ENV}, DATABASE_URL={DATABASE_URL}, "
    f"LOG_LEVEL={LOG_LEVEL}, AUTH_VERIFY_MODE={AUTH_VERIFY_MODE}"
)
