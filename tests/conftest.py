import os

# must be set before venue_presence modules are imported
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("AUTH_VERIFY_MODE", "header")
os.environ.setdefault("LOG_FILE", "")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("STORE_RETRY_ATTEMPTS", "3")
