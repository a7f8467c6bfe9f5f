import os

from dotenv import load_dotenv

load_dotenv()


def _bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./memorykeeper.db")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# job queue
JOB_BATCH_SIZE = int(os.getenv("JOB_BATCH_SIZE", "20"))
JOB_MAX_ATTEMPTS = int(os.getenv("JOB_MAX_ATTEMPTS", "3"))
JOB_LEASE_SECONDS = int(os.getenv("JOB_LEASE_SECONDS", "300"))

BACKOFF_BASE_SECONDS = float(os.getenv("BACKOFF_BASE_SECONDS", "10"))
BACKOFF_MAX_SECONDS = float(os.getenv("BACKOFF_MAX_SECONDS", "600"))
BACKOFF_JITTER = float(os.getenv("BACKOFF_JITTER", "0.15"))

SCHEDULER_INTERVAL_SECONDS = float(os.getenv("SCHEDULER_INTERVAL_SECONDS", "60"))
SCHEDULER_CONCURRENCY = int(os.getenv("SCHEDULER_CONCURRENCY", "4"))
HANDLER_TIMEOUT_SECONDS = float(os.getenv("HANDLER_TIMEOUT_SECONDS", "120"))  # 0 disables
START_WORKER = _bool("START_WORKER", True)

# admission control
RATE_LIMIT_BACKEND = os.getenv("RATE_LIMIT_BACKEND", "memory")  # memory | database

# route_key -> (limit, window_seconds)
RATE_LIMITS = {
    "upload": (int(os.getenv("UPLOAD_RATE_LIMIT", "10")), 60),
    "api": (int(os.getenv("API_RATE_LIMIT", "100")), 60),
    "public": (int(os.getenv("PUBLIC_RATE_LIMIT", "1000")), 60),
    "auth": (int(os.getenv("AUTH_RATE_LIMIT", "5")), 15 * 60),
}

ADMIN_TOKEN = os.getenv("ADMIN_TOKEN")
