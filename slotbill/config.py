import os

# ----------------------------
# Config & Constants
# ----------------------------
DATABASE_URL = os.environ.get("DATABASE_URL", "sqlite:///./slotbill.db")

# 'pg' keeps processed webhook ids in the SQL database, 'redis' in Redis
EVENTS_BACKEND = os.getenv("EVENTS_BACKEND", "pg").lower()
REDIS_URL = os.getenv("REDIS_URL", "redis://127.0.0.1:6379")
REDIS_MAX_CONN = int(os.getenv("REDIS_MAX_CONN", "64"))
EVENT_TTL_SECONDS = int(os.getenv("EVENT_TTL_SECONDS", str(7 * 24 * 3600)))

STRIPE_SECRET_KEY = os.environ.get("STRIPE_SECRET_KEY", "")
STRIPE_WEBHOOK_SECRET = os.environ.get("STRIPE_WEBHOOK_SECRET", "")

MOCK_SECRET = os.environ.get("MOCK_SECRET", "supersecret")
MOCK_WEBHOOK_URL = os.environ.get(
    "MOCK_WEBHOOK_URL",
    "http://localhost:8000/api/stripe-webhook"
)

RECEIPT_PREFIX = os.environ.get("RECEIPT_PREFIX", "WL-RCPT")
DEFAULT_CURRENCY = os.environ.get("DEFAULT_CURRENCY", "INR")

MAIL_API_URL = os.environ.get("MAIL_API_URL", "")
MAIL_API_KEY = os.environ.get("MAIL_API_KEY", "")
MAIL_FROM = os.environ.get("MAIL_FROM", "billing@worklogix.com")
SUPER_ADMIN_EMAIL = os.environ.get("SUPER_ADMIN_EMAIL", "")

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

# connection pool (PostgreSQL) and the per-engine concurrency gate
DB_POOL_SIZE = int(os.environ.get("DB_POOL_SIZE", "10"))
DB_MAX_OVERFLOW = int(os.environ.get("DB_MAX_OVERFLOW", "10"))
DB_POOL_TIMEOUT = int(os.environ.get("DB_POOL_TIMEOUT", "30"))
DB_GATE_LIMIT = int(os.environ.get("DB_GATE_LIMIT", "0"))  # 0: pool size

# latency timings, posted to a collector on shutdown when both are set
BENCH_URL = os.environ.get("BENCH_URL", "")
BENCH_RUN_ID = os.environ.get("BENCH_RUN_ID", "")
BENCH_FALLBACK_DUMP = os.environ.get("BENCH_FALLBACK_DUMP", "")
