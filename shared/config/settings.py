import os
from dotenv import load_dotenv

load_dotenv()


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


DB_USER = os.getenv("POSTGRES_USER", "postgres")
DB_PASSWORD = os.getenv("POSTGRES_PASSWORD", "postgres")
DB_HOST = os.getenv("POSTGRES_HOST", "localhost") # In Docker, this will be 'postgres'
DB_PORT = os.getenv("POSTGRES_PORT", "5433")
DB_NAME = os.getenv("POSTGRES_DB", "fulfillment")

DATABASE_URL = os.getenv(
    "DATABASE_URL",
    f"postgresql+asyncpg://{DB_USER}:{DB_PASSWORD}@{DB_HOST}:{DB_PORT}/{DB_NAME}",
)
DB_ECHO = _flag("DB_ECHO", "false")
DB_ISOLATION_LEVEL = os.getenv("DB_ISOLATION_LEVEL", "SERIALIZABLE")

# "mirror" keeps the historical roll-up rule, "strict" enables partially_fulfilled
CASCADE_POLICY = os.getenv("CASCADE_POLICY", "mirror")

JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "60"))

CREATE_ORDER_RATE_LIMIT = os.getenv("CREATE_ORDER_RATE_LIMIT", "30/minute")

TRACING_ENABLED = _flag("TRACING_ENABLED", "true")
OTLP_ENDPOINT = os.getenv("OTLP_ENDPOINT", "http://localhost:4317")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
