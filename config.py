import os


def _database_url() -> str:
    url = os.getenv("DATABASE_URL")
    if url:
        # Hosted Postgres providers still hand out the legacy scheme
        if url.startswith("postgres://"):
            url = "postgresql://" + url[len("postgres://"):]
        return url
    host = os.getenv("DB_HOST")
    if host:
        port = os.getenv("DB_PORT", "5433")
        user = os.getenv("DB_USER", "postgres")
        password = os.getenv("DB_PASSWORD", "postgres")
        name = os.getenv("DB_NAME", "staticdb")
        return f"postgresql://{user}:{password}@{host}:{port}/{name}"
    return "sqlite:///./store.db"


def _retention(value: str) -> int:
    # "14d" and "14" both mean keep 14 rotated files
    digits = value.strip().rstrip("dD")
    try:
        return max(int(digits), 1)
    except ValueError:
        return 14


APP_ENV = os.getenv("APP_ENV", "development")
IS_PRODUCTION = APP_ENV == "production"

DATABASE_URL = _database_url()
SQL_ECHO = APP_ENV == "development" and os.getenv("SQL_ECHO") == "1"

SECRET_KEY = os.getenv("SECRET_KEY", "supersecretkey-change")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 60 * 24 * 7))

LOGS_DIR = os.getenv("LOGS_DIR", "logs")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO" if IS_PRODUCTION else "DEBUG").upper()
LOG_MAX_FILES = _retention(os.getenv("LOG_MAX_FILES", "14d"))

CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "http://localhost:5173").split(",") if o.strip()]

ADMIN_EMAIL = os.getenv("ADMIN_EMAIL")
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD")

PORT = int(os.getenv("PORT", 8000))
