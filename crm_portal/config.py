import os


def _bool_env(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _int_env(name: str, default: int) -> int:
    value = os.environ.get(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


class Config:
    BASE_DIR = os.path.dirname(os.path.dirname(__file__))
    DATABASE_URL = os.environ.get("DATABASE_URL")
    DATABASE_DIR = None if DATABASE_URL else os.path.join(BASE_DIR, "database")
    DB_PATH = DATABASE_URL or os.path.join(DATABASE_DIR, "crm_portal.db")
    DB_AUTO_INIT = _bool_env("DB_AUTO_INIT", False)

    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-crm-portal")
    AUTH_ENABLED = _bool_env("AUTH_ENABLED", True)
    APP_USERS = os.environ.get("APP_USERS", "admin@demo.com:admin123:tenant-demo:Admin:admin")

    LOG_JSON = _bool_env("LOG_JSON", True)
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    RATE_LIMIT_ENABLED = _bool_env("RATE_LIMIT_ENABLED", True)
    RATE_LIMIT_PER_MINUTE = _int_env("RATE_LIMIT_PER_MINUTE", 240)
    SECURITY_HEADERS_ENABLED = _bool_env("SECURITY_HEADERS_ENABLED", True)

    SAVE_CLOSE_DELAY_MS = _int_env("SAVE_CLOSE_DELAY_MS", 200)
    STRICT_DETAIL_COMMIT = _bool_env("STRICT_DETAIL_COMMIT", True)
    FOLLOWUP_TASKS_ASYNC = _bool_env("FOLLOWUP_TASKS_ASYNC", True)
    EDIT_SESSION_TTL_SECONDS = _int_env("EDIT_SESSION_TTL_SECONDS", 1800)
    CHANGE_STREAM_HEARTBEAT_SECONDS = _int_env("CHANGE_STREAM_HEARTBEAT_SECONDS", 15)
    DUPLICATE_MATCH_THRESHOLD = _int_env("DUPLICATE_MATCH_THRESHOLD", 65)

    def __init__(self):
        env = os.environ.get("FLASK_ENV", "development").lower()
        if env == "production" and not self.DATABASE_URL:
            raise RuntimeError("DATABASE_URL is not set for the production environment.")
        if env == "production" and self.SECRET_KEY == "dev-secret-crm-portal":
            raise RuntimeError("SECRET_KEY is insecure for production.")
