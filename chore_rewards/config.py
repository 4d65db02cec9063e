import os


def _env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _default_sqlite_url() -> str:
    data_dir = "/data"
    if os.path.isdir(data_dir):
        return f"sqlite:////{os.path.join(data_dir.lstrip('/'), 'chore_rewards.db')}"
    return "sqlite:///chore_rewards.db"


class Settings:
    def __init__(self):
        self.database_url = os.getenv("DATABASE_URL", _default_sqlite_url())
        self.session_secret = os.getenv("SESSION_SECRET", "dev-secret")
        # False restores the old behaviour of permitting callers that pass no role.
        self.strict_role_checking = _env_flag("STRICT_ROLE_CHECKING", True)
        self.log_level = os.getenv("LOG_LEVEL", "INFO").upper()


settings = Settings()
