import os
from dataclasses import dataclass

# constants
RESTAURANT_NAME = "Buteco São Benedito"
TOP_ITEMS_LIMIT = 10
MIN_PASSWORD_LENGTH = 6
MENU_CATEGORIES = (
    "Bebidas",
    "Petiscos",
    "Pratos Principais",
    "Sobremesas",
    "Outros",
)

DATE_KEY_FORMAT = "%Y-%m-%d"
DISPLAY_DATE_FORMAT = "%d/%m/%Y"
DISPLAY_DATETIME_FORMAT = "%d/%m/%Y %H:%M"

BACKENDS = ("sqlite", "mongo")


@dataclass(frozen=True)
class Settings:
    """runtime settings, read from the environment at startup"""
    backend: str = "sqlite"
    db_path: str = "buteco.db"
    database_url: str = "mongodb://localhost:27017"
    database_name: str = "buteco"
    export_dir: str = "."
    log_level: str = "WARNING"

    @classmethod
    def from_env(cls, environ=None) -> "Settings":
        env = os.environ if environ is None else environ
        backend = env.get("BUTECO_BACKEND", cls.backend).strip().lower()
        if backend not in BACKENDS:
            raise ValueError(f"unknown backend {backend!r} (expected one of {', '.join(BACKENDS)})")
        return cls(
            backend=backend,
            db_path=env.get("BUTECO_DB_PATH", cls.db_path),
            database_url=env.get("DATABASE_URL", cls.database_url),
            database_name=env.get("DATABASE_NAME", cls.database_name),
            export_dir=env.get("BUTECO_EXPORT_DIR", cls.export_dir),
            log_level=env.get("BUTECO_LOG_LEVEL", cls.log_level).upper(),
        )
