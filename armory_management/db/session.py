import os

from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker


def _require_env(name: str) -> str:
    value = os.environ.get(name)
    if not value:
        raise RuntimeError(f"Missing required environment variable: {name}")
    return value


ARMORY_DB_URL = _require_env("ARMORY_DB_URL")
_IS_SQLITE = ARMORY_DB_URL.startswith("sqlite")

engine_armory = create_engine(
    ARMORY_DB_URL,
    pool_pre_ping=True,
    future=True,
    connect_args={"check_same_thread": False, "timeout": 15} if _IS_SQLITE else {},
)

if _IS_SQLITE:

    @event.listens_for(engine_armory, "connect")
    def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


SessionLocalArmory = sessionmaker(
    bind=engine_armory,
    autoflush=False,
    autocommit=False,
    expire_on_commit=False,
    future=True,
)
