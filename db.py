from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy import create_engine, event
import os


def _set_sqlite_pragmas(dbapi_connection, connection_record):
    """Configure SQLite so searches keep reading while an import writes."""
    cursor = dbapi_connection.cursor()
    try:
        # Wait for locks instead of failing immediately.
        cursor.execute("PRAGMA busy_timeout=5000")
        # Readers are not blocked by the import writer.
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA synchronous=NORMAL")
    finally:
        cursor.close()


DB_PATH = os.getenv(
    "REGISTRY_DB_PATH",
    os.path.join(os.path.dirname(__file__), "data", "registry.db"),
)
SQLALCHEMY_DATABASE_URL = f"sqlite:///{DB_PATH}"

os.makedirs(os.path.dirname(DB_PATH), exist_ok=True)

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False, "timeout": 30},
    pool_pre_ping=True,
)
event.listen(engine, "connect", _set_sqlite_pragmas)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()
