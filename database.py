import logging

from sqlalchemy import create_engine, event, inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker


logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


# Columns added after the first release; checked on every start.
_GUARDED_COLUMNS = (
    (
        "users",
        "monthly_budget_cents",
        "ALTER TABLE users ADD COLUMN monthly_budget_cents INTEGER NOT NULL DEFAULT 0",
    ),
)


def _enable_sqlite_pragmas(dbapi_conn, _record):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL;")
    cursor.execute("PRAGMA foreign_keys=ON;")
    cursor.close()


class Database:
    """Owns the engine and session factory for one process.

    Built once at startup and handed to the app; ``dispose`` releases the
    pooled connections on shutdown.
    """

    def __init__(self, database_url: str) -> None:
        self.database_url = database_url
        connect_args: dict[str, object] = {}
        if database_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(database_url, connect_args=connect_args)
        if database_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _enable_sqlite_pragmas)
        self.SessionLocal = sessionmaker(
            bind=self.engine, autoflush=False, expire_on_commit=False
        )

    def init_schema(self) -> None:
        # models must be imported so their tables are registered on Base
        import models  # noqa: F401

        Base.metadata.create_all(self.engine)
        inspector = inspect(self.engine)
        for table, column, ddl in _GUARDED_COLUMNS:
            existing = {col["name"] for col in inspector.get_columns(table)}
            if column in existing:
                continue
            with self.engine.begin() as conn:
                conn.execute(text(ddl))
            logger.info(f"schema_init: added column {table}.{column}")
        logger.info("schema_init: tables ready")

    def dispose(self) -> None:
        self.engine.dispose()
        logger.info("database: connections released")

