from sqlalchemy import inspect, text

from database import Database
from services import BudgetService, UserService


def test_init_schema_is_idempotent(tmp_path) -> None:
    database = Database(f"sqlite:///{tmp_path / 'expenses.db'}")
    database.init_schema()
    database.init_schema()

    tables = set(inspect(database.engine).get_table_names())
    assert {"users", "expenses"} <= tables
    database.dispose()


def test_init_schema_adds_missing_budget_column(tmp_path) -> None:
    database = Database(f"sqlite:///{tmp_path / 'legacy.db'}")
    with database.engine.begin() as conn:
        conn.execute(
            text(
                "CREATE TABLE users ("
                "id INTEGER PRIMARY KEY, "
                "email VARCHAR(255) UNIQUE NOT NULL, "
                "name VARCHAR(255) NOT NULL, "
                "password_hash VARCHAR(255) NOT NULL, "
                "created_at DATETIME NOT NULL)"
            )
        )
        conn.execute(
            text(
                "INSERT INTO users (email, name, password_hash, created_at) "
                "VALUES ('old@example.com', 'Old', 'x', '2023-01-01 00:00:00')"
            )
        )

    database.init_schema()

    columns = {col["name"] for col in inspect(database.engine).get_columns("users")}
    assert "monthly_budget_cents" in columns
    with database.SessionLocal() as session:
        user = UserService(session).get_by_email("old@example.com")
        assert BudgetService(session, user.id).get_monthly_budget() == 0
    database.dispose()
