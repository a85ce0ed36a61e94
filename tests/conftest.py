import time
from types import SimpleNamespace
from typing import Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from auth import issue_token
from config import Settings
from database import Base, Database
from main import create_app
from services import UserService


class FakeCompletionClient:
    def __init__(
        self,
        reply: str = "Other",
        error: Optional[Exception] = None,
        delay: float = 0.0,
    ) -> None:
        self.reply = reply
        self.error = error
        self.delay = delay
        self.calls: list[dict[str, object]] = []

    def complete(self, messages, *, model, max_tokens, temperature=None) -> str:
        self.calls.append(
            {"messages": messages, "model": model, "max_tokens": max_tokens}
        )
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.reply


def make_session() -> Session:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


@pytest.fixture
def session():
    session = make_session()
    yield session
    session.close()


@pytest.fixture
def fake_ai() -> FakeCompletionClient:
    return FakeCompletionClient()


@pytest.fixture
def api(tmp_path, fake_ai):
    settings = Settings(
        database_url=f"sqlite:///{tmp_path / 'expenses.db'}",
        timezone="UTC",
        token_secret="test-secret",
        token_max_age_hours=1,
        openai_api_key=None,
        categorize_model="test-mini",
        receipt_model="test-vision",
        frontend_url="http://localhost:5173",
    )
    database = Database(settings.database_url)
    app = create_app(settings, database, fake_ai)

    def login(email: str, name: str = "Test User") -> dict[str, str]:
        with database.SessionLocal() as db:
            user = UserService(db).create(email, name, "not-a-real-hash")
            token = issue_token(settings, user.id, user.email)
        return {"Authorization": f"Bearer {token}"}

    with TestClient(app) as client:
        yield SimpleNamespace(
            app=app,
            client=client,
            settings=settings,
            database=database,
            ai=fake_ai,
            login=login,
        )
