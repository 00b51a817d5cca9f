import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["CALIXO_ENABLE_SCHEDULER"] = "false"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import models  # noqa: F401
from auth import create_access_token
from database import Base, get_db
from gamification import seed_challenges
from main import app
from models import Challenge, User


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(engine):
    TestingSession = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSession()
    yield session
    session.close()


@pytest.fixture
def client(engine):
    TestingSession = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    def override_get_db():
        session = TestingSession()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def catalog(db):
    seed_challenges(db)
    return db.query(Challenge).order_by(Challenge.id).all()


@pytest.fixture
def make_user(db):
    def _make_user(user_id="user-1", **fields):
        user = User(id=user_id, display_name=fields.pop("display_name", user_id), **fields)
        db.add(user)
        db.commit()
        db.refresh(user)
        return user
    return _make_user


def auth_headers(user_id: str, **claims) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user_id, **claims)}"}


def challenge_of_type(catalog, type, duration=None):
    for challenge in catalog:
        if challenge.type == type and (duration is None or challenge.duration_minutes == duration):
            return challenge
    raise LookupError(type)
