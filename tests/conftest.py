import os

# Settings are read at import time
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["AUTO_CREATE_DB"] = "false"
os.environ["RATE_LIMIT"] = "10000/minute"
os.environ["ENVIRONMENT"] = "dev"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["OTP_STORE"] = "database"
os.environ["OTP_ECHO"] = "true"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from permit_hub.auth.security import create_access_token, get_password_hash
from permit_hub.db import Base, get_db
from permit_hub.main import app
from permit_hub.models.models import User
from permit_hub.services.roles import get_role, seed_default_roles

PASSWORD = "secret123"


@pytest.fixture
def db_session():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    TestingSession = sessionmaker(bind=engine, autoflush=False, autocommit=False)
    session = TestingSession()
    seed_default_roles(session)
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def client(db_session):
    def _get_db():
        yield db_session

    app.dependency_overrides[get_db] = _get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def make_user(db_session):
    counter = {"n": 0}

    def _make(role: str = "REQUESTOR", *, approved: bool = True, active: bool = True, requested_role=None, email=None) -> User:
        counter["n"] += 1
        user = User(
            email=email or f"{role.lower()}{counter['n']}@acme-site.com",
            password_hash=get_password_hash(PASSWORD),
            first_name=role.title().replace("_", " "),
            last_name=f"User{counter['n']}",
            role=get_role(db_session, role),
            is_active=active,
            is_approved=approved,
            requested_role=requested_role,
        )
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return _make


def auth_headers(user: User) -> dict:
    return {"Authorization": f"Bearer {create_access_token(str(user.id), user.role_name)}"}


@pytest.fixture
def requestor(make_user):
    return make_user("REQUESTOR")


@pytest.fixture
def officer(make_user):
    return make_user("SAFETY_OFFICER")


@pytest.fixture
def admin(make_user):
    return make_user("ADMIN")


@pytest.fixture
def engineer(make_user):
    return make_user("SITE_ENGINEER")


@pytest.fixture
def permit_payload():
    return {
        "title": "T",
        "workType": "HOT_WORK",
        "startDate": "2024-01-01",
        "endDate": "2024-01-02",
        "hazards": ["Fire"],
    }


@pytest.fixture
def create_permit(client, permit_payload):
    def _create(user: User, **overrides) -> dict:
        body = dict(permit_payload, **overrides)
        r = client.post("/api/permits", json=body, headers=auth_headers(user))
        assert r.status_code == 201, r.text
        return r.json()["permit"]

    return _create


@pytest.fixture
def headers():
    return auth_headers
