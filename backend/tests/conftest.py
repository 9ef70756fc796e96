import os
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ.setdefault("SECRET_KEY", "test-secret")
os.environ.setdefault("EMAIL_ENABLED", "false")

from bazar import auth, models  # noqa: E402
from bazar import api as api_module  # noqa: E402
from bazar.api import app  # noqa: E402
from bazar.database import Base, engine, get_db, SessionLocal  # noqa: E402


@pytest.fixture(scope="session", autouse=True)
def _ensure_schema():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def db_session():
    db = SessionLocal()
    try:
        for table in reversed(Base.metadata.sorted_tables):
            db.execute(table.delete())
        db.commit()
        yield db
    finally:
        db.close()


@pytest.fixture()
def client(db_session):
    def _override_get_db():
        yield db_session

    api_module._RATE_LIMIT_STORE.clear()
    api_module._VIEW_DEDUPE_STORE.clear()
    app.dependency_overrides[get_db] = _override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture()
def helpers(client, db_session):
    def register_user(email: str, full_name: str = "Test Seller", phone_number: str | None = None) -> str:
        resp = client.post(
            "/register",
            json={
                "email": email,
                "password": "password123",
                "confirm_password": "password123",
                "full_name": full_name,
                "phone_number": phone_number,
            },
        )
        assert resp.status_code == 200, resp.text
        return resp.json()["access_token"]

    def login(email: str, password: str = "password123") -> str:
        resp = client.post("/login", json={"email": email, "password": password})
        assert resp.status_code == 200, resp.text
        return resp.json()["access_token"]

    def make_admin(
        email: str = "admin@test.com",
        password: str = "admin12345",
        permissions: list[str] | None = None,
    ) -> str:
        admin = models.User(email=email, password_hash=auth.get_password_hash(password))
        admin.profile = models.Profile(full_name="Admin", email=email)
        admin.roles.append(models.RoleAssignment(role=models.AppRole.admin, is_active=True))
        for permission in permissions or []:
            admin.permissions.append(models.UserPermission(permission=permission))
        db_session.add(admin)
        db_session.commit()
        return login(email, password)

    def user_id(email: str) -> str:
        return db_session.query(models.User.id).filter(models.User.email == email).scalar()

    def make_ad(token: str, **overrides) -> dict:
        payload = {
            "title": "Used bicycle",
            "description": "A well kept city bicycle with new tyres.",
            "price": 120.0,
            "price_type": "fixed",
            "ad_type": "for_sale",
            "division": "Dhaka",
            "district": "Dhaka",
            "area": "Dhanmondi",
        }
        payload.update(overrides)
        resp = client.post("/api/ads", json=payload, headers=auth_header(token))
        assert resp.status_code == 201, resp.text
        return resp.json()

    def age_ad(ad_id: str, minutes: int) -> None:
        """Move an ad's creation time into the past so queue order is deterministic."""
        ad = db_session.query(models.Ad).filter(models.Ad.id == ad_id).one()
        ad.created_at = datetime.now(timezone.utc) - timedelta(minutes=minutes)
        db_session.commit()

    def auth_header(token: str) -> dict:
        return {"Authorization": f"Bearer {token}"}

    return {
        "client": client,
        "db": db_session,
        "register_user": register_user,
        "login": login,
        "make_admin": make_admin,
        "user_id": user_id,
        "make_ad": make_ad,
        "age_ad": age_ad,
        "auth_header": auth_header,
    }
