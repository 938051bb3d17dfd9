"""Pytest configuration and shared fixtures."""

import os
import tempfile

_tmp_dir = tempfile.mkdtemp(prefix="broken_cars_test_")
os.environ["DB_URL"] = f"sqlite:///{os.path.join(_tmp_dir, 'test.db')}"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["SEED_DEFAULT_USER"] = "false"
os.environ.pop("SOFT_DELETE", None)
os.environ.pop("API_PREFIX", None)

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import insert  # noqa: E402

import database  # noqa: E402
import main  # noqa: E402
from permissions import Permission  # noqa: E402


@pytest.fixture(autouse=True)
def fresh_db():
    """Recreate all tables and the body/model reference rows for every test."""
    database.metadata.drop_all(database.engine)
    database.metadata.create_all(database.engine)
    with database.engine.begin() as conn:
        conn.execute(insert(database.bodies_table), [{"id": 6, "name": "Wagon"}, {"id": 7, "name": "Sedan"}])
        conn.execute(insert(database.models_table), [{"id": 6, "name": "Corolla"}, {"id": 8, "name": "Civic"}])
    yield


@pytest.fixture
def db():
    session = database.SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client():
    """Create test client for FastAPI app."""
    return TestClient(main.app)


@pytest.fixture
def auth_headers():
    """Return a factory producing bearer headers for a user holding ``roles``."""
    created = set()

    def make(roles: int, username: str = "tester"):
        if username not in created:
            with database.SessionLocal() as db:
                database.create_user(db, username, "not-a-real-hash", int(roles))
            created.add(username)
        token = main.create_access_token({"sub": username, "roles": int(roles), "ver": 1})
        return {"Authorization": f"Bearer {token}"}

    return make


@pytest.fixture
def admin_headers(auth_headers):
    return auth_headers(Permission.ALL, username="admin")


@pytest.fixture
def sample_body():
    return {
        "color": "#c684e3",
        "description": "Rear bumper cracked",
        "year": 2020,
        "price": 978.81,
        "bodyId": 7,
        "modelId": 6,
    }


@pytest.fixture
def seeded_cars(client, admin_headers):
    """Insert three broken cars through the API and return their ids."""
    bodies = [
        {"color": "#1b9d87", "description": "Description1", "year": 2008, "price": "18645.57",
         "firstBrokenDate": "2019-08-10", "bodyId": 6, "modelId": 8},
        {"color": "#ffffff", "description": "Description2", "year": 2015, "price": "5000.00",
         "firstBrokenDate": "2021-01-02", "bodyId": 7, "modelId": 6},
        {"color": "#ffffff", "description": "Description3", "year": 2015, "price": "7000.00",
         "firstBrokenDate": "2022-03-04", "bodyId": 6, "modelId": 6},
    ]
    ids = []
    for body in bodies:
        response = client.post("/api/data/create", json=body, headers=admin_headers)
        assert response.status_code == 200, response.text
        ids.append(response.json()["newBrokenCarId"])
    return ids
