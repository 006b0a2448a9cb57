"""
Shared fixtures.

Every test gets its own in-memory MongoDB (mongomock) and upload directory,
so no live database is needed.
"""
import os

import mongomock
import pytest
from fastapi.testclient import TestClient

SECRET = "test-signing-key-0123456789-abcdefghij"

# main builds a module-level app on import; give it a fixed key.
os.environ.setdefault("JWT_SECRET", SECRET)

from config import Settings  # noqa: E402
from main import create_app  # noqa: E402

PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32


@pytest.fixture
def settings(tmp_path):
    return Settings(
        jwt_secret=SECRET,
        bcrypt_rounds=4,
        upload_dir=str(tmp_path / "uploads"),
        log_level="WARNING",
    )


@pytest.fixture
def db():
    return mongomock.MongoClient()["catalog_test"]


@pytest.fixture
def client(settings, db):
    app = create_app(settings, database=db)
    with TestClient(app) as c:
        yield c


@pytest.fixture
def api(settings):
    return settings.api_url


@pytest.fixture
def register(client, api):
    def _register(name="A", email="a@x.com", password="p1", phone="1", **extra):
        payload = {"name": name, "email": email, "password": password, "phone": phone, **extra}
        response = client.post(f"{api}/users/register", json=payload)
        assert response.status_code == 200, response.text
        return response.json()
    return _register


@pytest.fixture
def login(client, api):
    def _login(email, password):
        response = client.post(f"{api}/users/login", json={"email": email, "password": password})
        assert response.status_code == 200, response.text
        return response.json()["token"]
    return _login


@pytest.fixture
def user_headers(register, login):
    register(name="Shopper", email="shopper@x.com", password="shop-pass")
    return {"Authorization": f"Bearer {login('shopper@x.com', 'shop-pass')}"}


@pytest.fixture
def admin_headers(register, login):
    register(name="Root", email="root@x.com", password="root-pass", isAdmin=True)
    return {"Authorization": f"Bearer {login('root@x.com', 'root-pass')}"}


@pytest.fixture
def make_category(client, api, user_headers):
    def _make(name="Electronics", **extra):
        response = client.post(f"{api}/category", json={"name": name, **extra}, headers=user_headers)
        assert response.status_code == 200, response.text
        return response.json()
    return _make


@pytest.fixture
def make_product(client, api, admin_headers):
    def _make(category_id, name="Phone", price=100, **extra):
        data = {"name": name, "description": f"{name} description", "category": category_id, "price": str(price)}
        data.update({k: str(v) for k, v in extra.items()})
        response = client.post(
            f"{api}/products",
            data=data,
            files={"image": ("photo one.png", PNG, "image/png")},
            headers=admin_headers,
        )
        assert response.status_code == 200, response.text
        return response.json()
    return _make
