import threading
from uuid import uuid4

import mongomock
import pytest

from backend.app import create_app
from backend.config import Settings

from .helpers import SUPERADMIN, auth_header, login

TEST_SECRET = "test-signing-secret-" + "x" * 44


@pytest.fixture
def settings(tmp_path):
    return Settings(
        jwt_secret=TEST_SECRET,
        jwt_secret_file=str(tmp_path / "jwt_secret"),
        trusted_proxy_hops=0,
        bcrypt_rounds=4,
    )


@pytest.fixture
def db():
    return mongomock.MongoClient()[f"srrobot_test_{uuid4().hex}"]


@pytest.fixture
def atomic_find_and_modify(monkeypatch):
    """Serialize find_one_and_update, which MongoDB applies atomically per document.

    mongomock runs it as a separate read and write, so threads could interleave.
    """
    lock = threading.Lock()
    original = mongomock.Collection.find_one_and_update

    def locked(self, *args, **kwargs):
        with lock:
            return original(self, *args, **kwargs)

    monkeypatch.setattr(mongomock.Collection, "find_one_and_update", locked)


@pytest.fixture
def app(settings, db):
    application = create_app(settings, db=db)
    application.config["TESTING"] = True
    return application


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def socket_client(app):
    socketio = app.extensions["socketio"]
    test_client = socketio.test_client(app)
    yield test_client
    if test_client.is_connected():
        test_client.disconnect()


@pytest.fixture
def superadmin_token(client):
    response = client.post("/api/setup/crear-superadmin", json=SUPERADMIN)
    assert response.status_code == 201
    return login(client, SUPERADMIN["correo"], SUPERADMIN["contrasena"])


@pytest.fixture
def admin_token(client, superadmin_token):
    response = client.post(
        "/api/admin/crear-admin",
        json={
            "nombreCompleto": "Catalog Admin",
            "correo": "catalogo@srrobot.com",
            "contrasena": "admin-pass",
        },
        headers=auth_header(superadmin_token),
    )
    assert response.status_code == 201
    return login(client, "catalogo@srrobot.com", "admin-pass")


@pytest.fixture
def customer_token(client):
    response = client.post(
        "/api/auth/registrar",
        json={
            "nombreCompleto": "Ana Cliente",
            "correo": "ana@example.com",
            "contrasena": "pw123456",
        },
    )
    assert response.status_code == 201
    return login(client, "ana@example.com", "pw123456")
