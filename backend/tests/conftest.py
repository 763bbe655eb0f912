import mongomock
import pytest

from app import create_app

ADMIN_EMAIL = "owner@framecraft.test"
ADMIN_PASSWORD = "correct-horse-battery-staple"


def build_config(upload_folder, **overrides):
    config = {
        "TESTING": True,
        "ADMIN_EMAIL": ADMIN_EMAIL,
        "ADMIN_PASSWORD": ADMIN_PASSWORD,
        "JWT_SECRET_KEY": "framecraft-test-secret-key-0123456789abcdef",
        "UPLOAD_FOLDER": str(upload_folder),
    }
    config.update(overrides)
    return config


@pytest.fixture
def db():
    return mongomock.MongoClient().framecraft


@pytest.fixture
def upload_folder(tmp_path):
    return tmp_path / "uploads"


@pytest.fixture
def app(db, upload_folder):
    return create_app(build_config(upload_folder), db=db)


@pytest.fixture
def client(app):
    return app.test_client()


def sign_in(client):
    response = client.post(
        "/api/admin/session", json={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD}
    )
    assert response.status_code == 200
    return {"Authorization": f"Bearer {response.get_json()['token']}"}


@pytest.fixture
def auth_headers(client):
    return sign_in(client)
