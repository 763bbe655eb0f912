import pytest
from flask_jwt_extended import create_access_token, decode_token

from app import create_app
from conftest import ADMIN_EMAIL, ADMIN_PASSWORD, build_config
from session_gate import ConfigurationError, SessionGate, has_admin_claim


@pytest.mark.parametrize("missing", ["ADMIN_EMAIL", "ADMIN_PASSWORD"])
def test_missing_admin_credentials_fail_at_startup(db, upload_folder, missing):
    with pytest.raises(ConfigurationError):
        create_app(build_config(upload_folder, **{missing: ""}), db=db)


def test_sign_in_rejects_wrong_password(client):
    response = client.post(
        "/api/admin/session", json={"email": ADMIN_EMAIL, "password": "nope"}
    )

    assert response.status_code == 401
    assert response.get_json()["message"] == "Invalid credentials"


def test_sign_in_is_case_insensitive_on_email(client):
    response = client.post(
        "/api/admin/session",
        json={"email": f"  {ADMIN_EMAIL.upper()} ", "password": ADMIN_PASSWORD},
    )

    assert response.status_code == 200
    assert response.get_json()["user"] == {"isAdmin": True, "email": ADMIN_EMAIL}


def test_session_token_has_no_expiry(app, client):
    response = client.post(
        "/api/admin/session", json={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD}
    )

    with app.app_context():
        claims = decode_token(response.get_json()["token"])

    assert "exp" not in claims
    assert claims["role"] == "admin"


def test_current_session(client, auth_headers):
    response = client.get("/api/admin/session", headers=auth_headers)

    assert response.status_code == 200
    assert response.get_json()["user"]["isAdmin"] is True


def test_sign_out_revokes_only_that_session(client, auth_headers):
    other = client.post(
        "/api/admin/session", json={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD}
    ).get_json()["token"]

    signed_out = client.delete("/api/admin/session", headers=auth_headers)
    after = client.get("/api/admin/orders", headers=auth_headers)
    still_valid = client.get(
        "/api/admin/orders", headers={"Authorization": f"Bearer {other}"}
    )

    assert signed_out.status_code == 200
    assert after.status_code == 401
    assert still_valid.status_code == 200


def test_token_without_admin_claim_is_forbidden(app, client):
    with app.app_context():
        token = create_access_token(
            identity="shopper@example.com", additional_claims={"role": "customer"}
        )

    response = client.get(
        "/api/admin/products", headers={"Authorization": f"Bearer {token}"}
    )

    assert response.status_code == 403


def test_garbage_token_is_rejected(client):
    response = client.get(
        "/api/admin/frames", headers={"Authorization": "Bearer not-a-token"}
    )

    assert response.status_code == 401


def test_admin_claim_check():
    assert has_admin_claim({"role": "admin"})
    assert has_admin_claim({"role": " Admin "})
    assert not has_admin_claim({"role": "customer"})
    assert not has_admin_claim(None)


def test_gate_credentials_match():
    gate = SessionGate("Owner@Example.com", "s3cret")

    assert gate.credentials_match("owner@example.com", "s3cret")
    assert not gate.credentials_match("owner@example.com", "S3cret")
    assert not gate.credentials_match(None, None)


def test_sign_in_with_non_object_body_is_rejected(client):
    response = client.post("/api/admin/session", json=["admin", "password"])

    assert response.status_code == 401
    assert response.get_json()["message"] == "Invalid credentials"
