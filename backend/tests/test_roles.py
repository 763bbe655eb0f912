import pytest
from bson import ObjectId
from flask_jwt_extended import create_access_token
from pymongo.errors import OperationFailure

from roles import RoleAssignmentError, grant_admin_role


def test_admin_can_grant_admin_role(client, db, auth_headers):
    user_id = db.users.insert_one(
        {"email": "ram@example.com", "firstName": "Ram", "role": "customer"}
    ).inserted_id

    response = client.post(
        "/api/functions/setAdminRole",
        json={"data": {"userId": str(user_id)}},
        headers=auth_headers,
    )

    stored = db.users.find_one({"_id": user_id})
    assert response.status_code == 200
    assert response.get_json()["result"]["message"] == (
        f"Successfully set admin role for user {user_id}"
    )
    assert stored["role"] == "admin"
    assert stored["claims"] == {"role": "admin"}
    assert "updatedAt" in stored


def test_non_admin_caller_is_denied(app, client, db):
    user_id = db.users.insert_one({"email": "ram@example.com"}).inserted_id
    with app.app_context():
        token = create_access_token(
            identity="ram@example.com", additional_claims={"role": "customer"}
        )

    response = client.post(
        "/api/functions/setAdminRole",
        json={"data": {"userId": str(user_id)}},
        headers={"Authorization": f"Bearer {token}"},
    )

    assert response.status_code == 403
    assert response.get_json()["error"]["status"] == "permission-denied"
    assert "role" not in db.users.find_one({"_id": user_id})


def test_unknown_user_and_missing_id(client, auth_headers):
    unknown = client.post(
        "/api/functions/setAdminRole",
        json={"data": {"userId": str(ObjectId())}},
        headers=auth_headers,
    )
    missing = client.post(
        "/api/functions/setAdminRole", json={"data": {}}, headers=auth_headers
    )

    assert unknown.status_code == 404
    assert unknown.get_json()["error"]["status"] == "not-found"
    assert missing.status_code == 400
    assert missing.get_json()["error"]["status"] == "invalid-argument"


def test_downstream_failure_is_internal():
    class FailingUsers:
        def update_one(self, *args, **kwargs):
            raise OperationFailure("write rejected")

    with pytest.raises(RoleAssignmentError) as excinfo:
        grant_admin_role(FailingUsers(), {"role": "admin"}, str(ObjectId()))

    assert excinfo.value.code == "internal"
    assert excinfo.value.status_code == 500
    assert excinfo.value.to_json() == {
        "error": {"status": "internal", "message": "Error setting admin role"}
    }


def test_permission_is_checked_before_anything_else():
    with pytest.raises(RoleAssignmentError) as excinfo:
        grant_admin_role(None, {}, "")

    assert excinfo.value.code == "permission-denied"


def test_body_that_is_not_an_object_is_invalid(client, auth_headers):
    response = client.post(
        "/api/functions/setAdminRole", json=[1, 2], headers=auth_headers
    )

    assert response.status_code == 400
    assert response.get_json()["error"]["status"] == "invalid-argument"
