from bson import ObjectId


def seed_user(db):
    return db.users.insert_one(
        {
            "email": "sita@example.com",
            "firstName": "Sita",
            "lastName": "Karki",
            "phoneNumber": "9800000000",
            "city": "Pokhara",
            "role": "customer",
        }
    ).inserted_id


def test_list_users_fills_defaults(client, db, auth_headers):
    seed_user(db)
    db.users.insert_one({"email": "bare@example.com"})

    users = client.get("/api/admin/users", headers=auth_headers).get_json()["users"]

    bare = next(user for user in users if user["email"] == "bare@example.com")
    assert len(users) == 2
    assert bare["firstName"] == ""
    assert bare["district"] == ""
    assert bare["role"] == ""


def test_update_user_profile(client, db, auth_headers):
    user_id = seed_user(db)

    response = client.put(
        f"/api/admin/users/{user_id}",
        json={"city": "Lalitpur", "district": "Lalitpur", "role": "admin"},
        headers=auth_headers,
    )

    stored = db.users.find_one({"_id": user_id})
    assert response.status_code == 200
    assert stored["city"] == "Lalitpur"
    assert stored["district"] == "Lalitpur"
    # Roles only change through the privileged call.
    assert stored["role"] == "customer"


def test_update_user_validation(client, db, auth_headers):
    user_id = seed_user(db)

    bad_email = client.put(
        f"/api/admin/users/{user_id}", json={"email": "nope"}, headers=auth_headers
    )
    blank_name = client.put(
        f"/api/admin/users/{user_id}", json={"firstName": " "}, headers=auth_headers
    )

    assert bad_email.status_code == 400
    assert bad_email.get_json()["message"] == "Please enter a valid email address"
    assert blank_name.status_code == 400
    assert db.users.find_one({"_id": user_id})["email"] == "sita@example.com"


def test_delete_user(client, db, auth_headers):
    user_id = seed_user(db)

    deleted = client.delete(f"/api/admin/users/{user_id}", headers=auth_headers)
    missing = client.delete(f"/api/admin/users/{ObjectId()}", headers=auth_headers)

    assert deleted.status_code == 200
    assert missing.status_code == 404
    assert db.users.count_documents({}) == 0


def test_update_user_requires_an_object_body(client, db, auth_headers):
    user_id = seed_user(db)

    listed = client.put(f"/api/admin/users/{user_id}", json=[1, 2], headers=auth_headers)
    role_only = client.put(
        f"/api/admin/users/{user_id}", json={"role": "admin"}, headers=auth_headers
    )

    assert listed.status_code == 400
    assert listed.get_json()["message"] == "No profile fields to update."
    assert role_only.status_code == 400
    assert db.users.find_one({"_id": user_id})["role"] == "customer"
