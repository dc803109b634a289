import pytest
from bson import ObjectId

from conftest import PASSWORD, make_user


def register(client, email="erin@example.com", password=PASSWORD, username="erin"):
    return client.post("/auth/register", json={"username": username, "email": email, "password": password})


def login(client, email="erin@example.com", password=PASSWORD):
    return client.post("/auth/login", json={"email": email, "password": password})


def test_register_creates_consumer_without_hash(client):
    res = register(client)
    assert res.status_code == 201, res.text
    user = res.json()["user"]
    assert user["role"] == "consumer"
    assert user["active"] == "active"
    assert "password_hash" not in user


def test_register_duplicate_email_is_conflict(client):
    register(client)
    res = register(client, email="ERIN@example.com")
    assert res.status_code == 409
    assert res.json()["error"] == "ConflictError"


@pytest.mark.parametrize("password", ["short1", "lettersonly", "1234567890"])
def test_weak_password_is_rejected(client, db, password):
    res = register(client, password=password)
    assert res.status_code == 422
    assert db["user"].count_documents({}) == 0


def test_register_rejects_bad_email(client):
    assert register(client, email="not-an-email").status_code == 422


def test_login_returns_token(client):
    register(client)
    res = login(client)
    assert res.status_code == 200
    body = res.json()
    assert body["token_type"] == "bearer"
    assert body["user"]["email"] == "erin@example.com"
    me = client.get("/me", headers={"Authorization": f"Bearer {body['access_token']}"})
    assert me.json()["user"]["username"] == "erin"


def test_login_with_wrong_password(client):
    register(client)
    res = login(client, password="Wrong1234")
    assert res.status_code == 401
    assert login(client, email="nobody@example.com").status_code == 401


def test_me_requires_token(client):
    res = client.get("/me")
    assert res.status_code == 401
    assert res.json()["error"] == "AuthenticationError"


def test_banned_user_is_locked_out(client, db, admin, consumer):
    res = client.patch(f"/admin/users/{consumer['id']}/status", json={"active": "banned"}, headers=admin["headers"])
    assert res.status_code == 200
    assert res.json()["user"]["active"] == "banned"

    assert client.get("/me", headers=consumer["headers"]).status_code == 403
    assert login(client, email=consumer["email"]).status_code == 403


def test_admin_cannot_change_own_status(client, admin):
    res = client.patch(f"/admin/users/{admin['id']}/status", json={"active": "inactive"}, headers=admin["headers"])
    assert res.status_code == 409


def test_status_update_validation(client, admin, consumer):
    res = client.patch(f"/admin/users/{consumer['id']}/status", json={"active": "gone"}, headers=admin["headers"])
    assert res.status_code == 422
    res = client.patch(f"/admin/users/{ObjectId()}/status", json={"active": "inactive"}, headers=admin["headers"])
    assert res.status_code == 404


def test_admin_lists_users_by_role(client, admin, consumer, vendor):
    res = client.get("/admin/users", params={"role": "vendor"}, headers=admin["headers"])
    assert [u["id"] for u in res.json()["users"]] == [vendor["id"]]
    assert client.get("/admin/users", headers=consumer["headers"]).status_code == 403


def test_bootstrap_admin_once(client, db):
    res = client.post("/init/bootstrap")
    assert res.status_code == 201
    assert res.json()["user"]["role"] == "admin"
    assert client.post("/init/bootstrap").status_code == 409
    assert db["user"].count_documents({"role": "admin"}) == 1


def test_change_password(client, consumer):
    res = client.put("/auth/password", json={"old_password": "Wrong1234", "new_password": "Newpass123"},
                     headers=consumer["headers"])
    assert res.status_code == 422

    res = client.put("/auth/password", json={"old_password": PASSWORD, "new_password": "Newpass123"},
                     headers=consumer["headers"])
    assert res.status_code == 200
    assert login(client, email=consumer["email"], password="Newpass123").status_code == 200
    assert login(client, email=consumer["email"]).status_code == 401


def test_dashboard_counts(client, db, admin, vendor, product):
    make_user(client, db, "frank")
    res = client.get("/admin/dashboard", headers=admin["headers"])
    assert res.status_code == 200
    body = res.json()
    assert body["total_users"] == 3
    assert body["total_vendors"] == 1
    assert body["total_products"] == 1
    assert body["pending_applications"] == 0


def test_status_update_on_malformed_id_is_not_found(client, admin):
    res = client.patch("/admin/users/not-an-id/status", json={"active": "inactive"}, headers=admin["headers"])
    assert res.status_code == 404
