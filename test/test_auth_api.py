"""
OTP-gated registration, login and session lookup over HTTP.
"""
import json

import config
from conftest import PASSWORD, auth, fake, pending_otp, register


def test_send_otp_rejects_bad_email(client):
    response = client.post("/api/auth/send-otp", json={"email": "not-an-email"})
    assert response.status_code == 400
    assert response.json()["success"] is False


def test_send_otp_does_not_return_code(client):
    response = client.post("/api/auth/send-otp", json={"email": "Someone@Example.com"})
    assert response.status_code == 200
    data = response.json()
    assert data["email"] == "someone@example.com"
    assert "otp" not in data


def test_email_is_normalized_across_registration_and_login(client):
    client.post("/api/auth/send-otp", json={"email": "  Alice@Example.COM "})
    response = client.post("/api/auth/register", json={
        "email": "alice@example.com",
        "password": PASSWORD,
        "name": "Alice",
        "otp": pending_otp(client, "alice@example.com"),
    })
    assert response.status_code == 201, response.text
    assert response.json()["user"]["email"] == "alice@example.com"

    response = client.post("/api/auth/login", json={"email": "ALICE@example.com", "password": PASSWORD})
    assert response.status_code == 200
    assert response.json()["user"]["email"] == "alice@example.com"


def test_register_requires_valid_otp(client):
    email = fake.unique.email()
    client.post("/api/auth/send-otp", json={"email": email})
    code = pending_otp(client, email)
    wrong = "000000" if code != "000000" else "111111"
    payload = {"email": email, "password": PASSWORD, "name": "Bob", "otp": wrong}
    response = client.post("/api/auth/register", json=payload)
    assert response.status_code == 400

    payload["otp"] = code
    assert client.post("/api/auth/register", json=payload).status_code == 201


def test_otp_is_single_use(client):
    email = fake.unique.email()
    client.post("/api/auth/send-otp", json={"email": email})
    payload = {"email": email, "password": PASSWORD, "otp": pending_otp(client, email)}
    assert client.post("/api/auth/register", json=payload).status_code == 201

    payload["email"] = email.upper()
    response = client.post("/api/auth/register", json=payload)
    assert response.status_code == 400


def test_duplicate_email_conflicts(client):
    user, _ = register(client, email="dup@example.com")
    client.post("/api/auth/send-otp", json={"email": "DUP@example.com"})
    response = client.post("/api/auth/register", json={
        "email": "DUP@example.com",
        "password": PASSWORD,
        "otp": pending_otp(client, "dup@example.com"),
    })
    assert response.status_code == 409


def test_short_password_rejected(client):
    email = fake.unique.email()
    client.post("/api/auth/send-otp", json={"email": email})
    response = client.post("/api/auth/register", json={
        "email": email, "password": "123", "otp": pending_otp(client, email),
    })
    assert response.status_code == 400


def test_password_never_returned_or_stored_plain(client):
    user, token = register(client)
    assert "password" not in user and "password_hash" not in user

    me = client.get("/api/auth/me", headers=auth(token)).json()["user"]
    assert "password_hash" not in me

    stored = json.loads(config.USERS_DB_FILE.read_text())["users"][user["id"]]
    assert stored["password_hash"].startswith("$2")
    assert PASSWORD not in config.USERS_DB_FILE.read_text()


def test_login_failures_are_indistinguishable(client):
    user, _ = register(client)
    wrong_password = client.post("/api/auth/login", json={"email": user["email"], "password": "wrong-pass"})
    unknown_email = client.post("/api/auth/login", json={"email": "ghost@example.com", "password": PASSWORD})
    assert wrong_password.status_code == unknown_email.status_code == 401
    assert wrong_password.json()["message"] == unknown_email.json()["message"]


def test_login_returns_session_token(client):
    user, _ = register(client)
    response = client.post("/api/auth/login", json={"email": user["email"], "password": PASSWORD})
    data = response.json()
    assert data["emailVerified"] is True
    me = client.get("/api/auth/me", headers=auth(data["token"]))
    assert me.status_code == 200
    assert me.json()["user"]["id"] == user["id"]


def test_me_by_email_and_missing(client):
    user, _ = register(client)
    assert client.get("/api/auth/me", params={"email": user["email"].upper()}).json()["user"]["id"] == user["id"]
    assert client.get("/api/auth/me", params={"email": "ghost@example.com"}).status_code == 404
    assert client.get("/api/auth/me").status_code == 400
    assert client.get("/api/auth/me", headers=auth("garbage")).status_code == 401


def test_profile_fields_accept_camel_case(client):
    user, _ = register(client, roomNo="B-204", hostel="North")
    assert user["room_no"] == "B-204"
    assert user["hostel"] == "North"


def test_self_registration_role_is_checked(client):
    email = fake.unique.email()
    client.post("/api/auth/send-otp", json={"email": email})
    response = client.post("/api/auth/register", json={
        "email": email, "password": PASSWORD, "otp": pending_otp(client, email), "role": "overlord",
    })
    assert response.status_code == 400


def test_protected_routes_need_token(client):
    assert client.get("/api/issues").status_code == 401
    assert client.get("/api/issues", headers=auth("garbage")).status_code == 401


def test_user_admin_endpoints(client, manager, student):
    manager_user, manager_token = manager
    student_user, student_token = student

    assert client.get("/api/users", headers=auth(student_token)).status_code == 403
    users = client.get("/api/users", params={"role": "student"}, headers=auth(manager_token)).json()["users"]
    assert [u["id"] for u in users] == [student_user["id"]]

    updated = client.put("/api/users/me", json={"phone": "555-0100"}, headers=auth(student_token)).json()
    assert updated["user"]["phone"] == "555-0100"

    response = client.delete(f"/api/users/{student_user['id']}", headers=auth(manager_token))
    assert response.status_code == 200
    assert client.get("/api/auth/me", headers=auth(student_token)).status_code == 401
