from datetime import timedelta

import jwt

import settings
from auth import create_access_token
from database import utcnow


def register(client, name="Carol", email="carol@scentara.io", password="secret123"):
    return client.post("/user/register", json={"name": name, "email": email, "password": password})


def test_register_then_duplicate_email_rejected(client):
    first = register(client)
    assert first.status_code == 201
    assert first.json()["user"]["email"] == "carol@scentara.io"
    assert "password" not in first.json()["user"]

    second = register(client, name="Other Carol")
    assert second.status_code == 400
    assert second.json()["message"] == "User already exists"


def test_register_validates_body(client):
    res = client.post("/user/register", json={"name": "X", "email": "not-an-email", "password": "secret123"})
    assert res.status_code == 400
    assert res.json()["message"] == "Invalid request"


def test_login_token_carries_user_id_and_role(client, db):
    user_id = register(client).json()["user"]["id"]

    res = client.post("/user/login", json={"email": "carol@scentara.io", "password": "secret123"})
    assert res.status_code == 200
    body = res.json()
    payload = jwt.decode(body["token"], settings.JWT_SECRET, algorithms=[settings.JWT_ALG])
    assert payload["sub"] == user_id
    assert payload["role"] == "user"
    assert body["user"] == {"id": user_id, "name": "Carol", "email": "carol@scentara.io", "role": "user"}


def test_login_failures(client):
    register(client)
    assert client.post("/user/login", json={"email": "nobody@scentara.io", "password": "x"}).status_code == 404
    wrong = client.post("/user/login", json={"email": "carol@scentara.io", "password": "wrong-one"})
    assert wrong.status_code == 401
    assert wrong.json()["message"] == "Invalid credentials"


def test_me_requires_credential(client, alice):
    missing = client.get("/user/me")
    assert missing.status_code == 401
    assert missing.json()["message"] == "No token provided"

    bad = client.get("/user/me", headers={"Authorization": "Bearer not.a.token"})
    assert bad.status_code == 401
    assert bad.json()["message"] == "Invalid or expired token"

    expired = create_access_token(alice["id"], "user", expires_delta=timedelta(seconds=-5))
    res = client.get("/user/me", headers={"Authorization": f"Bearer {expired}"})
    assert res.status_code == 401
    assert res.json()["message"] == "Token expired"


def test_me_hides_private_fields(client, alice):
    res = client.get("/user/me", headers=alice["headers"])
    assert res.status_code == 200
    body = res.json()
    assert body["id"] == alice["id"]
    assert body["profileImage"] == settings.DEFAULT_PROFILE_IMAGE
    assert "password" not in body
    assert "resetOTP" not in body


def test_update_profile_only_touches_given_fields(client, alice):
    res = client.put("/user/update-profile", json={"phone": "9876543210"}, headers=alice["headers"])
    assert res.status_code == 200
    user = res.json()["user"]
    assert user["phone"] == "9876543210"
    assert user["name"] == "Alice"


def test_upload_profile_image(client, alice, uploads):
    res = client.post(
        "/user/upload-profile",
        files={"image": ("me.png", b"\x89PNG fake", "image/png")},
        headers=alice["headers"],
    )
    assert res.status_code == 200
    url = res.json()["imageUrl"]
    assert uploads[0]["folder"] == "scentara/users"
    assert client.get("/user/me", headers=alice["headers"]).json()["profileImage"] == url


def test_upload_profile_rejects_other_formats(client, alice, uploads):
    res = client.post(
        "/user/upload-profile",
        files={"image": ("me.gif", b"GIF89a", "image/gif")},
        headers=alice["headers"],
    )
    assert res.status_code == 400
    assert uploads == []


def test_forgot_and_reset_password(client, db, alice, mailer):
    res = client.post("/user/forgot-password", json={"email": alice["email"]})
    assert res.status_code == 200

    stored = db["user"].find_one({"email": alice["email"]})
    otp = stored["resetOTP"]
    assert len(otp) == 6 and otp.isdigit()
    assert mailer.outbox[0]["to"] == alice["email"]
    assert otp in mailer.outbox[0]["body"]

    bad_otp = "000000" if otp != "000000" else "111111"
    wrong = client.post("/user/reset-password", json={"email": alice["email"], "otp": bad_otp, "newPassword": "brand-new"})
    assert wrong.status_code == 400

    ok = client.post("/user/reset-password", json={"email": alice["email"], "otp": otp, "newPassword": "brand-new"})
    assert ok.status_code == 200
    assert "resetOTP" not in db["user"].find_one({"email": alice["email"]})

    assert client.post("/user/login", json={"email": alice["email"], "password": "brand-new"}).status_code == 200
    # the code is single use
    again = client.post("/user/reset-password", json={"email": alice["email"], "otp": otp, "newPassword": "another1"})
    assert again.status_code == 400


def test_reset_password_rejects_expired_otp(client, db, alice):
    db["user"].update_one(
        {"email": alice["email"]},
        {"$set": {"resetOTP": "123456", "resetOTPExpires": utcnow() - timedelta(minutes=1)}},
    )
    res = client.post("/user/reset-password", json={"email": alice["email"], "otp": "123456", "newPassword": "brand-new"})
    assert res.status_code == 400
    assert res.json()["message"] == "Invalid or expired OTP"


def test_forgot_password_unknown_email(client, mailer):
    assert client.post("/user/forgot-password", json={"email": "ghost@scentara.io"}).status_code == 404
    assert mailer.outbox == []


def test_all_users_is_admin_only(client, alice, admin):
    assert client.get("/user/all-users", headers=alice["headers"]).status_code == 403
    res = client.get("/user/all-users", headers=admin["headers"])
    assert res.status_code == 200
    assert {u["email"] for u in res.json()} == {alice["email"], admin["email"]}
    assert all("password" not in u for u in res.json())


def test_only_superadmin_changes_roles(client, alice, admin, superadmin):
    denied = client.patch(f"/user/{alice['id']}/role", json={"role": "admin"}, headers=admin["headers"])
    assert denied.status_code == 403

    res = client.patch(f"/user/{alice['id']}/role", json={"role": "admin"}, headers=superadmin["headers"])
    assert res.status_code == 200
    assert res.json()["user"]["role"] == "admin"

    invalid = client.patch(f"/user/{alice['id']}/role", json={"role": "owner"}, headers=superadmin["headers"])
    assert invalid.status_code == 400


def test_role_change_applies_to_existing_tokens(client, db, alice, admin, superadmin):
    client.patch(f"/user/{admin['id']}/role", json={"role": "user"}, headers=superadmin["headers"])
    assert client.get("/user/all-users", headers=admin["headers"]).status_code == 403

    client.patch(f"/user/{alice['id']}/role", json={"role": "admin"}, headers=superadmin["headers"])
    assert client.get("/user/all-users", headers=alice["headers"]).status_code == 200

    db["user"].delete_one({"email": alice["email"]})
    res = client.get("/user/all-users", headers=alice["headers"])
    assert res.status_code == 401
    assert res.json()["message"] == "User no longer exists"
