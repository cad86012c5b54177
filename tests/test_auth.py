from carmarket.auth.security import create_refresh_token

from .utils import auth, make_dealership, PASSWORD


def test_signup_creates_normal_user_and_returns_tokens(client):
    r = client.post("/auth/signup", json={"email": "New@Example.com", "password": "longenough", "full_name": "New User"})
    assert r.status_code == 200, r.text
    token = r.json()["access_token"]

    me = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.status_code == 200
    body = me.json()
    assert body["email"] == "new@example.com"
    assert body["role"] == "normal_user"
    assert body["has_dealership"] is False
    assert body["dealership_status"] is None


def test_signup_duplicate_email_conflicts(client, seller):
    r = client.post("/auth/signup", json={"email": "seller@example.com", "password": "longenough", "full_name": "Dup"})
    assert r.status_code == 409


def test_login_and_refresh(client, seller):
    r = client.post("/auth/login", json={"email": "seller@example.com", "password": PASSWORD})
    assert r.status_code == 200, r.text
    refresh = r.json()["refresh_token"]

    r = client.post("/auth/refresh", json={"refresh_token": refresh})
    assert r.status_code == 200
    assert r.json()["access_token"]


def test_login_rejects_bad_password(client, seller):
    r = client.post("/auth/login", json={"email": "seller@example.com", "password": "wrong-password"})
    assert r.status_code == 401


def test_refresh_token_cannot_be_used_as_access_token(client, seller):
    headers = {"Authorization": f"Bearer {create_refresh_token(str(seller.id))}"}
    assert client.get("/auth/me", headers=headers).status_code == 401


def test_inactive_user_is_rejected(client, db, seller):
    seller.is_active = False
    db.commit()
    assert client.get("/auth/me", headers=auth(seller)).status_code == 401
    r = client.post("/auth/login", json={"email": "seller@example.com", "password": PASSWORD})
    assert r.status_code == 403


def test_me_reports_latest_dealership_status(client, db, seller):
    make_dealership(db, seller, status="rejected")
    body = client.get("/auth/me", headers=auth(seller)).json()
    assert body["has_dealership"] is True
    assert body["dealership_status"] == "rejected"


def test_update_me(client, seller):
    r = client.put("/auth/me", headers=auth(seller), json={"full_name": "Renamed", "phone_number": "+97400000000"})
    assert r.status_code == 200
    assert r.json()["full_name"] == "Renamed"


def test_missing_token_is_unauthorized(client):
    assert client.get("/auth/me").status_code == 401


def test_change_password_then_login_with_new_one(client, seller):
    r = client.post(
        "/auth/change-password",
        headers=auth(seller),
        json={"current_password": PASSWORD, "new_password": "a-brand-new-secret"},
    )
    assert r.status_code == 200, r.text
    assert r.json() == {"status": "ok"}

    old = client.post("/auth/login", json={"email": "seller@example.com", "password": PASSWORD})
    assert old.status_code == 401
    new = client.post("/auth/login", json={"email": "seller@example.com", "password": "a-brand-new-secret"})
    assert new.status_code == 200, new.text


def test_change_password_rejects_wrong_current_password(client, seller):
    r = client.post(
        "/auth/change-password",
        headers=auth(seller),
        json={"current_password": "not-the-password", "new_password": "a-brand-new-secret"},
    )
    assert r.status_code == 400
    assert r.json() == {"detail": "Current password is incorrect"}
    assert client.post("/auth/login", json={"email": "seller@example.com", "password": PASSWORD}).status_code == 200

    short = client.post("/auth/change-password", headers=auth(seller), json={"current_password": PASSWORD, "new_password": "short"})
    assert short.status_code == 422
