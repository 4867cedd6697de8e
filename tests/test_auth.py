import pytest

import security
import users
from errors import ConflictError, NotFoundError, ValidationError

CREATE_USER = """
mutation ($username: String!, $email: String!, $password: String!) {
  createUser(username: $username, email: $email, password: $password) {
    token error user { id username email role cart { id } }
  }
}
"""

LOGIN = """
mutation ($email: String!, $password: String!) {
  userLogin(email: $email, password: $password) { token error user { id username } }
}
"""


def test_password_hash_round_trip():
    hashed = security.hash_password("s3cret")
    assert hashed.startswith("pbkdf2_sha256$")
    assert security.verify_password("s3cret", hashed)
    assert not security.verify_password("wrong", hashed)
    assert not security.verify_password("s3cret", None)
    assert not security.verify_password("s3cret", "garbage")


def test_session_token_carries_identity():
    token = security.create_token({"id": "abc", "name": "asha", "role": "customer"})
    claims = security.read_token(token)
    assert claims["id"] == "abc"
    assert claims["role"] == "customer"
    assert security.read_token(token + "x") is None
    assert security.read_token(None) is None


@pytest.mark.parametrize(
    "hostname, local",
    [("localhost", True), ("127.0.0.1", True), ("192.168.1.20", True), ("shop.example.com", False), (None, False)],
)
def test_is_local_host(hostname, local):
    assert security.is_local_host(hostname) is local


def test_signup_creates_user_with_cart(db):
    token, user = users.signup("asha", "asha@grocery.com", "pw")
    assert user["cart"]["user_id"] == user["id"]
    assert "password_hash" not in user
    assert users.session_user(token) == {"id": user["id"], "username": "asha", "role": "customer"}
    with pytest.raises(ConflictError, match="User already exists with this email."):
        users.signup("asha2", "asha@grocery.com", "pw")


def test_login_errors(db):
    users.signup("asha", "asha@grocery.com", "pw")
    with pytest.raises(NotFoundError, match="user not found."):
        users.login("nobody@grocery.com", "pw")
    with pytest.raises(ValidationError, match="invalid user or password."):
        users.login("asha@grocery.com", "nope")


def test_phone_login_reuses_existing_user(db):
    first = users.find_or_create_by_phone("+919800000001")
    second = users.find_or_create_by_phone("+919800000001")
    assert first["id"] == second["id"]
    assert first["username"].startswith("user")
    assert first["cart"] is not None
    assert db["user"].count_documents({}) == 1


def test_create_user_sets_session_cookie(client, gql):
    response = client.post(
        "/graphql",
        json={"query": CREATE_USER, "variables": {"username": "asha", "email": "asha@grocery.com", "password": "pw"}},
    )
    body = response.json()["data"]["createUser"]
    assert body["error"] is None
    assert body["user"]["role"] == "customer"
    assert body["user"]["cart"]["id"]
    cookie = response.headers["set-cookie"]
    assert cookie.startswith(f"jwtToken={body['token']}")
    assert "HttpOnly" in cookie
    assert "Max-Age=86400" in cookie

    duplicate = gql(CREATE_USER, {"username": "asha2", "email": "asha@grocery.com", "password": "pw"})["createUser"]
    assert duplicate == {"token": None, "error": "User already exists with this email.", "user": None}


def test_user_login_over_graphql(client, gql):
    users.signup("asha", "asha@grocery.com", "pw")
    assert gql(LOGIN, {"email": "asha@grocery.com", "password": "bad"})["userLogin"]["error"] == (
        "invalid user or password."
    )
    assert gql(LOGIN, {"email": "x@grocery.com", "password": "pw"})["userLogin"]["error"] == "user not found."

    response = client.post("/graphql", json={"query": LOGIN, "variables": {"email": "asha@grocery.com", "password": "pw"}})
    data = response.json()["data"]["userLogin"]
    assert data["user"]["username"] == "asha"
    assert "jwtToken=" in response.headers["set-cookie"]


def test_me_uses_bearer_token(gql, make_user):
    user, token = make_user("customer", username="ravi")
    assert gql("{ me { id username } }", token=token)["me"] == {"id": user["id"], "username": "ravi"}
    assert gql("{ me { id } }")["me"] is None
    assert gql("{ me { id } }", token="not-a-token")["me"] is None


def test_verify_otp_requires_token(client):
    response = client.post("/verify-otp", json={})
    assert response.status_code == 400
    assert response.json()["detail"] == "ID token is required"


def test_verify_otp_rejects_bad_token(client, monkeypatch):
    def reject(id_token):
        raise ValueError("bad signature")

    monkeypatch.setattr(security, "verify_id_token", reject)
    response = client.post("/verify-otp", json={"idToken": "forged"})
    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid or expired token"


def test_verify_otp_requires_phone_claim(client, monkeypatch):
    monkeypatch.setattr(security, "verify_id_token", lambda id_token: {"uid": "u1"})
    response = client.post("/verify-otp", json={"idToken": "ok"})
    assert response.status_code == 400
    assert response.json()["detail"] == "Phone number missing in token"


def test_verify_otp_signs_in_phone_user(client, monkeypatch, db):
    monkeypatch.setattr(security, "verify_id_token", lambda id_token: {"phone_number": "+919800000002"})
    first = client.post("/verify-otp", json={"idToken": "ok"})
    second = client.post("/verify-otp", json={"idToken": "ok"})

    assert first.status_code == 200
    body = first.json()
    assert body["user"]["phone_number"] == "+919800000002"
    assert body["user"]["id"] == second.json()["user"]["id"]
    assert users.session_user(body["token"])["id"] == body["user"]["id"]
    assert "jwtToken=" in first.headers["set-cookie"]
    assert db["user"].count_documents({}) == 1


def test_logout_clears_cookie(client):
    response = client.post("/logout")
    assert response.status_code == 200
    assert response.json() == {"message": "Logged out successfully."}
    cookie = response.headers["set-cookie"]
    assert cookie.startswith("jwtToken=")
    assert "Max-Age=0" in cookie
