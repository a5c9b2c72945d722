import jwt
import pytest

from auth import authorize_admin, extract_bearer_token, issue_token, verify_and_authorize, verify_token
from errors import Forbidden, Unauthenticated
from schemas import Identity, Role

from conftest import ADMIN_EMAIL, OTHER_EMAIL, SECRET, USER_EMAIL, auth_headers


class TestExtractBearerToken:
    def test_returns_token(self):
        assert extract_bearer_token("Bearer abc.def.ghi") == "abc.def.ghi"

    @pytest.mark.parametrize("header", [None, "", "Bearer", "Bearer ", "Token abc", "abc.def.ghi", "Bearer a b"])
    def test_missing_or_malformed_header(self, header):
        with pytest.raises(Unauthenticated):
            extract_bearer_token(header)


class TestVerifyToken:
    def test_valid_token_yields_identity(self):
        token = issue_token({"email": USER_EMAIL}, SECRET)
        assert verify_token(token, SECRET) == Identity(email=USER_EMAIL)

    def test_wrong_secret(self):
        token = issue_token({"email": USER_EMAIL}, "another-secret")
        with pytest.raises(Unauthenticated):
            verify_token(token, SECRET)

    def test_expired_token(self):
        token = issue_token({"email": USER_EMAIL}, SECRET, ttl_seconds=-10)
        with pytest.raises(Unauthenticated):
            verify_token(token, SECRET)

    def test_garbage_token(self):
        with pytest.raises(Unauthenticated):
            verify_token("not-a-jwt", SECRET)

    def test_token_without_email(self):
        token = jwt.encode({"sub": "someone", "exp": 9999999999}, SECRET, algorithm="HS256")
        with pytest.raises(Unauthenticated):
            verify_token(token, SECRET)

    def test_token_without_expiry(self):
        token = jwt.encode({"email": USER_EMAIL}, SECRET, algorithm="HS256")
        with pytest.raises(Unauthenticated):
            verify_token(token, SECRET)

    def test_issue_requires_email(self):
        with pytest.raises(ValueError):
            issue_token({"name": "anon"}, SECRET)


class TestRoleGate:
    def test_requires_prior_verification(self, store):
        with pytest.raises(RuntimeError):
            authorize_admin(None, store)

    def test_unknown_user(self, store, users):
        with pytest.raises(Forbidden):
            authorize_admin(Identity(email="ghost@example.com"), store)

    def test_standard_user(self, store, users):
        with pytest.raises(Forbidden):
            authorize_admin(Identity(email=USER_EMAIL), store)

    def test_user_without_role_is_standard(self, store, users):
        with pytest.raises(Forbidden):
            authorize_admin(Identity(email=OTHER_EMAIL), store)

    def test_admin(self, store, users):
        user = authorize_admin(Identity(email=ADMIN_EMAIL), store)
        assert user.role is Role.ADMIN

    def test_role_parse(self):
        assert Role.parse("admin") is Role.ADMIN
        assert Role.parse(None) is Role.STANDARD
        assert Role.parse("superuser") is Role.STANDARD


class TestAuthChain:
    def test_authentication_only(self, store, users):
        header = auth_headers(USER_EMAIL)["Authorization"]
        assert verify_and_authorize(header, SECRET).email == USER_EMAIL

    def test_admin_required(self, store, users):
        header = auth_headers(USER_EMAIL)["Authorization"]
        with pytest.raises(Forbidden):
            verify_and_authorize(header, SECRET, store, require_admin=True)

    def test_token_checked_before_role(self, store, users):
        with pytest.raises(Unauthenticated):
            verify_and_authorize(None, SECRET, store, require_admin=True)


ADMIN_ROUTES = [
    ("get", "/users"),
    ("get", "/admin-stats"),
    ("get", "/order-stats"),
    ("delete", "/menu/650000000000000000000000"),
]

AUTHENTICATED_ROUTES = [
    ("get", "/carts?email=alice@example.com"),
    ("get", "/users/admin/alice@example.com"),
    ("get", "/payments/alice@example.com"),
]


class TestGuardedEndpoints:
    @pytest.mark.parametrize("method,path", ADMIN_ROUTES + AUTHENTICATED_ROUTES)
    def test_missing_credential(self, client, method, path):
        response = getattr(client, method)(path)
        assert response.status_code == 401
        assert response.json() == {"error": True, "message": "unauthorized access"}

    @pytest.mark.parametrize("method,path", ADMIN_ROUTES)
    def test_non_admin_rejected(self, client, user_headers, method, path):
        response = getattr(client, method)(path, headers=user_headers)
        assert response.status_code == 403

    def test_expired_credential(self, client, users):
        response = client.get("/users", headers=auth_headers(ADMIN_EMAIL, ttl=-10))
        assert response.status_code == 401

    def test_admin_allowed(self, client, admin_headers):
        response = client.get("/users", headers=admin_headers)
        assert response.status_code == 200
        assert {u["email"] for u in response.json()} == {ADMIN_EMAIL, USER_EMAIL, OTHER_EMAIL}

    def test_issue_token_endpoint(self, client):
        response = client.post("/jwt", json={"email": USER_EMAIL})
        assert response.status_code == 200
        assert verify_token(response.json()["token"], SECRET).email == USER_EMAIL
