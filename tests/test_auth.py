"""Tests for registration, login, password changes and the bearer token guard."""
import time
from datetime import timedelta

import pytest
from bson import ObjectId
from jose import jwt

from auth import ALGORITHM, AuthService, get_password_hash, verify_password
from database import UserStore
from errors import AuthenticationError, ConflictError, NotFoundError


class TestPasswordHashing:

    def test_hash_is_not_plaintext(self):
        hashed = get_password_hash("secret123")
        assert hashed != "secret123"
        assert hashed.startswith("$2")

    def test_same_password_gets_different_salt(self):
        assert get_password_hash("secret123") != get_password_hash("secret123")

    def test_verify(self):
        hashed = get_password_hash("secret123")
        assert verify_password("secret123", hashed)
        assert not verify_password("wrong-pass", hashed)
        assert not verify_password("secret123", "")

    def test_verify_nul_byte_is_a_mismatch(self):
        hashed = get_password_hash("secret123")
        assert not verify_password("sec\x00ret123", hashed)


class TestAuthService:

    @pytest.fixture
    def service(self, db):
        db["users"].create_index("username", unique=True)
        return AuthService(UserStore(db), "test-secret")

    def test_register_then_login_binds_user_id(self, service):
        user_id = service.register("alice", "secret123")
        token = service.login("alice", "secret123")
        claims = jwt.decode(token, "test-secret", algorithms=[ALGORITHM])
        assert claims["userId"] == user_id
        assert service.decode_access_token(token) == user_id

    def test_token_expires_after_one_day(self, service):
        service.register("alice", "secret123")
        claims = jwt.decode(service.login("alice", "secret123"), "test-secret", algorithms=[ALGORITHM])
        assert abs(claims["exp"] - time.time() - 24 * 60 * 60) < 60

    def test_password_is_stored_hashed(self, service, db):
        service.register("alice", "secret123")
        stored = db["users"].find_one({"username": "alice"})
        assert "password" not in stored
        assert stored["passwordHash"] != "secret123"
        assert verify_password("secret123", stored["passwordHash"])

    def test_duplicate_username_conflicts(self, service):
        service.register("alice", "secret123")
        with pytest.raises(ConflictError):
            service.register("alice", "another123")

    def test_username_match_is_case_sensitive(self, service):
        service.register("alice", "secret123")
        assert service.register("Alice", "secret123")

    def test_login_failures_are_indistinguishable(self, service):
        service.register("alice", "secret123")
        with pytest.raises(AuthenticationError) as wrong_password:
            service.login("alice", "nope-nope")
        with pytest.raises(AuthenticationError) as unknown_user:
            service.login("bob", "secret123")
        assert wrong_password.value.message == unknown_user.value.message == "Invalid credentials"

    def test_change_password(self, service):
        user_id = service.register("alice", "secret123")
        service.change_password(user_id, "secret123", "newsecret456")
        with pytest.raises(AuthenticationError):
            service.login("alice", "secret123")
        assert service.login("alice", "newsecret456")

    def test_change_password_wrong_current(self, service):
        user_id = service.register("alice", "secret123")
        with pytest.raises(AuthenticationError) as exc:
            service.change_password(user_id, "wrong-pass", "newsecret456")
        assert exc.value.message == "Current password is incorrect"

    def test_change_password_unknown_user(self, service):
        with pytest.raises(NotFoundError):
            service.change_password(str(ObjectId()), "secret123", "newsecret456")

    def test_expired_token_rejected(self, service):
        token = service.create_access_token(str(ObjectId()), expires_delta=timedelta(seconds=-5))
        with pytest.raises(AuthenticationError):
            service.decode_access_token(token)

    def test_token_from_other_secret_rejected(self, service):
        other = AuthService(service.users, "other-secret")
        with pytest.raises(AuthenticationError):
            service.decode_access_token(other.create_access_token(str(ObjectId())))

    def test_token_without_user_id_rejected(self, service):
        token = jwt.encode({"sub": "alice"}, "test-secret", algorithm=ALGORITHM)
        with pytest.raises(AuthenticationError):
            service.decode_access_token(token)

    def test_token_without_expiry_rejected(self, service):
        token = jwt.encode({"userId": str(ObjectId())}, "test-secret", algorithm=ALGORITHM)
        with pytest.raises(AuthenticationError):
            service.decode_access_token(token)

    def test_login_with_nul_byte_is_invalid_credentials(self, service):
        service.register("alice", "secret123")
        with pytest.raises(AuthenticationError) as exc:
            service.login("alice", "sec\x00ret123")
        assert exc.value.message == "Invalid credentials"


class TestAuthEndpoints:

    def test_register(self, client):
        res = client.post("/api/auth/register", json={"username": "alice", "password": "secret123"})
        assert res.status_code == 201
        body = res.json()
        assert body["message"] == "User created successfully"
        assert ObjectId.is_valid(body["userId"])

    def test_create_first_user_alias(self, client):
        res = client.post("/api/auth/create-first-user", json={"username": "alice", "password": "secret123"})
        assert res.status_code == 201

    def test_register_duplicate(self, client):
        client.post("/api/auth/register", json={"username": "alice", "password": "secret123"})
        res = client.post("/api/auth/register", json={"username": "alice", "password": "secret123"})
        assert res.status_code == 400
        assert res.json() == {"message": "User already exists"}

    def test_register_short_password(self, client):
        res = client.post("/api/auth/register", json={"username": "alice", "password": "abc"})
        assert res.status_code == 400
        assert "password" in res.json()["message"]

    def test_register_rejects_nul_in_password(self, client):
        res = client.post("/api/auth/register", json={"username": "alice", "password": "sec\u0000ret123"})
        assert res.status_code == 400
        assert "NUL" in res.json()["message"]

    def test_login_with_nul_in_password(self, client):
        client.post("/api/auth/register", json={"username": "alice", "password": "secret123"})
        res = client.post("/api/auth/login", json={"username": "alice", "password": "sec\u0000ret123"})
        assert res.status_code == 401
        assert res.json() == {"message": "Invalid credentials"}

    def test_change_password_rejects_nul_in_new_password(self, client, register_and_login):
        headers = register_and_login()
        res = client.post(
            "/api/auth/change-password",
            json={"currentPassword": "secret123", "newPassword": "new\u0000secret"},
            headers=headers,
        )
        assert res.status_code == 400

    def test_login_token_matches_user(self, client, app):
        created = client.post("/api/auth/register", json={"username": "alice", "password": "secret123"}).json()
        res = client.post("/api/auth/login", json={"username": "alice", "password": "secret123"})
        assert res.status_code == 200
        assert res.json()["token_type"] == "bearer"
        assert app.state.auth.decode_access_token(res.json()["token"]) == created["userId"]

    def test_login_errors_match(self, client):
        client.post("/api/auth/register", json={"username": "alice", "password": "secret123"})
        wrong = client.post("/api/auth/login", json={"username": "alice", "password": "bad-password"})
        missing = client.post("/api/auth/login", json={"username": "nobody", "password": "secret123"})
        assert wrong.status_code == missing.status_code == 401
        assert wrong.json() == missing.json() == {"message": "Invalid credentials"}

    def test_change_password_keeps_old_tokens(self, client, register_and_login):
        headers = register_and_login("alice", "secret123")
        res = client.post(
            "/api/auth/change-password",
            json={"currentPassword": "secret123", "newPassword": "newsecret456"},
            headers=headers,
        )
        assert res.status_code == 200
        assert res.json() == {"message": "Password changed successfully"}

        old = client.post("/api/auth/login", json={"username": "alice", "password": "secret123"})
        assert old.status_code == 401
        new = client.post("/api/auth/login", json={"username": "alice", "password": "newsecret456"})
        assert new.status_code == 200

        # no revocation: the token issued before the change still works
        assert client.get("/api/incomes", headers=headers).status_code == 200

    def test_change_password_wrong_current(self, client, register_and_login):
        headers = register_and_login()
        res = client.post(
            "/api/auth/change-password",
            json={"currentPassword": "not-it-at-all", "newPassword": "newsecret456"},
            headers=headers,
        )
        assert res.status_code == 401
        assert res.json() == {"message": "Current password is incorrect"}

    def test_change_password_requires_token(self, client):
        res = client.post(
            "/api/auth/change-password",
            json={"currentPassword": "secret123", "newPassword": "newsecret456"},
        )
        assert res.status_code == 401

    def test_change_password_for_missing_user(self, client, app):
        token = app.state.auth.create_access_token(str(ObjectId()))
        res = client.post(
            "/api/auth/change-password",
            json={"currentPassword": "secret123", "newPassword": "newsecret456"},
            headers={"Authorization": f"Bearer {token}"},
        )
        assert res.status_code == 404
        assert res.json() == {"message": "User not found"}


class TestGuard:

    def test_missing_header(self, client):
        res = client.get("/api/incomes")
        assert res.status_code == 401
        assert res.json() == {"message": "No token, authorization denied"}
        assert res.headers["www-authenticate"] == "Bearer"

    def test_non_bearer_header(self, client):
        res = client.get("/api/expenses", headers={"Authorization": "Basic YWxpY2U6c2VjcmV0"})
        assert res.status_code == 401
        assert res.json() == {"message": "No token, authorization denied"}

    def test_garbage_token(self, client):
        res = client.get("/api/incomes", headers={"Authorization": "Bearer not-a-jwt"})
        assert res.status_code == 401
        assert res.json() == {"message": "Token is not valid"}

    def test_expired_token(self, client, app):
        token = app.state.auth.create_access_token(str(ObjectId()), expires_delta=timedelta(minutes=-1))
        res = client.get("/api/incomes", headers={"Authorization": f"Bearer {token}"})
        assert res.status_code == 401
        assert res.json() == {"message": "Token is not valid"}

    def test_guard_does_not_need_user_record(self, client, app):
        # verification is stateless: a well-signed token is accepted as-is
        token = app.state.auth.create_access_token(str(ObjectId()))
        res = client.get("/api/incomes", headers={"Authorization": f"Bearer {token}"})
        assert res.status_code == 200
        assert res.json() == []

    def test_token_without_expiry(self, client):
        token = jwt.encode({"userId": str(ObjectId())}, "test-secret", algorithm=ALGORITHM)
        res = client.get("/api/incomes", headers={"Authorization": f"Bearer {token}"})
        assert res.status_code == 401
        assert res.json() == {"message": "Token is not valid"}
