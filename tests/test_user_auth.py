"""
Tests for User Authentication Endpoints

Tests the password-based session lifecycle over HTTP:
- Registration (returns user + token pair)
- Login (JWT token pair)
- Token refresh (single-use rotation)
- Logout (revocation)
- Protected endpoints (/me)

Coverage includes:
- Successful flows
- Error handling
- Security validations (uniform 401, no secrets in responses)
"""

from unittest.mock import patch

from fastapi import status
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from bookshare.models.user import User
from bookshare.services.security import dummy_password_hash, token_fingerprint, verify_password
from tests.conftest import TEST_PASSWORD, bearer, login

UNIFORM_401 = {"detail": "Could not validate credentials"}


class TestUserRegistration:
    """Tests for user registration endpoint: POST /api/v1/auth/register"""

    def test_register_success(self, client: TestClient):
        response = client.post(
            "/api/v1/auth/register",
            json={
                "email": "newuser@example.com",
                "username": "newuser",
                "password": "SecurePass123",
                "full_name": "New User",
            },
        )

        assert response.status_code == status.HTTP_201_CREATED
        data = response.json()

        user = data["user"]
        assert user["email"] == "newuser@example.com"
        assert user["username"] == "newuser"
        assert user["full_name"] == "New User"
        assert user["is_active"] is True
        assert user["auth_provider"] == "local"
        # Secrets are never serialized
        assert "hashed_password" not in user
        assert "refresh_token_fingerprint" not in user

        tokens = data["tokens"]
        assert tokens["token_type"] == "bearer"
        assert tokens["expires_in"] == 15 * 60
        assert tokens["access_token"]
        assert tokens["refresh_token"]

    def test_register_stores_refresh_fingerprint(self, client: TestClient, db_session: Session):
        response = client.post(
            "/api/v1/auth/register",
            json={
                "email": "stored@example.com",
                "username": "storeduser",
                "password": "SecurePass123",
            },
        )
        refresh_token = response.json()["tokens"]["refresh_token"]

        user = db_session.query(User).filter(User.email == "stored@example.com").one()
        db_session.refresh(user)
        assert user.refresh_token_fingerprint == token_fingerprint(refresh_token)

    def test_register_password_is_hashed(self, client: TestClient, db_session: Session):
        client.post(
            "/api/v1/auth/register",
            json={
                "email": "hashcheck@example.com",
                "username": "hashcheck",
                "password": "SecurePass123",
            },
        )

        user = db_session.query(User).filter(User.email == "hashcheck@example.com").one()
        assert user.hashed_password != "SecurePass123"
        assert user.hashed_password.startswith("$2b$")
        assert verify_password("SecurePass123", user.hashed_password)

    def test_register_duplicate_email(self, client: TestClient, sample_user: User):
        response = client.post(
            "/api/v1/auth/register",
            json={
                "email": sample_user.email,
                "username": "someoneelse",
                "password": "SecurePass123",
            },
        )

        assert response.status_code == status.HTTP_409_CONFLICT
        assert "already registered" in response.json()["detail"].lower()

    def test_register_duplicate_username_case_insensitive(
        self, client: TestClient, sample_user: User
    ):
        response = client.post(
            "/api/v1/auth/register",
            json={
                "email": "different@example.com",
                "username": "TestUser",
                "password": "SecurePass123",
            },
        )

        assert response.status_code == status.HTTP_409_CONFLICT
        assert "already taken" in response.json()["detail"].lower()

    def test_register_weak_password(self, client: TestClient):
        response = client.post(
            "/api/v1/auth/register",
            json={
                "email": "weak@example.com",
                "username": "weakuser",
                "password": "alllowercase1",
            },
        )

        assert response.status_code == 422

    def test_register_invalid_username(self, client: TestClient):
        response = client.post(
            "/api/v1/auth/register",
            json={
                "email": "badname@example.com",
                "username": "1startswithdigit",
                "password": "SecurePass123",
            },
        )

        assert response.status_code == 422


class TestUserLogin:
    """Tests for login endpoint: POST /api/v1/auth/login"""

    def test_login_success(self, client: TestClient, sample_user: User):
        response = client.post(
            "/api/v1/auth/login",
            json={"email": sample_user.email, "password": TEST_PASSWORD},
        )

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["user"]["id"] == sample_user.id
        assert data["tokens"]["access_token"]
        assert data["tokens"]["refresh_token"]
        assert response.cookies.get("refresh_token") == data["tokens"]["refresh_token"]

    def test_login_email_is_case_insensitive(self, client: TestClient, sample_user: User):
        response = client.post(
            "/api/v1/auth/login",
            json={"email": "TestUser@Example.com", "password": TEST_PASSWORD},
        )

        assert response.status_code == status.HTTP_200_OK

    def test_login_wrong_password(self, client: TestClient, sample_user: User):
        response = client.post(
            "/api/v1/auth/login",
            json={"email": sample_user.email, "password": "WrongPass123"},
        )

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.json()["detail"] == "Incorrect email or password"

    def test_login_unknown_email_looks_like_wrong_password(self, client: TestClient):
        response = client.post(
            "/api/v1/auth/login",
            json={"email": "nobody@example.com", "password": "WrongPass123"},
        )

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.json()["detail"] == "Incorrect email or password"

    def test_login_unknown_email_still_checks_a_hash(self, client: TestClient):
        with patch(
            "bookshare.routers.auth.verify_password",
            wraps=verify_password,
        ) as checked:
            response = client.post(
                "/api/v1/auth/login",
                json={"email": "nobody@example.com", "password": "WrongPass123"},
            )

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        checked.assert_called_once()
        password, hashed = checked.call_args.args
        assert password == "WrongPass123"
        assert hashed == dummy_password_hash()

    def test_login_inactive_user(self, client: TestClient, db_session: Session, sample_user: User):
        sample_user.is_active = False
        db_session.commit()

        response = client.post(
            "/api/v1/auth/login",
            json={"email": sample_user.email, "password": TEST_PASSWORD},
        )

        assert response.status_code == status.HTTP_403_FORBIDDEN

    def test_second_login_invalidates_first_refresh_token(
        self, client: TestClient, sample_user: User
    ):
        first = login(client, sample_user.email)
        login(client, sample_user.email)

        response = client.post(
            "/api/v1/auth/refresh",
            json={"refresh_token": first["refresh_token"]},
        )

        assert response.status_code == status.HTTP_401_UNAUTHORIZED


class TestTokenRefresh:
    """Tests for token rotation: POST /api/v1/auth/refresh"""

    def test_refresh_returns_new_pair(self, client: TestClient, auth_tokens: dict):
        response = client.post(
            "/api/v1/auth/refresh",
            json={"refresh_token": auth_tokens["refresh_token"]},
        )

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["refresh_token"] != auth_tokens["refresh_token"]
        assert data["access_token"] != auth_tokens["access_token"]

    def test_refresh_token_is_single_use(self, client: TestClient, auth_tokens: dict):
        first = client.post(
            "/api/v1/auth/refresh",
            json={"refresh_token": auth_tokens["refresh_token"]},
        )
        assert first.status_code == status.HTTP_200_OK

        replay = client.post(
            "/api/v1/auth/refresh",
            json={"refresh_token": auth_tokens["refresh_token"]},
        )

        assert replay.status_code == status.HTTP_401_UNAUTHORIZED
        assert replay.json() == UNIFORM_401
        assert replay.headers["WWW-Authenticate"] == "Bearer"

    def test_rotated_token_can_be_rotated_again(self, client: TestClient, auth_tokens: dict):
        second = client.post(
            "/api/v1/auth/refresh",
            json={"refresh_token": auth_tokens["refresh_token"]},
        ).json()

        third = client.post(
            "/api/v1/auth/refresh",
            json={"refresh_token": second["refresh_token"]},
        )

        assert third.status_code == status.HTTP_200_OK

    def test_refresh_from_cookie(self, client: TestClient, auth_tokens: dict):
        # The login response already set the cookie on the client
        response = client.post("/api/v1/auth/refresh")

        assert response.status_code == status.HTTP_200_OK

    def test_refresh_with_access_token_rejected(self, client: TestClient, auth_tokens: dict):
        response = client.post(
            "/api/v1/auth/refresh",
            json={"refresh_token": auth_tokens["access_token"]},
        )

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.json() == UNIFORM_401

    def test_refresh_garbage_token(self, client: TestClient):
        response = client.post(
            "/api/v1/auth/refresh",
            json={"refresh_token": "not-a-jwt"},
        )

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.json() == UNIFORM_401

    def test_refresh_without_token(self, client: TestClient):
        response = client.post("/api/v1/auth/refresh")

        assert response.status_code == status.HTTP_401_UNAUTHORIZED


class TestLogout:
    """Tests for logout endpoint: POST /api/v1/auth/logout"""

    def test_logout_revokes_refresh_token(self, client: TestClient, auth_tokens: dict):
        response = client.post(
            "/api/v1/auth/logout",
            json={"refresh_token": auth_tokens["refresh_token"]},
        )
        assert response.status_code == status.HTTP_200_OK

        refresh = client.post(
            "/api/v1/auth/refresh",
            json={"refresh_token": auth_tokens["refresh_token"]},
        )

        assert refresh.status_code == status.HTTP_401_UNAUTHORIZED
        assert refresh.json() == UNIFORM_401

    def test_logout_is_idempotent(self, client: TestClient, auth_tokens: dict):
        body = {"refresh_token": auth_tokens["refresh_token"]}

        assert client.post("/api/v1/auth/logout", json=body).status_code == 200
        assert client.post("/api/v1/auth/logout", json=body).status_code == 200

    def test_logout_clears_fingerprint(
        self, client: TestClient, db_session: Session, sample_user: User, auth_tokens: dict
    ):
        client.post(
            "/api/v1/auth/logout",
            json={"refresh_token": auth_tokens["refresh_token"]},
        )

        db_session.refresh(sample_user)
        assert sample_user.refresh_token_fingerprint is None

    def test_logout_with_invalid_token(self, client: TestClient):
        response = client.post(
            "/api/v1/auth/logout",
            json={"refresh_token": "garbage"},
        )

        assert response.status_code == status.HTTP_401_UNAUTHORIZED


class TestCurrentUser:
    """Tests for GET /api/v1/auth/me"""

    def test_me_returns_user(self, client: TestClient, sample_user: User, auth_headers: dict):
        response = client.get("/api/v1/auth/me", headers=auth_headers)

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["id"] == sample_user.id
        assert data["username"] == "testuser"
        assert "hashed_password" not in data

    def test_me_without_token(self, client: TestClient):
        response = client.get("/api/v1/auth/me")

        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    def test_me_with_refresh_token_rejected(self, client: TestClient, auth_tokens: dict):
        response = client.get("/api/v1/auth/me", headers=bearer(auth_tokens["refresh_token"]))

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.json() == UNIFORM_401

    def test_access_token_survives_logout(self, client: TestClient, auth_tokens: dict):
        client.post(
            "/api/v1/auth/logout",
            json={"refresh_token": auth_tokens["refresh_token"]},
        )

        response = client.get("/api/v1/auth/me", headers=bearer(auth_tokens["access_token"]))

        assert response.status_code == status.HTTP_200_OK
