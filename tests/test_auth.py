from datetime import timedelta

from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.location import Location
from app.models.password_reset import PasswordReset
from app.models.user import User
from app.utils.dates import utcnow


class TestAuthLogin:
    """Tests for user login endpoint."""

    async def test_login_success(self, client: AsyncClient, parent_user: User):
        """Test successful login."""
        response = await client.post(
            "/api/v1/auth/login",
            json={"login": "parent@example.com", "password": "TestPass123"},
        )
        assert response.status_code == 200
        data = response.json()
        assert "access_token" in data
        assert "refresh_token" in data
        assert data["token_type"] == "bearer"
        assert data["user"]["id"] == parent_user.id

    async def test_login_case_insensitive_email(self, client: AsyncClient, parent_user: User):
        """Login should succeed regardless of email casing."""
        response = await client.post(
            "/api/v1/auth/login",
            json={"login": "PARENT@EXAMPLE.COM", "password": "TestPass123"},
        )
        assert response.status_code == 200

    async def test_student_login_with_username(self, client: AsyncClient, student_user: User):
        """Test that students sign in with their generated username."""
        response = await client.post(
            "/api/v1/auth/login",
            json={"login": "JimDoe", "password": "TestPass123"},
        )
        assert response.status_code == 200
        assert response.json()["user"]["username"] == "jimdoe"

    async def test_login_wrong_password(self, client: AsyncClient, parent_user: User):
        """Test login with wrong password."""
        response = await client.post(
            "/api/v1/auth/login",
            json={"login": "parent@example.com", "password": "WrongPass123"},
        )
        assert response.status_code == 401

    async def test_login_nonexistent_user(self, client: AsyncClient):
        """Test login with non-existent user."""
        response = await client.post(
            "/api/v1/auth/login",
            json={"login": "nonexistent@example.com", "password": "SomePass123"},
        )
        assert response.status_code == 401

    async def test_swagger_token_form(self, client: AsyncClient, admin_user: User):
        response = await client.post(
            "/api/v1/auth/token",
            data={"username": "admin@example.com", "password": "TestPass123"},
        )
        assert response.status_code == 200


class TestAuthRefresh:
    """Tests for token refresh endpoint."""

    async def test_refresh_success(self, client: AsyncClient, parent_user: User):
        """Test successful token refresh."""
        # First login to get tokens
        login_response = await client.post(
            "/api/v1/auth/login",
            json={"login": "parent@example.com", "password": "TestPass123"},
        )
        tokens = login_response.json()

        # Then refresh
        response = await client.post(
            "/api/v1/auth/refresh",
            json={"refresh_token": tokens["refresh_token"]},
        )
        assert response.status_code == 200
        data = response.json()
        assert "access_token" in data
        assert "refresh_token" in data

    async def test_access_token_cannot_refresh(self, client: AsyncClient, parent_user: User):
        login_response = await client.post(
            "/api/v1/auth/login",
            json={"login": "parent@example.com", "password": "TestPass123"},
        )

        response = await client.post(
            "/api/v1/auth/refresh",
            json={"refresh_token": login_response.json()["access_token"]},
        )
        assert response.status_code == 401

    async def test_refresh_invalid_token(self, client: AsyncClient):
        """Test refresh with invalid token."""
        response = await client.post(
            "/api/v1/auth/refresh",
            json={"refresh_token": "invalid-token"},
        )
        assert response.status_code == 401


class TestAuthMe:
    """Tests for the current-user profile."""

    async def test_me(self, client: AsyncClient, manager_headers: dict, manager_user: User):
        response = await client.get("/api/v1/auth/me", headers=manager_headers)
        assert response.status_code == 200
        assert response.json()["role"] == "location_manager"

    async def test_me_requires_token(self, client: AsyncClient):
        response = await client.get("/api/v1/auth/me")
        assert response.status_code in (401, 403)


class TestCreateUser:
    """Tests for staff-created accounts."""

    async def test_admin_creates_teacher_at_own_location(
        self, client: AsyncClient, admin_headers: dict, location: Location
    ):
        response = await client.post(
            "/api/v1/auth/users",
            json={
                "email": "New.Teacher@Example.com",
                "password": "Teach1234",
                "first_name": "New",
                "last_name": "Teacher",
                "role": "teacher",
            },
            headers=admin_headers,
        )
        assert response.status_code == 201
        data = response.json()
        assert data["email"] == "new.teacher@example.com"
        assert data["location_id"] == location.id

    async def test_admin_cannot_create_admin(self, client: AsyncClient, admin_headers: dict):
        response = await client.post(
            "/api/v1/auth/users",
            json={
                "email": "boss@example.com",
                "password": "Admin1234",
                "first_name": "Big",
                "last_name": "Boss",
                "role": "admin",
            },
            headers=admin_headers,
        )
        assert response.status_code == 403

    async def test_admin_cannot_staff_other_location(
        self, client: AsyncClient, admin_headers: dict, other_location: Location
    ):
        response = await client.post(
            "/api/v1/auth/users",
            json={
                "email": "uptown.teacher@example.com",
                "password": "Teach1234",
                "first_name": "Up",
                "last_name": "Town",
                "role": "teacher",
                "location_id": other_location.id,
            },
            headers=admin_headers,
        )
        assert response.status_code == 403

    async def test_owner_creates_admin(
        self, client: AsyncClient, owner_headers: dict, other_location: Location
    ):
        response = await client.post(
            "/api/v1/auth/users",
            json={
                "email": "uptown.admin@example.com",
                "password": "Admin1234",
                "first_name": "Up",
                "last_name": "Town",
                "role": "admin",
                "location_id": other_location.id,
            },
            headers=owner_headers,
        )
        assert response.status_code == 201

    async def test_duplicate_email(
        self, client: AsyncClient, owner_headers: dict, parent_user: User
    ):
        response = await client.post(
            "/api/v1/auth/users",
            json={
                "email": "parent@example.com",
                "password": "Parent1234",
                "first_name": "Jane",
                "last_name": "Doe",
                "role": "parent",
            },
            headers=owner_headers,
        )
        assert response.status_code == 400
        assert "already registered" in response.json()["message"]

    async def test_manager_cannot_create_users(self, client: AsyncClient, manager_headers: dict):
        response = await client.post(
            "/api/v1/auth/users",
            json={
                "email": "someone@example.com",
                "password": "Parent1234",
                "first_name": "Some",
                "last_name": "One",
                "role": "parent",
            },
            headers=manager_headers,
        )
        assert response.status_code == 403


class TestPasswordReset:
    """Tests for the forgot password, verify code and reset flow."""

    async def _request_code(self, client: AsyncClient, email_tasks, email: str) -> str:
        response = await client.post("/api/v1/auth/forgot-password", json={"email": email})
        assert response.status_code == 200
        return email_tasks["password_reset"].delay.call_args.kwargs["code"]

    async def _verify(self, client: AsyncClient, email: str, code: str):
        return await client.post(
            "/api/v1/auth/verify-reset-code", json={"email": email, "code": code}
        )

    async def test_unknown_email_same_answer(
        self, client: AsyncClient, parent_user: User, email_tasks
    ):
        known = await client.post(
            "/api/v1/auth/forgot-password", json={"email": "parent@example.com"}
        )
        email_tasks["password_reset"].delay.reset_mock()
        unknown = await client.post(
            "/api/v1/auth/forgot-password", json={"email": "nobody@example.com"}
        )

        assert unknown.status_code == 200
        assert unknown.json() == known.json()
        email_tasks["password_reset"].delay.assert_not_called()

    async def test_full_reset(self, client: AsyncClient, parent_user: User, email_tasks):
        """Test that a verified code lets the user pick a new password once."""
        code = await self._request_code(client, email_tasks, "parent@example.com")
        assert email_tasks["password_reset"].delay.call_args.kwargs["email"] == parent_user.email

        verified = await self._verify(client, "parent@example.com", code)
        assert verified.status_code == 200
        token = verified.json()["reset_token"]

        reset = await client.post(
            "/api/v1/auth/reset-password",
            json={"reset_token": token, "new_password": "BrandNew123"},
        )
        assert reset.status_code == 200

        old_login = await client.post(
            "/api/v1/auth/login", json={"login": "parent@example.com", "password": "TestPass123"}
        )
        new_login = await client.post(
            "/api/v1/auth/login", json={"login": "parent@example.com", "password": "BrandNew123"}
        )
        assert old_login.status_code == 401
        assert new_login.status_code == 200

        reused = await client.post(
            "/api/v1/auth/reset-password",
            json={"reset_token": token, "new_password": "Another123"},
        )
        assert reused.status_code == 400

    async def test_wrong_code(self, client: AsyncClient, parent_user: User, email_tasks):
        await self._request_code(client, email_tasks, "parent@example.com")

        response = await self._verify(client, "parent@example.com", "000000")

        assert response.status_code == 400
        assert response.json()["message"] == "Invalid or expired code"

    async def test_locked_after_repeated_wrong_codes(
        self, client: AsyncClient, parent_user: User, email_tasks
    ):
        code = await self._request_code(client, email_tasks, "parent@example.com")
        for _ in range(5):
            await self._verify(client, "parent@example.com", "000000")

        response = await self._verify(client, "parent@example.com", code)

        assert response.status_code == 400

    async def test_expired_code(
        self,
        client: AsyncClient,
        db_session: AsyncSession,
        parent_user: User,
        email_tasks,
    ):
        code = await self._request_code(client, email_tasks, "parent@example.com")
        reset = await PasswordReset.get_open_for_user(db_session, parent_user.id)
        reset.expires_at = utcnow() - timedelta(minutes=1)
        await db_session.commit()

        response = await self._verify(client, "parent@example.com", code)

        assert response.status_code == 400

    async def test_unverified_token_rejected(
        self,
        client: AsyncClient,
        db_session: AsyncSession,
        parent_user: User,
        email_tasks,
    ):
        await self._request_code(client, email_tasks, "parent@example.com")
        reset = await PasswordReset.get_open_for_user(db_session, parent_user.id)

        response = await client.post(
            "/api/v1/auth/reset-password",
            json={"reset_token": reset.token, "new_password": "BrandNew123"},
        )

        assert response.status_code == 400

    async def test_new_request_closes_earlier_code(
        self,
        client: AsyncClient,
        db_session: AsyncSession,
        parent_user: User,
        email_tasks,
    ):
        await self._request_code(client, email_tasks, "parent@example.com")
        second = await self._request_code(client, email_tasks, "parent@example.com")

        result = await db_session.execute(
            select(PasswordReset).where(
                PasswordReset.user_id == parent_user.id, PasswordReset.used_at.is_(None)
            )
        )
        still_open = result.scalars().all()

        assert [r.code for r in still_open] == [second]
        verified = await self._verify(client, "parent@example.com", second)
        assert verified.status_code == 200

    async def test_code_must_be_six_digits(self, client: AsyncClient):
        response = await self._verify(client, "parent@example.com", "12ab")
        assert response.status_code == 422
