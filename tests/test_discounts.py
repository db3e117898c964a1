"""Tests for discount code validation, redemption and management."""

from datetime import timedelta

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.discount import DiscountCode, DiscountUsage
from app.models.location import Location
from app.models.user import User
from app.services.discount_service import DiscountService
from app.utils.dates import utcnow
from core.exceptions.base import (
    DiscountCodeExhaustedException,
    DiscountCodeExpiredException,
    DiscountCodeNotFoundException,
)


async def _code(db_session: AsyncSession, code: str, **kwargs) -> DiscountCode:
    fields = {"percent": 10, "usage": DiscountUsage.MULTIPLE, "current_uses": 0}
    fields.update(kwargs)
    discount = DiscountCode(code=code, **fields)
    db_session.add(discount)
    await db_session.commit()
    await db_session.refresh(discount)
    return discount


class TestDiscountValidation:
    """Tests for checking codes without using them."""

    async def test_validate_does_not_consume(
        self, db_session: AsyncSession, location: Location
    ):
        discount = await _code(db_session, "SPRING10", location_id=location.id, max_uses=5)

        result = await DiscountService(db_session).validate("spring10", location.id)

        assert result.valid is True
        assert result.code == "SPRING10"
        assert result.percent == 10
        assert result.remaining_uses == 5
        await db_session.refresh(discount)
        assert discount.current_uses == 0

    async def test_unknown_code(self, db_session: AsyncSession):
        with pytest.raises(DiscountCodeNotFoundException) as exc_info:
            await DiscountService(db_session).validate("NOPE")
        assert exc_info.value.code == 404
        assert exc_info.value.data == {"code": "NOPE"}

    async def test_code_from_other_location(
        self, db_session: AsyncSession, location: Location, other_location: Location
    ):
        """Test that a location-scoped code is invisible elsewhere."""
        await _code(db_session, "DOWNTOWN", location_id=location.id)
        with pytest.raises(DiscountCodeNotFoundException):
            await DiscountService(db_session).validate("DOWNTOWN", other_location.id)

    async def test_global_code_applies_everywhere(
        self, db_session: AsyncSession, other_location: Location
    ):
        await _code(db_session, "EVERYONE")
        result = await DiscountService(db_session).validate("EVERYONE", other_location.id)
        assert result.valid is True
        assert result.remaining_uses is None

    async def test_expired_code_is_deactivated(self, db_session: AsyncSession):
        """Test that validating an expired code switches it off."""
        discount = await _code(
            db_session, "OLDCODE", expire_date=utcnow() - timedelta(days=1)
        )
        with pytest.raises(DiscountCodeExpiredException) as exc_info:
            await DiscountService(db_session).validate("OLDCODE")
        assert exc_info.value.code == 400

        await db_session.refresh(discount)
        assert discount.is_active is False

    async def test_inactive_code_not_found(self, db_session: AsyncSession):
        await _code(db_session, "PAUSED", is_active=False)
        with pytest.raises(DiscountCodeNotFoundException):
            await DiscountService(db_session).validate("PAUSED")


class TestDiscountRedemption:
    """Tests for counting uses."""

    async def test_apply_counts_one_use(self, db_session: AsyncSession):
        discount = await _code(db_session, "THREE", max_uses=3)
        result = await DiscountService(db_session).apply("THREE")
        await db_session.commit()

        assert result.remaining_uses == 2
        await db_session.refresh(discount)
        assert discount.current_uses == 1

    async def test_expired_code_is_not_counted(self, db_session: AsyncSession):
        discount = await _code(
            db_session, "LASTYEAR", max_uses=3, expire_date=utcnow() - timedelta(hours=1)
        )

        with pytest.raises(DiscountCodeExpiredException):
            await DiscountService(db_session).apply("LASTYEAR")
        await db_session.commit()

        await db_session.refresh(discount)
        assert discount.current_uses == 0
        assert discount.is_active is False

    async def test_zero_limit_is_exhausted(self, db_session: AsyncSession):
        """Test that a limit of zero uses allows no redemption."""
        discount = await _code(db_session, "NOUSES", max_uses=0)

        assert discount.is_usable is False
        assert discount.remaining_uses == 0
        with pytest.raises(DiscountCodeExhaustedException):
            await DiscountService(db_session).apply("NOUSES")
        await db_session.refresh(discount)
        assert discount.current_uses == 0

    async def test_single_use_code_exhausts(self, db_session: AsyncSession):
        """Test that a single-use code can be redeemed exactly once."""
        await _code(db_session, "ONCE", usage=DiscountUsage.SINGLE, max_uses=1)
        service = DiscountService(db_session)

        result = await service.apply("ONCE")
        await db_session.commit()
        assert result.remaining_uses == 0

        with pytest.raises(DiscountCodeExhaustedException) as exc_info:
            await service.apply("ONCE")
        assert exc_info.value.code == 409

    async def test_max_uses_reached(self, db_session: AsyncSession):
        await _code(db_session, "FULL", max_uses=2, current_uses=2)
        with pytest.raises(DiscountCodeExhaustedException):
            await DiscountService(db_session).apply("FULL")

    async def test_apply_endpoint(self, client: AsyncClient, db_session: AsyncSession):
        discount = await _code(db_session, "PUBLIC15", percent=15)

        response = await client.post(
            "/api/v1/discount-codes/apply", json={"code": "public15"}
        )

        assert response.status_code == 200
        assert response.json()["percent"] == 15
        await db_session.refresh(discount)
        assert discount.current_uses == 1

    async def test_validate_endpoint_error_shape(self, client: AsyncClient):
        response = await client.post(
            "/api/v1/discount-codes/validate", json={"code": "MISSING"}
        )
        assert response.status_code == 404
        data = response.json()
        assert data["error_code"] == "DISCOUNT_CODE_NOT_FOUND"
        assert data["message"] == "Invalid discount code"


class TestDiscountCodeAdmin:
    """Tests for discount code management."""

    async def test_admin_creates_code_for_own_location(
        self, client: AsyncClient, admin_user: User, admin_headers: dict
    ):
        """Test that a manager's code defaults to their location."""
        response = await client.post(
            "/api/v1/discount-codes/",
            json={"code": "fall20", "percent": 20, "max_uses": 50},
            headers=admin_headers,
        )
        assert response.status_code == 201
        data = response.json()
        assert data["code"] == "FALL20"
        assert data["location_id"] == admin_user.location_id
        assert data["current_uses"] == 0

    async def test_owner_creates_global_code(
        self, client: AsyncClient, owner_headers: dict
    ):
        response = await client.post(
            "/api/v1/discount-codes/",
            json={"code": "GLOBAL5", "percent": 5},
            headers=owner_headers,
        )
        assert response.status_code == 201
        assert response.json()["location_id"] is None

    async def test_admin_cannot_create_for_other_location(
        self, client: AsyncClient, admin_headers: dict, other_location: Location
    ):
        response = await client.post(
            "/api/v1/discount-codes/",
            json={"code": "UPTOWN5", "percent": 5, "location_id": other_location.id},
            headers=admin_headers,
        )
        assert response.status_code == 403

    async def test_duplicate_code_conflicts(
        self, client: AsyncClient, db_session: AsyncSession, admin_headers: dict
    ):
        await _code(db_session, "TAKEN")
        response = await client.post(
            "/api/v1/discount-codes/",
            json={"code": "taken", "percent": 5},
            headers=admin_headers,
        )
        assert response.status_code == 409

    async def test_teacher_cannot_create(
        self, client: AsyncClient, teacher_headers: dict
    ):
        response = await client.post(
            "/api/v1/discount-codes/",
            json={"code": "TEACH10", "percent": 10},
            headers=teacher_headers,
        )
        assert response.status_code == 403

    async def test_single_use_rejects_max_uses(
        self, client: AsyncClient, admin_headers: dict
    ):
        response = await client.post(
            "/api/v1/discount-codes/",
            json={"code": "SOLO", "percent": 10, "usage": "single", "max_uses": 5},
            headers=admin_headers,
        )
        assert response.status_code == 422

    async def test_delete_deactivates(
        self,
        client: AsyncClient,
        db_session: AsyncSession,
        location: Location,
        admin_headers: dict,
    ):
        discount = await _code(db_session, "GOODBYE", location_id=location.id)

        response = await client.delete(
            f"/api/v1/discount-codes/{discount.id}", headers=admin_headers
        )

        assert response.status_code == 200
        assert "successfully" in response.json()["message"]
        await db_session.refresh(discount)
        assert discount.is_active is False

    async def test_list_filters_by_access(
        self,
        client: AsyncClient,
        db_session: AsyncSession,
        location: Location,
        other_location: Location,
        teacher_headers: dict,
    ):
        """Test that staff only see codes for their own location."""
        await _code(db_session, "MINE", location_id=location.id)
        await _code(db_session, "THEIRS", location_id=other_location.id)

        response = await client.get("/api/v1/discount-codes/", headers=teacher_headers)

        assert response.status_code == 200
        assert [c["code"] for c in response.json()] == ["MINE"]
