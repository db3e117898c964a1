"""Tests for dated schedule slots."""

from datetime import timedelta

from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.class_session import ClassSession, SessionType, Weekday
from app.models.location import Location
from app.models.program import Plan, Program
from app.models.schedule import Schedule
from app.utils.dates import utcnow


def _future(days: int = 7) -> str:
    return (utcnow().date() + timedelta(days=days)).isoformat()


class TestScheduleCreate:
    """Tests for creating schedules."""

    async def test_create_sprint_schedule(
        self,
        client: AsyncClient,
        manager_headers: dict,
        location_offerings: Location,
        monday_session: ClassSession,
        sprint_program: Program,
    ):
        """Test that a manager schedules a program at their location."""
        response = await client.post(
            "/api/v1/schedules/",
            json={
                "location_id": location_offerings.id,
                "session_id": monday_session.id,
                "date": _future(),
                "program_id": sprint_program.id,
                "total_capacity": 8,
                "demo_capacity": 2,
            },
            headers=manager_headers,
        )
        assert response.status_code == 201
        data = response.json()
        assert data["available_capacity"] == 8
        assert data["available_demo_capacity"] == 2
        assert data["session"]["id"] == monday_session.id

    async def test_create_marathon_schedule_uses_plan(
        self,
        client: AsyncClient,
        admin_headers: dict,
        location_offerings: Location,
        monday_session: ClassSession,
        marathon_plan: Plan,
        marathon_program: Program,
    ):
        payload = {
            "location_id": location_offerings.id,
            "session_id": monday_session.id,
            "date": _future(),
            "total_capacity": 6,
        }
        response = await client.post(
            "/api/v1/schedules/",
            json={**payload, "plan_id": marathon_plan.id},
            headers=admin_headers,
        )
        assert response.status_code == 201

        response = await client.post(
            "/api/v1/schedules/",
            json={**payload, "program_id": marathon_program.id},
            headers=admin_headers,
        )
        assert response.status_code == 400
        assert response.json()["error_code"] == "VALIDATION_ERROR"

    async def test_plan_requires_location_offering(
        self,
        client: AsyncClient,
        owner_headers: dict,
        other_location: Location,
        marathon_plan: Plan,
        db_session: AsyncSession,
    ):
        session = ClassSession(
            location_id=other_location.id,
            weekday=Weekday.TUESDAY,
            session_type=SessionType.WEEKDAY,
            start_time="10:00",
            end_time="11:00",
            total_capacity=5,
            available_capacity=5,
        )
        db_session.add(session)
        await db_session.commit()

        response = await client.post(
            "/api/v1/schedules/",
            json={
                "location_id": other_location.id,
                "session_id": session.id,
                "date": _future(),
                "plan_id": marathon_plan.id,
                "total_capacity": 4,
            },
            headers=owner_headers,
        )
        assert response.status_code == 400

    async def test_duplicate_schedule_conflicts(
        self,
        client: AsyncClient,
        manager_headers: dict,
        sprint_schedule: Schedule,
    ):
        response = await client.post(
            "/api/v1/schedules/",
            json={
                "location_id": sprint_schedule.location_id,
                "session_id": sprint_schedule.session_id,
                "date": sprint_schedule.date.isoformat(),
                "program_id": sprint_schedule.program_id,
                "total_capacity": 3,
            },
            headers=manager_headers,
        )
        assert response.status_code == 409
        assert response.json()["data"]["schedule_id"] == sprint_schedule.id

    async def test_past_date_rejected(
        self,
        client: AsyncClient,
        manager_headers: dict,
        location_offerings: Location,
        monday_session: ClassSession,
        sprint_program: Program,
    ):
        response = await client.post(
            "/api/v1/schedules/",
            json={
                "location_id": location_offerings.id,
                "session_id": monday_session.id,
                "date": (utcnow().date() - timedelta(days=1)).isoformat(),
                "program_id": sprint_program.id,
                "total_capacity": 3,
            },
            headers=manager_headers,
        )
        assert response.status_code == 400

    async def test_program_and_plan_together_rejected(
        self,
        client: AsyncClient,
        manager_headers: dict,
        location_offerings: Location,
        monday_session: ClassSession,
        sprint_program: Program,
        marathon_plan: Plan,
    ):
        response = await client.post(
            "/api/v1/schedules/",
            json={
                "location_id": location_offerings.id,
                "session_id": monday_session.id,
                "date": _future(),
                "program_id": sprint_program.id,
                "plan_id": marathon_plan.id,
                "total_capacity": 3,
            },
            headers=manager_headers,
        )
        assert response.status_code == 422

    async def test_manager_cannot_schedule_elsewhere(
        self,
        client: AsyncClient,
        manager_headers: dict,
        other_location: Location,
        monday_session: ClassSession,
        sprint_program: Program,
    ):
        response = await client.post(
            "/api/v1/schedules/",
            json={
                "location_id": other_location.id,
                "session_id": monday_session.id,
                "date": _future(),
                "program_id": sprint_program.id,
                "total_capacity": 3,
            },
            headers=manager_headers,
        )
        assert response.status_code == 403

    async def test_teacher_cannot_schedule(
        self,
        client: AsyncClient,
        teacher_headers: dict,
        location_offerings: Location,
        monday_session: ClassSession,
        sprint_program: Program,
    ):
        response = await client.post(
            "/api/v1/schedules/",
            json={
                "location_id": location_offerings.id,
                "session_id": monday_session.id,
                "date": _future(),
                "program_id": sprint_program.id,
                "total_capacity": 3,
            },
            headers=teacher_headers,
        )
        assert response.status_code == 403


class TestScheduleBooking:
    """Tests for seats on a schedule."""

    async def test_book_and_cancel(
        self, client: AsyncClient, manager_headers: dict, sprint_schedule: Schedule
    ):
        response = await client.post(
            f"/api/v1/schedules/{sprint_schedule.id}/book",
            json={"pool": "demo"},
            headers=manager_headers,
        )
        assert response.status_code == 200
        assert response.json()["available_demo_capacity"] == 0

        response = await client.post(
            f"/api/v1/schedules/{sprint_schedule.id}/book",
            json={"pool": "demo"},
            headers=manager_headers,
        )
        assert response.status_code == 409
        assert response.json()["error_code"] == "CAPACITY_UNAVAILABLE"

        response = await client.post(
            f"/api/v1/schedules/{sprint_schedule.id}/cancel",
            json={"pool": "demo"},
            headers=manager_headers,
        )
        assert response.status_code == 200
        assert response.json()["available_demo_capacity"] == 1

    async def test_cancel_on_full_pool_conflicts(
        self, client: AsyncClient, manager_headers: dict, sprint_schedule: Schedule
    ):
        response = await client.post(
            f"/api/v1/schedules/{sprint_schedule.id}/cancel",
            json={},
            headers=manager_headers,
        )
        assert response.status_code == 409


class TestScheduleUpdateDelete:
    """Tests for editing and removing schedules."""

    async def test_resize_keeps_bookings(
        self,
        client: AsyncClient,
        db_session: AsyncSession,
        manager_headers: dict,
        sprint_schedule: Schedule,
    ):
        """Test that growing the pool keeps existing bookings."""
        await client.post(
            f"/api/v1/schedules/{sprint_schedule.id}/book", json={}, headers=manager_headers
        )

        response = await client.put(
            f"/api/v1/schedules/{sprint_schedule.id}",
            json={"total_capacity": 10},
            headers=manager_headers,
        )
        assert response.status_code == 200
        assert response.json()["total_capacity"] == 10
        assert response.json()["available_capacity"] == 9

    async def test_delete_booked_schedule_rejected(
        self, client: AsyncClient, manager_headers: dict, sprint_schedule: Schedule
    ):
        await client.post(
            f"/api/v1/schedules/{sprint_schedule.id}/book", json={}, headers=manager_headers
        )
        response = await client.delete(
            f"/api/v1/schedules/{sprint_schedule.id}", headers=manager_headers
        )
        assert response.status_code == 400

    async def test_delete_empty_schedule(
        self, client: AsyncClient, manager_headers: dict, sprint_schedule: Schedule
    ):
        response = await client.delete(
            f"/api/v1/schedules/{sprint_schedule.id}", headers=manager_headers
        )
        assert response.status_code == 200
        assert response.json() == {"message": "Schedule deleted successfully"}

        response = await client.get(
            f"/api/v1/schedules/{sprint_schedule.id}", headers=manager_headers
        )
        assert response.status_code == 404


class TestScheduleVisibility:
    """Tests for listing schedules."""

    async def test_parent_sees_schedules(
        self, client: AsyncClient, parent_headers: dict, sprint_schedule: Schedule
    ):
        response = await client.get("/api/v1/schedules/", headers=parent_headers)
        assert response.status_code == 200
        assert [s["id"] for s in response.json()] == [sprint_schedule.id]

    async def test_other_location_staff_see_nothing(
        self, client: AsyncClient, other_admin_headers: dict, sprint_schedule: Schedule
    ):
        response = await client.get("/api/v1/schedules/", headers=other_admin_headers)
        assert response.status_code == 200
        assert response.json() == []
