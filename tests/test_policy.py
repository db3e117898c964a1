"""Tests for the role and location access rules."""

import pytest

from app.models.class_session import ClassSession
from app.models.discount import DiscountCode
from app.models.enrollment import Enrollment
from app.models.location import Location
from app.models.program import Program
from app.models.registration import Registration
from app.models.schedule import Schedule
from app.models.user import Role, User
from app.services.policy import Action, can_access, can_manage_schedules, ensure_access
from core.exceptions.base import ForbiddenException

HOME = "loc-home"
AWAY = "loc-away"


def _user(role: Role, location_id=HOME, id=None, parent_id=None, is_active=True) -> User:
    return User(
        id=id or f"{role.value}-{location_id}",
        email=f"{role.value}@example.com",
        first_name="Test",
        last_name="User",
        role=role,
        location_id=location_id,
        parent_id=parent_id,
        is_active=is_active,
    )


class TestGlobalRules:
    """Tests for rules that apply to every resource."""

    def test_owner_may_do_anything(self):
        owner = _user(Role.OWNER, location_id=None)
        assert can_access(owner, Location(id=AWAY), Action.DELETE)
        assert can_access(owner, DiscountCode(location_id=None), Action.UPDATE)
        assert can_access(owner, object(), Action.READ)

    def test_anonymous_denied(self):
        assert not can_access(None, Location(id=HOME), Action.READ)

    def test_inactive_user_denied(self):
        admin = _user(Role.ADMIN, is_active=False)
        assert not can_access(admin, Location(id=HOME), Action.READ)

    def test_unknown_resource_denied(self):
        assert not can_access(_user(Role.ADMIN), object(), Action.READ)

    def test_ensure_access_raises_forbidden(self):
        with pytest.raises(ForbiddenException) as exc_info:
            ensure_access(_user(Role.TEACHER), Location(id=HOME), Action.UPDATE)
        assert exc_info.value.code == 403
        assert "update" in exc_info.value.message


class TestLocationRules:
    """Tests for location access."""

    def test_everyone_reads(self):
        assert can_access(_user(Role.PARENT), Location(id=AWAY), Action.READ)

    def test_managers_update_own_location(self):
        assert can_access(_user(Role.LOCATION_MANAGER), Location(id=HOME), Action.UPDATE)
        assert not can_access(_user(Role.ADMIN), Location(id=AWAY), Action.UPDATE)
        assert not can_access(_user(Role.ADMIN), Location(id=HOME), Action.DELETE)


class TestScheduleRules:
    """Tests for sessions and schedules."""

    def test_families_read_everywhere(self):
        for role in (Role.PARENT, Role.STUDENT):
            assert can_access(_user(role), Schedule(location_id=AWAY), Action.READ)
            assert can_access(_user(role), ClassSession(location_id=AWAY), Action.READ)

    def test_staff_read_own_location(self):
        teacher = _user(Role.TEACHER)
        assert can_access(teacher, Schedule(location_id=HOME), Action.READ)
        assert not can_access(teacher, Schedule(location_id=AWAY), Action.READ)

    def test_global_session_readable_by_staff(self):
        assert can_access(_user(Role.TEACHER), ClassSession(location_id=None), Action.READ)

    def test_only_managers_write(self):
        assert can_access(_user(Role.ADMIN), Schedule(location_id=HOME), Action.CREATE)
        assert not can_access(_user(Role.TEACHER), Schedule(location_id=HOME), Action.CREATE)
        assert not can_access(_user(Role.ADMIN), Schedule(location_id=AWAY), Action.UPDATE)
        assert can_access(
            _user(Role.LOCATION_MANAGER), ClassSession(location_id=HOME), Action.BOOK
        )

    def test_can_manage_schedules(self):
        assert can_manage_schedules(_user(Role.OWNER, location_id=None), AWAY)
        assert can_manage_schedules(_user(Role.LOCATION_MANAGER), HOME)
        assert not can_manage_schedules(_user(Role.LOCATION_MANAGER), AWAY)
        assert not can_manage_schedules(_user(Role.PARENT), HOME)


class TestEnrollmentRules:
    """Tests for enrollment access."""

    def _enrollment(self) -> Enrollment:
        return Enrollment(parent_id="parent-1", student_id="student-1", location_id=HOME)

    def test_parent_of_student(self):
        parent = _user(Role.PARENT, id="parent-1")
        enrollment = self._enrollment()
        assert can_access(parent, enrollment, Action.READ)
        assert can_access(parent, enrollment, Action.CREATE)
        assert can_access(parent, enrollment, Action.PAY)
        assert not can_access(parent, enrollment, Action.DELETE)

    def test_other_parent(self):
        assert not can_access(_user(Role.PARENT, id="parent-2"), self._enrollment(), Action.READ)

    def test_student_reads_own(self):
        assert can_access(_user(Role.STUDENT, id="student-1"), self._enrollment(), Action.READ)
        assert not can_access(_user(Role.STUDENT, id="student-1"), self._enrollment(), Action.PAY)
        assert not can_access(_user(Role.STUDENT, id="student-2"), self._enrollment(), Action.READ)

    def test_teacher_and_manager_read_only(self):
        for role in (Role.TEACHER, Role.LOCATION_MANAGER):
            assert can_access(_user(role), self._enrollment(), Action.READ)
            assert not can_access(_user(role), self._enrollment(), Action.UPDATE)

    def test_admin_limited_to_location(self):
        assert can_access(_user(Role.ADMIN), self._enrollment(), Action.DELETE)
        assert not can_access(_user(Role.ADMIN, location_id=AWAY), self._enrollment(), Action.READ)


class TestDiscountAndRegistrationRules:
    """Tests for discount codes and registrations."""

    def test_global_code_is_owner_only(self):
        assert not can_access(_user(Role.ADMIN), DiscountCode(location_id=None), Action.UPDATE)

    def test_location_code(self):
        code = DiscountCode(location_id=HOME)
        assert can_access(_user(Role.ADMIN), code, Action.UPDATE)
        assert can_access(_user(Role.TEACHER), code, Action.READ)
        assert not can_access(_user(Role.TEACHER), code, Action.UPDATE)
        assert not can_access(_user(Role.PARENT), code, Action.READ)

    def test_registration_read_and_delete(self):
        registration = Registration(location_id=HOME)
        assert can_access(_user(Role.TEACHER), registration, Action.READ)
        assert can_access(_user(Role.ADMIN), registration, Action.DELETE)
        assert not can_access(_user(Role.LOCATION_MANAGER), registration, Action.DELETE)
        assert not can_access(_user(Role.PARENT), registration, Action.READ)


class TestCatalogAndUserRules:
    """Tests for catalog entries and user records."""

    def test_catalog_writes_need_admin(self):
        program = Program(offering_id="off-1")
        assert can_access(_user(Role.PARENT), program, Action.READ)
        assert can_access(_user(Role.ADMIN), program, Action.UPDATE)
        assert not can_access(_user(Role.LOCATION_MANAGER), program, Action.UPDATE)

    def test_self_read_only(self):
        parent = _user(Role.PARENT, id="parent-1")
        assert can_access(parent, parent, Action.READ)
        assert not can_access(parent, parent, Action.DELETE)

    def test_parent_reads_children(self):
        parent = _user(Role.PARENT, id="parent-1")
        child = _user(Role.STUDENT, id="student-1", parent_id="parent-1")
        stranger = _user(Role.STUDENT, id="student-2", parent_id="parent-2")
        assert can_access(parent, child, Action.READ)
        assert not can_access(parent, stranger, Action.READ)

    def test_teacher_reads_local_students(self):
        teacher = _user(Role.TEACHER)
        assert can_access(teacher, _user(Role.STUDENT, id="s1"), Action.READ)
        assert not can_access(teacher, _user(Role.PARENT, id="p1"), Action.READ)
        assert not can_access(teacher, _user(Role.STUDENT, id="s2", location_id=AWAY), Action.READ)

    def test_managers_manage_local_users(self):
        manager = _user(Role.LOCATION_MANAGER)
        assert can_access(manager, _user(Role.PARENT, id="p1"), Action.UPDATE)
        assert not can_access(manager, _user(Role.PARENT, id="p2", location_id=AWAY), Action.UPDATE)
