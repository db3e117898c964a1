"""Role and location based access rules, one per resource type."""

import enum
from functools import singledispatch
from typing import Any, Optional

from app.models.class_session import ClassSession
from app.models.demo_registration import DemoRegistration
from app.models.discount import DiscountCode
from app.models.enrollment import Enrollment
from app.models.location import Location
from app.models.program import Offering, Plan, Program
from app.models.registration import Registration
from app.models.schedule import Schedule
from app.models.user import Role, User
from core.exceptions.base import ForbiddenException

MANAGER_ROLES = (Role.ADMIN, Role.LOCATION_MANAGER)


class Action(str, enum.Enum):
    READ = "read"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    BOOK = "book"  # reserve or release a seat
    PAY = "pay"


def _same_location(user: User, location_id: Optional[str]) -> bool:
    return user.location_id is not None and user.location_id == location_id


def _manages(user: User, location_id: Optional[str]) -> bool:
    return user.role in MANAGER_ROLES and _same_location(user, location_id)


def can_manage_schedules(user: User, location_id: Optional[str]) -> bool:
    """Owners manage every location; admins and location managers only their own."""
    if user.role == Role.OWNER:
        return True
    return _manages(user, location_id)


def can_access(user: Optional[User], resource: Any, action: Action = Action.READ) -> bool:
    """
    Decide whether ``user`` may perform ``action`` on ``resource``.

    Owners may do anything. Inactive or anonymous users may do nothing. The
    remaining decisions belong to the rule registered for the resource type;
    types without a rule are denied.
    """
    if user is None or not user.is_active:
        return False
    if user.role == Role.OWNER:
        return True
    return _rule(resource, user, Action(action))


def ensure_access(user: Optional[User], resource: Any, action: Action = Action.READ) -> None:
    if not can_access(user, resource, action):
        raise ForbiddenException(
            message=f"Not allowed to {Action(action).value} this {type(resource).__name__}"
        )


@singledispatch
def _rule(resource: Any, user: User, action: Action) -> bool:
    return False


@_rule.register
def _(resource: Location, user: User, action: Action) -> bool:
    if action == Action.READ:
        return True
    if action == Action.UPDATE:
        return _manages(user, resource.id)
    return False


@_rule.register
def _(resource: ClassSession, user: User, action: Action) -> bool:
    if action == Action.READ:
        if user.role in (Role.PARENT, Role.STUDENT) or resource.location_id is None:
            return True
        return _same_location(user, resource.location_id)
    return _manages(user, resource.location_id)


@_rule.register
def _(resource: Schedule, user: User, action: Action) -> bool:
    if action == Action.READ:
        if user.role in (Role.PARENT, Role.STUDENT):
            return True
        return _same_location(user, resource.location_id)
    return can_manage_schedules(user, resource.location_id)


@_rule.register
def _(resource: Enrollment, user: User, action: Action) -> bool:
    if user.role == Role.PARENT:
        if action in (Action.READ, Action.CREATE, Action.PAY):
            return resource.parent_id == user.id
        return False
    if user.role == Role.STUDENT:
        return action == Action.READ and resource.student_id == user.id
    if user.role == Role.TEACHER:
        return action == Action.READ and _same_location(user, resource.location_id)
    if user.role == Role.LOCATION_MANAGER:
        return action == Action.READ and _same_location(user, resource.location_id)
    if user.role == Role.ADMIN:
        return _same_location(user, resource.location_id)
    return False


@_rule.register
def _(resource: DiscountCode, user: User, action: Action) -> bool:
    if action == Action.READ and user.role == Role.TEACHER:
        return _same_location(user, resource.location_id)
    # codes without a location are global and stay with the owner
    return resource.location_id is not None and _manages(user, resource.location_id)


@_rule.register
def _(resource: Registration, user: User, action: Action) -> bool:
    if action == Action.READ:
        return user.role in MANAGER_ROLES + (Role.TEACHER,) and _same_location(
            user, resource.location_id
        )
    if action == Action.DELETE:
        return user.role == Role.ADMIN and _same_location(user, resource.location_id)
    return False


@_rule.register
def _(resource: DemoRegistration, user: User, action: Action) -> bool:
    if action == Action.READ:
        return user.role in MANAGER_ROLES + (Role.TEACHER,) and _same_location(
            user, resource.location_id
        )
    return _manages(user, resource.location_id)


@_rule.register(Program)
@_rule.register(Offering)
@_rule.register(Plan)
def _(resource, user: User, action: Action) -> bool:
    if action == Action.READ:
        return True
    return user.role == Role.ADMIN


@_rule.register
def _(resource: User, user: User, action: Action) -> bool:
    if resource.id == user.id:
        return action == Action.READ
    if user.role == Role.PARENT:
        return action == Action.READ and resource.parent_id == user.id
    if user.role == Role.TEACHER:
        return (
            action == Action.READ
            and resource.role == Role.STUDENT
            and _same_location(user, resource.location_id)
        )
    return user.role in MANAGER_ROLES and _same_location(user, resource.location_id)
