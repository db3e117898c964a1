from app.models.capacity import CapacityMixin, SeatPool
from app.models.class_session import ClassSession, SessionType, Weekday
from app.models.demo_registration import DemoRegistration, DemoStatus
from app.models.discount import DiscountCode, DiscountUsage
from app.models.enrollment import (
    Enrollment,
    PaymentHistoryEntry,
    PaymentHistoryStatus,
    PaymentMethodType,
    PaymentProcessor,
    PaymentStatus,
    enrollment_class_sessions,
)
from app.models.job_lock import JobLock
from app.models.location import Location, LocationOffering, LocationPriceOverride
from app.models.password_reset import PasswordReset
from app.models.payment import PaymentMethod
from app.models.program import Module, Offering, OfferingType, Plan, Program, Topic
from app.models.progress import CompletedTopic, ModuleProgress, ProgramProgress
from app.models.registration import Registration
from app.models.schedule import Schedule
from app.models.user import Role, User

__all__ = [
    "CapacityMixin",
    "SeatPool",
    "ClassSession",
    "SessionType",
    "Weekday",
    "DiscountCode",
    "DiscountUsage",
    "Enrollment",
    "PaymentHistoryEntry",
    "PaymentHistoryStatus",
    "PaymentMethodType",
    "PaymentProcessor",
    "PaymentStatus",
    "enrollment_class_sessions",
    "DemoRegistration",
    "DemoStatus",
    "JobLock",
    "Location",
    "LocationOffering",
    "LocationPriceOverride",
    "PasswordReset",
    "PaymentMethod",
    "Module",
    "Offering",
    "OfferingType",
    "Plan",
    "Program",
    "Topic",
    "CompletedTopic",
    "ModuleProgress",
    "ProgramProgress",
    "Registration",
    "Schedule",
    "User",
    "Role",
]
