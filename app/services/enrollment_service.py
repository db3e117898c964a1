"""Enrollment reads, edits, cancellation and deletion."""

from datetime import datetime
from typing import Dict, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from app.models.enrollment import (
    Enrollment,
    PaymentMethodType,
    PaymentStatus,
)
from app.models.user import Role, User
from app.services.capacity_service import CapacityService
from app.services.enrollment_orchestrator import release_seats
from app.services.payment_gateway import PaymentGateway, get_gateway
from app.services.policy import Action, can_access, ensure_access
from app.services.progress_service import ProgressService
from core.db.session import transaction
from core.exceptions.base import BadRequestException, NotFoundException
from core.logging import get_logger

logger = get_logger(__name__)

# Statuses an admin may set by hand; cancellation has its own operation
EDITABLE_STATUSES = (
    PaymentStatus.PENDING,
    PaymentStatus.ACTIVE,
    PaymentStatus.COMPLETED,
    PaymentStatus.FAILED,
    PaymentStatus.REFUNDED,
    PaymentStatus.SUSPENDED,
)

# A subscription in these states may still bill at the provider, or start to
# once the payer approves it
LIVE_SUBSCRIPTION_STATUSES = (
    PaymentStatus.PENDING,
    PaymentStatus.ACTIVE,
    PaymentStatus.SUSPENDED,
    PaymentStatus.FAILED,
)


class EnrollmentService:
    def __init__(
        self,
        db_session: AsyncSession,
        gateways: Dict[PaymentMethodType, PaymentGateway],
    ):
        self.db_session = db_session
        self.gateways = gateways
        self.capacity = CapacityService(db_session)

    async def get(self, enrollment_id: str, actor: User) -> Enrollment:
        enrollment = await Enrollment.get_by_id(self.db_session, enrollment_id)
        if enrollment is None:
            raise NotFoundException(message="Enrollment not found")
        ensure_access(actor, enrollment, Action.READ)
        return enrollment

    async def list_for(
        self,
        actor: User,
        payment_status: Optional[PaymentStatus] = None,
        location_id: Optional[str] = None,
    ) -> Sequence[Enrollment]:
        """Enrollments the actor may read, narrowed in the query where the role allows."""
        filters = {"payment_status": payment_status, "location_id": location_id}
        if actor.role == Role.PARENT:
            filters["parent_id"] = actor.id
        elif actor.role == Role.STUDENT:
            filters["student_id"] = actor.id
        elif actor.role != Role.OWNER:
            filters["location_id"] = actor.location_id
        enrollments = await Enrollment.get_filtered(self.db_session, **filters)
        return [e for e in enrollments if can_access(actor, e, Action.READ)]

    async def update(
        self,
        enrollment_id: str,
        actor: User,
        payment_status: Optional[PaymentStatus] = None,
        notes: Optional[str] = None,
        monthly_payment_received: Optional[bool] = None,
        next_payment_due: Optional[datetime] = None,
    ) -> Enrollment:
        enrollment = await self.get(enrollment_id, actor)
        ensure_access(actor, enrollment, Action.UPDATE)

        if payment_status is not None:
            if PaymentStatus(payment_status) not in EDITABLE_STATUSES:
                raise BadRequestException(
                    message="Use cancel-subscription to cancel an enrollment"
                )
            enrollment.payment_status = PaymentStatus(payment_status)
        if notes is not None:
            enrollment.notes = notes
        if monthly_payment_received is not None:
            if not enrollment.is_marathon:
                raise BadRequestException(message="Only Marathon enrollments are billed monthly")
            enrollment.monthly_payment_received = monthly_payment_received
        if next_payment_due is not None:
            if not enrollment.is_marathon:
                raise BadRequestException(message="Only Marathon enrollments are billed monthly")
            enrollment.next_payment_due = next_payment_due

        async with transaction(self.db_session):
            enrollment.validate_payment_terms()
        logger.info(f"Enrollment {enrollment.id} updated by {actor.id}")
        return enrollment

    async def cancel_subscription(self, enrollment_id: str, actor: User) -> Enrollment:
        """
        Stop a Marathon enrollment's billing at the provider, then mark it cancelled
        and free its seats. Cancelling twice is a no-op.
        """
        enrollment = await self.get(enrollment_id, actor)
        ensure_access(actor, enrollment, Action.UPDATE)
        if not enrollment.is_marathon:
            raise BadRequestException(message="Only Marathon enrollments have a subscription")
        if enrollment.payment_status == PaymentStatus.CANCELLED:
            return enrollment

        await self._stop_billing(enrollment)
        async with transaction(self.db_session):
            enrollment.payment_status = PaymentStatus.CANCELLED
            await release_seats(self.capacity, enrollment)
        logger.info(f"Subscription of enrollment {enrollment.id} cancelled by {actor.id}")
        return enrollment

    async def delete(self, enrollment_id: str, actor: User) -> None:
        """Remove an enrollment with its progress rows, releasing any seats it holds."""
        enrollment = await self.get(enrollment_id, actor)
        ensure_access(actor, enrollment, Action.DELETE)

        if enrollment.is_marathon and enrollment.payment_status != PaymentStatus.CANCELLED:
            await self._stop_billing(enrollment)

        async with transaction(self.db_session):
            if enrollment.payment_status != PaymentStatus.CANCELLED:
                await release_seats(self.capacity, enrollment)
            await ProgressService(self.db_session).delete_for_enrollment(enrollment.id)
            await self.db_session.delete(enrollment)
        logger.info(f"Enrollment {enrollment_id} deleted by {actor.id}")

    async def _stop_billing(self, enrollment: Enrollment) -> None:
        if (
            enrollment.subscription_id
            and enrollment.payment_status in LIVE_SUBSCRIPTION_STATUSES
        ):
            gateway = get_gateway(self.gateways, enrollment.payment_method)
            await gateway.cancel_subscription(enrollment.subscription_id)
