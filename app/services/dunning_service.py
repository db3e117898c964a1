"""Overdue checks and payment reminders for Marathon enrollments."""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.models.enrollment import Enrollment, PaymentStatus
from app.models.user import User
from app.services.email_service import EmailService, email_service
from app.utils.dates import add_months, at_midnight_utc, first_of_next_month, utcnow
from core.logging import get_logger

logger = get_logger(__name__)


@dataclass
class DunningReport:
    job: str
    matched: int = 0
    notified: int = 0
    suspended: int = 0
    owner_summaries: int = 0
    failed: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class DunningService:
    """
    Read-then-notify runs over Marathon enrollments.

    A failure on one enrollment is logged and recorded in the report; the run
    carries on with the rest.
    """

    def __init__(self, db_session: AsyncSession, mailer: Optional[EmailService] = None):
        self.db_session = db_session
        self.mailer = mailer or email_service

    async def run_overdue_check(
        self, is_final: bool = False, now: Optional[datetime] = None
    ) -> DunningReport:
        """
        Notify parents of overdue monthly payments. The final run also suspends
        each matched enrollment. Owners get a summary of the run.
        """
        now = now or utcnow()
        report = DunningReport(job="overdue-check-final" if is_final else "overdue-check-first")
        enrollments = await Enrollment.get_overdue(self.db_session, now)
        report.matched = len(enrollments)
        logger.info(f"{report.job}: {report.matched} overdue enrollment(s)")

        rows = []
        for enrollment in enrollments:
            try:
                parent = self._payer(enrollment)
                sent = self.mailer.send_overdue_notice(
                    to_email=parent.email,
                    parent_name=parent.full_name,
                    student_name=enrollment.student.full_name,
                    program_name=enrollment.program.name,
                    monthly_amount=enrollment.monthly_amount,
                    due_date=enrollment.next_payment_due,
                    enrollment_id=enrollment.id,
                    is_final_notice=is_final,
                )
                if sent:
                    report.notified += 1
                if is_final:
                    enrollment.payment_status = PaymentStatus.SUSPENDED
                    report.suspended += 1
                rows.append(
                    {
                        "parent_name": parent.full_name,
                        "parent_email": parent.email,
                        "student_name": enrollment.student.full_name,
                        "program_name": enrollment.program.name,
                        "monthly_amount": enrollment.monthly_amount,
                        "due_date": enrollment.next_payment_due,
                    }
                )
            except Exception as e:
                logger.error(f"{report.job}: enrollment {enrollment.id} failed - {e}")
                report.failed.append(enrollment.id)

        if is_final:
            await self.db_session.commit()

        if rows:
            total = sum((row["monthly_amount"] or Decimal("0") for row in rows), Decimal("0"))
            for owner in await User.get_owners(self.db_session):
                if self.mailer.send_owner_overdue_summary(
                    to_email=owner.email,
                    rows=rows,
                    total_amount=total,
                    is_final_notice=is_final,
                ):
                    report.owner_summaries += 1

        logger.info(
            f"{report.job}: notified {report.notified}, suspended {report.suspended}, "
            f"failed {len(report.failed)}"
        )
        return report

    async def run_payment_reminder(
        self, is_second: bool = False, now: Optional[datetime] = None
    ) -> DunningReport:
        """Remind parents of next month's tuition unless it is already paid."""
        now = now or utcnow()
        report = DunningReport(
            job="payment-reminder-final" if is_second else "payment-reminder-first"
        )
        period_start = first_of_next_month(now.date())
        period_end = add_months(period_start, 1)
        enrollments = await Enrollment.get_unpaid_for_period(
            self.db_session, at_midnight_utc(period_start), at_midnight_utc(period_end)
        )
        report.matched = len(enrollments)
        logger.info(f"{report.job}: {report.matched} enrollment(s) due on {period_start}")

        for enrollment in enrollments:
            try:
                parent = self._payer(enrollment)
                if self.mailer.send_payment_reminder(
                    to_email=parent.email,
                    parent_name=parent.full_name,
                    student_name=enrollment.student.full_name,
                    program_name=enrollment.program.name,
                    monthly_amount=enrollment.monthly_amount,
                    due_date=period_start,
                    has_auto_pay=enrollment.has_auto_pay,
                    enrollment_id=enrollment.id,
                    is_second_reminder=is_second,
                ):
                    report.notified += 1
            except Exception as e:
                logger.error(f"{report.job}: enrollment {enrollment.id} failed - {e}")
                report.failed.append(enrollment.id)

        logger.info(f"{report.job}: notified {report.notified}, failed {len(report.failed)}")
        return report

    @staticmethod
    def _payer(enrollment: Enrollment) -> User:
        return enrollment.parent or enrollment.student
