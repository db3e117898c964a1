"""Celery tasks for transactional email."""

import logging
from datetime import date
from decimal import Decimal
from typing import Optional

from app.services.email_service import email_service
from app.tasks.celery_app import celery_app

logger = logging.getLogger(__name__)


def _retry(task, exc: Exception):
    # Retry up to 3 times with exponential backoff
    return task.retry(exc=exc, countdown=60 * (2 ** task.request.retries), max_retries=3)


@celery_app.task(bind=True, name="send_registration_confirmation_email")
def send_registration_confirmation_email(
    self,
    parent_email: str,
    parent_name: str,
    student_name: str,
    program_name: str,
    registration_id: str,
    first_payment_amount: str,
    total_amount_due: str,
) -> bool:
    """Send the registration confirmation with the portal finalize link."""
    try:
        success = email_service.send_registration_confirmation(
            to_email=parent_email,
            parent_name=parent_name,
            student_name=student_name,
            program_name=program_name,
            registration_id=registration_id,
            first_payment_amount=Decimal(first_payment_amount),
            total_amount_due=Decimal(total_amount_due),
        )
        if success:
            logger.info(f"Registration confirmation sent to {parent_email} ({registration_id})")
        else:
            logger.warning(f"Failed to send registration confirmation to {parent_email}")
        return success

    except Exception as e:
        logger.error(f"Error sending registration confirmation email: {str(e)}")
        raise _retry(self, e)


@celery_app.task(bind=True, name="send_portal_account_email")
def send_portal_account_email(
    self,
    parent_email: str,
    parent_name: str,
    student_name: str,
    student_username: str,
    student_email: str,
) -> bool:
    try:
        success = email_service.send_portal_account_created(
            to_email=parent_email,
            parent_name=parent_name,
            student_name=student_name,
            student_username=student_username,
            student_email=student_email,
        )
        if not success:
            logger.warning(f"Failed to send portal account email to {parent_email}")
        return success

    except Exception as e:
        logger.error(f"Error sending portal account email: {str(e)}")
        raise _retry(self, e)


@celery_app.task(bind=True, name="send_enrollment_confirmation_email")
def send_enrollment_confirmation_email(
    self,
    parent_email: str,
    parent_name: str,
    student_name: str,
    program_name: str,
    is_marathon: bool,
    total_amount: str,
    monthly_amount: Optional[str] = None,
    next_payment_due: Optional[str] = None,
    approval_url: Optional[str] = None,
) -> bool:
    """Send enrollment confirmation email.

    Amounts arrive as strings and dates as ISO strings, since task arguments
    are JSON encoded.
    """
    try:
        success = email_service.send_enrollment_confirmation(
            to_email=parent_email,
            parent_name=parent_name,
            student_name=student_name,
            program_name=program_name,
            is_marathon=is_marathon,
            total_amount=Decimal(total_amount),
            monthly_amount=Decimal(monthly_amount) if monthly_amount else None,
            next_payment_due=date.fromisoformat(next_payment_due[:10]) if next_payment_due else None,
            approval_url=approval_url,
        )
        if success:
            logger.info(f"Enrollment confirmation sent to {parent_email} for {student_name}")
        else:
            logger.warning(f"Failed to send enrollment confirmation to {parent_email}")
        return success

    except Exception as e:
        logger.error(f"Error sending enrollment confirmation email: {str(e)}")
        raise _retry(self, e)


@celery_app.task(bind=True, name="send_demo_registration_email")
def send_demo_registration_email(
    self,
    parent_email: str,
    parent_name: str,
    student_name: str,
    demo_class_date: str,
    location_name: str,
    registration_id: str,
) -> bool:
    """Confirm a demo class booking; the date arrives as an ISO string."""
    try:
        success = email_service.send_demo_registration_confirmation(
            to_email=parent_email,
            parent_name=parent_name,
            student_name=student_name,
            demo_class_date=date.fromisoformat(demo_class_date),
            location_name=location_name,
            registration_id=registration_id,
        )
        if not success:
            logger.warning(f"Failed to send demo registration email to {parent_email}")
        return success

    except Exception as e:
        logger.error(f"Error sending demo registration email: {str(e)}")
        raise _retry(self, e)


@celery_app.task(bind=True, name="send_password_reset_email")
def send_password_reset_email(
    self,
    email: str,
    user_name: str,
    code: str,
    expires_in_hours: int,
) -> bool:
    try:
        success = email_service.send_password_reset(
            to_email=email,
            user_name=user_name,
            code=code,
            expires_in_hours=expires_in_hours,
        )
        if success:
            logger.info(f"Password reset code sent to {email}")
        else:
            logger.warning(f"Failed to send password reset code to {email}")
        return success

    except Exception as e:
        logger.error(f"Error sending password reset email: {str(e)}")
        raise _retry(self, e)
