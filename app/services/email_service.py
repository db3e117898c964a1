"""Email service for sending transactional emails."""

import logging
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

from jinja2 import Environment, FileSystemLoader, select_autoescape
from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Mail

from core.config import config

logger = logging.getLogger(__name__)

TEMPLATE_DIR = Path(__file__).resolve().parent.parent / "templates" / "email"

# Initialize Jinja2 template environment
template_env = Environment(
    loader=FileSystemLoader(str(TEMPLATE_DIR)),
    autoescape=select_autoescape(["html", "xml"]),
)

OVERDUE_SUBJECT = "Payment Overdue - Action Required"
OVERDUE_FINAL_SUBJECT = "FINAL NOTICE: Overdue Payment - Enrollment Suspended"
OWNER_SUMMARY_SUBJECT = "Overdue Payment Summary"
OWNER_SUMMARY_FINAL_SUBJECT = "FINAL NOTICE Summary: Suspended Enrollments"
REMINDER_SUBJECT = "Payment Reminder: Next Month's Tuition"
REMINDER_SECOND_SUBJECT = "Final Reminder: Upcoming Payment Due"


def _money(amount: Optional[Decimal]) -> str:
    return f"${(amount or Decimal('0')):.2f}"


def _day(value: Optional[date]) -> str:
    if value is None:
        return "-"
    if isinstance(value, datetime):
        value = value.date()
    return value.strftime("%B %d, %Y")


class EmailService:
    """Service for sending transactional emails using SendGrid."""

    def __init__(self):
        """Initialize email service."""
        self.client = SendGridAPIClient(config.SENDGRID_API_KEY) if config.SENDGRID_API_KEY else None
        self.from_email = config.SENDGRID_FROM_EMAIL

    def _render_template(self, template_name: str, context: Dict[str, Any]) -> str:
        """Render email template with context."""
        template = template_env.get_template(template_name)
        return template.render(
            business_name=config.BUSINESS_NAME,
            frontend_url=config.FRONTEND_URL,
            **context,
        )

    def _send_email(
        self,
        to_email: str,
        subject: str,
        html_content: str,
        cc_emails: Optional[list[str]] = None,
        bcc_emails: Optional[list[str]] = None,
    ) -> bool:
        """Send email using SendGrid."""
        if not self.client:
            logger.warning(
                f"SendGrid not configured. Would send email to {to_email} with subject: {subject}"
            )
            return False

        try:
            message = Mail(
                from_email=self.from_email,
                to_emails=to_email,
                subject=subject,
                html_content=html_content,
            )

            if cc_emails:
                message.cc = cc_emails
            if bcc_emails:
                message.bcc = bcc_emails

            response = self.client.send(message)
            logger.info(f"Email sent to {to_email}: {subject} (Status: {response.status_code})")
            return response.status_code in [200, 201, 202]

        except Exception as e:
            logger.error(f"Failed to send email to {to_email}: {str(e)}")
            return False

    def send_registration_confirmation(
        self,
        to_email: str,
        parent_name: str,
        student_name: str,
        program_name: str,
        registration_id: str,
        first_payment_amount: Decimal,
        total_amount_due: Decimal,
    ) -> bool:
        """Send the link a family uses to finish creating their portal account."""
        context = {
            "parent_name": parent_name,
            "student_name": student_name,
            "program_name": program_name,
            "registration_id": registration_id,
            "first_payment_amount": _money(first_payment_amount),
            "total_amount_due": _money(total_amount_due),
            "finalize_url": f"{config.FRONTEND_URL}/portal-entry/{registration_id}",
        }
        html_content = self._render_template("registration_confirmation.html", context)
        return self._send_email(
            to_email=to_email,
            subject=f"{config.BUSINESS_NAME} - Registration Confirmation",
            html_content=html_content,
        )

    def send_portal_account_created(
        self,
        to_email: str,
        parent_name: str,
        student_name: str,
        student_username: str,
        student_email: str,
    ) -> bool:
        context = {
            "parent_name": parent_name,
            "student_name": student_name,
            "student_username": student_username,
            "student_email": student_email,
        }
        html_content = self._render_template("portal_account_created.html", context)
        return self._send_email(
            to_email=to_email,
            subject=f"{config.BUSINESS_NAME} - Portal Account Created Successfully",
            html_content=html_content,
        )

    def send_enrollment_confirmation(
        self,
        to_email: str,
        parent_name: str,
        student_name: str,
        program_name: str,
        is_marathon: bool,
        total_amount: Decimal,
        monthly_amount: Optional[Decimal] = None,
        next_payment_due: Optional[date] = None,
        approval_url: Optional[str] = None,
    ) -> bool:
        """Send enrollment confirmation email.

        Args:
            to_email: Recipient email address
            parent_name: Parent's name
            student_name: Student's name
            program_name: Program name
            is_marathon: Monthly billing instead of a single payment
            total_amount: Amount of the first (or only) payment
            monthly_amount: Recurring monthly amount, Marathon only
            next_payment_due: First recurring billing date, Marathon only
            approval_url: Where the payer still has to approve the payment, if anywhere
        """
        context = {
            "parent_name": parent_name,
            "student_name": student_name,
            "program_name": program_name,
            "is_marathon": is_marathon,
            "total_amount": _money(total_amount),
            "monthly_amount": _money(monthly_amount),
            "next_payment_due": _day(next_payment_due),
            "approval_url": approval_url,
        }
        html_content = self._render_template("enrollment_confirmation.html", context)
        return self._send_email(
            to_email=to_email,
            subject=f"Enrollment Confirmed: {student_name} - {program_name}",
            html_content=html_content,
        )

    def send_overdue_notice(
        self,
        to_email: str,
        parent_name: str,
        student_name: str,
        program_name: str,
        monthly_amount: Optional[Decimal],
        due_date: Optional[date],
        enrollment_id: str,
        is_final_notice: bool = False,
    ) -> bool:
        """Tell a parent their monthly payment is late; the final notice also says suspended."""
        context = {
            "parent_name": parent_name,
            "student_name": student_name,
            "program_name": program_name,
            "monthly_amount": _money(monthly_amount),
            "due_date": _day(due_date),
            "is_final_notice": is_final_notice,
            "payment_url": f"{config.FRONTEND_URL}/dashboard/enrollments/{enrollment_id}",
        }
        html_content = self._render_template("overdue_payment.html", context)
        return self._send_email(
            to_email=to_email,
            subject=OVERDUE_FINAL_SUBJECT if is_final_notice else OVERDUE_SUBJECT,
            html_content=html_content,
        )

    def send_owner_overdue_summary(
        self,
        to_email: str,
        rows: List[Dict[str, Any]],
        total_amount: Decimal,
        is_final_notice: bool = False,
    ) -> bool:
        context = {
            "rows": [
                {
                    **row,
                    "monthly_amount": _money(row.get("monthly_amount")),
                    "due_date": _day(row.get("due_date")),
                }
                for row in rows
            ],
            "count": len(rows),
            "total_amount": _money(total_amount),
            "is_final_notice": is_final_notice,
        }
        html_content = self._render_template("owner_overdue_summary.html", context)
        return self._send_email(
            to_email=to_email,
            subject=OWNER_SUMMARY_FINAL_SUBJECT if is_final_notice else OWNER_SUMMARY_SUBJECT,
            html_content=html_content,
        )

    def send_payment_reminder(
        self,
        to_email: str,
        parent_name: str,
        student_name: str,
        program_name: str,
        monthly_amount: Optional[Decimal],
        due_date: date,
        has_auto_pay: bool,
        enrollment_id: str,
        is_second_reminder: bool = False,
    ) -> bool:
        """Remind a parent about next month's tuition; wording depends on auto-pay."""
        context = {
            "parent_name": parent_name,
            "student_name": student_name,
            "program_name": program_name,
            "monthly_amount": _money(monthly_amount),
            "due_date": _day(due_date),
            "has_auto_pay": has_auto_pay,
            "is_second_reminder": is_second_reminder,
            "payment_url": f"{config.FRONTEND_URL}/dashboard/enrollments/{enrollment_id}",
        }
        html_content = self._render_template("payment_reminder.html", context)
        return self._send_email(
            to_email=to_email,
            subject=REMINDER_SECOND_SUBJECT if is_second_reminder else REMINDER_SUBJECT,
            html_content=html_content,
        )

    def send_demo_registration_confirmation(
        self,
        to_email: str,
        parent_name: str,
        student_name: str,
        demo_class_date: date,
        location_name: str,
        registration_id: str,
    ) -> bool:
        context = {
            "parent_name": parent_name,
            "student_name": student_name,
            "demo_class_date": _day(demo_class_date),
            "location_name": location_name,
            "registration_id": registration_id,
        }
        html_content = self._render_template("demo_registration_confirmation.html", context)
        return self._send_email(
            to_email=to_email,
            subject=f"{config.BUSINESS_NAME} - Demo Class Registration Confirmation",
            html_content=html_content,
        )

    def send_password_reset(
        self,
        to_email: str,
        user_name: str,
        code: str,
        expires_in_hours: int,
    ) -> bool:
        """Send the six digit reset code; the link pre-fills it on the frontend."""
        query = urlencode({"email": to_email, "code": code})
        context = {
            "user_name": user_name,
            "code": code,
            "expires_in_hours": expires_in_hours,
            "reset_url": f"{config.FRONTEND_URL}/reset-password?{query}",
        }
        html_content = self._render_template("password_reset.html", context)
        return self._send_email(
            to_email=to_email,
            subject=f"{config.BUSINESS_NAME} - Password Reset Code",
            html_content=html_content,
        )


# Global instance
email_service = EmailService()
