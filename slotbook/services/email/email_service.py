# ===== slotbook/services/email/email_service.py =====
import smtplib
from datetime import datetime
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from html import escape
from typing import Any, Dict, List, Optional, Tuple
from zoneinfo import ZoneInfo
import logging

from slotbook.config.settings import settings

logger = logging.getLogger(__name__)

INVITEE = "invitee"
TEAM_MEMBER = "team_member"


class EmailService:
    """Service for sending emails via SMTP"""

    @staticmethod
    def _get_smtp_connection():
        """Create and return SMTP connection"""
        try:
            if settings.EMAIL_USE_TLS:
                server = smtplib.SMTP(settings.EMAIL_HOST, settings.EMAIL_PORT)
                server.starttls()
            else:
                server = smtplib.SMTP_SSL(settings.EMAIL_HOST, settings.EMAIL_PORT)

            if settings.EMAIL_USERNAME and settings.EMAIL_PASSWORD:
                server.login(settings.EMAIL_USERNAME, settings.EMAIL_PASSWORD)

            return server
        except Exception as e:
            logger.error(f"Failed to connect to SMTP server: {e}")
            raise

    @staticmethod
    def send_email(
            to_email: str,
            subject: str,
            html_content: str,
            plain_text: Optional[str] = None,
            cc: Optional[List[str]] = None,
    ) -> bool:
        """
        Send an email using SMTP

        Args:
            to_email: Recipient email address
            subject: Email subject
            html_content: HTML content of the email
            plain_text: Plain text version (fallback for non-HTML clients)
            cc: List of CC email addresses

        Returns:
            bool: True if email sent successfully; raises otherwise so the task can retry
        """
        try:
            msg = MIMEMultipart('alternative')
            msg['Subject'] = subject
            msg['From'] = f"{settings.EMAIL_FROM_NAME} <{settings.EMAIL_FROM_ADDRESS}>"
            msg['To'] = to_email

            if cc:
                msg['Cc'] = ', '.join(cc)

            if plain_text:
                msg.attach(MIMEText(plain_text, 'plain'))
            msg.attach(MIMEText(html_content, 'html'))

            recipients = [to_email] + list(cc or [])

            server = EmailService._get_smtp_connection()
            try:
                server.sendmail(settings.EMAIL_FROM_ADDRESS, recipients, msg.as_string())
            finally:
                server.quit()

            logger.info(f"Email sent successfully to {to_email}")
            return True

        except Exception as e:
            logger.error(f"Failed to send email to {to_email}: {e}")
            raise

    # ------------------------------------------------------------------
    # Booking emails
    # ------------------------------------------------------------------

    @staticmethod
    def format_local_time(value: Any, timezone: str) -> str:
        """'Monday, March 2, 2026 at 10:30 AM EST' in the booking's timezone"""
        if isinstance(value, str):
            value = datetime.fromisoformat(value.replace("Z", "+00:00"))
        try:
            local = value.astimezone(ZoneInfo(timezone))
        except (KeyError, ValueError):
            local = value
        hour = local.strftime("%I").lstrip("0") or "12"
        return f"{local.strftime('%A, %B')} {local.day}, {local.year} at {hour}:{local.strftime('%M %p')} {local.tzname() or ''}".strip()

    @staticmethod
    def _subject(kind: str, role: str, payload: Dict[str, Any]) -> str:
        title = payload["event_type_title"]
        if role == INVITEE:
            other = payload["team_member_name"]
            return {
                "created": f"Confirmed: {title} with {other}",
                "cancelled": f"Cancelled: {title} with {other}",
                "rescheduled": f"Rescheduled: {title} with {other}",
                "reminder": f"Reminder: {title} with {other} is coming up",
            }[kind]
        other = payload["invitee_name"]
        return {
            "created": f"New booking: {title} with {other}",
            "cancelled": f"Booking cancelled: {title} with {other}",
            "rescheduled": f"Booking rescheduled: {title} with {other}",
            "reminder": f"Upcoming: {title} with {other}",
        }[kind]

    @staticmethod
    def _headline(kind: str) -> str:
        return {
            "created": "Your meeting is confirmed",
            "cancelled": "This meeting has been cancelled",
            "rescheduled": "Your meeting has a new time",
            "reminder": "Your meeting starts soon",
        }[kind]

    @staticmethod
    def render_booking_email(kind: str, role: str, payload: Dict[str, Any]) -> Tuple[str, str, str]:
        """
        Build (subject, plain_text, html) for one recipient of a booking event.

        ``payload`` is a JSON-mode dump of ``BookingEventPayload``.
        """
        timezone = payload["timezone"]
        when = EmailService.format_local_time(payload["start_time"], timezone)
        other_name = payload["team_member_name"] if role == INVITEE else payload["invitee_name"]
        show_manage = role == INVITEE and kind != "cancelled" and payload.get("manage_url")

        lines = [
            EmailService._headline(kind),
            "",
            f"What: {payload['event_type_title']} ({payload['duration_minutes']} min)",
            f"When: {when}",
            f"With: {other_name}",
        ]
        if kind == "rescheduled" and payload.get("previous_start_time"):
            lines.append(f"Previously: {EmailService.format_local_time(payload['previous_start_time'], timezone)}")
        if kind != "cancelled" and payload.get("join_link"):
            lines.append(f"Join: {payload['join_link']}")
            if payload.get("join_phone"):
                pin = f" (PIN {payload['join_pin']})" if payload.get("join_pin") else ""
                lines.append(f"Dial-in: {payload['join_phone']}{pin}")
        if role == TEAM_MEMBER:
            lines.append(f"Invitee email: {payload['invitee_email']}")
            if payload.get("invitee_phone"):
                lines.append(f"Invitee phone: {payload['invitee_phone']}")
        if payload.get("notes"):
            lines.append(f"Notes: {payload['notes']}")
        if show_manage:
            lines.extend([
                "",
                f"Reschedule: {payload['reschedule_url']}",
                f"Cancel: {payload['cancel_url']}",
            ])
        plain_text = "\n".join(lines)

        rows = "".join(
            f'<tr><td style="padding:4px 12px 4px 0;color:#6b7280;">{escape(label)}</td>'
            f'<td style="padding:4px 0;color:#111827;">{escape(str(value))}</td></tr>'
            for label, value in EmailService._detail_rows(kind, role, payload, when, other_name)
        )
        buttons = ""
        if show_manage:
            buttons = f"""
            <p style="margin-top:24px;">
                <a href="{escape(payload['reschedule_url'])}" style="display:inline-block;padding:10px 20px;background:#4f46e5;color:white;border-radius:8px;text-decoration:none;">Reschedule</a>
                <a href="{escape(payload['cancel_url'])}" style="display:inline-block;padding:10px 20px;margin-left:8px;color:#dc2626;border:1px solid #fca5a5;border-radius:8px;text-decoration:none;">Cancel</a>
            </p>"""

        html_content = f"""
        <!DOCTYPE html>
        <html>
        <head>
            <meta charset="UTF-8">
            <meta name="viewport" content="width=device-width, initial-scale=1.0">
        </head>
        <body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px;">
            <div style="background-color: #ffffff; padding: 30px; border: 1px solid #e0e0e0; border-radius: 10px;">
                <h2 style="color: #333; margin-top: 0;">{escape(EmailService._headline(kind))}</h2>
                <table cellpadding="0" cellspacing="0">{rows}</table>
                {buttons}
            </div>
            <p style="text-align: center; font-size: 12px; color: #999;">Sent by {escape(settings.EMAIL_FROM_NAME)}</p>
        </body>
        </html>
        """

        return EmailService._subject(kind, role, payload), plain_text, html_content

    @staticmethod
    def _detail_rows(kind, role, payload, when, other_name):
        rows = [
            ("What", f"{payload['event_type_title']} ({payload['duration_minutes']} min)"),
            ("When", when),
            ("With", other_name),
        ]
        if kind == "rescheduled" and payload.get("previous_start_time"):
            rows.append(("Previously", EmailService.format_local_time(payload["previous_start_time"], payload["timezone"])))
        if kind != "cancelled" and payload.get("join_link"):
            rows.append(("Join", payload["join_link"]))
        if role == TEAM_MEMBER:
            rows.append(("Invitee email", payload["invitee_email"]))
            if payload.get("invitee_phone"):
                rows.append(("Invitee phone", payload["invitee_phone"]))
        if payload.get("notes"):
            rows.append(("Notes", payload["notes"]))
        return rows

    @staticmethod
    def send_booking_email(kind: str, role: str, payload: Dict[str, Any]) -> bool:
        to_email = payload["invitee_email"] if role == INVITEE else payload["team_member_email"]
        subject, plain_text, html_content = EmailService.render_booking_email(kind, role, payload)
        return EmailService.send_email(to_email=to_email, subject=subject, html_content=html_content,
                                       plain_text=plain_text)
