import html
import logging
import smtplib
from abc import ABC, abstractmethod
from dataclasses import dataclass
from email import encoders
from email.mime.base import MIMEBase
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from email.utils import formatdate
from typing import Any, Dict, Sequence

from portal.core.config.settings import Settings, get_settings

logger = logging.getLogger(__name__)


@dataclass
class EmailAttachment:
    filename: str
    content: bytes
    media_type: str


class Notifier(ABC):
    """
    Outbound messages to students and supervisors.

    Every ``send_*`` method returns True when the message was handed to the
    transport and False otherwise; transport errors are logged, not raised.
    """

    def __init__(self, settings: Settings = None):
        self.settings = settings or get_settings()

    @abstractmethod
    def _deliver(
        self, to_email: str, subject: str, html_content: str, attachments: Sequence[EmailAttachment] = ()
    ) -> bool:
        """Hand one message to the transport"""

    def _send(
        self, to_email: str, subject: str, html_content: str, attachments: Sequence[EmailAttachment] = ()
    ) -> bool:
        try:
            return self._deliver(to_email, subject, html_content, attachments)
        except Exception as e:
            logger.error(f"Failed to send email to {to_email}: {str(e)}", exc_info=True)
            return False

    def send_marks(self, to_email: str, payload: Dict[str, Any], attachment: EmailAttachment) -> bool:
        subject = f"Student Marks Export: {payload.get('assignment_title', '')}"
        return self._send(to_email, subject, create_marks_email(payload), [attachment])

    def send_invitation(self, to_email: str, student_name: str, payload: Dict[str, Any]) -> bool:
        subject = f"New Assignment: {payload.get('assignment_title', '')}"
        return self._send(to_email, subject, create_invitation_email(student_name, payload, self.settings.APP_URL))

    def send_removal(self, to_email: str, student_name: str, payload: Dict[str, Any]) -> bool:
        subject = f"Assignment Update: Removed from {payload.get('assignment_title', '')}"
        return self._send(to_email, subject, create_removal_email(student_name, payload))

    def send_status_change(self, to_email: str, student_name: str, payload: Dict[str, Any]) -> bool:
        state = "Activated" if payload.get("is_active") else "Deactivated"
        subject = f"Assignment {state}: {payload.get('assignment_title', '')}"
        return self._send(to_email, subject, create_status_change_email(student_name, payload, self.settings.APP_URL))

    def send_grade(self, to_email: str, student_name: str, payload: Dict[str, Any]) -> bool:
        subject = f"Assignment Graded: {payload.get('assignment_title', '')}"
        return self._send(to_email, subject, create_grade_email(student_name, payload, self.settings.APP_URL))


class SmtpNotifier(Notifier):
    def _deliver(self, to_email, subject, html_content, attachments=()) -> bool:
        settings = self.settings
        msg = MIMEMultipart()
        msg['From'] = settings.DEFAULT_FROM_EMAIL
        msg['To'] = to_email
        msg['Subject'] = subject
        msg['Date'] = formatdate(localtime=True)

        # Attach HTML content
        msg.attach(MIMEText(html_content, 'html'))
        for attachment in attachments:
            maintype, subtype = attachment.media_type.split("/", 1)
            part = MIMEBase(maintype, subtype)
            part.set_payload(attachment.content)
            encoders.encode_base64(part)
            part.add_header("Content-Disposition", "attachment", filename=attachment.filename)
            msg.attach(part)

        with smtplib.SMTP(settings.EMAIL_HOST, settings.EMAIL_PORT, timeout=settings.EMAIL_TIMEOUT) as server:
            if settings.EMAIL_USE_TLS:
                server.starttls()
            if settings.EMAIL_HOST_USER:
                server.login(settings.EMAIL_HOST_USER, settings.EMAIL_HOST_PASSWORD)
            server.sendmail(settings.EMAIL_HOST_USER or settings.DEFAULT_FROM_EMAIL, to_email, msg.as_string())

        logger.info(f"Email sent to {to_email}: {subject}")
        return True


class LoggingNotifier(Notifier):
    """Used when no SMTP host is configured"""

    def _deliver(self, to_email, subject, html_content, attachments=()) -> bool:
        names = ", ".join(a.filename for a in attachments)
        logger.info(f"Email delivery disabled, would send to {to_email}: {subject}" + (f" [{names}]" if names else ""))
        return True


def build_notifier(settings: Settings = None) -> Notifier:
    settings = settings or get_settings()
    if settings.EMAIL_HOST:
        return SmtpNotifier(settings)
    return LoggingNotifier(settings)


def _page(title: str, header_color: str, body: str) -> str:
    return f"""
    <!DOCTYPE html>
    <html>
    <head>
        <meta charset="UTF-8">
        <title>{title}</title>
        <style>
            body {{ font-family: Arial, sans-serif; line-height: 1.6; color: #333; }}
            .container {{ max-width: 600px; margin: 0 auto; padding: 20px; }}
            .header {{ background-color: {header_color}; color: white; padding: 10px; text-align: center; }}
            .content {{ padding: 20px; background-color: #f9f9f9; }}
            .details {{ padding: 15px; background-color: #e9e9e9; margin: 20px 0; }}
            .button {{ display: inline-block; padding: 10px 20px; background-color: #1f2e6a; color: white; text-decoration: none; }}
            .footer {{ font-size: 12px; text-align: center; margin-top: 20px; color: #1f2e6a; }}
        </style>
    </head>
    <body>
        <div class="container">
            <div class="header">
                <h2>{title}</h2>
            </div>
            <div class="content">
                {body}
            </div>
            <div class="footer">
                <p>This is an automated message, please do not reply directly to this email.</p>
            </div>
        </div>
    </body>
    </html>
    """


def create_invitation_email(student_name: str, payload: Dict[str, Any], app_url: str) -> str:
    custom = payload.get("custom_message")
    custom_block = f"<p><strong>Message from your supervisor:</strong><br>{html.escape(custom)}</p>" if custom else ""
    body = f"""
                <p>Hello {html.escape(student_name)},</p>
                <p>{html.escape(payload.get('supervisor_name', 'Your supervisor'))} has invited you to a new assignment.</p>
                <div class="details">
                    <p><strong>{html.escape(payload.get('assignment_title', ''))}</strong></p>
                    <p>{html.escape(payload.get('assignment_description', ''))}</p>
                    <p>Due: {payload.get('due_date', '')}</p>
                    <p>Maximum score: {payload.get('max_score', '')}</p>
                </div>
                {custom_block}
                <p><a class="button" href="{app_url}/assignments">View Assignment</a></p>
    """
    return _page("New Assignment", "#4CAF50", body)


def create_removal_email(student_name: str, payload: Dict[str, Any]) -> str:
    reason = payload.get("reason")
    reason_block = f"<p><strong>Reason:</strong> {html.escape(reason)}</p>" if reason else ""
    body = f"""
                <p>Hello {html.escape(student_name)},</p>
                <p>You have been removed from the assignment
                <strong>{html.escape(payload.get('assignment_title', ''))}</strong>
                by {html.escape(payload.get('supervisor_name', 'your supervisor'))}.</p>
                {reason_block}
                <p>You no longer need to submit work for this assignment.</p>
    """
    return _page("Assignment Removal", "#E53935", body)


def create_status_change_email(student_name: str, payload: Dict[str, Any], app_url: str) -> str:
    if payload.get("is_active"):
        title, color = "Assignment Activated", "#4CAF50"
        detail = "The assignment is open again and accepts submissions."
    else:
        title, color = "Assignment Deactivated", "#FB8C00"
        detail = "The assignment has been deactivated and no longer accepts submissions."
    body = f"""
                <p>Hello {html.escape(student_name)},</p>
                <p><strong>{html.escape(payload.get('assignment_title', ''))}</strong>: {detail}</p>
                <p>Due: {payload.get('due_date', '')}</p>
                <p><a class="button" href="{app_url}/assignments">View Assignments</a></p>
    """
    return _page(title, color, body)


def create_grade_email(student_name: str, payload: Dict[str, Any], app_url: str) -> str:
    status = str(payload.get("status", "")).replace("_", " ").title()
    body = f"""
                <p>Hello {html.escape(student_name)},</p>
                <p>Your submission for <strong>{html.escape(payload.get('assignment_title', ''))}</strong> has been graded.</p>
                <div class="details">
                    <p>Score: {payload.get('score')} / {payload.get('max_score')}</p>
                    <p>Status: {status}</p>
                    <p>Feedback: {html.escape(payload.get('feedback', ''))}</p>
                </div>
                <p><a class="button" href="{app_url}/assignments">View Submission</a></p>
    """
    return _page("Assignment Graded", "#1f2e6a", body)


def create_marks_email(payload: Dict[str, Any]) -> str:
    body = f"""
                <p>Hello,</p>
                <p>The marks export for <strong>{html.escape(payload.get('assignment_title', ''))}</strong> is attached.</p>
                <div class="details">
                    <p>Requested by: {html.escape(payload.get('supervisor_name', ''))}</p>
                    <p>File: {html.escape(payload.get('filename', ''))} ({str(payload.get('file_format', '')).upper()})</p>
                    <p>Students: {payload.get('student_count', 0)}</p>
                    <p>Columns: {payload.get('column_count', 0)}</p>
                </div>
    """
    return _page("Student Marks Export", "#009688", body)
