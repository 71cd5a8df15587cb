import smtplib
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from typing import Optional
import logging

from config import Config

logger = logging.getLogger(__name__)


def send_email(to_email: str, subject: str, html_body: str):
    """Send one HTML email. Without SMTP credentials the message is only logged."""
    smtp_user, smtp_password = Config.SMTP_USER, Config.SMTP_PASSWORD
    if not smtp_user or not smtp_password:
        logger.info("[EMAIL STUB] To: %s | Subject: %s", to_email, subject)
        logger.debug("[EMAIL STUB] Body: %s...", html_body[:200])
        return

    msg = MIMEMultipart("alternative")
    msg["Subject"] = subject
    msg["From"] = smtp_user
    msg["To"] = to_email
    msg.attach(MIMEText(html_body, "html"))

    try:
        if Config.SMTP_PORT == 465:
            with smtplib.SMTP_SSL(Config.SMTP_HOST, Config.SMTP_PORT) as server:
                server.login(smtp_user, smtp_password)
                server.sendmail(smtp_user, to_email, msg.as_string())
        else:
            with smtplib.SMTP(Config.SMTP_HOST, Config.SMTP_PORT) as server:
                server.starttls()
                server.login(smtp_user, smtp_password)
                server.sendmail(smtp_user, to_email, msg.as_string())
    except (smtplib.SMTPException, OSError):
        logger.exception("[EMAIL ERROR] Failed to send email to %s", to_email)


def send_interview_invite(to_email: str, name: str, organization: Optional[str] = None):
    link = f"{Config.FRONTEND_URL}/login"
    org_line = f" by <strong>{organization}</strong>" if organization else ""
    subject = "SmartInterview - You're invited to interview"
    body = f"""
    <h2>Hi {name},</h2>
    <p>You have been invited{org_line} to complete an AI-assisted video interview.</p>
    <p><a href="{link}" style="background:#2563eb;color:white;padding:12px 24px;border-radius:8px;text-decoration:none;font-weight:bold;">
        Sign in to SmartInterview
    </a></p>
    <p>Sign in with this email address. You'll need a camera, a microphone and a quiet environment.</p>
    <p>Good luck!<br>The SmartInterview Team</p>
    """
    send_email(to_email, subject, body)


def send_interview_assigned(to_email: str, name: str, job_title: str):
    link = f"{Config.FRONTEND_URL}/dashboard"
    subject = f"SmartInterview - New interview: {job_title}"
    body = f"""
    <h2>Hi {name},</h2>
    <p>A new interview for <strong>{job_title}</strong> is waiting for you.</p>
    <p><a href="{link}">Open your dashboard</a> when you're ready to start. Your progress is saved as you go.</p>
    <p>Best regards,<br>The SmartInterview Team</p>
    """
    send_email(to_email, subject, body)


def send_decision_email(
    to_email: str,
    name: str,
    job_title: str,
    score: Optional[float] = None,
    certificate_url: Optional[str] = None,
):
    score_block = f"<p>Your final score: <strong>{round(score)}/100</strong></p>" if score is not None else ""
    certificate_block = (
        f'<p>Your certificate is ready: <a href="{certificate_url}">{certificate_url}</a></p>'
        if certificate_url
        else ""
    )
    subject = f"SmartInterview - Your {job_title} interview has been approved!"
    body = f"""
    <h2>Hi {name},</h2>
    <p>Great news: your interview for the <strong>{job_title}</strong> position has been reviewed and <strong>approved</strong>.</p>
    {score_block}
    {certificate_block}
    <p>Congratulations!<br>The SmartInterview Team</p>
    """
    send_email(to_email, subject, body)
