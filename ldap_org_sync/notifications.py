"""
Email notification utilities for LDAP Org Sync.

Directory data-quality problems abort a run and need an operator, so failed
runs can be reported by email. Successful runs can optionally send a summary.
"""

import smtplib
import logging
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from typing import Dict, Any, Optional
from datetime import datetime

logger = logging.getLogger(__name__)


def send_email(subject: str, body: str, config: Dict[str, Any]) -> bool:
    """
    Send email notification using SMTP.

    Args:
        subject: Email subject line
        body: Email body content
        config: Notification configuration dictionary

    Returns:
        True if email sent successfully, False otherwise
    """
    if not config.get('enable_email', False):
        logger.debug("Email notifications disabled")
        return False

    smtp_server = config.get('smtp_server')
    smtp_port = config.get('smtp_port', 587)
    smtp_username = config.get('smtp_username')
    smtp_password = config.get('smtp_password')
    smtp_tls = config.get('smtp_tls', True)

    email_from = config.get('email_from', smtp_username)
    email_to = config.get('email_to', [])

    if not smtp_server:
        logger.error("SMTP server not configured")
        return False

    if not email_to:
        logger.error("No email recipients configured")
        return False

    if isinstance(email_to, str):
        email_to = [email_to]

    msg = MIMEMultipart()
    msg['From'] = email_from
    msg['To'] = ', '.join(email_to)
    msg['Subject'] = subject
    msg.attach(MIMEText(body, 'plain'))

    try:
        logger.debug(f"Sending email to {len(email_to)} recipients via {smtp_server}:{smtp_port}")
        if smtp_port == 465:
            server = smtplib.SMTP_SSL(smtp_server, smtp_port)
        else:
            server = smtplib.SMTP(smtp_server, smtp_port)
            if smtp_tls:
                server.starttls()

        try:
            if smtp_username and smtp_password:
                server.login(smtp_username, smtp_password)
            server.sendmail(email_from, email_to, msg.as_string())
        finally:
            server.quit()

        logger.info(f"Email notification sent successfully: {subject}")
        return True

    except (smtplib.SMTPException, OSError) as e:
        logger.error(f"Failed to send email notification: {e}")
        return False


def send_failure_notification(
    title: str,
    error_message: str,
    config: Dict[str, Any],
    additional_info: Optional[Dict[str, Any]] = None
) -> bool:
    """
    Send notification for a failed sync run.

    Args:
        title: Failure title/type
        error_message: Error description
        config: Notification configuration
        additional_info: Optional additional context

    Returns:
        True if notification sent successfully
    """
    if not config.get('email_on_failure', True):
        logger.debug("Failure email notifications disabled")
        return False

    timestamp = datetime.now().strftime('%Y-%m-%d %H:%M:%S')

    body_lines = [
        "LDAP Org Sync Failure Report",
        f"Timestamp: {timestamp}",
        "",
        f"Failure Type: {title}",
        f"Error Message: {error_message}",
        ""
    ]

    if additional_info:
        body_lines.append("Additional Information:")
        for key, value in additional_info.items():
            body_lines.append(f"  {key}: {value}")
        body_lines.append("")

    body_lines.extend([
        "No entities were published by this run.",
        "Please check the application logs for more detailed information.",
        "",
        "This is an automated message from LDAP Org Sync."
    ])

    return send_email(f"LDAP Org Sync Alert: {title}", '\n'.join(body_lines), config)


def send_success_summary(sync_stats: Dict[str, Any], config: Dict[str, Any]) -> bool:
    """
    Send a summary of a successful sync run.

    Args:
        sync_stats: Run statistics collected by the orchestrator
        config: Notification configuration

    Returns:
        True if notification sent successfully
    """
    if not config.get('email_on_success', False):
        logger.debug("Success email notifications disabled")
        return False

    body_lines = [
        "LDAP Org Sync Summary",
        f"Vendor: {sync_stats.get('vendor', 'unknown')}",
        f"Records processed: {sync_stats.get('records_processed', 0)}",
        f"Users: {sync_stats.get('users', 0)}",
        f"Groups: {sync_stats.get('groups', 0)}",
        f"Runtime: {sync_stats.get('runtime_seconds', 0):.2f} seconds",
        "",
        "This is an automated message from LDAP Org Sync."
    ]

    return send_email("LDAP Org Sync Completed", '\n'.join(body_lines), config)


def test_notification_config(config: Dict[str, Any]) -> bool:
    """
    Send a test email to verify notification configuration.

    Args:
        config: Notification configuration

    Returns:
        True if the test email was sent
    """
    body = '\n'.join([
        "This is a test message from LDAP Org Sync.",
        f"Sent at {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}.",
    ])
    return send_email("LDAP Org Sync Test Notification", body, config)
