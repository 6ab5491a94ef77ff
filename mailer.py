"""Plain-text notification email over SMTP."""

import logging
import smtplib
from email.message import EmailMessage
from socket import gaierror, timeout
from typing import Optional

from config_models import EmailConfig

logger = logging.getLogger(__name__)

SMTP_TIMEOUT = 30


class MailerError(Exception):
    """Exception raised for email sending errors."""


def build_message(
    config: EmailConfig,
    subject: str,
    recipient: str,
    body: str,
    cc: Optional[str] = None,
    reply_to: Optional[str] = None,
) -> EmailMessage:
    if not recipient:
        raise MailerError("No recipient address")
    message = EmailMessage()
    message["Subject"] = subject
    message["From"] = config.sender
    message["To"] = recipient
    if cc and cc != recipient:
        message["Cc"] = cc
    if reply_to:
        message["Reply-To"] = reply_to
    message.set_content(body)
    return message


def send_email(
    config: EmailConfig,
    subject: str,
    recipient: str,
    body: str,
    cc: Optional[str] = None,
    reply_to: Optional[str] = None,
) -> bool:
    """Send a plain-text email.

    Args:
        config: Email configuration.
        subject: Email subject.
        recipient: Email recipient address.
        body: Email body text.
        cc: Optional copy address, skipped when equal to *recipient*.
        reply_to: Optional Reply-To address.

    Returns:
        True if email was sent successfully.

    Raises:
        MailerError: If the message cannot be built or delivered.
    """
    message = build_message(config, subject, recipient, body, cc=cc, reply_to=reply_to)

    try:
        logger.info("Sending '%s' to %s", subject, recipient)
        with smtplib.SMTP(config.smtp_host, config.smtp_port, timeout=SMTP_TIMEOUT) as server:
            server.starttls()
            # Relay hosts on a private network may accept unauthenticated mail
            if config.smtp_user:
                server.login(config.smtp_user, config.smtp_password)
            server.send_message(message)
    except smtplib.SMTPAuthenticationError as e:
        logger.error("SMTP authentication failed: %s", e)
        raise MailerError(f"Email authentication failed: {e}")
    except smtplib.SMTPRecipientsRefused as e:
        logger.error("Recipients refused: %s", e)
        raise MailerError(f"Email recipients refused: {e}")
    except smtplib.SMTPException as e:
        logger.error("SMTP error: %s", e)
        raise MailerError(f"Failed to send email: {e}")
    except (gaierror, timeout, OSError) as e:
        logger.error("Could not reach mail server %s: %s", config.smtp_host, e)
        raise MailerError(f"Network error: could not connect to mail server: {e}")

    logger.info("Email sent to %s", recipient)
    return True
