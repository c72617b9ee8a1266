"""Email sender service - delivers notifications via SMTP."""
import asyncio
import logging
import smtplib
import ssl
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import List, Optional, Sequence

from ..config import Settings, settings

logger = logging.getLogger(__name__)


@dataclass
class EmailConfig:
    """SMTP configuration for sending emails."""
    host: str
    port: int
    username: str = ""
    password: str = ""
    use_tls: bool = True
    from_address: str = ""

    @classmethod
    def from_settings(cls, config: Optional[Settings] = None) -> Optional["EmailConfig"]:
        """Build from daemon settings, or None if no SMTP host is configured."""
        config = config or settings
        if not config.smtp_host:
            return None
        return cls(
            host=config.smtp_host,
            port=config.smtp_port,
            username=config.smtp_username or "",
            password=config.smtp_password or "",
            use_tls=config.smtp_use_tls,
            from_address=config.email_from or "",
        )


class EmailSenderService:
    """Service for sending notification emails via SMTP."""

    def __init__(self, config: Optional[EmailConfig] = None):
        self.config = config

    def _build_message(self, from_addr: str, recipients: List[str], subject: str, text: str, html: Optional[str]) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = from_addr
        msg["To"] = ", ".join(recipients)
        msg.attach(MIMEText(text, "plain"))
        if html is not None:
            # Last part is the preferred one
            msg.attach(MIMEText(html, "html"))
        return msg

    def _send_sync(self, config: EmailConfig, recipients: List[str], msg: MIMEMultipart) -> None:
        from_addr = config.from_address or config.username
        with smtplib.SMTP(config.host, config.port, timeout=30) as server:
            if config.use_tls:
                server.starttls(context=ssl.create_default_context())
            if config.username and config.password:
                server.login(config.username, config.password)
            server.sendmail(from_addr, recipients, msg.as_string())

    async def send_email(
        self,
        recipients: Sequence[str],
        subject: str,
        text: str,
        html: Optional[str] = None,
    ) -> bool:
        """Send an email to a list of addresses.

        The SMTP exchange runs in a worker thread so a slow mail server
        does not hold up other alerts.

        Returns True on success, False on failure.
        """
        config = self.config
        if config is None or not config.host:
            logger.warning("Email not configured - missing SMTP host")
            return False

        recipients = [addr.strip() for addr in recipients if addr and addr.strip()]
        if not recipients:
            logger.warning("No valid recipients for email")
            return False

        msg = self._build_message(config.from_address or config.username, recipients, subject, text, html)
        logger.info(f"Sending email to {len(recipients)} recipient(s) via {config.host}:{config.port}: {subject}")

        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self._send_sync, config, recipients, msg)
        except smtplib.SMTPAuthenticationError as e:
            logger.error(f"SMTP authentication failed for user '{config.username}': {e}")
            return False
        except smtplib.SMTPConnectError as e:
            logger.error(f"Failed to connect to SMTP server {config.host}:{config.port}: {e}")
            return False
        except smtplib.SMTPRecipientsRefused as e:
            logger.error(f"Recipients refused by server: {e}")
            return False
        except smtplib.SMTPException as e:
            logger.error(f"SMTP error: {type(e).__name__}: {e}")
            return False
        except (ConnectionRefusedError, TimeoutError) as e:
            logger.error(f"Cannot reach {config.host}:{config.port}: {e}")
            return False
        except OSError as e:
            logger.error(f"Unexpected error sending email: {type(e).__name__}: {e}")
            return False

        logger.info(f"Email sent successfully: {subject}")
        return True
