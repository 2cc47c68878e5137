"""Base messenger interface and SMTP email implementation."""

from abc import ABC, abstractmethod
from typing import Optional
import logging

logger = logging.getLogger(__name__)


class MessengerInterface(ABC):
    """Abstract base class for messenger integrations."""

    @abstractmethod
    async def send_message(
        self, recipient: str, subject: str, message: str, link: Optional[str] = None
    ) -> bool:
        """Send a message with an optional signing link.

        Args:
            recipient: Recipient email address
            subject: Message subject
            message: Message body
            link: Optional signing link to include

        Returns:
            True if sent successfully, False otherwise
        """
        pass

    @abstractmethod
    def validate_config(self) -> tuple[bool, Optional[str]]:
        """Validate messenger configuration.

        Returns:
            Tuple of (is_valid, error_message)
        """
        pass


class EmailMessenger(MessengerInterface):
    """Email messenger implementation using SMTP."""

    def __init__(
        self,
        smtp_host: str,
        smtp_port: int,
        smtp_user: str,
        smtp_password: str,
        from_email: str,
        from_name: Optional[str] = None,
    ):
        """Initialize email messenger.

        Args:
            smtp_host: SMTP server hostname
            smtp_port: SMTP server port
            smtp_user: SMTP username
            smtp_password: SMTP password
            from_email: From email address
            from_name: Display name shown as the sender
        """
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.from_email = from_email
        self.from_name = from_name

    async def send_message(
        self, recipient: str, subject: str, message: str, link: Optional[str] = None
    ) -> bool:
        """Send email message."""
        import smtplib
        from email.mime.text import MIMEText
        from email.mime.multipart import MIMEMultipart
        from email.utils import formataddr

        try:
            msg = MIMEMultipart()
            msg["From"] = formataddr((self.from_name, self.from_email)) if self.from_name else self.from_email
            msg["To"] = recipient
            msg["Subject"] = subject

            body = message

            if link:
                body += f"\n\nOpen the document: {link}"

            msg.attach(MIMEText(body, "plain"))

            with smtplib.SMTP(self.smtp_host, self.smtp_port) as server:
                server.starttls()
                server.login(self.smtp_user, self.smtp_password)
                server.send_message(msg)

            logger.info(f"Email sent to {recipient}: {subject}")
            return True

        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Failed to send email to {recipient}: {e}")
            return False

    def validate_config(self) -> tuple[bool, Optional[str]]:
        """Validate email configuration."""
        if not all(
            [self.smtp_host, self.smtp_port, self.smtp_user, self.smtp_password, self.from_email]
        ):
            return False, "Missing required SMTP configuration"
        return True, None
