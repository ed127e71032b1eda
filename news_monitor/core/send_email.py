"""
Email Notification Module.

This module delivers news notifications over SMTP. Each message carries a
plain-text and an HTML alternative rendered by NotificationFormatter.
"""

import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formatdate, make_msgid
from typing import Optional, Sequence

from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from .config import EmailSettings
from .exceptions import ConfigError, DeliveryError
from .fetch_news import TARGET_URL
from .types import NewsItem, SendResult
from .utils import NotificationFormatter

logger = logging.getLogger(__name__)

SMTP_SSL_PORT = 465


class EmailSender:
    """Send news notifications to a single recipient over SMTP."""

    def __init__(
        self,
        settings: EmailSettings,
        formatter: Optional[NotificationFormatter] = None,
        source_url: str = TARGET_URL,
    ) -> None:
        """Validate the transport settings and prepare the formatter.

        Raises:
            ConfigError: Listing every missing transport setting.
        """
        self.settings = settings
        self.formatter = formatter or NotificationFormatter(source_url=source_url)
        self.initialized = False
        self.validate_config()

    def validate_config(self) -> None:
        missing = self.settings.missing_fields()
        if missing:
            raise ConfigError("Missing required email settings", missing=missing)

    def _open_connection(self) -> smtplib.SMTP:
        """Connect and authenticate; port 465 uses implicit TLS, others STARTTLS."""
        s = self.settings
        if s.smtp_port == SMTP_SSL_PORT:
            server: smtplib.SMTP = smtplib.SMTP_SSL(s.smtp_host, s.smtp_port, timeout=s.timeout)
        else:
            server = smtplib.SMTP(s.smtp_host, s.smtp_port, timeout=s.timeout)
        try:
            if s.smtp_port != SMTP_SSL_PORT:
                server.starttls()
            server.login(s.smtp_user, s.smtp_password)
        except (smtplib.SMTPException, OSError):
            server.close()
            raise
        return server

    @staticmethod
    def _close(server: smtplib.SMTP) -> None:
        try:
            server.quit()
        except smtplib.SMTPException as e:
            logger.debug("Ignoring error while closing SMTP connection: %s", e)

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type(
            (ConnectionError, TimeoutError, smtplib.SMTPConnectError, smtplib.SMTPServerDisconnected)
        ),
        reraise=True,
    )
    def _verify_connection(self) -> None:
        server = self._open_connection()
        self._close(server)

    def initialize(self) -> None:
        """Verify that the SMTP server accepts our credentials.

        Raises:
            DeliveryError: If the connection or login fails.
        """
        if self.initialized:
            return
        logger.info(
            "Verifying SMTP connection to %s:%s",
            self.settings.smtp_host,
            self.settings.smtp_port,
        )
        try:
            self._verify_connection()
        except (smtplib.SMTPException, OSError) as e:
            logger.error("SMTP verification failed: %s", e)
            raise DeliveryError(f"SMTP verification failed: {e}") from e
        logger.info("SMTP connection verified")
        self.initialized = True

    def build_message(
        self, news_list: Sequence[NewsItem], subject: Optional[str] = None
    ) -> MIMEMultipart:
        message = MIMEMultipart("alternative")
        message["Subject"] = subject or self.formatter.generate_subject(news_list)
        message["From"] = self.settings.sender
        message["To"] = self.settings.to_email
        message["Date"] = formatdate(localtime=True)
        message["Message-ID"] = make_msgid(domain=self.settings.smtp_host)
        message.attach(MIMEText(self.formatter.generate_text_content(news_list), "plain", "utf-8"))
        message.attach(MIMEText(self.formatter.generate_html_content(news_list), "html", "utf-8"))
        return message

    def send_email(
        self, news_list: Sequence[NewsItem], subject: Optional[str] = None
    ) -> SendResult:
        """Send one notification containing all given news items.

        Args:
            news_list: Non-empty list of news items, in display order.
            subject: Optional subject; generated from the items when omitted.

        Returns:
            Message id and number of items sent.

        Raises:
            ValueError: If ``news_list`` is empty.
            DeliveryError: If the SMTP transaction fails.
        """
        if not news_list:
            raise ValueError("News list is empty")
        if not self.initialized:
            self.initialize()

        message = self.build_message(news_list, subject)
        try:
            server = self._open_connection()
            try:
                server.sendmail(
                    self.settings.sender, [self.settings.to_email], message.as_string()
                )
            finally:
                self._close(server)
        except (smtplib.SMTPException, OSError) as e:
            logger.error("Failed to send email: %s", e)
            raise DeliveryError(f"Send failed: {e}") from e

        logger.info("Email sent: %s (%d news items)", message["Message-ID"], len(news_list))
        return SendResult(message_id=message["Message-ID"], count=len(news_list))
