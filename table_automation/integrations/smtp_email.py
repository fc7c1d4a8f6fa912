"""
SMTP email transport.
"""

import asyncio
import logging
import smtplib
from email.mime.text import MIMEText
from typing import List, Optional

from .. import config
from ..errors import TransportError
from ..interfaces import EmailTransport

logger = logging.getLogger(__name__)


class SmtpEmailTransport(EmailTransport):
    """Send action emails through an SMTP server."""

    def __init__(
        self,
        smtp_host: str = config.SMTP_HOST,
        smtp_port: int = config.SMTP_PORT,
        username: Optional[str] = config.SMTP_USERNAME,
        password: Optional[str] = config.SMTP_PASSWORD,
        from_addr: str = config.SMTP_FROM,
        use_tls: bool = config.SMTP_USE_TLS,
    ):
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.username = username
        self.password = password
        self.from_addr = from_addr
        self.use_tls = use_tls

    def _send(self, to: List[str], cc: List[str], bcc: List[str], subject: str, body: str) -> None:
        msg = MIMEText(body or "", "plain")
        msg["Subject"] = subject or ""
        msg["From"] = self.from_addr
        msg["To"] = ", ".join(to)
        if cc:
            msg["Cc"] = ", ".join(cc)

        with smtplib.SMTP(self.smtp_host, self.smtp_port) as server:
            if self.use_tls:
                server.starttls()
            if self.username and self.password:
                server.login(self.username, self.password)
            server.sendmail(self.from_addr, to + cc + bcc, msg.as_string())

    async def send_email(
        self,
        to: List[str],
        cc: List[str],
        bcc: List[str],
        subject: str,
        body: str,
    ) -> None:
        try:
            await asyncio.to_thread(self._send, to, cc, bcc, subject, body)
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Failed to send email to {', '.join(to)}: {e}")
            raise TransportError(f"Failed to send email: {e}") from e
        logger.info(f"Email sent to {', '.join(to)}")
