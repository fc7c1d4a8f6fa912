"""
Outbound transport interfaces for email and webhooks.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional


@dataclass
class WebhookResponse:
    """Response of an outbound webhook call."""
    status: int
    body: Any = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


class EmailTransport(ABC):
    """
    Abstract interface for sending email.

    Implementations raise TransportError when the message cannot be sent.
    """

    @abstractmethod
    async def send_email(
        self,
        to: List[str],
        cc: List[str],
        bcc: List[str],
        subject: str,
        body: str
    ) -> None:
        """
        Send an email.

        Args:
            to: Primary recipients
            cc: Carbon-copy recipients
            bcc: Blind carbon-copy recipients
            subject: Subject line
            body: Plain-text body
        """
        pass


class WebhookTransport(ABC):
    """
    Abstract interface for calling webhooks.

    Implementations raise TransportError for timeouts, DNS and connection
    failures. Non-2xx responses are returned, not raised.
    """

    @abstractmethod
    async def call_webhook(
        self,
        url: str,
        method: str,
        json_body: Any = None,
        headers: Optional[Dict[str, str]] = None
    ) -> WebhookResponse:
        """
        Call a webhook.

        Args:
            url: http(s) URL
            method: HTTP method
            json_body: JSON-serializable request body
            headers: Extra request headers

        Returns:
            WebhookResponse with status code and body
        """
        pass
