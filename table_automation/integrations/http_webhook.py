"""
Outbound webhook calls over requests.
"""

import asyncio
import logging
from typing import Any, Dict, Optional

import requests

from .. import config
from ..errors import TransportError
from ..interfaces import WebhookResponse, WebhookTransport

logger = logging.getLogger(__name__)


class RequestsWebhookTransport(WebhookTransport):
    """WebhookTransport using a blocking requests call in a worker thread."""

    def __init__(self, timeout: float = config.WEBHOOK_TIMEOUT_SECONDS, session: Optional[requests.Session] = None):
        self.timeout = timeout
        self.session = session or requests.Session()

    def _send(self, url: str, method: str, json_body: Any, headers: Optional[Dict[str, str]]) -> WebhookResponse:
        send_headers = {"Content-Type": "application/json"}
        send_headers.update(headers or {})
        kwargs: Dict[str, Any] = {"headers": send_headers, "timeout": self.timeout}
        if method not in ("GET", "DELETE") and json_body is not None:
            if isinstance(json_body, (dict, list)):
                kwargs["json"] = json_body
            else:
                kwargs["data"] = str(json_body)

        response = self.session.request(method, url, **kwargs)
        try:
            body = response.json()
        except ValueError:
            body = response.text
        return WebhookResponse(status=response.status_code, body=body)

    async def call_webhook(
        self,
        url: str,
        method: str = "POST",
        json_body: Any = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> WebhookResponse:
        try:
            response = await asyncio.to_thread(self._send, url, method.upper(), json_body, headers)
        except requests.Timeout as e:
            raise TransportError(f"Webhook timeout after {self.timeout:g}s") from e
        except requests.RequestException as e:
            raise TransportError(f"Network error calling webhook: {e}") from e

        logger.info(f"Webhook {method} {url} returned {response.status}")
        return response
