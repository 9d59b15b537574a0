"""
DingTalk robot reply sender: singleton with an app-lifetime httpx client.

Handles:
- Outbound document construction (text / markdown / raw JSON override + @mentions)
- Custom robot URL signing (HMAC-SHA256, timestamp in ms)
- A single POST to the webhook; the platform's JSON reply is returned untouched

Custom robots are throttled by DingTalk to about 20 messages per minute per robot.
Nothing here enforces that: callers that need more throughput should use a company
robot or throttle on their side. No retries are made.
"""

import base64
import hashlib
import hmac
import time
from typing import Any
from urllib.parse import quote

import httpx
import structlog

from dingbridge.dingtalk.models import (
    MarkdownMessage,
    OutboundMessage,
    RawMessage,
    TextMessage,
    WebhookTarget,
)
from dingbridge.errors import ConfigurationError, TransportError

logger = structlog.get_logger()

ACCESS_TOKEN_HEADER = "x-acs-dingtalk-access-token"


# ---------------------------------------------------------------------------
# Signing
# ---------------------------------------------------------------------------
def compute_sign(secret: str, timestamp: int) -> str:
    """Percent-encoded base64 HMAC-SHA256 of ``"{timestamp}\\n{secret}"`` keyed by the secret."""
    string_to_sign = f"{timestamp}\n{secret}"
    digest = hmac.new(secret.encode("utf-8"), string_to_sign.encode("utf-8"), hashlib.sha256).digest()
    return quote(base64.b64encode(digest).decode("ascii"), safe="")


def sign_webhook_url(url: str, secret: str, timestamp: int | None = None) -> str:
    """Append ``timestamp`` and ``sign`` to the webhook query string.

    The platform rejects stale timestamps, so call this right before sending.
    """
    if timestamp is None:
        timestamp = int(time.time() * 1000)
    separator = "&" if "?" in url else "?"
    return f"{url}{separator}timestamp={timestamp}&sign={compute_sign(secret, timestamp)}"


# ---------------------------------------------------------------------------
# Document construction
# ---------------------------------------------------------------------------
def build_document(message: OutboundMessage) -> dict[str, Any]:
    """Build the wire document for a message.

    Raises:
        ConfigurationError: if no msgtype can be resolved.
    """
    document: dict[str, Any] = {"at": message.mention.to_wire()}

    if isinstance(message, RawMessage):
        # Shallow merge: override keys replace defaults wholesale
        document.update(message.document or {})
    elif isinstance(message, TextMessage):
        document["msgtype"] = "text"
        document["text"] = {"content": message.content}
    elif isinstance(message, MarkdownMessage):
        document["msgtype"] = "markdown"
        document["markdown"] = {"title": message.title, "text": message.text}

    if not document.get("msgtype"):
        raise ConfigurationError("msgtype is empty")
    return document


class ReplySender:
    def __init__(self, http: httpx.AsyncClient | None = None):
        self._http = http
        self._owns_http = False

    async def initialize(self, timeout: float | None = None):
        """Create a shared httpx client for the app lifetime."""
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=timeout)
            self._owns_http = True
        logger.info("dingtalk.reply.initialized")

    async def shutdown(self):
        if self._http and self._owns_http:
            await self._http.aclose()
            self._http = None
            self._owns_http = False
        logger.info("dingtalk.reply.shutdown")

    async def send(self, target: WebhookTarget, message: OutboundMessage) -> Any:
        """Send one message to a robot webhook and return the parsed JSON reply.

        Raises:
            ConfigurationError: before any network call, if the document has no msgtype.
            TransportError: on connection failure, non-2xx status, or a non-JSON reply.
        """
        document = build_document(message)

        url = target.base_url
        if target.secret:
            url = sign_webhook_url(url, target.secret)

        headers = {
            "Content-Type": "application/json",
            ACCESS_TOKEN_HEADER: target.access_token or "",
        }

        log = logger.bind(robot_kind=target.robot_kind.value, msgtype=document["msgtype"])
        try:
            if self._http is not None:
                resp = await self._http.post(url, json=document, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=None) as client:
                    resp = await client.post(url, json=document, headers=headers)
        except httpx.HTTPError as e:
            log.error("dingtalk.reply.request_failed", error=str(e))
            raise TransportError(f"Webhook request failed: {e}") from e

        if resp.is_error:
            log.error("dingtalk.reply.http_error", status=resp.status_code)
            raise TransportError(
                f"Webhook returned HTTP {resp.status_code}",
                status_code=resp.status_code,
                body=resp.text,
            )

        try:
            data = resp.json()
        except ValueError as e:
            raise TransportError(
                "Webhook returned a non-JSON body", status_code=resp.status_code, body=resp.text
            ) from e

        log.info("dingtalk.reply.sent", status=resp.status_code)
        return data


# Singleton instance
reply_sender = ReplySender()
