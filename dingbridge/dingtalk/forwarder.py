"""
Default stream consumer: hand each inbound record to the workflow host.

- forward_url set → POST the record as JSON to it
- forward_url empty → log the record only

The payload is forwarded as received; only a few fields are read for logging.
"""

import httpx
import structlog

from dingbridge.dingtalk.models import InboundRecord
from dingbridge.errors import TransportError

logger = structlog.get_logger()


def _log_fields(message: dict) -> dict:
    text = message.get("text")
    content = text.get("content") if isinstance(text, dict) else None
    return {
        "sender": message.get("senderNick"),
        "conversation_id": message.get("conversationId"),
        "text": content[:100] if isinstance(content, str) else None,
    }


class RecordForwarder:
    def __init__(self, forward_url: str = "", timeout: float | None = 30, http: httpx.AsyncClient | None = None):
        self.forward_url = forward_url
        self._timeout = timeout
        self._http = http
        self._owns_http = False

    async def initialize(self):
        """Create one httpx client for the app lifetime."""
        if self._http is None and self.forward_url:
            self._http = httpx.AsyncClient(timeout=self._timeout)
            self._owns_http = True

    async def shutdown(self):
        if self._http and self._owns_http:
            await self._http.aclose()
            self._http = None
            self._owns_http = False

    async def __call__(self, record: InboundRecord) -> None:
        log = logger.bind(message_id=record.message_id)
        log.info("dingtalk.record.received", **_log_fields(record.message))

        if not self.forward_url:
            return

        try:
            if self._http is not None:
                resp = await self._http.post(self.forward_url, json=record.to_json())
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    resp = await client.post(self.forward_url, json=record.to_json())
            resp.raise_for_status()
        except httpx.HTTPError as e:
            raise TransportError(f"Forwarding record failed: {e}") from e

        log.info("dingtalk.record.forwarded", target=self.forward_url[:60], status=resp.status_code)
