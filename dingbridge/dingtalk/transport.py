"""
DingTalk stream transport.

StreamTransport is the contract the listener consumes. DingTalkStreamTransport
implements it on top of the dingtalk-stream SDK, which handles the connection
ticket, websocket, keepalive and reconnects. The SDK loop runs as an asyncio
task and spawns one task per inbound frame, so events may be delivered to the
handler concurrently.
"""

import asyncio
import json
from typing import Awaitable, Callable, Protocol

import dingtalk_stream
import structlog

from dingbridge.dingtalk.models import Credential, InboundEvent
from dingbridge.errors import TransportError

logger = structlog.get_logger()

EventHandler = Callable[[InboundEvent], Awaitable[None]]

STOP_TIMEOUT = 3.0
RECONNECT_DELAY = 5.0


class StreamTransport(Protocol):
    def register_callback_listener(self, topic: str, handler: EventHandler) -> None: ...

    @property
    def is_connected(self) -> bool: ...

    async def connect(self) -> None: ...

    async def get_access_token(self) -> str: ...

    async def socket_callback_response(self, message_id: str, body: dict) -> None: ...

    async def disconnect(self) -> None: ...


class _EventBridge(dingtalk_stream.ChatbotHandler):
    """Turns SDK callback frames into InboundEvent and hands them to our handler."""

    def __init__(self, topic: str, handler: EventHandler):
        super().__init__()
        self._topic = topic
        self._handler = handler

    async def raw_process(self, callback_message):
        headers = callback_message.headers
        data = callback_message.data
        event = InboundEvent(
            message_id=headers.message_id,
            topic=headers.topic or self._topic,
            headers={"messageId": headers.message_id, "topic": headers.topic or self._topic},
            raw_payload=data if isinstance(data, str) else json.dumps(data, ensure_ascii=False),
        )
        await self._handler(event)
        # Acks go out through socket_callback_response, so the SDK sends none
        return None


class DingTalkStreamTransport:
    """Runs the SDK client in a background task until disconnect().

    The SDK's own loop swallows task cancellation and reconnects, so disconnect
    clears the running flag, cancels, closes the websocket and waits a bounded
    time for the task instead of awaiting it outright.
    """

    def __init__(self, credential: Credential, client=None, stop_timeout: float = STOP_TIMEOUT):
        self._client = client or dingtalk_stream.DingTalkStreamClient(
            dingtalk_stream.Credential(credential.client_id, credential.client_secret)
        )
        self._stop_timeout = stop_timeout
        self._task: asyncio.Task | None = None
        self._running = False

    @property
    def is_connected(self) -> bool:
        return (
            self._running
            and self._task is not None
            and not self._task.done()
            and getattr(self._client, "websocket", None) is not None
        )

    def register_callback_listener(self, topic: str, handler: EventHandler) -> None:
        self._client.register_callback_handler(topic, _EventBridge(topic, handler))

    async def connect(self) -> None:
        if self._task and not self._task.done():
            return
        self._running = True
        self._task = asyncio.create_task(self._run_client(), name="dingtalk-stream")
        self._task.add_done_callback(self._on_stream_exit)
        logger.info("dingtalk.transport.connecting")

    async def _run_client(self) -> None:
        while self._running:
            try:
                await self._client.start()
            except Exception as e:
                if not self._running:
                    break
                logger.warning("dingtalk.transport.stream_error", error=str(e), retry_in=RECONNECT_DELAY)
                await asyncio.sleep(RECONNECT_DELAY)

    def _on_stream_exit(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("dingtalk.transport.stream_failed", error=str(exc))

    async def get_access_token(self) -> str:
        # The SDK fetches and caches the token with a blocking HTTP call
        token = await asyncio.to_thread(self._client.get_access_token)
        if not token:
            raise TransportError("Failed to obtain DingTalk access token")
        return token

    async def socket_callback_response(self, message_id: str, body: dict) -> None:
        websocket = getattr(self._client, "websocket", None)
        if websocket is None:
            raise TransportError("Stream is not connected")
        frame = {
            "code": dingtalk_stream.AckMessage.STATUS_OK,
            "headers": {"messageId": message_id, "contentType": "application/json"},
            "message": "OK",
            "data": json.dumps({"response": body}),
        }
        await websocket.send(json.dumps(frame))

    async def disconnect(self) -> None:
        task, self._task = self._task, None
        if task is None and not self._running:
            return
        self._running = False

        if task is not None and not task.done():
            task.cancel()
        websocket = getattr(self._client, "websocket", None)
        if websocket is not None:
            await websocket.close()

        if task is not None and not task.done():
            # asyncio.wait neither cancels nor re-raises, so a caller's own cancellation still propagates
            done, _ = await asyncio.wait({task}, timeout=self._stop_timeout)
            if not done:
                task.cancel()
                logger.warning("dingtalk.transport.stop_timeout", timeout=self._stop_timeout)
        logger.info("dingtalk.transport.disconnected")
