"""
DingTalk stream trigger.

StreamConnection owns one transport and its topic handlers.
StreamListener is the robot-message trigger built on top of it. For each event it:
1. acks it when auto-ack is enabled, before the consumer runs
2. drops redelivered message ids (bounded LRU)
3. parses the payload into a robot message
4. resolves an access token and forwards {accessToken, messageId, message}

Per-event failures go to ``on_error`` and never close the connection.
"""

import json
from collections import OrderedDict
from typing import Awaitable, Callable

import structlog

from dingbridge.dingtalk.models import ROBOT_TOPIC, Credential, InboundEvent, InboundRecord
from dingbridge.dingtalk.transport import DingTalkStreamTransport, EventHandler, StreamTransport
from dingbridge.errors import ConfigurationError, PayloadError, TransportError

logger = structlog.get_logger()

Consumer = Callable[[InboundRecord], Awaitable[None]]
ErrorHandler = Callable[[InboundEvent, Exception], Awaitable[None]]

MAX_SEEN_MESSAGES = 1000


class StreamConnection:
    def __init__(self, transport: StreamTransport):
        self._transport: StreamTransport | None = transport
        self._topics: set[str] = set()

    @property
    def is_open(self) -> bool:
        return self._transport is not None

    @property
    def is_connected(self) -> bool:
        return self._transport is not None and self._transport.is_connected

    def on_message(self, topic: str, handler: EventHandler) -> None:
        """Register the handler for a topic. Only one handler per topic is allowed."""
        if self._transport is None:
            raise ConfigurationError("Connection is closed")
        if topic in self._topics:
            raise ConfigurationError(f"Handler already registered for topic {topic}")
        self._topics.add(topic)
        self._transport.register_callback_listener(topic, handler)

    async def open(self) -> None:
        if self._transport is None:
            raise ConfigurationError("Connection is closed")
        await self._transport.connect()

    async def ack(self, message_id: str, body: dict) -> None:
        await self._require_transport().socket_callback_response(message_id, body)

    async def get_access_token(self) -> str:
        return await self._require_transport().get_access_token()

    def _require_transport(self) -> StreamTransport:
        if self._transport is None:
            raise TransportError("Connection is closed")
        return self._transport

    async def disconnect(self) -> None:
        """Close the transport once; later calls are no-ops."""
        transport, self._transport = self._transport, None
        if transport is not None:
            await transport.disconnect()


async def _log_event_error(event: InboundEvent, exc: Exception) -> None:
    logger.error(
        "dingtalk.stream.event_failed",
        message_id=event.message_id,
        topic=event.topic,
        error_type=type(exc).__name__,
        error=str(exc),
    )


def parse_robot_message(event: InboundEvent) -> dict:
    try:
        message = json.loads(event.raw_payload)
    except (json.JSONDecodeError, TypeError) as e:
        raise PayloadError(f"Malformed robot message payload: {e}", event.message_id) from e
    if not isinstance(message, dict):
        raise PayloadError("Robot message payload is not a JSON object", event.message_id)
    return message


class StreamListener:
    def __init__(
        self,
        credential: Credential,
        consumer: Consumer,
        *,
        auto_ack: bool = True,
        dedup: bool = True,
        on_error: ErrorHandler | None = None,
        transport_factory: Callable[[Credential], StreamTransport] = DingTalkStreamTransport,
    ):
        self._credential = credential
        self._consumer = consumer
        self._auto_ack = auto_ack
        self._dedup = dedup
        self._on_error = on_error or _log_event_error
        self._transport_factory = transport_factory
        self._connection: StreamConnection | None = None
        self._seen: OrderedDict[str, None] = OrderedDict()

    @property
    def is_running(self) -> bool:
        return self._connection is not None

    @property
    def is_connected(self) -> bool:
        """True only while the transport holds a live stream, not merely after start()."""
        return self._connection is not None and self._connection.is_connected

    async def start(self) -> None:
        if not self._credential.client_id or not self._credential.client_secret:
            raise ConfigurationError("DingTalk clientId and clientSecret are required")
        if self._connection is not None:
            return

        self._connection = StreamConnection(self._transport_factory(self._credential))
        self._connection.on_message(ROBOT_TOPIC, self.dispatch)
        await self._connection.open()
        logger.info("dingtalk.stream.started", auto_ack=self._auto_ack, dedup=self._dedup)

    async def stop(self) -> None:
        connection, self._connection = self._connection, None
        if connection is None:
            return
        await connection.disconnect()
        logger.info("dingtalk.stream.stopped")

    def _is_duplicate(self, message_id: str) -> bool:
        if message_id in self._seen:
            return True
        self._seen[message_id] = None
        if len(self._seen) > MAX_SEEN_MESSAGES:
            self._seen.popitem(last=False)
        return False

    async def dispatch(self, event: InboundEvent) -> None:
        """Handle one robot-message event."""
        log = logger.bind(message_id=event.message_id)
        connection = self._connection
        if connection is None or not connection.is_open:
            log.warning("dingtalk.stream.event_after_stop")
            return

        if self._auto_ack:
            try:
                await connection.ack(event.message_id, {})
            except Exception as e:
                await self._on_error(event, e)

        if self._dedup and event.message_id and self._is_duplicate(event.message_id):
            log.debug("dingtalk.stream.duplicate_event")
            return

        try:
            message = parse_robot_message(event)
        except PayloadError as e:
            await self._on_error(event, e)
            return

        try:
            access_token = await connection.get_access_token()
        except Exception as e:
            await self._on_error(event, e)
            return

        log.info("dingtalk.stream.message", msgtype=message.get("msgtype"))
        record = InboundRecord(access_token=access_token, message_id=event.message_id, message=message)
        try:
            await self._consumer(record)
        except Exception as e:
            await self._on_error(event, e)
