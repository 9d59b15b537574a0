import json

import pytest

from dingbridge.dingtalk.models import ROBOT_TOPIC, InboundEvent
from dingbridge.errors import TransportError


class FakeTransport:
    """In-memory stream transport that records every call in order."""

    def __init__(self, token: str = "token-1"):
        self.handlers = {}
        self.calls = []
        self.disconnect_count = 0
        self.is_connected = False
        self.token = token
        self.fail_token = False
        self.fail_ack = False

    def register_callback_listener(self, topic, handler):
        self.handlers[topic] = handler

    async def connect(self):
        self.calls.append("connect")
        self.is_connected = True

    async def get_access_token(self):
        self.calls.append("token")
        if self.fail_token:
            raise TransportError("token endpoint unavailable")
        return self.token

    async def socket_callback_response(self, message_id, body):
        self.calls.append(("ack", message_id, body))
        if self.fail_ack:
            raise TransportError("socket closed")

    async def disconnect(self):
        self.disconnect_count += 1
        self.is_connected = False

    async def deliver(self, event, topic=ROBOT_TOPIC):
        await self.handlers[topic](event)


def robot_event(message_id: str = "m1", payload=None) -> InboundEvent:
    if payload is None:
        payload = {
            "msgId": "msg-1",
            "msgtype": "text",
            "text": {"content": "hello"},
            "conversationId": "cid-1",
            "senderNick": "alice",
            "sessionWebhook": "https://oapi.dingtalk.com/robot/sendBySession?session=abc",
        }
    raw = payload if isinstance(payload, str) else json.dumps(payload)
    return InboundEvent(
        message_id=message_id,
        topic=ROBOT_TOPIC,
        headers={"messageId": message_id, "topic": ROBOT_TOPIC},
        raw_payload=raw,
    )


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def make_event():
    return robot_event
