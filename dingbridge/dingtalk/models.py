"""
DingTalk value types: credentials, inbound events/records, outbound messages, webhook targets.
"""

import enum
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from dingbridge.errors import ConfigurationError

# Robot message topic pushed over the stream connection
ROBOT_TOPIC = "/v1.0/im/bot/messages/get"


@dataclass(frozen=True)
class Credential:
    client_id: str
    client_secret: str


# ---------------------------------------------------------------------------
# Inbound
# ---------------------------------------------------------------------------
@dataclass
class InboundEvent:
    message_id: str
    topic: str
    headers: dict[str, str]
    raw_payload: str


class RobotText(BaseModel):
    model_config = ConfigDict(extra="allow")

    content: str = ""


class RobotMessage(BaseModel):
    """Typed view over a robot message payload. Unknown keys are kept as extras."""

    model_config = ConfigDict(extra="allow", alias_generator=to_camel, populate_by_name=True)

    msg_id: str | None = None
    msgtype: str | None = None
    text: RobotText | None = None
    conversation_id: str | None = None
    conversation_type: str | None = None  # "1" single chat, "2" group
    sender_staff_id: str | None = None
    sender_nick: str | None = None
    chatbot_user_id: str | None = None
    robot_code: str | None = None
    is_in_at_list: bool | None = None
    session_webhook: str | None = None
    session_webhook_expired_time: int | None = None


@dataclass
class InboundRecord:
    access_token: str
    message_id: str
    message: dict[str, Any]

    @property
    def robot_message(self) -> RobotMessage:
        return RobotMessage.model_validate(self.message)

    def to_json(self) -> dict[str, Any]:
        return {
            "accessToken": self.access_token,
            "messageId": self.message_id,
            "message": self.message,
        }


# ---------------------------------------------------------------------------
# Outbound
# ---------------------------------------------------------------------------
def _split_user_ids(value: str | list[str] | None) -> list[str]:
    if not value:
        return []
    if isinstance(value, str):
        return value.split(",")
    return list(value)


@dataclass
class Mention:
    """@mention block. ``is_at_all`` wins over any user list."""

    at_user_ids: list[str] | str = field(default_factory=list)  # a str is split on ","
    is_at_all: bool = False

    def __post_init__(self):
        self.at_user_ids = [] if self.is_at_all else _split_user_ids(self.at_user_ids)

    def to_wire(self) -> dict[str, Any]:
        return {"atUserIds": list(self.at_user_ids), "isAtAll": self.is_at_all}


@dataclass
class TextMessage:
    content: str
    mention: Mention = field(default_factory=Mention)


@dataclass
class MarkdownMessage:
    title: str
    text: str
    mention: Mention = field(default_factory=Mention)


@dataclass
class RawMessage:
    """Caller-built document, shallow-merged over the default ``at`` block."""

    document: dict[str, Any]
    mention: Mention = field(default_factory=Mention)


OutboundMessage = TextMessage | MarkdownMessage | RawMessage


class RobotKind(str, enum.Enum):
    CUSTOM = "custom"  # webhook + signing secret, rate limited by the platform
    COMPANY = "company"  # internal app robot, access token header


@dataclass(frozen=True)
class WebhookTarget:
    base_url: str
    robot_kind: RobotKind
    secret: str | None = None
    access_token: str | None = None

    @classmethod
    def custom(cls, base_url: str, secret: str | None = None) -> "WebhookTarget":
        return cls(base_url=base_url, robot_kind=RobotKind.CUSTOM, secret=secret or None)

    @classmethod
    def company(cls, base_url: str, access_token: str | None = None) -> "WebhookTarget":
        return cls(base_url=base_url, robot_kind=RobotKind.COMPANY, access_token=access_token or None)

    @classmethod
    def for_session(cls, record: InboundRecord) -> "WebhookTarget":
        """Target the conversation an inbound record came from."""
        session_webhook = record.message.get("sessionWebhook")
        if not session_webhook or not isinstance(session_webhook, str):
            raise ConfigurationError("Inbound message has no sessionWebhook")
        return cls.company(session_webhook, record.access_token)
