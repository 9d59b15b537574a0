from typing import Any

from pydantic import BaseModel, Field

from dingbridge.dingtalk.models import (
    MarkdownMessage,
    Mention,
    OutboundMessage,
    RawMessage,
    RobotKind,
    TextMessage,
    WebhookTarget,
)
from dingbridge.errors import ConfigurationError


class ReplyRequest(BaseModel):
    """Flat reply parameters, one field per reply-node input."""

    webhook: str
    robot_kind: RobotKind = RobotKind.CUSTOM
    secret: str = ""  # custom robots only
    access_token: str = ""  # company robots only

    json_mode: bool = False
    json_data: dict[str, Any] = Field(default_factory=dict)

    msgtype: str | None = "text"  # "text" | "markdown"
    content: str = ""
    title: str = ""
    markdown_text: str = ""

    is_at_all: bool = False
    at_user_ids: str | list[str] = ""  # list or comma-separated userids

    def to_target(self) -> WebhookTarget:
        if self.robot_kind == RobotKind.COMPANY:
            return WebhookTarget.company(self.webhook, self.access_token)
        return WebhookTarget.custom(self.webhook, self.secret)

    def to_message(self) -> OutboundMessage:
        if self.json_mode:
            return RawMessage(document=self.json_data)

        mention = Mention(at_user_ids=self.at_user_ids, is_at_all=self.is_at_all)
        if self.msgtype == "text":
            return TextMessage(content=self.content, mention=mention)
        if self.msgtype == "markdown":
            return MarkdownMessage(title=self.title, text=self.markdown_text, mention=mention)
        raise ConfigurationError(f"Unsupported msgtype: {self.msgtype!r}")
