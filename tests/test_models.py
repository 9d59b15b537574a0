"""Tests for DingTalk value types and the flat reply request."""

import pytest

from dingbridge.dingtalk.models import (
    InboundRecord,
    MarkdownMessage,
    Mention,
    RawMessage,
    RobotKind,
    TextMessage,
    WebhookTarget,
)
from dingbridge.errors import ConfigurationError
from dingbridge.schemas.reply import ReplyRequest


class TestMention:
    def test_comma_separated_ids(self):
        assert Mention(at_user_ids="u1,u2").at_user_ids == ["u1", "u2"]

    def test_empty_string(self):
        assert Mention(at_user_ids="").at_user_ids == []

    def test_at_all_overrides_ids(self):
        mention = Mention(at_user_ids=["u1"], is_at_all=True)
        assert mention.at_user_ids == []
        assert mention.to_wire() == {"atUserIds": [], "isAtAll": True}

    def test_order_preserved(self):
        assert Mention(at_user_ids=["b", "a", "c"]).to_wire()["atUserIds"] == ["b", "a", "c"]


class TestWebhookTarget:
    def test_custom_has_no_token(self):
        target = WebhookTarget.custom("https://x", "sec")
        assert target.robot_kind == RobotKind.CUSTOM
        assert target.secret == "sec"
        assert target.access_token is None

    def test_company_has_no_secret(self):
        target = WebhookTarget.company("https://x", "tok")
        assert target.robot_kind == RobotKind.COMPANY
        assert target.secret is None
        assert target.access_token == "tok"

    def test_for_session(self):
        record = InboundRecord(
            access_token="tok",
            message_id="m1",
            message={"sessionWebhook": "https://oapi.dingtalk.com/robot/sendBySession?session=s"},
        )
        target = WebhookTarget.for_session(record)
        assert target.base_url.endswith("session=s")
        assert target.access_token == "tok"
        assert target.robot_kind == RobotKind.COMPANY

    def test_for_session_without_webhook(self):
        record = InboundRecord(access_token="tok", message_id="m1", message={})
        with pytest.raises(ConfigurationError):
            WebhookTarget.for_session(record)


class TestInboundRecord:
    def test_robot_message_view_keeps_extras(self):
        record = InboundRecord(
            access_token="tok",
            message_id="m1",
            message={
                "msgtype": "text",
                "text": {"content": " hi"},
                "senderStaffId": "staff-1",
                "isInAtList": True,
                "atUsers": [{"dingtalkId": "x"}],
            },
        )
        msg = record.robot_message
        assert msg.text.content == " hi"
        assert msg.sender_staff_id == "staff-1"
        assert msg.is_in_at_list is True
        assert msg.model_extra["atUsers"] == [{"dingtalkId": "x"}]

    def test_to_json_shape(self):
        record = InboundRecord(access_token="tok", message_id="m1", message={"a": 1})
        assert record.to_json() == {"accessToken": "tok", "messageId": "m1", "message": {"a": 1}}


class TestReplyRequest:
    def test_custom_target_ignores_access_token(self):
        req = ReplyRequest(webhook="https://x", secret="sec", access_token="tok")
        target = req.to_target()
        assert target.secret == "sec"
        assert target.access_token is None

    def test_company_target_ignores_secret(self):
        req = ReplyRequest(webhook="https://x", robot_kind="company", secret="sec", access_token="tok")
        target = req.to_target()
        assert target.secret is None
        assert target.access_token == "tok"

    def test_text_message(self):
        req = ReplyRequest(webhook="https://x", content="hello", at_user_ids="u1,u2")
        msg = req.to_message()
        assert isinstance(msg, TextMessage)
        assert msg.content == "hello"
        assert msg.mention.at_user_ids == ["u1", "u2"]

    def test_markdown_message(self):
        req = ReplyRequest(
            webhook="https://x", msgtype="markdown", title="T", markdown_text="**b**", is_at_all=True
        )
        msg = req.to_message()
        assert isinstance(msg, MarkdownMessage)
        assert msg.text == "**b**"
        assert msg.mention.is_at_all is True

    def test_json_mode_ignores_mentions(self):
        req = ReplyRequest(
            webhook="https://x",
            json_mode=True,
            json_data={"msgtype": "text", "text": {"content": "x"}},
            at_user_ids="u1",
            is_at_all=True,
        )
        msg = req.to_message()
        assert isinstance(msg, RawMessage)
        assert msg.mention.to_wire() == {"atUserIds": [], "isAtAll": False}

    @pytest.mark.parametrize("msgtype", [None, "", "image"])
    def test_unresolvable_msgtype(self, msgtype):
        req = ReplyRequest(webhook="https://x", msgtype=msgtype)
        with pytest.raises(ConfigurationError):
            req.to_message()


class TestSessionTargetOpaquePayload:
    def test_non_conforming_fields_do_not_break_lookup(self):
        record = InboundRecord(
            access_token="tok",
            message_id="m1",
            message={"text": "plain", "sessionWebhook": "https://oapi.dingtalk.com/robot/sendBySession?s=1"},
        )
        assert WebhookTarget.for_session(record).base_url.endswith("s=1")
