"""
Reply endpoint: send one robot message to a DingTalk webhook.

ConfigurationError and TransportError are mapped to HTTP responses by the
app's exception handlers.
"""

from fastapi import APIRouter

from dingbridge.dingtalk.sender import reply_sender
from dingbridge.schemas.reply import ReplyRequest

router = APIRouter(prefix="/dingtalk", tags=["dingtalk"])


@router.post("/reply")
async def send_reply(req: ReplyRequest):
    """Send a reply and return the platform's JSON response verbatim."""
    target = req.to_target()
    message = req.to_message()
    return await reply_sender.send(target, message)
