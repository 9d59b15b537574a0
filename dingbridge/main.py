from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request

from dingbridge.api.reply import router as reply_router
from dingbridge.config import settings
from dingbridge.dingtalk.forwarder import RecordForwarder
from dingbridge.dingtalk.models import Credential
from dingbridge.dingtalk.sender import reply_sender
from dingbridge.dingtalk.stream import StreamListener
from dingbridge.errors import ConfigurationError, TransportError
from dingbridge.middleware.error_handler import (
    configuration_error_handler,
    global_exception_handler,
    transport_error_handler,
)
from dingbridge.middleware.logging import RequestLoggingMiddleware


logger = structlog.get_logger()


def configure_logging():
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            (
                structlog.dev.ConsoleRenderer()
                if settings.APP_ENV == "development"
                else structlog.processors.JSONRenderer()
            ),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def build_stream_listener(forwarder: RecordForwarder) -> StreamListener:
    """Build the robot-message trigger from settings."""
    credential = Credential(
        client_id=settings.DINGTALK_CLIENT_ID,
        client_secret=settings.DINGTALK_CLIENT_SECRET,
    )
    return StreamListener(
        credential,
        forwarder,
        auto_ack=settings.DINGTALK_AUTO_ACK,
        dedup=settings.DINGTALK_DEDUP_ENABLED,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    logger.info("app.startup", env=settings.APP_ENV)

    await reply_sender.initialize(timeout=settings.DINGTALK_REPLY_TIMEOUT)

    app.state.stream_listener = None
    app.state.record_forwarder = None
    if settings.DINGTALK_ENABLED:
        forwarder = RecordForwarder(
            forward_url=settings.DINGTALK_FORWARD_URL,
            timeout=settings.DINGTALK_FORWARD_TIMEOUT,
        )
        await forwarder.initialize()
        app.state.record_forwarder = forwarder
        listener = build_stream_listener(forwarder)
        app.state.stream_listener = listener
        await listener.start()

    yield

    # Shutdown
    if app.state.stream_listener is not None:
        await app.state.stream_listener.stop()
        app.state.stream_listener = None
    if app.state.record_forwarder is not None:
        await app.state.record_forwarder.shutdown()
        app.state.record_forwarder = None
    await reply_sender.shutdown()
    logger.info("app.shutdown")


app = FastAPI(title="dingbridge", lifespan=lifespan)

# Middleware
app.add_middleware(RequestLoggingMiddleware)

# Exception handlers
app.add_exception_handler(ConfigurationError, configuration_error_handler)
app.add_exception_handler(TransportError, transport_error_handler)
app.add_exception_handler(Exception, global_exception_handler)

# Routes
app.include_router(reply_router)


@app.get("/health")
async def health(request: Request):
    listener = getattr(request.app.state, "stream_listener", None)
    if listener is None or not listener.is_running:
        stream = "stopped"
    elif listener.is_connected:
        stream = "connected"
    else:
        stream = "disconnected"  # started, but the stream task is down or reconnecting
    return {"status": "ok", "stream": stream}
