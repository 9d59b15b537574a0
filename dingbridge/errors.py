"""
Error taxonomy shared by the stream trigger and the reply sender.

- ConfigurationError: bad or missing setup, fatal to the single call
- PayloadError: an inbound event that cannot be parsed, fatal to that event only
- TransportError: connection or HTTP failure, never retried here
"""


class DingBridgeError(Exception):
    """Base class for all dingbridge errors."""


class ConfigurationError(DingBridgeError):
    pass


class PayloadError(DingBridgeError):
    def __init__(self, message: str, message_id: str | None = None):
        super().__init__(message)
        self.message_id = message_id


class TransportError(DingBridgeError):
    def __init__(self, message: str, status_code: int | None = None, body: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body
