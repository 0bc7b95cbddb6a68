from typing import Optional


class SocFeedError(Exception):
    """Base class for errors raised by the agent."""


class ChannelError(SocFeedError):
    """The duplex channel to the backend failed or was closed."""


class BackendRequestError(SocFeedError):
    """A REST call to the backend failed or returned a non-2xx status."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        if status_code is not None:
            message = f"HTTP {status_code}: {message}"
        super().__init__(message)


class MalformedPayloadError(SocFeedError):
    """A payload from the channel, the REST API or a caller has an unexpected shape."""

    def __init__(self, kind: str, detail: str):
        self.kind = kind
        self.detail = detail
        super().__init__(f"Malformed {kind} payload: {detail}")
