"""Exceptions raised by the ComfyUI client."""


class ComfyClientError(Exception):
    """Base class for all client failures."""


class NetworkError(ComfyClientError):
    """Transport failure talking to the server (connection refused, DNS, timeout)."""

    def __init__(
        self,
        code: int,
        message: str,
        url: str,
        status: int | None = None,
        data: dict | None = None,
    ):
        self.code = code
        self.message = message
        self.url = url
        self.status = status
        self.data = data
        super().__init__(message)

    def __str__(self):
        return self.message


class ResponseError(ComfyClientError):
    """A successful response whose body could not be decoded into its record."""

    def __init__(self, message: str, url: str):
        self.url = url
        super().__init__(message)


class ProtocolError(ComfyClientError):
    """A WebSocket text frame that is not valid JSON."""


class NotConnectedError(ComfyClientError):
    """The operation needs an open WebSocket connection."""


class JobError(ComfyClientError):
    """A submitted prompt could not be queued or its outputs could not be collected."""

    def __init__(self, message: str, prompt_id: str | None = None):
        self.prompt_id = prompt_id
        super().__init__(message)
