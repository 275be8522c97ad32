"""Exceptions raised while talking to a BigBlueButton server."""


class TransportError(Exception):
    """Raised when a poll cycle cannot obtain a complete API response.

    Covers connection failures, timeouts, non-200 status codes and responses
    whose envelope cannot be decoded. A cycle that hits one of these emits
    nothing; the caller decides whether to retry on the next interval.
    """


class ResponseDecodeError(TransportError):
    """Raised when a response body is not the XML document we expect."""


class ApiError(TransportError):
    """Raised when the API answers with a non-SUCCESS return code."""

    def __init__(self, call_name: str, return_code: str, message_key: str = ""):
        self.call_name = call_name
        self.return_code = return_code
        self.message_key = message_key
        detail = f" ({message_key})" if message_key else ""
        super().__init__(f"{call_name} returned {return_code or 'no return code'}{detail}")
