"""Error taxonomy shared by the data and service layers.

A cache miss is not an error: loaders return None instead.
"""


class BoardError(Exception):
    """Base class for all departure board errors."""


class ConfigurationError(BoardError):
    """Raised when a required credential or setting is missing."""


class ValidationError(BoardError):
    """Raised when a request is invalid (e.g. an empty stop selection)."""


class UpstreamError(BoardError):
    """Raised when a Golemio endpoint fails.

    Carries the HTTP status (0 when no response was received) and the response body.
    """

    def __init__(self, status_code: int, body: str, url: str | None = None):
        self.status_code = status_code
        self.body = body
        self.url = url
        super().__init__(f"Golemio API returned {status_code}: {body}")


class ParseError(BoardError):
    """Raised when a bulk dataset or response body cannot be parsed."""
