"""Exception taxonomy shared by the graph binding and the engine."""


class InvalidRequestError(ValueError):
    """Bad or missing request parameters; raised before any traversal."""


class GraphAPIError(Exception):
    """Generic failure talking to the graph API."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class RateLimitError(GraphAPIError):
    """HTTP 429 from the graph API."""

    def __init__(self, message: str, retry_after: float | None = None):
        super().__init__(message, status_code=429)
        self.retry_after = retry_after


class MalformedPayloadError(GraphAPIError):
    """A graph API payload could not be parsed into a UserRecord."""


class FirstDegreeFetchError(GraphAPIError):
    """The seed's following list could not be fetched at all."""
