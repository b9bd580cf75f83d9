"""Exception hierarchy shared by adapters, drivers and the indexer."""


class IngestError(Exception):
    """Base class for all ingestion errors."""


class ConfigError(IngestError):
    """Missing credentials, endpoints or invalid settings. Fatal at startup."""


class UpstreamError(IngestError):
    """A transient failure talking to an external API."""

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status


class RateLimitedError(UpstreamError):
    """The external API asked us to slow down (HTTP 429)."""


class RetriesExhausted(IngestError):
    """A call kept failing after every allowed attempt."""

    def __init__(self, attempts: int, last_error: BaseException):
        super().__init__(f"gave up after {attempts} attempts: {last_error}")
        self.attempts = attempts
        self.last_error = last_error


class StreamDecodeError(IngestError):
    """The underlying compressed stream could not be read to the end."""

    def __init__(self, message: str, matched: int):
        super().__init__(message)
        self.matched = matched


class BatchCallbackError(IngestError):
    """The per-batch callback raised; processing of the stream stopped."""

    def __init__(self, matched: int, cause: BaseException):
        super().__init__(f"callback error after {matched} records: {cause}")
        self.matched = matched
        self.cause = cause


class IndexerError(IngestError):
    """The search index rejected a request as a whole."""

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status


def raise_for_status(response, what: str) -> None:
    """Translate a non-2xx ``requests`` response into an UpstreamError."""
    status = response.status_code
    if status == 429:
        raise RateLimitedError(f"{what}: rate limited (429)", status=429)
    if status < 200 or status >= 300:
        body = (response.text or "")[:300]
        raise UpstreamError(f"{what}: HTTP {status}: {body}", status=status)
