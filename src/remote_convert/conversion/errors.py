class ConversionError(Exception):
    """Base class for every failure surfaced by the conversion client."""

    default_message = "Conversion failed"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidURLError(ConversionError):
    default_message = "Invalid URL"


class UploadFailedError(ConversionError):
    default_message = "Upload failed"


class RemoteAPIError(ConversionError):
    """Non-2xx answer (or undecodable body) from the JSON API."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class JobFailedError(ConversionError):
    """The remote job reached the ``error`` status."""


class JobTimeoutError(ConversionError):
    default_message = "Request timeout"


class NoResultError(ConversionError):
    default_message = "No data received"
