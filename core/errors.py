"""
Error taxonomy for the table pipeline.

Every error carries the stage it originated from so callers can tell a
transport-retryable condition apart from a terminal schema/storage one.
"""

from typing import Optional


class PipelineError(Exception):
    """Base class for all pipeline errors"""

    stage = "pipeline"
    retryable = False


class ConfigError(PipelineError, ValueError):
    """Raised for invalid or incomplete configuration"""

    stage = "config"


# Fetch ----------------------------------------------------------------------

class FetchError(PipelineError):
    """Raised when a document cannot be retrieved"""

    stage = "fetch"
    retryable = True

    def __init__(self, message: str, url: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.url = url
        self.status_code = status_code


class NetworkError(FetchError):
    """Connection refused, DNS failure, reset, ..."""


class FetchTimeoutError(FetchError):
    """Request did not complete within the configured timeout"""


class ServerError(FetchError):
    """5xx response or 429 rate limiting"""


class ClientError(FetchError):
    """4xx response other than 429; never retried"""

    retryable = False


class RetriesExhaustedError(FetchError):
    """Terminal fetch failure after every attempt was used"""

    retryable = False

    def __init__(self, url: str, attempts: int, last_error: FetchError):
        super().__init__(
            f"Failed to fetch {url} after {attempts} attempts: {last_error}",
            url=url,
            status_code=last_error.status_code,
        )
        self.attempts = attempts
        self.last_error = last_error


# Extraction -----------------------------------------------------------------

class ParseError(PipelineError):
    """A single table could not be turned into typed rows"""

    stage = "extract"

    def __init__(self, message: str, table_index: Optional[int] = None):
        super().__init__(message)
        self.table_index = table_index


class ConversionError(ParseError):
    """A cell could not be parsed under its column's resolved type"""

    def __init__(self, column: str, value: str, type_name: str):
        super().__init__(f"Cannot convert {value!r} in column '{column}' to {type_name}")
        self.column = column
        self.value = value
        self.type_name = type_name


# Broker ---------------------------------------------------------------------

class DeliveryError(PipelineError):
    """The broker channel gave up on a submission"""

    stage = "deliver"


class DecodeError(PipelineError):
    """A broker payload is not a valid transport unit"""

    stage = "consume"


class SchemaDriftError(PipelineError):
    """A unit arrived with a schema different from the session schema"""

    stage = "consume"


# Storage --------------------------------------------------------------------

class StorageError(PipelineError):
    """Provisioning, connecting to or writing into the store failed"""

    stage = "storage"
