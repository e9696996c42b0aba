"""Exception hierarchy for the scanner.

Every error raised on purpose by the package derives from ``ScannerError`` so
the CLI and the HTTP API can map them to a message or a status code in one
place.
"""

from typing import Any, Optional


class ScannerError(Exception):
    """Base class for all scanner errors."""


class ConfigError(ScannerError):
    pass


class AuthError(ScannerError):
    """Token exchange failed. Fatal for the run."""

    def __init__(self, status_code: Optional[int], body: str):
        self.status_code = status_code
        self.body = body
        super().__init__(f"token request failed (status code: {status_code}): {body}")


class APIError(ScannerError):
    """Non-2xx answer from the MRA API, or a transport failure after all retries.

    ``status_code`` is None when no HTTP response was received.
    """

    def __init__(self, status_code: Optional[int], body: str, message: str = "API request failed"):
        self.status_code = status_code
        self.body = body
        self.message = message
        super().__init__(f"{message} (status code: {status_code}): {body}")


class ValidationError(ScannerError):
    def __init__(self, field: str, value: Any, reason: str):
        self.field = field
        self.value = value
        self.reason = reason
        super().__init__(f"validation error: {reason} (field: {field}, value: {value!r})")


class NotFoundError(ScannerError):
    def __init__(self, key: str):
        self.key = key
        super().__init__(f"device not found: {key}")


class StoreError(ScannerError):
    """The local store could not complete a transaction."""


class PartialConsistencyError(ScannerError):
    """The primary write committed but a parent child-count adjustment failed.

    The primary effect is not rolled back.
    """

    def __init__(self, guid: str, parent_guid: str, message: str):
        self.guid = guid
        self.parent_guid = parent_guid
        super().__init__(message)


class SyncError(ScannerError):
    """First worker failure of a page; aborts the synchronization run."""

    def __init__(self, guid: str, message: str):
        self.guid = guid
        super().__init__(message)


class SyncCancelled(ScannerError):
    def __init__(self, message: str = "synchronization cancelled"):
        super().__init__(message)
