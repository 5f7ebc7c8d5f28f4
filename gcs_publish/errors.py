"""
Error taxonomy for the upload pipeline.

Every error raised by the pipeline derives from PublishError. The class
attribute ``retryable`` tells the retry policy whether another attempt can
possibly succeed:

    EnumerationError    fatal, raised before any upload starts
    ConfigurationError  fatal, raised before any upload starts
    CredentialsError    fatal, raised before any upload starts
    OpenError           per-file, retryable
    TransferError       per-file, retryable
    CommitError         per-file, retryable
    InvalidACLError     per-file, never retried

Example:
    >>> from gcs_publish.errors import InvalidACLError
    >>> err = InvalidACLError("allUsers", "site/index.html")
    >>> err.retryable
    False
"""

from typing import Optional


class PublishError(Exception):
    """Base class for all upload pipeline errors."""

    retryable = False


class EnumerationError(PublishError):
    """Source tree could not be walked or a path could not be relativized."""


class ConfigurationError(PublishError):
    """Invalid or missing settings (target, metadata, limits)."""


class CredentialsError(PublishError):
    """Storage client could not be created from the given credentials."""


class OpenError(PublishError):
    """Local source file could not be opened for reading."""

    retryable = True


class TransferError(PublishError):
    """Streaming bytes to the object store failed."""

    retryable = True


class CommitError(PublishError):
    """Object store failed to finalize an otherwise complete upload."""

    retryable = True


class InvalidACLError(PublishError):
    """
    ACL rule is not of the form ``entity:role``.

    Attributes:
        rule: The malformed rule string
        key: Destination key of the upload that carried the rule
    """

    def __init__(self, rule: str, key: Optional[str] = None) -> None:
        self.rule = rule
        self.key = key
        if key:
            message = f"{key}: invalid ACL {rule!r}"
        else:
            message = f"invalid ACL {rule!r}"
        super().__init__(message)
