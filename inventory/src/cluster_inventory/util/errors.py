from __future__ import annotations

from enum import IntEnum

from botocore.exceptions import BotoCoreError, ClientError


class ExitCode(IntEnum):
    OK = 0
    CONFIG_ERROR = 2
    AUTH_ERROR = 3
    CLOUD_ERROR = 4
    RUNTIME_ERROR = 5
    CANCELLED = 130


class InventoryError(Exception):
    """Base error for inventory pipeline."""


class ConfigError(InventoryError):
    """Raised for configuration or argument issues."""


class AuthResolutionError(InventoryError):
    """Raised when account credentials cannot be turned into a provider connection."""


class CloudClientError(InventoryError):
    """Raised when cloud SDK operations fail in a non-retriable way."""


class ValidationError(InventoryError):
    """Raised when an inventory entity or mutation is rejected."""


class DuplicateAccountError(ValidationError):
    """Raised when an account is added twice to the same inventory."""


class ExportError(InventoryError):
    """Raised when exporting artifacts fails."""


class DiffError(InventoryError):
    """Raised when diffing snapshots fails."""


class ScanCancelled(InventoryError):
    """Raised when a scan is stopped through its cancellation event."""


def as_exit_code(exc: BaseException) -> int:
    if isinstance(exc, (ConfigError, ValueError)):
        return int(ExitCode.CONFIG_ERROR)
    if isinstance(exc, AuthResolutionError):
        return int(ExitCode.AUTH_ERROR)
    if isinstance(exc, CloudClientError):
        return int(ExitCode.CLOUD_ERROR)
    if isinstance(exc, ScanCancelled):
        return int(ExitCode.CANCELLED)
    if isinstance(exc, (ExportError, DiffError, InventoryError)):
        return int(ExitCode.RUNTIME_ERROR)
    return 1


def is_aws_error(exc: BaseException) -> bool:
    """
    Return True if the exception looks like a boto3/botocore error.
    """
    if isinstance(exc, (ClientError, BotoCoreError)):
        return True
    return exc.__class__.__module__.startswith(("botocore.", "boto3."))


def map_aws_error(exc: BaseException, context: str) -> CloudClientError | None:
    """
    Wrap AWS SDK errors with CloudClientError for consistent exit codes.
    """
    if not is_aws_error(exc):
        return None
    return CloudClientError(f"{context}: {exc}")
