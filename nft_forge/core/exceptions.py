"""
Custom exception classes for the NFT pipeline.
Provides structured error handling across all modules.
"""

from typing import Any, Optional, Dict


class NftForgeException(Exception):
    """Base exception class for the NFT pipeline."""

    def __init__(
        self,
        message: str,
        code: str = "UNKNOWN_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)


class ConfigurationError(NftForgeException):
    """Raised when there's a configuration error."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "CONFIGURATION_ERROR", details)


class ValidationError(NftForgeException):
    """Raised when input validation fails. Never retried."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "VALIDATION_ERROR", details)


class SolanaError(NftForgeException):
    """Raised when there's a Solana blockchain error."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "SOLANA_ERROR", details)


class SolanaRPCError(SolanaError):
    """Raised when a Solana RPC call fails."""


class StorageError(NftForgeException):
    """Raised when the storage node rejects a request."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "STORAGE_ERROR", details)


class NotFoundError(NftForgeException):
    """Raised when a requested resource is not found."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "NOT_FOUND", details)


class RetryExhaustedError(NftForgeException):
    """Raised when an operation failed on every allowed attempt."""

    def __init__(self, operation: str, attempts: int, last_error: BaseException):
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"{operation} failed after {attempts} attempt(s): {last_error}",
            "RETRY_EXHAUSTED",
            {
                "operation": operation,
                "attempts": attempts,
                "last_error": str(last_error),
                "error_type": type(last_error).__name__,
            }
        )


class VisibilityTimeoutError(NotFoundError):
    """Raised when a freshly written resource never became readable."""

    def __init__(self, handle: str, attempts: int, operation: str = "lookup"):
        self.handle = handle
        self.attempts = attempts
        super().__init__(
            f"Resource {handle} not visible after {attempts} attempt(s)",
            {"handle": handle, "attempts": attempts, "operation": operation}
        )


class InsufficientFundsError(NftForgeException):
    """Raised when funding did not bring a balance above its hard floor."""

    def __init__(self, required: float, available: float, account: Optional[str] = None):
        self.required = required
        self.available = available
        super().__init__(
            f"Insufficient funds: required {required}, available {available}",
            "INSUFFICIENT_FUNDS",
            {"required": required, "available": available, "account": account}
        )


class BatchAbortedError(NftForgeException):
    """Raised when a batch stops early because a unit failed."""

    def __init__(self, result: Any, failed_units: int):
        self.result = result
        super().__init__(
            f"Batch aborted after {failed_units} failed unit(s)",
            "BATCH_ABORTED",
            {"failed_units": failed_units}
        )


# Pipeline-specific exceptions
class NFTNotFoundError(NotFoundError):
    """Raised when an NFT mint has no metadata account."""

    def __init__(self, mint: str):
        super().__init__(
            f"NFT not found: {mint}",
            {"mint": mint}
        )


class InvalidAddressError(ValidationError):
    """Raised when a string is not a valid base58 public key."""

    def __init__(self, address: str, reason: str = "not a valid public key"):
        super().__init__(
            f"Invalid address {address!r}: {reason}",
            {"address": address, "reason": reason}
        )


class MismatchedAssetsError(ValidationError):
    """Raised when NFT image and metadata file sets do not line up."""

    def __init__(self, images: int, metadata: int):
        missing = (
            "Metadata missing for some images."
            if images > metadata
            else "Images missing for some metadata files."
        )
        super().__init__(
            f"Mismatched NFT images ({images}) and metadata ({metadata}). {missing}",
            {"images": images, "metadata": metadata}
        )
