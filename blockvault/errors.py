"""
Error Taxonomy
Every failure the block layer reports, rooted at BlockVaultError.

Only StoreError is ever worth retrying. The rest mean a wrong key, tampered
data, or an unauthorized principal, and are surfaced as-is.
"""


class BlockVaultError(Exception):
    """
    Base class for all block layer errors.

    Attributes:
        message: Human-readable description.
        details: Extra context (block index, address, sizes). Never key material.
    """

    def __init__(self, message: str, details: dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} [{details_str}]"
        return self.message


class AuthenticationFailure(BlockVaultError):
    """A block failed tag verification: tampered data or the wrong key."""


class UnwrapFailure(BlockVaultError):
    """An RSA-wrapped key could not be recovered with the given private key."""


class AccessDenied(BlockVaultError):
    """The principal holds no usable wrapped key for this file."""


class NotFound(BlockVaultError):
    """The block store has nothing under the requested address."""


class StoreError(BlockVaultError):
    """
    I/O failure in a block store.

    Args:
        retryable: True for transient failures a caller may retry with backoff.
    """

    def __init__(self, message: str, details: dict = None, retryable: bool = True):
        self.retryable = retryable
        super().__init__(message, details)


class EncodingInvariantViolation(BlockVaultError):
    """A size, count or nonce invariant of the encoding was broken."""


class ConfigurationError(BlockVaultError):
    """Invalid block configuration or RSA parameters."""
