"""
Block Configuration
One value set for every size and parameter the block layer depends on.

The block ceiling is dictated by the transport or storage medium underneath,
so it is injected rather than hard-coded. Everything that depends on it
(chunk payload size, framing checks, store limits) reads it from here.

Framing sizes (nonce, tag, key) are fixed by the wire format and can only be
restated, never changed.
"""

import logging
import os
from dataclasses import dataclass

from blockvault.errors import ConfigurationError

logger = logging.getLogger(__name__)


# Wire framing (fixed)
NONCE_SIZE = 12   # AES-256-GCM standard
TAG_SIZE = 16
KEY_SIZE = 32     # 256 bits

# Transport ceiling (2^18 bytes)
MAX_BLOCK_SIZE = 262144

# RSA exchange parameters
RSA_KEY_SIZE = 2048
RSA_PUBLIC_EXPONENT = 65537

DEFAULT_WORKERS = 4
DEFAULT_STORE_RETRIES = 2
DEFAULT_RETRY_BACKOFF = 0.05  # seconds, doubled per attempt


def _get_env_int(key: str, default: int) -> int:
    """Read an integer override from the environment, falling back on bad input."""
    value = os.environ.get(key)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning(f"Environment variable {key}={value!r} is not an integer, "
                       f"using default {default}")
        return default


def _get_env_float(key: str, default: float) -> float:
    value = os.environ.get(key)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        logger.warning(f"Environment variable {key}={value!r} is not a float, "
                       f"using default {default}")
        return default


@dataclass(frozen=True)
class BlockConfig:
    """
    Parameters shared by the codec, chunker, stores and encoder.

    Args:
        max_block_size: Largest framed block the transport accepts.
        workers: Thread pool size for block-parallel sealing and fetching.
        store_retries: Extra attempts for a single block put/get on a retryable StoreError.
        retry_backoff: Initial delay between attempts, doubled each time.
    """
    max_block_size: int = MAX_BLOCK_SIZE
    nonce_size: int = NONCE_SIZE
    tag_size: int = TAG_SIZE
    key_size: int = KEY_SIZE
    rsa_key_size: int = RSA_KEY_SIZE
    rsa_public_exponent: int = RSA_PUBLIC_EXPONENT
    workers: int = DEFAULT_WORKERS
    store_retries: int = DEFAULT_STORE_RETRIES
    retry_backoff: float = DEFAULT_RETRY_BACKOFF

    def __post_init__(self):
        self.validate()

    @property
    def overhead(self) -> int:
        """Framing bytes added to every block."""
        return self.nonce_size + self.tag_size

    @property
    def max_payload(self) -> int:
        """Largest plaintext chunk a single block can carry."""
        return self.max_block_size - self.overhead

    def validate(self) -> bool:
        """
        Check the value set is internally consistent.

        Raises:
            ConfigurationError: On the first inconsistent field.
        """
        if self.nonce_size != NONCE_SIZE:
            raise ConfigurationError("Nonce size is fixed by the block framing",
                                     {"nonce_size": self.nonce_size})
        if self.tag_size != TAG_SIZE:
            raise ConfigurationError("Tag size is fixed by the block framing",
                                     {"tag_size": self.tag_size})
        if self.key_size != KEY_SIZE:
            raise ConfigurationError("Symmetric keys are 32 bytes",
                                     {"key_size": self.key_size})
        if self.max_block_size - self.overhead < 1:
            raise ConfigurationError(
                "Block ceiling leaves no room for payload",
                {"max_block_size": self.max_block_size, "overhead": self.overhead},
            )
        if self.rsa_key_size < RSA_KEY_SIZE:
            raise ConfigurationError("RSA modulus must be at least 2048 bits",
                                     {"rsa_key_size": self.rsa_key_size})
        if self.rsa_public_exponent != RSA_PUBLIC_EXPONENT:
            raise ConfigurationError("RSA public exponent must be 65537",
                                     {"rsa_public_exponent": self.rsa_public_exponent})
        if self.workers < 1:
            raise ConfigurationError("Need at least one worker", {"workers": self.workers})
        if self.store_retries < 0 or self.retry_backoff < 0:
            raise ConfigurationError(
                "Retry settings cannot be negative",
                {"store_retries": self.store_retries, "retry_backoff": self.retry_backoff},
            )
        return True

    @classmethod
    def from_env(cls) -> "BlockConfig":
        """
        Build a config from BLOCKVAULT_* environment variables.

        Recognized: BLOCKVAULT_MAX_BLOCK_SIZE, BLOCKVAULT_WORKERS,
        BLOCKVAULT_STORE_RETRIES, BLOCKVAULT_RETRY_BACKOFF.
        """
        return cls(
            max_block_size=_get_env_int("BLOCKVAULT_MAX_BLOCK_SIZE", MAX_BLOCK_SIZE),
            workers=_get_env_int("BLOCKVAULT_WORKERS", DEFAULT_WORKERS),
            store_retries=_get_env_int("BLOCKVAULT_STORE_RETRIES", DEFAULT_STORE_RETRIES),
            retry_backoff=_get_env_float("BLOCKVAULT_RETRY_BACKOFF", DEFAULT_RETRY_BACKOFF),
        )


DEFAULT_CONFIG = BlockConfig()
