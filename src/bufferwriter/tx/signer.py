"""
Transaction Signer - holds the upload authority key.

Manages the authority keypair that pays for and signs every transaction.
"""

import json
from pathlib import Path
from typing import Optional

import structlog

from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.signature import Signature

from bufferwriter.config import WriterConfig, get_config

logger = structlog.get_logger(__name__)


class TransactionSigner:
    """
    Handles signing with the upload authority's key.

    Supports loading keys from:
    - File path (Solana CLI JSON keypair format)
    - Base58-encoded secret key (for environment variable configuration)

    The keypair is read-only once loaded and is shared by every
    concurrently built or submitted transaction.
    """

    def __init__(self, config: Optional[WriterConfig] = None):
        """
        Initialize the transaction signer.

        Args:
            config: Writer configuration
        """
        self.config = config or get_config()
        self._keypair: Optional[Keypair] = None

    def load_key_from_file(self, key_path: str) -> None:
        """
        Load the authority keypair from a JSON file.

        Args:
            key_path: Path to a file holding the 64 secret key bytes as a JSON array
        """
        path = Path(key_path).expanduser()
        if not path.exists():
            raise FileNotFoundError(f"Keypair file not found: {key_path}")

        secret = json.loads(path.read_text())
        self._keypair = Keypair.from_bytes(bytes(secret))

        logger.info("keypair_loaded", path=key_path, pubkey=str(self.pubkey))

    def load_key_from_base58(self, secret: str) -> None:
        """
        Load the authority keypair from a base58 secret key.

        Args:
            secret: Base58-encoded 64 byte secret key
        """
        self._keypair = Keypair.from_base58_string(secret.strip())

        logger.info("keypair_loaded_from_base58", pubkey=str(self.pubkey))

    def load_from_config(self) -> None:
        """Load the authority keypair from configuration."""
        if self.config.keypair_path:
            self.load_key_from_file(self.config.keypair_path)
        elif self.config.keypair_base58:
            self.load_key_from_base58(self.config.keypair_base58)
        else:
            raise ValueError("No authority keypair configured")

    @property
    def keypair(self) -> Keypair:
        """Get the authority keypair."""
        if not self._keypair:
            raise RuntimeError("No signing key loaded")
        return self._keypair

    @property
    def pubkey(self) -> Optional[Pubkey]:
        """Get the authority's public key."""
        return self._keypair.pubkey() if self._keypair else None

    @property
    def is_loaded(self) -> bool:
        """Check if a signing key is loaded."""
        return self._keypair is not None

    def sign_message(self, message: bytes) -> Signature:
        """
        Sign raw message bytes with the authority key.

        Args:
            message: Serialized message to sign

        Returns:
            Ed25519 signature
        """
        return self.keypair.sign_message(message)


def generate_test_key() -> TransactionSigner:
    """
    Generate a new random signing key for testing.

    WARNING: Do not use in production. The key is not persisted.

    Returns:
        TransactionSigner with a new random key
    """
    signer = TransactionSigner()
    signer._keypair = Keypair()

    logger.warning("test_key_generated", pubkey=str(signer.pubkey))

    return signer
