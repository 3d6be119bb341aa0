"""
Configuration management for the Buffer Writer.

Supports configuration via environment variables and .env files.
"""

from enum import Enum
from typing import Optional

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class NetworkType(str, Enum):
    """Solana clusters."""
    MAINNET = "mainnet"
    DEVNET = "devnet"
    TESTNET = "testnet"
    LOCALNET = "localnet"


class Commitment(str, Enum):
    """Commitment levels accepted for preflight simulation."""
    PROCESSED = "processed"
    CONFIRMED = "confirmed"
    FINALIZED = "finalized"


# Largest serialized transaction the cluster accepts
PACKET_DATA_SIZE = 1232

# Write payload that fills a packet exactly, with and without the two
# compute-budget instructions in front of the write
MAX_CHUNK_SIZE = 1012
MAX_CHUNK_SIZE_WITH_PRIORITY_FEES = 960

# getSignatureStatuses rejects more than this many signatures per call
MAX_SIGNATURE_STATUS_BATCH = 256


class WriterConfig(BaseSettings):
    """
    Configuration settings for the Buffer Writer.

    All settings can be configured via environment variables with the BUFFER_WRITER_ prefix.
    """

    model_config = SettingsConfigDict(
        env_prefix="BUFFER_WRITER_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Network settings
    network: NetworkType = Field(
        default=NetworkType.DEVNET,
        description="Solana cluster to connect to"
    )
    rpc_url: Optional[str] = Field(
        default=None,
        description="Custom RPC endpoint (overrides the cluster default)"
    )
    rpc_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Timeout for a single RPC request"
    )

    # Authority wallet settings
    keypair_path: Optional[str] = Field(
        default=None,
        description="Path to a Solana CLI JSON keypair file"
    )
    keypair_base58: Optional[str] = Field(
        default=None,
        description="Base58-encoded secret key (alternative to file path)"
    )

    # Chunking
    chunk_size: Optional[int] = Field(
        default=None,
        ge=1,
        description="Bytes written per transaction (derived from the packet limit if unset)"
    )
    account_extra_space: int = Field(
        default=45,
        ge=0,
        description="Bytes added to the payload length when querying rent exemption"
    )

    # Priority fees
    compute_unit_limit: Optional[int] = Field(
        default=25_000,
        ge=1,
        description="Compute unit ceiling per transaction"
    )
    compute_unit_price: Optional[int] = Field(
        default=550_000,
        ge=0,
        description="Price per compute unit in micro-lamports"
    )

    # Submission settings
    skip_preflight: bool = Field(
        default=True,
        description="Skip preflight simulation when sending"
    )
    preflight_commitment: Commitment = Field(
        default=Commitment.FINALIZED,
        description="Commitment used for preflight simulation"
    )
    send_max_retries: int = Field(
        default=3,
        ge=0,
        description="Maximum times the RPC node retries forwarding a single send"
    )
    encoding: str = Field(
        default="base64",
        description="Wire encoding for submitted transactions"
    )
    send_delay_ms: int = Field(
        default=25,
        ge=0,
        description="Delay between consecutive submissions"
    )
    max_inflight_sends: int = Field(
        default=64,
        ge=1,
        description="Maximum submissions in flight at once"
    )

    # Confirmation settings
    settle_seconds: float = Field(
        default=5.0,
        ge=0,
        description="Wait after a send round before the first status poll"
    )
    status_batch_size: int = Field(
        default=250,
        ge=1,
        le=MAX_SIGNATURE_STATUS_BATCH,
        description="Signatures per status query"
    )
    status_poll_attempts: int = Field(
        default=10,
        ge=1,
        description="Status polls per batch before conceding to the next round"
    )
    status_poll_interval_ms: int = Field(
        default=200,
        ge=0,
        description="Delay between status polls of one batch"
    )
    account_confirm_timeout_seconds: float = Field(
        default=60.0,
        gt=0,
        description="Maximum time to wait for the buffer account to be created"
    )
    account_confirm_interval_ms: int = Field(
        default=500,
        ge=0,
        description="Delay between status polls of the account creation transaction"
    )

    # Retry settings
    max_rounds: Optional[int] = Field(
        default=50,
        ge=1,
        description="Maximum send/confirm rounds (None retries until done)"
    )

    # Progress settings
    progress_queue_size: int = Field(
        default=256,
        ge=1,
        description="Capacity of the progress event channel"
    )

    # Logging settings
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)"
    )
    log_json: bool = Field(
        default=False,
        description="Output logs in JSON format"
    )

    @model_validator(mode="after")
    def _check_chunk_size(self) -> "WriterConfig":
        if self.chunk_size is not None and self.chunk_size > self.max_chunk_size:
            raise ValueError(
                f"chunk_size {self.chunk_size} exceeds the {self.max_chunk_size} bytes "
                "that fit in one transaction"
            )
        return self

    @property
    def priority_fees_enabled(self) -> bool:
        """Whether compute-budget instructions are prefixed to transactions."""
        return self.compute_unit_limit is not None and self.compute_unit_price is not None

    @property
    def max_chunk_size(self) -> int:
        """Largest chunk that still fits in one transaction."""
        if self.priority_fees_enabled:
            return MAX_CHUNK_SIZE_WITH_PRIORITY_FEES
        return MAX_CHUNK_SIZE

    @property
    def effective_chunk_size(self) -> int:
        """Chunk size actually used for splitting payloads."""
        return self.chunk_size or self.max_chunk_size

    @property
    def endpoint(self) -> str:
        """Get the RPC endpoint based on network."""
        if self.rpc_url:
            return self.rpc_url

        network_urls = {
            NetworkType.MAINNET: "https://api.mainnet-beta.solana.com",
            NetworkType.DEVNET: "https://api.devnet.solana.com",
            NetworkType.TESTNET: "https://api.testnet.solana.com",
            NetworkType.LOCALNET: "http://127.0.0.1:8899",
        }
        return network_urls.get(self.network, "https://api.devnet.solana.com")


# Global config instance
_config: Optional[WriterConfig] = None


def get_config() -> WriterConfig:
    """Get or create the global configuration instance."""
    global _config
    if _config is None:
        _config = WriterConfig()
    return _config


def set_config(config: WriterConfig) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config
