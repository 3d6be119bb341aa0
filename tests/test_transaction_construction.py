"""
Test suite for transaction construction functionality.

Tests the ability to construct valid, self-contained buffer transactions.
"""

import json
import struct

import pytest
from pydantic import ValidationError
from solders.hash import Hash
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from bufferwriter.config import (
    MAX_CHUNK_SIZE,
    MAX_CHUNK_SIZE_WITH_PRIORITY_FEES,
    PACKET_DATA_SIZE,
    NetworkType,
    WriterConfig,
)
from bufferwriter.core.chunk import Chunk
from bufferwriter.errors import InstructionBuildError, ZeroFunding
from bufferwriter.tx import instructions
from bufferwriter.tx.builder import TransactionBuilder, transaction_signature
from bufferwriter.tx.signer import TransactionSigner, generate_test_key
from tests.conftest import generate_payload, write_data, write_offset


COMPUTE_BUDGET_ID = Pubkey.from_string("ComputeBudget111111111111111111111111111111")
SYSTEM_PROGRAM_ID = Pubkey.from_string("11111111111111111111111111111111")

BLOCKHASH_A = Hash(bytes([1] * 32))
BLOCKHASH_B = Hash(bytes([2] * 32))


def program_ids(tx):
    message = tx.message
    return [message.account_keys[ix.program_id_index] for ix in message.instructions]


@pytest.fixture
def fee_config() -> WriterConfig:
    """Configuration with the default priority fee prefix."""
    return WriterConfig(network=NetworkType.LOCALNET)


# ============================================================================
# Test Transaction Signer
# ============================================================================

class TestTransactionSigner:
    """Tests for transaction signing functionality."""

    def test_generate_test_key(self):
        """Test generating a random test key."""
        signer = generate_test_key()

        assert signer.is_loaded is True
        assert signer.pubkey is not None

    def test_signer_not_loaded(self, test_config):
        """Test that signer raises error when key not loaded."""
        signer = TransactionSigner(test_config)

        assert signer.is_loaded is False
        assert signer.pubkey is None

        with pytest.raises(RuntimeError, match="No signing key loaded"):
            signer.sign_message(b"message")

    def test_load_key_from_file(self, test_config, tmp_path):
        """Test loading a Solana CLI JSON keypair."""
        keypair = Keypair()
        key_file = tmp_path / "authority.json"
        key_file.write_text(json.dumps(list(bytes(keypair))))

        signer = TransactionSigner(test_config)
        signer.load_key_from_file(str(key_file))

        assert signer.pubkey == keypair.pubkey()

    def test_load_key_missing_file(self, test_config, tmp_path):
        """Test that a missing keypair file is reported."""
        signer = TransactionSigner(test_config)

        with pytest.raises(FileNotFoundError):
            signer.load_key_from_file(str(tmp_path / "missing.json"))

    def test_load_key_from_base58(self, test_config):
        """Test loading a base58 secret key."""
        keypair = Keypair()

        signer = TransactionSigner(test_config)
        signer.load_key_from_base58(str(keypair))

        assert signer.pubkey == keypair.pubkey()

    def test_load_from_config_without_key(self, test_config):
        """Test that configuration without any key is rejected."""
        signer = TransactionSigner(test_config)

        with pytest.raises(ValueError, match="No authority keypair configured"):
            signer.load_from_config()

    def test_sign_message(self):
        """Test that signatures verify against the authority key."""
        signer = generate_test_key()

        signature = signer.sign_message(b"hello")

        assert signature.verify(signer.pubkey, b"hello")


# ============================================================================
# Test Loader Instructions
# ============================================================================

class TestInstructions:
    """Tests for upgradeable loader instruction encoding."""

    def test_write_layout(self):
        """Write data is tag, offset, length, then the bytes."""
        buffer = Keypair().pubkey()
        authority = Keypair().pubkey()

        ix = instructions.write(buffer, authority, 3000, b"abc")
        data = bytes(ix.data)

        assert ix.program_id == instructions.BPF_LOADER_UPGRADEABLE_ID
        assert struct.unpack_from("<IIQ", data) == (instructions.WRITE, 3000, 3)
        assert data[16:] == b"abc"

        assert [(a.pubkey, a.is_signer, a.is_writable) for a in ix.accounts] == [
            (buffer, False, True),
            (authority, True, False),
        ]

    def test_create_buffer_instructions(self):
        """Account creation allocates metadata plus payload and hands it to the loader."""
        payer = Keypair().pubkey()
        buffer = Keypair().pubkey()

        create, initialize = instructions.create_buffer(
            payer=payer,
            buffer=buffer,
            authority=payer,
            lamports=5_000_000,
            payload_len=10_000,
        )

        assert create.program_id == SYSTEM_PROGRAM_ID
        _, lamports, space = struct.unpack_from("<IQQ", bytes(create.data))
        assert lamports == 5_000_000
        assert space == instructions.BUFFER_METADATA_SIZE + 10_000
        assert bytes(create.data)[20:52] == bytes(instructions.BPF_LOADER_UPGRADEABLE_ID)

        assert initialize.program_id == instructions.BPF_LOADER_UPGRADEABLE_ID
        assert bytes(initialize.data) == struct.pack("<I", instructions.INITIALIZE_BUFFER)

    def test_priority_fees_need_limit_and_price(self):
        """The compute budget prefix is all or nothing."""
        assert instructions.priority_fee_instructions(None, None) == []
        assert instructions.priority_fee_instructions(25_000, None) == []
        assert instructions.priority_fee_instructions(None, 550_000) == []

        prefix = instructions.priority_fee_instructions(25_000, 550_000)
        assert [ix.program_id for ix in prefix] == [COMPUTE_BUDGET_ID, COMPUTE_BUDGET_ID]


# ============================================================================
# Test Transaction Builder
# ============================================================================

class TestTransactionBuilder:
    """Tests for transaction building functionality."""

    def test_write_transaction(self, test_config, test_signer):
        """Test building a write transaction for one chunk."""
        builder = TransactionBuilder(test_signer, test_config)
        buffer = Keypair().pubkey()
        chunk = Chunk(offset=4000, data=generate_payload(1000))

        tx = builder.build_write_transaction(chunk, buffer, BLOCKHASH_A)

        assert len(tx.signatures) == 1
        assert tx.message.account_keys[0] == test_signer.pubkey
        assert tx.message.recent_blockhash == BLOCKHASH_A
        assert program_ids(tx) == [instructions.BPF_LOADER_UPGRADEABLE_ID]
        assert write_offset(tx) == 4000
        assert write_data(tx) == chunk.data
        tx.verify()

    def test_resign_changes_signature_only(self, test_config, test_signer):
        """A new blockhash gives a new signature for the same offset and bytes."""
        builder = TransactionBuilder(test_signer, test_config)
        buffer = Keypair().pubkey()
        chunk = Chunk(offset=8000, data=generate_payload(1000))

        first = builder.build_write_transaction(chunk, buffer, BLOCKHASH_A)
        second = builder.build_write_transaction(chunk, buffer, BLOCKHASH_B)

        assert transaction_signature(first) != transaction_signature(second)
        assert write_offset(first) == write_offset(second) == 8000
        assert write_data(first) == write_data(second) == chunk.data

    def test_same_blockhash_same_signature(self, test_config, test_signer):
        """Signing is deterministic for a given blockhash."""
        builder = TransactionBuilder(test_signer, test_config)
        buffer = Keypair().pubkey()
        chunk = Chunk(offset=0, data=b"\x01" * 10)

        first = builder.build_write_transaction(chunk, buffer, BLOCKHASH_A)
        second = builder.build_write_transaction(chunk, buffer, BLOCKHASH_A)

        assert transaction_signature(first) == transaction_signature(second)

    def test_priority_fee_prefix(self, fee_config, test_signer):
        """With fees configured every transaction starts with the compute budget pair."""
        builder = TransactionBuilder(test_signer, fee_config)
        chunk = Chunk(offset=0, data=b"\x01" * 10)

        tx = builder.build_write_transaction(chunk, Keypair().pubkey(), BLOCKHASH_A)

        assert program_ids(tx) == [
            COMPUTE_BUDGET_ID,
            COMPUTE_BUDGET_ID,
            instructions.BPF_LOADER_UPGRADEABLE_ID,
        ]
        assert write_offset(tx) == 0

    def test_max_chunk_fits_without_fees(self, test_config, test_signer):
        """The largest chunk fills a packet exactly."""
        builder = TransactionBuilder(test_signer, test_config)
        chunk = Chunk(offset=0, data=generate_payload(MAX_CHUNK_SIZE))

        tx = builder.build_write_transaction(chunk, Keypair().pubkey(), BLOCKHASH_A)

        assert len(bytes(tx)) <= PACKET_DATA_SIZE

    def test_max_chunk_fits_with_fees(self, fee_config, test_signer):
        """The fee prefix lowers the largest chunk that fits."""
        builder = TransactionBuilder(test_signer, fee_config)
        chunk = Chunk(offset=0, data=generate_payload(MAX_CHUNK_SIZE_WITH_PRIORITY_FEES))

        tx = builder.build_write_transaction(chunk, Keypair().pubkey(), BLOCKHASH_A)

        assert builder.chunk_size == MAX_CHUNK_SIZE_WITH_PRIORITY_FEES
        assert len(bytes(tx)) <= PACKET_DATA_SIZE

    @pytest.mark.parametrize("size", [MAX_CHUNK_SIZE + 1, 1100])
    def test_oversized_chunk_rejected(self, test_config, test_signer, size):
        """A chunk that does not fit in a packet is a build error."""
        builder = TransactionBuilder(test_signer, test_config)
        chunk = Chunk(offset=0, data=generate_payload(size))

        with pytest.raises(InstructionBuildError):
            builder.build_write_transaction(chunk, Keypair().pubkey(), BLOCKHASH_A)

    def test_oversized_chunk_rejected_with_fees(self, fee_config, test_signer):
        """Chunks that fit without fees can overflow once the prefix is added."""
        builder = TransactionBuilder(test_signer, fee_config)
        chunk = Chunk(offset=0, data=generate_payload(MAX_CHUNK_SIZE_WITH_PRIORITY_FEES + 1))

        with pytest.raises(InstructionBuildError):
            builder.build_write_transaction(chunk, Keypair().pubkey(), BLOCKHASH_A)

    def test_build_without_key(self, test_config):
        """Building requires a loaded authority key."""
        builder = TransactionBuilder(TransactionSigner(test_config), test_config)

        with pytest.raises(InstructionBuildError, match="not loaded"):
            builder.build_write_transaction(
                Chunk(offset=0, data=b"\x00"),
                Keypair().pubkey(),
                BLOCKHASH_A,
            )

    def test_create_buffer_transaction(self, test_config, test_signer):
        """Account creation is co-signed by the authority and the buffer."""
        builder = TransactionBuilder(test_signer, test_config)
        buffer = Keypair()

        tx = builder.build_create_buffer_transaction(buffer, 2_000_000, 10_000, BLOCKHASH_A)

        assert len(tx.signatures) == 2
        assert tx.message.account_keys[0] == test_signer.pubkey
        assert buffer.pubkey() in tx.message.account_keys
        assert program_ids(tx) == [SYSTEM_PROGRAM_ID, instructions.BPF_LOADER_UPGRADEABLE_ID]
        assert write_offset(tx) is None
        tx.verify()

    @pytest.mark.parametrize("lamports", [0, -1])
    def test_create_buffer_zero_funding(self, test_config, test_signer, lamports):
        """An unfunded buffer account is refused before any signing."""
        builder = TransactionBuilder(test_signer, test_config)

        with pytest.raises(ZeroFunding):
            builder.build_create_buffer_transaction(Keypair(), lamports, 10_000, BLOCKHASH_A)

    def test_set_authority_transaction(self, test_config, test_signer):
        """The buffer can be handed over to another authority."""
        builder = TransactionBuilder(test_signer, test_config)
        buffer = Keypair().pubkey()
        new_authority = Keypair().pubkey()

        tx = builder.build_set_authority_transaction(buffer, new_authority, BLOCKHASH_A)

        ix = tx.message.instructions[-1]
        assert bytes(ix.data) == struct.pack("<I", instructions.SET_AUTHORITY)
        assert new_authority in tx.message.account_keys


# ============================================================================
# Test Configuration
# ============================================================================

class TestWriterConfig:
    """Tests for chunk size and endpoint configuration."""

    def test_default_chunk_size_with_fees(self, fee_config):
        assert fee_config.priority_fees_enabled is True
        assert fee_config.effective_chunk_size == MAX_CHUNK_SIZE_WITH_PRIORITY_FEES

    def test_default_chunk_size_without_fees(self):
        config = WriterConfig(compute_unit_limit=None, compute_unit_price=None)

        assert config.priority_fees_enabled is False
        assert config.effective_chunk_size == MAX_CHUNK_SIZE

    def test_explicit_chunk_size(self, test_config):
        assert test_config.effective_chunk_size == 1000

    def test_chunk_size_too_large_without_fees(self):
        with pytest.raises(ValidationError):
            WriterConfig(
                chunk_size=MAX_CHUNK_SIZE + 1,
                compute_unit_limit=None,
                compute_unit_price=None,
            )

    def test_chunk_size_too_large_with_fees(self):
        with pytest.raises(ValidationError):
            WriterConfig(chunk_size=MAX_CHUNK_SIZE_WITH_PRIORITY_FEES + 1)

    def test_zero_chunk_size_rejected(self):
        with pytest.raises(ValidationError):
            WriterConfig(chunk_size=0)

    def test_status_batch_ceiling(self):
        with pytest.raises(ValidationError):
            WriterConfig(status_batch_size=257)

    def test_endpoint(self):
        assert WriterConfig(network=NetworkType.LOCALNET).endpoint == "http://127.0.0.1:8899"
        assert WriterConfig(network=NetworkType.DEVNET).endpoint == "https://api.devnet.solana.com"

        custom = WriterConfig(network=NetworkType.MAINNET, rpc_url="https://rpc.example.com")
        assert custom.endpoint == "https://rpc.example.com"

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("BUFFER_WRITER_CHUNK_SIZE", "512")
        monkeypatch.setenv("BUFFER_WRITER_NETWORK", "testnet")

        config = WriterConfig()

        assert config.chunk_size == 512
        assert config.network == NetworkType.TESTNET
