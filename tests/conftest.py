"""
Pytest configuration and shared fixtures for the test suite.
"""

import struct
from typing import Dict, List, Optional, Sequence

import pytest
from solders.hash import Hash
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import Transaction

from bufferwriter.config import NetworkType, WriterConfig
from bufferwriter.core.progress import ProgressReporter
from bufferwriter.errors import StatusQueryFailed, SubmissionFailed
from bufferwriter.node.interface import (
    ConfirmationLevel,
    LedgerInterface,
    SendConfig,
    SignatureStatus,
)
from bufferwriter.tx.instructions import BPF_LOADER_UPGRADEABLE_ID, WRITE


# ============================================================================
# Configuration Fixtures
# ============================================================================

@pytest.fixture
def test_config() -> WriterConfig:
    """Create a test configuration with every delay switched off."""
    return WriterConfig(
        network=NetworkType.LOCALNET,
        chunk_size=1000,
        compute_unit_limit=None,
        compute_unit_price=None,
        send_delay_ms=0,
        settle_seconds=0,
        status_poll_attempts=2,
        status_poll_interval_ms=0,
        account_confirm_timeout_seconds=0.05,
        account_confirm_interval_ms=5,
        max_rounds=10,
        log_level="DEBUG",
    )


# ============================================================================
# Test Data Generators
# ============================================================================

def generate_payload(length: int) -> bytes:
    """Generate a deterministic payload where every byte depends on its position."""
    return bytes((i * 7 + i // 256) % 256 for i in range(length))


def write_offset(tx: Transaction) -> Optional[int]:
    """Offset of a loader write transaction, None for anything else."""
    message = tx.message
    ix = message.instructions[-1]
    if message.account_keys[ix.program_id_index] != BPF_LOADER_UPGRADEABLE_ID:
        return None

    data = bytes(ix.data)
    if struct.unpack_from("<I", data)[0] != WRITE:
        return None
    return struct.unpack_from("<I", data, 4)[0]


def write_data(tx: Transaction) -> bytes:
    """Bytes carried by a loader write transaction."""
    data = bytes(tx.message.instructions[-1].data)
    length = struct.unpack_from("<Q", data, 8)[0]
    return data[16:16 + length]


CONFIRMED = SignatureStatus(confirmation_level=ConfirmationLevel.CONFIRMED, slot=1)
FINALIZED = SignatureStatus(confirmation_level=ConfirmationLevel.FINALIZED, slot=1)
PROCESSED = SignatureStatus(confirmation_level=ConfirmationLevel.PROCESSED, slot=1)
ERRORED = SignatureStatus(
    confirmation_level=ConfirmationLevel.CONFIRMED,
    error="InstructionError(1, InvalidAccountData)",
    slot=1,
)


# ============================================================================
# Mock Ledger Interface
# ============================================================================

class MockLedger(LedgerInterface):
    """
    Mock ledger for testing.

    Every submitted transaction lands confirmed unless told otherwise:
    - drop_writes: offset -> number of sends that never land
    - error_writes: offset -> number of sends that land with an error
    - reject_sends: number of submissions that raise SubmissionFailed
    - status_failures: number of status queries that raise StatusQueryFailed
    - creation_status: status given to the account creation (None = never lands)
    """

    def __init__(self, rent: int = 2_000_000, balance: int = 10_000_000_000):
        self.rent = rent
        self.balance = balance

        self.calls: List[str] = []
        self.blockhashes: List[Hash] = []
        self.sent: List[Transaction] = []
        self.status_queries: List[List[Signature]] = []
        self.statuses: Dict[Signature, SignatureStatus] = {}

        self.drop_writes: Dict[int, int] = {}
        self.error_writes: Dict[int, int] = {}
        self.reject_sends = 0
        self.status_failures = 0
        self.creation_status: Optional[SignatureStatus] = CONFIRMED

        self._connected = False

    async def connect(self) -> None:
        self._connected = True

    async def disconnect(self) -> None:
        self._connected = False

    async def get_latest_blockhash(self) -> Hash:
        self.calls.append("get_latest_blockhash")
        blockhash = Hash((len(self.blockhashes) + 1).to_bytes(32, "big"))
        self.blockhashes.append(blockhash)
        return blockhash

    async def get_minimum_balance_for_rent_exemption(self, size: int) -> int:
        self.calls.append("get_minimum_balance_for_rent_exemption")
        return self.rent

    async def get_balance(self, pubkey: Pubkey) -> int:
        self.calls.append("get_balance")
        return self.balance

    async def send_transaction(self, tx: Transaction, config: SendConfig) -> Signature:
        self.calls.append("send_transaction")
        self.sent.append(tx)

        if self.reject_sends:
            self.reject_sends -= 1
            raise SubmissionFailed("node rejected transaction")

        signature = tx.signatures[0]
        offset = write_offset(tx)

        if offset is None:
            if self.creation_status is not None:
                self.statuses[signature] = self.creation_status
        elif self._take(self.drop_writes, offset):
            pass
        elif self._take(self.error_writes, offset):
            self.statuses[signature] = ERRORED
        else:
            self.statuses[signature] = CONFIRMED

        return signature

    async def get_signature_statuses(
        self,
        signatures: Sequence[Signature],
    ) -> List[Optional[SignatureStatus]]:
        self.check_batch_size(signatures)
        self.calls.append("get_signature_statuses")
        self.status_queries.append(list(signatures))

        if self.status_failures:
            self.status_failures -= 1
            raise StatusQueryFailed("node unavailable")

        return [self.statuses.get(signature) for signature in signatures]

    @staticmethod
    def _take(budget: Dict[int, int], offset: int) -> bool:
        remaining = budget.get(offset, 0)
        if remaining <= 0:
            return False
        budget[offset] = remaining - 1
        return True

    @property
    def network_calls(self) -> int:
        return len(self.calls)

    @property
    def sent_writes(self) -> List[Transaction]:
        return [tx for tx in self.sent if write_offset(tx) is not None]

    def round_offsets(self, round_number: int) -> List[int]:
        """Offsets written in a round; round N uses the (N + 1)th blockhash fetched."""
        blockhash = self.blockhashes[round_number]
        return [
            write_offset(tx)
            for tx in self.sent_writes
            if tx.message.recent_blockhash == blockhash
        ]


@pytest.fixture
def mock_ledger() -> MockLedger:
    """Create a mock ledger."""
    return MockLedger()


# ============================================================================
# Test Signer and Reporter
# ============================================================================

@pytest.fixture
def test_signer(test_config):
    """Create a test signer with a random key."""
    from bufferwriter.tx.signer import generate_test_key
    signer = generate_test_key()
    signer.config = test_config
    return signer


@pytest.fixture
def reporter() -> ProgressReporter:
    """Create a progress reporter."""
    return ProgressReporter(maxsize=1024)


async def collect_events(reporter: ProgressReporter) -> list:
    """Drain a reporter whose stream has already ended."""
    return [event async for event in reporter.events()]
