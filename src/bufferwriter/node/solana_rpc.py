"""
Solana JSON-RPC adapter for network access.

Provides ledger access via solana-py's asynchronous RPC client.
"""

from typing import List, Optional, Sequence

import httpx
import structlog

from solana.exceptions import SolanaRpcException
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Confirmed
from solana.rpc.core import RPCException
from solana.rpc.types import TxOpts
from solders.hash import Hash
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import Transaction
from solders.transaction_status import TransactionConfirmationStatus

from bufferwriter.config import WriterConfig, get_config
from bufferwriter.errors import (
    AnchorFetchFailed,
    FundingQueryFailed,
    RpcTransportError,
    StatusQueryFailed,
    SubmissionFailed,
)
from bufferwriter.node.interface import (
    ConfirmationLevel,
    LedgerInterface,
    SendConfig,
    SignatureStatus,
)

logger = structlog.get_logger(__name__)

# Failures raised by solana-py for transport and RPC-level errors
RPC_ERRORS = (SolanaRpcException, RPCException, httpx.HTTPError)


def to_confirmation_level(
    status: Optional[TransactionConfirmationStatus],
) -> Optional[ConfirmationLevel]:
    """Translate a solders confirmation status."""
    if status is None:
        return None
    if status == TransactionConfirmationStatus.Finalized:
        return ConfirmationLevel.FINALIZED
    if status == TransactionConfirmationStatus.Confirmed:
        return ConfirmationLevel.CONFIRMED
    if status == TransactionConfirmationStatus.Processed:
        return ConfirmationLevel.PROCESSED
    return None


class SolanaRpcAdapter(LedgerInterface):
    """
    Solana RPC adapter.

    Implements the LedgerInterface using a Solana JSON-RPC endpoint.
    """

    def __init__(self, config: Optional[WriterConfig] = None):
        """
        Initialize the RPC adapter.

        Args:
            config: Writer configuration. Uses global config if not provided.
        """
        self.config = config or get_config()
        self.endpoint = self.config.endpoint
        self._client: Optional[AsyncClient] = None

    @property
    def client(self) -> AsyncClient:
        if self._client is None:
            raise RpcTransportError("RPC client not connected")
        return self._client

    async def connect(self) -> None:
        """Establish connection (create RPC client)."""
        if self._client is not None:
            return

        self._client = AsyncClient(
            self.endpoint,
            commitment=Confirmed,
            timeout=self.config.rpc_timeout_seconds,
        )

        # Test connection
        try:
            healthy = await self._client.is_connected()
        except RPC_ERRORS as e:
            await self.disconnect()
            raise RpcTransportError(f"Failed to connect to {self.endpoint}: {e}") from e

        if not healthy:
            await self.disconnect()
            raise RpcTransportError(f"RPC health check failed: {self.endpoint}")

        logger.info("rpc_connected", endpoint=self.endpoint)

    async def disconnect(self) -> None:
        """Close the RPC client."""
        if self._client:
            await self._client.close()
            self._client = None
            logger.info("rpc_disconnected")

    async def get_latest_blockhash(self) -> Hash:
        """Fetch a blockhash at confirmed commitment."""
        try:
            resp = await self.client.get_latest_blockhash(commitment=Confirmed)
        except RPC_ERRORS as e:
            logger.error("blockhash_fetch_failed", error=str(e))
            raise AnchorFetchFailed(f"Failed to fetch latest blockhash: {e}") from e

        blockhash = resp.value.blockhash
        logger.debug("blockhash_fetched", blockhash=str(blockhash)[:16] + "...")
        return blockhash

    async def get_minimum_balance_for_rent_exemption(self, size: int) -> int:
        """Query rent-exemption lamports for an account of `size` bytes."""
        try:
            resp = await self.client.get_minimum_balance_for_rent_exemption(size)
        except RPC_ERRORS as e:
            logger.error("rent_query_failed", size=size, error=str(e))
            raise FundingQueryFailed(f"Failed to query rent exemption: {e}") from e

        return int(resp.value)

    async def get_balance(self, pubkey: Pubkey) -> int:
        """Query an account balance in lamports."""
        try:
            resp = await self.client.get_balance(pubkey, commitment=Confirmed)
        except RPC_ERRORS as e:
            logger.error("balance_query_failed", pubkey=str(pubkey), error=str(e))
            raise RpcTransportError(f"Failed to query balance: {e}") from e

        return int(resp.value)

    async def send_transaction(self, tx: Transaction, config: SendConfig) -> Signature:
        """
        Submit a signed transaction without waiting for confirmation.

        solana-py always sends base64, which is also the configured default.
        """
        opts = TxOpts(
            skip_confirmation=True,
            skip_preflight=config.skip_preflight,
            preflight_commitment=config.preflight_commitment.value,
            max_retries=config.max_retries,
        )

        try:
            resp = await self.client.send_raw_transaction(bytes(tx), opts=opts)
        except RPC_ERRORS as e:
            raise SubmissionFailed(f"Transaction submission failed: {e}") from e

        return resp.value

    async def get_signature_statuses(
        self,
        signatures: Sequence[Signature],
    ) -> List[Optional[SignatureStatus]]:
        """Query statuses for at most MAX_SIGNATURE_STATUS_BATCH signatures."""
        self.check_batch_size(signatures)

        try:
            resp = await self.client.get_signature_statuses(list(signatures))
        except RPC_ERRORS as e:
            logger.warning("status_query_failed", count=len(signatures), error=str(e))
            raise StatusQueryFailed(f"Signature status query failed: {e}") from e

        statuses: List[Optional[SignatureStatus]] = []
        for status in resp.value:
            if status is None:
                statuses.append(None)
                continue

            statuses.append(
                SignatureStatus(
                    confirmation_level=to_confirmation_level(status.confirmation_status),
                    error=str(status.err) if status.err is not None else None,
                    slot=status.slot,
                )
            )

        return statuses
