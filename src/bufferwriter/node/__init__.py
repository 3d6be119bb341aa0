"""
Network Integration Layer.

Provides abstracted access to a Solana cluster for blockhash, rent and balance
queries, transaction submission and signature status polling.
"""

from bufferwriter.node.interface import (
    ConfirmationLevel,
    LedgerInterface,
    SendConfig,
    SignatureStatus,
)
from bufferwriter.node.solana_rpc import SolanaRpcAdapter

__all__ = [
    "ConfirmationLevel",
    "LedgerInterface",
    "SendConfig",
    "SignatureStatus",
    "SolanaRpcAdapter",
]
