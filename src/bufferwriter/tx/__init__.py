"""
Transaction module.

Handles loader instruction encoding, transaction construction and signing.
"""

from bufferwriter.tx.builder import TransactionBuilder, transaction_signature
from bufferwriter.tx.signer import TransactionSigner

__all__ = [
    "TransactionBuilder",
    "TransactionSigner",
    "transaction_signature",
]
