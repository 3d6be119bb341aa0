"""
Upgradeable BPF loader instructions.

Encoders for the loader instructions used to create and fill a buffer account,
plus the compute-budget instructions that set a priority fee.
"""

import struct
from typing import List, Optional

from solders.compute_budget import set_compute_unit_limit, set_compute_unit_price
from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey
from solders.system_program import CreateAccountParams, create_account

BPF_LOADER_UPGRADEABLE_ID = Pubkey.from_string("BPFLoaderUpgradeab1e11111111111111111111111")

# Buffer account header: state tag (u32) + Option<Pubkey> authority
BUFFER_METADATA_SIZE = 37

# Loader instruction variant tags (bincode u32, little endian)
INITIALIZE_BUFFER = 0
WRITE = 1
SET_AUTHORITY = 4


def size_of_buffer(payload_len: int) -> int:
    """Account data length needed to hold a payload in a buffer."""
    return BUFFER_METADATA_SIZE + payload_len


def initialize_buffer(buffer: Pubkey, authority: Pubkey) -> Instruction:
    """Mark a loader-owned account as a buffer with the given authority."""
    return Instruction(
        program_id=BPF_LOADER_UPGRADEABLE_ID,
        data=struct.pack("<I", INITIALIZE_BUFFER),
        accounts=[
            AccountMeta(buffer, is_signer=False, is_writable=True),
            AccountMeta(authority, is_signer=False, is_writable=False),
        ],
    )


def create_buffer(
    payer: Pubkey,
    buffer: Pubkey,
    authority: Pubkey,
    lamports: int,
    payload_len: int,
) -> List[Instruction]:
    """
    Create and initialize a buffer account sized for `payload_len` bytes.

    Both the payer and the new buffer account must sign.
    """
    return [
        create_account(
            CreateAccountParams(
                from_pubkey=payer,
                to_pubkey=buffer,
                lamports=lamports,
                space=size_of_buffer(payload_len),
                owner=BPF_LOADER_UPGRADEABLE_ID,
            )
        ),
        initialize_buffer(buffer, authority),
    ]


def write(buffer: Pubkey, authority: Pubkey, offset: int, data: bytes) -> Instruction:
    """Write `data` into the buffer at `offset`; the authority must sign."""
    payload = struct.pack("<IIQ", WRITE, offset, len(data)) + bytes(data)
    return Instruction(
        program_id=BPF_LOADER_UPGRADEABLE_ID,
        data=payload,
        accounts=[
            AccountMeta(buffer, is_signer=False, is_writable=True),
            AccountMeta(authority, is_signer=True, is_writable=False),
        ],
    )


def set_buffer_authority(
    buffer: Pubkey,
    current_authority: Pubkey,
    new_authority: Pubkey,
) -> Instruction:
    """Hand the buffer over to another authority (e.g. a multisig)."""
    return Instruction(
        program_id=BPF_LOADER_UPGRADEABLE_ID,
        data=struct.pack("<I", SET_AUTHORITY),
        accounts=[
            AccountMeta(buffer, is_signer=False, is_writable=True),
            AccountMeta(current_authority, is_signer=True, is_writable=False),
            AccountMeta(new_authority, is_signer=False, is_writable=False),
        ],
    )


def priority_fee_instructions(
    unit_limit: Optional[int],
    unit_price: Optional[int],
) -> List[Instruction]:
    """Compute-budget prefix; empty unless both limit and price are set."""
    if unit_limit is None or unit_price is None:
        return []
    return [
        set_compute_unit_limit(unit_limit),
        set_compute_unit_price(unit_price),
    ]
