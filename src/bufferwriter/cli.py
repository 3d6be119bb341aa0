"""
Command-line interface for the Buffer Writer.

Provides commands for writing a program binary into a buffer account and for
estimating what that will take.
"""

import argparse
import asyncio
import logging
import math
import sys
from pathlib import Path
from typing import Optional

import structlog

from bufferwriter import __version__
from bufferwriter.config import NetworkType, WriterConfig, set_config
from bufferwriter.core.progress import Completed, Failed, ProgressReporter, Sending
from bufferwriter.core.session import BufferWriter
from bufferwriter.errors import WriterError
from bufferwriter.node.solana_rpc import SolanaRpcAdapter
from bufferwriter.tx.signer import TransactionSigner

DEFAULT_KEYPAIR_PATH = "~/.config/solana/id.json"


def setup_logging(level: str = "INFO", json_format: bool = False) -> None:
    """Configure structured logging."""
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer() if json_format
            else structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, level.upper()),
        stream=sys.stderr,
    )


def add_network_arguments(parser: argparse.ArgumentParser) -> None:
    """Arguments shared by every command that talks to a cluster."""
    parser.add_argument(
        "--program",
        required=True,
        help="Path to the program binary (.so) to upload",
    )
    parser.add_argument(
        "--network",
        choices=[n.value for n in NetworkType],
        default=NetworkType.DEVNET.value,
        help="Solana cluster (default: devnet)",
    )
    parser.add_argument(
        "--rpc-url",
        help="Custom RPC endpoint",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="WARNING",
        help="Logging level (default: WARNING)",
    )
    parser.add_argument(
        "--log-json",
        action="store_true",
        help="Output logs in JSON format",
    )


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="buffer-writer",
        description="Write a program binary into a Solana buffer account",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # Write command
    write_parser = subparsers.add_parser("write", help="Create a buffer and write the program into it")
    add_network_arguments(write_parser)
    write_parser.add_argument(
        "--keypair",
        help="Authority keypair file (default: BUFFER_WRITER_KEYPAIR_PATH or ~/.config/solana/id.json)",
    )
    write_parser.add_argument(
        "--chunk-size",
        type=int,
        help="Bytes per write transaction (default: largest that fits)",
    )
    write_parser.add_argument(
        "--unit-limit",
        type=int,
        default=25_000,
        help="Compute unit limit (default: 25000)",
    )
    write_parser.add_argument(
        "--unit-price",
        type=int,
        default=550_000,
        help="Compute unit price in micro-lamports (default: 550000)",
    )
    write_parser.add_argument(
        "--no-priority-fee",
        action="store_true",
        help="Do not prefix compute budget instructions",
    )
    write_parser.add_argument(
        "--max-rounds",
        type=int,
        default=50,
        help="Give up after this many send/confirm rounds; 0 retries forever (default: 50)",
    )

    # Estimate command
    estimate_parser = subparsers.add_parser("estimate", help="Show chunk count and rent for a program")
    add_network_arguments(estimate_parser)

    return parser


def read_program(path: str) -> bytes:
    """Read the program bytes, exiting with a message if the file is unusable."""
    program_path = Path(path).expanduser()
    if not program_path.is_file():
        print(f"Program file not found: {path}", file=sys.stderr)
        sys.exit(1)
    return program_path.read_bytes()


def load_signer(config: WriterConfig, keypair: Optional[str] = None) -> TransactionSigner:
    """
    Load the authority key.

    An explicit --keypair wins, then the keypair_path or keypair_base58
    setting, then the Solana CLI default keypair.
    """
    signer = TransactionSigner(config)
    if keypair:
        signer.load_key_from_file(keypair)
    elif config.keypair_path or config.keypair_base58:
        signer.load_from_config()
    else:
        signer.load_key_from_file(DEFAULT_KEYPAIR_PATH)
    return signer


async def print_progress(reporter: ProgressReporter) -> bool:
    """Render progress events; returns True once Completed was seen."""
    completed = False
    async for event in reporter.events():
        if isinstance(event, Sending):
            print(f"\rSending {event.sent}/{event.total}", end="", flush=True)
        elif isinstance(event, Completed):
            print(f"\nAll chunks confirmed in {event.account}")
            completed = True
        elif isinstance(event, Failed):
            print(f"\nUpload failed: {event.reason}", file=sys.stderr)
    return completed


async def write_buffer(args: argparse.Namespace) -> int:
    """Create a buffer account and write the program into it."""
    payload = read_program(args.program)

    config = WriterConfig(
        network=NetworkType(args.network),
        rpc_url=args.rpc_url,
        chunk_size=args.chunk_size,
        compute_unit_limit=None if args.no_priority_fee else args.unit_limit,
        compute_unit_price=None if args.no_priority_fee else args.unit_price,
        max_rounds=args.max_rounds or None,
        log_level=args.log_level,
        log_json=args.log_json,
    )
    set_config(config)

    try:
        signer = load_signer(config, args.keypair)
    except (FileNotFoundError, ValueError) as e:
        print(f"Could not load keypair: {e}", file=sys.stderr)
        return 1

    node = SolanaRpcAdapter(config)
    try:
        await node.connect()
    except WriterError as e:
        print(f"Could not connect: {e}", file=sys.stderr)
        return 1

    writer = BufferWriter(node, signer, config)

    loop = asyncio.get_running_loop()
    try:
        import signal
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, writer.stop)
    except NotImplementedError:
        pass  # Signals not available on Windows

    print(f"Buffer Writer v{__version__}")
    print(f"Network: {args.network} ({config.endpoint})")
    print(f"Authority: {signer.pubkey}")
    print(f"Buffer: {writer.buffer_pubkey}")
    print(f"Program: {len(payload)} bytes")
    print()

    consumer = asyncio.create_task(print_progress(writer.progress))
    try:
        await writer.write(payload)
    except WriterError:
        return 1
    finally:
        await consumer
        await node.disconnect()

    return 0


async def estimate(args: argparse.Namespace) -> int:
    """Print chunk count and rent for a program."""
    payload = read_program(args.program)

    config = WriterConfig(network=NetworkType(args.network), rpc_url=args.rpc_url)
    node = SolanaRpcAdapter(config)

    try:
        await node.connect()
        size = len(payload) + config.account_extra_space
        lamports = await node.get_minimum_balance_for_rent_exemption(size)
    except WriterError as e:
        print(f"Estimate failed: {e}", file=sys.stderr)
        return 1
    finally:
        await node.disconnect()

    chunks = math.ceil(len(payload) / config.effective_chunk_size)
    print(f"Program: {len(payload)} bytes")
    print(f"Chunks: {chunks} x {config.effective_chunk_size} bytes")
    print(f"Rent: {lamports} lamports ({lamports / 1_000_000_000:.9f} SOL)")
    return 0


def main() -> None:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    # Setup logging
    log_level = getattr(args, "log_level", "INFO")
    log_json = getattr(args, "log_json", False)
    setup_logging(log_level, log_json)

    # Run appropriate command
    if args.command == "write":
        sys.exit(asyncio.run(write_buffer(args)))
    elif args.command == "estimate":
        sys.exit(asyncio.run(estimate(args)))


if __name__ == "__main__":
    main()
