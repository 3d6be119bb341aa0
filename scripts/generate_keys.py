#!/usr/bin/env python3
"""
Generate a Solana authority keypair for the buffer writer.

This script generates:
- Keypair file in Solana CLI JSON format (authority.json)
- key_info.json with the public key
"""

import argparse
import json
from pathlib import Path

from solders.keypair import Keypair


def generate_keys(output_dir: str = "./keys") -> dict:
    """
    Generate a new authority keypair.

    Args:
        output_dir: Directory to save keys

    Returns:
        Dictionary with key info
    """
    # Create output directory
    output_path = Path(output_dir)
    output_path.mkdir(parents=True, exist_ok=True)

    keypair = Keypair()

    # Solana CLI format: JSON array of the 64 secret key bytes
    keypair_path = output_path / "authority.json"
    keypair_path.write_text(json.dumps(list(bytes(keypair))))
    keypair_path.chmod(0o600)

    info = {
        "keypair_path": str(keypair_path),
        "pubkey": str(keypair.pubkey()),
    }

    info_path = output_path / "key_info.json"
    with open(info_path, "w") as f:
        json.dump(info, f, indent=2)

    return info


def main():
    parser = argparse.ArgumentParser(description="Generate a Solana authority keypair")
    parser.add_argument(
        "--output-dir", "-o",
        default="./keys",
        help="Output directory for keys (default: ./keys)"
    )
    parser.add_argument(
        "--force", "-f",
        action="store_true",
        help="Overwrite existing keys"
    )

    args = parser.parse_args()

    # Check if keys already exist
    output_path = Path(args.output_dir)
    keypair_path = output_path / "authority.json"

    if keypair_path.exists() and not args.force:
        print(f"Keypair already exists at {keypair_path}")
        print("Use --force to overwrite")

        info_path = output_path / "key_info.json"
        if info_path.exists():
            with open(info_path) as f:
                info = json.load(f)
            print(f"Public key: {info['pubkey']}")
        return

    info = generate_keys(args.output_dir)

    print(f"Keypair saved to: {info['keypair_path']} (KEEP SECRET!)")
    print(f"Public key: {info['pubkey']}")
    print()
    print("To fund on devnet:")
    print(f"  solana airdrop 2 {info['pubkey']} --url devnet")
    print()
    print("Use it with:")
    print(f"  BUFFER_WRITER_KEYPAIR_PATH={info['keypair_path']} buffer-writer write --program <path>")


if __name__ == "__main__":
    main()
