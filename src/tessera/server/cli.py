# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Tessera Contributors

"""Command-line interface for Tessera operator tokens."""

from __future__ import annotations

import argparse
import os
import secrets
import stat
import sys
import time
from datetime import datetime
from pathlib import Path

from ..privacy.capabilities import Capability, capabilities_for, parse_capabilities
from .auth import TokenStore, hash_token


def get_secure_token_dir() -> Path:
    """Create ~/.tessera/tokens/ with 0700 permissions."""
    token_dir = Path.home() / ".tessera" / "tokens"
    token_dir.mkdir(parents=True, exist_ok=True)
    os.chmod(token_dir, stat.S_IRWXU)
    return token_dir


def save_token_securely(client_id: str, raw_token: str, token_dir: Path | None = None) -> Path:
    """Write a raw token to a 0600 file and return its path."""
    token_dir = token_dir or get_secure_token_dir()

    safe_client_id = "".join(c if c.isalnum() or c in "-_" else "_" for c in client_id)
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    token_file = token_dir / f"{safe_client_id}_{timestamp}_{secrets.token_hex(4)}.token"

    fd = os.open(token_file, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, stat.S_IRUSR | stat.S_IWUSR)
    try:
        os.write(fd, raw_token.encode("utf-8") + b"\n")
    finally:
        os.close(fd)
    return token_file


def _resolve_capabilities(args: argparse.Namespace) -> frozenset[Capability]:
    if args.capabilities:
        return parse_capabilities([c.strip() for c in args.capabilities.split(",") if c.strip()])
    return capabilities_for(args.role)


def cmd_create(args: argparse.Namespace) -> int:
    """Create a new token."""
    try:
        capabilities = _resolve_capabilities(args)
    except ValueError as e:
        print(f"Invalid capability or role: {e}", file=sys.stderr)
        return 1

    expires_at = None
    if args.expires_days:
        expires_at = time.time() + args.expires_days * 24 * 60 * 60

    store = TokenStore(args.token_file)
    raw_token = store.create(
        client_id=args.client_id,
        capabilities=capabilities,
        description=args.description,
        expires_at=expires_at,
    )
    token_file = save_token_securely(args.client_id, raw_token, args.output_dir)

    print(f"Token created for client '{args.client_id}'")
    print(f"Capabilities: {', '.join(sorted(c.value for c in capabilities))}")
    print()
    print(f"Token file: {token_file} (0600, not printed to console)")
    print()
    print("Use it as:")
    print(f'  curl -H "Authorization: Bearer $(cat {token_file})" .../api/v1/revocation-status/<id>')
    print()
    print("Delete the token file after copying it to a secure location.")
    return 0


def cmd_list(args: argparse.Namespace) -> int:
    """List all tokens."""
    tokens = TokenStore(args.token_file).list_tokens()
    if not tokens:
        print("No tokens found.")
        return 0

    print(f"{'Client ID':<20} {'Capabilities':<40} {'Created':<17} {'Expires':<20}")
    print("-" * 100)
    for token in tokens:
        created = datetime.fromtimestamp(token.created_at).strftime("%Y-%m-%d %H:%M")
        if token.expires_at:
            expires = datetime.fromtimestamp(token.expires_at).strftime("%Y-%m-%d %H:%M")
            if token.is_expired():
                expires += " (EXPIRED)"
        else:
            expires = "Never"
        caps = ",".join(token.capabilities)
        print(f"{token.client_id:<20} {caps:<40} {created:<17} {expires:<20}")

    print()
    print(f"Total: {len(tokens)} token(s)")
    return 0


def cmd_revoke(args: argparse.Namespace) -> int:
    """Revoke tokens by client id, hash or raw value."""
    store = TokenStore(args.token_file)

    if args.client_id:
        tokens = store.get_by_client_id(args.client_id)
        if not tokens:
            print(f"No tokens found for client '{args.client_id}'")
            return 1
        for token in tokens:
            store.revoke(token.token_hash)
        print(f"Revoked {len(tokens)} token(s) for client '{args.client_id}'")
        return 0

    token_hash = args.hash or (hash_token(args.token) if args.token else None)
    if token_hash is None:
        print("Must provide --client-id, --hash, or --token")
        return 1
    if store.revoke(token_hash):
        print("Token revoked.")
        return 0
    print("Token not found.")
    return 1


def cmd_verify(args: argparse.Namespace) -> int:
    """Verify a token is valid."""
    token = TokenStore(args.token_file).verify(args.token)
    if token is None:
        print("Token is INVALID")
        return 1
    print("Token is VALID")
    print(f"  Client ID: {token.client_id}")
    print(f"  Capabilities: {', '.join(token.capabilities)}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Tessera operator token management", prog="tessera-token")
    parser.add_argument(
        "--token-file",
        type=Path,
        default=Path.home() / ".tessera" / "tokens.json",
        help="Path to token storage file",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    create_parser = subparsers.add_parser("create", help="Create a new token")
    create_parser.add_argument("--client-id", "-c", required=True, help="Client identifier (e.g., 'ops-laptop')")
    create_parser.add_argument("--description", "-d", default="", help="Human-readable description")
    create_parser.add_argument(
        "--role",
        "-r",
        default="operator",
        help="Role granting a capability set: admin, operator, auditor, relying_party (default: operator)",
    )
    create_parser.add_argument(
        "--capabilities",
        help="Comma-separated capabilities, overrides --role (revoke,restore,read_status,read_audit)",
    )
    create_parser.add_argument("--expires-days", "-e", type=int, default=None, help="Expire after N days")
    create_parser.add_argument("--output-dir", type=Path, default=None, help="Directory for the token file")

    subparsers.add_parser("list", help="List all tokens")

    revoke_parser = subparsers.add_parser("revoke", help="Revoke a token")
    revoke_parser.add_argument("--client-id", "-c", help="Revoke all tokens for this client ID")
    revoke_parser.add_argument("--hash", help="Token hash to revoke")
    revoke_parser.add_argument("--token", "-t", help="Raw token to revoke")

    verify_parser = subparsers.add_parser("verify", help="Verify a token")
    verify_parser.add_argument("token", help="Token to verify")

    return parser


COMMANDS = {
    "create": cmd_create,
    "list": cmd_list,
    "revoke": cmd_revoke,
    "verify": cmd_verify,
}


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the CLI."""
    args = build_parser().parse_args(argv)
    return COMMANDS[args.command](args)


if __name__ == "__main__":
    sys.exit(main())
