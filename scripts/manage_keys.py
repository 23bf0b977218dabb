#!/usr/bin/env python3
"""Manage API keys and the credential encryption key.

Usage:
    python scripts/manage_keys.py list
    python scripts/manage_keys.py add --name "Team key"
    python scripts/manage_keys.py rename --id <key id> --name "New name"
    python scripts/manage_keys.py delete --id <key id>
    python scripts/manage_keys.py verify --key <api key>
    python scripts/manage_keys.py encryption-key

Environment Variables:
    DATABASE_PATH: Root folder for api.json and encryption.key
    APIKEY_PATH: Folder holding api.json (optional, defaults to DATABASE_PATH)
    SECRETKEY_PATH: Folder holding encryption.key (optional, defaults to DATABASE_PATH)
"""
from __future__ import annotations

import argparse
import sys
from pathlib import Path

# Add project root to path for imports
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def print_keys(records) -> None:
    if not records:
        print("No API keys")
        return
    for record in records:
        print(f"{record.id}  {record.key_name:<20}  {record.api_key}  created {record.created_at}")


def main():
    parser = argparse.ArgumentParser(
        description="Manage starchain API keys and the encryption key",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("list", help="List API keys (creates the default key if none exist)")
    add = sub.add_parser("add", help="Add a new API key")
    add.add_argument("--name", required=True, help="Key name")
    rename = sub.add_parser("rename", help="Rename an API key")
    rename.add_argument("--id", required=True, help="Key id")
    rename.add_argument("--name", required=True, help="New key name")
    delete = sub.add_parser("delete", help="Delete an API key")
    delete.add_argument("--id", required=True, help="Key id")
    verify = sub.add_parser("verify", help="Check an API key against the stored secrets")
    verify.add_argument("--key", required=True, help="API key to verify")
    sub.add_parser("encryption-key", help="Show the encryption key path, creating the key if missing")

    args = parser.parse_args()

    # Import here to avoid loading config before env vars are set
    from starchain.config import get_settings
    from starchain.service.api_keys import APIKeyStore
    from starchain.service.vault import CredentialVault

    settings = get_settings()
    store = APIKeyStore(settings.api_key_path())

    try:
        if args.command == "list":
            print_keys(store.get_api_keys())
        elif args.command == "add":
            print_keys(store.add_api_key(args.name))
        elif args.command == "rename":
            records = store.update_api_key(args.id, args.name)
            if not records:
                print(f"Error: no API key with id {args.id}")
                sys.exit(1)
            print_keys(records)
        elif args.command == "delete":
            print_keys(store.delete_api_key(args.id))
        elif args.command == "verify":
            record = store.verify_api_key(args.key)
            if record is None:
                print("Invalid API key")
                sys.exit(1)
            print(f"Valid key: {record.key_name} (id: {record.id})")
        elif args.command == "encryption-key":
            vault = CredentialVault(settings)
            if settings.secretkey_overwrite:
                print("Encryption key supplied by SECRETKEY_OVERWRITE")
            else:
                vault.get_encryption_key()
                print(f"Encryption key file: {vault.key_path}")
    except OSError as e:
        print(f"Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
