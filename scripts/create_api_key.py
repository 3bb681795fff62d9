"""Create an API key for a business and print the raw key once.

Only the SHA-256 hash is stored; the printed key cannot be recovered later.
"""

import argparse
import secrets

from ledgerpay.common.db import SessionLocal
from ledgerpay.services.ledger.auth import hash_api_key
from ledgerpay.services.ledger.models import ApiKey


def main() -> None:
    """CLI entrypoint for API key provisioning."""

    parser = argparse.ArgumentParser(description="Provision a ledger API key.")
    parser.add_argument("--business-name", required=True)
    args = parser.parse_args()

    raw_key = f"lp_{secrets.token_urlsafe(32)}"
    with SessionLocal() as db:
        row = ApiKey(key_hash=hash_api_key(raw_key), business_name=args.business_name, is_active=True)
        db.add(row)
        db.commit()
    print(f"api_key_id={row.id}")
    print(f"api_key={raw_key}")


if __name__ == "__main__":
    main()
