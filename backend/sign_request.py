#!/usr/bin/env python3
"""
Sign a Merchant Request

Adds `timestamp` and `sign` to a JSON payload so it can be sent to the
order API. Handy for merchants wiring up their integration:

    python backend/sign_request.py payload.json merchant_private.pem
    python backend/sign_request.py payload.json merchant_private.pem --query
"""
import argparse
import json
from pathlib import Path
import sys
from urllib.parse import urlencode

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent))

from signpay.services.signature_service import canonical_pairs, canonicalize, signed_payload


def to_query_string(data: dict) -> str:
    """Form-encode signed fields, expanding nested values to key[sub] names."""
    return urlencode(canonical_pairs(data, excluded_fields=frozenset()))


def main():
    """Print the signed payload as JSON (or as a query string)."""
    parser = argparse.ArgumentParser(description="Sign an order API request payload")
    parser.add_argument("payload", help="JSON file holding the request fields")
    parser.add_argument("private_key", help="PEM private key file")
    parser.add_argument("--timestamp", type=int, help="Override the epoch timestamp")
    parser.add_argument("--query", action="store_true", help="Print a query string instead of JSON")
    parser.add_argument("--show-canonical", action="store_true", help="Also print the signed canonical form")
    args = parser.parse_args()

    payload = json.loads(Path(args.payload).read_text())
    if not isinstance(payload, dict):
        print("❌ Payload must be a JSON object", file=sys.stderr)
        sys.exit(1)

    private_key = Path(args.private_key).read_bytes()
    data = signed_payload(payload, private_key, timestamp=args.timestamp)

    if args.show_canonical:
        print(canonicalize(data).decode("ascii"), file=sys.stderr)

    if args.query:
        print(to_query_string(data))
    else:
        print(json.dumps(data, indent=2))


if __name__ == "__main__":
    main()
