"""
Signature Service for Merchant Requests

Canonicalizes request payloads and signs/verifies them with asymmetric keys.

Protocol:
- Fields listed in SIGNATURE_EXCLUDED_FIELDS never enter the canonical form
- Remaining fields are sorted by name and form-encoded as k1=v1&k2=v2
- Signature is SHA-256 + the scheme matching the key type, base64-encoded
- Requests older than the freshness window are rejected (future ones are not)
"""
import base64
import binascii
import logging
import math
import re
import time
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, Iterator, List, Mapping, Optional, Tuple, Union
from urllib.parse import quote_plus

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, ed25519, padding, rsa

from ..config import settings

logger = logging.getLogger(__name__)

SIGN_FIELD = "sign"
TIMESTAMP_FIELD = "timestamp"

# Fields left out of the signed canonical form. `items` is opaque line-item
# data and is not covered by the signature.
SIGNATURE_EXCLUDED_FIELDS: FrozenSet[str] = frozenset({SIGN_FIELD, "items"})

PemKey = Union[str, bytes]


class VerificationOutcome(str, Enum):
    """Why a verification passed or failed. Only `verify()` collapses it to a bool."""
    VALID = "valid"
    MISSING_SIGNATURE = "missing_signature"
    EXPIRED = "expired"
    MALFORMED = "malformed"
    CRYPTO_FAILURE = "crypto_failure"
    MISMATCH = "mismatch"


class UnsupportedKeyError(ValueError):
    """Key type has no signature scheme in this protocol."""


class DuplicateFieldError(ValueError):
    """Same field name sent twice in one form body or query string."""


# name[seg][seg]... ; a name that does not fit is kept as a literal key
_BRACKET_NAME = re.compile(r"^([^\[\]]+)((?:\[[^\[\]]*\])+)$")
_BRACKET_SEGMENT = re.compile(r"\[([^\[\]]*)\]")


# ============================================================================
# Canonical Form
# ============================================================================

def _encode(value: str) -> str:
    # form encoding: space -> '+', everything but [A-Za-z0-9_.-] escaped
    return quote_plus(value, safe="").replace("~", "%7E")


def _flatten(key: str, value: Any) -> Iterator[Tuple[str, str]]:
    """Expand a single field into encoded-ready (name, value) pairs."""
    if value is None:
        return
    if isinstance(value, Mapping):
        for sub_key, sub_value in value.items():
            yield from _flatten(f"{key}[{sub_key}]", sub_value)
    elif isinstance(value, (list, tuple)):
        for index, sub_value in enumerate(value):
            yield from _flatten(f"{key}[{index}]", sub_value)
    elif isinstance(value, bool):
        yield key, "1" if value else "0"
    else:
        yield key, str(value)


def _listify(node: Any) -> Any:
    """Turn dicts keyed exactly "0".."n-1" (in order) back into lists."""
    if not isinstance(node, dict):
        return node
    node = {key: _listify(value) for key, value in node.items()}
    if node and list(node) == [str(index) for index in range(len(node))]:
        return list(node.values())
    return node


def expand_fields(pairs: Iterable[Tuple[str, Any]]) -> Dict[str, Any]:
    """
    Rebuild nested values from bracketed form/query field names.

    Inverse of the canonical flattening: `items[0][sku]=x` becomes
    {"items": [{"sku": "x"}]}, so excluded fields such as `items` are
    recognised whatever transport carried them. An empty segment
    (`tags[]=a&tags[]=b`) appends.

    Args:
        pairs: (name, value) pairs in arrival order, duplicates included

    Returns:
        Field mapping with nested dicts/lists

    Raises:
        DuplicateFieldError: If a name without `[]` appears more than once
    """
    fields: Dict[str, Any] = {}
    seen = set()

    for name, value in pairs:
        if "[]" not in name:
            if name in seen:
                raise DuplicateFieldError(f"Duplicate field: {name}")
            seen.add(name)

        match = _BRACKET_NAME.match(name)
        if not match:
            fields[name] = value
            continue

        path = [match.group(1)] + _BRACKET_SEGMENT.findall(match.group(2))
        node = fields
        for segment in path[:-1]:
            key = segment if segment != "" else str(len(node))
            child = node.get(key)
            if not isinstance(child, dict):
                child = {}
                node[key] = child
            node = child
        last = path[-1]
        node[last if last != "" else str(len(node))] = value

    return {name: _listify(value) for name, value in fields.items()}


def canonical_pairs(
    payload: Mapping[str, Any],
    excluded_fields: FrozenSet[str] = SIGNATURE_EXCLUDED_FIELDS
) -> List[Tuple[str, str]]:
    """
    Build the ordered field list that gets signed.

    Args:
        payload: Decoded request fields, in any insertion order
        excluded_fields: Field names dropped before sorting

    Returns:
        (name, value) pairs sorted by field name (byte order)
    """
    names = sorted(
        (name for name in payload if name not in excluded_fields),
        key=lambda name: name.encode("utf-8")
    )
    pairs: List[Tuple[str, str]] = []
    for name in names:
        pairs.extend(_flatten(name, payload[name]))
    return pairs


def canonicalize(
    payload: Mapping[str, Any],
    excluded_fields: FrozenSet[str] = SIGNATURE_EXCLUDED_FIELDS
) -> bytes:
    """
    Create the canonical byte string for signing.

    Ensures consistent serialization:
    - Excluded fields removed, remaining fields sorted ascending
    - Values percent-encoded, empty values kept as `key=`
    - No trailing separator
    """
    pairs = canonical_pairs(payload, excluded_fields)
    query = "&".join(f"{_encode(name)}={_encode(value)}" for name, value in pairs)
    return query.encode("ascii")


# ============================================================================
# Keys
# ============================================================================

def load_public_key(pem: PemKey):
    """Load a PEM-encoded public key (RSA, EC or Ed25519)."""
    if isinstance(pem, str):
        pem = pem.encode("utf-8")
    return serialization.load_pem_public_key(pem.strip())


def load_private_key(pem: PemKey):
    """Load an unencrypted PEM-encoded private key (RSA, EC or Ed25519)."""
    if isinstance(pem, str):
        pem = pem.encode("utf-8")
    return serialization.load_pem_private_key(pem.strip(), password=None)


def _sign_raw(private_key, message: bytes) -> bytes:
    if isinstance(private_key, rsa.RSAPrivateKey):
        return private_key.sign(message, padding.PKCS1v15(), hashes.SHA256())
    if isinstance(private_key, ec.EllipticCurvePrivateKey):
        return private_key.sign(message, ec.ECDSA(hashes.SHA256()))
    if isinstance(private_key, ed25519.Ed25519PrivateKey):
        return private_key.sign(message)
    raise UnsupportedKeyError(f"Unsupported private key type: {type(private_key).__name__}")


def _verify_raw(public_key, signature: bytes, message: bytes) -> None:
    """Raises InvalidSignature on mismatch."""
    if isinstance(public_key, rsa.RSAPublicKey):
        public_key.verify(signature, message, padding.PKCS1v15(), hashes.SHA256())
    elif isinstance(public_key, ec.EllipticCurvePublicKey):
        public_key.verify(signature, message, ec.ECDSA(hashes.SHA256()))
    elif isinstance(public_key, ed25519.Ed25519PublicKey):
        public_key.verify(signature, message)
    else:
        raise UnsupportedKeyError(f"Unsupported public key type: {type(public_key).__name__}")


# ============================================================================
# Signing
# ============================================================================

def sign(payload: Mapping[str, Any], private_key) -> str:
    """
    Sign a payload.

    Args:
        payload: Request fields (an existing `sign` field is ignored)
        private_key: PEM string/bytes or a loaded private key

    Returns:
        Base64-encoded raw signature bytes
    """
    if isinstance(private_key, (str, bytes)):
        private_key = load_private_key(private_key)
    signature = _sign_raw(private_key, canonicalize(payload))
    return base64.b64encode(signature).decode("ascii")


def sign_with_system_key(payload: Mapping[str, Any]) -> str:
    """
    Sign an outbound payload with the system's own private key.

    Raises:
        RuntimeError: If no system key is configured
    """
    if not settings.system_private_key_path:
        raise RuntimeError(
            "Missing required setting: SYSTEM_PRIVATE_KEY_PATH. "
            "Cannot sign outbound requests without a configured key."
        )
    with open(settings.system_private_key_path, "rb") as key_file:
        return sign(payload, key_file.read())


def signed_payload(
    payload: Mapping[str, Any],
    private_key,
    timestamp: Optional[int] = None
) -> Dict[str, Any]:
    """Return a copy of the payload with `timestamp` and `sign` filled in."""
    data = dict(payload)
    data[TIMESTAMP_FIELD] = int(time.time()) if timestamp is None else timestamp
    data[SIGN_FIELD] = sign(data, private_key)
    return data


# ============================================================================
# Verification
# ============================================================================

def _parse_timestamp(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool) or value in ("", "0", 0):
        return None
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return None
    return parsed if math.isfinite(parsed) else None


def check_signature(
    payload: Mapping[str, Any],
    public_key,
    now: Optional[float] = None,
    max_age: Optional[int] = None
) -> VerificationOutcome:
    """
    Verify a signed request and report why it passed or failed.

    Args:
        payload: Request fields including `sign` and `timestamp`
        public_key: Merchant's PEM public key (string/bytes) or a loaded key
        now: Current epoch seconds (defaults to time.time())
        max_age: Freshness window in seconds (defaults to settings)

    Returns:
        VerificationOutcome; never raises for bad input or key faults
    """
    signature_b64 = payload.get(SIGN_FIELD)
    if not signature_b64 or not isinstance(signature_b64, str):
        return VerificationOutcome.MISSING_SIGNATURE

    now = time.time() if now is None else now
    max_age = settings.signature_max_age_seconds if max_age is None else max_age
    timestamp = _parse_timestamp(payload.get(TIMESTAMP_FIELD))
    # One-sided window: only stale requests are rejected
    if timestamp is None or now - timestamp > max_age:
        return VerificationOutcome.EXPIRED

    try:
        signature = base64.b64decode(signature_b64)
        message = canonicalize(payload)
        if isinstance(public_key, (str, bytes)):
            public_key = load_public_key(public_key)
    except (binascii.Error, ValueError, TypeError, UnicodeError) as e:
        logger.debug(f"Malformed signed request: {e}")
        return VerificationOutcome.MALFORMED

    try:
        _verify_raw(public_key, signature, message)
    except InvalidSignature:
        return VerificationOutcome.MISMATCH
    except Exception as e:
        logger.warning(f"Signature verification error: {e}")
        return VerificationOutcome.CRYPTO_FAILURE

    return VerificationOutcome.VALID


def verify(
    payload: Mapping[str, Any],
    public_key,
    now: Optional[float] = None,
    max_age: Optional[int] = None
) -> bool:
    """Verify a signed request. True only for a fresh, valid signature."""
    return check_signature(payload, public_key, now=now, max_age=max_age) is VerificationOutcome.VALID
