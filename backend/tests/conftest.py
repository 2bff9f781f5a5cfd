from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass

# Keep the module-level engine away from the working directory
os.environ.setdefault("DATABASE_PATH", os.path.join(tempfile.mkdtemp(), "signpay-test.db"))

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, ed25519, rsa


@dataclass(frozen=True)
class KeyPair:
    private_pem: str
    public_pem: str


def _pem_pair(private_key) -> KeyPair:
    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("ascii")
    public_pem = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode("ascii")
    return KeyPair(private_pem=private_pem, public_pem=public_pem)


@pytest.fixture(scope="session")
def rsa_keys() -> KeyPair:
    return _pem_pair(rsa.generate_private_key(public_exponent=65537, key_size=2048))


@pytest.fixture(scope="session")
def other_rsa_keys() -> KeyPair:
    return _pem_pair(rsa.generate_private_key(public_exponent=65537, key_size=2048))


@pytest.fixture(scope="session")
def ec_keys() -> KeyPair:
    return _pem_pair(ec.generate_private_key(ec.SECP256R1()))


@pytest.fixture(scope="session")
def ed25519_keys() -> KeyPair:
    return _pem_pair(ed25519.Ed25519PrivateKey.generate())
