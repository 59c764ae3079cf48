# Shared fixtures. Envelopes and ciphertexts are built with `cryptography`
# directly so they do not depend on the code under test.

import base64
import json

import pytest
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives import padding as sym_padding
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from stashcrypt.common.protocol import PrivateKeyRecord

PASSPHRASE = "correct horse battery staple"
SALT = b"fixture-salt-016"
ITERATIONS = 1000
ENVELOPE_IV = bytes(range(16))


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _b64url_int(value: int) -> str:
    raw = value.to_bytes((value.bit_length() + 7) // 8, "big")
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def cbc_encrypt(key: bytes, iv, data: bytes) -> bytes:
    padder = sym_padding.PKCS7(128).padder()
    padded = padder.update(data) + padder.finalize()
    mode = modes.ECB() if iv is None else modes.CBC(iv)
    encryptor = Cipher(algorithms.AES(key), mode).encryptor()
    return encryptor.update(padded) + encryptor.finalize()


def oaep_wrap(public_key, data: bytes) -> bytes:
    return public_key.encrypt(data, padding.OAEP(
        mgf=padding.MGF1(algorithm=hashes.SHA1()),
        algorithm=hashes.SHA1(),
        label=None,
    ))


def pbkdf2(passphrase: str, salt: bytes, iterations: int) -> bytes:
    kdf = PBKDF2HMAC(algorithm=hashes.SHA256(), length=32, salt=salt, iterations=iterations)
    return kdf.derive(passphrase.encode("utf-8"))


def jwk_private(key) -> dict:
    numbers = key.private_numbers()
    return {
        "n": _b64url_int(numbers.public_numbers.n),
        "e": _b64url_int(numbers.public_numbers.e),
        "d": _b64url_int(numbers.d),
        "p": _b64url_int(numbers.p),
        "q": _b64url_int(numbers.q),
        "dp": _b64url_int(numbers.dmp1),
        "dq": _b64url_int(numbers.dmq1),
        "qi": _b64url_int(numbers.iqmp),
    }


def jwk_public(key) -> dict:
    numbers = key.public_key().public_numbers()
    return {
        "alg": "RSA-OAEP-256",
        "e": _b64url_int(numbers.e),
        "ext": True,
        "key_ops": ["verify"],
        "kty": "RSA",
        "n": _b64url_int(numbers.n),
    }


# ── Keys ────────────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def encryption_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def signing_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def stranger_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


# ── Envelope builders ───────────────────────────────────────────────


@pytest.fixture(scope="session")
def wrapped_record():
    """Builds a "jwk" record whose ciphertext is keyed by PBKDF2(passphrase)."""
    def build(private_key, passphrase=PASSPHRASE, salt=SALT, iterations=ITERATIONS,
              iv=ENVELOPE_IV, derivation=True, public_key=None):
        key = pbkdf2(passphrase, salt, iterations)
        body = {
            "iv": _b64(iv),
            "ciphertext": _b64(cbc_encrypt(key, iv, json.dumps(jwk_private(private_key)).encode())),
            "encryption_func": "AES-CBC",
        }
        if derivation:
            body["key_derivation_properties"] = {
                "prf": "SHA-256", "iterations": iterations, "salt": _b64(salt),
            }
        return PrivateKeyRecord(
            type="encryption",
            format="jwk",
            private_key=json.dumps(body),
            public_key=json.dumps(jwk_public(public_key or private_key)),
        )
    return build


@pytest.fixture(scope="session")
def kek_record():
    """Builds a "jwk" signing record whose AES key is an OAEP-wrapped KEK."""
    def build(private_key, encryption_public_key, kek=b"K" * 32, iv=ENVELOPE_IV):
        body = {
            "iv": _b64(iv),
            "ciphertext": _b64(cbc_encrypt(kek, iv, json.dumps(jwk_private(private_key)).encode())),
            "encryption_func": "AES-CBC",
            "encryptedKEK": _b64(oaep_wrap(encryption_public_key, kek)),
        }
        return PrivateKeyRecord(
            type="signing",
            format="jwk",
            private_key=json.dumps(body),
            public_key=json.dumps(jwk_public(private_key)),
        )
    return build


@pytest.fixture(scope="session")
def pem_record():
    """Builds a "pem" record: {"private": <encrypted PEM>} plus PEM public key."""
    def build(private_key, passphrase=PASSPHRASE):
        pem = private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.BestAvailableEncryption(passphrase.encode()),
        ).decode("ascii")
        public_pem = private_key.public_key().public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        ).decode("ascii")
        return PrivateKeyRecord(
            type="encryption",
            format="pem",
            private_key=json.dumps({"private": pem}),
            public_key=public_pem,
        )
    return build


@pytest.fixture(scope="session")
def unlocked_state(encryption_key, signing_key):
    from stashcrypt.crypto.keys import EncryptionState
    return EncryptionState(
        private_key=encryption_key,
        public_key=encryption_key.public_key(),
        private_signing_key=signing_key,
        public_signing_key=signing_key.public_key(),
    )
