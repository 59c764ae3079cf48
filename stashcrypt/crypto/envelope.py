"""Private-key envelopes: passphrase PEM, PBKDF2-wrapped JWK components, KEK-wrapped signing key."""

import json
import logging
from dataclasses import dataclass
from typing import Optional, Tuple, Union

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from stashcrypt.common.protocol import (
    KeyDerivationProperties,
    PemPrivateKey,
    PrivateKeyRecord,
    RSAPrivateComponents,
    WrappedPrivateKey,
    json_object_keys,
    parse_json_model,
)
from stashcrypt.common.utils import b64d, b64e
from stashcrypt.config import DEFAULT_MAX_KDF_ITERATIONS
from stashcrypt.crypto import aes
from stashcrypt.crypto.keys import (
    EncryptionState,
    components_from_private_key,
    private_key_from_components,
    public_key_from_components,
    public_key_from_pem,
    public_key_to_components,
    same_public_key,
)
from stashcrypt.errors import CryptoError, ProtocolError

logger = logging.getLogger(__name__)

DERIVED_KEY_SIZE = 32
KEK_SIZE = 32
SUPPORTED_PRFS = {"sha256", "sha-256", "hmac-sha256", "hmac-sha-256", "pbkdf2-sha256"}

KeyPair = Tuple[rsa.RSAPrivateKey, rsa.RSAPublicKey]


@dataclass(frozen=True)
class PemEnvelope:
    """Server format "pem": {"private": <passphrase-encrypted PEM>} plus a PEM public key."""
    private_pem: str
    public_pem: Optional[str] = None


@dataclass(frozen=True)
class WrappedEnvelope:
    """
    Server format "jwk": AES-256-CBC ciphertext of a JSON RSA key.

    The AES key comes from PBKDF2 over the passphrase, or, for the signing
    key, from an RSA-OAEP wrapped KEK (encryptedKEK).
    """
    body: WrappedPrivateKey
    public_components: Optional[str] = None

    @property
    def has_kek(self) -> bool:
        return bool(self.body.encryptedKEK)

    @property
    def key_derivation(self) -> Optional[KeyDerivationProperties]:
        return self.body.key_derivation_properties


KeyEnvelope = Union[PemEnvelope, WrappedEnvelope]


@dataclass(frozen=True)
class KeyEnvelopes:
    """Everything unlock() needs: the encryption envelope and, optionally, the signing one."""
    encryption: KeyEnvelope
    signing: Optional[KeyEnvelope] = None


def envelope_from_record(record: PrivateKeyRecord) -> KeyEnvelope:
    """
    Picks the envelope variant by the fields record.private_key carries.

    Returns: PemEnvelope when it holds "private", WrappedEnvelope when it
             holds "ciphertext"
    Raises: ProtocolError for anything else
    """
    if not record.private_key:
        raise ProtocolError("Private key record has no private_key field")

    keys = json_object_keys(record.private_key, "private_key")
    if "private" in keys:
        pem = parse_json_model(PemPrivateKey, record.private_key, "PEM private key")
        return PemEnvelope(private_pem=pem.private, public_pem=record.public_key)
    if "ciphertext" in keys:
        body = parse_json_model(WrappedPrivateKey, record.private_key, "wrapped private key")
        return WrappedEnvelope(body=body, public_components=record.public_key)
    raise ProtocolError(f"Unrecognised private key envelope with fields {sorted(keys)}")


# --- Key derivation ---

def derive_key(passphrase: str, props: Optional[KeyDerivationProperties],
               max_iterations: int = DEFAULT_MAX_KDF_ITERATIONS) -> bytes:
    """
    Derives the 32-byte AES key protecting a wrapped envelope.

    PBKDF2-HMAC-SHA256 over the passphrase with the server's salt and
    iteration count.
    """
    if props is None or props.salt is None or props.iterations is None:
        raise ProtocolError("missing key derivation parameters")
    if props.prf is not None and props.prf.strip().lower() not in SUPPORTED_PRFS:
        raise ProtocolError(f"Unsupported key derivation PRF: {props.prf}")
    if not 1 <= props.iterations <= max_iterations:
        raise ProtocolError(f"Key derivation iteration count {props.iterations} out of range")

    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=DERIVED_KEY_SIZE,
        salt=b64d(props.salt, "salt"),
        iterations=props.iterations,
    )
    return kdf.derive(passphrase.encode("utf-8"))


# --- Decoding ---

def _check_public(private_key: rsa.RSAPrivateKey, public_key: Optional[rsa.RSAPublicKey]) -> KeyPair:
    if public_key is None:
        return private_key, private_key.public_key()
    if not same_public_key(private_key.public_key(), public_key):
        raise CryptoError("Recovered private key does not match the published public key")
    return private_key, public_key


def decode_pem(envelope: PemEnvelope, passphrase: str) -> KeyPair:
    """Path A: decrypt a passphrase-protected PEM private key."""
    try:
        private_key = serialization.load_pem_private_key(
            envelope.private_pem.encode("ascii"),
            password=passphrase.encode("utf-8"),
        )
    except (ValueError, TypeError, UnicodeEncodeError, UnsupportedAlgorithm) as e:
        raise CryptoError("Could not decrypt PEM private key: wrong passphrase or corrupted key") from e
    if not isinstance(private_key, rsa.RSAPrivateKey):
        raise ProtocolError("PEM private key is not an RSA key")

    public_key = public_key_from_pem(envelope.public_pem) if envelope.public_pem else None
    return _check_public(private_key, public_key)


def decode_wrapped(envelope: WrappedEnvelope, aes_key: bytes) -> KeyPair:
    """Path B: AES-256-CBC-decrypt the JSON key components and rebuild the pair."""
    iv = b64d(envelope.body.iv, "iv")
    ciphertext = b64d(envelope.body.ciphertext, "ciphertext")
    plaintext = aes.decrypt(aes_key, iv, ciphertext)

    try:
        components = parse_json_model(RSAPrivateComponents, plaintext, "decrypted private key")
    except ProtocolError as e:
        # garbage that happened to unpad cleanly, i.e. a wrong key
        raise CryptoError("Decrypted private key is unreadable: wrong passphrase or corrupted key") from e
    private_key = private_key_from_components(components)

    public_key = None
    if envelope.public_components:
        public_key = public_key_from_components(envelope.public_components)
    return _check_public(private_key, public_key)


def _decode_encryption(envelope: KeyEnvelope, passphrase: str, max_iterations: int) -> KeyPair:
    if isinstance(envelope, PemEnvelope):
        return decode_pem(envelope, passphrase)
    if envelope.has_kek:
        raise ProtocolError("Encryption key envelope cannot be KEK-wrapped")
    return decode_wrapped(envelope, derive_key(passphrase, envelope.key_derivation, max_iterations))


def _decode_signing(envelope: KeyEnvelope, passphrase: str, encryption: EncryptionState,
                    max_iterations: int) -> KeyPair:
    if isinstance(envelope, PemEnvelope):
        return decode_pem(envelope, passphrase)
    if envelope.has_kek:
        kek = encryption.decrypt_oaep(b64d(envelope.body.encryptedKEK, "encryptedKEK"))
        if len(kek) != KEK_SIZE:
            raise CryptoError(f"unexpected KEK length: {len(kek)} bytes")
        return decode_wrapped(envelope, kek)
    return decode_wrapped(envelope, derive_key(passphrase, envelope.key_derivation, max_iterations))


def unlock(passphrase: str, envelopes: KeyEnvelopes,
           max_iterations: int = DEFAULT_MAX_KDF_ITERATIONS) -> EncryptionState:
    """
    Recovers the user's key pairs from the server envelopes.

    The encryption pair is recovered first: the signing envelope's KEK is
    wrapped for it.
    Returns: EncryptionState holding both pairs (signing pair optional)
    Raises: CryptoError on a wrong passphrase or corrupted material,
            ProtocolError on envelopes we cannot interpret
    """
    logger.debug("Unlocking encryption key (%s)", type(envelopes.encryption).__name__)
    private_key, public_key = _decode_encryption(envelopes.encryption, passphrase, max_iterations)
    state = EncryptionState(private_key=private_key, public_key=public_key)

    if envelopes.signing is None:
        return state

    logger.debug("Unlocking signing key (%s)", type(envelopes.signing).__name__)
    private_sign, public_sign = _decode_signing(envelopes.signing, passphrase, state, max_iterations)
    return EncryptionState(
        private_key=private_key,
        public_key=public_key,
        private_signing_key=private_sign,
        public_signing_key=public_sign,
    )


# --- Re-encryption of existing keys ---

def seal_wrapped(private_key: rsa.RSAPrivateKey, passphrase: str, salt: bytes,
                 iterations: int, iv: bytes) -> PrivateKeyRecord:
    """
    Re-encrypts an existing private key into the "jwk" wrapped format.

    The result round-trips through envelope_from_record() and unlock().
    """
    props = KeyDerivationProperties(prf="SHA-256", iterations=iterations, salt=b64e(salt))
    key = derive_key(passphrase, props, max(iterations, DEFAULT_MAX_KDF_ITERATIONS))
    plaintext = components_from_private_key(private_key).model_dump_json(exclude_none=True)
    body = WrappedPrivateKey(
        iv=b64e(iv),
        ciphertext=b64e(aes.encrypt(key, iv, plaintext.encode("utf-8"))),
        encryption_func="AES-CBC",
        key_derivation_properties=props,
    )
    return PrivateKeyRecord(
        format="jwk",
        private_key=body.model_dump_json(exclude_none=True),
        public_key=public_key_to_components(private_key.public_key()),
    )


def seal_pem(private_key: rsa.RSAPrivateKey, passphrase: str) -> PrivateKeyRecord:
    """Re-encrypts an existing private key into the "pem" format."""
    pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.BestAvailableEncryption(passphrase.encode("utf-8")),
    ).decode("ascii")
    public_pem = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode("ascii")
    return PrivateKeyRecord(
        format="pem",
        private_key=json.dumps({"private": pem}),
        public_key=public_pem,
    )
