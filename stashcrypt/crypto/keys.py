"""RSA key reconstruction (JWK components / PEM) and the per-session EncryptionState."""

import json
import logging
from dataclasses import dataclass, field
from typing import Optional, Union

from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from stashcrypt.common.protocol import RSAPrivateComponents, RSAPublicComponents, parse_json_model
from stashcrypt.common.utils import b64url_int, b64url_uint
from stashcrypt.errors import CryptoError, ProtocolError

logger = logging.getLogger(__name__)

# OpenSSL's PKCS1_OAEP default: SHA-1 for both the label hash and MGF1
OAEP_PADDING = padding.OAEP(
    mgf=padding.MGF1(algorithm=hashes.SHA1()),
    algorithm=hashes.SHA1(),
    label=None,
)


def private_key_from_components(components: RSAPrivateComponents) -> rsa.RSAPrivateKey:
    """
    Builds an RSA private key from base64url big-integer components.

    dp, dq and qi are recomputed from (d, p, q) when the server left them out.
    Raises: ProtocolError for undecodable fields, CryptoError when the
            numbers do not form a valid key
    """
    n = b64url_int(components.n, "n")
    e = b64url_int(components.e, "e")
    d = b64url_int(components.d, "d")
    p = b64url_int(components.p, "p")
    q = b64url_int(components.q, "q")
    dp = b64url_int(components.dp, "dp") if components.dp else None
    dq = b64url_int(components.dq, "dq") if components.dq else None
    qi = b64url_int(components.qi, "qi") if components.qi else None

    try:
        numbers = rsa.RSAPrivateNumbers(
            p=p, q=q, d=d,
            dmp1=rsa.rsa_crt_dmp1(d, p) if dp is None else dp,
            dmq1=rsa.rsa_crt_dmq1(d, q) if dq is None else dq,
            iqmp=rsa.rsa_crt_iqmp(p, q) if qi is None else qi,
            public_numbers=rsa.RSAPublicNumbers(e=e, n=n),
        )
        return numbers.private_key()
    except ValueError as e:
        raise CryptoError(f"Recovered RSA components are inconsistent: {e}") from e


def components_from_private_key(private_key: rsa.RSAPrivateKey) -> RSAPrivateComponents:
    """Inverse of private_key_from_components, used when re-sealing a key."""
    numbers = private_key.private_numbers()
    pub = numbers.public_numbers
    return RSAPrivateComponents(
        n=b64url_uint(pub.n), e=b64url_uint(pub.e), d=b64url_uint(numbers.d),
        p=b64url_uint(numbers.p), q=b64url_uint(numbers.q),
        dp=b64url_uint(numbers.dmp1), dq=b64url_uint(numbers.dmq1), qi=b64url_uint(numbers.iqmp),
    )


def public_key_from_components(components: Union[str, RSAPublicComponents]) -> rsa.RSAPublicKey:
    """
    Builds an RSA public key from {n, e}, given as JSON text or a parsed model.

    The sender signing keys the server hands out are this JSON (a JWK with
    alg/kty/key_ops members that we ignore).
    """
    if isinstance(components, str):
        components = parse_json_model(RSAPublicComponents, components, "public key")
    numbers = rsa.RSAPublicNumbers(
        e=b64url_int(components.e, "e"),
        n=b64url_int(components.n, "n"),
    )
    try:
        return numbers.public_key()
    except ValueError as e:
        raise CryptoError(f"Invalid RSA public key: {e}") from e


def public_key_to_components(public_key: rsa.RSAPublicKey) -> str:
    numbers = public_key.public_numbers()
    return json.dumps({"n": b64url_uint(numbers.n), "e": b64url_uint(numbers.e)})


def public_key_from_pem(pem: str) -> rsa.RSAPublicKey:
    """Loads an RSA public key from PEM text (SubjectPublicKeyInfo or PKCS#1)."""
    try:
        key = serialization.load_pem_public_key(pem.encode("ascii"))
    except (ValueError, UnicodeEncodeError) as e:
        raise CryptoError(f"Could not load PEM public key: {e}") from e
    if not isinstance(key, rsa.RSAPublicKey):
        raise ProtocolError("PEM public key is not an RSA key")
    return key


def same_public_key(a: rsa.RSAPublicKey, b: rsa.RSAPublicKey) -> bool:
    return a.public_numbers() == b.public_numbers()


@dataclass(frozen=True)
class EncryptionState:
    """
    The user's unlocked RSA key pairs for one session.

    Built once by unlock(), read-only afterwards, so it can be shared
    between threads freely. Key material never leaves process memory.
    """
    private_key: rsa.RSAPrivateKey = field(repr=False)
    public_key: rsa.RSAPublicKey = field(repr=False)
    private_signing_key: Optional[rsa.RSAPrivateKey] = field(default=None, repr=False)
    public_signing_key: Optional[rsa.RSAPublicKey] = field(default=None, repr=False)

    @property
    def can_sign(self) -> bool:
        return self.private_signing_key is not None

    def decrypt_oaep(self, data: bytes) -> bytes:
        """
        RSA-OAEP-decrypts data with the private encryption key.

        Used for chat keys and for the signing envelope's KEK.
        Raises: CryptoError if the data was not wrapped for this key
        """
        try:
            return self.private_key.decrypt(data, OAEP_PADDING)
        except ValueError as e:
            raise CryptoError("RSA-OAEP decryption failed: wrong key or corrupted data") from e
