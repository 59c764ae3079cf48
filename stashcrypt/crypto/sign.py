"""Message verification tags: raw (unpadded) RSA over SHA-256 of the signed text."""

import hmac
import logging
from typing import Union

from cryptography.hazmat.primitives.asymmetric import rsa

from stashcrypt.common.protocol import Message
from stashcrypt.common.utils import hex_d, sha256_digest
from stashcrypt.crypto.keys import public_key_from_components, public_key_from_pem
from stashcrypt.errors import ProtocolError

logger = logging.getLogger(__name__)

PublicKeyLike = Union[str, rsa.RSAPublicKey]


def load_public_signing_key(key: PublicKeyLike) -> rsa.RSAPublicKey:
    """
    Accepts a sender signing key as the server hands it out.

    key: JSON {n, e} text (JWK), PEM text, or an already loaded key
    """
    if isinstance(key, rsa.RSAPublicKey):
        return key
    if key.lstrip().startswith("-----BEGIN"):
        return public_key_from_pem(key)
    return public_key_from_components(key)


def signed_content(message: Message) -> bytes:
    """
    Bytes the sender hashed: the hex-decoded ciphertext of an encrypted
    message, the UTF-8 text otherwise.

    Always taken from the server text (original_text once decrypted).
    """
    text = message.signed_text
    if text is None:
        raise ProtocolError(f"Message {message.id} carries a verification tag but no text")
    if message.is_encrypted and text:
        return hex_d(text, "message text")
    return text.encode("utf-8")


def _key_size_bytes(public_key: rsa.RSAPublicKey) -> int:
    return (public_key.key_size + 7) // 8


def _raw_public_op(public_key: rsa.RSAPublicKey, block: bytes) -> bytes:
    """
    Unpadded RSA with the public exponent: block^e mod n.

    The server "signs" by raw-RSA-encrypting the digest with the private
    signing key, so there is no padding scheme a library verify() could
    check. Returns b"" when block is not a valid RSA input.
    """
    numbers = public_key.public_numbers()
    value = int.from_bytes(block, "big")
    if value >= numbers.n:
        return b""
    return pow(value, numbers.e, numbers.n).to_bytes(_key_size_bytes(public_key), "big")


def verify(message: Message, sender_public_key: PublicKeyLike) -> bool:
    """
    Checks a message's verification tag against the sender's signing key.

    Returns True for messages without a tag (nothing to check), otherwise
    True only if the tag decrypts to SHA-256 of the signed content.
    Raises: ProtocolError if the sender is unknown or the tag is not hex
    """
    if not message.verification:
        return True

    if message.sender_id is None or sender_public_key is None:
        raise ProtocolError("Can't verify hash of unknown sender.")

    public_key = load_public_signing_key(sender_public_key)
    tag = hex_d(message.verification, "verification")
    digest = sha256_digest(signed_content(message))

    size = _key_size_bytes(public_key)
    if len(tag) > size:
        logger.info("Verification tag of message %s is longer than the key", message.id)
        return False

    recovered = _raw_public_op(public_key, tag)
    if not hmac.compare_digest(recovered, digest.rjust(size, b"\x00")):
        logger.info("Signature mismatch for message %s from %s", message.id, message.sender_id)
        return False
    return True


def sign(private_key: rsa.RSAPrivateKey, content: bytes) -> str:
    """
    Produces a verification tag for content in the server's scheme.

    content: the bytes signed_content() would return for the message
    Returns: hex-encoded digest^d mod n, padded to the key size
    """
    numbers = private_key.private_numbers()
    n = numbers.public_numbers.n
    value = int.from_bytes(sha256_digest(content), "big")
    size = (private_key.key_size + 7) // 8
    return pow(value, numbers.d, n).to_bytes(size, "big").hex()
