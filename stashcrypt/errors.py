"""Exception types raised by the decryption core."""


class StashcryptError(Exception):
    """Base class for every error this package raises on purpose."""
    pass


class DecryptError(StashcryptError):
    """Something on the unlock/decrypt path failed."""
    pass


class CryptoError(DecryptError):
    """
    A cipher, padding, key-derivation or RSA step failed.

    Terminal for the operation: the same inputs fail the same way again.
    Right after unlock this is what a wrong passphrase looks like.
    """
    pass


class EncodingError(DecryptError):
    """Decrypted bytes were expected to be UTF-8 text but are not."""
    pass


class ChatValueError(DecryptError, ValueError):
    """Unknown chat, or a field the operation needs is missing."""
    pass


class ProtocolError(StashcryptError):
    """The server sent a shape we do not understand (missing KDF block, unknown sender, ...)."""
    pass
