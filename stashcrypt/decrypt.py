"""Message text and file decryption on top of the chat index and key store."""

import logging
from typing import List, Optional

from stashcrypt.common.protocol import ChatIdentity, File, Message
from stashcrypt.common.utils import hex_d, optional_hex_d
from stashcrypt.crypto import aes
from stashcrypt.crypto.keys import EncryptionState
from stashcrypt.errors import ChatValueError, EncodingError
from stashcrypt.storage.chat_index import ChatIndex
from stashcrypt.storage.keystore import ChatKeyStore

logger = logging.getLogger(__name__)


class Decryptor:
    """
    Turns encrypted messages and downloaded files into plaintext.

    index: chats the session knows (unknown chats are refused)
    key_store: per-chat key cache, owned by the session
    state: unlocked keys; None until the passphrase has been given
    """

    def __init__(self, index: ChatIndex, key_store: ChatKeyStore,
                 state: Optional[EncryptionState] = None):
        self.index = index
        self.key_store = key_store
        self.state = state

    def chat_key(self, chat: ChatIdentity) -> Optional[bytes]:
        """The chat's AES key, or None if the chat is not end-to-end encrypted."""
        metadata = self.index.metadata(chat)
        if not metadata.encrypted:
            return None
        if self.state is None:
            raise ChatValueError("Passphrase needs to be set before accessing anything encrypted")
        return self.key_store.get_or_unwrap(chat, metadata.wrapped_key, metadata.encrypted, self.state)

    def decrypt_message_text(self, chat: ChatIdentity, message: Message) -> Optional[str]:
        """
        Returns the message's plaintext.

        Unencrypted messages and empty texts come back unchanged without
        touching the key store.
        Raises: ChatValueError (unknown chat / no key), CryptoError,
                EncodingError if the plaintext is not UTF-8
        """
        if not message.is_encrypted or not message.text:
            return message.text

        ciphertext = hex_d(message.text, "message text")
        key = self.chat_key(chat)
        if key is None:
            logger.warning("Message %s is flagged encrypted but %s is not", message.id, chat)
            return message.text

        iv = optional_hex_d(message.iv, "message iv")
        plaintext = aes.decrypt(key, iv, ciphertext)
        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as e:
            raise EncodingError(f"Message {message.id} in {chat} did not decrypt to UTF-8 text") from e

    def decrypt_message(self, chat: ChatIdentity, message: Message) -> Message:
        """Copy of message with text decrypted and the server text kept in original_text."""
        original = message.signed_text
        source = message.model_copy(update={"text": original})
        return message.model_copy(update={
            "text": self.decrypt_message_text(chat, source),
            "original_text": original,
        })

    def decrypt_messages(self, chat: ChatIdentity, messages: List[Message]) -> List[Message]:
        return [self.decrypt_message(chat, message) for message in messages]

    def decrypt_file(self, chat: ChatIdentity, file: File, raw_bytes: bytes) -> bytes:
        """
        Decrypts downloaded file bytes (binary, not hex) with the chat key.

        Unencrypted files come back unchanged.
        """
        if not file.encrypted:
            return raw_bytes

        key = self.chat_key(chat)
        if key is None:
            return raw_bytes

        iv = optional_hex_d(file.e2e_iv, "file e2e_iv")
        return aes.decrypt(key, iv, raw_bytes)
