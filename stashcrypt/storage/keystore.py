"""In-memory chat key cache: ChatIdentity -> unwrapped AES-256 chat key."""

import logging
import threading
from typing import Dict, Optional

from stashcrypt.common.protocol import ChatIdentity
from stashcrypt.common.utils import b64d
from stashcrypt.crypto.aes import AES_KEY_SIZE
from stashcrypt.crypto.keys import EncryptionState
from stashcrypt.errors import ChatValueError, CryptoError

logger = logging.getLogger(__name__)


class ChatKeyStore:
    """
    Lazily unwraps and caches one symmetric key per chat.

    A chat's key is unwrapped at most once for the lifetime of the store,
    even when several threads ask for a new chat at the same time. Failed
    unwraps leave nothing behind, so other chats (and retries with a
    different state) are unaffected. Each session owns its own store.
    """

    def __init__(self):
        self._keys: Dict[ChatIdentity, bytes] = {}
        self._chat_locks: Dict[ChatIdentity, threading.Lock] = {}
        self._guard = threading.Lock()
        # bumped by clear(); unwraps started under an older value are discarded
        self._generation = 0

    def _lock_for(self, chat: ChatIdentity) -> threading.Lock:
        with self._guard:
            lock = self._chat_locks.get(chat)
            if lock is None:
                lock = self._chat_locks[chat] = threading.Lock()
            return lock

    def get_or_unwrap(
        self,
        chat: ChatIdentity,
        wrapped_key_b64: Optional[str],
        is_encrypted: bool,
        encryption_state: EncryptionState,
    ) -> Optional[bytes]:
        """
        Returns the chat's AES key, unwrapping it on first use.

        chat: identity the key is cached under
        wrapped_key_b64: the chat's own "key" field (base64 RSA-OAEP blob)
        is_encrypted: the chat's "encrypted" flag; False means no key at all
        encryption_state: the unlocked session keys
        Returns: 32 key bytes, or None for unencrypted chats
        Raises: ChatValueError if an encrypted chat has no wrapped key,
                CryptoError if the key cannot be unwrapped
        """
        if not is_encrypted:
            return None

        key = self._keys.get(chat)
        if key is not None:
            logger.debug("Chat key cache hit for %s", chat)
            return key

        with self._lock_for(chat):
            # another thread may have finished while we waited
            key = self._keys.get(chat)
            if key is not None:
                logger.debug("Chat key cache hit for %s", chat)
                return key

            if not wrapped_key_b64:
                raise ChatValueError(f"Key is missing for encrypted chat {chat}")

            with self._guard:
                generation = self._generation

            logger.debug("Unwrapping chat key for %s", chat)
            key = encryption_state.decrypt_oaep(b64d(wrapped_key_b64, f"key of {chat}"))
            if len(key) != AES_KEY_SIZE:
                raise CryptoError(f"unexpected chat key length for {chat}: {len(key)} bytes")

            with self._guard:
                if generation == self._generation:
                    self._keys[chat] = key
                else:
                    logger.debug("Store cleared during unwrap of %s, not caching", chat)
            return key

    def get(self, chat: ChatIdentity) -> Optional[bytes]:
        """Cached key for chat, without unwrapping."""
        return self._keys.get(chat)

    def clear(self) -> None:
        """Forgets every cached key (end of session)."""
        with self._guard:
            self._generation += 1
            self._keys.clear()
            # locks held by in-flight unwraps stay, so a new caller for the
            # same chat still waits for them
            self._chat_locks = {
                chat: lock for chat, lock in self._chat_locks.items() if lock.locked()
            }

    def __contains__(self, chat: ChatIdentity) -> bool:
        return chat in self._keys

    def __len__(self) -> int:
        return len(self._keys)
