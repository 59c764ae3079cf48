"""Session facade: unlock keys, index chats, decrypt and verify through a Transport."""

import logging
from typing import Iterable, List, Optional, Protocol

from stashcrypt.common.protocol import (
    Channel,
    ChatIdentity,
    ChatMetadata,
    ChatType,
    Conversation,
    File,
    Message,
    PrivateKeyRecord,
)
from stashcrypt.config import Settings, load_settings
from stashcrypt.crypto import envelope, sign
from stashcrypt.crypto.keys import EncryptionState
from stashcrypt.decrypt import Decryptor
from stashcrypt.errors import ChatValueError, ProtocolError
from stashcrypt.storage.chat_index import ChatIndex
from stashcrypt.storage.keystore import ChatKeyStore

logger = logging.getLogger(__name__)

ROLE_ENCRYPTION = "encryption"
ROLE_SIGNING = "signing"


class Transport(Protocol):
    """What the session needs from the network layer (HTTP lives elsewhere)."""

    def fetch_private_key_envelope(self, format: str, role: str) -> PrivateKeyRecord:
        ...

    def fetch_chat_metadata(self, chat: ChatIdentity) -> Optional[ChatMetadata]:
        ...

    def fetch_raw_file_bytes(self, file_id: str) -> bytes:
        ...

    def resolve_user_public_signing_key(self, user_id: str) -> Optional[str]:
        ...


class Session:
    """
    One logged-in user's decryption context.

    Owns its chat index and key store; two sessions never share keys.
    """

    def __init__(self, transport: Transport, settings: Optional[Settings] = None):
        self.transport = transport
        self.settings = settings or load_settings()
        self.index = ChatIndex()
        self.key_store = ChatKeyStore()
        self._decryptor = Decryptor(self.index, self.key_store)

    # --- Keys ---

    @property
    def state(self) -> Optional[EncryptionState]:
        return self._decryptor.state

    @property
    def is_unlocked(self) -> bool:
        return self._decryptor.state is not None

    def unlock(self, passphrase: str) -> EncryptionState:
        """
        Fetches the key envelopes and unlocks them with passphrase.

        Raises: CryptoError on a wrong passphrase, ProtocolError if the
                server's envelopes cannot be interpreted
        """
        key_format = self.settings.key_format
        encryption = envelope.envelope_from_record(
            self.transport.fetch_private_key_envelope(key_format, ROLE_ENCRYPTION))
        signing = None
        if self.settings.load_signing_key:
            signing = envelope.envelope_from_record(
                self.transport.fetch_private_key_envelope(key_format, ROLE_SIGNING))

        state = envelope.unlock(
            passphrase,
            envelope.KeyEnvelopes(encryption=encryption, signing=signing),
            max_iterations=self.settings.max_kdf_iterations,
        )
        self._decryptor.state = state
        logger.info("Session unlocked (%s keys, signing=%s)", key_format, state.can_sign)
        return state

    def lock(self) -> None:
        """Drops the unlocked keys and every cached chat key."""
        self._decryptor.state = None
        self.key_store.clear()

    # --- Chat index ---

    def add_channels(self, channels: Iterable[Channel]) -> None:
        self.index.add_channels(channels)

    def add_conversations(self, conversations: Iterable[Conversation]) -> None:
        self.index.add_conversations(conversations)

    def chat_ids(self, kind: Optional[ChatType] = None) -> List[ChatIdentity]:
        return self.index.ids(kind)

    def chat_name(self, chat: ChatIdentity) -> str:
        return self.index.name(chat)

    def _ensure_known(self, chat: ChatIdentity) -> None:
        if chat in self.index:
            return
        metadata = self.transport.fetch_chat_metadata(chat)
        if metadata is None:
            raise ChatValueError(f"Invalid {chat.kind.value} id: {chat.id!r}")
        self.index.add(chat, metadata)

    # --- Decryption ---

    def decrypt_message_text(self, chat: ChatIdentity, message: Message) -> Optional[str]:
        if message.is_encrypted and message.text:
            self._ensure_known(chat)
        return self._decryptor.decrypt_message_text(chat, message)

    def decrypt_messages(self, chat: ChatIdentity, messages: Iterable[Message]) -> List[Message]:
        messages = list(messages)
        if any(m.is_encrypted and m.signed_text for m in messages):
            self._ensure_known(chat)
        return self._decryptor.decrypt_messages(chat, messages)

    def decrypt_file(self, chat: ChatIdentity, file: File, raw_bytes: bytes) -> bytes:
        if file.encrypted:
            self._ensure_known(chat)
        return self._decryptor.decrypt_file(chat, file, raw_bytes)

    def download_file(self, chat: ChatIdentity, file: File) -> bytes:
        """Fetches a file's bytes through the transport and decrypts them."""
        if not file.id:
            raise ChatValueError("File has no id")
        raw_bytes = self.transport.fetch_raw_file_bytes(file.id)
        return self.decrypt_file(chat, file, raw_bytes)

    # --- Verification ---

    def verify_message(self, message: Message) -> bool:
        """
        Checks message's verification tag against its sender's signing key.

        Raises: ProtocolError if the sender cannot be resolved
        """
        if not message.verification:
            return True
        sender_id = message.sender_id
        if sender_id is None:
            raise ProtocolError("Can't verify hash of unknown sender.")
        public_key = self.transport.resolve_user_public_signing_key(sender_id)
        if public_key is None:
            raise ProtocolError(f"No public signing key for user {sender_id}")
        return sign.verify(message, public_key)
