# Tests for message text and file decryption

import base64

import pytest
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from stashcrypt.common.protocol import Channel, ChatIdentity, Conversation, File, Message
from stashcrypt.decrypt import Decryptor
from stashcrypt.errors import ChatValueError, CryptoError, EncodingError
from stashcrypt.storage.chat_index import ChatIndex
from stashcrypt.storage.keystore import ChatKeyStore

from conftest import cbc_encrypt, oaep_wrap

CHAT_KEY = bytes(range(32))
MESSAGE_IV = bytes(range(16, 32))
PLAINTEXT = "Grüße aus Konversation 42"


@pytest.fixture
def wrapped_chat_key(encryption_key):
    return base64.b64encode(oaep_wrap(encryption_key.public_key(), CHAT_KEY)).decode()


@pytest.fixture
def decryptor(unlocked_state, wrapped_chat_key):
    index = ChatIndex()
    index.add_conversations([
        Conversation(id="42", name="Team", encrypted=True, key=wrapped_chat_key),
        Conversation(id="43", name="Open", encrypted=False),
    ])
    index.add_channels([Channel(id="9", name="News", encrypted=True, key=wrapped_chat_key)])
    return Decryptor(index, ChatKeyStore(), unlocked_state)


def _encrypted_message(plaintext: bytes, iv=MESSAGE_IV, key=CHAT_KEY):
    return Message(
        id="1",
        text=cbc_encrypt(key, iv, plaintext).hex(),
        iv=iv.hex() if iv is not None else None,
        encrypted=True,
    )


class TestMessageText:
    def test_end_to_end_conversation_42(self, decryptor):
        message = _encrypted_message(PLAINTEXT.encode("utf-8"))
        chat = ChatIdentity.conversation("42")
        assert decryptor.decrypt_message_text(chat, message) == PLAINTEXT

    def test_without_iv(self, decryptor):
        message = _encrypted_message(b"no iv", iv=None)
        assert decryptor.decrypt_message_text(ChatIdentity.conversation("42"), message) == "no iv"

    def test_unencrypted_passthrough(self):
        # no index entry and no keys: passthrough must not need either
        decryptor = Decryptor(ChatIndex(), ChatKeyStore(), None)
        message = Message(text="hello", encrypted=False)
        assert decryptor.decrypt_message_text(ChatIdentity.channel("nope"), message) == "hello"
        assert decryptor.decrypt_message_text(ChatIdentity.channel("nope"), Message(text="hi")) == "hi"

    def test_empty_text_passthrough(self, decryptor):
        assert decryptor.decrypt_message_text(ChatIdentity.channel("x"), Message(text="", encrypted=True)) == ""
        assert decryptor.decrypt_message_text(ChatIdentity.channel("x"), Message(encrypted=True)) is None

    def test_unknown_chat(self, decryptor):
        with pytest.raises(ChatValueError):
            decryptor.decrypt_message_text(ChatIdentity.conversation("404"), _encrypted_message(b"x"))

    def test_unknown_chat_is_value_error(self, decryptor):
        with pytest.raises(ValueError):
            decryptor.decrypt_message_text(ChatIdentity.channel("42"), _encrypted_message(b"x"))

    def test_not_utf8(self, decryptor):
        message = _encrypted_message(b"\xff\xfe\xfd")
        with pytest.raises(EncodingError):
            decryptor.decrypt_message_text(ChatIdentity.conversation("42"), message)

    def test_corrupted_ciphertext(self, decryptor):
        # a final plaintext byte of 0x00 never unpads
        encryptor = Cipher(algorithms.AES(CHAT_KEY), modes.CBC(MESSAGE_IV)).encryptor()
        raw = encryptor.update(b"B" * 31 + b"\x00") + encryptor.finalize()
        message = Message(text=raw.hex(), iv=MESSAGE_IV.hex(), encrypted=True)
        with pytest.raises(CryptoError):
            decryptor.decrypt_message_text(ChatIdentity.conversation("42"), message)

    def test_before_unlock(self, wrapped_chat_key):
        index = ChatIndex()
        index.add_conversations([Conversation(id="42", encrypted=True, key=wrapped_chat_key)])
        decryptor = Decryptor(index, ChatKeyStore(), None)
        with pytest.raises(ChatValueError):
            decryptor.decrypt_message_text(ChatIdentity.conversation("42"), _encrypted_message(b"x"))

    def test_key_unwrapped_once_per_chat(self, decryptor):
        chat = ChatIdentity.conversation("42")
        for _ in range(3):
            decryptor.decrypt_message_text(chat, _encrypted_message(b"again"))
        assert len(decryptor.key_store) == 1

    def test_decrypt_messages_keeps_original(self, decryptor):
        message = _encrypted_message(b"kept")
        [result] = decryptor.decrypt_messages(ChatIdentity.conversation("42"), [message])
        assert result.text == "kept"
        assert result.original_text == message.text
        assert message.text != "kept"
        # decrypting an already decrypted copy starts from the server text
        assert decryptor.decrypt_message(ChatIdentity.conversation("42"), result).text == "kept"


class TestFiles:
    def test_decrypts_binary(self, decryptor):
        data = bytes(range(256)) * 4
        file = File(id="f1", encrypted=True, e2e_iv=MESSAGE_IV.hex())
        raw = cbc_encrypt(CHAT_KEY, MESSAGE_IV, data)
        assert decryptor.decrypt_file(ChatIdentity.channel("9"), file, raw) == data

    def test_unencrypted_passthrough(self):
        decryptor = Decryptor(ChatIndex(), ChatKeyStore(), None)
        raw = b"\x00\x01 not encrypted"
        assert decryptor.decrypt_file(ChatIdentity.channel("9"), File(id="f", encrypted=False), raw) is raw

    def test_unencrypted_chat(self, decryptor):
        file = File(id="f", encrypted=True)
        assert decryptor.decrypt_file(ChatIdentity.conversation("43"), file, b"raw") == b"raw"

    def test_truncated(self, decryptor):
        file = File(id="f", encrypted=True, e2e_iv=MESSAGE_IV.hex())
        raw = cbc_encrypt(CHAT_KEY, MESSAGE_IV, b"some file contents")
        with pytest.raises(CryptoError):
            decryptor.decrypt_file(ChatIdentity.channel("9"), file, raw[:-1])
