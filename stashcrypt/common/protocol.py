"""Pydantic models: chat identity, messages, files, chats, private-key envelopes."""

import json
from enum import Enum
from typing import Annotated, Any, List, Optional, Union

from pydantic import BaseModel, BeforeValidator, ConfigDict, ValidationError

from stashcrypt.errors import ProtocolError


class ServerModel(BaseModel):
    """
    Base for everything the server sends.

    Every field is optional here; the component that needs a field checks
    it. Unknown fields are ignored.
    """
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


def _id_to_str(value: Any) -> Any:
    # the server mixes numeric and string ids
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return value


StrId = Annotated[str, BeforeValidator(_id_to_str)]


# --- 1. Chat identity ---

class ChatType(str, Enum):
    CHANNEL = "channel"
    CONVERSATION = "conversation"


class ChatIdentity(BaseModel):
    """Cache key for a channel or a conversation. Immutable and hashable."""
    model_config = ConfigDict(frozen=True)

    kind: ChatType
    id: StrId

    @classmethod
    def channel(cls, chat_id: Union[str, int]) -> "ChatIdentity":
        return cls(kind=ChatType.CHANNEL, id=chat_id)

    @classmethod
    def conversation(cls, chat_id: Union[str, int]) -> "ChatIdentity":
        return cls(kind=ChatType.CONVERSATION, id=chat_id)

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.id}"


# --- 2. Messages and files ---

class PersonInfo(ServerModel):
    id: Optional[StrId] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    image: Optional[str] = None
    public_key: Optional[str] = None
    public_key_signature: Optional[str] = None
    public_signing_key: Optional[str] = None
    language: Optional[str] = None


class FileDimensions(ServerModel):
    height: Optional[str] = None
    width: Optional[str] = None


class File(ServerModel):
    id: Optional[StrId] = None
    name: Optional[str] = None
    ext: Optional[str] = None
    mime: Optional[str] = None
    md5: Optional[str] = None
    size_byte: Optional[str] = None
    encrypted: Optional[bool] = False
    e2e_iv: Optional[str] = None
    dimensions: Optional[FileDimensions] = None
    owner: Optional[PersonInfo] = None
    owner_id: Optional[StrId] = None
    uploaded: Optional[str] = None


class Message(ServerModel):
    id: Optional[StrId] = None
    text: Optional[str] = None
    iv: Optional[str] = None
    encrypted: Optional[bool] = None
    hash: Optional[str] = None
    verification: Optional[str] = None
    # a bare string means the server could not attach a user record
    sender: Optional[Union[PersonInfo, str]] = None
    channel_id: Optional[StrId] = None
    conversation_id: Optional[StrId] = None
    thread_id: Optional[StrId] = None
    time: Optional[Union[str, int]] = None
    kind: Optional[str] = None
    type: Optional[str] = None
    has_file_attached: Optional[bool] = None
    files: Optional[List[File]] = None
    # client side only: server text as received, before decryption
    original_text: Optional[str] = None

    @property
    def sender_id(self) -> Optional[str]:
        if isinstance(self.sender, PersonInfo):
            return self.sender.id
        return None

    @property
    def is_encrypted(self) -> bool:
        return self.encrypted is True

    @property
    def signed_text(self) -> Optional[str]:
        """Text the sender signed: the server text, even after decryption."""
        return self.original_text if self.original_text is not None else self.text


# --- 3. Chats ---

class Channel(ServerModel):
    id: StrId
    name: Optional[str] = None
    company: Optional[str] = None
    encrypted: Optional[bool] = False
    key: Optional[str] = None

    def identity(self) -> ChatIdentity:
        return ChatIdentity.channel(self.id)


class Conversation(ServerModel):
    id: StrId
    name: Optional[str] = None
    encrypted: Optional[bool] = False
    key: Optional[str] = None
    members: Optional[List[PersonInfo]] = None

    def identity(self) -> ChatIdentity:
        return ChatIdentity.conversation(self.id)


class ChatMetadata(ServerModel):
    """What the key store needs to know about a chat."""
    encrypted: Optional[bool] = False
    wrapped_key: Optional[str] = None
    name: Optional[str] = None


# --- 4. Private key envelopes ---

class PrivateKeyRecord(ServerModel):
    """Payload of /security/get_private_key; private_key is JSON inside a string."""
    user_id: Optional[StrId] = None
    type: Optional[str] = None
    format: Optional[str] = None
    private_key: Optional[str] = None
    public_key: Optional[str] = None
    public_key_signature: Optional[str] = None
    time: Optional[str] = None
    version: Optional[int] = None


class PemPrivateKey(ServerModel):
    private: str


class KeyDerivationProperties(ServerModel):
    prf: Optional[str] = None
    iterations: Optional[int] = None
    salt: Optional[str] = None


class WrappedPrivateKey(ServerModel):
    iv: str
    ciphertext: str
    encryption_func: Optional[str] = None
    key_derivation_properties: Optional[KeyDerivationProperties] = None
    encryptedKEK: Optional[str] = None


class RSAPublicComponents(ServerModel):
    """JWK-style {n, e}; alg/kty/key_ops and friends are ignored."""
    n: str
    e: str


class RSAPrivateComponents(RSAPublicComponents):
    d: str
    p: str
    q: str
    dp: Optional[str] = None
    dq: Optional[str] = None
    qi: Optional[str] = None


def parse_json_model(model: type, text: Union[str, bytes], what: str):
    """
    Validates JSON text into a model.

    Returns: the model instance
    Raises: ProtocolError if the text is not JSON or lacks required fields
    """
    try:
        return model.model_validate_json(text)
    except ValidationError as e:
        raise ProtocolError(f"{what} has an unexpected shape: {e.error_count()} error(s)") from e


def json_object_keys(text: str, what: str) -> set:
    """Returns the top-level keys of a JSON object held in a string."""
    try:
        obj = json.loads(text)
    except (TypeError, ValueError) as e:
        raise ProtocolError(f"{what} is not valid JSON") from e
    if not isinstance(obj, dict):
        raise ProtocolError(f"{what} is not a JSON object")
    return set(obj)
