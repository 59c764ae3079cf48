"""Local index of the channels and conversations the user is a member of."""

import threading
from typing import Dict, Iterable, List, Optional

from stashcrypt.common.protocol import Channel, ChatIdentity, ChatMetadata, ChatType, Conversation
from stashcrypt.errors import ChatValueError


class ChatIndex:
    """
    ChatIdentity -> ChatMetadata for every chat the session knows about.

    Filled from the channel/conversation listings; decryption refuses
    chats that are not in here.
    """

    def __init__(self):
        self._chats: Dict[ChatIdentity, ChatMetadata] = {}
        self._lock = threading.Lock()

    def add(self, chat: ChatIdentity, metadata: ChatMetadata) -> None:
        with self._lock:
            self._chats[chat] = metadata

    def add_channels(self, channels: Iterable[Channel]) -> None:
        for channel in channels:
            self.add(channel.identity(),
                     ChatMetadata(encrypted=channel.encrypted, wrapped_key=channel.key, name=channel.name))

    def add_conversations(self, conversations: Iterable[Conversation]) -> None:
        for conversation in conversations:
            self.add(conversation.identity(),
                     ChatMetadata(encrypted=conversation.encrypted, wrapped_key=conversation.key,
                                  name=conversation.name))

    def metadata(self, chat: ChatIdentity) -> ChatMetadata:
        """Raises ChatValueError for chats missing from the index."""
        metadata = self._chats.get(chat)
        if metadata is None:
            raise ChatValueError(f"Invalid {chat.kind.value} id: {chat.id!r}")
        return metadata

    def name(self, chat: ChatIdentity) -> str:
        name = self.metadata(chat).name
        if name is None:
            raise ChatValueError(f"{chat.kind.value.capitalize()} with id {chat.id} has no name")
        return name

    def ids(self, kind: Optional[ChatType] = None) -> List[ChatIdentity]:
        return [chat for chat in self._chats if kind is None or chat.kind == kind]

    def __contains__(self, chat: ChatIdentity) -> bool:
        return chat in self._chats

    def __len__(self) -> int:
        return len(self._chats)
