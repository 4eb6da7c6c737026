"""
In-memory conversation bookkeeping.

A conversation id is ``"<user id>_<epoch millis>"``. The store keeps, per
conversation, a bounded chronological history of turns, plus two lookups
keyed by ``(chat_id, message_id)``:

  - bot message -> conversation id (used to follow reply threads)
  - inbound message -> regeneration input (used by the regenerate button)

Nothing here is persisted; a restart starts from an empty store.
"""

import logging
import time
from dataclasses import dataclass
from typing import Iterable, Optional

from telegram import Message

from config import HISTORY_MAX_TURNS

logger = logging.getLogger(__name__)

MessageKey = tuple[int, int]

ROLE_USER = "user"
ROLE_MODEL = "model"


@dataclass(frozen=True)
class Part:
    """Either a text fragment or inline binary data (image bytes + mime type)."""

    text: Optional[str] = None
    data: Optional[bytes] = None
    mime_type: Optional[str] = None

    @classmethod
    def from_text(cls, text: str) -> "Part":
        return cls(text=text)

    @classmethod
    def from_bytes(cls, data: bytes, mime_type: str) -> "Part":
        return cls(data=data, mime_type=mime_type)

    @property
    def is_inline(self) -> bool:
        return self.data is not None


@dataclass(frozen=True)
class Turn:
    role: str
    parts: tuple[Part, ...]


@dataclass(frozen=True)
class RegenerationInput:
    prompt: str
    image_path: Optional[str]
    conversation_id: str


def new_conversation_id(user_id: int, now_ms: Optional[int] = None) -> str:
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    return f"{user_id}_{now_ms}"


def conversation_started_at(conversation_id: str) -> Optional[float]:
    """
    Return the creation time (epoch seconds) encoded in a conversation id,
    or None if the id does not carry a numeric timestamp.
    """
    _, sep, stamp = conversation_id.rpartition("_")
    if not sep:
        return None
    try:
        return int(stamp) / 1000.0
    except ValueError:
        return None


class SessionStore:
    def __init__(self, max_turns: int = HISTORY_MAX_TURNS) -> None:
        self.max_turns = max_turns
        self._histories: dict[str, list[Turn]] = {}
        self._message_conversations: dict[MessageKey, str] = {}
        self._inputs: dict[MessageKey, RegenerationInput] = {}

    # --- history ---

    def ensure_conversation(self, conversation_id: str) -> None:
        self._histories.setdefault(conversation_id, [])

    def has_conversation(self, conversation_id: str) -> bool:
        return conversation_id in self._histories

    def get_history(self, conversation_id: str) -> list[Turn]:
        """Chronological copy of the stored turns (empty if unknown)."""
        return list(self._histories.get(conversation_id, []))

    def append_turns(self, conversation_id: str, turns: Iterable[Turn]) -> None:
        history = self._histories.setdefault(conversation_id, [])
        history.extend(turns)
        if len(history) > self.max_turns:
            del history[: len(history) - self.max_turns]

    def reset_user(self, user_id: int) -> int:
        prefix = f"{user_id}_"
        doomed = [cid for cid in self._histories if cid.startswith(prefix)]
        for cid in doomed:
            del self._histories[cid]
        return len(doomed)

    # --- message -> conversation ---

    def link_message(self, chat_id: int, message_id: int, conversation_id: str) -> None:
        self._message_conversations[(chat_id, message_id)] = conversation_id

    def conversation_for_message(self, chat_id: int, message_id: int) -> Optional[str]:
        return self._message_conversations.get((chat_id, message_id))

    # --- regeneration inputs ---

    def save_input(self, chat_id: int, message_id: int, entry: RegenerationInput) -> None:
        self._inputs[(chat_id, message_id)] = entry

    def get_input(self, chat_id: int, message_id: int) -> Optional[RegenerationInput]:
        return self._inputs.get((chat_id, message_id))

    def drop_input(self, key: MessageKey) -> None:
        self._inputs.pop(key, None)

    def inputs(self) -> list[tuple[MessageKey, RegenerationInput]]:
        """Snapshot of stored inputs, safe to iterate while dropping entries."""
        return list(self._inputs.items())


def resolve_conversation_id(
    store: SessionStore,
    message: Message,
    bot_id: int,
    now_ms: Optional[int] = None,
) -> str:
    """
    Continue the conversation of the bot message being replied to, if we know it;
    otherwise start a fresh conversation for the sender.
    """
    replied = message.reply_to_message
    if replied is not None and replied.from_user is not None and replied.from_user.id == bot_id:
        known = store.conversation_for_message(message.chat_id, replied.message_id)
        if known is not None:
            return known

    conversation_id = new_conversation_id(message.from_user.id, now_ms)
    store.ensure_conversation(conversation_id)
    logger.info("Started conversation %s", conversation_id)
    return conversation_id
