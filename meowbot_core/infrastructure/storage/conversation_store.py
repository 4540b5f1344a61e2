"""多会话存储。

内存中维护 id -> Conversation 映射、当前会话 id 以及“实时历史”列表，
每次变更都会把完整快照写入 KeyValueStore。写入失败时回滚内存状态，
保证调用方看到的内存状态与持久化快照一致。

不变量：当前会话的 messages 与实时历史在每次变更后保持相等。
"""

import copy
import json
import time
from contextlib import contextmanager
from datetime import datetime
from typing import Callable, Dict, Iterator, List, Optional

from meowbot_core.config.settings import settings
from meowbot_core.domain.conversation import Conversation, KeyValueStore
from meowbot_core.domain.exceptions import BusinessError, ValidationError
from meowbot_core.domain.models import PERSONALITIES, ChatMessage, Role
from meowbot_core.infrastructure.logging.logger import logger

CONVERSATIONS_KEY = "meowbot_conversations"
CURRENT_CONVERSATION_KEY = "meowbot_current_conversation"


def _now_ms() -> int:
    return int(time.time() * 1000)


class ConversationStore:
    def __init__(
        self,
        kv: KeyValueStore,
        max_history: Optional[int] = None,
        personality: Optional[str] = None,
        clock: Callable[[], int] = _now_ms,
    ):
        self._kv = kv
        self._max_history = max_history or settings.max_history_messages
        self._clock = clock
        self._personality = personality or settings.default_personality
        self._conversations: Dict[str, Conversation] = {}
        self._current_id: str = ""
        self._history: List[ChatMessage] = []
        self._load()

    # ---- 只读访问 ----

    @property
    def current_id(self) -> str:
        return self._current_id

    @property
    def personality(self) -> str:
        return self._personality

    @property
    def history(self) -> List[ChatMessage]:
        return copy.deepcopy(self._history)

    def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        conv = self._conversations.get(conversation_id)
        return copy.deepcopy(conv) if conv else None

    def list_conversations(self) -> List[Conversation]:
        """按 updated_at 倒序返回所有会话的副本。"""

        items = sorted(self._conversations.values(), key=lambda c: c.updated_at, reverse=True)
        return [copy.deepcopy(c) for c in items]

    # ---- 会话管理 ----

    def create_conversation(self, name: Optional[str] = None) -> str:
        now = self._clock()
        cid = f"conv-{now}"
        suffix = 1
        while cid in self._conversations:
            cid = f"conv-{now}-{suffix}"
            suffix += 1
        if not name or not name.strip():
            name = f"Conversation {datetime.fromtimestamp(now / 1000):%Y-%m-%d %H:%M}"
        with self._transaction():
            self._conversations[cid] = Conversation(
                id=cid,
                name=name.strip(),
                personality=self._personality,
                created_at=now,
                updated_at=now,
            )
            self._current_id = cid
            self._history = []
        logger.info("Created conversation", extra={"extra": {"conversation_id": cid}})
        return cid

    def switch_conversation(self, conversation_id: str) -> bool:
        conv = self._conversations.get(conversation_id)
        if conv is None:
            return False
        with self._transaction():
            self._current_id = conversation_id
            self._history = copy.deepcopy(conv.messages)
            self._personality = conv.personality
        return True

    def delete_conversation(self, conversation_id: str) -> bool:
        if conversation_id == self._current_id or conversation_id not in self._conversations:
            return False
        with self._transaction():
            del self._conversations[conversation_id]
        logger.info("Deleted conversation", extra={"extra": {"conversation_id": conversation_id}})
        return True

    def rename_conversation(self, conversation_id: str, name: str) -> bool:
        conv = self._conversations.get(conversation_id)
        if conv is None or not name or not name.strip():
            return False
        with self._transaction():
            conv.name = name.strip()
            conv.updated_at = self._clock()
        return True

    def export(self) -> str:
        return json.dumps(
            [[cid, conv.to_dict()] for cid, conv in self._conversations.items()],
            ensure_ascii=False,
        )

    def import_(self, data: str) -> bool:
        """用导出的快照替换整个存储；格式错误时不做任何修改。"""

        try:
            conversations = self._parse_snapshot(data)
        except (ValueError, TypeError, KeyError) as e:
            logger.warning(f"Rejected conversation import: {e}")
            return False
        if not conversations:
            return False
        current = self._current_id
        if current not in conversations:
            current = max(conversations.values(), key=lambda c: c.updated_at).id
        with self._transaction():
            self._conversations = conversations
            self._current_id = current
            self._history = copy.deepcopy(conversations[current].messages)
            self._personality = conversations[current].personality
        logger.info("Imported conversations", extra={"extra": {"count": len(conversations)}})
        return True

    # ---- 当前会话的消息 ----

    def append_message(
        self,
        role: Role,
        content: str,
        image_data: Optional[str] = None,
        lang: str = "en",
    ) -> ChatMessage:
        now = self._clock()
        message = ChatMessage(role=role, content=content, timestamp=now, lang=lang, image_data=image_data or None)
        with self._transaction():
            self._history.append(message)
            if role == "user" and len(self._history) > self._max_history:
                self._history = self._history[-self._max_history:]
            conv = self._conversations[self._current_id]
            conv.messages = copy.deepcopy(self._history)
            conv.updated_at = now
        return message

    def clear_history(self) -> None:
        with self._transaction():
            self._history = []
            conv = self._conversations[self._current_id]
            conv.messages = []
            conv.updated_at = self._clock()

    def set_personality(self, personality: str) -> None:
        if personality not in PERSONALITIES:
            raise ValidationError(code="INVALID_PERSONALITY", message=personality)
        with self._transaction():
            self._personality = personality
            self._conversations[self._current_id].personality = personality

    # ---- 持久化 ----

    @contextmanager
    def _transaction(self) -> Iterator[None]:
        backup = (
            copy.deepcopy(self._conversations),
            self._current_id,
            list(self._history),
            self._personality,
        )
        try:
            yield
            self._persist()
        except Exception:
            self._conversations, self._current_id, self._history, self._personality = backup
            raise

    def _persist(self) -> None:
        self._kv.write(CONVERSATIONS_KEY, self.export())
        self._kv.write(CURRENT_CONVERSATION_KEY, self._current_id)

    def _load(self) -> None:
        conversations: Dict[str, Conversation] = {}
        current: Optional[str] = None
        try:
            raw = self._kv.read(CONVERSATIONS_KEY)
            if raw:
                conversations = self._parse_snapshot(raw)
            current = self._kv.read(CURRENT_CONVERSATION_KEY)
        except (BusinessError, ValueError, TypeError, KeyError) as e:
            logger.warning(f"Failed to load conversations, starting fresh: {e}")
            conversations = {}

        if not conversations:
            self.create_conversation("Default conversation")
            return

        if current not in conversations:
            current = max(conversations.values(), key=lambda c: c.updated_at).id
        self._conversations = conversations
        self._current_id = current
        self._history = copy.deepcopy(conversations[current].messages)
        self._personality = conversations[current].personality

    @staticmethod
    def _parse_snapshot(data: str) -> Dict[str, Conversation]:
        pairs = json.loads(data)
        if not isinstance(pairs, list):
            raise ValueError("snapshot must be a list of [id, conversation] pairs")
        conversations: Dict[str, Conversation] = {}
        for pair in pairs:
            if not isinstance(pair, list) or len(pair) != 2:
                raise ValueError("snapshot entry must be an [id, conversation] pair")
            cid, payload = pair
            conv = Conversation.from_dict(payload)
            if cid != conv.id or cid in conversations:
                raise ValueError(f"invalid or duplicate conversation id: {cid!r}")
            conversations[cid] = conv
        return conversations
