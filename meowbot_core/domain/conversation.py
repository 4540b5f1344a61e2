from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol

from .models import ChatMessage, PERSONALITIES


@dataclass
class Conversation:
    id: str
    name: str
    personality: str
    created_at: int
    updated_at: int
    messages: List[ChatMessage] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "messages": [m.to_dict() for m in self.messages],
            "personality": self.personality,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Conversation":
        if not isinstance(data, dict):
            raise ValueError("conversation must be an object")
        cid = data["id"]
        if not isinstance(cid, str) or not cid:
            raise ValueError("conversation id must be a non-empty string")
        personality = data.get("personality") or "playful"
        if personality not in PERSONALITIES:
            raise ValueError(f"unknown personality: {personality!r}")
        raw_messages = data.get("messages") or []
        if not isinstance(raw_messages, list):
            raise ValueError("messages must be a list")
        return cls(
            id=cid,
            name=str(data.get("name") or ""),
            personality=personality,
            created_at=int(data.get("createdAt", 0)),
            updated_at=int(data.get("updatedAt", data.get("createdAt", 0))),
            messages=[ChatMessage.from_dict(m) for m in raw_messages],
        )


class KeyValueStore(Protocol):
    """外部持久化能力：按 key 读写一整块文本。"""

    def read(self, key: str) -> Optional[str]:
        ...

    def write(self, key: str, value: str) -> None:
        ...

    def remove(self, key: str) -> None:
        ...
