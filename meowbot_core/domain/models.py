"""统一的幻灯片与消息数据模型。

本模块定义了在缓存、会话存储与流式组装器之间共享的标准数据结构：

- SlideUnit: 一张幻灯片（一段文字 + 一张图片），由 SlideAssembler 产出。
- ChatMessage: 会话历史中的一条消息（user/assistant）。

所有时间戳统一为毫秒级整数（wall-clock），便于直接序列化为 JSON。
"""

from dataclasses import asdict, dataclass
from typing import Any, Dict, Literal, Optional


# 消息角色
Role = Literal["user", "assistant"]

# 猫咪性格标签
Personality = Literal["playful", "lazy", "wise", "curious"]
PERSONALITIES = ("playful", "lazy", "wise", "curious")


@dataclass(frozen=True)
class SlideUnit:
    """一张已经组装完成的幻灯片。

    - text: 去除首尾空白后的文本。
    - image_data: base64 形式的图片数据；只有流结束时的尾部文本
      或失败兜底时才会为空字符串。
    """

    text: str
    image_data: str = ""

    def to_dict(self) -> Dict[str, str]:
        return {"text": self.text, "imageData": self.image_data}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SlideUnit":
        return cls(text=str(data.get("text") or ""), image_data=str(data.get("imageData") or ""))


@dataclass
class ChatMessage:
    """会话历史中的一条消息。

    - role: user / assistant。
    - content: 纯文本内容。
    - image_data: assistant 幻灯片附带的图片（可选）。
    - timestamp: 毫秒时间戳。
    - lang: 该轮对话使用的语言标签，如 "en"、"vi"。
    """

    role: Role
    content: str
    timestamp: int
    lang: str = "en"
    image_data: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["imageData"] = payload.pop("image_data")
        if payload["imageData"] is None:
            del payload["imageData"]
        return payload

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChatMessage":
        role = data["role"]
        if role not in ("user", "assistant"):
            raise ValueError(f"invalid role: {role!r}")
        content = data.get("content")
        if not isinstance(content, str):
            raise ValueError("message content must be a string")
        image_data = data.get("imageData")
        return cls(
            role=role,
            content=content,
            timestamp=int(data.get("timestamp", 0)),
            lang=str(data.get("lang") or "en"),
            image_data=str(image_data) if image_data else None,
        )
