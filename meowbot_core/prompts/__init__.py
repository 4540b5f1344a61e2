"""提示词构造工具。

把性格提示、最近的会话历史、当前问题与幻灯片生成说明拼成发给模型的完整 prompt。
生成说明从 prompts/templates 目录读取。
"""

from functools import lru_cache
from pathlib import Path
from typing import Iterable

from meowbot_core.domain.models import ChatMessage
from meowbot_core.prompts.lang_detector import detect_language, get_language_name

PROMPTS_DIR = Path(__file__).resolve().parent / "templates"

PERSONALITY_PROMPTS = {
    "playful": "Trả lời với tính cách vui vẻ, tinh nghịch như một chú mèo con thích chơi đùa.",
    "lazy": "Trả lời với tính cách lười biếng, thích ngủ và thư giãn như một chú mèo già.",
    "wise": "Trả lời với tính cách thông thái, điềm đạm như một chú mèo giáo sư.",
    "curious": "Trả lời với tính cách tò mò, thích khám phá như một chú mèo phiêu lưu.",
}


@lru_cache(maxsize=None)
def load_instructions(name: str = "slides_instructions") -> str:
    """读取 templates 目录下的说明文本。"""

    return (PROMPTS_DIR / f"{name}.md").read_text(encoding="utf-8").strip()


def get_personality_prompt(personality: str) -> str:
    return PERSONALITY_PROMPTS.get(personality, PERSONALITY_PROMPTS["playful"])


def build_prompt(prompt: str, personality: str, history: Iterable[ChatMessage], lang: str) -> str:
    """构造完整 prompt。

    history 中只取文本内容（图片不会回传给模型），格式为 "role: content"。
    """

    history_context = "\n".join(f"{m.role}: {m.content}" for m in history)
    sections = [
        get_personality_prompt(personality),
        f"Lịch sử trò chuyện:\n{history_context}" if history_context else "",
        f"Câu hỏi hiện tại: {prompt.strip()}",
        f"Language: {get_language_name(lang)}",
        load_instructions(),
    ]
    return "\n\n".join(s for s in sections if s)


__all__ = [
    "PERSONALITY_PROMPTS",
    "build_prompt",
    "detect_language",
    "get_language_name",
    "get_personality_prompt",
    "load_instructions",
]
