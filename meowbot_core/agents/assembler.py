"""流式幻灯片组装器。

把模型按顺序返回的 chunk 拆分为一张张 SlideUnit：

    ACCUMULATING_TEXT --(图片片段)--> EMIT --> ACCUMULATING_TEXT

- 文本片段按到达顺序直接拼接（不加分隔符），只在产出时 strip。
- 每遇到一个图片片段，就把已缓冲的文本与该图片打包成一张幻灯片。
- 流结束时若仍有非空缓冲文本，产出一张 image_data 为空的尾页。

chunk 既可以是 dict（REST JSON），也可以是 SDK 对象（属性访问）；
缺失 candidates / content / parts 的 chunk 会被跳过。
"""

from enum import Enum
from typing import Any, Iterable, List, Optional

from meowbot_core.domain.models import SlideUnit


class AssemblerState(str, Enum):
    ACCUMULATING_TEXT = "accumulating_text"
    EMIT = "emit"


def _field(obj: Any, *names: str) -> Any:
    """兼容 dict 与属性对象（camelCase / snake_case）的字段读取。"""

    if obj is None:
        return None
    for name in names:
        if isinstance(obj, dict):
            value = obj.get(name)
        else:
            value = getattr(obj, name, None)
        if value is not None:
            return value
    return None


def iter_parts(chunk: Any) -> Iterable[Any]:
    for cand in _field(chunk, "candidates") or []:
        content = _field(cand, "content")
        for part in _field(content, "parts") or []:
            yield part


class SlideAssembler:
    def __init__(self) -> None:
        self.state = AssemblerState.ACCUMULATING_TEXT
        self._buffer: List[str] = []

    @property
    def pending_text(self) -> str:
        return "".join(self._buffer)

    def feed(self, chunk: Any) -> List[SlideUnit]:
        """处理一个 chunk，返回本 chunk 内完成的幻灯片（可能为空）。"""

        units: List[SlideUnit] = []
        for part in iter_parts(chunk):
            text = _field(part, "text")
            if text:
                self._buffer.append(str(text))
                continue
            inline = _field(part, "inlineData", "inline_data")
            data = _field(inline, "data")
            if data:
                units.append(self._emit(data if isinstance(data, str) else str(data)))
        return units

    def finish(self) -> Optional[SlideUnit]:
        """流结束：有非空缓冲文本时产出尾页。"""

        if not self.pending_text:
            return None
        return self._emit("")

    def discard(self) -> str:
        """丢弃尚未产出的文本（失败时使用），返回被丢弃的内容。"""

        dropped = self.pending_text
        self._buffer = []
        self.state = AssemblerState.ACCUMULATING_TEXT
        return dropped

    def _emit(self, image_data: str) -> SlideUnit:
        self.state = AssemblerState.EMIT
        unit = SlideUnit(text=self.pending_text.strip(), image_data=image_data)
        self._buffer = []
        self.state = AssemblerState.ACCUMULATING_TEXT
        return unit


def assemble(chunks: Iterable[Any]) -> List[SlideUnit]:
    """同步版本：一次性组装完整的 chunk 序列。"""

    assembler = SlideAssembler()
    units: List[SlideUnit] = []
    for chunk in chunks:
        units.extend(assembler.feed(chunk))
    tail = assembler.finish()
    if tail is not None:
        units.append(tail)
    return units
