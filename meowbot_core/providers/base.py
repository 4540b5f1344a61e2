"""Provider 抽象接口。

上层 MeowBotService 不直接依赖具体厂商的 HTTP 细节，而是依赖此协议：

- open_stream(prompt): 建立一次对话并提交消息，返回按顺序到达的原始 chunk。
  每个 chunk 结构与 Gemini GenerateContentResponse 一致：
  {"candidates": [{"content": {"parts": [{"text": ...} | {"inlineData": {"data": ...}}]}}]}
- aclose(): 释放底层连接。

open_stream 自身（建连 + 提交）会被 RetryExecutor 包裹；
返回的异步迭代器在消费过程中抛出的错误不会被重试。
"""

from typing import Any, AsyncIterator, Dict, Protocol


class ProviderClient(Protocol):
    name: str

    async def open_stream(self, prompt: str) -> AsyncIterator[Dict[str, Any]]:
        ...

    async def aclose(self) -> None:
        ...
