"""LLM Provider 集成层。

该包下的模块负责：
- 定义 Provider 抽象接口 (base)。
- 维护 Provider 与模型配置 (registry)。
- 提供具体实现 (gemini_client)。
"""

from typing import Optional

from meowbot_core.config.settings import settings
from meowbot_core.providers.base import ProviderClient
from meowbot_core.providers.gemini_client import GeminiClient


def create_provider(name: Optional[str] = None, cfg=settings) -> ProviderClient:
    """根据名称创建 Provider 实例，默认 gemini。"""

    provider_name = (name or "gemini").lower()
    if provider_name == "gemini":
        return GeminiClient(cfg)
    raise KeyError(f"Unknown provider: {name!r}")
