"""MeowBot Core 顶层包。

该包提供把多模态流式回答拆分为幻灯片的核心实现，
包括配置加载、领域模型、Gemini Provider 适配、重试与限流、
指纹缓存、多会话持久化存储以及流式组装器等能力。
"""

from meowbot_core.agents.slide_agent import MeowBotService
from meowbot_core.api.service import collect_slides, create_service
from meowbot_core.domain.models import SlideUnit

__all__ = ["MeowBotService", "SlideUnit", "collect_slides", "create_service"]
