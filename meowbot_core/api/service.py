"""对外 API 服务模块。

提供构造完整 MeowBotService 的工厂函数，以及把一次流式调用
收集为 dict 列表的便捷函数。服务实例由调用方显式持有并负责关闭。
"""

from typing import Any, Dict, List, Optional

from meowbot_core.agents.slide_agent import MeowBotService
from meowbot_core.config.settings import Settings, settings
from meowbot_core.domain.conversation import KeyValueStore
from meowbot_core.domain.exceptions import MeowBotError
from meowbot_core.domain.models import SlideUnit
from meowbot_core.infrastructure.cache.fingerprint_cache import FingerprintCache
from meowbot_core.infrastructure.logging.logger import logger
from meowbot_core.infrastructure.storage.conversation_store import ConversationStore
from meowbot_core.infrastructure.storage.kv_store import JsonFileKVStore
from meowbot_core.providers import create_provider
from meowbot_core.providers.base import ProviderClient
from meowbot_core.resilience.gate import RequestGate
from meowbot_core.resilience.retry import RetryExecutor


def _encode_slides(units: List[SlideUnit]) -> List[Dict[str, str]]:
    return [u.to_dict() for u in units]


def _decode_slides(raw: Any) -> List[SlideUnit]:
    if not isinstance(raw, list):
        raise ValueError("cached value must be a list of slides")
    if not all(isinstance(item, dict) for item in raw):
        raise ValueError("cached slide must be an object")
    return [SlideUnit.from_dict(item) for item in raw]


def create_service(
    cfg: Settings = settings,
    kv: Optional[KeyValueStore] = None,
    provider_client: Optional[ProviderClient] = None,
) -> MeowBotService:
    """按配置组装 MeowBotService。

    Args:
        cfg: 配置对象，默认使用全局 settings。
        kv: 持久化后端（可选，不提供则使用 storage_root 下的 JSON 文件）。
        provider_client: 模型传输层（可选，不提供则创建 GeminiClient）。
    """
    kv = kv or JsonFileKVStore(root=cfg.storage_root)
    store = ConversationStore(
        kv,
        max_history=cfg.max_history_messages,
        personality=cfg.default_personality,
    )
    cache: FingerprintCache[List[SlideUnit]] = FingerprintCache(
        kv,
        default_ttl=int(cfg.cache_ttl_seconds * 1000),
        max_size=cfg.cache_max_size,
        encode=_encode_slides,
        decode=_decode_slides,
    )
    return MeowBotService(
        provider_client=provider_client or create_provider(cfg=cfg),
        store=store,
        cache=cache,
        gate=RequestGate(min_interval=cfg.min_request_interval),
        retry=RetryExecutor(max_retries=cfg.max_retries, initial_delay=cfg.retry_initial_delay),
        sweep_interval=cfg.cache_sweep_interval,
        queue_size=cfg.stream_queue_size,
    )


async def collect_slides(
    service: MeowBotService,
    prompt: str,
    lang: Optional[str] = None,
) -> List[Dict[str, str]]:
    """运行一次 stream_slides，并把产出的幻灯片收集为 dict 列表。

    Raises:
        MeowBotError: 失败时抛出；兜底幻灯片已记录在异常的 extra["slides"] 中。
    """
    slides: List[Dict[str, str]] = []
    try:
        async for unit in service.stream_slides(prompt, lang):
            slides.append(unit.to_dict())
    except MeowBotError as e:
        logger.error(f"Slide stream failed: {e}", extra={"extra": {
            "kind": e.kind.value,
            "slides": len(slides),
        }})
        e.extra["slides"] = slides
        raise
    return slides
