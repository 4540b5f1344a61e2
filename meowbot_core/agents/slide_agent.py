"""MeowBot 服务核心模块。

把 RequestGate、ConversationStore、FingerprintCache、RetryExecutor 与
SlideAssembler 串起来，对外提供 stream_slides 以及会话管理接口。

stream_slides 的执行流程：
1. RequestGate 校验单飞与最小间隔（失败直接抛错，不产生任何副作用）。
2. 记录用户消息。
3. 查询指纹缓存；命中则按原顺序回放幻灯片并写入历史，不访问网络。
4. 未命中时由 RetryExecutor 包裹 provider.open_stream，组装器逐张产出幻灯片。
5. 成功结束后整批写入缓存；失败时分类错误，先产出一张兜底幻灯片再抛出。

产出通过有界 asyncio.Queue 传递：生产者是独立的 Task，消费者停止拉取时
生产者会在下一次 put 处挂起；消费者提前关闭时生产者被取消。
"""

import asyncio
import contextlib
import logging
import time
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Optional
from uuid import uuid4

from meowbot_core.agents.assembler import SlideAssembler
from meowbot_core.config.settings import settings
from meowbot_core.domain.conversation import Conversation
from meowbot_core.domain.exceptions import MeowBotError
from meowbot_core.domain.models import ChatMessage, SlideUnit
from meowbot_core.infrastructure.cache.fingerprint_cache import FingerprintCache, make_fingerprint
from meowbot_core.infrastructure.logging.logger import logger
from meowbot_core.infrastructure.storage.conversation_store import ConversationStore
from meowbot_core.prompts import build_prompt, detect_language
from meowbot_core.providers.base import ProviderClient
from meowbot_core.resilience.classifier import classify, get_fallback_response
from meowbot_core.resilience.gate import RequestGate
from meowbot_core.resilience.retry import RetryExecutor


@dataclass
class _StreamEnd:
    error: Optional[MeowBotError] = None


class MeowBotService:
    def __init__(
        self,
        provider_client: ProviderClient,
        store: ConversationStore,
        cache: FingerprintCache[List[SlideUnit]],
        gate: Optional[RequestGate] = None,
        retry: Optional[RetryExecutor] = None,
        sweep_interval: Optional[float] = None,
        queue_size: Optional[int] = None,
    ):
        self._provider_client = provider_client
        self._store = store
        self._cache = cache
        self._gate = gate or RequestGate(min_interval=settings.min_request_interval)
        self._retry = retry or RetryExecutor(
            max_retries=settings.max_retries,
            initial_delay=settings.retry_initial_delay,
        )
        self._sweep_interval = sweep_interval or settings.cache_sweep_interval
        self._queue_size = queue_size or settings.stream_queue_size
        self._sweeper: Optional[asyncio.Task] = None

    # ---- 生命周期 ----

    def start(self) -> None:
        """启动后台缓存清理任务（需要在事件循环中调用）。"""

        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.get_running_loop().create_task(self._sweep_loop())

    async def aclose(self) -> None:
        if self._sweeper is not None:
            self._sweeper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._sweeper
            self._sweeper = None
        await self._provider_client.aclose()

    async def __aenter__(self) -> "MeowBotService":
        self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._sweep_interval)
            self._cache.sweep()

    # ---- 性格与历史 ----

    def set_personality(self, personality: str) -> None:
        self._store.set_personality(personality)

    def get_personality(self) -> str:
        return self._store.personality

    def clear_history(self) -> None:
        self._store.clear_history()

    def get_history(self) -> List[ChatMessage]:
        return self._store.history

    # ---- 会话管理 ----

    def create_new_conversation(self, name: Optional[str] = None) -> str:
        return self._store.create_conversation(name)

    def switch_conversation(self, conversation_id: str) -> bool:
        return self._store.switch_conversation(conversation_id)

    def get_conversations(self) -> List[Conversation]:
        return self._store.list_conversations()

    def delete_conversation(self, conversation_id: str) -> bool:
        return self._store.delete_conversation(conversation_id)

    def rename_conversation(self, conversation_id: str, name: str) -> bool:
        return self._store.rename_conversation(conversation_id, name)

    def export_conversations(self) -> str:
        return self._store.export()

    def import_conversations(self, data: str) -> bool:
        return self._store.import_(data)

    # ---- 流式幻灯片 ----

    async def stream_slides(self, prompt: str, lang: Optional[str] = None) -> AsyncIterator[SlideUnit]:
        """流式产出幻灯片。每次调用都是全新的一次性序列。

        Raises:
            MeowBotError: 被 RequestGate 拒绝（busy / client_rate_limit），
                或上游最终失败（此时已先产出一张兜底幻灯片）。
        """

        self._gate.acquire()
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._queue_size)
        producer = asyncio.create_task(self._produce(prompt, lang, queue))
        finished = False
        try:
            while True:
                item = await queue.get()
                if isinstance(item, _StreamEnd):
                    finished = True
                    if item.error is not None:
                        raise item.error
                    break
                yield item
        finally:
            if not finished:
                producer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await producer
            self._gate.release()

    async def _produce(self, prompt: str, lang: Optional[str], queue: asyncio.Queue) -> None:
        start_time = time.time()
        lang = lang or detect_language(prompt, default=settings.default_lang)
        personality = self._store.personality
        log_ctx: Dict[str, Any] = {
            "trace_id": f"tr-{uuid4().hex}",
            "conversation_id": self._store.current_id,
            "personality": personality,
            "lang": lang,
        }

        try:
            self._store.append_message("user", prompt, lang=lang)
            key = make_fingerprint(prompt, personality, lang)
            cached = self._cache.get(key)
            if cached is not None:
                self._log(logging.INFO, "Cache hit, replaying slides", log_ctx, slides=len(cached))
                for unit in cached:
                    self._store.append_message("assistant", unit.text, unit.image_data or None, lang=lang)
                    await queue.put(unit)
                await queue.put(_StreamEnd())
                return

            # 当前问题已在历史末尾，构造上下文时排除它
            history = self._store.history[:-1]
            full_prompt = build_prompt(prompt, personality, history, lang)
            self._log(
                logging.INFO,
                "Calling provider",
                log_ctx,
                provider=self._provider_client.name,
                history_messages=len(history),
            )
            produced = await self._run_stream(full_prompt, lang, queue, log_ctx)
        except asyncio.CancelledError:
            self._log(logging.INFO, "Slide stream cancelled by consumer", log_ctx)
            raise
        except Exception as exc:
            error = classify(exc, max_attempts=self._retry.max_retries)
            self._log(
                logging.ERROR,
                "Slide stream failed",
                log_ctx,
                kind=error.kind.value,
                attempt=error.attempt,
                error=error.message,
            )
            await queue.put(SlideUnit(text=get_fallback_response(lang), image_data=""))
            await queue.put(_StreamEnd(error=error))
            return

        if produced:
            self._cache.set(key, produced)
        self._log(
            logging.INFO,
            "Completed slide stream",
            log_ctx,
            slides=len(produced),
            elapsed_seconds=round(time.time() - start_time, 2),
        )
        await queue.put(_StreamEnd())

    async def _run_stream(
        self,
        full_prompt: str,
        lang: str,
        queue: asyncio.Queue,
        log_ctx: Dict[str, Any],
    ) -> List[SlideUnit]:
        assembler = SlideAssembler()
        produced: List[SlideUnit] = []

        async def emit(unit: SlideUnit) -> None:
            self._store.append_message("assistant", unit.text, unit.image_data or None, lang=lang)
            produced.append(unit)
            await queue.put(unit)

        stream = await self._retry.execute(lambda: self._provider_client.open_stream(full_prompt))
        try:
            async for chunk in stream:
                for unit in assembler.feed(chunk):
                    await emit(unit)
        except BaseException:
            dropped = assembler.discard()
            if dropped:
                self._log(logging.WARNING, "Discarded partial slide text", log_ctx, chars=len(dropped))
            raise
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()

        tail = assembler.finish()
        if tail is not None:
            await emit(tail)
        return produced

    @staticmethod
    def _log(level: int, message: str, log_ctx: Dict[str, Any], **fields: Any) -> None:
        payload = dict(log_ctx)
        payload.update(fields)
        logger.log(level, message, extra={"extra": payload})
