"""按请求指纹缓存已完成的回答。

- 指纹由 prompt + 性格 + 语言 计算，不区分会话：不同会话里的同一问题共享缓存。
- 每个条目在写入时计算绝对过期时间，get/has 遇到过期条目会立即删除。
- 满容量时插入新 key，先淘汰创建时间最早的条目（不是 LRU）。
- 每次变更后把全部条目序列化写回 KeyValueStore；读取失败时从空缓存开始。
"""

import json
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Generic, List, Optional, TypeVar

from meowbot_core.domain.conversation import KeyValueStore
from meowbot_core.domain.exceptions import BusinessError
from meowbot_core.infrastructure.logging.logger import logger

T = TypeVar("T")

CACHE_STORAGE_KEY = "meowbot_cache"
DEFAULT_TTL_MS = 24 * 60 * 60 * 1000
DEFAULT_MAX_SIZE = 100


def make_fingerprint(prompt: str, personality: str, lang: str) -> str:
    """计算稳定、区分顺序的 32 位滚动哈希。"""

    h = 0
    for ch in f"{prompt}\x1f{personality}\x1f{lang}":
        h = (h * 31 + ord(ch)) & 0xFFFFFFFF
    return f"slides:{h:08x}"


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class CacheEntry(Generic[T]):
    value: T
    timestamp: int
    expires_at: int


class FingerprintCache(Generic[T]):
    def __init__(
        self,
        store: KeyValueStore,
        default_ttl: int = DEFAULT_TTL_MS,
        max_size: int = DEFAULT_MAX_SIZE,
        clock: Callable[[], int] = _now_ms,
        encode: Callable[[T], Any] = lambda v: v,
        decode: Callable[[Any], T] = lambda v: v,
        storage_key: str = CACHE_STORAGE_KEY,
    ):
        """
        Args:
            store: 持久化后端。
            default_ttl: 默认存活时间（毫秒）。
            max_size: 最大条目数。
            clock: 返回毫秒时间戳的时钟，测试中可替换。
            encode/decode: 值与 JSON 可序列化对象之间的转换。
        """
        if max_size < 1:
            raise ValueError("max_size must be >= 1")
        self._store = store
        self._default_ttl = default_ttl
        self._max_size = max_size
        self._clock = clock
        self._encode = encode
        self._decode = decode
        self._storage_key = storage_key
        self._entries: Dict[str, CacheEntry[T]] = {}
        self._load()

    def get(self, key: str) -> Optional[T]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() > entry.expires_at:
            del self._entries[key]
            self._save()
            return None
        return entry.value

    def has(self, key: str) -> bool:
        return self.get(key) is not None

    def set(self, key: str, value: T, ttl: Optional[int] = None) -> None:
        while self._entries and len(self._entries) >= self._max_size and key not in self._entries:
            self._evict_oldest()
        now = self._clock()
        self._entries[key] = CacheEntry(
            value=value,
            timestamp=now,
            expires_at=now + (self._default_ttl if ttl is None else ttl),
        )
        self._save()

    def delete(self, key: str) -> bool:
        if self._entries.pop(key, None) is None:
            return False
        self._save()
        return True

    def clear(self) -> None:
        self._entries.clear()
        self._save()

    def keys(self) -> List[str]:
        return list(self._entries)

    def size(self) -> int:
        return len(self._entries)

    __len__ = size

    def sweep(self) -> int:
        """一次性删除所有过期条目，返回删除数量。"""

        now = self._clock()
        expired = [k for k, e in self._entries.items() if now > e.expires_at]
        for key in expired:
            del self._entries[key]
        if expired:
            self._save()
            logger.info("Swept expired cache entries", extra={"extra": {"removed": len(expired)}})
        return len(expired)

    def _evict_oldest(self) -> None:
        if not self._entries:
            return
        oldest = min(self._entries, key=lambda k: self._entries[k].timestamp)
        del self._entries[oldest]

    def _save(self) -> None:
        try:
            serialized = json.dumps(
                [
                    [key, {"value": self._encode(e.value), "timestamp": e.timestamp, "expiresAt": e.expires_at}]
                    for key, e in self._entries.items()
                ],
                ensure_ascii=False,
            )
            self._store.write(self._storage_key, serialized)
        except (BusinessError, TypeError, ValueError) as e:
            logger.warning(f"Failed to persist cache: {e}")

    def _load(self) -> None:
        try:
            serialized = self._store.read(self._storage_key)
            if not serialized:
                return
            entries: Dict[str, CacheEntry[T]] = {}
            for key, raw in json.loads(serialized):
                entries[str(key)] = CacheEntry(
                    value=self._decode(raw["value"]),
                    timestamp=int(raw["timestamp"]),
                    expires_at=int(raw["expiresAt"]),
                )
        except (BusinessError, TypeError, ValueError, KeyError, AttributeError) as e:
            # 持久化数据损坏时从空缓存开始，不向调用方抛错
            logger.warning(f"Failed to load cache, starting empty: {e}")
            self._entries = {}
            return
        self._entries = entries
        self.sweep()
        # 以更小的 max_size 重建时，按创建时间裁剪到容量以内
        if len(self._entries) > self._max_size:
            while len(self._entries) > self._max_size:
                self._evict_oldest()
            self._save()
        logger.info("Cache restored", extra={"extra": {"entries": len(self._entries)}})
