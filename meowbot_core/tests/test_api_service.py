import asyncio

import pytest

from meowbot_core.api.service import collect_slides, create_service
from meowbot_core.config.settings import Settings
from meowbot_core.domain.exceptions import ApiError, ErrorKind, MeowBotError
from meowbot_core.infrastructure.cache.fingerprint_cache import CACHE_STORAGE_KEY
from meowbot_core.infrastructure.storage.conversation_store import CONVERSATIONS_KEY
from meowbot_core.infrastructure.storage.kv_store import InMemoryKVStore, JsonFileKVStore


class FakeProvider:
    name = "fake"

    def __init__(self, chunks, error=None):
        self.chunks = chunks
        self.error = error
        self.calls = 0

    async def open_stream(self, prompt):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self._iter()

    async def _iter(self):
        for chunk in self.chunks:
            yield chunk

    async def aclose(self):
        pass


def part(**kwargs):
    return {"candidates": [{"content": {"parts": [kwargs]}}]}


def make_cfg(**overrides):
    values = dict(min_request_interval=0, retry_initial_delay=0, max_retries=1, default_personality="wise")
    values.update(overrides)
    return Settings(**values)


def test_create_service_and_collect_slides():
    kv = InMemoryKVStore()
    provider = FakeProvider([part(text="Once"), part(inlineData={"data": "IMG1"}), part(text="done")])
    service = create_service(cfg=make_cfg(), kv=kv, provider_client=provider)

    slides = asyncio.run(collect_slides(service, "hello", lang="en"))

    assert slides == [{"text": "Once", "imageData": "IMG1"}, {"text": "done", "imageData": ""}]
    assert service.get_personality() == "wise"
    assert kv.read(CONVERSATIONS_KEY) is not None
    assert kv.read(CACHE_STORAGE_KEY) is not None

    # 第二次同样的请求走缓存，并且同一个 kv 重建的服务也能命中
    rebuilt = create_service(cfg=make_cfg(), kv=kv, provider_client=provider)
    assert asyncio.run(collect_slides(rebuilt, "hello", lang="en")) == slides
    assert provider.calls == 1


def test_collect_slides_attaches_fallback_on_failure():
    provider = FakeProvider([], error=ApiError(code="API_ERROR", message="forbidden", http_status=403))
    service = create_service(cfg=make_cfg(), kv=InMemoryKVStore(), provider_client=provider)

    with pytest.raises(MeowBotError) as ei:
        asyncio.run(collect_slides(service, "hello", lang="en"))

    assert ei.value.kind is ErrorKind.AUTH
    slides = ei.value.extra["slides"]
    assert len(slides) == 1 and slides[0]["imageData"] == ""


def test_create_service_defaults_to_json_file_store(tmp_path):
    provider = FakeProvider([part(text="hi")])
    service = create_service(cfg=make_cfg(storage_root=str(tmp_path)), provider_client=provider)
    asyncio.run(collect_slides(service, "hello", lang="en"))

    assert (tmp_path / f"{CONVERSATIONS_KEY}.json").exists()
    reopened = JsonFileKVStore(root=tmp_path)
    assert reopened.read(CACHE_STORAGE_KEY) is not None
