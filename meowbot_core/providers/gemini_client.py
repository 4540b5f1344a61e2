"""Gemini Provider 适配器。

本模块负责：

1. 接收完整的 prompt 文本。
2. 将其转换为 Gemini streamGenerateContent 的请求格式（SSE 模式）。
3. 调用 HTTP 接口并把网络/API 异常包装为统一的业务异常。
4. 逐条 yield 原始 chunk（dict），由 SlideAssembler 负责拆分文字与图片。

接口：
- URL: {base_url}/models/{model}:streamGenerateContent?alt=sse
- 认证: x-goog-api-key: <api_key>
"""

import json
from typing import Any, AsyncIterator, Dict, Optional

import httpx

from meowbot_core.config.settings import settings
from meowbot_core.domain.exceptions import ApiError, NetworkError, RateLimitError, ValidationError
from meowbot_core.infrastructure.logging.logger import logger
from meowbot_core.providers.registry import GEMINI_CONFIG, ModelConfig, resolve_model


class GeminiClient:
    """Gemini Provider 客户端实现。"""

    name = "gemini"

    def __init__(self, cfg=settings, http_client: Optional[httpx.AsyncClient] = None):
        self._settings = cfg
        self._client = http_client

    async def open_stream(self, prompt: str) -> AsyncIterator[Dict[str, Any]]:
        """建立一次流式对话：发送请求并检查状态码，返回 chunk 迭代器。

        状态码检查在返回迭代器之前完成，因此限流/服务不可用等错误
        会在 open_stream 阶段抛出，可以被 RetryExecutor 重试。
        """

        api_key = getattr(self._settings, "gemini_api_key", None)
        if not api_key:
            # 401 让分类器判定为 auth，不会被重试
            raise ValidationError(code="MISSING_API_KEY", message="GEMINI_API_KEY not set", http_status=401)
        model_cfg = resolve_model(GEMINI_CONFIG, getattr(self._settings, "gemini_model", "slides"))
        base = getattr(self._settings, "gemini_base_url", None) or GEMINI_CONFIG.base_url
        client = self._get_client()
        request = client.build_request(
            "POST",
            f"{base}/models/{model_cfg.provider_model}:streamGenerateContent",
            params={"alt": "sse"},
            json=self._build_payload(prompt, model_cfg),
            headers={
                "x-goog-api-key": api_key,
                "Content-Type": "application/json",
            },
        )
        try:
            resp = await client.send(request, stream=True)
        except httpx.TimeoutException:
            raise
        except httpx.RequestError as e:
            # 网络错误：DNS 失败、连接被拒绝等
            raise NetworkError(code="NETWORK_ERROR", message=str(e))

        if resp.status_code >= 400:
            body = (await resp.aread()).decode("utf-8", errors="replace")
            await resp.aclose()
            if resp.status_code == 429:
                raise RateLimitError(code="RATE_LIMIT", message="Gemini rate limit", http_status=429)
            raise ApiError(code="API_ERROR", message=body, http_status=resp.status_code)

        logger.info(
            "Gemini stream opened",
            extra={"extra": {"model": model_cfg.provider_model, "prompt_chars": len(prompt)}},
        )
        return self._iter_chunks(resp)

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._settings.http_timeout, trust_env=False)
        return self._client

    async def _iter_chunks(self, resp: httpx.Response) -> AsyncIterator[Dict[str, Any]]:
        try:
            async for line in resp.aiter_lines():
                if not line:
                    continue
                data_str = line
                if data_str.startswith("data:"):
                    data_str = data_str[5:].strip()
                else:
                    data_str = data_str.strip()
                if not data_str or data_str == "[DONE]":
                    continue
                try:
                    chunk = json.loads(data_str)
                except json.JSONDecodeError:
                    continue
                if isinstance(chunk, dict):
                    yield chunk
        except httpx.TimeoutException:
            raise
        except httpx.RequestError as e:
            raise NetworkError(code="NETWORK_ERROR", message=str(e))
        finally:
            await resp.aclose()

    @staticmethod
    def _build_payload(prompt: str, model_cfg: ModelConfig) -> dict:
        """将 prompt 转成 Gemini 所需的请求 JSON（每次调用都是全新会话，历史已拼进 prompt）。"""

        return {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {"responseModalities": list(model_cfg.response_modalities)},
        }
