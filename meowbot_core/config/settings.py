"""配置管理模块。

支持从 .env、config.yaml 以及环境变量加载配置。
"""

import os
import warnings
from pathlib import Path
from typing import Any, Dict, Literal, Optional

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _load_config_from_yaml() -> Dict[str, Any]:
    """从 config.yaml 加载配置（若存在）。"""
    candidates = []
    explicit = os.getenv("MEOWBOT_CONFIG_FILE")
    if explicit:
        candidates.append(Path(explicit).expanduser())
    candidates.extend([
        Path.cwd() / "config.yaml",
        Path(__file__).resolve().parents[2] / "config.yaml",
    ])

    seen: set[Path] = set()
    for path in candidates:
        if not path or path in seen:
            continue
        seen.add(path)
        try:
            if path.exists():
                data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
                if isinstance(data, dict):
                    return data
                warnings.warn(f"Config file {path} is not a mapping, ignored")
        except (OSError, yaml.YAMLError) as exc:
            warnings.warn(f"Failed to read config file {path}: {exc}")
    return {}


class Settings(BaseSettings):
    """配置设置（使用 Pydantic）。"""

    # ---- Gemini ----
    gemini_api_key: Optional[str] = Field(default=None, description="Gemini API 密钥")
    gemini_base_url: str = Field(
        default="https://generativelanguage.googleapis.com/v1beta",
        description="Gemini API 基础URL",
    )
    gemini_model: str = Field(
        default="slides",
        description="逻辑模型名，由 registry 映射为具体 Gemini 模型",
    )
    http_timeout: float = Field(default=60.0, ge=1.0, description="HTTP 超时时间（秒）")

    # ---- 存储与日志 ----
    storage_root: str = Field(default=".storage", description="键值存储根目录")
    log_dir: str = Field(default="logs", description="日志目录")
    log_redact_content: bool = Field(default=False, description="是否脱敏日志内容")

    # ---- 会话 ----
    max_history_messages: int = Field(default=10, ge=1, le=100, description="实时历史最多保留的消息数")
    default_personality: Literal["playful", "lazy", "wise", "curious"] = Field(
        default="playful",
        description="新会话默认的猫咪性格",
    )
    default_lang: str = Field(default="en", description="无法识别语言时使用的语言")

    # ---- 缓存 ----
    cache_ttl_seconds: float = Field(default=24 * 60 * 60, gt=0, description="缓存条目存活时间（秒）")
    cache_max_size: int = Field(default=100, ge=1, description="缓存最大条目数")
    cache_sweep_interval: float = Field(default=15 * 60, gt=0, description="过期清理周期（秒）")

    # ---- 限流与重试 ----
    min_request_interval: float = Field(default=1.0, ge=0, description="两次请求最小间隔（秒）")
    max_retries: int = Field(default=3, ge=0, le=10, description="瞬时错误最大重试次数")
    retry_initial_delay: float = Field(default=1.0, ge=0, description="首次重试等待时间（秒）")
    stream_queue_size: int = Field(default=1, ge=1, description="幻灯片通道的缓冲大小")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @staticmethod
    def _config_source() -> Dict[str, Any]:
        return _load_config_from_yaml()

    @field_validator("gemini_api_key")
    @classmethod
    def validate_api_key(cls, v: Optional[str]) -> Optional[str]:
        if v and len(v) < 10:
            raise ValueError("API key seems too short")
        return v

    @field_validator("default_lang")
    @classmethod
    def validate_lang(cls, v: str) -> str:
        return v.strip().lower() or "en"

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            cls._config_source,
            file_secret_settings,
        )


settings = Settings()
