"""Provider 与模型配置。

本模块将“逻辑模型名”与“具体厂商模型名”解耦：

- 逻辑名（logical_name）：在代码里使用的统一名称，例如 "slides"。
- provider_model：厂商实际提供的模型 ID，例如 "gemini-2.0-flash-exp"。

上层只关心逻辑名，具体用哪个底层模型由这里集中配置，便于后续升级或切换。"""

from dataclasses import dataclass, field
from typing import Dict, List


@dataclass
class ModelConfig:
    """单个逻辑模型的配置。"""

    logical_name: str
    provider_model: str
    response_modalities: List[str] = field(default_factory=lambda: ["TEXT"])


@dataclass
class ProviderConfig:
    """某个 Provider 的整体配置。"""

    name: str
    base_url: str
    models: Dict[str, ModelConfig]


# Gemini 配置（slides 逻辑模型需要同时返回文字与图片）
GEMINI_CONFIG = ProviderConfig(
    name="gemini",
    base_url="https://generativelanguage.googleapis.com/v1beta",
    models={
        "slides": ModelConfig(
            logical_name="slides",
            provider_model="gemini-2.0-flash-exp",
            response_modalities=["TEXT", "IMAGE"],
        ),
        "text": ModelConfig(
            logical_name="text",
            provider_model="gemini-2.0-flash",
        ),
    },
)


def resolve_model(cfg: ProviderConfig, logical_name: str) -> ModelConfig:
    """逻辑名不存在时，把它当作厂商模型 ID 直接使用。"""

    if logical_name in cfg.models:
        return cfg.models[logical_name]
    return ModelConfig(logical_name=logical_name, provider_model=logical_name, response_modalities=["TEXT", "IMAGE"])
